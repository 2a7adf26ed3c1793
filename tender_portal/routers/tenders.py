"""
Licitaciones: listado, detalle, alta, edición, archivado y borrado.

La lógica vive en TenderService; aquí solo se traduce HTTP ↔ servicio.
Los errores de dominio los convierte el manejador global de main.py.
Archivar (POST /archive) y eliminar (DELETE con confirm_bid_count) son
rutas distintas: el borrado exige el recuento de GET /delete-preview.
Los pliegos se suben con POST /{id}/files o, antes del alta, con POST /uploads
y se envían en attachments.
"""

from typing import List, Optional

from fastapi import APIRouter, File, Query, Response, UploadFile, status

from tender_portal.deps import BidServiceDep, CurrentUserDep, StorageServiceDep, TenderServiceDep
from tender_portal.models import AttachmentOwner, AttachmentOwnerKind, BidCreate, FileUpload, TenderStatus
from tender_portal.roles import can_manage_tenders
from tender_portal.schemas import TenderCreate, TenderUpdate, envelope, paginated
from tender_portal.services.attachment_registry import AttachmentRegistry
from tender_portal.services.exceptions import DomainError
from tender_portal.services.storage_service import discard_files, guess_content_type

router = APIRouter(prefix="/tenders", tags=["tenders"])


@router.get("", response_model=dict)
def list_tenders(
    current_user: CurrentUserDep,
    service: TenderServiceDep,
    status_filter: Optional[TenderStatus] = Query(None, alias="status", description="draft, open, closed o archived."),
    category: Optional[str] = Query(None, description="Nombre de categoría."),
    archived: Optional[bool] = Query(None, description="true solo archivadas, false excluye archivadas."),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> dict:
    """
    Lista licitaciones con filtros opcionales.
    Los proveedores solo ven licitaciones abiertas.
    """
    if not can_manage_tenders(current_user.role):
        status_filter, archived = TenderStatus.OPEN, None
    items, total = service.list_tenders(
        status=status_filter, category=category, archived=archived, page=page, limit=limit
    )
    managed = service.managed_categories()
    return paginated([service.present(t, managed) for t in items], page, limit, total)


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_tender(payload: TenderCreate, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    tender = service.create_tender(payload, current_user)
    return envelope(service.present(tender), "Licitación creada correctamente.")


@router.get("/{tender_id}", response_model=dict)
def get_tender(tender_id: int, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    return envelope(service.present(service.get_tender(tender_id)))


@router.patch("/{tender_id}", response_model=dict)
def update_tender(
    tender_id: int,
    payload: TenderUpdate,
    current_user: CurrentUserDep,
    service: TenderServiceDep,
) -> dict:
    """Edición parcial. status solo draft ↔ open ↔ closed."""
    tender = service.update_tender(tender_id, payload, current_user)
    return envelope(service.present(tender), "Licitación actualizada correctamente.")


@router.post("/{tender_id}/archive", response_model=dict)
def archive_tender(tender_id: int, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    """Archivado reversible; pujas intactas."""
    tender = service.archive_tender(tender_id, current_user)
    return envelope(service.present(tender), "Licitación archivada.")


@router.post("/{tender_id}/unarchive", response_model=dict)
def unarchive_tender(tender_id: int, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    tender = service.unarchive_tender(tender_id, current_user)
    return envelope(service.present(tender), "Licitación restaurada.")


@router.get("/{tender_id}/delete-preview", response_model=dict)
def delete_preview(tender_id: int, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    """Número de pujas que se eliminarán; se reenvía como confirm_bid_count."""
    return envelope(service.delete_preview(tender_id, current_user))


@router.delete("/{tender_id}", response_model=dict)
def delete_tender(
    tender_id: int,
    current_user: CurrentUserDep,
    service: TenderServiceDep,
    confirm_bid_count: int = Query(..., ge=0, description="Recuento de pujas confirmado por el usuario."),
) -> dict:
    """Borrado definitivo de la licitación con todas sus pujas."""
    result = service.delete_tender(tender_id, current_user, confirm_bid_count)
    return envelope(result, f"Licitación eliminada junto con {result.deleted_bids} pujas.")


@router.get("/{tender_id}/stats", response_model=dict)
def tender_stats(tender_id: int, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    return envelope(service.get_tender_stats(tender_id))


@router.get("/{tender_id}/bids", response_model=dict)
def tender_bids(
    tender_id: int,
    current_user: CurrentUserDep,
    service: TenderServiceDep,
    bid_service: BidServiceDep,
) -> dict:
    """Gestores ven todas las pujas; un proveedor solo las suyas."""
    if can_manage_tenders(current_user.role):
        bids = service.list_bids(tender_id)
    else:
        service.get_tender(tender_id)
        bids, _ = bid_service.list_bids(tender_id=tender_id, vendor_id=current_user.user_id, limit=100)
    return envelope(bids)


@router.post("/{tender_id}/bids", response_model=dict)
def submit_bid(
    tender_id: int,
    payload: BidCreate,
    response: Response,
    current_user: CurrentUserDep,
    bid_service: BidServiceDep,
) -> dict:
    """201 si se crea la puja; 200 si se actualizó la pendiente existente."""
    result = bid_service.submit(tender_id, current_user, payload)
    if result.created:
        response.status_code = status.HTTP_201_CREATED
        return envelope(result, "Puja presentada correctamente.")
    return envelope(result, "Tu puja pendiente se ha actualizado.")


@router.get("/{tender_id}/files", response_model=dict)
def tender_files(tender_id: int, current_user: CurrentUserDep, service: TenderServiceDep) -> dict:
    """Pliegos. Para proveedores solo con la licitación abierta y en plazo."""
    return envelope(service.list_files(tender_id, current_user))


@router.post("/{tender_id}/files", response_model=dict)
async def upload_tender_files(
    tender_id: int,
    current_user: CurrentUserDep,
    service: TenderServiceDep,
    storage: StorageServiceDep,
    files: List[UploadFile] = File(...),
) -> dict:
    """Sube pliegos y los añade a la licitación; cada fichero es independiente."""
    service.ensure_files_editable(tender_id, current_user)
    registry = AttachmentRegistry(
        AttachmentOwner(kind=AttachmentOwnerKind.TENDER_BATCH, owner_id=str(tender_id)),
        upload_service=storage,
    )
    uploads = [
        FileUpload(
            filename=f.filename or "fichero",
            content=await f.read(),
            content_type=guess_content_type(f.filename or "", f.content_type),
        )
        for f in files
    ]
    result = await registry.upload_batch(uploads)
    if result.success_count:
        try:
            service.add_files(tender_id, current_user, result.attachments)
        except DomainError:
            discard_files(storage, [a.id for a in result.attachments])
            raise
    return envelope(result, f"{result.success_count} subidos, {result.failure_count} fallidos.")
