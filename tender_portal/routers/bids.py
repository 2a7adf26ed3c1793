"""
Pujas: consulta, edición, resolución (aceptar/rechazar), retirada y adjuntos.

Flujo de estados: pending → accepted | rejected | withdrawn, sin vuelta atrás.
"""

from typing import List, Optional

from fastapi import APIRouter, File, Query, UploadFile

from tender_portal.deps import BidServiceDep, CurrentUserDep, StorageServiceDep, TenderServiceDep
from tender_portal.models import BidStatus, FileUpload
from tender_portal.roles import can_bid, is_admin
from tender_portal.schemas import BidDecision, BidStatusChange, BidUpdate, envelope, paginated
from tender_portal.services.attachment_registry import AttachmentRegistry
from tender_portal.services.exceptions import AuthorizationError, DomainError, ValidationError
from tender_portal.services.storage_service import discard_files, guess_content_type

router = APIRouter(prefix="/bids", tags=["bids"])


@router.get("", response_model=dict)
def list_bids(
    current_user: CurrentUserDep,
    service: BidServiceDep,
    tender_service: TenderServiceDep,
    tender_id: Optional[int] = Query(None),
    status_filter: Optional[BidStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> dict:
    """
    Proveedor: solo sus pujas. Admin: todas. Comprador: las de una licitación suya.
    """
    vendor_id = None
    if can_bid(current_user.role):
        vendor_id = current_user.user_id
    elif not is_admin(current_user.role):
        if tender_id is None:
            raise ValidationError("Indica tender_id para listar pujas.", field="tender_id")
        tender = tender_service.get_tender(tender_id)
        if tender.created_by != current_user.user_id:
            raise AuthorizationError("Solo puedes ver pujas de tus licitaciones.")
    items, total = service.list_bids(
        tender_id=tender_id, vendor_id=vendor_id, status=status_filter, page=page, limit=limit
    )
    return paginated(items, page, limit, total)


@router.get("/stats", response_model=dict)
def vendor_bid_stats(
    current_user: CurrentUserDep,
    service: BidServiceDep,
    vendor_id: Optional[str] = Query(None, description="Solo admin: proveedor a consultar."),
) -> dict:
    """Recuentos por estado, importes y rendimiento mensual del proveedor."""
    return envelope(service.vendor_stats(current_user, vendor_id))


@router.get("/eligibility/{tender_id}", response_model=dict)
def bid_eligibility(tender_id: int, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    """can_bid y los motivos por los que no se puede pujar, sin presentar nada."""
    return envelope(service.check_eligibility(tender_id, current_user))


@router.get("/{bid_id}", response_model=dict)
def get_bid(bid_id: int, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    return envelope(service.view_bid(bid_id, current_user))


@router.patch("/{bid_id}", response_model=dict)
def update_bid(bid_id: int, payload: BidUpdate, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    """Solo en pending y antes de la fecha límite."""
    return envelope(service.update(bid_id, current_user, payload), "Puja actualizada correctamente.")


@router.post("/{bid_id}/accept", response_model=dict)
def accept_bid(bid_id: int, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    return envelope(service.accept(bid_id, current_user), "Puja aceptada.")


@router.post("/{bid_id}/reject", response_model=dict)
def reject_bid(bid_id: int, payload: BidDecision, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    return envelope(service.reject(bid_id, current_user, payload.reason), "Puja rechazada.")


@router.post("/{bid_id}/withdraw", response_model=dict)
def withdraw_bid(bid_id: int, payload: BidDecision, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    return envelope(service.withdraw(bid_id, current_user, payload.reason), "Puja retirada.")


@router.post("/{bid_id}/change-status", response_model=dict)
def change_bid_status(
    bid_id: int,
    payload: BidStatusChange,
    current_user: CurrentUserDep,
    service: BidServiceDep,
) -> dict:
    bid = service.change_status(bid_id, payload.status, current_user, payload.reason)
    return envelope(bid, "Estado actualizado correctamente.")


@router.get("/{bid_id}/history", response_model=dict)
def bid_history(bid_id: int, current_user: CurrentUserDep, service: BidServiceDep) -> dict:
    return envelope(service.get_bid_history(bid_id, current_user))


@router.post("/{bid_id}/attachments", response_model=dict)
async def upload_bid_attachments(
    bid_id: int,
    current_user: CurrentUserDep,
    service: BidServiceDep,
    storage: StorageServiceDep,
    files: List[UploadFile] = File(...),
) -> dict:
    """
    Sube varios ficheros a una puja pendiente. Cada fichero es independiente;
    la respuesta trae success_count y failure_count. Los permisos y la fecha
    límite se comprueban antes de subir nada.
    """
    bid = service.ensure_editable(bid_id, current_user)
    registry = AttachmentRegistry.for_bid(bid, upload_service=storage)
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
            service.add_attachments(bid_id, current_user, result.attachments)
        except DomainError:
            discard_files(storage, [a.id for a in result.attachments])
            raise
    return envelope(result, f"{result.success_count} subidos, {result.failure_count} fallidos.")


@router.delete("/{bid_id}/attachments", response_model=dict)
def remove_bid_attachment(
    bid_id: int,
    current_user: CurrentUserDep,
    service: BidServiceDep,
    storage: StorageServiceDep,
    attachment_id: str = Query(..., description="Nombre del fichero en el almacenamiento."),
) -> dict:
    bid = service.remove_attachment(bid_id, attachment_id, current_user, upload_service=storage)
    return envelope(bid, "Adjunto eliminado.")
