"""
Subida de ficheros sobre Supabase Storage.

- POST /uploads: subida múltiple; cada fichero se valida y sube por separado.
- GET /uploads/download y /uploads/view: contenido como adjunto o inline.
- DELETE /uploads: borra un fichero por su nombre en el almacenamiento.
"""

import uuid
from pathlib import PurePosixPath
from typing import List, Optional

from fastapi import APIRouter, File, Form, Query, Response, UploadFile

from tender_portal.deps import CurrentUserDep, StorageServiceDep
from tender_portal.models import AttachmentOwner, AttachmentOwnerKind, FileUpload
from tender_portal.schemas import envelope
from tender_portal.services.attachment_registry import AttachmentRegistry
from tender_portal.services.exceptions import NotFoundError
from tender_portal.services.storage_service import guess_content_type

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("", response_model=dict)
async def upload_files(
    current_user: CurrentUserDep,
    storage: StorageServiceDep,
    files: List[UploadFile] = File(...),
    owner_kind: AttachmentOwnerKind = Form(AttachmentOwnerKind.TENDER_BATCH),
    owner_id: Optional[str] = Form(None),
) -> dict:
    """
    Sube un lote. Para pujas aún no creadas owner_id va vacío. Sin owner_id,
    el lote de licitación recibe un id propio que agrupa los ficheros hasta
    que se envían en attachments al crear la licitación; para una licitación
    existente usa POST /tenders/{id}/files.
    """
    if owner_kind is AttachmentOwnerKind.TENDER_BATCH and not owner_id:
        owner_id = uuid.uuid4().hex
    registry = AttachmentRegistry(
        AttachmentOwner(kind=owner_kind, owner_id=owner_id),
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
    data = {**result.model_dump(mode="json"), "owner": registry.owner.model_dump(mode="json")}
    return envelope(data, f"{result.success_count} subidos, {result.failure_count} fallidos.")


def _file_response(content: bytes, filename: str, disposition: str) -> Response:
    name = PurePosixPath(filename).name
    return Response(
        content=content,
        media_type=guess_content_type(name, None) or "application/octet-stream",
        headers={"Content-Disposition": f'{disposition}; filename="{name}"'},
    )


@router.get("/download")
def download_file(
    current_user: CurrentUserDep,
    storage: StorageServiceDep,
    filename: str = Query(..., description="Nombre del fichero en el almacenamiento."),
) -> Response:
    return _file_response(storage.download(filename), filename, "attachment")


@router.get("/view")
def view_file(
    current_user: CurrentUserDep,
    storage: StorageServiceDep,
    filename: str = Query(..., description="Nombre del fichero en el almacenamiento."),
) -> Response:
    return _file_response(storage.view(filename), filename, "inline")


@router.delete("", response_model=dict)
def delete_file(
    current_user: CurrentUserDep,
    storage: StorageServiceDep,
    filename: str = Query(..., description="Nombre del fichero en el almacenamiento."),
) -> dict:
    if not storage.delete(filename):
        raise NotFoundError(f"Fichero {filename} no encontrado.")
    return envelope({"filename": filename}, "Fichero eliminado.")
