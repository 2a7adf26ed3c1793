"""
Servicio de subida de ficheros sobre Supabase Storage.

Contrato UploadService: upload / download / view / delete. Los nombres
guardados son <destino>/<timestamp>-<uuid><ext> para no pisar ficheros con el
mismo nombre original.
"""

import logging
import mimetypes
import time
import uuid
from pathlib import PurePosixPath
from typing import Iterable, Optional, Protocol

from supabase import Client

from tender_portal.config import ALLOWED_MIME_TYPES, MAX_UPLOAD_SIZE, STORAGE_BUCKET
from tender_portal.models import FileUpload, UploadResult
from tender_portal.services.exceptions import NotFoundError, UploadError

logger = logging.getLogger(__name__)


class UploadService(Protocol):
    def upload(self, file: FileUpload, destination: str = "temp") -> UploadResult: ...

    def download(self, filename: str) -> bytes: ...

    def view(self, filename: str) -> bytes: ...

    def delete(self, filename: str) -> bool: ...


def validate_file(
    file: FileUpload,
    max_size: int = MAX_UPLOAD_SIZE,
    allowed_types: frozenset = ALLOWED_MIME_TYPES,
) -> None:
    """Lanza UploadError (con el nombre del fichero) si excede tamaño o tipo."""
    if file.size == 0:
        raise UploadError("El fichero está vacío.", filename=file.filename)
    if file.size > max_size:
        raise UploadError(
            f"El fichero supera el tamaño máximo de {max_size // (1024 * 1024)}MB.",
            filename=file.filename,
        )
    if file.content_type not in allowed_types:
        raise UploadError(
            f"Tipo de fichero {file.content_type or 'desconocido'} no permitido.",
            filename=file.filename,
        )


def storage_name(original_filename: str, destination: str = "temp") -> str:
    """Nombre único dentro del bucket conservando la extensión original."""
    ext = PurePosixPath(original_filename or "").suffix.lower()
    return f"{destination}/{int(time.time() * 1000)}-{uuid.uuid4().hex}{ext}"


class SupabaseStorageService:
    """UploadService respaldado por un bucket de Supabase Storage."""

    def __init__(self, client: Client, bucket: str = STORAGE_BUCKET) -> None:
        self._client = client
        self._bucket = bucket

    def _storage(self):
        return self._client.storage.from_(self._bucket)

    def upload(self, file: FileUpload, destination: str = "temp") -> UploadResult:
        validate_file(file)
        name = storage_name(file.filename, destination)
        try:
            self._storage().upload(name, file.content, {"content-type": file.content_type or "application/octet-stream"})
        except Exception as e:
            logger.warning("Subida fallida de %s: %s", file.filename, e)
            raise UploadError(f"Error subiendo el fichero: {e!s}", filename=file.filename) from e
        logger.info("Fichero subido: %s → %s (%d bytes)", file.filename, name, file.size)
        return UploadResult(success=True, filename=name, size=file.size, type=file.content_type)

    def download(self, filename: str) -> bytes:
        try:
            return self._storage().download(filename)
        except Exception as e:
            raise NotFoundError(f"Fichero {filename} no encontrado.") from e

    def view(self, filename: str) -> bytes:
        """Mismo contenido que download; el router lo sirve inline."""
        return self.download(filename)

    def delete(self, filename: str) -> bool:
        try:
            removed = self._storage().remove([filename])
        except Exception as e:
            raise UploadError(f"Error eliminando el fichero: {e!s}", filename=filename) from e
        return bool(removed)


def guess_content_type(filename: str, declared: Optional[str]) -> Optional[str]:
    """Tipo declarado por el navegador o, si falta, deducido de la extensión."""
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or declared


def discard_files(upload_service: Optional[UploadService], filenames: Iterable[str]) -> None:
    """
    Borra del almacenamiento ficheros que ya no referencia ningún registro.
    Un fichero ausente o un error del bucket se registra y no interrumpe el resto.
    """
    if upload_service is None:
        return
    for filename in filenames:
        try:
            if not upload_service.delete(filename):
                logger.warning("Fichero %s no encontrado al borrarlo del almacenamiento", filename)
        except UploadError as e:
            logger.warning("No se pudo borrar %s del almacenamiento: %s", filename, e.message)
