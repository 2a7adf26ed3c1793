"""
Registro de adjuntos de una puja o de un lote de subida de licitación.

Ciclo de vida: begin_upload crea un placeholder "uploading" por fichero antes
de cualquier llamada de red; complete_upload lo sustituye por "uploaded" o lo
elimina si falló. La reconciliación es siempre por temp_id, nunca por
posición, porque las respuestas llegan en cualquier orden.
"""

import asyncio
import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tender_portal.config import MAX_FILES_PER_BATCH
from tender_portal.models import (
    Attachment,
    AttachmentOwner,
    AttachmentOwnerKind,
    BatchUploadResult,
    Bid,
    BidStatus,
    FailedAttachment,
    FileUpload,
    UploadedAttachment,
    UploadingAttachment,
    UploadResult,
)
from tender_portal.services.exceptions import (
    NotFoundError,
    StateConflictError,
    UploadError,
    ValidationError,
)
from tender_portal.services.storage_service import UploadService

logger = logging.getLogger(__name__)

UploadOutcome = Union[UploadResult, UploadError]


def _temp_id() -> str:
    return f"tmp-{uuid.uuid4().hex}"


class AttachmentRegistry:
    """Lista ordenada de adjuntos de un único dueño (puja o lote de licitación)."""

    def __init__(
        self,
        owner: AttachmentOwner,
        upload_service: Optional[UploadService] = None,
        attachments: Iterable[UploadedAttachment] = (),
        max_files: int = MAX_FILES_PER_BATCH,
        temp_id_factory: Callable[[], str] = _temp_id,
    ) -> None:
        self._owner = owner
        self._upload_service = upload_service
        self._items: List[Attachment] = list(attachments)
        self._max_files = max_files
        self._temp_id_factory = temp_id_factory
        self._editable = True

    @classmethod
    def for_bid(cls, bid: Bid, upload_service: Optional[UploadService] = None) -> "AttachmentRegistry":
        """Registro cargado con los adjuntos ya persistidos; bloqueado si la puja no está pendiente."""
        registry = cls(
            AttachmentOwner(kind=AttachmentOwnerKind.BID, owner_id=str(bid.id)),
            upload_service=upload_service,
            attachments=bid.attachments,
        )
        registry.on_bid_status_changed(bid)
        return registry

    @property
    def owner(self) -> AttachmentOwner:
        return self._owner

    @property
    def editable(self) -> bool:
        return self._editable

    @property
    def attachments(self) -> List[Attachment]:
        return list(self._items)

    @property
    def has_pending_uploads(self) -> bool:
        return any(isinstance(a, UploadingAttachment) for a in self._items)

    def uploaded(self) -> List[UploadedAttachment]:
        return [a for a in self._items if isinstance(a, UploadedAttachment)]

    def bind(self, owner_id: object) -> None:
        """
        Asigna el id de la puja recién creada. Un registro ya ligado a otra
        entidad no se reasigna.
        """
        owner_id = str(owner_id)
        if self._owner.owner_id is not None and self._owner.owner_id != owner_id:
            raise StateConflictError(
                f"Los adjuntos pertenecen a {self._owner.kind.value} {self._owner.owner_id}; no se pueden reasignar."
            )
        self._owner = AttachmentOwner(kind=self._owner.kind, owner_id=owner_id)

    def on_bid_status_changed(self, bid: Bid) -> None:
        """Observador de BidService: fuera de pending los adjuntos quedan congelados."""
        if self._owner.kind is not AttachmentOwnerKind.BID:
            return
        if self._owner.owner_id is not None and self._owner.owner_id != str(bid.id):
            return
        if bid.status != BidStatus.PENDING:
            self._editable = False

    def _require_editable(self) -> None:
        if not self._editable:
            raise StateConflictError("Los adjuntos ya no se pueden modificar: la puja no está pendiente.")

    def _index_of_placeholder(self, placeholder_id: str) -> int:
        for i, item in enumerate(self._items):
            if isinstance(item, UploadingAttachment) and item.temp_id == placeholder_id:
                return i
        raise NotFoundError(f"Subida {placeholder_id} no encontrada.")

    def begin_upload(self, files: Sequence[FileUpload]) -> List[UploadingAttachment]:
        """Crea un placeholder por fichero, al instante y en el orden recibido."""
        self._require_editable()
        if not files:
            raise ValidationError("No se ha seleccionado ningún fichero.", field="files")
        if len(files) > self._max_files:
            raise ValidationError(f"Máximo {self._max_files} ficheros por subida.", field="files")
        placeholders = [
            UploadingAttachment(
                temp_id=self._temp_id_factory(),
                name=f.filename,
                size=f.size,
                mime_type=f.content_type,
            )
            for f in files
        ]
        self._items.extend(placeholders)
        return placeholders

    def complete_upload(self, placeholder_id: str, result: UploadOutcome) -> Union[UploadedAttachment, FailedAttachment]:
        """
        Reconciliación de una respuesta. Éxito → sustituye el placeholder en su
        posición; fallo → lo elimina sin dejar rastro en la lista.
        """
        index = self._index_of_placeholder(placeholder_id)
        placeholder = self._items[index]
        if isinstance(result, UploadResult) and result.success and result.filename:
            final = UploadedAttachment(
                id=result.filename,
                name=placeholder.name,
                size=result.size if result.size is not None else placeholder.size,
                mime_type=result.type or placeholder.mime_type,
            )
            self._items[index] = final
            return final
        del self._items[index]
        if isinstance(result, UploadError):
            error = result.message
        else:
            error = result.message or "La subida no se completó."
        logger.warning("Subida fallida de %s (%s): %s", placeholder.name, placeholder_id, error)
        return FailedAttachment(temp_id=placeholder_id, name=placeholder.name, error=error)

    def remove(self, attachment_id: str) -> UploadedAttachment:
        """Quita un adjunto subido. Nunca un placeholder en curso."""
        self._require_editable()
        for i, item in enumerate(self._items):
            if isinstance(item, UploadingAttachment) and item.temp_id == attachment_id:
                raise StateConflictError(f"{item.name} todavía se está subiendo; espera a que termine.")
            if isinstance(item, UploadedAttachment) and item.id == attachment_id:
                if self._upload_service is not None and not self._upload_service.delete(item.id):
                    raise UploadError("No se pudo eliminar el fichero del almacenamiento.", filename=item.name)
                del self._items[i]
                return item
        raise NotFoundError(f"Adjunto {attachment_id} no encontrado.")

    async def upload_batch(self, files: Sequence[FileUpload]) -> BatchUploadResult:
        """
        Sube N ficheros en paralelo. Cada fichero es independiente: un fallo no
        revierte los demás; se devuelven recuentos de éxito y fallo.
        """
        if self._upload_service is None:
            raise RuntimeError("AttachmentRegistry sin servicio de subida configurado.")
        placeholders = self.begin_upload(files)
        destination = self._owner.kind.storage_prefix

        async def _send(placeholder: UploadingAttachment, file: FileUpload) -> Tuple[str, UploadOutcome]:
            try:
                outcome: UploadOutcome = await asyncio.to_thread(self._upload_service.upload, file, destination)
            except UploadError as e:
                outcome = e
            except Exception as e:
                logger.exception("Error inesperado subiendo %s", file.filename)
                outcome = UploadError(f"Error subiendo el fichero: {e!s}", filename=file.filename)
            return placeholder.temp_id, outcome

        finals: Dict[str, Union[UploadedAttachment, FailedAttachment]] = {}
        tasks = [_send(p, f) for p, f in zip(placeholders, files)]
        for finished in asyncio.as_completed(tasks):
            temp_id, outcome = await finished
            finals[temp_id] = self.complete_upload(temp_id, outcome)

        # Resultados en el orden de la petición, no en el de llegada
        ordered = [finals[p.temp_id] for p in placeholders]
        uploaded = [a for a in ordered if isinstance(a, UploadedAttachment)]
        failures = [a for a in ordered if isinstance(a, FailedAttachment)]

        logger.info(
            "Lote de subida %s/%s: %d correctos, %d fallidos",
            self._owner.kind.value, self._owner.owner_id, len(uploaded), len(failures),
        )
        return BatchUploadResult(
            success_count=len(uploaded),
            failure_count=len(failures),
            attachments=uploaded,
            failures=failures,
        )
