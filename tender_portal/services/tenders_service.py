"""
Servicio de licitaciones: lógica de negocio aislada de HTTP.

Recibe repositorios y BidService por inyección. Lanza excepciones de dominio
(ValidationError, NotFoundError, StateConflictError...), no HTTPException.

Archivar y eliminar son operaciones distintas a propósito: archive es
reversible y no toca las pujas; delete borra licitación y pujas, exige
confirmar el recuento de pujas vigente y después retira del almacenamiento
los ficheros de ambas.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from tender_portal.config import DESCRIPTION_MIN_LENGTH, TITLE_MAX_LENGTH, TITLE_MIN_LENGTH
from tender_portal.models import (
    ACTIVE_TENDER_STATUSES,
    TENDER_DIRECT_TRANSITIONS,
    Bid,
    Category,
    CurrentUser,
    DeletePreview,
    DeleteResult,
    Tender,
    TenderCreate,
    TenderStats,
    TenderStatus,
    TenderUpdate,
    UploadedAttachment,
)
from tender_portal.roles import can_manage_tenders, is_admin
from tender_portal.services.bids_service import BidService
from tender_portal.services.category_resolver import CategoryResolver
from tender_portal.services.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    StateConflictError,
    ValidationError,
)
from tender_portal.services.records import load_tender, tender_from_row
from tender_portal.services.storage_service import UploadService, discard_files
from tender_portal.utils import Clock, ensure_utc, text_key, utc_now

logger = logging.getLogger(__name__)

# Estado restaurado al desarchivar registros antiguos sin previous_status
FALLBACK_UNARCHIVE_STATUS = TenderStatus.CLOSED


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _attachments_row(attachments: List[UploadedAttachment]) -> List[Dict[str, Any]]:
    return [a.model_dump(mode="json") for a in attachments]


class TenderService:
    """Lógica de negocio de licitaciones. Único que escribe tender.status."""

    def __init__(
        self,
        repository,
        bid_service: BidService,
        categories_repository=None,
        resolver: Optional[CategoryResolver] = None,
        clock: Clock = utc_now,
        upload_service: Optional[UploadService] = None,
    ) -> None:
        self._repo = repository
        self._bids = bid_service
        self._categories = categories_repository
        self._resolver = resolver or CategoryResolver()
        self._clock = clock
        self._uploads = upload_service

    # ----- Consultas -----

    def managed_categories(self) -> List[Category]:
        if self._categories is None:
            return []
        return [Category.model_validate(r) for r in self._categories.list_categories()]

    def list_tenders(
        self,
        status: Optional[TenderStatus] = None,
        category: Optional[str] = None,
        archived: Optional[bool] = None,
        created_by: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Tender], int]:
        """Lista licitaciones con filtros opcionales y paginación."""
        items, total = self._repo.list_tenders(
            status=status.value if status else None,
            category=category,
            archived=archived,
            created_by=created_by,
            page=page,
            limit=limit,
        )
        return [tender_from_row(r) for r in items], total

    def get_tender(self, tender_id: int) -> Tender:
        """Detalle de licitación. Lanza NotFoundError si no existe."""
        return load_tender(self._repo, tender_id)

    def category_label(self, tender: Any, managed: Optional[List[Category]] = None) -> str:
        """Categoría visible única (CategoryResolver)."""
        if managed is None:
            managed = self.managed_categories()
        return self._resolver.resolve(tender, managed)

    def present(self, tender: Tender, managed: Optional[List[Category]] = None) -> Dict[str, Any]:
        """Licitación serializada con category_label para la tabla del panel."""
        return {**tender.model_dump(mode="json"), "category_label": self.category_label(tender, managed)}

    def list_bids(self, tender_id: int) -> List[Bid]:
        """Pujas de la licitación, sea cual sea su estado (también archivada)."""
        self.get_tender(tender_id)
        return self._bids.list_tender_bids(tender_id)

    def get_tender_stats(self, tender_id: int) -> TenderStats:
        self.get_tender(tender_id)
        return self._bids.bid_stats(tender_id)

    # ----- Validaciones -----

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _require_manager(self, user: CurrentUser, tender: Optional[Tender] = None) -> None:
        if not can_manage_tenders(user.role):
            raise AuthorizationError("Solo administradores o compradores gestionan licitaciones.")
        if tender is not None and not is_admin(user.role) and tender.created_by != user.user_id:
            raise AuthorizationError("Solo el comprador que publicó la licitación puede gestionarla.")

    @staticmethod
    def _validate_title(title: Optional[str]) -> str:
        text = (title or "").strip()
        if not text:
            raise ValidationError("El título es obligatorio.", field="title")
        if not TITLE_MIN_LENGTH <= len(text) <= TITLE_MAX_LENGTH:
            raise ValidationError(
                f"El título debe tener entre {TITLE_MIN_LENGTH} y {TITLE_MAX_LENGTH} caracteres.",
                field="title",
            )
        return text

    @staticmethod
    def _validate_description(description: Optional[str]) -> str:
        text = (description or "").strip()
        if not text:
            raise ValidationError("La descripción es obligatoria.", field="description")
        if len(text) < DESCRIPTION_MIN_LENGTH:
            raise ValidationError(
                f"La descripción debe tener al menos {DESCRIPTION_MIN_LENGTH} caracteres.",
                field="description",
            )
        return text

    @staticmethod
    def _validate_budget(budget_min: Optional[Decimal], budget_max: Optional[Decimal]) -> None:
        for field, value in (("budget_min", budget_min), ("budget_max", budget_max)):
            if value is not None and value <= 0:
                raise ValidationError("El presupuesto debe ser mayor que 0.", field=field)
        if budget_min is not None and budget_max is not None and budget_max < budget_min:
            raise ValidationError("El presupuesto máximo no puede ser menor que el mínimo.", field="budget_max")

    def _validate_deadline(self, deadline: Optional[datetime]) -> datetime:
        if deadline is None:
            raise ValidationError("La fecha límite es obligatoria.", field="deadline")
        deadline = ensure_utc(deadline)
        if deadline <= self._now():
            raise ValidationError("La fecha límite debe ser futura.", field="deadline")
        return deadline

    def _resolve_categories(self, names: Optional[List[str]], assigned: Optional[List[str]] = None) -> List[str]:
        """
        Nombres canónicos a guardar. Las ya asignadas se conservan aunque su
        categoría gestionada esté inactiva; las nuevas deben ser asignables.
        """
        cleaned = [n.strip() for n in (names or []) if isinstance(n, str) and n.strip()]
        if not cleaned:
            raise ValidationError("Selecciona al menos una categoría.", field="categories")
        assigned_by_key = {text_key(n): n for n in (assigned or [])}
        managed = self.managed_categories()
        result: List[str] = []
        for name in cleaned:
            canonical = assigned_by_key.get(text_key(name)) or self._resolver.canonical_name(name, managed)
            if canonical is None:
                raise ValidationError(f"Categoría {name!r} no válida o inactiva.", field="categories")
            if text_key(canonical) not in {text_key(r) for r in result}:
                result.append(canonical)
        return result

    def _write(self, tender: Tender, data: Dict[str, Any]) -> Tender:
        """Escribe solo si el status sigue siendo el leído."""
        data = {**data, "updated_at": self._now().isoformat()}
        row = self._repo.update_with_status_check(tender.id, data, tender.status.value)
        if not row:
            raise ConcurrentModificationError(
                "Conflicto de concurrencia: el estado de la licitación cambió. Recarga y vuelve a intentar."
            )
        return tender_from_row(row)

    # ----- Ciclo de vida -----

    def create_tender(self, payload: TenderCreate, user: CurrentUser) -> Tender:
        """Crea licitación en draft u open según payload.status."""
        self._require_manager(user)
        title = self._validate_title(payload.title)
        description = self._validate_description(payload.description)
        categories = self._resolve_categories(payload.categories)
        self._validate_budget(payload.budget_min, payload.budget_max)
        deadline = self._validate_deadline(payload.deadline)
        now = self._now().isoformat()
        row = self._repo.create({
            "title": title,
            "description": description,
            "categories": categories,
            "budget_min": _money(payload.budget_min),
            "budget_max": _money(payload.budget_max),
            "deadline": deadline.isoformat(),
            "attachments": _attachments_row(payload.attachments),
            "status": payload.status,
            "previous_status": None,
            "created_by": user.user_id,
            "created_at": now,
            "updated_at": now,
        })
        tender = tender_from_row(row)
        logger.info("Licitación %s creada (%s) por %s", tender.id, tender.status.value, user.user_id)
        return tender

    def update_tender(self, tender_id: int, payload: TenderUpdate, user: CurrentUser) -> Tender:
        """
        Actualización parcial. status solo entre draft ↔ open ↔ closed;
        archivar/desarchivar va por archive_tender/unarchive_tender.
        """
        tender = self.get_tender(tender_id)
        self._require_manager(user, tender)
        if tender.status == TenderStatus.ARCHIVED:
            raise StateConflictError("La licitación está archivada; desarchívala antes de editarla.")

        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return tender

        target = tender.status
        if changes.get("status") is not None:
            target = TenderStatus(changes.pop("status"))
            if target == TenderStatus.ARCHIVED:
                raise StateConflictError("Para archivar usa la operación archive.")
            if target != tender.status and target not in TENDER_DIRECT_TRANSITIONS[tender.status]:
                raise StateConflictError(
                    f"No se puede pasar una licitación {tender.status.value} a {target.value}."
                )
        else:
            changes.pop("status", None)

        if changes and tender.status == TenderStatus.CLOSED and target == TenderStatus.CLOSED:
            raise StateConflictError("La licitación está cerrada; reábrela para editarla.")

        data: Dict[str, Any] = {}
        if target != tender.status:
            data["status"] = target.value
        if "title" in changes:
            data["title"] = self._validate_title(changes["title"])
        if "description" in changes:
            data["description"] = self._validate_description(changes["description"])
        if "categories" in changes:
            data["categories"] = self._resolve_categories(changes["categories"], assigned=tender.categories)
        if "budget_min" in changes or "budget_max" in changes:
            budget_min = changes.get("budget_min", tender.budget_min)
            budget_max = changes.get("budget_max", tender.budget_max)
            self._validate_budget(budget_min, budget_max)
            if "budget_min" in changes:
                data["budget_min"] = _money(budget_min)
            if "budget_max" in changes:
                data["budget_max"] = _money(budget_max)
        deadline = changes.get("deadline")
        if "deadline" in changes and (deadline is None or ensure_utc(deadline) != ensure_utc(tender.deadline)):
            data["deadline"] = self._validate_deadline(deadline).isoformat()
        removed_files: List[str] = []
        if "attachments" in changes:
            attachments = payload.attachments or []
            data["attachments"] = _attachments_row(attachments)
            kept = {a.id for a in attachments}
            removed_files = [a.id for a in tender.attachments if a.id not in kept]

        if not data:
            return tender
        updated = self._write(tender, data)
        discard_files(self._uploads, removed_files)
        logger.info("Licitación %s actualizada por %s: %s", tender_id, user.user_id, sorted(data))
        return updated

    # ----- Pliegos -----

    def list_files(self, tender_id: int, user: CurrentUser) -> List[UploadedAttachment]:
        """
        Pliegos de la licitación. Quien la gestiona los ve siempre; el resto
        solo mientras está abierta y antes de la fecha límite.
        """
        tender = self.get_tender(tender_id)
        if can_manage_tenders(user.role) and (is_admin(user.role) or tender.created_by == user.user_id):
            return tender.attachments
        if tender.status != TenderStatus.OPEN or ensure_utc(tender.deadline) < self._now():
            raise AuthorizationError("Los ficheros de la licitación no están disponibles públicamente.")
        return tender.attachments

    def ensure_files_editable(self, tender_id: int, user: CurrentUser) -> Tender:
        """Gestor de la licitación y licitación ni archivada ni cerrada."""
        tender = self.get_tender(tender_id)
        self._require_manager(user, tender)
        if tender.status in (TenderStatus.ARCHIVED, TenderStatus.CLOSED):
            raise StateConflictError(
                f"La licitación está {tender.status.value}; no admite cambios en sus ficheros."
            )
        return tender

    def add_files(self, tender_id: int, user: CurrentUser, attachments: List[UploadedAttachment]) -> Tender:
        """Añade pliegos recién subidos a la lista guardada en este momento."""
        tender = self.ensure_files_editable(tender_id, user)
        if not attachments:
            return tender
        known = {a.id for a in tender.attachments}
        merged = tender.attachments + [a for a in attachments if a.id not in known]
        updated = self._write(tender, {"attachments": _attachments_row(merged)})
        logger.info("Licitación %s: %d ficheros añadidos por %s", tender_id, len(attachments), user.user_id)
        return updated

    def archive_tender(self, tender_id: int, user: CurrentUser) -> Tender:
        """Archiva recordando el estado activo previo. Las pujas no se tocan."""
        tender = self.get_tender(tender_id)
        self._require_manager(user, tender)
        if tender.status == TenderStatus.ARCHIVED:
            raise StateConflictError("La licitación ya está archivada.")
        updated = self._write(tender, {
            "status": TenderStatus.ARCHIVED.value,
            "previous_status": tender.status.value,
        })
        logger.info("Licitación %s archivada (antes %s)", tender_id, tender.status.value)
        return updated

    def unarchive_tender(self, tender_id: int, user: CurrentUser) -> Tender:
        """Restaura el estado previo al archivado (no siempre open)."""
        tender = self.get_tender(tender_id)
        self._require_manager(user, tender)
        if tender.status != TenderStatus.ARCHIVED:
            raise StateConflictError("La licitación no está archivada.")
        restored = tender.previous_status if tender.previous_status in ACTIVE_TENDER_STATUSES else FALLBACK_UNARCHIVE_STATUS
        updated = self._write(tender, {"status": restored.value, "previous_status": None})
        logger.info("Licitación %s desarchivada → %s", tender_id, restored.value)
        return updated

    def delete_preview(self, tender_id: int, user: CurrentUser) -> DeletePreview:
        """Recuento de pujas que se perderán; el cliente lo muestra y lo devuelve como confirmación."""
        tender = self.get_tender(tender_id)
        self._require_manager(user, tender)
        return DeletePreview(tender_id=tender_id, bid_count=self._bids.count_bids(tender_id))

    def delete_tender(self, tender_id: int, user: CurrentUser, confirm_bid_count: int) -> DeleteResult:
        """
        Borrado definitivo de la licitación y todas sus pujas y adjuntos.

        confirm_bid_count debe coincidir con el recuento actual; el recuento y
        el borrado se ejecutan como una sola operación en el almacenamiento.
        """
        tender = self.get_tender(tender_id)
        self._require_manager(user, tender)
        current = self._bids.count_bids(tender_id)
        if confirm_bid_count != current:
            raise StateConflictError(
                f"La licitación tiene ahora {current} pujas (confirmadas {confirm_bid_count}); confirma de nuevo."
            )
        files = [a.id for bid in self._bids.list_tender_bids(tender_id) for a in bid.attachments]
        files += [a.id for a in tender.attachments]
        deleted = self._repo.delete_cascade(tender_id, current)
        if deleted is None:
            raise ConcurrentModificationError(
                "Las pujas de la licitación cambiaron durante el borrado; no se ha eliminado nada."
            )
        discard_files(self._uploads, files)
        logger.info(
            "Licitación %s eliminada por %s con %d pujas y %d ficheros", tender_id, user.user_id, deleted, len(files)
        )
        return DeleteResult(tender_id=tender_id, deleted_bids=deleted)
