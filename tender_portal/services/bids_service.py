"""
Servicio de pujas: máquina de estados y elegibilidad de edición.

pending → {accepted, rejected, withdrawn}; los tres destinos son terminales y
ninguna transición vuelve a pending. BidService es el único que escribe
bid.status; las licitaciones solo se leen. Cada transición se escribe con
comprobación del estado leído y se notifica a los AttachmentRegistry
asociados a la puja.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from tender_portal.config import MIN_PROPOSAL_LENGTH
from tender_portal.models import (
    BID_TRANSITIONS,
    AttachmentOwnerKind,
    Bid,
    BidCreate,
    BidEligibility,
    BidHistoryEntry,
    BidStatus,
    BidUpdate,
    CurrentUser,
    MonthlyBidStats,
    SubmitResult,
    Tender,
    TenderStats,
    TenderStatus,
    UploadedAttachment,
    VendorBidStats,
)
from tender_portal.roles import can_bid, can_review_bids, is_admin
from tender_portal.services.attachment_registry import AttachmentRegistry
from tender_portal.services.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    DeadlineExpiredError,
    StateConflictError,
    ValidationError,
)
from tender_portal.services.records import bid_from_row, load_bid, load_tender
from tender_portal.services.storage_service import UploadService, discard_files
from tender_portal.utils import Clock, ensure_utc, fmt_date, utc_now

logger = logging.getLogger(__name__)

# Meses incluidos en el rendimiento mensual de vendor_stats
MONTHLY_STATS_MONTHS = 12

# Acción de historial por estado destino
TRANSITION_ACTIONS = {
    BidStatus.ACCEPTED: "accepted",
    BidStatus.REJECTED: "rejected",
    BidStatus.WITHDRAWN: "withdrawn",
}


def _average(amounts: List[Decimal]) -> Optional[Decimal]:
    if not amounts:
        return None
    return (sum(amounts, Decimal("0")) / len(amounts)).quantize(Decimal("0.01"))


class BidService:
    """Lógica de negocio de pujas. Repositorios inyectados; reloj inyectable."""

    def __init__(
        self,
        repository,
        tenders_repository,
        history_repository=None,
        clock: Clock = utc_now,
        min_proposal_length: int = MIN_PROPOSAL_LENGTH,
    ) -> None:
        self._repo = repository
        self._tenders = tenders_repository
        self._history = history_repository
        self._clock = clock
        self._min_proposal_length = min_proposal_length
        self._registries: Dict[str, List[AttachmentRegistry]] = {}

    # ----- Consultas -----

    def get_bid(self, bid_id: int) -> Bid:
        """Puja por id. Lanza NotFoundError si no existe."""
        return load_bid(self._repo, bid_id)

    def view_bid(self, bid_id: int, user: CurrentUser) -> Bid:
        """Puja visible para admin, el proveedor que la presentó o el comprador dueño de la licitación."""
        bid = self.get_bid(bid_id)
        if is_admin(user.role) or bid.vendor_id == user.user_id:
            return bid
        tender = load_tender(self._tenders, bid.tender_id)
        if can_review_bids(user.role) and tender.created_by == user.user_id:
            return bid
        raise AuthorizationError("No tienes permiso para ver esta puja.")

    def list_bids(
        self,
        tender_id: Optional[int] = None,
        vendor_id: Optional[str] = None,
        status: Optional[BidStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Bid], int]:
        items, total = self._repo.list_bids(
            tender_id=tender_id,
            vendor_id=vendor_id,
            status=status.value if status else None,
            page=page,
            limit=limit,
        )
        return [bid_from_row(r) for r in items], total

    def list_tender_bids(self, tender_id: int) -> List[Bid]:
        """Todas las pujas de una licitación (cualquier estado)."""
        return [bid_from_row(r) for r in self._repo.list_for_tender(tender_id)]

    def count_bids(self, tender_id: int) -> int:
        """Recuento usado por TenderService antes del borrado en cascada."""
        return self._repo.count_for_tender(tender_id)

    def bid_stats(self, tender_id: int) -> TenderStats:
        """Recuento por estado e importes mínimo/máximo/medio sin contar retiradas."""
        bids = self.list_tender_bids(tender_id)
        by_status: Dict[str, int] = {s.value: 0 for s in BidStatus}
        for bid in bids:
            by_status[bid.status.value] += 1
        amounts = [b.amount for b in bids if b.status != BidStatus.WITHDRAWN]
        return TenderStats(
            tender_id=tender_id,
            total_bids=len(bids),
            by_status=by_status,
            lowest_amount=min(amounts) if amounts else None,
            highest_amount=max(amounts) if amounts else None,
            average_amount=_average(amounts),
        )

    def get_bid_history(self, bid_id: int, user: CurrentUser) -> List[BidHistoryEntry]:
        self.view_bid(bid_id, user)
        if self._history is None:
            return []
        return [BidHistoryEntry.model_validate(r) for r in self._history.list_for_bid(bid_id)]

    def check_eligibility(self, tender_id: int, user: CurrentUser) -> BidEligibility:
        """Mismas reglas que submit, pero acumulando motivos en lugar de lanzar."""
        tender = load_tender(self._tenders, tender_id)
        reasons: List[str] = []
        if not can_bid(user.role):
            reasons.append("Solo los proveedores pueden presentar pujas.")
        for check in (self._ensure_open_for_bidding, self._ensure_before_deadline):
            try:
                check(tender)
            except StateConflictError as e:
                if e.message not in reasons:
                    reasons.append(e.message)

        existing = [bid_from_row(r) for r in self._repo.find_by_tender_and_vendor(tender_id, user.user_id)]
        current = next((b for b in existing if b.status == BidStatus.PENDING), existing[0] if existing else None)
        if current is not None and current.status != BidStatus.PENDING:
            reasons.append(f"Ya tienes una puja {current.status.value} en esta licitación.")
        return BidEligibility(
            tender_id=tender_id,
            can_bid=not reasons,
            reasons=reasons,
            tender_status=tender.status,
            deadline=tender.deadline,
            has_existing_bid=current is not None,
            existing_bid_id=current.id if current else None,
            existing_bid_status=current.status if current else None,
        )

    def vendor_stats(self, user: CurrentUser, vendor_id: Optional[str] = None) -> VendorBidStats:
        """
        Rendimiento de un proveedor. El proveedor ve el suyo; un admin puede
        pedir el de cualquiera con vendor_id.
        """
        if is_admin(user.role) and vendor_id:
            target = vendor_id
        elif can_bid(user.role):
            target = user.user_id
        else:
            raise AuthorizationError("Solo los proveedores pueden ver sus estadísticas de pujas.")

        bids = [bid_from_row(r) for r in self._repo.list_for_vendor(target)]
        by_status: Dict[str, int] = {s.value: 0 for s in BidStatus}
        for bid in bids:
            by_status[bid.status.value] += 1
        won = [b for b in bids if b.status == BidStatus.ACCEPTED]
        decided = len(won) + by_status[BidStatus.REJECTED.value]

        months: Dict[str, List[Bid]] = {}
        for bid in bids:
            if bid.submitted_at is not None:
                months.setdefault(ensure_utc(bid.submitted_at).strftime("%Y-%m"), []).append(bid)
        monthly = [
            MonthlyBidStats(
                month=month,
                total_bids=len(items),
                won_bids=sum(1 for b in items if b.status == BidStatus.ACCEPTED),
                average_amount=_average([b.amount for b in items]),
            )
            for month, items in sorted(months.items(), reverse=True)[:MONTHLY_STATS_MONTHS]
        ]
        return VendorBidStats(
            vendor_id=target,
            total_bids=len(bids),
            by_status=by_status,
            won_amount=sum((b.amount for b in won), Decimal("0")),
            average_amount=_average([b.amount for b in bids]),
            win_rate=round(len(won) / decided, 4) if decided else 0.0,
            monthly=monthly,
        )

    # ----- Observadores de adjuntos -----

    def attach_registry(self, bid_id: int, registry: AttachmentRegistry) -> None:
        """Liga el registro a la puja; recibirá cada transición de estado."""
        if registry.owner.kind is not AttachmentOwnerKind.BID:
            raise ValidationError("Solo se pueden asociar adjuntos de puja.", field="attachments")
        registry.bind(bid_id)
        watchers = self._registries.setdefault(str(bid_id), [])
        if registry not in watchers:
            watchers.append(registry)

    def _notify(self, bid: Bid) -> None:
        for registry in self._registries.get(str(bid.id), []):
            registry.on_bid_status_changed(bid)

    # ----- Validaciones -----

    def _now(self):
        return ensure_utc(self._clock())

    def _ensure_before_deadline(self, tender: Tender) -> None:
        if self._now() > ensure_utc(tender.deadline):
            raise DeadlineExpiredError(
                f"La licitación venció el {fmt_date(tender.deadline)}; ya no admite cambios en pujas."
            )

    def _ensure_open_for_bidding(self, tender: Tender) -> None:
        if tender.status != TenderStatus.OPEN:
            raise StateConflictError(f"La licitación no admite pujas (estado {tender.status.value}).")
        self._ensure_before_deadline(tender)

    def _validate_amount(self, amount: Optional[Decimal], required: bool) -> None:
        if amount is None:
            if required:
                raise ValidationError("El importe es obligatorio.", field="amount")
            return
        if amount <= 0:
            raise ValidationError("El importe debe ser mayor que 0.", field="amount")

    def _validate_proposal(self, proposal: Optional[str], required: bool) -> None:
        if proposal is None and not required:
            return
        text = (proposal or "").strip()
        if not text:
            raise ValidationError("La propuesta es obligatoria.", field="proposal")
        if len(text) < self._min_proposal_length:
            raise ValidationError(
                f"La propuesta debe tener al menos {self._min_proposal_length} caracteres "
                f"({len(text)} actuales).",
                field="proposal",
            )

    @staticmethod
    def _attachments_from(
        attachments: Optional[List[UploadedAttachment]],
        registry: Optional[AttachmentRegistry],
    ) -> Optional[List[UploadedAttachment]]:
        if registry is None:
            return attachments
        if registry.has_pending_uploads:
            raise ValidationError("Hay adjuntos subiéndose todavía; espera a que terminen.", field="attachments")
        return registry.uploaded()

    def _require_vendor_owner(self, bid: Bid, user: CurrentUser) -> None:
        if not can_bid(user.role) or bid.vendor_id != user.user_id:
            raise AuthorizationError("Solo el proveedor que presentó la puja puede modificarla.")

    def _require_reviewer(self, tender: Tender, user: CurrentUser) -> None:
        if not can_review_bids(user.role):
            raise AuthorizationError("Solo administradores o compradores pueden resolver pujas.")
        if not is_admin(user.role) and tender.created_by != user.user_id:
            raise AuthorizationError("Solo el comprador que publicó la licitación puede resolver sus pujas.")

    # ----- Escritura -----

    def _record(
        self,
        bid: Bid,
        action: str,
        user: CurrentUser,
        previous_status: Optional[BidStatus],
        reason: Optional[str] = None,
    ) -> None:
        if self._history is None:
            return
        self._history.add_entry({
            "bid_id": bid.id,
            "action": action,
            "actor_id": user.user_id,
            "previous_status": previous_status.value if previous_status else None,
            "new_status": bid.status.value,
            "reason": reason,
            "created_at": self._now().isoformat(),
        })

    def _write_pending(self, bid: Bid, data: Dict[str, Any]) -> Bid:
        """Escribe campos de una puja solo si sigue en pending."""
        data = {**data, "updated_at": self._now().isoformat()}
        row = self._repo.update_with_status_check(bid.id, data, BidStatus.PENDING.value)
        if not row:
            raise ConcurrentModificationError(
                "Conflicto de concurrencia: el estado de la puja cambió. Recarga y vuelve a intentar."
            )
        return bid_from_row(row)

    @staticmethod
    def _fields_row(
        amount: Optional[Decimal],
        proposal: Optional[str],
        delivery_timeline: Optional[str],
        attachments: Optional[List[UploadedAttachment]],
    ) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        if amount is not None:
            row["amount"] = float(amount)
        if proposal is not None:
            row["proposal"] = proposal.strip()
        if delivery_timeline is not None:
            row["delivery_timeline"] = delivery_timeline.strip() or None
        if attachments is not None:
            row["attachments"] = [a.model_dump(mode="json") for a in attachments]
        return row

    def submit(
        self,
        tender_id: int,
        user: CurrentUser,
        payload: BidCreate,
        registry: Optional[AttachmentRegistry] = None,
    ) -> SubmitResult:
        """
        Presenta una puja. Si el proveedor ya tiene una puja pending en la
        licitación se actualiza en sitio (created=False) en lugar de duplicarla.
        """
        if not can_bid(user.role):
            raise AuthorizationError("Solo los proveedores pueden presentar pujas.")
        tender = load_tender(self._tenders, tender_id)
        self._validate_amount(payload.amount, required=True)
        self._validate_proposal(payload.proposal, required=True)
        attachments = self._attachments_from(payload.attachments, registry) or []
        self._ensure_open_for_bidding(tender)

        existing = [bid_from_row(r) for r in self._repo.find_by_tender_and_vendor(tender_id, user.user_id)]
        pending = next((b for b in existing if b.status == BidStatus.PENDING), None)
        fields = self._fields_row(payload.amount, payload.proposal, payload.delivery_timeline, attachments)

        if pending is not None:
            if registry is not None:
                registry.bind(pending.id)
            bid = self._write_pending(pending, fields)
            self._record(bid, "updated", user, BidStatus.PENDING)
            created = False
        elif existing:
            raise StateConflictError(
                f"Ya tienes una puja {existing[0].status.value} en esta licitación; no se puede volver a presentar."
            )
        else:
            now = self._now().isoformat()
            row = self._repo.create({
                **fields,
                "tender_id": tender_id,
                "vendor_id": user.user_id,
                "status": BidStatus.PENDING.value,
                "submitted_at": now,
                "updated_at": now,
            })
            bid = bid_from_row(row)
            self._record(bid, "submitted", user, None)
            created = True

        if registry is not None:
            self.attach_registry(bid.id, registry)
        logger.info(
            "Puja %s %s: licitación %s, proveedor %s",
            bid.id, "creada" if created else "actualizada", tender_id, user.user_id,
        )
        return SubmitResult(bid=bid, created=created)

    def ensure_editable(self, bid_id: int, user: CurrentUser) -> Bid:
        """
        Comprueba que el usuario puede modificar la puja ahora: es su
        proveedor, sigue en pending y la licitación no ha vencido.
        """
        bid = self.get_bid(bid_id)
        self._require_vendor_owner(bid, user)
        if bid.status != BidStatus.PENDING:
            logger.warning("Edición rechazada: puja %s en estado %s", bid.id, bid.status.value)
            raise StateConflictError(f"No se puede editar una puja {bid.status.value}.")
        self._ensure_before_deadline(load_tender(self._tenders, bid.tender_id))
        return bid

    def add_attachments(self, bid_id: int, user: CurrentUser, attachments: List[UploadedAttachment]) -> Bid:
        """
        Añade adjuntos recién subidos a los que la puja tiene guardados en
        este momento, no a los leídos antes de la subida.
        """
        bid = self.ensure_editable(bid_id, user)
        if not attachments:
            return bid
        known = {a.id for a in bid.attachments}
        merged = bid.attachments + [a for a in attachments if a.id not in known]
        updated = self._write_pending(bid, self._fields_row(None, None, None, merged))
        self._record(updated, "attachment_added", user, BidStatus.PENDING, reason=", ".join(a.name for a in attachments))
        logger.info("Puja %s: %d adjuntos añadidos por %s", bid.id, len(attachments), user.user_id)
        return updated

    def update(
        self,
        bid_id: int,
        user: CurrentUser,
        payload: BidUpdate,
        registry: Optional[AttachmentRegistry] = None,
    ) -> Bid:
        """Edita una puja. Solo en pending y antes de la fecha límite."""
        bid = self.ensure_editable(bid_id, user)
        self._validate_amount(payload.amount, required=False)
        self._validate_proposal(payload.proposal, required=False)
        if registry is not None:
            registry.bind(bid.id)
        attachments = self._attachments_from(payload.attachments, registry)
        fields = self._fields_row(payload.amount, payload.proposal, payload.delivery_timeline, attachments)
        if not fields:
            return bid
        updated = self._write_pending(bid, fields)
        self._record(updated, "updated", user, BidStatus.PENDING)
        if registry is not None:
            self.attach_registry(updated.id, registry)
        logger.info("Puja %s editada por %s", bid.id, user.user_id)
        return updated

    def remove_attachment(
        self,
        bid_id: int,
        attachment_id: str,
        user: CurrentUser,
        upload_service: Optional[UploadService] = None,
    ) -> Bid:
        """Quita un adjunto subido de una puja pending y borra el fichero después."""
        bid = self.get_bid(bid_id)
        self._require_vendor_owner(bid, user)
        registry = AttachmentRegistry.for_bid(bid)
        removed = registry.remove(attachment_id)
        updated = self._write_pending(bid, self._fields_row(None, None, None, registry.uploaded()))
        self._record(updated, "attachment_removed", user, BidStatus.PENDING, reason=removed.name)
        discard_files(upload_service, [removed.id])
        return updated

    def _transition(
        self,
        bid: Bid,
        target: BidStatus,
        user: CurrentUser,
        reason: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Bid:
        if target not in BID_TRANSITIONS[bid.status]:
            logger.warning("Transición rechazada: puja %s %s → %s", bid.id, bid.status.value, target.value)
            raise StateConflictError(f"No se puede pasar una puja {bid.status.value} a {target.value}.")
        data = {"status": target.value, "updated_at": self._now().isoformat(), **(extra or {})}
        row = self._repo.update_with_status_check(bid.id, data, bid.status.value)
        if not row:
            raise ConcurrentModificationError(
                "Conflicto de concurrencia: el estado de la puja cambió. Recarga y vuelve a intentar."
            )
        updated = bid_from_row(row)
        self._record(updated, TRANSITION_ACTIONS[target], user, bid.status, reason)
        self._notify(updated)
        logger.info("Puja %s: %s → %s por %s", bid.id, bid.status.value, target.value, user.user_id)
        return updated

    def accept(self, bid_id: int, user: CurrentUser) -> Bid:
        bid = self.get_bid(bid_id)
        self._require_reviewer(load_tender(self._tenders, bid.tender_id), user)
        return self._transition(bid, BidStatus.ACCEPTED, user)

    def reject(self, bid_id: int, user: CurrentUser, reason: Optional[str] = None) -> Bid:
        bid = self.get_bid(bid_id)
        self._require_reviewer(load_tender(self._tenders, bid.tender_id), user)
        reason = (reason or "").strip() or None
        return self._transition(bid, BidStatus.REJECTED, user, reason, {"rejection_reason": reason})

    def withdraw(self, bid_id: int, user: CurrentUser, reason: Optional[str] = None) -> Bid:
        """Retirada por el proveedor. Terminal: no se puede reactivar ni editar."""
        bid = self.get_bid(bid_id)
        self._require_vendor_owner(bid, user)
        reason = (reason or "").strip() or None
        return self._transition(bid, BidStatus.WITHDRAWN, user, reason, {"withdrawal_reason": reason})

    def change_status(
        self,
        bid_id: int,
        target: BidStatus,
        user: CurrentUser,
        reason: Optional[str] = None,
    ) -> Bid:
        """Punto único para POST /bids/{id}/change-status."""
        if target == BidStatus.ACCEPTED:
            return self.accept(bid_id, user)
        if target == BidStatus.REJECTED:
            return self.reject(bid_id, user, reason)
        if target == BidStatus.WITHDRAWN:
            return self.withdraw(bid_id, user, reason)
        bid = self.get_bid(bid_id)
        raise StateConflictError(f"No se puede pasar una puja {bid.status.value} a {target.value}.")
