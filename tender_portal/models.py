from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


# ----- Estados de licitación -----


class TenderStatus(str, Enum):
    """Estados de una licitación. ARCHIVED solo se alcanza vía archive/unarchive."""

    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


# Estados activos (no archivados) entre los que se puede mover con update
ACTIVE_TENDER_STATUSES = {TenderStatus.DRAFT, TenderStatus.OPEN, TenderStatus.CLOSED}

# Transiciones directas permitidas por update: draft ↔ open ↔ closed
TENDER_DIRECT_TRANSITIONS: Dict[TenderStatus, set] = {
    TenderStatus.DRAFT: {TenderStatus.OPEN},
    TenderStatus.OPEN: {TenderStatus.DRAFT, TenderStatus.CLOSED},
    TenderStatus.CLOSED: {TenderStatus.OPEN},
    TenderStatus.ARCHIVED: set(),
}


# ----- Estados de puja -----


class BidStatus(str, Enum):
    """Estados de una puja. Solo PENDING tiene transiciones de salida."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


BID_TRANSITIONS: Dict[BidStatus, set] = {
    BidStatus.PENDING: {BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN},
    BidStatus.ACCEPTED: set(),
    BidStatus.REJECTED: set(),
    BidStatus.WITHDRAWN: set(),
}

TERMINAL_BID_STATUSES = {s for s, targets in BID_TRANSITIONS.items() if not targets}


# ----- Auth -----


class CurrentUser(BaseModel):
    """
    Usuario autenticado inyectado por get_current_user.
    Usado internamente en dependencias, routers y servicios (comprobación de rol).
    """

    user_id: str = Field(..., description="UUID del usuario (auth.users.id).")
    email: str = Field("", description="Correo electrónico.")
    role: str = Field(default="vendor", description="Rol: admin, buyer o vendor.")


# ----- Categorías -----


class Category(BaseModel):
    """Categoría gestionada por administradores (tabla categories)."""

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True


class LegacyCategory(BaseModel):
    """Entrada de la tabla heredada value/label. id opcional para búsquedas por category_id."""

    value: str
    label: str
    id: Optional[int] = None


class CategoryCreate(BaseModel):
    """Payload para crear una categoría gestionada."""

    name: str = Field(..., description="Nombre visible; único sin distinguir mayúsculas.")
    description: Optional[str] = Field(None, description="Descripción opcional.")


class CategoryActiveChange(BaseModel):
    """Payload para activar/desactivar una categoría."""

    is_active: bool


# ----- Adjuntos -----


class AttachmentOwnerKind(str, Enum):
    """Entidad a la que pertenece un lote de adjuntos."""

    BID = "bid"
    TENDER_BATCH = "tender_batch"

    @property
    def storage_prefix(self) -> str:
        return "bids" if self is AttachmentOwnerKind.BID else "tenders"


class AttachmentOwner(BaseModel):
    """Dueño de un lote de adjuntos. owner_id None = puja aún no creada."""

    model_config = ConfigDict(frozen=True)

    kind: AttachmentOwnerKind
    owner_id: Optional[str] = None


class FileUpload(BaseModel):
    """Fichero seleccionado por el usuario, antes de subirlo."""

    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class UploadResult(BaseModel):
    """Respuesta del servicio de subida: { success, filename, size, type }."""

    success: bool
    filename: Optional[str] = None
    size: Optional[int] = None
    type: Optional[str] = None
    message: Optional[str] = None


class UploadingAttachment(BaseModel):
    """Placeholder visible al instante; todavía sin id de servidor."""

    status: Literal["uploading"] = "uploading"
    temp_id: str
    name: str
    size: int = 0
    mime_type: Optional[str] = None


class UploadedAttachment(BaseModel):
    """Adjunto confirmado por el servidor. id = nombre de fichero en el almacenamiento."""

    status: Literal["uploaded"] = "uploaded"
    id: str
    name: str
    size: int = 0
    mime_type: Optional[str] = None


class FailedAttachment(BaseModel):
    """Resultado de una subida fallida. Nunca queda en la lista del registro."""

    status: Literal["failed"] = "failed"
    temp_id: str
    name: str
    error: str


Attachment = Annotated[
    Union[UploadingAttachment, UploadedAttachment, FailedAttachment],
    Field(discriminator="status"),
]


class BatchUploadResult(BaseModel):
    """Resultado de una subida múltiple: recuentos, no un veredicto único."""

    success_count: int
    failure_count: int
    attachments: List[UploadedAttachment] = Field(default_factory=list)
    failures: List[FailedAttachment] = Field(default_factory=list)


# ----- Licitaciones -----


class Tender(BaseModel):
    """
    Licitación tal como la devuelve el almacenamiento.

    is_archived no se persiste: se deriva de status. Si un registro trae
    is_archived en desacuerdo con status se rechaza (estado inválido).
    """

    id: int
    title: str
    description: str = ""
    categories: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    category_id: Optional[int] = None
    display_category: Optional[str] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    deadline: datetime
    attachments: List[UploadedAttachment] = Field(default_factory=list)
    status: TenderStatus = TenderStatus.DRAFT
    previous_status: Optional[TenderStatus] = Field(
        None, description="Estado activo anterior al archivado; lo restaura unarchive."
    )
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def rechazar_archivado_inconsistente(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("is_archived") is None:
            return data
        status = data.get("status")
        status_value = status.value if isinstance(status, TenderStatus) else status
        if bool(data["is_archived"]) != (status_value == TenderStatus.ARCHIVED.value):
            raise ValueError(
                f"Estado inconsistente: status={status_value!r} con is_archived={data['is_archived']!r}."
            )
        return {k: v for k, v in data.items() if k != "is_archived"}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_archived(self) -> bool:
        return self.status == TenderStatus.ARCHIVED


class TenderCreate(BaseModel):
    """Payload para crear una licitación. status inicial: draft u open según intención."""

    title: Optional[str] = Field(None, description="Título (5–255 caracteres).")
    description: Optional[str] = Field(None, description="Descripción (mínimo 10 caracteres).")
    categories: List[str] = Field(default_factory=list, description="Nombres de categoría (al menos uno).")
    budget_min: Optional[Decimal] = Field(None, description="Presupuesto mínimo.")
    budget_max: Optional[Decimal] = Field(None, description="Presupuesto máximo.")
    deadline: Optional[datetime] = Field(None, description="Fecha límite de presentación (futura).")
    attachments: List[UploadedAttachment] = Field(
        default_factory=list, description="Pliegos ya subidos con POST /uploads (owner_kind=tender_batch)."
    )
    status: Literal["draft", "open"] = Field("open", description="draft para guardar borrador, open para publicar.")


class TenderUpdate(BaseModel):
    """Payload para actualizar una licitación (campos opcionales)."""

    title: Optional[str] = None
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    deadline: Optional[datetime] = None
    attachments: Optional[List[UploadedAttachment]] = None
    status: Optional[TenderStatus] = None


class DeletePreview(BaseModel):
    """Recuento previo al borrado definitivo, para avisar al usuario."""

    tender_id: int
    bid_count: int


class DeleteResult(BaseModel):
    """Resultado del borrado en cascada."""

    tender_id: int
    deleted_bids: int


class TenderStats(BaseModel):
    """Estadísticas de pujas de una licitación (retiradas excluidas de los importes)."""

    tender_id: int
    total_bids: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    lowest_amount: Optional[Decimal] = None
    highest_amount: Optional[Decimal] = None
    average_amount: Optional[Decimal] = None


# ----- Pujas -----


class Bid(BaseModel):
    """Puja de un proveedor sobre una licitación."""

    id: int
    tender_id: int
    vendor_id: str
    amount: Decimal
    proposal: str
    delivery_timeline: Optional[str] = None
    attachments: List[UploadedAttachment] = Field(default_factory=list)
    status: BidStatus = BidStatus.PENDING
    submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    withdrawal_reason: Optional[str] = None
    rejection_reason: Optional[str] = None


class BidCreate(BaseModel):
    """Payload de presentación de puja. La validación de negocio la hace BidService."""

    amount: Optional[Decimal] = Field(None, description="Importe (> 0).")
    proposal: Optional[str] = Field(None, description="Propuesta técnica (mínimo 100 caracteres).")
    delivery_timeline: Optional[str] = Field(None, description="Plazo de entrega, texto libre.")
    attachments: List[UploadedAttachment] = Field(default_factory=list)


class BidUpdate(BaseModel):
    """Payload para editar una puja pendiente (campos opcionales)."""

    amount: Optional[Decimal] = None
    proposal: Optional[str] = None
    delivery_timeline: Optional[str] = None
    attachments: Optional[List[UploadedAttachment]] = None


class BidDecision(BaseModel):
    """Motivo opcional para rechazar o retirar."""

    reason: Optional[str] = None


class BidStatusChange(BaseModel):
    """Payload genérico de cambio de estado (POST /bids/{id}/change-status)."""

    status: BidStatus
    reason: Optional[str] = None


class SubmitResult(BaseModel):
    """Resultado de submit: created=False si se actualizó la puja pendiente existente."""

    bid: Bid
    created: bool


class BidEligibility(BaseModel):
    """
    Si el usuario puede pujar en la licitación y, si no, por qué.

    Una puja pending propia no impide pujar: se actualiza en sitio.
    """

    tender_id: int
    can_bid: bool
    reasons: List[str] = Field(default_factory=list)
    tender_status: TenderStatus
    deadline: datetime
    has_existing_bid: bool = False
    existing_bid_id: Optional[int] = None
    existing_bid_status: Optional[BidStatus] = None


class MonthlyBidStats(BaseModel):
    month: str
    total_bids: int = 0
    won_bids: int = 0
    average_amount: Optional[Decimal] = None


class VendorBidStats(BaseModel):
    """Rendimiento de un proveedor: recuentos, importes y últimos 12 meses."""

    vendor_id: str
    total_bids: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    won_amount: Decimal = Decimal("0")
    average_amount: Optional[Decimal] = None
    win_rate: float = Field(0.0, description="Aceptadas sobre resueltas (aceptadas + rechazadas).")
    monthly: List[MonthlyBidStats] = Field(default_factory=list)


class BidHistoryEntry(BaseModel):
    """Entrada del historial de auditoría de una puja."""

    id: Optional[int] = None
    bid_id: int
    action: str
    actor_id: Optional[str] = None
    previous_status: Optional[BidStatus] = None
    new_status: BidStatus
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


# ----- Respuestas (envoltorio del almacenamiento) -----


class Pagination(BaseModel):
    page: int
    limit: int
    total: int


class Envelope(BaseModel):
    """{ success, data, message? } como el resto de la API."""

    success: bool = True
    data: Any = None
    message: Optional[str] = None
