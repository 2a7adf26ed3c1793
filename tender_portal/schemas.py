"""
Esquemas Pydantic para la API y envoltorio de respuesta.
Reexporta desde tender_portal.models para mantener un único lugar de definición.
"""

from typing import Any, Iterable, Optional

from pydantic import BaseModel

from tender_portal.models import (
    BatchUploadResult,
    BidCreate,
    BidDecision,
    BidStatusChange,
    BidUpdate,
    CategoryActiveChange,
    CategoryCreate,
    CurrentUser,
    DeletePreview,
    DeleteResult,
    Envelope,
    Pagination,
    TenderCreate,
    TenderStats,
    TenderUpdate,
)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """{ success: true, data, message? }"""
    body = Envelope(data=_dump(data), message=message).model_dump()
    if body["message"] is None:
        del body["message"]
    return body


def paginated(items: Iterable[Any], page: int, limit: int, total: int) -> dict:
    """{ success, data: { items, pagination: { page, limit, total } } }"""
    return envelope({
        "items": [_dump(i) for i in items],
        "pagination": Pagination(page=page, limit=limit, total=total).model_dump(),
    })


__all__ = [
    "BatchUploadResult",
    "BidCreate",
    "BidDecision",
    "BidStatusChange",
    "BidUpdate",
    "CategoryActiveChange",
    "CategoryCreate",
    "CurrentUser",
    "DeletePreview",
    "DeleteResult",
    "TenderCreate",
    "TenderStats",
    "TenderUpdate",
    "envelope",
    "paginated",
]
