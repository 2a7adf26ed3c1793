"""
Conversión fila de Supabase → modelo, compartida por los servicios.

Una fila que no valida (por ejemplo status='open' con is_archived=true) es
estado inválido y se rechaza aquí, en el borde de validación.
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from tender_portal.models import Bid, Tender
from tender_portal.services.exceptions import NotFoundError, ValidationError


def _first_error(exc: PydanticValidationError) -> tuple[str, Optional[str]]:
    errors = exc.errors()
    if not errors:
        return str(exc), None
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__") or None
    return err.get("msg", str(exc)), loc


def tender_from_row(row: Dict[str, Any]) -> Tender:
    try:
        return Tender.model_validate(row)
    except PydanticValidationError as e:
        msg, loc = _first_error(e)
        raise ValidationError(
            f"Licitación {row.get('id')} con datos inválidos: {msg}", field=loc or "is_archived"
        ) from e


def bid_from_row(row: Dict[str, Any]) -> Bid:
    try:
        return Bid.model_validate(row)
    except PydanticValidationError as e:
        msg, loc = _first_error(e)
        raise ValidationError(f"Puja {row.get('id')} con datos inválidos: {msg}", field=loc) from e


def load_tender(repository, tender_id: int) -> Tender:
    """Licitación por id. NotFoundError si no existe."""
    row = repository.get_by_id(tender_id)
    if not row:
        raise NotFoundError("Licitación no encontrada.")
    return tender_from_row(row)


def load_bid(repository, bid_id: int) -> Bid:
    """Puja por id. NotFoundError si no existe."""
    row = repository.get_by_id(bid_id)
    if not row:
        raise NotFoundError("Puja no encontrada.")
    return bid_from_row(row)
