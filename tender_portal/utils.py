"""
Utilidades compartidas para el backend.

Fechas siempre en UTC con zona horaria y normalización de textos de categoría.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Reloj por defecto de los servicios. Los tests inyectan uno fijo."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Fechas sin zona horaria se interpretan como UTC (así las guarda Supabase)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clean_text(value: Any) -> Optional[str]:
    """Devuelve el texto sin espacios o None si no es str o queda vacío."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def text_key(value: str) -> str:
    """Clave de comparación: recortada e insensible a mayúsculas."""
    return value.strip().casefold()


def capitalize_first(value: str) -> str:
    """Primera letra en mayúscula, resto sin tocar ("it services" → "It services")."""
    if not value:
        return value
    return value[0].upper() + value[1:]


def fmt_date(valor: Optional[datetime]) -> str:
    """Convierte fecha a formato europeo DD/MM/YYYY HH:MM (UTC)."""
    if not valor:
        return ""
    return ensure_utc(valor).strftime("%d/%m/%Y %H:%M")
