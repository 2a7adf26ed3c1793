"""
Excepciones de dominio para la capa de servicios.

main.py las traduce a respuestas HTTP (400, 403, 404, 409, 422) según el tipo.
No dependen de FastAPI. Ninguna se reintenta automáticamente: reintentar es
decisión del cliente.
"""

from typing import Optional


class DomainError(Exception):
    """Base para errores de negocio."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(DomainError):
    """Licitación, puja, categoría o adjunto inexistente."""


class ValidationError(DomainError, ValueError):
    """Entrada mal formada u obligatoria ausente. field indica el campo afectado."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class AuthorizationError(DomainError):
    """El rol del usuario no permite la operación solicitada."""


class ConflictError(DomainError):
    """Conflicto con el estado actual del recurso."""


class StateConflictError(ConflictError):
    """Transición no permitida desde el estado actual (ej. retirar una puja ya rechazada)."""


class DeadlineExpiredError(StateConflictError):
    """Acción intentada después de la fecha límite de la licitación."""


class ConcurrentModificationError(ConflictError):
    """Conflicto de concurrencia: el estado cambió entre lectura y escritura."""


class UploadError(DomainError):
    """Fallo de subida de un fichero concreto; nunca afecta al resto del lote."""

    def __init__(self, message: str, filename: Optional[str] = None) -> None:
        self.filename = filename
        super().__init__(message)
