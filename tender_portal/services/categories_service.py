"""
Servicio de categorías gestionadas: alta, listado y activación.

Solo administradores crean o desactivan categorías. Una categoría inactiva no
se ofrece para nuevas asignaciones pero sigue siendo válida en las
licitaciones que ya la tienen.
"""

import logging
from typing import List

from tender_portal.models import Category, CategoryCreate, CurrentUser
from tender_portal.roles import is_admin
from tender_portal.services.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CATEGORY_NAME_MAX_LENGTH = 100


class CategoryService:
    def __init__(self, repository) -> None:
        self._repo = repository

    def list_categories(self, active_only: bool = False) -> List[Category]:
        return [Category.model_validate(r) for r in self._repo.list_categories(active_only=active_only)]

    def get_category(self, category_id: int) -> Category:
        row = self._repo.get_by_id(category_id)
        if not row:
            raise NotFoundError("Categoría no encontrada.")
        return Category.model_validate(row)

    def create_category(self, payload: CategoryCreate, user: CurrentUser) -> Category:
        """Crea una categoría activa. ConflictError si el nombre ya existe (sin mayúsculas)."""
        if not is_admin(user.role):
            raise AuthorizationError("Solo un administrador puede crear categorías.")
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError("El nombre de la categoría es obligatorio.", field="name")
        if len(name) > CATEGORY_NAME_MAX_LENGTH:
            raise ValidationError(
                f"El nombre no puede superar {CATEGORY_NAME_MAX_LENGTH} caracteres.", field="name"
            )
        if self._repo.find_by_name(name):
            raise ConflictError(f"Ya existe una categoría llamada {name!r}.")
        row = self._repo.create({
            "name": name,
            "description": (payload.description or "").strip() or None,
            "is_active": True,
        })
        logger.info("Categoría creada: %s por %s", name, user.user_id)
        return Category.model_validate(row)

    def set_active(self, category_id: int, is_active: bool, user: CurrentUser) -> Category:
        if not is_admin(user.role):
            raise AuthorizationError("Solo un administrador puede activar o desactivar categorías.")
        self.get_category(category_id)
        row = self._repo.update(category_id, {"is_active": is_active})
        logger.info("Categoría %s %s", category_id, "activada" if is_active else "desactivada")
        return Category.model_validate(row)
