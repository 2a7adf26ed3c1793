"""
Categorías gestionadas y resolución de la categoría visible.

- GET /categories: listado (active_only para formularios de alta).
- POST /categories: alta (solo admin).
- PATCH /categories/{id}/active: activar/desactivar (solo admin).
- GET /categories/legacy: tabla heredada value/label.
- POST /categories/resolve: categoría visible de una entidad cualquiera.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Query, status

from tender_portal.deps import CategoryServiceDep, CurrentUserDep, ResolverDep
from tender_portal.schemas import CategoryActiveChange, CategoryCreate, envelope

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=dict)
def list_categories(
    current_user: CurrentUserDep,
    service: CategoryServiceDep,
    active_only: bool = Query(False, description="Solo categorías asignables."),
) -> dict:
    return envelope(service.list_categories(active_only=active_only))


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryCreate, current_user: CurrentUserDep, service: CategoryServiceDep) -> dict:
    return envelope(service.create_category(payload, current_user), "Categoría creada correctamente.")


@router.patch("/{category_id}/active", response_model=dict)
def set_category_active(
    category_id: int,
    payload: CategoryActiveChange,
    current_user: CurrentUserDep,
    service: CategoryServiceDep,
) -> dict:
    category = service.set_active(category_id, payload.is_active, current_user)
    return envelope(category, "Categoría activada." if category.is_active else "Categoría desactivada.")


@router.get("/legacy", response_model=dict)
def legacy_categories(current_user: CurrentUserDep, resolver: ResolverDep) -> dict:
    return envelope(resolver.legacy_categories)


@router.post("/resolve", response_model=dict)
def resolve_category(
    current_user: CurrentUserDep,
    resolver: ResolverDep,
    service: CategoryServiceDep,
    entity: Dict[str, Any] = Body(..., description="Licitación o usuario con cualquier esquema de categoría."),
) -> dict:
    """Nunca falla: si no hay categoría reconocible devuelve "Other"."""
    label = resolver.resolve(entity, service.list_categories())
    return envelope({"category": label})
