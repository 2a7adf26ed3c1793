"""
Autenticación: el login lo hace el frontend contra Supabase Auth.

- GET /auth/me: perfil del usuario autenticado (requiere Bearer token).
"""

from fastapi import APIRouter

from tender_portal.deps import CurrentUserDep
from tender_portal.roles import can_bid, can_manage_tenders, can_review_bids, is_admin

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=dict)
def get_me(current_user: CurrentUserDep) -> dict:
    """
    Devuelve el perfil del usuario autenticado y sus permisos.
    GET /auth/me
    Requiere: Header Authorization: Bearer <jwt>
    """
    return {
        "id": current_user.user_id,
        "email": current_user.email,
        "role": current_user.role,
        "permissions": {
            "manage_categories": is_admin(current_user.role),
            "manage_tenders": can_manage_tenders(current_user.role),
            "review_bids": can_review_bids(current_user.role),
            "bid": can_bid(current_user.role),
        },
    }
