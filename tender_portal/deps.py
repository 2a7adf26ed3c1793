"""
Dependencias de FastAPI: seguridad y construcción de servicios.

get_current_user valida el JWT de Supabase Auth y enriquece el usuario con el
rol desde public.profiles (caché por user_id con TTL). Los servicios se
construyen por petición sobre el cliente Supabase singleton; los tests los
sustituyen con app.dependency_overrides.
"""

import threading
import time
from typing import Annotated, Tuple

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tender_portal.config import LEGACY_CATEGORIES, SKIP_AUTH, SUPABASE_JWT_SECRET
from tender_portal.database import get_supabase_client
from tender_portal.models import CurrentUser
from tender_portal.repositories import (
    BidHistoryRepository,
    BidsRepository,
    CategoriesRepository,
    TendersRepository,
)
from tender_portal.roles import normalize_role
from tender_portal.services import (
    BidService,
    CategoryResolver,
    CategoryService,
    SupabaseStorageService,
    TenderService,
)

security = HTTPBearer(auto_error=False)

# Caché de profiles: user_id -> (role, expiry_timestamp)
# TTL 60 segundos para equilibrar rendimiento y cambios de rol
_PROFILE_CACHE: dict[str, Tuple[str, float]] = {}
_PROFILE_CACHE_LOCK = threading.Lock()
_PROFILE_CACHE_TTL_SECONDS = 60


def _get_cached_role(user_id: str) -> str | None:
    """Devuelve el rol si está en caché y no expirado; None si miss."""
    with _PROFILE_CACHE_LOCK:
        entry = _PROFILE_CACHE.get(user_id)
        if not entry:
            return None
        role, expiry = entry
        if time.monotonic() >= expiry:
            del _PROFILE_CACHE[user_id]
            return None
        return role


def _set_cached_role(user_id: str, role: str) -> None:
    with _PROFILE_CACHE_LOCK:
        _PROFILE_CACHE[user_id] = (role, time.monotonic() + _PROFILE_CACHE_TTL_SECONDS)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> CurrentUser:
    """
    Valida el JWT Bearer y devuelve el usuario con su rol.

    1. Si SKIP_AUTH=true y no hay token, devuelve un admin de desarrollo.
    2. Verifica el token con el JWT secret de Supabase (aud=authenticated).
    3. Obtiene el rol desde public.profiles (con caché).
    """
    if credentials is None:
        if SKIP_AUTH:
            return CurrentUser(user_id="dev-dummy-user", email="dev@localhost", role="admin")
        raise _unauthorized("No se proporcionó token de autorización.")

    if not SUPABASE_JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="SUPABASE_JWT_SECRET no configurado. Añade la variable en .env.",
        )

    try:
        payload = jwt.decode(
            credentials.credentials,
            SUPABASE_JWT_SECRET,
            audience="authenticated",
            algorithms=["HS256"],
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expirado.")
    except jwt.InvalidTokenError:
        raise _unauthorized("Token inválido.")

    user_id = payload.get("sub")
    email = payload.get("email") or ""
    if not user_id:
        raise _unauthorized("Token malformado: falta sub.")

    cached = _get_cached_role(user_id)
    if cached:
        return CurrentUser(user_id=user_id, email=email, role=cached)

    try:
        profile_resp = (
            get_supabase_client().table("profiles")
            .select("role")
            .eq("id", user_id)
            .execute()
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error obteniendo perfil: {e!s}",
        ) from e

    if not profile_resp.data:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No existe perfil para este usuario. Contacta al administrador.",
        )

    role = normalize_role(profile_resp.data[0].get("role"))
    _set_cached_role(user_id, role)
    return CurrentUser(user_id=user_id, email=email, role=role)


# Alias para inyección en routers
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]


def get_category_resolver() -> CategoryResolver:
    return CategoryResolver(LEGACY_CATEGORIES)


def get_bid_service() -> BidService:
    client = get_supabase_client()
    return BidService(
        BidsRepository(client),
        TendersRepository(client),
        history_repository=BidHistoryRepository(client),
    )


def get_storage_service() -> SupabaseStorageService:
    return SupabaseStorageService(get_supabase_client())


def get_tender_service(
    bid_service: Annotated[BidService, Depends(get_bid_service)],
    resolver: Annotated[CategoryResolver, Depends(get_category_resolver)],
    storage: Annotated[SupabaseStorageService, Depends(get_storage_service)],
) -> TenderService:
    client = get_supabase_client()
    return TenderService(
        TendersRepository(client),
        bid_service,
        categories_repository=CategoriesRepository(client),
        resolver=resolver,
        upload_service=storage,
    )


def get_category_service() -> CategoryService:
    return CategoryService(CategoriesRepository(get_supabase_client()))


BidServiceDep = Annotated[BidService, Depends(get_bid_service)]
TenderServiceDep = Annotated[TenderService, Depends(get_tender_service)]
CategoryServiceDep = Annotated[CategoryService, Depends(get_category_service)]
StorageServiceDep = Annotated[SupabaseStorageService, Depends(get_storage_service)]
ResolverDep = Annotated[CategoryResolver, Depends(get_category_resolver)]
