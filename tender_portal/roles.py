"""
Roles del portal. Solo tres roles efectivos.

  - admin: gestiona cualquier licitación, puja y categoría
  - buyer: publica licitaciones y resuelve las pujas de sus propias licitaciones
  - vendor: presenta, edita y retira sus propias pujas ("supplier" es alias legacy)
"""

ROLES_VALIDOS = {"admin", "buyer", "vendor"}

DEFAULT_ROLE = "vendor"

ROLE_ALIASES = {"supplier": "vendor"}

ROLES_GESTION_LICITACIONES = {"admin", "buyer"}
ROLES_REVISION_PUJAS = {"admin", "buyer"}
ROLES_PUJA = {"vendor"}


def normalize_role(role: str | None) -> str:
    """Devuelve siempre uno de ROLES_VALIDOS. Rol antiguo 'supplier' → vendor."""
    if not role or not str(role).strip():
        return DEFAULT_ROLE
    r = str(role).strip().lower()
    r = ROLE_ALIASES.get(r, r)
    if r in ROLES_VALIDOS:
        return r
    return DEFAULT_ROLE


def is_admin(role: str | None) -> bool:
    return normalize_role(role) == "admin"


def can_manage_tenders(role: str | None) -> bool:
    """True si el rol puede crear, editar, archivar o eliminar licitaciones."""
    return normalize_role(role) in ROLES_GESTION_LICITACIONES


def can_review_bids(role: str | None) -> bool:
    """True si el rol puede aceptar o rechazar pujas."""
    return normalize_role(role) in ROLES_REVISION_PUJAS


def can_bid(role: str | None) -> bool:
    """True si el rol puede presentar, editar o retirar pujas."""
    return normalize_role(role) in ROLES_PUJA
