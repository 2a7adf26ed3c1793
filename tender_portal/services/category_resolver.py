"""
Resolución de la categoría visible de una licitación o usuario.

Los datos de categoría han pasado por tres esquemas (lista many-to-many,
enum heredado único y texto libre). resolve() prueba una cadena ordenada de
estrategias puras; gana la primera que devuelve texto. Nunca lanza: si nada
encaja devuelve "Other".
"""

from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from tender_portal.models import Category, LegacyCategory
from tender_portal.utils import capitalize_first, clean_text, text_key

DEFAULT_CATEGORY = "Other"

# Campos alternativos donde distintas versiones guardaron la categoría, por prioridad
ALTERNATE_CATEGORY_FIELDS = (
    "category",
    "category_name",
    "tender_category",
    "type",
    "classification",
    "sector",
)

Strategy = Callable[[Any, Sequence[Category], Sequence[LegacyCategory]], Optional[str]]


def _get(entity: Any, field: str) -> Any:
    if isinstance(entity, Mapping):
        return entity.get(field)
    return getattr(entity, field, None)


def _as_category(item: Any) -> Optional[Category]:
    if isinstance(item, Category):
        return item
    if isinstance(item, Mapping) and clean_text(item.get("name")):
        try:
            return Category.model_validate(item)
        except ValueError:
            return None
    return None


def _as_legacy(item: Any) -> Optional[LegacyCategory]:
    if isinstance(item, LegacyCategory):
        return item
    if isinstance(item, Mapping) and clean_text(item.get("value")) and clean_text(item.get("label")):
        try:
            return LegacyCategory.model_validate(item)
        except ValueError:
            return None
    return None


def normalize_managed(items: Optional[Iterable[Any]]) -> List[Category]:
    """Acepta Category o dicts; descarta entradas sin nombre."""
    return [c for c in (_as_category(i) for i in (items or [])) if c is not None]


def normalize_legacy(items: Optional[Iterable[Any]]) -> List[LegacyCategory]:
    """Acepta LegacyCategory o dicts value/label; descarta entradas incompletas."""
    return [c for c in (_as_legacy(i) for i in (items or [])) if c is not None]


def match_managed(value: str, managed: Sequence[Category]) -> Optional[Category]:
    """Categoría gestionada cuyo nombre coincide (recortado, sin mayúsculas)."""
    key = text_key(value)
    for cat in managed:
        if text_key(cat.name) == key:
            return cat
    return None


def match_legacy(value: str, legacy: Sequence[LegacyCategory]) -> Optional[LegacyCategory]:
    """Entrada heredada cuyo value o label coincide (recortado, sin mayúsculas)."""
    key = text_key(value)
    for cat in legacy:
        if text_key(cat.value) == key or text_key(cat.label) == key:
            return cat
    return None


def display_name(value: str, managed: Sequence[Category], legacy: Sequence[LegacyCategory]) -> str:
    """gestionada → etiqueta heredada → valor con la primera letra en mayúscula."""
    trimmed = value.strip()
    managed_cat = match_managed(trimmed, managed)
    if managed_cat:
        return managed_cat.name
    legacy_cat = match_legacy(trimmed, legacy)
    if legacy_cat:
        return legacy_cat.label
    return capitalize_first(trimmed)


# ----- Estrategias (orden de prioridad) -----


def from_categories_list(entity: Any, managed: Sequence[Category], legacy: Sequence[LegacyCategory]) -> Optional[str]:
    """1. Lista categories: cada nombre mapeado y unidos sin repetidos con ", "."""
    values = _get(entity, "categories")
    if not isinstance(values, (list, tuple)) or not values:
        return None
    names: List[str] = []
    for raw in values:
        cleaned = clean_text(raw)
        if not cleaned:
            continue
        name = display_name(cleaned, managed, legacy)
        if name not in names:
            names.append(name)
    return ", ".join(names) or None


def from_display_category(entity: Any, managed: Sequence[Category], legacy: Sequence[LegacyCategory]) -> Optional[str]:
    """2. display_category calculado por la consulta SQL, tal cual."""
    return clean_text(_get(entity, "display_category"))


def from_alternate_fields(entity: Any, managed: Sequence[Category], legacy: Sequence[LegacyCategory]) -> Optional[str]:
    """3. Primer campo alternativo no vacío; etiqueta heredada si coincide, si no literal."""
    for field in ALTERNATE_CATEGORY_FIELDS:
        value = clean_text(_get(entity, field))
        if not value:
            continue
        legacy_cat = match_legacy(value, legacy)
        return legacy_cat.label if legacy_cat else value
    return None


def from_category_id(entity: Any, managed: Sequence[Category], legacy: Sequence[LegacyCategory]) -> Optional[str]:
    """4. category_id buscado en gestionadas y luego en heredadas con id."""
    category_id = _get(entity, "category_id")
    if category_id is None or isinstance(category_id, bool) or str(category_id).strip() == "":
        return None
    key = str(category_id).strip()
    for cat in managed:
        if str(cat.id) == key:
            return display_name(cat.name, managed, legacy)
    for legacy_cat in legacy:
        if legacy_cat.id is not None and str(legacy_cat.id) == key:
            return display_name(legacy_cat.value, managed, legacy)
    return None


RESOLUTION_CHAIN: Sequence[Strategy] = (
    from_categories_list,
    from_display_category,
    from_alternate_fields,
    from_category_id,
)


class CategoryResolver:
    """
    Deriva una única categoría visible. La tabla heredada se inyecta
    (config.LEGACY_CATEGORIES por defecto desde deps), no se lee de un global.
    """

    def __init__(
        self,
        legacy_categories: Optional[Iterable[Any]] = None,
        strategies: Sequence[Strategy] = RESOLUTION_CHAIN,
        default: str = DEFAULT_CATEGORY,
    ) -> None:
        self._legacy = normalize_legacy(legacy_categories)
        self._strategies = tuple(strategies)
        self._default = default

    @property
    def legacy_categories(self) -> List[LegacyCategory]:
        return list(self._legacy)

    def resolve(self, entity: Any, managed_categories: Optional[Iterable[Any]] = None) -> str:
        """Categoría visible de entity (dict o modelo). Total: nunca lanza."""
        if entity is None:
            return self._default
        managed = normalize_managed(managed_categories)
        for strategy in self._strategies:
            result = strategy(entity, managed, self._legacy)
            if result:
                return result
        return self._default

    def canonical_name(self, value: str, managed_categories: Optional[Iterable[Any]] = None) -> Optional[str]:
        """
        Nombre a guardar para una categoría elegida en un formulario.

        Gestionada activa → su nombre; heredada → su value; desconocida o
        gestionada inactiva → None (no asignable como nueva).
        """
        cleaned = clean_text(value)
        if not cleaned:
            return None
        managed_cat = match_managed(cleaned, normalize_managed(managed_categories))
        if managed_cat:
            return managed_cat.name if managed_cat.is_active else None
        legacy_cat = match_legacy(cleaned, self._legacy)
        return legacy_cat.value if legacy_cat else None


def resolve_category(
    entity: Any,
    managed_categories: Optional[Iterable[Any]] = None,
    legacy_categories: Optional[Iterable[Any]] = None,
) -> str:
    """Atajo funcional: resolve(entity, managedCategories, legacyCategories)."""
    return CategoryResolver(legacy_categories).resolve(entity, managed_categories)
