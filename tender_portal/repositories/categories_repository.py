"""Repositorio de categorías gestionadas (categories)."""

from typing import Any, Dict, List, Optional

from tender_portal.repositories.base_repository import BaseRepository


class CategoriesRepository(BaseRepository):
    TABLE_CATEGORIES = "categories"

    def __init__(self, client) -> None:
        super().__init__(client=client, table_name=self.TABLE_CATEGORIES)

    def list_categories(self, active_only: bool = False) -> List[Dict[str, Any]]:
        """Categorías por nombre; active_only excluye las desactivadas."""
        if active_only:
            return self.get_all(order_by="name", is_active=True)
        return self.get_all(order_by="name")

    def find_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Búsqueda exacta sin distinguir mayúsculas (ilike sin comodines)."""
        escaped = name.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        response = (
            self._table()
            .select("*")
            .ilike("name", escaped)
            .limit(1)
            .execute()
        )
        return self._first(response.data)
