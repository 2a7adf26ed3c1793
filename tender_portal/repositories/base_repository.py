"""
Repositorio base para tablas de Supabase.

CRUD genérico, paginación con total exacto y escritura condicionada al estado
leído (optimistic lock): el almacenamiento rechaza la escritura si el estado
cambió entre la lectura y la escritura.
"""

from typing import Any, Dict, List, Optional, Tuple

from supabase import Client


class BaseRepository:
    """
    Repositorio base sobre una tabla.

    Inicialización con supabase_client, nombre de tabla y columna PK.
    """

    STATUS_COLUMN = "status"

    def __init__(
        self,
        client: Client,
        table_name: str,
        pk_column: str = "id",
    ) -> None:
        self._client = client
        self._table_name = table_name
        self._pk_column = pk_column

    def _table(self):
        return self._client.table(self._table_name)

    @staticmethod
    def _first(data: Any) -> Optional[Dict[str, Any]]:
        if not data:
            return None
        return data[0] if isinstance(data, list) else data

    def get_all(
        self,
        select: str = "*",
        order_by: Optional[str] = None,
        order_desc: bool = False,
        **extra_eq: Any,
    ) -> List[Dict[str, Any]]:
        """
        Lista todos los registros de la tabla.

        extra_eq: filtros .eq(key, value); los valores None se ignoran.
        """
        query = self._table().select(select)
        for key, value in extra_eq.items():
            if value is not None:
                query = query.eq(key, value)
        if order_by:
            query = query.order(order_by, desc=order_desc)
        response = query.execute()
        return list(response.data or [])

    def get_by_id(
        self,
        pk_value: Any,
        select: str = "*",
    ) -> Optional[Dict[str, Any]]:
        """Obtiene un registro por su clave primaria."""
        response = (
            self._table()
            .select(select)
            .eq(self._pk_column, pk_value)
            .limit(1)
            .execute()
        )
        return self._first(response.data)

    def paginate(
        self,
        page: int = 1,
        limit: int = 20,
        order_by: Optional[str] = None,
        order_desc: bool = True,
        query: Any = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Devuelve (items, total) de la página pedida (1-based).
        query permite a los repositorios hijos pasar una consulta ya filtrada.
        """
        page = max(page, 1)
        limit = max(limit, 1)
        if query is None:
            query = self._table().select("*", count="exact")
        if order_by:
            query = query.order(order_by, desc=order_desc)
        start = (page - 1) * limit
        response = query.range(start, start + limit - 1).execute()
        items = list(response.data or [])
        total = response.count if response.count is not None else len(items)
        return items, total

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Inserta un registro y devuelve la fila creada."""
        response = self._table().insert(data).execute()
        row = self._first(response.data)
        if not row:
            raise RuntimeError(f"Insert en {self._table_name} no devolvió datos.")
        return row

    def update(self, pk_value: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        """Actualiza un registro por PK. ValueError si no existe."""
        if not data:
            row = self.get_by_id(pk_value)
            if not row:
                raise ValueError("Registro no encontrado.")
            return row
        response = (
            self._table()
            .update(data)
            .eq(self._pk_column, pk_value)
            .execute()
        )
        row = self._first(response.data)
        if not row:
            raise ValueError("Registro no encontrado o sin cambios.")
        return row

    def update_with_status_check(
        self,
        pk_value: Any,
        data: Dict[str, Any],
        expected_status: str,
    ) -> Optional[Dict[str, Any]]:
        """Actualiza solo si status coincide con el leído (optimistic lock). None si no."""
        response = (
            self._table()
            .update(data)
            .eq(self._pk_column, pk_value)
            .eq(self.STATUS_COLUMN, expected_status)
            .execute()
        )
        return self._first(response.data)
