"""
Repositorio de licitaciones (tenders).

categories se guarda como text[] en la propia fila. El borrado definitivo va
por la función RPC delete_tender_cascade, que borra pujas y licitación en una
única transacción.
"""

from typing import Any, Dict, List, Optional, Tuple

from tender_portal.models import TenderStatus
from tender_portal.repositories.base_repository import BaseRepository


class TendersRepository(BaseRepository):
    """
    Repositorio de tenders con PK id.

    Métodos de dominio: list_tenders (filtros + paginación) y delete_cascade.
    """

    TABLE_TENDERS = "tenders"
    RPC_DELETE_CASCADE = "delete_tender_cascade"

    def __init__(self, client) -> None:
        super().__init__(client=client, table_name=self.TABLE_TENDERS)

    def list_tenders(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        archived: Optional[bool] = None,
        created_by: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Licitaciones filtradas; orden created_at desc. archived filtra por status."""
        query = self._table().select("*", count="exact")
        if status:
            query = query.eq("status", status)
        if archived is True:
            query = query.eq("status", TenderStatus.ARCHIVED.value)
        elif archived is False:
            query = query.neq("status", TenderStatus.ARCHIVED.value)
        if category and category.strip():
            query = query.contains("categories", [category.strip()])
        if created_by:
            query = query.eq("created_by", created_by)
        return self.paginate(page=page, limit=limit, order_by="created_at", query=query)

    def delete_cascade(self, tender_id: int, expected_bid_count: int) -> Optional[int]:
        """
        Borra la licitación y todas sus pujas en una transacción.

        La función SQL compara el recuento actual con expected_bid_count y
        devuelve NULL sin borrar nada si no coincide. Devuelve el número de
        pujas eliminadas.
        """
        response = self._client.rpc(
            self.RPC_DELETE_CASCADE,
            {"p_tender_id": tender_id, "p_expected_bid_count": expected_bid_count},
        ).execute()
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = next(iter(data.values()), None)
        return int(data) if data is not None else None
