"""
Repositorios de pujas (bids) y de su historial de auditoría (bid_history).
"""

from typing import Any, Dict, List, Optional, Tuple

from tender_portal.repositories.base_repository import BaseRepository


class BidsRepository(BaseRepository):
    """Repositorio de bids con PK id. Solo BidService escribe en él."""

    TABLE_BIDS = "bids"

    def __init__(self, client) -> None:
        super().__init__(client=client, table_name=self.TABLE_BIDS)

    def find_by_tender_and_vendor(self, tender_id: int, vendor_id: str) -> List[Dict[str, Any]]:
        """Pujas de un proveedor en una licitación, la más reciente primero."""
        return self.get_all(
            order_by="submitted_at",
            order_desc=True,
            tender_id=tender_id,
            vendor_id=vendor_id,
        )

    def list_for_tender(self, tender_id: int) -> List[Dict[str, Any]]:
        return self.get_all(order_by="id", tender_id=tender_id)

    def list_for_vendor(self, vendor_id: str) -> List[Dict[str, Any]]:
        return self.get_all(order_by="submitted_at", order_desc=True, vendor_id=vendor_id)

    def count_for_tender(self, tender_id: int) -> int:
        """Recuento de pujas (todas, cualquier estado) de una licitación."""
        response = (
            self._table()
            .select("id", count="exact")
            .eq("tender_id", tender_id)
            .execute()
        )
        if response.count is not None:
            return int(response.count)
        return len(response.data or [])

    def list_bids(
        self,
        tender_id: Optional[int] = None,
        vendor_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        query = self._table().select("*", count="exact")
        if tender_id is not None:
            query = query.eq("tender_id", tender_id)
        if vendor_id:
            query = query.eq("vendor_id", vendor_id)
        if status:
            query = query.eq("status", status)
        return self.paginate(page=page, limit=limit, order_by="submitted_at", query=query)


class BidHistoryRepository(BaseRepository):
    """Historial append-only de transiciones de puja."""

    TABLE_HISTORY = "bid_history"

    def __init__(self, client) -> None:
        super().__init__(client=client, table_name=self.TABLE_HISTORY)

    def add_entry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.create(data)

    def list_for_bid(self, bid_id: int) -> List[Dict[str, Any]]:
        return self.get_all(order_by="created_at", bid_id=bid_id)
