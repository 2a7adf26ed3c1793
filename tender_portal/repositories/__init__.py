"""
Repositorios sobre Supabase.

Todos heredan de BaseRepository. Las escrituras de estado usan
update_with_status_check para que el almacenamiento rechace cambios
concurrentes; los servicios nunca escriben en tablas de otra entidad.
"""

from tender_portal.repositories.base_repository import BaseRepository
from tender_portal.repositories.bids_repository import BidHistoryRepository, BidsRepository
from tender_portal.repositories.categories_repository import CategoriesRepository
from tender_portal.repositories.tenders_repository import TendersRepository

__all__ = [
    "BaseRepository",
    "BidHistoryRepository",
    "BidsRepository",
    "CategoriesRepository",
    "TendersRepository",
]
