"""
Capa de servicios: lógica de negocio aislada de HTTP.

Los servicios reciben repositorios por inyección y lanzan excepciones
de dominio (tender_portal.services.exceptions), no HTTPException.
"""

from tender_portal.services.attachment_registry import AttachmentRegistry
from tender_portal.services.bids_service import BidService
from tender_portal.services.categories_service import CategoryService
from tender_portal.services.category_resolver import CategoryResolver, resolve_category
from tender_portal.services.storage_service import SupabaseStorageService, UploadService
from tender_portal.services.tenders_service import TenderService

__all__ = [
    "AttachmentRegistry",
    "BidService",
    "CategoryResolver",
    "CategoryService",
    "SupabaseStorageService",
    "TenderService",
    "UploadService",
    "resolve_category",
]
