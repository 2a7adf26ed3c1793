"""
Dobles en memoria de los repositorios de Supabase y fixtures compartidas.

Los repositorios falsos comparten un único Store, respetan la escritura
condicionada al estado y ejecutan delete_cascade de forma atómica, igual que
la función SQL.
"""

import copy
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from tender_portal.config import DEFAULT_LEGACY_CATEGORIES
from tender_portal.models import BidCreate, CurrentUser, TenderCreate, UploadResult
from tender_portal.services.bids_service import BidService
from tender_portal.services.categories_service import CategoryService
from tender_portal.services.category_resolver import CategoryResolver
from tender_portal.services.exceptions import UploadError
from tender_portal.services.storage_service import validate_file
from tender_portal.services.tenders_service import TenderService

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

PROPOSAL = (
    "Ejecutaremos la obra en tres fases con cuadrilla propia, maquinaria certificada "
    "y supervisión diaria de un ingeniero colegiado durante todo el contrato."
)


class FixedClock:
    """Reloj inyectable que los tests pueden adelantar."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class Store:
    def __init__(self) -> None:
        self.tables: Dict[str, Dict[int, Dict[str, Any]]] = {
            "tenders": {},
            "bids": {},
            "bid_history": {},
            "categories": {},
        }
        self._ids = {name: itertools.count(1) for name in self.tables}

    def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(data)
        row.setdefault("id", next(self._ids[table]))
        self.tables[table][row["id"]] = row
        return copy.deepcopy(row)


class FakeRepository:
    table = ""

    def __init__(self, store: Store) -> None:
        self.store = store

    @property
    def rows(self) -> Dict[int, Dict[str, Any]]:
        return self.store.tables[self.table]

    def get_by_id(self, pk_value: Any) -> Optional[Dict[str, Any]]:
        row = self.rows.get(int(pk_value))
        return copy.deepcopy(row) if row else None

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.store.insert(self.table, data)

    def update(self, pk_value: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        row = self.rows.get(int(pk_value))
        if row is None:
            raise ValueError("Registro no encontrado.")
        row.update(copy.deepcopy(data))
        return copy.deepcopy(row)

    def update_with_status_check(self, pk_value: Any, data: Dict[str, Any], expected_status: str):
        row = self.rows.get(int(pk_value))
        if row is None or row.get("status") != expected_status:
            return None
        row.update(copy.deepcopy(data))
        return copy.deepcopy(row)

    @staticmethod
    def _page(items: List[Dict[str, Any]], page: int, limit: int):
        start = (max(page, 1) - 1) * limit
        return [copy.deepcopy(r) for r in items[start:start + limit]], len(items)


class FakeTendersRepository(FakeRepository):
    table = "tenders"

    def list_tenders(self, status=None, category=None, archived=None, created_by=None, page=1, limit=20):
        items = list(self.rows.values())
        if status:
            items = [r for r in items if r["status"] == status]
        if archived is True:
            items = [r for r in items if r["status"] == "archived"]
        elif archived is False:
            items = [r for r in items if r["status"] != "archived"]
        if category:
            items = [r for r in items if category.strip() in (r.get("categories") or [])]
        if created_by:
            items = [r for r in items if r.get("created_by") == created_by]
        items.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return self._page(items, page, limit)

    def delete_cascade(self, tender_id: int, expected_bid_count: int) -> Optional[int]:
        bids = self.store.tables["bids"]
        ids = [pk for pk, r in bids.items() if r["tender_id"] == tender_id]
        if len(ids) != expected_bid_count or tender_id not in self.rows:
            return None
        for pk in ids:
            del bids[pk]
        del self.rows[tender_id]
        return len(ids)


class FakeBidsRepository(FakeRepository):
    table = "bids"

    def find_by_tender_and_vendor(self, tender_id: int, vendor_id: str):
        items = [r for r in self.rows.values() if r["tender_id"] == tender_id and r["vendor_id"] == vendor_id]
        items.sort(key=lambda r: r.get("submitted_at") or "", reverse=True)
        return copy.deepcopy(items)

    def list_for_tender(self, tender_id: int):
        items = [r for r in self.rows.values() if r["tender_id"] == tender_id]
        return copy.deepcopy(sorted(items, key=lambda r: r["id"]))

    def list_for_vendor(self, vendor_id: str):
        items = [r for r in self.rows.values() if r["vendor_id"] == vendor_id]
        return copy.deepcopy(sorted(items, key=lambda r: r.get("submitted_at") or "", reverse=True))

    def count_for_tender(self, tender_id: int) -> int:
        return sum(1 for r in self.rows.values() if r["tender_id"] == tender_id)

    def list_bids(self, tender_id=None, vendor_id=None, status=None, page=1, limit=20):
        items = list(self.rows.values())
        if tender_id is not None:
            items = [r for r in items if r["tender_id"] == tender_id]
        if vendor_id:
            items = [r for r in items if r["vendor_id"] == vendor_id]
        if status:
            items = [r for r in items if r["status"] == status]
        items.sort(key=lambda r: r["id"])
        return self._page(items, page, limit)


class FakeHistoryRepository(FakeRepository):
    table = "bid_history"

    def add_entry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.create(data)

    def list_for_bid(self, bid_id: int):
        return copy.deepcopy([r for r in self.rows.values() if r["bid_id"] == bid_id])


class FakeCategoriesRepository(FakeRepository):
    table = "categories"

    def list_categories(self, active_only: bool = False):
        items = sorted(self.rows.values(), key=lambda r: r["name"])
        if active_only:
            items = [r for r in items if r.get("is_active")]
        return copy.deepcopy(items)

    def find_by_name(self, name: str):
        key = name.strip().casefold()
        for row in self.rows.values():
            if row["name"].casefold() == key:
                return copy.deepcopy(row)
        return None


class FakeUploadService:
    """UploadService en memoria. Los nombres en fail_names fallan al subir."""

    def __init__(self, fail_names=()) -> None:
        self.fail_names = set(fail_names)
        self.files: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self._seq = itertools.count(1)

    def upload(self, file, destination: str = "temp") -> UploadResult:
        validate_file(file)
        if file.filename in self.fail_names:
            raise UploadError("Error de red simulado.", filename=file.filename)
        name = f"{destination}/{next(self._seq)}-{file.filename}"
        self.files[name] = file.content
        return UploadResult(success=True, filename=name, size=file.size, type=file.content_type)

    def download(self, filename: str) -> bytes:
        return self.files[filename]

    def view(self, filename: str) -> bytes:
        return self.download(filename)

    def delete(self, filename: str) -> bool:
        if filename not in self.files:
            return False
        del self.files[filename]
        self.deleted.append(filename)
        return True


# ----- Fixtures -----


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> Store:
    store = Store()
    for name, active in (("Construction", True), ("IT Services", True), ("Catering", False)):
        store.insert("categories", {"name": name, "description": None, "is_active": active})
    return store


@pytest.fixture
def tenders_repo(store):
    return FakeTendersRepository(store)


@pytest.fixture
def bids_repo(store):
    return FakeBidsRepository(store)


@pytest.fixture
def history_repo(store):
    return FakeHistoryRepository(store)


@pytest.fixture
def categories_repo(store):
    return FakeCategoriesRepository(store)


@pytest.fixture
def upload_service() -> FakeUploadService:
    return FakeUploadService()


@pytest.fixture
def resolver() -> CategoryResolver:
    return CategoryResolver(DEFAULT_LEGACY_CATEGORIES)


@pytest.fixture
def bid_service(bids_repo, tenders_repo, history_repo, clock) -> BidService:
    return BidService(bids_repo, tenders_repo, history_repository=history_repo, clock=clock)


@pytest.fixture
def tender_service(tenders_repo, bid_service, categories_repo, resolver, clock, upload_service) -> TenderService:
    return TenderService(
        tenders_repo,
        bid_service,
        categories_repository=categories_repo,
        resolver=resolver,
        clock=clock,
        upload_service=upload_service,
    )


@pytest.fixture
def category_service(categories_repo) -> CategoryService:
    return CategoryService(categories_repo)


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(user_id="admin-1", email="admin@example.com", role="admin")


@pytest.fixture
def buyer() -> CurrentUser:
    return CurrentUser(user_id="buyer-1", email="buyer@example.com", role="buyer")


@pytest.fixture
def other_buyer() -> CurrentUser:
    return CurrentUser(user_id="buyer-2", email="buyer2@example.com", role="buyer")


@pytest.fixture
def vendor() -> CurrentUser:
    return CurrentUser(user_id="vendor-1", email="vendor@example.com", role="vendor")


@pytest.fixture
def other_vendor() -> CurrentUser:
    return CurrentUser(user_id="vendor-2", email="vendor2@example.com", role="supplier")


def tender_payload(**overrides) -> TenderCreate:
    data = {
        "title": "Asfaltado de caminos municipales",
        "description": "Reasfaltado de 12 km de caminos municipales con señalización.",
        "categories": ["Construction"],
        "budget_min": Decimal("1000"),
        "budget_max": Decimal("5000"),
        "deadline": NOW + timedelta(days=10),
        "status": "open",
    }
    data.update(overrides)
    return TenderCreate(**data)


def bid_payload(**overrides) -> BidCreate:
    data = {"amount": Decimal("1500"), "proposal": PROPOSAL, "delivery_timeline": "6 semanas"}
    data.update(overrides)
    return BidCreate(**data)


@pytest.fixture
def open_tender(tender_service, buyer):
    return tender_service.create_tender(tender_payload(), buyer)


@pytest.fixture
def pending_bid(bid_service, open_tender, vendor):
    return bid_service.submit(open_tender.id, vendor, bid_payload()).bid
