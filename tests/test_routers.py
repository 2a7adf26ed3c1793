"""Rutas HTTP con servicios en memoria vía app.dependency_overrides."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import NOW, PROPOSAL
from tender_portal.deps import (
    get_bid_service,
    get_category_resolver,
    get_category_service,
    get_current_user,
    get_storage_service,
    get_tender_service,
)
from tender_portal.main import app
from tender_portal.services.exceptions import ConcurrentModificationError

TENDER_BODY = {
    "title": "Asfaltado de caminos municipales",
    "description": "Reasfaltado de 12 km de caminos municipales con señalización.",
    "categories": ["Construction"],
    "budget_min": 1000,
    "budget_max": 5000,
    "deadline": (NOW + timedelta(days=10)).isoformat(),
}

BID_BODY = {"amount": 1500, "proposal": PROPOSAL, "delivery_timeline": "6 semanas"}


@pytest.fixture
def api(bid_service, tender_service, category_service, upload_service, resolver, buyer):
    current = {"user": buyer}

    def login(user):
        current["user"] = user

    app.dependency_overrides.update({
        get_current_user: lambda: current["user"],
        get_bid_service: lambda: bid_service,
        get_tender_service: lambda: tender_service,
        get_category_service: lambda: category_service,
        get_storage_service: lambda: upload_service,
        get_category_resolver: lambda: resolver,
    })
    client = TestClient(app)
    client.login = login
    yield client
    app.dependency_overrides.clear()


def create_tender(api, **overrides):
    response = api.post("/api/tenders", json={**TENDER_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_health(api):
    assert api.get("/").json() == {"status": "ok"}


def test_me(api, vendor):
    api.login(vendor)
    data = api.get("/api/auth/me").json()
    assert data["role"] == "vendor"
    assert data["permissions"]["bid"] is True
    assert data["permissions"]["manage_tenders"] is False


def test_create_and_get_tender(api):
    tender = create_tender(api)
    assert tender["status"] == "open"
    assert tender["category_label"] == "Construction"
    assert tender["is_archived"] is False

    body = api.get(f"/api/tenders/{tender['id']}").json()
    assert body["success"] is True
    assert body["data"]["title"] == TENDER_BODY["title"]


def test_validation_error_carries_field(api):
    response = api.post("/api/tenders", json={**TENDER_BODY, "title": "Obra"})
    assert response.status_code == 400
    assert response.json() == {
        "detail": response.json()["detail"],
        "field": "title",
        "error": "ValidationError",
    }


def test_not_found(api):
    response = api.get("/api/tenders/999")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


def test_vendor_only_sees_open_tenders(api, vendor):
    create_tender(api)
    create_tender(api, status="draft")
    api.login(vendor)
    data = api.get("/api/tenders", params={"status": "draft"}).json()["data"]
    assert [t["status"] for t in data["items"]] == ["open"]
    assert data["pagination"] == {"page": 1, "limit": 20, "total": 1}


def test_vendor_cannot_create_tender(api, vendor):
    api.login(vendor)
    response = api.post("/api/tenders", json=TENDER_BODY)
    assert response.status_code == 403
    assert response.json()["error"] == "AuthorizationError"


def test_submit_then_resubmit(api, vendor):
    tender = create_tender(api)
    api.login(vendor)
    first = api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY)
    assert first.status_code == 201
    second = api.post(f"/api/tenders/{tender['id']}/bids", json={**BID_BODY, "amount": 1400})
    assert second.status_code == 200
    assert second.json()["data"]["created"] is False
    assert second.json()["data"]["bid"]["id"] == first.json()["data"]["bid"]["id"]


def test_reject_then_withdraw_conflict(api, buyer, vendor):
    tender = create_tender(api)
    api.login(vendor)
    bid_id = api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY).json()["data"]["bid"]["id"]

    api.login(buyer)
    rejected = api.post(f"/api/bids/{bid_id}/reject", json={"reason": "Precio"})
    assert rejected.json()["data"]["status"] == "rejected"

    api.login(vendor)
    response = api.post(f"/api/bids/{bid_id}/withdraw", json={"reason": "Ya no"})
    assert response.status_code == 409
    assert response.json()["error"] == "StateConflictError"
    assert api.get(f"/api/bids/{bid_id}").json()["data"]["status"] == "rejected"

    history = api.get(f"/api/bids/{bid_id}/history").json()["data"]
    assert [h["action"] for h in history] == ["submitted", "rejected"]


def test_bid_update_after_deadline(api, vendor, clock):
    tender = create_tender(api)
    api.login(vendor)
    bid_id = api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY).json()["data"]["bid"]["id"]
    clock.advance(days=30)
    response = api.patch(f"/api/bids/{bid_id}", json={"amount": 10})
    assert response.status_code == 409
    assert response.json()["error"] == "DeadlineExpiredError"


def test_list_bids_by_role(api, buyer, other_buyer, vendor, other_vendor):
    tender = create_tender(api)
    for user in (vendor, other_vendor):
        api.login(user)
        api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY)

    api.login(vendor)
    mine = api.get("/api/bids").json()["data"]["items"]
    assert [b["vendor_id"] for b in mine] == [vendor.user_id]

    api.login(buyer)
    assert api.get("/api/bids").status_code == 400
    assert len(api.get("/api/bids", params={"tender_id": tender["id"]}).json()["data"]["items"]) == 2
    assert len(api.get(f"/api/tenders/{tender['id']}/bids").json()["data"]) == 2

    api.login(other_buyer)
    assert api.get("/api/bids", params={"tender_id": tender["id"]}).status_code == 403


def test_archive_and_delete_flow(api, vendor, buyer):
    tender = create_tender(api)
    api.login(vendor)
    api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY)
    api.login(buyer)

    archived = api.post(f"/api/tenders/{tender['id']}/archive").json()["data"]
    assert archived["is_archived"] is True
    restored = api.post(f"/api/tenders/{tender['id']}/unarchive").json()["data"]
    assert restored["status"] == "open"

    preview = api.get(f"/api/tenders/{tender['id']}/delete-preview").json()["data"]
    assert preview["bid_count"] == 1
    stale = api.delete(f"/api/tenders/{tender['id']}", params={"confirm_bid_count": 0})
    assert stale.status_code == 409
    deleted = api.delete(f"/api/tenders/{tender['id']}", params={"confirm_bid_count": preview["bid_count"]})
    assert deleted.status_code == 200
    assert deleted.json()["data"]["deleted_bids"] == 1
    assert api.get(f"/api/tenders/{tender['id']}").status_code == 404


def test_delete_requires_confirmation_param(api):
    tender = create_tender(api)
    assert api.delete(f"/api/tenders/{tender['id']}").status_code == 422


def test_tender_stats(api, vendor):
    tender = create_tender(api)
    api.login(vendor)
    api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY)
    stats = api.get(f"/api/tenders/{tender['id']}/stats").json()["data"]
    assert stats["total_bids"] == 1
    assert stats["by_status"]["pending"] == 1


def test_bid_attachments_upload_and_remove(api, vendor, upload_service):
    upload_service.fail_names = {"b.pdf"}
    tender = create_tender(api)
    api.login(vendor)
    bid_id = api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY).json()["data"]["bid"]["id"]

    files = [
        ("files", ("a.pdf", b"%PDF-1", "application/pdf")),
        ("files", ("b.pdf", b"%PDF-2", "application/pdf")),
        ("files", ("c.pdf", b"%PDF-3", "application/pdf")),
    ]
    result = api.post(f"/api/bids/{bid_id}/attachments", files=files).json()["data"]
    assert result["success_count"] == 2
    assert result["failure_count"] == 1

    bid = api.get(f"/api/bids/{bid_id}").json()["data"]
    assert [a["name"] for a in bid["attachments"]] == ["a.pdf", "c.pdf"]

    first_id = bid["attachments"][0]["id"]
    response = api.delete(f"/api/bids/{bid_id}/attachments", params={"attachment_id": first_id})
    assert [a["name"] for a in response.json()["data"]["attachments"]] == ["c.pdf"]
    assert upload_service.deleted == [first_id]


def test_uploads_batch_and_download(api, upload_service):
    files = [("files", ("pliego.pdf", b"%PDF", "application/pdf"))]
    data = api.post("/api/uploads", files=files, data={"owner_kind": "tender_batch"}).json()["data"]
    assert data["success_count"] == 1
    assert data["owner"]["owner_id"]
    stored = data["attachments"][0]["id"]
    assert stored.startswith("tenders/")

    download = api.get("/api/uploads/download", params={"filename": stored})
    assert download.content == b"%PDF"
    assert download.headers["content-disposition"].startswith("attachment")
    view = api.get("/api/uploads/view", params={"filename": stored})
    assert view.headers["content-disposition"].startswith("inline")

    assert api.delete("/api/uploads", params={"filename": stored}).status_code == 200
    assert api.delete("/api/uploads", params={"filename": stored}).status_code == 404


def test_categories_endpoints(api, admin, buyer):
    api.login(buyer)
    assert api.post("/api/categories", json={"name": "Limpieza"}).status_code == 403
    active = api.get("/api/categories", params={"active_only": True}).json()["data"]
    assert [c["name"] for c in active] == ["Construction", "IT Services"]

    api.login(admin)
    created = api.post("/api/categories", json={"name": "Limpieza"})
    assert created.status_code == 201
    assert api.post("/api/categories", json={"name": "limpieza"}).status_code == 409
    category_id = created.json()["data"]["id"]
    off = api.patch(f"/api/categories/{category_id}/active", json={"is_active": False}).json()["data"]
    assert off["is_active"] is False

    resolved = api.post("/api/categories/resolve", json={"category": "Pharmaceuticals"}).json()["data"]
    assert resolved == {"category": "Healthcare & Medical"}
    assert api.post("/api/categories/resolve", json={}).json()["data"] == {"category": "Other"}


def submit_bid(api, tender, vendor):
    api.login(vendor)
    response = api.post(f"/api/tenders/{tender['id']}/bids", json=BID_BODY)
    return response.json()["data"]["bid"]["id"]


PDF = [("files", ("a.pdf", b"%PDF-1", "application/pdf"))]


def test_bid_upload_after_deadline_stores_nothing(api, vendor, clock, upload_service):
    tender = create_tender(api)
    bid_id = submit_bid(api, tender, vendor)
    clock.advance(days=11)

    response = api.post(f"/api/bids/{bid_id}/attachments", files=PDF)

    assert response.status_code == 409
    assert response.json()["error"] == "DeadlineExpiredError"
    assert upload_service.files == {}


def test_bid_upload_by_other_vendor_stores_nothing(api, vendor, other_vendor, upload_service):
    tender = create_tender(api)
    bid_id = submit_bid(api, tender, vendor)
    api.login(other_vendor)

    assert api.post(f"/api/bids/{bid_id}/attachments", files=PDF).status_code == 403
    assert upload_service.files == {}


def test_bid_upload_discards_files_when_saving_fails(api, vendor, bid_service, upload_service, monkeypatch):
    tender = create_tender(api)
    bid_id = submit_bid(api, tender, vendor)

    def lost_race(*args, **kwargs):
        raise ConcurrentModificationError("El estado de la puja cambió.")

    monkeypatch.setattr(bid_service, "add_attachments", lost_race)
    response = api.post(f"/api/bids/{bid_id}/attachments", files=PDF)

    assert response.status_code == 409
    assert upload_service.files == {}
    assert len(upload_service.deleted) == 1


def test_bid_eligibility_endpoint(api, vendor, buyer):
    tender = create_tender(api)
    api.login(vendor)
    before = api.get(f"/api/bids/eligibility/{tender['id']}").json()["data"]
    assert before["can_bid"] is True
    assert before["has_existing_bid"] is False

    bid_id = submit_bid(api, tender, vendor)
    api.post(f"/api/bids/{bid_id}/withdraw", json={})
    after = api.get(f"/api/bids/eligibility/{tender['id']}").json()["data"]
    assert after["can_bid"] is False
    assert after["existing_bid_id"] == bid_id
    assert len(after["reasons"]) == 1

    api.login(buyer)
    assert api.get(f"/api/bids/eligibility/{tender['id']}").json()["data"]["can_bid"] is False
    assert api.get("/api/bids/eligibility/999").status_code == 404


def test_vendor_bid_stats_endpoint(api, vendor, buyer, admin):
    tender = create_tender(api)
    bid_id = submit_bid(api, tender, vendor)
    api.login(buyer)
    api.post(f"/api/bids/{bid_id}/accept")
    assert api.get("/api/bids/stats").status_code == 403

    api.login(vendor)
    stats = api.get("/api/bids/stats").json()["data"]
    assert stats["total_bids"] == 1
    assert stats["by_status"]["accepted"] == 1
    assert stats["win_rate"] == 1.0

    api.login(admin)
    assert api.get("/api/bids/stats", params={"vendor_id": vendor.user_id}).json()["data"]["total_bids"] == 1


def test_tender_files_flow(api, buyer, vendor, upload_service):
    batch = api.post(
        "/api/uploads",
        files=[("files", ("bases.pdf", b"%PDF-1", "application/pdf"))],
        data={"owner_kind": "tender_batch"},
    ).json()["data"]
    tender = create_tender(api, attachments=batch["attachments"])
    assert [a["name"] for a in tender["attachments"]] == ["bases.pdf"]

    added = api.post(
        f"/api/tenders/{tender['id']}/files",
        files=[("files", ("anexo.pdf", b"%PDF-2", "application/pdf"))],
    ).json()["data"]
    assert added["success_count"] == 1
    assert added["attachments"][0]["id"].startswith("tenders/")

    api.login(vendor)
    files = api.get(f"/api/tenders/{tender['id']}/files").json()["data"]
    assert [f["name"] for f in files] == ["bases.pdf", "anexo.pdf"]
    assert api.post(f"/api/tenders/{tender['id']}/files", files=PDF).status_code == 403

    bid_id = submit_bid(api, tender, vendor)
    assert api.post(f"/api/bids/{bid_id}/attachments", files=PDF).json()["data"]["success_count"] == 1
    assert len(upload_service.files) == 3

    api.login(buyer)
    deleted = api.delete(f"/api/tenders/{tender['id']}", params={"confirm_bid_count": 1})
    assert deleted.status_code == 200
    assert upload_service.files == {}


def test_tender_files_hidden_after_deadline(api, vendor, clock):
    tender = create_tender(api)
    clock.advance(days=11)
    api.login(vendor)
    response = api.get(f"/api/tenders/{tender['id']}/files")
    assert response.status_code == 403
