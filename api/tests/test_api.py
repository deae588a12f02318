import json
from io import BytesIO

import pytest
from pypdf import PdfReader
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app import export as export_module
from app.db import get_session
from app.models import Document, PLAN_FREE, PLAN_PREMIUM, Signature, User
from app.routers import webhooks as webhooks_router
from app.schemas import PlacementRequest
from app.utils import content_disposition, sign_webhook_body
from conftest import access_headers, build_pdf, image_data_url, with_mediabox

GEOMETRY = {
    "page_index": "0",
    "x": "100",
    "y": "200",
    "canvas_width": "800",
    "canvas_height": "1035.29",
    "signature_width": "150",
    "signature_height": "60",
}


def sign_upload(client, headers, pdf=None, filename="contract.pdf", signature=None, **overrides):
    data = {**GEOMETRY, "signature": signature or image_data_url("PNG"), **overrides}
    data = {k: v for k, v in data.items() if v is not None}
    return client.post(
        "/api/sign",
        files={"file": (filename, pdf or build_pdf(), "application/pdf")},
        data=data,
        headers=headers,
    )


def test_check_limit_requires_token(client):
    assert client.get("/api/signatures/check-limit").status_code == 401
    bad = client.get("/api/signatures/check-limit", headers={"X-Access-Token": "forged"})
    assert bad.status_code == 403


def test_check_limit_for_new_user(client, auth_headers, test_db):
    resp = client.get("/api/signatures/check-limit", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {
        "canSign": True,
        "remaining": 1,
        "signaturesCount": 0,
        "maxSignatures": 1,
        "plan": "FREE",
        "period": "week",
    }
    with Session(test_db.engine) as session:
        user = session.get(User, "user_1")
        assert user is not None
        assert user.plan == PLAN_FREE


def test_register_signature_then_limit_reached(client, auth_headers):
    missing = client.post("/api/signatures/register", json={}, headers=auth_headers)
    assert missing.status_code == 400

    first = client.post("/api/signatures/register", json={"fileName": "nda.pdf"}, headers=auth_headers)
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["signature"]["fileName"] == "nda.pdf"

    second = client.post("/api/signatures/register", json={"fileName": "nda.pdf"}, headers=auth_headers)
    assert second.status_code == 403
    assert "limit exceeded" in second.json()["detail"]

    history = client.get("/api/signatures", headers=auth_headers).json()
    assert [s["fileName"] for s in history] == ["nda.pdf"]


def test_sign_upload_returns_signed_pdf(client, auth_headers):
    original = build_pdf(((612, 792), (612, 792)))
    resp = sign_upload(client, auth_headers, pdf=original, filename="lease.pdf")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert 'filename="signed-lease.pdf"' in resp.headers["content-disposition"]
    assert resp.headers["x-usage-recorded"] == "true"
    assert resp.headers["x-quota-remaining"] == "0"
    assert resp.headers["x-quota-plan"] == "FREE"
    signed = PdfReader(BytesIO(resp.content))
    assert len(signed.pages) == 2


def test_advisory_policy_exports_when_quota_exhausted(client, auth_headers, test_db):
    assert sign_upload(client, auth_headers).status_code == 200
    limit = client.get("/api/signatures/check-limit", headers=auth_headers).json()
    assert limit["canSign"] is False

    resp = sign_upload(client, auth_headers)
    assert resp.status_code == 200
    assert resp.content.startswith(b"%PDF")
    assert resp.headers["x-usage-recorded"] == "false"
    assert resp.headers["x-quota-remaining"] == "0"
    with Session(test_db.engine) as session:
        assert len(session.exec(select(Signature)).all()) == 1


def test_enforce_policy_blocks_export(client, auth_headers):
    client.app.state.quota_policy = "enforce"
    assert sign_upload(client, auth_headers).status_code == 200
    resp = sign_upload(client, auth_headers)
    assert resp.status_code == 403


def test_usage_recording_failure_keeps_export(client, auth_headers, monkeypatch):
    def broken_register(*args, **kwargs):
        raise OperationalError("INSERT INTO signature", {}, Exception("database is locked"))

    monkeypatch.setattr(export_module, "register_usage", broken_register)
    resp = sign_upload(client, auth_headers)
    assert resp.status_code == 200
    assert resp.headers["x-usage-recorded"] == "false"
    assert resp.headers["x-quota-remaining"] == "1"


def test_quota_check_failure_keeps_export(client, auth_headers, monkeypatch):
    assert sign_upload(client, auth_headers).status_code == 200

    def broken_check(*args, **kwargs):
        raise OperationalError("SELECT count(signature.id)", {}, Exception("database is locked"))

    monkeypatch.setattr(export_module, "check_quota", broken_check)
    client.app.state.quota_policy = "enforce"
    resp = sign_upload(client, auth_headers)
    assert resp.status_code == 200
    assert resp.content.startswith(b"%PDF")
    assert [k for k in resp.headers.keys() if k.lower().startswith("x-quota-")] == []
    assert resp.headers["x-usage-recorded"] == "false"


def test_sign_upload_non_ascii_filename(client, auth_headers, test_db):
    resp = sign_upload(client, auth_headers, filename="合同.pdf")
    assert resp.status_code == 200
    disposition = resp.headers["content-disposition"]
    assert 'filename="signed-__.pdf"' in disposition
    assert "filename*=UTF-8''signed-%E5%90%88%E5%90%8C.pdf" in disposition
    assert resp.headers["x-usage-recorded"] == "true"
    with Session(test_db.engine) as session:
        assert [s.file_name for s in session.exec(select(Signature)).all()] == ["合同.pdf"]


def test_content_disposition_escapes_quotes():
    assert content_disposition("signed-lease.pdf") == 'attachment; filename="signed-lease.pdf"'
    header = content_disposition('signed-"draft".pdf')
    assert header.startswith('attachment; filename="signed-_draft_.pdf"')
    assert "filename*=UTF-8''signed-%22draft%22.pdf" in header


def test_placement_scales_against_first_page(monkeypatch):
    captured = {}

    def capture(reader, image, page_index, placement):
        captured["page_index"] = page_index
        captured["placement"] = placement
        return b"%PDF-1.4"

    monkeypatch.setattr(export_module, "composite_signature", capture)
    geom = PlacementRequest(
        signature=image_data_url("PNG"), page_index=1, x=100, y=200,
        canvas_width=800, canvas_height=1035.29, signature_width=150, signature_height=60,
    )
    export_module.sign_document(build_pdf(((612, 792), (842, 595))), geom)
    placement = captured["placement"]
    assert captured["page_index"] == 1
    assert placement.scale_ratio == pytest.approx(0.765)
    assert placement.pdf_position.x == pytest.approx(76.5)
    assert placement.pdf_position.y == pytest.approx(593.1)
    assert placement.pdf_size.width == pytest.approx(114.75)


def test_sign_upload_degenerate_first_page(client, auth_headers):
    flat = with_mediabox(build_pdf(), [0, 0, 0, 792])
    resp = sign_upload(client, auth_headers, pdf=flat, canvas_width=None, canvas_height=None,
                       viewport_width="1440")
    assert resp.status_code == 400
    assert "degenerate" in resp.json()["detail"]
    assert client.get("/api/signatures", headers=auth_headers).json() == []


def test_sign_upload_page_out_of_range(client, auth_headers):
    resp = sign_upload(client, auth_headers, pdf=build_pdf(((612, 792),) * 3), page_index="5")
    assert resp.status_code == 422
    assert "out of range" in resp.json()["detail"]
    assert client.get("/api/signatures", headers=auth_headers).json() == []


def test_sign_upload_rejects_bad_inputs(client, auth_headers):
    assert sign_upload(client, auth_headers, pdf=b"garbage").status_code == 400
    assert sign_upload(client, auth_headers, signature="data:image/png;base64,AAAA").status_code == 400


def test_sign_upload_estimates_geometry_without_canvas(client, auth_headers):
    resp = sign_upload(client, auth_headers, canvas_width=None, canvas_height=None, viewport_width="1440")
    assert resp.status_code == 200

    missing = sign_upload(
        client, access_headers(sub="user_2", email="other@example.com"),
        canvas_width=None, canvas_height=None,
    )
    assert missing.status_code == 422


def test_stored_document_flow(client, auth_headers, mock_storage, test_db):
    original = build_pdf(((595, 842), (595, 842), (595, 842)))
    upload = client.post(
        "/api/documents",
        files={"file": ("offer.pdf", original, "application/pdf")},
        headers=auth_headers,
    )
    assert upload.status_code == 200
    doc = upload.json()
    assert doc["page_count"] == 3
    assert doc["page_size"] == {"width": 595.0, "height": 842.0}

    listing = client.get("/api/documents", headers=auth_headers).json()
    assert [d["id"] for d in listing] == [doc["id"]]

    payload = {"signature": image_data_url("JPEG"), "page_index": 2, "x": 40, "y": 60,
               "canvas_width": 595, "signature_scale": 1.2}
    signed = client.post(f"/api/documents/{doc['id']}/sign", json=payload, headers=auth_headers)
    assert signed.status_code == 200
    assert 'filename="signed-offer.pdf"' in signed.headers["content-disposition"]
    assert len(PdfReader(BytesIO(signed.content)).pages) == 3

    download = client.get(f"/api/documents/{doc['id']}/pdf", headers=auth_headers)
    assert download.content == original

    other = access_headers(sub="user_2", email="other@example.com")
    assert client.get(f"/api/documents/{doc['id']}", headers=other).status_code == 404

    assert client.delete(f"/api/documents/{doc['id']}", headers=auth_headers).status_code == 204
    assert mock_storage == {}
    with Session(test_db.engine) as session:
        assert session.exec(select(Document)).first() is None


def test_upload_rejects_non_pdf(client, auth_headers, mock_storage):
    resp = client.post(
        "/api/documents",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert mock_storage == {}


class DocumentCommitFails(Session):
    def commit(self):
        if any(isinstance(obj, Document) for obj in (*self.new, *self.dirty)):
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        super().commit()


def test_upload_removes_stored_original_when_commit_fails(client, auth_headers, mock_storage, test_db):
    def failing_session():
        with DocumentCommitFails(test_db.engine) as session:
            yield session

    client.app.dependency_overrides[get_session] = failing_session
    try:
        with pytest.raises(OperationalError):
            client.post(
                "/api/documents",
                files={"file": ("offer.pdf", build_pdf(), "application/pdf")},
                headers=auth_headers,
            )
    finally:
        client.app.dependency_overrides.pop(get_session, None)
    assert mock_storage == {}
    with Session(test_db.engine) as session:
        assert session.exec(select(Document)).first() is None


def _identity_event(client, event):
    body = json.dumps(event).encode()
    return client.post(
        "/api/webhooks/identity",
        content=body,
        headers={"Content-Type": "application/json", "X-Webhook-Signature": sign_webhook_body(body)},
    )


def test_identity_webhook_syncs_profiles(client, test_db):
    created = _identity_event(client, {
        "type": "user.created",
        "data": {"id": "user_9", "email_addresses": [{"email_address": "nine@example.com"}],
                 "first_name": "Nia", "last_name": "Nine"},
    })
    assert created.status_code == 200
    with Session(test_db.engine) as session:
        user = session.get(User, "user_9")
        assert user.name == "Nia Nine"
        assert user.plan == PLAN_FREE

    updated = _identity_event(client, {
        "type": "user.updated",
        "data": {"id": "user_9", "email_addresses": [{"email_address": "nia@example.com"}]},
    })
    assert updated.status_code == 200
    with Session(test_db.engine) as session:
        assert session.get(User, "user_9").email == "nia@example.com"

    deleted = _identity_event(client, {"type": "user.deleted", "data": {"id": "user_9"}})
    assert deleted.json()["deleted"] is True
    with Session(test_db.engine) as session:
        assert session.get(User, "user_9") is None


def test_identity_webhook_rejects_malformed_email_list(client, test_db):
    resp = _identity_event(client, {
        "type": "user.created",
        "data": {"id": "user_9", "email_addresses": ["nine@example.com"]},
    })
    assert resp.status_code == 400
    with Session(test_db.engine) as session:
        assert session.get(User, "user_9") is None


def test_identity_webhook_rejects_bad_signature(client):
    resp = client.post(
        "/api/webhooks/identity",
        content=b'{"type": "user.deleted", "data": {"id": "user_1"}}',
        headers={"Content-Type": "application/json", "X-Webhook-Signature": "forged"},
    )
    assert resp.status_code == 400


def test_stripe_subscription_events_change_plan(client, auth_headers, test_db, monkeypatch):
    client.get("/api/signatures/check-limit", headers=auth_headers)
    with Session(test_db.engine) as session:
        user = session.get(User, "user_1")
        user.stripe_customer_id = "cus_123"
        session.add(user)
        session.commit()

    events = iter([
        {"type": "customer.subscription.updated",
         "data": {"object": {"customer": "cus_123", "status": "active"}}},
        {"type": "customer.subscription.deleted",
         "data": {"object": {"customer": "cus_123", "status": "canceled"}}},
    ])
    monkeypatch.setattr(webhooks_router, "construct_event", lambda payload, sig: next(events))

    upgraded = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})
    assert upgraded.json() == {"received": True, "plan": PLAN_PREMIUM}
    limit = client.get("/api/signatures/check-limit", headers=auth_headers).json()
    assert limit["maxSignatures"] == 50
    assert limit["period"] == "month"

    downgraded = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})
    assert downgraded.json()["plan"] == PLAN_FREE


def test_stripe_webhook_requires_signature_header(client):
    assert client.post("/api/webhooks/stripe", content=b"{}").status_code == 400


def test_checkout_unavailable_without_stripe(client, auth_headers, monkeypatch):
    from app import billing

    monkeypatch.setattr(billing, "STRIPE_SECRET_KEY", None)
    resp = client.post("/api/billing/checkout", headers=auth_headers)
    assert resp.status_code == 503
