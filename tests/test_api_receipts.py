"""Tests for the receipt HTTP routes."""

import asyncio
import re

import pytest
from fastapi.testclient import TestClient

from apps.api.config import GatewayConfig
from apps.api.main import create_app
from security.auth.api_keys import APIKeyGate
from tests.conftest import BACKUP, PDF_BYTES, POLICY_ID, PRIMARY

API_KEY = "till-secret"
HEADERS = {"x-api-key": API_KEY}
PATH_PATTERN = re.compile(r"^client/acme/2024/03/05/till-1/[0-9a-f-]{36}\.pdf$")


@pytest.fixture
def gateway_config(monkeypatch: pytest.MonkeyPatch) -> GatewayConfig:
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "1024")
    monkeypatch.setenv("BACKUP_ENABLED", "false")
    return GatewayConfig()


@pytest.fixture
def app(context, gateway_config, clock):
    return create_app(
        context=context,
        config=gateway_config,
        gate=APIKeyGate([API_KEY]),
        clock=clock,
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def upload(client: TestClient, content: bytes = PDF_BYTES, content_type: str = "application/pdf", **fields):
    data = {"clientId": "acme", "posId": "till-1", "dateISO": "2024-03-05"}
    data.update(fields)
    return client.post(
        "/api/receipts/upload",
        files={"file": ("receipt.pdf", content, content_type)},
        data={k: v for k, v in data.items() if v is not None},
        headers=HEADERS,
    )


# ==================== HEALTH + AUTH ====================

def test_health_is_unauthenticated(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_missing_api_key_is_rejected(client: TestClient) -> None:
    response = client.get("/api/receipts/info", params={"blobPath": "client/acme/x.pdf"})

    assert response.status_code == 401


def test_wrong_api_key_is_rejected(client: TestClient) -> None:
    response = client.get(
        "/api/receipts/info",
        params={"blobPath": "client/acme/x.pdf"},
        headers={"x-api-key": "nope"},
    )

    assert response.status_code == 401


def test_open_mode_without_keys(context, gateway_config, clock) -> None:
    client = TestClient(create_app(context=context, config=gateway_config, gate=APIKeyGate([]), clock=clock))

    response = client.get("/api/receipts/info", params={"blobPath": "client/acme/x.pdf"})

    assert response.status_code == 404


def test_security_headers(client: TestClient) -> None:
    response = client.get("/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "SAMEORIGIN"


# ==================== UPLOAD ====================

def test_upload_returns_blob_path(client: TestClient, account) -> None:
    response = upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert PATH_PATTERN.match(body["blobPath"])
    assert account.container(PRIMARY).blobs[body["blobPath"]].data == PDF_BYTES


def test_upload_with_receipt_id(client: TestClient) -> None:
    response = upload(client, receiptId="r-0001")

    assert response.json()["blobPath"] == "client/acme/2024/03/05/till-1/r-0001.pdf"


def test_upload_accepts_octet_stream(client: TestClient) -> None:
    response = upload(client, content_type="application/octet-stream")

    assert response.status_code == 200


def test_upload_rejects_non_pdf(client: TestClient) -> None:
    response = upload(client, content_type="text/plain")

    assert response.status_code == 400
    assert response.json()["detail"] == "Only PDF files are allowed"


def test_upload_without_file(client: TestClient) -> None:
    response = client.post(
        "/api/receipts/upload",
        data={"clientId": "acme", "posId": "till-1"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "No file uploaded"


def test_upload_without_client_id(client: TestClient, account) -> None:
    response = upload(client, clientId=None)

    assert response.status_code == 400
    assert account.container(PRIMARY).blobs == {}


def test_upload_too_large(client: TestClient) -> None:
    response = upload(client, content=b"%PDF" + b"0" * 2048)

    assert response.status_code == 413


def test_oversized_body_rejected_from_content_length(client: TestClient, account) -> None:
    response = upload(client, content=b"%PDF" + b"0" * (100 * 1024))

    assert response.status_code == 413
    assert response.json()["detail"] == "Request body exceeds the 1024 byte upload limit"
    assert account.container(PRIMARY).blobs == {}


def test_upload_with_bad_date(client: TestClient) -> None:
    response = upload(client, dateISO="yesterday")

    assert response.status_code == 400


# ==================== DOWNLOAD + INFO ====================

def test_download_streams_inline(client: TestClient) -> None:
    path = upload(client, receiptId="r-1").json()["blobPath"]

    response = client.get("/api/receipts/download", params={"blobPath": path}, headers=HEADERS)

    assert response.status_code == 200
    assert response.content == PDF_BYTES
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == 'inline; filename="r-1.pdf"'


def test_download_as_attachment(client: TestClient) -> None:
    path = upload(client, receiptId="r-1").json()["blobPath"]

    response = client.get(
        "/api/receipts/download",
        params={"blobPath": path, "attachment": "true"},
        headers=HEADERS,
    )

    assert response.headers["content-disposition"] == 'attachment; filename="r-1.pdf"'


def test_download_missing_blob(client: TestClient) -> None:
    response = client.get(
        "/api/receipts/download",
        params={"blobPath": "client/acme/2024/03/05/till-1/none.pdf"},
        headers=HEADERS,
    )

    assert response.status_code == 404


def test_download_without_path(client: TestClient) -> None:
    response = client.get("/api/receipts/download", headers=HEADERS)

    assert response.status_code == 400


def test_info(client: TestClient) -> None:
    path = upload(client, receiptId="r-1").json()["blobPath"]

    response = client.get("/api/receipts/info", params={"blobPath": path}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["url"].endswith(f"/{PRIMARY}/{path}")
    assert body["properties"]["contentType"] == "application/pdf"
    assert body["properties"]["contentLength"] == len(PDF_BYTES)
    assert body["metadata"] == {"clientId": "acme", "posId": "till-1", "receiptDate": "2024-03-05"}
    assert body["tags"] == {"backup": "needed", "client": "acme", "pos": "till-1"}


def test_info_missing_blob(client: TestClient) -> None:
    response = client.get(
        "/api/receipts/info",
        params={"blobPath": "client/acme/2024/03/05/till-1/none.pdf"},
        headers=HEADERS,
    )

    assert response.status_code == 404


def test_verify(client: TestClient) -> None:
    path = upload(client).json()["blobPath"]

    response = client.get("/api/receipts/verify", params={"blobPath": path}, headers=HEADERS)

    assert response.json() == {"blobPath": path, "ok": True}


# ==================== SIGNED URLS ====================

def test_signed_url_expiring(client: TestClient, account) -> None:
    path = upload(client).json()["blobPath"]

    response = client.post(
        "/api/receipts/signed-url",
        json={"blobPath": path, "expirySeconds": 600, "permissions": "r"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["expiresIn"] == 600
    assert account.dereference(body["url"]).data == PDF_BYTES


def test_signed_url_default_expiry(client: TestClient) -> None:
    response = client.post(
        "/api/receipts/signed-url",
        json={"blobPath": "client/acme/x.pdf"},
        headers=HEADERS,
    )

    assert response.json()["expiresIn"] == 3600


def test_signed_url_permanent(client: TestClient, context, account) -> None:
    asyncio.run(context.ensure_permanent_policy())
    path = upload(client).json()["blobPath"]

    response = client.post(
        "/api/receipts/signed-url",
        json={"blobPath": path, "permanent": True},
        headers=HEADERS,
    )

    body = response.json()
    assert body["expiresIn"] is None
    assert f"si={POLICY_ID}" in body["url"]
    assert account.dereference(body["url"]).data == PDF_BYTES


def test_signed_url_invalid_permissions(client: TestClient) -> None:
    response = client.post(
        "/api/receipts/signed-url",
        json={"blobPath": "client/acme/x.pdf", "permissions": "x"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert "Invalid SAS permissions" in response.json()["detail"]


def test_signed_url_empty_permissions(client: TestClient) -> None:
    response = client.post(
        "/api/receipts/signed-url",
        json={"blobPath": "client/acme/x.pdf", "permissions": ""},
        headers=HEADERS,
    )

    assert response.status_code == 400


def test_signed_url_null_permissions_mean_read(client: TestClient) -> None:
    response = client.post(
        "/api/receipts/signed-url",
        json={"blobPath": "client/acme/x.pdf", "permissions": None},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert "sp=r&" in response.json()["url"]


# ==================== BACKUP ====================

def test_upload_backup_scenario(client: TestClient, account) -> None:
    path = upload(client).json()["blobPath"]
    assert PATH_PATTERN.match(path)

    info = client.get("/api/receipts/info", params={"blobPath": path}, headers=HEADERS).json()
    assert info["tags"]["backup"] == "needed"

    report = client.post("/api/receipts/backup/run", headers=HEADERS).json()
    assert report["copied"] == 1
    assert report["failed"] == 0

    info = client.get("/api/receipts/info", params={"blobPath": path}, headers=HEADERS).json()
    assert info["tags"]["backup"] == "done"
    assert account.container(BACKUP).blobs[path].data == PDF_BYTES


# ==================== LIFECYCLE ====================

def test_startup_bootstraps_storage(app, account) -> None:
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200

    assert account.container(PRIMARY).created
    assert account.container(BACKUP).created
    assert POLICY_ID in account.container(PRIMARY).policies


def test_startup_starts_and_stops_backup_job(context, monkeypatch, clock) -> None:
    monkeypatch.setenv("BACKUP_ENABLED", "true")
    app = create_app(context=context, config=GatewayConfig(), gate=APIKeyGate([]), clock=clock)

    with TestClient(app):
        assert app.state.backup_scheduler.running

    assert not app.state.backup_scheduler.running
