"""Pytest configuration and fixtures for the receipt gateway tests.

Every fixture runs against tests.fakes: no Azure account or network needed.
"""

from __future__ import annotations

import pytest

from backup.reconciler import BackupReconciler
from storage.config import StorageConfig
from storage.context import StorageContext
from storage.object_store.access import AccessIssuer
from storage.object_store.buckets import ObjectStore
from tests.fakes import ACCOUNT_KEY, ACCOUNT_NAME, FakeAccount, FakeClock

PRIMARY = "receipts"
BACKUP = "receipts-backup"
POLICY_ID = "permanent-read"

PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"


async def no_sleep(seconds: float) -> None:
    """Replacement for asyncio.sleep that returns immediately."""
    return None


@pytest.fixture(autouse=True)
def clean_storage_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real Azure settings out of the tests."""
    for name in (
        "AZURE_STORAGE_CONNECTION_STRING",
        "AZURE_STORAGE_ACCOUNT_NAME",
        "AZURE_STORAGE_ACCOUNT_KEY",
        "PERMANENT_SAS_POLICY_ID",
        "SAS_DEFAULT_EXPIRY_SECONDS",
        "API_KEYS",
        "ALLOW_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("COPY_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("COPY_POLL_INTERVAL_SECONDS", "1")
    monkeypatch.setenv("COPY_POLL_MAX_INTERVAL_SECONDS", "8")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def account(clock: FakeClock) -> FakeAccount:
    return FakeAccount(clock)


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(
        account_name=ACCOUNT_NAME,
        account_key=ACCOUNT_KEY,
        container_name=PRIMARY,
        backup_container_name=BACKUP,
        permanent_policy_id=POLICY_ID,
    )


@pytest.fixture
def context(storage_config: StorageConfig, account: FakeAccount) -> StorageContext:
    return StorageContext(
        config=storage_config,
        primary=account.container(PRIMARY),
        backup=account.container(BACKUP),
    )


@pytest.fixture
def store(context: StorageContext, clock: FakeClock) -> ObjectStore:
    return ObjectStore(context, clock=clock, sleep=no_sleep)


@pytest.fixture
def issuer(context: StorageContext, clock: FakeClock) -> AccessIssuer:
    return AccessIssuer(context, clock=clock)


@pytest.fixture
def reconciler(store: ObjectStore, issuer: AccessIssuer) -> BackupReconciler:
    return BackupReconciler(store, issuer)
