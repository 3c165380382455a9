from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from imprest_workflow.common.db import Base, make_engine
from imprest_workflow.common.settings import get_settings


@pytest.fixture()
def imprest_env(tmp_path: Path, monkeypatch):
    """Temporary SQLite database with the imprest schema; yields the engine."""
    db = tmp_path / "imprest.sqlite"
    monkeypatch.setenv("IMPREST_DB_DSN", f"sqlite+pysqlite:///{db}")
    monkeypatch.setenv("IMPREST_AUTH_MODE", "none")
    monkeypatch.setenv("IMPREST_S3_ENDPOINT", "minio:9000")
    monkeypatch.setenv("IMPREST_S3_ACCESS_KEY", "minioadmin")
    monkeypatch.setenv("IMPREST_S3_SECRET_KEY", "minioadmin")
    get_settings.cache_clear()

    import imprest_workflow.common.models  # noqa: F401  (registers tables)

    engine = make_engine()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()
    get_settings.cache_clear()


class FakeReceiptStore:
    """Records uploads instead of talking to S3."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[tuple[str, str, bytes]] = []

    def upload_receipt(self, imprest_id: str, filename: str, data: bytes, content_type: str | None = None):
        from imprest_workflow.common.storage import S3ObjectRef
        from imprest_workflow.kernel.errors import UpstreamError

        if self.fail:
            raise UpstreamError("receipt upload failed: connection refused", details={"imprest_id": imprest_id})
        self.uploads.append((imprest_id, filename, data))
        return S3ObjectRef(bucket="imprest-receipts", key=f"imprests/{imprest_id}/{filename}")


@pytest.fixture()
def receipt_store() -> FakeReceiptStore:
    return FakeReceiptStore()


@pytest.fixture()
def failing_receipt_store() -> FakeReceiptStore:
    return FakeReceiptStore(fail=True)


@pytest.fixture()
def client(imprest_env, receipt_store, monkeypatch):
    from imprest_workflow.api import main as api_main

    api_main.ENGINE = None
    monkeypatch.setattr(api_main, "RECEIPT_STORE", receipt_store)
    with TestClient(api_main.app, raise_server_exceptions=False) as c:
        yield c
    api_main.ENGINE = None


def actor_headers(actor_id: str, role: str, department: str | None = None, name: str = "") -> dict[str, str]:
    headers = {"X-Actor-Id": actor_id, "X-Actor-Role": role}
    if department:
        headers["X-Actor-Department"] = department
    if name:
        headers["X-Actor-Name"] = name
    return headers


@pytest.fixture()
def headers() -> dict[str, dict[str, str]]:
    return {
        "requester": actor_headers("u-req", "requester", "Finance", "Jane Wanjiku"),
        "hod": actor_headers("u-hod", "hod", "Finance", "Peter Otieno"),
        "other_hod": actor_headers("u-hod-ops", "hod", "Operations", "Mary Achieng"),
        "accountant": actor_headers("u-acc", "accountant", "Accounts", "Ali Hassan"),
        "admin": actor_headers("u-admin", "admin", None, "Sys Admin"),
    }
