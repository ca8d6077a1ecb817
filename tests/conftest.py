# Shared pytest fixtures
from __future__ import annotations

import asyncio
import importlib
import tempfile
from pathlib import Path
from typing import Any

import pytest

from clientdesk.db.entity_store import EntityError, InMemoryBackend, InMemoryEntityStore
from clientdesk.logging.init import reset_logging


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def no_database(monkeypatch):
    # Tests never reach a real PostgreSQL server or SendGrid.
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    monkeypatch.delenv("SENDGRID_API_KEY", raising=False)


@pytest.fixture()
def sample_config_yaml() -> str:
    return """backend: memory
user_email: owner@example.com
import:
  batch_size: 50
  batch_delay_ms: 0
  retries: 2
  retry_base_delay_ms: 0
  uploads_dir: ./uploads
grid:
  debounce_ms: 10
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "clientdesk.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def clients_csv(temp_workdir: Path) -> Path:
    f = temp_workdir / "data" / "clients.csv"
    f.write_text(
        "Full Name,Mobile,Email,City\n"
        "Dana Levi,050-1234567,dana@example.com,Haifa\n"
        "Avi Cohen,052-7654321,avi@example.com,Tel Aviv\n"
        ",,,Eilat\n",
        encoding="utf-8",
    )
    return f


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture()
def client_store(backend: InMemoryBackend) -> InMemoryEntityStore:
    return backend.entity("Client")


class FlakyClientStore(InMemoryEntityStore):
    """In-memory Client store with scripted failures.

    ``fail_bulk``: every bulk_create raises.
    ``fail_bulk_calls``: 1-based bulk_create calls that raise.
    ``reject``: predicate on a payload; matching creates raise.
    ``fail_update_ids``: updates of these ids raise.
    ``fail_delete_ids``: deletes of these ids raise.
    """

    def __init__(self) -> None:
        super().__init__("Client")
        self.fail_bulk = False
        self.fail_bulk_calls: set[int] = set()
        self.reject = lambda payload: False
        self.fail_update_ids: set[str] = set()
        self.fail_delete_ids: set[str] = set()
        self.bulk_calls = 0
        self.bulk_sizes: list[int] = []
        self.create_calls = 0
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        self.deletes_in_flight = 0
        self.max_deletes_in_flight = 0

    async def bulk_create(self, payloads):
        self.bulk_calls += 1
        self.bulk_sizes.append(len(payloads))
        if self.fail_bulk or self.bulk_calls in self.fail_bulk_calls:
            raise EntityError("bulk create rejected")
        return await super().bulk_create(payloads)

    async def create(self, payload):
        self.create_calls += 1
        if self.reject(payload):
            raise EntityError(f"rejected {payload.get('name')}")
        return await super().create(payload)

    async def update(self, record_id, partial):
        self.update_calls.append((record_id, dict(partial)))
        if record_id in self.fail_update_ids:
            raise EntityError("update rejected")
        return await super().update(record_id, partial)

    async def delete(self, record_id):
        self.deletes_in_flight += 1
        self.max_deletes_in_flight = max(self.max_deletes_in_flight, self.deletes_in_flight)
        try:
            await asyncio.sleep(0)
            if record_id in self.fail_delete_ids:
                raise EntityError("delete rejected")
            await super().delete(record_id)
        finally:
            self.deletes_in_flight -= 1


@pytest.fixture()
def flaky_store() -> FlakyClientStore:
    return FlakyClientStore()


@pytest.fixture()
def flaky_cli_backend(monkeypatch, flaky_store: FlakyClientStore) -> FlakyClientStore:
    """Make the CLI's mock-mode backend hand out ``flaky_store`` for clients."""
    # clientdesk.cli re-exports main(), so resolve the module itself
    cli_module = importlib.import_module("clientdesk.cli.main")

    class FlakyBackend(InMemoryBackend):
        def entity(self, name: str):
            return flaky_store if name == "Client" else super().entity(name)

    monkeypatch.setattr(cli_module, "InMemoryBackend", FlakyBackend)
    return flaky_store
