import os
import socket
import sys
import time
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed package.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config.sync_config import build_config, set_config  # noqa: E402
from services.agency_service import Agency  # noqa: E402
from services.provider_clients import ProviderUnavailable  # noqa: E402


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0]
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable stand-in for a supabase table query"""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.filters = []
        self.payload = None
        self.on_conflict = None
        self._order = None
        self._limit = None

    def select(self, *columns):
        self.op = "select"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def insert(self, row):
        self.op = "insert"
        self.payload = row
        return self

    def update(self, data):
        self.op = "update"
        self.payload = data
        return self

    def upsert(self, row, on_conflict=None):
        self.op = "upsert"
        self.payload = row
        self.on_conflict = on_conflict
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        self.db.calls.append((self.table, self.op))
        if self.table in self.db.failing_tables:
            raise RuntimeError(f"{self.table} unavailable")

        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "select":
            result = [dict(row) for row in rows if self._matches(row)]
            if self._order:
                column, desc = self._order
                result.sort(
                    key=lambda row: (row.get(column) is None, row.get(column) if row.get(column) is not None else 0),
                    reverse=desc,
                )
            if self._limit is not None:
                result = result[:self._limit]
            return FakeResponse(result)

        if self.op == "insert":
            row = dict(self.payload)
            row.setdefault("id", f"{self.table}-{len(rows) + 1}")
            rows.append(row)
            return FakeResponse([dict(row)])

        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(dict(row))
            return FakeResponse(updated)

        # upsert
        row = dict(self.payload)
        self.db.upserts.append((self.table, self.on_conflict, dict(row)))
        keys = [key.strip() for key in (self.on_conflict or "id").split(",")]
        for existing in rows:
            if all(existing.get(key) == row.get(key) for key in keys):
                existing.clear()
                existing.update(row)
                return FakeResponse([dict(existing)])
        rows.append(row)
        return FakeResponse([dict(row)])


class FakeSupabase:
    """In-memory supabase client covering the calls the services make"""

    def __init__(self, tables=None):
        self.tables = {name: [dict(row) for row in rows] for name, rows in (tables or {}).items()}
        self.failing_tables = set()
        self.calls = []
        self.upserts = []

    def table(self, name):
        return FakeQuery(self, name)


class FakeClient:
    """Provider client returning canned records by external id"""

    def __init__(self, provider, records=None, delay=0.0):
        self.provider = provider
        self.records = dict(records or {})
        self.delay = delay
        self.calls = []
        self.refreshes = []

    def fetch(self, credential, external_id, force_refresh=False):
        self.calls.append((credential, external_id))
        self.refreshes.append(force_refresh)
        if self.delay:
            time.sleep(self.delay)
        value = self.records.get(external_id)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ProviderUnavailable(self.provider, "Property not found", not_found=True)
        return value


AGENCY_ROW = {
    "id": 1,
    "name": "Harbour Estates",
    "unique_key": "uk-harbour",
    "primary_source": "daft,myhome",
    "acquaint_site_prefix": "HBR",
    "daft_api_key": "daft-key",
    "myhome_api_key": "myhome-key",
}


@pytest.fixture
def sync_config(monkeypatch):
    for name in ("CACHE_EXPIRY_HOURS", "FETCH_TIMEOUT_SECONDS", "SYNC_LOG_LEVEL", "PROVIDER_API_BASE_URL"):
        monkeypatch.delenv(name, raising=False)

    config = build_config({
        "api": {"base_url": "https://api.example.test/api"},
        "fetch": {"timeout_seconds": 2},
        "rate_limiting": {
            "delay_between_properties": 0,
            "pause_every_properties": 0,
            "pause_seconds": 0,
            "delay_between_agencies": 0,
        },
    })
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def agency_row():
    return dict(AGENCY_ROW)


@pytest.fixture
def agency(agency_row):
    return Agency.from_row(agency_row)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def make_client():
    return FakeClient
