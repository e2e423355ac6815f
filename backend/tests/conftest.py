import asyncio
import os
import socket
import sys
from pathlib import Path

import pytest

BACKEND = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed package.
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from app.core.config import Settings  # noqa: E402
from app.core.database import Database  # noqa: E402
from app.services.collectors import Collector  # noqa: E402
from app.services.geocoding import GeocodingError  # noqa: E402
from app.services.ingestion import IngestionOrchestrator  # noqa: E402
from app.services.normalizer import ManualRecord, RecordNormalizer  # noqa: E402


DENVER = (39.7392, -104.9903)


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


class FakeGeocoder:
    """Geocoder answering from a fixed table."""

    def __init__(self, places=None, fail=False):
        self.places = places if places is not None else {
            "denver": DENVER,
            "denver, co": DENVER,
        }
        self.fail = fail
        self.queries = []

    async def geocode(self, query):
        self.queries.append(query)
        if self.fail:
            raise GeocodingError("geocoder unavailable")
        return self.places.get(query.strip().lower())

    async def reverse(self, lat, lng):
        if self.fail:
            raise GeocodingError("geocoder unavailable")
        for name, coords in self.places.items():
            if coords == (lat, lng):
                return name.title()
        return None


class FakeCollector(Collector):
    """Collector returning canned records, raising, or stalling."""

    def __init__(
        self,
        name,
        records=None,
        error=None,
        delay=0.0,
        requires_location=False,
        requires_coordinates=False,
    ):
        self.name = name
        self.records = records or []
        self.error = error
        self.delay = delay
        self.requires_location = requires_location
        self.requires_coordinates = requires_coordinates
        self.contexts = []

    async def collect(self, context):
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.records)


def manual_records(ids, source="LoopNet", city="Denver", state="CO"):
    """Synthetic listings around downtown Denver, one per id."""
    records = []
    for i in ids:
        records.append(ManualRecord(
            external_id=f"listing-{i}",
            name=f"Retail Center {i}",
            address=f"{100 + i} Main St",
            city=city,
            state=state,
            latitude=DENVER[0] + i * 0.001,
            longitude=DENVER[1] - i * 0.001,
            price=1_000_000 + i * 50_000,
            sqft=10_000,
            vacancy_rate=float(5 + i),
            cap_rate=6.0 + (i % 5),
            source=source,
        ))
    return records


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        DEBUG=False,
        AUTO_MIGRATE=True,
        GOOGLE_PLACES_API_KEY=None,
        GOOGLE_MAPS_API_KEY=None,
        COLLECTOR_TIMEOUT_SECONDS=2.0,
        SYNTHESIZE_MISSING_VACANCY=False,
    )


@pytest.fixture
def database(test_settings):
    db = Database(test_settings.DATABASE_URL)
    db.migrate()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    with database.session() as db:
        yield db


@pytest.fixture
def normalizer():
    return RecordNormalizer()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def make_orchestrator(database, normalizer, geocoder):
    def _make(collectors, timeout=2.0, geocoder_override=None):
        return IngestionOrchestrator(
            database,
            collectors,
            normalizer,
            geocoder=geocoder_override or geocoder,
            collector_timeout=timeout,
        )
    return _make


@pytest.fixture
def make_client(test_settings, database, geocoder):
    from fastapi.testclient import TestClient

    from app.main import create_app

    clients = []

    def _make(collectors=None, geocoder_override=None):
        app = create_app(
            settings=test_settings,
            database=database,
            geocoder=geocoder_override or geocoder,
            collectors=collectors or [],
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
