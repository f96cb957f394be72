import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SEARCH_SYNC_URL", "")

import pytest
from sqlalchemy.orm import sessionmaker

import catalog.db.models  # noqa: F401  (register tables on Base.metadata)
from catalog.db.base import Base
from catalog.db.models.import_source import ImportSource
from catalog.db.session import build_engine
from catalog.utils.keyed_lock import KeyedMutex


class FakeRedis:
    """Dict-backed stand-in for the progress snapshot client."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    def get(self, key):
        return self.store.get(key)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(
        "catalog.services.progress_tracker.get_redis_client", lambda: client
    )
    return client


@pytest.fixture
def engine(tmp_path):
    # File-backed so worker threads in concurrency tests share one database
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'catalog.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def lock():
    return KeyedMutex()


@pytest.fixture
def make_source(db):
    def _make(source_id: str = "feed-a", **overrides) -> ImportSource:
        values = {
            "source_id": source_id,
            "source_name": overrides.pop("source_name", source_id.title()),
            "auto_publish_enabled": False,
            "min_score_threshold": 80,
            "required_fields": [],
            "field_mappings": {},
        }
        values.update(overrides)
        source = ImportSource(**values)
        db.add(source)
        db.commit()
        return source

    return _make


@pytest.fixture
def complete_product() -> dict:
    """A payload that earns every scoring signal (score 100)."""
    return {
        "sku": "SKU-100",
        "name": "Stainless steel kettle 1.7L",
        "description": "Brushed stainless steel electric kettle with a 1.7 litre "
        "capacity and automatic shut-off.",
        "brand": {"brand_id": "b-1", "label": "Acme"},
        "category": {"category_id": "c-9", "name": "Kitchen"},
        "images": [
            {"url": "https://cdn.example.com/k1.jpg"},
            {"url": "https://cdn.example.com/k2.jpg"},
            {"url": "https://cdn.example.com/k3.jpg"},
        ],
        "price": 49.9,
        "marketing_features": ["1.7L", "Auto shut-off", "360 base", "Steel", "Filter"],
        "packaging_options": [{"code": "BOX", "qty": 1}],
    }
