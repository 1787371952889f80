"""
Root pytest configuration for backend tests.

Provides:
- Shared fixtures (app, client) on an in-memory SQLite database
- A frozen clock (`clock`) that every service and model default reads
- Fake upstream clients and row factories
"""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add backend directory to Python path so imports like
# `from services.arka_phone_fetch import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Must be set before config.py is imported (Config reads them at import time)
os.environ['APP_ENV'] = 'test'
os.environ['DATABASE_URL'] = 'sqlite://'

import pytest

from services.arka_api_client import ArkaAPIResponse

PIPELINE_ENV_VARS = (
    'SCHEDULER_ENABLED',
    'ENABLE_ARKA_FETCH_CRON',
    'ENABLE_ARKA_TRANSFER_CRON',
    'ENABLE_BUSINESS_TITLE_CRON',
    'ARKA_START_FETCH_ID',
    'ARKA_FETCH_BATCH',
    'ARKA_FETCH_INTERVAL_SECONDS',
    'ARKA_TRANSFER_INTERVAL_SECONDS',
    'ARKA_BULK_TRANSFER_INTERVAL_SECONDS',
    'BUSINESS_TITLE_INTERVAL_SECONDS',
    'ARKA_API_BASE_URL',
    'DIVAR_API_BASE_URL',
)

FROZEN_NOW = datetime(2025, 3, 10, 12, 0, 0)


@pytest.fixture(autouse=True)
def clean_pipeline_env(monkeypatch):
    """Every test starts from the documented defaults."""
    for name in PIPELINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# App / DB
# =============================================================================

@pytest.fixture
def app():
    """Create test Flask application with a fresh schema."""
    from app import create_app
    from models.database import db
    import services.health as health

    health._readiness_cache = None
    app = create_app({
        'TESTING': True,
        'RATELIMIT_ENABLED': False,
        'WORKER_API_TOKEN': '',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    from models.database import db
    return db.session


# =============================================================================
# Clock
# =============================================================================

class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock(monkeypatch):
    """Freeze utils.clock.utcnow(); call clock.advance(seconds=...) to move it."""
    frozen = FrozenClock(FROZEN_NOW)
    monkeypatch.setattr('utils.clock.utcnow', frozen)
    return frozen


# =============================================================================
# Fake upstreams
# =============================================================================

class FakeArkaClient:
    """Scripted catalog: unknown ids answer 404."""

    def __init__(self):
        self.responses = {}
        self.latest_response = ArkaAPIResponse(status_code=200, data={'posts': []})
        self.calls = []
        self.headers_seen = []

    def respond(self, arka_id, status_code, data=None, error=None):
        """Queue an answer for arka_id; the last queued answer repeats."""
        self.responses.setdefault(arka_id, []).append(
            ArkaAPIResponse(status_code=status_code, data=data, error=error)
        )

    def fetch_phone(self, arka_id, headers):
        self.calls.append(arka_id)
        self.headers_seen.append(headers)
        queue = self.responses.get(arka_id)
        if not queue:
            return ArkaAPIResponse(status_code=404, data={"message": "not found"})
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def fetch_latest_page(self, headers):
        self.headers_seen.append(headers)
        return self.latest_response


class FakeDivarClient:
    def __init__(self, titles=None, raises=False):
        self.titles = titles or {}
        self.raises = raises
        self.calls = []
        self.closed = False

    def fetch_brand_title(self, business_ref, headers):
        self.calls.append((business_ref, headers))
        if self.raises:
            raise RuntimeError('brand lookup exploded')
        return self.titles.get(business_ref)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_arka():
    return FakeArkaClient()


@pytest.fixture
def fake_divar():
    return FakeDivarClient()


@pytest.fixture
def phone_payload():
    """Builder for the 2xx body of a catalog phone record."""
    def _payload(link="https://divar.ir/v/AZk3fQ9p", phone="09121234567", owner="Reza"):
        record = {"id": 1, "link": link, "phone": phone, "malk_name": owner}
        return {"success": True, "data": record}
    return _payload


# =============================================================================
# Rows
# =============================================================================

@pytest.fixture
def arka_session(app):
    """An active catalog session with an Authorization header."""
    from services.session_provider import SessionProvider
    return SessionProvider().register(
        'arka',
        "Authorization: Bearer test-token\nUser-Agent: pytest\nContent-Length: 12",
        label='tests',
    )


@pytest.fixture
def make_post(app):
    from models.database import db
    from models.listing_post import ListingPost

    counter = {'n': 0}

    def _make(**fields):
        counter['n'] += 1
        values = {
            'external_id': f"ext{counter['n']:04d}",
            'contact_uuid': f"contact-{counter['n']}",
            'title': f"Listing {counter['n']}",
        }
        values.update(fields)
        post = ListingPost(**values)
        db.session.add(post)
        db.session.commit()
        return post.id

    return _make


@pytest.fixture
def make_record(app):
    from models.database import db
    from models.harvested_record import HarvestedRecord

    counter = {'n': 0}

    def _make(**fields):
        counter['n'] += 1
        values = {'arka_id': 20000 + counter['n']}
        values.update(fields)
        record = HarvestedRecord(**values)
        db.session.add(record)
        db.session.commit()
        return record.id

    return _make
