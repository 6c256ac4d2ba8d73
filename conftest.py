import os
import tempfile
import uuid
from collections import defaultdict
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Optional developer overrides for the test run (never required)
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=False)

# Settings are read at import time all over the codebase, so the test
# environment has to be in place before anything from libs/ or services/ loads.
_TEST_DIR = tempfile.mkdtemp(prefix="bookstore-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/app.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""

from arq.constants import abort_jobs_ss, job_key_prefix
from jose import jwt

from libs.common.config import get_settings
from libs.db.base import Base
from libs.jobs.queue import JobQueue

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
settings = get_settings()

from services.gateway_service.app.main import app

# Import all models so metadata includes every table
from services.communications_service import models as _communications_models  # noqa: F401
from services.members_service import models as _member_models  # noqa: F401
from services.payments_service import models as _payment_models  # noqa: F401
from services.store_service import models as _store_models  # noqa: F401


# ---------------------------------------------------------------------------
# Redis stand-in
# ---------------------------------------------------------------------------


class FakeArqRedis:
    """In-memory stand-in for the ArqRedis pool.

    Covers what the job queue and stock cache use: arq job enqueueing with
    job-id dedup, plain keys, sorted sets and ping. Every enqueue is kept in
    ``jobs`` so tests can assert on scheduled side effects.
    """

    def __init__(self):
        self.values: dict[str, Any] = {}
        self.sorted_sets: dict[str, dict[str, float]] = defaultdict(dict)
        self.jobs: list[dict[str, Any]] = []
        self.fail_enqueue = False
        self.available = True

    async def enqueue_job(
        self,
        function: str,
        *args,
        _job_id: Optional[str] = None,
        _queue_name: Optional[str] = None,
        _defer_until=None,
        _defer_by=None,
        **kwargs,
    ):
        if self.fail_enqueue:
            raise ConnectionError("redis is down")
        job_id = _job_id or uuid.uuid4().hex
        if job_key_prefix + job_id in self.values:
            return None
        self.values[job_key_prefix + job_id] = function
        self.sorted_sets[_queue_name][job_id] = len(self.jobs)
        self.jobs.append(
            {
                "function": function,
                "args": args,
                "job_id": job_id,
                "queue": _queue_name,
                "defer_until": _defer_until,
                "defer_by": _defer_by,
            }
        )
        return SimpleNamespace(job_id=job_id)

    def enqueued(self, function: Optional[str] = None) -> list[dict[str, Any]]:
        return [job for job in self.jobs if function is None or job["function"] == function]

    def is_pending(self, queue: str, job_id: str) -> bool:
        return job_id in self.sorted_sets.get(queue, {})

    def aborted(self) -> set[str]:
        return set(self.sorted_sets.get(abort_jobs_ss, {}))

    async def ping(self):
        if not self.available:
            raise ConnectionError("redis is down")
        return True

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sorted_sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, *keys):
        return sum(1 for key in keys if key in self.values or key in self.sorted_sets)

    def start(self, queue: str, job_id: str) -> None:
        """Simulate a worker picking up a job: it leaves the queue, its key stays."""
        self.sorted_sets.get(queue, {}).pop(job_id, None)

    async def zadd(self, key, mapping):
        self.sorted_sets[key].update(mapping)
        return len(mapping)

    async def zrem(self, key, *members):
        removed = 0
        for member in members:
            if self.sorted_sets.get(key, {}).pop(member, None) is not None:
                removed += 1
        return removed

    async def zrevrange(self, key, start, end):
        # equal scores: later inserts rank higher
        members = list(self.sorted_sets.get(key, {}).items())
        ranked = sorted(
            range(len(members)), key=lambda i: (members[i][1], i), reverse=True
        )
        stop = None if end == -1 else end + 1
        return [members[i][0] for i in ranked[start:stop]]

    async def zcard(self, key):
        return len(self.sorted_sets.get(key, {}))

    async def aclose(self):
        return None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    Fresh SQLite database (and schema) per test.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", future=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a database session on the per-test database.
    """
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> FakeArqRedis:
    return FakeArqRedis()


@pytest.fixture
def job_queue(fake_redis) -> JobQueue:
    return JobQueue(fake_redis)


@pytest.fixture
def worker_ctx(session_factory, job_queue, fake_redis) -> dict:
    """The ctx dict an arq worker hands to task functions after startup."""
    return {
        "redis": fake_redis,
        "session_factory": session_factory,
        "job_queue": job_queue,
        "job_id": "test-job",
        "job_try": 1,
    }


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def make_token(user_id: str, *, email: Optional[str] = None, role: str = "authenticated") -> str:
    claims = {"sub": user_id, "role": role}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user_id: str, *, email: Optional[str] = None, role: str = "authenticated") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email=email, role=role)}"}


@pytest.fixture
def user_headers() -> dict:
    return auth_headers("user-1", email="reader@example.com")


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers("admin-1", email="admin@example.com", role="admin")


@pytest.fixture
def service_headers() -> dict:
    from libs.auth.dependencies import _service_role_jwt

    return {"Authorization": f"Bearer {_service_role_jwt('orders')}"}


@pytest_asyncio.fixture
async def client(db_session, job_queue, fake_redis) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient with the app, the test database and the fake job queue.
    """
    from libs.db.session import get_async_db, get_checkout_db

    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_checkout_db] = lambda: db_session
    app.state.job_queue = job_queue
    app.state.redis = fake_redis

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.job_queue = None
    app.state.redis = None
