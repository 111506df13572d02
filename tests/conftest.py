"""
Test fixtures for the BrewLedger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory: a fresh file-backed SQLite database per
    test, with the same BEGIN IMMEDIATE setup as production
  - notification_transport / notifier: a NotificationService whose
    transport records every message instead of delivering it. Messages
    go out through the task queue once the write commits, so tests
    `await task_queue.drain()` before looking at them
  - platform: an in-memory fake of the point-of-sale API, reached through
    httpx.MockTransport (no network)
  - pos_config / pos_client / mirror / reconciler / task_queue: the same
    services the lifespan builds, wired to the fakes
  - client: unauthenticated HTTP client against the real app
  - member_client / second_member_client / staff_client /
    second_staff_client / admin_client: separate HTTP clients, each
    logged in as a different user
  - fund: helper that adds credits through the ledger
  - place_order: helper that places an order without queueing a mirror

Key design decisions:
  - File-backed SQLite (not :memory:) so that concurrency tests get real,
    separate connections that contend for the write lock.
  - ASGITransport does not run the lifespan, so every app.state service
    is supplied through dependency_overrides instead.
  - Staff and admin users sign up normally and are then promoted with a
    direct UPDATE, the way an operator provisions them.
  - Every transaction takes the write lock, so tests read and arrange
    data in short `async with session_factory()` blocks and never hold a
    session open across an API call.
"""

import json
import os
import uuid

os.environ.setdefault("SECRET_KEY", "test-secret-key-do-not-use-in-production")
# The module-level engine is never used by tests; keep it off disk
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("MIRROR_DELAY_SECONDS", "0.01")
os.environ.setdefault("MIRROR_RETRY_DELAY_SECONDS", "0.01")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from brewledger.config import PosPlatformConfig
from brewledger.database import Base, configure_sqlite_transactions, get_db
from brewledger.dependencies import (
    get_mirror,
    get_notifier,
    get_pos_config,
    get_reconciler,
    get_task_queue,
)
from brewledger.main import app
from brewledger.models.user import User, UserType
from brewledger.services import ledger_service, order_service
from brewledger.services.mirror_service import OrderMirror
from brewledger.services.notification_service import Notification, NotificationService
from brewledger.services.pos_client import PosClient
from brewledger.services.reconciler_service import OrderReconciler
from brewledger.services.task_queue import TaskQueue


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingTransport:
    """Notification transport that keeps every message in memory."""

    def __init__(self):
        self.sent: list[tuple[uuid.UUID, Notification]] = []
        self.fail = False

    async def send(self, user_id: uuid.UUID, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append((user_id, notification))

    def of_type(self, kind: str) -> list[tuple[uuid.UUID, Notification]]:
        return [(uid, n) for uid, n in self.sent if n.data.get("type") == kind]


class FakePlatform:
    """
    In-memory point-of-sale API.

    Orders are stored by idempotency key, so a repeated create returns the
    original order, like the real platform does. Knobs:
      - order_failures: number of upcoming POST /orders that return 503
      - reject_fulfillments: 400 for any order payload with fulfillments
      - payment_status: status code for POST /payments
      - search_results: what POST /orders/search returns
      - search_status: status code for POST /orders/search
    """

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.payments: list[dict] = []
        self.requests: list[tuple[str, str, dict | None]] = []
        self.order_failures = 0
        self.reject_fulfillments = False
        self.payment_status = 200
        self.search_results: list[dict] = []
        self.search_status = 200

    def order_creates(self) -> list[dict]:
        return [
            body for method, path, body in self.requests
            if method == "POST" and path.endswith("/orders")
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if request.method == "POST" and path.endswith("/orders/search"):
            if self.search_status != 200:
                return httpx.Response(
                    self.search_status, json={"errors": [{"code": "INTERNAL_SERVER_ERROR"}]}
                )
            return httpx.Response(200, json={"orders": self.search_results})

        if request.method == "POST" and path.endswith("/orders"):
            if self.order_failures > 0:
                self.order_failures -= 1
                return httpx.Response(503, json={"errors": [{"code": "SERVICE_UNAVAILABLE"}]})
            if self.reject_fulfillments and body["order"].get("fulfillments"):
                return httpx.Response(400, json={"errors": [{"code": "INVALID_VALUE"}]})
            key = body["idempotency_key"]
            if key not in self.orders:
                order = dict(body["order"])
                order["id"] = f"EXT-{len(self.orders) + 1}"
                order["state"] = "OPEN"
                self.orders[key] = order
            return httpx.Response(200, json={"order": self.orders[key]})

        if request.method == "POST" and path.endswith("/payments"):
            if self.payment_status != 200:
                return httpx.Response(
                    self.payment_status, json={"errors": [{"code": "PAYMENT_REJECTED"}]}
                )
            payment = {"id": f"PAY-{len(self.payments) + 1}", "status": "COMPLETED", **body}
            self.payments.append(payment)
            return httpx.Response(200, json={"payment": payment})

        return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a fresh file-backed database with all tables for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    configure_sqlite_transactions(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def notification_transport():
    return RecordingTransport()


@pytest.fixture
def notifier(notification_transport, task_queue):
    """Delivers through the task queue after commit; `await task_queue.drain()` to observe."""
    return NotificationService(notification_transport, task_queue=task_queue)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def pos_config():
    return PosPlatformConfig(
        enabled=True,
        base_url="https://pos.test/v2",
        access_token="test-access-token",
        location_id="LOC-TEST",
        currency="AUD",
        webhook_signature_key="",
        webhook_url="https://brewledger.test/webhooks/external-platform",
        timeout_seconds=2.0,
        max_attempts=2,
    )


@pytest.fixture
def pos_client(pos_config, platform):
    return PosClient(pos_config, transport=httpx.MockTransport(platform))


@pytest.fixture
def mirror(pos_client, pos_config, session_factory):
    return OrderMirror(pos_client, pos_config, session_factory=session_factory)


@pytest.fixture
def reconciler(pos_client, pos_config, notifier):
    return OrderReconciler(pos_client, pos_config, notifier)


@pytest_asyncio.fixture
async def task_queue():
    queue = TaskQueue()
    queue.start()
    yield queue
    await queue.stop()


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app_under_test(
    session_factory, notifier, task_queue, pos_config, mirror, reconciler
):
    """The real app with the database and every app.state service overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_task_queue] = lambda: task_queue
    app.dependency_overrides[get_pos_config] = lambda: pos_config
    app.dependency_overrides[get_mirror] = lambda: mirror
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_client(app_under_test):
    """Factory for independent HTTP clients (one per simulated user)."""
    clients: list[AsyncClient] = []

    def _make() -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app_under_test), base_url="http://test")
        clients.append(ac)
        return ac

    yield _make
    for ac in clients:
        await ac.aclose()


@pytest_asyncio.fixture
async def client(make_client):
    """Unauthenticated HTTP client."""
    return make_client()


async def signup_and_login(
    ac: AsyncClient,
    email: str,
    username: str,
    password: str = "SecurePass123!",
    phone_number: str | None = None,
) -> uuid.UUID:
    """Sign up through the API and set the bearer token on `ac`."""
    payload = {"email": email, "username": username, "password": password}
    if phone_number:
        payload["phone_number"] = phone_number
    response = await ac.post("/auth/signup", json=payload)
    assert response.status_code == 201, f"Signup failed: {response.text}"
    data = response.json()
    ac.headers["Authorization"] = f"Bearer {data['token']}"
    ac.user_id = uuid.UUID(data["user_id"])
    return ac.user_id


async def promote(session_factory, user_id: uuid.UUID, user_type: UserType) -> None:
    async with session_factory() as session:
        await session.execute(
            update(User).where(User.id == user_id).values(user_type=user_type)
        )
        await session.commit()


@pytest_asyncio.fixture
async def member_client(make_client):
    ac = make_client()
    await signup_and_login(ac, "member@example.com", "member", phone_number="+61400000001")
    return ac


@pytest_asyncio.fixture
async def second_member_client(make_client):
    ac = make_client()
    await signup_and_login(ac, "second@example.com", "second", phone_number="+61400000002")
    return ac


@pytest_asyncio.fixture
async def staff_client(make_client, session_factory):
    ac = make_client()
    user_id = await signup_and_login(ac, "barista@example.com", "barista")
    await promote(session_factory, user_id, UserType.STAFF)
    return ac


@pytest_asyncio.fixture
async def second_staff_client(make_client, session_factory):
    ac = make_client()
    user_id = await signup_and_login(ac, "barista2@example.com", "barista2")
    await promote(session_factory, user_id, UserType.STAFF)
    return ac


@pytest_asyncio.fixture
async def admin_client(make_client, session_factory):
    ac = make_client()
    user_id = await signup_and_login(ac, "owner@example.com", "owner")
    await promote(session_factory, user_id, UserType.ADMIN)
    return ac


@pytest.fixture
def fund(session_factory):
    """Add credits to a user through the ledger (keeps balance == ledger sum)."""

    async def _fund(user_id: uuid.UUID, amount_cents: int) -> None:
        async with session_factory() as session:
            await ledger_service.credit(
                session,
                user_id,
                amount_cents,
                "Test top-up",
                txn_type=ledger_service.TXN_ADMIN_CREDIT,
            )
            await session.commit()

    return _fund


@pytest.fixture
def place_order(session_factory, notifier):
    """
    Place a 37.50 order through the order service, with nothing queued.

    Pass `external_order_id` to pretend it was already mirrored.
    """

    async def _place(user_id: uuid.UUID, external_order_id: str | None = None) -> int:
        async with session_factory() as session:
            order = await order_service.create_order(
                session,
                user_id,
                [
                    {"name": "Latte", "quantity": 2, "unit_price_cents": 1500, "size": "large"},
                    {"name": "Blueberry Muffin", "quantity": 1, "unit_price_cents": 750},
                ],
                notifier,
            )
            if external_order_id:
                order.external_order_id = external_order_id
            await session.commit()
            return order.id

    return _place
