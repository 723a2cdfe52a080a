"""
E2E test fixtures for the BidHub backend.

Provides:
- A fresh in-memory SQLite ``Database`` per test (services commit, so
  isolation comes from throwing the database away, not from rollback)
- Pre-populated seed data: a project owner, contractors, a supplier and
  two projects
- The real application from ``create_app`` with a recording broadcaster,
  driven through httpx's ASGI transport (no network needed)
- Helpers for auth headers and for walking a bid through its lifecycle

Every request goes route -> service -> database; only the Socket.IO fan-out
is replaced, by ``RecordingBroadcaster`` from the root conftest.
"""

from __future__ import annotations

import uuid
from typing import Any, AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from bidhub.core.database import Database
from bidhub.main import create_app
from bidhub.models import Project, ProjectStatus, User, UserRole
from bidhub.services.auth_service import create_access_token


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# A column typed UUID gets NUMERIC affinity on SQLite, which mangles all-digit
# hex strings into floats.
@compiles(UUID, "sqlite")
def compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

OWNER_USER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
GC_USER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
SC_USER_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
SUPPLIER_USER_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")
INACTIVE_USER_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")

PROJECT_ID = uuid.UUID("f1111111-1111-1111-1111-111111111111")
OTHER_PROJECT_ID = uuid.UUID("f2222222-2222-2222-2222-222222222222")

API = "/api/v1"


# ---------------------------------------------------------------------------
# Database (in-memory SQLite, one per test)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """A throwaway database.  ``StaticPool`` keeps the single in-memory
    connection alive across the sessions of one test."""
    db = Database(TEST_DB_URL, poolclass=StaticPool)

    # SQLite does not enforce foreign keys by default
    @event.listens_for(db.engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await db.create_all()
    yield db
    await db.dispose()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def _seed_data(db: AsyncSession) -> None:
    """Insert the users and projects every scenario starts from."""
    db.add_all([
        User(
            id=OWNER_USER_ID,
            email="owner@example.com",
            first_name="Olivia",
            last_name="Owner",
            role=UserRole.CLIENT,
            is_active=True,
        ),
        User(
            id=GC_USER_ID,
            email="gc@example.com",
            first_name="Carl",
            last_name="Builder",
            company_name="Builder & Sons",
            role=UserRole.GENERAL_CONTRACTOR,
            is_active=True,
        ),
        User(
            id=SC_USER_ID,
            email="sc@example.com",
            first_name="Sofia",
            last_name="Sparks",
            company_name="Sparks Electric",
            role=UserRole.SUBCONTRACTOR,
            is_active=True,
        ),
        User(
            id=SUPPLIER_USER_ID,
            email="supplier@example.com",
            first_name="Sid",
            last_name="Supply",
            role=UserRole.SUPPLIER,
            is_active=True,
        ),
        User(
            id=INACTIVE_USER_ID,
            email="gone@example.com",
            first_name="Gary",
            last_name="Gone",
            role=UserRole.SUBCONTRACTOR,
            is_active=False,
        ),
    ])
    await db.flush()

    db.add_all([
        Project(
            id=PROJECT_ID,
            owner_id=OWNER_USER_ID,
            name="Kitchen Remodel",
            description="Full kitchen renovation",
            project_type="residential",
            location_city="Austin",
            location_state="TX",
            status=ProjectStatus.OPEN,
        ),
        Project(
            id=OTHER_PROJECT_ID,
            owner_id=GC_USER_ID,
            name="Office Wiring",
            project_type="commercial",
            status=ProjectStatus.OPEN,
        ),
    ])
    await db.flush()


@pytest_asyncio.fixture
async def seeded_db(database: Database) -> Database:
    """The database with seed data committed."""
    async with database.session() as session:
        await _seed_data(session)
        await session.commit()
    return database


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(seeded_db: Database, broadcaster) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the real app via ASGI transport."""
    app = create_app(database=seeded_db, broadcaster=broadcaster)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    token, _ = create_access_token(user_id)
    return {"Authorization": f"Bearer {token}"}


async def fetch_all(database: Database, stmt) -> list[Any]:
    """Run a read-only statement in its own session."""
    async with database.session() as session:
        return list((await session.execute(stmt)).scalars().all())


async def create_bid_via_api(
    client: AsyncClient,
    contractor_id: uuid.UUID = GC_USER_ID,
    project_id: uuid.UUID = PROJECT_ID,
    **overrides: Any,
) -> dict[str, Any]:
    """POST /bids and return the bid payload."""
    body: dict[str, Any] = {
        "projectId": str(project_id),
        "items": [
            {"name": "Demolition", "price": "1500.00"},
            {"name": "Cabinets", "price": "8250.50", "description": "Maple, soft-close"},
        ],
        "estimatedStartDate": "2026-11-02",
        "estimatedEndDate": "2026-12-18",
        "notes": "Permit fees included",
    }
    body.update(overrides)
    resp = await client.post(f"{API}/bids", json=body, headers=auth_headers(contractor_id))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def transition_bid(
    client: AsyncClient,
    bid_id: str,
    action: str,
    actor_id: uuid.UUID,
) -> dict[str, Any]:
    """POST /bids/{id}/{action} and return the response body."""
    resp = await client.post(f"{API}/bids/{bid_id}/{action}", headers=auth_headers(actor_id))
    return {"status_code": resp.status_code, **resp.json()}


async def open_direct(client: AsyncClient, user_id: uuid.UUID, partner_id: uuid.UUID) -> dict[str, Any]:
    """POST /conversations/direct and return the conversation payload."""
    resp = await client.post(
        f"{API}/conversations/direct",
        json={"participantId": str(partner_id)},
        headers=auth_headers(user_id),
    )
    assert resp.status_code in (200, 201), resp.text
    return resp.json()["data"]


async def open_group(
    client: AsyncClient,
    creator_id: uuid.UUID = GC_USER_ID,
    members: tuple[uuid.UUID, ...] = (SC_USER_ID,),
    title: str = "Framing crew",
) -> dict[str, Any]:
    resp = await client.post(
        f"{API}/conversations/group",
        json={"title": title, "participantIds": [str(m) for m in members]},
        headers=auth_headers(creator_id),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def send(
    client: AsyncClient,
    conversation_id: str,
    user_id: uuid.UUID,
    text: str,
) -> dict[str, Any]:
    """POST a text message and return the stored message payload."""
    resp = await client.post(
        f"{API}/conversations/{conversation_id}/messages",
        json={"content": text},
        headers=auth_headers(user_id),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]
