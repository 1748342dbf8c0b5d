"""
Integration tests for the design-session and wallet routes on an in-memory database
"""
from datetime import datetime

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from design_studio.models.database import Base, get_session
from design_studio.models.orm import WalletORM
from design_studio.models.schemas import DesignSessionFields, SessionStatus, WorkflowStep
from design_studio.routers import sessions, wallet
from design_studio.services.auth import BearerTokenAuth
from design_studio.services.errors import InsufficientBalanceError, UpstreamError
from design_studio.services.ledger_client import CreditLedgerClient
from design_studio.services.session_store import SessionStore
from design_studio.services.studio_config import StudioConfig

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}
IMAGES = [{"url": "https://img.test/a.png", "provider_id": "p-a"}, {"url": "https://img.test/b.png"}]


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def records_app(session_factory):
    app = FastAPI()
    app.include_router(sessions.router)
    app.include_router(wallet.router)
    app.state.config = StudioConfig(identities={"tok-alice": "alice", "tok-bob": "bob"})

    async def override_session():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_session] = override_session
    return app


@pytest.fixture
async def client(records_app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=records_app), base_url="http://records.test"
    ) as c:
        yield c


@pytest.fixture
async def funded(session_factory):
    async with session_factory() as db:
        db.add(WalletORM(owner_id="alice", balance=30))
        await db.commit()


async def create(client, **fields):
    resp = await client.post("/api/design-sessions", json=fields, headers=ALICE)
    assert resp.status_code == 200
    return resp.json()["session"]


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_and_unknown_tokens(self, client):
        assert (await client.get("/api/wallet/balance")).status_code == 401
        resp = await client.get("/api/wallet/balance", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_sessions_are_owner_scoped(self, client):
        session = await create(client, prompt="alice's idea")

        assert (await client.get(f"/api/design-sessions/{session['id']}", headers=BOB)).status_code == 404
        resp = await client.get("/api/design-sessions", params={"scope": "all"}, headers=BOB)
        assert resp.json()["sessions"] == []
        resp = await client.get("/api/design-sessions", params={"owner_id": "alice"}, headers=BOB)
        assert resp.status_code == 403


class TestDesignSessions:
    @pytest.mark.asyncio
    async def test_create_patch_get(self, client):
        session = await create(client, prompt="a tiger", step="style")
        assert session["owner_id"] == "alice"
        assert session["status"] == "draft"

        resp = await client.patch(
            f"/api/design-sessions/{session['id']}", json={"style": "vintage", "step": "color"}, headers=ALICE
        )
        assert resp.status_code == 200

        loaded = (await client.get(f"/api/design-sessions/{session['id']}", headers=ALICE)).json()["session"]
        assert loaded["prompt"] == "a tiger"
        assert loaded["style"] == "vintage"
        assert loaded["step"] == "color"

    @pytest.mark.asyncio
    async def test_updated_at_strictly_increases(self, client):
        session = await create(client, prompt="x")
        stamps = [datetime.fromisoformat(session["updated_at"])]
        for style in ("a", "b", "c"):
            resp = await client.patch(f"/api/design-sessions/{session['id']}", json={"style": style}, headers=ALICE)
            stamps.append(datetime.fromisoformat(resp.json()["session"]["updated_at"]))

        naive = [s.replace(tzinfo=None) for s in stamps]
        assert naive == sorted(naive)
        assert len(set(naive)) == len(naive)

    @pytest.mark.asyncio
    async def test_selected_image_must_be_generated(self, client):
        session = await create(client, prompt="x", generated_images=IMAGES)

        resp = await client.patch(
            f"/api/design-sessions/{session['id']}",
            json={"selected_image_url": "https://elsewhere.test/z.png"},
            headers=ALICE,
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_submitted_requires_selection_and_locks(self, client):
        session = await create(client, prompt="x", status="completed", step="complete", generated_images=IMAGES)
        url = f"/api/design-sessions/{session['id']}"

        assert (await client.patch(url, json={"status": "submitted"}, headers=ALICE)).status_code == 422

        resp = await client.patch(
            url, json={"status": "submitted", "selected_image_url": IMAGES[1]["url"]}, headers=ALICE
        )
        assert resp.status_code == 200
        assert resp.json()["session"]["status"] == "submitted"

        assert (await client.patch(url, json={"style": "late edit"}, headers=ALICE)).status_code == 409
        assert (await client.delete(url, headers=ALICE)).status_code == 409

    @pytest.mark.asyncio
    async def test_listing_scopes_and_soft_delete(self, client):
        draft = await create(client, prompt="draft")
        done = await create(client, prompt="done", status="completed", step="complete")
        doomed = await create(client, prompt="doomed")

        resp = await client.delete(f"/api/design-sessions/{doomed['id']}", headers=ALICE)
        assert resp.json() == {"status": "archived", "session_id": doomed["id"]}

        drafts = (await client.get("/api/design-sessions", headers=ALICE)).json()["sessions"]
        everything = (await client.get("/api/design-sessions", params={"scope": "all"}, headers=ALICE)).json()["sessions"]

        assert [s["id"] for s in drafts] == [draft["id"]]
        assert {s["id"] for s in everything} == {draft["id"], done["id"]}

    @pytest.mark.asyncio
    async def test_remix_copies_prompt_only(self, client):
        source = await create(
            client, prompt="a tiger", style="cartoon", color="black",
            product_type="hoodies", status="completed", step="complete", generated_images=IMAGES,
        )

        resp = await client.post(f"/api/design-sessions/{source['id']}/remix", headers=ALICE)
        remixed = resp.json()["session"]

        assert remixed["id"] != source["id"]
        assert remixed["prompt"] == "a tiger"
        assert remixed["product_type"] == "hoodies"
        assert remixed["style"] is None
        assert remixed["generated_images"] == []
        assert remixed["step"] == "style"
        assert remixed["status"] == "draft"


class TestWallet:
    @pytest.mark.asyncio
    async def test_debit_and_ledger(self, client, funded):
        assert (await client.get("/api/wallet/balance", headers=ALICE)).json() == {"owner_id": "alice", "balance": 30}

        resp = await client.post("/api/wallet/debit", json={"amount": 10, "reason": "design_studio:generate"}, headers=ALICE)
        assert resp.json() == {"new_balance": 20}

        resp = await client.post("/api/wallet/debit", json={"amount": 25, "reason": "design_studio:generate"}, headers=ALICE)
        assert resp.status_code == 402
        assert resp.json()["detail"] == {"required": 25, "current": 20}

        entries = (await client.get("/api/wallet/ledger", headers=ALICE)).json()
        assert [(e["amount"], e["balance_after"]) for e in entries] == [(-10, 20)]

    @pytest.mark.asyncio
    async def test_debit_to_exactly_zero(self, client, funded):
        for _ in range(3):
            resp = await client.post("/api/wallet/debit", json={"amount": 10, "reason": "t"}, headers=ALICE)
            assert resp.status_code == 200

        resp = await client.post("/api/wallet/debit", json={"amount": 1, "reason": "t"}, headers=ALICE)
        assert resp.status_code == 402
        assert (await client.get("/api/wallet/balance", headers=ALICE)).json()["balance"] == 0

    @pytest.mark.asyncio
    async def test_no_wallet_means_zero(self, client):
        assert (await client.get("/api/wallet/balance", headers=BOB)).json()["balance"] == 0
        resp = await client.post("/api/wallet/debit", json={"amount": 5, "reason": "t"}, headers=BOB)
        assert resp.status_code == 402

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, client, funded):
        resp = await client.post("/api/wallet/debit", json={"amount": 0, "reason": "t"}, headers=ALICE)
        assert resp.status_code == 422


class TestClientContract:
    """The studio's collaborator clients talking to these routes."""

    @pytest.mark.asyncio
    async def test_ledger_client(self, client, funded):
        ledger = CreditLedgerClient(client, BearerTokenAuth("tok-alice", "alice"))

        assert await ledger.debit("alice", 10, reason="design_studio:generate") == 20
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.debit("alice", 25, reason="design_studio:reimagine")

        assert exc_info.value.shortfall == 5
        assert ledger.cached_balance("alice") == 20

    @pytest.mark.asyncio
    async def test_session_store(self, client):
        store = SessionStore(client, BearerTokenAuth("tok-alice", "alice"))

        created = await store.create(DesignSessionFields(prompt="a tiger", step=WorkflowStep.STYLE))
        await store.update(created.id, DesignSessionFields(
            status=SessionStatus.COMPLETED,
            step=WorkflowStep.COMPLETE,
            generated_images=IMAGES,
            selected_image_url=IMAGES[0]["url"],
        ))
        submitted = await store.update(created.id, DesignSessionFields(status=SessionStatus.SUBMITTED))
        assert submitted.status == SessionStatus.SUBMITTED

        with pytest.raises(UpstreamError) as exc_info:
            await store.update(created.id, DesignSessionFields(style="too late"))
        assert exc_info.value.status_code == 409

        remixed = await store.remix(created.id)
        assert remixed.step == WorkflowStep.STYLE

        await store.delete(remixed.id)
        history = await store.list_drafts("alice", include_history=True)
        assert [s.id for s in history] == [created.id]
