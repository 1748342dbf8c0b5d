"""
Integration tests for the studio routes, with collaborators faked over MockTransport
"""
import asyncio

import httpx
import pytest
from fastapi import FastAPI

from design_studio.routers import studio
from design_studio.services.studio_config import GenerationSettings, StudioConfig
from design_studio.services.studio_manager import StudioManager
from design_studio.websocket.channel import StudioChannel

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}


@pytest.fixture
async def manager(http):
    config = StudioConfig(
        generation=GenerationSettings(poll_interval=0.01, max_poll_attempts=20),
        autosave_debounce=0.05,
        identities={"tok-alice": "alice", "tok-bob": "bob"},
    )
    mgr = StudioManager(config, StudioChannel(playback_timeout=0.1), http, http, http)
    yield mgr
    await mgr.close_all()


@pytest.fixture
async def client(manager):
    app = FastAPI()
    app.include_router(studio.router)
    app.state.config = manager.config
    app.state.studio = manager
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://studio.test") as c:
        yield c


async def open_studio(client):
    resp = await client.post("/api/studio", headers=ALICE)
    assert resp.status_code == 200
    return resp.json()


async def settle(client, workflow_id):
    """Poll the snapshot until no paid job is running."""
    for _ in range(200):
        snap = (await client.get(f"/api/studio/{workflow_id}", headers=ALICE)).json()
        if not snap["busy"]:
            return snap
        await asyncio.sleep(0.01)
    raise AssertionError("workflow still busy")


class TestStudioApi:
    @pytest.mark.asyncio
    async def test_start_requires_known_token(self, client):
        assert (await client.post("/api/studio")).status_code == 401
        assert (await client.post("/api/studio", headers={"Authorization": "Bearer who"})).status_code == 401

    @pytest.mark.asyncio
    async def test_start_greets(self, client, manager):
        started = await open_studio(client)

        assert started["snapshot"]["phase"] == "welcome"
        assert started["snapshot"]["balance"] == 100

        wid = started["workflow_id"]
        await manager.workflows[wid].narration.join()
        snap = (await client.get(f"/api/studio/{wid}", headers=ALICE)).json()
        assert snap["narration"]

    @pytest.mark.asyncio
    async def test_workflow_is_private(self, client):
        wid = (await open_studio(client))["workflow_id"]

        assert (await client.get(f"/api/studio/{wid}", headers=BOB)).status_code == 404

    @pytest.mark.asyncio
    async def test_full_flow(self, backend, client):
        backend.job_script["job-1"] = [
            {"status": "pending"},
            {"status": "succeeded", "images": [{"url": "https://img.test/a.png", "id": "p-a"}]},
        ]
        wid = (await open_studio(client))["workflow_id"]

        snap = (await client.post(f"/api/studio/{wid}/prompt", json={"text": "a tiger"}, headers=ALICE)).json()
        assert snap["step"] == "style"
        snap = (await client.post(f"/api/studio/{wid}/style", json={"style": "cartoon"}, headers=ALICE)).json()
        assert snap["step"] == "color"

        snap = (await client.post(
            f"/api/studio/{wid}/color", json={"color": "white", "product_type": "hoodies"}, headers=ALICE
        )).json()
        assert snap["busy"] is True

        snap = await settle(client, wid)
        assert snap["phase"] == "complete"
        assert snap["balance"] == 90

        snap = (await client.post(
            f"/api/studio/{wid}/select", json={"image_url": "https://img.test/a.png"}, headers=ALICE
        )).json()
        assert snap["selected_image_url"] == "https://img.test/a.png"

        await client.post(f"/api/studio/{wid}/tools/upscale", headers=ALICE)
        snap = await settle(client, wid)
        assert snap["edit_history_depth"] == 1
        assert snap["balance"] == 85

        snap = (await client.post(f"/api/studio/{wid}/submit", headers=ALICE)).json()
        assert snap["phase"] == "submitted"

        drafts = (await client.get(f"/api/studio/{wid}/drafts", headers=ALICE)).json()["sessions"]
        assert [s["status"] for s in drafts] == ["submitted"]

    @pytest.mark.asyncio
    async def test_close(self, client, manager):
        wid = (await open_studio(client))["workflow_id"]

        resp = await client.delete(f"/api/studio/{wid}", headers=ALICE)

        assert resp.json() == {"status": "closed", "workflow_id": wid}
        assert wid not in manager.workflows
        assert (await client.get(f"/api/studio/{wid}", headers=ALICE)).status_code == 404
