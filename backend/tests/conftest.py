"""
Pytest configuration and shared fixtures for the design studio tests.

FakeCollaborators stands in for the generation, voice and records services
behind a single httpx.MockTransport, and records every call it receives.
"""
import asyncio
import itertools
import json
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from design_studio.services.auth import BearerTokenAuth
from design_studio.services.design_workflow import DesignWorkflow
from design_studio.services.generation_client import GenerationJobClient
from design_studio.services.ledger_client import CreditLedgerClient
from design_studio.services.narration import VoiceClient
from design_studio.services.session_store import SessionStore
from design_studio.services.studio_config import StudioConfig

TOKENS = {"tok-alice": "alice", "tok-bob": "bob"}


class FakeCollaborators:
    """In-memory generation, voice, ledger and design-session endpoints."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {"alice": 100, "bob": 100}
        self.ledger: list[dict] = []
        self.sessions: dict[str, dict] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.spoken: list[str] = []
        # job_id -> scripted status replies; the last one repeats
        self.job_script: dict[str, list[dict]] = {}
        self.generate_reply: tuple[int, dict] = (200, {"jobId": "job-1"})
        self.enhance_reply: tuple[int, dict] | None = None
        self._ids = itertools.count(1)

    # --- helpers for assertions ---

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def bodies(self, method: str, path: str) -> list[Any]:
        return [b for m, p, b in self.calls if m == method and p == path]

    # --- transport ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.calls.append((request.method, path, body))

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        owner = TOKENS.get(token)
        if owner is None:
            return httpx.Response(401, json={"detail": "Unknown bearer token"})

        if path == "/api/wallet/balance":
            return httpx.Response(200, json={"owner_id": owner, "balance": self.balances.get(owner, 0)})
        if path == "/api/wallet/debit":
            return self._debit(owner, body)
        if path == "/api/generate":
            status, reply = self.generate_reply
            return httpx.Response(status, json=reply)
        if path == "/api/enhance":
            if self.enhance_reply is not None:
                status, reply = self.enhance_reply
                return httpx.Response(status, json=reply)
            return httpx.Response(200, json={
                "imageUrl": f"{body['imageUrl']}-{body['operation']}",
                "id": f"enh-{next(self._ids)}",
            })
        if path.startswith("/api/jobs/"):
            script = self.job_script.get(path.rsplit("/", 1)[1], [{"status": "pending"}])
            reply = script.pop(0) if len(script) > 1 else script[0]
            return httpx.Response(200, json=reply)
        if path == "/api/voice/synthesize":
            self.spoken.append(body["text"])
            return httpx.Response(200, json={"audioUrl": f"https://audio.test/{len(self.spoken)}.mp3"})
        if path.startswith("/api/design-sessions"):
            return self._sessions(request.method, path, owner, body, request.url.params)

        return httpx.Response(404, json={"detail": f"No route for {path}"})

    def _debit(self, owner: str, body: dict) -> httpx.Response:
        amount = body["amount"]
        current = self.balances.get(owner, 0)
        if current < amount:
            return httpx.Response(402, json={"detail": {"required": amount, "current": current}})
        self.balances[owner] = current - amount
        self.ledger.append({"owner": owner, "amount": -amount, "reason": body["reason"]})
        return httpx.Response(200, json={"new_balance": self.balances[owner]})

    def _sessions(self, method: str, path: str, owner: str, body: Any, params) -> httpx.Response:
        parts = path.strip("/").split("/")  # api, design-sessions, [id], [remix]
        now = datetime.now(timezone.utc).isoformat()

        if method == "POST" and len(parts) == 2:
            sid = f"sess-{next(self._ids)}"
            record = {
                "id": sid, "owner_id": owner, "status": "draft", "step": "welcome",
                "generated_images": [], "created_at": now, "updated_at": now,
            }
            record.update(body or {})
            self.sessions[sid] = record
            return httpx.Response(200, json={"session": record})

        if method == "GET" and len(parts) == 2:
            statuses = {"draft", "generating"}
            if params.get("scope") == "all":
                statuses |= {"completed", "submitted"}
            found = [s for s in self.sessions.values() if s["owner_id"] == owner and s["status"] in statuses]
            return httpx.Response(200, json={"sessions": found})

        record = self.sessions.get(parts[2])
        if record is None or record["owner_id"] != owner:
            return httpx.Response(404, json={"detail": "Design session not found"})

        if method == "GET":
            return httpx.Response(200, json={"session": record})
        if method == "PATCH":
            if record["status"] == "submitted":
                return httpx.Response(409, json={"detail": "Session was submitted and is locked"})
            record.update(body or {})
            record["updated_at"] = now
            return httpx.Response(200, json={"session": record})
        if method == "POST" and parts[-1] == "remix":
            sid = f"sess-{next(self._ids)}"
            remixed = {
                "id": sid, "owner_id": owner, "status": "draft",
                "step": "style" if record.get("prompt") else "welcome",
                "prompt": record.get("prompt"), "product_type": record.get("product_type"),
                "generated_images": [], "created_at": now, "updated_at": now,
            }
            self.sessions[sid] = remixed
            return httpx.Response(200, json={"session": remixed})
        if method == "DELETE":
            if record["status"] == "submitted":
                return httpx.Response(409, json={"detail": "Submitted sessions cannot be deleted"})
            record["status"] = "archived"
            return httpx.Response(200, json={"status": "archived", "session_id": parts[2]})

        return httpx.Response(405, json={"detail": "Method not allowed"})


class FakePlayer:
    """Plays clips instantly and records them."""

    def __init__(self) -> None:
        self.played: list[str] = []

    async def play(self, audio_url: str, text: str) -> None:
        self.played.append(text)


class RecordingSleep:
    """Sleep replacement that records intervals and optionally waits on a gate."""

    def __init__(self) -> None:
        self.calls: list[float] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()


@pytest.fixture
def backend():
    return FakeCollaborators()


@pytest.fixture
async def http(backend):
    client = httpx.AsyncClient(
        base_url="http://collaborators.test",
        transport=httpx.MockTransport(backend.handler),
    )
    yield client
    await client.aclose()


@pytest.fixture
def auth():
    return BearerTokenAuth("tok-alice", "alice")


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def studio_config():
    return StudioConfig(autosave_debounce=0.05)


@pytest.fixture
def jobs(http, auth, fake_sleep):
    return GenerationJobClient(http, auth, poll_interval=2.0, max_attempts=5, sleep=fake_sleep)


@pytest.fixture
async def workflow(http, auth, jobs, player, studio_config):
    wf = DesignWorkflow(
        owner_id="alice",
        ledger=CreditLedgerClient(http, auth),
        jobs=jobs,
        store=SessionStore(http, auth),
        synthesize=VoiceClient(http, auth).synthesize,
        player=player,
        config=studio_config,
    )
    yield wf
    wf.close()


@pytest.fixture
def succeeded_job():
    return {
        "status": "succeeded",
        "images": [
            {"url": "https://img.test/a.png", "id": "prov-a"},
            {"url": "https://img.test/b.png", "id": "prov-b"},
        ],
    }

