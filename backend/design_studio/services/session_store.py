"""
Session Store - design-session drafts on the persistence collaborator.

SessionStore is the thin CRUD client. DraftAutoSaver sits on top of it and
turns a stream of edits into debounced upserts: each edit restarts a timer,
and only the state at the moment the timer fires is written.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from ..models.schemas import DesignSession, DesignSessionFields
from .auth import BearerTokenAuth
from .errors import StudioError, UpstreamError
from .remote import call, json_body

logger = logging.getLogger(__name__)


def _session_from(data: dict, context: str) -> DesignSession:
    record = data.get("session", data)
    if not isinstance(record, dict) or "id" not in record:
        raise UpstreamError(f"{context}: response has no session record")
    return DesignSession.model_validate(record)


class SessionStore:
    """Client for the design-session endpoints, scoped to the caller's identity."""

    def __init__(self, http: httpx.AsyncClient, auth: BearerTokenAuth) -> None:
        self.http = http
        self.auth = auth

    async def create(self, fields: DesignSessionFields) -> DesignSession:
        resp = await call(
            self.http, self.auth, "POST", "/api/design-sessions",
            context="Create draft",
            json=fields.model_dump(mode="json", exclude_none=True),
        )
        session = _session_from(json_body(resp, "Create draft"), "Create draft")
        logger.info("Created draft %s", session.id)
        return session

    async def get(self, session_id: str) -> DesignSession:
        context = f"Load draft {session_id}"
        resp = await call(
            self.http, self.auth, "GET", f"/api/design-sessions/{session_id}",
            context=context,
        )
        return _session_from(json_body(resp, context), context)

    async def update(self, session_id: str, fields: DesignSessionFields) -> DesignSession:
        """Patch only the fields that were explicitly set on `fields`."""
        context = f"Update draft {session_id}"
        resp = await call(
            self.http, self.auth, "PATCH", f"/api/design-sessions/{session_id}",
            context=context,
            json=fields.model_dump(mode="json", exclude_unset=True),
        )
        return _session_from(json_body(resp, context), context)

    async def list_drafts(self, owner_id: str, include_history: bool = False) -> list[DesignSession]:
        """Drafts (draft/generating) for the owner, plus completed/submitted ones if asked."""
        resp = await call(
            self.http, self.auth, "GET", "/api/design-sessions",
            context="List drafts",
            params={"owner_id": owner_id, "scope": "all" if include_history else "drafts"},
        )
        data = json_body(resp, "List drafts")
        return [DesignSession.model_validate(s) for s in data.get("sessions", [])]

    async def remix(self, session_id: str) -> DesignSession:
        """Clone a session's prompt into a fresh draft."""
        context = f"Remix {session_id}"
        resp = await call(
            self.http, self.auth, "POST", f"/api/design-sessions/{session_id}/remix",
            context=context,
        )
        session = _session_from(json_body(resp, context), context)
        logger.info("Remixed %s into %s", session_id, session.id)
        return session

    async def delete(self, session_id: str) -> None:
        await call(
            self.http, self.auth, "DELETE", f"/api/design-sessions/{session_id}",
            context=f"Delete draft {session_id}",
        )
        logger.info("Deleted draft %s", session_id)


class DraftAutoSaver:
    """
    Debounced upsert of the current draft.

    `snapshot` is called when a write actually happens, so the latest state is
    always the one persisted. Nothing is written until prompt or style is
    non-empty. The first write creates the session and caches its id.
    """

    def __init__(
        self,
        store: SessionStore,
        snapshot: Callable[[], DesignSessionFields],
        delay: float = 2.0,
    ) -> None:
        self.store = store
        self._snapshot = snapshot
        self.delay = delay
        self.session_id: str | None = None
        self._timer: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._binding = 0

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def bind(self, session_id: str | None) -> None:
        """Point subsequent writes at an existing session (resume/remix), or detach."""
        self.cancel()
        self._binding += 1
        self.session_id = session_id

    def touch(self) -> None:
        """Record an edit: restart the debounce timer."""
        self.cancel()
        self._timer = asyncio.create_task(self._fire(), name="draft-autosave")

    def cancel(self) -> None:
        """Drop a pending (not yet firing) save."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def save_now(self) -> DesignSession | None:
        """Write immediately, superseding any pending debounced save."""
        self.cancel()
        async with self._lock:
            return await self._persist()

    async def wait(self) -> None:
        """Wait for a pending debounced save, and any write in progress."""
        if self._timer is not None and not self._timer.done():
            await asyncio.wait({self._timer})
        async with self._lock:
            pass

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        # past the debounce window: the write itself is not cancellable
        self._timer = None
        async with self._lock:
            try:
                await self._persist()
            except StudioError as e:
                logger.warning("Auto-save failed: %s", e)

    async def _persist(self) -> DesignSession | None:
        fields = self._snapshot()
        if not (fields.prompt or fields.style):
            logger.debug("Nothing meaningful to save yet")
            return None

        if self.session_id is None:
            binding = self._binding
            session = await self.store.create(fields)
            # a bind() during the write wins over the id just created
            if binding == self._binding and self.session_id is None:
                self.session_id = session.id
            else:
                logger.info("Discarding draft %s: saver was rebound during create", session.id)
        else:
            session = await self.store.update(self.session_id, fields)
        return session
