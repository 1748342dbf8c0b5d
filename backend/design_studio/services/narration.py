"""
Narration - the assistant's voice, one message at a time.

NarrationQueue owns the FIFO of outbound messages for a single assistant
persona. Each message is synthesized by the voice collaborator and handed to
a player; the next message starts only after the player reports that playback
ended or failed. Delivery is at most once: failures are logged and the queue
moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Protocol

import httpx

from .auth import BearerTokenAuth
from .errors import NoOutputError
from .remote import call, json_body

logger = logging.getLogger(__name__)


class NarrationPlayer(Protocol):
    async def play(self, audio_url: str, text: str) -> None:
        """Play one clip; return when it ends, raise if playback fails."""


class VoiceClient:
    """HTTP client for the voice collaborator: text in, audio URL out."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: BearerTokenAuth,
        speed: float = 0.95,
        emotion: str = "auto",
    ) -> None:
        self.http = http
        self.auth = auth
        self.speed = speed
        self.emotion = emotion

    async def synthesize(self, text: str) -> str:
        resp = await call(
            self.http, self.auth, "POST", "/api/voice/synthesize",
            context="Voice synthesis",
            json={"text": text, "speed": self.speed, "emotion": self.emotion},
        )
        data = json_body(resp, "Voice synthesis")
        audio_url = data.get("audioUrl") or data.get("audio_url")
        if not audio_url:
            raise NoOutputError("Voice synthesis returned no audio")
        return audio_url


class NarrationQueue:
    """
    Serialized narration for one assistant persona.

    Lifecycle: one instance per workflow, created when the workflow starts and
    cleared when it is reset or closed. clear() also force-resets the draining
    state so a later enqueue() starts a fresh drain.
    """

    def __init__(
        self,
        synthesize: Callable[[str], Awaitable[str]],
        player: NarrationPlayer,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._synthesize = synthesize
        self._player = player
        self._on_change = on_change
        self._queue: deque[str] = deque()
        self._draining = False
        self._task: asyncio.Task | None = None
        self.current_text: str | None = None
        self.speaking = False

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._draining

    def enqueue(self, text: str) -> None:
        """Append a message and start draining if idle. Never interrupts playback."""
        self._queue.append(text)
        self._notify()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.drain(), name="narration-drain")

    async def drain(self) -> None:
        """Play queued messages in order until the queue is empty."""
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                text = self._queue.popleft()
                await self._deliver(text)
        finally:
            self._draining = False
            self.speaking = False

    async def _deliver(self, text: str) -> None:
        # stays set after playback so the last line remains on screen
        self.current_text = text
        try:
            audio_url = await self._synthesize(text)
            self.speaking = True
            self._notify()
            await self._player.play(audio_url, text)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Narration failed, skipping: %.60s", text)
        finally:
            self.speaking = False
            self._notify()

    async def join(self) -> None:
        """Wait until everything queued so far has been delivered."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    def clear(self) -> None:
        """Drop queued messages, stop the current one and reset the draining flag."""
        self._queue.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._draining = False
        self.speaking = False
        self.current_text = None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
