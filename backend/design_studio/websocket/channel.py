"""
Studio Channel - pushes workflow snapshots and narration to frontend
WebSocket connections, one group of connections per workflow.

Also acts as the narration player: a narration clip is sent to the
workflow's connections, and playback counts as finished when a client
reports playback_ended / playback_error for that clip, or when the
playback timeout runs out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket

from ..models.schemas import WorkflowSnapshot

logger = logging.getLogger(__name__)


class PlaybackError(Exception):
    """A client reported that a narration clip could not be played."""


class ChannelPlayer:
    """NarrationPlayer bound to one workflow's connections."""

    def __init__(self, channel: StudioChannel, workflow_id: str) -> None:
        self.channel = channel
        self.workflow_id = workflow_id

    async def play(self, audio_url: str, text: str) -> None:
        if not self.channel.connections.get(self.workflow_id):
            logger.debug("No listeners for workflow %s, narration not played", self.workflow_id)
            return

        playback_id = uuid.uuid4().hex
        done = asyncio.get_running_loop().create_future()
        self.channel.playbacks[playback_id] = done
        try:
            await self.channel.send(self.workflow_id, {
                "type": "narration",
                "playbackId": playback_id,
                "audioUrl": audio_url,
                "text": text,
            })
            await asyncio.wait_for(done, timeout=self.channel.playback_timeout)
        except asyncio.TimeoutError:
            logger.warning("Playback %s not acknowledged after %.0fs", playback_id, self.channel.playback_timeout)
        finally:
            self.channel.playbacks.pop(playback_id, None)


class StudioChannel:
    def __init__(self, playback_timeout: float = 30.0) -> None:
        self.playback_timeout = playback_timeout
        # workflow_id -> list of connected frontend WebSockets
        self.connections: dict[str, list[WebSocket]] = {}
        # playback_id -> future resolved by the client's playback event
        self.playbacks: dict[str, asyncio.Future] = {}
        self._send_tasks: set[asyncio.Task] = set()

    def player_for(self, workflow_id: str) -> ChannelPlayer:
        return ChannelPlayer(self, workflow_id)

    def publish(self, workflow_id: str, snapshot: WorkflowSnapshot) -> None:
        """Schedule a snapshot push. Safe to call from synchronous code."""
        if not self.connections.get(workflow_id):
            return
        message = {"type": "snapshot", "snapshot": snapshot.model_dump(mode="json")}
        task = asyncio.create_task(self.send(workflow_id, message))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def send(self, workflow_id: str, message: dict[str, Any]) -> None:
        """Send a message to all frontend WebSockets connected to a workflow."""
        connections = self.connections.get(workflow_id, [])
        if not connections:
            return

        payload = json.dumps(message)
        dead: list[WebSocket] = []

        for ws in list(connections):
            try:
                await ws.send_text(payload)
            except Exception as e:
                logger.error("Failed to send WebSocket message: %s", e)
                dead.append(ws)

        for ws in dead:
            if ws in connections:
                connections.remove(ws)

    def handle_client_message(self, message: dict[str, Any]) -> None:
        """Resolve the pending playback a client event refers to."""
        msg_type = message.get("type")
        if msg_type not in ("playback_ended", "playback_error"):
            return

        done = self.playbacks.get(message.get("playbackId", ""))
        if done is None or done.done():
            return
        if msg_type == "playback_ended":
            done.set_result(None)
        else:
            done.set_exception(PlaybackError(message.get("message", "playback failed")))

    async def connect(self, workflow_id: str, ws: WebSocket) -> None:
        self.connections.setdefault(workflow_id, []).append(ws)
        logger.info("Frontend WS connected for workflow %s", workflow_id)

    async def disconnect(self, workflow_id: str, ws: WebSocket) -> None:
        conns = self.connections.get(workflow_id, [])
        if ws in conns:
            conns.remove(ws)
        if not conns:
            self.connections.pop(workflow_id, None)
        logger.info("Frontend WS disconnected for workflow %s", workflow_id)
