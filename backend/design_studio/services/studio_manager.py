"""
Studio Manager - owns the live DesignWorkflow instances.

Each workflow gets its own collaborator clients bound to the caller's bearer
token, narration wired to the studio channel, and a set of background tasks
for the long-running actions (generation and enhancement tools).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable

import httpx

from ..models.schemas import WorkflowSnapshot
from ..websocket.channel import StudioChannel
from .auth import BearerTokenAuth
from .design_workflow import DesignWorkflow
from .generation_client import GenerationJobClient
from .ledger_client import CreditLedgerClient
from .narration import VoiceClient
from .session_store import SessionStore
from .studio_config import StudioConfig

logger = logging.getLogger(__name__)


class WorkflowNotFound(LookupError):
    """No live workflow with that id for that owner."""


class StudioManager:
    def __init__(
        self,
        config: StudioConfig,
        channel: StudioChannel,
        generation_http: httpx.AsyncClient,
        voice_http: httpx.AsyncClient,
        records_http: httpx.AsyncClient,
    ) -> None:
        self.config = config
        self.channel = channel
        self.generation_http = generation_http
        self.voice_http = voice_http
        self.records_http = records_http
        self.workflows: dict[str, DesignWorkflow] = {}
        self._tasks: dict[str, set[asyncio.Task]] = {}

    def create(self, token: str, owner_id: str) -> tuple[str, DesignWorkflow]:
        """Build a workflow whose collaborator calls carry the caller's token."""
        workflow_id = uuid.uuid4().hex
        auth = BearerTokenAuth(token, owner_id)
        voice = VoiceClient(
            self.voice_http, auth,
            speed=self.config.narration.speed,
            emotion=self.config.narration.emotion,
        )

        def on_change(snapshot: WorkflowSnapshot) -> None:
            self.channel.publish(workflow_id, snapshot)

        workflow = DesignWorkflow(
            owner_id=owner_id,
            ledger=CreditLedgerClient(self.records_http, auth),
            jobs=GenerationJobClient(
                self.generation_http, auth,
                poll_interval=self.config.generation.poll_interval,
                max_attempts=self.config.generation.max_poll_attempts,
            ),
            store=SessionStore(self.records_http, auth),
            synthesize=voice.synthesize,
            player=self.channel.player_for(workflow_id),
            config=self.config,
            on_change=on_change,
        )
        self.workflows[workflow_id] = workflow
        self._tasks[workflow_id] = set()
        logger.info("Opened workflow %s for %s", workflow_id, owner_id)
        return workflow_id, workflow

    def get(self, workflow_id: str, owner_id: str) -> DesignWorkflow:
        workflow = self.workflows.get(workflow_id)
        if workflow is None or workflow.owner_id != owner_id:
            raise WorkflowNotFound(workflow_id)
        return workflow

    def run_in_background(self, workflow_id: str, action: Awaitable[WorkflowSnapshot]) -> asyncio.Task:
        """Run a long workflow action; progress reaches clients through the channel."""
        task = asyncio.create_task(action, name=f"workflow-{workflow_id}")
        tasks = self._tasks.setdefault(workflow_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        task.add_done_callback(self._log_failure)
        return task

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Workflow action %s crashed", task.get_name(), exc_info=exc)

    async def close(self, workflow_id: str) -> None:
        workflow = self.workflows.pop(workflow_id, None)
        if workflow is None:
            return
        workflow.close()
        tasks = self._tasks.pop(workflow_id, set())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Closed workflow %s", workflow_id)

    async def close_all(self) -> None:
        for workflow_id in list(self.workflows):
            await self.close(workflow_id)
