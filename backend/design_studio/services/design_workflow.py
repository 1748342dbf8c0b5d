"""
Design Workflow - the guided design session state machine.

Walks one user through prompt -> style -> color -> generating -> complete,
then image selection, paid enhancement tools with undo, and submission.

Two fields describe where a session is:
  status - persistence lifecycle (draft, generating, completed, submitted, archived)
  step   - UI cursor (welcome, prompt, style, color, generating, complete)
They move independently; WorkflowSnapshot.phase combines them for the UI.

Every public action is wrapped in the workflow boundary: a StudioError raised
anywhere below becomes exactly one narration, is reported in the snapshot,
and leaves the workflow in the nearest state that can be retried. Credits
debited before a failed job are not refunded.
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator

from ..models.schemas import (
    DesignSession,
    DesignSessionFields,
    ErrorInfo,
    GeneratedImage,
    JobKind,
    JobOutcomeStatus,
    SessionStatus,
    TOOL_KINDS,
    WorkflowSnapshot,
    WorkflowStep,
)
from .errors import (
    InsufficientBalanceError,
    JobFailedError,
    JobInFlightError,
    JobTimeoutError,
    NoOutputError,
    SessionLockedError,
    StudioError,
    WorkflowClosedError,
    WorkflowValidationError,
)
from .generation_client import GenerationJobClient
from .ledger_client import CreditLedgerClient
from .narration import NarrationPlayer, NarrationQueue
from .session_store import DraftAutoSaver, SessionStore
from .studio_config import StudioConfig

logger = logging.getLogger(__name__)


NARRATION_LINES: dict[str, list[str]] = {
    "greeting": [
        "Yo! I'm Mr. Imagine! Tell me what you're dreaming up and I'll bring it to life!",
        "Welcome to the creation station! What masterpiece shall we create today?",
    ],
    "after_prompt": [
        "Ohhh I LOVE that! Now, photo-realistic or more artistic?",
        "That's gonna be fire! Pick a style and we're rolling.",
    ],
    "after_style": [
        "Perfect! Last thing, what color are we putting this masterpiece on?",
        "Great choice! Now let's pick a color.",
    ],
    "generating": [
        "Alright, let me work my magic! This is gonna be good...",
        "Brewing up something special for you...",
    ],
    "generated": [
        "BOOM! Check it out! If you can imagine it, we can print it!",
        "Fresh out of the imagination oven! What do you think?",
    ],
    "selected": [
        "Nice pick! Polish it up with the AI tools or submit it when you're happy.",
        "Love your taste! Want to make it even better?",
    ],
    "tool_removeBackground": ["Giving that background the boot!"],
    "tool_upscale": ["Going big! HD-ifying your design now."],
    "tool_reimagine": ["Ooh, a transformation! Let's see what happens."],
    "tool_complete": [
        "Done! Looking sharp.",
        "All polished up. What do you think?",
    ],
    "undo": ["Whoops, let's go back to the previous version!"],
    "submitted": ["Submitted! Your design is on its way for approval."],
    "remixed": ["Remix time! Same idea, fresh take. Pick a style."],
    "resumed": ["Welcome back! Let's pick up where we left off."],
    "error": [
        "Aw man, something went sideways. Let's try that again, I got you!",
        "Well that didn't go as planned. Mind if we give it another shot?",
    ],
    "insufficient_balance": [
        "Looks like your ITC wallet needs a top-up before we can do that one.",
    ],
    "sign_in": ["Sign in first and we'll get creating!"],
    "busy": ["Hang on, I'm still working on the last one!"],
}

STYLE_LABELS = {
    "realistic": "Realistic",
    "cartoon": "Cartoon",
    "minimalist": "Minimalist",
    "vintage": "Vintage",
    "cyberpunk": "Cyberpunk",
    "fantasy": "Fantasy",
}

APPAREL_PRODUCTS = {"shirts", "hoodies", "tshirt", "t-shirt"}

DTF_PRINT_GUIDELINES = """IMPORTANT - Design for DTF printing on fabric:
- Use a transparent or clean solid background that will print well on fabric
- Use high contrast, bold colors that pop against the garment color
- Avoid thin lines and small details under 2mm
- Keep text readable and at least 8pt equivalent
- Avoid gradients that fade to nothing"""


def compose_prompt(
    prompt: str,
    style: str | None,
    color: str | None,
    product_type: str | None,
) -> str:
    """Enrich the user's idea with style, color, product and print guidelines."""
    lines = [prompt.strip(), ""]
    if style:
        lines.append(f"Style: {STYLE_LABELS.get(style, style)}")
    if color:
        lines.append(f"Product color: {color}")
    if product_type:
        lines.append(f"Product: {product_type}")
    if product_type in APPAREL_PRODUCTS:
        lines.extend(["", DTF_PRINT_GUIDELINES])
    return "\n".join(lines).strip()


class DesignWorkflow:
    """
    One guided design session for one owner.

    Owns its NarrationQueue and DraftAutoSaver; borrows the ledger, job and
    session-store clients. At most one paid job runs at a time.
    """

    def __init__(
        self,
        owner_id: str,
        ledger: CreditLedgerClient,
        jobs: GenerationJobClient,
        store: SessionStore,
        synthesize: Callable[[str], Awaitable[str]],
        player: NarrationPlayer,
        config: StudioConfig | None = None,
        on_change: Callable[[WorkflowSnapshot], None] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.owner_id = owner_id
        self.ledger = ledger
        self.jobs = jobs
        self.store = store
        self.config = config or StudioConfig()
        self._on_change = on_change
        self._rng = rng or random.Random()

        self.narration = NarrationQueue(synthesize, player, on_change=self._publish)
        self.saver = DraftAutoSaver(
            store, self._draft_fields, delay=self.config.autosave_debounce
        )

        self.step = WorkflowStep.WELCOME
        self.status = SessionStatus.DRAFT
        self.prompt: str | None = None
        self.style: str | None = None
        self.color: str | None = None
        self.product_type: str | None = None
        self.generated_images: list[GeneratedImage] = []
        self.selected_image_url: str | None = None
        self.error: ErrorInfo | None = None
        self.active_job: JobKind | None = None

        self._history: list[GeneratedImage] = []
        self._poll_task: asyncio.Task | None = None
        self._epoch = 0
        self._closed = False

    # --- State ---

    @property
    def session_id(self) -> str | None:
        return self.saver.session_id

    @property
    def edit_history(self) -> list[str]:
        return [img.url for img in self._history]

    @property
    def phase(self) -> str:
        if self.status == SessionStatus.SUBMITTED:
            return SessionStatus.SUBMITTED.value
        return self.step.value

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            phase=self.phase,
            step=self.step,
            status=self.status,
            session_id=self.session_id,
            prompt=self.prompt,
            style=self.style,
            color=self.color,
            product_type=self.product_type,
            generated_images=list(self.generated_images),
            selected_image_url=self.selected_image_url,
            edit_history_depth=len(self._history),
            balance=self.ledger.cached_balance(self.owner_id),
            narration=self.narration.current_text,
            busy=self.active_job is not None,
            active_job=self.active_job,
            error=self.error,
        )

    # --- User events ---

    async def start(self) -> WorkflowSnapshot:
        """Greet the user and load the current balance."""
        self._say("greeting")
        with self._boundary("start"):
            await self.ledger.get_balance(self.owner_id)
        return self._publish()

    async def submit_prompt(self, text: str) -> WorkflowSnapshot:
        with self._boundary("submit_prompt"):
            self._require_step(
                WorkflowStep.WELCOME, WorkflowStep.PROMPT,
                WorkflowStep.STYLE, WorkflowStep.COLOR,
            )
            if not text or not text.strip():
                raise WorkflowValidationError("Please describe your design idea")

            self.prompt = text.strip()
            if self.step in (WorkflowStep.WELCOME, WorkflowStep.PROMPT):
                # the prompt step is passed through in the same turn
                self.step = WorkflowStep.STYLE
                self._say("after_prompt")
            self.saver.touch()
        return self._publish()

    async def select_style(self, style: str) -> WorkflowSnapshot:
        with self._boundary("select_style"):
            self._require_step(WorkflowStep.STYLE, WorkflowStep.COLOR)
            if not style:
                raise WorkflowValidationError("Please pick a style")
            self.style = style
            self.step = WorkflowStep.COLOR
            self._say("after_style")
            self.saver.touch()
        return self._publish()

    async def select_color(self, color: str, product_type: str | None = None) -> WorkflowSnapshot:
        """Pick the color and run the paid generation through to completion."""
        with self._boundary("select_color"):
            self._ensure_idle()
            self._require_step(WorkflowStep.COLOR)
            if not color:
                raise WorkflowValidationError("Please pick a color")
            if not self.prompt:
                raise WorkflowValidationError("Please describe your design idea")

            self.color = color
            self.product_type = (
                product_type
                or self.product_type
                or self.config.generation.default_product_type
            )
            await self._generate()
        return self._publish()

    async def select_image(self, image_url: str) -> WorkflowSnapshot:
        with self._boundary("select_image"):
            self._ensure_idle()
            self._require_step(WorkflowStep.COMPLETE)
            if image_url not in {img.url for img in self.generated_images}:
                raise WorkflowValidationError("That image is not part of this design")

            if image_url != self.selected_image_url:
                # history only tracks edits to the selected image
                self._history.clear()
            self.selected_image_url = image_url
            self._say("selected")
            self.saver.touch()
        return self._publish()

    async def apply_tool(self, kind: JobKind, prompt: str | None = None) -> WorkflowSnapshot:
        """Run a paid enhancement tool on the selected image."""
        with self._boundary(f"apply_tool:{kind.value}"):
            self._ensure_idle()
            self._require_step(WorkflowStep.COMPLETE)
            if kind not in TOOL_KINDS:
                raise WorkflowValidationError(f"{kind.value} is not an enhancement tool")
            if not self.selected_image_url:
                raise WorkflowValidationError("Select a design first")
            if kind == JobKind.REIMAGINE and not (prompt or "").strip():
                raise WorkflowValidationError(
                    "Please describe how you want to transform the design"
                )
            await self._enhance(kind, prompt)
        return self._publish()

    async def undo(self) -> WorkflowSnapshot:
        """Restore the image as it was before the most recent tool."""
        with self._boundary("undo"):
            self._ensure_idle()
            self._require_step(WorkflowStep.COMPLETE)
            if not self._history or not self.selected_image_url:
                raise WorkflowValidationError("Nothing to undo")

            previous = self._history.pop()
            self._replace_active(self.selected_image_url, previous)
            self._say("undo")
            self.saver.touch()
        return self._publish()

    async def submit(self) -> WorkflowSnapshot:
        """Submit the selected image. The session is locked afterwards."""
        with self._boundary("submit"):
            self._ensure_idle()
            self._require_step(WorkflowStep.COMPLETE)
            if not self.selected_image_url:
                raise WorkflowValidationError("Select a design before submitting")

            self.status = SessionStatus.SUBMITTED
            try:
                await self.saver.save_now()
            except StudioError:
                self.status = SessionStatus.COMPLETED
                raise
            logger.info("Session %s submitted by %s", self.session_id, self.owner_id)
            self._say("submitted")
        return self._publish()

    async def remix(self, session_id: str | None = None) -> WorkflowSnapshot:
        """Start a fresh draft from an existing session's prompt."""
        with self._boundary("remix"):
            self._ensure_idle()
            source_id = session_id or self.session_id
            if not source_id:
                raise WorkflowValidationError("Nothing to remix yet")

            session = await self.store.remix(source_id)
            self._load(session)
            self.status = SessionStatus.DRAFT
            self.step = WorkflowStep.STYLE if self.prompt else WorkflowStep.WELCOME
            self._say("remixed")
        return self._publish()

    async def resume(self, session_id: str) -> WorkflowSnapshot:
        """Reopen a saved draft and reconcile the balance."""
        with self._boundary("resume"):
            self._ensure_idle()
            session = await self.store.get(session_id)
            if session.status == SessionStatus.ARCHIVED:
                raise WorkflowValidationError("That draft was deleted")

            self._load(session)
            if self.step == WorkflowStep.GENERATING or self.status == SessionStatus.GENERATING:
                # the job it was waiting on is not polled again
                self.step = WorkflowStep.COLOR
                self.status = SessionStatus.DRAFT
            await self.ledger.get_balance(self.owner_id)
            self._say("resumed")
        return self._publish()

    async def delete(self, session_id: str) -> WorkflowSnapshot:
        """Archive a draft. Deleting the active session resets the workflow."""
        with self._boundary("delete"):
            if session_id == self.session_id:
                self._ensure_idle()
            await self.store.delete(session_id)
            if session_id == self.session_id:
                self.reset()
        return self._publish()

    async def list_drafts(self, include_history: bool = True) -> list[DesignSession]:
        return await self.store.list_drafts(self.owner_id, include_history=include_history)

    def reset(self) -> None:
        """Back to the welcome step with no session. Cancels pending timers."""
        self._cancel_pending()
        self.saver.bind(None)
        self.step = WorkflowStep.WELCOME
        self.status = SessionStatus.DRAFT
        self.prompt = self.style = self.color = self.product_type = None
        self.generated_images = []
        self.selected_image_url = None
        self._history.clear()
        self.error = None
        self.active_job = None

    def close(self) -> None:
        """Tear down: no more narration, saves or polls for this workflow."""
        self._closed = True
        self._cancel_pending()
        logger.info("Workflow for %s closed", self.owner_id)

    # --- Paid operations ---

    async def _generate(self) -> None:
        cost = self.config.price_of(JobKind.GENERATE)
        epoch = self._epoch
        self._claim_job(JobKind.GENERATE)
        try:
            await self.ledger.ensure_affordable(self.owner_id, cost)
            self._check_epoch(epoch)

            self.step = WorkflowStep.GENERATING
            self.status = SessionStatus.GENERATING
            self._say("generating")
            self._publish()
            await self.saver.save_now()
            self._check_epoch(epoch)

            await self.ledger.debit(self.owner_id, cost, reason="design_studio:generate")
            self._check_epoch(epoch)

            urls, ids = await self._run_job(epoch, JobKind.GENERATE, {
                "prompt": compose_prompt(self.prompt or "", self.style, self.color, self.product_type),
                "style": self.style,
                "category": self.product_type,
                "count": self.config.generation.images_per_request,
            })

            self.generated_images = [
                GeneratedImage(url=url, provider_id=pid) for url, pid in zip(urls, ids)
            ]
            self.selected_image_url = None
            self._history.clear()
            self.step = WorkflowStep.COMPLETE
            self.status = SessionStatus.COMPLETED
            self.error = None
            self._say("generated")
            await self._save_or_retry()

        except WorkflowClosedError:
            raise
        except StudioError:
            if self.step == WorkflowStep.GENERATING:
                # back to the retry point; the debit stands
                self.step = WorkflowStep.COLOR
                self.status = SessionStatus.DRAFT
                self.saver.touch()
            raise
        finally:
            self._release_job(JobKind.GENERATE)

    async def _enhance(self, kind: JobKind, prompt: str | None) -> None:
        cost = self.config.price_of(kind)
        epoch = self._epoch
        self._claim_job(kind)
        try:
            await self.ledger.ensure_affordable(self.owner_id, cost)
            self._check_epoch(epoch)
            self._say(f"tool_{kind.value}")
            self._publish()

            await self.ledger.debit(self.owner_id, cost, reason=f"design_studio:{kind.value}")
            self._check_epoch(epoch)

            source = self.selected_image_url or ""
            params: dict = {"image_url": source}
            if kind == JobKind.UPSCALE:
                params["factor"] = self.config.generation.upscale_factor
            elif kind == JobKind.REIMAGINE:
                params["prompt"] = (prompt or "").strip()

            self._history.append(self._image_for(source))
            try:
                urls, ids = await self._run_job(epoch, kind, params)
            except WorkflowClosedError:
                raise
            except StudioError:
                self._history.pop()
                raise

            self._replace_active(source, GeneratedImage(url=urls[0], provider_id=ids[0]))
            self.error = None
            self._say("tool_complete")
            self.saver.touch()
        finally:
            self._release_job(kind)

    async def _run_job(self, epoch: int, kind: JobKind, params: dict) -> tuple[list[str], list[str | None]]:
        """Submit a job and, if it is asynchronous, poll it to a terminal outcome."""
        submitted = await self.jobs.submit(kind, params)
        self._check_epoch(epoch)
        if submitted.result_urls:
            return submitted.result_urls, self._pad_ids(submitted.result_urls, submitted.provider_ids)

        job_id = submitted.job_id or ""
        self._poll_task = asyncio.create_task(
            self.jobs.poll_until_terminal(job_id), name=f"poll-{job_id}"
        )
        try:
            outcome = await self._poll_task
        except asyncio.CancelledError:
            if self._epoch != epoch:
                raise WorkflowClosedError(f"Stopped polling job {job_id}")
            raise
        finally:
            self._poll_task = None

        if outcome.status == JobOutcomeStatus.FAILED:
            raise JobFailedError(outcome.error or "Generation failed")
        if outcome.status == JobOutcomeStatus.TIMEOUT:
            raise JobTimeoutError(job_id, outcome.attempts)
        if not outcome.result_urls:
            raise NoOutputError(f"Job {job_id} finished without any images")
        return outcome.result_urls, self._pad_ids(outcome.result_urls, outcome.provider_ids)

    # --- Helpers ---

    @contextmanager
    def _boundary(self, action: str) -> Iterator[None]:
        self.error = None
        try:
            yield
        except WorkflowClosedError:
            logger.info("%s abandoned: workflow was reset or closed", action)
        except StudioError as e:
            logger.warning("%s failed (%s): %s", action, e.kind, e)
            self.error = ErrorInfo(
                kind=e.kind,
                message=str(e),
                shortfall=e.shortfall if isinstance(e, InsufficientBalanceError) else None,
                required=e.required if isinstance(e, InsufficientBalanceError) else None,
            )
            self._say(e.narration)

    def _require_step(self, *steps: WorkflowStep) -> None:
        if self._closed:
            raise WorkflowClosedError("Workflow is closed")
        if self.status == SessionStatus.SUBMITTED:
            raise SessionLockedError("This design was submitted and can no longer be edited")
        if self.step not in steps:
            raise WorkflowValidationError(f"Not available during the {self.step.value} step")

    def _check_epoch(self, epoch: int) -> None:
        if self._epoch != epoch:
            raise WorkflowClosedError("Workflow was reset or closed while a job was starting")

    def _ensure_idle(self) -> None:
        if self.active_job is not None:
            raise JobInFlightError(f"A {self.active_job.value} job is still running")

    def _claim_job(self, kind: JobKind) -> None:
        self._ensure_idle()
        self.active_job = kind

    def _release_job(self, kind: JobKind) -> None:
        if self.active_job == kind:
            self.active_job = None

    def _image_for(self, url: str) -> GeneratedImage:
        for img in self.generated_images:
            if img.url == url:
                return img
        return GeneratedImage(url=url)

    def _replace_active(self, source_url: str, replacement: GeneratedImage) -> None:
        for i, img in enumerate(self.generated_images):
            if img.url == source_url:
                self.generated_images[i] = replacement
                break
        else:
            self.generated_images.append(replacement)
        self.selected_image_url = replacement.url

    @staticmethod
    def _pad_ids(urls: list[str], ids: list[str | None]) -> list[str | None]:
        return list(ids[: len(urls)]) + [None] * (len(urls) - len(ids))

    def _load(self, session: DesignSession) -> None:
        self._cancel_pending()
        self.saver.bind(session.id)
        self.prompt = session.prompt
        self.style = session.style
        self.color = session.color
        self.product_type = session.product_type
        self.step = session.step
        self.status = session.status
        self.generated_images = list(session.generated_images)
        self.selected_image_url = session.selected_image_url
        self._history.clear()

    def _draft_fields(self) -> DesignSessionFields:
        return DesignSessionFields(
            status=self.status,
            prompt=self.prompt,
            style=self.style,
            color=self.color,
            product_type=self.product_type,
            step=self.step,
            generated_images=list(self.generated_images),
            selected_image_url=self.selected_image_url,
        )

    async def _save_or_retry(self) -> None:
        try:
            await self.saver.save_now()
        except StudioError as e:
            logger.warning("Could not save session %s, will retry: %s", self.session_id, e)
            self.saver.touch()

    def _cancel_pending(self) -> None:
        self._epoch += 1
        self.narration.clear()
        self.saver.cancel()
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()

    def _say(self, context: str) -> None:
        if self._closed:
            return
        lines = NARRATION_LINES.get(context) or NARRATION_LINES["error"]
        self.narration.enqueue(self._rng.choice(lines))

    def _publish(self) -> WorkflowSnapshot:
        snap = self.snapshot()
        if self._on_change is not None:
            self._on_change(snap)
        return snap
