"""
Generation Job Client - submits generation/enhancement requests and polls jobs.

A submission either returns the image(s) right away (synchronous providers) or
a job id that must be polled. Polling is a bounded loop with an injected sleep:
a fixed interval, a maximum number of attempts, and a typed outcome of
succeeded, failed or timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from ..models.schemas import (
    JobKind,
    JobOutcome,
    JobOutcomeStatus,
    JobState,
    JobStatus,
    SubmitResult,
)
from .auth import BearerTokenAuth
from .errors import JobInFlightError, NoOutputError, UnauthenticatedError, UpstreamError
from .remote import call, json_body

logger = logging.getLogger(__name__)

SUCCEEDED_STATUSES = {"succeeded", "completed", "complete"}
FAILED_STATUSES = {"failed", "error", "canceled", "cancelled"}

# Keys a provider may use for a single output image
SINGLE_IMAGE_KEYS = ("imageUrl", "processedUrl", "url", "output")


def extract_images(data: dict) -> tuple[list[str], list[str | None]]:
    """
    Pull image URLs out of a provider payload.
    Handles both {imageUrl: ...} and {images: [{url, id}, ...]} shapes.
    """
    urls: list[str] = []
    ids: list[str | None] = []

    images = data.get("images")
    if isinstance(images, list):
        for img in images:
            if isinstance(img, str):
                urls.append(img)
                ids.append(None)
            elif isinstance(img, dict) and img.get("url"):
                urls.append(img["url"])
                ids.append(img.get("id"))
        if urls:
            return urls, ids

    for key in SINGLE_IMAGE_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value:
            return [value], [data.get("id")]

    return urls, ids


class GenerationJobClient:
    """
    HTTP client for the generation collaborator.
    Handles submission, single status reads, and the bounded poll loop.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: BearerTokenAuth,
        poll_interval: float = 2.0,
        max_attempts: int = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.http = http
        self.auth = auth
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._polling: set[str] = set()

    async def submit(self, kind: JobKind, params: dict) -> SubmitResult:
        """
        Submit a generation (kind=generate) or an enhancement tool.
        Raises NoOutputError if the response has neither images nor a job id.
        """
        if kind == JobKind.GENERATE:
            path = "/api/generate"
            payload = {
                "prompt": params["prompt"],
                "style": params.get("style"),
                "category": params.get("category"),
                "count": params.get("count", 1),
            }
        else:
            path = "/api/enhance"
            extra = {k: v for k, v in params.items() if k != "image_url"}
            payload = {
                "imageUrl": params["image_url"],
                "operation": kind.value,
                "params": extra,
            }

        context = f"{kind.value} submission"
        resp = await call(self.http, self.auth, "POST", path, json=payload, context=context)
        data = json_body(resp, context)

        urls, ids = extract_images(data)
        job_id = data.get("jobId") or data.get("job_id")
        if not urls and not job_id:
            raise NoOutputError(f"No images returned from AI service for {kind.value}")

        cost = data.get("cost")
        logger.info(
            "Submitted %s: %s",
            kind.value, f"job {job_id}" if not urls else f"{len(urls)} image(s) returned",
        )
        return SubmitResult(
            result_urls=urls,
            provider_ids=ids,
            job_id=None if urls else str(job_id),
            cost=int(cost) if cost is not None else None,
        )

    async def poll(self, job_id: str) -> JobState:
        """Read the status of a job once."""
        context = f"Status of job {job_id}"
        resp = await call(self.http, self.auth, "GET", f"/api/jobs/{job_id}", context=context)
        data = json_body(resp, context)

        raw = str(data.get("status", "pending")).lower()
        if raw in SUCCEEDED_STATUSES:
            status = JobStatus.SUCCEEDED
        elif raw in FAILED_STATUSES:
            status = JobStatus.FAILED
        else:
            status = JobStatus.PENDING

        urls, ids = extract_images(data)
        return JobState(
            job_id=job_id,
            status=status,
            result_urls=urls,
            provider_ids=ids,
            error=data.get("error"),
        )

    async def poll_until_terminal(self, job_id: str) -> JobOutcome:
        """
        Poll a job every poll_interval seconds, at most max_attempts times.

        Returns as soon as a terminal status is seen. A failed status read
        counts as an attempt and polling continues. Only one poll loop may run
        per job id at a time.
        """
        if job_id in self._polling:
            raise JobInFlightError(f"Job {job_id} is already being polled")

        self._polling.add(job_id)
        try:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    state = await self.poll(job_id)
                except UnauthenticatedError:
                    raise
                except UpstreamError as e:
                    logger.warning("Polling error for job %s (attempt %d): %s", job_id, attempt, e)
                    state = None

                if state is not None and state.status == JobStatus.SUCCEEDED:
                    logger.info("Job %s succeeded after %d poll(s)", job_id, attempt)
                    return JobOutcome(
                        job_id=job_id,
                        status=JobOutcomeStatus.SUCCEEDED,
                        attempts=attempt,
                        result_urls=state.result_urls,
                        provider_ids=state.provider_ids,
                    )
                if state is not None and state.status == JobStatus.FAILED:
                    logger.warning("Job %s failed: %s", job_id, state.error)
                    return JobOutcome(
                        job_id=job_id,
                        status=JobOutcomeStatus.FAILED,
                        attempts=attempt,
                        error=state.error or "Generation failed",
                    )

                if attempt < self.max_attempts:
                    await self._sleep(self.poll_interval)

            logger.warning(
                "Job %s still pending after %d polls, giving up", job_id, self.max_attempts
            )
            return JobOutcome(
                job_id=job_id,
                status=JobOutcomeStatus.TIMEOUT,
                attempts=self.max_attempts,
            )
        finally:
            self._polling.discard(job_id)
