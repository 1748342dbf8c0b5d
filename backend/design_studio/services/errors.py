"""
Error taxonomy for the design studio.

Every failure the workflow can meet is a StudioError. Remote failures are
raised by the collaborator clients; local guard failures are raised by the
workflow itself before any remote call. The workflow catches all of them at
its boundary and turns each one into a narration plus a fallback transition.
"""

from __future__ import annotations


class StudioError(Exception):
    """Base class for all studio failures."""

    kind = "error"
    narration = "error"


class UnauthenticatedError(StudioError):
    """No bearer credential is available for a collaborator call."""

    kind = "unauthenticated"
    narration = "sign_in"


class InsufficientBalanceError(StudioError):
    """The owner cannot afford a paid operation."""

    kind = "insufficient_balance"
    narration = "insufficient_balance"

    def __init__(self, required: int, current: int) -> None:
        self.required = required
        self.current = current
        super().__init__(
            f"Insufficient ITC balance: need {required}, have {current}"
        )

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.current)


class NoOutputError(StudioError):
    """A job finished without producing a usable image."""

    kind = "no_output"


class JobTimeoutError(StudioError):
    """A job was still pending when the poll attempt bound ran out."""

    kind = "timeout"

    def __init__(self, job_id: str, attempts: int) -> None:
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Job {job_id} did not finish after {attempts} polls")


class UpstreamError(StudioError):
    """Any other remote failure. Recoverable by retrying."""

    kind = "upstream"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class JobFailedError(UpstreamError):
    """The generation service reported the job as failed."""

    kind = "job_failed"


class JobInFlightError(StudioError):
    """A paid job is already pending for this workflow or job id."""

    kind = "job_in_flight"
    narration = "busy"


class WorkflowValidationError(StudioError):
    """An action was refused locally (wrong step, empty input, no selection)."""

    kind = "validation"


class SessionLockedError(WorkflowValidationError):
    """The session was submitted and no longer accepts edits."""

    kind = "locked"


class WorkflowClosedError(StudioError):
    """The workflow was closed while an operation was still running."""

    kind = "closed"
