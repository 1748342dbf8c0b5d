"""Pydantic models for design sessions, jobs, workflow snapshots and API payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# --- Enums ---

class SessionStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    SUBMITTED = "submitted"
    ARCHIVED = "archived"


class WorkflowStep(str, Enum):
    WELCOME = "welcome"
    PROMPT = "prompt"
    STYLE = "style"
    COLOR = "color"
    GENERATING = "generating"
    COMPLETE = "complete"


class JobKind(str, Enum):
    GENERATE = "generate"
    REMOVE_BACKGROUND = "removeBackground"
    UPSCALE = "upscale"
    REIMAGINE = "reimagine"


class JobStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobOutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMEOUT = "timeout"


# Statuses shown in the drafts tab vs the history tab of the sidebar
DRAFT_STATUSES = (SessionStatus.DRAFT, SessionStatus.GENERATING)
HISTORY_STATUSES = (SessionStatus.COMPLETED, SessionStatus.SUBMITTED)

TOOL_KINDS = (JobKind.REMOVE_BACKGROUND, JobKind.UPSCALE, JobKind.REIMAGINE)


# --- Design sessions ---

class GeneratedImage(BaseModel):
    url: str
    provider_id: str | None = None


class DesignSession(BaseModel):
    id: str
    owner_id: str
    status: SessionStatus = SessionStatus.DRAFT
    prompt: str | None = None
    style: str | None = None
    color: str | None = None
    product_type: str | None = None
    step: WorkflowStep = WorkflowStep.WELCOME
    generated_images: list[GeneratedImage] = Field(default_factory=list)
    selected_image_url: str | None = None
    created_at: datetime
    updated_at: datetime


class DesignSessionFields(BaseModel):
    """Partial session record used for create and update (upsert) calls."""

    status: SessionStatus | None = None
    prompt: str | None = None
    style: str | None = None
    color: str | None = None
    product_type: str | None = None
    step: WorkflowStep | None = None
    generated_images: list[GeneratedImage] | None = None
    selected_image_url: str | None = None


class SessionEnvelope(BaseModel):
    session: DesignSession


class SessionListResponse(BaseModel):
    sessions: list[DesignSession]


# --- Generation jobs ---

class SubmitResult(BaseModel):
    """Either an immediate result (result_urls) or a job handle to poll."""

    result_urls: list[str] = Field(default_factory=list)
    provider_ids: list[str | None] = Field(default_factory=list)
    job_id: str | None = None
    cost: int | None = None


class JobState(BaseModel):
    job_id: str
    status: JobStatus
    result_urls: list[str] = Field(default_factory=list)
    provider_ids: list[str | None] = Field(default_factory=list)
    error: str | None = None


class JobOutcome(BaseModel):
    job_id: str
    status: JobOutcomeStatus
    attempts: int
    result_urls: list[str] = Field(default_factory=list)
    provider_ids: list[str | None] = Field(default_factory=list)
    error: str | None = None


class GenerationJob(BaseModel):
    id: str
    session_id: str | None = None
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    result_url: str | None = None
    error: str | None = None
    cost: int = 0


# --- Ledger ---

class BalanceResponse(BaseModel):
    owner_id: str
    balance: int


class DebitRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str


class DebitResponse(BaseModel):
    new_balance: int


class LedgerEntryResponse(BaseModel):
    id: str
    amount: int
    reason: str
    balance_after: int
    created_at: datetime


# --- Workflow snapshot ---

class ErrorInfo(BaseModel):
    kind: str
    message: str
    shortfall: int | None = None
    required: int | None = None


class WorkflowSnapshot(BaseModel):
    phase: str  # step, or "submitted" once the session is locked
    step: WorkflowStep
    status: SessionStatus
    session_id: str | None = None
    prompt: str | None = None
    style: str | None = None
    color: str | None = None
    product_type: str | None = None
    generated_images: list[GeneratedImage] = Field(default_factory=list)
    selected_image_url: str | None = None
    edit_history_depth: int = 0
    balance: int | None = None
    narration: str | None = None
    busy: bool = False
    active_job: JobKind | None = None
    error: ErrorInfo | None = None


# --- Studio API requests ---

class StartStudioResponse(BaseModel):
    workflow_id: str
    snapshot: WorkflowSnapshot


class PromptRequest(BaseModel):
    text: str


class StyleRequest(BaseModel):
    style: str


class ColorRequest(BaseModel):
    color: str
    product_type: str | None = None


class SelectImageRequest(BaseModel):
    image_url: str


class ToolRequest(BaseModel):
    prompt: str | None = None


class ResumeRequest(BaseModel):
    session_id: str
