"""Design session routes - owner-scoped draft records."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.database import get_session
from ..models.orm import DesignSessionORM
from ..models.schemas import (
    DRAFT_STATUSES,
    HISTORY_STATUSES,
    DesignSession,
    DesignSessionFields,
    SessionEnvelope,
    SessionListResponse,
    SessionStatus,
    WorkflowStep,
)
from .deps import current_owner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/design-sessions", tags=["design-sessions"])


def _to_model(row: DesignSessionORM) -> DesignSession:
    return DesignSession(
        id=row.id,
        owner_id=row.owner_id,
        status=row.status,
        prompt=row.prompt,
        style=row.style,
        color=row.color,
        product_type=row.product_type,
        step=row.step,
        generated_images=row.generated_images or [],
        selected_image_url=row.selected_image_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _touch(row: DesignSessionORM) -> None:
    """Advance updated_at, strictly later than the previous value."""
    now = datetime.now(timezone.utc)
    previous = row.updated_at
    if previous is not None:
        if previous.tzinfo is None:
            previous = previous.replace(tzinfo=timezone.utc)
        if now <= previous:
            now = previous + timedelta(microseconds=1)
    row.updated_at = now


def _validate(row: DesignSessionORM) -> None:
    urls = {img.get("url") for img in (row.generated_images or [])}
    if row.selected_image_url and row.selected_image_url not in urls:
        raise HTTPException(
            status_code=422, detail="selected_image_url is not one of the generated images"
        )
    if row.status == SessionStatus.SUBMITTED.value and not row.selected_image_url:
        raise HTTPException(
            status_code=422, detail="A submitted session needs a selected image"
        )


def _apply(row: DesignSessionORM, values: dict) -> None:
    for key, value in values.items():
        if key in ("status", "step") and value is not None:
            value = value.value if hasattr(value, "value") else value
        setattr(row, key, value)


async def _owned(db: AsyncSession, session_id: str, owner_id: str) -> DesignSessionORM:
    result = await db.execute(
        select(DesignSessionORM).where(
            DesignSessionORM.id == session_id,
            DesignSessionORM.owner_id == owner_id,
        )
    )
    row = result.scalar_one_or_none()
    if not row:
        raise HTTPException(status_code=404, detail="Design session not found")
    return row


@router.post("", response_model=SessionEnvelope)
async def create_design_session(
    req: DesignSessionFields,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Create a draft for the caller."""
    now = datetime.now(timezone.utc)
    row = DesignSessionORM(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        status=SessionStatus.DRAFT.value,
        step=WorkflowStep.WELCOME.value,
        generated_images=[],
        created_at=now,
        updated_at=now,
    )
    _apply(row, req.model_dump(mode="json", exclude_none=True))
    _validate(row)
    db.add(row)
    await db.commit()

    logger.info("Created design session %s for %s", row.id, owner_id)
    return SessionEnvelope(session=_to_model(row))


@router.get("", response_model=SessionListResponse)
async def list_design_sessions(
    scope: str = Query(default="drafts", pattern="^(drafts|all)$"),
    owner: str | None = Query(default=None, alias="owner_id"),
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Drafts (or drafts plus history) for the caller, most recently updated first."""
    if owner is not None and owner != owner_id:
        raise HTTPException(status_code=403, detail="Cannot list another owner's sessions")

    statuses = list(DRAFT_STATUSES)
    if scope == "all":
        statuses += list(HISTORY_STATUSES)

    result = await db.execute(
        select(DesignSessionORM)
        .where(
            DesignSessionORM.owner_id == owner_id,
            DesignSessionORM.status.in_([s.value for s in statuses]),
        )
        .order_by(DesignSessionORM.updated_at.desc())
    )
    return SessionListResponse(sessions=[_to_model(r) for r in result.scalars().all()])


@router.get("/{session_id}", response_model=SessionEnvelope)
async def get_design_session(
    session_id: str,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    row = await _owned(db, session_id, owner_id)
    return SessionEnvelope(session=_to_model(row))


@router.patch("/{session_id}", response_model=SessionEnvelope)
async def update_design_session(
    session_id: str,
    req: DesignSessionFields,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Partial update. Submitted sessions are locked."""
    row = await _owned(db, session_id, owner_id)
    if row.status == SessionStatus.SUBMITTED.value:
        raise HTTPException(status_code=409, detail="Session was submitted and is locked")
    if row.status == SessionStatus.ARCHIVED.value:
        raise HTTPException(status_code=409, detail="Session was deleted")

    _apply(row, req.model_dump(mode="json", exclude_unset=True))
    _validate(row)
    _touch(row)
    await db.commit()

    if row.status == SessionStatus.SUBMITTED.value:
        logger.info("Design session %s submitted", session_id)
    return SessionEnvelope(session=_to_model(row))


@router.post("/{session_id}/remix", response_model=SessionEnvelope)
async def remix_design_session(
    session_id: str,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """New draft seeded with the source's prompt and product; the source is untouched."""
    source = await _owned(db, session_id, owner_id)
    if source.status == SessionStatus.ARCHIVED.value:
        raise HTTPException(status_code=404, detail="Design session not found")

    now = datetime.now(timezone.utc)
    row = DesignSessionORM(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        status=SessionStatus.DRAFT.value,
        step=(WorkflowStep.STYLE if source.prompt else WorkflowStep.WELCOME).value,
        prompt=source.prompt,
        product_type=source.product_type,
        generated_images=[],
        remixed_from=source.id,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    await db.commit()

    logger.info("Remixed design session %s into %s", session_id, row.id)
    return SessionEnvelope(session=_to_model(row))


@router.delete("/{session_id}")
async def delete_design_session(
    session_id: str,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Soft delete: the session is archived and drops out of every listing."""
    row = await _owned(db, session_id, owner_id)
    if row.status == SessionStatus.SUBMITTED.value:
        raise HTTPException(status_code=409, detail="Submitted sessions cannot be deleted")

    if row.status != SessionStatus.ARCHIVED.value:
        row.status = SessionStatus.ARCHIVED.value
        _touch(row)
        await db.commit()
        logger.info("Archived design session %s", session_id)

    return {"status": "archived", "session_id": session_id}
