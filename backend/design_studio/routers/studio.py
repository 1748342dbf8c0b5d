"""
Studio routes - the UI-facing API for guided design sessions.

Quick actions return the updated snapshot. Paid actions (color selection,
which starts generation, and the enhancement tools) run in the background
and return right away; their progress and result arrive on the workflow's
WebSocket as snapshot messages.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..models.schemas import (
    ColorRequest,
    JobKind,
    PromptRequest,
    ResumeRequest,
    SelectImageRequest,
    SessionListResponse,
    StartStudioResponse,
    StyleRequest,
    ToolRequest,
    WorkflowSnapshot,
)
from ..services.design_workflow import DesignWorkflow
from ..services.errors import StudioError
from ..services.studio_manager import StudioManager, WorkflowNotFound
from .deps import bearer_token, current_owner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/studio", tags=["studio"])


def _manager(request: Request) -> StudioManager:
    return request.app.state.studio


def _workflow(request: Request, workflow_id: str, owner_id: str) -> DesignWorkflow:
    try:
        return _manager(request).get(workflow_id, owner_id)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")


async def _started(request: Request, workflow_id: str, action) -> WorkflowSnapshot:
    workflow = _manager(request).workflows[workflow_id]
    _manager(request).run_in_background(workflow_id, action)
    # let the action claim its job before reporting
    await asyncio.sleep(0)
    return workflow.snapshot()


@router.post("", response_model=StartStudioResponse)
async def start_studio(
    request: Request,
    token: str = Depends(bearer_token),
    owner_id: str = Depends(current_owner),
):
    """Open a new workflow for the caller and greet them."""
    workflow_id, workflow = _manager(request).create(token, owner_id)
    snapshot = await workflow.start()
    return StartStudioResponse(workflow_id=workflow_id, snapshot=snapshot)


@router.get("/{workflow_id}", response_model=WorkflowSnapshot)
async def get_snapshot(
    workflow_id: str,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return _workflow(request, workflow_id, owner_id).snapshot()


@router.post("/{workflow_id}/prompt", response_model=WorkflowSnapshot)
async def submit_prompt(
    workflow_id: str,
    req: PromptRequest,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).submit_prompt(req.text)


@router.post("/{workflow_id}/style", response_model=WorkflowSnapshot)
async def select_style(
    workflow_id: str,
    req: StyleRequest,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).select_style(req.style)


@router.post("/{workflow_id}/color", response_model=WorkflowSnapshot)
async def select_color(
    workflow_id: str,
    req: ColorRequest,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    """Pick the color and start generation in the background."""
    workflow = _workflow(request, workflow_id, owner_id)
    return await _started(
        request, workflow_id, workflow.select_color(req.color, req.product_type)
    )


@router.post("/{workflow_id}/select", response_model=WorkflowSnapshot)
async def select_image(
    workflow_id: str,
    req: SelectImageRequest,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).select_image(req.image_url)


@router.post("/{workflow_id}/tools/{kind}", response_model=WorkflowSnapshot)
async def apply_tool(
    workflow_id: str,
    kind: JobKind,
    request: Request,
    req: ToolRequest | None = None,
    owner_id: str = Depends(current_owner),
):
    """Run removeBackground, upscale or reimagine on the selected image."""
    workflow = _workflow(request, workflow_id, owner_id)
    prompt = req.prompt if req else None
    return await _started(request, workflow_id, workflow.apply_tool(kind, prompt))


@router.post("/{workflow_id}/undo", response_model=WorkflowSnapshot)
async def undo(
    workflow_id: str,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).undo()


@router.post("/{workflow_id}/submit", response_model=WorkflowSnapshot)
async def submit_design(
    workflow_id: str,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).submit()


@router.post("/{workflow_id}/remix", response_model=WorkflowSnapshot)
async def remix(
    workflow_id: str,
    request: Request,
    req: ResumeRequest | None = None,
    owner_id: str = Depends(current_owner),
):
    """Remix the given session, or the current one when no body is sent."""
    workflow = _workflow(request, workflow_id, owner_id)
    return await workflow.remix(req.session_id if req else None)


@router.post("/{workflow_id}/resume", response_model=WorkflowSnapshot)
async def resume(
    workflow_id: str,
    req: ResumeRequest,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).resume(req.session_id)


@router.get("/{workflow_id}/drafts", response_model=SessionListResponse)
async def list_drafts(
    workflow_id: str,
    request: Request,
    include_history: bool = True,
    owner_id: str = Depends(current_owner),
):
    """Drafts for the sidebar, plus completed and submitted sessions."""
    workflow = _workflow(request, workflow_id, owner_id)
    try:
        sessions = await workflow.list_drafts(include_history=include_history)
    except StudioError as e:
        logger.warning("Listing drafts for %s failed: %s", owner_id, e)
        raise HTTPException(status_code=502, detail=str(e))
    return SessionListResponse(sessions=sessions)


@router.delete("/{workflow_id}/drafts/{session_id}", response_model=WorkflowSnapshot)
async def delete_draft(
    workflow_id: str,
    session_id: str,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    return await _workflow(request, workflow_id, owner_id).delete(session_id)


@router.delete("/{workflow_id}")
async def close_studio(
    workflow_id: str,
    request: Request,
    owner_id: str = Depends(current_owner),
):
    """End the workflow: narration, pending saves and polls are cancelled."""
    _workflow(request, workflow_id, owner_id)
    await _manager(request).close(workflow_id)
    return {"status": "closed", "workflow_id": workflow_id}
