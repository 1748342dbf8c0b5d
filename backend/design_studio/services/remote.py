"""
Remote call helper shared by the collaborator clients.

Attaches the bearer credential and maps transport failures and HTTP error
statuses onto the studio error taxonomy, so callers only ever see StudioError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .auth import BearerTokenAuth, require_token
from .errors import UnauthenticatedError, UpstreamError

logger = logging.getLogger(__name__)


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or data)
    return str(data)


async def call(
    http: httpx.AsyncClient,
    auth: BearerTokenAuth,
    method: str,
    path: str,
    *,
    context: str,
    allow: tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """
    Send an authenticated request.

    Raises UnauthenticatedError when there is no credential or the collaborator
    rejects it, UpstreamError on transport errors and on error statuses not
    listed in `allow`.
    """
    token = await require_token(auth)
    headers = {"Authorization": f"Bearer {token}"}

    try:
        resp = await http.request(method, path, headers=headers, **kwargs)
    except httpx.TimeoutException as e:
        raise UpstreamError(f"{context}: request timed out") from e
    except httpx.HTTPError as e:
        raise UpstreamError(f"{context}: {type(e).__name__}: {e}") from e

    if resp.status_code == 401:
        raise UnauthenticatedError(f"{context}: credential rejected")

    if resp.status_code >= 400 and resp.status_code not in allow:
        detail = _error_detail(resp)
        logger.warning("%s failed: %d - %s", context, resp.status_code, detail)
        raise UpstreamError(
            f"{context} failed: {resp.status_code} - {detail}",
            status_code=resp.status_code,
        )

    return resp


def json_body(resp: httpx.Response, context: str) -> dict:
    """Decode a JSON object body or raise UpstreamError."""
    try:
        data = resp.json()
    except ValueError as e:
        raise UpstreamError(f"{context}: response was not JSON") from e
    if not isinstance(data, dict):
        raise UpstreamError(f"{context}: expected a JSON object")
    return data
