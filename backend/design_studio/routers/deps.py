"""Shared route dependencies: bearer token parsing and owner resolution."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request


async def bearer_token(authorization: str | None = Header(default=None)) -> str:
    """Extract the bearer token from the Authorization header."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization[len("bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


async def current_owner(
    request: Request,
    authorization: str | None = Header(default=None),
) -> str:
    """Resolve the caller's owner id from the configured identities."""
    token = await bearer_token(authorization)
    owner_id = request.app.state.config.identities.get(token)
    if owner_id is None:
        raise HTTPException(status_code=401, detail="Unknown bearer token")
    return owner_id
