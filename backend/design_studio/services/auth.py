"""Auth collaborator interface: hands out the caller's bearer credential."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import UnauthenticatedError


@dataclass
class AuthSession:
    token: str
    owner_id: str | None = None


class BearerTokenAuth:
    """
    Holds the signed-in user's bearer token.

    get_current_session() mirrors the identity provider's call: it returns
    None once the user is signed out, and every collaborator call then fails
    with UnauthenticatedError.
    """

    def __init__(self, token: str | None = None, owner_id: str | None = None) -> None:
        self._session = AuthSession(token, owner_id) if token else None

    async def get_current_session(self) -> AuthSession | None:
        return self._session

    def sign_in(self, token: str, owner_id: str | None = None) -> None:
        self._session = AuthSession(token, owner_id)

    def sign_out(self) -> None:
        self._session = None


async def require_token(auth: BearerTokenAuth) -> str:
    """Return the current bearer token or raise UnauthenticatedError."""
    session = await auth.get_current_session()
    if session is None or not session.token:
        raise UnauthenticatedError("Please sign in to continue")
    return session.token
