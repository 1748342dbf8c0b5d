"""
Credit Ledger Client - balance reads and debits against the remote ITC ledger.

The server is the only authority on balances. The client keeps a cached copy
per owner for display and for a UX pre-check, and overwrites it with a fresh
read after every debit attempt, successful or not. No other code path
mutates the cached balance.
"""

from __future__ import annotations

import logging

import httpx

from .auth import BearerTokenAuth
from .errors import InsufficientBalanceError, StudioError, UpstreamError
from .remote import call, json_body

logger = logging.getLogger(__name__)


class CreditLedgerClient:
    """Client for the ledger collaborator (bearer-scoped wallet endpoints)."""

    def __init__(self, http: httpx.AsyncClient, auth: BearerTokenAuth) -> None:
        self.http = http
        self.auth = auth
        self._balances: dict[str, int] = {}

    def cached_balance(self, owner_id: str) -> int | None:
        """Last known balance. Advisory only, may be stale."""
        return self._balances.get(owner_id)

    async def get_balance(self, owner_id: str) -> int:
        """Fetch the authoritative balance and overwrite the cache."""
        resp = await call(
            self.http, self.auth, "GET", "/api/wallet/balance",
            context="Balance read",
        )
        data = json_body(resp, "Balance read")
        if "balance" not in data:
            raise UpstreamError("Balance read: response is missing balance")
        balance = int(data["balance"])
        self._balances[owner_id] = balance
        return balance

    async def ensure_affordable(self, owner_id: str, amount: int) -> None:
        """
        Client-side short-circuit before a paid operation.
        Raises InsufficientBalanceError without contacting the debit endpoint.
        """
        current = self._balances.get(owner_id)
        if current is None:
            current = await self.get_balance(owner_id)
        if current < amount:
            raise InsufficientBalanceError(required=amount, current=current)

    async def debit(self, owner_id: str, amount: int, reason: str) -> int:
        """
        Debit `amount` credits. Returns the new balance.

        The server re-validates the balance; a 402 becomes
        InsufficientBalanceError with the server's figures. Debited credits
        are never refunded by this client, even if the paid operation that
        follows fails.
        """
        before = self._balances.get(owner_id)
        if before is not None:
            # optimistic display until the server answers
            self._balances[owner_id] = before - amount

        try:
            resp = await call(
                self.http, self.auth, "POST", "/api/wallet/debit",
                context="Debit",
                allow=(402,),
                json={"amount": amount, "reason": reason},
            )
            data = json_body(resp, "Debit")

            if resp.status_code == 402:
                detail = data.get("detail", data)
                if not isinstance(detail, dict):
                    detail = {}
                raise InsufficientBalanceError(
                    required=int(detail.get("required", amount)),
                    current=int(detail.get("current", before or 0)),
                )

            if "new_balance" not in data:
                raise UpstreamError("Debit: response is missing new_balance")
            new_balance = int(data["new_balance"])
            self._balances[owner_id] = new_balance
            logger.info(
                "Debited %d ITC from %s for %s (balance now %d)",
                amount, owner_id, reason, new_balance,
            )
            return new_balance

        except StudioError:
            if before is not None:
                self._balances[owner_id] = before
            raise

        finally:
            await self._reconcile(owner_id)

    async def _reconcile(self, owner_id: str) -> None:
        try:
            await self.get_balance(owner_id)
        except StudioError as e:
            logger.warning("Balance reconciliation failed for %s: %s", owner_id, e)
