"""Wallet routes - ITC balance reads and server-validated debits."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.database import get_session
from ..models.orm import LedgerEntryORM, WalletORM
from ..models.schemas import (
    BalanceResponse,
    DebitRequest,
    DebitResponse,
    LedgerEntryResponse,
)
from .deps import current_owner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


async def _balance_of(db: AsyncSession, owner_id: str) -> int:
    balance = await db.scalar(select(WalletORM.balance).where(WalletORM.owner_id == owner_id))
    return balance or 0


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    return BalanceResponse(owner_id=owner_id, balance=await _balance_of(db, owner_id))


@router.post("/debit", response_model=DebitResponse)
async def debit(
    req: DebitRequest,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """
    Debit the caller's wallet.

    The balance check and the decrement are one conditional UPDATE, so two
    concurrent debits can never take the balance below zero. On shortfall the
    response is 402 with {"required", "current"}.
    """
    result = await db.execute(
        update(WalletORM)
        .where(WalletORM.owner_id == owner_id, WalletORM.balance >= req.amount)
        .values(
            balance=WalletORM.balance - req.amount,
            updated_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        current = await _balance_of(db, owner_id)
        logger.info(
            "Debit of %d for %s refused: balance %d (%s)",
            req.amount, owner_id, current, req.reason,
        )
        raise HTTPException(
            status_code=402,
            detail={"required": req.amount, "current": current},
        )

    new_balance = await _balance_of(db, owner_id)
    db.add(LedgerEntryORM(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        amount=-req.amount,
        reason=req.reason,
        balance_after=new_balance,
        created_at=datetime.now(timezone.utc),
    ))
    await db.commit()

    logger.info("Debited %d from %s for %s, balance %d", req.amount, owner_id, req.reason, new_balance)
    return DebitResponse(new_balance=new_balance)


@router.get("/ledger", response_model=list[LedgerEntryResponse])
async def list_ledger_entries(
    limit: int = 50,
    owner_id: str = Depends(current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Most recent ledger entries for the caller."""
    result = await db.execute(
        select(LedgerEntryORM)
        .where(LedgerEntryORM.owner_id == owner_id)
        .order_by(LedgerEntryORM.created_at.desc())
        .limit(limit)
    )
    return [
        LedgerEntryResponse(
            id=e.id,
            amount=e.amount,
            reason=e.reason,
            balance_after=e.balance_after,
            created_at=e.created_at,
        )
        for e in result.scalars().all()
    ]
