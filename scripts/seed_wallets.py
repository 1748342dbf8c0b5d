#!/usr/bin/env python3
"""
Wallet seeding script for local development.

Grants ITC credits to owners in the records database, creating wallets that
don't exist yet. Every grant is written to the ledger.

Usage:
    python seed_wallets.py alice bob --amount 100
    python seed_wallets.py alice --amount 25 --reason "support credit"
"""

import argparse
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import select

from design_studio.models import database
from design_studio.models.orm import LedgerEntryORM, WalletORM
from design_studio.services.studio_config import StudioConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "studio.yaml"


async def grant(owner_id: str, amount: int, reason: str) -> int:
    """Add `amount` credits to a wallet. Returns the new balance."""
    now = datetime.now(timezone.utc)
    async with database.async_session() as db:
        wallet = await db.scalar(select(WalletORM).where(WalletORM.owner_id == owner_id))
        if wallet is None:
            wallet = WalletORM(owner_id=owner_id, balance=0, updated_at=now)
            db.add(wallet)

        wallet.balance += amount
        wallet.updated_at = now
        db.add(LedgerEntryORM(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            amount=amount,
            reason=reason,
            balance_after=wallet.balance,
            created_at=now,
        ))
        await db.commit()
        return wallet.balance


async def main(args: argparse.Namespace) -> None:
    config = StudioConfig.load_from_yaml(args.config)
    database.configure(args.database_url or config.database_url)
    await database.init_db()

    for owner_id in args.owners:
        balance = await grant(owner_id, args.amount, args.reason)
        logger.info("Granted %d ITC to %s (balance now %d)", args.amount, owner_id, balance)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Grant ITC credits to wallets")
    parser.add_argument("owners", nargs="+", help="Owner ids to credit")
    parser.add_argument("--amount", type=int, default=100, help="Credits per owner")
    parser.add_argument("--reason", default="dev seed", help="Ledger reason")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="studio.yaml path")
    parser.add_argument("--database-url", help="Override the configured database URL")
    asyncio.run(main(parser.parse_args()))
