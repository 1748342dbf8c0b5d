"""SQLAlchemy ORM models for design sessions, wallets, and the credit ledger."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text

from .database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DesignSessionORM(Base):
    __tablename__ = "design_sessions"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    status = Column(String, default="draft", index=True)  # draft | generating | completed | submitted | archived
    step = Column(String, default="welcome")  # welcome | prompt | style | color | generating | complete
    prompt = Column(Text, nullable=True)
    style = Column(String, nullable=True)
    color = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    generated_images = Column(JSON, default=list)  # [{url, provider_id}]
    selected_image_url = Column(String, nullable=True)
    remixed_from = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now)


class WalletORM(Base):
    __tablename__ = "wallets"

    owner_id = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=_now)


class LedgerEntryORM(Base):
    __tablename__ = "ledger_entries"

    id = Column(String, primary_key=True)
    owner_id = Column(String, ForeignKey("wallets.owner_id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # negative for debits, positive for grants
    reason = Column(String, nullable=False)
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=_now)
