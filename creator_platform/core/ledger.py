"""
Append-only transaction ledger.

Entries are inserted once with their fee split and never updated.
"""
import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.errors import InvalidInput
from creator_platform.core.fees import FeeSplit
from creator_platform.database.models import TRANSACTION_TYPES, Transaction
from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class TransactionLedger:
    """Records and queries monetizable events."""

    def __init__(self, currency: Optional[str] = None):
        self.currency = currency or get_settings().currency

    async def record(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        profile_id: Optional[uuid.UUID],
        split: FeeSplit,
        type: str,
        reference_type: Optional[str],
        reference_id: Optional[uuid.UUID],
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Append a completed transaction.

        The row is flushed so its id is available, but not committed.

        Args:
            db: Database session
            user_id: Paying account
            profile_id: Credited creator profile
            split: Fee split for the gross amount
            type: Transaction type
            reference_type: Kind of originating record (subscription, tip, media_unlock)
            reference_id: Id of the originating record
            description: Optional human-readable note

        Returns:
            Transaction: The new ledger entry
        """
        if type not in TRANSACTION_TYPES:
            raise InvalidInput("type", f"unknown transaction type {type!r}")

        entry = Transaction(
            user_id=user_id,
            profile_id=profile_id,
            amount_cents=split.gross_cents,
            platform_fee_cents=split.platform_fee_cents,
            creator_amount_cents=split.creator_amount_cents,
            currency=self.currency,
            type=type,
            status="completed",
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
        )
        db.add(entry)
        await db.flush()

        logger.info(
            "ledger_transaction_recorded",
            transaction_id=str(entry.id),
            type=type,
            amount_cents=split.gross_cents,
            platform_fee_cents=split.platform_fee_cents,
            creator_amount_cents=split.creator_amount_cents,
            reference_id=str(reference_id) if reference_id else None,
        )
        return entry

    async def list_for_profile(
        self,
        db: AsyncSession,
        profile_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        type: Optional[str] = None,
    ) -> List[Transaction]:
        """Transactions credited to a creator, newest first."""
        stmt = select(Transaction).where(Transaction.profile_id == profile_id)
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        stmt = stmt.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)
        return list((await db.execute(stmt)).scalars().all())

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        """Transactions paid by an account, newest first."""
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list((await db.execute(stmt)).scalars().all())

    async def list_for_reference(
        self, db: AsyncSession, reference_type: str, reference_id: uuid.UUID
    ) -> List[Transaction]:
        """Transactions produced by one subscription, tip or unlock."""
        stmt = (
            select(Transaction)
            .where(
                Transaction.reference_type == reference_type,
                Transaction.reference_id == reference_id,
            )
            .order_by(Transaction.created_at)
        )
        return list((await db.execute(stmt)).scalars().all())

    async def earnings_since(
        self, db: AsyncSession, profile_id: uuid.UUID, since: datetime
    ) -> int:
        """Sum of completed creator amounts since a point in time."""
        total = await db.scalar(
            select(func.coalesce(func.sum(Transaction.creator_amount_cents), 0)).where(
                Transaction.profile_id == profile_id,
                Transaction.status == "completed",
                Transaction.created_at >= since,
            )
        )
        return int(total or 0)


def record_metrics(entry: Transaction) -> None:
    """Report a committed ledger entry to Prometheus."""
    metrics.record_transaction(
        type=entry.type,
        currency=entry.currency,
        amount_cents=entry.amount_cents,
        platform_fee_cents=entry.platform_fee_cents,
    )
