"""
Tip flow.

Every call is a new charge: one Tip row, one ``tip`` transaction, one
earnings credit. There is no deduplication key for tips.
"""
import time
import uuid
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.balances import BalanceStore
from creator_platform.core.errors import NotFound
from creator_platform.core.fees import split_fee
from creator_platform.core.ledger import TransactionLedger, record_metrics
from creator_platform.database.connection import atomic
from creator_platform.database.models import CreatorProfile, Tip
from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class TipManager:
    """Records tips and credits creators."""

    def __init__(
        self,
        fee_percent: Optional[Decimal] = None,
        ledger: Optional[TransactionLedger] = None,
        balances: Optional[BalanceStore] = None,
    ):
        settings = get_settings()
        self.fee_percent = (
            fee_percent if fee_percent is not None else settings.platform_fee_percent
        )
        self.ledger = ledger or TransactionLedger()
        self.balances = balances or BalanceStore()

    async def tip(
        self,
        db: AsyncSession,
        sender_id: uuid.UUID,
        profile_id: uuid.UUID,
        amount_cents: int,
        message: Optional[str] = None,
        *,
        is_private: bool = False,
        gateway_payment_id: Optional[str] = None,
    ) -> Tip:
        """
        Send a tip to an approved creator.

        Raises:
            InvalidAmount: If the amount is not positive
            NotFound: If the profile does not exist or is not approved
        """
        started = time.perf_counter()
        # Reject bad amounts before touching the database
        split = split_fee(amount_cents, self.fee_percent)

        async with atomic(db):
            profile_exists = await db.scalar(
                select(CreatorProfile.id).where(
                    CreatorProfile.id == profile_id,
                    CreatorProfile.status == "approved",
                )
            )
            if profile_exists is None:
                raise NotFound("Creator profile", profile_id)

            tip = Tip(
                sender_id=sender_id,
                profile_id=profile_id,
                amount_cents=amount_cents,
                currency=self.ledger.currency,
                message=message,
                is_private=is_private,
                status="completed",
                gateway_payment_id=gateway_payment_id,
            )
            db.add(tip)
            await db.flush()

            entry = await self.ledger.record(
                db,
                user_id=sender_id,
                profile_id=profile_id,
                split=split,
                type="tip",
                reference_type="tip",
                reference_id=tip.id,
                description="Tip",
            )
            await self.balances.credit_earnings(db, profile_id, split.creator_amount_cents)

        record_metrics(entry)
        metrics.record_operation_duration("tip", time.perf_counter() - started)
        logger.info(
            "tip_sent",
            tip_id=str(tip.id),
            sender_id=str(sender_id),
            profile_id=str(profile_id),
            amount_cents=amount_cents,
            creator_amount_cents=split.creator_amount_cents,
        )
        return tip

    async def list_for_profile(
        self,
        db: AsyncSession,
        profile_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        include_private: bool = False,
    ) -> List[Tip]:
        """Tips received by a creator, newest first."""
        stmt = select(Tip).where(Tip.profile_id == profile_id)
        if not include_private:
            stmt = stmt.where(Tip.is_private.is_(False))
        stmt = stmt.order_by(Tip.created_at.desc()).limit(limit).offset(offset)
        return list((await db.execute(stmt)).scalars().all())
