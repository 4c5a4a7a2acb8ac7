"""Per-account monthly usage and plan limits."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clipper_studio.db.database import utcnow
from clipper_studio.errors import QuotaExceededError, ValidationError
from clipper_studio.models.usage import UsageCounter

logger = logging.getLogger(__name__)

DEFAULT_PLAN = "basic"

# None means unlimited
PLAN_LIMITS: Dict[str, Dict[str, Optional[float]]] = {
    "basic": {"videos": 5, "clips": 25, "storage_mb": 1000},
    "pro": {"videos": 50, "clips": 250, "storage_mb": 10000},
    "premium": {"videos": None, "clips": None, "storage_mb": 50000},
}


def plan_limits(plan: Optional[str]) -> Dict[str, Optional[float]]:
    """Limits for a plan. Unknown plans get the basic tier."""
    return PLAN_LIMITS[plan_name(plan)]


def plan_name(plan: Optional[str]) -> str:
    name = (plan or DEFAULT_PLAN).lower()
    return name if name in PLAN_LIMITS else DEFAULT_PLAN


def _exceeded(used: float, limit: Optional[float]) -> bool:
    return limit is not None and used >= limit


@dataclass
class LimitCheck:
    """Per-resource exceeded flags with the plan's limits."""
    plan: str
    videos_exceeded: bool
    clips_exceeded: bool
    storage_exceeded: bool
    limits: Dict[str, Optional[float]] = field(default_factory=dict)
    usage: Dict[str, float] = field(default_factory=dict)

    @property
    def any_exceeded(self) -> bool:
        return self.videos_exceeded or self.clips_exceeded or self.storage_exceeded

    def to_dict(self) -> dict:
        return {
            "plan": self.plan,
            "videos_exceeded": self.videos_exceeded,
            "clips_exceeded": self.clips_exceeded,
            "storage_exceeded": self.storage_exceeded,
            "limits": self.limits,
            "usage": self.usage,
        }


class UsageService:
    """Usage counters for the current calendar month."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _select(self, account_id: str, year: int, month: int) -> Optional[UsageCounter]:
        result = await self.db.execute(
            select(UsageCounter)
            .where(
                UsageCounter.account_id == account_id,
                UsageCounter.year == year,
                UsageCounter.month == month,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_current_period(
        self,
        account_id: str,
        now: Optional[datetime] = None,
    ) -> UsageCounter:
        """Return this month's counter, creating a zeroed one on first access."""
        now = now or utcnow()
        counter = await self._select(account_id, now.year, now.month)
        if counter:
            return counter

        counter = UsageCounter(
            account_id=account_id,
            year=now.year,
            month=now.month,
            videos_processed=0,
            clips_generated=0,
            storage_used_mb=0.0,
        )
        self.db.add(counter)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created the period first
            await self.db.rollback()
            counter = await self._select(account_id, now.year, now.month)
            if counter is None:
                raise
            return counter

        await self.db.refresh(counter)
        logger.info(f"Created usage period {now.year}-{now.month:02d} for account {account_id}")
        return counter

    async def _increment(self, account_id: str, column, amount: float, now: Optional[datetime]) -> UsageCounter:
        if amount < 0:
            raise ValidationError("Usage increments must be non-negative")
        counter = await self.get_or_create_current_period(account_id, now)
        await self.db.execute(
            update(UsageCounter)
            .where(UsageCounter.id == counter.id)
            .values({column: column + amount, UsageCounter.updated_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(counter)
        return counter

    async def increment_videos_processed(self, account_id: str, now: Optional[datetime] = None) -> UsageCounter:
        return await self._increment(account_id, UsageCounter.videos_processed, 1, now)

    async def increment_clips_generated(
        self,
        account_id: str,
        count: int,
        now: Optional[datetime] = None,
    ) -> UsageCounter:
        return await self._increment(account_id, UsageCounter.clips_generated, count, now)

    async def add_storage_used(
        self,
        account_id: str,
        megabytes: float,
        now: Optional[datetime] = None,
    ) -> UsageCounter:
        return await self._increment(account_id, UsageCounter.storage_used_mb, megabytes, now)

    async def check_limits(
        self,
        account_id: str,
        plan: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LimitCheck:
        counter = await self.get_or_create_current_period(account_id, now)
        limits = plan_limits(plan)
        return LimitCheck(
            plan=plan_name(plan),
            videos_exceeded=_exceeded(counter.videos_processed, limits["videos"]),
            clips_exceeded=_exceeded(counter.clips_generated, limits["clips"]),
            storage_exceeded=_exceeded(counter.storage_used_mb, limits["storage_mb"]),
            limits=dict(limits),
            usage={
                "videos": counter.videos_processed,
                "clips": counter.clips_generated,
                "storage_mb": counter.storage_used_mb,
            },
        )

    async def ensure_can_process(self, account_id: str, plan: Optional[str] = None) -> LimitCheck:
        """
        Raises:
            QuotaExceededError: Video count or storage is at the plan limit
        """
        check = await self.check_limits(account_id, plan)
        if check.videos_exceeded:
            raise QuotaExceededError("Monthly video limit reached for your plan")
        if check.storage_exceeded:
            raise QuotaExceededError("Storage limit reached for your plan")
        return check

    async def monthly_stats(self, year: int, month: int) -> dict:
        """Totals and averages across all accounts for one month."""
        result = await self.db.execute(
            select(
                func.count(UsageCounter.id),
                func.coalesce(func.sum(UsageCounter.videos_processed), 0),
                func.coalesce(func.sum(UsageCounter.clips_generated), 0),
                func.coalesce(func.sum(UsageCounter.storage_used_mb), 0.0),
            ).where(UsageCounter.year == year, UsageCounter.month == month)
        )
        accounts, videos, clips, storage = result.one()
        return {
            "year": year,
            "month": month,
            "accounts": accounts,
            "total_videos": int(videos),
            "total_clips": int(clips),
            "total_storage_mb": float(storage),
            "avg_videos_per_account": videos / accounts if accounts else 0.0,
            "avg_clips_per_account": clips / accounts if accounts else 0.0,
        }
