"""Per-account monthly usage counters."""
from sqlalchemy import Column, DateTime, Float, Integer, String, UniqueConstraint

from clipper_studio.db.database import Base, utcnow


class UsageCounter(Base):
    """Usage for one account in one calendar month."""

    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("account_id", "year", "month", name="uq_usage_account_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(255), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    videos_processed = Column(Integer, default=0, nullable=False)
    clips_generated = Column(Integer, default=0, nullable=False)
    storage_used_mb = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<UsageCounter(account='{self.account_id}', {self.year}-{self.month:02d})>"

    def to_dict(self):
        return {
            "account_id": self.account_id,
            "year": self.year,
            "month": self.month,
            "videos_processed": self.videos_processed,
            "clips_generated": self.clips_generated,
            "storage_used_mb": self.storage_used_mb,
        }
