from datetime import date
from sqlalchemy import Column, Integer, String, Date, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from studypal.db.base import Base


class DailyUsage(Base):
    """
    Daily question usage for signed-in users.

    One record per user per day; a new day starts from zero implicitly
    because no row exists for it yet.
    """
    __tablename__ = "daily_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    questions_asked = Column(Integer, default=0, nullable=False)
    plan_type = Column(String, default="free", nullable=False)  # plan at time of last write
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'date', name='uq_daily_usage_user_date'),
        CheckConstraint('questions_asked >= 0', name='ck_daily_usage_non_negative'),
    )

    @staticmethod
    def get_date_key(day: date = None) -> str:
        """Generate date key string in YYYY-MM-DD format."""
        if day is None:
            day = date.today()
        return day.isoformat()
