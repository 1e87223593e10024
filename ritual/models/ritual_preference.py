from sqlalchemy import (
    Column, String, Integer, Date, DateTime, ForeignKey, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from ritual.database import Base
from ritual.models._ids import new_id

class RitualPreference(Base):
    """A partner's ranking of one proposed ritual"""
    __tablename__ = "ritual_preferences"
    __table_args__ = (
        UniqueConstraint("weekly_cycle_id", "user_id", "rank", name="uq_preference_rank"),
        UniqueConstraint("weekly_cycle_id", "user_id", "ritual_title", name="uq_preference_title"),
        CheckConstraint("rank >= 1 AND rank <= 3", name="ck_preference_rank"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    weekly_cycle_id = Column(String(36), ForeignKey("weekly_cycles.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    ritual_title = Column(String, nullable=False)
    ritual_data = Column(JSON, nullable=False)  # full proposal
    rank = Column(Integer, nullable=False)
    proposed_date = Column(Date)
    proposed_time = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)

    weekly_cycle = relationship("WeeklyCycle", back_populates="preferences")
