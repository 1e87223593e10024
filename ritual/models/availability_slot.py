from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from ritual.database import Base
from ritual.models._ids import new_id

class AvailabilitySlot(Base):
    """A (day offset, time band) a partner is free during the cycle's week"""
    __tablename__ = "availability_slots"
    __table_args__ = (
        UniqueConstraint("weekly_cycle_id", "user_id", "day_offset", "time_band", name="uq_availability"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    weekly_cycle_id = Column(String(36), ForeignKey("weekly_cycles.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    day_offset = Column(Integer, nullable=False)  # 0 = week start (Monday)
    time_band = Column(String, nullable=False)  # morning, afternoon, evening
    created_at = Column(DateTime, default=datetime.utcnow)

    weekly_cycle = relationship("WeeklyCycle", back_populates="availability")
