from sqlalchemy import (
    Column, String, Integer, Date, DateTime, Text, ForeignKey, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from ritual.database import Base
from ritual.models._ids import new_id

class RitualMemory(Base):
    """Rating and reflection on a completed ritual"""
    __tablename__ = "ritual_memories"
    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_memory_rating"),
        UniqueConstraint("weekly_cycle_id", name="uq_memory_cycle"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    couple_id = Column(String(36), ForeignKey("couples.id"), nullable=False, index=True)
    weekly_cycle_id = Column(String(36), ForeignKey("weekly_cycles.id"))
    ritual_title = Column(String, nullable=False)
    ritual_description = Column(Text)
    completion_date = Column(Date, nullable=False)
    rating = Column(Integer)  # 1-5 stars
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    couple = relationship("Couple", back_populates="memories")
