from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from ritual.database import Base
from ritual.models._ids import new_id

class Completion(Base):
    """A ritual the couple actually did"""
    __tablename__ = "completions"
    __table_args__ = (
        UniqueConstraint("weekly_cycle_id", name="uq_completion_cycle"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    weekly_cycle_id = Column(String(36), ForeignKey("weekly_cycles.id"), nullable=False, index=True)
    ritual_title = Column(String, nullable=False)
    completed_at = Column(DateTime, default=datetime.utcnow)

    weekly_cycle = relationship("WeeklyCycle", back_populates="completions")
