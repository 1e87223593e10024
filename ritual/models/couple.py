from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from ritual.database import Base
from ritual.models._ids import new_id

class Couple(Base):
    """Two partners planning rituals together"""
    __tablename__ = "couples"

    id = Column(String(36), primary_key=True, default=new_id)
    partner_one = Column(String, nullable=False, index=True)  # user id of the creator
    partner_two = Column(String, index=True)  # filled when the partner joins
    preferred_city = Column(String)
    last_slot_picker_id = Column(String)  # who chose the time slot last cycle
    created_at = Column(DateTime, default=datetime.utcnow)

    weekly_cycles = relationship("WeeklyCycle", back_populates="couple")
    memories = relationship("RitualMemory", back_populates="couple")

    def partner_slot_for(self, user_id: str):
        """Return "partner_one"/"partner_two" for ``user_id``, or None"""
        if user_id and user_id == self.partner_one:
            return "partner_one"
        if user_id and user_id == self.partner_two:
            return "partner_two"
        return None
