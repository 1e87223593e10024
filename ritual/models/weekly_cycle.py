from sqlalchemy import (
    Column, String, Integer, Boolean, Date, DateTime, Text, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from ritual.database import Base
from ritual.models._ids import new_id

class WeeklyCycle(Base):
    """One couple's shared planning record for one calendar week"""
    __tablename__ = "weekly_cycles"
    __table_args__ = (
        UniqueConstraint("couple_id", "week_start_date", name="uq_cycle_couple_week"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    couple_id = Column(String(36), ForeignKey("couples.id"), nullable=False, index=True)
    week_start_date = Column(Date, nullable=False)

    # {"mood_tags": [...], "desire": "..."}; written once per partner
    partner_one_input = Column(JSON(none_as_null=True))
    partner_one_submitted_at = Column(DateTime)
    partner_two_input = Column(JSON(none_as_null=True))
    partner_two_submitted_at = Column(DateTime)
    proposer_user_id = Column(String)  # whoever submitted first

    # Generation claim and result
    generation_started_at = Column(DateTime)
    generation_claim_id = Column(String(36))
    synthesized_output = Column(JSON(none_as_null=True))  # {"rituals": [...]}
    sync_completed_at = Column(DateTime)
    generation_error = Column(Text)
    generation_error_code = Column(String)

    # Agreement
    slot_picker_id = Column(String)
    agreement_reached = Column(Boolean, nullable=False, default=False)
    agreed_ritual = Column(JSON(none_as_null=True))
    agreed_date = Column(Date)
    agreed_day_offset = Column(Integer)
    agreed_time_band = Column(String)
    agreed_time_start = Column(String)  # "HH:MM"
    agreed_time_end = Column(String)
    agreed_time = Column(String)  # hour picked inside the band, e.g. "7:00 PM"
    agreed_at = Column(DateTime)
    slot_selected_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    couple = relationship("Couple", back_populates="weekly_cycles")
    preferences = relationship("RitualPreference", back_populates="weekly_cycle")
    availability = relationship("AvailabilitySlot", back_populates="weekly_cycle")
    completions = relationship("Completion", back_populates="weekly_cycle")

    @property
    def rituals(self):
        if not self.synthesized_output:
            return []
        return self.synthesized_output.get("rituals", [])
