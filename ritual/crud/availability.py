from sqlalchemy.orm import Session
from ritual.models import AvailabilitySlot
from ritual.crud._session import commit_or_raise
from typing import List

def toggle_availability(db: Session, cycle_id: str, user_id: str, day_offset: int, time_band: str) -> bool:
    """
    Flip a partner's availability for one (day, band).

    Returns True if the slot is now marked available.
    """
    removed = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.weekly_cycle_id == cycle_id,
        AvailabilitySlot.user_id == user_id,
        AvailabilitySlot.day_offset == day_offset,
        AvailabilitySlot.time_band == time_band
    ).delete(synchronize_session=False)

    if not removed:
        db.add(AvailabilitySlot(
            weekly_cycle_id=cycle_id,
            user_id=user_id,
            day_offset=day_offset,
            time_band=time_band
        ))
    commit_or_raise(db, "update availability")
    return not removed

def get_availability(db: Session, cycle_id: str) -> List[AvailabilitySlot]:
    """All availability slots for a cycle, both partners"""
    return db.query(AvailabilitySlot).filter(
        AvailabilitySlot.weekly_cycle_id == cycle_id
    ).order_by(AvailabilitySlot.day_offset.asc()).populate_existing().all()
