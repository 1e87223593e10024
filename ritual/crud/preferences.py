from sqlalchemy.orm import Session
from ritual.models import RitualPreference
from ritual.crud._session import commit_or_raise
from datetime import date
from typing import Any, Dict, List, Optional

def rank_ritual(
    db: Session,
    cycle_id: str,
    user_id: str,
    ritual: Dict[str, Any],
    rank: int,
    proposed_date: Optional[date] = None,
    proposed_time: Optional[str] = None
) -> RitualPreference:
    """
    Give ``ritual`` the partner's ``rank``.

    Whatever held that rank is dropped, as is any other rank the partner gave
    the same title, in one transaction.
    """
    db.query(RitualPreference).filter(
        RitualPreference.weekly_cycle_id == cycle_id,
        RitualPreference.user_id == user_id,
        (RitualPreference.rank == rank) | (RitualPreference.ritual_title == ritual["title"])
    ).delete(synchronize_session=False)
    # Flush the deletes before the insert so the unique constraints see them
    db.flush()

    preference = RitualPreference(
        weekly_cycle_id=cycle_id,
        user_id=user_id,
        ritual_title=ritual["title"],
        ritual_data=ritual,
        rank=rank,
        proposed_date=proposed_date,
        proposed_time=proposed_time
    )
    db.add(preference)
    commit_or_raise(db, "save ritual ranking")
    db.refresh(preference)
    return preference

def remove_rank(db: Session, cycle_id: str, user_id: str, rank: int) -> int:
    """Clear a partner's pick at ``rank``; returns rows removed"""
    removed = db.query(RitualPreference).filter(
        RitualPreference.weekly_cycle_id == cycle_id,
        RitualPreference.user_id == user_id,
        RitualPreference.rank == rank
    ).delete(synchronize_session=False)
    commit_or_raise(db, "remove ritual ranking")
    return removed

def get_preferences(db: Session, cycle_id: str) -> List[RitualPreference]:
    """All rankings for a cycle, both partners, best rank first"""
    return db.query(RitualPreference).filter(
        RitualPreference.weekly_cycle_id == cycle_id
    ).order_by(RitualPreference.rank.asc()).populate_existing().all()
