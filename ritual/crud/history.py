from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from ritual.models import Completion, RitualMemory, WeeklyCycle
from ritual.crud._session import commit_or_raise
from datetime import date, datetime
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

def get_completion(db: Session, cycle_id: str) -> Optional[Completion]:
    return db.query(Completion).filter(
        Completion.weekly_cycle_id == cycle_id
    ).populate_existing().first()

def record_completion(db: Session, cycle_id: str, ritual_title: str, completed_at: Optional[datetime] = None) -> Completion:
    """Mark a ritual as done for a cycle; a cycle is completed at most once"""
    existing = get_completion(db, cycle_id)
    if existing:
        return existing

    completion = Completion(
        weekly_cycle_id=cycle_id,
        ritual_title=ritual_title,
        completed_at=completed_at or datetime.utcnow()
    )
    db.add(completion)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Completion for cycle %s recorded concurrently", cycle_id)
        existing = get_completion(db, cycle_id)
        if existing is None:
            raise
        return existing
    db.refresh(completion)
    return completion

def add_memory(
    db: Session,
    couple_id: str,
    cycle_id: str,
    ritual_title: str,
    completion_date: date,
    rating: Optional[int] = None,
    notes: Optional[str] = None,
    ritual_description: Optional[str] = None
) -> RitualMemory:
    """
    Save a rating/reflection for a cycle's ritual.

    A cycle keeps one memory; saving again updates the rating and any notes given.
    """
    memory = db.query(RitualMemory).filter(
        RitualMemory.weekly_cycle_id == cycle_id
    ).populate_existing().first()

    if memory is None:
        memory = RitualMemory(
            couple_id=couple_id,
            weekly_cycle_id=cycle_id,
            ritual_title=ritual_title,
            ritual_description=ritual_description,
            completion_date=completion_date
        )
        db.add(memory)
    if rating is not None:
        memory.rating = rating
    if notes is not None:
        memory.notes = notes

    commit_or_raise(db, "save memory")
    db.refresh(memory)
    return memory

def get_completed_titles(db: Session, couple_id: str, limit: int = 20) -> List[str]:
    """Distinct completed ritual titles, most recent first"""
    rows = db.query(Completion.ritual_title).join(WeeklyCycle).filter(
        WeeklyCycle.couple_id == couple_id
    ).order_by(Completion.completed_at.desc()).limit(limit).all()

    titles = []
    for (title,) in rows:
        if title not in titles:
            titles.append(title)
    return titles

def get_memories(db: Session, couple_id: str, limit: int = 10) -> List[RitualMemory]:
    """Best-rated memories first"""
    return db.query(RitualMemory).filter(
        RitualMemory.couple_id == couple_id
    ).order_by(RitualMemory.rating.desc(), RitualMemory.completion_date.desc()).limit(limit).all()
