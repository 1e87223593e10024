from sqlalchemy import update
from sqlalchemy.orm import Session
from ritual.models import Couple
from ritual.crud._session import commit_or_raise, execute_guarded
from typing import Optional

def create_couple(db: Session, partner_one: str, preferred_city: Optional[str] = None) -> Couple:
    """Create a couple with its first partner"""
    couple = Couple(partner_one=partner_one, preferred_city=preferred_city)
    db.add(couple)
    commit_or_raise(db, "create couple")
    db.refresh(couple)
    return couple

def get_couple(db: Session, couple_id: str) -> Optional[Couple]:
    """Get couple by ID"""
    return db.get(Couple, couple_id, populate_existing=True)

def get_couple_for_user(db: Session, user_id: str) -> Optional[Couple]:
    """Find the couple a user belongs to"""
    return db.query(Couple).filter(
        (Couple.partner_one == user_id) | (Couple.partner_two == user_id)
    ).order_by(Couple.created_at.desc()).first()

def join_couple(db: Session, couple_id: str, partner_two: str) -> bool:
    """Fill the second partner seat if it is still open"""
    stmt = (
        update(Couple)
        .where(Couple.id == couple_id, Couple.partner_two.is_(None), Couple.partner_one != partner_two)
        .values(partner_two=partner_two)
    )
    return execute_guarded(db, stmt, "join couple")

def set_preferred_city(db: Session, couple_id: str, city: str) -> bool:
    stmt = update(Couple).where(Couple.id == couple_id).values(preferred_city=city)
    return execute_guarded(db, stmt, "update preferred city")

def set_last_slot_picker(db: Session, couple_id: str, user_id: str) -> bool:
    stmt = update(Couple).where(Couple.id == couple_id).values(last_slot_picker_id=user_id)
    return execute_guarded(db, stmt, "record slot picker")
