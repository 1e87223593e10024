"""
Weekly cycle reads and guarded writes.

Every mutation is one UPDATE whose WHERE clause carries the precondition,
so two partners' clients can race on the same row without a read-then-write
window. The boolean result says whether the precondition held.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ritual.crud._session import execute_guarded
from ritual.models import WeeklyCycle

logger = logging.getLogger(__name__)

INPUT_COLUMNS = {
    "partner_one": ("partner_one_input", "partner_one_submitted_at"),
    "partner_two": ("partner_two_input", "partner_two_submitted_at"),
}


def get_cycle(db: Session, cycle_id: str) -> Optional[WeeklyCycle]:
    """Fetch the authoritative row, bypassing the session's identity map"""
    return db.get(WeeklyCycle, cycle_id, populate_existing=True)


def get_cycle_for_week(db: Session, couple_id: str, week_start: date) -> Optional[WeeklyCycle]:
    return db.query(WeeklyCycle).filter(
        WeeklyCycle.couple_id == couple_id,
        WeeklyCycle.week_start_date == week_start
    ).populate_existing().first()


def get_or_create_cycle(db: Session, couple_id: str, week_start: date) -> WeeklyCycle:
    """Lazily create the couple's cycle for ``week_start``; a concurrent insert wins gracefully"""
    existing = get_cycle_for_week(db, couple_id, week_start)
    if existing:
        return existing

    cycle = WeeklyCycle(couple_id=couple_id, week_start_date=week_start)
    db.add(cycle)
    try:
        db.commit()
    except IntegrityError:
        # The partner's client created it first
        db.rollback()
        logger.info("Cycle for couple %s week %s created concurrently", couple_id, week_start)
        existing = get_cycle_for_week(db, couple_id, week_start)
        if existing is None:
            raise
        return existing
    db.refresh(cycle)
    logger.info("Created cycle %s for couple %s week %s", cycle.id, couple_id, week_start)
    return cycle


def record_partner_input(
    db: Session,
    cycle_id: str,
    partner_slot: str,
    user_id: str,
    payload: Dict[str, Any],
    submitted_at: datetime
) -> bool:
    """Write a partner's input only if that slot is still empty"""
    input_col, submitted_col = INPUT_COLUMNS[partner_slot]
    stmt = (
        update(WeeklyCycle)
        .where(WeeklyCycle.id == cycle_id, getattr(WeeklyCycle, input_col).is_(None))
        .values({
            input_col: payload,
            submitted_col: submitted_at,
            # First writer becomes the proposer
            "proposer_user_id": func.coalesce(WeeklyCycle.proposer_user_id, user_id),
        })
    )
    return execute_guarded(db, stmt, "save partner input")


def claim_generation(
    db: Session,
    cycle_id: str,
    claim_id: str,
    now: datetime,
    stale_before: datetime
) -> bool:
    """
    Take the generation claim.

    Succeeds only when both inputs are present, no output exists, and no
    other claim is live (a claim older than ``stale_before`` is abandoned).
    """
    stmt = (
        update(WeeklyCycle)
        .where(
            WeeklyCycle.id == cycle_id,
            WeeklyCycle.partner_one_input.is_not(None),
            WeeklyCycle.partner_two_input.is_not(None),
            WeeklyCycle.synthesized_output.is_(None),
            (WeeklyCycle.generation_started_at.is_(None)) | (WeeklyCycle.generation_started_at < stale_before),
        )
        .values(
            generation_started_at=now,
            generation_claim_id=claim_id,
            generation_error=None,
            generation_error_code=None,
        )
    )
    return execute_guarded(db, stmt, "claim generation")


def save_synthesized_output(db: Session, cycle_id: str, rituals: List[Dict[str, Any]], now: datetime) -> bool:
    """Store proposals; a no-op if another writer got there first"""
    stmt = (
        update(WeeklyCycle)
        .where(WeeklyCycle.id == cycle_id, WeeklyCycle.synthesized_output.is_(None))
        .values(
            synthesized_output={"rituals": rituals},
            sync_completed_at=now,
            generation_error=None,
            generation_error_code=None,
        )
    )
    return execute_guarded(db, stmt, "save synthesized rituals")


def release_generation(db: Session, cycle_id: str, claim_id: str, error_code: str, error: str) -> bool:
    """Drop our claim after a failed generation so a retry can take it"""
    stmt = (
        update(WeeklyCycle)
        .where(
            WeeklyCycle.id == cycle_id,
            WeeklyCycle.generation_claim_id == claim_id,
            WeeklyCycle.synthesized_output.is_(None),
        )
        .values(
            generation_started_at=None,
            generation_claim_id=None,
            generation_error=error,
            generation_error_code=error_code,
        )
    )
    return execute_guarded(db, stmt, "release generation claim")


def assign_slot_picker(db: Session, cycle_id: str, picker_id: str) -> bool:
    stmt = (
        update(WeeklyCycle)
        .where(WeeklyCycle.id == cycle_id, WeeklyCycle.slot_picker_id.is_(None))
        .values(slot_picker_id=picker_id)
    )
    return execute_guarded(db, stmt, "assign slot picker")


def commit_agreement(
    db: Session,
    cycle_id: str,
    ritual: Dict[str, Any],
    day_offset: int,
    time_band: str,
    agreed_date: date,
    time_start: str,
    time_end: str,
    now: datetime
) -> bool:
    """Set the agreement once; later calls leave the committed values alone"""
    stmt = (
        update(WeeklyCycle)
        .where(
            WeeklyCycle.id == cycle_id,
            WeeklyCycle.agreement_reached.is_(False),
            WeeklyCycle.synthesized_output.is_not(None),
        )
        .values(
            agreement_reached=True,
            agreed_ritual=ritual,
            agreed_day_offset=day_offset,
            agreed_time_band=time_band,
            agreed_date=agreed_date,
            agreed_time_start=time_start,
            agreed_time_end=time_end,
            agreed_at=now,
        )
    )
    return execute_guarded(db, stmt, "commit agreement")


def set_agreed_hour(db: Session, cycle_id: str, hour: str, now: datetime) -> bool:
    stmt = (
        update(WeeklyCycle)
        .where(WeeklyCycle.id == cycle_id, WeeklyCycle.agreement_reached.is_(True))
        .values(agreed_time=hour, slot_selected_at=now)
    )
    return execute_guarded(db, stmt, "save agreed hour")