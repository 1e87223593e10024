"""Loading cycles for a partner and deriving where the cycle stands."""
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ritual import crud
from ritual.errors import CycleNotFound, NotAPartner, PersistenceError
from ritual.models import AvailabilitySlot, Couple, RitualPreference, WeeklyCycle
from ritual.retry import retry_read
from ritual.schemas import CycleSnapshot, CycleStatus, RitualProposal


def derive_status(cycle: WeeklyCycle, preference_count: int = 0) -> CycleStatus:
    """Map the stored row onto the cycle lifecycle"""
    if cycle.agreement_reached:
        return CycleStatus.AGREED
    if cycle.synthesized_output:
        return CycleStatus.RANKING if preference_count else CycleStatus.PROPOSALS_READY
    if cycle.generation_started_at is not None:
        return CycleStatus.GENERATING

    submitted = (cycle.partner_one_input is not None) + (cycle.partner_two_input is not None)
    if submitted == 2:
        return CycleStatus.FAILED if cycle.generation_error_code else CycleStatus.BOTH_SUBMITTED
    if submitted == 1:
        return CycleStatus.ONE_SUBMITTED
    return CycleStatus.EMPTY


def partner_slot(couple: Couple, user_id: str) -> str:
    """Which input slot belongs to ``user_id``, decided by the couple record"""
    slot = couple.partner_slot_for(user_id)
    if slot is None:
        raise NotAPartner(f"User {user_id} is not a partner in couple {couple.id}")
    return slot


def load_cycle(db: Session, ctx, cycle_id: str) -> Tuple[WeeklyCycle, Couple]:
    """Fetch a cycle and its couple, checking the acting user belongs to it"""
    try:
        cycle = crud.get_cycle(db, cycle_id)
        couple = crud.get_couple(db, cycle.couple_id) if cycle else None
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to load cycle {cycle_id}") from e

    if cycle is None or couple is None:
        raise CycleNotFound(f"Cycle {cycle_id} not found")
    partner_slot(couple, ctx.user_id)
    return cycle, couple


def split_by_partner(rows: List, couple: Couple):
    """Split preference/availability rows into (partner one rows, partner two rows)"""
    ones = [r for r in rows if r.user_id == couple.partner_one]
    twos = [r for r in rows if couple.partner_two and r.user_id == couple.partner_two]
    return ones, twos


def _proposal(data) -> Optional[RitualProposal]:
    return RitualProposal.model_validate(data) if data else None


def cycle_snapshot(ctx, cycle_id: str) -> CycleSnapshot:
    """Authoritative view of a cycle for the acting partner (retried read)"""

    def _read() -> CycleSnapshot:
        with ctx.session() as db:
            cycle, couple = load_cycle(db, ctx, cycle_id)
            try:
                preferences: List[RitualPreference] = crud.get_preferences(db, cycle_id)
                slots: List[AvailabilitySlot] = crud.get_availability(db, cycle_id)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to load picks for cycle {cycle_id}") from e

            mine = partner_slot(couple, ctx.user_id)
            picks_one, picks_two = split_by_partner(preferences, couple)
            slots_one, slots_two = split_by_partner(slots, couple)
            if mine == "partner_one":
                my_input, partner_input = cycle.partner_one_input, cycle.partner_two_input
                my_picks, partner_picks, my_slots, partner_slots = picks_one, picks_two, slots_one, slots_two
            else:
                my_input, partner_input = cycle.partner_two_input, cycle.partner_one_input
                my_picks, partner_picks, my_slots, partner_slots = picks_two, picks_one, slots_two, slots_one

            return CycleSnapshot(
                cycle_id=cycle.id,
                week_start_date=cycle.week_start_date,
                status=derive_status(cycle, len(preferences)),
                my_input_done=my_input is not None,
                partner_input_done=partner_input is not None,
                my_picks=len(my_picks),
                partner_picks=len(partner_picks),
                my_slots=len(my_slots),
                partner_slots=len(partner_slots),
                rituals=[RitualProposal.model_validate(r) for r in cycle.rituals],
                generation_error=cycle.generation_error,
                generation_error_code=cycle.generation_error_code,
                agreed_ritual=_proposal(cycle.agreed_ritual),
                agreed_date=cycle.agreed_date,
                agreed_time_band=cycle.agreed_time_band,
                agreed_time=cycle.agreed_time,
                slot_picker_id=cycle.slot_picker_id,
            )

    return retry_read(
        _read,
        retries=ctx.settings.read_retries,
        backoff_seconds=ctx.settings.retry_backoff_seconds,
        description=f"load cycle {cycle_id}",
    )
