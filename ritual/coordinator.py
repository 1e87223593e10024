"""
Cycle coordinator.

Owns the shared weekly cycle: finds this week's cycle, accepts each partner's
input exactly once, and kicks off generation when both are in.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ritual import crud
from ritual.errors import ConcurrentSubmission, InvalidInput, NotAPartner, PersistenceError
from ritual.location import CITY_DATA, resolve_city, week_start_date
from ritual.models import WeeklyCycle
from ritual.schemas import CycleSnapshot, CycleStatus, GenerationStatus, PreferencePayload
from ritual.status import cycle_snapshot, derive_status, load_cycle, partner_slot
from ritual.synthesis import invoke_generation

logger = logging.getLogger(__name__)


def current_cycle(ctx, now: Optional[datetime] = None) -> WeeklyCycle:
    """This week's cycle for the couple, created on first access"""
    with ctx.session() as db:
        try:
            couple = crud.get_couple(db, ctx.couple_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load couple {ctx.couple_id}") from e
        if couple is None or couple.partner_slot_for(ctx.user_id) is None:
            raise NotAPartner(f"User {ctx.user_id} is not in couple {ctx.couple_id}")

        city = resolve_city(couple.preferred_city, ctx.settings.default_city)
        week_start = week_start_date(city, now)
        try:
            return crud.get_or_create_cycle(db, couple.id, week_start)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to open cycle for week {week_start}") from e


def set_city(ctx, city: str) -> str:
    """Move the couple to ``city``; later week boundaries and prompts use it"""
    if city not in CITY_DATA:
        raise InvalidInput(f"Unknown city {city}. Choose one of: {', '.join(CITY_DATA)}")
    with ctx.session() as db:
        couple = crud.get_couple(db, ctx.couple_id)
        if couple is None or couple.partner_slot_for(ctx.user_id) is None:
            raise NotAPartner(f"User {ctx.user_id} is not in couple {ctx.couple_id}")
        if not crud.set_preferred_city(db, couple.id, city):
            raise PersistenceError(f"Couple {couple.id} disappeared while changing city")
    logger.info("Couple %s moved to %s", ctx.couple_id, city)
    return city


def validate_payload(payload: PreferencePayload, settings) -> None:
    tags = len(payload.mood_tags)
    if tags < settings.min_mood_tags or tags > settings.max_mood_tags:
        raise InvalidInput(
            f"Pick between {settings.min_mood_tags} and {settings.max_mood_tags} mood cards (got {tags})"
        )
    if payload.desire and len(payload.desire) > settings.max_desire_length:
        raise InvalidInput(f"Desire is limited to {settings.max_desire_length} characters")


def submit_input(ctx, cycle_id: str, payload: PreferencePayload, now: Optional[datetime] = None) -> CycleStatus:
    """
    Store the acting partner's input for the cycle.

    The write only lands if the partner's slot is empty; a second submission
    raises ConcurrentSubmission. When both inputs are present, generation is
    started in the background and its outcome never fails this call.
    """
    validate_payload(payload, ctx.settings)
    now = now or datetime.utcnow()

    with ctx.session() as db:
        cycle, couple = load_cycle(db, ctx, cycle_id)
        slot = partner_slot(couple, ctx.user_id)

        if not crud.record_partner_input(db, cycle_id, slot, ctx.user_id, payload.model_dump(), now):
            logger.warning("Rejected second submission from %s on cycle %s", ctx.user_id, cycle_id)
            raise ConcurrentSubmission(cycle_id, slot)
        logger.info("Stored %s input for cycle %s", slot, cycle_id)

        # Re-read so the other partner's latest write is seen
        cycle = crud.get_cycle(db, cycle_id)
        both_in = cycle.partner_one_input is not None and cycle.partner_two_input is not None
        needs_generation = both_in and not cycle.synthesized_output
        status = derive_status(cycle)

    ctx.channel.publish(cycle_id, "input_submitted")

    if needs_generation:
        ctx.background.spawn(_generate_in_background, ctx, cycle_id, description=f"generation for {cycle_id}")
    return status


def _generate_in_background(ctx, cycle_id: str) -> None:
    result = invoke_generation(ctx, cycle_id)
    if result.status == GenerationStatus.FAILED:
        logger.warning(
            "Background generation for cycle %s failed (%s); a partner can retry",
            cycle_id, result.error_code
        )


def cycle_status(ctx, cycle_id: str) -> CycleStatus:
    return snapshot(ctx, cycle_id).status


def snapshot(ctx, cycle_id: str) -> CycleSnapshot:
    return cycle_snapshot(ctx, cycle_id)
