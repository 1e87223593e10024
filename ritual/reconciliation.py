"""
Reconciliation engine.

Both partners rank up to three proposals and mark the (day, band) slots they
are free. A ritual is agreed only if both ranked it; the slot must be one
both partners marked. The result is committed once and then read back.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ritual import crud
from ritual.errors import InvalidInput, NotReady
from ritual.location import (
    ALL_HOURS,
    DAYS_IN_WEEK,
    HOUR_SLOTS,
    TIME_BANDS,
    band_time_range,
    day_offset_to_date,
    is_valid_slot,
)
from ritual.models import Couple, WeeklyCycle
from ritual.schemas import (
    AgreementResult,
    RankedCandidate,
    ReconciliationState,
    RitualProposal,
    TimeSlot,
)
from ritual.status import load_cycle, partner_slot, split_by_partner

logger = logging.getLogger(__name__)

MAX_RANK = 3


def _open_for_picks(ctx, db, cycle_id: str) -> Tuple[WeeklyCycle, Couple]:
    cycle, couple = load_cycle(db, ctx, cycle_id)
    if not cycle.synthesized_output:
        raise NotReady(f"Cycle {cycle_id} has no proposals yet")
    if cycle.agreement_reached:
        raise NotReady(f"Cycle {cycle_id} is already agreed")
    return cycle, couple


def rank_ritual(
    ctx,
    cycle_id: str,
    title: str,
    rank: int,
    proposed_day: Optional[int] = None,
    proposed_time: Optional[str] = None
) -> RitualProposal:
    """
    Give this week's proposal ``title`` the acting partner's ``rank`` (1 is best).

    ``proposed_day`` and ``proposed_time`` record when the partner would like
    to do it. Matching still runs on availability slots.
    """
    if rank < 1 or rank > MAX_RANK:
        raise InvalidInput(f"Rank must be between 1 and {MAX_RANK}")
    if proposed_day is not None and not 0 <= proposed_day < DAYS_IN_WEEK:
        raise InvalidInput(f"Day must be between 0 and {DAYS_IN_WEEK - 1}")
    if proposed_time is not None and proposed_time not in ALL_HOURS:
        raise InvalidInput(f"{proposed_time} is not a bookable hour")

    with ctx.session() as db:
        cycle, _ = _open_for_picks(ctx, db, cycle_id)
        proposals = {r["title"]: r for r in cycle.rituals}
        if title not in proposals:
            raise InvalidInput(f"'{title}' is not one of this week's rituals")

        proposed_date = None
        if proposed_day is not None:
            proposed_date = day_offset_to_date(cycle.week_start_date, proposed_day)
        crud.rank_ritual(
            db, cycle_id, ctx.user_id, proposals[title], rank,
            proposed_date=proposed_date, proposed_time=proposed_time
        )

    ctx.channel.publish(cycle_id, "preferences_changed")
    return RitualProposal.model_validate(proposals[title])


def remove_rank(ctx, cycle_id: str, rank: int) -> bool:
    with ctx.session() as db:
        _open_for_picks(ctx, db, cycle_id)
        removed = crud.remove_rank(db, cycle_id, ctx.user_id, rank)
    if removed:
        ctx.channel.publish(cycle_id, "preferences_changed")
    return bool(removed)


def toggle_availability(ctx, cycle_id: str, day_offset: int, time_band: str) -> bool:
    """Flip one slot for the acting partner; True if now available"""
    if not is_valid_slot(day_offset, time_band):
        raise InvalidInput(f"Invalid slot ({day_offset}, {time_band})")
    with ctx.session() as db:
        _open_for_picks(ctx, db, cycle_id)
        available = crud.toggle_availability(db, cycle_id, ctx.user_id, day_offset, time_band)
    ctx.channel.publish(cycle_id, "availability_changed")
    return available


def choose_picker(couple: Couple, cycle: WeeklyCycle, rule: str) -> str:
    """Who narrows the agreed band down to an hour this week"""
    partners = (couple.partner_one, couple.partner_two)
    if rule == "week_parity":
        return partners[(cycle.week_start_date.toordinal() // 7) % 2]
    if rule == "iso_week":
        return partners[cycle.week_start_date.isocalendar()[1] % 2]
    if rule == "alternate":
        return partners[1] if couple.last_slot_picker_id == partners[0] else partners[0]
    if rule == "first_submitter":
        return cycle.proposer_user_id or partners[0]
    raise ValueError(f"Unknown picker rotation: {rule}")


def rank_candidates(ranks_one: Dict[str, int], ranks_two: Dict[str, int]) -> List[RankedCandidate]:
    """Every ranked title with both partners' ranks, mutual picks first"""
    candidates = [
        RankedCandidate(title=title, partner_one_rank=ranks_one.get(title), partner_two_rank=ranks_two.get(title))
        for title in sorted(set(ranks_one) | set(ranks_two))
    ]
    return sorted(candidates, key=lambda c: (not c.is_mutual, c.combined_rank or 0, c.title))


def select_ritual(candidates: Iterable[RankedCandidate], picker_is_partner_one: bool) -> Optional[RankedCandidate]:
    """
    Lowest combined rank among titles both partners ranked.

    Ties go to the picker's better rank, then title order.
    """
    mutual = [c for c in candidates if c.is_mutual]
    if not mutual:
        return None

    def key(c: RankedCandidate):
        picker_rank = c.partner_one_rank if picker_is_partner_one else c.partner_two_rank
        return (c.combined_rank, picker_rank, c.title)

    return min(mutual, key=key)


def overlapping_slots(slots_one: Set[Tuple[int, str]], slots_two: Set[Tuple[int, str]]) -> List[TimeSlot]:
    """Slots both partners marked, earliest first"""
    shared = slots_one & slots_two
    ordered = sorted(shared, key=lambda s: (s[0], TIME_BANDS.index(s[1])))
    return [TimeSlot(day_offset=day, time_band=band) for day, band in ordered]


def compute_match(
    ranks_one: Dict[str, int],
    ranks_two: Dict[str, int],
    slots_one: Set[Tuple[int, str]],
    slots_two: Set[Tuple[int, str]],
    picker_is_partner_one: bool = True,
) -> Tuple[ReconciliationState, Optional[RankedCandidate], List[RankedCandidate], List[TimeSlot]]:
    """Pure matching step: no storage, same inputs always give the same answer"""
    candidates = rank_candidates(ranks_one, ranks_two)
    overlap = overlapping_slots(slots_one, slots_two)

    chosen = select_ritual(candidates, picker_is_partner_one)
    if chosen is None:
        return ReconciliationState.NO_MUTUAL_CANDIDATE, None, candidates, overlap
    if not overlap:
        return ReconciliationState.NO_OVERLAP, chosen, candidates, overlap
    return ReconciliationState.AGREED, chosen, candidates, overlap


def _stored_agreement(cycle: WeeklyCycle) -> AgreementResult:
    return AgreementResult(
        state=ReconciliationState.AGREED,
        ritual=RitualProposal.model_validate(cycle.agreed_ritual),
        day_offset=cycle.agreed_day_offset,
        time_slot=cycle.agreed_time_band,
        agreed_date=cycle.agreed_date,
        picker_id=cycle.slot_picker_id,
    )


def compute_agreement(ctx, cycle_id: str, now: Optional[datetime] = None) -> AgreementResult:
    """
    Reconcile both partners' picks into one agreement.

    Once an agreement is committed every later call returns it unchanged.
    """
    settings = ctx.settings
    with ctx.session() as db:
        cycle, couple = load_cycle(db, ctx, cycle_id)
        if cycle.agreement_reached:
            return _stored_agreement(cycle)
        if not cycle.synthesized_output:
            raise NotReady(f"Cycle {cycle_id} has no proposals yet")

        prefs_one, prefs_two = split_by_partner(crud.get_preferences(db, cycle_id), couple)
        avail_one, avail_two = split_by_partner(crud.get_availability(db, cycle_id), couple)
        ranks_one = {p.ritual_title: p.rank for p in prefs_one}
        ranks_two = {p.ritual_title: p.rank for p in prefs_two}
        slots_one = {(s.day_offset, s.time_band) for s in avail_one}
        slots_two = {(s.day_offset, s.time_band) for s in avail_two}

        if len(ranks_one) < settings.required_picks or len(ranks_two) < settings.required_picks:
            return AgreementResult(
                state=ReconciliationState.AWAITING_RANKINGS,
                candidates=rank_candidates(ranks_one, ranks_two)
            )
        if not slots_one or not slots_two:
            return AgreementResult(
                state=ReconciliationState.AWAITING_AVAILABILITY_OVERLAP,
                candidates=rank_candidates(ranks_one, ranks_two)
            )

        if cycle.slot_picker_id is None:
            crud.assign_slot_picker(db, cycle_id, choose_picker(couple, cycle, settings.picker_rotation))
            cycle = crud.get_cycle(db, cycle_id)
        picker_id = cycle.slot_picker_id

        state, chosen, candidates, overlap = compute_match(
            ranks_one, ranks_two, slots_one, slots_two,
            picker_is_partner_one=picker_id == couple.partner_one
        )
        if state != ReconciliationState.AGREED:
            logger.info("Cycle %s has no agreement yet: %s", cycle_id, state.value)
            return AgreementResult(state=state, picker_id=picker_id, candidates=candidates, overlapping_slots=overlap)

        prefs_by_title = {p.ritual_title: p for p in prefs_one + prefs_two}
        slot = overlap[0]
        agreed_date = day_offset_to_date(cycle.week_start_date, slot.day_offset)
        start, end = band_time_range(slot.time_band)

        committed = crud.commit_agreement(
            db, cycle_id,
            prefs_by_title[chosen.title].ritual_data,
            slot.day_offset, slot.time_band, agreed_date, start, end,
            now or datetime.utcnow()
        )
        if committed:
            crud.set_last_slot_picker(db, couple.id, picker_id)
            logger.info("Cycle %s agreed on '%s' for %s %s", cycle_id, chosen.title, agreed_date, slot.time_band)

        result = _stored_agreement(crud.get_cycle(db, cycle_id))

    if committed:
        ctx.channel.publish(cycle_id, "agreement_reached")
    result.candidates = candidates
    result.overlapping_slots = overlap
    return result


def select_hour(ctx, cycle_id: str, hour: str, now: Optional[datetime] = None) -> str:
    """The designated picker narrows the agreed band to one hour"""
    with ctx.session() as db:
        cycle, couple = load_cycle(db, ctx, cycle_id)
        partner_slot(couple, ctx.user_id)
        if not cycle.agreement_reached:
            raise NotReady(f"Cycle {cycle_id} has no agreement yet")
        if cycle.slot_picker_id != ctx.user_id:
            raise NotReady("Only this week's picker can choose the hour")
        allowed = HOUR_SLOTS[cycle.agreed_time_band]
        if hour not in allowed:
            raise InvalidInput(f"{hour} is not in the {cycle.agreed_time_band} band ({', '.join(allowed)})")
        crud.set_agreed_hour(db, cycle_id, hour, now or datetime.utcnow())

    ctx.channel.publish(cycle_id, "hour_selected")
    return hour
