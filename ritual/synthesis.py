"""
Generation invoker.

Turns both partners' inputs into proposals at most once per cycle. The claim
on ``generation_started_at`` is taken with a guarded update, so two partners
(or two tabs) racing here produce one generator call.
"""
import logging
import uuid
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ritual import crud
from ritual.errors import (
    MALFORMED_RESPONSE,
    GenerationFailed,
    GenerationTimeout,
    InvalidInput,
    NotReady,
)
from ritual.generator import classify_generation_error
from ritual.location import location_context, resolve_city
from ritual.schemas import GenerationResult, GenerationStatus, RitualProposal
from ritual.status import load_cycle

logger = logging.getLogger(__name__)

HIGHLY_RATED = 4


def build_history(db: Session, couple_id: str) -> Dict[str, Any]:
    """What the couple has already done, for the prompt's avoid/lean-towards lists"""
    memories = crud.get_memories(db, couple_id)
    return {
        "completed_titles": crud.get_completed_titles(db, couple_id),
        "highly_rated": [
            {"title": m.ritual_title, "rating": m.rating}
            for m in memories if m.rating is not None and m.rating >= HIGHLY_RATED
        ],
        "reflections": [
            {"title": m.ritual_title, "notes": m.notes}
            for m in memories if m.notes
        ],
    }


def _ready(cycle) -> GenerationResult:
    return GenerationResult(
        status=GenerationStatus.READY,
        rituals=[RitualProposal.model_validate(r) for r in cycle.rituals]
    )


def invoke_generation(ctx, cycle_id: str, now: Optional[datetime] = None) -> GenerationResult:
    """
    Produce proposals for a cycle, or report why not.

    ready: proposals exist (possibly written by someone else)
    waiting: an input is still missing
    generating: another caller holds a live claim
    failed: the generator failed; the claim is released so a retry can run
    """
    now = now or datetime.utcnow()
    claim_id = str(uuid.uuid4())

    with ctx.session() as db:
        cycle, couple = load_cycle(db, ctx, cycle_id)
        if cycle.synthesized_output:
            return _ready(cycle)
        if cycle.partner_one_input is None or cycle.partner_two_input is None:
            return GenerationResult(status=GenerationStatus.WAITING)

        stale_before = now - timedelta(seconds=ctx.settings.generation_ceiling_seconds)
        if not crud.claim_generation(db, cycle_id, claim_id, now, stale_before):
            cycle = crud.get_cycle(db, cycle_id)
            if cycle.synthesized_output:
                return _ready(cycle)
            logger.info("Generation for cycle %s already claimed", cycle_id)
            return GenerationResult(status=GenerationStatus.GENERATING)

        partner_one_input = cycle.partner_one_input
        partner_two_input = cycle.partner_two_input
        city = resolve_city(couple.preferred_city, ctx.settings.default_city)
        history = build_history(db, couple.id)

    ctx.channel.publish(cycle_id, "generation_started")
    logger.info("Generating rituals for cycle %s (%s)", cycle_id, city)

    try:
        rituals = ctx.generator().generate_rituals(
            partner_one_input,
            partner_two_input,
            location_context(city, now),
            history
        )
        # Each partner must be able to fill every pick
        if len(rituals) < ctx.settings.required_picks:
            raise GenerationFailed(
                MALFORMED_RESPONSE,
                f"Expected at least {ctx.settings.required_picks} rituals, got {len(rituals)}"
            )
    except GenerationFailed as e:
        return _fail(ctx, cycle_id, claim_id, e.code, e.message, e.retry_later)
    except Exception as e:
        logger.exception("Generator crashed for cycle %s", cycle_id)
        failure = GenerationFailed(classify_generation_error(e), str(e))
        return _fail(ctx, cycle_id, claim_id, failure.code, failure.message, failure.retry_later)

    with ctx.session() as db:
        written = crud.save_synthesized_output(db, cycle_id, [r.model_dump() for r in rituals], datetime.utcnow())
        if not written:
            logger.info("Proposals for cycle %s were already stored", cycle_id)
            return _ready(crud.get_cycle(db, cycle_id))

    ctx.channel.publish(cycle_id, "proposals_ready")
    logger.info("Stored %d rituals for cycle %s", len(rituals), cycle_id)
    return GenerationResult(status=GenerationStatus.READY, rituals=rituals)


def _fail(ctx, cycle_id: str, claim_id: str, code: str, message: str, retry_later: bool) -> GenerationResult:
    logger.warning("Generation failed for cycle %s [%s]: %s", cycle_id, code, message)
    with ctx.session() as db:
        crud.release_generation(db, cycle_id, claim_id, code, message)
    ctx.channel.publish(cycle_id, "generation_failed")
    return GenerationResult(
        status=GenerationStatus.FAILED,
        error=message,
        error_code=code,
        retry_later=retry_later
    )


def request_generation(ctx, cycle_id: str, timeout: Optional[float] = None) -> GenerationResult:
    """
    Run generation and wait for it, giving up locally after ``timeout``.

    A timeout does not cancel the work; its result still lands on the cycle.
    Retrying never clears stored proposals: if they exist, they are returned.
    """
    timeout = timeout if timeout is not None else ctx.settings.generation_timeout_seconds
    future = ctx.background.spawn(invoke_generation, ctx, cycle_id, description=f"generation for {cycle_id}")
    try:
        result = future.result(timeout=timeout)
    except FutureTimeout:
        raise GenerationTimeout(f"No proposals for cycle {cycle_id} after {timeout}s")

    if result.status == GenerationStatus.FAILED:
        raise GenerationFailed(result.error_code, result.error)
    return result


def swap_ritual(ctx, cycle_id: str, title: str) -> RitualProposal:
    """
    Ask for one replacement for ``title``.

    The stored proposals are left untouched; the replacement is returned for
    the caller to rank or show.
    """
    with ctx.session() as db:
        cycle, couple = load_cycle(db, ctx, cycle_id)
        if not cycle.synthesized_output:
            raise NotReady(f"Cycle {cycle_id} has no proposals to swap")
        current: List[str] = [r["title"] for r in cycle.rituals]
        if title not in current:
            raise InvalidInput(f"'{title}' is not one of this week's rituals")

        history = build_history(db, couple.id)
        exclude = current + [t for t in history["completed_titles"] if t not in current]
        city = resolve_city(couple.preferred_city, ctx.settings.default_city)
        partner_one_input = cycle.partner_one_input
        partner_two_input = cycle.partner_two_input

    replacement = ctx.generator().swap_ritual(
        title,
        partner_one_input,
        partner_two_input,
        location_context(city),
        history,
        exclude
    )
    if replacement.title.strip().lower() in {t.strip().lower() for t in exclude}:
        raise GenerationFailed(MALFORMED_RESPONSE, f"Replacement repeated '{replacement.title}'")

    logger.info("Swapped '%s' for '%s' on cycle %s", title, replacement.title, cycle_id)
    return replacement
