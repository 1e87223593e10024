import logging
from datetime import datetime
from typing import List, Optional

from ritual import crud
from ritual.errors import InvalidInput, NotReady
from ritual.models import Completion, RitualMemory
from ritual.status import load_cycle

logger = logging.getLogger(__name__)


def _agreed_ritual(ctx, db, cycle_id: str):
    cycle, couple = load_cycle(db, ctx, cycle_id)
    if not cycle.agreement_reached:
        raise NotReady(f"Cycle {cycle_id} has no agreed ritual")
    return cycle, couple, cycle.agreed_ritual


def record_completion(ctx, cycle_id: str, completed_at: Optional[datetime] = None) -> Completion:
    """Mark the agreed ritual as done; its title is then never proposed again"""
    with ctx.session() as db:
        _, _, ritual = _agreed_ritual(ctx, db, cycle_id)
        completion = crud.record_completion(db, cycle_id, ritual["title"], completed_at or datetime.utcnow())
    logger.info("Recorded completion of '%s' for cycle %s", ritual["title"], cycle_id)
    ctx.channel.publish(cycle_id, "ritual_completed")
    return completion


def add_memory(ctx, cycle_id: str, rating: Optional[int] = None, notes: Optional[str] = None) -> RitualMemory:
    """
    Keep a rating and reflection for the cycle's ritual.

    Rituals rated 4 or 5 are fed back into generation as favourites.
    """
    if rating is not None and not 1 <= rating <= 5:
        raise InvalidInput("Rating must be between 1 and 5")

    with ctx.session() as db:
        cycle, couple, ritual = _agreed_ritual(ctx, db, cycle_id)
        return crud.add_memory(
            db,
            couple.id,
            cycle_id,
            ritual["title"],
            cycle.agreed_date or datetime.utcnow().date(),
            rating=rating,
            notes=notes,
            ritual_description=ritual.get("description")
        )


def list_memories(ctx, limit: int = 10) -> List[RitualMemory]:
    with ctx.session() as db:
        return crud.get_memories(db, ctx.couple_id, limit=limit)
