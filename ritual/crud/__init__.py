from ritual.crud.couple import (
    create_couple,
    get_couple,
    get_couple_for_user,
    join_couple,
    set_preferred_city,
    set_last_slot_picker
)
from ritual.crud.cycle import (
    get_cycle,
    get_cycle_for_week,
    get_or_create_cycle,
    record_partner_input,
    claim_generation,
    save_synthesized_output,
    release_generation,
    assign_slot_picker,
    commit_agreement,
    set_agreed_hour
)
from ritual.crud.preferences import rank_ritual, remove_rank, get_preferences
from ritual.crud.availability import toggle_availability, get_availability
from ritual.crud.history import record_completion, add_memory, get_completed_titles, get_memories

__all__ = [
    "create_couple",
    "get_couple",
    "get_couple_for_user",
    "join_couple",
    "set_preferred_city",
    "set_last_slot_picker",
    "get_cycle",
    "get_cycle_for_week",
    "get_or_create_cycle",
    "record_partner_input",
    "claim_generation",
    "save_synthesized_output",
    "release_generation",
    "assign_slot_picker",
    "commit_agreement",
    "set_agreed_hour",
    "rank_ritual",
    "remove_rank",
    "get_preferences",
    "toggle_availability",
    "get_availability",
    "record_completion",
    "add_memory",
    "get_completed_titles",
    "get_memories",
]
