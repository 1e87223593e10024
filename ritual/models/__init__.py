from ritual.models.couple import Couple
from ritual.models.weekly_cycle import WeeklyCycle
from ritual.models.ritual_preference import RitualPreference
from ritual.models.availability_slot import AvailabilitySlot
from ritual.models.completion import Completion
from ritual.models.ritual_memory import RitualMemory

__all__ = [
    "Couple",
    "WeeklyCycle",
    "RitualPreference",
    "AvailabilitySlot",
    "Completion",
    "RitualMemory"
]
