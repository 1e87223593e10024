from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import date


class CycleStatus(str, Enum):
    """Lifecycle of a weekly cycle as seen by either partner"""
    EMPTY = "empty"
    ONE_SUBMITTED = "one_submitted"
    BOTH_SUBMITTED = "both_submitted"
    GENERATING = "generating"
    FAILED = "failed"
    PROPOSALS_READY = "proposals_ready"
    RANKING = "ranking"
    AGREED = "agreed"

    @property
    def is_terminal(self) -> bool:
        return self in (CycleStatus.AGREED, CycleStatus.FAILED)


class PreferencePayload(BaseModel):
    """One partner's weekly input: mood tags plus an optional free-text desire"""
    mood_tags: List[str] = Field(description="Selected mood card ids, e.g. cozy, deep-talk")
    desire: Optional[str] = Field(default=None, description="Heart's desire for the week")

    @field_validator("mood_tags")
    @classmethod
    def _clean_tags(cls, tags: List[str]) -> List[str]:
        cleaned = []
        for tag in tags:
            tag = tag.strip().lower()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        return cleaned

    @field_validator("desire")
    @classmethod
    def _clean_desire(cls, desire: Optional[str]) -> Optional[str]:
        if desire is None:
            return None
        return desire.strip() or None


class RitualProposal(BaseModel):
    """A generated candidate ritual, as returned by the generation function"""
    title: str = Field(min_length=1, description="Short, evocative title")
    description: str = Field(description="Specific, sensory instructions")
    time_estimate: str = Field(description='Duration, e.g. "30min" or "1-2hrs"')
    budget_band: str = Field(description='"free", "$", "$$" or "$$$"')
    category: str = Field(description="conversation, touch, adventure, appreciation, creative, food, outdoors")
    why: str = Field(description="Which intimacy dimensions this targets and why it suits the couple")


class GenerationStatus(str, Enum):
    READY = "ready"
    GENERATING = "generating"
    WAITING = "waiting"
    FAILED = "failed"


class GenerationResult(BaseModel):
    """Outcome of one invoke_generation call"""
    status: GenerationStatus
    rituals: Optional[List[RitualProposal]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retry_later: bool = False


class ReconciliationState(str, Enum):
    AWAITING_RANKINGS = "awaiting_rankings"
    AWAITING_AVAILABILITY_OVERLAP = "awaiting_availability_overlap"
    AGREED = "agreed"
    NO_OVERLAP = "no_overlap"
    NO_MUTUAL_CANDIDATE = "no_mutual_candidate"


class TimeSlot(BaseModel):
    day_offset: int
    time_band: str


class RankedCandidate(BaseModel):
    """A ritual with each partner's rank (None when that partner did not rank it)"""
    title: str
    partner_one_rank: Optional[int] = None
    partner_two_rank: Optional[int] = None

    @property
    def is_mutual(self) -> bool:
        return self.partner_one_rank is not None and self.partner_two_rank is not None

    @property
    def combined_rank(self) -> Optional[int]:
        if not self.is_mutual:
            return None
        return self.partner_one_rank + self.partner_two_rank


class AgreementResult(BaseModel):
    """Result of compute_agreement. ``conflict`` is True for NO_OVERLAP / NO_MUTUAL_CANDIDATE."""
    state: ReconciliationState
    ritual: Optional[RitualProposal] = None
    day_offset: Optional[int] = None
    time_slot: Optional[str] = None
    agreed_date: Optional[date] = None
    picker_id: Optional[str] = None
    candidates: List[RankedCandidate] = []
    overlapping_slots: List[TimeSlot] = []

    @property
    def conflict(self) -> bool:
        return self.state in (ReconciliationState.NO_OVERLAP, ReconciliationState.NO_MUTUAL_CANDIDATE)


class CycleSnapshot(BaseModel):
    """Read model of a cycle from one partner's point of view"""
    cycle_id: str
    week_start_date: date
    status: CycleStatus
    my_input_done: bool
    partner_input_done: bool
    my_picks: int = 0
    partner_picks: int = 0
    my_slots: int = 0
    partner_slots: int = 0
    rituals: List[RitualProposal] = []
    generation_error: Optional[str] = None
    generation_error_code: Optional[str] = None
    agreed_ritual: Optional[RitualProposal] = None
    agreed_date: Optional[date] = None
    agreed_time_band: Optional[str] = None
    agreed_time: Optional[str] = None
    slot_picker_id: Optional[str] = None
