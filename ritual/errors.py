"""Errors surfaced by the weekly cycle protocol."""


class RitualError(Exception):
    """Base class for all protocol errors"""


class PersistenceError(RitualError):
    """A read or write against the shared cycle record failed. Callers retry."""


class CycleNotFound(RitualError):
    pass


class NotAPartner(RitualError):
    """The acting user is not one of the couple's partners."""


class InvalidInput(RitualError):
    """A payload, rank, availability slot or hour was rejected."""


class NotReady(RitualError):
    """The cycle has not reached the state the operation needs."""


class ConcurrentSubmission(RitualError):
    """The partner's input slot was already filled when another submission arrived."""

    def __init__(self, cycle_id: str, partner_slot: str):
        super().__init__(f"Input for {partner_slot} on cycle {cycle_id} was already submitted")
        self.cycle_id = cycle_id
        self.partner_slot = partner_slot


class GenerationTimeout(RitualError):
    """Local give-up while waiting for generation. The server-side work keeps running."""


# Error codes reported by the generation function
RATE_LIMITED = "rate_limited"
QUOTA_EXCEEDED = "quota_exceeded"
MALFORMED_RESPONSE = "malformed_response"
EMPTY_RESPONSE = "empty_response"
GENERATION_ERROR = "generation_error"

# Codes where retrying immediately is pointless
RETRY_LATER_CODES = {RATE_LIMITED, QUOTA_EXCEEDED}


class GenerationFailed(RitualError):
    """The generation function reported a failure."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def retry_later(self) -> bool:
        return self.code in RETRY_LATER_CODES
