from contextlib import contextmanager

from ritual.background import BACKGROUND
from ritual.config import settings as app_settings
from ritual.database import SessionLocal
from ritual.generator import get_generator
from ritual.notifications import CHANNEL


class SessionContext:
    """
    Everything one partner's client needs to run the weekly protocol.

    Passed explicitly to coordinator, generation and reconciliation calls so
    they never read ambient UI state.
    """

    def __init__(
        self,
        user_id: str,
        couple_id: str,
        session_factory=None,
        channel=None,
        background=None,
        settings=None,
        generator_factory=None
    ):
        self.user_id = user_id
        self.couple_id = couple_id
        self.session_factory = session_factory or SessionLocal
        self.channel = channel or CHANNEL
        self.background = background or BACKGROUND
        self.settings = settings or app_settings
        self.generator_factory = generator_factory or get_generator
        self._generator = None

    @contextmanager
    def session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def generator(self):
        """Build the generator on first use"""
        if self._generator is None:
            self._generator = self.generator_factory()
        return self._generator

    def for_user(self, user_id: str) -> "SessionContext":
        """Same wiring, acting as another user (e.g. the other partner)"""
        other = SessionContext(
            user_id,
            self.couple_id,
            session_factory=self.session_factory,
            channel=self.channel,
            background=self.background,
            settings=self.settings,
            generator_factory=self.generator_factory
        )
        other._generator = self._generator
        return other
