import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

from ritual.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_read(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    description: str = "read",
) -> T:
    """
    Run an idempotent read with bounded exponential backoff.

    Only reads and polls go through here. Writes surface their failure to
    the caller instead of being retried.
    """
    last_exception: Exception = None
    delay = backoff_seconds

    for attempt in range(retries):
        try:
            return fn()
        except (PersistenceError, OperationalError) as e:
            last_exception = e
            if attempt == retries - 1:
                break
            sleep_for = random.uniform(delay * 0.8, delay * 1.2)
            logger.warning(
                "%s attempt %d/%d failed, retrying in %.2fs: %s",
                description, attempt + 1, retries, sleep_for, e
            )
            time.sleep(sleep_for)
            delay *= 2

    raise PersistenceError(f"{description} failed after {retries} attempts") from last_exception
