import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ritual.errors import PersistenceError

logger = logging.getLogger(__name__)


def commit_or_raise(db: Session, action: str) -> None:
    """Commit, converting database failures into PersistenceError"""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to %s: %s", action, e)
        raise PersistenceError(f"Failed to {action}") from e


def execute_guarded(db: Session, statement, action: str) -> bool:
    """
    Run a single conditional UPDATE and commit it.

    Returns True when the precondition held (a row was updated).
    """
    try:
        result = db.execute(statement.execution_options(synchronize_session=False))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to %s: %s", action, e)
        raise PersistenceError(f"Failed to {action}") from e
    return result.rowcount > 0
