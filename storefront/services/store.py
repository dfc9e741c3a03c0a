"""Shared plumbing for the data-access services."""
import logging
from typing import Any, Callable, NamedTuple, Optional

from opentelemetry import trace
from sqlalchemy.exc import InvalidRequestError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


class StoreResult(NamedTuple):
    """Outcome of a data-access call: ``data`` on success, ``error`` otherwise."""
    data: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def insert_for(db: Session):
    """Return the dialect-specific ``insert`` that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise InvalidRequestError(f"upserts are not supported on {dialect}")
    return insert


class StoreService:
    """Base class running each call in its own session and span."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the service.

        Args:
            session_factory: Factory producing database sessions
        """
        self.session_factory = session_factory
        self.tracer = trace.get_tracer(__name__)

    def _execute(
        self,
        operation: str,
        table: str,
        work: Callable[[Session], Any],
        **attributes: Any
    ) -> StoreResult:
        """
        Run ``work`` in a fresh session and commit.

        Store errors are captured into the result rather than raised.
        """
        with self.tracer.start_as_current_span(f"db.{table}.{operation}") as db_span:
            db_span.set_attribute("db.operation", operation)
            db_span.set_attribute("db.table", table)
            for name, value in attributes.items():
                db_span.set_attribute(name, str(value))

            db = self.session_factory()
            try:
                data = work(db)
                db.commit()
                return StoreResult(data=data)
            except SQLAlchemyError as e:
                db.rollback()
                db_span.record_exception(e)
                logger.error("Store call failed", extra={
                    "operation": operation,
                    "table": table,
                    "error": str(e),
                    **{k: str(v) for k, v in attributes.items()}
                })
                return StoreResult(error=e)
            finally:
                db.close()
