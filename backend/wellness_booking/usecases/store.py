import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.exc import SQLAlchemyError

from ..domain.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


@contextmanager
def store_guard(operation: str, **context: Any) -> Iterator[None]:
    """Log store failures with their inputs and re-raise them as retryable."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("%s failed", operation, extra={"operation": operation, **context})
        raise StoreUnavailableError(f"{operation} failed, please try again") from exc
