"""Shared plumbing for the record stores."""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Query, Session

from certifychain.auth.principal import Principal
from certifychain.exceptions import (
    AuthenticationError,
    ConflictError,
    StoreUnavailableError,
    ValidationError,
)

log = logging.getLogger(__name__)

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 100


@contextmanager
def translate_db_errors(db: Session, action: str) -> Iterator[None]:
    """Map SQLAlchemy failures onto the store error kinds.

    Unique/foreign key violations become ConflictError; anything else the
    driver raises becomes StoreUnavailableError. The session is rolled back
    in both cases so it stays usable.
    """
    try:
        yield
    except IntegrityError as e:
        db.rollback()
        log.info(f"Integrity violation while trying to {action}: {e.orig}")
        raise ConflictError(f"Cannot {action}: record already exists") from e
    except DBAPIError as e:
        db.rollback()
        log.error(f"Database failure while trying to {action}: {e}")
        raise StoreUnavailableError(f"Cannot {action}: database unavailable") from e


def check_page_size(limit: int) -> int:
    if not MIN_PAGE_SIZE <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(
            f"limit must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}", field="limit"
        )
    return limit


def keyset_page(query: Query, model, time_column, cursor_row, limit: int) -> tuple[list, Optional[object]]:
    """Newest-first page of ``query`` starting at ``cursor_row`` (inclusive).

    Fetches one extra row; when present it is popped and its id becomes the
    cursor for the next page.
    """
    if cursor_row is not None:
        cursor_time = getattr(cursor_row, time_column.key)
        query = query.filter(
            or_(
                time_column < cursor_time,
                and_(time_column == cursor_time, model.id <= cursor_row.id),
            )
        )
    rows = query.order_by(time_column.desc(), model.id.desc()).limit(limit + 1).all()

    next_cursor = None
    if len(rows) > limit:
        next_cursor = rows.pop().id
    return rows, next_cursor


class BaseStore:
    """A store bound to one DB session and, for mutations, one caller."""

    def __init__(self, db: Session, principal: Optional[Principal] = None):
        self.db = db
        self.principal = principal

    def _require_principal(self) -> Principal:
        if self.principal is None:
            raise AuthenticationError("Sign in required")
        return self.principal
