"""Runtime detection of the ``property_images`` table.

Deployments may run a database that has not received the image migration
yet. Routes ask :class:`PropertyImageSupport` whether the table exists and fall
back to the single ``Property.image_url`` cover image when it does not.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import PropertyImage

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING_TABLE_PGCODE = "42P01"
_TABLE_NAME = PropertyImage.__tablename__


def is_missing_table_error(exc: BaseException) -> bool:
    """True when ``exc`` reports that the property_images relation does not exist."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == _MISSING_TABLE_PGCODE:
        return True
    message = str(orig if orig is not None else exc).lower()
    if _TABLE_NAME not in message:
        return False
    if "no such table" in message:
        return True
    return "relation" in message and "does not exist" in message


class PropertyImageSupport:
    """Cached answer to "does the image table exist?".

    An unavailable answer is kept for ``ttl_seconds`` before probing again; an
    available answer is kept until an operation hits a missing-table error.
    """

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._available: Optional[bool] = None
        self._checked_at: float = 0.0
        self._warning_logged = False

    @property
    def available(self) -> Optional[bool]:
        return self._available

    def reset(self) -> None:
        self._available = None
        self._checked_at = 0.0
        self._warning_logged = False

    def should_recheck(self) -> bool:
        if self._available is None:
            return True
        if self._available:
            return False
        return self._clock() - self._checked_at >= self.ttl_seconds

    def mark_supported(self) -> None:
        if self._available is False:
            logger.info("Property images table detected; image records enabled")
        self._available = True
        self._checked_at = self._clock()
        self._warning_logged = False

    def mark_unsupported(self) -> None:
        self._available = False
        self._checked_at = self._clock()
        if not self._warning_logged:
            logger.warning(
                "Property images table is missing; falling back to the property cover image. "
                "Apply the latest database migrations to enable image management."
            )
            self._warning_logged = True

    def probe(self, db: Session) -> bool:
        """Query the table unconditionally and record the outcome."""
        try:
            db.query(PropertyImage.id).limit(1).all()
        except DBAPIError as exc:
            db.rollback()
            if is_missing_table_error(exc):
                self.mark_unsupported()
                return False
            raise
        self.mark_supported()
        return True

    def is_available(self, db: Session) -> bool:
        if not self.should_recheck():
            return bool(self._available)
        return self.probe(db)

    def run(self, db: Session, operation: Callable[[bool], T]) -> T:
        """Call ``operation(available)``, retrying once without images on a missing table."""
        available = self.is_available(db)
        try:
            return operation(available)
        except DBAPIError as exc:
            if not available or not is_missing_table_error(exc):
                raise
            db.rollback()
            self.mark_unsupported()
            return operation(False)


property_image_support = PropertyImageSupport(ttl_seconds=settings.property_images_check_ttl_seconds)


def get_image_support() -> PropertyImageSupport:
    return property_image_support
