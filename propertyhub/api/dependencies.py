from typing import Generator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session, selectinload

from ..config import SessionLocal
from ..core.errors import ApiError, ErrorCodes
from ..models.models import Property, PropertyOwner
from ..services.image_support import PropertyImageSupport, get_image_support


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def load_property(db: Session, property_id: int) -> Optional[Property]:
    return (
        db.query(Property)
        .options(selectinload(Property.owners).selectinload(PropertyOwner.owner))
        .filter(Property.id == property_id)
        .first()
    )


def require_image_support(
    db: Session = Depends(get_db),
    support: PropertyImageSupport = Depends(get_image_support),
) -> PropertyImageSupport:
    if not support.is_available(db):
        raise ApiError(
            503,
            "Property image management is not available. Please apply the latest database migrations.",
            ErrorCodes.EXT_SERVICE_UNAVAILABLE,
        )
    return support


def clamp_int_param(value: Optional[str], default: int, minimum: int, maximum: int) -> int:
    """Lenient integer query parameter: junk falls back to ``default``, then clamped."""
    try:
        parsed = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        parsed = default
    return max(minimum, min(parsed, maximum))
