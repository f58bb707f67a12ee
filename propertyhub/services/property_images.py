"""Ordered property images and the cover image derived from them.

Client input is parsed once at the boundary into :class:`ImageInput`, then
normalised into :class:`OrderedImage` values with exactly one primary entry.
Every mutation helper below runs inside the caller's transaction and ends with
:func:`sync_cover_image`, which keeps ``Property.image_url`` equal to the URL
of the primary ``PropertyImage`` record.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..models.models import Property, PropertyImage
from .image_locations import is_valid_image_location

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


@dataclass(frozen=True)
class ImageInput:
    """A single client-submitted image after boundary parsing."""

    image_url: str
    caption: Optional[str] = None
    caption_provided: bool = False
    is_primary: Optional[bool] = None


@dataclass(frozen=True)
class OrderedImage:
    image_url: str
    caption: Optional[str]
    caption_provided: bool
    is_primary: bool


def coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _clean_caption(value: Any) -> Tuple[Optional[str], bool]:
    if not isinstance(value, str):
        return None, False
    trimmed = value.strip()
    return (trimmed or None), True


def extract_image_url(item: Any) -> Optional[str]:
    """Return the trimmed, valid location held by ``item`` or None."""
    if isinstance(item, (ImageInput, OrderedImage)):
        candidate: Any = item.image_url
    elif isinstance(item, Mapping):
        candidate = None
        for key in ("imageUrl", "image_url", "url"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                candidate = value
                break
    else:
        candidate = item
    if not isinstance(candidate, str):
        return None
    trimmed = candidate.strip()
    if not trimmed or not is_valid_image_location(trimmed):
        return None
    return trimmed


def parse_image_input(item: Any) -> Tuple[Optional[ImageInput], Optional[str]]:
    """Parse one raw entry; returns (image, None) or (None, rejection reason)."""
    if isinstance(item, OrderedImage):
        if not is_valid_image_location(item.image_url):
            return None, "failed location check"
        return ImageInput(item.image_url.strip(), item.caption, item.caption_provided, item.is_primary), None
    if isinstance(item, ImageInput):
        if not is_valid_image_location(item.image_url):
            return None, "failed location check"
        return item, None

    if isinstance(item, str):
        trimmed = item.strip()
        if not trimmed:
            return None, "empty string"
        if not is_valid_image_location(trimmed):
            return None, "invalid URL format"
        return ImageInput(image_url=trimmed), None

    if isinstance(item, Mapping):
        image_url = extract_image_url(item)
        if image_url is None:
            has_candidate = any(isinstance(item.get(key), str) and item.get(key).strip() for key in ("imageUrl", "image_url", "url"))
            return None, "failed location check" if has_candidate else "no imageUrl found"
        # altText is the legacy field name and takes precedence when both are sent.
        if "altText" in item and item.get("altText") is not None:
            caption, provided = _clean_caption(item.get("altText"))
        else:
            caption, provided = _clean_caption(item.get("caption"))
        # A normalised entry that explicitly cleared its caption round-trips as (None, provided).
        if not provided and item.get("captionProvided") is True and "caption" in item:
            provided = True
        return ImageInput(
            image_url=image_url,
            caption=caption,
            caption_provided=provided,
            is_primary=coerce_bool(item.get("isPrimary", item.get("is_primary"))),
        ), None

    return None, f"unsupported type {type(item).__name__}"


def normalise_submitted_images(raw_images: Any) -> List[OrderedImage]:
    """Turn a heterogeneous client list into ordered images with one primary.

    Invalid entries are dropped and logged; they never fail the request.
    """
    if not isinstance(raw_images, (list, tuple)) or not raw_images:
        return []

    parsed: List[ImageInput] = []
    rejected: List[Tuple[int, str]] = []
    for index, item in enumerate(raw_images):
        image, reason = parse_image_input(item)
        if image is None:
            rejected.append((index, reason or "invalid"))
            continue
        parsed.append(image)

    if rejected:
        logger.warning(
            "Dropped %d of %d submitted property images: %s",
            len(rejected),
            len(raw_images),
            ", ".join(f"#{index} ({reason})" for index, reason in rejected),
        )
    if not parsed:
        return []

    primary_index = next((index for index, image in enumerate(parsed) if image.is_primary is True), 0)
    return [
        OrderedImage(
            image_url=image.image_url,
            caption=image.caption,
            caption_provided=image.caption_provided,
            is_primary=index == primary_index,
        )
        for index, image in enumerate(parsed)
    ]


def has_explicit_primary(raw_images: Any) -> bool:
    if not isinstance(raw_images, (list, tuple)):
        return False
    for item in raw_images:
        image, _ = parse_image_input(item)
        if image is not None and image.is_primary is True:
            return True
    return False


def apply_preferred_primary(images: Sequence[OrderedImage], preferred_url: Optional[str]) -> List[OrderedImage]:
    """Re-flag the primary entry by exact URL, then existing flag, then position 0."""
    if not images:
        return []
    preferred = preferred_url.strip() if isinstance(preferred_url, str) else ""
    primary_index = -1
    if preferred:
        primary_index = next((index for index, image in enumerate(images) if image.image_url == preferred), -1)
    if primary_index < 0:
        primary_index = next((index for index, image in enumerate(images) if image.is_primary), 0)
    return [replace(image, is_primary=index == primary_index) for index, image in enumerate(images)]


def primary_url_of(images: Sequence[OrderedImage]) -> Optional[str]:
    for image in images:
        if image.is_primary:
            return image.image_url
    return images[0].image_url if images else None


def build_image_records(
    property_id: int,
    images: Sequence[OrderedImage],
    uploaded_by_id: Optional[int],
) -> List[PropertyImage]:
    return [
        PropertyImage(
            property_id=property_id,
            image_url=image.image_url,
            caption=image.caption,
            is_primary=image.is_primary,
            display_order=index,
            uploaded_by_id=uploaded_by_id,
        )
        for index, image in enumerate(images)
    ]


def _timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def image_sort_key(image: Any) -> Tuple[int, int, float]:
    """Primary first, then display order, then creation time."""
    return (
        0 if image.is_primary else 1,
        image.display_order if image.display_order is not None else 0,
        _timestamp(image.created_at),
    )


def display_sort_key(image: Any) -> Tuple[int, float]:
    return (image.display_order if image.display_order is not None else 0, _timestamp(image.created_at))


def _has_url(image: Any) -> bool:
    return isinstance(image.image_url, str) and bool(image.image_url.strip())


def select_primary_image(images: Iterable[Any]) -> Optional[Any]:
    candidates = [image for image in images if _has_url(image)]
    if not candidates:
        return None
    return min(candidates, key=image_sort_key)


def resolve_primary_image_url(images: Iterable[Any]) -> Optional[str]:
    best = select_primary_image(images)
    return best.image_url.strip() if best is not None else None


def determine_new_image_primary_flag(
    requested: Optional[bool],
    has_existing_images: bool,
    has_existing_primary: bool,
) -> bool:
    """Primary policy for a freshly added image.

    An explicit ``True`` always wins. Otherwise the image only becomes primary
    when the property has no images yet or none of them is primary.
    """
    if requested is True:
        return True
    return not has_existing_images or not has_existing_primary


def load_property_images(db: Session, property_id: int) -> List[PropertyImage]:
    images = db.query(PropertyImage).filter(PropertyImage.property_id == property_id).all()
    return sorted(images, key=display_sort_key)


def sync_cover_image(db: Session, property_id: int) -> Optional[str]:
    """Recompute ``Property.image_url`` from the image records and persist it.

    Also settles the primary flag on the selected record so that exactly one
    record is primary while any images exist. Returns the resolved URL.
    """
    db.flush()
    images = db.query(PropertyImage).filter(PropertyImage.property_id == property_id).all()
    best = select_primary_image(images)
    for image in images:
        should_be_primary = best is not None and image.id == best.id
        if bool(image.is_primary) != should_be_primary:
            image.is_primary = should_be_primary

    next_url = best.image_url.strip() if best is not None else None
    property_obj = db.get(Property, property_id)
    if property_obj is not None and property_obj.image_url != next_url:
        property_obj.image_url = next_url
    db.flush()
    return next_url


def _unset_other_primaries(db: Session, property_id: int, keep_id: int) -> None:
    others = (
        db.query(PropertyImage)
        .filter(
            PropertyImage.property_id == property_id,
            PropertyImage.id != keep_id,
            PropertyImage.is_primary.is_(True),
        )
        .all()
    )
    for other in others:
        other.is_primary = False


def create_initial_images(
    db: Session,
    property_id: int,
    images: Sequence[OrderedImage],
    uploaded_by_id: Optional[int],
) -> Optional[str]:
    if not images:
        return None
    db.add_all(build_image_records(property_id, images, uploaded_by_id))
    return sync_cover_image(db, property_id)


def add_property_image(
    db: Session,
    property_id: int,
    image_url: str,
    uploaded_by_id: Optional[int],
    caption: Optional[str] = None,
    category: str = "OTHER",
    is_primary: Optional[bool] = None,
) -> PropertyImage:
    last = (
        db.query(PropertyImage)
        .filter(PropertyImage.property_id == property_id)
        .order_by(PropertyImage.display_order.desc())
        .first()
    )
    existing_primary = (
        db.query(PropertyImage.id)
        .filter(PropertyImage.property_id == property_id, PropertyImage.is_primary.is_(True))
        .first()
    )
    should_be_primary = determine_new_image_primary_flag(
        is_primary,
        has_existing_images=last is not None,
        has_existing_primary=existing_primary is not None,
    )
    image = PropertyImage(
        property_id=property_id,
        image_url=image_url,
        caption=caption,
        category=category,
        is_primary=should_be_primary,
        display_order=(last.display_order + 1) if last is not None else 0,
        uploaded_by_id=uploaded_by_id,
    )
    db.add(image)
    db.flush()
    if should_be_primary:
        _unset_other_primaries(db, property_id, image.id)
    sync_cover_image(db, property_id)
    return image


def get_property_image(db: Session, property_id: int, image_id: int) -> Optional[PropertyImage]:
    image = db.get(PropertyImage, image_id)
    if image is None or image.property_id != property_id:
        return None
    return image


def update_property_image(
    db: Session,
    property_id: int,
    image_id: int,
    changes: Mapping[str, Any],
) -> Optional[PropertyImage]:
    """Apply caption/category/primary changes; None when the image is not on this property."""
    image = get_property_image(db, property_id, image_id)
    if image is None:
        return None

    was_primary = bool(image.is_primary)
    if "caption" in changes:
        image.caption = changes["caption"]
    if changes.get("category") is not None:
        image.category = changes["category"]
    if "is_primary" in changes and changes["is_primary"] is not None:
        image.is_primary = bool(changes["is_primary"])
    db.flush()

    if image.is_primary:
        _unset_other_primaries(db, property_id, image.id)
    elif was_primary:
        successor = _earliest_image(db, property_id, exclude_id=image.id)
        if successor is not None:
            successor.is_primary = True
    sync_cover_image(db, property_id)
    return image


def _earliest_image(db: Session, property_id: int, exclude_id: Optional[int] = None) -> Optional[PropertyImage]:
    query = db.query(PropertyImage).filter(PropertyImage.property_id == property_id)
    if exclude_id is not None:
        query = query.filter(PropertyImage.id != exclude_id)
    remaining = [image for image in query.all() if _has_url(image)]
    if not remaining:
        return None
    return min(remaining, key=display_sort_key)


def delete_property_image(db: Session, property_id: int, image: PropertyImage) -> Optional[str]:
    was_primary = bool(image.is_primary)
    db.delete(image)
    db.flush()
    if was_primary:
        successor = _earliest_image(db, property_id)
        if successor is not None:
            successor.is_primary = True
    return sync_cover_image(db, property_id)


def reorder_property_images(db: Session, property_id: int, ordered_ids: Sequence[int]) -> Optional[List[PropertyImage]]:
    """Rewrite display order; None when ``ordered_ids`` is not exactly the property's image ids."""
    images = db.query(PropertyImage).filter(PropertyImage.property_id == property_id).all()
    by_id = {image.id: image for image in images}
    if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
        return None
    for index, image_id in enumerate(ordered_ids):
        by_id[image_id].display_order = index
    sync_cover_image(db, property_id)
    return [by_id[image_id] for image_id in ordered_ids]


def replace_property_images(
    db: Session,
    property_id: int,
    images: Sequence[OrderedImage],
    uploaded_by_id: Optional[int],
) -> Optional[str]:
    """Diff the stored images against a submitted list, matching by URL."""
    existing = db.query(PropertyImage).filter(PropertyImage.property_id == property_id).all()
    existing_by_url = {}
    for record in sorted(existing, key=display_sort_key):
        existing_by_url.setdefault(record.image_url, record)

    submitted: List[OrderedImage] = []
    seen = set()
    for image in images:
        if image.image_url in seen:
            continue
        seen.add(image.image_url)
        submitted.append(image)

    for record in existing:
        if record.image_url not in seen or existing_by_url.get(record.image_url) is not record:
            db.delete(record)
    db.flush()

    for index, image in enumerate(submitted):
        record = existing_by_url.get(image.image_url)
        if record is None:
            db.add(
                PropertyImage(
                    property_id=property_id,
                    image_url=image.image_url,
                    caption=image.caption,
                    is_primary=image.is_primary,
                    display_order=index,
                    uploaded_by_id=uploaded_by_id,
                )
            )
            continue
        if image.caption_provided:
            record.caption = image.caption
        record.is_primary = image.is_primary
        record.display_order = index
    return sync_cover_image(db, property_id)


def promote_cover_url(
    db: Session,
    property_id: int,
    image_url: Optional[str],
    uploaded_by_id: Optional[int],
) -> Optional[str]:
    """Make ``image_url`` the primary image, adding a record when it is new."""
    if not image_url:
        return sync_cover_image(db, property_id)
    existing = (
        db.query(PropertyImage)
        .filter(PropertyImage.property_id == property_id, PropertyImage.image_url == image_url)
        .first()
    )
    if existing is None:
        existing = add_property_image(db, property_id, image_url, uploaded_by_id, is_primary=True)
    else:
        existing.is_primary = True
        db.flush()
        _unset_other_primaries(db, property_id, existing.id)
    return sync_cover_image(db, property_id)
