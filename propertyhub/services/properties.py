import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from ..constants import (
    DETAIL_UNITS_LIMIT,
    LIST_IMAGES_PREVIEW_LIMIT,
    MAX_SEARCH_LENGTH,
    PROPERTY_STATUSES,
    ROLE_OWNER,
    ROLE_PROPERTY_MANAGER,
)
from ..models.models import Inspection, Job, Property, PropertyImage, PropertyOwner, Unit, UnitTenant
from ..schemas.schemas import (
    ActivityItem,
    OccupancyStats,
    PropertyCounts,
    PropertyDetail,
    PropertyImageRead,
    PropertyOwnerRead,
    PropertyRead,
    UnitSummary,
    UserSummary,
)
from .property_images import (
    OrderedImage,
    apply_preferred_primary,
    display_sort_key,
    extract_image_url,
    has_explicit_primary,
    normalise_submitted_images,
)
from .transactions import READ_COMMITTED, run_in_transaction

logger = logging.getLogger(__name__)

LEGACY_ALIAS_FIELDS = ("postcode", "type", "cover_image", "image_metadata", "images")
PROPERTY_COLUMNS = tuple(column.key for column in Property.__table__.columns)
WRITABLE_COLUMNS = frozenset(PROPERTY_COLUMNS) - {"id", "manager_id", "created_at", "updated_at", "archived_at"}


def apply_legacy_aliases(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fold legacy field names into their current equivalents (in place)."""
    if data.get("postcode") and not data.get("zip_code"):
        data["zip_code"] = data["postcode"]
    if data.get("type") and not data.get("property_type"):
        data["property_type"] = data["type"]
    if data.get("image_metadata") is not None and data.get("images") is None:
        data["images"] = data["image_metadata"]

    if not data.get("image_url"):
        candidates = [data.get("cover_image"), *(data.get("images") or [])]
        for candidate in candidates:
            url = extract_image_url(candidate)
            if url:
                data["image_url"] = url
                break
    return data


def property_column_values(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key in WRITABLE_COLUMNS}


def prepare_submitted_images(data: Dict[str, Any], current_cover_url: Optional[str] = None) -> Optional[List[OrderedImage]]:
    """Normalise a submitted ``images``/``imageMetadata`` list; None when neither was sent.

    The primary entry is the explicit ``imageUrl``, then ``coverImage``, then an
    entry flagged ``isPrimary``, then the current cover image, then the first entry.
    """
    raw = data.get("images") if data.get("images") is not None else data.get("image_metadata")
    if raw is None:
        return None
    images = normalise_submitted_images(raw)
    preferred = data.get("image_url") or extract_image_url(data.get("cover_image"))
    if not preferred and not has_explicit_primary(raw):
        preferred = current_cover_url
    return apply_preferred_primary(images, preferred)


def deep_merge_amenities(current: Optional[Dict[str, Any]], updates: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Merge an amenities patch into the stored amenities.

    A category set to None is removed, provided keys overwrite stored ones
    (``False`` included) and untouched categories are kept.
    """
    if updates is None:
        return None
    merged: Dict[str, Any] = {key: dict(value) if isinstance(value, dict) else value for key, value in (current or {}).items()}
    for category, values in updates.items():
        if values is None:
            merged.pop(category, None)
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Amenities category {category!r} must be an object")
        base = merged.get(category) if isinstance(merged.get(category), dict) else {}
        for key, value in values.items():
            if isinstance(value, (dict, list)):
                raise ValueError(f"Amenities value {category}.{key} must not be nested")
            base[key] = value
        merged[category] = base
    return merged


def dump_amenities(amenities: Any) -> Optional[Dict[str, Any]]:
    if amenities is None:
        return None
    return amenities.model_dump(exclude_unset=True, by_alias=True)


# --- Listing ---


def clamp_pagination(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    limit_value = 50 if limit is None else max(1, min(int(limit), 100))
    offset_value = 0 if offset is None else max(0, min(int(offset), 10000))
    return limit_value, offset_value


def scoped_property_query(db: Session, user: Any) -> Optional[Query]:
    """Properties visible to ``user`` in listings; None for roles that cannot list."""
    query = db.query(Property)
    if user.role == ROLE_PROPERTY_MANAGER:
        return query.filter(Property.manager_id == user.id)
    if user.role == ROLE_OWNER:
        return query.filter(Property.owners.any(PropertyOwner.owner_id == user.id))
    return None


def apply_list_filters(
    query: Query,
    search: Optional[str] = None,
    status: Optional[str] = None,
    include_archived: bool = False,
) -> Query:
    if not include_archived:
        query = query.filter(Property.archived_at.is_(None))
    if search:
        term = search.strip()
        if len(term) > MAX_SEARCH_LENGTH:
            logger.warning("Search term truncated from %d to %d characters", len(term), MAX_SEARCH_LENGTH)
            term = term[:MAX_SEARCH_LENGTH]
        if term:
            pattern = f"%{term.lower()}%"
            query = query.filter(
                or_(
                    func.lower(Property.name).like(pattern),
                    func.lower(Property.address).like(pattern),
                    func.lower(Property.city).like(pattern),
                )
            )
    if status:
        normalised = status.strip().upper()
        if normalised != "ALL" and normalised in PROPERTY_STATUSES:
            query = query.filter(Property.status == normalised)
    return query


def dependent_counts(db: Session, property_ids: Sequence[int]) -> Dict[int, PropertyCounts]:
    counts = {property_id: PropertyCounts() for property_id in property_ids}
    if not property_ids:
        return counts
    for model, field in ((Unit, "units"), (Job, "jobs"), (Inspection, "inspections")):
        rows = (
            db.query(model.property_id, func.count(model.id))
            .filter(model.property_id.in_(property_ids))
            .group_by(model.property_id)
            .all()
        )
        for property_id, total in rows:
            setattr(counts[property_id], field, total)
    return counts


def load_images_by_property(db: Session, property_ids: Sequence[int]) -> Dict[int, List[PropertyImage]]:
    grouped: Dict[int, List[PropertyImage]] = {property_id: [] for property_id in property_ids}
    if not property_ids:
        return grouped
    rows = db.query(PropertyImage).filter(PropertyImage.property_id.in_(property_ids)).all()
    for image in rows:
        grouped[image.property_id].append(image)
    for images in grouped.values():
        images.sort(key=display_sort_key)
    return grouped


# --- Serialisation ---


def image_to_read(image: PropertyImage) -> PropertyImageRead:
    return PropertyImageRead(
        id=image.id,
        property_id=image.property_id,
        image_url=image.image_url,
        caption=image.caption,
        category=image.category or "OTHER",
        is_primary=bool(image.is_primary),
        display_order=image.display_order or 0,
        uploaded_by_id=image.uploaded_by_id,
        created_at=image.created_at,
        updated_at=image.updated_at,
    )


def normalize_property_images(property_obj: Property, images: Optional[Sequence[PropertyImage]]) -> List[PropertyImageRead]:
    """Image records for a response, or a synthetic entry built from the cover image."""
    if images:
        return [image_to_read(image) for image in sorted(images, key=display_sort_key)]
    if property_obj.image_url:
        return [
            PropertyImageRead(
                id=f"{property_obj.id}:primary",
                property_id=property_obj.id,
                image_url=property_obj.image_url,
                caption=None,
                is_primary=True,
                display_order=0,
                uploaded_by_id=property_obj.manager_id,
                created_at=property_obj.created_at,
                updated_at=property_obj.updated_at,
            )
        ]
    return []


def _property_fields(property_obj: Property) -> Dict[str, Any]:
    fields = {column: getattr(property_obj, column) for column in PROPERTY_COLUMNS}
    fields["postcode"] = property_obj.zip_code
    fields["type"] = property_obj.property_type
    fields["cover_image"] = property_obj.image_url
    return fields


def to_public_property(
    property_obj: Property,
    images: Optional[Sequence[PropertyImage]] = None,
    counts: Optional[PropertyCounts] = None,
    occupancy: Optional[OccupancyStats] = None,
    image_limit: Optional[int] = None,
) -> PropertyRead:
    normalized = normalize_property_images(property_obj, images)
    if image_limit is not None:
        normalized = normalized[:image_limit]
    return PropertyRead(
        **_property_fields(property_obj),
        images=normalized,
        counts=counts,
        occupancy_stats=occupancy,
    )


def to_list_item(property_obj: Property, images: Optional[Sequence[PropertyImage]], counts: PropertyCounts) -> PropertyRead:
    return to_public_property(property_obj, images, counts=counts, image_limit=LIST_IMAGES_PREVIEW_LIMIT)


def user_summary(user: Any) -> Optional[UserSummary]:
    if user is None:
        return None
    return UserSummary(
        id=user.id,
        first_name=user.first_name or "",
        last_name=user.last_name or "",
        email=user.email,
        phone=user.phone,
    )


def to_property_detail(
    db: Session,
    property_obj: Property,
    images: Optional[Sequence[PropertyImage]],
    occupancy: Optional[OccupancyStats],
) -> PropertyDetail:
    units = (
        db.query(Unit)
        .filter(Unit.property_id == property_obj.id)
        .order_by(Unit.unit_number.asc())
        .limit(DETAIL_UNITS_LIMIT)
        .all()
    )
    counts = dependent_counts(db, [property_obj.id])[property_obj.id]
    owners = [
        PropertyOwnerRead(
            id=ownership.id,
            owner_id=ownership.owner_id,
            ownership_percentage=ownership.ownership_percentage,
            start_date=ownership.start_date,
            end_date=ownership.end_date,
            owner=user_summary(ownership.owner),
        )
        for ownership in property_obj.owners
    ]
    return PropertyDetail(
        **_property_fields(property_obj),
        images=normalize_property_images(property_obj, images),
        counts=counts,
        occupancy_stats=occupancy,
        manager=user_summary(property_obj.manager),
        owners=owners,
        units=[
            UnitSummary(
                id=unit.id,
                unit_number=unit.unit_number,
                status=unit.status,
                bedrooms=unit.bedrooms,
                bathrooms=unit.bathrooms,
                rent_amount=unit.rent_amount,
            )
            for unit in units
        ],
        unit_count=counts.units,
    )


# --- Occupancy ---


def occupancy_from_counts(status_counts: Dict[str, int]) -> OccupancyStats:
    total = sum(status_counts.values())
    occupied = status_counts.get("OCCUPIED", 0)
    rate = round(occupied / total * 100, 1) if total else 0.0
    return OccupancyStats(
        occupied=occupied,
        vacant=status_counts.get("VACANT", 0),
        maintenance=status_counts.get("MAINTENANCE", 0),
        total=total,
        occupancy_rate=rate,
    )


def compute_occupancy_stats(db: Session, property_id: int) -> Optional[OccupancyStats]:
    """Unit status breakdown read in one read-committed snapshot; None on failure."""

    def _read(tx: Session) -> Dict[str, int]:
        rows = (
            tx.query(Unit.status, func.count(Unit.id))
            .filter(Unit.property_id == property_id)
            .group_by(Unit.status)
            .all()
        )
        return {status: total for status, total in rows}

    try:
        counts = run_in_transaction(db, _read, isolation_level=READ_COMMITTED, max_wait_ms=2000, timeout_ms=5000, attempts=1)
    except Exception:
        logger.exception("Failed to compute occupancy stats for property %s", property_id)
        return None
    return occupancy_from_counts(counts)


# --- Deletion ---


def delete_blockers(db: Session, property_id: int) -> Dict[str, int]:
    counts = dependent_counts(db, [property_id])[property_id]
    active_tenants = (
        db.query(func.count(UnitTenant.id))
        .join(Unit, Unit.id == UnitTenant.unit_id)
        .filter(Unit.property_id == property_id, UnitTenant.is_active.is_(True))
        .scalar()
        or 0
    )
    blockers = {
        "units": counts.units,
        "jobs": counts.jobs,
        "inspections": counts.inspections,
        "activeTenants": active_tenants,
    }
    return {key: value for key, value in blockers.items() if value}


def describe_blockers(blockers: Dict[str, int]) -> str:
    labels = {
        "units": "unit(s)",
        "jobs": "job(s)",
        "inspections": "inspection(s)",
        "activeTenants": "active tenant(s)",
    }
    parts = [f"{count} {labels[key]}" for key, count in blockers.items()]
    return f"Cannot delete property with existing dependencies: {', '.join(parts)}"


# --- Activity ---


def property_activity(db: Session, property_id: int, limit: int) -> List[ActivityItem]:
    jobs = (
        db.query(Job)
        .filter(Job.property_id == property_id)
        .order_by(Job.updated_at.desc())
        .limit(limit)
        .all()
    )
    inspections = (
        db.query(Inspection)
        .filter(Inspection.property_id == property_id)
        .order_by(Inspection.updated_at.desc())
        .limit(limit)
        .all()
    )
    units = (
        db.query(Unit)
        .filter(Unit.property_id == property_id)
        .order_by(Unit.updated_at.desc())
        .limit(limit)
        .all()
    )

    items: List[ActivityItem] = []
    for job in jobs:
        assignee = job.assigned_to.full_name if job.assigned_to else None
        items.append(
            ActivityItem(
                id=f"job-{job.id}",
                type="job",
                title=job.title,
                status=job.status,
                priority=job.priority,
                description=f"Assigned to {assignee}" if assignee else None,
                date=job.updated_at,
            )
        )
    for inspection in inspections:
        items.append(
            ActivityItem(
                id=f"inspection-{inspection.id}",
                type="inspection",
                title=inspection.title,
                status=inspection.status,
                date=inspection.scheduled_date or inspection.updated_at,
            )
        )
    for unit in units:
        items.append(
            ActivityItem(
                id=f"unit-{unit.id}",
                type="unit",
                title=f"Unit {unit.unit_number}",
                status=unit.status,
                date=unit.updated_at,
            )
        )

    items.sort(key=lambda item: item.date.replace(tzinfo=None), reverse=True)
    return items[:limit]
