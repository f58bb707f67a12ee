import logging
from typing import Any, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user, require_active_subscription, require_roles
from ..config import settings
from ..constants import PLAN_PROPERTY_LIMITS, ROLE_OWNER, ROLE_PROPERTY_MANAGER
from ..core.errors import ApiError, ErrorCodes
from ..models.models import (
    Property,
    PropertyDocument,
    PropertyImage,
    PropertyNote,
    PropertyOwner,
    User,
)
from ..schemas.schemas import (
    PropertyActivityResponse,
    PropertyCreate,
    PropertyDetail,
    PropertyListResponse,
    PropertyOwnerCreate,
    PropertyOwnerRead,
    PropertyOwnerResponse,
    PropertyResponse,
    PropertyUpdate,
    SuccessResponse,
)
from ..services import properties as property_service
from ..services.access import ensure_property_access
from ..services.audit import audit_log, changed_fields, snapshot
from ..services.cache import cache, collect_property_cache_user_ids, invalidate_property_caches, request_cache_key
from ..services.image_support import PropertyImageSupport, get_image_support
from ..services.property_images import (
    create_initial_images,
    load_property_images,
    normalise_submitted_images,
    primary_url_of,
    promote_cover_url,
    replace_property_images,
)
from ..services.transactions import run_in_transaction
from .dependencies import clamp_int_param, get_db, load_property

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["properties"])

AUDIT_FIELDS = ("name", "address", "city", "status", "property_type", "image_url", "manager_id")


def _invalidate(property_obj: Any, user_id: int, extra_user_ids: Iterable[int] = ()) -> None:
    user_ids = collect_property_cache_user_ids(property_obj, user_id)
    user_ids.update(extra_user_ids)
    invalidate_property_caches(user_ids)


def property_detail(db: Session, support: PropertyImageSupport, property_id: int) -> PropertyDetail:
    images = support.run(db, lambda available: load_property_images(db, property_id) if available else None)
    occupancy = property_service.compute_occupancy_stats(db, property_id)
    property_obj = load_property(db, property_id)
    if property_obj is None:
        raise ApiError(404, "Property not found", ErrorCodes.RES_PROPERTY_NOT_FOUND)
    return property_service.to_property_detail(db, property_obj, images, occupancy)


def require_property_capacity(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
) -> User:
    plan = (user.subscription_plan or "FREE_TRIAL").upper()
    limit = PLAN_PROPERTY_LIMITS.get(plan, PLAN_PROPERTY_LIMITS["FREE_TRIAL"])
    if limit is None:
        return user
    current = (
        db.query(func.count(Property.id))
        .filter(Property.manager_id == user.id, Property.archived_at.is_(None))
        .scalar()
        or 0
    )
    if current >= limit:
        raise ApiError(
            status.HTTP_402_PAYMENT_REQUIRED,
            f"Your {plan} plan allows up to {limit} properties. Upgrade to add more.",
            ErrorCodes.SUB_USAGE_LIMIT_REACHED,
            details={"limit": limit, "current": current, "plan": plan},
        )
    return user


@router.get("", response_model=PropertyListResponse)
def list_properties(
    request: Request,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    include_total: bool = Query(False, alias="includeTotal"),
    include_archived: bool = Query(False, alias="includeArchived"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    support: PropertyImageSupport = Depends(get_image_support),
) -> Any:
    base_query = property_service.scoped_property_query(db, user)
    if base_query is None:
        raise ApiError(403, "Only property managers and owners can list properties", ErrorCodes.ACC_ACCESS_DENIED)

    cache_key = request_cache_key(request, user.id)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    limit_value, offset_value = property_service.clamp_pagination(
        clamp_int_param(limit, 50, 1, 100), clamp_int_param(offset, 0, 0, 10000)
    )
    query = property_service.apply_list_filters(base_query, search, status_filter, include_archived)
    rows = (
        query.order_by(Property.created_at.desc(), Property.id.desc())
        .offset(offset_value)
        .limit(limit_value + 1)
        .all()
    )
    has_more = len(rows) > limit_value
    rows = rows[:limit_value]
    if include_total or offset_value == 0:
        total = query.order_by(None).count()
    else:
        total = offset_value + len(rows)

    property_ids = [row.id for row in rows]
    images_by_property = support.run(
        db,
        lambda available: property_service.load_images_by_property(db, property_ids) if available else {},
    )
    counts = property_service.dependent_counts(db, property_ids)
    payload = PropertyListResponse(
        items=[property_service.to_list_item(row, images_by_property.get(row.id), counts[row.id]) for row in rows],
        total=total,
        page=offset_value // limit_value + 1,
        has_more=has_more,
    )
    cache.set(cache_key, payload.model_dump(mode="json", by_alias=True), settings.properties_cache_ttl_seconds)
    return payload


@router.post("", response_model=PropertyResponse, status_code=status.HTTP_201_CREATED)
def create_property(
    payload: PropertyCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require_active_subscription),
    user: User = Depends(require_property_capacity),
    support: PropertyImageSupport = Depends(get_image_support),
) -> PropertyResponse:
    user_id = user.id
    data = payload.model_dump()
    data["amenities"] = property_service.dump_amenities(payload.amenities)
    submitted_images = property_service.prepare_submitted_images(data)
    property_service.apply_legacy_aliases(data)
    if not submitted_images and data.get("image_url"):
        # A bare cover image still becomes the first image record.
        submitted_images = normalise_submitted_images([data["image_url"]])
    if submitted_images:
        data["image_url"] = primary_url_of(submitted_images)
    fields = {key: value for key, value in property_service.property_column_values(data).items() if value is not None}

    def _create(images_available: bool) -> int:
        def _work(tx: Session) -> int:
            property_obj = Property(**fields, manager_id=user_id)
            tx.add(property_obj)
            tx.flush()
            if images_available and submitted_images:
                create_initial_images(tx, property_obj.id, submitted_images, user_id)
            return property_obj.id

        return run_in_transaction(db, _work, timeout_ms=settings.bulk_transaction_timeout_ms)

    property_id = support.run(db, _create)
    audit_log(
        db_session=db,
        actor_user_id=user_id,
        action="property.create",
        target_entity_type="property",
        target_entity_id=str(property_id),
        after={key: fields.get(key) for key in AUDIT_FIELDS if key in fields},
    )
    invalidate_property_caches({user_id})
    return PropertyResponse(property=property_detail(db, support, property_id))


@router.get("/{property_id}", response_model=PropertyResponse)
def get_property(
    property_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    support: PropertyImageSupport = Depends(get_image_support),
) -> Any:
    ensure_property_access(load_property(db, property_id), user)
    cache_key = request_cache_key(request, user.id)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached
    payload = PropertyResponse(property=property_detail(db, support, property_id))
    cache.set(cache_key, payload.model_dump(mode="json", by_alias=True), settings.properties_cache_ttl_seconds)
    return payload


@router.patch("/{property_id}", response_model=PropertyResponse)
def update_property(
    property_id: int,
    payload: PropertyUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
    support: PropertyImageSupport = Depends(get_image_support),
) -> PropertyResponse:
    property_obj = ensure_property_access(load_property(db, property_id), user, require_write=True)
    user_id = user.id
    before = snapshot(property_obj, AUDIT_FIELDS)

    data = payload.model_dump(exclude_unset=True)
    if "amenities" in data:
        try:
            data["amenities"] = property_service.deep_merge_amenities(
                property_obj.amenities, property_service.dump_amenities(payload.amenities)
            )
        except ValueError as exc:
            raise ApiError(400, str(exc), ErrorCodes.VAL_VALIDATION_ERROR) from exc

    submitted_images = property_service.prepare_submitted_images(data, current_cover_url=property_obj.image_url)
    explicit_cover = "image_url" in data
    property_service.apply_legacy_aliases(data)
    if submitted_images is not None:
        data["image_url"] = primary_url_of(submitted_images)
    fields = property_service.property_column_values(data)

    def _update(images_available: bool) -> None:
        def _work(tx: Session) -> None:
            target = tx.get(Property, property_id)
            for key, value in fields.items():
                setattr(target, key, value)
            tx.flush()
            if not images_available:
                return
            if submitted_images is not None:
                replace_property_images(tx, property_id, submitted_images, user_id)
            elif explicit_cover or "image_url" in fields:
                promote_cover_url(tx, property_id, fields.get("image_url"), user_id)

        run_in_transaction(db, _work, timeout_ms=settings.bulk_transaction_timeout_ms)

    support.run(db, _update)
    refreshed = load_property(db, property_id)
    previous, current = changed_fields(before, snapshot(refreshed, AUDIT_FIELDS))
    audit_log(
        db_session=db,
        actor_user_id=user_id,
        action="property.update",
        target_entity_type="property",
        target_entity_id=str(property_id),
        before=previous,
        after=current,
    )
    _invalidate(refreshed, user_id)
    return PropertyResponse(property=property_detail(db, support, property_id))


@router.delete("/{property_id}", response_model=SuccessResponse)
def delete_property(
    property_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
    support: PropertyImageSupport = Depends(get_image_support),
) -> SuccessResponse:
    property_obj = ensure_property_access(load_property(db, property_id), user, require_write=True)
    blockers = property_service.delete_blockers(db, property_id)
    if blockers:
        raise ApiError(
            status.HTTP_409_CONFLICT,
            property_service.describe_blockers(blockers),
            ErrorCodes.BIZ_OPERATION_NOT_ALLOWED,
            details=blockers,
        )

    user_id = user.id
    cache_user_ids = collect_property_cache_user_ids(property_obj, user_id)
    before = snapshot(property_obj, AUDIT_FIELDS)

    def _delete(images_available: bool) -> None:
        def _work(tx: Session) -> None:
            if images_available:
                tx.query(PropertyImage).filter(PropertyImage.property_id == property_id).delete(synchronize_session=False)
            for model in (PropertyNote, PropertyDocument, PropertyOwner):
                tx.query(model).filter(model.property_id == property_id).delete(synchronize_session=False)
            tx.query(Property).filter(Property.id == property_id).delete(synchronize_session=False)

        run_in_transaction(db, _work)

    support.run(db, _delete)
    audit_log(
        db_session=db,
        actor_user_id=user_id,
        action="property.delete",
        target_entity_type="property",
        target_entity_id=str(property_id),
        before=before,
    )
    invalidate_property_caches(cache_user_ids)
    return SuccessResponse(message="Property deleted successfully")


@router.get("/{property_id}/activity", response_model=PropertyActivityResponse)
def get_property_activity(
    property_id: int,
    request: Request,
    limit: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Any:
    ensure_property_access(load_property(db, property_id), user)
    cache_key = request_cache_key(request, user.id)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached
    activities = property_service.property_activity(db, property_id, clamp_int_param(limit, 20, 1, 50))
    payload = PropertyActivityResponse(activities=activities)
    cache.set(cache_key, payload.model_dump(mode="json", by_alias=True), settings.activity_cache_ttl_seconds)
    return payload


@router.post("/{property_id}/owners", response_model=PropertyOwnerResponse, status_code=status.HTTP_201_CREATED)
def assign_property_owner(
    property_id: int,
    payload: PropertyOwnerCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
) -> PropertyOwnerResponse:
    property_obj = ensure_property_access(load_property(db, property_id), user, require_write=True)
    owner = db.get(User, payload.owner_id)
    if owner is None:
        raise ApiError(404, "Owner not found", ErrorCodes.RES_USER_NOT_FOUND)
    if owner.role != ROLE_OWNER:
        raise ApiError(400, "User must have the OWNER role", ErrorCodes.VAL_VALIDATION_ERROR)
    existing = (
        db.query(PropertyOwner)
        .filter(PropertyOwner.property_id == property_id, PropertyOwner.owner_id == owner.id)
        .first()
    )
    if existing is not None:
        raise ApiError(400, "Owner is already assigned to this property", ErrorCodes.RES_ALREADY_EXISTS)

    ownership = PropertyOwner(
        property_id=property_id,
        owner_id=owner.id,
        ownership_percentage=payload.ownership_percentage,
    )
    db.add(ownership)
    db.commit()
    db.refresh(ownership)
    response = PropertyOwnerResponse(
        owner=PropertyOwnerRead(
            id=ownership.id,
            owner_id=ownership.owner_id,
            ownership_percentage=ownership.ownership_percentage,
            start_date=ownership.start_date,
            end_date=ownership.end_date,
            owner=property_service.user_summary(owner),
        )
    )
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="property.owner.assign",
        target_entity_type="property",
        target_entity_id=str(property_id),
        after={"owner_id": owner.id, "ownership_percentage": payload.ownership_percentage},
    )
    _invalidate(property_obj, user.id, [owner.id])
    return response


@router.delete("/{property_id}/owners/{owner_id}", response_model=SuccessResponse)
def remove_property_owner(
    property_id: int,
    owner_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
) -> SuccessResponse:
    property_obj = ensure_property_access(load_property(db, property_id), user, require_write=True)
    cache_user_ids: List[int] = list(collect_property_cache_user_ids(property_obj, user.id))
    ownership = (
        db.query(PropertyOwner)
        .filter(PropertyOwner.property_id == property_id, PropertyOwner.owner_id == owner_id)
        .first()
    )
    if ownership is None:
        raise ApiError(404, "Owner is not assigned to this property", ErrorCodes.RES_NOT_FOUND)
    db.delete(ownership)
    db.commit()
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="property.owner.remove",
        target_entity_type="property",
        target_entity_id=str(property_id),
        before={"owner_id": owner_id},
    )
    invalidate_property_caches(cache_user_ids)
    return SuccessResponse(message="Owner removed from property")
