from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import and_, false, or_
from sqlalchemy.orm import Session

from ..constants import ROLE_OWNER, ROLE_PROPERTY_MANAGER, ROLE_TENANT
from ..core.errors import ApiError, ErrorCodes
from ..models.models import PropertyDocument, PropertyOwner, Unit, UnitOwner, UnitTenant


@dataclass(frozen=True)
class AccessResult:
    allowed: bool
    reason: Optional[str] = None
    status: Optional[int] = None
    code: Optional[str] = None


def check_property_access(property_obj: Any, user: Any, require_write: bool = False) -> AccessResult:
    """Decide whether ``user`` may read (or write) ``property_obj``.

    Managers of the property get read/write, listed owners read-only, and
    everyone else is refused. A missing property is a 404, never a 403.
    """
    if property_obj is None:
        return AccessResult(False, "Property not found", 404, ErrorCodes.RES_PROPERTY_NOT_FOUND)

    if user.role == ROLE_PROPERTY_MANAGER and property_obj.manager_id == user.id:
        return AccessResult(True)

    if user.role == ROLE_OWNER:
        is_owner = any(ownership.owner_id == user.id for ownership in property_obj.owners or [])
        if is_owner:
            if require_write:
                return AccessResult(
                    False,
                    "Owners have read-only access to this property",
                    403,
                    ErrorCodes.ACC_PROPERTY_ACCESS_DENIED,
                )
            return AccessResult(True)

    return AccessResult(False, "You do not have access to this property", 403, ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)


def ensure_property_access(property_obj: Any, user: Any, require_write: bool = False) -> Any:
    result = check_property_access(property_obj, user, require_write=require_write)
    if not result.allowed:
        raise ApiError(result.status or 403, result.reason or "Access denied", result.code or ErrorCodes.ACC_ACCESS_DENIED)
    return property_obj


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tenant_unit_ids(db: Session, user_id: int, property_id: Optional[int] = None) -> List[int]:
    query = db.query(UnitTenant.unit_id).filter(UnitTenant.tenant_id == user_id, UnitTenant.is_active.is_(True))
    if property_id is not None:
        query = query.join(Unit, Unit.id == UnitTenant.unit_id).filter(Unit.property_id == property_id)
    return [row[0] for row in query.all()]


def owned_unit_ids(db: Session, user_id: int, property_id: Optional[int] = None) -> List[int]:
    now = _utcnow()
    query = db.query(UnitOwner.unit_id).filter(
        UnitOwner.owner_id == user_id,
        or_(UnitOwner.end_date.is_(None), UnitOwner.end_date >= now),
    )
    if property_id is not None:
        query = query.join(Unit, Unit.id == UnitOwner.unit_id).filter(Unit.property_id == property_id)
    return [row[0] for row in query.all()]


def owns_property(db: Session, user_id: int, property_id: int) -> bool:
    now = _utcnow()
    return (
        db.query(PropertyOwner.id)
        .filter(
            PropertyOwner.property_id == property_id,
            PropertyOwner.owner_id == user_id,
            or_(PropertyOwner.end_date.is_(None), PropertyOwner.end_date >= now),
        )
        .first()
        is not None
    )


def document_visibility_filter(db: Session, user: Any, property_id: int):
    """SQL criterion restricting PropertyDocument rows to what ``user`` may see."""
    if user.role == ROLE_PROPERTY_MANAGER:
        return PropertyDocument.property_id == property_id

    if user.role == ROLE_TENANT:
        unit_ids = tenant_unit_ids(db, user.id, property_id)
        scope = PropertyDocument.unit_id.is_(None)
        if unit_ids:
            scope = or_(scope, PropertyDocument.unit_id.in_(unit_ids))
        return and_(
            PropertyDocument.property_id == property_id,
            PropertyDocument.access_level.in_(("PUBLIC", "TENANT")),
            scope,
        )

    if user.role == ROLE_OWNER:
        unit_ids = owned_unit_ids(db, user.id, property_id)
        scopes = []
        if owns_property(db, user.id, property_id):
            scopes.append(PropertyDocument.unit_id.is_(None))
        if unit_ids:
            scopes.append(PropertyDocument.unit_id.in_(unit_ids))
        return and_(
            PropertyDocument.property_id == property_id,
            PropertyDocument.access_level.in_(("PUBLIC", "OWNER")),
            or_(*scopes) if scopes else false(),
        )

    return and_(PropertyDocument.property_id == property_id, PropertyDocument.access_level == "PUBLIC")


def can_view_document(db: Session, document: PropertyDocument, user: Any) -> bool:
    if user.role == ROLE_PROPERTY_MANAGER:
        return True

    if user.role == ROLE_TENANT:
        if document.access_level not in ("PUBLIC", "TENANT"):
            return False
        if document.unit_id is None:
            return True
        return document.unit_id in tenant_unit_ids(db, user.id)

    if user.role == ROLE_OWNER:
        if document.access_level not in ("PUBLIC", "OWNER"):
            return False
        if document.unit_id is None:
            return owns_property(db, user.id, document.property_id)
        return document.unit_id in owned_unit_ids(db, user.id)

    return document.access_level == "PUBLIC"
