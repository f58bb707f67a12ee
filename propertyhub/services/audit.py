import json
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.models import AuditLog

logger = logging.getLogger(__name__)


def _to_json(data: Any) -> Optional[str]:
    if data is None:
        return None
    try:
        return json.dumps(data, default=str, sort_keys=True)
    except TypeError:
        return str(data)


def snapshot(entity: Any, fields: Iterable[str]) -> Dict[str, Any]:
    return {field: getattr(entity, field, None) for field in fields}


def changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Reduce two snapshots to the keys whose values differ."""
    keys = [key for key in after if before.get(key) != after.get(key)]
    return {key: before.get(key) for key in keys}, {key: after.get(key) for key in keys}


def audit_log(
    db_session: Session,
    actor_user_id: Optional[int],
    action: str,
    target_entity_type: Optional[str] = None,
    target_entity_id: Optional[str] = None,
    before: Any = None,
    after: Any = None,
) -> AuditLog:
    """Persist one audit entry for a completed write and commit it."""
    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        target_entity_type=target_entity_type,
        target_entity_id=target_entity_id,
        before=_to_json(before),
        after=_to_json(after),
    )
    db_session.add(entry)
    db_session.commit()
    logger.info("audit %s %s:%s by user %s", action, target_entity_type, target_entity_id, actor_user_id)
    return entry
