"""Audit trail for desk activity.

Entries are staged in the caller's unit of work and committed together with
the change they describe.
"""

import json
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.models import AuditLog, Document, FollowUpEvent, GoogleDriveCredential, Transaction, User, utcnow

ENTITY_TYPES = {
    Transaction: "transaction",
    FollowUpEvent: "follow_up_event",
    Document: "document",
    GoogleDriveCredential: "google_drive_credential",
}


def _serialize(data: Any) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, default=str, sort_keys=True)


def changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Reduce two snapshots to the keys whose values differ."""
    keys = sorted(key for key in set(before) | set(after) if before.get(key) != after.get(key))
    return {key: before.get(key) for key in keys}, {key: after.get(key) for key in keys}


def audit_log(
    db_session: Session,
    actor: Optional[User],
    action: str,
    entity: Any = None,
    *,
    entity_type: Optional[str] = None,
    before: Any = None,
    after: Any = None,
) -> AuditLog:
    """Record ``action`` against ``entity``.

    ``entity_type`` is only needed when the row no longer exists, e.g. after a
    Drive disconnect.
    """
    if entity is not None:
        entity_type = ENTITY_TYPES[type(entity)]
    entry = AuditLog(
        timestamp=utcnow(),
        actor_user_id=actor.id if actor is not None else None,
        action=action,
        target_entity_type=entity_type,
        target_entity_id=str(entity.id) if entity is not None else None,
        before=_serialize(before),
        after=_serialize(after),
    )
    db_session.add(entry)
    db_session.flush()
    return entry
