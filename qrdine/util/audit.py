"""Audit trail rows.

Staff actions carry the user id from the token; customer actions (made with a
table token only) are recorded with ``actor_kind=CUSTOMER`` and no user id.
"""
import json

from sqlalchemy.orm import Session

from qrdine.models.core import ActorKind, AuditLog


def audit(db: Session, actor_user_id: str | None, entity: str, entity_id: str, action: str,
          before: dict | None = None, after: dict | None = None, reason: str | None = None,
          actor_kind: ActorKind = ActorKind.STAFF) -> AuditLog:
    """Stage an audit row; it is written with the caller's commit."""
    if actor_kind == ActorKind.STAFF and not actor_user_id:
        raise ValueError("staff audit entries need an actor_user_id")
    entry = AuditLog(
        actor_kind=actor_kind,
        actor_user_id=actor_user_id,
        entity=entity,
        entity_id=entity_id,
        action=f"{action}:{reason}" if reason else action,
        before=json.dumps(before) if before else None,
        after=json.dumps(after) if after else None,
    )
    db.add(entry)
    return entry
