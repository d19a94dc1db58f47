from typing import Any, Dict, List, Optional

from flask import has_request_context, request

from equiprofile.extensions import db
from equiprofile.models.activity_log import ActivityLog


def log_activity(
    *,
    user_id: Optional[int],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def recent(limit: int = 100, *, user_id: Optional[int] = None) -> List[ActivityLog]:
    q = db.select(ActivityLog)
    if user_id is not None:
        q = q.where(ActivityLog.user_id == user_id)
    q = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit)
    return db.session.execute(q).scalars().all()
