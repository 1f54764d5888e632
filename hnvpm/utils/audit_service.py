import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from hnvpm.modules.system.models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    user,
    action: str,
    resource: str,
    resource_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """Add an audit row to the session. The caller commits."""
    entry = AuditLog(
        user_id=getattr(user, "id", None),
        organization_id=getattr(user, "organization_id", None),
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details or {},
    )
    if request is not None:
        entry.ip_address = request.client.host if request.client else None
        entry.user_agent = (request.headers.get("user-agent") or "")[:300]
    db.add(entry)
    logger.info("audit %s %s#%s by user %s", action, resource, resource_id, entry.user_id)
    return entry
