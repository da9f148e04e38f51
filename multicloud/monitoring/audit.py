# multicloud/monitoring/audit.py
"""
Activity audit trail for gateway operations.
"""
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from multicloud.db.models import ActivityStatus
from multicloud.db.repositories.activity_log_repository import ActivityLogRepository
from multicloud.monitoring.context import get_request_context
from multicloud.monitoring.logger import log


async def audit_event(
    db: AsyncSession,
    action: str,
    user_id: Optional[int],
    account_id: Optional[int] = None,
    file_id: Optional[int] = None,
    file_name: Optional[str] = None,
    status: str = ActivityStatus.SUCCESS.value,
    details: Optional[Dict[str, Any]] = None,
):
    """Persist an ActivityLog entry in a fail-safe way.

    action: one of ActivityType (e.g. 'UPLOAD').
    This helper never raises: on DB errors it logs locally and returns.
    """
    request_id = get_request_context().get("request_id")
    try:
        await ActivityLogRepository(db).create(
            user_id=user_id,
            account_id=account_id,
            file_id=file_id,
            file_name=file_name,
            action=str(getattr(action, "value", action)),
            status=str(getattr(status, "value", status)),
            details=details,
            request_id=request_id,
        )
    except Exception as e:
        # Fail-safe: log locally and do not raise
        log("ERROR", f"Failed to write audit_event {action}: {e}", component="audit", request_id=request_id, user_id=user_id, account_id=account_id)
        try:
            await db.rollback()
        except Exception as rollback_error:
            log("ERROR", f"Rollback after audit failure failed: {rollback_error}", component="audit", request_id=request_id)
