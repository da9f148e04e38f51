from sqlalchemy.ext.asyncio import AsyncSession
from multicloud.db.session import SessionLocal
from multicloud.db.repositories.error_repository import ErrorRepository
from multicloud.monitoring.context import get_request_context
from multicloud.monitoring.logger import log
from multicloud.monitoring.slack_alerts import send_slack_alert


async def _persist(db: AsyncSession, **fields):
    await ErrorRepository(db).create(**fields)


async def record_error(component: str, function: str, message: str, details: dict = None, stacktrace: str = None, user_id=None, account_id=None, severity: str = "ERROR", alert: bool = True, db: AsyncSession = None):
    request_id = get_request_context().get("request_id")
    fields = dict(
        request_id=request_id,
        user_id=user_id,
        account_id=account_id,
        component=component,
        function=function,
        severity=severity,
        message=message,
        details=details,
        stacktrace=stacktrace,
    )
    try:
        if db is not None:
            await _persist(db, **fields)
        else:
            async with SessionLocal() as session:
                await _persist(session, **fields)
    except Exception as e:
        log("ERROR", f"Failed to persist ErrorLog: {e}", component="errors", request_id=request_id, account_id=account_id)
        if db is not None:
            await db.rollback()
    # Always log
    log(severity, message, component=component, request_id=request_id, user_id=user_id, account_id=account_id, details=details)
    if alert and severity in ("ERROR", "CRITICAL"):
        try:
            await send_slack_alert(message=message, context={"details": details, "account_id": account_id}, severity=severity, module=component, request_id=request_id)
        except Exception as e:
            log("ERROR", f"Failed to send Slack alert for error: {e}", component="errors", request_id=request_id)
