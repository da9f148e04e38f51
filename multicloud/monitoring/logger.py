# multicloud/monitoring/logger.py
"""
Structured JSON logger for the multi-cloud gateway.
"""
import logging
import json
from datetime import datetime, timezone
from multicloud.config import settings


def get_request_context():
    # Import lazily to avoid import cycles
    from multicloud.monitoring.context import get_request_context as _g
    return _g()


def _str_or_none(value):
    return str(value) if value is not None else None


class JsonFormatter(logging.Formatter):
    # Extra keys passed through log(); anything else on the record is stdlib noise
    PASSTHROUGH = ("provider", "status", "error", "file_id", "count", "details")

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "component": getattr(record, "component", None) or record.module,
            "request_id": getattr(record, "request_id", None),
            "user_id": _str_or_none(getattr(record, "user_id", None)),
            "account_id": _str_or_none(getattr(record, "account_id", None)),
        }
        for key in self.PASSTHROUGH:
            if hasattr(record, key):
                log_record[key] = getattr(record, key)
        return json.dumps(log_record, default=str)


logger = logging.getLogger("multicloud")
logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
handler = logging.StreamHandler()
handler.setFormatter(JsonFormatter())
logger.handlers = [handler]


# Helper to log with context
def log(level: str, message: str, component: str = None, request_id: str = None, user_id=None, account_id=None, **kwargs):
    # Map legacy 'module' kwarg to 'component' to avoid LogRecord collision
    if "module" in kwargs and not component:
        component = kwargs.pop("module")
    # Fill missing fields from contextvars
    ctx = get_request_context()
    if request_id is None:
        request_id = ctx.get("request_id")
    if user_id is None:
        user_id = ctx.get("user_id")
    if account_id is None:
        account_id = ctx.get("account_id")

    extra = {
        "request_id": request_id,
        "user_id": user_id,
        "account_id": account_id,
        "component": component,
        **kwargs
    }
    logger.log(getattr(logging, level.upper(), logging.INFO), message, extra=extra)
