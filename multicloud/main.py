# multicloud/main.py
"""
FastAPI shell around the gateway: request ids, error mapping and health endpoints.
"""
from contextlib import asynccontextmanager
from uuid import uuid4
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from multicloud.api.health import router as health_router
from multicloud.core.exceptions import GatewayError
from multicloud.db.session import init_models
from multicloud.monitoring.context import set_request_context
from multicloud.monitoring.logger import log
from multicloud.monitoring.slack_alerts import send_slack_alert

ERROR_STATUS = {
    "not_found": 404,
    "validation": 400,
    "permission_denied": 403,
    "unsupported": 501,
    "auth_revoked": 401,
    "auth_expired": 401,
    "quota_exceeded": 507,
    "conflict": 409,
    "transient_network": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    log("INFO", "Multi-cloud gateway started", module="main")
    yield


app = FastAPI(title="Multi-cloud Gateway", lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    request.state.request_id = request_id
    set_request_context(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    request_id = getattr(request.state, "request_id", None)
    status = ERROR_STATUS.get(exc.kind, 502)
    log("WARNING" if status < 500 else "ERROR", f"Gateway error: {exc.message}", module="main", request_id=request_id, error=exc.kind)
    return JSONResponse(
        status_code=status,
        content={"error": exc.kind, "detail": exc.message, "retryable": exc.retryable, "request_id": request_id},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    tb = traceback.format_exc()
    log("ERROR", f"Unhandled exception: {exc}", module="main", request_id=request_id)
    await send_slack_alert(
        message=f"Critical error: {exc}",
        context={"traceback": tb},
        severity="CRITICAL",
        module="main",
        request_id=request_id,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "request_id": request_id, "detail": "An unexpected error occurred."},
    )


app.include_router(health_router)
