import asyncio
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.errors import BookingError
from app.core.logging import configure_logging
from app.api.v1.api import api_router
from app.schemas.envelope import fail
from app.services.scheduler import PeriodicSweep, SweepGroup
from app.tasks import worker_jobs

configure_logging()
logger = structlog.get_logger().bind(component="server")


def build_sweeps() -> dict:
    """Background services owned by the app; routes reach them through app.state."""
    sync_lock = asyncio.Lock()
    payment_sync = SweepGroup(
        PeriodicSweep("payment-sync-recent", partial(worker_jobs.payment_sync, mode="recent"),
                      interval_seconds=settings.PAYMENT_SYNC_INTERVAL_SECONDS, lock=sync_lock),
        PeriodicSweep("payment-sync-end-of-day", partial(worker_jobs.payment_sync, mode="end_of_day"),
                      daily_at=settings.PAYMENT_SYNC_DAILY_AT, tz=settings.TIMEZONE, lock=sync_lock),
    )
    email_retry = PeriodicSweep("email-retry", worker_jobs.email_retry,
                                interval_seconds=settings.EMAIL_RETRY_INTERVAL_SECONDS)
    return {"payment_sync": payment_sync, "email_retry": email_retry}


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeps = build_sweeps()
    app.state.sweeps = sweeps
    if settings.SWEEPS_AUTOSTART:
        for svc in sweeps.values():
            svc.start()
    logger.info("server_starting", env=settings.ENV, sweeps=settings.SWEEPS_AUTOSTART)
    yield
    for svc in sweeps.values():
        await svc.stop()
    logger.info("server_shutting_down")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:3000", "http://localhost:3000",
    "http://127.0.0.1:5173", "http://localhost:5173",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    body = fail(exc.message, exc.code)
    if exc.data:
        body["error"].update(exc.data)
    if exc.retryable:
        body["error"]["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "error")
    return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail), code), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content=fail(message, "invalid_request"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content=fail("Internal server error", "internal_error"))


app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
