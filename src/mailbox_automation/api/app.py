"""FastAPI application factory.

Domain exceptions are mapped to HTTP responses in one place so routes can
simply call the service and let errors propagate.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailbox_automation import __version__
from mailbox_automation.api.contacts import router as contacts_router
from mailbox_automation.api.jobs import router as jobs_router
from mailbox_automation.api.workers import router as workers_router
from mailbox_automation.exceptions import (
    ConfigurationError,
    InvalidTransition,
    JobNotFound,
    MailboxAutomationError,
    NotAuthenticated,
    PersistenceError,
    UpstreamPermanent,
    UpstreamTransient,
    ValidationError,
)
from mailbox_automation.runtime import Runtime, build_runtime
from mailbox_automation.utils import configure_logging

logger = structlog.get_logger()

# Most specific first; lookup walks this in order.
ERROR_RESPONSES: list[tuple[type[MailboxAutomationError], int, str]] = [
    (NotAuthenticated, 401, "not_authenticated"),
    (JobNotFound, 404, "job_not_found"),
    (InvalidTransition, 409, "invalid_transition"),
    (ValidationError, 400, "validation_error"),
    (UpstreamTransient, 503, "upstream_unavailable"),
    (UpstreamPermanent, 502, "upstream_error"),
    (PersistenceError, 503, "store_unavailable"),
    (ConfigurationError, 500, "configuration_error"),
]


def error_response(exc: MailboxAutomationError) -> JSONResponse:
    status_code, code = 500, "internal_error"
    for exc_type, status, name in ERROR_RESPONSES:
        if isinstance(exc, exc_type):
            status_code, code = status, name
            break

    headers: dict[str, str] = {}
    if isinstance(exc, UpstreamTransient):
        headers["Retry-After"] = str(int(exc.retry_after or 5))

    return JSONResponse(
        status_code=status_code,
        content={"error": code, "message": str(exc)},
        headers=headers or None,
    )


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Create the API app.

    Args:
        runtime: Pre-built runtime (tests inject one with in-memory stores).
            If None, one is built from the environment settings.
    """

    runtime = runtime or build_runtime()
    configure_logging(runtime.settings.log_level)

    app = FastAPI(title="Mailbox Automation", version=__version__, debug=runtime.settings.debug)
    app.state.runtime = runtime

    @app.exception_handler(MailboxAutomationError)
    async def _domain_error(request: Request, exc: MailboxAutomationError) -> JSONResponse:
        response = error_response(exc)
        log = logger.warning if response.status_code < 500 else logger.error
        log(
            "request_failed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return response

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    app.include_router(jobs_router)
    app.include_router(workers_router)
    app.include_router(contacts_router)

    logger.info("api_app_created", scan_engine=runtime.settings.scan_engine)
    return app
