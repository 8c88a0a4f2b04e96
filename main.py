"""FastAPI application guarded by the admission gate."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from gatekeeper.config import Settings, get_settings
from gatekeeper.decider import AdmissionDecider, Decision
from gatekeeper.logging_config import configure_logging
from gatekeeper.utils import resolve_client_ip

LOGGER = logging.getLogger(__name__)

DENIALS = {
    Decision.REJECT_INVALID: (403, "Invalid client address"),
    Decision.REJECT_BLOCKED: (403, "Client address blocked"),
    Decision.REJECT_ESCALATED: (403, "Too many requests, client address blocked"),
    Decision.REJECT_RATE_LIMITED: (429, "Too many requests"),
}


def render_denial(decision: Decision) -> Response:
    """Build the plain-text response for a rejected request."""

    status_code, message = DENIALS[decision]
    return PlainTextResponse(message, status_code=status_code)


def create_app(settings: Settings, decider: Optional[AdmissionDecider] = None) -> FastAPI:
    """Build the application with a gate constructed from ``settings``."""

    gate = decider or AdmissionDecider.from_settings(settings)
    app = FastAPI(title="Request Admission Gate")
    app.state.settings = settings
    app.state.decider = gate

    @app.middleware("http")
    async def apply_admission_gate(request: Request, call_next):  # type: ignore[override]
        remote = request.client.host if request.client else None
        client_ip = resolve_client_ip(
            remote,
            request.headers,
            trust_x_forwarded=settings.trust_x_forwarded,
            trusted_proxies=settings.trusted_proxies,
        )
        # File locks block, keep them off the event loop.
        result = await run_in_threadpool(gate.decide, client_ip)
        if not result.admitted:
            return render_denial(result.decision)
        request.state.client_ip = result.identifier
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception(
                "Unhandled exception",
                extra={"client_ip": client_ip, "path": request.url.path},
            )
            raise exc
        return response

    @app.get("/api/status")
    def status(request: Request) -> dict:
        """Report that the caller made it through the gate."""

        return {"status": "ok", "client_ip": request.state.client_ip}

    return app


configure_logging()
app = create_app(get_settings())
