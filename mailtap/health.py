"""FastAPI health endpoints for liveness and readiness probes."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import HealthStatus, PollerState, ServiceStatus

if TYPE_CHECKING:
    from .supervisor import AccountSupervisor


def create_health_app(supervisor: AccountSupervisor) -> FastAPI:
    """Build a minimal FastAPI app with ``/health`` and ``/ready`` routes.

    ``/health`` reports each account's poller state, watermark and
    counters.  ``/ready`` succeeds while the supervisor is running, or
    degraded by retired accounts, with at least one account that has not
    failed.
    """
    app = FastAPI(title=f"{supervisor.config.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        accounts = {
            email: {
                "state": poller.state.value,
                "last_seen_sequence_number": poller.last_seen_sequence_number,
                "initialized": poller.poll_state.initialized,
                "messages_delivered": poller.messages_delivered,
                "messages_malformed": poller.messages_malformed,
                "ticks_completed": poller.ticks_completed,
                "ticks_failed": poller.ticks_failed,
            }
            for email, poller in supervisor.pollers.items()
        }
        status = HealthStatus(
            service_name=supervisor.config.name,
            status=supervisor.status,
            uptime_seconds=time.monotonic() - supervisor.start_time,
            accounts=accounts,
        )
        code = 200 if supervisor.status in (ServiceStatus.RUNNING, ServiceStatus.STARTING) else 503
        return JSONResponse(content=status.model_dump(mode="json"), status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        live = [p for p in supervisor.pollers.values() if p.state != PollerState.FAILED]
        serving = supervisor.status in (ServiceStatus.RUNNING, ServiceStatus.DEGRADED)
        is_ready = serving and bool(live)
        return JSONResponse(
            content={"ready": is_ready, "live_accounts": len(live)},
            status_code=200 if is_ready else 503,
        )

    return app
