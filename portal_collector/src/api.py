"""
FastAPI application serving the collector state to the dashboard widget.

Endpoints:
- GET  /health                     liveness, no portal access
- GET  /v1/solar                   current display state
- POST /v1/solar/acquire           run one acquisition now (409 when busy)
- GET  /v1/solar/history/{period}  production series for day/month/year/total

The lifespan builds the collector Runtime from CollectorSettings, stores it
on ``app.state.runtime`` and, unless BACKGROUND_POLLING is off, runs the
scheduler loop as a background task until shutdown.

CHANGELOG:
- 2026-10-19: Apply the request schedule to the scheduler and status file
- 2026-10-14: Initial creation

TODO:
- None
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request

from portal_collector.src.config import AcquisitionConfig, CollectorSettings
from portal_collector.src.errors import (
    AcquisitionBusyError,
    AuthMissingError,
    AuthRejectedError,
    HistoryUnavailableError,
)
from portal_collector.src.main import Runtime, build_runtime, log_config_summary
from portal_collector.src.models import HistoryPeriod

logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]

router = APIRouter(prefix="/v1/solar", tags=["solar"])


@router.get("")
async def display_state(runtime: RuntimeDep) -> dict[str, Any]:
    """Return the last-known-good record, last error and retry counter."""
    return runtime.status.state.model_dump(mode="json", by_alias=True)


@router.post("/acquire")
async def acquire(runtime: RuntimeDep, config: AcquisitionConfig | None = None) -> dict[str, Any]:
    """Run one acquisition and return its outcome.

    Without a body the configured defaults apply. The request's interval,
    retry delay and retry limit drive the scheduler from now on.

    Raises:
        HTTPException: 409 if an acquisition is already running.
    """
    if config is None:
        config = runtime.settings.acquisition_config()
    try:
        outcome = await runtime.orchestrator.request_acquisition(config)
    except AcquisitionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    runtime.scheduler.configure(config)
    runtime.status.set_max_retries(config.max_retries)
    await runtime.handle_outcome(outcome)
    return outcome.model_dump(mode="json", by_alias=True)


@router.get("/history/{period}")
async def history(period: HistoryPeriod, runtime: RuntimeDep) -> dict[str, Any]:
    """Return the production series for *period*.

    Raises:
        HTTPException: 401 without a usable session, 503 when the portal
            does not deliver the series.
    """
    try:
        credential = runtime.orchestrator.session_store.get_credential()
        series = await runtime.history.fetch_history(period, credential)
    except AuthMissingError as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc
    except AuthRejectedError as exc:
        runtime.orchestrator.session_store.invalidate()
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except HistoryUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    runtime.status.set_history(series)
    return series.model_dump(mode="json")


def create_app(*, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the API application.

    Args:
        transport: Optional httpx transport for all portal traffic (tests
            pass an ``httpx.MockTransport``).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        settings = CollectorSettings()
        log_config_summary(settings)
        async with httpx.AsyncClient(
            timeout=settings.request_timeout_s, transport=transport
        ) as client:
            runtime = build_runtime(settings, client, login_transport=transport)
            app.state.runtime = runtime

            shutdown_event = asyncio.Event()
            poll_task: asyncio.Task[None] | None = None
            if settings.background_polling:
                poll_task = asyncio.create_task(
                    runtime.scheduler.run(
                        runtime.orchestrator,
                        shutdown_event,
                        on_outcome=runtime.handle_outcome,
                    )
                )
            logger.info("Collector API ready")
            yield
            logger.info("Collector API shutting down")
            shutdown_event.set()
            if poll_task is not None:
                await poll_task

    app = FastAPI(
        title="Sunny Portal Collector API",
        description="Solar production data scraped from Sunny Portal.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Return a simple health status."""
        return {"status": "ok"}

    return app


app = create_app()
