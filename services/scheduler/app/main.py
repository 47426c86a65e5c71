"""FastAPI entrypoint for the chapter production scheduler."""

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status

from chapterforge_observability import log_context, setup_fastapi_metrics, setup_logging
from chapterforge_providers import ProviderConfigError

from .flows import write_chapters_flow
from .models import TickSummary
from .settings import SERVICE_NAME, SchedulerSettings, load_scheduler_settings
from .store import SchedulerStore, build_store

setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

_STORE_LOCK = asyncio.Lock()


@lru_cache(maxsize=1)
def get_settings() -> SchedulerSettings:
    return load_scheduler_settings()


async def get_store(request: Request, settings: SchedulerSettings = Depends(get_settings)) -> SchedulerStore:
    store: Optional[SchedulerStore] = getattr(request.app.state, "store", None)
    if store is not None:
        return store
    async with _STORE_LOCK:
        store = getattr(request.app.state, "store", None)
        if store is None:
            store = await build_store(settings)
            request.app.state.store = store
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    store: Optional[SchedulerStore] = getattr(app.state, "store", None)
    if store is not None:
        await store.close()
        app.state.store = None


app = FastAPI(title="Chapter Forge Scheduler", version="0.1.0", lifespan=lifespan)
setup_fastapi_metrics(app, service_name=SERVICE_NAME)


def authorise(authorization: Optional[str], settings: SchedulerSettings) -> None:
    """Check ``Authorization: Bearer <secret>`` in constant time.

    Raises:
        HTTPException: 401 when the header is missing or wrong, or when no
            secret is configured and unauthenticated access is not allowed.
    """

    secret = settings.cron_secret
    if not secret:
        if settings.allow_unauthenticated:
            return
        logger.error("CHAPTERFORGE_CRON_SECRET is not configured; rejecting trigger")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip().encode(), secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.api_route(
    "/cron/write-chapters",
    methods=["GET", "POST"],
    response_model=TickSummary,
    tags=["scheduler"],
)
async def write_chapters(
    authorization: Optional[str] = Header(None),
    settings: SchedulerSettings = Depends(get_settings),
    store: SchedulerStore = Depends(get_store),
) -> TickSummary:
    authorise(authorization, settings)

    with log_context(route="/cron/write-chapters"):
        logger.info("Dispatching scheduler tick")
        try:
            summary = await write_chapters_flow(store, settings)
        except ProviderConfigError as exc:
            logger.error("Provider is not configured", extra={"error": str(exc)})
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    with log_context(tick_id=summary.tick_id):
        logger.info(
            "Completed scheduler tick",
            extra={
                "succeeded": summary.resume.succeeded + summary.cold_start.succeeded,
                "failed": summary.resume.failed + summary.cold_start.failed,
                "timed_out": summary.resume.timed_out + summary.cold_start.timed_out,
            },
        )
    return summary
