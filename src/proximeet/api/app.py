# src/proximeet/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance, builds the shared broadcaster (position store,
target assignment, rate limiter) and runs its background sweeper/pinger for the lifetime of
the app. Endpoints live in `proximeet.api.routes`.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from proximeet.config.settings import Settings, get_settings
from proximeet.core.logging import configure_logging
from proximeet.core.rate_limit import KeyedRateLimiter
from proximeet.server.broadcaster import ProximityBroadcaster
from proximeet.tracking.store import PositionStore
from proximeet.tracking.targets import TargetAssignment

from .routes import router

configure_logging()


def build_broadcaster(settings: Settings) -> ProximityBroadcaster:
    limits = settings.server.rate_limit
    return ProximityBroadcaster(
        PositionStore(monotonic=settings.tracking.monotonic_positions),
        TargetAssignment(),
        rate_limiter=KeyedRateLimiter(limits.updates_per_minute, burst=limits.burst),
        stale_threshold_ms=settings.tracking.stale_threshold_ms,
        slot_labels=settings.tracking.slot_labels,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    broadcaster = build_broadcaster(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        tasks = [
            asyncio.create_task(
                broadcaster.run_sweeper(settings.tracking.sweep_interval_seconds), name="position-sweeper"
            ),
            asyncio.create_task(broadcaster.run_pinger(settings.server.ping_interval_seconds), name="ws-pinger"),
        ]
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(title="ProxiMeet tracking API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.broadcaster = broadcaster

    # CORS (dev-friendly): allow local frontends to call the REST surface.
    # - PROXIMEET_CORS_ORIGINS="http://localhost:3000,https://app.example"
    # - PROXIMEET_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
    cors_origins = [s.strip() for s in os.getenv("PROXIMEET_CORS_ORIGINS", "").split(",") if s.strip()]
    cors_allow_local = os.getenv("PROXIMEET_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
    cors_origin_regex = (
        r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
    )
    if cors_origins or cors_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_origin_regex=cors_origin_regex or None,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(router)
    return app


app = create_app()
