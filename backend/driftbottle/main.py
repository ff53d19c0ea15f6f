"""
FastAPI app entrypoint.

Bottle lifecycle engine over HTTP: identity, throw/pick writes, history, counters.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from driftbottle.api.routes import bottles, identity
from driftbottle.services.engine import BottleEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(engine_factory: Callable[[], BottleEngine] = build_engine) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = engine_factory()
        # Counter ticks are coroutines: the asyncio scheduler runs them on the app's loop
        scheduler = AsyncIOScheduler()
        engine.start(scheduler)
        scheduler.start()
        app.state.engine = engine
        app.state.scheduler = scheduler

        # First counter snapshot now instead of one interval from now
        engine.counters.request_refresh()
        logger.info("Backend ready (history %s, counters every %ss)", engine.history.name, engine.counters.interval_seconds)
        yield
        scheduler.shutdown(wait=False)

    app = FastAPI(title="Drift Bottle", version="0.1.0", lifespan=lifespan)

    # CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for a deployed frontend
    cors_origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    cors_extra = os.getenv("CORS_ORIGINS", "")
    if cors_extra:
        cors_origins.extend(o.strip() for o in cors_extra.split(",") if o.strip())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(identity.router, tags=["identity"])
    app.include_router(bottles.router, prefix="/bottles", tags=["bottles"])

    @app.get("/", include_in_schema=False)
    def root():
        """Root: point to API docs and health."""
        return {"message": "Drift Bottle API", "docs": "/docs", "health": "/health"}

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
