import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from missionforce import __version__
from missionforce.api.routes import missions
from missionforce.application.orchestrator import MissionOrchestrator
from missionforce.application.settings import MissionforceSettings

logger = structlog.get_logger()


def create_app(
    orchestrator: Optional[MissionOrchestrator] = None,
    settings: Optional[MissionforceSettings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or MissionforceSettings()
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await logger.ainfo(
            "fastapi.startup",
            message="Missionforce API starting...",
            debug=settings.debug,
            codex_bin=settings.codex_bin,
        )
        yield
        await logger.ainfo("fastapi.shutdown", message="Missionforce API shutting down...")

    app = FastAPI(
        title="Missionforce API",
        description="Multi-agent mission control for the Codex CLI",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or MissionOrchestrator.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok", "uptime": time.monotonic() - started_at}

    app.include_router(missions.router, tags=["missions"])

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = MissionforceSettings()
    uvicorn.run(create_app(settings=_settings), host=_settings.host, port=_settings.port)
