"""FastAPI app entrypoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from carecanvas.api.deps import DeploymentContext, build_context
from carecanvas.api.routes.events import router as events_router
from carecanvas.api.routes.logs import router as logs_router
from carecanvas.api.routes.projects import router as projects_router
from carecanvas.config import DeploymentSettings

logger = logging.getLogger(__name__)


def create_app(
    settings: DeploymentSettings | None = None,
    *,
    context: DeploymentContext | None = None,
) -> FastAPI:
    deployment = context or build_context(settings or DeploymentSettings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        deployment.reaper.start()
        logger.info("Serving local deployments from %s", deployment.settings.root_dir)
        try:
            yield
        finally:
            await deployment.reaper.stop()
            await deployment.manager.stop_all()

    app = FastAPI(title="CareCanvas Deploy API", version="0.1.0", lifespan=lifespan)
    app.state.deployment = deployment
    app.include_router(projects_router)
    app.include_router(logs_router)
    app.include_router(events_router)

    @app.get("/api/v1/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def run() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(create_app(), host="0.0.0.0", port=8000, reload=False)
