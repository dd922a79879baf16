from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from itp_studio.api.routes import router
from itp_studio.core.errors import StudioError
from itp_studio.core.logging import configure_logging
from itp_studio.core.settings import Settings, ensure_directories, settings
from itp_studio.services.container import Services, build_services


def create_app(config: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the API without side effects; startup configures logging and builds services."""
    config = config or (services.settings if services else settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.log_level)
        ensure_directories(config)
        if not hasattr(app.state, "services"):
            app.state.services = build_services(config)
        yield

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    if services is not None:
        app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StudioError)
    async def studio_error(request: Request, exc: StudioError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    app.include_router(router)
    app.mount("/outputs", StaticFiles(directory=config.outputs_dir, check_dir=False), name="outputs")

    @app.get("/")
    def health():
        return {"ok": True, "service": config.app_name}

    return app

