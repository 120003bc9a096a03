"""FastAPI application exposing the regime router."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from regime_switch import __version__
from regime_switch.api.routes import get_installed_service, router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the installed service on startup and stop it on shutdown."""
    service = get_installed_service()
    if service is not None:
        await service.start()
    yield
    if service is not None:
        await service.stop()


def create_app() -> FastAPI:
    app = FastAPI(title="Regime Switch", version=__version__, lifespan=lifespan)
    app.include_router(router)
    return app
