"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from omnistudio_resolver import __version__
from omnistudio_resolver.service import HierarchyService
from omnistudio_resolver.web.api import router


def create_app(service: HierarchyService | None = None) -> FastAPI:
    app = FastAPI(title="omnistudio-resolver", version=__version__)
    app.state.service = service or HierarchyService()
    app.include_router(router)
    return app
