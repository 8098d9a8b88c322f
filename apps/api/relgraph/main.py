from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relgraph.api.v1.routes import (
    connections,
    facts,
    health,
    organizations,
    people,
    relationships,
    resolution,
    webhooks,
)
from relgraph.core.config import get_settings
from relgraph.core.errors import RelGraphError
from relgraph.core.logging import configure_logging
from relgraph.db.pg.session import Database

configure_logging()


async def relgraph_error_handler(request: Request, exc: RelGraphError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def create_app(database: Database | None = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name)
    app.state.database = database or Database.from_settings(settings)

    allowed_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_exception_handler(RelGraphError, relgraph_error_handler)

    @app.on_event("startup")
    def on_startup() -> None:
        app.state.database.create_all()

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        app.state.database.dispose()

    for module in (health, people, organizations, facts, relationships, connections, webhooks, resolution):
        app.include_router(module.router, prefix=settings.api_prefix)
    return app


app = create_app()
