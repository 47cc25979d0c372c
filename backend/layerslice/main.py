"""
Main application module for the slicing backend.

Sets up the FastAPI application with CORS, a health check endpoint and
the slice routes under the ``/api`` namespace.  The database schema for
build records is created on startup and every slicing session is
closed on shutdown.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes_slices import close_all_sessions
from .api.routes_slices import router as slices_router
from .services.build_records import init_db


def create_app() -> FastAPI:
    """Factory to create and configure the FastAPI application."""
    app = FastAPI(title="layerslice")

    @app.on_event("startup")  # type: ignore[misc]
    async def startup_event() -> None:
        init_db()

    @app.on_event("shutdown")  # type: ignore[misc]
    async def shutdown_event() -> None:
        close_all_sessions()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(slices_router, prefix="/api", tags=["slices"])

    return app


app = create_app()
