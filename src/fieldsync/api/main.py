"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fieldsync.api.deps import close_sync_service
from fieldsync.api.routes import clocking, events, sync as sync_routes
from fieldsync.errors import StorageError


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await close_sync_service()

    app = FastAPI(
        title="fieldsync",
        description="Offline outbox history and sync control",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        return JSONResponse(status_code=503, content={"detail": f"Local store unavailable: {exc}"})

    app.include_router(events.router, prefix="/events", tags=["events"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(clocking.router, prefix="/clocking", tags=["clocking"])

    return app


# Module-level app instance for uvicorn
app = create_app()
