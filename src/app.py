"""Ridestream FastAPI application.

Serves the delivery-status webhook, notification observability and the
ride emergency endpoint. The background runtime (change detection,
dispatch loop, ride scans) runs inside the application's lifespan.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from notifications.api.routes import router as notifications_router
from notifications.api.routes import webhook_router
from rides.api.routes import router as rides_router
from runtime import Runtime, build_runtime
from shared.errors import NotificationNotFound, ValidationError
from shared.settings import get_settings
from shared.utils.logging import configure_logging


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors raised by route handlers to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.messages})

    @app.exception_handler(NotificationNotFound)
    async def not_found(request: Request, exc: NotificationNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app(runtime: Runtime | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            settings = get_settings()
            configure_logging(settings.log_level, settings.log_json)
            app.state.runtime = build_runtime(settings)
        await app.state.runtime.setup()
        await app.state.runtime.start()
        yield
        await app.state.runtime.stop()

    app = FastAPI(
        title="Ridestream API",
        description="Ride dispatch notifications — delivery receipts, queue observability, emergency alerts",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------
    app.include_router(notifications_router)
    app.include_router(webhook_router)
    app.include_router(rides_router)
    register_exception_handlers(app)

    # -----------------------------------------------------------------------
    # Health / root
    # -----------------------------------------------------------------------
    @app.get("/health")
    async def health():
        runtime = app.state.runtime
        return JSONResponse(
            content={
                "status": "ok",
                "dispatch": {
                    "running": runtime.pool.running,
                    "in_flight": runtime.pool.in_flight,
                },
                "change_detection": runtime.source.running,
                "queue": await runtime.queue.stats(),
            }
        )

    return app


app = create_app()
