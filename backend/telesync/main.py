"""
Telesync - Offline-first patient device service.
Local API the patient app shell talks to; symptom reports and feedback are
stored on the device and synchronized with the telemedicine service when
connectivity allows.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import cache, feedback, session, symptoms, sync
from .core.config import settings
from .core.errors import StorageFailure, ValidationFailure
from .core.logging_config import setup_logging
from .core.runtime import SyncRuntime


def create_app(runtime: Optional[SyncRuntime] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.runtime = runtime or SyncRuntime()
        await app.state.runtime.start()
        try:
            yield
        finally:
            await app.state.runtime.stop()

    app = FastAPI(
        title="Telesync Patient Device API",
        description=(
            "Offline-first capture of symptom reports and feedback with background "
            "synchronization and cached consultation records and medicine availability."
        ),
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationFailure)
    async def validation_failure_handler(request: Request, exc: ValidationFailure):
        return JSONResponse(status_code=422, content={"detail": exc.to_dict()})

    @app.exception_handler(StorageFailure)
    async def storage_failure_handler(request: Request, exc: StorageFailure):
        return JSONResponse(status_code=503, content={"detail": exc.to_dict()})

    app.include_router(session.router, prefix="/api/v1")
    app.include_router(symptoms.router, prefix="/api/v1")
    app.include_router(feedback.router, prefix="/api/v1")
    app.include_router(sync.router, prefix="/api/v1")
    app.include_router(cache.router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "Telesync", "version": settings.VERSION}

    return app


setup_logging()
app = create_app()
