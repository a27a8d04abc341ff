import logging

from fastapi import FastAPI

from app.api.files import router as files_router
from app.api.folders import router as folders_router
from app.api.shares import router as shares_router
from app.config import settings
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.services.storage_context import StorageContext, build_storage_context

logger = logging.getLogger(__name__)


def create_app(storage: StorageContext | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Filevault API")
    app.state.storage = storage
    register_error_handlers(app)

    app.include_router(files_router, prefix="/api/v1")
    app.include_router(folders_router, prefix="/api/v1")
    app.include_router(shares_router, prefix="/api/v1")

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.on_event("startup")
    def _provision_storage():
        if app.state.storage is None:
            try:
                app.state.storage = build_storage_context(settings)
            except Exception:
                logger.exception("Failed to configure object storage during startup")
                return
        try:
            app.state.storage.provision_buckets()
        except Exception:
            logger.exception("Failed to ensure storage buckets during startup")

    return app


app = create_app()
