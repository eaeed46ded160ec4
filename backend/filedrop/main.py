"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from http import HTTPStatus
from typing import Iterable

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from filedrop.config import Settings, settings
from filedrop.database import build_engine, build_session_factory, get_db
from filedrop.errors import FileDropError, RangeNotSatisfiable
from filedrop.models import Base
from filedrop.services.file_catalog import FileCatalog
from filedrop.services.identifiers import MIN_RECOMMENDED_LENGTH, identifier_space
from filedrop.services.retention import RetentionSweeper
from filedrop.services.retrieval import RetrievalService
from filedrop.services.storage import build_storage
from filedrop.services.upload_pipeline import PostProcessHook, UploadPipeline

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(levelname)s - [%(name)s] - %(message)s",
    )


def create_app(app_settings: Settings | None = None, post_process_hooks: Iterable[PostProcessHook] = ()) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open storage and DB, start the retention sweeper; tear down in reverse."""
        configure_logging(app_settings.LOG_LEVEL)
        engine = build_engine(app_settings.DATABASE_URL)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = build_session_factory(engine)

        storage = build_storage(app_settings, session_factory)
        await storage.open()
        catalog = FileCatalog(storage, session_factory)
        pipeline = UploadPipeline.from_settings(catalog, app_settings, hooks=post_process_hooks)
        await pipeline.prepare()

        id_space = identifier_space(app_settings.ID_LENGTH, app_settings.ID_ALPHABET)
        if app_settings.ID_LENGTH < MIN_RECOMMENDED_LENGTH:
            logger.warning(
                f"ID_LENGTH={app_settings.ID_LENGTH} allows only {id_space:,} file ids, so file URLs are guessable; "
                f"use at least {MIN_RECOMMENDED_LENGTH} characters for unlisted files"
            )

        sweeper = None
        if app_settings.RETENTION_DAYS > 0:
            sweeper = RetentionSweeper(
                catalog,
                retention_period=timedelta(days=app_settings.RETENTION_DAYS),
                interval=app_settings.RETENTION_SWEEP_INTERVAL_SECONDS,
            )
            sweeper.start()

        app.state.session_factory = session_factory
        app.state.storage = storage
        app.state.catalog = catalog
        app.state.pipeline = pipeline
        app.state.retrieval = RetrievalService(catalog)
        app.state.sweeper = sweeper
        logger.info(
            f"filedrop ready (storage={storage.name}, max size={app_settings.MAX_FILE_SIZE} bytes, "
            f"id space={id_space:,})"
        )

        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            await storage.close()
            await engine.dispose()

    app = FastAPI(
        title="filedrop",
        version="1.0.0",
        description="Self-hosted file upload and streaming service.",
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    @app.exception_handler(FileDropError)
    async def filedrop_error_handler(request: Request, exc: FileDropError):
        headers = None
        if isinstance(exc, RangeNotSatisfiable):
            headers = {"Content-Range": f"bytes */{exc.size}"}
        detail = exc.message
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.reason}: {exc.message}")
            detail = "The file could not be processed. Please try again later."
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.reason, "detail": detail},
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": HTTPStatus(exc.status_code).phrase.replace(" ", ""), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.get("/api/health")
    async def health_check(db: AsyncSession = Depends(get_db)):
        """Verify API and database connectivity."""
        try:
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "error", "database": "unavailable"}

    from filedrop.routes.files import router as files_router
    app.include_router(files_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.API_PORT)
