"""FastAPI application accepting Virtual Tour uploads for migration."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from fastapi import FastAPI, File, UploadFile
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.responses import FileResponse, PlainTextResponse, Response

from ..errors import InputValidationError
from ..pipeline import MigrationPipeline
from ..settings import MigrationSettings

logger = logging.getLogger(__name__)

_UPLOAD_CHUNK_SIZE = 1024 * 1024


class HealthResponse(BaseModel):
    """Service status reported by the health endpoint."""

    status: str
    locale: str
    file_size_limit: int | None = Field(default=None, ge=1)


def _remove_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _spool_upload(upload: UploadFile) -> Path:
    """Copy the uploaded file into a named temporary file and return its path."""

    handle, name = tempfile.mkstemp(prefix="vt2er-upload-", suffix=".h5p")
    with os.fdopen(handle, "wb") as destination:
        upload.file.seek(0)
        shutil.copyfileobj(upload.file, destination, _UPLOAD_CHUNK_SIZE)
    return Path(name)


def create_app(
    settings: MigrationSettings | None = None,
    *,
    pipeline: MigrationPipeline | None = None,
) -> FastAPI:
    """Create the upload service.

    ``POST /upload`` expects a multipart ``file`` field and answers with the
    migrated archive, or with a plain text error message and a non-200 status.
    """

    resolved_settings = settings or MigrationSettings.from_env()
    migration = pipeline or MigrationPipeline.from_settings(resolved_settings)

    app = FastAPI(
        title="Virtual Tour to Escape Room",
        version="0.1.0",
        description=(
            "Upload an H5P Virtual Tour (H5P.ThreeImage 0.5) package and receive "
            "the equivalent Escape Room (H5P.EscapeRoom) package."
        ),
    )

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            locale=migration.localization.locale or "en",
            file_size_limit=migration.file_size_limit,
        )

    @app.post("/upload", response_model=None)
    async def upload(file: UploadFile | None = File(None)) -> Response:
        if file is None:
            message = InputValidationError("It seems that no file was provided.")
            return PlainTextResponse(
                message.translate(migration.localization), status_code=422
            )

        try:
            temporary_path = await run_in_threadpool(_spool_upload, file)
        except OSError:
            logger.exception("Could not store upload %r", file.filename)
            return PlainTextResponse(
                migration.localization.gettext(
                    "Something went wrong with the file upload."
                ),
                status_code=500,
            )
        finally:
            await file.close()

        try:
            result = await run_in_threadpool(
                migration.migrate, temporary_path, file.filename
            )
        finally:
            _remove_file(temporary_path)

        if result.archive_path is None:
            return PlainTextResponse(result.error or "", status_code=422)

        archive_path = result.archive_path
        return FileResponse(
            archive_path,
            media_type="application/zip",
            filename=archive_path.name,
            background=BackgroundTask(_remove_file, archive_path),
        )

    return app


__all__ = ["HealthResponse", "create_app"]
