"""End-to-end migration of an uploaded Virtual Tour package."""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Union

from .archive_store import ArchiveStore
from .content import ContentMigrator
from .errors import InputValidationError, MigrationError
from .json_paths import LIBRARY_KEY, find
from .localization import (
    DEFAULT_LANGUAGE,
    NULL_LOCALIZATION,
    Localization,
    load_localization,
)
from .manifest import TARGET_LIBRARY, ManifestMigrator
from .settings import MigrationSettings

OUTPUT_PREFIX = "escape-room-"
RECOGNISED_EXTENSIONS: tuple[str, ...] = (".h5p", ".zip")

UploadSource = Union[Path, str, bytes]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of a pipeline run: either an archive path or an error message."""

    archive_path: Path | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.archive_path is None) == (self.error is None):
            raise ValueError("MigrationResult needs exactly one of archive_path or error")

    @property
    def ok(self) -> bool:
        return self.archive_path is not None


def output_name_for(original_filename: str | None) -> str:
    """Return the archive name (without extension) for a migrated upload."""

    name = PurePosixPath((original_filename or "").replace("\\", "/")).name
    lowered = name.lower()
    for extension in RECOGNISED_EXTENSIONS:
        if lowered.endswith(extension):
            name = name[: -len(extension)]
            break
    return f"{OUTPUT_PREFIX}{name or 'content'}"


class MigrationPipeline:
    """Validate, unpack, migrate and repackage one archive per call.

    Each call owns a single working directory which is released before the call
    returns, whether it succeeded or not.
    """

    def __init__(
        self,
        store: ArchiveStore,
        *,
        asset_root: Path,
        manifest_migrator: ManifestMigrator | None = None,
        content_migrator: ContentMigrator | None = None,
        localization: Localization = NULL_LOCALIZATION,
        file_size_limit: int | None = None,
    ) -> None:
        self.store = store
        self.asset_root = Path(asset_root)
        self.manifest_migrator = manifest_migrator or ManifestMigrator()
        self.content_migrator = content_migrator or ContentMigrator()
        self.localization = localization
        self.file_size_limit = file_size_limit

    @classmethod
    def from_settings(cls, settings: MigrationSettings) -> "MigrationPipeline":
        store = ArchiveStore(
            settings.uploads_root, stale_after_seconds=settings.stale_after_seconds
        )
        return cls(
            store,
            asset_root=settings.resolved_asset_root,
            localization=load_localization(settings.locale),
            file_size_limit=settings.file_size_limit,
        )

    def migrate(
        self,
        source: UploadSource | None,
        original_filename: str | None,
        size_limit: int | None = None,
    ) -> MigrationResult:
        """Migrate ``source`` (a file path or raw bytes).

        ``size_limit`` overrides the pipeline's configured limit; ``None`` keeps
        the configured value, which itself defaults to unbounded.
        """

        limit = size_limit if size_limit is not None else self.file_size_limit
        try:
            archive_source = self._validate_input(source, limit)
        except InputValidationError as exc:
            logger.info("Rejected upload %r: %s", original_filename, exc.message)
            return MigrationResult(error=exc.translate(self.localization))

        try:
            with self.store.extracted(archive_source) as workdir_id:
                archive_path = self._migrate_working_directory(workdir_id, original_filename)
        except MigrationError as exc:
            logger.info("Migration of %r failed: %s", original_filename, exc.message)
            return MigrationResult(error=exc.translate(self.localization))
        except Exception:
            logger.exception("Unexpected failure while migrating %r", original_filename)
            return MigrationResult(
                error=self.localization.gettext(MigrationError.default_message)
            )

        return MigrationResult(archive_path=archive_path)

    def _validate_input(
        self, source: UploadSource | None, limit: int | None
    ) -> Path | bytes:
        if source is None:
            raise InputValidationError("It seems that no file was provided.")

        if isinstance(source, (bytes, bytearray)):
            size = len(source)
            is_zip = size > 0 and zipfile.is_zipfile(io.BytesIO(source))
        else:
            path = Path(source)
            try:
                size = path.stat().st_size
            except OSError as exc:
                raise InputValidationError("It seems that no file was provided.") from exc
            is_zip = size > 0 and zipfile.is_zipfile(path)

        if size == 0:
            raise InputValidationError("The file is empty.")
        if limit is not None and size > limit:
            raise InputValidationError(
                "The file is larger than the limit of {limit} bytes.", limit=limit
            )
        if not is_zip:
            raise InputValidationError("The file is not a valid H5P file / ZIP archive.")
        return _as_archive_source(source)

    def _migrate_working_directory(
        self, workdir_id: str, original_filename: str | None
    ) -> Path:
        manifest = self.store.read_manifest(workdir_id)
        major, minor = self.manifest_migrator.check(manifest)
        migrated_manifest = self.manifest_migrator.migrate(manifest)
        self.store.write_manifest(workdir_id, migrated_manifest)
        logger.debug("Rewrote manifest of %s (source version %d.%d)", workdir_id, major, minor)

        self.store.replace_asset_tree(workdir_id, self.asset_root)

        content = self.store.read_content(workdir_id)
        migrated_content = self.content_migrator.migrate(
            content,
            migrated_manifest.get("mainLibrary") or TARGET_LIBRARY,
            migrated_manifest.get("language") or DEFAULT_LANGUAGE,
        )
        self.store.write_content(workdir_id, migrated_content)

        archive_path = self.store.pack(workdir_id, output_name_for(original_filename))
        embedded = sum(1 for _ in find(migrated_content, [(LIBRARY_KEY, r".")]))
        logger.info(
            "Migrated %r from Virtual Tour %d.%d with %d embedded components to %s",
            original_filename,
            major,
            minor,
            embedded,
            archive_path.name,
        )
        return archive_path


def _as_archive_source(source: UploadSource) -> Path | bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return Path(source)


__all__ = [
    "MigrationPipeline",
    "MigrationResult",
    "OUTPUT_PREFIX",
    "RECOGNISED_EXTENSIONS",
    "output_name_for",
]
