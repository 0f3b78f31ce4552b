"""Working directories for unpacked H5P archives."""

from __future__ import annotations

import io
import json
import logging
import os
import shutil
import time
import uuid
import zipfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import IO, Any, Callable, Collection, Iterable, Iterator, Union

from .errors import (
    AssetCopyError,
    ExtractionError,
    InvalidContentError,
    InvalidJSONError,
    MissingManifestError,
    PackagingError,
)

MANIFEST_NAME = "h5p.json"
CONTENT_DIRECTORY = "content"
CONTENT_NAME = "content.json"
LIBRARY_METADATA_NAME = "library.json"
ARCHIVE_EXTENSION = ".h5p"

DEFAULT_STALE_AFTER_SECONDS = 60

# Virtual Tour libraries replaced by the bundled Escape Room assets.
LEGACY_ASSET_DIRECTORIES: tuple[str, ...] = (
    "H5P.ThreeImage-0.5",
    "H5PEditor.ThreeImage-0.5",
    "H5P.ThreeSixty-0.3",
)

ArchiveSource = Union[Path, str, bytes, IO[bytes]]

logger = logging.getLogger(__name__)


class ArchiveStore:
    """Extract, edit and repackage archives below a shared uploads directory.

    Every extracted archive lives in its own directory named
    ``<unix timestamp>-<uuid4>`` so concurrent runs never share state. The
    timestamp prefix lets :meth:`purge_stale` clear directories left behind by
    runs that never released them.
    """

    def __init__(
        self,
        uploads_root: Path,
        *,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.uploads_root = Path(uploads_root)
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock

    def path_for(self, workdir_id: str) -> Path:
        """Return the absolute location of the working directory ``workdir_id``."""

        if not workdir_id or workdir_id in {".", ".."} or "/" in workdir_id or "\\" in workdir_id:
            raise ValueError(f"Invalid working directory identifier: {workdir_id!r}")
        return self.uploads_root / workdir_id

    def extract(self, source: ArchiveSource) -> str:
        """Unpack ``source`` into a fresh working directory and return its id."""

        workdir_id = f"{int(self._clock())}-{uuid.uuid4()}"
        target = self.uploads_root / workdir_id

        try:
            self.uploads_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExtractionError(
                "Could not create upload directory {path}.", path=str(self.uploads_root)
            ) from exc
        if not os.access(self.uploads_root, os.W_OK):
            raise ExtractionError("Upload directory {path} is not writable.", path=str(self.uploads_root))

        try:
            target.mkdir()
        except OSError as exc:
            raise ExtractionError(
                "Could not create upload directory {path}.", path=str(target)
            ) from exc

        try:
            with zipfile.ZipFile(_as_zip_source(source)) as archive:
                for member in archive.infolist():
                    _check_member_name(member.filename)
                    archive.extract(member, target)
        except ExtractionError:
            _remove_tree(target)
            raise
        except Exception as exc:
            _remove_tree(target)
            raise ExtractionError() from exc

        logger.debug("Extracted archive into %s", target)
        try:
            self.purge_stale(keep=(workdir_id,))
        except OSError:
            logger.warning("Could not purge stale working directories", exc_info=True)
        return workdir_id

    @contextmanager
    def extracted(self, source: ArchiveSource) -> Iterator[str]:
        """Extract ``source`` and release the working directory on exit."""

        workdir_id = self.extract(source)
        try:
            yield workdir_id
        finally:
            self.release(workdir_id)

    def release(self, workdir_id: str) -> None:
        _remove_tree(self.path_for(workdir_id))
        logger.debug("Released working directory %s", workdir_id)

    def read_manifest(self, workdir_id: str) -> dict[str, Any]:
        manifest_path = self.path_for(workdir_id) / MANIFEST_NAME
        if not manifest_path.is_file():
            raise MissingManifestError()

        try:
            payload = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidJSONError() from exc
        if not isinstance(payload, dict):
            raise InvalidJSONError()
        return payload

    def write_manifest(self, workdir_id: str, manifest: dict[str, Any]) -> Path:
        manifest_path = self.path_for(workdir_id) / MANIFEST_NAME
        _write_json(manifest_path, manifest)
        return manifest_path

    def read_content(self, workdir_id: str) -> dict[str, Any]:
        """Return the content parameters; a missing file reads as ``{}``."""

        content_path = self.path_for(workdir_id) / CONTENT_DIRECTORY / CONTENT_NAME
        if not content_path.is_file():
            logger.debug("No %s in %s", CONTENT_NAME, workdir_id)
            return {}

        try:
            payload = json.loads(content_path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidContentError() from exc
        if not isinstance(payload, dict):
            raise InvalidContentError()
        return payload

    def write_content(self, workdir_id: str, content: dict[str, Any]) -> Path:
        content_dir = self.path_for(workdir_id) / CONTENT_DIRECTORY
        content_dir.mkdir(parents=True, exist_ok=True)
        content_path = content_dir / CONTENT_NAME
        _write_json(content_path, content)
        return content_path

    def library_directories(self, workdir_id: str) -> dict[str, dict[str, Any]]:
        """Map machine names to the ``library.json`` of each bundled library."""

        root = self.path_for(workdir_id)
        libraries: dict[str, dict[str, Any]] = {}
        for entry in sorted(root.iterdir()):
            if not entry.is_dir() or entry.name == CONTENT_DIRECTORY:
                continue
            metadata_path = entry / LIBRARY_METADATA_NAME
            if not metadata_path.is_file():
                continue
            try:
                metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning("Skipping unreadable %s", metadata_path)
                continue
            if isinstance(metadata, dict) and isinstance(metadata.get("machineName"), str):
                libraries[metadata["machineName"]] = metadata
        return libraries

    def replace_asset_tree(
        self,
        workdir_id: str,
        asset_source_root: Path,
        *,
        legacy_directories: Iterable[str] = LEGACY_ASSET_DIRECTORIES,
    ) -> None:
        """Swap the legacy libraries for the files below ``asset_source_root``."""

        root = self.path_for(workdir_id)
        for name in legacy_directories:
            _remove_tree(root / name)

        source_root = Path(asset_source_root)
        if not source_root.is_dir():
            raise AssetCopyError()

        for dirpath, dirnames, filenames in os.walk(source_root):
            dirnames.sort()
            current = Path(dirpath)
            destination_dir = root / current.relative_to(source_root)
            try:
                destination_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise AssetCopyError() from exc

            for filename in sorted(filenames):
                try:
                    shutil.copyfile(current / filename, destination_dir / filename)
                except OSError as exc:
                    raise AssetCopyError(
                        "Could not copy {path}.",
                        path=(current / filename).relative_to(source_root).as_posix(),
                    ) from exc

    def pack(
        self, workdir_id: str, output_name: str, *, destination: Path | None = None
    ) -> Path:
        """Zip the working directory into ``<output_name>.h5p``.

        Entry names are relative to the working directory root. The archive is
        written to ``destination`` which defaults to the uploads root.
        """

        root = self.path_for(workdir_id)
        archive_path = (destination or self.uploads_root) / f"{output_name}{ARCHIVE_EXTENSION}"

        try:
            archive = zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED)
        except OSError as exc:
            raise PackagingError() from exc

        try:
            with archive:
                for file_path in _iter_files(root):
                    archive.write(file_path, arcname=file_path.relative_to(root).as_posix())
        except OSError as exc:
            archive_path.unlink(missing_ok=True)
            raise PackagingError() from exc

        return archive_path

    def purge_stale(
        self, max_age_seconds: int | None = None, *, keep: Collection[str] = ()
    ) -> list[str]:
        """Delete working directories older than ``max_age_seconds``.

        Directory names without a numeric timestamp prefix are never purged.
        Returns the names of the removed directories.
        """

        if max_age_seconds is None:
            max_age_seconds = self.stale_after_seconds
        if not self.uploads_root.is_dir():
            return []

        now = int(self._clock())
        purged: list[str] = []
        for entry in sorted(self.uploads_root.iterdir()):
            if entry.name in keep or not entry.is_dir():
                continue
            prefix = entry.name.split("-", 1)[0]
            try:
                created_at = int(prefix)
            except ValueError:
                continue
            if now - created_at >= max_age_seconds:
                _remove_tree(entry)
                purged.append(entry.name)

        if purged:
            logger.info("Purged %d stale working directories", len(purged))
        return purged


def _as_zip_source(source: ArchiveSource) -> Path | IO[bytes]:
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(source)
    if isinstance(source, str):
        return Path(source)
    return source


def _check_member_name(name: str) -> None:
    normalised = name.replace("\\", "/")
    path = PurePosixPath(normalised)
    if path.is_absolute() or ".." in path.parts or normalised[1:2] == ":":
        raise ExtractionError("The archive contains an unsafe path: {name}", name=name)


def _iter_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        current = Path(dirpath)
        for filename in sorted(filenames):
            file_path = current / filename
            if file_path.is_file():
                yield file_path


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(
        json.dumps(payload, indent=4, ensure_ascii=False) + "\n", encoding="utf-8"
    )


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        # Another run may have swept the same directory.
        pass


__all__ = [
    "ARCHIVE_EXTENSION",
    "ArchiveStore",
    "CONTENT_DIRECTORY",
    "CONTENT_NAME",
    "DEFAULT_STALE_AFTER_SECONDS",
    "LEGACY_ASSET_DIRECTORIES",
    "MANIFEST_NAME",
]
