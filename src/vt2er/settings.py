"""Configuration for the migration service and command line tool."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from importlib import resources
from pathlib import Path
from typing import Any, Mapping

from .archive_store import DEFAULT_STALE_AFTER_SECONDS
from .localization import DEFAULT_LANGUAGE


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _parse_int(
    value: Any, *, name: str, minimum: int, allow_infinite: bool = False
) -> int | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if allow_infinite and value.lower() in {"inf", "infinity", "unlimited"}:
            return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer.")
    if allow_infinite and isinstance(value, float) and value == float("inf"):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be at least {minimum}.")
    return parsed


def bundled_asset_root() -> Path:
    """Return the Escape Room library tree shipped with the package."""

    return Path(str(resources.files("vt2er.data").joinpath("assets")))


@dataclass(frozen=True)
class MigrationSettings:
    """Deployment settings for the migration pipeline.

    Values are read from ``VT2ER_*`` environment variables. Empty strings are
    treated as if the variable was unset. When ``VT2ER_CONFIG`` names a JSON
    file its keys (``uploadsPath``, ``fileSizeLimit``, ``staleAfterSeconds``,
    ``locale`` and ``assetRoot``) take precedence over the environment.
    """

    uploads_root: Path = Path("uploads")
    file_size_limit: int | None = None
    stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS
    locale: str = DEFAULT_LANGUAGE
    asset_root: Path | None = None
    config_path: Path | None = None

    @property
    def resolved_asset_root(self) -> Path:
        return self.asset_root if self.asset_root is not None else bundled_asset_root()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MigrationSettings":
        """Return settings populated from ``environ`` (defaults to ``os.environ``)."""

        source = environ if environ is not None else os.environ

        uploads_root = _normalise_path(source.get("VT2ER_UPLOADS_ROOT"))
        file_size_limit = _parse_int(
            source.get("VT2ER_FILE_SIZE_LIMIT"),
            name="VT2ER_FILE_SIZE_LIMIT",
            minimum=1,
            allow_infinite=True,
        )
        stale_after = _parse_int(
            source.get("VT2ER_STALE_AFTER_SECONDS"),
            name="VT2ER_STALE_AFTER_SECONDS",
            minimum=0,
        )
        locale = _normalise_string(source.get("VT2ER_LOCALE"), default=DEFAULT_LANGUAGE)
        asset_root = _normalise_path(source.get("VT2ER_ASSET_ROOT"))
        config_path = _normalise_path(source.get("VT2ER_CONFIG"))

        settings = cls(
            uploads_root=uploads_root or Path("uploads"),
            file_size_limit=file_size_limit,
            stale_after_seconds=(
                stale_after if stale_after is not None else DEFAULT_STALE_AFTER_SECONDS
            ),
            locale=locale,
            asset_root=asset_root,
            config_path=config_path,
        )

        if config_path is not None and config_path.is_file():
            settings = settings.merged_with_file(config_path)
        return settings

    def merged_with_file(self, path: Path) -> "MigrationSettings":
        """Return a copy updated with the keys found in the JSON file ``path``."""

        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError(f"Could not read configuration file '{path}': {exc}") from exc
        if not isinstance(payload, Mapping):
            raise ValueError(f"Configuration file '{path}' must contain a JSON object.")

        changes: dict[str, Any] = {"config_path": Path(path)}

        if "uploadsPath" in payload:
            uploads_root = _normalise_path(str(payload["uploadsPath"]))
            if uploads_root is not None:
                changes["uploads_root"] = uploads_root
        if "fileSizeLimit" in payload:
            changes["file_size_limit"] = _parse_int(
                payload["fileSizeLimit"],
                name="fileSizeLimit",
                minimum=1,
                allow_infinite=True,
            )
        if "staleAfterSeconds" in payload:
            stale_after = _parse_int(
                payload["staleAfterSeconds"], name="staleAfterSeconds", minimum=0
            )
            if stale_after is not None:
                changes["stale_after_seconds"] = stale_after
        if "locale" in payload:
            changes["locale"] = _normalise_string(
                str(payload["locale"]), default=self.locale
            )
        if "assetRoot" in payload:
            changes["asset_root"] = _normalise_path(str(payload["assetRoot"]))

        return replace(self, **changes)


__all__ = ["MigrationSettings", "bundled_asset_root"]
