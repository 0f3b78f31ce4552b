"""Validation and rewriting of the ``h5p.json`` package manifest."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .errors import (
    MissingVersionInfoError,
    UnsupportedNewVersionError,
    UnsupportedOldVersionError,
    WrongContentTypeError,
)

SOURCE_LIBRARY = "H5P.ThreeImage"
TARGET_LIBRARY = "H5P.EscapeRoom"

SUPPORTED_MAJOR_VERSION = 0
SUPPORTED_MINOR_VERSION = 5

_INTEGER_PATTERN = re.compile(r"^\s*\d+\s*$")


@dataclass(frozen=True)
class LibraryDependency:
    """A ``preloadedDependencies`` entry of an H5P manifest."""

    machine_name: str
    major_version: int
    minor_version: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "machineName": self.machine_name,
            "majorVersion": self.major_version,
            "minorVersion": self.minor_version,
        }

    @property
    def directory_name(self) -> str:
        return f"{self.machine_name}-{self.major_version}.{self.minor_version}"


ESCAPE_ROOM_DEPENDENCIES: tuple[LibraryDependency, ...] = (
    LibraryDependency("FontAwesome", 4, 5),
    LibraryDependency("H5P.Transition", 1, 0),
    LibraryDependency("H5P.FontIcons", 1, 0),
    LibraryDependency("H5P.JoubelUI", 1, 3),
    LibraryDependency("H5P.ThreeJS", 1, 0),
    LibraryDependency("H5P.Question", 1, 5),
    LibraryDependency("H5P.TextUtilities", 1, 3),
    LibraryDependency("H5P.Image", 1, 1),
    LibraryDependency("H5P.MaterialDesignIcons", 1, 0),
    LibraryDependency("H5P.NDLAThreeSixty", 0, 5),
    LibraryDependency("H5PEditor.TableList", 1, 0),
    LibraryDependency("H5P.AdvancedText", 1, 1),
    LibraryDependency("H5P.Audio", 1, 5),
    LibraryDependency("H5P.Video", 1, 6),
    LibraryDependency("H5P.Summary", 1, 10),
    LibraryDependency("H5P.SingleChoiceSet", 1, 11),
    LibraryDependency("H5P.MultiChoice", 1, 16),
    LibraryDependency("H5P.Blanks", 1, 14),
    LibraryDependency("H5P.Crossword", 0, 5),
    LibraryDependency("H5P.EscapeRoom", 0, 5),
)


def parse_library_string(
    value: str, delimiter: str = " "
) -> LibraryDependency | None:
    """Parse strings such as ``"H5P.Image 1.1"`` into a dependency record."""

    if not isinstance(value, str):
        return None
    pattern = r"(H5P\..+)" + re.escape(delimiter) + r"(\d+)\.(\d+)"
    match = re.search(pattern, value)
    if match is None:
        return None
    return LibraryDependency(match.group(1), int(match.group(2)), int(match.group(3)))


class ManifestMigrator:
    """Turn a Virtual Tour 0.5 manifest into an Escape Room manifest."""

    def __init__(
        self,
        *,
        source_library: str = SOURCE_LIBRARY,
        target_library: str = TARGET_LIBRARY,
        dependencies: Iterable[LibraryDependency] = ESCAPE_ROOM_DEPENDENCIES,
    ) -> None:
        self.source_library = source_library
        self.target_library = target_library
        self.dependencies = tuple(dependencies)

    def source_version(self, manifest: Mapping[str, Any]) -> tuple[int, int]:
        """Return ``(major, minor)`` of the source library dependency.

        Raises:
            WrongContentTypeError: If ``mainLibrary`` is not the source library.
            MissingVersionInfoError: If no usable version numbers are present.
        """

        if manifest.get("mainLibrary") != self.source_library:
            raise WrongContentTypeError()

        dependency = self._find_source_dependency(manifest.get("preloadedDependencies"))
        if dependency is None:
            raise MissingVersionInfoError()

        major = _coerce_version(dependency.get("majorVersion"))
        minor = _coerce_version(dependency.get("minorVersion"))
        if major is None or minor is None:
            raise MissingVersionInfoError()
        return major, minor

    def check(self, manifest: Mapping[str, Any]) -> tuple[int, int]:
        """Validate that ``manifest`` is eligible for migration."""

        major, minor = self.source_version(manifest)
        if major == SUPPORTED_MAJOR_VERSION and minor < SUPPORTED_MINOR_VERSION:
            raise UnsupportedOldVersionError()
        if major != SUPPORTED_MAJOR_VERSION or minor > SUPPORTED_MINOR_VERSION:
            raise UnsupportedNewVersionError()
        return major, minor

    def migrate(self, manifest: Mapping[str, Any]) -> dict[str, Any]:
        """Return the rewritten manifest; unrelated metadata is kept as is."""

        self.check(manifest)

        migrated = dict(manifest)
        migrated["mainLibrary"] = self.target_library
        migrated["preloadedDependencies"] = [
            dependency.to_payload() for dependency in self.dependencies
        ]
        return migrated

    def _find_source_dependency(self, dependencies: Any) -> Mapping[str, Any] | None:
        if not isinstance(dependencies, list):
            return None
        for entry in dependencies:
            if isinstance(entry, Mapping) and entry.get("machineName") == self.source_library:
                return entry
        return None


def _coerce_version(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER_PATTERN.match(value):
        return int(value)
    return None


__all__ = [
    "ESCAPE_ROOM_DEPENDENCIES",
    "LibraryDependency",
    "ManifestMigrator",
    "SOURCE_LIBRARY",
    "SUPPORTED_MAJOR_VERSION",
    "SUPPORTED_MINOR_VERSION",
    "TARGET_LIBRARY",
    "parse_library_string",
]
