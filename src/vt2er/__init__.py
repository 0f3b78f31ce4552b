"""Migrate H5P Virtual Tour packages to Escape Room packages."""

from .archive_store import ArchiveStore
from .content import ContentMigrator, L10N_DEFAULTS, default_l10n
from .errors import (
    ArchiveError,
    ContentError,
    InputValidationError,
    ManifestError,
    MigrationError,
)
from .json_paths import (
    PathMatch,
    TypedComponent,
    closest_typed_component,
    find,
    parent_path,
    prune_subcomponents,
    resolve,
)
from .localization import Localization, complete_locale, load_localization
from .manifest import (
    ESCAPE_ROOM_DEPENDENCIES,
    LibraryDependency,
    ManifestMigrator,
    SOURCE_LIBRARY,
    TARGET_LIBRARY,
    parse_library_string,
)
from .pipeline import MigrationPipeline, MigrationResult, output_name_for
from .settings import MigrationSettings

__all__ = [
    "ArchiveError",
    "ArchiveStore",
    "ContentError",
    "ContentMigrator",
    "ESCAPE_ROOM_DEPENDENCIES",
    "InputValidationError",
    "L10N_DEFAULTS",
    "LibraryDependency",
    "Localization",
    "ManifestError",
    "ManifestMigrator",
    "MigrationError",
    "MigrationPipeline",
    "MigrationResult",
    "MigrationSettings",
    "PathMatch",
    "SOURCE_LIBRARY",
    "TARGET_LIBRARY",
    "TypedComponent",
    "closest_typed_component",
    "complete_locale",
    "default_l10n",
    "find",
    "load_localization",
    "output_name_for",
    "parent_path",
    "parse_library_string",
    "prune_subcomponents",
    "resolve",
]
