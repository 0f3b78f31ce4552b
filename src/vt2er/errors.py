"""Exception hierarchy raised while migrating Virtual Tour packages."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - import only needed for annotations
    from .localization import Localization


class MigrationError(RuntimeError):
    """Base class for failures that end a migration run.

    The ``message`` is a template that is safe to show to end users. Values
    referenced by the template are kept separately so the message can be
    translated before the placeholders are filled in.
    """

    default_message = "Something went wrong, but I dunno what, sorry!"

    def __init__(self, message: str | None = None, **values: Any) -> None:
        self.template = message if message is not None else self.default_message
        self.values = dict(values)
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return self.template.format(**self.values)

    def translate(self, localization: "Localization") -> str:
        """Return the message rendered through ``localization``."""

        return localization.format(self.template, **self.values)


class InputValidationError(MigrationError):
    """Raised when an uploaded file is rejected before it is unpacked."""


class ArchiveError(MigrationError):
    """Raised when the package archive cannot be read or written."""


class ExtractionError(ArchiveError):
    default_message = "Error extracting H5P file ZIP archive."


class MissingManifestError(ArchiveError):
    default_message = "h5p.json file does not exist in the archive."


class InvalidJSONError(ArchiveError):
    default_message = "Error decoding h5p.json file."


class AssetCopyError(ArchiveError):
    default_message = "Could not copy the Escape Room library files."


class PackagingError(ArchiveError):
    default_message = "Error creating H5P file ZIP archive."


class ManifestError(MigrationError):
    """Raised when ``h5p.json`` does not describe a migratable Virtual Tour."""


class WrongContentTypeError(ManifestError):
    default_message = "The content type is not a Virtual Tour."


class MissingVersionInfoError(ManifestError):
    default_message = "There is no version information for the Virtual Tour library."


class UnsupportedOldVersionError(ManifestError):
    default_message = "Please upgrade your Virtual Tour content to version 0.5."


class UnsupportedNewVersionError(ManifestError):
    default_message = "The version of the Virtual Tour content is not supported yet."


class ContentError(MigrationError):
    """Raised when the content parameters cannot be migrated."""


class InvalidContentError(ContentError):
    default_message = "Error decoding content.json file."


class UnknownTargetError(ContentError):
    default_message = "There is no content migration for {target}."


__all__ = [
    "ArchiveError",
    "AssetCopyError",
    "ContentError",
    "ExtractionError",
    "InputValidationError",
    "InvalidContentError",
    "InvalidJSONError",
    "ManifestError",
    "MigrationError",
    "MissingManifestError",
    "MissingVersionInfoError",
    "PackagingError",
    "UnknownTargetError",
    "UnsupportedNewVersionError",
    "UnsupportedOldVersionError",
    "WrongContentTypeError",
]
