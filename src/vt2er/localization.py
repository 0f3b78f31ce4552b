"""Translation catalogs for user facing messages and default content phrases."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from babel import Locale, UnknownLocaleError
from babel.core import get_global
from babel.messages.mofile import write_mo
from babel.messages.pofile import read_po
from babel.support import NullTranslations, Translations

DOMAIN = "vt2er"
DEFAULT_LANGUAGE = "en"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Localization:
    """Explicit translation context passed to code that produces text."""

    locale: str | None = None
    translations: NullTranslations = field(default_factory=NullTranslations)

    def gettext(self, message: str) -> str:
        return self.translations.gettext(message)

    def format(self, message: str, **values: Any) -> str:
        """Translate ``message`` and then fill in its ``{placeholders}``."""

        translated = self.gettext(message)
        if not values:
            return translated
        try:
            return translated.format(**values)
        except (KeyError, IndexError, ValueError):
            # A broken translation must not hide the original message.
            return message.format(**values)


NULL_LOCALIZATION = Localization()


def complete_locale(language: str | None) -> str | None:
    """Return a ``ll_CC`` locale identifier for ``language`` or ``None``.

    Short codes are expanded with CLDR likely subtags, so ``de`` becomes
    ``de_DE`` and ``nb`` becomes ``nb_NO``.
    """

    if not isinstance(language, str):
        return None
    trimmed = language.strip().replace("-", "_")
    if not trimmed:
        return None

    try:
        locale = Locale.parse(trimmed)
    except (UnknownLocaleError, ValueError, TypeError):
        return None

    territory = locale.territory
    if territory is None:
        likely = get_global("likely_subtags").get(locale.language)
        if likely:
            try:
                territory = Locale.parse(likely).territory
            except (UnknownLocaleError, ValueError):
                territory = None

    if territory is None:
        return locale.language
    return f"{locale.language}_{territory}"


def bundled_catalog_root() -> Path:
    return Path(str(resources.files("vt2er.data").joinpath("locale")))


def load_localization(
    language: str | None, catalog_root: Path | None = None
) -> Localization:
    """Load the ``vt2er`` catalog for ``language``.

    Compiled ``.mo`` files are preferred; otherwise the ``.po`` source is
    compiled in memory. Languages without a catalog fall back to the original
    English phrases.
    """

    root = catalog_root if catalog_root is not None else bundled_catalog_root()

    for candidate in _locale_candidates(language):
        messages_dir = root / candidate / "LC_MESSAGES"
        compiled = messages_dir / f"{DOMAIN}.mo"
        if compiled.is_file():
            with compiled.open("rb") as handle:
                return Localization(candidate, Translations(handle, domain=DOMAIN))

        source = messages_dir / f"{DOMAIN}.po"
        if source.is_file():
            return Localization(candidate, _compile_po(source, candidate))

    logger.debug("No %s catalog for language %r", DOMAIN, language)
    return Localization(None, NullTranslations())


def _compile_po(path: Path, locale: str) -> Translations:
    with path.open("rb") as handle:
        catalog = read_po(handle, locale=locale, domain=DOMAIN)

    buffer = io.BytesIO()
    write_mo(buffer, catalog)
    buffer.seek(0)
    return Translations(buffer, domain=DOMAIN)


def _locale_candidates(language: str | None) -> list[str]:
    completed = complete_locale(language)
    if completed is None:
        return []

    candidates = [completed]
    short = completed.split("_", 1)[0]
    if short != completed:
        candidates.append(short)
    return candidates


__all__ = [
    "DEFAULT_LANGUAGE",
    "DOMAIN",
    "Localization",
    "NULL_LOCALIZATION",
    "bundled_catalog_root",
    "complete_locale",
    "load_localization",
]
