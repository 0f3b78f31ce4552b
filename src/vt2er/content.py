"""Transforms applied to ``content/content.json`` of a migrated package."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Mapping, MutableMapping

from .errors import UnknownTargetError
from .json_paths import resolve
from .localization import DEFAULT_LANGUAGE, Localization, load_localization
from .manifest import TARGET_LIBRARY

logger = logging.getLogger(__name__)

SCENES_PATH = "threeImage.scenes"

SCENE_OVERRIDES: Mapping[str, Any] = {"enableZoom": False}

INTERACTION_OVERRIDES: Mapping[str, Any] = {
    "iconTypeTextBox": "text-icon",
    "showAsHotspot": False,
    "showAsOpenSceneContent": False,
}

# Keys are inserted in this order when missing.
L10N_DEFAULTS: tuple[tuple[str, str], ...] = (
    ("title", "Title"),
    ("playAudioTrack", "Play audio track"),
    ("pauseAudioTrack", "Pause audio track"),
    ("sceneDescription", "Scene description"),
    ("resetCamera", "Reset camera"),
    ("submitDialog", "Submit dialog"),
    ("closeDialog", "Close dialog"),
    ("expandButtonAriaLabel", "Expand the visual label"),
    ("backgroundLoading", "Loading background image ..."),
    ("noContent", "No content"),
    ("goToScene", "Go to scene"),
    ("edit", "Edit"),
    ("delete", "Delete"),
    ("score", "Score"),
    ("assignment", "Assignment"),
    ("total", "Total"),
    ("scoreSummary", "Show score summary"),
    ("scene", "Scene"),
    ("untitled", "Untitled"),
    ("userIsAtStartScene", "You are at the start scene"),
    ("unlocked", "Unlocked"),
    ("locked", "Locked"),
    ("searchRoomForCode", "Search the room until you find the code"),
    ("wrongCode", "The code was wrong, try again."),
    ("contentUnlocked", "The content has been unlocked!"),
    ("code", "Code"),
    ("lockedStateAction", "Unlock"),
    ("hotspotDragHorizAlt", "Drag horizontally to scale"),
    ("hotspotDragVertiAlt", "Drag vertically to scale"),
    ("hint", "Hint"),
    ("lockedContent", "Locked content"),
    ("back", "Back"),
    ("buttonFullscreenEnter", "Enter fullscreen mode"),
    ("buttonFullscreenExit", "Exit fullscreen mode"),
    ("mainToolbar", "Main toolbar"),
    ("noValidSceneSet", "No valid scenes have been set."),
    ("buttonZoomIn", "Zoom in"),
    ("buttonZoomOut", "Zoom out"),
    ("zoomToolbar", "Zoom toolbar"),
    ("zoomAriaLabel", "num% zoomed in"),
)


def default_l10n(localization: Localization) -> dict[str, str]:
    """Return the default Escape Room phrases translated through ``localization``."""

    return {key: localization.gettext(phrase) for key, phrase in L10N_DEFAULTS}


class ContentMigrator:
    """Rewrite Virtual Tour content parameters for a target content type.

    The migration never discards data: unknown keys, nested components and any
    ``l10n`` entries that are already present survive untouched.
    """

    def __init__(
        self,
        localization_loader: Callable[[str], Localization] = load_localization,
    ) -> None:
        self._localization_loader = localization_loader
        self._transforms: dict[
            str, Callable[[MutableMapping[str, Any], Localization], None]
        ] = {TARGET_LIBRARY: self._to_escape_room}

    def migrate(
        self,
        document: Mapping[str, Any] | None,
        target_identifier: str = TARGET_LIBRARY,
        language: str = DEFAULT_LANGUAGE,
        *,
        localization: Localization | None = None,
    ) -> dict[str, Any]:
        """Return a migrated copy of ``document``; the input is left unchanged."""

        transform = self._transforms.get(target_identifier)
        if transform is None:
            raise UnknownTargetError(target=target_identifier)

        if localization is None:
            localization = self._localization_loader(language or DEFAULT_LANGUAGE)

        migrated: dict[str, Any] = copy.deepcopy(dict(document or {}))
        transform(migrated, localization)
        return migrated

    def _to_escape_room(
        self, document: MutableMapping[str, Any], localization: Localization
    ) -> None:
        scenes = _as_list(resolve(document, SCENES_PATH))
        interaction_count = 0
        for scene in scenes:
            if not isinstance(scene, MutableMapping):
                continue
            scene.update(SCENE_OVERRIDES)

            for interaction in _as_list(scene.get("interactions")):
                if isinstance(interaction, MutableMapping):
                    interaction.update(INTERACTION_OVERRIDES)
                    interaction_count += 1

        l10n = document.get("l10n")
        if not isinstance(l10n, MutableMapping):
            if l10n is not None:
                logger.warning("Replacing non-object l10n value of type %s", type(l10n).__name__)
            l10n = {}
            document["l10n"] = l10n

        filled = 0
        for key, phrase in default_l10n(localization).items():
            if key not in l10n:
                l10n[key] = phrase
                filled += 1

        logger.debug(
            "Migrated %d scenes and %d interactions, filled %d l10n keys",
            len(scenes),
            interaction_count,
            filled,
        )


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


__all__ = [
    "ContentMigrator",
    "INTERACTION_OVERRIDES",
    "L10N_DEFAULTS",
    "SCENE_OVERRIDES",
    "default_l10n",
]
