"""Test configuration for the Virtual Tour migration project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import json
import struct
import zipfile
from collections.abc import Callable, Mapping
from typing import Any

import pytest


def virtual_tour_manifest(
    *,
    major: Any = 0,
    minor: Any = 5,
    main_library: str = "H5P.ThreeImage",
    language: str | None = "en",
) -> dict[str, Any]:
    """Return an ``h5p.json`` payload for a Virtual Tour package."""

    manifest: dict[str, Any] = {
        "title": "Haunted house",
        "mainLibrary": main_library,
        "embedTypes": ["iframe"],
        "license": "U",
        "preloadedDependencies": [
            {"machineName": "H5P.ThreeImage", "majorVersion": major, "minorVersion": minor},
            {"machineName": "H5P.Text", "majorVersion": 1, "minorVersion": 1},
        ],
    }
    if language is not None:
        manifest["language"] = language
    return manifest


def virtual_tour_content() -> dict[str, Any]:
    """Return a ``content.json`` payload with two scenes and nested components."""

    return {
        "threeImage": {
            "scenes": [
                {
                    "sceneId": 0,
                    "sceneType": "360",
                    "scenename": "Hall",
                    "interactions": [
                        {
                            "interactionpos": "10,20",
                            "action": {
                                "library": "H5P.Text 1.1",
                                "params": {"text": "<p>A dusty note</p>"},
                                "subContentId": "a1",
                            },
                        },
                        {
                            "interactionpos": "30,40",
                            "action": {
                                "library": "H5P.GoToScene 0.0",
                                "params": {"nextSceneId": 1},
                            },
                        },
                    ],
                },
                {
                    "sceneId": 1,
                    "sceneType": "static",
                    "scenename": "Cellar",
                },
            ],
            "startSceneId": 0,
        },
        "l10n": {"title": "Custom title"},
    }


def write_archive(path: Path, files: Mapping[str, Any]) -> Path:
    """Write ``files`` into a ZIP archive at ``path``.

    Mapping and list values are serialised as JSON, strings as UTF-8 text.
    """

    with zipfile.ZipFile(path, "w") as archive:
        for name, payload in files.items():
            if isinstance(payload, (dict, list)):
                data = json.dumps(payload).encode("utf-8")
            elif isinstance(payload, str):
                data = payload.encode("utf-8")
            else:
                data = payload
            archive.writestr(name, data)
    return path


def patch_entry_headers(
    path: Path, *, flag_bits: int = 0, compress_type: int | None = None
) -> Path:
    """Rewrite the flags and compression method of the first entry in ``path``."""

    data = bytearray(path.read_bytes())
    central = data.find(b"PK\x01\x02")
    # Local header: flags at +6, method at +8. Central header: flags at +8, method at +10.
    for flags_at, method_at in ((6, 8), (central + 8, central + 10)):
        struct.pack_into("<H", data, flags_at, struct.unpack_from("<H", data, flags_at)[0] | flag_bits)
        if compress_type is not None:
            struct.pack_into("<H", data, method_at, compress_type)
    path.write_bytes(bytes(data))
    return path

def virtual_tour_files(
    manifest: Mapping[str, Any] | None = None,
    content: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "h5p.json": dict(manifest or virtual_tour_manifest()),
        "content/content.json": dict(content or virtual_tour_content()),
        "content/images/hall.jpg": b"\xff\xd8\xff\xe0fake-jpeg",
        "H5P.ThreeImage-0.5/library.json": {
            "machineName": "H5P.ThreeImage",
            "majorVersion": 0,
            "minorVersion": 5,
        },
        "H5P.ThreeImage-0.5/dist/h5p-three-image.js": "console.log('three image');",
        "H5PEditor.ThreeImage-0.5/library.json": {
            "machineName": "H5PEditor.ThreeImage",
            "majorVersion": 0,
            "minorVersion": 5,
        },
        "H5P.ThreeSixty-0.3/library.json": {
            "machineName": "H5P.ThreeSixty",
            "majorVersion": 0,
            "minorVersion": 3,
        },
        "H5P.Text-1.1/library.json": {
            "machineName": "H5P.Text",
            "majorVersion": 1,
            "minorVersion": 1,
        },
    }


@pytest.fixture()
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture writing ZIP archives below ``tmp_path``."""

    def _factory(files: Mapping[str, Any] | None = None, name: str = "tour.h5p") -> Path:
        return write_archive(tmp_path / name, files if files is not None else virtual_tour_files())

    return _factory


@pytest.fixture()
def virtual_tour_archive(make_archive: Callable[..., Path]) -> Path:
    """Return the path of a valid Virtual Tour 0.5 package."""

    return make_archive()


@pytest.fixture()
def asset_root(tmp_path: Path) -> Path:
    """Return a small stand-in for the Escape Room library tree."""

    root = tmp_path / "assets"
    library = root / "H5P.EscapeRoom-0.5"
    (library / "dist").mkdir(parents=True)
    (library / "library.json").write_text(
        json.dumps({"machineName": "H5P.EscapeRoom", "majorVersion": 0, "minorVersion": 5}),
        encoding="utf-8",
    )
    (library / "dist" / "h5p-escape-room.js").write_text("// escape room", encoding="utf-8")
    (root / "FontAwesome-4.5").mkdir()
    (root / "FontAwesome-4.5" / "library.json").write_text(
        json.dumps({"machineName": "FontAwesome", "majorVersion": 4, "minorVersion": 5}),
        encoding="utf-8",
    )
    return root


@pytest.fixture()
def uploads_root(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


def read_archive_json(path: Path, name: str) -> Any:
    with zipfile.ZipFile(path) as archive:
        return json.loads(archive.read(name).decode("utf-8"))


__all__ = [
    "patch_entry_headers",
    "read_archive_json",
    "virtual_tour_content",
    "virtual_tour_files",
    "virtual_tour_manifest",
    "write_archive",
]
