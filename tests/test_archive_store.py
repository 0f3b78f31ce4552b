"""Tests for the working-directory archive store."""

from __future__ import annotations

import json
import logging
import os
import zipfile
from pathlib import Path

import pytest

from vt2er.archive_store import ArchiveStore
from vt2er.errors import (
    AssetCopyError,
    ExtractionError,
    InvalidContentError,
    InvalidJSONError,
    MissingManifestError,
)

from conftest import (
    patch_entry_headers,
    virtual_tour_content,
    virtual_tour_files,
    virtual_tour_manifest,
    write_archive,
)


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_extract_creates_timestamped_directory(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root, clock=_Clock(1_700_000_000))

    workdir_id = store.extract(virtual_tour_archive)

    timestamp, _, suffix = workdir_id.partition("-")
    assert timestamp == "1700000000"
    assert len(suffix) == 36
    assert (uploads_root / workdir_id / "h5p.json").is_file()
    assert store.read_manifest(workdir_id)["mainLibrary"] == "H5P.ThreeImage"


def test_extract_accepts_bytes(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root)

    with store.extracted(virtual_tour_archive.read_bytes()) as workdir_id:
        assert store.read_content(workdir_id)["threeImage"]["startSceneId"] == 0

    assert not (uploads_root / workdir_id).exists()


def test_extracted_releases_on_error(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root)

    with pytest.raises(RuntimeError):
        with store.extracted(virtual_tour_archive) as workdir_id:
            raise RuntimeError("boom")

    assert not (uploads_root / workdir_id).exists()


def test_release_is_idempotent(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root)
    workdir_id = store.extract(virtual_tour_archive)

    store.release(workdir_id)
    store.release(workdir_id)

    assert list(uploads_root.iterdir()) == []


def test_each_extraction_gets_its_own_directory(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root, clock=_Clock(1_700_000_000))

    first = store.extract(virtual_tour_archive)
    second = store.extract(virtual_tour_archive)

    assert first != second
    assert {entry.name for entry in uploads_root.iterdir()} == {first, second}


def test_invalid_archive_raises_and_cleans_up(tmp_path: Path, uploads_root: Path) -> None:
    bogus = tmp_path / "bogus.h5p"
    bogus.write_bytes(b"definitely not a zip")
    store = ArchiveStore(uploads_root)

    with pytest.raises(ExtractionError):
        store.extract(bogus)

    assert list(uploads_root.iterdir()) == []


@pytest.mark.parametrize("name", ["../evil.txt", "/etc/evil.txt", "content/../../evil.txt"])
def test_unsafe_member_names_are_rejected(tmp_path: Path, uploads_root: Path, name: str) -> None:
    archive = tmp_path / "slip.h5p"
    with zipfile.ZipFile(archive, "w") as handle:
        handle.writestr("h5p.json", "{}")
        handle.writestr(name, "pwned")
    store = ArchiveStore(uploads_root)

    with pytest.raises(ExtractionError) as excinfo:
        store.extract(archive)

    assert "unsafe path" in excinfo.value.message
    assert list(uploads_root.iterdir()) == []
    assert not (tmp_path / "evil.txt").exists()


def test_missing_manifest(uploads_root: Path, make_archive) -> None:
    archive = make_archive({"content/content.json": {}})
    store = ArchiveStore(uploads_root)

    with store.extracted(archive) as workdir_id:
        with pytest.raises(MissingManifestError):
            store.read_manifest(workdir_id)


@pytest.mark.parametrize("payload", ["{not json", "[1, 2]", b"\xff\xfe"])
def test_undecodable_manifest(uploads_root: Path, make_archive, payload) -> None:
    archive = make_archive({"h5p.json": payload})
    store = ArchiveStore(uploads_root)

    with store.extracted(archive) as workdir_id:
        with pytest.raises(InvalidJSONError) as excinfo:
            store.read_manifest(workdir_id)

    assert excinfo.value.message == "Error decoding h5p.json file."


def test_missing_content_reads_as_empty(uploads_root: Path, make_archive) -> None:
    archive = make_archive({"h5p.json": virtual_tour_manifest()})
    store = ArchiveStore(uploads_root)

    with store.extracted(archive) as workdir_id:
        assert store.read_content(workdir_id) == {}


def test_undecodable_content_is_an_error(uploads_root: Path, make_archive) -> None:
    archive = make_archive(
        {"h5p.json": virtual_tour_manifest(), "content/content.json": "{broken"}
    )
    store = ArchiveStore(uploads_root)

    with store.extracted(archive) as workdir_id:
        with pytest.raises(InvalidContentError):
            store.read_content(workdir_id)


def test_write_round_trip_uses_readable_json(uploads_root: Path, make_archive) -> None:
    archive = make_archive({"h5p.json": virtual_tour_manifest()})
    store = ArchiveStore(uploads_root)

    with store.extracted(archive) as workdir_id:
        content_path = store.write_content(workdir_id, {"l10n": {"title": "Tïtle"}})
        manifest_path = store.write_manifest(workdir_id, {"title": "Tour"})

        text = content_path.read_text(encoding="utf-8")
        assert "Tïtle" in text
        assert text.endswith("\n")
        assert json.loads(manifest_path.read_text(encoding="utf-8")) == {"title": "Tour"}
        assert store.read_content(workdir_id) == {"l10n": {"title": "Tïtle"}}


def test_library_directories(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root)

    with store.extracted(virtual_tour_archive) as workdir_id:
        libraries = store.library_directories(workdir_id)

    assert sorted(libraries) == [
        "H5P.Text",
        "H5P.ThreeImage",
        "H5P.ThreeSixty",
        "H5PEditor.ThreeImage",
    ]
    assert libraries["H5P.ThreeImage"]["minorVersion"] == 5


def test_replace_asset_tree(uploads_root: Path, virtual_tour_archive: Path, asset_root: Path) -> None:
    store = ArchiveStore(uploads_root)

    with store.extracted(virtual_tour_archive) as workdir_id:
        store.replace_asset_tree(workdir_id, asset_root)
        root = uploads_root / workdir_id

        assert not (root / "H5P.ThreeImage-0.5").exists()
        assert not (root / "H5PEditor.ThreeImage-0.5").exists()
        assert not (root / "H5P.ThreeSixty-0.3").exists()
        assert (root / "H5P.Text-1.1" / "library.json").is_file()
        assert (root / "H5P.EscapeRoom-0.5" / "dist" / "h5p-escape-room.js").read_text(
            encoding="utf-8"
        ) == "// escape room"
        assert (root / "FontAwesome-4.5" / "library.json").is_file()
        assert (root / "content" / "images" / "hall.jpg").is_file()


def test_replace_asset_tree_requires_source(uploads_root: Path, virtual_tour_archive: Path, tmp_path: Path) -> None:
    store = ArchiveStore(uploads_root)

    with store.extracted(virtual_tour_archive) as workdir_id:
        with pytest.raises(AssetCopyError):
            store.replace_asset_tree(workdir_id, tmp_path / "missing")


def test_pack_writes_relative_entries(uploads_root: Path, virtual_tour_archive: Path, tmp_path: Path) -> None:
    store = ArchiveStore(uploads_root)
    destination = tmp_path / "out"
    destination.mkdir()

    with store.extracted(virtual_tour_archive) as workdir_id:
        archive_path = store.pack(workdir_id, "escape-room-tour", destination=destination)

    assert archive_path == destination / "escape-room-tour.h5p"
    with zipfile.ZipFile(archive_path) as archive:
        names = archive.namelist()
        assert archive.getinfo("h5p.json").compress_type == zipfile.ZIP_DEFLATED
    assert "h5p.json" in names
    assert "content/content.json" in names
    assert "content/images/hall.jpg" in names
    assert all(not name.startswith(("/", workdir_id)) for name in names)


def test_pack_defaults_to_uploads_root(uploads_root: Path, virtual_tour_archive: Path) -> None:
    store = ArchiveStore(uploads_root)

    with store.extracted(virtual_tour_archive) as workdir_id:
        archive_path = store.pack(workdir_id, "escape-room-tour")

    assert archive_path.parent == uploads_root
    assert zipfile.is_zipfile(archive_path)


def test_purge_stale_removes_old_directories(uploads_root: Path) -> None:
    clock = _Clock(1_000)
    store = ArchiveStore(uploads_root, stale_after_seconds=60, clock=clock)
    uploads_root.mkdir()
    for name in ["900-old", "940-edge", "941-fresh", "manual", "1000-now"]:
        (uploads_root / name).mkdir()
    (uploads_root / "100-archive.h5p").write_bytes(b"zip")

    purged = store.purge_stale()

    assert purged == ["900-old", "940-edge"]
    assert sorted(entry.name for entry in uploads_root.iterdir()) == [
        "100-archive.h5p",
        "1000-now",
        "941-fresh",
        "manual",
    ]


def test_purge_stale_honours_keep_and_override(uploads_root: Path) -> None:
    store = ArchiveStore(uploads_root, clock=_Clock(1_000))
    uploads_root.mkdir()
    (uploads_root / "10-keep").mkdir()
    (uploads_root / "20-drop").mkdir()

    assert store.purge_stale(500, keep=("10-keep",)) == ["20-drop"]
    assert (uploads_root / "10-keep").is_dir()


def test_purge_stale_without_uploads_root(tmp_path: Path) -> None:
    assert ArchiveStore(tmp_path / "nowhere").purge_stale() == []


def test_extract_purges_stale_directories(uploads_root: Path, virtual_tour_archive: Path) -> None:
    uploads_root.mkdir()
    (uploads_root / "10-abandoned").mkdir()
    store = ArchiveStore(uploads_root, clock=_Clock(1_000))

    workdir_id = store.extract(virtual_tour_archive)

    assert [entry.name for entry in uploads_root.iterdir()] == [workdir_id]


@pytest.mark.parametrize("workdir_id", ["", ".", "..", "a/b", "a\\b"])
def test_path_for_rejects_unsafe_ids(tmp_path: Path, workdir_id: str) -> None:
    with pytest.raises(ValueError):
        ArchiveStore(tmp_path).path_for(workdir_id)


@pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="permissions are not enforced")
def test_unwritable_uploads_root(tmp_path: Path, virtual_tour_archive: Path) -> None:
    uploads_root = tmp_path / "readonly"
    uploads_root.mkdir()
    uploads_root.chmod(0o500)
    try:
        with pytest.raises(ExtractionError) as excinfo:
            ArchiveStore(uploads_root).extract(virtual_tour_archive)
    finally:
        uploads_root.chmod(0o700)

    assert "not writable" in excinfo.value.message


@pytest.mark.parametrize(
    "options",
    [{"flag_bits": 0x1}, {"compress_type": 99}],
    ids=["encrypted", "unsupported-compression"],
)
def test_unreadable_entries_raise_and_clean_up(tmp_path: Path, uploads_root: Path, options) -> None:
    archive = patch_entry_headers(
        write_archive(tmp_path / "locked.h5p", {"h5p.json": virtual_tour_manifest()}), **options
    )
    store = ArchiveStore(uploads_root)

    assert zipfile.is_zipfile(archive)
    with pytest.raises(ExtractionError) as excinfo:
        store.extract(archive)

    assert excinfo.value.message == ExtractionError.default_message
    assert list(uploads_root.iterdir()) == []


def test_failed_sweep_keeps_the_extraction(
    uploads_root: Path, virtual_tour_archive: Path, monkeypatch, caplog
) -> None:
    store = ArchiveStore(uploads_root)

    def _denied(*args, **kwargs):
        raise PermissionError("sweep denied")

    monkeypatch.setattr(store, "purge_stale", _denied)

    with caplog.at_level(logging.WARNING, logger="vt2er.archive_store"):
        workdir_id = store.extract(virtual_tour_archive)

    assert (uploads_root / workdir_id / "h5p.json").is_file()
    assert "Could not purge stale working directories" in caplog.text


def test_unparsable_names_survive_an_immediate_purge(uploads_root: Path) -> None:
    store = ArchiveStore(uploads_root, clock=_Clock(1_000))
    uploads_root.mkdir()
    (uploads_root / "manual").mkdir()
    (uploads_root / "1000-now").mkdir()

    assert store.purge_stale(0) == ["1000-now"]
    assert (uploads_root / "manual").is_dir()


def test_unmodified_documents_pack_to_the_same_files(
    tmp_path: Path, uploads_root: Path, make_archive
) -> None:
    files = virtual_tour_files()
    files["h5p.json"] = json.dumps(files["h5p.json"], indent=4) + "\n"
    files["content/content.json"] = (
        json.dumps(virtual_tour_content() | {"l10n": {"title": "Tïtle"}}, indent=4, ensure_ascii=False)
        + "\n"
    )
    archive = make_archive(files)
    store = ArchiveStore(uploads_root)

    with store.extracted(archive) as workdir_id:
        store.write_manifest(workdir_id, store.read_manifest(workdir_id))
        store.write_content(workdir_id, store.read_content(workdir_id))
        packed = store.pack(workdir_id, "copy", destination=tmp_path)

    with zipfile.ZipFile(archive) as original, zipfile.ZipFile(packed) as repacked:
        before = {name: original.read(name) for name in original.namelist()}
        after = {name: repacked.read(name) for name in repacked.namelist()}
    assert after == before
