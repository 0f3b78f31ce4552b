"""Command-line entry point for the Virtual Tour to Escape Room migration."""

from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping, Sequence, TextIO

from vt2er import (
    ArchiveStore,
    MigrationError,
    MigrationPipeline,
    MigrationSettings,
    find,
    parse_library_string,
    prune_subcomponents,
)
from vt2er.json_paths import LIBRARY_KEY

logger = logging.getLogger("vt2er.cli")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert H5P Virtual Tour packages into Escape Room packages."
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        default="WARNING",
        type=str.upper,
        help="Logging verbosity (default: WARNING).",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    migrate = subcommands.add_parser(
        "migrate", help="Convert a Virtual Tour package into an Escape Room package."
    )
    migrate.add_argument("input", type=Path, help="Path to the .h5p file to convert.")
    migrate.add_argument(
        "--output-dir",
        type=Path,
        help="Directory receiving the converted package (default: next to the input).",
    )
    migrate.add_argument(
        "--uploads-root",
        type=Path,
        help=(
            "Directory used for temporary working copies. "
            "Defaults to VT2ER_UPLOADS_ROOT or ./uploads."
        ),
    )
    migrate.add_argument(
        "--size-limit",
        type=_positive_int,
        help="Reject input files larger than this many bytes.",
    )

    inspect = subcommands.add_parser(
        "inspect", help="Describe the libraries and embedded components of a package."
    )
    inspect.add_argument("input", type=Path, help="Path to the .h5p file to inspect.")
    inspect.add_argument(
        "--uploads-root",
        type=Path,
        help="Directory used for the temporary working copy.",
    )

    serve = subcommands.add_parser("serve", help="Run the upload web service.")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve.add_argument("--port", type=int, default=8000, help="Port to listen on.")
    serve.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change.",
    )
    return parser


def _load_settings(args: argparse.Namespace, stderr: TextIO) -> MigrationSettings | None:
    try:
        settings = MigrationSettings.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=stderr)
        return None

    uploads_root: Path | None = getattr(args, "uploads_root", None)
    if uploads_root is not None:
        settings = replace(settings, uploads_root=uploads_root)
    return settings


def _run_migrate(
    args: argparse.Namespace, settings: MigrationSettings, stdout: TextIO, stderr: TextIO
) -> int:
    source: Path = args.input
    pipeline = MigrationPipeline.from_settings(settings)
    result = pipeline.migrate(
        source if source.is_file() else None, source.name, args.size_limit
    )
    if result.archive_path is None:
        print(result.error, file=stderr)
        return 1

    output_dir: Path = args.output_dir or source.resolve().parent
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        destination = Path(
            shutil.move(str(result.archive_path), output_dir / result.archive_path.name)
        )
    except OSError as exc:
        result.archive_path.unlink(missing_ok=True)
        print(f"Could not write the converted package to '{output_dir}': {exc}", file=stderr)
        return 1

    logger.info("Wrote %s", destination)
    print(destination, file=stdout)
    return 0


def _main_library_version(manifest: Mapping[str, Any]) -> str:
    main_library = manifest.get("mainLibrary")
    dependencies = manifest.get("preloadedDependencies")
    if not isinstance(dependencies, list):
        return "unknown"
    for dependency in dependencies:
        if isinstance(dependency, Mapping) and dependency.get("machineName") == main_library:
            return f"{dependency.get('majorVersion', '?')}.{dependency.get('minorVersion', '?')}"
    return "unknown"


def _run_inspect(
    args: argparse.Namespace, settings: MigrationSettings, stdout: TextIO, stderr: TextIO
) -> int:
    source: Path = args.input
    if not source.is_file():
        print(f"No such file: '{source}'", file=stderr)
        return 1

    store = ArchiveStore(settings.uploads_root, stale_after_seconds=settings.stale_after_seconds)
    try:
        with store.extracted(source) as workdir_id:
            manifest = store.read_manifest(workdir_id)
            content = store.read_content(workdir_id)
            libraries = store.library_directories(workdir_id)
    except MigrationError as exc:
        print(exc.message, file=stderr)
        return 1

    print(f"Title: {manifest.get('title', '')}", file=stdout)
    print(f"Main library: {manifest.get('mainLibrary', 'unknown')}", file=stdout)
    print(f"Version: {_main_library_version(manifest)}", file=stdout)
    print(f"Language: {manifest.get('language', 'und')}", file=stdout)

    print(f"Bundled libraries ({len(libraries)}):", file=stdout)
    for name, metadata in libraries.items():
        print(
            f"  {name} {metadata.get('majorVersion', '?')}.{metadata.get('minorVersion', '?')}",
            file=stdout,
        )

    matches = list(find(content, [(LIBRARY_KEY, r".")]))
    print(f"Embedded components ({len(matches)}):", file=stdout)
    for match in matches:
        library = parse_library_string(str(match.node[LIBRARY_KEY]))
        label = (
            f"{library.machine_name} {library.major_version}.{library.minor_version}"
            if library is not None
            else str(match.node[LIBRARY_KEY])
        )
        params = prune_subcomponents(match.node.get("params", {}))
        print(f"  {match.path}: {label}", file=stdout)
        print(f"    {json.dumps(params, ensure_ascii=False, sort_keys=True)}", file=stdout)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "vt2er.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def main(
    argv: Sequence[str] | None = None,
    *,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Run the command line tool and return its exit status."""

    out = stdout or sys.stdout
    err = stderr or sys.stderr
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        return _run_serve(args)

    settings = _load_settings(args, err)
    if settings is None:
        return 2

    if args.command == "migrate":
        return _run_migrate(args, settings, out, err)
    return _run_inspect(args, settings, out, err)


if __name__ == "__main__":
    raise SystemExit(main())
