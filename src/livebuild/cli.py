"""livebuild CLI: one-shot builds, validation and the watch loop."""

from __future__ import annotations

import argparse
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Optional


def _settings_from_args(args):
    from .settings import Settings

    overrides = {}
    if args.config is not None:
        overrides["config_path"] = Path(args.config)
    if args.schema is not None:
        overrides["schema_path"] = Path(args.schema)
    if args.generated_dir is not None:
        overrides["generated_dir"] = Path(args.generated_dir)
    if args.database is not None:
        overrides["database_path"] = Path(args.database)
    if args.debounce_ms is not None:
        overrides["debounce_ms"] = args.debounce_ms
    if args.max_workers is not None:
        overrides["max_workers"] = args.max_workers
    if args.no_cache:
        overrides["fingerprint_cache_path"] = None
    overrides["log_level"] = args.log_level
    overrides["log_format"] = args.log_format
    return Settings(**overrides)


def _print_report(report, header: str, quiet: bool) -> None:
    if quiet:
        return
    if report.ok:
        print(f"[OK] {header}")
    else:
        print(f"[FAILED] {header}")
    if report.error:
        print(f"  Error: {report.error}")
    if report.rebuilt:
        print(f"  Rebuilt: {', '.join(k.value for k in report.rebuilt)}")
    for kind, failure in sorted(report.failures.items(), key=lambda item: item[0].value):
        location = f" ({failure.input_path})" if failure.input_path else ""
        print(f"  {kind.value}: {failure.code.value} in {failure.step}{location}: {failure.message}")
    for effect, message in sorted(report.effect_failures.items()):
        print(f"  effect {effect}: {message}")


def main(argv: Optional[list] = None):
    """Main CLI entry point for livebuild commands."""
    try:
        livebuild_version = get_version("livebuild")
    except PackageNotFoundError:
        livebuild_version = "dev"

    parser = argparse.ArgumentParser(
        prog="livebuild",
        description="livebuild: incremental regeneration of schema-derived artifacts"
    )
    parser.add_argument("--version", action="version", version=f"livebuild {livebuild_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument("--config", help="Path to the project config file (JSON)")
    parent_parser.add_argument("--schema", help="Path to the GraphQL schema file")
    parent_parser.add_argument("--root", help="Directory relative paths are resolved against (default: cwd)")
    parent_parser.add_argument("--generated-dir", help="Output directory for generated files")
    parent_parser.add_argument("--database", help="Path to the SQLite database")
    parent_parser.add_argument("--max-workers", type=int, help="Concurrent derivations per level")
    parent_parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Do not read or write the fingerprint cache."
    )
    parent_parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parent_parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        default="console",
        help="Log output format (default: console)"
    )
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    build_parser = subparsers.add_parser(
        "build",
        help="Build every artifact once and exit",
        parents=[parent_parser]
    )
    build_parser.set_defaults(debounce_ms=None)

    dev_parser = subparsers.add_parser(
        "dev",
        help="Build, then regenerate on config and schema changes until interrupted",
        parents=[parent_parser]
    )
    dev_parser.add_argument(
        "--debounce-ms",
        type=int,
        default=None,
        help="Quiet period before a change is processed (default: 300)"
    )

    check_parser = subparsers.add_parser(
        "check",
        help="Validate config and schema without writing any files",
        parents=[parent_parser]
    )
    check_parser.set_defaults(debounce_ms=None)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from ._internal.logging import setup_logging

    try:
        settings = _settings_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(level="WARNING" if args.quiet else settings.log_level, format=settings.log_format)
    root = Path(args.root).resolve() if args.root else None

    if args.command == "build":
        from .api import DevSession

        session = DevSession(settings, root=root)
        try:
            report = session.build()
        except Exception as e:
            print(f"Unexpected error: {e}", file=sys.stderr)
            import traceback
            traceback.print_exc()
            sys.exit(1)
        finally:
            session.stop()
        _print_report(report, "Build complete", args.quiet)
        if not args.quiet and report.ok:
            print(f"  Generated: {session.settings.generated_dir}")
        if not report.ok:
            sys.exit(1)
    elif args.command == "dev":
        from .api import DevSession

        session = DevSession(settings, root=root)
        try:
            if not args.quiet:
                print(f"[OK] Watching {session.settings.config_path} and {session.settings.schema_path}")
            session.run_forever()
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "check":
        from .api import check

        try:
            report = check(settings, root=root)
        except Exception as e:
            print(f"Unexpected error: {e}", file=sys.stderr)
            sys.exit(1)
        _print_report(report, "Check passed" if report.ok else "Check failed", args.quiet)
        if not report.ok:
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
