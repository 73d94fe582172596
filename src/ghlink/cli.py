#!/usr/bin/env python3
"""ghlink CLI - jump between GitHub links and local checkouts."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Tuple

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"ghlink requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _parse_lines(value: str) -> Tuple[int, Optional[int]]:
    """Parse ``N`` or ``N-M`` (1-based) into a selection tuple."""
    start_text, sep, end_text = value.partition("-")
    try:
        start = int(start_text)
        end = int(end_text) if sep else None
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected N or N-M, got {value!r}")
    if start < 1 or (end is not None and end < 1):
        raise argparse.ArgumentTypeError("line numbers are 1-based")
    return start, end


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ghlink",
        description="Open GitHub source links in a synced local checkout, and generate them",
    )
    sub = ap.add_subparsers(dest="cmd")

    p_open = sub.add_parser("open", help="Clone/sync the repository a GitHub URL points at")
    p_open.add_argument("url", help="GitHub blob/tree URL, optionally with #L10-L20")
    p_open.add_argument("--repos-root", help="Base directory for <owner>/<repo> clones")
    p_open.add_argument("--no-auto-sync", action="store_true", help="Skip the behind-remote check")
    p_open.add_argument("--show-lines", action="store_true", help="Print the linked lines")

    p_link = sub.add_parser("link", help="Generate a GitHub URL for a local file")
    p_link.add_argument("file", help="File inside a git repository with a GitHub remote")
    p_link.add_argument("--lines", type=_parse_lines, help="Line selection: N or N-M")
    p_link.add_argument("--no-auto-sync", action="store_true", help="Skip the behind-remote check")

    # Config commands
    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")

    p_config_init = config_sub.add_parser("init", help="Initialize config file from template")
    p_config_init.add_argument("--user", action="store_true", help="Create user config (~/.ghlink/config.toml)")
    p_config_init.add_argument("--project", action="store_true", help="Create project config (.ghlink/config.toml)")
    p_config_init.add_argument("--force", action="store_true", help="Overwrite existing config")

    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--project-path", help="Project directory for config discovery")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    p_config_validate = config_sub.add_parser("validate", help="Validate configuration files")
    p_config_validate.add_argument("--project-path", help="Project directory for config discovery")
    p_config_validate.add_argument("--strict", action="store_true", help="Treat warnings as errors")

    return ap


def _load_runtime_config(args: argparse.Namespace):
    from . import observability
    from .config_loader import get_config

    config = get_config(Path.cwd())
    updates = {}
    if getattr(args, "repos_root", None):
        updates["repos_root"] = args.repos_root
    if getattr(args, "no_auto_sync", False):
        updates["auto_sync"] = False
    if updates:
        config = config.model_copy(update=updates)
    observability.configure_from(config.logging)
    return config


def _run_open(args: argparse.Namespace) -> None:
    from .flows import open_link
    from .interaction import ConsoleInteraction

    config = _load_runtime_config(args)
    location = open_link(args.url, config=config, interaction=ConsoleInteraction())

    if location.start_line is None:
        print(location.path)
    elif location.end_line is None or location.end_line == location.start_line:
        print(f"{location.path}:{location.start_line}")
    else:
        print(f"{location.path}:{location.start_line}-{location.end_line}")

    if args.show_lines:
        excerpt = location.read_excerpt()
        if excerpt:
            print(excerpt)


def _run_link(args: argparse.Namespace) -> None:
    from .flows import generate_link
    from .interaction import ConsoleInteraction

    config = _load_runtime_config(args)
    link = generate_link(
        args.file,
        selection=args.lines,
        config=config,
        interaction=ConsoleInteraction(),
    )
    print(link)


def _run_config(args: argparse.Namespace) -> None:
    import json as json_module
    import shutil

    if not args.config_cmd:
        print("Usage: ghlink config {init|show|validate}")
        sys.exit(EXIT_OK)

    if args.config_cmd == "init":
        from .config_loader import CONFIG_FILENAME, ensure_config_dir, template_path

        source = template_path()
        if not source.exists():
            print(f"❌ Template not found: {source}", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        # Determine target (default to user config)
        if args.project:
            config_dir = ensure_config_dir(user=False, project_path=Path.cwd())
            location = "project"
        else:
            config_dir = ensure_config_dir(user=True)
            location = "user"
        target_path = config_dir / CONFIG_FILENAME

        if target_path.exists() and not args.force:
            print(f"❌ Config already exists: {target_path}", file=sys.stderr)
            print("Use --force to overwrite.", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        shutil.copy(source, target_path)
        print(f"✅ Created {location} config: {target_path}")
        print("   Edit this file to customize ghlink settings.")
        sys.exit(EXIT_OK)

    if args.config_cmd == "show":
        from .config_loader import ConfigError, get_config_paths, load_config

        project_path = Path(args.project_path) if args.project_path else None

        if args.sources:
            paths = get_config_paths(project_path)
            print("Config sources (in priority order):")
            print()
            for name, path in paths.items():
                if path and path.exists():
                    print(f"  ✓ {name}: {path}")
                elif path:
                    print(f"  ✗ {name}: {path} (not found)")
                else:
                    print(f"  - {name}: (not applicable)")
            print()
            print("Environment variables override all file configs.")
            sys.exit(EXIT_OK)

        try:
            config = load_config(project_path)
        except ConfigError as e:
            print(f"❌ Config error: {e}", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        if args.as_json:
            print(json_module.dumps(config.model_dump(), indent=2))
        else:
            import tomlkit

            doc = tomlkit.document()
            doc.add(tomlkit.comment(" ghlink configuration (resolved)"))
            doc.add(tomlkit.nl())
            for key, value in config.model_dump().items():
                if isinstance(value, dict):
                    table = tomlkit.table()
                    for subkey, subval in value.items():
                        table.add(subkey, subval)
                    doc.add(key, table)
                else:
                    doc.add(key, value)
            print(tomlkit.dumps(doc))
        sys.exit(EXIT_OK)

    if args.config_cmd == "validate":
        from .config_loader import ConfigError, get_config_paths, load_config

        project_path = Path(args.project_path) if args.project_path else None
        paths = get_config_paths(project_path)

        errors = []
        warnings = []

        found_any = False
        for name, path in paths.items():
            if path and path.exists():
                found_any = True
                print(f"  ✓ Found: {path}")

        if not found_any:
            warnings.append("No config files found. Using defaults.")

        try:
            config = load_config(project_path)
            print()
            print("✓ Configuration is valid.")

            if not config.repos_root_path.exists():
                warnings.append(
                    f"repos_root {config.repos_root_path} does not exist yet; it is created on first clone."
                )
            if config.git.timeout < 10:
                warnings.append(f"git.timeout={config.git.timeout}s may be too short for large clones.")
            if not config.auto_sync:
                warnings.append("auto_sync=false: stale checkouts are never offered a pull.")
        except ConfigError as e:
            errors.append(str(e))

        if warnings:
            print()
            print("Warnings:")
            for w in warnings:
                print(f"  ⚠ {w}")

        if errors:
            print()
            print("Errors:", file=sys.stderr)
            for e in errors:
                print(f"  ❌ {e}", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        if args.strict and warnings:
            print()
            print("--strict: Treating warnings as errors.", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        sys.exit(EXIT_OK)


def main(argv: list[str] | None = None) -> None:
    from .config_loader import ConfigError
    from .errors import CancellationError, GhlinkError

    ap = _build_parser()
    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(EXIT_USAGE)

    if args.cmd == "config":
        _run_config(args)
        return

    try:
        if args.cmd == "open":
            _run_open(args)
        elif args.cmd == "link":
            _run_link(args)
    except CancellationError as e:
        print(f"Cancelled: {e}", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)
    except (GhlinkError, ConfigError) as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
