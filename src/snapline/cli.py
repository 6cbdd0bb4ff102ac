#!/usr/bin/env python3
"""snapline CLI - keep one git branch per released version."""
from __future__ import annotations

import argparse
import sys

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"snapline requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def _add_store_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--repo", help="Store repository path (default: store.path, ./versions)")
    p.add_argument("--manifest", help="Manifest JSON file (default: versions.json on main)")
    p.add_argument("--project-path", help="Project directory for config discovery")


def _load(args: argparse.Namespace):
    """Resolve config with CLI overrides applied and logging configured."""
    from pathlib import Path
    from .config_loader import load_config
    from .observability import configure_logging

    project_path = Path(args.project_path) if getattr(args, "project_path", None) else None
    config = load_config(project_path)
    if getattr(args, "repo", None):
        config = config.model_copy(update={"store": config.store.model_copy(update={"path": args.repo})})
    if getattr(args, "manifest", None):
        config = config.model_copy(update={"manifest": config.manifest.model_copy(update={"path": args.manifest})})

    log = config.logging
    configure_logging(
        level=log.level,
        log_dir=log.dir or None,
        max_bytes=log.max_bytes,
        backup_count=log.backup_count,
        disable_file=log.disable_file,
    )
    return config


def _print_outcome(outcome) -> None:
    for rec in outcome.records:
        print(f"  {rec.action:<20} {rec.version}  {rec.commit[:8]}")
    if outcome.insertions:
        print()
        print("Out-of-order insertions:")
        for version in outcome.insertions:
            print(f"  ⚠ {version}")
        if not outcome.rebuilt:
            print("  Later branches still point at the old chain;")
            print("  run with --cascade or `snapline rebuild-tail <version>` to re-link them.")
    if outcome.latest:
        print()
        print(f"versions/latest -> {outcome.latest[:8]}")
    if outcome.mirror_warnings:
        print()
        print("Mirror warnings:")
        for w in outcome.mirror_warnings:
            print(f"  ⚠ {w}")


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="snapline",
        description="Branch-per-release snapshot history of an externally distributed artifact",
    )

    sub = ap.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Reconcile version branches with the manifest")
    _add_store_args(p_run)
    p_run.add_argument("--cascade", action="store_true", default=None,
                       help="Rebuild later branches after an out-of-order insertion")
    p_run.add_argument("--no-fetch-tools", action="store_true",
                       help="Do not download missing tools")
    p_run.add_argument("--json", dest="as_json", action="store_true", help="Print the outcome as JSON")

    p_rebuild = sub.add_parser("rebuild-tail", help="Rebuild every later, greater version after VERSION")
    p_rebuild.add_argument("version", help="Version whose successors are rebuilt (exclusive)")
    _add_store_args(p_rebuild)
    p_rebuild.add_argument("--no-fetch-tools", action="store_true")

    p_status = sub.add_parser("status", help="Show discovered version branches")
    _add_store_args(p_status)
    p_status.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")

    p_tools = sub.add_parser("tools", help="Download the downloader and stripper if missing")
    p_tools.add_argument("--project-path", help="Project directory for config discovery")

    p_reset = sub.add_parser("reset", help="Delete downloads, stripped output and tools")
    p_reset.add_argument("--project-path", help="Project directory for config discovery")

    p_creds = sub.add_parser("credentials", help="Store downloader credentials and GitHub token")
    p_creds.add_argument("--username", help="Downloader account (prompted if omitted)")
    p_creds.add_argument("--github-token", action="store_true", help="Also prompt for a GitHub token")

    # Config commands
    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")

    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--project-path", help="Project directory for config discovery")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    p_config_validate = config_sub.add_parser("validate", help="Validate configuration files")
    p_config_validate.add_argument("--project-path", help="Project directory for config discovery")
    p_config_validate.add_argument("--strict", action="store_true", help="Treat warnings as errors")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(EXIT_OK)

    from .errors import ConfigError, SnaplineError

    if args.cmd in ("run", "rebuild-tail"):
        import json
        from .errors import ReconcileAborted
        from .lock import LockTimeout
        from snapline_git import runner

        try:
            config = _load(args)
            if args.cmd == "run":
                outcome = runner.run(config, cascade=args.cascade, fetch_tools=not args.no_fetch_tools)
            else:
                outcome = runner.rebuild_tail(config, args.version, fetch_tools=not args.no_fetch_tools)
        except ConfigError as e:
            print(f"❌ Config error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG)
        except ReconcileAborted as e:
            print(f"❌ {e}", file=sys.stderr)
            if e.outcome is not None and e.outcome.records:
                print("Completed before the failure:", file=sys.stderr)
                for rec in e.outcome.records:
                    print(f"  {rec.action:<20} {rec.version}  {rec.commit[:8]}", file=sys.stderr)
            sys.exit(EXIT_FAILURE)
        except (SnaplineError, LockTimeout) as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(EXIT_FAILURE)

        if getattr(args, "as_json", False):
            print(json.dumps(outcome.to_dict(), indent=2))
        else:
            print(f"✅ {outcome.commits_created} commit(s) created")
            _print_outcome(outcome)
        sys.exit(EXIT_OK)

    if args.cmd == "status":
        import json
        from snapline_git import runner

        try:
            config = _load(args)
            summary = runner.status(config)
        except ConfigError as e:
            print(f"❌ Config error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG)
        except SnaplineError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(EXIT_FAILURE)

        if args.as_json:
            print(json.dumps(summary, indent=2))
            sys.exit(EXIT_OK)

        print(f"Store:   {summary['store']}")
        print(f"Remote:  {summary['remote'] or '(none)'}")
        print(f"Latest:  {(summary['latest'] or '(none)')[:8]}")
        print()
        print(f"Local version branches ({len(summary['local'])}):")
        for version, commit in summary["local"].items():
            print(f"  ✓ {version}  {commit[:8]}")
        if summary["remote_only"]:
            print("Remote only:")
            for version in summary["remote_only"]:
                print(f"  ↓ {version}")
        if summary["missing"]:
            print("Missing (will be built):")
            for version in summary["missing"]:
                print(f"  ✗ {version}")
        if summary["manifest_error"]:
            print()
            print(f"⚠ {summary['manifest_error']}")
        sys.exit(EXIT_OK)

    if args.cmd == "tools":
        from .credentials import get_github_token
        from .tools import ensure_tools

        try:
            config = _load(args)
            paths = ensure_tools(config, get_github_token())
        except ConfigError as e:
            print(f"❌ Config error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG)
        except SnaplineError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(EXIT_FAILURE)
        print(f"✓ downloader: {paths.downloader}")
        if paths.stripper is not None:
            print(f"✓ stripper:   {paths.stripper}")
        sys.exit(EXIT_OK)

    if args.cmd == "reset":
        from .tools import reset_workspace

        try:
            config = _load(args)
        except ConfigError as e:
            print(f"❌ Config error: {e}", file=sys.stderr)
            sys.exit(EXIT_CONFIG)
        removed = reset_workspace(config)
        if not removed:
            print("Nothing to remove.")
        for path in removed:
            print(f"✓ Removed {path}")
        sys.exit(EXIT_OK)

    if args.cmd == "credentials":
        import getpass
        from .credentials import load_credentials, save_credentials, FetchCredentials, GitHubCredentials

        creds = load_credentials(skip_env=True)
        username = args.username or input(f"Downloader username [{creds.fetch.username}]: ").strip()
        password = getpass.getpass("Downloader password (empty = keep): ")
        update = {
            "fetch": FetchCredentials(
                username=username or creds.fetch.username,
                password=password or creds.fetch.password,
            )
        }
        if args.github_token:
            token = getpass.getpass("GitHub token (empty = keep): ")
            update["github"] = GitHubCredentials(token=token or creds.github.token)
        path = save_credentials(creds.model_copy(update=update))
        print(f"✅ Saved credentials to {path}")
        sys.exit(EXIT_OK)

    if args.cmd == "config":
        from pathlib import Path
        import json as json_module

        if not args.config_cmd:
            print("Usage: snapline config {show|validate}")
            sys.exit(EXIT_OK)

        if args.config_cmd == "show":
            from .config_loader import load_config, get_config_paths

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
                print("Environment variables (SNAPLINE_*) override all file configs.")
                sys.exit(EXIT_OK)

            try:
                config = load_config(project_path)
            except ConfigError as e:
                print(f"❌ Config error: {e}", file=sys.stderr)
                sys.exit(EXIT_CONFIG)

            if args.as_json:
                print(json_module.dumps(config.model_dump(), indent=2))
            else:
                import tomlkit

                doc = tomlkit.document()
                doc.add(tomlkit.comment(" snapline configuration (resolved)"))
                doc.add(tomlkit.nl())
                for section, values in config.model_dump().items():
                    if isinstance(values, dict):
                        table = tomlkit.table()
                        for key, val in values.items():
                            # TOML has no null
                            if val is not None:
                                table.add(key, val)
                        doc.add(section, table)
                    else:
                        doc.add(section, values)
                print(tomlkit.dumps(doc))

            sys.exit(EXIT_OK)

        if args.config_cmd == "validate":
            from .config_loader import load_config, get_config_paths
            from .fs import is_within

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

                store_path = Path(config.store.path).expanduser()
                for name, path in config.work_dirs().items():
                    if is_within(path, store_path):
                        errors.append(f"{name} directory {path} is inside the store {store_path}.")

                if not config.transform.enabled:
                    warnings.append("transform.enabled=false: raw downloads are committed unmodified.")

                if config.sync.divergence_policy == "prefer_remote":
                    warnings.append("divergence_policy=prefer_remote: diverged local branches are discarded.")

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
                sys.exit(EXIT_CONFIG)

            if args.strict and warnings:
                print()
                print("❌ Validation failed (strict mode, warnings present).", file=sys.stderr)
                sys.exit(EXIT_CONFIG)

            sys.exit(EXIT_OK)

    ap.print_help()
    sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
