"""CLI entrypoint for dev-vault."""
import sys
import os
import json
import argparse
import logging
from pathlib import Path

from dev_vault import __version__
from dev_vault.secrets.domains import config_loader, preferences
from dev_vault.secrets.domains.errors import DestinationExistsError, DevVaultError, SyncError, UsageError
from dev_vault.secrets.domains.gcp_client import GCPSecretAPI, use_service_account
from dev_vault.secrets.domains.manifest import DEFAULT_MANIFEST_NAME, load_manifest
from dev_vault.secrets.domains.models import MODE_PULL, MODE_PUSH, ListQuery, ProjectScope, PushOptions
from dev_vault.secrets.domains.secret_api import ScopedSecretAPI
from dev_vault.secrets.workflows.sync_service import SyncService

from .validators import validate_name_regex, validate_secret_type

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)

# Factory for the store client; tests replace it with an in-memory fake.
open_secret_api = GCPSecretAPI


def build_service(args) -> SyncService:
    """Load the manifest and credentials and wire a SyncService for this invocation."""
    loaded = load_manifest(os.getcwd(), args.config)
    for warning in loaded.warnings:
        print(f"warning: {warning}", file=sys.stderr)

    user_config = config_loader.load_user_config()
    use_service_account(config_loader.resolve_credentials_path(loaded.credentials, user_config))
    project_id = config_loader.resolve_project_id(loaded.project_id)

    api = ScopedSecretAPI(open_secret_api(), ProjectScope(region=loaded.region, project_id=project_id))
    return SyncService.from_manifest(loaded, api, project_id=project_id)


def _print_table(records) -> None:
    rows = [("NAME", "TYPE", "PATH", "ID")]
    rows.extend((r.name, r.type, r.path, r.id) for r in records)
    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    for row in rows:
        cells = [row[i].ljust(widths[i] + 2) for i in range(3)]
        print("".join(cells) + row[3])


def cmd_version(args):
    """Show version information."""
    print(f"dev-vault {__version__}")


def cmd_list(args):
    """List -dev secrets in the store."""
    name_regex = validate_name_regex(args.name_regex)
    validate_secret_type(args.type)

    service = build_service(args)
    records = service.list(ListQuery(
        name_contains=args.name_contains or [],
        name_regex=name_regex,
        path=args.path or "",
        type=args.type or "",
    ))

    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
    else:
        _print_table(records)


def cmd_pull(args):
    """Pull mapped secrets into local files."""
    service = build_service(args)
    targets = service.select_targets(args.all, args.names, MODE_PULL)
    results = service.pull(targets, overwrite=args.overwrite)
    for item in results:
        print(f"pulled {item.name} -> {item.file} (rev={item.revision})")


def cmd_push(args):
    """Push local files as new secret versions."""
    service = build_service(args)
    targets = service.select_targets(args.all, args.names, MODE_PUSH)
    if len(targets) > 1 and not args.yes:
        raise UsageError("refusing to push multiple secrets without --yes")

    results = service.push(targets, PushOptions(
        description=args.description or "",
        disable_previous=args.disable_previous,
        create_missing=args.create_missing,
    ))
    for item in results:
        print(f"pushed {item.name} (rev={item.revision})")


def cmd_config_set_path(args):
    """Set user config file path preference."""
    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    preferences.set_preference(config_loader.CONFIG_PATH_PREFERENCE, str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show current user config file path."""
    config_path_pref = preferences.get_preference(config_loader.CONFIG_PATH_PREFERENCE)

    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            print(f"Config path: {config_path}")
        else:
            print(f"Config path (from preference, but file not found): {config_path}")
        print("Source: preference")
        return

    default_config = config_loader.default_config_path()
    print(f"Config path: {default_config}")
    if default_config.exists():
        print("Source: default")
    else:
        print("Source: default (file not found, using application default credentials)")


def cmd_config_clear(args):
    """Clear config path preference."""
    preferences.clear_preference(config_loader.CONFIG_PATH_PREFERENCE)
    print(f"Config path preference cleared. Will use default: {config_loader.default_config_path()}")


def _global_options(suppress: bool) -> argparse.ArgumentParser:
    # Subcommands repeat the global options so they can follow the command name.
    default = argparse.SUPPRESS if suppress else None
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--config",
        default=default,
        help=f"Path to {DEFAULT_MANIFEST_NAME} (default: search upward from the current directory)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=argparse.SUPPRESS if suppress else 0,
        help="Log progress to stderr (-v info, -vv debug). Secret payloads are never logged."
    )
    return parser


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dev-vault",
        parents=[_global_options(suppress=False)],
        description="Pull/push *-dev secrets between GCP Secret Manager and local files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Hard safety constraints:
  - Refuses to operate on secret names that do not end with '-dev'.
  - Never prints secret payloads.
  - Pull writes files atomically with mode 0600.

Batch behavior:
  - mapping.mode defaults to both; 'sync' is accepted as a legacy alias.
  - pull --all selects entries with mode pull|both, push --all push|both.
  - Explicit names are still rejected when their mode disallows the direction.
  - A batch stops at the first failing secret; earlier secrets stay
    pulled/pushed (nothing is rolled back).

Exit codes:
  0 - Success
  1 - Runtime error (authentication, network, secret not found, etc.)
  2 - Usage error (invalid arguments, invalid selection, etc.)

Environment variables:
  GCP_PROJECT - GCP project ID (overrides the manifest project_id)
        """
    )
    common = _global_options(suppress=True)
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "version",
        parents=[common],
        help="Show version information",
        description="Display the current version of dev-vault"
    )

    list_parser = subparsers.add_parser(
        "list",
        parents=[common],
        help="List -dev secrets",
        description="List secrets whose names end with -dev. Payloads are never read."
    )
    list_parser.add_argument("--name-contains", action="append", metavar="S",
                             help="Substring filter (repeatable, all must match)")
    list_parser.add_argument("--name-regex", default="", metavar="RE",
                             help="Python regular expression searched in secret names")
    list_parser.add_argument("--path", default="", help="Exact secret path to filter")
    list_parser.add_argument("--type", default="", help="Secret type filter")
    list_parser.add_argument("--json", action="store_true", help="Output JSON")

    pull_parser = subparsers.add_parser(
        "pull",
        parents=[common],
        help="Pull secrets to local files",
        description="Write the latest enabled version of each selected secret to its mapped file."
    )
    pull_parser.add_argument("names", nargs="*", metavar="NAME", help="Secret names from the manifest")
    pull_parser.add_argument("--all", action="store_true",
                             help="Pull all mapping entries with mode pull|both")
    pull_parser.add_argument("--overwrite", action="store_true", help="Overwrite existing files")

    push_parser = subparsers.add_parser(
        "push",
        parents=[common],
        help="Push local files as new secret versions",
        description="Upload each selected mapped file as a new version of its secret."
    )
    push_parser.add_argument("names", nargs="*", metavar="NAME", help="Secret names from the manifest")
    push_parser.add_argument("--all", action="store_true",
                             help="Push all mapping entries with mode push|both")
    push_parser.add_argument("--yes", action="store_true",
                             help="Confirm batch push (required when pushing more than one secret)")
    push_parser.add_argument("--disable-previous", action="store_true",
                             help="Disable the previous enabled version after creating the new one")
    push_parser.add_argument("--description", default="",
                             help="Description for the new version (default: timestamp and hostname)")
    push_parser.add_argument("--create-missing", action="store_true",
                             help="Create missing secrets (requires mapping.type)")

    config_parser = subparsers.add_parser(
        "config",
        help="User configuration management",
        description="Manage the user config file holding service account credentials"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="Store the absolute path to your config file in ~/.config/dev-vault/preferences.json"
    )
    config_set_path_parser.add_argument("path", help="Path to config file")
    config_subparsers.add_parser("show", help="Show current config path")
    config_subparsers.add_parser("clear", help="Clear config path preference")
    config_parser.set_defaults(print_config_help=config_parser.print_help)

    return parser


def _report(err: Exception) -> None:
    print(str(err), file=sys.stderr)
    if isinstance(err, SyncError) and isinstance(err.cause, DestinationExistsError):
        print("  (use --overwrite to replace existing files)", file=sys.stderr)


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (authentication, network, secret not found, etc.)
        2 - Usage errors (invalid arguments, invalid selection, etc.)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG if args.verbose > 1 else logging.INFO)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    handlers = {
        "version": cmd_version,
        "list": cmd_list,
        "pull": cmd_pull,
        "push": cmd_push,
    }
    config_handlers = {
        "set-path": cmd_config_set_path,
        "show": cmd_config_show,
        "clear": cmd_config_clear,
    }

    try:
        if args.command == "config":
            handler = config_handlers.get(args.config_command)
            if handler is None:
                args.print_config_help()
                sys.exit(2)
            handler(args)
        else:
            handlers[args.command](args)
    except UsageError as e:
        _report(e)
        sys.exit(2)
    except DevVaultError as e:
        _report(e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
