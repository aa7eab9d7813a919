"""
addonhost CLI - addon lifecycle from the shell.

Usage:
    addonhost list                       List installed addons
    addonhost install <name> [--force]   Install runtime/addons/<name>.zip and enable it
    addonhost upload <file.zip>          Install an addon package (left disabled)
    addonhost enable <name> [--force]    Project the addon onto the live tree
    addonhost disable <name> [--force]   Retract the addon from the live tree
    addonhost uninstall <name> [--force] Remove the addon
    addonhost backup <name>              Zip the addon directory
    addonhost conflicts <name>           Show live files that differ from the addon
    addonhost refresh                    Rebuild bundle and registration table
"""

import argparse
import logging
import sys
from pathlib import Path

from addonhost.addons.domain.errors import AddonError, Conflict


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="addonhost", description="Addon overlay manager")
    parser.add_argument("--root", type=Path, help="Live application root (default: $ADDONHOST_ROOT_PATH or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="List installed addons")
    sub.add_parser("refresh", help="Rebuild generated artifacts")

    for cmd in ("install", "uninstall", "enable", "disable"):
        p = sub.add_parser(cmd, help=f"{cmd.capitalize()} an addon")
        p.add_argument("name")
        p.add_argument("-f", "--force", action="store_true", help="Ignore conflicts / status checks")

    p = sub.add_parser("backup", help="Zip an addon directory")
    p.add_argument("name")

    p = sub.add_parser("conflicts", help="Show conflicting live files")
    p.add_argument("name")

    p = sub.add_parser("upload", help="Install from a package file")
    p.add_argument("file", type=Path)

    return parser


def _service(args):
    from addonhost.addons.services.lifecycle import LifecycleService
    from addonhost.config import Settings

    overrides = {"root_path": args.root} if args.root else {}
    return LifecycleService(Settings(**overrides))


def run(args) -> int:
    svc = _service(args)

    if args.command == "list":
        for info in svc.list():
            print(f"{info.name:<24} {info.status.value:<9} {info.version or '-'}")
        return 0

    if args.command == "conflicts":
        for path in svc.conflicts(args.name):
            print(path)
        return 0

    if args.command == "upload":
        with args.file.open("rb") as f:
            result = svc.install_from_upload(args.file.name, f, args.file.stat().st_size)
    elif args.command == "backup":
        result = svc.backup(args.name)
    elif args.command == "refresh":
        result = svc.refresh()
    else:
        op = getattr(svc, args.command)
        result = op(args.name, force=args.force)

    name = result.manifest.name if result.manifest else ""
    print(f"{result.status} {name}".strip())
    if result.backup_path:
        print(f"backup: {result.backup_path}")
    for w in result.warnings:
        print(f"warning: {w}", file=sys.stderr)
    return 0


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        return run(args)
    except Conflict as e:
        print(f"Error: {e}", file=sys.stderr)
        for path in e.conflicts:
            print(f"  {path}", file=sys.stderr)
        return 1
    except AddonError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
