from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from .errors import RegistrationError
from .host_manager import HostManager
from .native_host_installer import HostDefinition


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-bridge", description="Manage Agent Bridge native messaging hosts.")
    sub = parser.add_subparsers(dest="command", required=True)

    install = sub.add_parser("install", help="register a host and save its script")
    install.add_argument("host_name")
    install.add_argument("script_path")
    install.add_argument("--interpreter", default=None, help="program used to run the script (e.g. python3)")
    install.add_argument("--description", default="")
    install.add_argument(
        "--origin",
        dest="origins",
        action="append",
        default=[],
        help="extension id or chrome-extension:// origin allowed to connect (repeatable)",
    )

    uninstall = sub.add_parser("uninstall", help="unregister a host and forget its script")
    uninstall.add_argument("host_name")

    status = sub.add_parser("status", help="report whether a host is registered")
    status.add_argument("host_name")

    sub.add_parser("list", help="list saved hosts")
    sub.add_parser("serve", help="run the native messaging broker on stdin/stdout")
    return parser


def _print(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def main(argv: list[str] | None = None, *, manager: HostManager | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "serve":
        from .native_host import main as serve

        serve()
        return 0

    if manager is None:
        try:
            manager = HostManager.default()
        except RegistrationError as exc:
            _print({"success": False, "error": str(exc)})
            return 1

    if args.command == "install":
        definition = HostDefinition(
            host_name=args.host_name,
            script_path=str(Path(args.script_path).expanduser().resolve()),
            description=args.description,
            interpreter=args.interpreter,
            allowed_origins=list(args.origins),
        )
        result = manager.install_host(definition)
        _print(result.to_dict())
        return 0 if result.ok else 1

    if args.command == "uninstall":
        result = manager.uninstall_host(args.host_name)
        _print(result.to_dict())
        return 0 if result.ok else 1

    if args.command == "status":
        installed = manager.host_status(args.host_name)
        _print({"hostName": args.host_name, "installed": installed})
        return 0

    try:
        hosts = manager.list_hosts()
    except (OSError, ValueError) as exc:
        _print({"success": False, "error": f"cannot read host config {manager.store.path}: {exc}"})
        return 1
    _print(hosts)
    return 0


if __name__ == "__main__":
    sys.exit(main())
