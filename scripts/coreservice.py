"""Command-line administration of CoreService users and groups.

This module serves as a CLI wrapper around tridion.core.coreservice services.
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tridion.config.settings import (
    ConnectionType,
    SUPPORTED_VERSIONS,
    load_settings,
    reset_settings,
    settings_file_path,
    update_settings,
)
from tridion.core.coreservice import (
    GroupService,
    UserService,
    get_client,
)
from tridion.core.coreservice.exceptions import CoreServiceError
from scripts import audit

CONNECTION_TYPES = [member.value for member in ConnectionType]

AUDITED_COMMANDS = {
    "new-user": "user_create",
    "enable-user": "user_enable",
    "disable-user": "user_disable",
    "new-group": "group_create",
}


def _emit(result) -> None:
    print(json.dumps(result, indent=2, default=str))


def _add_identity_args(parser: argparse.ArgumentParser) -> None:
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--id", help="TCM URI (tcm:0-<id>-<type>) or numeric id")
    target.add_argument("--name", help="Exact title")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tridion CoreService user and group administration")
    parser.add_argument("--settings-file", default=None, help="Settings JSON (default: ~/.config/tridion-coreservice/settings.json)")
    parser.add_argument("--host", help="Override the configured host name")
    parser.add_argument("--user", help="Override the configured user name")
    parser.add_argument("--connection-type", choices=CONNECTION_TYPES, help="Override the configured connection type")
    parser.add_argument("--version", dest="cs_version", choices=list(SUPPORTED_VERSIONS), help="Override the configured version")
    parser.add_argument("--impersonate", help="User to impersonate for this call")
    parser.add_argument("--operator", default="cli", help="Operator identifier for audit logs (default: cli)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="cmd")

    st = sub.add_parser("settings", help="Show, change or reset persisted connection settings")
    st_sub = st.add_subparsers(dest="settings_cmd")
    st_sub.add_parser("show")
    st_sub.add_parser("reset")
    st_set = st_sub.add_parser("set")
    st_set.add_argument("--host-name")
    st_set.add_argument("--user-name")
    st_set.add_argument("--version", dest="version", choices=list(SUPPORTED_VERSIONS))
    st_set.add_argument("--connection-type", dest="connection_type", choices=CONNECTION_TYPES)
    st_set.add_argument("--timeout", dest="connection_send_timeout", help="Seconds or hh:mm:ss")
    st_set.add_argument("--adfs-url")
    st_set.add_argument("--adfs-relying-party")
    st_set.add_argument("--impersonate-user-name")
    st_set.add_argument("--verify-tls", dest="verify_tls", action="store_true", default=None)
    st_set.add_argument("--no-verify-tls", dest="verify_tls", action="store_false")

    au = sub.add_parser("audit", help="Inspect the local trustee audit trail")
    au_sub = au.add_subparsers(dest="audit_cmd")
    au_sub.add_parser("verify", help="Check every event signature")
    au_hist = au_sub.add_parser("history", help="Show recorded changes")
    au_hist.add_argument("--trustee", help="User or group name")
    au_hist.add_argument("--type", dest="event_type", choices=sorted(set(AUDITED_COMMANDS.values())))

    sub.add_parser("whoami", help="Show the user the connection runs as")
    sub.add_parser("api-version", help="Show the CoreService API version")

    lu = sub.add_parser("list-users")
    lu.add_argument("--name", help="Title pattern (* and ? wildcards)")
    lu.add_argument("--description", help="Description pattern")
    lu.add_argument("--state", choices=["enabled", "disabled"])
    lu.add_argument("--include-predefined", action="store_true")

    gu = sub.add_parser("get-user")
    _add_identity_args(gu)

    nu = sub.add_parser("new-user")
    nu.add_argument("--name", required=True, help="User name, e.g. DOMAIN\\alice")
    nu.add_argument("--description", help="Display name (defaults to the user name)")
    nu.add_argument("--member-of", nargs="*", default=[], help="Group URIs or titles")
    nu.add_argument("--admin", action="store_true", help="Grant system administrator privileges")

    eu = sub.add_parser("enable-user")
    _add_identity_args(eu)

    du = sub.add_parser("disable-user")
    _add_identity_args(du)

    lg = sub.add_parser("list-groups")
    lg.add_argument("--name", help="Title pattern (* and ? wildcards)")
    lg.add_argument("--description", help="Description pattern")

    gg = sub.add_parser("get-group")
    _add_identity_args(gg)

    ng = sub.add_parser("new-group")
    ng.add_argument("--name", required=True)
    ng.add_argument("--description", help="Defaults to the group name")
    ng.add_argument("--scope", nargs="*", default=[], help="Publication URIs the group applies to")
    ng.add_argument("--member-of", nargs="*", default=[], help="Parent group URIs or titles")

    return parser


def _handle_settings(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.settings_cmd == "reset":
        _emit(reset_settings(args.settings_file).to_dict())
    elif args.settings_cmd == "set":
        changes = {
            "host_name": args.host_name,
            "user_name": args.user_name,
            "version": args.version,
            "connection_type": args.connection_type,
            "connection_send_timeout": args.connection_send_timeout,
            "adfs_url": args.adfs_url,
            "adfs_relying_party": args.adfs_relying_party,
            "impersonate_user_name": args.impersonate_user_name,
            "verify_tls": args.verify_tls,
        }
        try:
            updated = update_settings(args.settings_file, **changes)
        except ValueError as e:
            parser.error(str(e))
        print(f"[settings] Saved to {settings_file_path(args.settings_file)}", file=sys.stderr)
        _emit(updated.to_dict())
    else:
        try:
            current = load_settings(args.settings_file)
        except ValueError as e:
            parser.error(str(e))
        _emit(current.to_dict())


def _handle_audit(args: argparse.Namespace) -> None:
    if args.audit_cmd == "verify":
        result = audit.verify_audit_log()
        _emit({"total": result.total, "valid": result.valid, "invalid_lines": result.invalid_lines})
        if not result.ok:
            print(f"[audit] {len(result.invalid_lines)} event(s) failed verification", file=sys.stderr)
            sys.exit(1)
    else:
        _emit(audit.trustee_history(trustee=getattr(args, "trustee", None), event_type=getattr(args, "event_type", None)))


def _run(args: argparse.Namespace, client) -> object:
    users = UserService(client)
    groups = GroupService(client)

    if args.cmd == "whoami":
        return users.get_current_user()
    if args.cmd == "api-version":
        return client.get_api_version()
    if args.cmd == "list-users":
        predicate = None
        if args.state:
            wanted = args.state == "enabled"
            predicate = lambda user: bool(user.get("IsEnabled")) == wanted  # noqa: E731
        return users.list_users(
            name=args.name,
            description=args.description,
            predicate=predicate,
            include_predefined=args.include_predefined,
        )
    if args.cmd == "get-user":
        return users.get_user(id=args.id, name=args.name)
    if args.cmd == "new-user":
        return users.create_user(args.name, description=args.description, member_of=args.member_of, is_admin=args.admin)
    if args.cmd == "enable-user":
        return users.enable_user(id=args.id, name=args.name)
    if args.cmd == "disable-user":
        return users.disable_user(id=args.id, name=args.name)
    if args.cmd == "list-groups":
        return groups.list_groups(name=args.name, description=args.description)
    if args.cmd == "get-group":
        return groups.get_group(id=args.id, name=args.name)
    if args.cmd == "new-group":
        return groups.create_group(args.name, description=args.description, scope=args.scope, member_of=args.member_of)
    raise ValueError(f"Unknown command {args.cmd}")


def _audit(args: argparse.Namespace, host: str, result, error: Exception | None = None) -> None:
    event_type = AUDITED_COMMANDS.get(args.cmd)
    if not event_type:
        return
    trustee = getattr(args, "name", None) or getattr(args, "id", None) or ""
    details: dict = {}
    if error is not None:
        details["error"] = str(error)
    elif isinstance(result, dict):
        details["id"] = result.get("Id")
    if getattr(args, "member_of", None):
        details["member_of"] = list(args.member_of)
    audit.safe_log_trustee_event(
        event_type,
        trustee,
        operator=args.operator,
        host=host,
        details=details,
        success=error is None,
    )


def main(argv: list[str] | None = None) -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.cmd == "settings":
        _handle_settings(parser, args)
        return
    if args.cmd == "audit":
        _handle_audit(args)
        return

    try:
        settings = load_settings(args.settings_file)
        if args.host:
            settings.host_name = args.host
        if args.user:
            settings.user_name = args.user
        if args.connection_type:
            settings.connection_type = args.connection_type
        if args.cs_version:
            settings.version = args.cs_version
        settings.validate()
    except ValueError as e:
        parser.error(str(e))

    try:
        with get_client(settings, impersonate=args.impersonate) as client:
            result = _run(args, client)
    except (CoreServiceError, ValueError) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        _audit(args, settings.host_name, None, error=e)
        sys.exit(1)

    if result is None:
        target = getattr(args, "id", None) or getattr(args, "name", None)
        print(f"[{args.cmd}] '{target}' not found", file=sys.stderr)
        sys.exit(1)

    _audit(args, settings.host_name, result)
    _emit(result)


if __name__ == "__main__":
    main()
