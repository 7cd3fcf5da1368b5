from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from .config import ConfigError, FtpSettings, ensure_password, load_settings
from .errors import FtpReconError
from .listing import DirectoryEntry
from .session import RemoteSession
from .transport import FtpTransport, RemoteTransport

log = logging.getLogger("ftprecon")


def make_transport(settings: FtpSettings) -> RemoteTransport:
    return FtpTransport.from_settings(settings)


def resolve_settings(args: argparse.Namespace) -> FtpSettings:
    if args.config:
        settings = load_settings(args.config)
    elif args.server:
        settings = FtpSettings(server=args.server)
    else:
        raise ConfigError("either --config or --server is required")

    settings = settings.with_overrides(
        server=args.server,
        port=args.port,
        username=args.user,
        password=args.password,
        root=args.root,
        timeout_s=args.timeout_s,
        tls=True if args.tls else None,
        passive=False if args.active else None,
    )
    return ensure_password(settings)


def open_session(args: argparse.Namespace) -> RemoteSession:
    settings = resolve_settings(args)
    return RemoteSession.from_settings(settings, transport=make_transport(settings))


def emit(args: argparse.Namespace, payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2) if args.json else payload)


def _entry(entry: DirectoryEntry) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": entry.name,
        "kind": entry.kind.value,
        "timestamp": entry.timestamp.isoformat(),
        "size": entry.size,
    }
    if entry.clock_offset is not None:
        payload["local_timestamp"] = entry.normalized_timestamp.isoformat()
    return payload


def cmd_ls(args: argparse.Namespace) -> int:
    with open_session(args) as session:
        if args.calibrate:
            session.calibrate_clock(args.path, degrade_on_failure=True)
        listing = session.list_directory(args.path, include_hidden=args.all)

    payload = {
        "path": args.path,
        "directories": [_entry(e) for e in listing.directories],
        "files": [_entry(e) for e in listing.files],
        "unparsed": [e.line for e in listing.errors],
    }
    emit(args, payload)
    return 0


def cmd_exists(args: argparse.Namespace) -> int:
    expected = None if args.expect is None else args.expect == "yes"
    with open_session(args) as session:
        result = session.exists(args.path, expected)

    payload = {
        "path": args.path,
        "state": result.state.value,
        "kind": result.kind.value if result.kind else None,
        "reason": result.reason,
        "retries": result.retries,
        "persisting": result.persisting,
    }
    emit(args, payload)
    if result.present:
        return 0
    return 1 if result.absent else 2


def cmd_mkdir(args: argparse.Namespace) -> int:
    with open_session(args) as session:
        created = session.ensure_tree(args.path)
    emit(args, {"path": args.path, "created": created})
    return 0


def cmd_put(args: argparse.Namespace) -> int:
    with open_session(args) as session:
        session.put_file(args.local, args.remote, overwrite_ok=args.overwrite)
    emit(args, {"local": args.local, "remote": args.remote, "put": True})
    return 0


def cmd_rmtree(args: argparse.Namespace) -> int:
    with open_session(args) as session:
        report = session.remove_tree(args.path)
    emit(args, {"path": args.path, "files": report.files, "directories": report.directories})
    return 0


def cmd_same(args: argparse.Namespace) -> int:
    with open_session(args) as session:
        same = session.is_file_same(args.local, args.remote)
    emit(args, {"local": args.local, "remote": args.remote, "same": same})
    return 0 if same else 1


def cmd_calibrate(args: argparse.Namespace) -> int:
    with open_session(args) as session:
        offset = session.calibrate_clock(
            args.remote_dir,
            local_dir=args.local_dir,
            degrade_on_failure=args.degrade_on_failure,
            force=True,
        )
        degraded = session.clocks.is_degraded(session.server)

    emit(args, {"server": session.server, "offset_s": offset.total_seconds(), "degraded": degraded})
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ftprecon", description="Reconcile local files with a remote FTP directory tree.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--config", help="JSON settings file")
        x.add_argument("--server")
        x.add_argument("--port", type=int)
        x.add_argument("--user")
        x.add_argument("--password")
        x.add_argument("--root", help="remote root; every path is relative to it")
        x.add_argument("--timeout-s", type=float)
        x.add_argument("--tls", action="store_true")
        x.add_argument("--active", action="store_true", help="use active instead of passive mode")
        x.add_argument("--json", action="store_true")

    ls = sub.add_parser("ls", help="list a remote directory")
    add_common(ls)
    ls.add_argument("path", nargs="?", default="")
    ls.add_argument("--all", action="store_true", help="include dot-files")
    ls.add_argument("--calibrate", action="store_true", help="calibrate the remote clock first")
    ls.set_defaults(func=cmd_ls)

    exists = sub.add_parser("exists", help="check whether a remote path exists")
    add_common(exists)
    exists.add_argument("path")
    exists.add_argument("--expect", choices=["yes", "no"], help="wait for this answer")
    exists.set_defaults(func=cmd_exists)

    mkdir = sub.add_parser("mkdir", help="create a remote directory tree")
    add_common(mkdir)
    mkdir.add_argument("path")
    mkdir.set_defaults(func=cmd_mkdir)

    put = sub.add_parser("put", help="upload a file")
    add_common(put)
    put.add_argument("local")
    put.add_argument("remote")
    put.add_argument("--overwrite", action="store_true")
    put.set_defaults(func=cmd_put)

    rmtree = sub.add_parser("rmtree", help="remove a remote directory tree")
    add_common(rmtree)
    rmtree.add_argument("path")
    rmtree.set_defaults(func=cmd_rmtree)

    same = sub.add_parser("same", help="compare a local file with its remote copy by size")
    add_common(same)
    same.add_argument("local")
    same.add_argument("remote")
    same.set_defaults(func=cmd_same)

    calibrate = sub.add_parser("calibrate", help="measure the remote clock offset")
    add_common(calibrate)
    calibrate.add_argument("remote_dir", nargs="?", default="")
    calibrate.add_argument("--local-dir", help="writeable directory for the marker file")
    calibrate.add_argument("--degrade-on-failure", action="store_true")
    calibrate.set_defaults(func=cmd_calibrate)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except FtpReconError as e:
        log.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
