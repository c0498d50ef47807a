#!/usr/bin/env python3
"""
Command-line interface for the verdict ledger.

Examples:
  viphash mark wp-content/plugins/foo/foo.php alice good
  viphash status wp-content/plugins/foo
  viphash remote add origin https://example.com s3cr3t-token --check
  viphash remote list
  viphash sync origin
"""

import argparse
import json
import logging
import sqlite3
import sys

from .core import config
from .core.channel import HttpChannel, SyncError
from .core.hasher import ContentHasher, EmptyContentError
from .core.records import open_record_store
from .core.remotes import DuplicateNameError, SqliteRemoteRegistry
from .core.schema import SaveOutcome, Verdict
from .core.status import StatusReporter
from .core.sync import ReplicationEngine, UnknownRemoteError
from .util.logging import logger


def _error(kind: str, message) -> int:
    print(f"ERROR: {kind}: {message}", file=sys.stderr)
    return 1


def _channel(settings: config.Settings) -> HttpChannel:
    return HttpChannel(verify_tls=settings.verify_tls, default_timeout=settings.request_timeout)


def cmd_mark(args, settings: config.Settings) -> int:
    try:
        verdict = Verdict.parse(args.status)
    except ValueError as e:
        return _error("ValueError", e)

    try:
        address = ContentHasher().hash_file(args.file)
    except EmptyContentError as e:
        return _error("EmptyContentError", e)
    except OSError as e:
        return _error("OSError", e)

    store = open_record_store(settings)
    outcome = store.save(address, args.username, verdict)
    if outcome == SaveOutcome.ALREADY_EXISTS:
        existing = store.get_by_reviewer(address, args.username)
        print(f"{args.username} already marked {address} as {existing.verdict.value}; records are never changed")
        return 0

    print(f"Marked {args.file} ({address}) as {verdict.value} for {args.username}")
    return 0


def cmd_hash(args, settings: config.Settings) -> int:
    try:
        print(ContentHasher().hash_file(args.file))
    except EmptyContentError as e:
        return _error("EmptyContentError", e)
    except OSError as e:
        return _error("OSError", e)
    return 0


def cmd_status(args, settings: config.Settings) -> int:
    reporter = StatusReporter(open_record_store(settings))
    report = reporter.report(args.folder or ".")
    for _, line in report.lines:
        print(line)
    print(report.summary())
    return 0


def cmd_remote(args, settings: config.Settings) -> int:
    registry = SqliteRemoteRegistry(settings.db_path)

    if args.subcommand == "list":
        remotes = []
        for remote in registry.list():
            remotes.append({
                "name": remote.name,
                "uri": remote.endpoint_uri,
                "latest_seen": remote.latest_seen,
                "last_sent": remote.last_sent,
            })
        print(json.dumps(remotes, indent=4))
        return 0

    if not args.name:
        return _error("ValueError", f"remote {args.subcommand} needs a name")

    if args.subcommand == "rm":
        if not registry.remove(args.name):
            return _error("NotFound", f"no remote named '{args.name}'")
        print(f"Removed remote {args.name}")
        return 0

    # add
    if not args.uri:
        return _error("ValueError", "remote add needs a uri")

    auth = {}
    if args.token:
        auth["token"] = args.token
    else:
        print("Warning: no token passed, you may receive a 401 error")

    if args.check:
        channel = _channel(settings)
        try:
            endpoint = channel.discover(args.uri, timeout=settings.request_timeout)
            print(f"Success! Found an API at {endpoint}")
            channel.authenticate(endpoint, auth, timeout=settings.request_timeout)
            print("Authentication succeeded")
        except SyncError as e:
            return _error(type(e).__name__, e)

    last_sent = 0.0
    if args.skip_existing:
        last_sent = open_record_store(settings).newest_timestamp() or 0.0

    try:
        registry.add(args.name, args.uri, auth, last_sent=last_sent)
    except DuplicateNameError as e:
        return _error("DuplicateNameError", e)
    except ValueError as e:
        return _error("ValueError", e)

    print(f"Added remote {args.name} ({args.uri})")
    return 0


def cmd_sync(args, settings: config.Settings) -> int:
    engine = ReplicationEngine(
        store=open_record_store(settings),
        registry=SqliteRemoteRegistry(settings.db_path),
        channel=_channel(settings),
        timeout=settings.sync_timeout
    )

    if args.name:
        try:
            results = [engine.sync(args.name)]
        except UnknownRemoteError as e:
            return _error("NotFound", e)
        except SyncError as e:
            return _error(type(e).__name__, e)
    else:
        results = engine.sync_all()
        if not results:
            print("No remotes registered")

    failed = 0
    for result in results:
        if result.ok:
            print(f"{result.remote}: sent {result.sent}, received {result.received} "
                  f"({result.created} new, {result.duplicates} already known)")
        else:
            failed += 1
            print(f"{result.remote}: FAILED {result.error}")
    return 1 if failed else 0


def cmd_serve(args, settings: config.Settings) -> int:
    import uvicorn
    from .api.main import create_app

    if not settings.api_tokens:
        print("Warning: VIPHASH_API_TOKENS is empty, every authenticated request will be rejected")
    uvicorn.run(create_app(settings), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="viphash",
        description="Record and share good/bad review verdicts for source files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
- VIPHASH_HOME=~/.viphash (ledger location)
- VIPHASH_STORE_BACKEND=sqlite (sqlite or file)
- VIPHASH_SYNC_TIMEOUT_SEC=60
- VIPHASH_API_TOKENS=... (tokens accepted by 'viphash serve')
        """
    )
    parser.add_argument("--home", help="Ledger directory (overrides VIPHASH_HOME)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show operation logs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    mark = subparsers.add_parser("mark", help="take a file and mark it as good or bad")
    mark.add_argument("file", help="The file to be hashed")
    mark.add_argument("username", help="The reviewer's username")
    mark.add_argument("status", help='"good" or "bad"')
    mark.set_defaults(func=cmd_mark)

    hash_cmd = subparsers.add_parser("hash", help="print a file's content address")
    hash_cmd.add_argument("file")
    hash_cmd.set_defaults(func=cmd_hash)

    status = subparsers.add_parser("status", help="report good, bad and unknown files under a folder")
    status.add_argument("folder", nargs="?", help="Folder or file to report on (default: .)")
    status.set_defaults(func=cmd_status)

    remote = subparsers.add_parser("remote", help="manage remote ledgers (add, list or rm)")
    remote.add_argument("subcommand", choices=["add", "list", "rm"])
    remote.add_argument("name", nargs="?", help="the name of the remote")
    remote.add_argument("uri", nargs="?", help="the base uri of the remote")
    remote.add_argument("token", nargs="?", help="an API token for the remote")
    remote.add_argument("--check", action="store_true", help="discover and authenticate before saving")
    remote.add_argument("--skip-existing", action="store_true",
                        help="do not push records that already exist locally to this remote")
    remote.set_defaults(func=cmd_remote)

    sync = subparsers.add_parser("sync", help="push and pull records with one or all remotes")
    sync.add_argument("name", nargs="?", help="remote to sync (default: all)")
    sync.set_defaults(func=cmd_sync)

    serve = subparsers.add_parser("serve", help="serve this ledger to peers")
    serve.add_argument("--host", default=config.API_HOST)
    serve.add_argument("--port", type=int, default=config.API_PORT)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger.set_level(logging.INFO if args.verbose else logging.WARNING)

    settings = config.load_settings(args.home)
    issues = config.validate_config(settings)
    if issues:
        for issue in issues:
            print(f"ERROR: config: {issue}", file=sys.stderr)
        return 1
    settings.ensure_home()

    try:
        return args.func(args, settings)
    except (OSError, sqlite3.Error, ValueError) as e:
        return _error(type(e).__name__, e)


if __name__ == "__main__":
    sys.exit(main())
