from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

from qmeter.config import default_settings_path, init_settings
from qmeter.logging import configure_logging
from qmeter.output import render_graph, render_table
from qmeter.poller import UsagePoller
from qmeter.runtime import EXIT_NO_ROWS, EXIT_OK, CollectOptions, collect_snapshot, exit_code_for
from qmeter_shared.enums import SourceId
from qmeter_shared.schemas import NormalizedSnapshot
from qmeter_shared.serialization import pretty_json_text

logger = logging.getLogger("qmeter")

_SOURCE_ORDER = {source: index for index, source in enumerate(SourceId)}


def parse_sources(raw: str) -> list[SourceId]:
    value = raw.strip()
    if value == "all":
        return list(SourceId)
    selected: set[SourceId] = set()
    for part in (item.strip() for item in value.split(",")):
        if not part:
            continue
        try:
            selected.add(SourceId(part))
        except ValueError:
            raise argparse.ArgumentTypeError(f"unknown provider: {part}") from None
    if not selected:
        raise argparse.ArgumentTypeError("--providers must include at least one of: claude,codex,all")
    return sorted(selected, key=_SOURCE_ORDER.__getitem__)


def _render(snapshot: NormalizedSnapshot, view: str) -> str:
    return render_graph(snapshot) if view == "graph" else render_table(snapshot)


def cmd_status(args: argparse.Namespace) -> int:
    options = CollectOptions(sources=args.providers, refresh=args.refresh, debug=args.debug)
    result = collect_snapshot(options)

    if args.debug:
        for source_id in options.sources:
            payload = result.debug_by_source.get(source_id)
            if payload:
                print(f"[debug] {source_id.value}: {json.dumps(payload, indent=2)}", file=sys.stderr)

    if args.json:
        print(pretty_json_text(result.snapshot))
    else:
        print(_render(result.snapshot, args.view))
    return exit_code_for(result.snapshot)


def cmd_watch(args: argparse.Namespace) -> int:
    poller = UsagePoller(settings_path=Path(args.settings).expanduser() if args.settings else None)

    if args.once:
        snapshot = poller.refresh(force=args.refresh)
        if snapshot is None:
            return EXIT_NO_ROWS
        print(_render(snapshot, args.view))
        return exit_code_for(snapshot)

    stop_event = threading.Event()

    def _stop(signum: int, frame: object) -> None:
        del frame
        logger.info("received signal %s", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    poller.run(stop_event)
    return EXIT_OK


def cmd_init(args: argparse.Namespace) -> int:
    path = init_settings(Path(args.settings).expanduser() if args.settings else None)
    print(f"settings: {path}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qmeter",
        description="Unified usage and reset status for Claude Code and Codex.",
    )
    parser.add_argument("--verbose", action="store_true", help="debug logging on stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="collect once and print a snapshot")
    status_parser.add_argument("--json", action="store_true", help="print machine-readable JSON")
    status_parser.add_argument("--refresh", action="store_true", help="bypass the cache")
    status_parser.add_argument("--debug", action="store_true", help="print debug diagnostics to stderr")
    status_parser.add_argument("--view", choices=("table", "graph"), default="table")
    status_parser.add_argument(
        "--providers",
        type=parse_sources,
        default=list(SourceId),
        metavar="LIST",
        help="claude,codex or all (default: all)",
    )
    status_parser.set_defaults(func=cmd_status)

    watch_parser = subparsers.add_parser("watch", help="poll periodically and raise usage alerts")
    watch_parser.add_argument("--once", action="store_true", help="run a single refresh and exit")
    watch_parser.add_argument("--refresh", action="store_true", help="bypass the cache (with --once)")
    watch_parser.add_argument("--view", choices=("table", "graph"), default="table")
    watch_parser.add_argument("--settings", type=str, default=None, help=f"default: {default_settings_path()}")
    watch_parser.set_defaults(func=cmd_watch)

    init_parser = subparsers.add_parser("init", help="write default settings if none exist")
    init_parser.add_argument("--settings", type=str, default=None, help=f"default: {default_settings_path()}")
    init_parser.set_defaults(func=cmd_init)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    default_level = logging.INFO if args.command == "watch" else logging.WARNING
    configure_logging(bool(args.verbose), default_level=default_level)
    return int(args.func(args))
