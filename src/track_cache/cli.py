"""
Track Cache CLI - Entry point with IPC support

Runs cache operations in-process, or forwards them to a running
``track-cache serve`` instance with --ipc.
"""

import argparse
import sys
from pathlib import Path
from typing import Any, List, Optional

from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from track_cache import ipc
from track_cache.core.config import Config, load_config
from track_cache.core.console import get_console, print_error, safe_print
from track_cache.core.errors import TrackCacheError
from track_cache.core.output import log, setup_from_config
from track_cache.domain.library.metadata import format_size, get_display_name, get_duration_str
from track_cache.domain.library.models import Track
from track_cache.notifications import CallbackNotifier, DoneEvent, Event, ProgressEvent


def _as_track(track: Any) -> Track:
    """Tracks arrive as Track from the store or as dicts over IPC."""
    return Track.from_row(track) if isinstance(track, dict) else track


def print_tracks(tracks: List[Any]) -> None:
    """Print tracks as a Rich table."""
    table = Table(title=f"{len(tracks)} cached tracks")
    table.add_column("uid", style="track.uid", no_wrap=True)
    table.add_column("Track")
    table.add_column("Album")
    table.add_column("Time", justify="right")
    table.add_column("Format")

    for track in map(_as_track, tracks):
        table.add_row(
            track.uid[:8],
            escape(get_display_name(track)),
            escape(track.album or ""),
            get_duration_str(track),
            track.format or "",
        )

    get_console().print(table)


def print_track(track: Any) -> None:
    """Print every field of one track; artwork is summarized by size."""
    track = _as_track(track)
    safe_print(f"[bold]{escape(get_display_name(track))}[/bold]")
    for key, value in track.to_dict().items():
        if key == "artwork":
            value = format_size(len(value) * 3 / 4) if value else "none"
        text = escape(str(value)) if value is not None else ""
        safe_print(f"[track.field]{key:>14}[/track.field]  {text}")


def run_ipc(
    config: Config, command: str, args: list, timeout: Optional[float] = 5.0
) -> int:
    """
    Send a command to a running track cache server via IPC.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    socket_path = ipc.get_socket_path(config.ipc)
    success, result = ipc.send_command(command, args, socket_path=socket_path, timeout=timeout)
    if not success:
        print_error(result)
        return 1

    if command in ("rebuildCache", "addToCache", "getListCached"):
        print_tracks(result)
    elif command == "getByUid":
        if result is None:
            print_error("Track not found")
            return 1
        print_track(result)
    else:
        safe_print(str(result))
    return 0


def run_ingest(config: Config, paths: List[str], incremental: bool) -> int:
    """Rebuild (or incrementally extend) the cache in-process with a progress bar."""
    from track_cache.context import AppContext
    from track_cache.service import TrackService

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("{task.fields[path]}", style="dim"),
        console=get_console(),
        transient=True,
    ) as progress:
        task = progress.add_task("Scanning", total=None, path="")

        def on_event(event: Event) -> None:
            if isinstance(event, ProgressEvent):
                progress.update(
                    task, completed=event.current, total=event.total, path=Path(event.path).name
                )
            elif isinstance(event, DoneEvent):
                progress.update(task, description="Done")

        ctx = AppContext.create(config, notifier=CallbackNotifier(on_event))
        service = TrackService(ctx)
        if incremental:
            tracks = service.add_to_cache(paths)
        else:
            tracks = service.rebuild_cache(paths)

    report = service.last_report
    verb = "Added" if incremental else "Cached"
    log(f"{verb} {len(tracks)} tracks ({report.inserted} written, {report.skipped} skipped)")
    if report.parse_errors:
        log(f"{len(report.parse_errors)} files had unreadable tags", level="warning")
    if report.hash_errors:
        log(f"{len(report.hash_errors)} files could not be read and were dropped", level="warning")
    if report.batch_errors:
        log(f"{len(report.batch_errors)} batches failed to persist", level="error")
    return 0


def run_local(config: Config, args: argparse.Namespace) -> int:
    """Run a read or ingest command in-process."""
    from track_cache.context import AppContext
    from track_cache.service import TrackService

    if args.subcommand in ("rebuild", "add"):
        return run_ingest(config, args.paths, incremental=args.subcommand == "add")

    service = TrackService(AppContext.create(config))

    if args.subcommand == "list":
        print_tracks(service.get_list_cached())
        return 0

    if args.subcommand == "show":
        track = service.get_by_uid(args.uid)
        if track is None:
            print_error(f"No cached track with uid {args.uid}")
            return 1
        print_track(track)
        return 0

    if args.subcommand == "serve":
        from track_cache.ipc.server import IPCServer

        if not config.ipc.enabled:
            print_error("IPC is disabled in the configuration")
            return 1
        IPCServer(service).serve_forever()
        return 0

    return 1


IPC_COMMANDS = {
    "rebuild": "rebuildCache",
    "add": "addToCache",
    "list": "getListCached",
    "show": "getByUid",
    "status": "status",
    "cancel": "cancel",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="track-cache",
        description="Track Cache - scan audio directories into a persistent track cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to config.toml")
    parser.add_argument(
        "--ipc", action="store_true", help="Send the command to a running `track-cache serve`"
    )
    parser.add_argument("--workers", type=int, help="Parallel extraction workers")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    rebuild_parser = subparsers.add_parser("rebuild", help="Clear the cache and rescan directories")
    rebuild_parser.add_argument("paths", nargs="*", help="Directories (default: library_paths)")

    add_parser = subparsers.add_parser("add", help="Scan directories into the cache without clearing it")
    add_parser.add_argument("paths", nargs="*", help="Directories (default: library_paths)")

    subparsers.add_parser("list", help="List cached tracks")

    show_parser = subparsers.add_parser("show", help="Show one cached track")
    show_parser.add_argument("uid", help="Track uid")

    subparsers.add_parser("serve", help="Serve cache operations over the IPC socket")
    subparsers.add_parser("status", help="Show pipeline status of a running server (IPC)")
    subparsers.add_parser("cancel", help="Cancel a rebuild on a running server (IPC)")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the track-cache command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(1)

    config = load_config(Path(args.config) if args.config else None)
    if args.workers:
        config.ingest.workers = max(1, args.workers)
    if args.verbose:
        config.logging.level = "DEBUG"
        config.logging.console_output = True
    setup_from_config(config.logging)

    if hasattr(args, "paths") and not args.paths:
        args.paths = list(config.library.library_paths)

    try:
        if args.ipc or args.subcommand in ("status", "cancel"):
            ipc_args: list = []
            if args.subcommand in ("rebuild", "add"):
                ipc_args = args.paths
            elif args.subcommand == "show":
                ipc_args = [args.uid]
            timeout = None if args.subcommand in ("rebuild", "add") else 5.0
            sys.exit(run_ipc(config, IPC_COMMANDS[args.subcommand], ipc_args, timeout=timeout))

        sys.exit(run_local(config, args))

    except TrackCacheError as e:
        print_error(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
