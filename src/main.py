"""
ZipRelay - Main Entry Point

Usage:
    # API server (SSE progress, signed uploads, /process)
    python src/main.py serve
    python src/main.py serve --port 8080 --reload

    # Extract archives already in the bucket, printing progress
    python src/main.py process uploads/abc/photos.zip uploads/abc/scans.zip

    # Reuse a session id (e.g. one a browser is already watching)
    python src/main.py process uploads/abc/photos.zip --session-id abc
"""
import sys
import asyncio
import argparse
from typing import Optional

from config import Config


BANNER = """
╔══════════════════════════════════════════════════════════════╗
║           ZIPRELAY                                           ║
║                                                              ║
║   Stream-extracts stored ZIP archives back into storage.     ║
║                                                              ║
║   Press Ctrl+C to stop.                                      ║
╚══════════════════════════════════════════════════════════════╝
"""


# ─────────────────────────────────────────────────────────────
# Event Printing
# ─────────────────────────────────────────────────────────────

def format_event(event) -> str:
    """One console line per session event."""
    if event.type == "progress":
        line = (
            f"  📦 {event.zip_id}: {event.progress:3d}% "
            f"({event.uploaded}/{event.total_files} uploaded, {event.failed} failed)"
        )
        if event.file:
            mark = "✓" if event.status == "success" else "✗"
            line += f"  {mark} {event.file}"
        return line

    if event.type == "completed":
        summary = event.summary
        lines = [
            "",
            "=" * 60,
            f"✅ COMPLETED: {summary.archive_count} archives, "
            f"{summary.files_processed} files, {summary.files_failed} failed "
            f"in {summary.elapsed_ms} ms",
            "=" * 60,
        ]
        for archive_id, result in event.results.items():
            lines.append(f"  {archive_id}: {result.uploaded}/{result.total} uploaded")
            for entry in result.files:
                if entry.status == "failed":
                    lines.append(f"     ✗ {entry.name}: {entry.error}")
        return "\n".join(lines)

    where = f" ({event.zip_id})" if event.zip_id else ""
    return f"\n❌ ERROR{where}: {event.message}"


# ─────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────

async def run_process(objects: list[str], session_id: Optional[str] = None) -> int:
    """
    Run one processing request from the terminal.

    Returns:
        Process exit code (0 when the run completed)
    """
    from orchestrator import EventSink, SessionRegistry, UploadCoordinator
    from tools.storage import SupabaseStorage

    storage = SupabaseStorage.from_config()
    registry = SessionRegistry()
    coordinator = UploadCoordinator(registry, storage)

    session = registry.create(session_id)
    sink = EventSink()
    registry.attach(session.id, sink)

    print(f"📋 Session: {session.id}")
    run = coordinator.launch(session.id, objects)

    exit_code = 1
    try:
        while True:
            event = await sink.get()
            if event is None:
                break
            print(format_event(event), flush=True)
            if event.type in ("completed", "error"):
                exit_code = 0 if event.type == "completed" else 1
                break
        await run
    finally:
        await coordinator.shutdown()
        await registry.close()
        await storage.aclose()

    return exit_code


def run_server(host: str, port: int, reload: bool = False) -> None:
    import uvicorn

    print(BANNER)
    uvicorn.run("backend.server:app", host=host, port=port, reload=reload)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Stream-extract ZIP archives from object storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=Config.HOST)
    serve.add_argument("--port", type=int, default=Config.PORT)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    process = commands.add_parser("process", help="Extract archives and print progress")
    process.add_argument("objects", nargs="+", help="Archive object names in the bucket")
    process.add_argument("--session-id", default=None, help="Session id to report under")

    args = parser.parse_args(argv)

    if args.command == "serve":
        run_server(args.host, args.port, reload=args.reload)
        return 0

    print(BANNER)
    try:
        return asyncio.run(run_process(args.objects, session_id=args.session_id))
    except KeyboardInterrupt:
        print("\n\n🛑 Interrupted. Relays still in flight were abandoned.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
