"""
CLI for the store sync engine.
Run a sync batch, check the store connection, or start the API server.
"""

import sys
import argparse
from pathlib import Path

# Add project to path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

EXIT_OK = 0
EXIT_FAILURE = 1


def _init():
    from storesync.core.config import get_config
    from storesync.core.logging import setup_logging

    config = get_config()
    setup_logging(config.log_path, config.get('general', 'log_level', default='INFO'))
    return config


def cmd_sync(args) -> int:
    """Run one full sync batch."""
    from storesync.sync.orchestrator import build_orchestrator

    config = _init()
    orchestrator = build_orchestrator(config)

    print("[SYNC] Starting store sync (categories -> products -> orders -> inventory)...")
    report = orchestrator.run()

    for phase in report.phases:
        print(f"   {phase.summary()}")
        if phase.error:
            print(f"      error: {phase.error}")

    if report.success:
        print("\n[OK] Sync complete!")
        return EXIT_OK

    print("\n[ERROR] Sync finished with failed phases.")
    return EXIT_FAILURE


def cmd_check_connection(args) -> int:
    """Verify store credentials."""
    from storesync.platform.client import PlatformClient

    config = _init()
    client = PlatformClient.from_settings(config.platform_settings())

    print(f"[CHECK] Connecting to {client.endpoint}...")
    info = client.check_connection()
    print(f"[OK] Connected to {info.get('store_name') or 'store'} (version {info.get('version') or 'unknown'})")
    return EXIT_OK


def cmd_status(args) -> int:
    """Show cursor and lock state."""
    from storesync.core.database import get_database
    from storesync.orders.importer import ORDERS_CURSOR
    from storesync.sync.orchestrator import RUN_LOCK

    _init()
    db = get_database()
    lock = db.get_lock(RUN_LOCK)
    cursor = db.get_cursor(ORDERS_CURSOR)

    if lock:
        print(f"[STATUS] Sync running: {lock['owner']} since {lock['acquired_at']}")
    else:
        print("[STATUS] No sync running")

    if cursor:
        print(f"   Last order: {cursor['last_external_id']} created {cursor['last_created_at']}")
        print(f"   Last synced: {cursor['last_synced_at']}")
    else:
        print("   Orders never synced")

    for table, count in db.get_counts().items():
        print(f"   {table}: {count}")
    return EXIT_OK


def cmd_serve(args) -> int:
    """Start the API server."""
    import uvicorn

    print(f"[SERVER] Starting API server on http://{args.host}:{args.port}")
    print(f"   Docs: http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "storesync.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload
    )
    return EXIT_OK


def main(argv=None) -> int:
    from storesync.core.exceptions import StoreSyncError

    parser = argparse.ArgumentParser(
        description="Store Sync CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Credentials come from PLATFORM_URL, CONSUMER_KEY and CONSUMER_SECRET
(or the platform section of config.yaml).

Examples:
  python cli.py sync
  python cli.py check-connection
  python cli.py status
  python cli.py serve --port 8000
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("sync", help="Run one full sync batch")
    subparsers.add_parser("check-connection", help="Verify store credentials")
    subparsers.add_parser("status", help="Show sync cursor and lock")

    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args(argv)

    commands = {
        "sync": cmd_sync,
        "check-connection": cmd_check_connection,
        "status": cmd_status,
        "serve": cmd_serve,
    }
    command = commands.get(args.command or "sync")

    try:
        return command(args)
    except StoreSyncError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
