"""
Trial docket - command line entry point.

Subcommands:
    serve          Run the HTTP API (uvicorn)
    tick           Evaluate every case once and exit
    run-reminders  Run the reminder loop until SIGINT/SIGTERM
"""

import argparse
import json
import os
import signal
import sys
import time
from datetime import datetime

from dotenv import load_dotenv

# Environment must be loaded before config is imported
load_dotenv()

from src.docket import config  # noqa: E402
from src.docket.service import DocketService  # noqa: E402
from src.docket.timezones import ensure_utc  # noqa: E402
from src.infra.logging_config import setup_logging  # noqa: E402


shutdown_requested = False

log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logger = setup_logging(log_level)


def signal_handler(signum, frame):
    """
    SIGINT / SIGTERM handler - finish the in-flight tick, then exit.
    """
    global shutdown_requested
    signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    logger.info(f"{signal_name} received - stopping after the current tick")
    shutdown_requested = True


def parse_now(value: str) -> datetime:
    """argparse type for --now: ISO-8601 with an explicit offset."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value}")
    if parsed.tzinfo is None:
        raise argparse.ArgumentTypeError("--now must carry a UTC offset, e.g. 2026-11-03T14:30:00Z")
    return ensure_utc(parsed)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Trial docket - scheduling, reschedule negotiation and reminders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the API on port 8000
  python main.py serve --port 8000

  # One reminder pass as of a given instant
  python main.py tick --now 2026-11-03T14:30:00Z

  # Reminder loop every 30 seconds for one hour
  python main.py run-reminders --interval-seconds 30 --duration-seconds 3600
        """
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="SQLite docket path. Default: DOCKET_DB_PATH or ./data/docket.db"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=os.getenv("API_HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    serve.add_argument("--reload", action="store_true", default=False)

    tick = subparsers.add_parser("tick", help="Evaluate every case once")
    tick.add_argument(
        "--now",
        type=parse_now,
        default=None,
        help="Evaluation instant (ISO-8601 with offset). Default: current time"
    )

    loop = subparsers.add_parser("run-reminders", help="Run the reminder loop")
    loop.add_argument(
        "--interval-seconds",
        type=float,
        default=config.REMINDER_TICK_INTERVAL_SECONDS,
        help=f"Tick interval. Default={config.REMINDER_TICK_INTERVAL_SECONDS}"
    )
    loop.add_argument(
        "--duration-seconds",
        type=int,
        default=None,
        help="Stop after this many seconds. Default: run until SIGINT/SIGTERM"
    )
    loop.add_argument(
        "--skip-recovery",
        action="store_true",
        default=False,
        help="Do not run startup recovery before the first tick"
    )

    return parser.parse_args(argv)


def run_serve(args) -> None:
    import uvicorn

    if args.db_path:
        os.environ["DOCKET_DB_PATH"] = args.db_path

    logger.info(f"Serving docket API on {args.host}:{args.port}")
    uvicorn.run("src.api.main:app", host=args.host, port=args.port, reload=args.reload)


def run_tick(args) -> None:
    service = DocketService.create(args.db_path or config.get_default_db_path())
    records = service.tick(args.now)

    logger.info(f"Tick complete - {len(records)} dispatch(es)")
    print(json.dumps(
        [
            {
                "case_id": r.case_id,
                "template_id": r.template_id,
                "threshold": r.threshold.value if r.threshold else None,
                "recipient": f"{r.recipient_kind.value}:{r.recipient_id}",
                "delivered": r.delivered,
            }
            for r in records
        ],
        indent=2,
    ))


def run_reminders(args) -> None:
    global shutdown_requested

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    service = DocketService.create(
        args.db_path or config.get_default_db_path(),
        tick_interval=args.interval_seconds,
    )

    logger.info("=" * 80)
    logger.info("Reminder loop starting")
    logger.info(f"  - interval: {args.interval_seconds}s")
    logger.info(
        f"  - duration: {args.duration_seconds}s" if args.duration_seconds
        else "  - duration: until signal"
    )
    logger.info(f"  - war room lead: {config.WAR_ROOM_LEAD_MINUTES}m")
    logger.info("=" * 80)

    stats = service.start(run_recovery=not args.skip_recovery, blocking=False)
    if stats:
        logger.info(f"Recovery: {stats}")

    start_time = time.time()
    try:
        while not shutdown_requested and service.is_running:
            if args.duration_seconds and time.time() - start_time >= args.duration_seconds:
                logger.info("Duration limit reached - stopping")
                break
            time.sleep(0.5)
    finally:
        service.stop()
        status = service.get_status()["reminders"]
        logger.info(
            f"Reminder loop stopped - ticks={status['ticks_completed']}, "
            f"skipped={status['ticks_skipped']}, elapsed={time.time() - start_time:.1f}s"
        )


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.command == "serve":
        run_serve(args)
    elif args.command == "tick":
        run_tick(args)
    elif args.command == "run-reminders":
        run_reminders(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
