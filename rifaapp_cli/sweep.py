from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from datetime import timedelta
from pathlib import Path


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        os.environ.setdefault(key, value)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Release expired RifaApp ticket reservations")
    parser.add_argument("--env-file", default=os.getenv("RIFAAPP_ENV_FILE", ".env"))
    parser.add_argument(
        "--expiry-minutes",
        type=float,
        default=None,
        help="Reservation lifetime; defaults to RESERVATION_MINUTES",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running and sweep every SWEEP_INTERVAL_MINUTES instead of once",
    )
    parser.add_argument("--interval-minutes", type=float, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    # Settings read the environment at import time.
    _load_env_file(Path(args.env_file))

    from app.core.config import db_configured, settings
    from app.core.errors import StorageUnavailable
    from app.core.logging import configure_logging
    from app.db.tickets import PostgresTicketStore
    from app.services.ledger import ReservationLedger
    from app.services.sweeper import ReservationSweeper

    configure_logging()
    logger = logging.getLogger("rifaapp.sweep")
    if not db_configured():
        logger.error("Database configuration is missing")
        return 2

    expiry = None
    if args.expiry_minutes is not None:
        expiry = timedelta(minutes=args.expiry_minutes)
    ledger = ReservationLedger(PostgresTicketStore(), settings)

    if not args.loop:
        try:
            released = ledger.sweep_expired(expiry)
        except StorageUnavailable:
            logger.exception("Sweep failed")
            return 1
        print(f"released={released}")
        return 0

    sweeper = ReservationSweeper(
        ledger, settings, interval_minutes=args.interval_minutes, expiry=expiry
    )
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    sweeper.start()
    stop.wait()
    sweeper.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
