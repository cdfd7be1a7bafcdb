"""Shared wiring for the command line tools."""
from __future__ import annotations

import argparse
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..service import GameService
from ..telemetry import TelemetryCollector

DEFAULT_DB_PATH = Path(os.getenv("TOWN_HALL_DB_PATH", "town_hall.db"))


def add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        type=Path,
        default=DEFAULT_DB_PATH,
        help=f"Path to the SQLite save database (default: {DEFAULT_DB_PATH})",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable info logging")


@contextmanager
def open_service(args: argparse.Namespace) -> Iterator[GameService]:
    """Yield a service for one tool run; the service and any collector are closed on exit."""
    logging.basicConfig(
        level=logging.INFO if getattr(args, "verbose", False) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    telemetry_path = os.getenv("TOWN_HALL_TELEMETRY_DB")
    telemetry = TelemetryCollector(Path(telemetry_path)) if telemetry_path else None
    service = GameService(db_path=args.db, telemetry=telemetry)
    try:
        yield service
    finally:
        service.close()
        if telemetry is not None:
            telemetry.close()
