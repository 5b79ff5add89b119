from __future__ import annotations

import argparse
import logging
import sys

from .config import add_arguments, settings_from_args
from .exceptions import ConfigError
from .monitor import run

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="wave-plus-monitor",
        description="Poll an Airthings Wave Plus over Bluetooth LE and publish its readings.",
    )
    add_arguments(parser)
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: stderr only)",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Serve a web dashboard of the published values",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8050,
        help="Dashboard server port (default: 8050)",
    )

    args = parser.parse_args()

    level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if args.log_file:
        try:
            handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Cannot open log file {args.log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        parser.error(str(e))

    if not args.dashboard:
        raise SystemExit(run(settings))

    from .dashboard import create_app

    logger.info("🌐 Starting dashboard on http://localhost:%d", args.port)
    app = create_app(settings)
    try:
        app.run(host="0.0.0.0", port=args.port)
    except KeyboardInterrupt:
        logger.info("🛑 Shutting down dashboard...")
