# main.py

"""Entry point for the affilifind command line."""

import argparse
import asyncio
import logging
import sys

from src.config.logging_config import setup_logging
from src.config.settings import Settings

logger = logging.getLogger("affilifind.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="affilifind",
        description="Detect the product on a page and look up affiliate deals.",
    )
    sub = parser.add_subparsers(dest="mode", required=True)

    scan = sub.add_parser("scan", help="Scan a product page once.")
    scan.add_argument("url", help="Product page URL.")
    scan.add_argument(
        "--json",
        action="store_true",
        default=False,
        dest="as_json",
        help="Print the result as JSON instead of tables.",
    )

    watch = sub.add_parser("watch", help="Rescan a page as it changes.")
    watch.add_argument("url", help="Product page URL.")
    watch.add_argument(
        "--interval",
        type=float,
        default=Settings.POLL_INTERVAL,
        help=f"Seconds between polls (default: {Settings.POLL_INTERVAL:g}).",
    )
    watch.add_argument(
        "--cycles",
        type=int,
        default=None,
        help="Stop after this many polls (default: run until interrupted).",
    )

    sub.add_parser("history", help="Show the deal history ledger.")

    config = sub.add_parser("config", help="Show or update the configuration.")
    config.add_argument(
        "--set",
        action="append",
        default=[],
        dest="assignments",
        metavar="KEY=VALUE",
        help="Update a config key (apiBase, apiKey, autoInject).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Route to the requested CLI mode and exit with its status."""
    log_file = setup_logging()
    logger.info("affilifind starting, log file: %s", log_file)

    args = _build_parser().parse_args(argv)

    from src.cli import runner

    if args.mode == "scan":
        exit_code = asyncio.run(runner.cli_scan(args.url, as_json=args.as_json))
    elif args.mode == "watch":
        try:
            exit_code = asyncio.run(
                runner.cli_watch(args.url, interval=args.interval, cycles=args.cycles)
            )
        except KeyboardInterrupt:
            exit_code = 0
    elif args.mode == "history":
        exit_code = runner.run_history()
    else:
        exit_code = asyncio.run(runner.run_config(args.assignments))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
