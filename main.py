# main.py

"""Entry point for the hotelwatch price pipeline CLI."""

import argparse
import asyncio
import logging
import sys

from hotelwatch.config.logging_config import setup_logging

logger = logging.getLogger("hotelwatch.main")


def _positive_price(raw: str) -> float:
    """argparse type for a strictly positive price."""
    try:
        value = float(raw)
    except ValueError as exc:
        msg = f"invalid price: {raw!r}"
        raise argparse.ArgumentTypeError(msg) from exc
    if value <= 0:
        msg = f"price must be positive: {raw!r}"
        raise argparse.ArgumentTypeError(msg)
    return value


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="hotelwatch",
        description="Hotel price history and drop detection.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Echo INFO log messages to the console.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    observe = commands.add_parser(
        "observe", help="Record an observed price for a hotel.",
    )
    observe.add_argument("hotel_id", help="Hotel identifier.")
    observe.add_argument(
        "price", type=_positive_price, help="Observed nightly price.",
    )

    history = commands.add_parser(
        "history", help="Show recorded prices for a hotel.",
    )
    history.add_argument("hotel_id", help="Hotel identifier.")
    history.add_argument(
        "-n",
        "--limit",
        type=int,
        default=None,
        help="Show at most N observations (default: all).",
    )

    drops = commands.add_parser(
        "drops", help="Show recorded price drop events.",
    )
    drops.add_argument(
        "hotel_id", nargs="?", default=None, help="Limit to one hotel.",
    )
    drops.add_argument(
        "-n",
        "--limit",
        type=int,
        default=20,
        help="Show at most N events (default: 20).",
    )

    commands.add_parser(
        "process-alerts", help="Deliver due price drop alert emails.",
    )
    return parser


def main() -> None:
    """Dispatch the requested sub-command and exit with its status."""
    args = _build_parser().parse_args()
    log_file = setup_logging(verbose=args.verbose)
    logger.info("hotelwatch %s starting, log file: %s", args.command, log_file)

    from hotelwatch.cli import runner

    if args.command == "observe":
        exit_code = asyncio.run(runner.run_observe(args.hotel_id, args.price))
    elif args.command == "history":
        exit_code = asyncio.run(runner.run_history(args.hotel_id, args.limit))
    elif args.command == "drops":
        exit_code = asyncio.run(runner.run_drops(args.hotel_id, args.limit))
    else:
        exit_code = runner.run_process_alerts()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
