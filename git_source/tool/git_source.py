"""Command line tool for reconciling git repositories into artifacts."""

import argparse
import asyncio
import logging
import sys
import traceback

from git_source.exceptions import GitSourceException
from . import reconcile

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for publishing git repositories as artifacts.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    reconcile.ReconcileAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """git-source command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except GitSourceException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("git-source error: ", err, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
