"""
Command line entry point.

Usage:
    python -m tally_snapshot                 # full or incremental from stored state
    python -m tally_snapshot --mode full     # force a complete resync
    python -m tally_snapshot --health-check  # probe Tally and exit

Exit codes:
    0  success
    1  unexpected failure
    2  Tally unreachable or not responding
    3  Tally responded with data that could not be parsed
    4  local dataset, state or snapshot could not be written
"""
import argparse
import sys
from typing import Optional

from loguru import logger

from .client import TallyConnector
from .config import TallySnapshotConfig
from .errors import ProtocolError, StoreError, TransportError
from .sync import MODES, SyncOrchestrator, run_pipeline

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNREACHABLE = 2
EXIT_MALFORMED = 3
EXIT_STORE = 4


def configure_logging(config: TallySnapshotConfig, verbose: bool = False):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else config.log_level.upper())
    if config.log_file:
        logger.add(config.log_file, level="DEBUG", rotation="10 MB", retention=5)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Tally Snapshot - Sync Tally data and publish dashboard snapshots"
    )
    parser.add_argument(
        "--mode",
        choices=list(MODES),
        default="auto",
        help="Sync mode (default: auto, picks full or incremental from stored state)",
    )
    parser.add_argument(
        "--health-check",
        action="store_true",
        help="Check the Tally connection and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = TallySnapshotConfig.from_env()
    configure_logging(config, args.verbose)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return EXIT_FAILURE

    try:
        if args.health_check:
            with TallyConnector(config) as connector:
                name = connector.probe()
            print(f"Tally is up. Active company: {name}")
            return EXIT_OK

        with SyncOrchestrator(config) as orchestrator:
            report = run_pipeline(config, mode=args.mode, orchestrator=orchestrator)

        print("\n=== Sync Results ===")
        for key, value in report.items():
            print(f"{key}: {value}")
        return EXIT_OK

    except TransportError as e:
        logger.error(f"Connection error: {e}")
        return EXIT_UNREACHABLE
    except ProtocolError as e:
        logger.error(f"Tally error: {e}")
        return EXIT_MALFORMED
    except (StoreError, OSError) as e:
        logger.error(f"Write failed: {e}")
        return EXIT_STORE
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
