"""Run ledger ingestion cycles.

Usage:
    python scripts/poll_ledger.py                   # one cycle
    python scripts/poll_ledger.py --interval 60     # loop, one cycle per minute
    python scripts/poll_ledger.py --from-sequence 4200 --limit 500   # recovery
    python scripts/poll_ledger.py --health

Run it from a single scheduler; overlapping invocations are refused by the
advisory lock and exit with status 2.
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
import time
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv

from config import get_settings_module

from src.timekeeping.timekeeping.common.datetime_utils import now_local
from src.timekeeping.timekeeping.common.logging_setup import configure_logging
from src.timekeeping.timekeeping.container import build_container_from_settings
from src.timekeeping.timekeeping.core.exceptions import CycleAlreadyRunningError, StoreUnavailableError

logger = logging.getLogger("poll_ledger")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest RFID ledger entries into attendance events.")
    parser.add_argument("--limit", type=int, default=None, help="batch size (default from settings)")
    parser.add_argument("--from-sequence", type=int, default=None, help="recovery: start at this sequence id")
    parser.add_argument("--no-verify", action="store_true", help="materialize even when the hash chain is broken")
    parser.add_argument("--interval", type=float, default=None, help="seconds between cycles; omit for one cycle")
    parser.add_argument("--health", action="store_true", help="print the ledger health report and exit")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv(override=False)
    args = _parse_args(argv)
    settings = importlib.import_module(get_settings_module())
    configure_logging(getattr(settings, "LOG_LEVEL", None))
    container = build_container_from_settings(settings)

    if args.health:
        print(json.dumps(container.health_service.report(now=now_local()).as_dict(), indent=2))
        return 0

    while True:
        try:
            report = container.orchestrator.run_cycle(
                now=now_local(),
                batch_limit=args.limit,
                validate_hash_chain=False if args.no_verify else None,
                from_sequence_id=args.from_sequence,
            )
            print(json.dumps(report.as_dict(), indent=2))
        except CycleAlreadyRunningError as exc:
            logger.info("skipping cycle: %s", exc)
            if args.interval is None:
                return 2
        except StoreUnavailableError as exc:
            logger.error("store unavailable, cycle aborted: %s", exc)
            if args.interval is None:
                return 1

        if args.interval is None:
            return 0
        # Recovery mode is a one-shot; later cycles go back to normal polling.
        args.from_sequence = None
        time.sleep(args.interval)


if __name__ == "__main__":
    raise SystemExit(main())
