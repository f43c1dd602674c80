"""
Periodic sweep of expired session tokens.

Validation already deletes expired tokens lazily; this catches the ones that
are never presented again. Runs inside the API process as a daemon thread, or
standalone under systemd/supervisor via ``python -m biocard.cleanup``.
"""

from __future__ import annotations

import argparse
import logging
import threading
import time
from typing import Optional

from biocard.config import get_settings
from biocard.db import DbClient
from biocard.dependencies import get_db_client

logger = logging.getLogger(__name__)


def sweep_expired_tokens(db: DbClient, now: Optional[float] = None) -> int:
    removed = db.delete_expired_tokens(time.time() if now is None else now)
    if removed:
        logger.info("Removed %d expired tokens", removed)
    return removed


def _sweep_safely(db: DbClient) -> None:
    try:
        sweep_expired_tokens(db)
    except Exception:
        logger.exception("Token cleanup sweep failed")


class TokenCleanupThread(threading.Thread):
    def __init__(self, db: DbClient, interval_seconds: float = 3600):
        super().__init__(name="token-cleanup", daemon=True)
        self.db = db
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()

    def run(self) -> None:
        logger.info("Token cleanup started (every %ss)", self.interval_seconds)
        while not self._stop_event.wait(self.interval_seconds):
            _sweep_safely(self.db)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)


def run_loop(interval_seconds: Optional[float] = None) -> None:
    """Blocking sweep loop; the first sweep runs immediately."""
    db = get_db_client()
    interval = interval_seconds or get_settings().token_cleanup_interval_seconds
    while True:
        _sweep_safely(db)
        time.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Expired session token sweeper")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=None,
        help="Seconds between sweeps (defaults to TOKEN_CLEANUP_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )

    if args.once:
        sweep_expired_tokens(get_db_client())
        return 0

    run_loop(args.interval_seconds)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
