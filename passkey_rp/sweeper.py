"""Background sweep of expired challenges and stale pending transactions."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .challenges import ChallengeStore
from .logs import log_event, new_request_id
from .stepup import StepUpEngine

LOGGER = logging.getLogger(__name__)

_MIN_INTERVAL = 1.0


class ChallengeSweeper:
    def __init__(
        self,
        challenges: ChallengeStore,
        interval: float = 3600.0,
        engine: Optional[StepUpEngine] = None,
    ) -> None:
        self.challenges = challenges
        self.interval = max(float(interval), _MIN_INTERVAL)
        self.engine = engine
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict[str, int]:
        removed = self.challenges.sweep()
        expired = self.engine.expire_pending() if self.engine is not None else 0
        log_event(
            LOGGER, "challenge", "sweep", new_request_id(),
            level=logging.DEBUG, removed=removed, expired_transactions=expired,
        )
        return {"challenges": removed, "transactions": expired}

    def _loop(self) -> None:
        LOGGER.info("Starting challenge sweeper (every %.0f seconds).", self.interval)
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                LOGGER.exception("Challenge sweep failed; retrying next interval.")
        LOGGER.info("Stopping challenge sweeper.")

    def start(self) -> None:
        """Launch the sweeper thread if not already running."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="challenge-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
