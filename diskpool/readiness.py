"""Periodic readiness checking of the plugin."""

from __future__ import annotations

import logging
import threading
from typing import Callable

log = logging.getLogger(__name__)


class ReadinessCheck:
    """Runs a health check at a fixed interval and remembers the outcome.

    The check signals failure by raising. Once a check has passed the plugin
    stays ready; later failures are still reported as the current error.
    """

    def __init__(self, check: Callable[[], object], interval: float) -> None:
        self._check = check
        self.interval = interval
        self._lock = threading.Lock()
        self._ready = False
        self._error: Exception | None = None

    def _run_check(self) -> None:
        error: Exception | None
        try:
            self._check()
        except Exception as exc:  # any failure of the check means "not healthy"
            log.debug("readiness check failed: %s", exc)
            error = exc
        else:
            error = None
        with self._lock:
            if error is None:
                self._ready = True
            self._error = error

    def start(self, stop_event: threading.Event) -> None:
        """Check now, then every ``interval`` seconds until ``stop_event`` is set."""
        self._run_check()
        while not stop_event.wait(self.interval):
            self._run_check()

    def ready(self) -> tuple[bool, Exception | None]:
        """Return whether the plugin has become ready and the latest check error."""
        with self._lock:
            return self._ready, self._error

    def need_leader_election(self) -> bool:
        """Readiness is checked on every node."""
        return False