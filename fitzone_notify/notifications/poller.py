"""Fixed-cadence background runner.

Runs a job on a daemon thread every *interval* seconds until stopped.  A
job that raises is logged and the loop carries on; the next tick is
always scheduled, there is no backoff.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Poller:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], object],
        wait_first: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.interval = float(interval_seconds)
        self._job = job
        self._wait_first = wait_first
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        """Start the loop.  Calling it on a running poller does nothing."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info("%s started (every %.0fs)", self.name, self.interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop scheduling further runs.

        A run already in progress is not interrupted; this waits up to
        *timeout* seconds for it to return.
        """
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("%s still busy after stop; its result will be discarded", self.name)
        logger.info("%s stopped", self.name)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _run(self) -> None:
        if self._wait_first and self._stop.wait(self.interval):
            return
        while not self._stop.is_set():
            try:
                self._job()
            except Exception:
                logger.exception("%s: run failed", self.name)
            if self._stop.wait(self.interval):
                break
