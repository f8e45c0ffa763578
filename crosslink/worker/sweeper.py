"""Sweep Worker - background maintenance for Crosslink.

Three sweeps run on their own threads and intervals:

1. Expiry: pending suggestions older than the TTL become EXPIRED
2. Validation: active links are revalidated against the record index
3. Scan: enabled rules are re-run when the index or rules changed

A file lock in the data directory ensures only one process sweeps a given
data directory. A failing sweep is logged and retried on its next tick;
it never stops the other sweeps.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass

from filelock import FileLock, Timeout

from ..config import Config, get_config
from ..container import Container
from ..domain.exceptions import CrosslinkError
from ..domain.services import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sweep:
    """One periodic maintenance task."""

    name: str
    interval: float
    task: Callable[[], object]


class SweepWorker:
    """Runs the expiry, validation and scan sweeps in the background."""

    def __init__(
        self,
        container: Container | None = None,
        config: Config | None = None,
        lock_timeout: float = 0.0,
    ) -> None:
        """Initialize the sweep worker.

        Args:
            container: DI container whose linkage service is swept.
            config: Crosslink configuration. Uses the container's if not provided.
            lock_timeout: Seconds to wait for the sweep lock.
        """
        self.config = config or (container.config if container else get_config())
        self._container = container or Container.create(self.config)
        self.lock_timeout = lock_timeout
        self.lock_path = self.config.lock_path

        self._lock = FileLock(self.lock_path, timeout=lock_timeout)
        self._stop = threading.Event()
        self._cancel = CancellationToken()
        self._threads: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def sweeps(self) -> list[Sweep]:
        service = self._container.linkage_service
        return [
            Sweep("expiry", self.config.expiry_interval_seconds, service.expire_suggestions),
            Sweep("validation", self.config.validation_interval_seconds, service.validate_links),
            Sweep(
                "scan",
                self.config.scan_interval_seconds,
                lambda: service.scan_if_changed(cancel_token=self._cancel),
            ),
        ]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """Acquire the sweep lock and start the sweep threads.

        Returns:
            True if the sweeps were started, False if another process holds
            the lock.
        """
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire()
        except Timeout:
            logger.info(f"Sweep lock {self.lock_path} is held by another process; not sweeping")
            return False

        self._stop.clear()
        self._cancel = CancellationToken()
        for sweep in self.sweeps():
            thread = threading.Thread(
                target=self._loop,
                args=(sweep,),
                name=f"crosslink-sweep-{sweep.name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info(f"Sweep worker started (lock: {self.lock_path})")
        return True

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the sweeps, cancelling a scan in progress, and release the lock."""
        self._stop.set()
        self._cancel.cancel()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        if self._lock.is_locked:
            self._lock.release()
        logger.info("Sweep worker stopped")

    def run_forever(self) -> None:
        """Run the sweeps in the foreground until SIGINT/SIGTERM."""

        def handle_signal(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, shutting down...")
            self._stop.set()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        if not self.start():
            return
        try:
            self._stop.wait()
        finally:
            self.stop()
            self._container.close()

    def run_once(self) -> dict[str, object] | None:
        """Run every sweep once in the calling thread, holding the sweep lock.

        Returns:
            Mapping of sweep name to its result (or the error message), or
            None if another process holds the lock.
        """
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire()
        except Timeout:
            logger.info(f"Sweep lock {self.lock_path} is held by another process; not sweeping")
            return None

        try:
            results: dict[str, object] = {}
            for sweep in self.sweeps():
                results[sweep.name] = self._run(sweep)
            return results
        finally:
            self._lock.release()

    # =========================================================================
    # Internals
    # =========================================================================

    def _loop(self, sweep: Sweep) -> None:
        while not self._stop.wait(sweep.interval):
            self._run(sweep)

    def _run(self, sweep: Sweep) -> object:
        logger.debug(f"Running {sweep.name} sweep")
        try:
            return sweep.task()
        except CrosslinkError as e:
            logger.error(f"{sweep.name} sweep failed: {e}")
            return str(e)
        except Exception as e:
            logger.exception(f"{sweep.name} sweep crashed: {e}")
            return str(e)


def main() -> None:
    """Entry point for a standalone sweep process."""
    import os
    import sys

    logging.basicConfig(
        level=os.environ.get("CROSSLINK_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    SweepWorker().run_forever()


if __name__ == "__main__":
    main()
