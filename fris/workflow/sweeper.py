import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class WorkflowSweeper:
    """Runs the expiration sweep on a fixed interval in a daemon thread."""

    def __init__(self, manager, interval_seconds: float = 60):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="workflow-sweeper", daemon=True)
        self._thread.start()
        logger.info("Workflow sweeper started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Workflow sweeper stopped")

    def run_once(self):
        return self.manager.check_expired_workflows()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Workflow expiration sweep failed")
