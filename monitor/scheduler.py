"""Background scheduler that runs structure probes on an interval."""
import logging
import threading
from typing import Optional

from monitor.structure_monitor import StructureMonitor

logger = logging.getLogger(__name__)


class MonitorScheduler:
    """Runs StructureMonitor.probe_all on a daemon thread every ``interval`` seconds."""

    def __init__(self, monitor: StructureMonitor, interval: float = 86400.0,
                 stop_event: Optional[threading.Event] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.monitor = monitor
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self.cycles = 0
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self.stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='structure-monitor', daemon=True)
        self._thread.start()
        logger.info(f"Structure monitor scheduled every {self.interval:.0f}s")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("Structure monitor stopped")

    def wait(self) -> None:
        """Block until the scheduler is stopped."""
        while self.is_running:
            self._thread.join(1.0)

    def _run(self) -> None:
        while not self.stop_event.is_set():
            try:
                self.monitor.probe_all()
            except Exception as e:
                logger.error(f"Structure probe cycle failed: {e}", exc_info=True)
            self.cycles += 1
            self.stop_event.wait(self.interval)
