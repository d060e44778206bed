"""Automatic backups on a fixed interval, stoppable from the host's shutdown path."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from clinic.core.backup import DEFAULT_KEEP_COUNT
from clinic.logger import EventLog, LoguruEventLog

if TYPE_CHECKING:
    from clinic.core.backup import BackupManager

# Seconds between automatic backups
FREQUENCY_INTERVALS: dict[str, float] = {
    "hourly": 60 * 60,
    "daily": 24 * 60 * 60,
    "weekly": 7 * 24 * 60 * 60,
}


class BackupScheduler:
    """Runs create_backup() then prune() every interval on a daemon thread.

    The schedule lives only as long as the process; the host re-arms it at
    startup from configuration. A failing tick is logged and the next tick
    still runs.
    """

    def __init__(
        self,
        manager: BackupManager,
        keep_count: int = DEFAULT_KEEP_COUNT,
        event_log: EventLog | None = None,
        intervals: dict[str, float] | None = None,
    ) -> None:
        self._manager = manager
        self._keep_count = keep_count
        self._events = event_log or LoguruEventLog()
        self._intervals = intervals or FREQUENCY_INTERVALS
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._frequency = ""
        self._ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def frequency(self) -> str:
        return self._frequency

    @property
    def ticks(self) -> int:
        """Number of ticks that completed without error."""
        return self._ticks

    def start(self, frequency: str) -> None:
        """Arm (or re-arm) the schedule."""
        if frequency not in self._intervals:
            raise ValueError(
                f"Unknown backup frequency {frequency!r}; expected one of {', '.join(self._intervals)}"
            )
        self.stop()

        interval = self._intervals[frequency]
        self._stop_event = threading.Event()
        self._frequency = frequency
        self._thread = threading.Thread(
            target=self._run,
            args=(interval, self._stop_event),
            name=f"backup-scheduler-{frequency}",
            daemon=True,
        )
        self._thread.start()
        self._events.log("schedule_armed", frequency=frequency, interval_seconds=interval)

    def stop(self, timeout: float | None = None) -> None:
        """Cancel pending ticks and wait for a tick in progress to finish."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self._events.log("schedule_stopped", frequency=self._frequency)
        self._frequency = ""

    def _run(self, interval: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval):
            self.run_once()

    def run_once(self) -> bool:
        """One tick: back up, then apply retention. Returns False if it failed."""
        try:
            self._manager.create_backup()
            self._manager.prune(self._keep_count)
        except Exception as e:
            self._events.log("scheduled_backup_failed", frequency=self._frequency, error=str(e))
            return False
        self._ticks += 1
        return True
