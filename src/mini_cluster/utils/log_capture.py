"""Capture of child process output streams into log files."""

import threading
import weakref
from pathlib import Path
from typing import IO, Any

from .logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.CAPTURE)

DEFAULT_FLUSH_INTERVAL = 1.0


class LogWriter(threading.Thread):
    """Drains one process stream into one log file, line by line.

    The writer runs as a daemon thread until the stream reaches end of input,
    then closes both the log file and the stream. ``flush()`` may be called
    from any thread at any time, including after close.
    """

    def __init__(self, stream: IO[bytes], log_file: Path) -> None:
        """Open the log file and bind it to the stream.

        Args:
            stream: Binary pipe of a child process (stdout or stderr)
            log_file: File the lines are written to, truncated on open
        """
        super().__init__(name=f"log-writer-{log_file.name}", daemon=True)
        self.log_file = log_file
        self._in = stream
        self._out: IO[str] | None = open(log_file, "w", encoding="utf-8")
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        """True once the stream has been drained and the file closed."""
        with self._lock:
            return self._out is None

    def flush(self) -> None:
        """Flush buffered lines to disk; no-op once closed."""
        with self._lock:
            if self._out is not None:
                self._out.flush()

    def run(self) -> None:
        try:
            for raw in iter(self._in.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                with self._lock:
                    if self._out is None:
                        break
                    self._out.write(line)
                    self._out.write("\n")
        except (OSError, ValueError) as e:
            logger.error(
                "Error capturing process output",
                exception=e,
                log_file=str(self.log_file),
            )
        finally:
            self.close()

    def close(self) -> None:
        """Close the log file and the stream; safe to call more than once."""
        with self._lock:
            if self._out is None:
                return
            try:
                self._out.close()
                self._in.close()
            except OSError as e:
                logger.error(
                    "Error closing captured stream",
                    exception=e,
                    log_file=str(self.log_file),
                )
            finally:
                self._out = None


class FlushScheduler:
    """Single background timer flushing every registered sink.

    Sinks are held weakly; a sink that is garbage collected simply drops out
    of the rotation. A sink is any object with a ``flush()`` method.
    """

    def __init__(self, interval: float = DEFAULT_FLUSH_INTERVAL) -> None:
        self.interval = interval
        self._sinks: weakref.WeakSet[Any] = weakref.WeakSet()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def register(self, sink: Any) -> None:
        """Add a sink to the rotation, starting the timer thread if needed."""
        with self._lock:
            self._sinks.add(sink)
            if self._thread is None or not self._thread.is_alive():
                self._stop_event.clear()
                self._thread = threading.Thread(
                    target=self._run,
                    name=f"log-flush-{self.interval}s",
                    daemon=True,
                )
                self._thread.start()

    def unregister(self, sink: Any) -> None:
        """Remove a sink from the rotation."""
        with self._lock:
            self._sinks.discard(sink)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sinks)

    def flush_all(self) -> None:
        """Flush every live sink once; errors are logged per sink."""
        with self._lock:
            sinks = list(self._sinks)

        for sink in sinks:
            try:
                sink.flush()
            except Exception as e:
                logger.error("Periodic log flush failed", exception=e)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop the timer thread."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        logger.debug("Log flush scheduler started", interval=self.interval)
        while not self._stop_event.wait(self.interval):
            self.flush_all()
        logger.debug("Log flush scheduler stopped", interval=self.interval)


# Shared schedulers, one per flush interval
_schedulers: dict[float, FlushScheduler] = {}
_schedulers_lock = threading.Lock()


def get_flush_scheduler(interval: float = DEFAULT_FLUSH_INTERVAL) -> FlushScheduler:
    """Get the shared flush scheduler for an interval.

    Returns:
        FlushScheduler instance
    """
    with _schedulers_lock:
        scheduler = _schedulers.get(interval)
        if scheduler is None:
            scheduler = FlushScheduler(interval)
            _schedulers[interval] = scheduler
        return scheduler


def shutdown_flush_schedulers() -> None:
    """Stop and forget every shared flush scheduler."""
    with _schedulers_lock:
        schedulers = list(_schedulers.values())
        _schedulers.clear()
    for scheduler in schedulers:
        scheduler.shutdown()
