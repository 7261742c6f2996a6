"""Tests for process output capture and periodic flushing."""

import gc
import io
import os
import threading
from unittest.mock import MagicMock

import pytest

from mini_cluster.utils.log_capture import (
    FlushScheduler,
    LogWriter,
    get_flush_scheduler,
    shutdown_flush_schedulers,
)


class Sink:
    def flush(self):
        pass


class BrokenStream:
    """Stream whose reads fail, as a pipe closed underneath a reader would."""

    def __init__(self):
        self.closed = False

    def readline(self):
        raise ValueError("I/O operation on closed file")

    def close(self):
        self.closed = True


@pytest.fixture
def scheduler():
    scheduler = FlushScheduler(interval=0.01)
    yield scheduler
    scheduler.shutdown(timeout=1)


class TestLogWriter:
    """Test draining a stream into a log file."""

    def test_copies_lines_in_order(self, tmp_path):
        lines = [f"line {i}" for i in range(500)]
        stream = io.BytesIO("\n".join(lines).encode() + b"\n")
        log_file = tmp_path / "worker_1.out"

        writer = LogWriter(stream, log_file)
        writer.start()
        writer.join(timeout=5)

        assert log_file.read_text().splitlines() == lines
        assert writer.closed
        assert stream.closed

    def test_final_line_without_newline(self, tmp_path):
        log_file = tmp_path / "x.out"
        writer = LogWriter(io.BytesIO(b"first\r\nlast"), log_file)

        writer.start()
        writer.join(timeout=5)

        assert log_file.read_text() == "first\nlast\n"

    def test_undecodable_bytes_are_replaced(self, tmp_path):
        log_file = tmp_path / "x.err"
        writer = LogWriter(io.BytesIO(b"ok \xff\xfe end\n"), log_file)

        writer.start()
        writer.join(timeout=5)

        assert log_file.read_text(encoding="utf-8") == "ok \ufffd\ufffd end\n"

    def test_log_file_is_created_on_construction(self, tmp_path):
        log_file = tmp_path / "empty.out"

        LogWriter(io.BytesIO(b""), log_file)

        assert log_file.exists()

    def test_flush_after_close_is_noop(self, tmp_path):
        writer = LogWriter(io.BytesIO(b"a\n"), tmp_path / "x.out")
        writer.start()
        writer.join(timeout=5)

        writer.flush()
        writer.flush()

        assert writer.closed

    def test_flush_while_running(self, tmp_path):
        read_fd, write_fd = os.pipe()
        log_file = tmp_path / "live.out"
        stream = open(read_fd, "rb")
        with open(write_fd, "wb", buffering=0) as sink:
            writer = LogWriter(stream, log_file)
            writer.start()
            sink.write(b"hello\n")

            for _ in range(200):
                writer.flush()
                if log_file.read_text() == "hello\n":
                    break
                threading.Event().wait(0.01)

            assert log_file.read_text() == "hello\n"
            assert not writer.closed
        # Closing the write end is the end of input for the writer
        writer.join(timeout=5)
        assert writer.closed

    def test_read_error_is_logged_and_closes(self, tmp_path, caplog):
        stream = BrokenStream()
        writer = LogWriter(stream, tmp_path / "x.out")

        writer.start()
        writer.join(timeout=5)

        assert writer.closed
        assert stream.closed
        assert any(
            "Error capturing process output" in r.getMessage() for r in caplog.records
        )


class TestFlushScheduler:
    """Test the shared periodic flush timer."""

    def test_register_starts_thread_and_flushes(self, scheduler):
        sink = MagicMock()
        flushed = threading.Event()
        sink.flush.side_effect = flushed.set

        scheduler.register(sink)

        assert flushed.wait(timeout=2)
        assert len(scheduler) == 1

    def test_unregister(self, scheduler):
        sink = MagicMock()
        scheduler.register(sink)

        scheduler.unregister(sink)

        assert len(scheduler) == 0

    def test_sinks_are_held_weakly(self):
        scheduler = FlushScheduler(interval=60)
        sink = Sink()
        scheduler.register(sink)
        assert len(scheduler) == 1

        del sink
        gc.collect()

        assert len(scheduler) == 0
        scheduler.shutdown(timeout=1)

    def test_flush_all_logs_errors_and_continues(self, caplog):
        scheduler = FlushScheduler(interval=60)
        broken = MagicMock()
        broken.flush.side_effect = OSError("disk full")
        healthy = MagicMock()
        scheduler._sinks.add(broken)
        scheduler._sinks.add(healthy)

        scheduler.flush_all()

        healthy.flush.assert_called_once()
        assert any("Periodic log flush failed" in r.getMessage() for r in caplog.records)

    def test_unexpected_sink_error_keeps_timer_running(self, scheduler, caplog):
        broken = MagicMock()
        broken.flush.side_effect = RuntimeError("sink bug")

        scheduler.register(broken)
        thread = scheduler._thread
        for _ in range(200):
            if broken.flush.call_count >= 3:
                break
            threading.Event().wait(0.01)

        assert broken.flush.call_count >= 3
        assert thread.is_alive()
        assert scheduler._thread is thread
        assert any("Periodic log flush failed" in r.getMessage() for r in caplog.records)

    def test_shutdown_stops_thread(self, scheduler):
        scheduler.register(MagicMock())
        thread = scheduler._thread

        scheduler.shutdown(timeout=2)

        assert not thread.is_alive()

    def test_register_after_shutdown_restarts(self, scheduler):
        scheduler.register(MagicMock())
        scheduler.shutdown(timeout=2)
        sink = MagicMock()
        flushed = threading.Event()
        sink.flush.side_effect = flushed.set

        scheduler.register(sink)

        assert flushed.wait(timeout=2)


class TestSharedSchedulers:
    """Test the per-interval shared scheduler registry."""

    def test_same_interval_same_scheduler(self):
        try:
            assert get_flush_scheduler(0.5) is get_flush_scheduler(0.5)
            assert get_flush_scheduler(0.5) is not get_flush_scheduler(0.25)
            assert get_flush_scheduler(0.5).interval == 0.5
        finally:
            shutdown_flush_schedulers()

    def test_shutdown_forgets_schedulers(self):
        first = get_flush_scheduler(0.75)

        shutdown_flush_schedulers()

        assert get_flush_scheduler(0.75) is not first
        shutdown_flush_schedulers()
