import threading
import time

import pytest

from flowstream.writer import (
    AsyncWriter,
    BufferFull,
    WriterClosed,
    WriterConfig,
    WriterStats,
)


class MockWriter:
    def __init__(self, delay=0.0, error_on_nth=0, error=None):
        self._buf = bytearray()
        self._lock = threading.Lock()
        self.delay = delay
        self.error_on_nth = error_on_nth
        self.error = error
        self._count = 0

    def write(self, data):
        with self._lock:
            self._count += 1
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.error_on_nth and self._count == self.error_on_nth:
                raise OSError("simulated error")
            self._buf.extend(data)
            return len(data)

    def text(self):
        with self._lock:
            return self._buf.decode()

    def __len__(self):
        with self._lock:
            return len(self._buf)

    @property
    def write_count(self):
        with self._lock:
            return self._count


class FailingWriter:
    def __init__(self, fail_count):
        self.buf = bytearray()
        self.fail_count = fail_count
        self.attempts = 0

    def write(self, data):
        self.attempts += 1
        if self.attempts <= self.fail_count:
            raise OSError("simulated failure")
        self.buf.extend(data)
        return len(data)


@pytest.fixture
def sink():
    return MockWriter()


def test_new_defaults(sink):
    with AsyncWriter(sink) as writer:
        assert writer.is_closed() is False
        assert writer.buffer_size() == 0
        assert writer.buffer_capacity() == 64 * 1024


def test_new_with_config(sink):
    config = WriterConfig(
        buffer_size=1024,
        flush_interval=0.1,
        block_on_full=False,
        max_retries=5,
        retry_delay=0.05,
    )
    with AsyncWriter(sink, config) as writer:
        assert writer.is_closed() is False
        assert writer.buffer_capacity() == 1024


def test_non_positive_buffer_size_uses_default(sink):
    with AsyncWriter(sink, WriterConfig(buffer_size=0)) as writer:
        assert writer.buffer_capacity() == 64 * 1024


def test_basic_write(sink):
    with AsyncWriter(sink) as writer:
        writer.write(b"Hello, World!")
        writer.flush()
        assert sink.text() == "Hello, World!"


def test_write_string(sink):
    with AsyncWriter(sink) as writer:
        writer.write_string("Hello, World!")
        writer.flush()
        assert sink.text() == "Hello, World!"


def test_multiple_writes(sink):
    with AsyncWriter(sink) as writer:
        for piece in ["Hello", ", ", "World", "!"]:
            writer.write_string(piece)
        writer.flush()
        assert sink.text() == "Hello, World!"


def test_async_write_returns_before_slow_sink():
    slow = MockWriter(delay=0.2)
    with AsyncWriter(slow, WriterConfig(block_on_full=False)) as writer:
        started = time.monotonic()
        writer.write_string("Hello, World!")
        elapsed = time.monotonic() - started
        assert elapsed < 0.1
        writer.flush()
        assert slow.text() == "Hello, World!"


def test_buffering_without_auto_flush(sink):
    with AsyncWriter(sink, WriterConfig(flush_interval=0)) as writer:
        writer.write_string("buffered data")
        assert len(sink) == 0
        assert writer.buffer_size() == len("buffered data")
        writer.flush()
        assert sink.text() == "buffered data"
        assert writer.buffer_size() == 0


def test_auto_flush(sink):
    with AsyncWriter(sink, WriterConfig(flush_interval=0.05)) as writer:
        writer.write_string("auto flush test")
        time.sleep(0.3)
        assert sink.text() == "auto flush test"


def test_buffer_full_raises_when_not_blocking(sink):
    config = WriterConfig(buffer_size=10, block_on_full=False)
    with AsyncWriter(sink, config) as writer:
        with pytest.raises(BufferFull):
            writer.write_string("x" * 20)
        assert writer.stats().buffer_overflows == 1


def test_non_blocking_example(sink):
    config = WriterConfig(buffer_size=20, block_on_full=False)
    writer = AsyncWriter(sink, config)
    writer.write_string("fits")
    with pytest.raises(BufferFull):
        writer.write_string("x" * 30)
    writer.flush()
    writer.close()
    assert sink.text() == "fits"


def test_block_on_full_flushes_and_succeeds(sink):
    config = WriterConfig(buffer_size=10, block_on_full=True)
    with AsyncWriter(sink, config) as writer:
        writer.write_string("x" * 20)
        writer.flush()
        assert sink.text() == "x" * 20


def test_write_errors_surface_on_flush():
    failing = MockWriter(error=OSError("write failed"))
    writer = AsyncWriter(failing, WriterConfig(max_retries=0, flush_interval=0))
    writer.write_string("test")
    with pytest.raises(OSError, match="write failed"):
        writer.flush()
    assert writer.stats().error_count >= 1
    writer.close()
    assert writer.is_closed() is True


def test_retries_recover(sink):
    sink.error_on_nth = 1
    config = WriterConfig(max_retries=2, retry_delay=0.01)
    with AsyncWriter(sink, config) as writer:
        writer.write_string("retry test")
        writer.flush()
        assert sink.text() == "retry test"
        assert sink.write_count > 1


def test_failing_writer_succeeds_after_retries():
    failing = FailingWriter(fail_count=2)
    with AsyncWriter(failing, WriterConfig(max_retries=3, retry_delay=0.001)) as writer:
        writer.write_string("persistent data")
        writer.flush()
        assert failing.buf.decode() == "persistent data"
        assert failing.attempts == 3


def test_negative_max_retries_uses_default():
    failing = FailingWriter(fail_count=3)
    with AsyncWriter(failing, WriterConfig(max_retries=-1, retry_delay=0.001)) as writer:
        writer.write_string("data")
        writer.flush()
        assert failing.buf.decode() == "data"


def test_retries_exhausted_raise():
    failing = FailingWriter(fail_count=10)
    writer = AsyncWriter(failing, WriterConfig(max_retries=1, retry_delay=0.001))
    writer.write_string("data")
    with pytest.raises(OSError, match="simulated failure"):
        writer.flush()
    assert failing.attempts == 2
    writer.close()


def test_flush_timeout_then_success(sink):
    with AsyncWriter(sink) as writer:
        writer.write_string("context test")
        with pytest.raises(TimeoutError):
            writer.flush(timeout=0)
        writer.flush()
        assert sink.text() == "context test"


def test_stats(sink):
    with AsyncWriter(sink) as writer:
        initial = writer.stats()
        assert initial.write_count == 0
        assert initial.bytes_written == 0

        writer.write_string("Hello, World!")
        writer.flush()

        stats = writer.stats()
        assert stats.write_count == 1
        assert stats.bytes_written == len("Hello, World!")
        assert stats.flush_count == 1
        assert stats.error_count == 0
        assert 0.0 <= stats.buffer_utilization <= 1.0
        assert stats.average_write_time >= 0
        assert stats.last_write_time is not None


def test_statistics_example(sink):
    with AsyncWriter(sink, WriterConfig(flush_interval=0)) as writer:
        for i in range(5):
            writer.write_string(f"Write {i}\n")
        writer.flush()
        stats = writer.stats()
        assert stats == WriterStats(
            bytes_written=40,
            write_count=5,
            flush_count=1,
            error_count=0,
            buffer_overflows=0,
            average_write_time=stats.average_write_time,
            total_write_time=stats.total_write_time,
            last_write_time=stats.last_write_time,
            buffer_utilization=0.0,
        )


def test_buffer_utilization_reflects_buffered_bytes(sink):
    with AsyncWriter(sink, WriterConfig(buffer_size=10, flush_interval=0)) as writer:
        writer.write_string("abcd")
        assert writer.stats().buffer_utilization == pytest.approx(0.4)


def test_close_flushes_and_rejects_further_writes(sink):
    writer = AsyncWriter(sink)
    writer.write_string("test data")
    writer.close()
    assert writer.is_closed() is True
    assert sink.text() == "test data"
    with pytest.raises(WriterClosed):
        writer.write_string("more data")
    with pytest.raises(WriterClosed):
        writer.flush()


def test_double_close_is_noop(sink):
    writer = AsyncWriter(sink)
    writer.write_string("once")
    writer.close()
    writer.close()
    assert writer.is_closed() is True
    assert sink.text() == "once"


def test_context_manager_closes(sink):
    with AsyncWriter(sink, WriterConfig(flush_interval=0)) as writer:
        writer.write_string("inside")
    assert writer.is_closed() is True
    assert sink.text() == "inside"


def test_concurrent_writes(sink):
    goroutines, per = 10, 100
    errors = []

    with AsyncWriter(sink) as writer:
        def work(ident):
            for j in range(per):
                try:
                    writer.write_string(f"goroutine-{ident}-write-{j}\n")
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=work, args=(i,)) for i in range(goroutines)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        writer.flush()

        assert errors == []
        assert sink.text().count("goroutine-") == goroutines * per
        assert writer.stats().write_count == goroutines * per


def test_buffer_full_callback(sink):
    calls = []
    config = WriterConfig(
        buffer_size=5, block_on_full=False, on_buffer_full=lambda: calls.append(True)
    )
    with AsyncWriter(sink, config) as writer:
        with pytest.raises(BufferFull):
            writer.write_string("x" * 10)
    assert calls == [True]


def test_flush_callback(sink):
    flushed = []
    config = WriterConfig(on_flush=lambda count, duration: flushed.append(count))
    with AsyncWriter(sink, config) as writer:
        writer.write_string("Hello with callbacks")
        writer.flush()
        assert flushed == [20]


def test_error_callback():
    failing = MockWriter(error=OSError("test error"))
    seen = []
    config = WriterConfig(retry_delay=0.001, on_error=seen.append, flush_interval=0)
    writer = AsyncWriter(failing, config)
    writer.write_string("error test")
    with pytest.raises(OSError):
        writer.flush()
    assert len(seen) == 1
    assert str(seen[0]) == "test error"
    writer.close()


def test_empty_writes_are_noops(sink):
    with AsyncWriter(sink) as writer:
        writer.write(None)
        writer.write(b"")
        writer.write_string("")
        writer.flush()
        assert len(sink) == 0
        stats = writer.stats()
        assert stats.write_count == 0
        assert stats.bytes_written == 0


def test_large_writes(sink):
    with AsyncWriter(sink, WriterConfig(buffer_size=1024)) as writer:
        writer.write_string("x" * 2048)
        writer.flush()
        assert sink.text() == "x" * 2048


def test_file_writing(tmp_path):
    path = tmp_path / "out.txt"
    with open(path, "wb") as handle:
        with AsyncWriter(handle) as writer:
            for i in range(3):
                writer.write_string(f"Line {i + 1}\n")
            writer.flush()
    assert path.read_text() == "Line 1\nLine 2\nLine 3\n"


def test_sink_returning_none_counts_as_complete():
    class NoneSink:
        def __init__(self):
            self.parts = []

        def write(self, data):
            self.parts.append(bytes(data))

    target = NoneSink()
    with AsyncWriter(target) as writer:
        writer.write_string("abc")
        writer.flush()
        assert target.parts == [b"abc"]
        assert writer.stats().error_count == 0