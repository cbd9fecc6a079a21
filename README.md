# flowstream

Building blocks for moving data around in threaded Python programs:

- **`flowstream.channel`**: a bounded, thread-safe channel with a choice of
  backpressure strategies (block, drop newest, drop oldest, raise) and running statistics.
- **`flowstream.stream`**: lazy, chainable streams over iterables, channels or
  generator functions, with filter/map/flat_map/sorted/distinct/skip/limit/peek and
  the usual terminal operations.
- **`flowstream.sources`** and **`flowstream.operations`**: the sources and
  pipeline steps that streams are built from.
- **`flowstream.writer`**: an asynchronous writer that buffers bytes in memory and
  writes them to an underlying file-like object from a background thread, with
  retries and periodic flushing.

It has no dependencies outside the standard library.

## Installation

```
pip install flowstream
```

## Channels

```python
from flowstream.channel import (
    BackpressureChannel, BackpressureStrategy, ChannelConfig, ChannelFull, make_channel,
)

with make_channel(3) as ch:
    ch.send(1)
    ch.send(2)
    print(len(ch), ch.capacity())   # 2 3
    print(ch.receive())             # 1

config = ChannelConfig(buffer_size=2, strategy=BackpressureStrategy.DROP_OLDEST,
                       on_drop=lambda v: print("dropped", v))
ch = BackpressureChannel(config)
for item in ("a", "b", "c"):
    ch.send(item)                   # prints "dropped a"
print(ch.stats().dropped_count)     # 1
```

Strategies for a send that meets a full buffer:

| Strategy      | Behaviour                                                     |
|---------------|---------------------------------------------------------------|
| `BLOCK`       | wait for room (the default); `on_block` is called each time it waits |
| `DROP`        | discard the new value and pass it to `on_drop`                |
| `DROP_OLDEST` | discard the oldest buffered value, pass it to `on_drop`, keep the new one |
| `ERROR`       | raise `ChannelFull`                                           |

`send` and `receive` accept an optional `timeout` in seconds, and
`ChannelConfig.send_timeout` / `receive_timeout` set a default (0 means none); when
the time passes they raise `TimeoutError`. A buffer size of 0 or less becomes 100.

`try_send` never blocks: it drops according to `DROP` / `DROP_OLDEST` and otherwise
raises `ChannelFull`. `try_receive` returns `(value, True)` or `(None, False)`.

`close()` stops further sends (`ChannelClosed`); `receive` still drains the values
already buffered and raises `ChannelClosed` once the channel is empty, while
`try_receive` raises `ChannelClosed` as soon as the channel is closed.
`stats()` returns a `ChannelStats` snapshot with send, receive, drop and
blocked-send counts, average times in seconds, buffer utilisation and the times of
the last send and receive.

## Streams

```python
from flowstream.stream import from_slice, generate

evens = (
    from_slice(range(1, 11))
    .filter(lambda x: x % 2 == 0)
    .map(lambda x: x * 2)
    .limit(3)
    .to_list()
)
print(evens)  # [4, 8, 12]

counter = iter(range(1, 1_000_000))
print(generate(lambda: next(counter)).limit(5).to_list())  # [1, 2, 3, 4, 5]
```

Streams are made with `from_slice(items)`, `from_channel(channel)` (values received
from a `BackpressureChannel` until it is closed and drained), `generate(fn)`
(endless) and `empty()`, or directly as `Stream(source, operations)` with a
`flowstream.sources.Source`.

Intermediate operations (`filter`, `map`, `map_to`, `flat_map`, `distinct`,
`sorted`, `skip`, `limit`, `peek`) return new streams and do nothing until a
terminal operation runs: `to_list`, `count`, `reduce`, `collect`, `for_each`,
`find_first`, `find_any`, `any_match`, `all_match`, `none_match`, `min`, `max`.
`find_first`, `find_any`, `min` and `max` return a `(value, found)` pair.
Comparators given to `sorted`, `min` and `max` return a negative, zero or positive
number. `distinct` needs hashable elements. `flat_map` takes a function returning a
stream (or any iterable) and closes it once consumed.

Every terminal operation takes an optional `timeout` in seconds and raises
`TimeoutError` when it passes. A terminal operation, or iterating a stream with
`for`, closes the stream; using a closed stream raises `StreamClosed`.

## Asynchronous writer

```python
import io
from flowstream.writer import AsyncWriter, WriterConfig

sink = io.BytesIO()
with AsyncWriter(sink, WriterConfig(buffer_size=1024, flush_interval=0.1)) as writer:
    writer.write_string("Hello, ")
    writer.write(b"world!")
    writer.flush()
print(sink.getvalue())  # b'Hello, world!'
```

The underlying object needs only a `write(bytes)` method; a return value of `None`
counts as a complete write. `write_string` writes the UTF-8 encoding of its text.
Empty writes are ignored.

`WriterConfig` fields:

- `buffer_size` (default 64 KiB): when a write does not fit, the buffer is flushed first.
- `flush_interval` (default 1 second): automatic flushing; 0 disables it.
- `block_on_full` (default `True`): writes wait until the data is buffered. With
  `False` they return at once, and a write that would overflow the buffer raises
  `BufferFull` and calls `on_buffer_full`.
- `max_retries` (default 3) and `retry_delay` (default 0.1 seconds): failed writes
  to the underlying object are retried.
- `on_error(exc)` and `on_flush(bytes_written, seconds)` callbacks.

`write`, `write_string` and `flush` accept an optional `timeout` in seconds and raise
`TimeoutError` when it passes. `close()` flushes what remains, stops the background
threads and re-raises a failure of that last flush; afterwards `write` and `flush`
raise `WriterClosed`. `stats()` returns a `WriterStats` snapshot with writes, bytes,
flushes, errors, buffer overflows, write times and buffer utilisation;
`buffer_size()` and `buffer_capacity()` report buffered bytes and capacity.

## What it does not do

This is a library only: it has no command-line tool. Streams run sequentially in
the calling thread; there is no parallel stream processing. Nothing here uses
`asyncio`; concurrency is by threads.

## Running the tests

```
pip install -e ".[test]"
pytest
```