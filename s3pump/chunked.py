# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Re-segment a byte source of unknown length into fixed-size chunks.

A reader thread pulls from the source and hands complete chunks to the
consumer through a bounded queue.  Memory use is bounded by the queue
size (``high_water_mark`` chunks) plus one partially filled chunk,
whatever the total payload size:

- a full queue blocks the reader (backpressure);
- :meth:`ChunkedBufferStream.pause` stops the reader from reading more
  source data until :meth:`ChunkedBufferStream.resume`.

The stream is single-use.  Build a new one for each upload attempt.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import IO

from s3pump.errors import StreamError


logger = logging.getLogger(__name__)

FIVE_MB = 5 * 1024 * 1024
DEFAULT_READ_SIZE = 64 * 1024

# Wake-up interval for blocked waits so close() is noticed.
_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class Chunk:
    """A slice of the source, in source order.

    Attributes:
        index: Zero-based position in the chunk sequence.
        data: Chunk bytes.  Every chunk but the last is exactly
            ``chunk_size`` long.
    """

    index: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


class _End:
    pass


@dataclass(frozen=True)
class _Failure:
    error: BaseException


class _Closed(Exception):
    """Raised inside the reader thread when the stream was closed."""


_END = _End()


class ChunkedBufferStream(Iterator[Chunk]):
    """Pausable chunk iterator over a binary source.

    Args:
        source: Binary file-like object (``read(n)``) or iterable of
            bytes-like objects.
        chunk_size: Size of every chunk except the last.
        high_water_mark: Chunks the reader may queue ahead of the
            consumer.
        read_size: Bytes requested per ``read`` call on file-like
            sources.
    """

    def __init__(
        self,
        source: IO[bytes] | Iterable[bytes],
        chunk_size: int = FIVE_MB,
        *,
        high_water_mark: int = 1,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0: {chunk_size}")
        if high_water_mark <= 0:
            raise ValueError(
                f"high_water_mark must be > 0: {high_water_mark}"
            )
        if read_size <= 0:
            raise ValueError(f"read_size must be > 0: {read_size}")
        self._source = source
        self._chunk_size = chunk_size
        self._read_size = read_size
        self._queue: queue.Queue[Chunk | _End | _Failure] = queue.Queue(
            maxsize=high_water_mark
        )
        self._running = threading.Event()
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None
        self._number_of_chunks = 0
        self._ended = False

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def number_of_chunks(self) -> int:
        """Chunks handed to the consumer so far."""
        return self._number_of_chunks

    @property
    def ended(self) -> bool:
        """True once the consumer has observed the end of the stream."""
        return self._ended

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    # -- flow control -------------------------------------------------------

    def pause(self) -> None:
        """Stop reading source data after the read in progress."""
        self._running.clear()

    def resume(self) -> None:
        """Start or continue reading source data."""
        if self._closed.is_set():
            raise RuntimeError("Stream is closed")
        self._running.set()
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._reader,
                name="s3pump-chunk-reader",
                daemon=True,
            )
            self._thread.start()

    def close(self) -> None:
        """Stop the reader and drop buffered chunks.  Idempotent."""
        self._closed.set()
        self._running.set()
        self._drain()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=_POLL_INTERVAL * 5)
        self._drain()
        self._ended = True

    def __enter__(self) -> ChunkedBufferStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- consumer -----------------------------------------------------------

    def __iter__(self) -> ChunkedBufferStream:
        return self

    def __next__(self) -> Chunk:
        """Return the next chunk.

        Raises:
            StopIteration: End of source or stream closed.
            RuntimeError: The stream is paused.
            StreamError: The source raised.
        """
        if self._ended:
            raise StopIteration
        if self._thread is None:
            self.resume()
        elif self.paused:
            raise RuntimeError("Stream is paused; call resume() first")

        while True:
            if self._closed.is_set():
                self._ended = True
                raise StopIteration
            try:
                item = self._queue.get(timeout=_POLL_INTERVAL)
                break
            except queue.Empty:
                continue

        if isinstance(item, _End):
            self._ended = True
            raise StopIteration
        if isinstance(item, _Failure):
            self._ended = True
            raise StreamError(
                f"Source stream failed: {item.error}"
            ) from item.error
        self._number_of_chunks += 1
        return item

    # -- reader thread ------------------------------------------------------

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _wait_running(self) -> None:
        while not self._running.wait(_POLL_INTERVAL):
            if self._closed.is_set():
                raise _Closed
        if self._closed.is_set():
            raise _Closed

    def _put(self, item: Chunk | _End | _Failure) -> None:
        while True:
            if self._closed.is_set():
                raise _Closed
            try:
                self._queue.put(item, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def _read_source(self) -> Iterator[bytes]:
        source = self._source
        if hasattr(source, "read"):
            while True:
                self._wait_running()
                data = source.read(self._read_size)  # type: ignore[union-attr]
                if not data:
                    return
                yield data
        else:
            iterator = iter(source)
            while True:
                self._wait_running()
                try:
                    data = next(iterator)
                except StopIteration:
                    return
                yield data

    def _reader(self) -> None:
        buffer = bytearray()
        index = 0
        try:
            for data in self._read_source():
                buffer += data
                while len(buffer) >= self._chunk_size:
                    chunk = Chunk(index, bytes(buffer[: self._chunk_size]))
                    del buffer[: self._chunk_size]
                    self._put(chunk)
                    index += 1
            # An empty source still yields one terminal chunk.
            if buffer or index == 0:
                self._put(Chunk(index, bytes(buffer)))
            self._put(_END)
        except _Closed:
            logger.debug("Chunk reader stopped: stream closed")
        except Exception as e:
            buffer.clear()
            self._drain()
            logger.debug("Chunk reader failed: %s", e)
            try:
                self._put(_Failure(e))
            except _Closed:
                pass
