"""Duplex channel joining a caller to a running engine build."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, BinaryIO, Callable, Deque, Iterable, Iterator, List, Optional

from .errors import ChannelClosedError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_CONTEXT_CHUNKS = 64


class StreamBuffer:
    """
    Thread-safe chunk buffer with an end marker and an error state.

    Producers put() chunks and close() the buffer when done; consumers
    iterate it. A bounded buffer blocks producers while it is full. Once
    aborted, consumers receive the abort error after any chunks that were
    kept.
    """

    def __init__(self, max_chunks: Optional[int] = None):
        self._chunks: Deque[Any] = deque()
        self._max_chunks = max_chunks
        self._cond = threading.Condition()
        self._ended = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._ended or self._error is not None

    def put(self, chunk: Any) -> None:
        with self._cond:
            while self._full() and not self.closed:
                self._cond.wait()
            if self._error is not None:
                raise ChannelClosedError("stream was aborted") from self._error
            if self._ended:
                raise ChannelClosedError("write after end of stream")
            self._chunks.append(chunk)
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._ended = True
            self._cond.notify_all()

    def abort(self, error: BaseException, discard: bool = False) -> None:
        with self._cond:
            if self._error is None:
                self._error = error
            if discard:
                self._chunks.clear()
            self._cond.notify_all()

    def _full(self) -> bool:
        return self._max_chunks is not None and len(self._chunks) >= self._max_chunks

    def __iter__(self) -> Iterator[Any]:
        while True:
            with self._cond:
                while not self._chunks and not self.closed:
                    self._cond.wait()
                if self._chunks:
                    chunk = self._chunks.popleft()
                    self._cond.notify_all()
                elif self._error is not None:
                    raise self._error
                else:
                    return
            yield chunk


class ContextPipe(StreamBuffer):
    """
    Bounded byte pipe carrying the build context to the engine.

    The engine side iterates the pipe, which makes it a chunked request
    body for docker-py. Aborting discards whatever has not been sent yet.
    """

    def __init__(self, max_chunks: int = DEFAULT_CONTEXT_CHUNKS):
        super().__init__(max_chunks)

    def write(self, data: bytes) -> int:
        if data:
            self.put(bytes(data))
        return len(data)

    def abort(self, error: BaseException, discard: bool = True) -> None:
        super().abort(error, discard)


class DuplexChannel:
    """
    A single handle for both legs of a build.

    The writable side carries the build context and is bound with
    set_writable() when the build starts. The readable side yields the
    engine's output text and is bound with set_readable() once the engine
    has accepted the build.

    By default output is buffered without limit, so it can be read at any
    time, or not at all, and the build still ends; an unread channel then
    holds the whole build log. With max_output_chunks the buffer is bounded
    instead: once it is full the engine output is not read until the
    caller catches up, so such a channel must be read for the build to end.
    """

    def __init__(self, max_output_chunks: Optional[int] = None) -> None:
        self._writable: Optional[Any] = None
        self._output = StreamBuffer(max_output_chunks)
        self._error_listeners: List[Callable[[BaseException], Any]] = []
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def set_writable(self, sink: Any) -> None:
        self._writable = sink

    def set_readable(self, source: Iterable[str]) -> threading.Thread:
        """Starts draining source into the readable side on a background thread."""
        thread = threading.Thread(
            target=self._pump, args=(source,), name="streambuild-output", daemon=True
        )
        thread.start()
        return thread

    def on_error(self, listener: Callable[[BaseException], Any]) -> None:
        """
        Registers a callback run when the channel is destroyed.

        A listener added after the channel was destroyed runs immediately.
        """
        with self._lock:
            if not self._destroyed:
                self._error_listeners.append(listener)
                return
            error = self._error
        listener(error)

    def write(self, data: bytes) -> int:
        if self._writable is None:
            raise ChannelClosedError("channel has no writable side")
        return self._writable.write(data)

    def close(self) -> None:
        """Ends the build context. The readable side stays open."""
        if self._writable is not None:
            self._writable.close()

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """
        Tears the channel down.

        Error listeners run first, then the writable side is aborted and
        readers get the error once they have consumed the buffered output.
        """
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            if error is None:
                error = ChannelClosedError("build channel was destroyed")
            self._error = error
            listeners = list(self._error_listeners)

        for listener in listeners:
            listener(error)

        abort = getattr(self._writable, "abort", None)
        if abort is not None:
            abort(error)
        self._output.abort(error)

    def read(self) -> str:
        """Blocks until the build output ends and returns all of it."""
        return "".join(self)

    def __iter__(self) -> Iterator[str]:
        return iter(self._output)

    def _pump(self, source: Iterable[str]) -> None:
        iterator = iter(source)
        try:
            if not self._destroyed:
                for text in iterator:
                    if self._destroyed:
                        break
                    self._output.put(text)
        except Exception as e:
            logger.debug("Build output failed: %r", e)
            self.destroy(e)
            return
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()
        self._output.close()


def copy_to_channel(source: BinaryIO, channel: Any, chunk_size: int = CHUNK_SIZE) -> None:
    """Writes source into the channel in chunks, then ends the context."""
    while True:
        data = source.read(chunk_size)
        if not data:
            break
        channel.write(data)
    channel.close()


def pipe_to_channel(source: BinaryIO, channel: Any, chunk_size: int = CHUNK_SIZE) -> threading.Thread:
    """
    Copies source into the channel on a background thread and closes source.

    A copy that fails for any reason other than the build already being torn
    down destroys the channel, which fails the build.
    """

    def run() -> None:
        try:
            copy_to_channel(source, channel, chunk_size)
        except ChannelClosedError as e:
            logger.debug("Build channel closed while sending context: %s", e)
        except Exception as e:
            logger.error("Failed to send build context: %s", e)
            channel.destroy(e)
        finally:
            source.close()

    thread = threading.Thread(target=run, name="streambuild-context", daemon=True)
    thread.start()
    return thread
