"""Feed an iterable of byte chunks to a blocking consumer running in a thread."""

from __future__ import annotations

import io
import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any, TypeVar

T = TypeVar("T")

_EOF = object()
_POLL_INTERVAL = 0.05
_CHANNEL_CAPACITY = 5


class StreamReadable(io.RawIOBase):
    """A readable file fed chunk by chunk from another thread.

    Closing it tells the feeding side that no more data is wanted.
    """

    def __init__(self, capacity: int = _CHANNEL_CAPACITY) -> None:
        super().__init__()
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=capacity)
        self._pending = memoryview(b"")
        self._eof = False
        self._receiver_closed = threading.Event()

    def readable(self) -> bool:
        return True

    def _fill(self) -> memoryview:
        if not self._pending and not self._eof:
            item = self._queue.get()
            if item is _EOF:
                self._eof = True
            else:
                self._pending = memoryview(item)
        return self._pending

    def readinto(self, buffer) -> int:
        target = memoryview(buffer).cast("B")
        if len(target) == 0:
            return 0
        pending = self._fill()
        count = min(len(target), len(pending))
        target[:count] = pending[:count]
        self._pending = pending[count:]
        return count

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield the remaining data chunk by chunk."""
        while True:
            chunk = self._fill()
            if not chunk:
                return
            self._pending = memoryview(b"")
            yield bytes(chunk)

    def close(self) -> None:
        self._receiver_closed.set()
        super().close()

    def _send(self, item: Any) -> bool:
        """Queue `item`; False once the reading side has closed."""
        while not self._receiver_closed.is_set():
            try:
                self._queue.put(item, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _finish(self) -> None:
        self._send(_EOF)


def extract_with_blocking_task(
    chunks: Iterable[bytes], func: Callable[[StreamReadable], T]
) -> T:
    """Run `func` in a worker thread on a StreamReadable fed from `chunks`.

    Reading stops early once `func` returns. An error from `chunks` takes
    precedence over one from `func`.
    """
    receiver = StreamReadable()
    outcome: dict[str, Any] = {}

    def worker() -> None:
        try:
            outcome["value"] = func(receiver)
        except BaseException as err:
            outcome["error"] = err
        finally:
            receiver.close()

    thread = threading.Thread(target=worker, name="extract-worker", daemon=True)
    thread.start()
    try:
        for chunk in chunks:
            if not chunk:
                continue
            if not receiver._send(bytes(chunk)):
                # The consumer is done, whether it succeeded or failed.
                break
    finally:
        receiver._finish()
        thread.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]