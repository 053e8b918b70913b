from __future__ import annotations

import json
import queue
import threading
import time
from typing import Any, Callable, Iterable, Iterator, Optional

from .types import Chunk, Usage
from .wire import decode_chunk


def iter_frames(
    lines: Iterable[str | bytes],
    on_skip: Callable[[str, str], None] | None = None,
) -> Iterator[dict[str, Any]]:
    """Decode NDJSON or SSE lines into JSON objects.

    Blank lines, ``:`` comments and ``[DONE]`` are ignored. Lines that are
    not JSON objects are reported to ``on_skip`` and skipped.
    """
    for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        line = line.strip()
        if not line or line.startswith(":"):
            continue
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
            if not line:
                continue
        elif line.startswith(("event:", "id:", "retry:")):
            continue
        if line == "[DONE]":
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            if on_skip:
                on_skip(line, str(e))
            continue
        if not isinstance(obj, dict):
            if on_skip:
                on_skip(line, "frame is not a JSON object")
            continue
        yield obj


_CLOSED = object()


class StreamSession:
    """One in-flight exchange: a reader thread feeding two queues.

    ``chunks`` receives decoded Chunks followed by a closing sentinel;
    ``errors`` receives at most one exception, always queued before the
    sentinel. The owner polls without blocking.
    """

    def __init__(
        self,
        source: Callable[[threading.Event], Iterable[Chunk]],
        *,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.started_at = time.time()
        self.usage = Usage()
        self.cancelled = threading.Event()
        self._source = source
        self._on_close = on_close
        self._chunks: "queue.Queue[Any]" = queue.Queue(maxsize=100)
        self._errors: "queue.Queue[BaseException]" = queue.Queue(maxsize=1)
        self._closed = False
        self._thread = threading.Thread(target=self._pump, name="pyhecate-stream", daemon=True)

    def start(self) -> "StreamSession":
        self._thread.start()
        return self

    def _pump(self) -> None:
        try:
            for chunk in self._source(self.cancelled):
                if self.cancelled.is_set():
                    break
                self._put(chunk)
        except Exception as e:
            if not self.cancelled.is_set():
                self._errors.put_nowait(e)
        finally:
            self._put(_CLOSED, force=True)

    def _put(self, item: Any, force: bool = False) -> None:
        # bounded queue; keep trying while nobody has cancelled us
        while True:
            try:
                self._chunks.put(item, timeout=0.1)
                return
            except queue.Full:
                if self.cancelled.is_set() and not force:
                    return
                if self.cancelled.is_set():
                    # drop buffered chunks so the sentinel always fits
                    try:
                        self._chunks.get_nowait()
                    except queue.Empty:
                        pass

    def poll(self) -> tuple[str, Any] | None:
        """Non-blocking poll.

        Returns ``("chunk", Chunk)``, ``("closed", error_or_None)``,
        ``("error", exc)`` or None when nothing is ready yet. Chunks are
        preferred over errors. After ``closed`` the session is finished.
        """
        if self._closed:
            return None
        try:
            item = self._chunks.get_nowait()
        except queue.Empty:
            item = None
        if item is _CLOSED:
            self._closed = True
            return ("closed", self._drain_error())
        if item is not None:
            if item.usage is not None:
                self.usage = self.usage + item.usage
            return ("chunk", item)
        err = self._drain_error()
        if err is not None:
            return ("error", err)
        return None

    def _drain_error(self) -> Optional[BaseException]:
        try:
            return self._errors.get_nowait()
        except queue.Empty:
            return None

    def cancel(self) -> None:
        self.cancelled.set()
        if self._on_close is not None:
            try:
                self._on_close()
            except Exception:
                # the reader thread is unblocked either way
                pass

    @property
    def finished(self) -> bool:
        return self._closed

    @property
    def elapsed(self) -> float:
        return time.time() - self.started_at


def chunks_from_lines(
    lines: Iterable[str | bytes],
    on_skip: Callable[[str, str], None] | None = None,
) -> Iterator[Chunk]:
    for obj in iter_frames(lines, on_skip=on_skip):
        yield decode_chunk(obj)
