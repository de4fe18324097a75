"""Latest-frame holders that hand captured buffers to consumers."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from .buffer import Buffer

log = logging.getLogger(__name__)

BUFFER_LOCK_MAX_CALLBACKS = 10
DEFAULT_BUFFER_LOCK_TIMEOUT = 16  # ~60fps
DEFAULT_BUFFER_LOCK_GET_TIMEOUT = 2000  # 2s

CheckStreaming = Callable[["BufferLock"], bool]
NotifyBuffer = Callable[["BufferLock", "Buffer"], None]
WriteFn = Callable[["BufferLock", "Buffer", int], int]


def _monotonic_us() -> int:
    return time.monotonic_ns() // 1000


class WriteLoopError(Exception):
    """A write loop stopped early; ``frames`` were written before that."""

    def __init__(self, message: str, frames: int) -> None:
        super().__init__(message)
        self.frames = frames


class BufferLock:
    """Holds the most recent buffer of a capture list for readers."""

    def __init__(self, name: str, timeout_ms: int = 0, frame_interval_ms: int = 0) -> None:
        self.name = name
        self.buf_list: Any = None
        self.timeout_us = max(timeout_ms, DEFAULT_BUFFER_LOCK_TIMEOUT) * 1000
        self.frame_interval_ms = frame_interval_ms

        self.buf: Optional["Buffer"] = None
        self.buf_time_us = 0
        self.counter = 0
        self.refs = 0
        self.dropped = 0

        self._check_streaming: list[CheckStreaming] = []
        self._notify_buffer: list[NotifyBuffer] = []
        self._cond = threading.Condition(threading.RLock())

    def __repr__(self) -> str:
        return f"BufferLock({self.name!r}, frames={self.counter}, refs={self.refs})"

    def is_used(self) -> bool:
        """Whether any reader currently holds the lock in use."""
        with self._cond:
            return self.refs != 0

    def use(self, ref: int) -> None:
        """Add ``ref`` (possibly negative) to the number of readers."""
        with self._cond:
            self.refs += ref

    def needs_buffer(self) -> bool:
        """Whether frames should keep flowing into this lock.

        A held buffer older than the timeout is released first.
        """
        now = _monotonic_us()
        with self._cond:
            if self.timeout_us > 0 and now - self.buf_time_us > self.timeout_us:
                if self.buf is not None:
                    self.buf.consumed(self.name)
                self.buf = None
            if self.refs > 0:
                return True
            return any(check(self) for check in self._check_streaming)

    def _clear_buffer(self, now: int) -> None:
        if self.buf is not None:
            self.buf.consumed(self.name)
        self.buf = None
        self.buf_time_us = now

    def _set_buffer(self, buf: "Buffer", now: int) -> None:
        if self.buf is not None:
            self.buf.consumed(self.name)
        buf.use()
        frame_ms = (now - self.buf_time_us) / 1000.0
        self.buf = buf
        self.buf_time_us = now
        self.counter += 1

        log.debug(
            "%s: Captured buffer %s (refs=%d), frame=%d/%d, processing_ms=%.1f, frame_ms=%.1f",
            self.name,
            buf.name,
            buf.mmap_reflinks,
            self.counter,
            self.dropped,
            (now - buf.captured_time_us) / 1000.0,
            frame_ms,
        )
        self._cond.notify_all()

        for notify in self._notify_buffer:
            notify(self, buf)

    def capture(self, buf: Optional["Buffer"]) -> None:
        """Offer a new buffer; None releases the held one.

        Non-key frames arriving faster than the frame interval are dropped.
        """
        now = _monotonic_us()
        with self._cond:
            if buf is None:
                self._clear_buffer(now)
            elif buf.flags.is_keyframe:
                self._set_buffer(buf, now)
            elif now - self.buf_time_us >= self.frame_interval_ms * 1000:
                self._set_buffer(buf, now)
            else:
                self.dropped += 1
                log.debug(
                    "%s: Dropped buffer %s (refs=%d), frame=%d/%d, frame_ms=%.1f",
                    self.name,
                    buf.name,
                    buf.mmap_reflinks,
                    self.counter,
                    self.dropped,
                    (now - buf.captured_time_us) / 1000.0,
                )

    def get(self, timeout_ms: int = 0, counter: int = 0) -> tuple[Optional["Buffer"], int]:
        """Return a buffer newer than ``counter`` together with its counter.

        The returned buffer carries a reference the caller must release with
        ``consumed``. Returns ``(None, counter)`` when nothing new arrives in
        time; a ``timeout_ms`` of 0 waits for the default period.
        """
        timeout = (timeout_ms or DEFAULT_BUFFER_LOCK_GET_TIMEOUT) / 1000.0

        with self._cond:
            if counter == self.counter or self.buf is None:
                seen = self.counter
                if not self._cond.wait_for(lambda: self.counter != seen, timeout):
                    return None, counter

            buf = self.buf
            if buf is not None:
                buf.use()
            return buf, self.counter

    def write_loop(self, nframes: int, timeout_ms: int, fn: WriteFn) -> int:
        """Feed successive buffers to ``fn`` and return how many it wrote.

        ``fn(lock, buf, frame)`` returns a positive value for a written frame,
        0 for a skipped one and a negative value to stop with an error. The
        loop ends after ``nframes`` frames (0: no limit) or ``timeout_ms``
        (0: no limit). Failures raise :class:`WriteLoopError`.
        """
        counter = 0
        frames = 0
        start = _monotonic_us()
        deadline_us = start + DEFAULT_BUFFER_LOCK_GET_TIMEOUT * 1000
        frame_stop_us = start + timeout_ms * 1000

        self.use(1)
        try:
            while nframes == 0 or frames < nframes:
                if timeout_ms and frame_stop_us < _monotonic_us():
                    break

                buf, counter = self.get(0, counter)
                if buf is None:
                    raise WriteLoopError(f"{self.name}: No frame available", frames)

                try:
                    ret = fn(self, buf, frames)
                finally:
                    buf.consumed("write-loop")

                if ret > 0:
                    frames += 1
                elif ret < 0:
                    raise WriteLoopError(f"{self.name}: Writing a frame failed", frames)
                elif not frames and deadline_us < _monotonic_us():
                    log.debug("%s: Deadline getting frame elapsed.", self.name)
                    raise WriteLoopError(f"{self.name}: Deadline getting frame elapsed", frames)
        finally:
            self.use(-1)

        return frames

    def register_check_streaming(self, check_streaming: CheckStreaming) -> bool:
        """Add a callback consulted by :meth:`needs_buffer`; False when full."""
        with self._cond:
            if len(self._check_streaming) >= BUFFER_LOCK_MAX_CALLBACKS:
                return False
            self._check_streaming.append(check_streaming)
            return True

    def register_notify_buffer(self, notify_buffer: NotifyBuffer) -> bool:
        """Add a callback run for every accepted buffer; False when full."""
        with self._cond:
            if len(self._notify_buffer) >= BUFFER_LOCK_MAX_CALLBACKS:
                return False
            self._notify_buffer.append(notify_buffer)
            return True