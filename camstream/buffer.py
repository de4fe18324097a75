"""Frame buffers and their reference counting."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from .errors import DeviceError

if TYPE_CHECKING:
    from .buffer_list import BufferList

log = logging.getLogger(__name__)

# Guards reference counts and the enqueued state of every buffer.
_refs_lock = threading.RLock()


def _monotonic_us() -> int:
    return time.monotonic_ns() // 1000


@dataclass
class BufferFlags:
    """Per-frame flags reported by the device or detected from the data."""

    is_keyed: bool = False
    is_keyframe: bool = False
    is_last: bool = False


class Buffer:
    """One frame slot of a buffer list.

    A buffer starts with one reference held by its owner. When the last
    reference is released it is handed back to the hardware queue.
    """

    def __init__(self, name: str, buf_list: "BufferList", index: int) -> None:
        self.name = name
        self.buf_list = buf_list
        self.index = index

        self.data: Optional[Any] = None
        self.used = 0
        self.length = 0
        self.dma_fd = -1
        self.flags = BufferFlags()
        self.hw_state: Any = None

        self.mmap_reflinks = 1
        self.dma_source: Optional[Buffer] = None
        self.enqueued = False
        self.enqueue_time_us = 0
        self.captured_time_us = 0

        try:
            buf_list.dev.hw.buffer_open(self)
        except DeviceError:
            self.close()
            raise

    def __repr__(self) -> str:
        return (
            f"Buffer({self.name!r}, index={self.index}, used={self.used}, "
            f"refs={self.mmap_reflinks}, enqueued={self.enqueued})"
        )

    def close(self) -> None:
        """Release the hardware resources of this buffer."""
        self.buf_list.dev.hw.buffer_close(self)

    def use(self) -> bool:
        """Take a reference; refused while the buffer sits in the hardware queue."""
        with _refs_lock:
            if self.enqueued:
                return False
            self.mmap_reflinks += 1
            return True

    def consumed(self, who: str) -> bool:
        """Drop a reference, queueing the buffer back once nobody holds it.

        Returns False if the hardware refused to take the buffer back.
        """
        with _refs_lock:
            if self.mmap_reflinks == 0:
                raise DeviceError(f"{self.name}: Non symmetric reference counts")

            self.mmap_reflinks -= 1
            if self.enqueued or self.mmap_reflinks != 0:
                return True

            log.debug(
                "%s: Queuing buffer... used=%d length=%d (linked=%s) by %s",
                self.name,
                self.used,
                self.length,
                self.dma_source.name if self.dma_source else None,
                who,
            )

            if self.buf_list.do_timestamps:
                self.captured_time_us = _monotonic_us()

            try:
                self.buf_list.dev.hw.buffer_enqueue(self, who)
            except DeviceError as exc:
                log.debug("%s: Cannot enqueue buffer: %s", self.name, exc)
                dma_source = self.dma_source
                self.dma_source = None
                self.mmap_reflinks += 1
            else:
                self.enqueued = True
                now = _monotonic_us()
                self.enqueue_time_us = now
                self.buf_list.last_enqueued_us = now
                return True

        if dma_source is not None:
            dma_source.consumed(who)
        return False