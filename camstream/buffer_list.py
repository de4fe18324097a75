"""Lists of frame buffers bound to one queue of a device."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Any, Optional

from .buffer import Buffer
from .errors import DeviceError
from .formats import PIX_FMT_H264, BufferFormat, fourcc_to_string

log = logging.getLogger(__name__)

MAX_BUFFER_QUEUE = 4
_MIB = 1024.0 * 1024.0


def _monotonic_us() -> int:
    return time.monotonic_ns() // 1000


@dataclass
class BufferStats:
    """Frame counters and dequeue interval statistics."""

    frames: int = 0
    dropped: int = 0
    frames_since_reset: int = 0
    max_dequeued_us: int = 0
    avg_dequeued_us: float = 0.0
    stddev_dequeued_us: float = 0.0


class BufferList:
    """A set of buffers for the capture or output side of a device.

    Optional hardware hooks (``buffer_list_alloc_buffers``,
    ``buffer_list_free_buffers``, ``buffer_list_set_stream``) may be missing
    or None on the device's hardware object.
    """

    def __init__(
        self,
        name: str,
        index: int,
        dev: Any,
        path: Optional[str],
        fmt: BufferFormat,
        do_capture: bool,
        do_mmap: bool,
    ) -> None:
        self.name = name
        self.index = index
        self.dev = dev
        self.path = path
        self.fmt = replace(fmt)
        self.do_capture = do_capture
        self.do_mmap = do_mmap
        self.do_timestamps = False
        self.hw_state: Any = None

        self.bufs: list[Buffer] = []
        self._allocated = False
        self.queued_bufs: list[Buffer] = []

        self.last_enqueued_us = 0
        self.last_dequeued_us = 0
        self.last_capture_time_us = 0
        self.last_in_queue_time_us = 0
        self.streaming = False
        self.stats = BufferStats()
        self.stats_last = BufferStats()

        try:
            got_bufs = dev.hw.buffer_list_open(self) or 0
            if got_bufs < 0:
                raise DeviceError(f"{name}: Cannot open buffer list")
            if got_bufs > 0:
                self._allocate(got_bufs)
        except DeviceError:
            self.close()
            raise

    def __repr__(self) -> str:
        return f"BufferList({self.name!r}, nbufs={self.nbufs}, streaming={self.streaming})"

    @property
    def nbufs(self) -> int:
        return len(self.bufs)

    def _hook(self, name: str):
        return getattr(self.dev.hw, name, None)

    def _allocate(self, got_bufs: int) -> None:
        if self._allocated or got_bufs <= 0:
            raise DeviceError(f"{self.name}: Buffers cannot be allocated")

        log.info(
            "%s: Using: %ux%u/%s, buffers=%d, bytesperline=%d, sizeimage=%.1fMiB",
            self.name,
            self.fmt.width,
            self.fmt.height,
            fourcc_to_string(self.fmt.format),
            got_bufs,
            self.fmt.bytesperline,
            self.fmt.sizeimage / _MIB,
        )

        self._allocated = True
        self.fmt.nbufs = got_bufs
        mem_used = 0

        for i in range(got_bufs):
            try:
                buf = Buffer(f"{self.name}:buf{i}", self, i)
            except DeviceError:
                log.error("%s: Cannot open buffer: %u", self.name, i)
                self.free_buffers()
                raise
            if buf.dma_fd >= 0:
                mem_used += buf.length
            self.bufs.append(buf)

        log.info(
            "%s: Opened %u buffers. Memory used: %.1f MiB",
            self.name,
            self.nbufs,
            mem_used / _MIB,
        )

    def close(self) -> None:
        """Free the buffers and release the list's hardware resources."""
        self.free_buffers()
        self.dev.hw.buffer_list_close(self)

    def alloc_buffers(self) -> None:
        """Allocate buffers through the hardware, unless already allocated."""
        if self._allocated:
            return
        hook = self._hook("buffer_list_alloc_buffers")
        if hook is None:
            raise DeviceError(f"{self.name}: Buffer allocation is not supported")
        got_bufs = hook(self)
        if got_bufs is None or got_bufs < 0:
            raise DeviceError(f"{self.name}: Cannot allocate buffers")
        self._allocate(got_bufs)

    def free_buffers(self) -> None:
        """Close every buffer and let the hardware release their memory."""
        if not self._allocated:
            return
        for buf in self.bufs:
            buf.close()
        self.bufs = []
        self._allocated = False

        hook = self._hook("buffer_list_free_buffers")
        if hook is not None:
            hook(self)

    def set_stream(self, do_on: bool) -> None:
        """Start or stop streaming; stopping drops the pending queue."""
        hook = self._hook("buffer_list_set_stream")
        if hook is None:
            raise DeviceError(f"{self.name}: Streaming is not supported")
        if self.streaming == do_on:
            return

        hook(self, do_on)
        self.streaming = do_on

        if do_on:
            self.last_enqueued_us = _monotonic_us()
        else:
            self.clear_queue()

        log.info(
            "%s: Streaming %s... Was %d of %d enqueud",
            self.name,
            "started" if do_on else "stopped",
            self.count_enqueued(),
            self.nbufs,
        )

    def pollfd(self, can_dequeue: bool) -> Any:
        """Return what the hardware wants polled for this list."""
        return self.dev.hw.buffer_list_pollfd(self, can_dequeue)

    def find_slot(self) -> Optional[Buffer]:
        """Return the first buffer held only by its owner and not queued."""
        return next(
            (buf for buf in self.bufs if not buf.enqueued and buf.mmap_reflinks == 1),
            None,
        )

    def count_enqueued(self) -> int:
        return sum(1 for buf in self.bufs if buf.enqueued)

    def enqueue(self, dma_buf: Buffer) -> bool:
        """Feed the contents of ``dma_buf`` into a free slot of this list.

        Returns False when no slot is free.
        """
        if not self.do_mmap and not dma_buf.buf_list.do_mmap:
            raise DeviceError(
                f"{self.name}: Cannot enqueue non-mmap to non-mmap: {dma_buf.name}."
            )

        buf = self.find_slot()
        if buf is None:
            return False

        buf.flags = replace(dma_buf.flags)
        buf.captured_time_us = dma_buf.captured_time_us

        if self.do_mmap:
            if dma_buf.used > buf.length:
                log.info(
                    "%s: The dma_buf (%s) is too long: %d vs space=%d",
                    self.name,
                    dma_buf.name,
                    dma_buf.used,
                    buf.length,
                )
                dma_buf.used = buf.length

            before = _monotonic_us()
            size = dma_buf.used
            buf.data[:size] = dma_buf.data[:size]
            log.debug(
                "%s: mmap copy: src=%s, size=%d, space=%d, time=%dus",
                buf.name,
                dma_buf.name,
                size,
                buf.length,
                _monotonic_us() - before,
            )
        else:
            log.debug(
                "%s: dmabuf copy: src=%s, dma_fd=%d, size=%d",
                buf.name,
                dma_buf.name,
                dma_buf.dma_fd,
                dma_buf.used,
            )
            buf.dma_source = dma_buf
            buf.length = dma_buf.length
            dma_buf.mmap_reflinks += 1

        buf.used = dma_buf.used
        buf.consumed("copy-data")
        return True

    @staticmethod
    def _update_h264_key_frame(buf: Buffer) -> None:
        head = bytes(buf.data[:8]).hex(" ").upper() if buf.data is not None else ""
        if buf.flags.is_keyframe:
            log.debug("%s: Got key frame (from device)!: %s", buf.name, head)
        elif buf.used >= 5 and (buf.data[4] & 0x1F) == 0x07:
            log.debug("%s: Got key frame (from buffer)!: %s", buf.name, head)
            buf.flags.is_keyframe = True

    def dequeue(self) -> Buffer:
        """Take a filled buffer from the hardware and update statistics."""
        buf = self.dev.hw.buffer_list_dequeue(self)
        if buf is None:
            raise DeviceError(f"{self.name}: Nothing to dequeue")

        now = _monotonic_us()
        dequeued_us = now - self.last_dequeued_us if self.last_dequeued_us > 0 else 0

        self.last_dequeued_us = now
        self.last_capture_time_us = now - buf.captured_time_us
        self.last_in_queue_time_us = now - buf.enqueue_time_us

        if buf.mmap_reflinks > 0:
            raise DeviceError(
                f"{buf.name}: Buffer appears to be enqueued? (links={buf.mmap_reflinks})"
            )

        buf.enqueued = False
        buf.mmap_reflinks = 1

        log.debug(
            "%s: Grabbed mmap buffer=%u, bytes=%d, used=%d, frame=%d, linked=%s",
            self.name,
            buf.index,
            buf.length,
            buf.used,
            self.stats.frames,
            buf.dma_source.name if buf.dma_source else None,
        )

        if buf.dma_source is not None:
            source = buf.dma_source
            source.used = 0
            source.consumed("mmap-dequeued")
            buf.dma_source = None

        if self.fmt.format == PIX_FMT_H264:
            self._update_h264_key_frame(buf)
            buf.flags.is_keyed = True
        else:
            buf.flags.is_keyed = False

        self._record_dequeue(dequeued_us)
        return buf

    def _record_dequeue(self, dequeued_us: int) -> None:
        stats = self.stats
        stats.frames += 1

        old_average = stats.avg_dequeued_us
        old_sum = stats.avg_dequeued_us * stats.frames_since_reset
        old_stddev_sum = stats.stddev_dequeued_us ** 2 * stats.frames_since_reset

        stats.frames_since_reset += 1
        stats.max_dequeued_us = max(stats.max_dequeued_us, dequeued_us)
        stats.avg_dequeued_us = (old_sum + dequeued_us) / stats.frames_since_reset
        variance = (
            old_stddev_sum
            + (dequeued_us - old_average) * (dequeued_us - stats.avg_dequeued_us)
        ) / stats.frames_since_reset
        stats.stddev_dequeued_us = math.sqrt(max(variance, 0.0))

    def clear_queue(self) -> None:
        """Release every buffer waiting in the software queue."""
        queued, self.queued_bufs = self.queued_bufs, []
        for buf in queued:
            buf.consumed("clear queue")

    def push_to_queue(self, dma_buf: Buffer, max_bufs: int = 0) -> bool:
        """Hold ``dma_buf`` for later; False when the queue is full."""
        limit = min(max_bufs or MAX_BUFFER_QUEUE, MAX_BUFFER_QUEUE)

        if self.dev.paused:
            return True
        if len(self.queued_bufs) >= limit:
            return False

        dma_buf.use()
        self.queued_bufs.append(dma_buf)
        return True

    def pop_from_queue(self) -> Optional[Buffer]:
        """Take the oldest held buffer, or None when the queue is empty."""
        if not self.queued_bufs:
            return None
        return self.queued_bufs.pop(0)