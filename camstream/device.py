"""Capture and processing devices and the hardware backends behind them."""

from __future__ import annotations

import abc
import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Optional, TextIO

from .buffer_list import BufferList
from .errors import DeviceError
from .formats import BufferFormat

log = logging.getLogger(__name__)

OPTION_VALUE_LIST_SEP = "\n"
MAX_DEVICE_OPTION_MENU = 20


class DeviceHardware(abc.ABC):
    """Backend operations behind a device, its buffer lists and buffers.

    Failures are reported by raising :class:`DeviceError`. The optional
    hooks are ``None`` here; a backend that supports them defines them as
    methods:

    * ``device_video_force_key(dev)``
    * ``device_dump_options(dev, stream)``
    * ``device_options(dev)`` -> iterable of :class:`DeviceOption`
    * ``device_set_fps(dev, desired_fps)``
    * ``device_set_rotation(dev, vflip, hflip)`` -> bool
    * ``device_set_option(dev, key, value)`` -> True when the option was set,
      False when the device has no such option
    * ``buffer_list_alloc_buffers(buf_list)`` -> number of buffers
    * ``buffer_list_free_buffers(buf_list)``
    * ``buffer_list_set_stream(buf_list, do_on)``
    """

    device_video_force_key: Optional[Callable[..., Any]] = None
    device_dump_options: Optional[Callable[..., Any]] = None
    device_options: Optional[Callable[..., Any]] = None
    device_set_fps: Optional[Callable[..., Any]] = None
    device_set_rotation: Optional[Callable[..., Any]] = None
    device_set_option: Optional[Callable[..., Any]] = None
    buffer_list_alloc_buffers: Optional[Callable[..., Any]] = None
    buffer_list_free_buffers: Optional[Callable[..., Any]] = None
    buffer_list_set_stream: Optional[Callable[..., Any]] = None

    @abc.abstractmethod
    def device_open(self, dev: "Device") -> None:
        """Acquire the backend resources of ``dev``."""

    @abc.abstractmethod
    def device_close(self, dev: "Device") -> None:
        """Release the backend resources of ``dev``."""

    @abc.abstractmethod
    def buffer_open(self, buf: Any) -> None:
        """Map or allocate the memory of one buffer."""

    @abc.abstractmethod
    def buffer_close(self, buf: Any) -> None:
        """Release the memory of one buffer."""

    @abc.abstractmethod
    def buffer_enqueue(self, buf: Any, who: str) -> None:
        """Hand a buffer back to the hardware queue."""

    @abc.abstractmethod
    def buffer_list_open(self, buf_list: BufferList) -> int:
        """Configure a buffer list; return how many buffers to allocate now."""

    @abc.abstractmethod
    def buffer_list_close(self, buf_list: BufferList) -> None:
        """Release the backend resources of a buffer list."""

    @abc.abstractmethod
    def buffer_list_dequeue(self, buf_list: BufferList) -> Any:
        """Return the next filled buffer of the list, or None."""

    @abc.abstractmethod
    def buffer_list_pollfd(self, buf_list: BufferList, can_dequeue: bool) -> Any:
        """Describe what to poll to learn that a buffer can be dequeued."""


class DeviceOptionType(enum.Enum):
    """Value type of a device option."""

    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    BOOL = "bool"
    INTEGER = "integer"
    INTEGER64 = "integer64"
    FLOAT = "float"
    STRING = "string"


@dataclass
class DeviceOptionMenu:
    """One named choice of a menu option."""

    id: int
    name: str


@dataclass
class DeviceOption:
    """An option or read-only property reported by a device."""

    name: str
    control_id: int = 0
    type: DeviceOptionType = DeviceOptionType.INTEGER
    elems: int = 0
    read_only: bool = False
    invalid: bool = False
    menu: list[DeviceOptionMenu] = field(default_factory=list)
    value: str = ""
    description: str = ""


class Device:
    """A device with capture buffer lists and at most one output list."""

    def __init__(self, name: str, path: str, hw: DeviceHardware) -> None:
        self.name = name
        self.path = path
        self.bus_info = ""
        self.hw = hw
        self.capture_lists: list[BufferList] = []
        self.output_list: Optional[BufferList] = None
        self.allow_dma = True
        self.hw_state: Any = None
        self.paused = False

        try:
            hw.device_open(self)
        except DeviceError:
            log.error("%s: Can't open device: %s", name, path)
            self.close()
            raise

    def __repr__(self) -> str:
        return f"Device({self.name!r}, path={self.path!r})"

    def __enter__(self) -> "Device":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def n_capture_list(self) -> int:
        return len(self.capture_lists)

    def _hook(self, name: str) -> Optional[Callable[..., Any]]:
        return getattr(self.hw, name, None)

    def close(self) -> None:
        """Close every buffer list and release the device."""
        capture_lists, self.capture_lists = self.capture_lists, []
        for buf_list in capture_lists:
            buf_list.close()

        if self.output_list is not None:
            output_list, self.output_list = self.output_list, None
            output_list.close()

        self.hw.device_close(self)

    def open_buffer_list(
        self,
        do_capture: bool,
        fmt: BufferFormat,
        do_mmap: bool = True,
        path: Optional[str] = None,
    ) -> BufferList:
        """Open a capture list, or the single output list, of this device."""
        if not self.allow_dma:
            do_mmap = True

        index = 0
        if do_capture:
            index = self.n_capture_list
            name = f"{self.name}:capture:{index}" if index > 0 else f"{self.name}:capture"
        else:
            if self.output_list is not None:
                raise DeviceError(f"{self.name}: The output_list is already created.")
            name = f"{self.name}:output"

        buf_list = BufferList(name, index, self, path, fmt, do_capture, do_mmap)

        if do_capture:
            self.capture_lists.append(buf_list)
        else:
            self.output_list = buf_list
        return buf_list

    def open_buffer_list_output(self, capture_list: Optional[BufferList]) -> BufferList:
        """Open an output list that consumes frames of ``capture_list``."""
        if capture_list is None:
            raise DeviceError(f"{self.name}: No capture list to feed the output")

        fmt = replace(capture_list.fmt, interval_us=0)
        do_mmap = not capture_list.do_mmap if capture_list.dev.allow_dma else True

        # Buffers copied into manually allocated memory must fit.
        if do_mmap:
            fmt.sizeimage = max([fmt.sizeimage, *(buf.length for buf in capture_list.bufs)])
        else:
            fmt.sizeimage = 0

        return self.open_buffer_list(False, fmt, do_mmap)

    def open_buffer_list_capture(
        self,
        path: Optional[str],
        output_list: Optional[BufferList],
        fmt: BufferFormat,
        do_mmap: bool,
    ) -> BufferList:
        """Open a capture list, taking unset geometry from ``output_list``."""
        if output_list is None:
            raise DeviceError(f"{self.name}: No output list to capture from")

        fmt = replace(fmt)
        if not fmt.width:
            fmt.width = output_list.fmt.width
        if not fmt.height:
            fmt.height = output_list.fmt.height
        if not fmt.nbufs:
            fmt.nbufs = output_list.fmt.nbufs

        return self.open_buffer_list(True, fmt, do_mmap, path)

    def open_buffer_list_capture_format(
        self,
        path: Optional[str],
        output_list: Optional[BufferList],
        format: int,
        do_mmap: bool,
    ) -> BufferList:
        """Open a capture list in the given pixel format."""
        return self.open_buffer_list_capture(
            path, output_list, BufferFormat(format=format), do_mmap
        )

    def set_stream(self, do_on: bool) -> None:
        """Start or stop streaming on every buffer list."""
        for buf_list in self.capture_lists:
            buf_list.set_stream(do_on)
        if self.output_list is not None:
            self.output_list.set_stream(do_on)

    def video_force_key(self) -> None:
        """Ask the encoder to emit a key frame."""
        hook = self._hook("device_video_force_key")
        if hook is None:
            raise DeviceError(f"{self.name}: Forcing a key frame is not supported")
        hook(self)

    def dump_options(self, stream: TextIO) -> None:
        """Write a human readable list of options, if the device has one."""
        hook = self._hook("device_dump_options")
        if hook is not None:
            hook(self, stream)

    def options(self) -> list[DeviceOption]:
        """Return the options and properties the device reports."""
        hook = self._hook("device_options")
        if hook is None:
            raise DeviceError(f"{self.name}: Listing options is not supported")
        return list(hook(self))

    def set_fps(self, desired_fps: int) -> int:
        """Set the frame rate; return the software frame interval in use.

        The interval is 0 when the hardware takes the frame rate itself.
        """
        interval_us = 1000 * 1000 // desired_fps if desired_fps > 0 else 0

        hook = self._hook("device_set_fps")
        if hook is not None:
            try:
                hook(self, desired_fps)
            except DeviceError as exc:
                log.debug("%s: Hardware frame rate not available: %s", self.name, exc)
            else:
                interval_us = 0

        log.info("%s: Setting frame interval_us=%d for FPS=%d", self.name, interval_us, desired_fps)

        for buf_list in self.capture_lists:
            buf_list.fmt.interval_us = interval_us
        return interval_us

    def set_rotation(self, vflip: bool, hflip: bool) -> bool:
        """Flip the image, through the hardware or the flip options."""
        hook = self._hook("device_set_rotation")
        if hook is not None:
            return bool(hook(self, vflip, hflip))

        error: Optional[DeviceError] = None
        try:
            hret = self.set_option("horizontal_flip", "1" if hflip else "0")
        except DeviceError as exc:
            error, hret = exc, False
        vret = self.set_option("vertical_flip", "1" if vflip else "0")
        if error is not None:
            raise error
        return hret or vret

    def set_option(self, key: str, value: str) -> bool:
        """Set one option; False when the device does not know ``key``."""
        hook = self._hook("device_set_option")
        if hook is None:
            raise DeviceError(f"{self.name}: Setting options is not supported")
        return bool(hook(self, key, value))

    def set_option_list(self, option_list: Optional[str]) -> None:
        """Apply ``key=value`` entries separated by OPTION_VALUE_LIST_SEP."""
        if not option_list:
            return

        for option in option_list.split(OPTION_VALUE_LIST_SEP):
            key, sep, value = option.partition("=")
            if not sep:
                log.info("%s: Missing 'key=value' for '%s'", self.name, option)
                continue
            try:
                self.set_option(key, value)
            except DeviceError as exc:
                log.info("%s: Cannot set '%s': %s", self.name, key, exc)

    def output_enqueued(self) -> int:
        """Number of output buffers currently held by the hardware."""
        if self.output_list is not None:
            return self.output_list.count_enqueued()
        return 0

    def capture_enqueued(self) -> tuple[int, int]:
        """Return the least and most enqueued buffers across capture lists."""
        counts = [buf_list.count_enqueued() for buf_list in self.capture_lists]
        max_val = max(counts, default=0)
        min_val = min([100, *counts])
        return min(min_val, max_val), max_val


def iter_devices(devices: Iterable[Optional[Device]]) -> Iterable[Device]:
    """Yield the devices that are present, skipping empty slots."""
    return (dev for dev in devices if dev is not None)