"""Inventory of the video devices present and the formats they convert."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional


@dataclass
class DeviceInfo:
    """A video device found on the system and the formats it accepts."""

    name: str
    path: str
    camera: bool = False
    m2m: bool = False
    output_formats: list[int] = field(default_factory=list)
    capture_formats: list[int] = field(default_factory=list)

    def has_format(self, capture: bool, format: int) -> bool:
        """Whether the capture (or output) side supports ``format``."""
        formats = self.capture_formats if capture else self.output_formats
        return format in formats


@dataclass
class DeviceList:
    """The devices found on the system."""

    devices: list[DeviceInfo] = field(default_factory=list)

    def __iter__(self) -> Iterator[DeviceInfo]:
        return iter(self.devices)

    def __len__(self) -> int:
        return len(self.devices)

    def find_m2m_format(self, output: int, capture: int) -> Optional[DeviceInfo]:
        """Return the first memory-to-memory device converting ``output`` to ``capture``."""
        return next(
            (
                info
                for info in self.devices
                if info.m2m
                and info.has_format(False, output)
                and info.has_format(True, capture)
            ),
            None,
        )

    def find_m2m_formats(
        self, output: int, capture_formats: Iterable[int]
    ) -> Optional[tuple[DeviceInfo, int]]:
        """Try ``capture_formats`` in order; return the device and the format found.

        A zero in ``capture_formats`` ends the search.
        """
        for capture in capture_formats:
            if not capture:
                break
            info = self.find_m2m_format(output, capture)
            if info is not None:
                return info, capture
        return None