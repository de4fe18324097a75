"""Pixel formats, FourCC codes and buffer format descriptions."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable


class BufferType(enum.IntEnum):
    """What kind of frames a buffer list carries."""

    DEFAULT = 0
    RAW = 1
    IMAGE = 2
    VIDEO = 3


@dataclass
class BufferFormat:
    """Geometry and layout of the frames held by a buffer list."""

    width: int = 0
    height: int = 0
    format: int = 0
    bytesperline: int = 0
    sizeimage: int = 0
    nbufs: int = 0
    interval_us: int = 0
    type: BufferType = BufferType.DEFAULT


def fourcc(code: str) -> int:
    """Pack a four character code into its little-endian integer value."""
    if len(code) != 4:
        raise ValueError(f"a FourCC code has exactly 4 characters, got {code!r}")
    try:
        raw = code.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValueError(f"a FourCC code must be ASCII, got {code!r}") from exc
    return int.from_bytes(raw, "little")


def fourcc_to_string(value: int) -> str:
    """Unpack an integer FourCC value into its characters."""
    raw = (value & 0xFFFFFFFF).to_bytes(4, "little")
    return raw.decode("latin-1").rstrip("\0")


def many_fourcc_to_string(values: Iterable[int]) -> str:
    """Render a sequence of FourCC values, stopping at a zero terminator."""
    names = []
    for value in values:
        if not value:
            break
        names.append(fourcc_to_string(value))
    return ", ".join(names)


PIX_FMT_YUYV = fourcc("YUYV")
PIX_FMT_YUV420 = fourcc("YU12")
PIX_FMT_YVU420 = fourcc("YV12")
PIX_FMT_NV12 = fourcc("NV12")
PIX_FMT_NV21 = fourcc("NV21")
PIX_FMT_MJPEG = fourcc("MJPG")
PIX_FMT_JPEG = fourcc("JPEG")
PIX_FMT_H264 = fourcc("H264")
PIX_FMT_SRGGB10 = fourcc("RG10")
PIX_FMT_SGRBG10 = fourcc("BA10")
PIX_FMT_SRGGB10P = fourcc("pRAA")
PIX_FMT_SGRBG10P = fourcc("pgAA")
PIX_FMT_SBGGR10P = fourcc("pBAA")
PIX_FMT_RGB565 = fourcc("RGBP")
PIX_FMT_RGB24 = fourcc("RGB3")
PIX_FMT_BGR24 = fourcc("BGR3")