# camstream

Building blocks for a camera capture pipeline: reference-counted frame
buffers, buffer lists bound to a device queue, devices with pluggable
hardware backends, latest-frame buffer locks for consumers, an inventory of
video devices and the formats they convert, and parsing of control values.

## Installing

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## Modules

- `camstream.formats` — `BufferType`, `BufferFormat` (width, height, format,
  bytesperline, sizeimage, nbufs, interval_us, type), `fourcc`,
  `fourcc_to_string`, `many_fourcc_to_string` (stops at a zero value) and
  `PIX_FMT_*` constants such as `PIX_FMT_YUYV`, `PIX_FMT_MJPEG` and
  `PIX_FMT_H264`.
- `camstream.buffer` — `Buffer` and `BufferFlags`. A buffer starts with one
  reference; `use` takes another (refused while the buffer is enqueued) and
  `consumed` drops one, handing the buffer back to the hardware once nobody
  holds it.
- `camstream.buffer_list` — `BufferList` and `BufferStats`: allocating and
  freeing buffers, `set_stream`, `find_slot`, `enqueue` (copy or DMA link
  into a free slot), `dequeue` (with H264 key frame detection and dequeue
  interval statistics), `count_enqueued`, and a small software queue through
  `push_to_queue`, `pop_from_queue` and `clear_queue` (at most 4 buffers).
- `camstream.device` — `Device`, the abstract `DeviceHardware` backend,
  `DeviceOption`, `DeviceOptionMenu` and `DeviceOptionType`. A device opens
  capture lists and one output list, sets the frame rate, rotation and
  options (`set_option_list` applies newline separated `key=value` entries),
  and reports enqueued buffer counts.
- `camstream.buffer_lock` — `BufferLock` holds the newest frame of a capture
  list. `capture` offers frames (non-key frames inside the frame interval
  are dropped), `get` waits for a newer one, `write_loop` feeds frames to a
  callback and raises `WriteLoopError` on failure.
- `camstream.device_list` — `DeviceInfo` and `DeviceList`;
  `find_m2m_format` and `find_m2m_formats` look for a memory-to-memory device
  converting one format into another.
- `camstream.controls` — `parse_rectangle` (`(x,y)/WxH` or `x,y,w,h`),
  `parse_size` (`WxH` or `W,H`), `parse_control_values` (comma separated
  lists) and `strip_enum_prefix`.
- `camstream.errors` — `DeviceError`, raised when a device, buffer list or
  buffer operation fails.

## What this package does not do

There is no command-line program, no HTTP or status server and no
ready-made hardware backend: to capture frames you implement
`DeviceHardware` for your device. The package also does not assemble a
complete camera pipeline of decoders, rescalers and encoders on its own; it
provides the pieces such a pipeline is built from.