import io

import pytest

from camstream.device import (
    OPTION_VALUE_LIST_SEP,
    Device,
    DeviceHardware,
    DeviceOption,
    DeviceOptionType,
    iter_devices,
)
from camstream.errors import DeviceError
from camstream.formats import PIX_FMT_H264, PIX_FMT_YUYV, BufferFormat

BUF_LENGTH = 16


class FakeHardware(DeviceHardware):
    def __init__(self, fail_open=False):
        self.fail_open = fail_open
        self.closed_devices = []
        self.closed_lists = []
        self.enqueued = []
        self.stream_calls = []

    def device_open(self, dev):
        if self.fail_open:
            raise DeviceError("cannot open")

    def device_close(self, dev):
        self.closed_devices.append(dev.name)

    def buffer_open(self, buf):
        buf.data = bytearray(BUF_LENGTH)
        buf.length = BUF_LENGTH

    def buffer_close(self, buf):
        buf.data = None

    def buffer_enqueue(self, buf, who):
        self.enqueued.append((buf.name, who))

    def buffer_list_open(self, buf_list):
        return buf_list.fmt.nbufs

    def buffer_list_close(self, buf_list):
        self.closed_lists.append(buf_list.name)

    def buffer_list_dequeue(self, buf_list):
        return None

    def buffer_list_pollfd(self, buf_list, can_dequeue):
        return can_dequeue

    def buffer_list_set_stream(self, buf_list, do_on):
        self.stream_calls.append((buf_list.name, do_on))


class OptionHardware(FakeHardware):
    def __init__(self, fps_ok=True):
        super().__init__()
        self.fps_ok = fps_ok
        self.set_options = []
        self.fps_calls = []

    def device_set_option(self, dev, key, value):
        if key == "bad":
            raise DeviceError("bad option")
        self.set_options.append((key, value))
        return True

    def device_set_fps(self, dev, desired_fps):
        self.fps_calls.append(desired_fps)
        if not self.fps_ok:
            raise DeviceError("no fps")

    def device_options(self, dev):
        yield DeviceOption(name="Brightness", type=DeviceOptionType.FLOAT, value="0.5")

    def device_dump_options(self, dev, stream):
        stream.write(f"{dev.name} Options:\n")


@pytest.fixture
def hw():
    return FakeHardware()


@pytest.fixture
def dev(hw):
    return Device("CAM", "/dev/video0", hw)


def fmt(**kwargs):
    kwargs.setdefault("width", 640)
    kwargs.setdefault("height", 480)
    kwargs.setdefault("nbufs", 2)
    return BufferFormat(**kwargs)


def test_buffer_list_names(dev):
    first = dev.open_buffer_list(True, fmt(), True)
    second = dev.open_buffer_list(True, fmt(), True)
    output = dev.open_buffer_list(False, fmt(), True)
    assert first.name == "CAM:capture"
    assert second.name == "CAM:capture:1"
    assert output.name == "CAM:output"
    assert (first.index, second.index) == (0, 1)
    assert dev.capture_lists == [first, second]
    assert dev.output_list is output
    assert dev.n_capture_list == 2


def test_second_output_list_is_rejected(dev):
    dev.open_buffer_list(False, fmt(), True)
    with pytest.raises(DeviceError):
        dev.open_buffer_list(False, fmt(), True)


def test_open_failure_closes_device():
    hardware = FakeHardware(fail_open=True)
    with pytest.raises(DeviceError):
        Device("CAM", "/dev/video0", hardware)
    assert hardware.closed_devices == ["CAM"]


def test_disallowed_dma_forces_mmap(dev):
    dev.allow_dma = False
    buf_list = dev.open_buffer_list(True, fmt(), False)
    assert buf_list.do_mmap is True


def test_output_from_mmap_capture_uses_dma(dev):
    capture = dev.open_buffer_list(True, fmt(sizeimage=4, interval_us=100), True)
    other = Device("ENC", "/dev/video11", FakeHardware())
    output = other.open_buffer_list_output(capture)
    assert output.do_mmap is False
    assert output.do_capture is False
    assert output.fmt.sizeimage == 0
    assert output.fmt.interval_us == 0
    assert output.fmt.width == capture.fmt.width


def test_output_without_dma_grows_sizeimage(dev):
    dev.allow_dma = False
    capture = dev.open_buffer_list(True, fmt(sizeimage=4), True)
    other = Device("ENC", "/dev/video11", FakeHardware())
    output = other.open_buffer_list_output(capture)
    assert output.do_mmap is True
    assert output.fmt.sizeimage == BUF_LENGTH


def test_output_requires_capture(dev):
    with pytest.raises(DeviceError):
        dev.open_buffer_list_output(None)


def test_capture_inherits_geometry(dev):
    output = dev.open_buffer_list(False, fmt(width=320, height=240, nbufs=3), True)
    capture = dev.open_buffer_list_capture("/dev/video14", output, BufferFormat(format=PIX_FMT_YUYV), True)
    assert (capture.fmt.width, capture.fmt.height, capture.fmt.nbufs) == (320, 240, 3)
    assert capture.fmt.format == PIX_FMT_YUYV
    assert capture.path == "/dev/video14"


def test_capture_format_keeps_explicit_format(dev):
    output = dev.open_buffer_list(False, fmt(), True)
    capture = dev.open_buffer_list_capture_format(None, output, PIX_FMT_H264, True)
    assert capture.fmt.format == PIX_FMT_H264
    assert capture.fmt.height == output.fmt.height


def test_capture_requires_output(dev):
    with pytest.raises(DeviceError):
        dev.open_buffer_list_capture(None, None, BufferFormat(), True)


def test_set_stream_covers_all_lists(dev, hw):
    capture = dev.open_buffer_list(True, fmt(), True)
    output = dev.open_buffer_list(False, fmt(), True)
    dev.set_stream(True)
    assert capture.streaming and output.streaming
    assert hw.stream_calls == [("CAM:capture", True), ("CAM:output", True)]


def test_set_fps_without_hardware(dev):
    capture = dev.open_buffer_list(True, fmt(), True)
    assert dev.set_fps(1) == 1000000
    assert capture.fmt.interval_us == 1000000
    assert dev.set_fps(0) == 0


def test_set_fps_with_hardware():
    hardware = OptionHardware()
    device = Device("CAM", "/dev/video0", hardware)
    capture = device.open_buffer_list(True, fmt(), True)
    assert device.set_fps(30) == 0
    assert capture.fmt.interval_us == 0
    assert hardware.fps_calls == [30]


def test_set_fps_falls_back_when_hardware_fails():
    device = Device("CAM", "/dev/video0", OptionHardware(fps_ok=False))
    assert device.set_fps(1) == 1000000


def test_set_rotation_uses_flip_options():
    hardware = OptionHardware()
    device = Device("CAM", "/dev/video0", hardware)
    assert device.set_rotation(False, True) is True
    assert hardware.set_options == [("horizontal_flip", "1"), ("vertical_flip", "0")]


def test_set_option_unsupported(dev):
    with pytest.raises(DeviceError):
        dev.set_option("brightness", "1")
    with pytest.raises(DeviceError):
        dev.set_rotation(True, True)


def test_set_option_list():
    hardware = OptionHardware()
    device = Device("CAM", "/dev/video0", hardware)
    device.set_option_list(OPTION_VALUE_LIST_SEP.join(["a=1", "b=x=y", "missing", "bad=2", "c=3"]))
    assert hardware.set_options == [("a", "1"), ("b", "x=y"), ("c", "3")]


def test_set_option_list_empty():
    hardware = OptionHardware()
    device = Device("CAM", "/dev/video0", hardware)
    device.set_option_list("")
    device.set_option_list(None)
    assert hardware.set_options == []


def test_enqueued_counts(dev, hw):
    assert dev.capture_enqueued() == (0, 0)
    assert dev.output_enqueued() == 0

    first = dev.open_buffer_list(True, fmt(), True)
    dev.open_buffer_list(True, fmt(), True)
    first.bufs[0].consumed("test")
    assert hw.enqueued == [("CAM:capture:buf0", "test")]
    assert dev.capture_enqueued() == (0, 1)

    output = dev.open_buffer_list(False, fmt(), True)
    output.bufs[1].consumed("test")
    assert dev.output_enqueued() == 1


def test_options_and_dump():
    device = Device("CAM", "/dev/video0", OptionHardware())
    options = device.options()
    assert [opt.name for opt in options] == ["Brightness"]
    assert options[0].type.value == "float"
    stream = io.StringIO()
    device.dump_options(stream)
    assert stream.getvalue() == "CAM Options:\n"


def test_options_unsupported(dev):
    with pytest.raises(DeviceError):
        dev.options()
    with pytest.raises(DeviceError):
        dev.video_force_key()


def test_close_closes_lists(hw):
    with Device("CAM", "/dev/video0", hw) as device:
        device.open_buffer_list(True, fmt(), True)
        device.open_buffer_list(False, fmt(), True)
    assert hw.closed_lists == ["CAM:capture", "CAM:output"]
    assert hw.closed_devices == ["CAM"]
    assert device.capture_lists == []
    assert device.output_list is None


def test_iter_devices_skips_empty(dev):
    assert list(iter_devices([None, dev, None])) == [dev]