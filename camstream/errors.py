"""Exceptions raised by devices, buffer lists and buffers."""


class DeviceError(Exception):
    """A device, buffer list or buffer operation failed."""