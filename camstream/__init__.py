"""Camera capture building blocks: buffers, buffer lists, devices, buffer locks and control parsing."""

__version__ = "0.1.0"