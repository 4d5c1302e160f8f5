"""
Exception types raised by the Mandelbrot compute engine and controller.

Precision inadequacy is not an error: it is handled by backend selection.
"""


class MandelError(Exception):
    """Base class for all mandelview errors."""


class BackendUnavailable(MandelError, RuntimeError):
    """The requested compute backend (or GPU precision) cannot be used."""


class ResourceAllocationFailure(MandelError, MemoryError):
    """An image or device buffer could not be allocated."""


class InvalidViewState(MandelError, ValueError):
    """A view parameter was set to a value the engine cannot work with."""
