"""
Compute engine: owns the view parameters and the iteration image.

The engine turns the current view (centre, magnification, iteration limit,
image size and display aspect) into a KernelParams block and hands it to one
of its backends:
- CPU: the Numba kernel in compute.py, spread over all cores (float64)
- GPU_SINGLE / GPU_DOUBLE: the PyTorch device in compute_gpu.py

All backends write into the same (ny, nx) int32 buffer, which is only
reallocated when the image size changes.
"""

import math
import time
from enum import Enum

import numpy as np

from .compute import KernelParams, compute_threaded, pixel_axes
from .coords import COORD_RANGE_X
from .errors import BackendUnavailable, InvalidViewState, ResourceAllocationFailure
from .logging_setup import get_logger
from . import precision

setup_log = get_logger("compute.setup")
timing_log = get_logger("compute.timing")


class ComputeBackend(Enum):
    """Which code computes a frame. The value is the label shown in the title."""
    CPU = "CPU"
    GPU_SINGLE = "GPU"
    GPU_DOUBLE = "GPU-D"


class CPUBackend:
    """Multi-threaded Numba backend. Always computes in double precision."""

    def __init__(self, n_threads=None):
        self.n_threads = n_threads

    def supports_double(self):
        return True

    def compute(self, params, out):
        xs, ys = pixel_axes(params, np.float64)
        return compute_threaded(out, xs, ys, params.max_iter, self.n_threads)


class GPUBackend:
    """
    Runs the kernel on a GPU compute device at one precision.

    Args:
        device: Object with upload_parameters(), dispatch(double),
            get_mapped_result() and supports_double_precision(), e.g. GPUCompute
        double: Compute in float64
    """

    def __init__(self, device, double=False):
        self.device = device
        self.double = double

    def supports_double(self):
        return self.device.supports_double_precision()

    def compute(self, params, out):
        self.device.upload_parameters(params)
        self.device.dispatch(double=self.double)
        out[...] = self.device.get_mapped_result()
        return out


class ComputeEngine:
    """
    Generates iteration images for the current view.

    Usage:
        engine = ComputeEngine(nx=512, ny=512, max_iter=1024)
        engine.set_centre(-0.75, 0.1)
        engine.set_magnification(100.0)
        image = engine.compute(ComputeBackend.CPU)

    Attributes:
        last_backend: The backend that actually produced the last image
            (GPU_DOUBLE becomes GPU_SINGLE on a device without float64)
    """

    DEFAULT_CENTRE = (-0.5, 0.0)

    def __init__(self, nx=1024, ny=1024, max_iter=1024, gpu=None, n_threads=None):
        """
        Args:
            nx, ny: Image size in pixels
            max_iter: Iteration limit
            gpu: GPU compute device, or None for CPU only
            n_threads: CPU worker threads (default: one per hardware thread)
        """
        self._xcent, self._ycent = self.DEFAULT_CENTRE
        self._magnification = 1.0
        self._max_iter = 1
        self._nx = 0
        self._ny = 0
        self._view_width = 1.0
        self._view_height = 1.0
        self._image = None
        self._warned_no_double = False
        self.last_backend = None

        self._gpu = gpu if gpu is not None and getattr(gpu, "available", True) else None
        self._backends = {ComputeBackend.CPU: CPUBackend(n_threads)}
        if self._gpu is not None:
            self._backends[ComputeBackend.GPU_SINGLE] = GPUBackend(self._gpu, double=False)
            self._backends[ComputeBackend.GPU_DOUBLE] = GPUBackend(self._gpu, double=True)

        self.set_max_iter(max_iter)
        self.set_image_size(nx, ny)
        self.set_aspect(nx, ny)

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    def set_image_size(self, nx, ny):
        """Set the image size, reallocating the image buffer only if it changed."""
        nx, ny = int(nx), int(ny)
        if nx <= 0 or ny <= 0:
            raise InvalidViewState(f"Image size must be positive, got {nx} x {ny}")
        if self._image is not None and (nx, ny) == (self._nx, self._ny):
            return
        try:
            image = np.zeros((ny, nx), dtype=np.int32)
        except MemoryError as e:
            raise ResourceAllocationFailure(f"Cannot allocate a {nx} x {ny} image") from e
        self._image = image
        self._nx, self._ny = nx, ny
        setup_log.debug("Image buffer allocated, %d x %d", nx, ny)

    def set_centre(self, x, y):
        x, y = float(x), float(y)
        if not (math.isfinite(x) and math.isfinite(y)):
            raise InvalidViewState(f"Centre must be finite, got ({x}, {y})")
        self._xcent, self._ycent = x, y

    def set_magnification(self, magnification):
        magnification = float(magnification)
        if not math.isfinite(magnification) or magnification <= 0.0:
            raise InvalidViewState(f"Magnification must be positive, got {magnification}")
        self._magnification = magnification

    def set_max_iter(self, max_iter):
        max_iter = int(max_iter)
        if max_iter <= 0:
            raise InvalidViewState(f"Iteration limit must be positive, got {max_iter}")
        self._max_iter = max_iter

    def set_aspect(self, width, height):
        """Set the size of the display view the image is shown in."""
        width, height = float(width), float(height)
        if not (width > 0.0 and height > 0.0):
            raise InvalidViewState(f"View size must be positive, got {width} x {height}")
        self._view_width, self._view_height = width, height

    def get_centre(self):
        return self._xcent, self._ycent

    @property
    def magnification(self):
        return self._magnification

    @property
    def max_iter(self):
        return self._max_iter

    @property
    def image_size(self):
        return self._nx, self._ny

    @property
    def view_size(self):
        return self._view_width, self._view_height

    @property
    def image(self):
        """The (ny, nx) int32 iteration image from the last compute."""
        return self._image

    @property
    def params(self):
        """
        KernelParams for the current view.

        The display aspect ratio is folded into the Y step so that a
        non-square view is not stretched.
        """
        nx, ny = self._nx, self._ny
        aspect = (self._view_height / self._view_width) * (nx / ny)
        x_range = COORD_RANGE_X / self._magnification
        y_range = aspect * x_range * ny / nx
        return KernelParams(
            xcent=self._xcent,
            ycent=self._ycent,
            dx=x_range / nx,
            dy=y_range / ny,
            max_iter=self._max_iter,
            nx=nx,
            ny=ny,
        )

    # ------------------------------------------------------------------
    # Precision and capabilities
    # ------------------------------------------------------------------

    @property
    def gpu(self):
        """The GPU compute device, or None."""
        return self._gpu

    @property
    def gpu_available(self):
        return self._gpu is not None

    def gpu_supports_double(self):
        return self._gpu is not None and bool(self._gpu.supports_double_precision())

    def float_ok(self):
        """Is single precision adequate for the current view?"""
        return precision.float_ok(self.params, self._view_width, self._view_height)

    def double_ok(self):
        """Is double precision adequate for the current view?"""
        return precision.double_ok(self.params, self._view_width, self._view_height)

    # ------------------------------------------------------------------
    # Computing
    # ------------------------------------------------------------------

    def compute_cpu(self):
        return self.compute(ComputeBackend.CPU)

    def compute_gpu(self, double=False):
        """
        Compute on the GPU device.

        If double precision is asked for but the device does not have it,
        the single precision path is used instead.

        Raises:
            BackendUnavailable: There is no GPU device
        """
        if self._gpu is None:
            raise BackendUnavailable("No GPU compute device")
        if double and not self.gpu_supports_double():
            if not self._warned_no_double:
                setup_log.debug("GPU has no double precision, using single precision.")
                self._warned_no_double = True
            double = False
        backend = ComputeBackend.GPU_DOUBLE if double else ComputeBackend.GPU_SINGLE
        return self._run(backend)

    def compute(self, backend):
        """
        Compute the iteration image with the given backend.

        Returns:
            The engine's (ny, nx) int32 image, filled in place
        """
        if backend == ComputeBackend.CPU:
            return self._run(backend)
        return self.compute_gpu(double=(backend == ComputeBackend.GPU_DOUBLE))

    def _run(self, backend):
        params = self.params
        start = time.perf_counter()
        try:
            self._backends[backend].compute(params, self._image)
        except ResourceAllocationFailure:
            raise
        except MemoryError as e:
            raise ResourceAllocationFailure(f"{backend.value} compute ran out of memory") from e
        self.last_backend = backend
        timing_log.debug(
            "%s compute %d x %d, %d iterations, took %.2f msec",
            backend.value, params.nx, params.ny, params.max_iter,
            (time.perf_counter() - start) * 1000.0,
        )
        return self._image
