"""
GPU-accelerated Mandelbrot computation using PyTorch.

This module provides the GPU compute device used by the engine's GPU
backends. It auto-detects available hardware:
- CUDA (NVIDIA GPUs) - supports single and double precision
- MPS (Apple Silicon) - single precision only
- CPU fallback via PyTorch (still vectorised)

The engine talks to the device through a small interface:
upload_parameters(), dispatch(), get_mapped_result() and
supports_double_precision(). dispatch() blocks until the result is ready.

Usage:
    from mandelview.compute_gpu import GPUCompute

    gpu = GPUCompute()
    if gpu.available:
        gpu.upload_parameters(params)
        gpu.dispatch(double=False)
        counts = gpu.get_mapped_result()
"""

import numpy as np

from .compute import KernelParams
from .errors import BackendUnavailable, ResourceAllocationFailure
from .logging_setup import get_logger

# Try to import PyTorch
try:
    import torch
    TORCH_AVAILABLE = True
except ImportError:
    TORCH_AVAILABLE = False
    torch = None

setup_log = get_logger("compute.setup")
timing_log = get_logger("compute.timing")


class GPUCompute:
    """
    GPU compute device for the escape-time kernel.

    Automatically detects and uses the best available device:
    - CUDA for NVIDIA GPUs (float64 available)
    - MPS for Apple Silicon (float32 only)
    - CPU as fallback (still uses PyTorch vectorization)

    The kernel processes every pixel at once with tensor operations. Pixels
    stop updating once they escape, so the counts are exactly those of the
    scalar kernel in compute.py for the same precision.
    """

    # How many iterations to run between checks that some pixel is still active
    CHECK_INTERVAL = 16

    def __init__(self, prefer_gpu=True):
        """
        Initialize GPU compute.

        Args:
            prefer_gpu: If False, use the PyTorch CPU device even if a GPU
                is available
        """
        self.available = TORCH_AVAILABLE
        self.device = None
        self.device_name = "None"
        self.is_cuda = False
        self._double_supported = False
        self._params = None
        self._result = None

        if not TORCH_AVAILABLE:
            setup_log.debug("PyTorch not available, no GPU compute device.")
            return

        # Detect best available device
        if prefer_gpu and torch.cuda.is_available():
            self.device = torch.device("cuda")
            self.device_name = torch.cuda.get_device_name(0)
            self.is_cuda = True
            self._double_supported = True
        elif prefer_gpu and hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
            self.device = torch.device("mps")
            self.device_name = "Apple Silicon GPU (MPS)"
            self._double_supported = False  # MPS only supports float32
        else:
            self.device = torch.device("cpu")
            self.device_name = "CPU (PyTorch)"
            self._double_supported = True
        setup_log.debug("Compute device: %s", self.get_device_info())
        if self._double_supported:
            setup_log.debug("Device supports double precision.")

    def get_device_info(self):
        """Return a string describing the compute device."""
        if not self.available:
            return "PyTorch not available"
        return f"{self.device_name} [{self.device}]"

    def supports_double_precision(self):
        return self.available and self._double_supported

    def upload_parameters(self, params):
        """Set the KernelParams block used by the next dispatch()."""
        self._params = params

    def _pixel_axes(self, dtype):
        """Column and row coordinates, computed on the device (see compute.pixel_axes)."""
        p = self._params
        xcent = torch.tensor(p.xcent, dtype=dtype, device=self.device)
        ycent = torch.tensor(p.ycent, dtype=dtype, device=self.device)
        dx = torch.tensor(p.dx, dtype=dtype, device=self.device)
        dy = torch.tensor(p.dy, dtype=dtype, device=self.device)
        half_x = torch.tensor(p.nx * 0.5, dtype=dtype, device=self.device)
        half_y = torch.tensor(p.ny * 0.5, dtype=dtype, device=self.device)
        xs = xcent + (torch.arange(p.nx, dtype=dtype, device=self.device) - half_x) * dx
        ys = ycent + (torch.arange(p.ny, dtype=dtype, device=self.device) - half_y) * dy
        return xs, ys

    def dispatch(self, double=False):
        """
        Run the kernel over the whole image, blocking until it completes.

        Args:
            double: Use float64 (the caller must check supports_double_precision())

        Raises:
            BackendUnavailable: No device, no parameters, or float64 requested
                on a device without it
            ResourceAllocationFailure: The device ran out of memory
        """
        if not self.available:
            raise BackendUnavailable("PyTorch not available")
        if self._params is None:
            raise BackendUnavailable("No parameters uploaded to the GPU")
        if double and not self._double_supported:
            raise BackendUnavailable(f"{self.device_name} does not support double precision")

        dtype = torch.float64 if double else torch.float32
        max_iter = self._params.max_iter
        try:
            xs, ys = self._pixel_axes(dtype)

            # Create 2D grids: cr[y, x] and ci[y, x]
            ci, cr = torch.meshgrid(ys, xs, indexing='ij')

            # The first iteration from z = 0 gives exactly z = c.
            zr = cr.clone()
            zi = ci.clone()
            counts = torch.ones(cr.shape, dtype=torch.int32, device=self.device)
            active = (zr * zr + zi * zi) < 4.0

            for iteration in range(1, max_iter):
                if iteration % self.CHECK_INTERVAL == 0 and not bool(active.any()):
                    break
                new_zr = (zr + zi) * (zr - zi) + cr
                new_zi = (zr + zr) * zi + ci
                # Escaped pixels keep their last value
                zr = torch.where(active, new_zr, zr)
                zi = torch.where(active, new_zi, zi)
                counts += active.to(torch.int32)
                active = active & ((zr * zr + zi * zi) < 4.0)

            counts = torch.where(counts >= max_iter, torch.zeros_like(counts), counts)
            if self.is_cuda:
                torch.cuda.synchronize()
            self._result = counts
        except RuntimeError as e:
            if "out of memory" in str(e).lower():
                raise ResourceAllocationFailure(f"GPU allocation failed: {e}") from e
            raise

    def get_mapped_result(self):
        """Return the last result as a (ny, nx) int32 numpy array."""
        if self._result is None:
            raise BackendUnavailable("No GPU result available")
        return np.asarray(self._result.cpu().numpy(), dtype=np.int32)

    def warmup(self):
        """Warm up the device by running a small computation."""
        if not self.available:
            return
        self.upload_parameters(KernelParams(-0.5, 0.0, 2.0 / 32, 2.0 / 32, 32, 32, 32))
        self.dispatch(double=False)
        if self._double_supported:
            self.dispatch(double=True)
