"""Shared fixtures: a recording renderer, a settable clock and a numpy GPU device."""

import numpy as np
import pytest

from mandelview.compute import compute_row_range, pixel_axes
from mandelview.config import MandelConfig
from mandelview.renderer import Renderer


class FakeRenderer(Renderer):
    """Renderer that keeps a copy of what it was asked to draw."""

    def __init__(self):
        super().__init__()
        self.images = []
        self.overlays = []

    def draw(self, rgb):
        super().draw(rgb)
        self.images.append(rgb.copy())
        self.overlays.append(self.overlay)


class FakeClock:
    """Clock whose time only changes when a test sets it."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeGPU:
    """
    GPU compute device that runs the CPU kernel at the requested precision.

    Args:
        double: Whether the device claims float64 support
        fail_with: Exception raised by dispatch(), if any
    """

    available = True

    def __init__(self, double=False, fail_with=None):
        self.double = double
        self.fail_with = fail_with
        self.params = None
        self.result = None
        self.dispatches = []

    def get_device_info(self):
        return "Fake GPU"

    def supports_double_precision(self):
        return self.double

    def upload_parameters(self, params):
        self.params = params

    def dispatch(self, double=False):
        self.dispatches.append(double)
        if self.fail_with is not None:
            raise self.fail_with
        dtype = np.float64 if double else np.float32
        xs, ys = pixel_axes(self.params, dtype)
        self.result = np.zeros((self.params.ny, self.params.nx), dtype=np.int32)
        compute_row_range(self.result, xs, ys, self.params.max_iter, 0, self.params.ny)

    def get_mapped_result(self):
        return self.result

    def warmup(self):
        pass


@pytest.fixture
def config():
    return MandelConfig(
        nx=32, ny=32, iter_limit=64,
        window_width=64, window_height=64,
        use_gpu=False,
    )


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def clock():
    return FakeClock()
