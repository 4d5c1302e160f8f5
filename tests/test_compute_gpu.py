"""Tests of the PyTorch compute device (run on the PyTorch CPU device)."""

import numpy as np
import pytest

torch = pytest.importorskip("torch")

from mandelview.compute import KernelParams, compute_threaded, pixel_axes
from mandelview.compute_gpu import GPUCompute
from mandelview.engine import ComputeBackend, ComputeEngine
from mandelview.errors import BackendUnavailable


@pytest.fixture
def device():
    return GPUCompute(prefer_gpu=False)


def cpu_counts(params, dtype):
    data = np.zeros((params.ny, params.nx), dtype=np.int32)
    xs, ys = pixel_axes(params, dtype)
    return compute_threaded(data, xs, ys, params.max_iter)


def test_cpu_device(device):
    assert device.available
    assert device.supports_double_precision()
    assert "CPU" in device.get_device_info()


def test_dispatch_needs_parameters(device):
    with pytest.raises(BackendUnavailable):
        device.dispatch()
    with pytest.raises(BackendUnavailable):
        device.get_mapped_result()


def test_origin_inside_both_precisions(device):
    params = KernelParams(0.0, 0.0, 1e-3, 1e-3, 64, 2, 2)
    for double in (False, True):
        device.upload_parameters(params)
        device.dispatch(double=double)
        counts = device.get_mapped_result()
        assert counts.shape == (2, 2)
        assert counts.dtype == np.int32
        # Pixel (1, 1) is exactly the centre
        assert counts[1, 1] == 0


@pytest.mark.parametrize("params", [
    KernelParams(-0.5, 0.0, 3.0 / 40, 3.0 / 30, 100, 40, 30),
    KernelParams(-0.7485981681169396, 0.1847233013261255, 2e-5 / 48, 2e-5 / 48, 300, 48, 48),
    KernelParams(0.2709702586923193, 0.00504822194561597, 4e-4 / 33, 4e-4 / 17, 500, 33, 17),
])
@pytest.mark.parametrize("double", [False, True])
def test_counts_match_cpu_kernel(device, params, double):
    device.upload_parameters(params)
    device.dispatch(double=double)
    expected = cpu_counts(params, np.float64 if double else np.float32)
    np.testing.assert_array_equal(device.get_mapped_result(), expected)


def test_engine_with_device(device):
    engine = ComputeEngine(nx=32, ny=24, max_iter=128, gpu=device)
    engine.set_centre(-0.75, 0.1)
    engine.set_magnification(20.0)
    cpu = engine.compute_cpu().copy()
    gpu = engine.compute(ComputeBackend.GPU_DOUBLE)
    assert engine.last_backend == ComputeBackend.GPU_DOUBLE
    np.testing.assert_array_equal(gpu, cpu)


def test_warmup(device):
    device.warmup()
    assert device.get_mapped_result().shape == (32, 32)
