"""
Mandelbrot computation functions using Numba JIT compilation.

This module contains the performance-critical CPU code:
- The escape-time kernel for a single point
- Row-band computation of a whole iteration image, spread across threads
- The orbit (route) of a single point, for the path overlay

The kernels are precision-generic: called with float32 coordinates they
iterate in float32, with float64 coordinates in float64. The GPU code in
compute_gpu.py runs the same recurrence in the same order, so the two give
identical counts for the same input precision.

Iteration image values:
- 0: the iteration limit was reached (treated as inside the set)
- 1..max_iter-1: the iteration at which the point escaped
"""

import os
import threading
from dataclasses import dataclass

import numpy as np
from numba import jit


@dataclass(frozen=True)
class KernelParams:
    """
    Parameter block passed to every compute backend.

    Pixel (ix, iy) of an nx by ny image is the point
    (xcent + (ix - nx/2)·dx, ycent + (iy - ny/2)·dy).
    """
    xcent: float
    ycent: float
    dx: float
    dy: float
    max_iter: int
    nx: int
    ny: int


@jit(nopython=True, nogil=True, cache=True)
def escape_time(x0, y0, max_iter):
    """
    Run the escape-time iteration for one point.

    Starting from z = 0, iterates z -> z² + c (c = x0 + i·y0) while |z|² < 4
    and the iteration count is below max_iter.

    Args:
        x0, y0: The point, in the precision to iterate in
        max_iter: Iteration limit (>= 1)

    Returns:
        The iteration count at escape, or 0 if the limit was reached.
    """
    # The first iteration from z = 0 gives exactly z = c.
    x = x0
    y = y0
    iteration = 1
    while x * x + y * y < 4.0 and iteration < max_iter:
        xtmp = (x + y) * (x - y) + x0
        y = (x + x) * y + y0
        x = xtmp
        iteration += 1
    if iteration >= max_iter:
        return 0
    return iteration


@jit(nopython=True, nogil=True, cache=True)
def compute_row_range(data, xs, ys, max_iter, iy_start, iy_end):
    """
    Compute rows iy_start..iy_end-1 of an iteration image.

    Args:
        data: Output array (ny, nx) of int32, modified in place
        xs: X coordinate of each column (nx,)
        ys: Y coordinate of each row (ny,)
        max_iter: Iteration limit
        iy_start, iy_end: Row band to compute
    """
    nx = xs.shape[0]
    for iy in range(iy_start, iy_end):
        y0 = ys[iy]
        for ix in range(nx):
            data[iy, ix] = escape_time(xs[ix], y0, max_iter)


@jit(nopython=True, nogil=True, cache=True)
def calc_route(x0, y0, max_iter):
    """
    Calculate the orbit of one point.

    Runs the same recurrence as escape_time() but records every iterate.
    Stops at escape (x² + y² >= 4) or after max_iter iterations.

    Returns:
        (xs, ys): float64 arrays, one entry per iteration performed
    """
    xs = np.empty(max_iter, dtype=np.float64)
    ys = np.empty(max_iter, dtype=np.float64)
    x = 0.0
    y = 0.0
    n = 0
    while x * x + y * y < 4.0 and n < max_iter:
        xtmp = (x + y) * (x - y) + x0
        y = 2.0 * x * y + y0
        x = xtmp
        xs[n] = x
        ys[n] = y
        n += 1
    return xs[:n], ys[:n]


def pixel_axes(params, dtype=np.float64):
    """
    Mandelbrot coordinates of each image column and row.

    Pixel (ix, iy) maps to (xcent + (ix - nx/2)·dx, ycent + (iy - ny/2)·dy).
    The arithmetic is done in the requested precision.

    Args:
        params: KernelParams for the image
        dtype: numpy.float32 or numpy.float64

    Returns:
        (xs, ys): arrays of shape (nx,) and (ny,)
    """
    dtype = np.dtype(dtype).type
    xs = dtype(params.xcent) + (np.arange(params.nx, dtype=dtype) - dtype(params.nx * 0.5)) * dtype(params.dx)
    ys = dtype(params.ycent) + (np.arange(params.ny, dtype=dtype) - dtype(params.ny * 0.5)) * dtype(params.dy)
    return xs.astype(dtype, copy=False), ys.astype(dtype, copy=False)


def row_bands(ny, n_threads):
    """
    Split ny rows into contiguous bands, one per thread.

    Returns:
        (bands, remainder): a list of (start, end) for the worker threads
        (empty bands are dropped) and the (start, end) band left over for the
        calling thread.
    """
    n_threads = max(1, int(n_threads))
    inc = ny // n_threads
    bands = []
    if inc > 0:
        bands = [(i * inc, (i + 1) * inc) for i in range(n_threads)]
    start = inc * n_threads if inc > 0 else 0
    return bands, (start, ny)


def compute_threaded(data, xs, ys, max_iter, n_threads=None):
    """
    Compute a whole iteration image using all available cores.

    Each worker thread handles a contiguous band of rows; the rows left over
    when ny does not divide evenly are computed by the calling thread. The
    bands never overlap, so the only synchronisation is the final join. The
    kernels release the GIL, so the threads run in parallel.

    Args:
        data: Output array (ny, nx) of int32, modified in place
        xs, ys: Column and row coordinates from pixel_axes()
        max_iter: Iteration limit
        n_threads: Number of worker threads (default: os.cpu_count())

    Returns:
        data
    """
    if n_threads is None:
        n_threads = os.cpu_count() or 1
    bands, remainder = row_bands(data.shape[0], n_threads)
    threads = [
        threading.Thread(target=compute_row_range, args=(data, xs, ys, max_iter, start, end))
        for start, end in bands
    ]
    for thread in threads:
        thread.start()
    if remainder[1] > remainder[0]:
        compute_row_range(data, xs, ys, max_iter, remainder[0], remainder[1])
    for thread in threads:
        thread.join()
    return data


def warmup_jit():
    """
    Warm up JIT compilation with small dummy arrays.

    Call this once at startup to pre-compile the Numba functions for both
    precisions, avoiding a delay on first actual use.
    """
    for dtype in (np.float32, np.float64):
        data = np.zeros((2, 2), dtype=np.int32)
        coords = np.zeros(2, dtype=dtype)
        compute_row_range(data, coords, coords, 2, 0, 2)
    calc_route(0.0, 0.0, 2)
