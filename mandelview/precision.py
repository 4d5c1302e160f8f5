"""
Checks whether single or double precision is good enough for the current view.

At high magnification, neighbouring display pixels map to Mandelbrot
coordinates that differ by less than the floating point resolution, and the
image becomes blocky. These checks compute the coordinate of a sample image
pixel, and of the point one display pixel further on, in the precision being
tested; if the two round to the same value, that precision is inadequate.

The test uses a 10x10 grid of sample pixels. It is a cheap proxy and can miss
problems that lie between the grid points.
"""

import numpy as np

SAMPLES_PER_AXIS = 10


def precision_ok_at(ix, iy, params, view_width, view_height, dtype):
    """
    Check one image pixel.

    Args:
        ix, iy: Image pixel position
        params: KernelParams for the current view
        view_width, view_height: Size of the display view
        dtype: numpy.float32 or numpy.float64

    Returns:
        True if a one display-pixel step is resolvable in X and in Y.
    """
    nx, ny = params.nx, params.ny
    x_inc = nx / view_width
    x0 = dtype(params.xcent + (ix - nx * 0.5) * params.dx)
    x1 = dtype(params.xcent + (ix + x_inc - nx * 0.5) * params.dx)
    y_inc = ny / view_height
    y0 = dtype(params.ycent + (iy - ny * 0.5) * params.dy)
    y1 = dtype(params.ycent + (iy + y_inc - ny * 0.5) * params.dy)
    return bool((y1 - y0) > 0) and bool((x1 - x0) > 0)


def sample_grid(nx, ny, samples=SAMPLES_PER_AXIS):
    """Pixel positions of the evenly spaced sample grid."""
    ix_inc = nx // samples
    iy_inc = ny // samples
    return [(i * ix_inc, j * iy_inc) for j in range(samples) for i in range(samples)]


def precision_ok(params, view_width, view_height, dtype):
    """True only if every sample point passes precision_ok_at()."""
    for ix, iy in sample_grid(params.nx, params.ny):
        if not precision_ok_at(ix, iy, params, view_width, view_height, dtype):
            return False
    return True


def float_ok(params, view_width, view_height):
    """Is single precision adequate at these settings?"""
    return precision_ok(params, view_width, view_height, np.float32)


def double_ok(params, view_width, view_height):
    """Is double precision adequate at these settings?"""
    return precision_ok(params, view_width, view_height, np.float64)
