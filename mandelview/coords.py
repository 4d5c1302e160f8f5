"""
Conversion between view (frame) coordinates and Mandelbrot-plane coordinates.

Frame coordinates are in the pixel space of the display view, with the origin
at the bottom left and Y increasing upwards (the host normalises its events to
this). At magnification 1 the view spans 2.0 units of X across its width, and
the same scale applies in Y.

All functions are stateless and accept numpy arrays as well as scalars.
"""

import numpy as np

COORD_RANGE_X = 2.0


def _coord_range_y(frame_width, frame_height):
    return COORD_RANGE_X * frame_height / frame_width


def frame_to_image(at_x, at_y, frame_width, frame_height, xcent, ycent, magnification):
    """
    Convert a frame position to Mandelbrot-plane coordinates.

    Args:
        at_x, at_y: Position in the view, in pixels
        frame_width, frame_height: Size of the view, in pixels
        xcent, ycent: Mandelbrot coordinates of the view centre
        magnification: Current magnification (> 0)

    Returns:
        (x, y) in the Mandelbrot plane
    """
    dist_x = frame_width * 0.5 - at_x
    x_offset = dist_x * COORD_RANGE_X / (frame_width * magnification)
    x = xcent - x_offset

    coord_range_y = _coord_range_y(frame_width, frame_height)
    dist_y = frame_height * 0.5 - at_y
    y_offset = dist_y * coord_range_y / (frame_height * magnification)
    y = ycent - y_offset
    return x, y


def image_to_frame(x, y, frame_width, frame_height, xcent, ycent, magnification):
    """Inverse of frame_to_image: Mandelbrot coordinates to a frame position."""
    dist_x = (xcent - x) * frame_width * magnification / COORD_RANGE_X
    at_x = frame_width * 0.5 - dist_x

    coord_range_y = _coord_range_y(frame_width, frame_height)
    dist_y = (ycent - y) * frame_height * magnification / coord_range_y
    at_y = frame_height * 0.5 - dist_y
    return at_x, at_y


def centre_for_zoom(at_x, at_y, x, y, frame_width, frame_height, magnification):
    """
    Work out the centre that puts (x, y) under frame position (at_x, at_y).

    Used when zooming around the cursor: with the new magnification, the point
    that was under the cursor stays under it.

    Returns:
        (xcent, ycent)
    """
    dist_x = frame_width * 0.5 - at_x
    xcent = x + dist_x * COORD_RANGE_X / (frame_width * magnification)

    coord_range_y = _coord_range_y(frame_width, frame_height)
    dist_y = frame_height * 0.5 - at_y
    ycent = y + dist_y * coord_range_y / (frame_height * magnification)
    return xcent, ycent


def route_to_frame(xs, ys, frame_width, frame_height, xcent, ycent, magnification):
    """Convert an orbit path to an (N, 2) float32 array of frame positions."""
    at_x, at_y = image_to_frame(
        np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64),
        frame_width, frame_height, xcent, ycent, magnification
    )
    return np.column_stack((at_x, at_y)).astype(np.float32)
