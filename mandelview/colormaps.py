"""
Colour mapping for Mandelbrot iteration images.

Iteration counts are turned into RGB through a fixed 256-entry palette (the
Figaro default colour table, originally provided by John Tonry). Entry 0 is
black and is used for pixels inside the set.

Two strategies choose the palette index for each iteration count:
- "histeq": histogram equalisation. The 255 non-black levels are shared out
  among the counts that actually occur, in proportion to how many pixels
  have each count. This is the default and makes full use of the palette
  however sparse or clustered the counts are.
- "percentile": linear scaling over the range that covers a given
  percentage of the non-zero pixels. Kept as an alternative.

Both build a lookup table indexed by iteration count, which is then applied
to the whole image with numpy indexing.
"""

import time

import numpy as np
from numba import jit

from .logging_setup import get_logger

timing_log = get_logger("renderer.timing")

NUM_COLORS = 256  # Entries in the palette

# Figaro/Tonry colour table, one list per channel.
_RED = [
    0, 128, 123, 123, 119, 119, 114, 114, 110, 110, 105, 105, 100, 100, 95, 95,
    90, 90, 85, 85, 80, 80, 75, 75, 70, 70, 64, 64, 59, 59, 53, 53,
    48, 48, 42, 42, 36, 36, 31, 31, 25, 25, 19, 19, 12, 12, 6, 6,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 24, 24, 48, 48, 73, 73, 98, 98, 123, 123, 148, 148, 174, 174,
    200, 200, 201, 201, 202, 202, 203, 203, 204, 204, 205, 205, 206, 206, 207, 207,
    208, 208, 209, 209, 210, 210, 211, 211, 212, 212, 213, 213, 214, 214, 215, 215,
    216, 216, 217, 217, 218, 218, 219, 219, 220, 220, 221, 221, 222, 222, 223, 223,
    224, 224, 225, 225, 226, 226, 227, 227, 228, 228, 229, 229, 230, 230, 231, 231,
    232, 232, 233, 233, 234, 234, 235, 235, 236, 236, 237, 237, 238, 238, 239, 239,
    240, 240, 241, 241, 242, 242, 243, 243, 244, 244, 245, 245, 246, 246, 247, 247,
    248, 248, 249, 249, 250, 250, 251, 251, 252, 252, 253, 253, 254, 254, 255, 255,
]

_GREEN = [
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 5, 5, 10, 10, 14, 14, 19, 19, 24, 24, 30, 30, 35, 35,
    40, 40, 45, 45, 51, 51, 56, 56, 61, 61, 67, 67, 72, 72, 78, 78,
    84, 84, 90, 90, 95, 95, 101, 101, 107, 107, 113, 113, 119, 119, 126, 126,
    132, 132, 138, 138, 144, 144, 151, 151, 157, 157, 164, 164, 170, 170, 177, 177,
    184, 184, 185, 185, 186, 186, 187, 187, 188, 188, 189, 189, 190, 190, 191, 191,
    192, 192, 193, 193, 194, 194, 195, 195, 196, 196, 197, 197, 198, 198, 199, 199,
    200, 200, 195, 195, 189, 189, 184, 184, 178, 178, 173, 173, 167, 167, 162, 162,
    156, 156, 150, 150, 144, 144, 138, 138, 132, 132, 126, 126, 120, 120, 114, 114,
    108, 108, 102, 102, 95, 95, 89, 89, 82, 82, 76, 76, 69, 69, 63, 63,
    56, 56, 49, 49, 42, 42, 35, 35, 28, 28, 21, 21, 14, 14, 7, 7,
    0, 0, 10, 10, 19, 19, 29, 29, 39, 39, 49, 49, 59, 59, 70, 70,
    80, 80, 90, 90, 101, 101, 111, 111, 122, 122, 133, 133, 143, 143, 154, 154,
    165, 165, 176, 176, 187, 187, 199, 199, 210, 210, 221, 221, 233, 233, 244, 244,
]

_BLUE = [
    0, 128, 129, 129, 130, 130, 131, 131, 132, 132, 133, 133, 134, 134, 135, 135,
    136, 136, 137, 137, 138, 138, 139, 139, 140, 140, 141, 141, 142, 142, 143, 143,
    144, 144, 145, 145, 146, 146, 147, 147, 148, 148, 149, 149, 150, 150, 151, 151,
    152, 152, 153, 153, 154, 154, 155, 155, 156, 156, 157, 157, 158, 158, 159, 159,
    160, 160, 161, 161, 162, 162, 163, 163, 164, 164, 165, 165, 166, 166, 167, 167,
    168, 168, 169, 169, 170, 170, 171, 171, 172, 172, 173, 173, 174, 174, 175, 175,
    176, 176, 177, 177, 178, 178, 179, 179, 180, 180, 181, 181, 182, 182, 183, 183,
    184, 184, 162, 162, 139, 139, 117, 117, 94, 94, 71, 71, 47, 47, 24, 24,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    0, 0, 10, 10, 19, 19, 29, 29, 39, 39, 49, 49, 59, 59, 70, 70,
    80, 80, 90, 90, 101, 101, 111, 111, 122, 122, 133, 133, 143, 143, 154, 154,
    165, 165, 176, 176, 187, 187, 199, 199, 210, 210, 221, 221, 233, 233, 244, 244,
]


def _build_palette():
    palette = np.array([_RED, _GREEN, _BLUE], dtype=np.uint8).T.copy()
    palette.setflags(write=False)
    return palette


# Process-wide palette, shape (256, 3) uint8, read-only.
PALETTE = _build_palette()


def histogram(image, iter_limit):
    """
    Count the pixels with each iteration value.

    Values at or above iter_limit are ignored.

    Returns:
        int64 array of length iter_limit; entry 0 counts pixels inside the set.
    """
    values = np.asarray(image).ravel()
    values = values[(values >= 0) & (values < iter_limit)]
    return np.bincount(values.astype(np.int64), minlength=iter_limit)[:iter_limit]


@jit(nopython=True, cache=True)
def _equalise(hist, lut, min_v, max_v, levels_available):
    """
    Share the palette levels out over values min_v..max_v of the histogram.

    Walks the values in order, keeping a running pixel count for the current
    level. Once it passes the target the next level starts, and the target is
    recalculated from the pixels and levels still left.

    Returns:
        The last level assigned.
    """
    remaining = 0
    for i in range(min_v, max_v + 1):
        remaining += hist[i]
    levels = levels_available
    target = remaining // levels
    level_count = 0
    lev = 1
    for i in range(min_v, max_v + 1):
        level_count += hist[i]
        lut[i] = lev
        if level_count > target:
            lev += 1
            levels -= 1
            if lev >= levels_available:
                lev = levels_available - 1
            if levels < 1:
                levels = 1
            remaining -= level_count
            level_count = 0
            target = remaining // levels
    return lev


def hist_eq_lookup(image, iter_limit):
    """
    Build a histogram-equalised lookup table from iteration value to palette index.

    Value 0 (inside the set) always maps to index 0. Values below the smallest
    count present map to 1, values above the largest map to 255. If the values
    present used fewer than 255 levels, their levels are multiplied by
    255 / (highest level): the highest becomes 255 and the lowest becomes that
    factor rounded down, not 1. The result is non-decreasing in the iteration
    value and depends only on the image.

    Args:
        image: Iteration image, any shape
        iter_limit: Iteration limit the image was computed with

    Returns:
        int32 array of length iter_limit
    """
    iter_limit = int(iter_limit)
    hist = histogram(image, iter_limit)
    present = np.nonzero(hist[1:])[0]
    if len(present):
        min_v = int(present[0]) + 1
        max_v = int(present[-1]) + 1
    else:
        min_v = max_v = 1

    lut = np.empty(iter_limit, dtype=np.int32)
    lut[0] = 0
    lut[1:min_v] = 1
    lut[max_v + 1:] = NUM_COLORS - 1
    if max_v < iter_limit:
        _equalise(hist, lut, min_v, max_v, NUM_COLORS)
        top = lut[max_v]
        if top < NUM_COLORS - 1:
            scale = (NUM_COLORS - 1) / top
            scaled = (lut[min_v:max_v + 1] * scale).astype(np.int32)
            lut[min_v:max_v + 1] = np.minimum(scaled, NUM_COLORS - 1)
    return lut


def percentile_range(image, percentile=95.0):
    """
    Find the range of iteration values covering a percentage of the non-zero pixels.

    The same number of pixels is dropped from each end of the distribution.

    Args:
        image: Iteration image
        percentile: Percentage of the non-zero pixels the range should cover

    Returns:
        (range_min, range_max), or (0, 0) if every pixel is zero.
    """
    values = np.asarray(image).ravel()
    values = values[values > 0].astype(np.int64)
    if len(values) == 0:
        return 0, 0
    hist = np.bincount(values)[1:]  # hist[i] counts value i + 1
    excess = int(len(values) * 0.01 * (100.0 - percentile) / 2.0)

    low = np.cumsum(hist) > excess
    range_min = int(np.argmax(low)) + 1
    high = np.cumsum(hist[::-1]) > excess
    range_max = len(hist) - int(np.argmax(high))
    return range_min, range_max


def linear_lookup(range_min, range_max, iter_limit):
    """
    Lookup table mapping range_min..range_max linearly onto palette indices 0..255.

    Values outside the range are clipped to the ends of the palette.
    """
    span = float(range_max - range_min) or 1.0
    values = np.arange(int(iter_limit), dtype=np.float64)
    index = ((values - range_min) * (NUM_COLORS - 1) / span + 0.5).astype(np.int64)
    return np.clip(index, 0, NUM_COLORS - 1).astype(np.int32)


class ColourMapper:
    """
    Turns iteration images into RGB images.

    Usage:
        mapper = ColourMapper(1024)
        rgb = mapper.map(image)   # (ny, nx, 3) uint8

    The RGB buffer is kept and reused while the image size stays the same.
    """

    STRATEGIES = ("histeq", "percentile")

    def __init__(self, iter_limit, strategy="histeq", percentile=95.0):
        if strategy not in self.STRATEGIES:
            raise ValueError(f"Unknown colour strategy: {strategy}")
        self.iter_limit = int(iter_limit)
        self.strategy = strategy
        self.percentile = percentile
        self._rgb = None

    def set_iter_limit(self, iter_limit):
        self.iter_limit = int(iter_limit)

    def lookup(self, image):
        """Build the value -> palette index table for this image."""
        if self.strategy == "percentile":
            range_min, range_max = percentile_range(image, self.percentile)
            return linear_lookup(range_min, range_max, self.iter_limit)
        return hist_eq_lookup(image, self.iter_limit)

    def indices(self, image):
        """Palette index for every pixel, as a uint8 array shaped like the image."""
        lut = self.lookup(image)
        values = np.clip(image, 0, self.iter_limit - 1)
        return lut[values].astype(np.uint8)

    def map(self, image, out=None):
        """
        Colour an iteration image.

        Args:
            image: Iteration image (ny, nx)
            out: Optional (ny, nx, 3) uint8 array to write into

        Returns:
            RGB image (ny, nx, 3) of uint8
        """
        shape = tuple(image.shape) + (3,)
        if out is None:
            if self._rgb is None or self._rgb.shape != shape:
                self._rgb = np.empty(shape, dtype=np.uint8)
            out = self._rgb
        start = time.perf_counter()
        np.take(PALETTE, self.indices(image), axis=0, out=out)
        timing_log.debug("Colour mapping took %.2f msec", (time.perf_counter() - start) * 1000.0)
        return out
