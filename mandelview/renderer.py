"""
Display of coloured Mandelbrot images.

The ViewController draws through a small interface:
- set_image_size(nx, ny) / set_max_iter(n): what the next images will be
- set_drawable_size(width, height): the size of the view in pixels
- set_overlay(points): an (N, 2) array of view positions to join with a
  line (the orbit of a point), or None
- draw(rgb): show an (ny, nx, 3) uint8 image

Renderer is a do-nothing implementation of that interface; PygameRenderer
draws into a pygame surface.

Images and overlay points are bottom-up (row 0 of the image and Y = 0 of the
view are at the bottom), while pygame surfaces are top-down, so both are
flipped on the way to the screen.
"""

import time

import numpy as np
import pygame

from .logging_setup import get_logger

setup_log = get_logger("renderer.setup")
timing_log = get_logger("renderer.timing")


class Renderer:
    """Renderer interface. Records what it is given but displays nothing."""

    def __init__(self):
        self.nx = 0
        self.ny = 0
        self.max_iter = 0
        self.width = 0.0
        self.height = 0.0
        self.overlay = None
        self.frames = 0

    def set_image_size(self, nx, ny):
        self.nx, self.ny = nx, ny

    def set_max_iter(self, max_iter):
        self.max_iter = max_iter

    def set_drawable_size(self, width, height):
        self.width, self.height = width, height

    def set_overlay(self, points):
        self.overlay = None if points is None or len(points) == 0 else points

    def draw(self, rgb):
        self.frames += 1


class PygameRenderer(Renderer):
    """
    Draws images, scaled to fill the view, into a pygame surface.

    Usage:
        renderer = PygameRenderer(screen)
        renderer.draw(rgb)
        pygame.display.flip()
    """

    OVERLAY_COLOUR = (255, 255, 255)

    # Overlay points are clipped to this range before drawing; orbits at high
    # magnification go far outside the view.
    MAX_COORD = 32767.0

    def __init__(self, surface):
        super().__init__()
        self.surface = surface
        self.width, self.height = surface.get_size()

    def set_surface(self, surface):
        """Use a new target surface, e.g. after the window was resized."""
        self.surface = surface

    def set_drawable_size(self, width, height):
        super().set_drawable_size(width, height)
        setup_log.debug("Drawable size %g x %g", width, height)

    def overlay_points(self):
        """The overlay as pygame (top-down) positions."""
        points = np.asarray(self.overlay, dtype=np.float64)
        points = np.clip(points, -self.MAX_COORD, self.MAX_COORD)
        xs = points[:, 0]
        ys = self.height - points[:, 1]
        return [(float(x), float(y)) for x, y in zip(xs, ys)]

    def draw(self, rgb):
        """
        Show an RGB image scaled to the drawable size, with any overlay on top.

        Args:
            rgb: (ny, nx, 3) uint8 image, row 0 at the bottom
        """
        start = time.perf_counter()

        # Flip for pygame orientation
        flipped = np.flipud(rgb).copy()
        image_surface = pygame.surfarray.make_surface(flipped.swapaxes(0, 1))
        size = (max(1, int(self.width)), max(1, int(self.height)))
        if image_surface.get_size() != size:
            image_surface = pygame.transform.scale(image_surface, size)
        self.surface.blit(image_surface, (0, 0))

        if self.overlay is not None:
            points = self.overlay_points()
            if len(points) > 1:
                pygame.draw.lines(self.surface, self.OVERLAY_COLOUR, False, points)
            else:
                pygame.draw.circle(self.surface, self.OVERLAY_COLOUR,
                                   (int(points[0][0]), int(points[0][1])), 2)

        self.frames += 1
        timing_log.debug("Drawing took %.2f msec", (time.perf_counter() - start) * 1000.0)
