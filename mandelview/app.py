"""
Main application module for the Mandelbrot viewer.

Contains the MandelbrotApp class which handles:
- Window setup and main loop
- Translating pygame events into ViewController events
- Showing the window title the controller produces

and main(), the command line entry point.
"""

import argparse
import logging
import sys

import pygame

from .compute import warmup_jit
from .config import MandelConfig, load_config
from .controller import ViewController
from .logging_setup import configure_logging, get_logger
from .renderer import PygameRenderer

log = get_logger("app")


class MandelbrotApp:
    """
    Main application class for the Mandelbrot viewer.

    Owns the pygame window and event loop. All view logic lives in the
    ViewController; this class only converts pygame's events into its
    terms. Pygame positions are top-down, so Y is flipped to make the
    view's origin the bottom left corner.
    """

    FRAME_RATE = 60

    # Scroll units per mouse wheel notch
    WHEEL_SCALE = 10.0

    def __init__(self, config=None, gpu=None):
        """
        Initialize the application.

        Args:
            config: MandelConfig (default settings if None)
            gpu: GPU compute device to use instead of auto-detecting one
        """
        self.config = config or MandelConfig()
        self.gpu = gpu
        self.width = self.config.window_width
        self.height = self.config.window_height

        # Pygame state (initialized in run())
        self.screen = None
        self.clock = None

        # Components
        self.renderer = None
        self.controller = None

        self.running = False

    def run(self):
        """Run the application main loop."""
        self._init_pygame()
        self._init_components()
        self._warmup()

        self.running = True
        while self.running:
            self._handle_events()
            if self.controller.draw():
                pygame.display.flip()
            self.clock.tick(self.FRAME_RATE)

        pygame.quit()

    def _init_pygame(self):
        """Initialize pygame and create window."""
        pygame.init()
        self.screen = pygame.display.set_mode(
            (self.width, self.height),
            pygame.RESIZABLE | pygame.DOUBLEBUF
        )
        pygame.display.set_caption("Mandelbrot Set")
        self.clock = pygame.time.Clock()

    def _init_components(self):
        """Create the renderer and the controller."""
        self.renderer = PygameRenderer(self.screen)
        self.controller = ViewController(
            self.config, self.renderer, gpu=self.gpu,
            on_title=pygame.display.set_caption
        )
        self.controller.set_view_size(self.width, self.height)

    def _warmup(self):
        """Compile the JIT kernels (and warm up any GPU) before the first frame."""
        pygame.display.set_caption("Compiling (first run only)...")
        warmup_jit()
        gpu = self.controller.engine.gpu
        if gpu is not None:
            log.info("GPU compute device: %s", gpu.get_device_info())
            gpu.warmup()
        else:
            log.info("No GPU compute device, using the CPU only.")
        pygame.display.set_caption("Mandelbrot Set")

    def _to_frame(self, pos):
        """Convert a pygame position to view coordinates (Y up)."""
        return float(pos[0]), float(self.height - pos[1])

    def _handle_events(self):
        """Process all pending pygame events."""
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.VIDEORESIZE:
                self._handle_resize(event.w, event.h)
            elif event.type == pygame.MOUSEWHEEL:
                at_x, at_y = self._to_frame(pygame.mouse.get_pos())
                self.controller.on_scroll(
                    event.x * self.WHEEL_SCALE, event.y * self.WHEEL_SCALE, at_x, at_y
                )
            elif event.type == pygame.MOUSEBUTTONDOWN:
                if event.button == 1:  # Left click
                    self.controller.on_mouse_down(*self._to_frame(event.pos))
            elif event.type == pygame.MOUSEBUTTONUP:
                if event.button == 1:
                    self.controller.on_mouse_up(*self._to_frame(event.pos))
            elif event.type == pygame.MOUSEMOTION:
                self.controller.on_mouse_move(*self._to_frame(event.pos))
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    self.running = False
                else:
                    at_x, at_y = self._to_frame(pygame.mouse.get_pos())
                    self.controller.on_key_down(pygame.key.name(event.key), at_x, at_y)
            elif event.type == pygame.KEYUP:
                at_x, at_y = self._to_frame(pygame.mouse.get_pos())
                self.controller.on_key_up(pygame.key.name(event.key), at_x, at_y)

    def _handle_resize(self, width, height):
        self.width, self.height = width, height
        self.screen = pygame.display.get_surface()
        self.renderer.set_surface(self.screen)
        self.controller.set_view_size(width, height)


def run(config=None, gpu=None):
    """Run the viewer."""
    app = MandelbrotApp(config, gpu=gpu)
    app.run()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mandelview",
        description="Interactive Mandelbrot set viewer (CPU and GPU).",
    )
    parser.add_argument("nx", nargs="?", type=int, help="Image width in pixels")
    parser.add_argument("ny", nargs="?", type=int, help="Image height in pixels")
    parser.add_argument("iter", nargs="?", type=int, help="Iteration limit")
    parser.add_argument("--config", help="JSON file of settings")
    parser.add_argument("--debug", default=None,
                        help="Debug levels, e.g. 'Compute.Setup,Renderer.*'")
    parser.add_argument("--cpu-only", action="store_true", help="Never use the GPU")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Also log to this file")
    return parser


def config_from_args(args):
    """Build the MandelConfig for parsed command line arguments."""
    config = load_config(args.config)
    changes = {}
    if args.nx is not None:
        changes["nx"] = args.nx
    if args.ny is not None:
        changes["ny"] = args.ny
    if args.iter is not None:
        changes["iter_limit"] = args.iter
    if args.debug is not None:
        changes["debug_levels"] = args.debug
    if args.cpu_only:
        changes["use_gpu"] = False
    return config.replace(**changes) if changes else config


def main(argv=None):
    """Command line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = config_from_args(args)
        configure_logging(getattr(logging, args.log_level), config.debug_levels, args.log_file)
    except (OSError, ValueError) as e:
        parser.error(str(e))
    run(config)
    return 0


if __name__ == "__main__":
    sys.exit(main())
