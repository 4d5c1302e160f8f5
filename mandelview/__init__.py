"""
Mandelbrot Set Viewer Package

An interactive Mandelbrot set explorer that computes each frame on the
CPU (Numba, all cores) or a GPU (PyTorch), choosing single or double
precision depending on the magnification, and displays it with Pygame.

Quick Start:
    from mandelview import run
    run()

Or from command line:
    python -m mandelview [Nx Ny Iter] [--debug LEVELS] [--cpu-only]

Package Structure:
    - compute.py: JIT-compiled escape-time kernel, threaded CPU compute, orbits
    - compute_gpu.py: PyTorch GPU compute device
    - engine.py: ComputeEngine - view parameters, image buffer, backends
    - coords.py: View <-> Mandelbrot coordinate conversion
    - precision.py: Is single/double precision adequate for the view?
    - colormaps.py: Palette and histogram-equalised colour mapping
    - controller.py: ViewController - events, zoom modes, backend choice
    - renderer.py: Pygame display of images and orbit overlays
    - app.py: Main application, event loop and command line
    - config.py, logging_setup.py, errors.py: Settings, logging, exceptions

Controls:
    - Scroll: Zoom in/out at mouse position
    - Drag: Pan around
    - I / O (hold): Zoom in / out
    - H: Print the full list of keys
    - ESC: Quit
"""

from .app import run, main, MandelbrotApp
from .colormaps import PALETTE, ColourMapper
from .config import MandelConfig, load_config
from .controller import ViewController, ZoomMode, BackendPolicy, select_backend
from .engine import ComputeEngine, ComputeBackend
from .errors import MandelError, BackendUnavailable, ResourceAllocationFailure, InvalidViewState
from .renderer import Renderer, PygameRenderer

__version__ = "1.0.0"
__all__ = [
    "run",
    "main",
    "MandelbrotApp",
    "PALETTE",
    "ColourMapper",
    "MandelConfig",
    "load_config",
    "ViewController",
    "ZoomMode",
    "BackendPolicy",
    "select_backend",
    "ComputeEngine",
    "ComputeBackend",
    "MandelError",
    "BackendUnavailable",
    "ResourceAllocationFailure",
    "InvalidViewState",
    "Renderer",
    "PygameRenderer",
]
