"""
View controller: the state machine behind the interactive viewer.

The ViewController owns the view (through its ComputeEngine), reacts to
input events passed on by the host, picks a compute backend for each frame
and drives the zoom modes. The host calls draw() once per display refresh;
draw() does nothing unless something has changed.

Events arrive in view (frame) coordinates with the origin at the bottom
left and Y pointing up. Keys are single lower-case characters.

Zoom modes:
- IN / OUT: while the key is held, magnification changes by a factor of 2
  per second
- TIMED: zoom in for 5 seconds, out for 5 seconds, then stop and report
  the frame rate

With frame-time compensation on, each zoom step uses the measured time
since the previous step, so the zoom rate stays at x2 per second however
long each frame takes to compute.
"""

import math
import time
from collections import namedtuple
from dataclasses import dataclass, field
from enum import Enum

from .colormaps import ColourMapper
from .compute import calc_route
from .coords import centre_for_zoom, frame_to_image, route_to_frame
from .engine import ComputeBackend, ComputeEngine
from .errors import BackendUnavailable, InvalidViewState, ResourceAllocationFailure
from .logging_setup import get_logger

log = get_logger("controller")
zoom_log = get_logger("controller.zoom")
timing_log = get_logger("controller.timing")


class ZoomMode(Enum):
    NONE = "none"
    IN = "in"
    OUT = "out"
    TIMED = "timed"


class BackendPolicy(Enum):
    AUTO = "auto"
    FORCE_CPU = "cpu"
    FORCE_GPU = "gpu"


# A stored view: centre and magnification.
Setting = namedtuple("Setting", ["xcent", "ycent", "magnification"])

HOME = Setting(-0.5, 0.0, 1.0)

# Slot 0 is the full view; the others are places worth a look.
DEFAULT_MEMORIES = (
    HOME,
    Setting(0.3868518957329334, 0.1346382218151437, 4638.938418),
    Setting(-0.7485981681169396, 0.1847233013261255, 105707.2469),
    Setting(-0.6523833435215625, 0.3575238849957945, 5.589402892e+12),
    Setting(0.2709702586923193, 0.00504822194561597, 5000.0),
    Setting(0.4002654933420453, 0.1408816530352049, 1154.003232),
    Setting(0.4006417188140499, 0.1408379640285069, 22623.25281),
    Setting(-1.39985867565925, 0.001279901488190826, 1609014.646),
    Setting(-0.7478413625068855, 0.09125909131712467, 1138.784602),
    Setting(0.270925, 0.004725, 15000.0),
)

NUM_MEMORIES = len(DEFAULT_MEMORIES)

FRAME_RATE = 60.0           # Assumed display rate when not compensating
TIMED_ZOOM_SECS = 5.0       # Each half of the timed zoom test
SCROLL_STEP = 0.01          # Magnification change per unit of scroll

# Zooming stops at these limits.
MIN_MAGNIFICATION = 1.0e-10
MAX_MAGNIFICATION = 1.0e300

# Marks a binding argument to be replaced by the cursor position.
CURSOR = object()

# key -> (method name, arguments...)
KEY_BINDINGS = {
    "h": ("print_help",),
    "r": ("reset_view",),
    "e": ("toggle_path_tracking", CURSOR),
    "x": ("clear_overlay",),
    "p": ("report_position",),
    "j": ("recentre_on", CURSOR),
    "d": ("trace_path", CURSOR),
    "a": ("set_backend_policy", BackendPolicy.AUTO),
    "c": ("set_backend_policy", BackendPolicy.FORCE_CPU),
    "g": ("set_backend_policy", BackendPolicy.FORCE_GPU),
    "z": ("toggle_timed_test",),
    "i": ("start_zoom", ZoomMode.IN),
    "o": ("start_zoom", ZoomMode.OUT),
    "l": ("resize_image", 2.0),
    "m": ("resize_image", 1.0),
    "s": ("resize_image", 0.5),
    "t": ("resize_image", 0.25),
    "w": ("toggle_frame_time_compensation",),
}
KEY_BINDINGS.update({str(i): ("recall_memory", i) for i in range(NUM_MEMORIES)})

KEY_UP_BINDINGS = {
    "i": ("stop_zoom",),
    "o": ("stop_zoom",),
}


def select_backend(policy, float_ok, double_supported, gpu_available=True):
    """
    Pick the backend for a frame.

    Args:
        policy: BackendPolicy
        float_ok: Single precision is adequate for the view
        double_supported: The GPU can compute in double precision
        gpu_available: There is a GPU at all; if not, the CPU is always used

    Returns:
        ComputeBackend
    """
    if not gpu_available or policy == BackendPolicy.FORCE_CPU:
        return ComputeBackend.CPU
    if policy == BackendPolicy.AUTO:
        if float_ok:
            return ComputeBackend.GPU_SINGLE
        if double_supported:
            return ComputeBackend.GPU_DOUBLE
        return ComputeBackend.CPU
    if not float_ok and double_supported:
        return ComputeBackend.GPU_DOUBLE
    return ComputeBackend.GPU_SINGLE


_UNITS = (
    (1.0e15, "quadrillion"),
    (1.0e12, "trillion"),
    (1.0e9, "billion"),
    (1.0e6, "million"),
    (1.0e3, "thousand"),
)


def format_magnification(magnification):
    """Format a magnification as e.g. '4.64 thousand'."""
    value = magnification
    units = ""
    for scale, name in _UNITS:
        if magnification > scale:
            value = magnification / scale
            units = name
            break
    number = "%.3g" % value
    return f"{number} {units}" if units else number


def timed_zoom_power(zoom_secs):
    """
    Power of two the timed test has zoomed by after zoom_secs of zooming.

    Rises at one per second for TIMED_ZOOM_SECS, then falls back to 0.
    """
    zoom_secs = min(max(zoom_secs, 0.0), 2 * TIMED_ZOOM_SECS)
    if zoom_secs < TIMED_ZOOM_SECS:
        return zoom_secs
    return 2 * TIMED_ZOOM_SECS - zoom_secs


def _new_counters():
    return {backend: 0 for backend in ComputeBackend}


@dataclass
class ZoomSummary:
    """Frame rate and timing for a finished zoom session."""
    mode: ZoomMode
    frames: int
    elapsed: float
    frame_rate: float
    compute_msec: dict
    render_msec: float

    def __str__(self):
        text = f"Frame rate = {self.frame_rate:.2f} frames/sec"
        if self.compute_msec:
            parts = [f"{msec:.2f} msec ({backend.value})"
                     for backend, msec in self.compute_msec.items()]
            text += ", average compute time: " + " ".join(parts)
        if self.frames > 0:
            text += f", average render time: {self.render_msec:.2f} msec"
        return text


@dataclass
class ZoomSession:
    """
    Timing for one zoom session.

    Times are in seconds from the host clock, except the accumulated
    compute and render times, which are in milliseconds. Frames are counted
    per backend for each zoom step taken. zoom_secs is how many seconds of
    zooming have been applied, which is what the timed test follows.
    """
    mode: ZoomMode
    start: float
    last_frame: float = 0.0
    zoom_secs: float = 0.0
    frames: dict = field(default_factory=_new_counters)
    compute_msec: dict = field(default_factory=lambda: {b: 0.0 for b in ComputeBackend})
    render_msec: float = 0.0

    @property
    def total_frames(self):
        return sum(self.frames.values())

    def summary(self, now):
        elapsed = now - self.start
        frames = self.total_frames
        frame_rate = frames / elapsed if elapsed > 0 else 0.0
        compute = {
            backend: self.compute_msec[backend] / count
            for backend, count in self.frames.items() if count > 0
        }
        render = self.render_msec / frames if frames > 0 else 0.0
        return ZoomSummary(self.mode, frames, elapsed, frame_rate, compute, render)


class ViewController:
    """
    Owns the view state and turns input events into frames.

    Usage:
        controller = ViewController(MandelConfig(), renderer)
        controller.set_view_size(512, 512)
        # in the host loop:
        controller.on_key_down("i", x, y)
        controller.draw()

    Args:
        config: MandelConfig
        renderer: Object with set_image_size(), set_max_iter(),
            set_drawable_size(), set_overlay() and draw(rgb)
        gpu: GPU compute device; if None one is created when config.use_gpu
            is set and PyTorch is installed
        clock: Function returning the time in seconds
        on_title: Called with the new title string whenever it changes
    """

    def __init__(self, config, renderer, gpu=None, clock=time.perf_counter, on_title=None):
        self.config = config
        self.renderer = renderer
        self.clock = clock
        self.on_title = on_title

        if gpu is None and config.use_gpu:
            from .compute_gpu import GPUCompute
            gpu = GPUCompute()
        if gpu is not None and not gpu.available:
            gpu = None
        self.engine = ComputeEngine(config.nx, config.ny, config.iter_limit, gpu=gpu)

        self.policy = BackendPolicy.AUTO
        self.zoom_mode = ZoomMode.NONE
        self.session = None
        self.last_summary = None     # ZoomSummary of the last finished zoom session
        self.scale_mag_by_time = config.scale_mag_by_time
        self.last_backend = None
        self.title = ""
        self.memories = list(DEFAULT_MEMORIES)

        self.frame_width = float(config.window_width)
        self.frame_height = float(config.window_height)
        self.base_nx = config.nx
        self.base_ny = config.ny
        self.mapper = None

        # Orbit overlay: (xs, ys) in Mandelbrot coordinates, or None
        self.route = None
        self.tracking = False

        self._dragging = False
        self._drag_point = (0.0, 0.0)
        self._dirty = True

        self.initialise()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialise(self, nx=None, ny=None, iter_limit=None):
        """Start from the home view with the given base image size and iteration limit."""
        nx = self.config.nx if nx is None else int(nx)
        ny = self.config.ny if ny is None else int(ny)
        iter_limit = self.config.iter_limit if iter_limit is None else int(iter_limit)

        self.engine.set_centre(HOME.xcent, HOME.ycent)
        self.engine.set_magnification(HOME.magnification)
        self.engine.set_max_iter(iter_limit)
        self.mapper = ColourMapper(iter_limit, self.config.colour_strategy, self.config.percentile)
        self.renderer.set_max_iter(iter_limit)

        self.base_nx, self.base_ny = nx, ny
        self.set_image_size(nx, ny)
        self.set_view_size(self.frame_width, self.frame_height)
        log.info("Press 'h' key for help.")

    def set_image_size(self, nx, ny):
        self.engine.set_image_size(nx, ny)
        self.renderer.set_image_size(nx, ny)
        self._dirty = True

    def set_view_size(self, width, height):
        """Called whenever the host's view changes size."""
        self.engine.set_aspect(width, height)
        self.frame_width = float(width)
        self.frame_height = float(height)
        self.renderer.set_drawable_size(self.frame_width, self.frame_height)
        self._dirty = True

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    @property
    def magnification(self):
        return self.engine.magnification

    @property
    def centre(self):
        return self.engine.get_centre()

    @property
    def image_size(self):
        return self.engine.image_size

    @property
    def dirty(self):
        return self._dirty

    def _frame_to_image(self, at_x, at_y):
        xcent, ycent = self.engine.get_centre()
        return frame_to_image(at_x, at_y, self.frame_width, self.frame_height,
                              xcent, ycent, self.engine.magnification)

    def _set_magnification(self, magnification):
        magnification = min(max(magnification, MIN_MAGNIFICATION), MAX_MAGNIFICATION)
        self.engine.set_magnification(magnification)

    def set_memory(self, slot, xcent, ycent, magnification):
        if not 0 <= slot < NUM_MEMORIES:
            raise IndexError(f"Memory slot must be 0..{NUM_MEMORIES - 1}, got {slot}")
        setting = Setting(float(xcent), float(ycent), float(magnification))
        if not all(math.isfinite(value) for value in setting):
            raise InvalidViewState(f"Memory setting must be finite, got {setting}")
        if setting.magnification <= 0.0:
            raise InvalidViewState(
                f"Magnification must be positive, got {setting.magnification}"
            )
        self.memories[slot] = setting

    def set_memories_to_default(self):
        self.memories = list(DEFAULT_MEMORIES)

    def store_memory(self, slot):
        """Save the current centre and magnification in a memory slot."""
        xcent, ycent = self.engine.get_centre()
        self.set_memory(slot, xcent, ycent, self.engine.magnification)

    def recall_memory(self, slot):
        setting = self.memories[slot]
        self.engine.set_centre(setting.xcent, setting.ycent)
        self._set_magnification(setting.magnification)
        self._dirty = True

    def reset_view(self):
        """Back to the full view, with no orbit overlay."""
        self.engine.set_centre(HOME.xcent, HOME.ycent)
        self.engine.set_magnification(HOME.magnification)
        self.route = None
        self.tracking = False
        self._dirty = True

    def recentre_on(self, at_x, at_y):
        """Centre the view on the point under the cursor."""
        self.engine.set_centre(*self._frame_to_image(at_x, at_y))
        self._dirty = True

    def set_backend_policy(self, policy):
        if policy != self.policy:
            self.policy = policy
            self._dirty = True

    def resize_image(self, factor):
        """Set the image size to a multiple of the base size."""
        nx = max(1, int(self.base_nx * factor))
        ny = max(1, int(self.base_ny * factor))
        self.set_image_size(nx, ny)

    def toggle_frame_time_compensation(self):
        self.scale_mag_by_time = not self.scale_mag_by_time
        log.info("Scaling of magnification to compensate for compute delays %s",
                 "enabled" if self.scale_mag_by_time else "disabled")
        return self.scale_mag_by_time

    def report_position(self):
        """Log the current centre and magnification, and return them as a Setting."""
        xcent, ycent = self.engine.get_centre()
        magnification = self.engine.magnification
        log.info("Xcent %.16g Ycent %.16g, Magnification %.10g", xcent, ycent, magnification)
        return Setting(xcent, ycent, magnification)

    # ------------------------------------------------------------------
    # Orbit overlay
    # ------------------------------------------------------------------

    def trace_path(self, at_x, at_y):
        """Calculate the orbit of the point under the cursor."""
        x, y = self._frame_to_image(at_x, at_y)
        self.route = calc_route(x, y, self.engine.max_iter)
        self._dirty = True

    def toggle_path_tracking(self, at_x, at_y):
        """Switch on or off an orbit overlay that follows the cursor."""
        self.tracking = not self.tracking
        if self.tracking:
            self.trace_path(at_x, at_y)
        else:
            self._dirty = True

    def clear_overlay(self):
        self.route = None
        self._dirty = True

    # ------------------------------------------------------------------
    # Zooming
    # ------------------------------------------------------------------

    def _start_session(self, mode):
        self.session = ZoomSession(mode=mode, start=self.clock())
        self._dirty = True

    def _end_session(self, message):
        summary = None
        if self.session is not None:
            summary = self.session.summary(self.clock())
            log.info("%s (%s). %s", message, self.session.mode.value, summary)
            self.last_summary = summary
        self.zoom_mode = ZoomMode.NONE
        self.session = None
        return summary

    def toggle_timed_test(self):
        """
        Start or cancel the timed zoom test.

        Returns:
            The ZoomSummary when a test is cancelled, else None
        """
        if self.zoom_mode == ZoomMode.TIMED:
            return self._end_session("Zoom mode cancelled")
        self.zoom_mode = ZoomMode.TIMED
        self._start_session(ZoomMode.TIMED)
        return None

    def start_zoom(self, mode):
        """Begin zooming in or out (ZoomMode.IN or ZoomMode.OUT)."""
        if self.zoom_mode in (ZoomMode.NONE, ZoomMode.TIMED):
            self._start_session(mode)
        self.zoom_mode = mode
        if self.session is not None:
            self.session.mode = mode

    def stop_zoom(self):
        """
        Stop zooming in or out.

        Returns:
            The ZoomSummary for the session, or None if not zooming
        """
        if self.zoom_mode not in (ZoomMode.IN, ZoomMode.OUT):
            return None
        return self._end_session("Zoom ends")

    def _zoom_step(self, backend):
        """
        Change the magnification for the next frame of a zoom session.

        Each step covers the time since the previous one (or one frame at
        FRAME_RATE without compensation). The timed test follows
        timed_zoom_power() over the zoom time applied, so a step that spans
        the turning point zooms in for part of it and out for the rest, and
        the test always ends at the magnification it started from.
        """
        session = self.session
        elapsed = self.clock() - session.start

        step = 1.0 / FRAME_RATE
        if session.total_frames > 0 and self.scale_mag_by_time:
            step = max(0.0, elapsed - session.last_frame)

        if self.zoom_mode == ZoomMode.TIMED:
            if elapsed >= 2 * TIMED_ZOOM_SECS:
                # Finish the zoom so the view is back where the test started
                power = timed_zoom_power(2 * TIMED_ZOOM_SECS) - timed_zoom_power(session.zoom_secs)
                self._set_magnification(self.engine.magnification * 2.0 ** power)
                self._dirty = True
                return self._end_session("Zoom mode ends")
            power = (timed_zoom_power(session.zoom_secs + step)
                     - timed_zoom_power(session.zoom_secs))
        elif self.zoom_mode == ZoomMode.IN:
            power = step
        else:
            power = -step

        magnification = self.engine.magnification * 2.0 ** power
        self._set_magnification(magnification)
        zoom_log.debug("Zoom by 2**%.5f to %.6g at %.3f sec", power, magnification, elapsed)

        session.zoom_secs += step
        session.frames[backend] += 1
        session.last_frame = elapsed
        self._dirty = True
        return None

    # ------------------------------------------------------------------
    # Input events
    # ------------------------------------------------------------------

    def _dispatch(self, bindings, key, at_x, at_y):
        binding = bindings.get((key or "").lower())
        if binding is None:
            return False
        name, *args = binding
        call_args = []
        for arg in args:
            if arg is CURSOR:
                call_args.extend((at_x, at_y))
            else:
                call_args.append(arg)
        getattr(self, name)(*call_args)
        return True

    def on_key_down(self, key, at_x=0.0, at_y=0.0):
        """Handle a key press. Returns True if the key is bound to anything."""
        return self._dispatch(KEY_BINDINGS, key, at_x, at_y)

    def on_key_up(self, key, at_x=0.0, at_y=0.0):
        return self._dispatch(KEY_UP_BINDINGS, key, at_x, at_y)

    def on_scroll(self, delta_x, delta_y, at_x, at_y):
        """
        Zoom around the cursor.

        Scrolling up (delta_y > 0) zooms in. The point under the cursor stays
        where it is.
        """
        if delta_y == 0:
            return
        x, y = self._frame_to_image(at_x, at_y)
        step = 1.0 + SCROLL_STEP * abs(delta_y)
        if delta_y > 0:
            self._set_magnification(self.engine.magnification * step)
        else:
            self._set_magnification(self.engine.magnification / step)
        self.engine.set_centre(*centre_for_zoom(
            at_x, at_y, x, y, self.frame_width, self.frame_height, self.engine.magnification
        ))
        self._dirty = True

    def on_mouse_down(self, at_x, at_y):
        """Start a drag, remembering which point of the set is under the cursor."""
        self._dragging = True
        self._drag_point = self._frame_to_image(at_x, at_y)

    def on_mouse_up(self, at_x, at_y):
        self._dragging = False

    def on_mouse_move(self, at_x, at_y):
        if self._dragging:
            # Move the centre so the drag start point is back under the cursor
            x, y = self._frame_to_image(at_x, at_y)
            xcent, ycent = self.engine.get_centre()
            self.engine.set_centre(xcent + self._drag_point[0] - x,
                                   ycent + self._drag_point[1] - y)
            self._dirty = True
        if self.tracking:
            # After any drag, so the orbit starts from the point now under the cursor
            self.trace_path(at_x, at_y)

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def _compute(self, backend):
        try:
            return self.engine.compute(backend)
        except BackendUnavailable as e:
            log.warning("%s backend unavailable (%s), using the CPU", backend.value, e)
            return self.engine.compute(ComputeBackend.CPU)

    def draw(self):
        """
        Compute and display a new frame if the view has changed.

        Returns:
            True if a frame was drawn, False if there was nothing to do or
            the frame had to be skipped
        """
        if not self._dirty:
            return False

        backend = select_backend(
            self.policy,
            self.engine.float_ok(),
            self.engine.gpu_supports_double(),
            self.engine.gpu_available,
        )
        start = self.clock()
        try:
            image = self._compute(backend)
        except ResourceAllocationFailure as e:
            log.error("Frame skipped: %s", e)
            self._dirty = False
            return False
        compute_msec = (self.clock() - start) * 1000.0
        used = self.engine.last_backend
        self.last_backend = used
        self.refresh_title()

        if self.session is not None:
            self.session.compute_msec[used] += compute_msec
        timing_log.debug("Compute (%s) took %.2f msec", used.value, compute_msec)

        if self.route is not None and len(self.route[0]) > 0:
            xcent, ycent = self.engine.get_centre()
            self.renderer.set_overlay(route_to_frame(
                self.route[0], self.route[1], self.frame_width, self.frame_height,
                xcent, ycent, self.engine.magnification
            ))
        else:
            self.renderer.set_overlay(None)

        start = self.clock()
        self.renderer.draw(self.mapper.map(image))
        render_msec = (self.clock() - start) * 1000.0
        if self.session is not None:
            self.session.render_msec += render_msec
        timing_log.debug("Render took %.2f msec", render_msec)
        self._dirty = False

        if self.zoom_mode != ZoomMode.NONE:
            self._zoom_step(used)
        return True

    def make_title(self):
        """
        Title text: the magnification and the backend last used.

        The backend is starred if its precision is not adequate for the view.
        """
        backend = self.last_backend or ComputeBackend.CPU
        if backend == ComputeBackend.GPU_SINGLE:
            precise = self.engine.float_ok()
        else:
            precise = self.engine.double_ok()
        device = backend.value if precise else f"*{backend.value}*"
        return f"{format_magnification(self.engine.magnification)} ({device})"

    def refresh_title(self):
        self.title = self.make_title()
        if self.on_title is not None:
            self.on_title(self.title)

    # ------------------------------------------------------------------
    # Help
    # ------------------------------------------------------------------

    def help_text(self):
        if self.engine.gpu_supports_double():
            double_text = (
                "    This GPU supports double precision floating point and will use it\n"
                "    at magnifications above about 100,000, where single precision floating point\n"
                "    errors would cause pixelation."
            )
        else:
            double_text = (
                "    This GPU does not support double precision floating point and at magnifications\n"
                "    above about 100,000, single precision floating point will cause pixelation."
            )
        bx, by = self.base_nx, self.base_ny
        lines = [
            "",
            "This shows the Mandelbrot set.",
            "Zooming or moving this image recalculates the set, using either GPU or CPU.",
            "Dragging on the image moves it around in the display.",
            "Scrolling up zooms in around the cursor position.",
            "Scrolling down zooms out around the cursor position.",
            "As you zoom, the window title shows the current magnification level.",
            "",
            "Centre on an interesting point - usually near the edge of the set boundary",
            "and keep zooming in. The set boundary continues to get more complicated as you",
            "zoom in on it. You may have to recentre the image occasionally.",
            "",
            "Hitting certain keyboard keys has an effect:",
            "'0'..'9' select pre-determined settings for centre point and magnification.",
            "'r' resets the display to its starting point",
            "'i' hold down the 'i' key to zoom in",
            "'o' hold down the 'o' key to zoom out",
            "'j' centres the image on the cursor position.",
            "'p' outputs the current image centre and magnification.",
            "'d' displays the Mandelbrot path for the point under the cursor.",
            "'e' toggles a continuous display of the Mandelbrot path as the cursor moves.",
            "'x' clears any Mandelbrot path from the display",
            "'z' does a zoom test. It zooms in for 5 seconds, then out for 5 seconds",
            "'a' sets auto mode - the program uses the GPU so long as its floating point",
            "    support is accurate enough at the current magnification.",
            "'c' forces the program to use the CPU - all available cores.",
            "'g' forces the program to use the GPU at all magnifications.",
            double_text,
            "    (Above about 100 trillion even double precision has problems.)",
            "'w' toggles magnification rate compensation for slow compute times during zoom",
            f"'l' sets size of images to {bx * 2} by {by * 2} (large)",
            f"'m' sets size of images to {bx} by {by} (medium - default)",
            f"'s' sets size of images to {bx // 2} by {by // 2} (small)",
            f"'t' sets size of images to {bx // 4} by {by // 4} (tiny)",
        ]
        return "\n".join(lines)

    def print_help(self):
        print(self.help_text())
