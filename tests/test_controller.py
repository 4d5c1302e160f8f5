"""Tests of the ViewController state machine."""

import pytest

from conftest import FakeGPU
from mandelview.controller import (
    DEFAULT_MEMORIES,
    MIN_MAGNIFICATION,
    BackendPolicy,
    Setting,
    ViewController,
    ZoomMode,
    ZoomSummary,
    format_magnification,
    select_backend,
    timed_zoom_power,
)
from mandelview.coords import frame_to_image
from mandelview.engine import ComputeBackend
from mandelview.errors import BackendUnavailable, InvalidViewState, ResourceAllocationFailure


@pytest.fixture
def titles():
    return []


@pytest.fixture
def make_controller(config, renderer, clock, titles):
    def make(gpu=None, **changes):
        cfg = config.replace(**changes) if changes else config
        return ViewController(cfg, renderer, gpu=gpu, clock=clock, on_title=titles.append)
    return make


@pytest.fixture
def controller(make_controller):
    return make_controller()


def run_frames(controller, clock, times):
    drawn = 0
    for t in times:
        clock.now = t
        if controller.draw():
            drawn += 1
    return drawn


# ----------------------------------------------------------------------
# Backend selection
# ----------------------------------------------------------------------

@pytest.mark.parametrize("policy,float_ok,double,expected", [
    (BackendPolicy.AUTO, True, True, ComputeBackend.GPU_SINGLE),
    (BackendPolicy.AUTO, True, False, ComputeBackend.GPU_SINGLE),
    (BackendPolicy.AUTO, False, True, ComputeBackend.GPU_DOUBLE),
    (BackendPolicy.AUTO, False, False, ComputeBackend.CPU),
    (BackendPolicy.FORCE_CPU, True, True, ComputeBackend.CPU),
    (BackendPolicy.FORCE_CPU, False, False, ComputeBackend.CPU),
    (BackendPolicy.FORCE_GPU, True, True, ComputeBackend.GPU_SINGLE),
    (BackendPolicy.FORCE_GPU, True, False, ComputeBackend.GPU_SINGLE),
    (BackendPolicy.FORCE_GPU, False, True, ComputeBackend.GPU_DOUBLE),
    (BackendPolicy.FORCE_GPU, False, False, ComputeBackend.GPU_SINGLE),
])
def test_select_backend(policy, float_ok, double, expected):
    assert select_backend(policy, float_ok, double) == expected


@pytest.mark.parametrize("policy", list(BackendPolicy))
def test_select_backend_without_gpu(policy):
    assert select_backend(policy, True, True, gpu_available=False) == ComputeBackend.CPU


# ----------------------------------------------------------------------
# Drawing
# ----------------------------------------------------------------------

def test_draw_only_when_dirty(controller, renderer):
    assert controller.draw()
    assert not controller.draw()
    assert renderer.frames == 1
    assert renderer.images[0].shape == (32, 32, 3)
    controller.on_scroll(0.0, 0.0, 10.0, 10.0)
    assert not controller.draw()


def test_renderer_is_set_up(controller, renderer):
    assert (renderer.nx, renderer.ny) == (32, 32)
    assert renderer.max_iter == 64
    assert (renderer.width, renderer.height) == (64.0, 64.0)


def test_cpu_only_title(controller, titles):
    controller.draw()
    assert controller.title == "1 (CPU)"
    assert titles[-1] == "1 (CPU)"
    assert controller.last_backend == ComputeBackend.CPU


def test_force_gpu_without_gpu_uses_cpu(controller):
    controller.on_key_down("g")
    assert controller.policy == BackendPolicy.FORCE_GPU
    assert controller.draw()
    assert controller.last_backend == ComputeBackend.CPU


def test_auto_uses_gpu_while_float_is_good_enough(make_controller):
    gpu = FakeGPU(double=False)
    controller = make_controller(gpu=gpu)
    controller.draw()
    assert controller.last_backend == ComputeBackend.GPU_SINGLE
    assert controller.title == "1 (GPU)"

    controller.recall_memory(3)
    controller.draw()
    assert controller.last_backend == ComputeBackend.CPU
    assert controller.title == "5.59 trillion (CPU)"


def test_force_gpu_single_shows_inadequate_precision(make_controller):
    controller = make_controller(gpu=FakeGPU(double=False))
    controller.on_key_down("g")
    controller.on_key_down("3")
    controller.draw()
    assert controller.last_backend == ComputeBackend.GPU_SINGLE
    assert controller.title == "5.59 trillion (*GPU*)"


def test_auto_uses_gpu_double_when_available(make_controller):
    gpu = FakeGPU(double=True)
    controller = make_controller(gpu=gpu)
    controller.on_key_down("3")
    controller.draw()
    assert controller.last_backend == ComputeBackend.GPU_DOUBLE
    assert gpu.dispatches == [True]
    assert controller.title == "5.59 trillion (GPU-D)"


def test_cpu_title_starred_beyond_double_precision(controller):
    controller.set_memory(5, -0.5, 0.0, 1.0e17)
    controller.on_key_down("5")
    controller.draw()
    assert controller.title == "100 quadrillion (*CPU*)"


def test_unavailable_backend_falls_back_to_cpu(make_controller, renderer):
    controller = make_controller(gpu=FakeGPU(fail_with=BackendUnavailable("device lost")))
    assert controller.draw()
    assert controller.last_backend == ComputeBackend.CPU
    assert renderer.frames == 1


def test_allocation_failure_skips_frame(make_controller, renderer):
    controller = make_controller(gpu=FakeGPU(fail_with=ResourceAllocationFailure("no memory")))
    assert not controller.draw()
    assert renderer.frames == 0
    assert not controller.dirty
    # Still usable once the user switches to the CPU
    controller.on_key_down("c")
    assert controller.draw()
    assert renderer.frames == 1


# ----------------------------------------------------------------------
# View changes
# ----------------------------------------------------------------------

def test_scroll_keeps_point_under_cursor(controller):
    before = controller._frame_to_image(10.0, 50.0)
    controller.on_scroll(0.0, 5.0, 10.0, 50.0)
    assert controller.magnification == pytest.approx(1.05)
    after = controller._frame_to_image(10.0, 50.0)
    assert after[0] == pytest.approx(before[0], abs=1e-12)
    assert after[1] == pytest.approx(before[1], abs=1e-12)
    assert controller.dirty

    controller.on_scroll(0.0, -5.0, 10.0, 50.0)
    assert controller.magnification == pytest.approx(1.0)


def test_magnification_stays_positive(controller):
    for _ in range(200):
        controller.on_scroll(0.0, -1.0e6, 32.0, 32.0)
    assert controller.magnification >= MIN_MAGNIFICATION > 0.0
    controller.reset_view()
    assert controller.magnification == 1.0


def test_drag_keeps_start_point_under_cursor(controller):
    start = controller._frame_to_image(10.0, 10.0)
    controller.on_mouse_down(10.0, 10.0)
    controller.on_mouse_move(40.0, 25.0)
    now = controller._frame_to_image(40.0, 25.0)
    assert now[0] == pytest.approx(start[0], abs=1e-12)
    assert now[1] == pytest.approx(start[1], abs=1e-12)

    controller.on_mouse_up(40.0, 25.0)
    centre = controller.centre
    controller.on_mouse_move(0.0, 0.0)
    assert controller.centre == centre


def test_recentre_on_cursor(controller):
    expected = frame_to_image(48.0, 16.0, 64.0, 64.0, -0.5, 0.0, 1.0)
    assert controller.on_key_down("j", 48.0, 16.0)
    assert controller.centre == pytest.approx(expected)


def test_reset_view(controller):
    controller.on_key_down("2")
    controller.on_key_down("d", 5.0, 5.0)
    assert controller.route is not None
    controller.on_key_down("r")
    assert controller.centre == (-0.5, 0.0)
    assert controller.magnification == 1.0
    assert controller.route is None
    assert not controller.tracking


@pytest.mark.parametrize("key,size", [("l", (64, 64)), ("m", (32, 32)), ("s", (16, 16)), ("t", (8, 8))])
def test_resize_keys(controller, renderer, key, size):
    controller.draw()
    controller.on_key_down(key)
    assert controller.image_size == size
    assert (renderer.nx, renderer.ny) == size
    assert controller.draw()
    assert renderer.images[-1].shape == (size[1], size[0], 3)


def test_set_view_size(controller, renderer):
    controller.draw()
    controller.set_view_size(128, 64)
    assert (renderer.width, renderer.height) == (128.0, 64.0)
    assert controller.engine.view_size == (128.0, 64.0)
    assert controller.draw()


def test_policy_keys(controller):
    controller.draw()
    controller.on_key_down("c")
    assert controller.policy == BackendPolicy.FORCE_CPU
    assert controller.dirty
    controller.on_key_down("a")
    assert controller.policy == BackendPolicy.AUTO


def test_unbound_key(controller):
    assert not controller.on_key_down("q")
    assert not controller.on_key_up("q")
    assert not controller.on_key_down("")


# ----------------------------------------------------------------------
# Memories
# ----------------------------------------------------------------------

def test_memories_default(controller):
    controller.set_memory(0, 1.0, 2.0, 3.0)
    controller.set_memories_to_default()
    assert controller.memories[0] == Setting(-0.5, 0.0, 1.0)
    assert controller.memories == list(DEFAULT_MEMORIES)


def test_recall_memory(controller):
    assert controller.on_key_down("1")
    expected = DEFAULT_MEMORIES[1]
    assert controller.centre == (expected.xcent, expected.ycent)
    assert controller.magnification == expected.magnification
    controller.draw()
    assert controller.title == "4.64 thousand (CPU)"


def test_store_memory(controller):
    controller.recall_memory(2)
    controller.store_memory(4)
    assert controller.memories[4] == DEFAULT_MEMORIES[2]
    controller.reset_view()
    controller.recall_memory(4)
    assert controller.magnification == DEFAULT_MEMORIES[2].magnification


def test_bad_memory_slot(controller):
    with pytest.raises(IndexError):
        controller.set_memory(10, 0.0, 0.0, 1.0)


@pytest.mark.parametrize("xcent,ycent,magnification", [
    (0.0, 0.0, 0.0),
    (0.0, 0.0, -2.0),
    (0.0, 0.0, float("nan")),
    (0.0, 0.0, float("inf")),
    (float("inf"), 0.0, 1.0),
    (0.0, float("nan"), 1.0),
])
def test_bad_memory_setting(controller, xcent, ycent, magnification):
    with pytest.raises(InvalidViewState):
        controller.set_memory(3, xcent, ycent, magnification)
    assert controller.memories[3] == DEFAULT_MEMORIES[3]


def test_report_position(controller):
    controller.recall_memory(9)
    assert controller.on_key_down("p")
    assert controller.report_position() == DEFAULT_MEMORIES[9]


# ----------------------------------------------------------------------
# Orbit overlay
# ----------------------------------------------------------------------

def test_trace_and_clear_path(controller, renderer):
    controller.on_key_down("d", 32.0, 32.0)
    # The centre (-0.5, 0) is inside the set: the orbit runs to the limit
    assert len(controller.route[0]) == 64
    controller.draw()
    assert renderer.overlays[-1].shape == (64, 2)

    controller.on_key_down("x")
    assert controller.draw()
    assert renderer.overlays[-1] is None


def test_path_tracking_follows_cursor(controller):
    controller.on_key_down("e", 0.0, 0.0)
    assert controller.tracking
    first = controller.route
    controller.on_mouse_move(60.0, 60.0)
    assert controller.route is not first
    assert controller.route[0][0] == pytest.approx(controller._frame_to_image(60.0, 60.0)[0])
    controller.on_key_down("e", 0.0, 0.0)
    assert not controller.tracking


# ----------------------------------------------------------------------
# Zooming
# ----------------------------------------------------------------------

def test_timed_zoom_returns_to_start(controller, clock):
    controller.draw()
    start = controller.magnification
    controller.on_key_down("z")
    assert controller.zoom_mode == ZoomMode.TIMED

    peak = start
    for k in range(700):
        clock.now = k / 60.0
        assert controller.draw()
        peak = max(peak, controller.magnification)
        if controller.zoom_mode == ZoomMode.NONE:
            break
    assert k == 600
    assert peak == pytest.approx(32.0 * start, rel=1e-9)
    assert controller.magnification == pytest.approx(start, rel=1e-9)
    assert controller.session is None
    # One more frame shows the final magnification, then nothing to do
    assert controller.draw()
    assert not controller.draw()

    summary = controller.last_summary
    assert summary.mode == ZoomMode.TIMED
    assert summary.frames == 600


@pytest.mark.parametrize("t0", [0.0, 1234.5678, 98765.4321])
@pytest.mark.parametrize("compensate", [True, False])
def test_timed_zoom_returns_to_start_on_a_running_clock(make_controller, clock, t0, compensate):
    controller = make_controller(scale_mag_by_time=compensate)
    clock.now = t0
    controller.on_key_down("z")
    t = t0
    for _ in range(1000):
        clock.now = t
        controller.draw()
        if controller.zoom_mode == ZoomMode.NONE:
            break
        t += 1.0 / 60.0
    assert controller.zoom_mode == ZoomMode.NONE
    assert controller.last_summary.frames in (600, 601)
    assert controller.magnification == pytest.approx(1.0, rel=1e-9)


def test_timed_zoom_with_uneven_frames(controller, clock):
    controller.on_key_down("z")
    run_frames(controller, clock, [0.0, 0.3, 2.9, 4.95, 5.2, 8.0, 9.99, 10.5])
    assert controller.zoom_mode == ZoomMode.NONE
    assert controller.magnification == pytest.approx(1.0, rel=1e-9)


def test_timed_zoom_step_across_turning_point(controller, clock):
    controller.on_key_down("z")
    run_frames(controller, clock, [0.0, 4.9])
    zoomed = 4.9 + 1.0 / 60.0
    assert controller.magnification == pytest.approx(2.0 ** zoomed, rel=1e-9)
    # Part of this step is in, the rest out
    run_frames(controller, clock, [5.1])
    zoomed += 0.2
    assert controller.magnification == pytest.approx(2.0 ** (10.0 - zoomed), rel=1e-9)


@pytest.mark.parametrize("zoom_secs,power", [
    (-1.0, 0.0), (0.0, 0.0), (2.5, 2.5), (5.0, 5.0), (7.5, 2.5), (10.0, 0.0), (12.0, 0.0),
])
def test_timed_zoom_power(zoom_secs, power):
    assert timed_zoom_power(zoom_secs) == pytest.approx(power)


def test_timed_zoom_can_be_cancelled(controller, clock):
    controller.on_key_down("z")
    run_frames(controller, clock, [k / 60.0 for k in range(30)])
    summary = controller.toggle_timed_test()
    assert isinstance(summary, ZoomSummary)
    assert summary.frames == 30
    assert controller.last_summary is summary
    assert controller.zoom_mode == ZoomMode.NONE


def test_zoom_in_doubles_per_second(controller, clock):
    controller.on_key_down("i")
    assert run_frames(controller, clock, [k / 60.0 for k in range(60)]) == 60
    assert controller.magnification == pytest.approx(2.0, rel=1e-9)

    clock.now = 1.0
    summary = controller.stop_zoom()
    assert summary.frames == 60
    assert summary.mode == ZoomMode.IN
    assert controller.last_summary is summary
    assert summary.frame_rate == pytest.approx(60.0)
    assert ComputeBackend.CPU in summary.compute_msec
    assert "Frame rate = 60.00 frames/sec" in str(summary)
    assert controller.zoom_mode == ZoomMode.NONE


def test_zoom_out_on_key(controller, clock):
    controller.on_key_down("o")
    run_frames(controller, clock, [k / 60.0 for k in range(60)])
    controller.on_key_up("o")
    assert controller.magnification == pytest.approx(0.5, rel=1e-9)
    assert controller.zoom_mode == ZoomMode.NONE


def test_frame_time_compensation(make_controller, clock):
    controller = make_controller()
    controller.on_key_down("i")
    run_frames(controller, clock, [k * 0.1 for k in range(10)])
    # First step assumes 60 fps, later ones use the measured 0.1 sec
    assert controller.magnification == pytest.approx(2.0 ** (1.0 / 60.0 + 0.9), rel=1e-9)


def test_without_compensation_steps_are_fixed(make_controller, clock):
    controller = make_controller(scale_mag_by_time=False)
    controller.on_key_down("i")
    run_frames(controller, clock, [k * 0.1 for k in range(60)])
    assert controller.magnification == pytest.approx(2.0, rel=1e-9)


def test_toggle_compensation_key(controller):
    assert controller.scale_mag_by_time
    controller.on_key_down("w")
    assert not controller.scale_mag_by_time


def test_zoom_key_during_timed_test_restarts_session(controller, clock):
    controller.on_key_down("z")
    run_frames(controller, clock, [0.0, 0.5])
    clock.now = 0.75
    controller.on_key_down("i")
    assert controller.zoom_mode == ZoomMode.IN
    assert controller.session.start == 0.75
    assert controller.session.total_frames == 0


def test_key_repeat_does_not_restart_zoom(controller, clock):
    controller.on_key_down("i")
    run_frames(controller, clock, [0.0, 0.1])
    controller.on_key_down("i")
    assert controller.session.total_frames == 2


def test_stop_zoom_when_not_zooming(controller):
    assert controller.stop_zoom() is None


# ----------------------------------------------------------------------
# Text
# ----------------------------------------------------------------------

@pytest.mark.parametrize("magnification,text", [
    (1.0, "1"),
    (250.0, "250"),
    (4638.938418, "4.64 thousand"),
    (1609014.646, "1.61 million"),
    (2.5e9, "2.5 billion"),
    (5.589402892e12, "5.59 trillion"),
    (3.0e16, "30 quadrillion"),
])
def test_format_magnification(magnification, text):
    assert format_magnification(magnification) == text


def test_help(controller, capsys):
    text = controller.help_text()
    assert "'l' sets size of images to 64 by 64 (large)" in text
    assert "'t' sets size of images to 8 by 8 (tiny)" in text
    assert "does not support double precision" in text
    controller.on_key_down("h")
    assert "Mandelbrot" in capsys.readouterr().out
