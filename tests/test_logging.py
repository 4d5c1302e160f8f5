"""Tests of the debug-level parsing and logger configuration."""

import logging

import pytest

from mandelview.logging_setup import (
    DEBUG_OPTIONS,
    configure_logging,
    get_logger,
    parse_debug_levels,
)


@pytest.fixture(autouse=True)
def restore_package_logger():
    yield
    logger = get_logger()
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    for subsystem, levels in DEBUG_OPTIONS.items():
        for level in levels:
            get_logger(f"{subsystem.lower()}.{level.lower()}").setLevel(logging.NOTSET)


@pytest.mark.parametrize("levels,expected", [
    ("", []),
    ("Compute.Setup", ["compute.setup"]),
    ("compute.timing, renderer.setup", ["compute.timing", "renderer.setup"]),
    ("Renderer.*", ["renderer.setup", "renderer.timing"]),
    ("Controller", ["controller.zoom", "controller.timing"]),
    ("*.Timing", ["compute.timing", "renderer.timing", "controller.timing"]),
])
def test_parse_debug_levels(levels, expected):
    names, unrecognised = parse_debug_levels(levels)
    assert names == expected
    assert unrecognised == []


def test_parse_reports_unknown_entries():
    names, unrecognised = parse_debug_levels("Compute.Setup,Bogus.Level,Renderer.Nothing")
    assert names == ["compute.setup"]
    assert unrecognised == ["Bogus.Level", "Renderer.Nothing"]


def test_get_logger_names():
    assert get_logger().name == "mandelview"
    assert get_logger("compute.setup").name == "mandelview.compute.setup"


def test_configure_sets_diagnostic_levels():
    logger = configure_logging(logging.INFO, "Compute.Setup")
    assert logger is get_logger()
    assert not logger.propagate
    assert len(logger.handlers) == 1
    assert get_logger("compute.setup").level == logging.DEBUG
    assert get_logger("compute.timing").level == logging.INFO
    assert get_logger("compute.setup").isEnabledFor(logging.DEBUG)
    assert not get_logger("renderer.timing").isEnabledFor(logging.DEBUG)


def test_configure_twice_does_not_duplicate_handlers():
    configure_logging()
    logger = configure_logging()
    assert len(logger.handlers) == 1


def test_configure_with_log_file(tmp_path):
    path = tmp_path / "mandel.log"
    logger = configure_logging(logging.INFO, log_file=str(path))
    assert len(logger.handlers) == 2
    get_logger("controller").info("hello")
    for h in logger.handlers:
        h.flush()
    assert "hello" in path.read_text()


def test_configure_rejects_unknown_levels():
    with pytest.raises(ValueError, match="Bogus"):
        configure_logging(debug_levels="Bogus")
