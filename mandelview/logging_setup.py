"""
Logging setup for the Mandelbrot viewer.

All loggers hang off the ``mandelview`` package logger. Diagnostics are
grouped by subsystem and level, e.g. ``mandelview.compute.setup`` or
``mandelview.renderer.timing``, and can be switched on individually with a
comma-separated debug list such as ``"Compute.Setup,Renderer.*"``.
"""

import fnmatch
import logging
import logging.handlers

_LOGGER_NAME = "mandelview"

# Subsystems and the diagnostic levels each one logs under.
DEBUG_OPTIONS = {
    "Compute": ("Setup", "Timing"),
    "Renderer": ("Setup", "Timing"),
    "Controller": ("Zoom", "Timing"),
}


def get_logger(name=None):
    """Return the package logger, or a child such as ``compute.setup``."""
    if not name:
        return logging.getLogger(_LOGGER_NAME)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def _build_formatter():
    return logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def parse_debug_levels(debug_levels):
    """
    Expand a debug list into the logger names it enables.

    Args:
        debug_levels: Comma-separated ``Subsystem.Level`` entries. Either part
            may use ``*`` as a wildcard, and a bare subsystem name enables
            all of its levels.

    Returns:
        (names, unrecognised): logger names under ``mandelview`` to set to
        DEBUG, and the entries that matched nothing.
    """
    names = []
    unrecognised = []
    for entry in (debug_levels or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "." not in entry:
            entry = entry + ".*"
        sub_pattern, level_pattern = entry.split(".", 1)
        matched = False
        for subsystem, levels in DEBUG_OPTIONS.items():
            if not fnmatch.fnmatch(subsystem.lower(), sub_pattern.lower()):
                continue
            for level in levels:
                if fnmatch.fnmatch(level.lower(), level_pattern.lower()):
                    names.append(f"{subsystem.lower()}.{level.lower()}")
                    matched = True
        if not matched:
            unrecognised.append(entry)
    return names, unrecognised


def configure_logging(level=logging.INFO, debug_levels="", log_file=None,
                      rotate_bytes=5 * 1024 * 1024, rotate_count=3):
    """
    Configure the package logger.

    Args:
        level: Level for the package logger and its handlers.
        debug_levels: Debug list (see ``parse_debug_levels``); matching
            diagnostic loggers are set to DEBUG.
        log_file: Optional path for a rotating log file.

    Returns:
        The configured package logger.

    Raises:
        ValueError: If the debug list contains entries that match nothing.
    """
    names, unrecognised = parse_debug_levels(debug_levels)
    if unrecognised:
        raise ValueError(f"'{','.join(unrecognised)}' not recognised as debug levels")

    logger = get_logger()
    logger.setLevel(level)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
    fmt = _build_formatter()

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG)
    ch.setFormatter(fmt)
    logger.addHandler(ch)
    if log_file:
        fh = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=rotate_bytes, backupCount=rotate_count, encoding="utf-8"
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    # Diagnostic loggers stay at the base level unless named in the debug list;
    # handlers on the package logger still see records from children set to DEBUG.
    for subsystem, levels in DEBUG_OPTIONS.items():
        for lvl in levels:
            get_logger(f"{subsystem.lower()}.{lvl.lower()}").setLevel(level)
    for name in names:
        get_logger(name).setLevel(logging.DEBUG)
    return logger
