"""
Configuration for the Mandelbrot viewer.

A MandelConfig is built once (from defaults, a JSON file and/or the command
line) and handed to the ViewController when it is constructed.
"""

import json
from dataclasses import dataclass, fields, asdict

# Limits on the image size and iteration count, as accepted on the command line.
MIN_DIMENSION = 16
MAX_DIMENSION = 1024 * 1024

COLOUR_STRATEGIES = ("histeq", "percentile")


@dataclass(frozen=True)
class MandelConfig:
    """
    Settings the controller needs at construction time.

    Attributes:
        nx, ny: Base size of the computed image in pixels
        iter_limit: Iteration limit for the escape-time calculation
        debug_levels: Comma-separated diagnostic levels, e.g. "Compute.Setup"
        colour_strategy: "histeq" (default) or "percentile"
        percentile: Range covered by the percentile strategy
        scale_mag_by_time: Compensate zoom rate for the measured frame time
        use_gpu: Try to use a GPU compute device at all
        window_width, window_height: Initial window size for the host
    """
    nx: int = 1024
    ny: int = 1024
    iter_limit: int = 1024
    debug_levels: str = ""
    colour_strategy: str = "histeq"
    percentile: float = 95.0
    scale_mag_by_time: bool = True
    use_gpu: bool = True
    window_width: int = 512
    window_height: int = 512

    @classmethod
    def from_dict(cls, cfg):
        """Build a validated config from a plain dict (e.g. parsed JSON)."""
        if not isinstance(cfg, dict):
            raise ValueError("Config must be a JSON object.")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(cfg) - known)
        if unknown:
            raise ValueError(f"Unknown config field(s): {', '.join(unknown)}")
        return cls(**cfg).normalised()

    def normalised(self):
        """Return a copy with values coerced to their types and checked."""
        out = asdict(self)
        for name in ("nx", "ny", "iter_limit", "window_width", "window_height"):
            out[name] = int(out[name])
        for name in ("nx", "ny", "iter_limit"):
            if not MIN_DIMENSION <= out[name] <= MAX_DIMENSION:
                raise ValueError(
                    f"{name} must be between {MIN_DIMENSION} and {MAX_DIMENSION}, "
                    f"got {out[name]}"
                )
        if out["window_width"] <= 0 or out["window_height"] <= 0:
            raise ValueError("window_width/window_height must be positive.")
        out["percentile"] = float(out["percentile"])
        if not 0.0 < out["percentile"] <= 100.0:
            raise ValueError("percentile must be in (0, 100].")
        if out["colour_strategy"] not in COLOUR_STRATEGIES:
            raise ValueError(
                f"colour_strategy must be one of: {', '.join(COLOUR_STRATEGIES)}"
            )
        out["debug_levels"] = str(out["debug_levels"] or "")
        out["scale_mag_by_time"] = bool(out["scale_mag_by_time"])
        out["use_gpu"] = bool(out["use_gpu"])
        return MandelConfig(**out)

    def replace(self, **changes):
        """Return a validated copy with some fields changed."""
        out = asdict(self)
        out.update(changes)
        return MandelConfig.from_dict(out)


def load_config(config_path=None):
    """
    Load a MandelConfig from a JSON file, or return the defaults.

    Args:
        config_path: Path to a JSON object with MandelConfig field names

    Returns:
        MandelConfig
    """
    if not config_path:
        return MandelConfig()
    with open(config_path, "r", encoding="utf-8") as f:
        cfg = json.load(f)
    return MandelConfig.from_dict(cfg)
