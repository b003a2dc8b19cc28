"""Configuration dataclasses for the preview host."""

from __future__ import annotations

import json
import pathlib
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

_DEFAULT_INTEGER_BITS = {
    "png": 8,
    "jpg": 8,
    "ppm": 8,
    "tiff-int": 16,
    "npy-uint": 16,
}


@dataclass(frozen=True)
class ViewerConfig:
    """Tunable constants for the settings stores, view cache and switch protocol.

    Notes
    -----
    ``packed_grayscale_forces_auto`` keeps the product decision of whether
    packed RGB display also selects Auto normalization out of the store
    mechanics. ``integer_default_bits`` gives the bit depth assumed for the
    ``[0, type-max]`` default range before the surface reports the real one.
    """

    cache_capacity: int = 5
    settle_delay_ms: int = 150
    capture_timeout_ms: int = 1000
    default_gamma_in: float = 2.2
    default_gamma_out: float = 2.2
    default_packed_scale_factor: float = 1.0
    packed_grayscale_forces_auto: bool = True
    integer_default_bits: Dict[str, int] = field(default_factory=lambda: dict(_DEFAULT_INTEGER_BITS))
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if int(self.cache_capacity) < 1:
            raise ValueError(f"cache_capacity must be >= 1, got {self.cache_capacity!r}")
        if int(self.settle_delay_ms) < 0:
            raise ValueError(f"settle_delay_ms must be >= 0, got {self.settle_delay_ms!r}")
        if int(self.capture_timeout_ms) < 0:
            raise ValueError(f"capture_timeout_ms must be >= 0, got {self.capture_timeout_ms!r}")
        if float(self.default_packed_scale_factor) <= 0:
            raise ValueError("default_packed_scale_factor must be positive")
        for fmt, bits in self.integer_default_bits.items():
            if int(bits) <= 0:
                raise ValueError(f"integer_default_bits[{fmt!r}] must be positive")


DEFAULT_CONFIG = ViewerConfig()


def config_to_dict(config: ViewerConfig) -> dict:
    """Serialize a ViewerConfig to plain JSON-compatible values."""
    return {f.name: getattr(config, f.name) for f in fields(config)}


def config_from_dict(data: Mapping[str, Any], fallback: Optional[ViewerConfig] = None) -> ViewerConfig:
    """Build a ViewerConfig from a mapping, ignoring unknown keys."""
    if fallback is None:
        fallback = DEFAULT_CONFIG
    known = {f.name: f for f in fields(ViewerConfig)}
    updates: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            continue
        current = getattr(fallback, key)
        if isinstance(current, bool):
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean, got {value!r}")
            updates[key] = value
        elif isinstance(current, int):
            updates[key] = int(value)
        elif isinstance(current, float):
            updates[key] = float(value)
        elif isinstance(current, dict):
            if not isinstance(value, Mapping):
                raise ValueError(f"{key} must be a mapping, got {value!r}")
            merged = dict(current)
            merged.update({str(k): int(v) for k, v in value.items()})
            updates[key] = merged
        else:
            updates[key] = str(value)
    return replace(fallback, **updates)


def load_config(path: pathlib.Path, fallback: Optional[ViewerConfig] = None) -> ViewerConfig:
    """Load a ViewerConfig from a JSON file."""
    path = pathlib.Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return config_from_dict(data, fallback)
