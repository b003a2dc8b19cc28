"""Per-format display settings and the settings bank store.

One ``FormatSettings`` bank exists per recognized format. Exactly one bank
is active at a time; mutators only touch the active bank and notify
observers synchronously. Mutations that leave the bank unchanged do not
notify, so observers never see spurious changes.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from image_preview.config import DEFAULT_CONFIG, ViewerConfig
from image_preview.formats import ImageFormat, NormalizationMode, default_mode, default_range, parse_format
from image_preview.logger import get_logger
from image_preview.observers import Observers

__all__ = [
    "NormalizationSettings",
    "GammaSettings",
    "BrightnessSettings",
    "FormatSettings",
    "SettingsEventKind",
    "SettingsEvent",
    "settings_equal",
    "settings_diff",
    "settings_to_dict",
    "settings_from_dict",
    "default_settings",
    "FormatSettingsStore",
]

LOGGER = get_logger(__name__)


class _Missing:
    pass


_MISSING = _Missing()


@dataclass
class NormalizationSettings:
    """Normalization range and mode flags.

    ``auto_normalize`` and ``gamma_mode`` are never both True; both False
    means Manual. ``min``/``max`` hold the manual range in every mode.
    """

    min: float = 0.0
    max: float = 1.0
    auto_normalize: bool = False
    gamma_mode: bool = False

    @property
    def mode(self) -> NormalizationMode:
        if self.auto_normalize:
            return NormalizationMode.AUTO
        if self.gamma_mode:
            return NormalizationMode.GAMMA
        return NormalizationMode.MANUAL


@dataclass
class GammaSettings:
    gamma_in: float = 2.2
    gamma_out: float = 2.2


@dataclass
class BrightnessSettings:
    offset: float = 0.0


@dataclass
class FormatSettings:
    """Display settings bank for one format."""

    normalization: NormalizationSettings = field(default_factory=NormalizationSettings)
    gamma: GammaSettings = field(default_factory=GammaSettings)
    brightness: BrightnessSettings = field(default_factory=BrightnessSettings)
    rgb_as_packed_grayscale: bool = False
    packed_scale_factor: float = 1.0
    normalized_float_mode: bool = False

    def copy(self) -> "FormatSettings":
        return copy.deepcopy(self)


def _leaves(obj: Any, prefix: str = "") -> Iterator[Tuple[str, Any]]:
    """Yield ``(dotted_name, value)`` for every leaf field of a dataclass tree."""
    for f in fields(obj):
        value = getattr(obj, f.name)
        name = f"{prefix}{f.name}"
        if is_dataclass(value):
            yield from _leaves(value, f"{name}.")
        else:
            yield name, value


def settings_diff(a: FormatSettings, b: FormatSettings) -> List[str]:
    """Return the dotted names of leaf fields whose values differ."""
    right = dict(_leaves(b))
    return [name for name, value in _leaves(a) if right.get(name, _MISSING) != value]


def settings_equal(a: FormatSettings, b: FormatSettings) -> bool:
    """Structural, value-based equality over every leaf field."""
    left = dict(_leaves(a))
    right = dict(_leaves(b))
    assert left.keys() == right.keys(), "settings banks have different fields"
    return all(left[name] == right[name] for name in left)


_PAYLOAD_KEYS = {
    "normalization.min": ("normalization", "min"),
    "normalization.max": ("normalization", "max"),
    "normalization.auto_normalize": ("normalization", "autoNormalize"),
    "normalization.gamma_mode": ("normalization", "gammaMode"),
    "gamma.gamma_in": ("gamma", "in"),
    "gamma.gamma_out": ("gamma", "out"),
    "brightness.offset": ("brightness", "offset"),
    "rgb_as_packed_grayscale": ("rgbAsPackedGrayscale",),
    "packed_scale_factor": ("packedScaleFactor",),
    "normalized_float_mode": ("normalizedFloatMode",),
}


def settings_to_dict(settings: FormatSettings) -> dict:
    """Serialize a FormatSettings bank to the surface payload shape."""
    payload: Dict[str, Any] = {}
    for name, value in _leaves(settings):
        path = _PAYLOAD_KEYS[name]
        target = payload
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = value
    return payload


def settings_from_dict(data: dict, fallback: Optional[FormatSettings] = None) -> FormatSettings:
    """Deserialize a surface payload, filling gaps from ``fallback``."""
    result = (fallback or FormatSettings()).copy()
    for name, path in _PAYLOAD_KEYS.items():
        source: Any = data
        for key in path:
            if not isinstance(source, dict) or key not in source:
                source = _MISSING
                break
            source = source[key]
        if source is _MISSING:
            continue
        owner: Any = result
        attrs = name.split(".")
        for attr in attrs[:-1]:
            owner = getattr(owner, attr)
        current = getattr(owner, attrs[-1])
        setattr(owner, attrs[-1], bool(source) if isinstance(current, bool) else float(source))
    return result


def default_settings(
    fmt: Any, bits: Optional[int] = None, config: ViewerConfig = DEFAULT_CONFIG
) -> FormatSettings:
    """Compute the settings a fresh bank for ``fmt`` starts with."""
    fmt = parse_format(fmt)
    fallback_bits = int(config.integer_default_bits.get(fmt.value, 8))
    low, high = default_range(fmt, bits, fallback_bits)
    mode = default_mode(fmt)
    return FormatSettings(
        normalization=NormalizationSettings(
            min=low,
            max=high,
            auto_normalize=mode is NormalizationMode.AUTO,
            gamma_mode=mode is NormalizationMode.GAMMA,
        ),
        gamma=GammaSettings(float(config.default_gamma_in), float(config.default_gamma_out)),
        brightness=BrightnessSettings(0.0),
        packed_scale_factor=float(config.default_packed_scale_factor),
    )


class SettingsEventKind(Enum):
    ACTIVATED = "activated"
    CHANGED = "changed"
    RESET = "reset"
    RESET_ALL = "reset-all"


@dataclass(frozen=True)
class SettingsEvent:
    """Notification payload fired by FormatSettingsStore.

    ``settings`` is a copy of the bank for ``format`` after the event.
    ``ACTIVATED`` reports a bank swap only; no bank content changed.
    """

    kind: SettingsEventKind
    format: Optional[ImageFormat]
    settings: FormatSettings
    changed_fields: Tuple[str, ...] = ()


class FormatSettingsStore:
    """Settings banks keyed by format with one active bank.

    Notes
    -----
    The store is created once by the host and passed to every component
    that reads or mutates it. Operations never raise; unknown formats use
    the fallback defaults. ``changed`` observers receive a ``SettingsEvent``.
    """

    def __init__(self, config: ViewerConfig = DEFAULT_CONFIG) -> None:
        self._config = config
        self._banks: Dict[ImageFormat, FormatSettings] = {}
        self._active_format: Optional[ImageFormat] = None
        self._active = default_settings(ImageFormat.UNKNOWN, config=config)
        self.changed = Observers()

    @property
    def active_format(self) -> Optional[ImageFormat]:
        return self._active_format

    def get_active(self) -> FormatSettings:
        """Return a copy of the active bank."""
        return self._active.copy()

    def has_bank(self, fmt: Any) -> bool:
        fmt = parse_format(fmt)
        return fmt == self._active_format or fmt in self._banks

    def settings_for(self, fmt: Any) -> FormatSettings:
        """Return a copy of the bank for ``fmt`` (active, saved or default)."""
        fmt = parse_format(fmt)
        if fmt == self._active_format:
            return self._active.copy()
        bank = self._banks.get(fmt)
        if bank is not None:
            return bank.copy()
        return default_settings(fmt, config=self._config)

    def set_active_format(self, fmt: Any, bits: Optional[int] = None) -> bool:
        """Swap the active bank to ``fmt``.

        The outgoing bank is saved under its format; the incoming one is
        loaded or default-constructed (using ``bits`` for integer formats).
        Returns True when a new bank was created.
        """
        fmt = parse_format(fmt)
        if self._active_format is not None:
            self._banks[self._active_format] = self._active
        bank = self._banks.pop(fmt, None)
        created = bank is None
        if created:
            bank = default_settings(fmt, bits, self._config)
            LOGGER.info("Created settings bank for %s (mode=%s)", fmt.value, bank.normalization.mode.value)
        self._active = bank
        self._active_format = fmt
        LOGGER.info("Active settings format: %s", fmt.value)
        self._check_bank(bank)
        self._emit(SettingsEventKind.ACTIVATED)
        return created

    def update_normalization(self, min_val: float, max_val: float) -> bool:
        """Set the manual range without touching the mode flags."""
        norm = self._active.normalization
        min_val, max_val = float(min_val), float(max_val)
        if norm.min == min_val and norm.max == max_val:
            return False
        norm.min = min_val
        norm.max = max_val
        self._emit_changed(("normalization.min", "normalization.max"))
        return True

    def set_auto_normalize(self, enabled: bool) -> bool:
        norm = self._active.normalization
        enabled = bool(enabled)
        if norm.auto_normalize == enabled:
            return False
        norm.auto_normalize = enabled
        if enabled:
            norm.gamma_mode = False
        self._emit_changed(("normalization.auto_normalize", "normalization.gamma_mode"))
        return True

    def set_gamma_mode(self, enabled: bool) -> bool:
        norm = self._active.normalization
        enabled = bool(enabled)
        if norm.gamma_mode == enabled:
            return False
        norm.gamma_mode = enabled
        if enabled:
            norm.auto_normalize = False
        self._emit_changed(("normalization.gamma_mode", "normalization.auto_normalize"))
        return True

    def update_gamma(self, gamma_in: float, gamma_out: float) -> bool:
        gamma = self._active.gamma
        gamma_in, gamma_out = float(gamma_in), float(gamma_out)
        if gamma.gamma_in == gamma_in and gamma.gamma_out == gamma_out:
            return False
        gamma.gamma_in = gamma_in
        gamma.gamma_out = gamma_out
        self._emit_changed(("gamma.gamma_in", "gamma.gamma_out"))
        return True

    def update_brightness(self, offset: float) -> bool:
        offset = float(offset)
        if self._active.brightness.offset == offset:
            return False
        self._active.brightness.offset = offset
        self._emit_changed(("brightness.offset",))
        return True

    def set_packed_grayscale(self, enabled: bool, scale_factor: Optional[float] = None) -> bool:
        """Toggle packed RGB display, optionally updating the scale factor."""
        before = self._active.copy()
        bank = self._active
        bank.rgb_as_packed_grayscale = bool(enabled)
        if scale_factor is not None:
            bank.packed_scale_factor = float(scale_factor)
        if enabled and self._config.packed_grayscale_forces_auto:
            bank.normalization.auto_normalize = True
            bank.normalization.gamma_mode = False
        changed = settings_diff(before, bank)
        if not changed:
            return False
        self._emit_changed(tuple(changed))
        return True

    def set_normalized_float_mode(self, enabled: bool) -> bool:
        enabled = bool(enabled)
        if self._active.normalized_float_mode == enabled:
            return False
        self._active.normalized_float_mode = enabled
        self._emit_changed(("normalized_float_mode",))
        return True

    def reset_to_defaults(self, fmt: Any = None) -> None:
        """Drop the bank for one format (or all banks) and reload defaults if active."""
        if fmt is None:
            self._banks.clear()
            if self._active_format is not None:
                self._active = default_settings(self._active_format, config=self._config)
            else:
                self._active = default_settings(ImageFormat.UNKNOWN, config=self._config)
            LOGGER.info("Reset settings for all formats")
            self._emit(SettingsEventKind.RESET_ALL)
            return
        fmt = parse_format(fmt)
        self._banks.pop(fmt, None)
        if fmt == self._active_format:
            self._active = default_settings(fmt, config=self._config)
        LOGGER.info("Reset settings for %s", fmt.value)
        self._emit(SettingsEventKind.RESET, fmt)

    def formats(self) -> List[ImageFormat]:
        """Return every format with a bank (saved or active)."""
        known = list(self._banks.keys())
        if self._active_format is not None and self._active_format not in known:
            known.append(self._active_format)
        return known

    def _check_bank(self, bank: FormatSettings) -> None:
        assert isinstance(bank, FormatSettings), "settings bank has the wrong type"
        norm = bank.normalization
        assert not (norm.auto_normalize and norm.gamma_mode), "auto and gamma modes both enabled"

    def _emit_changed(self, changed_fields: Tuple[str, ...]) -> None:
        self._check_bank(self._active)
        fmt = self._active_format.value if self._active_format is not None else "-"
        LOGGER.debug("Settings changed for %s: %s", fmt, ", ".join(changed_fields))
        self._emit(SettingsEventKind.CHANGED, changed_fields=changed_fields)

    def _emit(
        self,
        kind: SettingsEventKind,
        fmt: Optional[ImageFormat] = None,
        changed_fields: Tuple[str, ...] = (),
    ) -> None:
        target = fmt if fmt is not None else self._active_format
        settings = self.settings_for(target) if target is not None else self._active.copy()
        self.changed.notify(SettingsEvent(kind, target, settings, tuple(changed_fields)))
