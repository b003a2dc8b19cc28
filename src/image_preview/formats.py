"""Image format identifiers, format classes and default display ranges.

Conventions
-----------
- ``ImageFormat`` is a closed enumeration; anything unrecognized maps to
  ``ImageFormat.UNKNOWN`` and uses the fallback defaults.
- Sample formats follow the TIFF convention: 1 = unsigned int,
  2 = signed int, 3 = IEEE float.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

import numpy as np

__all__ = [
    "ImageFormat",
    "FormatClass",
    "NormalizationMode",
    "FormatDescriptor",
    "parse_format",
    "format_class",
    "default_mode",
    "integer_type_max",
    "default_range",
    "detect_format",
]

SAMPLE_UINT = 1
SAMPLE_INT = 2
SAMPLE_FLOAT = 3


class ImageFormat(str, Enum):
    TIFF_FLOAT = "tiff-float"
    TIFF_INT = "tiff-int"
    EXR_FLOAT = "exr-float"
    NPY_FLOAT = "npy-float"
    NPY_UINT = "npy-uint"
    PNG = "png"
    PFM = "pfm"
    PPM = "ppm"
    JPG = "jpg"
    UNKNOWN = "unknown"


class FormatClass(Enum):
    INTEGER = "integer"
    NORMALIZED_FLOAT = "normalized-float"
    UNBOUNDED_FLOAT = "unbounded-float"
    FALLBACK = "fallback"


class NormalizationMode(Enum):
    MANUAL = "manual"
    AUTO = "auto"
    GAMMA = "gamma"


_FORMAT_CLASSES = {
    ImageFormat.NPY_UINT: FormatClass.INTEGER,
    ImageFormat.TIFF_INT: FormatClass.INTEGER,
    ImageFormat.PPM: FormatClass.INTEGER,
    ImageFormat.PNG: FormatClass.INTEGER,
    ImageFormat.JPG: FormatClass.INTEGER,
    ImageFormat.TIFF_FLOAT: FormatClass.NORMALIZED_FLOAT,
    ImageFormat.PFM: FormatClass.NORMALIZED_FLOAT,
    ImageFormat.NPY_FLOAT: FormatClass.UNBOUNDED_FLOAT,
    ImageFormat.EXR_FLOAT: FormatClass.UNBOUNDED_FLOAT,
}

_DEFAULT_MODES = {
    FormatClass.INTEGER: NormalizationMode.GAMMA,
    FormatClass.NORMALIZED_FLOAT: NormalizationMode.GAMMA,
    FormatClass.UNBOUNDED_FLOAT: NormalizationMode.AUTO,
    FormatClass.FALLBACK: NormalizationMode.AUTO,
}

_ALIASES = {
    "tif": ImageFormat.TIFF_INT,
    "tiff": ImageFormat.TIFF_INT,
    "jpeg": ImageFormat.JPG,
    "pgm": ImageFormat.PPM,
    "pbm": ImageFormat.PPM,
    "exr": ImageFormat.EXR_FLOAT,
}


def parse_format(value: Any) -> ImageFormat:
    """Return the ImageFormat for an identifier, falling back to UNKNOWN."""
    if isinstance(value, ImageFormat):
        return value
    if not value:
        return ImageFormat.UNKNOWN
    key = str(value).strip().lower()
    try:
        return ImageFormat(key)
    except ValueError:
        return _ALIASES.get(key, ImageFormat.UNKNOWN)


def format_class(fmt: Any) -> FormatClass:
    """Return the default-policy class for a format."""
    return _FORMAT_CLASSES.get(parse_format(fmt), FormatClass.FALLBACK)


def default_mode(fmt: Any) -> NormalizationMode:
    """Return the normalization mode a fresh settings bank starts in."""
    return _DEFAULT_MODES[format_class(fmt)]


def integer_type_max(bits: int) -> float:
    """Return the maximum unsigned value representable with ``bits`` bits."""
    bits = int(bits)
    if bits in (8, 16, 32, 64):
        return float(np.iinfo(f"uint{bits}").max)
    return float(2 ** bits - 1)


def default_range(fmt: Any, bits: Optional[int] = None, fallback_bits: int = 8) -> Tuple[float, float]:
    """Return the default manual range for a format.

    Integer formats use ``[0, type-max]`` for ``bits`` (or ``fallback_bits``
    when the bit depth is not known yet); float formats use ``[0, 1]``. The
    range for Auto-mode formats is data-driven and only acts as a placeholder.
    """
    if format_class(fmt) is FormatClass.INTEGER:
        return 0.0, integer_type_max(bits if bits else fallback_bits)
    return 0.0, 1.0


@dataclass(frozen=True)
class FormatDescriptor:
    """Format metadata reported by the surface (or probed by a decoder).

    Parameters
    ----------
    format_type : str, optional
        Explicit format identifier (e.g., ``"tiff-float"``).
    container : str, optional
        Container hint such as a file extension (``"tif"``, ``"npy"``).
    sample_format : int, optional
        1 = unsigned int, 2 = signed int, 3 = float.
    """

    format_type: Optional[str] = None
    container: Optional[str] = None
    width: int = 0
    height: int = 0
    samples_per_pixel: int = 1
    bits_per_sample: Optional[int] = None
    sample_format: Optional[int] = None
    label: str = ""

    @property
    def is_float(self) -> bool:
        return self.sample_format == SAMPLE_FLOAT

    def to_dict(self) -> dict:
        return {
            "formatType": self.format_type,
            "container": self.container,
            "width": int(self.width),
            "height": int(self.height),
            "samplesPerPixel": int(self.samples_per_pixel),
            "bitsPerSample": self.bits_per_sample,
            "sampleFormat": self.sample_format,
            "formatLabel": self.label,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormatDescriptor":
        bits = data.get("bitsPerSample")
        if isinstance(bits, (list, tuple)):
            bits = bits[0] if bits else None
        sample_format = data.get("sampleFormat")
        if isinstance(sample_format, (list, tuple)):
            sample_format = sample_format[0] if sample_format else None
        return cls(
            format_type=data.get("formatType"),
            container=data.get("container"),
            width=int(data.get("width", 0) or 0),
            height=int(data.get("height", 0) or 0),
            samples_per_pixel=int(data.get("samplesPerPixel", 1) or 1),
            bits_per_sample=int(bits) if bits is not None else None,
            sample_format=int(sample_format) if sample_format is not None else None,
            label=str(data.get("formatLabel", "") or ""),
        )


def detect_format(descriptor: FormatDescriptor) -> ImageFormat:
    """Select the settings format for a descriptor.

    An explicit, recognized ``format_type`` wins. Otherwise the container and
    sample format decide (float tiff -> tiff-float, integer npy -> npy-uint).
    """
    explicit = parse_format(descriptor.format_type)
    if explicit is not ImageFormat.UNKNOWN and explicit.value == str(descriptor.format_type).lower():
        return explicit
    container = (descriptor.container or descriptor.format_type or "").strip().lower().lstrip(".")
    if container in ("tif", "tiff"):
        return ImageFormat.TIFF_FLOAT if descriptor.is_float else ImageFormat.TIFF_INT
    if container in ("npy", "npz"):
        if descriptor.sample_format is None:
            return ImageFormat.UNKNOWN
        return ImageFormat.NPY_FLOAT if descriptor.is_float else ImageFormat.NPY_UINT
    return parse_format(container)
