"""Decoder collaborator: format probing and sample loading from files.

The view cache never stores samples. Decoding belongs to the rendering
surface; the host only needs ``probe`` to learn an image's format before a
switch decision. ``FileDecoder.decode`` covers the containers numpy and
tifffile read directly.
"""

from __future__ import annotations

import pathlib
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np
import tifffile as tif

from image_preview.formats import SAMPLE_FLOAT, SAMPLE_INT, SAMPLE_UINT, FormatDescriptor, ImageFormat
from image_preview.logger import get_logger

__all__ = ["DecodeError", "DecodedImage", "Decoder", "FileDecoder"]

LOGGER = get_logger(__name__)

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_EXR_MAGIC = b"\x76\x2f\x31\x01"
_PNG_SAMPLES = {0: 1, 2: 3, 3: 1, 4: 2, 6: 4}
_JPEG_SOF = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}


class DecodeError(RuntimeError):
    """Raised when an image cannot be probed or decoded."""


@dataclass
class DecodedImage:
    """Decoded samples plus the descriptor they were read with."""

    data: np.ndarray
    descriptor: FormatDescriptor


class Decoder(ABC):
    """Resolve image identities to format metadata and sample data."""

    @abstractmethod
    def probe(self, image_id: str) -> FormatDescriptor:
        """Return format metadata without reading sample data."""

    @abstractmethod
    def decode(self, image_id: str) -> DecodedImage:
        """Return decoded samples; raise DecodeError on failure."""


def _sample_format(dtype: np.dtype) -> int:
    if dtype.kind == "f":
        return SAMPLE_FLOAT
    if dtype.kind == "i":
        return SAMPLE_INT
    return SAMPLE_UINT


def _layout(shape: Tuple[int, ...]) -> Tuple[int, int, int]:
    """Return ``(height, width, samples)`` for a 2D or channels-last 3D shape."""
    if len(shape) == 2:
        return int(shape[0]), int(shape[1]), 1
    if len(shape) == 3:
        return int(shape[0]), int(shape[1]), int(shape[2])
    raise DecodeError(f"Unsupported array shape {shape}")


def _header_tokens(data: bytes, count: int) -> Tuple[list, int]:
    """Split a netpbm-style ASCII header into ``count`` tokens, skipping comments."""
    tokens = []
    pos = 0
    while len(tokens) < count:
        while pos < len(data) and data[pos : pos + 1].isspace():
            pos += 1
        if pos >= len(data):
            raise DecodeError("Truncated header")
        if data[pos : pos + 1] == b"#":
            while pos < len(data) and data[pos : pos + 1] not in (b"\n", b"\r"):
                pos += 1
            continue
        start = pos
        while pos < len(data) and not data[pos : pos + 1].isspace():
            pos += 1
        tokens.append(data[start:pos].decode("ascii"))
    return tokens, pos


class FileDecoder(Decoder):
    """Decoder that treats image ids as filesystem paths.

    Notes
    -----
    Probing dispatches on the file extension and validates the magic bytes
    of the container. Only npy and TIFF samples are decoded here; the other
    containers raise DecodeError from ``decode``.
    """

    def __init__(self) -> None:
        self._probes: Dict[str, Callable[[pathlib.Path], FormatDescriptor]] = {
            ".npy": self._probe_npy,
            ".tif": self._probe_tiff,
            ".tiff": self._probe_tiff,
            ".png": self._probe_png,
            ".jpg": self._probe_jpg,
            ".jpeg": self._probe_jpg,
            ".ppm": self._probe_ppm,
            ".pgm": self._probe_ppm,
            ".pfm": self._probe_pfm,
            ".exr": self._probe_exr,
        }

    def probe(self, image_id: str) -> FormatDescriptor:
        path = pathlib.Path(image_id)
        handler = self._probes.get(path.suffix.lower())
        if handler is None:
            raise DecodeError(f"Unsupported file type: {path.name}")
        try:
            return handler(path)
        except DecodeError:
            raise
        except (OSError, ValueError, struct.error) as exc:
            LOGGER.warning("Failed to probe %s: %s", path, exc)
            raise DecodeError(f"Cannot read {path.name}: {exc}") from exc

    def decode(self, image_id: str) -> DecodedImage:
        descriptor = self.probe(image_id)
        path = pathlib.Path(image_id)
        try:
            if descriptor.container == "npy":
                data = np.load(str(path), allow_pickle=False)
            elif descriptor.container == "tiff":
                data = tif.imread(str(path), key=0)
            else:
                raise DecodeError(f"{descriptor.container} samples are decoded by the surface")
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to decode %s: %s", path, exc)
            raise DecodeError(f"Cannot decode {path.name}: {exc}") from exc
        return DecodedImage(data=data, descriptor=descriptor)

    def _probe_npy(self, path: pathlib.Path) -> FormatDescriptor:
        arr = np.load(str(path), mmap_mode="r", allow_pickle=False)
        height, width, samples = _layout(arr.shape)
        return FormatDescriptor(
            container="npy",
            width=width,
            height=height,
            samples_per_pixel=samples,
            bits_per_sample=arr.dtype.itemsize * 8,
            sample_format=_sample_format(arr.dtype),
            label=f"NPY {arr.dtype}",
        )

    def _probe_tiff(self, path: pathlib.Path) -> FormatDescriptor:
        with tif.TiffFile(str(path)) as tf:
            page = tf.pages[0]
            if page.dtype is None:
                raise DecodeError(f"{path.name} uses an unsupported TIFF sample layout")
            dtype = np.dtype(page.dtype)
            return FormatDescriptor(
                container="tiff",
                width=int(page.imagewidth),
                height=int(page.imagelength),
                samples_per_pixel=int(page.samplesperpixel),
                bits_per_sample=int(page.bitspersample),
                sample_format=_sample_format(dtype),
                label=f"TIFF {dtype}",
            )

    def _probe_png(self, path: pathlib.Path) -> FormatDescriptor:
        with open(path, "rb") as fh:
            header = fh.read(33)
        if len(header) < 33 or not header.startswith(_PNG_SIGNATURE) or header[12:16] != b"IHDR":
            raise DecodeError(f"{path.name} is not a PNG file")
        width, height, bit_depth, color_type = struct.unpack(">IIBB", header[16:26])
        return FormatDescriptor(
            container="png",
            width=width,
            height=height,
            samples_per_pixel=_PNG_SAMPLES.get(color_type, 1),
            bits_per_sample=bit_depth,
            sample_format=SAMPLE_UINT,
            label=f"PNG {bit_depth}-bit",
        )

    def _probe_jpg(self, path: pathlib.Path) -> FormatDescriptor:
        data = path.read_bytes()
        if not data.startswith(b"\xff\xd8"):
            raise DecodeError(f"{path.name} is not a JPEG file")
        width = height = 0
        samples = 3
        pos = 2
        while pos + 4 <= len(data):
            if data[pos] != 0xFF:
                pos += 1
                continue
            marker = data[pos + 1]
            if marker in (0xD8, 0x01) or 0xD0 <= marker <= 0xD7:
                pos += 2
                continue
            (length,) = struct.unpack(">H", data[pos + 2 : pos + 4])
            if marker in _JPEG_SOF and pos + 10 <= len(data):
                height, width = struct.unpack(">HH", data[pos + 5 : pos + 9])
                samples = data[pos + 9]
                break
            pos += 2 + length
        return FormatDescriptor(
            container="jpg",
            width=width,
            height=height,
            samples_per_pixel=samples,
            bits_per_sample=8,
            sample_format=SAMPLE_UINT,
            label="JPEG",
        )

    def _probe_ppm(self, path: pathlib.Path) -> FormatDescriptor:
        with open(path, "rb") as fh:
            head = fh.read(512)
        if head[:2] not in (b"P2", b"P3", b"P5", b"P6"):
            raise DecodeError(f"{path.name} is not a PPM/PGM file")
        tokens, _ = _header_tokens(head, 4)
        magic, width, height, maxval = tokens[0], int(tokens[1]), int(tokens[2]), int(tokens[3])
        return FormatDescriptor(
            container="ppm",
            width=width,
            height=height,
            samples_per_pixel=3 if magic in ("P3", "P6") else 1,
            bits_per_sample=max(1, maxval.bit_length()),
            sample_format=SAMPLE_UINT,
            label=f"{magic} maxval={maxval}",
        )

    def _probe_pfm(self, path: pathlib.Path) -> FormatDescriptor:
        with open(path, "rb") as fh:
            head = fh.read(256)
        if head[:2] not in (b"PF", b"Pf"):
            raise DecodeError(f"{path.name} is not a PFM file")
        tokens, _ = _header_tokens(head, 4)
        return FormatDescriptor(
            container="pfm",
            width=int(tokens[1]),
            height=int(tokens[2]),
            samples_per_pixel=3 if tokens[0] == "PF" else 1,
            bits_per_sample=32,
            sample_format=SAMPLE_FLOAT,
            label="PFM",
        )

    def _probe_exr(self, path: pathlib.Path) -> FormatDescriptor:
        with open(path, "rb") as fh:
            magic = fh.read(4)
        if magic != _EXR_MAGIC:
            raise DecodeError(f"{path.name} is not an OpenEXR file")
        return FormatDescriptor(
            format_type=ImageFormat.EXR_FLOAT.value,
            container="exr",
            sample_format=SAMPLE_FLOAT,
            label="OpenEXR",
        )
