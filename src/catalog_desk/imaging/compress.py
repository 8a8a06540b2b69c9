"""Size-targeted JPEG re-encoding for catalog images."""

from __future__ import annotations

import base64
import io
import os
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from ..errors import ImageDecodeError
from ..logging import get_logger

LOG = get_logger("imaging-compress")

MAX_DIMENSION = 2048
QUALITY_FLOOR = 0.1
QUALITY_CEILING = 1.0
MAX_ATTEMPTS = 8
TOLERANCE = 0.10
LEGACY_EXPANSION = 1.37

KIB = 1024
LARGE_SOURCE_BYTES = 1024 * KIB
LARGE_TARGET_BYTES = 200 * KIB
SMALL_TARGET_BYTES = 100 * KIB

OUTPUT_FORMAT = "jpeg"


class SizeEstimate(str, Enum):
    EXACT = "exact"
    LEGACY = "legacy"


@dataclass
class CompressedImage:
    payload: bytes
    width: int
    height: int
    quality: float
    estimated_size: float
    iterations: int
    format: str = OUTPUT_FORMAT


def code_from_filename(filename: str) -> str:
    """Product code of an image file: base name up to the first dot."""
    return os.path.basename(filename).split(".")[0]


def target_budget(source_size: int) -> int:
    return LARGE_TARGET_BYTES if source_size > LARGE_SOURCE_BYTES else SMALL_TARGET_BYTES


def capped_dimensions(width: int, height: int, limit: int = MAX_DIMENSION) -> Tuple[int, int]:
    cap = min(limit, max(width, height))
    if width > cap or height > cap:
        ratio = min(cap / width, cap / height)
        return max(1, round(width * ratio)), max(1, round(height * ratio))
    return width, height


def estimate_size(payload: bytes, mode: SizeEstimate = SizeEstimate.EXACT) -> float:
    if mode == SizeEstimate.LEGACY:
        data_url = f"data:image/{OUTPUT_FORMAT};base64," + base64.b64encode(payload).decode("ascii")
        return len(data_url) / LEGACY_EXPANSION
    return float(len(payload))


def _decode(data: bytes) -> Image.Image:
    # DecompressionBombError and truncated-header SyntaxError/EOFError are not OSErrors
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        ValueError,
        SyntaxError,
        EOFError,
    ) as exc:
        raise ImageDecodeError(f"cannot decode image: {exc}") from exc
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _encode(img: Image.Image, quality: float) -> bytes:
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=max(1, min(100, round(quality * 100))))
    return out.getvalue()


def compress(
    data: bytes,
    target_bytes: int,
    *,
    estimate: SizeEstimate = SizeEstimate.EXACT,
    max_dimension: int = MAX_DIMENSION,
) -> CompressedImage:
    """Re-encode `data` as JPEG as close to `target_bytes` as the search allows.

    The longer side is capped at `max_dimension`, then quality is binary
    searched over [0.1, 1.0] for at most 8 encodes. The candidate closest to
    the target is returned, which need not be the last one tried.
    """
    if target_bytes <= 0:
        raise ValueError("target_bytes must be positive")
    img = _decode(data)
    width, height = capped_dimensions(img.width, img.height, max_dimension)
    if (width, height) != img.size:
        LOG.debug(f"Downscaling {img.width}x{img.height} -> {width}x{height}")
        img = img.resize((width, height), Image.Resampling.LANCZOS)

    def _attempt(quality: float) -> CompressedImage:
        payload = _encode(img, quality)
        return CompressedImage(
            payload=payload,
            width=width,
            height=height,
            quality=quality,
            estimated_size=estimate_size(payload, estimate),
            iterations=0,
        )

    def _miss(candidate: CompressedImage) -> float:
        return abs(candidate.estimated_size - target_bytes)

    lo, hi = QUALITY_FLOOR, QUALITY_CEILING
    candidate = best = _attempt((lo + hi) / 2)
    attempts = 1
    while _miss(candidate) / target_bytes >= TOLERANCE and attempts < MAX_ATTEMPTS:
        if candidate.estimated_size > target_bytes:
            hi = candidate.quality
        else:
            lo = candidate.quality
        candidate = _attempt((lo + hi) / 2)
        attempts += 1
        if _miss(candidate) < _miss(best):
            best = candidate

    best.iterations = attempts
    LOG.debug(
        f"Compressed {len(data)}B -> {len(best.payload)}B "
        f"(q={best.quality:.3f}, {attempts} attempt(s), target={target_bytes}B)"
    )
    return best


def placeholder_image(size: int = 100) -> bytes:
    """Blank white tile staged for products whose photo has not arrived."""
    img = Image.new("RGB", (size, size), (255, 255, 255))
    draw = ImageDraw.Draw(img)
    draw.rectangle((0, 0, size - 1, size - 1), outline=(221, 221, 221))
    draw.text((size // 2 - 20, size // 2 - 6), "pending", fill=(153, 153, 153))
    return _encode(img, 0.8)
