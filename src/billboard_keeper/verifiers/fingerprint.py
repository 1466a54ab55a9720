"""Perceptual fingerprint (difference hash) of an image.

Algorithm:
    1. Decode and convert to grayscale.
    2. Resize to 9x8; nine columns give eight horizontal differences per row.
    3. For each row, compare every pixel with its right neighbour.
    4. Bit is 1 when left > right, else 0. Bit index is row * 8 + col, so the
       first comparison of the first row is the least significant bit.

Only the coarse direction of the gradient survives, which makes the value
stable under recompression and resizing of the same artwork. Two fingerprints
are compared by Hamming distance.

The fingerprint is serialized as a 16-character, zero-padded lowercase hex
string; that is the form stored on agreements and in the verification log.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, ImageOps

from billboard_keeper.domain.verifier_protocol import NO_DISTANCE
from billboard_keeper.logging_config import get_logger

logger = get_logger(__name__)

GRID_WIDTH = 9
GRID_HEIGHT = 8
FINGERPRINT_BITS = (GRID_WIDTH - 1) * GRID_HEIGHT
_MAX_VALUE = (1 << FINGERPRINT_BITS) - 1


@dataclass(frozen=True)
class Fingerprint:
    """A 64-bit perceptual fingerprint."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _MAX_VALUE:
            raise ValueError(f"Fingerprint out of 64-bit range: {self.value}")

    @classmethod
    def from_hex(cls, text: str) -> Fingerprint:
        """Parse the 16-char hex form. Raises ValueError on malformed input."""
        cleaned = text.strip().lower()
        if cleaned.startswith("0x"):
            cleaned = cleaned[2:]
        if not cleaned or len(cleaned) > FINGERPRINT_BITS // 4:
            raise ValueError(f"Malformed fingerprint: {text!r}")
        return cls(int(cleaned, 16))

    def to_hex(self) -> str:
        return f"{self.value:016x}"

    def __str__(self) -> str:
        return self.to_hex()


@dataclass(frozen=True)
class FingerprintComparison:
    """Result of comparing a candidate image with the expected fingerprint."""

    match: bool
    distance: int
    actual: Fingerprint | None = None
    error: str | None = None


def compute_fingerprint(image_bytes: bytes) -> Fingerprint:
    """Compute the difference hash of an encoded image.

    Raises:
        PIL.UnidentifiedImageError / OSError: If the bytes cannot be decoded.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        gray = img.convert("L").resize(
            (GRID_WIDTH, GRID_HEIGHT), Image.Resampling.LANCZOS
        )
        pixels = gray.tobytes()

    value = 0
    bit = 0
    for row in range(GRID_HEIGHT):
        offset = row * GRID_WIDTH
        for col in range(GRID_WIDTH - 1):
            if pixels[offset + col] > pixels[offset + col + 1]:
                value |= 1 << bit
            bit += 1
    return Fingerprint(value)


def distance(a: Fingerprint, b: Fingerprint) -> int:
    """Hamming distance: the number of bit positions in which a and b differ."""
    return (a.value ^ b.value).bit_count()


def normalize_image(image_bytes: bytes, size: tuple[int, int] = (1500, 500)) -> bytes:
    """Cover-crop an image to the profile header geometry and re-encode as JPEG.

    Live headers are served at whatever size and format the platform chose;
    bringing them to the geometry the artwork was rendered at keeps the
    9x8 grid aligned with the expected fingerprint.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        fitted = ImageOps.fit(
            img.convert("RGB"),
            size,
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )
    out = io.BytesIO()
    fitted.save(out, format="JPEG", quality=90)
    return out.getvalue()


def compare_to_expected(
    expected: Fingerprint,
    candidate_bytes: bytes,
    max_distance: int,
    normalize_size: tuple[int, int] | None = None,
) -> FingerprintComparison:
    """Compare candidate image bytes with an expected fingerprint.

    Never raises: an image that cannot be decoded is reported as a non-match
    with distance NO_DISTANCE.
    """
    try:
        if normalize_size is not None:
            candidate_bytes = normalize_image(candidate_bytes, normalize_size)
        actual = compute_fingerprint(candidate_bytes)
    except Exception as exc:
        logger.warning("fingerprint.decode_failed", error=str(exc))
        return FingerprintComparison(
            match=False,
            distance=NO_DISTANCE,
            error=f"Could not decode image: {exc}",
        )

    dist = distance(expected, actual)
    return FingerprintComparison(
        match=dist <= max_distance,
        distance=dist,
        actual=actual,
    )
