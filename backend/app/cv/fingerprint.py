"""
Per-frame fingerprint and motion scoring.

FINGERPRINT:
The downscaled frame is cut into a grid of block_size x block_size blocks.
Each block's mean luminance (R+G+B)/3 is quantized to one bit against a
mid-gray threshold, and the bits are concatenated row-major. Fingerprints
are compared with normalized Hamming similarity: 1 - distance / length.

MOTION:
Every stride-th pixel of consecutive frames is compared, the absolute
per-channel differences are summed and averaged, then divided by the
maximum per-pixel difference (255 * 3 = 765). The first frame scores 0.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from app.cv.video_source import PixelBuffer

logger = logging.getLogger(__name__)

MAX_PIXEL_DIFFERENCE = 255.0 * 3


@dataclass
class Frame:
    """Durable per-frame features; pixels are never kept."""
    time: float
    fingerprint: np.ndarray
    motion: float


def compute_fingerprint(
    pixels: PixelBuffer,
    block_size: int = 8,
    threshold: float = 128.0,
) -> np.ndarray:
    """
    Block-averaged brightness bits of a frame.

    Partial blocks at the right and bottom edges are ignored. The block size
    is clamped to the raster so there is always at least one block.
    """
    height, width = pixels.shape[:2]
    block = max(1, min(block_size, height, width))
    blocks_y = height // block
    blocks_x = width // block

    region = pixels[:blocks_y * block, :blocks_x * block, :3].astype(np.float32)
    luminance = region.sum(axis=2) / 3.0
    means = luminance.reshape(blocks_y, block, blocks_x, block).mean(axis=(1, 3))

    return (means > threshold).ravel()


def fingerprint_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Normalized Hamming similarity in [0, 1]; 1.0 for identical fingerprints."""
    if a.shape != b.shape:
        raise ValueError(f"Fingerprint lengths differ: {a.shape} vs {b.shape}")
    if a.size == 0:
        return 1.0
    distance = np.count_nonzero(a != b)
    return 1.0 - distance / a.size


def fingerprint_similarity_matrix(fingerprints: np.ndarray) -> np.ndarray:
    """
    Pairwise Hamming similarity for a stack of fingerprints.

    Args:
        fingerprints: (n, length) boolean array

    Returns:
        (n, n) float array, entry [i, j] == fingerprint_similarity(f[i], f[j])
    """
    n, length = fingerprints.shape
    if length == 0:
        return np.ones((n, n))
    bits = fingerprints.astype(np.float64)
    # Hamming distance = ones in a that are zeros in b, plus the reverse
    distance = bits @ (1.0 - bits).T + (1.0 - bits) @ bits.T
    return 1.0 - distance / length


def sample_motion_pixels(pixels: PixelBuffer, stride: int = 16) -> np.ndarray:
    """Durable int16 copy of every stride-th RGB pixel."""
    flat = pixels[..., :3].reshape(-1, 3)
    return flat[::max(1, stride)].astype(np.int16)


def motion_score(previous: np.ndarray, current: np.ndarray) -> float:
    """Average absolute RGB difference between two sample sets, normalized to [0, 1]."""
    if previous.shape != current.shape:
        raise ValueError(f"Motion samples differ in shape: {previous.shape} vs {current.shape}")
    if current.size == 0:
        return 0.0
    per_pixel = np.abs(current - previous).sum(axis=1)
    return float(np.clip(per_pixel.mean() / MAX_PIXEL_DIFFERENCE, 0.0, 1.0))


class MotionFingerprintScorer:
    """
    Scorer for the motion-fingerprint strategy.

    Keeps only the strided motion samples of the previous frame, so the
    sampler is free to overwrite its raster after each call.
    """

    def __init__(
        self,
        block_size: int = 8,
        luminance_threshold: float = 128.0,
        motion_stride: int = 16,
    ):
        self.block_size = block_size
        self.luminance_threshold = luminance_threshold
        self.motion_stride = motion_stride
        self._previous: Optional[np.ndarray] = None

    def reset(self) -> None:
        self._previous = None

    def score(self, timestamp: float, pixels: PixelBuffer) -> Frame:
        fingerprint = compute_fingerprint(pixels, self.block_size, self.luminance_threshold)
        samples = sample_motion_pixels(pixels, self.motion_stride)

        motion = 0.0 if self._previous is None else motion_score(self._previous, samples)
        self._previous = samples

        return Frame(time=timestamp, fingerprint=fingerprint, motion=motion)

    def check_usable(self) -> None:
        """Pixel fingerprints work on any footage."""

    def similarity_matrix(self, fingerprints: np.ndarray) -> np.ndarray:
        return fingerprint_similarity_matrix(fingerprints)

    def close(self) -> None:
        self._previous = None
