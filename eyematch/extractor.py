"""Feature extraction module for EyeMatch v1.0

This module contains all per-frame feature extraction functions:
- Exposure statistics (brightness, contrast, sharpness)
- Capture quality estimation
- Average hash and difference hash (perceptual bit strings)
- Luma histogram

All functions operate on a float luma plane produced by preprocessing.to_luma().
"""

from __future__ import annotations
from typing import Optional, Tuple
import numpy as np

from eyematch.models import FrameFeatures, ScanStats
from eyematch.numeric import clamp, round_half_up, round_to
from eyematch.preprocessing import crop_analysis_window, to_luma
from eyematch.config import (
    CaptureSettings,
    HASH_GRID_SIZE, DIFF_HASH_WIDTH, DIFF_HASH_HEIGHT,
    HIST_BINS, HIST_DECIMALS, STATS_DECIMALS,
    QUALITY_TARGET_BRIGHTNESS, QUALITY_BRIGHTNESS_SLOPE,
    QUALITY_FULL_CONTRAST, QUALITY_FULL_SHARPNESS,
    QUALITY_WEIGHT_BRIGHTNESS, QUALITY_WEIGHT_CONTRAST, QUALITY_WEIGHT_SHARPNESS,
)


def compute_exposure_stats(gray: np.ndarray) -> Tuple[float, float]:
    """Compute brightness (mean luma) and contrast (population std-dev).

    Args:
        gray: Luma plane (float)

    Returns:
        Tuple of (brightness, contrast); (0.0, 0.0) for an empty plane
    """
    if gray.size == 0:
        return 0.0, 0.0

    brightness = float(gray.mean())
    contrast = float(np.sqrt(np.mean((gray - brightness) ** 2)))
    return brightness, contrast


def compute_sharpness(gray: np.ndarray) -> float:
    """Mean absolute luma gradient over the right and bottom neighbours.

    Every pixel that has both a right and a bottom neighbour contributes two
    gradient samples, |L(x,y) - L(x+1,y)| and |L(x,y) - L(x,y+1)|.

    Args:
        gray: Luma plane (float)

    Returns:
        Mean absolute gradient (0.0 if the plane is narrower or shorter than 2 px)
    """
    if gray.ndim != 2 or gray.shape[0] < 2 or gray.shape[1] < 2:
        return 0.0

    core = gray[:-1, :-1]
    gx = np.abs(core - gray[:-1, 1:])
    gy = np.abs(core - gray[1:, :-1])

    samples = 2 * core.size
    return float((gx.sum() + gy.sum()) / samples)


def estimate_quality(brightness: float, contrast: float, sharpness: float) -> int:
    """Estimate capture quality in [0, 100].

    Rewards mid-range exposure, sufficient contrast and edge detail (focus
    proxy). Each factor is clamped to [0, 100] before weighting, so one failing
    factor caps the overall score.

    Args:
        brightness: Mean luma
        contrast: Luma standard deviation
        sharpness: Mean absolute luma gradient

    Returns:
        Quality score [0, 100]
    """
    brightness_score = clamp(100.0 - abs(brightness - QUALITY_TARGET_BRIGHTNESS) * QUALITY_BRIGHTNESS_SLOPE, 0.0, 100.0)
    contrast_score = clamp((contrast / QUALITY_FULL_CONTRAST) * 100.0, 0.0, 100.0)
    sharpness_score = clamp((sharpness / QUALITY_FULL_SHARPNESS) * 100.0, 0.0, 100.0)

    return round_half_up(
        brightness_score * QUALITY_WEIGHT_BRIGHTNESS
        + contrast_score * QUALITY_WEIGHT_CONTRAST
        + sharpness_score * QUALITY_WEIGHT_SHARPNESS
    )


def resize_nearest(gray: np.ndarray, target_width: int, target_height: int) -> np.ndarray:
    """Nearest-neighbour downsample without blending.

    Target cell (x, y) takes source pixel
    (min(W-1, floor((x+0.5) * W / tw)), min(H-1, floor((y+0.5) * H / th))).
    """
    height, width = gray.shape
    ys = np.minimum(height - 1, np.floor((np.arange(target_height) + 0.5) * height / target_height).astype(np.int64))
    xs = np.minimum(width - 1, np.floor((np.arange(target_width) + 0.5) * width / target_width).astype(np.int64))
    return gray[np.ix_(ys, xs)]


def _bits_to_string(bits: np.ndarray) -> str:
    return "".join("1" if bit else "0" for bit in bits.ravel())


def compute_average_hash(gray: np.ndarray, grid_size: int = None) -> str:
    """Average hash: one bit per grid cell, 1 iff the cell is >= the grid mean.

    Args:
        gray: Luma plane (float)
        grid_size: Grid side (uses config default if None)

    Returns:
        Bit string of length grid_size^2 (row-major)
    """
    if grid_size is None:
        grid_size = HASH_GRID_SIZE

    reduced = resize_nearest(gray, grid_size, grid_size)
    average = reduced.mean()
    return _bits_to_string(reduced >= average)


def compute_difference_hash(gray: np.ndarray, grid_width: int = None, grid_height: int = None) -> str:
    """Difference hash: sign of horizontal neighbour differences.

    Args:
        gray: Luma plane (float)
        grid_width: Sampled columns (uses config default if None)
        grid_height: Sampled rows (uses config default if None)

    Returns:
        Bit string of length (grid_width - 1) * grid_height (row-major),
        bit 1 iff cell[x] > cell[x + 1]
    """
    if grid_width is None:
        grid_width = DIFF_HASH_WIDTH
    if grid_height is None:
        grid_height = DIFF_HASH_HEIGHT

    reduced = resize_nearest(gray, grid_width, grid_height)
    return _bits_to_string(reduced[:, :-1] > reduced[:, 1:])


def compute_histogram(gray: np.ndarray, bins: int = None) -> Tuple[float, ...]:
    """Normalized luma histogram over [0, 256) with equal-width bins.

    Args:
        gray: Luma plane (float)
        bins: Number of bins (uses config default if None)

    Returns:
        Tuple of bin frequencies (sum to 1, rounded to HIST_DECIMALS);
        all zeros for an empty plane
    """
    if bins is None:
        bins = HIST_BINS

    if gray.size == 0:
        return tuple(0.0 for _ in range(bins))

    buckets = np.floor(gray.ravel() / 256.0 * bins).astype(np.int64)
    buckets = np.clip(buckets, 0, bins - 1)
    counts = np.bincount(buckets, minlength=bins)

    total = float(gray.size)
    return tuple(round_to(count / total, HIST_DECIMALS) for count in counts)


def extract_luma_features(gray: np.ndarray) -> FrameFeatures:
    """Extract the feature set from an analysis-window luma plane.

    Args:
        gray: Luma plane of the analysis window (float)

    Returns:
        FrameFeatures with hashes, histogram, rounded stats and quality
    """
    gray = np.asarray(gray, dtype=np.float64)

    brightness, contrast = compute_exposure_stats(gray)
    sharpness = compute_sharpness(gray)
    quality = estimate_quality(brightness, contrast, sharpness)

    return FrameFeatures(
        hash=compute_average_hash(gray),
        diff_hash=compute_difference_hash(gray),
        hist=compute_histogram(gray),
        stats=ScanStats(
            brightness=round_to(brightness, STATS_DECIMALS),
            contrast=round_to(contrast, STATS_DECIMALS),
            sharpness=round_to(sharpness, STATS_DECIMALS),
        ),
        quality=quality,
    )


def extract_eye_features(
    frame: np.ndarray,
    settings: CaptureSettings = None,
    *,
    channel_order: str = "bgr",
    native_size: Optional[Tuple[int, int]] = None
) -> FrameFeatures:
    """Extract features from one raw camera frame.

    Pipeline: centered crop -> resample -> analysis window -> luma -> features.

    Args:
        frame: Camera frame (grayscale, BGR or BGRA unless channel_order="rgb")
        settings: Capture geometry (uses config default if None)
        channel_order: Color channel order of the frame
        native_size: Device-reported (width, height), if known

    Returns:
        FrameFeatures for this frame

    Raises:
        CameraNotReady: If the frame is missing or has zero width/height
    """
    window = crop_analysis_window(frame, settings, native_size)
    gray = to_luma(window, channel_order)
    return extract_luma_features(gray)
