"""Configuration file for EyeMatch v1.0

This module contains all configurable parameters for the eye-scan capture and
template matching engine.

Modify these values to tune the system behavior without changing the core code.
Thresholds and score weights are empirically chosen; the defaults below must be
kept for compatibility with templates enrolled by earlier releases.
"""

import os
from dataclasses import dataclass
from pathlib import Path

# ============================================================================
# FILE PATHS
# ============================================================================

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Logs (rotating files, see logger.py)
LOG_DIR = Path(os.environ.get("EYEMATCH_LOG_DIR", PROJECT_ROOT / "logs"))
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB per file
LOG_BACKUP_COUNT = 5  # Keep 5 backup files

# Enrollment gallery (one JSON document per user)
DEFAULT_GALLERY_PATH = Path(os.environ.get("EYEMATCH_GALLERY_DIR", PROJECT_ROOT / "gallery"))
GALLERY_EXTENSION: str = ".json"

# ============================================================================
# TEMPLATE FORMAT
# ============================================================================

TEMPLATE_FORMAT: str = "eye-scan-v1"
TEMPLATE_VERSION: int = 1

# ============================================================================
# FRAME GEOMETRY
# ============================================================================

# Square crop taken from the centre of the camera frame (fraction of the shorter side)
SOURCE_CROP_RATIO: float = 0.68

# Working resolution the crop is resampled to (pixels)
FRAME_SIZE: int = 240

# Centered analysis window inside the working frame (fraction of FRAME_SIZE)
ROI_RATIO: float = 0.72

# Requested camera resolution
CAMERA_WIDTH: int = 1280
CAMERA_HEIGHT: int = 720

# ============================================================================
# FEATURE EXTRACTION
# ============================================================================

# Rec. 709 luma coefficients (R, G, B)
LUMA_WEIGHTS = (0.2126, 0.7152, 0.0722)

# Average hash grid (HASH_GRID_SIZE x HASH_GRID_SIZE bits)
HASH_GRID_SIZE: int = 16

# Difference hash grid; one bit per horizontal neighbour pair
DIFF_HASH_WIDTH: int = HASH_GRID_SIZE + 1
DIFF_HASH_HEIGHT: int = HASH_GRID_SIZE

# Luma histogram bins over [0, 256)
HIST_BINS: int = 16

# Decimal places kept on the wire
HIST_DECIMALS: int = 6
STATS_DECIMALS: int = 2

# ============================================================================
# QUALITY ESTIMATION
# ============================================================================

# Exposure: 100 at QUALITY_TARGET_BRIGHTNESS, minus QUALITY_BRIGHTNESS_SLOPE per luma unit
QUALITY_TARGET_BRIGHTNESS: float = 125.0
QUALITY_BRIGHTNESS_SLOPE: float = 1.2

# Contrast (population std-dev) and sharpness (mean abs gradient) that score 100
QUALITY_FULL_CONTRAST: float = 50.0
QUALITY_FULL_SHARPNESS: float = 20.0

QUALITY_WEIGHT_BRIGHTNESS: float = 0.30
QUALITY_WEIGHT_CONTRAST: float = 0.35
QUALITY_WEIGHT_SHARPNESS: float = 0.35

# ============================================================================
# SAMPLE AGGREGATION
# ============================================================================

SAMPLE_COUNT: int = 7  # Frames merged into one template
SAMPLE_DELAY_MS: int = 180  # Pause between frames

# Jittery captures lose STABILITY_PENALTY_FACTOR x stddev(quality), capped
STABILITY_PENALTY_FACTOR: float = 0.8
STABILITY_PENALTY_CAP: float = 15.0

# Capture-side acceptance (user feedback only, the verifier has its own floor)
MIN_ACCEPTED_SCAN_QUALITY: int = 55


@dataclass
class CaptureSettings:
    """Configuration for one capture session."""
    sample_count: int = SAMPLE_COUNT
    sample_delay_ms: int = SAMPLE_DELAY_MS
    frame_size: int = FRAME_SIZE
    source_crop_ratio: float = SOURCE_CROP_RATIO
    roi_ratio: float = ROI_RATIO
    min_accepted_quality: int = MIN_ACCEPTED_SCAN_QUALITY
    camera_width: int = CAMERA_WIDTH
    camera_height: int = CAMERA_HEIGHT

    def __post_init__(self) -> None:
        if self.sample_count < 1:
            raise ValueError(f"sample_count must be >= 1, got {self.sample_count}")

        if self.sample_delay_ms < 0:
            raise ValueError(f"sample_delay_ms must be >= 0, got {self.sample_delay_ms}")

        if self.frame_size < 2:
            raise ValueError(f"frame_size must be >= 2, got {self.frame_size}")

        for name in ("source_crop_ratio", "roi_ratio"):
            value = getattr(self, name)
            if not (0.0 < value <= 1.0):
                raise ValueError(f"{name} must be in (0.0, 1.0], got {value}")


# Default capture settings
DEFAULT_CAPTURE = CaptureSettings()

# ============================================================================
# MATCHING CONFIGURATION
# ============================================================================

# Score weights (must sum to 1.0)
# Average hash: coarse structure. Difference hash: local gradients.
# Histogram: global tone. Stats: light tiebreaker.
HASH_WEIGHT: float = 0.45
DIFF_HASH_WEIGHT: float = 0.35
HISTOGRAM_WEIGHT: float = 0.15
STATS_WEIGHT: float = 0.05

# Stats similarity: penalty per unit of absolute difference
STATS_BRIGHTNESS_SCALE: float = 1.1
STATS_CONTRAST_SCALE: float = 2.1
STATS_SHARPNESS_SCALE: float = 2.4
STATS_BRIGHTNESS_WEIGHT: float = 0.35
STATS_CONTRAST_WEIGHT: float = 0.35
STATS_SHARPNESS_WEIGHT: float = 0.30

# Decision thresholds (confidence 0-100)
STRUCTURED_MATCH_THRESHOLD: int = 78
LEGACY_MATCH_THRESHOLD: int = 85

# Quality floor at verification time; below it confidence is also penalized
MIN_QUALITY_FOR_MATCH: int = 50
QUALITY_PENALTY_FACTOR: float = 0.8

# Histograms must sum to 1 within this tolerance to be accepted on decode
HIST_SUM_TOLERANCE: float = 0.01

# Minimum histogram length accepted on decode
MIN_HIST_BINS: int = 4


@dataclass
class MatchSettings:
    """Weights and thresholds for the similarity engine."""
    hash_weight: float = HASH_WEIGHT
    diff_hash_weight: float = DIFF_HASH_WEIGHT
    histogram_weight: float = HISTOGRAM_WEIGHT
    stats_weight: float = STATS_WEIGHT
    structured_threshold: int = STRUCTURED_MATCH_THRESHOLD
    legacy_threshold: int = LEGACY_MATCH_THRESHOLD
    min_quality: int = MIN_QUALITY_FOR_MATCH
    quality_penalty_factor: float = QUALITY_PENALTY_FACTOR

    def __post_init__(self) -> None:
        weight_sum = self.hash_weight + self.diff_hash_weight + self.histogram_weight + self.stats_weight
        if not (0.99 <= weight_sum <= 1.01):
            raise ValueError(f"Score weights must sum to 1.0 (got {weight_sum})")

        for name in ("structured_threshold", "legacy_threshold", "min_quality"):
            value = getattr(self, name)
            if not (0 <= value <= 100):
                raise ValueError(f"{name} must be in [0, 100], got {value}")

        if self.quality_penalty_factor < 0:
            raise ValueError(f"quality_penalty_factor must be >= 0, got {self.quality_penalty_factor}")


# Default matching settings
DEFAULT_MATCH_SETTINGS = MatchSettings()

# ============================================================================
# LOGGING AND DEBUG
# ============================================================================

# Mirror log records to the console
VERBOSE: bool = os.environ.get("EYEMATCH_VERBOSE", "0") not in ("", "0", "false", "False")

# ============================================================================
# VALIDATION
# ============================================================================

def validate_config():
    """Validate configuration consistency."""
    errors = []

    weight_sum = HASH_WEIGHT + DIFF_HASH_WEIGHT + HISTOGRAM_WEIGHT + STATS_WEIGHT
    if not (0.99 <= weight_sum <= 1.01):
        errors.append(f"Score weights must sum to 1.0 (got {weight_sum})")

    quality_sum = QUALITY_WEIGHT_BRIGHTNESS + QUALITY_WEIGHT_CONTRAST + QUALITY_WEIGHT_SHARPNESS
    if not (0.99 <= quality_sum <= 1.01):
        errors.append(f"Quality weights must sum to 1.0 (got {quality_sum})")

    stats_sum = STATS_BRIGHTNESS_WEIGHT + STATS_CONTRAST_WEIGHT + STATS_SHARPNESS_WEIGHT
    if not (0.99 <= stats_sum <= 1.01):
        errors.append(f"Stats weights must sum to 1.0 (got {stats_sum})")

    if HASH_GRID_SIZE < 2:
        errors.append(f"HASH_GRID_SIZE must be >= 2 (got {HASH_GRID_SIZE})")

    if HIST_BINS < MIN_HIST_BINS:
        errors.append(f"HIST_BINS must be >= {MIN_HIST_BINS} (got {HIST_BINS})")

    if not (0 <= MIN_QUALITY_FOR_MATCH <= 100):
        errors.append(f"MIN_QUALITY_FOR_MATCH must be in [0, 100] (got {MIN_QUALITY_FOR_MATCH})")

    if STABILITY_PENALTY_CAP < 0:
        errors.append(f"STABILITY_PENALTY_CAP must be >= 0 (got {STABILITY_PENALTY_CAP})")

    if errors:
        raise ValueError("Configuration validation failed:\n" + "\n".join(errors))

# Run validation on import
validate_config()
