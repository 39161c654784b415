"""Data structures for EyeMatch v1.0

This module defines the core data classes used throughout the eye-scan engine.
These classes are shared across all modules (extractor, template_creation,
models_serialization, matching, gallery).
"""

from __future__ import annotations
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from eyematch.config import TEMPLATE_FORMAT, TEMPLATE_VERSION

_BIT_STRING = re.compile(r"[01]+")


def is_bit_string(value: Any) -> bool:
    """True for a non-empty string made only of '0' and '1'."""
    return isinstance(value, str) and _BIT_STRING.fullmatch(value) is not None


def _validate_features(hash_bits: str, diff_bits: str, hist: Sequence[float], quality: int) -> None:
    if not is_bit_string(hash_bits):
        raise ValueError("hash must be a non-empty bit string")

    if not is_bit_string(diff_bits):
        raise ValueError("diff_hash must be a non-empty bit string")

    if not hist:
        raise ValueError("hist must not be empty")

    for value in hist:
        if not math.isfinite(value) or value < 0.0:
            raise ValueError(f"hist entries must be finite and non-negative, got {value}")

    if quality < 0 or quality > 100:
        raise ValueError(f"Quality must be in [0, 100], got {quality}")


@dataclass(frozen=True)
class ScanStats:
    """Global luma statistics of the analysis window.

    Attributes:
        brightness: Mean luma
        contrast: Population standard deviation of luma
        sharpness: Mean absolute luma gradient (focus proxy)
    """
    brightness: float
    contrast: float
    sharpness: float

    def __post_init__(self) -> None:
        for name in ("brightness", "contrast", "sharpness"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")

    def as_dict(self) -> Dict[str, float]:
        return {
            'brightness': self.brightness,
            'contrast': self.contrast,
            'sharpness': self.sharpness,
        }


@dataclass(frozen=True)
class FrameFeatures:
    """Features extracted from a single camera frame (ephemeral).

    Attributes:
        hash: Average hash bits (grid_size^2)
        diff_hash: Difference hash bits ((grid_width - 1) x grid_height)
        hist: Normalized luma histogram
        stats: Brightness / contrast / sharpness
        quality: Usability score [0, 100]
    """
    hash: str
    diff_hash: str
    hist: Tuple[float, ...]
    stats: ScanStats
    quality: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "hist", tuple(float(v) for v in self.hist))
        _validate_features(self.hash, self.diff_hash, self.hist, self.quality)


@dataclass(frozen=True)
class EyeScanTemplate:
    """Persisted biometric descriptor for one enrolled identity.

    This is the structured ("eye-scan-v1") template. Opaque legacy digests are
    kept as plain strings and compared through the legacy path only.

    Attributes:
        hash: Average hash bit string
        diff_hash: Difference hash bit string
        hist: Normalized luma histogram (sums to 1)
        quality: Merged quality [0, 100]
        stats: Mean brightness / contrast / sharpness
        format: Wire format tag
        version: Wire format version
    """
    hash: str
    diff_hash: str
    hist: Tuple[float, ...]
    quality: int
    stats: ScanStats
    format: str = TEMPLATE_FORMAT
    version: int = TEMPLATE_VERSION

    def __post_init__(self) -> None:
        """Validate template after initialization."""
        object.__setattr__(self, "hist", tuple(float(v) for v in self.hist))

        if self.format != TEMPLATE_FORMAT:
            raise ValueError(f"Unsupported template format: {self.format!r}")

        _validate_features(self.hash, self.diff_hash, self.hist, self.quality)


@dataclass(frozen=True)
class StructuredScan:
    """Payload that decoded as a valid structured template."""
    template: EyeScanTemplate
    raw: Any = None

    structured = True


@dataclass(frozen=True)
class LegacyScan:
    """Payload without usable structure (opaque digest or malformed JSON)."""
    raw: Any

    structured = False


ScanPayload = Union[StructuredScan, LegacyScan]


@dataclass
class EnrollmentRecord:
    """Stored enrollment for one user.

    Attributes:
        user_id: Owning identity
        template: Storable template (canonical JSON or legacy hex digest)
        is_active: Enrollment is usable for login (soft deactivation)
        identity_active: Owning account is active
        quality: Template quality (None for legacy templates)
        eye: Captured eye ("left", "right" or "both")
        enrolled_at: Time of (re-)enrollment
        last_used_at: Time of the last successful match
    """
    user_id: str
    template: str
    is_active: bool = True
    identity_active: bool = True
    quality: Optional[int] = None
    eye: str = "right"
    enrolled_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id must not be empty")

        if self.eye not in ("left", "right", "both"):
            raise ValueError(f"eye must be 'left', 'right' or 'both', got {self.eye!r}")

        if self.quality is not None and not (0 <= self.quality <= 100):
            raise ValueError(f"Quality must be in [0, 100], got {self.quality}")


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-metric scores behind a structured confidence value."""
    hash_score: float
    diff_hash_score: float
    hist_score: int
    stats_score: int
    quality_penalty: float
    raw_confidence: float  # weighted sum minus penalty, clamped, not rounded
    confidence: int


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of comparing a live scan against one stored template."""
    verified: bool
    confidence: int
    mode: str = "structured"  # "structured" or "legacy"
    breakdown: Optional[ScoreBreakdown] = None

    def as_dict(self) -> Dict[str, Any]:
        return {'verified': self.verified, 'confidence': self.confidence}


@dataclass(frozen=True)
class IdentificationResult:
    """Outcome of a 1-to-N search.

    Attributes:
        record: Winning enrollment, or None when nothing was recognized
        confidence: Confidence of the winning enrollment (0 if none)
        candidates_evaluated: Number of enrollments scored
        best_unverified_confidence: Highest confidence among rejected candidates
    """
    record: Optional[EnrollmentRecord]
    confidence: int = 0
    candidates_evaluated: int = 0
    best_unverified_confidence: int = 0

    @property
    def matched(self) -> bool:
        return self.record is not None


@dataclass
class CaptureResult:
    """Merged output of one capture session."""
    template: EyeScanTemplate
    payload: Dict[str, Any]
    scan_data: str
    quality: int
    accepted: bool
    sample_count: int
    status_message: str = ""
    sample_qualities: Tuple[int, ...] = field(default_factory=tuple)
