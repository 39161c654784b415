"""Matching module for EyeMatch v1.0

This module contains:
- hash_similarity / histogram_similarity / stats_similarity: per-metric scores
- score_structured: weighted confidence for two structured templates
- verify: 1:1 comparison of a live scan against one stored template
  (structured or legacy digest)
- EyeScanMatcher: 1:N identification over a set of enrollments

"""

from __future__ import annotations
from typing import Any, Iterable, List, Sequence, Tuple

from eyematch.models import (
    EyeScanTemplate, ScanStats, ScoreBreakdown, VerificationResult,
    IdentificationResult, EnrollmentRecord, StructuredScan,
)
from eyematch.models_serialization import (
    resolve_scan_payload, normalized_hash, payload_text, is_empty_payload
)
from eyematch.numeric import clamp, round_half_up
from eyematch.config import (
    MatchSettings, DEFAULT_MATCH_SETTINGS,
    STATS_BRIGHTNESS_SCALE, STATS_CONTRAST_SCALE, STATS_SHARPNESS_SCALE,
    STATS_BRIGHTNESS_WEIGHT, STATS_CONTRAST_WEIGHT, STATS_SHARPNESS_WEIGHT,
)


# ---------------------------------------------------------------------------
# Per-metric Similarity


def hash_similarity(left: str, right: str) -> float:
    """Percentage of agreeing bit positions.

    Positions are compared over the shorter string and divided by the longer
    length, so a length mismatch counts as disagreement. The result is not
    rounded: flipping one bit of an n-bit hash moves it by exactly 100/n.

    Args:
        left: Bit string
        right: Bit string

    Returns:
        Similarity in [0, 100] (0 if either is empty)
    """
    if not left or not right:
        return 0.0

    max_length = max(len(left), len(right))
    matches = sum(1 for a, b in zip(left, right) if a == b)
    return matches / max_length * 100.0


def histogram_similarity(left: Sequence[float], right: Sequence[float]) -> int:
    """Histogram intersection over the shorter length, as a rounded percentage."""
    if not left or not right:
        return 0

    overlap = sum(min(a, b) for a, b in zip(left, right))
    return round_half_up(clamp(overlap, 0.0, 1.0) * 100.0)


def _stat_score(left: float, right: float, scale: float) -> float:
    return 100.0 - clamp(abs(left - right) * scale, 0.0, 100.0)


def stats_similarity(live: ScanStats, stored: ScanStats) -> int:
    """Weighted closeness of brightness, contrast and sharpness in [0, 100]."""
    brightness_score = _stat_score(live.brightness, stored.brightness, STATS_BRIGHTNESS_SCALE)
    contrast_score = _stat_score(live.contrast, stored.contrast, STATS_CONTRAST_SCALE)
    sharpness_score = _stat_score(live.sharpness, stored.sharpness, STATS_SHARPNESS_SCALE)

    return round_half_up(
        brightness_score * STATS_BRIGHTNESS_WEIGHT
        + contrast_score * STATS_CONTRAST_WEIGHT
        + sharpness_score * STATS_SHARPNESS_WEIGHT
    )


def quality_penalty(live_quality: int, stored_quality: int, settings: MatchSettings = None) -> float:
    """Confidence deduction when either side is below the quality floor."""
    if settings is None:
        settings = DEFAULT_MATCH_SETTINGS

    quality_floor = min(live_quality, stored_quality)
    return settings.quality_penalty_factor * max(0, settings.min_quality - quality_floor)


def score_structured(
    live: EyeScanTemplate,
    stored: EyeScanTemplate,
    settings: MatchSettings = None
) -> ScoreBreakdown:
    """Compute the weighted confidence between two structured templates.

    Args:
        live: Template from the live scan
        stored: Enrolled template
        settings: Weights and quality floor (uses config default if None)

    Returns:
        ScoreBreakdown with per-metric scores and the final confidence
    """
    if settings is None:
        settings = DEFAULT_MATCH_SETTINGS

    hash_score = hash_similarity(live.hash, stored.hash)
    diff_hash_score = hash_similarity(live.diff_hash, stored.diff_hash)
    hist_score = histogram_similarity(live.hist, stored.hist)
    stats_score = stats_similarity(live.stats, stored.stats)

    base = (
        hash_score * settings.hash_weight
        + diff_hash_score * settings.diff_hash_weight
        + hist_score * settings.histogram_weight
        + stats_score * settings.stats_weight
    )
    penalty = quality_penalty(live.quality, stored.quality, settings)
    raw_confidence = clamp(base - penalty, 0.0, 100.0)

    return ScoreBreakdown(
        hash_score=hash_score,
        diff_hash_score=diff_hash_score,
        hist_score=hist_score,
        stats_score=stats_score,
        quality_penalty=penalty,
        raw_confidence=raw_confidence,
        confidence=round_half_up(raw_confidence),
    )


def legacy_similarity(left: str, right: str) -> int:
    """Position-wise character agreement over the longer length, rounded."""
    if not left or not right:
        return 0

    if left == right:
        return 100

    max_length = max(len(left), len(right))
    matches = sum(1 for a, b in zip(left, right) if a == b)
    return round_half_up(matches / max_length * 100.0)


# ---------------------------------------------------------------------------
# 1:1 Verification


def verify_structured(
    live: EyeScanTemplate,
    stored: EyeScanTemplate,
    settings: MatchSettings = None
) -> VerificationResult:
    """Verify two structured templates.

    The live quality must also clear the floor; a low-quality live scan is never
    accepted even when its confidence is high.
    """
    if settings is None:
        settings = DEFAULT_MATCH_SETTINGS

    breakdown = score_structured(live, stored, settings)
    verified = (
        breakdown.confidence >= settings.structured_threshold
        and live.quality >= settings.min_quality
    )

    return VerificationResult(
        verified=verified,
        confidence=breakdown.confidence,
        mode="structured",
        breakdown=breakdown,
    )


def verify_legacy(live: Any, stored: Any, settings: MatchSettings = None) -> VerificationResult:
    """Compare the digest of the live payload with a stored template string."""
    if settings is None:
        settings = DEFAULT_MATCH_SETTINGS

    confidence = legacy_similarity(normalized_hash(live), payload_text(stored))
    return VerificationResult(
        verified=confidence >= settings.legacy_threshold,
        confidence=confidence,
        mode="legacy",
    )


def verify(live: Any, stored: Any, settings: MatchSettings = None) -> VerificationResult:
    """1:1 verification: does the live scan match the stored template?

    Both payloads are classified once. Two structured payloads are scored with
    score_structured; any other combination falls back to the legacy digest
    comparison.

    Args:
        live: Live scan payload (mapping, JSON text, or opaque string)
        stored: Stored template (canonical JSON or legacy hex digest)
        settings: Weights and thresholds (uses config default if None)

    Returns:
        VerificationResult
    """
    if settings is None:
        settings = DEFAULT_MATCH_SETTINGS

    if is_empty_payload(live) or is_empty_payload(stored):
        return VerificationResult(verified=False, confidence=0, mode="legacy")

    live_scan = resolve_scan_payload(live)
    stored_scan = resolve_scan_payload(stored)

    if isinstance(live_scan, StructuredScan) and isinstance(stored_scan, StructuredScan):
        return verify_structured(live_scan.template, stored_scan.template, settings)

    return verify_legacy(live, stored, settings)


# ---------------------------------------------------------------------------
# EyeScanMatcher Class


class EyeScanMatcher:
    """1:N eye-scan matcher over a set of enrollments.

    Every active enrollment is verified against the live scan; the highest
    verified confidence wins and the first-seen enrollment wins exact ties.

    Attributes:
        records: Enrollments in evaluation order
        settings: Weights and thresholds
    """

    def __init__(self, records: Iterable[EnrollmentRecord], settings: MatchSettings = None) -> None:
        self.records = list(records)
        self.settings = settings or DEFAULT_MATCH_SETTINGS

    def _evaluate(self, live: Any) -> List[Tuple[EnrollmentRecord, VerificationResult]]:
        evaluated = []
        for record in self.records:
            if not record.is_active:
                continue
            evaluated.append((record, verify(live, record.template, self.settings)))
        return evaluated

    def identify(self, live: Any) -> IdentificationResult:
        """Find the enrollment that best matches a live scan.

        A candidate is only eligible when it is verified and its owning
        identity is active. No early exit: every active enrollment is scored.

        Args:
            live: Live scan payload

        Returns:
            IdentificationResult (record is None when nothing matched)
        """
        best_record = None
        best_confidence = 0
        best_unverified = 0

        evaluated = self._evaluate(live)
        for record, result in evaluated:
            if not result.verified:
                best_unverified = max(best_unverified, result.confidence)
                continue

            if not record.identity_active:
                continue

            if result.confidence > best_confidence:
                best_record = record
                best_confidence = result.confidence

        return IdentificationResult(
            record=best_record,
            confidence=best_confidence if best_record is not None else 0,
            candidates_evaluated=len(evaluated),
            best_unverified_confidence=best_unverified,
        )

    def rank(self, live: Any, top_k: int = 5) -> List[Tuple[EnrollmentRecord, VerificationResult]]:
        """All active enrollments sorted by confidence (descending, stable).

        Args:
            live: Live scan payload
            top_k: Number of entries to return

        Returns:
            List of (record, result) tuples
        """
        evaluated = self._evaluate(live)
        evaluated.sort(key=lambda item: item[1].confidence, reverse=True)
        return evaluated[:top_k]
