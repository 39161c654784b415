"""Template creation and fusion module for EyeMatch v1.0

This module contains:
- Bit-hash fusion (per-position majority vote)
- Histogram and stats fusion (averaging)
- Quality fusion with a stability penalty for jittery captures
- Scan payload construction (wire format with capture metadata)

"""

from __future__ import annotations
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from eyematch.models import EyeScanTemplate, FrameFeatures, ScanStats
from eyematch.models_serialization import template_to_dict
from eyematch.numeric import clamp, round_half_up, round_to
from eyematch.config import (
    HIST_DECIMALS, STATS_DECIMALS,
    STABILITY_PENALTY_FACTOR, STABILITY_PENALTY_CAP,
)


# ---------------------------------------------------------------------------
# Helper Functions


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _population_stddev(values: Sequence[float]) -> float:
    """Population standard deviation (0.0 for fewer than two values)."""
    if len(values) < 2:
        return 0.0
    avg = _mean(values)
    return math.sqrt(sum((value - avg) ** 2 for value in values) / len(values))


# ---------------------------------------------------------------------------
# Sample Fusion


def merge_bit_hashes(hashes: Sequence[str]) -> str:
    """Fuse bit strings by per-position majority vote.

    A position is set when at least half of the samples set it, so ties on an
    even sample count resolve to '1'.

    Args:
        hashes: Bit strings of equal length

    Returns:
        Fused bit string ('' for no input)

    Raises:
        ValueError: If the hashes differ in length
    """
    if not hashes:
        return ""

    hash_length = len(hashes[0])
    if any(len(h) != hash_length for h in hashes):
        raise ValueError("Cannot merge hashes of different lengths")

    half = len(hashes) / 2.0
    merged = []
    for bit_index in range(hash_length):
        ones = sum(1 for h in hashes if h[bit_index] == "1")
        merged.append("1" if ones >= half else "0")

    return "".join(merged)


def merge_histograms(histograms: Sequence[Sequence[float]]) -> List[float]:
    """Average histograms bin-wise and renormalize to sum 1.

    Args:
        histograms: Histograms of equal length

    Returns:
        Fused histogram rounded to HIST_DECIMALS ([] for no input)

    Raises:
        ValueError: If the histograms differ in length
    """
    if not histograms:
        return []

    bins = len(histograms[0])
    if any(len(h) != bins for h in histograms):
        raise ValueError("Cannot merge histograms of different lengths")

    count = float(len(histograms))
    averaged = [sum(h[index] for h in histograms) / count for index in range(bins)]

    total = sum(averaged) or 1.0
    return [round_to(value / total, HIST_DECIMALS) for value in averaged]


def merge_stats(stats_collection: Sequence[ScanStats]) -> ScanStats:
    """Arithmetic mean of brightness, contrast and sharpness."""
    return ScanStats(
        brightness=round_to(_mean([s.brightness for s in stats_collection]), STATS_DECIMALS),
        contrast=round_to(_mean([s.contrast for s in stats_collection]), STATS_DECIMALS),
        sharpness=round_to(_mean([s.sharpness for s in stats_collection]), STATS_DECIMALS),
    )


def quality_stability_penalty(qualities: Sequence[float]) -> float:
    """Penalty for inconsistent per-sample quality (user motion, flicker).

    Returns:
        min(STABILITY_PENALTY_CAP, STABILITY_PENALTY_FACTOR * pstdev(qualities))
    """
    return min(STABILITY_PENALTY_CAP, _population_stddev(qualities) * STABILITY_PENALTY_FACTOR)


def merge_quality(qualities: Sequence[float]) -> int:
    """Fuse per-sample qualities: mean minus stability penalty, clamped to [0, 100]."""
    if not qualities:
        return 0

    return round_half_up(clamp(_mean(qualities) - quality_stability_penalty(qualities), 0.0, 100.0))


def merge_samples(samples: Sequence[FrameFeatures]) -> EyeScanTemplate:
    """Fuse per-frame features into one template.

    Args:
        samples: Features from consecutive frames of one capture session

    Returns:
        EyeScanTemplate

    Raises:
        ValueError: If samples is empty or the samples are inconsistent
    """
    if not samples:
        raise ValueError("At least one sample is required to build a template")

    return EyeScanTemplate(
        hash=merge_bit_hashes([s.hash for s in samples]),
        diff_hash=merge_bit_hashes([s.diff_hash for s in samples]),
        hist=merge_histograms([s.hist for s in samples]),
        quality=merge_quality([s.quality for s in samples]),
        stats=merge_stats([s.stats for s in samples]),
    )


# ---------------------------------------------------------------------------
# Scan Payload


def iso_timestamp(when: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and 'Z' suffix."""
    if when is None:
        when = datetime.now(timezone.utc)
    elif when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    when = when.astimezone(timezone.utc)
    return when.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_scan_payload(
    template: EyeScanTemplate,
    sample_count: int,
    captured_at: Optional[datetime] = None
) -> Dict[str, Any]:
    """Build the wire payload sent by the capture side.

    Args:
        template: Merged template
        sample_count: Number of frames merged
        captured_at: Capture time (defaults to now, UTC)

    Returns:
        Template fields plus 'samples' and 'capturedAt'
    """
    payload = template_to_dict(template)
    payload['samples'] = int(sample_count)
    payload['capturedAt'] = iso_timestamp(captured_at)
    return payload
