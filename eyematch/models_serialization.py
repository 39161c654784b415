"""Serialization for EyeScanTemplate (wire format "eye-scan-v1")

This module provides functions to serialize/deserialize eye-scan templates and
to classify incoming scan payloads:

- Structured payloads (JSON object or JSON text) are validated field by field.
  Any violation makes the payload "not structured"; decoding never raises.
- Everything else is treated as a legacy payload and reduced to a one-way
  SHA-256 digest, so scans enrolled before structured templates existed stay
  verifiable through the legacy comparator.
"""

from __future__ import annotations
import hashlib
import json
from typing import Any, Dict, Mapping, Optional, Tuple

from eyematch.models import (
    EyeScanTemplate, ScanStats, StructuredScan, LegacyScan, ScanPayload, is_bit_string
)
from eyematch.numeric import clamp, round_half_up, round_to, to_finite_number
from eyematch.config import (
    TEMPLATE_FORMAT, TEMPLATE_VERSION,
    HIST_DECIMALS, STATS_DECIMALS, HIST_SUM_TOLERANCE, MIN_HIST_BINS,
)


# ---------------------------------------------------------------------------
# Encoding


def template_to_dict(template: EyeScanTemplate) -> Dict[str, Any]:
    """Serialize template to a wire-format dictionary.

    Args:
        template: EyeScanTemplate object

    Returns:
        Dictionary with format, version, hash, diffHash, hist, quality, stats
    """
    return {
        'format': template.format,
        'version': template.version,
        'hash': template.hash,
        'diffHash': template.diff_hash,
        'hist': [float(value) for value in template.hist],
        'quality': int(template.quality),
        'stats': template.stats.as_dict(),
    }


def encode_template(template: EyeScanTemplate) -> str:
    """Serialize template to canonical compact JSON (stable key order)."""
    return json.dumps(template_to_dict(template), separators=(",", ":"))


# ---------------------------------------------------------------------------
# Validation


def _parse_payload_object(payload: Any) -> Optional[Mapping[str, Any]]:
    """Return the payload as a mapping, parsing JSON text when it looks structured."""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if isinstance(payload, str):
        trimmed = payload.strip()
        if not trimmed.startswith("{"):
            return None

        try:
            payload = json.loads(trimmed)
        except (ValueError, RecursionError):
            return None

    if not isinstance(payload, Mapping):
        return None

    return payload


def _sanitize_histogram(histogram: Any) -> Optional[Tuple[float, ...]]:
    """Validate a histogram and renormalize it.

    Entries must be finite numbers in [0, 1] and sum to 1 within
    HIST_SUM_TOLERANCE. Returns None on any violation.
    """
    if not isinstance(histogram, (list, tuple)) or len(histogram) < MIN_HIST_BINS:
        return None

    values = []
    for raw_value in histogram:
        value = to_finite_number(raw_value)
        if value is None or value < 0.0 or value > 1.0:
            return None
        values.append(value)

    total = sum(values)
    if total <= 0.0 or abs(total - 1.0) > HIST_SUM_TOLERANCE:
        return None

    return tuple(round_to(value / total, HIST_DECIMALS) for value in values)


def _sanitize_stats(stats: Any) -> Optional[ScanStats]:
    if not isinstance(stats, Mapping):
        return None

    brightness = to_finite_number(stats.get('brightness'))
    contrast = to_finite_number(stats.get('contrast'))
    sharpness = to_finite_number(stats.get('sharpness'))

    if brightness is None or contrast is None or sharpness is None:
        return None

    return ScanStats(
        brightness=round_to(brightness, STATS_DECIMALS),
        contrast=round_to(contrast, STATS_DECIMALS),
        sharpness=round_to(sharpness, STATS_DECIMALS),
    )


def _sanitize_quality(raw_quality: Any) -> Optional[int]:
    """Missing quality counts as 0; present values must be finite and are clamped."""
    if raw_quality is None:
        return 0

    quality = to_finite_number(raw_quality)
    if quality is None:
        return None

    return int(clamp(round_half_up(quality), 0, 100))


# ---------------------------------------------------------------------------
# Decoding


def decode_template(payload: Any) -> Optional[EyeScanTemplate]:
    """Parse and validate a structured payload.

    Args:
        payload: EyeScanTemplate, mapping, JSON text (str/bytes) or anything else

    Returns:
        Validated EyeScanTemplate, or None if the payload is not structured
    """
    if isinstance(payload, EyeScanTemplate):
        return payload

    raw = _parse_payload_object(payload)
    if raw is None:
        return None

    if raw.get('format') != TEMPLATE_FORMAT:
        return None

    hash_bits = raw.get('hash')
    diff_bits = raw.get('diffHash')
    if not is_bit_string(hash_bits) or not is_bit_string(diff_bits):
        return None

    hist = _sanitize_histogram(raw.get('hist'))
    stats = _sanitize_stats(raw.get('stats'))
    quality = _sanitize_quality(raw.get('quality'))
    if hist is None or stats is None or quality is None:
        return None

    return EyeScanTemplate(
        hash=hash_bits,
        diff_hash=diff_bits,
        hist=hist,
        quality=quality,
        stats=stats,
        format=TEMPLATE_FORMAT,
        version=TEMPLATE_VERSION,
    )


def resolve_scan_payload(payload: Any) -> ScanPayload:
    """Classify a payload once as StructuredScan or LegacyScan."""
    template = decode_template(payload)
    if template is not None:
        return StructuredScan(template=template, raw=payload)
    return LegacyScan(raw=payload)


# ---------------------------------------------------------------------------
# Legacy Digests


def payload_text(payload: Any) -> str:
    """Text form of a payload used for legacy digests.

    Strings are used verbatim; mappings are serialized as sorted compact JSON.
    """
    if isinstance(payload, str):
        return payload

    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8", errors="replace")

    if isinstance(payload, EyeScanTemplate):
        return encode_template(payload)

    if isinstance(payload, Mapping):
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)

    return str(payload)


def normalized_hash(payload: Any) -> str:
    """One-way SHA-256 hex digest of a payload (legacy template)."""
    return hashlib.sha256(payload_text(payload).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Collaborator-facing Operations


def is_empty_payload(payload: Any) -> bool:
    if payload is None:
        return True
    if isinstance(payload, (str, bytes, bytearray, Mapping)):
        return len(payload) == 0
    return False


def create_template(payload: Any) -> str:
    """Turn a live scan payload into a storable template.

    Structured payloads are re-serialized canonically (capture metadata such
    as 'samples' and 'capturedAt' is dropped); anything else is stored as a
    legacy digest.

    Args:
        payload: Live scan payload

    Returns:
        Canonical template JSON or legacy hex digest

    Raises:
        ValueError: If payload is empty
    """
    if is_empty_payload(payload):
        raise ValueError("Scan data is required")

    template = decode_template(payload)
    if template is not None:
        return encode_template(template)

    return normalized_hash(payload)


def get_scan_quality(payload: Any) -> Optional[int]:
    """Quality of a structured payload, or None for legacy payloads."""
    template = decode_template(payload)
    return template.quality if template is not None else None

