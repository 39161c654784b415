from datetime import datetime, timezone

import pytest

from eyematch.extractor import extract_eye_features
from eyematch.models import ScanStats
from eyematch.template_creation import (
    build_scan_payload, iso_timestamp, merge_bit_hashes, merge_histograms,
    merge_quality, merge_samples, merge_stats, quality_stability_penalty,
)


def test_majority_vote_per_position():
    assert merge_bit_hashes(["1100", "1010", "1001"]) == "1000"


def test_majority_vote_ties_resolve_to_one():
    assert merge_bit_hashes(["10", "01"]) == "11"


def test_merge_bit_hashes_rejects_mixed_lengths():
    with pytest.raises(ValueError):
        merge_bit_hashes(["101", "10"])


def test_merge_bit_hashes_of_nothing():
    assert merge_bit_hashes([]) == ""


def test_merge_histograms_averages_and_renormalizes():
    merged = merge_histograms([[0.5, 0.5, 0.0, 0.0], [0.0, 0.5, 0.5, 0.0]])
    assert merged == pytest.approx([0.25, 0.5, 0.25, 0.0])


def test_merge_histograms_rejects_mixed_lengths():
    with pytest.raises(ValueError):
        merge_histograms([[1.0, 0.0], [0.5, 0.25, 0.25]])


def test_merge_stats_means_rounded():
    merged = merge_stats([
        ScanStats(brightness=100.0, contrast=40.0, sharpness=10.0),
        ScanStats(brightness=101.0, contrast=41.0, sharpness=10.34),
    ])
    assert merged == ScanStats(brightness=100.5, contrast=40.5, sharpness=10.17)


def test_steady_quality_is_not_penalized():
    assert quality_stability_penalty([70, 70, 70]) == 0.0
    assert merge_quality([70, 70, 70]) == 70


def test_jittery_quality_drops_below_mean():
    # mean 65, pstdev 5 -> penalty 4
    assert merge_quality([60, 70]) == 61


def test_stability_penalty_is_capped():
    qualities = [90] * 6 + [20]
    # mean 80, pstdev ~24.5 -> 0.8 * 24.5 > 15
    assert quality_stability_penalty(qualities) == 15.0
    assert merge_quality(qualities) == 65


def test_merge_quality_of_nothing():
    assert merge_quality([]) == 0


def test_merge_samples_requires_samples():
    with pytest.raises(ValueError):
        merge_samples([])


def test_merge_samples_of_identical_frames(textured_frame):
    features = extract_eye_features(textured_frame)
    template = merge_samples([features] * 3)

    assert template.hash == features.hash
    assert template.diff_hash == features.diff_hash
    assert template.quality == features.quality
    assert template.stats == features.stats


def test_iso_timestamp_format():
    when = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
    assert iso_timestamp(when) == "2024-01-02T03:04:05.678Z"


def test_iso_timestamp_treats_naive_times_as_utc():
    assert iso_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05.000Z"


def test_scan_payload_adds_capture_metadata(make_template):
    template = make_template(1)
    payload = build_scan_payload(template, 7, datetime(2024, 1, 2, tzinfo=timezone.utc))

    assert list(payload) == [
        'format', 'version', 'hash', 'diffHash', 'hist', 'quality', 'stats', 'samples', 'capturedAt'
    ]
    assert payload['format'] == "eye-scan-v1"
    assert payload['samples'] == 7
    assert payload['capturedAt'] == "2024-01-02T00:00:00.000Z"
