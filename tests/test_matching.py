import dataclasses

import numpy as np
import pytest

from eyematch.config import MatchSettings
from eyematch.capture import build_capture_result
from eyematch.extractor import extract_eye_features
from eyematch.matching import (
    hash_similarity, histogram_similarity, legacy_similarity, quality_penalty,
    score_structured, stats_similarity, verify,
)
from eyematch.models import ScanStats
from eyematch.models_serialization import create_template, encode_template, template_to_dict


def test_hash_similarity_identity_and_empty():
    assert hash_similarity("1010", "1010") == 100.0
    assert hash_similarity("", "1010") == 0.0


def test_hash_similarity_counts_length_mismatch_against_match():
    assert hash_similarity("1111", "11") == pytest.approx(50.0)


def test_single_bit_flip_costs_exactly_one_position(make_template, flip_bits):
    bits = make_template(1).hash
    assert hash_similarity(bits, flip_bits(bits, 1)) == pytest.approx(100.0 - 100.0 / 256)


def test_histogram_similarity_is_symmetric():
    left = [0.1, 0.2, 0.3, 0.4]
    right = [0.4, 0.3, 0.2, 0.1]
    assert histogram_similarity(left, right) == histogram_similarity(right, left) == 60
    assert histogram_similarity(left, left) == 100
    assert histogram_similarity([], left) == 0


def test_stats_similarity():
    stats = ScanStats(brightness=120.0, contrast=40.0, sharpness=12.0)
    assert stats_similarity(stats, stats) == 100

    brighter = dataclasses.replace(stats, brightness=130.0)
    # B = 100 - 11 = 89 -> 31.15 + 35 + 30 = 96.15
    assert stats_similarity(stats, brighter) == 96


def test_quality_penalty_below_floor():
    assert quality_penalty(40, 90) == pytest.approx(8.0)
    assert quality_penalty(90, 30) == pytest.approx(16.0)
    assert quality_penalty(60, 90) == 0


def test_identical_templates_match_fully(make_template):
    stored = encode_template(make_template(1))
    result = verify(stored, stored)

    assert result.mode == "structured"
    assert result.verified
    assert result.confidence == 100
    assert result.as_dict() == {'verified': True, 'confidence': 100}


def test_single_bit_flip_lowers_raw_confidence(make_template, flip_bits):
    template = make_template(1)
    flipped = dataclasses.replace(template, hash=flip_bits(template.hash, 1))

    full = score_structured(template, template)
    reduced = score_structured(flipped, template)

    assert full.hash_score - reduced.hash_score == pytest.approx(100.0 / 256)
    assert full.raw_confidence - reduced.raw_confidence == pytest.approx(0.45 * 100.0 / 256)


def test_low_quality_live_scan_is_never_verified(make_template):
    stored = make_template(1)
    live = dataclasses.replace(stored, quality=45)

    result = verify(encode_template(live), encode_template(stored))

    # 100 - 0.8 * (50 - 45)
    assert result.confidence == 96
    assert not result.verified


def test_low_quality_enrollment_is_penalized_but_allowed(make_template):
    live = make_template(1)
    stored = dataclasses.replace(live, quality=40)

    result = verify(encode_template(live), encode_template(stored))

    assert result.confidence == 92
    assert result.verified


def test_five_percent_bit_noise_still_verifies(make_template, flip_bits):
    stored = make_template(1, quality=85)
    live = dataclasses.replace(
        stored,
        quality=80,
        hash=flip_bits(stored.hash, 13),
        diff_hash=flip_bits(stored.diff_hash, 13),
    )

    result = verify(template_to_dict(live), encode_template(stored))

    assert result.verified
    assert 85 <= result.confidence <= 99


def test_unrelated_templates_are_rejected(make_template):
    result = verify(encode_template(make_template(2, quality=80)), encode_template(make_template(1, quality=85)))

    assert result.mode == "structured"
    assert not result.verified
    assert result.confidence < 78


def test_threshold_comes_from_settings(make_template, flip_bits):
    stored = make_template(1)
    live = dataclasses.replace(stored, hash=flip_bits(stored.hash, 13))
    strict = MatchSettings(structured_threshold=99)

    assert verify(encode_template(live), encode_template(stored)).verified
    assert not verify(encode_template(live), encode_template(stored), strict).verified


def test_match_settings_reject_bad_weights():
    with pytest.raises(ValueError):
        MatchSettings(hash_weight=0.9)


def test_legacy_similarity():
    assert legacy_similarity("abcd", "abcd") == 100
    assert legacy_similarity("abcd", "abce") == 75
    assert legacy_similarity("", "abcd") == 0


def test_legacy_digest_routes_through_legacy_threshold():
    stored = create_template("scan-abc")

    same = verify("scan-abc", stored)
    assert same.mode == "legacy"
    assert same.verified and same.confidence == 100

    other = verify("scan-abd", stored)
    assert other.mode == "legacy"
    assert not other.verified
    assert other.confidence < 85


def test_structured_live_against_legacy_digest_uses_legacy_path(make_template):
    result = verify(encode_template(make_template(1)), create_template("old-scan"))
    assert result.mode == "legacy"
    assert not result.verified


def test_malformed_stored_template_degrades_to_legacy(make_template):
    broken = encode_template(make_template(1)).replace('"eye-scan-v1"', '"eye-scan-v0"')
    result = verify(encode_template(make_template(1)), broken)
    assert result.mode == "legacy"


def test_empty_inputs_never_verify(make_template):
    stored = encode_template(make_template(1))
    assert verify("", stored).as_dict() == {'verified': False, 'confidence': 0}
    assert verify(stored, None).as_dict() == {'verified': False, 'confidence': 0}


def test_same_eye_captured_twice_verifies(make_frame):
    frame = make_frame(7)
    noise = np.random.default_rng(3).integers(-2, 3, size=frame.shape)
    noisy = np.clip(frame.astype(np.int16) + noise, 0, 255).astype(np.uint8)

    enrolled = build_capture_result([extract_eye_features(frame)] * 3)
    live = build_capture_result([extract_eye_features(noisy)] * 3)

    result = verify(live.scan_data, create_template(enrolled.scan_data))
    assert result.mode == "structured"
    assert result.verified


def test_different_eyes_are_rejected(make_frame):
    enrolled = build_capture_result([extract_eye_features(make_frame(7))])
    live = build_capture_result([extract_eye_features(make_frame(8))])

    result = verify(live.scan_data, create_template(enrolled.scan_data))
    assert not result.verified
