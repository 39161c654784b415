import dataclasses

import pytest

from eyematch.matching import EyeScanMatcher
from eyematch.models import EnrollmentRecord
from eyematch.models_serialization import create_template, encode_template


@pytest.fixture
def records(make_template):
    return [
        EnrollmentRecord(user_id=f"user{seed}", template=encode_template(make_template(seed)), quality=90)
        for seed in range(1, 5)
    ]


def test_identifies_the_matching_enrollment(records, make_template):
    result = EyeScanMatcher(records).identify(encode_template(make_template(3)))

    assert result.matched
    assert result.record.user_id == "user3"
    assert result.confidence == 100
    assert result.candidates_evaluated == 4


def test_no_match_is_not_an_error(records, make_template):
    result = EyeScanMatcher(records).identify(encode_template(make_template(99)))

    assert not result.matched
    assert result.record is None
    assert result.confidence == 0
    assert 0 < result.best_unverified_confidence < 78


def test_exact_ties_go_to_the_first_enrollment(make_template):
    template = encode_template(make_template(5))
    first = EnrollmentRecord(user_id="first", template=template)
    second = EnrollmentRecord(user_id="second", template=template)

    result = EyeScanMatcher([first, second]).identify(template)
    assert result.record.user_id == "first"


def test_strictly_higher_confidence_wins_regardless_of_order(make_template, flip_bits):
    stored = make_template(5)
    noisy = dataclasses.replace(stored, hash=flip_bits(stored.hash, 13))
    records = [
        EnrollmentRecord(user_id="noisy", template=encode_template(noisy)),
        EnrollmentRecord(user_id="exact", template=encode_template(stored)),
    ]

    result = EyeScanMatcher(records).identify(encode_template(stored))
    assert result.record.user_id == "exact"


def test_inactive_enrollments_are_not_evaluated(records, make_template):
    records[2].is_active = False

    result = EyeScanMatcher(records).identify(encode_template(make_template(3)))

    assert not result.matched
    assert result.candidates_evaluated == 3


def test_inactive_identity_cannot_win(make_template):
    template = encode_template(make_template(5))
    records = [
        EnrollmentRecord(user_id="disabled", template=template, identity_active=False),
        EnrollmentRecord(user_id="other", template=encode_template(make_template(6))),
    ]

    result = EyeScanMatcher(records).identify(template)

    assert not result.matched
    assert result.candidates_evaluated == 2


def test_low_quality_live_scan_identifies_nobody(records, make_template):
    live = dataclasses.replace(make_template(3), quality=30)

    result = EyeScanMatcher(records).identify(encode_template(live))

    assert not result.matched
    assert result.best_unverified_confidence == 84


def test_legacy_enrollments_take_part(records):
    records.append(EnrollmentRecord(user_id="legacy", template=create_template("old-scan-data")))

    result = EyeScanMatcher(records).identify("old-scan-data")

    assert result.record.user_id == "legacy"
    assert result.confidence == 100


def test_rank_is_sorted_and_stable(records, make_template):
    template = encode_template(make_template(2))
    records.insert(0, EnrollmentRecord(user_id="twin", template=template))

    ranking = EyeScanMatcher(records).rank(template, top_k=3)

    assert [record.user_id for record, _ in ranking[:2]] == ["twin", "user2"]
    assert len(ranking) == 3
    confidences = [result.confidence for _, result in ranking]
    assert confidences == sorted(confidences, reverse=True)


def test_hostile_payload_falls_back_to_legacy_scoring(records):
    nested = '{"a":' + "[" * 100000 + "]" * 100000 + "}"

    result = EyeScanMatcher(records).identify(nested)

    assert not result.matched
    assert result.candidates_evaluated == 4
