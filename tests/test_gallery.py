import json
from datetime import datetime, timezone

import pytest

from eyematch.gallery import EnrollmentGallery, record_from_dict, record_to_dict
from eyematch.models_serialization import encode_template, template_to_dict


@pytest.fixture
def gallery(gallery_dir):
    return EnrollmentGallery(gallery_dir)


@pytest.fixture
def scan(make_template):
    payload = template_to_dict(make_template(1))
    payload['samples'] = 7
    payload['capturedAt'] = "2024-01-02T00:00:00.000Z"
    return json.dumps(payload)


def test_enroll_structured_scan(gallery, gallery_dir, scan, make_template):
    record = gallery.enroll("alice", scan, eye="left")

    assert record.template == encode_template(make_template(1))
    assert record.quality == 90
    assert record.eye == "left"
    assert record.is_active and record.identity_active
    assert record.enrolled_at is not None
    assert (gallery_dir / "alice.json").exists()

    stored = gallery.get("alice")
    assert stored.template == record.template
    assert stored.quality == 90


def test_gallery_file_layout(gallery, gallery_dir, scan):
    gallery.enroll("alice", scan)
    data = json.loads((gallery_dir / "alice.json").read_text(encoding="utf-8"))

    assert set(data) == {
        'userId', 'template', 'quality', 'eye', 'isActive', 'identityActive', 'enrolledAt', 'lastUsedAt'
    }
    assert data['enrolledAt'].endswith("Z")
    assert data['lastUsedAt'] is None
    assert "capturedAt" not in data['template']


def test_enroll_legacy_scan(gallery):
    record = gallery.enroll("bob", "opaque-legacy-scan")

    assert record.quality is None
    assert len(record.template) == 64


def test_enroll_rejects_empty_scan(gallery):
    with pytest.raises(ValueError, match="Scan data is required"):
        gallery.enroll("alice", "")


@pytest.mark.parametrize("user_id", ["", "../escape", "a/b", "x" * 65, "..", "name with space"])
def test_invalid_user_ids(gallery, scan, user_id):
    with pytest.raises(ValueError):
        gallery.enroll(user_id, scan)


def test_get_missing_user(gallery):
    assert gallery.get("nobody") is None


def test_reenrollment_replaces_and_reactivates(gallery, scan, make_template):
    gallery.enroll("alice", scan)
    gallery.deactivate("alice")
    gallery.mark_used("alice")

    record = gallery.enroll("alice", encode_template(make_template(2)))

    assert record.template == encode_template(make_template(2))
    assert record.is_active
    assert gallery.get("alice").last_used_at is None
    assert len(gallery) == 1


def test_reenrollment_keeps_identity_flag(gallery, scan):
    gallery.enroll("alice", scan)
    gallery.set_identity_active("alice", False)

    assert not gallery.enroll("alice", scan).identity_active


def test_deactivate_hides_from_active_records(gallery, scan):
    gallery.enroll("alice", scan)
    gallery.enroll("bob", "legacy")

    assert gallery.deactivate("alice")
    assert [r.user_id for r in gallery.active_records()] == ["bob"]
    assert [r.user_id for r in gallery.list_enrollments()] == ["alice", "bob"]
    assert not gallery.deactivate("nobody")


def test_active_records_in_enrollment_order(gallery, scan):
    for user_id in ("carol", "alice", "bob"):
        gallery.enroll(user_id, scan)

    first = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for offset, user_id in enumerate(("carol", "alice", "bob")):
        record = gallery.get(user_id)
        record.enrolled_at = first.replace(minute=offset)
        gallery._write(record)

    assert [r.user_id for r in gallery.active_records()] == ["carol", "alice", "bob"]


def test_mark_used_round_trips_timestamp(gallery, scan):
    gallery.enroll("alice", scan)
    when = datetime(2024, 5, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)

    assert gallery.mark_used("alice", when)
    assert gallery.get("alice").last_used_at == when
    assert not gallery.mark_used("nobody")


def test_delete(gallery, gallery_dir, scan):
    gallery.enroll("alice", scan)

    assert gallery.delete("alice")
    assert not (gallery_dir / "alice.json").exists()
    assert not gallery.delete("alice")


def test_corrupt_files_are_skipped(gallery, gallery_dir, scan):
    gallery.enroll("alice", scan)
    (gallery_dir / "broken.json").write_text("{not json", encoding="utf-8")
    (gallery_dir / "partial.json").write_text(json.dumps({'userId': "partial"}), encoding="utf-8")

    assert [r.user_id for r in gallery.list_enrollments()] == ["alice"]


def test_record_dict_round_trip(gallery, scan):
    record = gallery.enroll("alice", scan)
    assert record_from_dict(record_to_dict(record)).template == record.template
