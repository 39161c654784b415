"""Gallery Module - Enrollment Storage

Handles persistence of eye-scan enrollments:
- One JSON document per user (<user_id>.json) in the gallery directory
- Upsert on re-enrollment (template replaced, enrollment reactivated)
- Soft deactivation, hard deletion, account (identity) activation flag
- Last-used timestamp written back after successful matches

Stored templates are either canonical "eye-scan-v1" JSON or a legacy hex
digest; raw scan payloads are never written.
"""

from __future__ import annotations

import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from eyematch.models import EnrollmentRecord
from eyematch.models_serialization import create_template, get_scan_quality
from eyematch.template_creation import iso_timestamp
from eyematch.logger import get_logger
from eyematch.config import DEFAULT_GALLERY_PATH, GALLERY_EXTENSION

logger = get_logger("gallery")

_USER_ID = re.compile(r"[A-Za-z0-9_.-]{1,64}")


# ============================================================================
# RECORD SERIALIZATION
# ============================================================================

def validate_user_id(user_id: str) -> str:
    """Return user_id unchanged, raising ValueError if it is not a safe file stem."""
    if not isinstance(user_id, str) or not _USER_ID.fullmatch(user_id) or user_id in (".", ".."):
        raise ValueError(f"Invalid user id: {user_id!r}")
    return user_id


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return iso_timestamp(value) if value is not None else None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_to_dict(record: EnrollmentRecord) -> Dict[str, Any]:
    return {
        'userId': record.user_id,
        'template': record.template,
        'quality': record.quality,
        'eye': record.eye,
        'isActive': record.is_active,
        'identityActive': record.identity_active,
        'enrolledAt': _format_timestamp(record.enrolled_at),
        'lastUsedAt': _format_timestamp(record.last_used_at),
    }


def record_from_dict(data: Dict[str, Any]) -> EnrollmentRecord:
    """Rebuild an EnrollmentRecord from its stored form.

    Raises:
        KeyError: If userId or template is missing
        ValueError: If a field is invalid
    """
    return EnrollmentRecord(
        user_id=data['userId'],
        template=data['template'],
        is_active=bool(data.get('isActive', True)),
        identity_active=bool(data.get('identityActive', True)),
        quality=data.get('quality'),
        eye=data.get('eye', "right"),
        enrolled_at=_parse_timestamp(data.get('enrolledAt')),
        last_used_at=_parse_timestamp(data.get('lastUsedAt')),
    )


# ============================================================================
# GALLERY CLASS
# ============================================================================

class EnrollmentGallery:
    """Directory-backed store of enrollments."""

    def __init__(self, directory: Path = None):
        """Initialize gallery.

        Args:
            directory: Gallery directory (created if missing)
        """
        self.directory = Path(directory) if directory is not None else DEFAULT_GALLERY_PATH
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, user_id: str) -> Path:
        return self.directory / f"{validate_user_id(user_id)}{GALLERY_EXTENSION}"

    def _write(self, record: EnrollmentRecord) -> None:
        target = self._path(record.user_id)
        temporary = target.with_suffix(target.suffix + ".tmp")
        temporary.write_text(json.dumps(record_to_dict(record), indent=2), encoding="utf-8")
        os.replace(temporary, target)

    def _load(self, path: Path) -> Optional[EnrollmentRecord]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return record_from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping unreadable enrollment {path.name}: {e}")
            return None

    # ------------------------------------------------------------------------
    # ENROLLMENT
    # ------------------------------------------------------------------------

    def enroll(self, user_id: str, scan_data: Any, eye: str = "right") -> EnrollmentRecord:
        """Create or replace the enrollment of a user.

        Args:
            user_id: Owning identity
            scan_data: Live scan payload
            eye: Captured eye ("left", "right" or "both")

        Returns:
            Stored EnrollmentRecord

        Raises:
            ValueError: If user_id is invalid or scan_data is empty
        """
        validate_user_id(user_id)
        template = create_template(scan_data)

        existing = self.get(user_id)
        record = EnrollmentRecord(
            user_id=user_id,
            template=template,
            is_active=True,
            identity_active=existing.identity_active if existing else True,
            quality=get_scan_quality(scan_data),
            eye=eye,
            enrolled_at=datetime.now(timezone.utc),
            last_used_at=None,
        )
        self._write(record)
        return record

    def get(self, user_id: str) -> Optional[EnrollmentRecord]:
        path = self._path(user_id)
        if not path.exists():
            return None
        return self._load(path)

    def list_enrollments(self, include_inactive: bool = True) -> List[EnrollmentRecord]:
        """All readable enrollments, oldest enrollment first."""
        records = []
        for path in sorted(self.directory.glob(f"*{GALLERY_EXTENSION}")):
            record = self._load(path)
            if record is None:
                continue
            if not include_inactive and not record.is_active:
                continue
            records.append(record)

        records.sort(key=lambda r: (r.enrolled_at.timestamp() if r.enrolled_at else 0.0, r.user_id))
        return records

    def active_records(self) -> List[EnrollmentRecord]:
        return self.list_enrollments(include_inactive=False)

    # ------------------------------------------------------------------------
    # UPDATES
    # ------------------------------------------------------------------------

    def _update(self, user_id: str, **changes) -> bool:
        record = self.get(user_id)
        if record is None:
            return False

        for name, value in changes.items():
            setattr(record, name, value)
        self._write(record)
        return True

    def mark_used(self, user_id: str, when: datetime = None) -> bool:
        """Record a successful match. Returns False if the user is not enrolled."""
        return self._update(user_id, last_used_at=when or datetime.now(timezone.utc))

    def deactivate(self, user_id: str) -> bool:
        return self._update(user_id, is_active=False)

    def set_identity_active(self, user_id: str, active: bool) -> bool:
        return self._update(user_id, identity_active=bool(active))

    def delete(self, user_id: str) -> bool:
        """Remove the enrollment file.

        Returns:
            True if deleted, False if the user was not enrolled
        """
        path = self._path(user_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def __len__(self) -> int:
        return len(self.list_enrollments())
