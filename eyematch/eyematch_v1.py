"""EyeMatch v1.0 - Eye-Scan Enrollment and Identification Pipeline

ARCHITECTURE:
- Modular design:
  * config.py: Centralized configuration
  * models.py: Core data structures
  * preprocessing.py: Frame crop, resampling, luma conversion
  * extractor.py: Per-frame features (average/difference hash, histogram, stats, quality)
  * template_creation.py: Sample fusion and scan payload
  * models_serialization.py: Wire format codec and legacy digests
  * matching.py: 1:1 verification and 1:N identification
  * capture.py: Camera sources and asynchronous capture sessions
  * gallery.py: Enrollment storage

PIPELINE:
1. Capture: N frames, fixed pause between frames
2. Extraction: Crop -> Analysis window -> Luma -> Hashes, histogram, stats, quality
3. Fusion: Majority vote (hashes) -> Averages (histogram, stats) -> Stability-penalized quality
4. Matching: Weighted similarity -> Quality gating -> Threshold decision

"""

from __future__ import annotations
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import numpy as np

from eyematch.config import CaptureSettings, DEFAULT_CAPTURE, MatchSettings, DEFAULT_MATCH_SETTINGS
from eyematch.models import (
    CaptureResult, EnrollmentRecord, FrameFeatures, IdentificationResult, VerificationResult
)
from eyematch.extractor import extract_eye_features
from eyematch.preprocessing import load_color_image
from eyematch.capture import (
    CaptureSession, FrameSource, VideoCaptureSource,
    ProgressCallback, build_capture_result,
)
from eyematch.matching import EyeScanMatcher, verify as verify_scan
from eyematch.gallery import EnrollmentGallery
from eyematch.exceptions import EyeMatchError
from eyematch.logger import log_biometric, log_error


# ---------------------------------------------------------------------------
# EyeScanPipeline: End-to-End Processing


class EyeScanPipeline:
    """End-to-end eye-scan processing pipeline.

    Turns camera frames into a merged scan:
    1. Preprocessing (crop -> resample -> analysis window -> luma)
    2. Extraction (hashes, histogram, stats, quality)
    3. Fusion (majority vote and averages over all samples)

    Attributes:
        settings: Capture settings (sample count, delay, geometry)
    """

    def __init__(self, capture_settings: Optional[CaptureSettings] = None) -> None:
        self.settings = capture_settings or DEFAULT_CAPTURE

    def process_frame(self, frame: Union[np.ndarray, Path, str]) -> FrameFeatures:
        """Extract features from one frame (array or image path)."""
        if not isinstance(frame, np.ndarray):
            frame = load_color_image(Path(frame))
        return extract_eye_features(frame, self.settings)

    def process_frames(self, frames: Sequence[Union[np.ndarray, Path, str]]) -> CaptureResult:
        """Merge already-captured frames without the inter-sample pause.

        Args:
            frames: Frames or image paths, one per sample

        Returns:
            CaptureResult

        Raises:
            ValueError: If frames is empty
            CameraNotReady: If a frame is empty
        """
        if not frames:
            raise ValueError("At least one frame is required")

        samples = [self.process_frame(frame) for frame in frames]
        return build_capture_result(samples, self.settings)

    async def capture(
        self,
        source: FrameSource,
        progress_callback: Optional[ProgressCallback] = None
    ) -> CaptureResult:
        """Run a full capture session on a frame source."""
        session = CaptureSession(source, self.settings, progress_callback)
        return await session.capture()


# ---------------------------------------------------------------------------
# High-Level API: Enroll, Verify, Identify


def enroll(
    user_id: str,
    scan_data: Any,
    gallery_dir: Path = None,
    *,
    eye: str = "right",
    performed_by: Optional[str] = None,
    verbose: bool = False
) -> EnrollmentRecord:
    """Enroll (or re-enroll) a user from a live scan payload.

    Args:
        user_id: User identifier
        scan_data: Scan payload (structured JSON/mapping or opaque string)
        gallery_dir: Gallery directory (uses default if None)
        eye: Captured eye
        performed_by: Operator recorded in the biometric log
        verbose: Print progress messages

    Returns:
        Stored EnrollmentRecord

    Raises:
        ValueError: If user_id is invalid or scan_data is empty
    """
    gallery = EnrollmentGallery(gallery_dir)
    record = gallery.enroll(user_id, scan_data, eye=eye)
    mode = "structured" if record.quality is not None else "legacy"

    log_biometric(
        "ENROLL", user_id, "SUCCESS",
        details={'quality': record.quality, 'mode': mode, 'eye': eye},
        performed_by=performed_by
    )

    if verbose:
        print(f"[enroll] Enrolled '{user_id}' ({mode}, quality={record.quality})")

    return record


def verify(
    scan_data: Any,
    user_id: str,
    gallery_dir: Path = None,
    *,
    settings: Optional[MatchSettings] = None,
    verbose: bool = False
) -> VerificationResult:
    """Verify a live scan against the enrollment of a claimed user (1:1).

    Args:
        scan_data: Live scan payload
        user_id: Claimed user identifier
        gallery_dir: Gallery directory (uses default if None)
        settings: Match settings (uses config default if None)
        verbose: Print verification details

    Returns:
        VerificationResult

    Raises:
        ValueError: If the user has no active enrollment
    """
    gallery = EnrollmentGallery(gallery_dir)
    record = gallery.get(user_id)

    if record is None or not record.is_active or not record.identity_active:
        log_biometric("VERIFY", user_id, "NOT_ENROLLED")
        raise ValueError(f"No active enrollment for user '{user_id}'.")

    result = verify_scan(scan_data, record.template, settings or DEFAULT_MATCH_SETTINGS)

    if result.verified:
        gallery.mark_used(user_id)

    log_biometric(
        "VERIFY", user_id, "MATCH" if result.verified else "NO_MATCH",
        details={'confidence': result.confidence, 'mode': result.mode}
    )

    if verbose:
        print(f"[verify] Result: {'MATCH' if result.verified else 'NO MATCH'}")
        print(f"[verify] Confidence: {result.confidence} ({result.mode})")

    return result


def identify(
    scan_data: Any,
    gallery_dir: Path = None,
    *,
    settings: Optional[MatchSettings] = None,
    top_k: int = 0,
    verbose: bool = False
) -> IdentificationResult:
    """Identify a live scan against all active enrollments (1:N).

    Args:
        scan_data: Live scan payload
        gallery_dir: Gallery directory (uses default if None)
        settings: Match settings (uses config default if None)
        top_k: Print the top-k ranking when verbose (0 disables)
        verbose: Print matching details

    Returns:
        IdentificationResult (record is None when nobody matched)
    """
    gallery = EnrollmentGallery(gallery_dir)
    matcher = EyeScanMatcher(gallery.active_records(), settings)
    result = matcher.identify(scan_data)

    if result.matched:
        gallery.mark_used(result.record.user_id)

    log_biometric(
        "IDENTIFY",
        result.record.user_id if result.matched else None,
        "MATCH" if result.matched else "NO_MATCH",
        details={
            'confidence': result.confidence,
            'candidates': result.candidates_evaluated,
            'best_unverified': result.best_unverified_confidence,
        }
    )

    if verbose:
        if result.matched:
            print(f"[identify] Recognized '{result.record.user_id}' (confidence={result.confidence})")
        else:
            print(f"[identify] No match among {result.candidates_evaluated} enrollments "
                  f"(best rejected confidence={result.best_unverified_confidence})")

        if top_k > 0:
            print(f"[identify] Top-{top_k} candidates:")
            for i, (record, candidate) in enumerate(matcher.rank(scan_data, top_k), 1):
                flag = "verified" if candidate.verified else "rejected"
                print(f"  {i}. {record.user_id}: {candidate.confidence} ({flag})")

    return result


# ---------------------------------------------------------------------------
# Command Line


def _read_scan(source: str) -> str:
    """Read a scan payload from a file, or from stdin when source is '-'."""
    if source == "-":
        return sys.stdin.read().strip()
    return Path(source).read_text(encoding="utf-8").strip()


def _print_progress(state, index: int, total: int) -> None:
    print(f"[capture] {state.value} {index}/{total}", file=sys.stderr)


def _command_capture(args: argparse.Namespace) -> int:
    settings = CaptureSettings(
        sample_count=args.samples,
        sample_delay_ms=args.delay_ms,
    )
    pipeline = EyeScanPipeline(settings)

    if args.images:
        result = pipeline.process_frames(args.images)
    else:
        source = VideoCaptureSource(args.camera, settings.camera_width, settings.camera_height)
        result = asyncio.run(pipeline.capture(source, _print_progress))

    if args.output:
        args.output.write_text(result.scan_data, encoding="utf-8")
        print(f"[capture] Scan written to {args.output}", file=sys.stderr)
    else:
        print(result.scan_data)

    print(f"[capture] Quality: {result.quality} - {result.status_message}", file=sys.stderr)
    return 0 if result.accepted else 1


def _command_enroll(args: argparse.Namespace) -> int:
    enroll(args.user_id, _read_scan(args.scan), args.gallery, eye=args.eye, verbose=True)
    return 0


def _command_verify(args: argparse.Namespace) -> int:
    result = verify(_read_scan(args.scan), args.user_id, args.gallery, verbose=True)
    return 0 if result.verified else 1


def _command_identify(args: argparse.Namespace) -> int:
    result = identify(_read_scan(args.scan), args.gallery, top_k=args.top_k, verbose=True)
    return 0 if result.matched else 1


def _command_list(args: argparse.Namespace) -> int:
    gallery = EnrollmentGallery(args.gallery)
    records = gallery.list_enrollments(include_inactive=not args.active_only)

    if not records:
        print("[list] Gallery is empty")
        return 0

    for record in records:
        status = "active" if record.is_active else "inactive"
        if not record.identity_active:
            status += ", account disabled"
        enrolled = record.enrolled_at.isoformat() if record.enrolled_at else "-"
        print(f"{record.user_id}\t{record.eye}\tquality={record.quality}\t{status}\tenrolled={enrolled}")
    return 0


def _command_remove(args: argparse.Namespace) -> int:
    gallery = EnrollmentGallery(args.gallery)
    removed = gallery.delete(args.user_id) if args.hard else gallery.deactivate(args.user_id)

    if not removed:
        print(f"[remove] No enrollment for '{args.user_id}'", file=sys.stderr)
        return 1

    log_biometric("REMOVE", args.user_id, "DELETED" if args.hard else "DEACTIVATED")
    print(f"[remove] {'Deleted' if args.hard else 'Deactivated'} enrollment of '{args.user_id}'")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eyematch",
        description="EyeMatch v1.0 - Eye-Scan Enrollment and Identification"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Capture command
    capture_parser = subparsers.add_parser("capture", help="Capture a scan (camera or image files)")
    capture_parser.add_argument("--camera", "-c", type=int, default=0, help="Camera device index")
    capture_parser.add_argument("--images", type=Path, nargs="+", default=None, help="Use image files instead of a camera")
    capture_parser.add_argument("--output", "-o", type=Path, default=None, help="Write scan JSON to file")
    capture_parser.add_argument("--samples", type=int, default=DEFAULT_CAPTURE.sample_count, help="Frames per scan")
    capture_parser.add_argument("--delay-ms", type=int, default=DEFAULT_CAPTURE.sample_delay_ms, help="Pause between frames")

    # Enroll command
    enroll_parser = subparsers.add_parser("enroll", help="Enroll a user from a scan")
    enroll_parser.add_argument("user_id", type=str, help="User identifier")
    enroll_parser.add_argument("scan", type=str, help="Scan file ('-' for stdin)")
    enroll_parser.add_argument("--eye", choices=("left", "right", "both"), default="right", help="Captured eye")
    enroll_parser.add_argument("--gallery", "-g", type=Path, default=None, help="Gallery directory")

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Verify a scan (1:1)")
    verify_parser.add_argument("user_id", type=str, help="Claimed identity")
    verify_parser.add_argument("scan", type=str, help="Scan file ('-' for stdin)")
    verify_parser.add_argument("--gallery", "-g", type=Path, default=None, help="Gallery directory")

    # Identify command
    identify_parser = subparsers.add_parser("identify", help="Identify a scan (1:N)")
    identify_parser.add_argument("scan", type=str, help="Scan file ('-' for stdin)")
    identify_parser.add_argument("--gallery", "-g", type=Path, default=None, help="Gallery directory")
    identify_parser.add_argument("--top-k", "-k", type=int, default=0, help="Show top-k candidates")

    # List command
    list_parser = subparsers.add_parser("list", help="List enrollments")
    list_parser.add_argument("--gallery", "-g", type=Path, default=None, help="Gallery directory")
    list_parser.add_argument("--active-only", action="store_true", help="Hide deactivated enrollments")

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Deactivate or delete an enrollment")
    remove_parser.add_argument("user_id", type=str, help="User identifier")
    remove_parser.add_argument("--gallery", "-g", type=Path, default=None, help="Gallery directory")
    remove_parser.add_argument("--hard", action="store_true", help="Delete instead of deactivating")

    return parser


COMMANDS = {
    "capture": _command_capture,
    "enroll": _command_enroll,
    "verify": _command_verify,
    "identify": _command_identify,
    "list": _command_list,
    "remove": _command_remove,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args)
    except (EyeMatchError, ValueError, OSError) as e:
        log_error(e, context=f"cli:{args.command}")
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
