"""
Capture Session Management
Drives a frame source through a multi-sample eye scan and merges the samples
into one template.

The session runs on the asyncio event loop: samples are taken strictly one
after another with a pause in between, the camera is owned exclusively for
the duration of a session and is released on every exit path.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from eyematch.models import CaptureResult, FrameFeatures
from eyematch.extractor import extract_eye_features
from eyematch.template_creation import merge_samples, build_scan_payload
from eyematch.preprocessing import load_color_image
from eyematch.exceptions import CameraBusy, CameraNotReady, CaptureCancelled
from eyematch.logger import log_capture, log_error
from eyematch.config import CaptureSettings, DEFAULT_CAPTURE, CAMERA_WIDTH, CAMERA_HEIGHT


STATUS_ACCEPTED = "Scan captured successfully."
STATUS_LOW_QUALITY = "Scan quality is low. Improve light and try again."


# ---------------------------------------------------------------------------
# Frame Sources


class FrameSource(ABC):
    """A camera-like source of frames.

    Sources are context managers; one session owns a source exclusively while
    it is open.
    """

    def __init__(self):
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self):
        """
        Acquire the underlying device.

        Raises:
            CameraBusy: If the source is already open
            CameraNotReady: If the device cannot be opened
        """
        if self._opened:
            raise CameraBusy("Camera is already in use")

        self._open()
        self._opened = True

    def read(self) -> Optional[np.ndarray]:
        """Return the next frame, or None if the device produced nothing."""
        if not self._opened:
            raise CameraNotReady()
        return self._read()

    def release(self):
        if not self._opened:
            return
        try:
            self._release()
        finally:
            self._opened = False

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        """Native (width, height) of the frames, if known."""
        return None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    @abstractmethod
    def _open(self):
        ...

    @abstractmethod
    def _read(self) -> Optional[np.ndarray]:
        ...

    @abstractmethod
    def _release(self):
        ...


class VideoCaptureSource(FrameSource):
    """OpenCV camera (cv2.VideoCapture)."""

    def __init__(self, device: int = 0, width: int = CAMERA_WIDTH, height: int = CAMERA_HEIGHT):
        super().__init__()
        self.device = device
        self.width = width
        self.height = height
        self._capture = None

    def _open(self):
        capture = cv2.VideoCapture(self.device)
        if not capture.isOpened():
            capture.release()
            raise CameraNotReady(f"Unable to open camera {self.device}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture

    def _read(self) -> Optional[np.ndarray]:
        ok, frame = self._capture.read()
        return frame if ok else None

    def _release(self):
        self._capture.release()
        self._capture = None

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        if self._capture is None:
            return None
        width = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        # some backends report 0 while delivering frames; the frame shape decides then
        if not width or not height:
            return None
        return width, height


class ImageSequenceSource(FrameSource):
    """Frames from memory or image files, replayed in a loop."""

    def __init__(self, frames: Sequence[Union[np.ndarray, str, Path]]):
        super().__init__()
        self._items = list(frames)
        self._frames: List[np.ndarray] = []
        self._index = 0

    def _open(self):
        if not self._items:
            raise CameraNotReady("No frames to replay")

        self._frames = [
            item if isinstance(item, np.ndarray) else load_color_image(Path(item))
            for item in self._items
        ]
        self._index = 0

    def _read(self) -> Optional[np.ndarray]:
        frame = self._frames[self._index % len(self._frames)]
        self._index += 1
        return frame

    def _release(self):
        self._frames = []

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        if not self._frames:
            return None
        height, width = self._frames[0].shape[:2]
        return width, height


# ---------------------------------------------------------------------------
# Result Assembly


def build_capture_result(
    samples: Sequence[FrameFeatures],
    settings: CaptureSettings = None
) -> CaptureResult:
    """
    Merge per-frame features into a CaptureResult.

    Args:
        samples: Features of every frame taken
        settings: Capture settings (uses config default if None)

    Returns:
        CaptureResult with template, wire payload and acceptance decision
    """
    if settings is None:
        settings = DEFAULT_CAPTURE

    template = merge_samples(samples)
    payload = build_scan_payload(template, len(samples))
    accepted = template.quality >= settings.min_accepted_quality

    return CaptureResult(
        template=template,
        payload=payload,
        scan_data=json.dumps(payload, separators=(",", ":")),
        quality=template.quality,
        accepted=accepted,
        sample_count=len(samples),
        status_message=STATUS_ACCEPTED if accepted else STATUS_LOW_QUALITY,
        sample_qualities=tuple(sample.quality for sample in samples),
    )


# ---------------------------------------------------------------------------
# Capture Session


class CaptureState(Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    MERGED = "merged"
    CANCELLED = "cancelled"
    FAILED = "failed"


ProgressCallback = Callable[[CaptureState, int, int], None]


class CaptureSession:
    """Multi-sample eye capture on one frame source."""

    def __init__(
        self,
        source: FrameSource,
        settings: CaptureSettings = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """
        Initialize capture session.

        Args:
            source: Frame source (opened and released by the session)
            settings: Capture settings (uses config default if None)
            progress_callback: Called as (state, sample_index, sample_count) on every change
        """
        self.source = source
        self.settings = settings or DEFAULT_CAPTURE
        self.progress_callback = progress_callback

        self.state = CaptureState.IDLE
        self.sample_index = 0
        self._cancel_requested = False
        self._running = False

    @property
    def progress(self) -> Tuple[int, int]:
        """(samples started, samples planned)"""
        return self.sample_index, self.settings.sample_count

    def cancel(self):
        """Request cancellation; honoured before the next sample is taken."""
        self._cancel_requested = True

    def _set_state(self, state: CaptureState, sample_index: int = 0):
        self.state = state
        self.sample_index = sample_index
        if self.progress_callback is not None:
            self.progress_callback(state, sample_index, self.settings.sample_count)

    def _check_cancelled(self):
        if self._cancel_requested:
            raise CaptureCancelled("Capture cancelled")

    async def capture(self) -> CaptureResult:
        """
        Take the configured number of samples and merge them.

        Returns:
            CaptureResult

        Raises:
            CameraBusy: If a capture is already running on this session or the
                source is in use
            CameraNotReady: If the source yields no usable frame
            CaptureCancelled: If cancel() was called while sampling
            asyncio.CancelledError: If the surrounding task was cancelled
        """
        if self._running:
            raise CameraBusy("A capture is already in progress")

        self._running = True
        self._cancel_requested = False
        self.state = CaptureState.IDLE
        self.sample_index = 0
        sample_count = self.settings.sample_count
        delay_seconds = self.settings.sample_delay_ms / 1000.0
        samples: List[FrameFeatures] = []

        try:
            with self.source:
                log_capture("START", {'samples': sample_count, 'delay_ms': self.settings.sample_delay_ms})

                for index in range(sample_count):
                    self._check_cancelled()
                    self._set_state(CaptureState.SAMPLING, index + 1)

                    frame = self.source.read()
                    features = extract_eye_features(frame, self.settings, native_size=self.source.frame_size)
                    samples.append(features)
                    log_capture("SAMPLE", {'index': index + 1, 'quality': features.quality})

                    if index < sample_count - 1:
                        await asyncio.sleep(delay_seconds)

                result = build_capture_result(samples, self.settings)

        except CameraBusy:
            raise

        except (CaptureCancelled, asyncio.CancelledError):
            samples.clear()
            self._set_state(CaptureState.CANCELLED, self.sample_index)
            log_capture("CANCELLED", {'at_sample': self.sample_index})
            raise

        except Exception as e:
            samples.clear()
            self._set_state(CaptureState.FAILED, self.sample_index)
            log_capture("FAILED", {'at_sample': self.sample_index, 'error': type(e).__name__})
            log_error(e, context="capture")
            raise

        finally:
            self._running = False

        self._set_state(CaptureState.MERGED, sample_count)
        log_capture("MERGED", {
            'quality': result.quality,
            'accepted': result.accepted,
            'samples': result.sample_count,
        })

        return result
