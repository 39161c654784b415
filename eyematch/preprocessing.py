"""Preprocessing module for EyeMatch v1.0

This module contains the frame preparation steps that run before feature
extraction:
- Image loading
- Centered region-of-interest crop and resampling to the working resolution
- Analysis window selection
- Luma conversion (Rec. 709 weights)

"""

from __future__ import annotations
import math
from pathlib import Path
from typing import Optional, Tuple
import cv2
import numpy as np

from eyematch.config import LUMA_WEIGHTS, CaptureSettings, DEFAULT_CAPTURE
from eyematch.exceptions import CameraNotReady


def load_color_image(path: Path) -> np.ndarray:
    """Load an image file as an 8-bit BGR frame.

    Args:
        path: Path to image file

    Returns:
        BGR image (uint8, H x W x 3)

    Raises:
        FileNotFoundError: If image cannot be loaded
    """
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise FileNotFoundError(f"Unable to read image: {path}")

    return image


def frame_dimensions(
    frame: Optional[np.ndarray],
    native_size: Optional[Tuple[int, int]] = None
) -> Tuple[int, int]:
    """Return (width, height) of a frame, raising CameraNotReady if it is empty.

    native_size is the (width, height) reported by the device; a device that
    reports zero width or height has not delivered a frame yet.
    """
    if frame is None:
        raise CameraNotReady()

    if native_size is not None and (not native_size[0] or not native_size[1]):
        raise CameraNotReady()

    frame = np.asarray(frame)
    if frame.ndim not in (2, 3) or frame.size == 0:
        raise CameraNotReady()

    height, width = frame.shape[:2]
    if not width or not height:
        raise CameraNotReady()

    return int(width), int(height)


def crop_analysis_window(
    frame: np.ndarray,
    settings: CaptureSettings = None,
    native_size: Optional[Tuple[int, int]] = None
) -> np.ndarray:
    """Crop the eye region of a camera frame.

    Takes a square of side floor(min(W, H) * source_crop_ratio) from the frame
    centre, resamples it to frame_size x frame_size, then keeps the centered
    window of side floor(frame_size * roi_ratio). Frame borders and lens
    vignetting fall outside the window.

    Args:
        frame: Camera frame (H x W, H x W x 3 or H x W x 4)
        settings: Capture geometry (uses config default if None)
        native_size: Device-reported (width, height), if known

    Returns:
        Analysis window with the frame's channel layout (float32)

    Raises:
        CameraNotReady: If the frame has no pixels
    """
    if settings is None:
        settings = DEFAULT_CAPTURE

    width, height = frame_dimensions(frame, native_size)
    frame = np.asarray(frame)

    source_size = max(1, int(math.floor(min(width, height) * settings.source_crop_ratio)))
    source_x = (width - source_size) // 2
    source_y = (height - source_size) // 2
    region = frame[source_y:source_y + source_size, source_x:source_x + source_size]

    if region.dtype != np.uint8:
        region = region.astype(np.float32)

    size = settings.frame_size
    resized = cv2.resize(region, (size, size), interpolation=cv2.INTER_AREA)

    roi_size = max(1, int(math.floor(size * settings.roi_ratio)))
    roi_offset = (size - roi_size) // 2
    window = resized[roi_offset:roi_offset + roi_size, roi_offset:roi_offset + roi_size]

    return window.astype(np.float32)


def to_luma(image: np.ndarray, channel_order: str = "bgr") -> np.ndarray:
    """Convert an image to perceptual luma L = 0.2126 R + 0.7152 G + 0.0722 B.

    Args:
        image: Grayscale (H x W) or color (H x W x 3/4) image
        channel_order: "bgr" (OpenCV frames) or "rgb"

    Returns:
        Luma plane (float64, 0-255 for 8-bit input)
    """
    image = np.asarray(image, dtype=np.float64)

    if image.ndim == 2:
        return image

    if image.ndim != 3 or image.shape[2] < 3:
        raise ValueError(f"Unsupported image shape for luma conversion: {image.shape}")

    if channel_order == "bgr":
        blue, green, red = image[..., 0], image[..., 1], image[..., 2]
    elif channel_order == "rgb":
        red, green, blue = image[..., 0], image[..., 1], image[..., 2]
    else:
        raise ValueError(f"channel_order must be 'bgr' or 'rgb', got {channel_order!r}")

    r_weight, g_weight, b_weight = LUMA_WEIGHTS
    return red * r_weight + green * g_weight + blue * b_weight
