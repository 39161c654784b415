"""
EyeMatch Package - Eye-Scan Biometric Matching
Multi-sample webcam eye capture, perceptual-hash templates and weighted 1:1 / 1:N matching.
"""

from .models import EyeScanTemplate, EnrollmentRecord, VerificationResult, IdentificationResult
from .models_serialization import create_template, decode_template, encode_template, get_scan_quality
from .matching import EyeScanMatcher, verify
from .capture import CaptureSession, VideoCaptureSource, ImageSequenceSource
from .gallery import EnrollmentGallery
from .logger import get_logger

__version__ = "1.0.0"
__all__ = [
    'EyeScanTemplate', 'EnrollmentRecord', 'VerificationResult', 'IdentificationResult',
    'create_template', 'decode_template', 'encode_template', 'get_scan_quality',
    'EyeScanMatcher', 'verify',
    'CaptureSession', 'VideoCaptureSource', 'ImageSequenceSource',
    'EnrollmentGallery', 'get_logger',
]
