import os
import tempfile

# Logs and the default gallery must not land in the project tree while testing.
_TEST_ROOT = tempfile.mkdtemp(prefix="eyematch-tests-")
os.environ["EYEMATCH_LOG_DIR"] = os.path.join(_TEST_ROOT, "logs")
os.environ["EYEMATCH_GALLERY_DIR"] = os.path.join(_TEST_ROOT, "gallery")

import numpy as np
import pytest

from eyematch.models import EyeScanTemplate, ScanStats


def _random_bits(rng, length):
    return "".join("1" if bit else "0" for bit in rng.integers(0, 2, size=length))


def _make_template(seed, quality=90, bits=256, bins=16):
    rng = np.random.default_rng(seed)
    counts = rng.multinomial(1000, np.ones(bins) / bins)
    return EyeScanTemplate(
        hash=_random_bits(rng, bits),
        diff_hash=_random_bits(rng, bits),
        hist=[int(count) / 1000 for count in counts],
        quality=quality,
        stats=ScanStats(
            brightness=round(float(rng.uniform(90, 160)), 2),
            contrast=round(float(rng.uniform(20, 60)), 2),
            sharpness=round(float(rng.uniform(5, 25)), 2),
        ),
    )


def _flip_bits(bits, count):
    """Flip `count` bits spread evenly over the string."""
    step = len(bits) // count
    chars = list(bits)
    for index in range(0, step * count, step):
        chars[index] = "0" if chars[index] == "1" else "1"
    return "".join(chars)


def _textured_frame(seed=7, height=480, width=640, block=8):
    """Gray BGR frame of random 8x8 blocks (well exposed, high contrast)."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(height // block, width // block), dtype=np.uint8)
    plane = np.kron(blocks, np.ones((block, block), dtype=np.uint8))
    return np.dstack([plane, plane, plane])


@pytest.fixture
def make_template():
    return _make_template


@pytest.fixture
def flip_bits():
    return _flip_bits


@pytest.fixture
def make_frame():
    return _textured_frame


@pytest.fixture
def textured_frame():
    return _textured_frame()


@pytest.fixture
def black_frame():
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def gallery_dir(tmp_path):
    return tmp_path / "gallery"
