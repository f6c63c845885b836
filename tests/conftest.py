"""
Pytest configuration and fixtures for the episode stamper tests.

Source images are synthesised with Pillow so no binary fixtures are
checked in.
"""

import io
from pathlib import Path
from typing import Tuple

import pytest
from PIL import Image

from stamper.config import NamingRule, OutputSpec, RunConfig, StampStyle


def make_image_bytes(size: Tuple[int, int] = (400, 200), color=(255, 0, 0), fmt: str = 'PNG') -> bytes:
    """Encode a solid-color image"""
    buffer = io.BytesIO()
    mode = 'RGBA' if len(color) == 4 else 'RGB'
    Image.new(mode, size, color).save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def small_specs():
    """Scaled-down landscape/portrait specs to keep rendering fast"""
    return [
        OutputSpec(key="landscape", width=192, height=108, font_size=16, offset_x=3, offset_y=3),
        OutputSpec(key="portrait", width=50, height=75, font_size=10, offset_x=2, offset_y=2),
    ]


@pytest.fixture
def run_config(small_specs):
    """PNG run configuration with the reference naming rules"""
    return RunConfig(
        prefix="EP ",
        start_number=1,
        digits=2,
        output_specs=small_specs,
        naming={
            "landscape": NamingRule(filename_prefix="L_", tag="192x108"),
            "portrait": NamingRule(filename_prefix="P_", tag="50x75"),
        },
        output_format="png",
    )


@pytest.fixture
def plain_style():
    """No background box, no shadow"""
    return StampStyle(use_background=False, use_shadow=False)


@pytest.fixture
def image_dir(tmp_path) -> Path:
    """Folder with three valid images named out of natural order"""
    folder = tmp_path / "episodes"
    folder.mkdir()
    for name, color in (("img10.png", (0, 0, 255)), ("img2.png", (0, 255, 0)), ("img1.png", (255, 0, 0))):
        (folder / name).write_bytes(make_image_bytes((320, 240), color))
    return folder


@pytest.fixture
def corrupt_bytes() -> bytes:
    return b"this is not an image at all"
