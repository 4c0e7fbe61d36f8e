from __future__ import annotations

import pytest

from helpers import image_bytes
from image_registry import ImageRegistry


@pytest.fixture
def logo_bytes() -> bytes:
    # 2:1 opaque white logo
    return image_bytes((40, 20), (255, 255, 255), fmt="PNG")


@pytest.fixture
def registry():
    reg = ImageRegistry()
    yield reg
    reg.close()
