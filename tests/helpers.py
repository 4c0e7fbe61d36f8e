"""Small in-memory photos and logos built with Pillow."""

from __future__ import annotations

import io

from PIL import Image

from image_registry import RawFile


def image_bytes(size=(64, 48), color=(40, 90, 160), fmt="JPEG") -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    if mode == "RGBA" and len(color) == 3:
        color = color + (255,)
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def photo(name: str, size=(64, 48), color=(40, 90, 160)) -> RawFile:
    return RawFile(name, image_bytes(size, color), "image/jpeg")


def corrupt(name: str = "broken.jpg") -> RawFile:
    return RawFile(name, b"definitely not a jpeg", "image/jpeg")
