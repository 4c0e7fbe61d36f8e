"""Registry of uploaded photos.

The registry keeps the photos in upload order and is the only owner of their
resource handles: whatever removes an entry (single removal, clear, teardown)
releases its handle.
"""

from __future__ import annotations

import mimetypes
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from PIL import Image

from app_logging import get_logger
from watermark_compositor import load_image_bytes

logger = get_logger("registry")

DEFAULT_NOISE_TOKENS: Tuple[str, ...] = ("IMG", "DSC", "vite", "react")
FALLBACK_DISPLAY_NAME = "Image"


class UnknownImageError(KeyError):
    pass


class ReleasedHandleError(RuntimeError):
    pass


# ---------------------------- Input Files ---------------------------- #
@dataclass
class RawFile:
    """A file as received from an uploader: name, declared media type, bytes.

    Mirrors the interface of Streamlit's ``UploadedFile`` (``name``, ``type``,
    ``getvalue()``) so both can be handed to ``ImageRegistry.add_images``.
    """

    name: str
    data: bytes = field(repr=False)
    type: Optional[str] = None

    def getvalue(self) -> bytes:
        return self.data

    @classmethod
    def from_path(cls, path: Path) -> "RawFile":
        path = Path(path)
        return cls(name=path.name, data=path.read_bytes(), type=mimetypes.guess_type(path.name)[0])


def media_type_of(f) -> str:
    declared = (getattr(f, "type", None) or "").strip().lower()
    if declared:
        return declared
    return (mimetypes.guess_type(getattr(f, "name", "") or "")[0] or "").lower()


def is_image_file(f) -> bool:
    return media_type_of(f).startswith("image/")


def sanitize_display_name(
    filename: str, noise_tokens: Sequence[str] = DEFAULT_NOISE_TOKENS
) -> str:
    """Derive a readable default name from an uploaded filename.

    >>> sanitize_display_name("IMG_vite-001.jpg")
    '001'
    """
    name = Path(filename or "").stem
    for token in noise_tokens:
        if token:
            # Whole tokens only: "DSC" must not eat into "landscape"
            pattern = rf"(?<![a-z]){re.escape(token)}(?![a-z])"
            name = re.sub(pattern, "", name, flags=re.IGNORECASE)
    name = re.sub(r"[_-]", " ", name)
    name = re.sub(r"\s+", " ", name).strip()
    return name or FALLBACK_DISPLAY_NAME


# ---------------------------- Resource Handle ---------------------------- #
class ResourceHandle:
    """Owns the raw bytes of one upload and its lazily decoded bitmap."""

    def __init__(self, data: bytes):
        self._data: Optional[bytes] = data
        self._bitmap: Optional[Image.Image] = None
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def size_bytes(self) -> int:
        return len(self._data or b"")

    def read(self) -> bytes:
        data = self._data
        if data is None:
            raise ReleasedHandleError("resource handle already released")
        return data

    def bitmap(self) -> Image.Image:
        """Decoded RGBA bitmap, decoded on first use. Raises DecodeError."""
        with self._lock:
            if self._bitmap is None:
                self._bitmap = load_image_bytes(self.read())
            return self._bitmap

    def release(self) -> None:
        with self._lock:
            if self._bitmap is not None:
                self._bitmap.close()
                self._bitmap = None
            self._data = None


@dataclass
class ImageEntry:
    id: str
    display_name: str
    source: ResourceHandle = field(repr=False)
    filename: str = ""
    media_type: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------- Registry ---------------------------- #
class ImageRegistry:
    def __init__(self, noise_tokens: Sequence[str] = DEFAULT_NOISE_TOKENS):
        self.noise_tokens = tuple(noise_tokens)
        self._entries: List[ImageEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ImageEntry]:
        return iter(list(self._entries))

    def __enter__(self) -> "ImageRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def snapshot(self) -> Tuple[ImageEntry, ...]:
        return tuple(self._entries)

    def get(self, entry_id: str) -> ImageEntry:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        raise UnknownImageError(entry_id)

    def position(self, entry_id: str) -> int:
        """1-based position of the entry in upload order."""
        for idx, entry in enumerate(self._entries, start=1):
            if entry.id == entry_id:
                return idx
        raise UnknownImageError(entry_id)

    def add_images(self, files: Iterable) -> List[ImageEntry]:
        added: List[ImageEntry] = []
        for f in files:
            if not is_image_file(f):
                logger.debug(
                    "ignoring non-image upload %r (%s)",
                    getattr(f, "name", "?"),
                    media_type_of(f) or "unknown type",
                )
                continue
            name = getattr(f, "name", "") or ""
            entry = ImageEntry(
                id=uuid.uuid4().hex[:12],
                display_name=sanitize_display_name(name, self.noise_tokens),
                source=ResourceHandle(f.getvalue()),
                filename=name,
                media_type=media_type_of(f),
            )
            self._entries.append(entry)
            added.append(entry)
        if added:
            logger.info("added %d image(s), %d in registry", len(added), len(self._entries))
        return added

    def rename(self, entry_id: str, new_name: str) -> bool:
        entry = self.get(entry_id)
        cleaned = (new_name or "").strip()
        if not cleaned:
            return False
        entry.display_name = cleaned
        return True

    def remove(self, entry_id: str) -> ImageEntry:
        entry = self.get(entry_id)
        entry.source.release()
        self._entries.remove(entry)
        logger.info("removed image %s, %d left", entry_id, len(self._entries))
        return entry

    def remove_all(self, confirm: Callable[[], bool]) -> bool:
        """Release and drop every entry, once ``confirm()`` says yes."""
        if not confirm():
            return False
        self.close()
        return True

    def close(self) -> None:
        for entry in self._entries:
            entry.source.release()
        if self._entries:
            logger.info("released %d image(s)", len(self._entries))
        self._entries.clear()
