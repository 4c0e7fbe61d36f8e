"""Single and bulk export of watermarked photos.

The coordinator keeps one busy flag per export target (an entry id, or "all"
for the zip). A second request for a target that is still running is ignored,
which is what keeps a double click from saving the same file twice.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from app_logging import get_logger
from image_registry import ImageRegistry, ReleasedHandleError, UnknownImageError
from session_state import ALL_TARGET, JobState, SessionState
from watermark_compositor import WatermarkConfig, WatermarkError, composite_async

logger = get_logger("export")

ARCHIVE_NAME = "images-alv.zip"
ARCHIVE_FOLDER = "images-alv"
JPEG_CONTENT_TYPE = "image/jpeg"
ZIP_CONTENT_TYPE = "application/zip"

Saver = Callable[[str, bytes, str], object]


class FailurePolicy(str, Enum):
    SKIP = "skip"  # leave the failed photo out of the archive, keep going
    ABORT = "abort"  # stop at the first failure, save nothing


@dataclass
class ExportResult:
    target: str
    filename: Optional[str] = None
    exported: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (entry id, reason)

    @property
    def ok(self) -> bool:
        """True when a file was handed to the saver."""
        return self.filename is not None


# ---------------------------- Naming ---------------------------- #
def jpeg_filename(display_name: str, fallback: str) -> str:
    name = (display_name or "").strip().replace("/", "-").replace("\\", "-")
    if not name:
        return fallback
    if name.lower().endswith((".jpg", ".jpeg")):
        return name
    return f"{name}.jpg"


def single_export_name(display_name: str, position: int) -> str:
    return jpeg_filename(display_name, f"image-alv-{position}.jpg")


def archive_entry_name(display_name: str, position: int) -> str:
    return jpeg_filename(display_name, f"image-{position}.jpg")


def _dedupe(name: str, used: set) -> str:
    if name not in used:
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    n = 2
    while True:
        candidate = f"{stem} ({n}).{ext}" if ext else f"{stem} ({n})"
        if candidate not in used:
            return candidate
        n += 1


def build_archive(files: Sequence[Tuple[str, bytes]], folder: str = ARCHIVE_FOLDER) -> bytes:
    """Zip ``(name, data)`` pairs under ``folder/``; repeated names get a ``(n)`` suffix."""
    buf = io.BytesIO()
    used: set = set()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files:
            name = _dedupe(name, used)
            used.add(name)
            zf.writestr(f"{folder}/{name}" if folder else name, data)
    return buf.getvalue()


# ---------------------------- Savers ---------------------------- #
@dataclass
class SavedFile:
    filename: str
    data: bytes = field(repr=False)
    content_type: str = JPEG_CONTENT_TYPE


class MemorySaver:
    """Keeps saved files in memory (browser downloads are served from here)."""

    def __init__(self):
        self.files: List[SavedFile] = []

    def __call__(self, filename: str, data: bytes, content_type: str) -> SavedFile:
        saved = SavedFile(filename, data, content_type)
        self.files.append(saved)
        return saved

    @property
    def last(self) -> Optional[SavedFile]:
        return self.files[-1] if self.files else None


class DirectorySaver:
    """Writes files into ``output_dir``.

    A name this saver already wrote in the run gets a ``(n)`` suffix.
    """

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir).expanduser()
        self.paths: List[Path] = []

    def __call__(self, filename: str, data: bytes, content_type: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        name = _dedupe(Path(filename).name, {p.name for p in self.paths})
        path = self.output_dir / name
        path.write_bytes(data)
        self.paths.append(path)
        logger.info("wrote %s (%d bytes)", path, len(data))
        return path


# ---------------------------- Coordinator ---------------------------- #
class ExportCoordinator:
    def __init__(
        self,
        registry: ImageRegistry,
        watermark: Union[WatermarkConfig, Callable[[], WatermarkConfig]],
        saver: Saver,
        *,
        failure_policy: FailurePolicy = FailurePolicy.SKIP,
        exclusive: bool = True,
        settle_delay: float = 0.0,
        state: Optional[SessionState] = None,
    ):
        self.registry = registry
        self._watermark = watermark
        self.saver = saver
        self.failure_policy = FailurePolicy(failure_policy)
        # One registry-wide lock so "all" and single exports never interleave
        self.exclusive = exclusive
        self.settle_delay = settle_delay
        self.state = state or SessionState()
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop = None

    @property
    def watermark(self) -> WatermarkConfig:
        if isinstance(self._watermark, WatermarkConfig):
            return self._watermark
        return self._watermark()

    def is_running(self, target: str) -> bool:
        return self.state.is_running(target)

    @contextlib.asynccontextmanager
    async def _exclusive(self):
        if not self.exclusive:
            yield
            return
        # Streamlit drives each export through a fresh event loop
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        async with self._lock:
            yield

    def _begin(self, target: str) -> bool:
        if self.state.is_running(target):
            logger.info("export '%s' already running, request ignored", target)
            return False
        self.state = self.state.with_job(target, JobState.RUNNING)
        return True

    async def _finish(self, target: str) -> None:
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        self.state = self.state.with_job(target, JobState.IDLE)

    async def export_one(self, entry_id: str) -> Optional[ExportResult]:
        """Watermark one photo and save it as JPEG. None when already running."""
        if not self._begin(entry_id):
            return None
        result = ExportResult(target=entry_id)
        try:
            async with self._exclusive():
                try:
                    entry = self.registry.get(entry_id)
                    position = self.registry.position(entry_id)
                    source = entry.source.read()
                    data = await composite_async(source, self.watermark)
                except (WatermarkError, UnknownImageError, ReleasedHandleError) as e:
                    reason = str(e) if isinstance(e, WatermarkError) else f"image {entry_id} is gone"
                    logger.error("export of image %s failed: %s", entry_id, reason)
                    result.failed.append((entry_id, reason))
                    return result
                filename = single_export_name(entry.display_name, position)
                self.saver(filename, data, JPEG_CONTENT_TYPE)
                result.filename = filename
                result.exported.append(entry_id)
                logger.info("exported %s as %s", entry_id, filename)
        finally:
            await self._finish(entry_id)
        return result

    async def export_all(self) -> Optional[ExportResult]:
        """Watermark every photo, in registry order, into one zip archive."""
        if not self._begin(ALL_TARGET):
            return None
        result = ExportResult(target=ALL_TARGET)
        try:
            async with self._exclusive():
                config = self.watermark
                # Snapshot names and bytes up front; removals during the job
                # then cannot tear the batch.
                batch = [
                    (pos, entry.id, entry.display_name, entry.source.read())
                    for pos, entry in enumerate(self.registry.snapshot(), start=1)
                ]
                files: List[Tuple[str, bytes]] = []
                for pos, entry_id, name, source in batch:
                    try:
                        data = await composite_async(source, config)
                    except WatermarkError as e:
                        logger.error("image %d (%s) failed: %s", pos, entry_id, e)
                        result.failed.append((entry_id, str(e)))
                        if self.failure_policy is FailurePolicy.ABORT:
                            logger.warning("bulk export aborted, nothing saved")
                            return result
                        continue
                    files.append((archive_entry_name(name, pos), data))
                    result.exported.append(entry_id)
                archive = await asyncio.to_thread(build_archive, files)
                self.saver(ARCHIVE_NAME, archive, ZIP_CONTENT_TYPE)
                result.filename = ARCHIVE_NAME
                logger.info(
                    "exported %d/%d image(s) to %s", len(files), len(batch), ARCHIVE_NAME
                )
        finally:
            await self._finish(ALL_TARGET)
        return result
