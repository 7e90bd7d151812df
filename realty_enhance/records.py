"""
Image records and the active set of uploaded photos

An ImageRecord follows one user-selected file through its lifecycle:

    pending -> processing -> completed | failed
    processing -> pending     (cancelled while in flight)
    failed -> pending         (retry)

Nothing moves backward out of ``completed``.
"""
import io
import shutil
import logging
import mimetypes
import tempfile
import uuid
from pathlib import Path
from typing import Dict, Any, Iterable, Iterator, List, Optional, Union
from dataclasses import dataclass, field

from PIL import Image, UnidentifiedImageError

from .config import get_config, ProcessingStatus, UploaderConfig

logger = logging.getLogger(__name__)

PENDING = ProcessingStatus.PENDING
PROCESSING = ProcessingStatus.PROCESSING
COMPLETED = ProcessingStatus.COMPLETED
FAILED = ProcessingStatus.FAILED

ALLOWED_TRANSITIONS = {
    (PENDING, PROCESSING),
    (PROCESSING, COMPLETED),
    (PROCESSING, FAILED),
    (PROCESSING, PENDING),
    (FAILED, PENDING),
}


class RecordError(Exception):
    """Base error for image record operations"""


class InvalidTransitionError(RecordError):
    """Raised when a status change is not allowed by the lifecycle"""

    def __init__(self, record_id: str, current: ProcessingStatus, target: ProcessingStatus):
        self.record_id = record_id
        self.current = current
        self.target = target
        super().__init__(f"Record {record_id}: cannot move from {current.value} to {target.value}")


class RecordBusyError(RecordError):
    """Raised when removing a record that is being processed or held by a run"""


class PreviewHandle:
    """
    Locally generated thumbnail of the original photo

    The file lives until ``release()`` is called. Release is idempotent:
    only the first call deletes the file.
    """

    def __init__(self, path: Path):
        self.path = path
        self._released = False

    @classmethod
    def create(cls, source_bytes: bytes, directory: Path, name: str, size: int = 256) -> "PreviewHandle":
        """Render a JPEG thumbnail of ``source_bytes`` into ``directory``"""
        path = directory / f"{name}.jpg"
        with Image.open(io.BytesIO(source_bytes)) as img:
            img.thumbnail((size, size))
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.save(path, format="JPEG", quality=85)
        return cls(path)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Delete the preview file. Returns False if it was already released."""
        if self._released:
            logger.debug(f"Preview already released: {self.path.name}")
            return False
        self.path.unlink(missing_ok=True)
        self._released = True
        return True

    def __repr__(self):
        state = "released" if self._released else "live"
        return f"PreviewHandle({self.path.name}, {state})"


@dataclass
class ImageRecord:
    """One uploaded photo and its enhancement state"""
    source_bytes: bytes
    filename: str = "photo.jpg"
    content_type: str = "image/jpeg"
    preview: Optional[PreviewHandle] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ProcessingStatus = PENDING
    result_url: Optional[str] = None
    failure_reason: Optional[str] = None

    def _transition(self, target: ProcessingStatus):
        if (self.status, target) not in ALLOWED_TRANSITIONS:
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target

    def mark_processing(self):
        self._transition(PROCESSING)
        self.result_url = None
        self.failure_reason = None

    def mark_completed(self, result_url: str):
        self._transition(COMPLETED)
        self.result_url = result_url
        self.failure_reason = None

    def mark_failed(self, reason: str):
        self._transition(FAILED)
        self.result_url = None
        self.failure_reason = reason or "Unknown error"

    def return_to_pending(self):
        """Undo a started attempt after cancellation (no-op if already pending)"""
        if self.status != PENDING:
            self._transition(PENDING)
        self.result_url = None
        self.failure_reason = None

    def reset_failed(self):
        """Put a failed record back in the pending pool for a retry"""
        self._transition(PENDING)
        self.failure_reason = None

    @property
    def size_kb(self) -> float:
        return round(len(self.source_bytes) / 1024, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "content_type": self.content_type,
            "size_kb": self.size_kb,
            "status": self.status.value,
            "result_url": self.result_url,
            "failure_reason": self.failure_reason,
            "preview": str(self.preview.path) if self.preview and not self.preview.released else None,
        }


def detect_content_type(filename: str, source_bytes: bytes) -> Optional[str]:
    """Return an image/* content type, or None if the bytes are not an image"""
    guessed, _ = mimetypes.guess_type(filename)
    if guessed and not guessed.startswith("image/"):
        return None
    try:
        with Image.open(io.BytesIO(source_bytes)) as img:
            img.verify()
            pil_format = img.format
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None
    return guessed or Image.MIME.get(pil_format, "image/jpeg")


class ImageQueue:
    """
    Ordered set of photos the user has selected

    Owns the preview handles: every preview is released exactly once, when
    its record is removed or when the whole set is cleared. While a run
    holds the set (``lock()``), removal and clearing are refused.
    """

    def __init__(self, config: Optional[UploaderConfig] = None):
        self.config = config or get_config().uploader
        self._records: List[ImageRecord] = []
        self._locked = False
        self._owns_dir = self.config.preview_dir is None
        if self._owns_dir:
            self.preview_dir = Path(tempfile.mkdtemp(prefix="realty-previews-"))
        else:
            self.preview_dir = Path(self.config.preview_dir)
            self.preview_dir.mkdir(parents=True, exist_ok=True)

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> ImageRecord:
        return self._records[index]

    @property
    def records(self) -> List[ImageRecord]:
        return self._records

    @property
    def locked(self) -> bool:
        return self._locked

    def lock(self):
        """Hold the set for an enhancement run"""
        self._locked = True

    def unlock(self):
        self._locked = False

    @property
    def remaining_slots(self) -> int:
        return max(0, self.config.max_images - len(self._records))

    def get(self, record_id: str) -> Optional[ImageRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def add(self, source_bytes: bytes, filename: str, content_type: Optional[str] = None) -> Optional[ImageRecord]:
        """Add one photo. Returns None if it is not an image or the set is full."""
        if self.remaining_slots == 0:
            logger.warning(f"Queue full ({self.config.max_images}), skipping {filename}")
            return None

        if content_type is not None and not content_type.startswith("image/"):
            logger.warning(f"Skipping {filename}: content type {content_type} is not an image")
            return None

        detected = detect_content_type(filename, source_bytes)
        if detected is None:
            logger.warning(f"Skipping {filename}: not a readable image")
            return None

        record = ImageRecord(
            source_bytes=bytes(source_bytes),
            filename=filename,
            content_type=content_type or detected,
        )
        try:
            record.preview = PreviewHandle.create(
                record.source_bytes, self.preview_dir, record.id, self.config.preview_size
            )
        except (OSError, ValueError) as e:
            # verify() does not decode pixel data, so truncated files surface here
            logger.warning(f"Skipping {filename}: could not decode image ({e})")
            return None
        self._records.append(record)
        logger.debug(f"Queued {filename} as {record.id} ({record.size_kb}KB)")
        return record

    def add_files(self, paths: Iterable[Union[str, Path]]) -> List[ImageRecord]:
        """Add photos from disk; directories are expanded one level, sorted by name"""
        added = []
        for path in self._expand(paths):
            if self.remaining_slots == 0:
                logger.warning(f"Queue full ({self.config.max_images}), ignoring remaining files")
                break
            record = self.add(path.read_bytes(), path.name)
            if record is not None:
                added.append(record)
        return added

    def _expand(self, paths: Iterable[Union[str, Path]]) -> Iterator[Path]:
        for raw in paths:
            path = Path(raw)
            if path.is_dir():
                for child in sorted(path.iterdir()):
                    if child.is_file() and child.suffix.lower() in self.config.allowed_extensions:
                        yield child
            elif path.is_file():
                yield path
            else:
                logger.warning(f"No such file: {path}")

    def remove(self, record_id: str) -> ImageRecord:
        """Drop a record from the set and release its preview"""
        record = self.get(record_id)
        if record is None:
            raise KeyError(record_id)
        if self._locked:
            raise RecordBusyError(f"Cannot remove {record_id} while an enhancement run is active")
        if record.status == PROCESSING:
            raise RecordBusyError(f"Record {record_id} is being processed")
        self._records.remove(record)
        if record.preview is not None:
            record.preview.release()
        return record

    def clear(self):
        """Full reset: release every preview and empty the set"""
        if self._locked:
            raise RecordBusyError("Cannot clear while an enhancement run is active")
        busy = [r.id for r in self._records if r.status == PROCESSING]
        if busy:
            raise RecordBusyError(f"{len(busy)} record(s) still processing")
        for record in self._records:
            if record.preview is not None:
                record.preview.release()
        self._records = []

    def close(self):
        """Clear the set and remove the preview directory if this queue created it"""
        self.clear()
        if self._owns_dir:
            shutil.rmtree(self.preview_dir, ignore_errors=True)

    def pending(self) -> List[ImageRecord]:
        return [r for r in self._records if r.status == PENDING]

    def failed(self) -> List[ImageRecord]:
        return [r for r in self._records if r.status == FAILED]

    def completed(self) -> List[ImageRecord]:
        return [r for r in self._records if r.status == COMPLETED]

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ProcessingStatus}
        for record in self._records:
            counts[record.status.value] += 1
        return counts

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
