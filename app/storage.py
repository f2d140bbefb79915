"""
Managed storage: the local directory media and stored HTML land in.

Files are served by the API under a fixed prefix (/uploads/<name>). Names are
generated from a nanosecond timestamp plus a random number, which keeps
concurrent uploads from overwriting each other in practice. This is collision
avoidance, not a security control: names are guessable.
"""
import logging
import os
import random
import shutil
import time
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".webm", ".avi", ".mov"})
AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".ogg", ".aac"})
HTML_EXTENSIONS = frozenset({".html", ".htm"})

ALLOWED_UPLOAD_EXTENSIONS = HTML_EXTENSIONS | IMAGE_EXTENSIONS | VIDEO_EXTENSIONS | AUDIO_EXTENSIONS


class StorageError(RuntimeError):
    """Managed storage cannot be created or written to."""


def ensure_storage_dir(path: str | Path) -> Path:
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Cannot create storage directory {path}: {e}") from e
    if not os.access(path, os.W_OK):
        raise StorageError(f"Storage directory is not writable: {path}")
    return path


def unique_filename(original_name: str) -> str:
    """`<ns timestamp>-<random>` + the original extension, e.g. 1718000000000000000-42.jpg"""
    ext = PurePosixPath(original_name).suffix
    return f"{time.time_ns()}-{random.randint(0, 10**9)}{ext}"


def copy_into_storage(source: Path, upload_dir: Path) -> Path:
    """Copy source verbatim into upload_dir under a fresh unique name."""
    target = Path(upload_dir) / unique_filename(source.name)
    try:
        shutil.copyfile(source, target)
    except OSError:
        target.unlink(missing_ok=True)
        raise
    return target


def public_path(stored: str | Path, url_prefix: str = "/uploads") -> str:
    return f"{url_prefix.rstrip('/')}/{Path(stored).name}"


def remove_files(paths) -> None:
    """Best-effort delete; a file already gone is not an error."""
    for p in paths:
        if not p:
            continue
        try:
            Path(p).unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove stored file", extra={"path": str(p)}, exc_info=True)


def safe_relative_path(name: str) -> Path:
    """
    Client-supplied upload name -> relative path safe to join under a staging dir.
    Directory uploads send names like "export/photos/a.jpg"; keep the
    sub-directories so relative references between the files still resolve.
    """
    parts = [
        p for p in PurePosixPath((name or "").replace("\\", "/")).parts
        if p not in ("", ".", "..", "/") and not p.endswith(":")
    ]
    if not parts:
        return Path("upload")
    return Path(*parts)


def is_allowed_upload(name: str) -> bool:
    return PurePosixPath(name or "").suffix.lower() in ALLOWED_UPLOAD_EXTENSIONS


def is_html_file(name: str) -> bool:
    return PurePosixPath(name or "").suffix.lower() in HTML_EXTENSIONS
