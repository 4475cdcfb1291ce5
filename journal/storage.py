from __future__ import annotations

import logging
import os
import random
import re
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Mapping, Optional

from journal.errors import BlobCleanupError, StoreError


LOGGER = logging.getLogger("journal.storage")

BLOB_PREFIX = "audio"

_SAFE_EXT_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


@dataclass(frozen=True)
class StorageConfig:
    uploads_dir: Path


class BlobDeleteOutcome(str, Enum):
    DELETED = "deleted"
    MISSING = "missing"
    FAILED = "failed"


def _validate_config(config: StorageConfig) -> None:
    if config.uploads_dir.exists() and not config.uploads_dir.is_dir():
        raise RuntimeError("JOURNAL_UPLOADS_DIR must point to a directory.")


def _config(env: Mapping[str, str] | None = None) -> StorageConfig:
    active_env = env if env is not None else os.environ
    uploads_dir = Path(active_env.get("JOURNAL_UPLOADS_DIR", "uploads")).resolve()
    config = StorageConfig(uploads_dir=uploads_dir)
    _validate_config(config)
    return config


def ensure_uploads_dir() -> Path:
    cfg = _config()
    cfg.uploads_dir.mkdir(parents=True, exist_ok=True)
    return cfg.uploads_dir


def generate_blob_name(original_name: Optional[str], *, now_ms: Optional[int] = None) -> str:
    """Build a collision-resistant file name that keeps the upload's extension."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = random.randint(0, 999_999_999)
    ext = Path(original_name or "").suffix.lower()
    if not _SAFE_EXT_RE.match(ext):
        ext = ""
    return f"{BLOB_PREFIX}-{stamp}-{suffix}{ext}"


def blob_path(name: str) -> Path:
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise ValueError(f"Invalid blob name: {name!r}")
    return _config().uploads_dir / name


def _copy_with_limit(fileobj: BinaryIO, handle: BinaryIO, max_bytes: Optional[int] = None) -> int:
    total = 0
    while True:
        chunk = fileobj.read(1024 * 1024)
        if not chunk:
            break
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise ValueError(f"Audio file exceeds upload limit of {max_bytes} bytes.")
        handle.write(chunk)
    return total


def save_audio(fileobj: BinaryIO, original_name: Optional[str], max_bytes: Optional[int] = None) -> str:
    """Write an upload under a freshly generated name and return that name."""
    try:
        ensure_uploads_dir()
    except OSError as exc:
        raise StoreError("Could not prepare the uploads directory.") from exc
    name = generate_blob_name(original_name)
    target = blob_path(name)
    try:
        handle = target.open("xb")
    except OSError as exc:
        raise StoreError(f"Could not create blob {name}.") from exc
    try:
        with handle:
            _copy_with_limit(fileobj, handle, max_bytes=max_bytes)
    except ValueError:
        target.unlink(missing_ok=True)
        raise
    except OSError as exc:
        target.unlink(missing_ok=True)
        raise StoreError(f"Could not write blob {name}.") from exc
    return name


def _unlink_blob(name: str) -> None:
    try:
        blob_path(name).unlink()
    except FileNotFoundError:
        raise
    except (OSError, ValueError) as exc:
        raise BlobCleanupError(f"Could not delete blob {name}: {exc}") from exc


def delete_blob(name: str) -> BlobDeleteOutcome:
    """Remove a blob. A blob that is already gone counts as success."""
    try:
        _unlink_blob(name)
    except FileNotFoundError:
        LOGGER.warning("blob.missing", extra={"blob_name": name})
        return BlobDeleteOutcome.MISSING
    except BlobCleanupError as exc:
        LOGGER.error("blob.delete_failed", exc_info=exc, extra={"blob_name": name, "error": str(exc)})
        return BlobDeleteOutcome.FAILED
    return BlobDeleteOutcome.DELETED


def blob_exists(name: str) -> bool:
    try:
        return blob_path(name).is_file()
    except ValueError:
        return False
