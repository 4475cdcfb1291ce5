from __future__ import annotations

import io
import logging
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

from journal import storage
from journal.errors import BlobCleanupError, StoreError
from journal.storage import BlobDeleteOutcome


@pytest.fixture
def uploads_dir(monkeypatch, tmp_path):
    target = tmp_path / "uploads"
    monkeypatch.setenv("JOURNAL_UPLOADS_DIR", str(target))
    return target


def test_default_config_points_at_uploads(monkeypatch):
    monkeypatch.delenv("JOURNAL_UPLOADS_DIR", raising=False)

    cfg = storage._config()

    assert cfg.uploads_dir.is_absolute()
    assert cfg.uploads_dir.name == "uploads"


def test_config_rejects_file_as_uploads_dir(tmp_path):
    not_a_dir = tmp_path / "uploads"
    not_a_dir.write_text("x", encoding="utf-8")

    with pytest.raises(RuntimeError, match="must point to a directory"):
        storage._config({"JOURNAL_UPLOADS_DIR": str(not_a_dir)})


def test_generated_name_keeps_lowercased_extension():
    name = storage.generate_blob_name("Voice Memo.MP3", now_ms=1700000000000)

    assert name.startswith("audio-1700000000000-")
    assert name.endswith(".mp3")


def test_generated_name_without_extension():
    name = storage.generate_blob_name(None, now_ms=5)

    prefix, stamp, suffix = name.split("-")
    assert (prefix, stamp) == ("audio", "5")
    assert suffix.isdigit()


@pytest.mark.parametrize("original", ["clip.we\\ird", "clip.ext with space", "clip.waytoolongextension"])
def test_generated_name_drops_unsafe_extensions(original):
    name = storage.generate_blob_name(original, now_ms=5)

    assert "." not in name
    assert "/" not in name and "\\" not in name


def test_save_audio_writes_bytes_under_generated_name(uploads_dir):
    payload = b"\x00voice\x01"

    name = storage.save_audio(io.BytesIO(payload), "clip.webm")

    assert name.endswith(".webm")
    assert (uploads_dir / name).read_bytes() == payload


def test_save_audio_never_reuses_a_name(uploads_dir):
    names = {storage.save_audio(io.BytesIO(b"x"), "clip.ogg") for _ in range(20)}

    assert len(names) == 20


def test_save_audio_enforces_max_bytes_and_cleans_up(uploads_dir):
    with pytest.raises(ValueError, match="exceeds upload limit"):
        storage.save_audio(io.BytesIO(b"a" * 12), "too-large.webm", max_bytes=10)

    assert list(uploads_dir.iterdir()) == []


def test_save_audio_reports_io_failure_as_store_error(uploads_dir, monkeypatch):
    def _broken_open(self, *args, **kwargs):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(storage.Path, "open", _broken_open)

    with pytest.raises(StoreError):
        storage.save_audio(io.BytesIO(b"x"), "clip.webm")


def test_delete_blob_is_idempotent(uploads_dir):
    name = storage.save_audio(io.BytesIO(b"x"), "clip.webm")

    assert storage.delete_blob(name) is BlobDeleteOutcome.DELETED
    assert not (uploads_dir / name).exists()
    assert storage.delete_blob(name) is BlobDeleteOutcome.MISSING


def test_delete_blob_reports_failure_without_raising(uploads_dir, monkeypatch):
    name = storage.save_audio(io.BytesIO(b"x"), "clip.webm")

    def _broken_unlink(self, *args, **kwargs):
        raise PermissionError("busy")

    monkeypatch.setattr(storage.Path, "unlink", _broken_unlink)

    assert storage.delete_blob(name) is BlobDeleteOutcome.FAILED


@pytest.mark.parametrize("name", ["", ".", "..", "../secret", "nested/clip.webm", "a\\b"])
def test_blob_path_rejects_unsafe_names(uploads_dir, name):
    with pytest.raises(ValueError):
        storage.blob_path(name)


def test_blob_exists(uploads_dir):
    name = storage.save_audio(io.BytesIO(b"x"), "clip.webm")

    assert storage.blob_exists(name)
    assert not storage.blob_exists("audio-0-0.webm")
    assert not storage.blob_exists("../escape")


def test_failed_delete_logs_cleanup_error(uploads_dir, monkeypatch, caplog):
    name = storage.save_audio(io.BytesIO(b"x"), "clip.webm")

    def _broken_unlink(self, *args, **kwargs):
        raise PermissionError("busy")

    monkeypatch.setattr(storage.Path, "unlink", _broken_unlink)

    with caplog.at_level(logging.ERROR, logger="journal.storage"):
        storage.delete_blob(name)

    [record] = [r for r in caplog.records if r.getMessage() == "blob.delete_failed"]
    assert isinstance(record.exc_info[1], BlobCleanupError)
    assert isinstance(record.exc_info[1].__cause__, PermissionError)
    assert record.blob_name == name
