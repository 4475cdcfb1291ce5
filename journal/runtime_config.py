from __future__ import annotations

import os
from typing import Mapping

from journal.storage import _config as storage_config


def _require_positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw_value = env.get(name, str(default)).strip()
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc
    if parsed <= 0:
        raise RuntimeError(f"{name} must be a positive integer.")
    return parsed


def max_audio_upload_bytes(env: Mapping[str, str] | None = None) -> int:
    active_env = env if env is not None else os.environ
    return _require_positive_int(active_env, "JOURNAL_MAX_AUDIO_UPLOAD_MB", 200) * 1024 * 1024


def listen_port(env: Mapping[str, str] | None = None) -> int:
    active_env = env if env is not None else os.environ
    port = _require_positive_int(active_env, "PORT", 3000)
    if port > 65535:
        raise RuntimeError("PORT must be between 1 and 65535.")
    return port


def validate_runtime_environment(mode: str, env: Mapping[str, str] | None = None) -> None:
    active_env = env if env is not None else os.environ

    errors: list[str] = []
    database_url = active_env.get("DATABASE_URL", "").strip()
    if not database_url:
        errors.append("DATABASE_URL must be set.")

    try:
        storage_config(active_env)
    except RuntimeError as exc:
        errors.append(str(exc))

    for check in (max_audio_upload_bytes, listen_port):
        try:
            check(active_env)
        except RuntimeError as exc:
            errors.append(str(exc))

    if errors:
        error_lines = "\n- ".join(errors)
        raise RuntimeError(f"Invalid runtime environment for {mode}:\n- {error_lines}")
