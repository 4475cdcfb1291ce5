from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional


LOGGER = logging.getLogger("journal.settings")


@dataclass
class AppSettings:
    """The single family-wide settings record."""

    global_book_title: Optional[str] = "Smart Reader"
    members: list[str] = field(default_factory=list)
    last_login_mode: Optional[str] = "lectura"

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": 1,
            "globalBookTitle": self.global_book_title,
            "members": list(self.members),
            "lastLoginMode": self.last_login_mode,
        }


DEFAULT_SETTINGS = AppSettings()


def _members_from_row(value: Any) -> list[str]:
    # Older rows stored members as a JSON-encoded string.
    if isinstance(value, str):
        try:
            value = json.loads(value or "[]")
        except ValueError:
            LOGGER.warning("settings.members_unreadable")
            return []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def load_settings(db) -> AppSettings:
    row = db.fetch_settings()
    if not row:
        return AppSettings(
            global_book_title=DEFAULT_SETTINGS.global_book_title,
            members=list(DEFAULT_SETTINGS.members),
            last_login_mode=DEFAULT_SETTINGS.last_login_mode,
        )
    return AppSettings(
        global_book_title=row.get("global_book_title"),
        members=_members_from_row(row.get("members")),
        last_login_mode=row.get("last_login_mode"),
    )


def save_settings(db, settings: AppSettings) -> None:
    db.save_settings(
        {
            "global_book_title": settings.global_book_title,
            "members": list(settings.members),
            "last_login_mode": settings.last_login_mode,
        }
    )
