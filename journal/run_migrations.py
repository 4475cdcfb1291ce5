#!/usr/bin/env python3
"""
Apply pending database migrations for the audio journal.
Safe to run repeatedly; already-applied migrations are skipped.
"""

from __future__ import annotations

import logging
import sys

from journal.db import get_database
from journal.errors import StoreError
from journal.logging_config import configure_logging


LOGGER = logging.getLogger("journal.migrations")


def main() -> int:
    configure_logging(stream=sys.stderr)
    try:
        db = get_database()
        applied = db.migrate()
        tables = db.list_tables()
    except (RuntimeError, StoreError):
        LOGGER.exception("migrations.failed")
        return 1

    if applied:
        LOGGER.info("migrations.applied", extra={"migrations": applied})
    else:
        LOGGER.info("migrations.up_to_date")
    print("Tables: " + ", ".join(tables))
    return 0


if __name__ == "__main__":
    sys.exit(main())
