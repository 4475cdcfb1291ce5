from __future__ import annotations

import os

import uvicorn

from journal.logging_config import configure_logging
from journal.runtime_config import listen_port


def main() -> int:
    configure_logging()
    uvicorn.run(
        "journal.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=listen_port(),
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
