from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Optional


class InMemoryMetricsStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._audio_events: dict[str, int] = defaultdict(int)
        self._blob_cleanup: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._last_sweep: Optional[dict[str, Any]] = None

    def reset(self) -> None:
        with self._lock:
            self._audio_events.clear()
            self._blob_cleanup.clear()
            self._last_sweep = None

    def increment_audio_event(self, event: str) -> None:
        normalized = (event or "unknown").strip() or "unknown"
        with self._lock:
            self._audio_events[normalized] += 1

    def increment_blob_cleanup(self, source: str, outcome: str) -> None:
        normalized_source = (source or "unknown").strip() or "unknown"
        normalized_outcome = (outcome or "unknown").strip() or "unknown"
        with self._lock:
            self._blob_cleanup[normalized_source][normalized_outcome] += 1

    def record_sweep(self, summary: dict[str, Any]) -> None:
        with self._lock:
            self._last_sweep = dict(summary)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "audioEvents": dict(self._audio_events),
                "blobCleanup": {key: dict(value) for key, value in self._blob_cleanup.items()},
                "lastSweep": dict(self._last_sweep) if self._last_sweep is not None else None,
            }


def _escape_label(value: str) -> str:
    return value.replace("\\", r"\\").replace('"', r'\"')


def render_prometheus_metrics(snapshot: dict[str, Any]) -> str:
    lines: list[str] = []

    lines.append("# HELP journal_audio_events_total Audio uploads, deletions and plays.")
    lines.append("# TYPE journal_audio_events_total counter")
    for event, count in sorted((snapshot.get("audioEvents") or {}).items()):
        lines.append(f'journal_audio_events_total{{event="{_escape_label(str(event))}"}} {int(count)}')

    lines.append("# HELP journal_blob_cleanup_total Blob deletion outcomes by caller.")
    lines.append("# TYPE journal_blob_cleanup_total counter")
    for source, outcomes in sorted((snapshot.get("blobCleanup") or {}).items()):
        for outcome, count in sorted((outcomes or {}).items()):
            lines.append(
                "journal_blob_cleanup_total"
                f'{{source="{_escape_label(str(source))}",outcome="{_escape_label(str(outcome))}"}} {int(count)}'
            )

    sweep = snapshot.get("lastSweep") or {}
    lines.append("# HELP journal_retention_audios_deleted Audio rows removed by the last retention sweep.")
    lines.append("# TYPE journal_retention_audios_deleted gauge")
    lines.append(f"journal_retention_audios_deleted {int(sweep.get('audiosDeleted') or 0)}")
    lines.append("# HELP journal_retention_blob_failures Blob deletions that failed in the last retention sweep.")
    lines.append("# TYPE journal_retention_blob_failures gauge")
    lines.append(f"journal_retention_blob_failures {int(sweep.get('blobDeleteFailures') or 0)}")

    return "\n".join(lines) + "\n"


METRICS = InMemoryMetricsStore()
