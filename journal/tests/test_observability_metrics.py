from __future__ import annotations

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

try:
    from fastapi.testclient import TestClient
except Exception:  # pragma: no cover
    try:
        from starlette.testclient import TestClient
    except Exception:  # pragma: no cover
        TestClient = None

if TestClient is None:
    pytest.skip("TestClient dependencies are unavailable", allow_module_level=True)

import journal.app as app_module
from journal.observability import METRICS, InMemoryMetricsStore, render_prometheus_metrics


def test_snapshot_counts_events_and_last_sweep():
    store = InMemoryMetricsStore()
    store.increment_audio_event("uploaded")
    store.increment_audio_event("uploaded")
    store.increment_audio_event(" ")
    store.increment_blob_cleanup("retention", "failed")
    store.record_sweep({"audiosDeleted": 4, "blobDeleteFailures": 1})

    snapshot = store.snapshot()

    assert snapshot["audioEvents"] == {"uploaded": 2, "unknown": 1}
    assert snapshot["blobCleanup"] == {"retention": {"failed": 1}}
    assert snapshot["lastSweep"] == {"audiosDeleted": 4, "blobDeleteFailures": 1}


def test_prometheus_rendering_includes_counters_and_sweep_gauges():
    store = InMemoryMetricsStore()
    store.increment_audio_event("played")
    store.increment_blob_cleanup("api", "missing")
    store.record_sweep({"audiosDeleted": 2, "blobDeleteFailures": 0})

    text = render_prometheus_metrics(store.snapshot())

    assert 'journal_audio_events_total{event="played"} 1' in text
    assert 'journal_blob_cleanup_total{source="api",outcome="missing"} 1' in text
    assert "journal_retention_audios_deleted 2" in text
    assert "journal_retention_blob_failures 0" in text
    assert text.endswith("\n")


def test_metrics_endpoints_expose_process_counters():
    METRICS.reset()
    METRICS.increment_audio_event("deleted")
    client = TestClient(app_module.app)

    as_json = client.get("/ops/metrics")
    as_text = client.get("/ops/metrics/prometheus")

    assert as_json.status_code == 200
    assert as_json.json()["audioEvents"] == {"deleted": 1}
    assert as_text.status_code == 200
    assert 'journal_audio_events_total{event="deleted"} 1' in as_text.text
