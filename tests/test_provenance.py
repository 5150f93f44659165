"""
Unit tests for the provenance store.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from llm_orchestrator.config.loader import DriftSettings
from llm_orchestrator.core.drift import DriftSignal
from llm_orchestrator.core.errors import ValidationError
from llm_orchestrator.core.provenance import ProvenanceStore
from llm_orchestrator.storage.models import RequestProvenance
from llm_orchestrator.storage.repository import ProvenanceRepository

NOW = datetime(2024, 6, 30, 12, 0, 0)
MODEL = "llama-3.3-70b-versatile"


def _record(request_id, created_at=NOW, latency_ms=100, error=None, model_id=MODEL,
            task_type="analysis"):
    return RequestProvenance(
        request_id=request_id,
        model_id=model_id,
        task_type=task_type,
        prompt_hash="p",
        output_hash="o",
        latency_ms=latency_ms,
        error=error,
        created_at=created_at,
    )


class TestProvenanceStore:
    """Best-effort writes and on-demand reads."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.store = ProvenanceStore(ProvenanceRepository(self.db_path), clock=lambda: NOW)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_schema_created_on_init(self):
        assert self.store.get_total_requests() == 0

    def test_log_request(self):
        assert self.store.log_request(_record("req_1")) is True
        assert self.store.get_total_requests() == 1

    def test_duplicate_is_dropped(self):
        self.store.log_request(_record("req_1"))
        assert self.store.log_request(_record("req_1")) is False
        assert self.store.get_total_requests() == 1

    def test_write_failure_never_raises(self):
        repository = Mock()
        repository.insert.side_effect = sqlite3.OperationalError("database is locked")
        store = ProvenanceStore(repository)

        assert store.log_request(_record("req_1")) is False

    def test_disabled_store_writes_nothing(self):
        repository = Mock()
        store = ProvenanceStore(repository, enabled=False)

        assert store.log_request(_record("req_1")) is False
        assert store.get_all_model_stats() == []
        repository.insert.assert_not_called()
        repository.initialize_schema.assert_not_called()

    def test_update_quality_score(self):
        self.store.log_request(_record("req_1"))

        assert self.store.update_quality_score("req_1", 75) is True
        assert self.store.update_quality_score("req_1", 10) is False
        assert self.store.get_model_stats(MODEL).average_quality_score == 75.0

    @pytest.mark.parametrize("score", [-1, 101, "high", True])
    def test_update_quality_score_validates(self, score):
        with pytest.raises(ValidationError, match="between 0 and 100"):
            self.store.update_quality_score("req_1", score)

    def test_stats_window(self):
        self.store.log_request(_record("recent", created_at=NOW - timedelta(days=1)))
        self.store.log_request(_record("old", created_at=NOW - timedelta(days=8)))

        assert self.store.get_model_stats(MODEL).total_requests == 1
        assert self.store.get_model_stats(MODEL, days=30).total_requests == 2
        assert self.store.get_model_stats("qwen/qwen3-32b") is None

    def test_task_distribution_and_errors(self):
        self.store.log_request(_record("a", task_type="summarization"))
        self.store.log_request(_record("b", task_type="critique", error="bad json"))

        assert self.store.get_task_distribution() == {"summarization": 1, "critique": 1}
        errors = self.store.get_recent_errors()
        assert [e.request_id for e in errors] == ["b"]

    def test_read_failure_returns_default(self):
        repository = Mock()
        repository.model_stats.side_effect = sqlite3.OperationalError("no such table")
        store = ProvenanceStore(repository)

        assert store.get_all_model_stats() == []
        assert store.get_model_stats(MODEL) is None


class TestDriftDetection:
    """detect_drift() over real windows."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.store = ProvenanceStore(
            ProvenanceRepository(self.db_path),
            drift_settings=DriftSettings(min_samples=5),
            clock=lambda: NOW,
        )

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _seed(self, prefix, count, age, latency_ms, errors=0):
        for i in range(count):
            self.store.log_request(_record(
                f"{prefix}_{i}",
                created_at=NOW - age - timedelta(minutes=i),
                latency_ms=latency_ms,
                error="failed" if i < errors else None,
            ))

    def test_no_signal_with_few_samples(self):
        self._seed("recent", 3, timedelta(hours=1), 100)
        self._seed("hist", 10, timedelta(days=5), 100)

        report = self.store.detect_drift(MODEL)
        assert report.signal == DriftSignal.NO_SIGNAL
        assert report.drift_detected is None

    def test_latency_drift(self):
        self._seed("recent", 5, timedelta(hours=1), 200)
        self._seed("hist", 10, timedelta(days=5), 100)

        report = self.store.detect_drift(MODEL)
        assert report.drift_detected is True
        assert report.latency_change_pct == 100.0

    def test_stable(self):
        self._seed("recent", 5, timedelta(hours=1), 110)
        self._seed("hist", 10, timedelta(days=5), 100)

        report = self.store.detect_drift(MODEL)
        assert report.drift_detected is False

    def test_rows_outside_history_are_ignored(self):
        self._seed("recent", 5, timedelta(hours=1), 500)
        self._seed("ancient", 10, timedelta(days=40), 100)

        assert self.store.detect_drift(MODEL).signal == DriftSignal.NO_SIGNAL

    def test_drift_warnings(self):
        self._seed("recent", 5, timedelta(hours=1), 100, errors=2)
        self._seed("hist", 10, timedelta(days=5), 100)

        warnings = self.store.drift_warnings([MODEL, "qwen/qwen3-32b"])
        assert len(warnings) == 1
        assert warnings[0].model_id == MODEL
        assert "Error rate" in warnings[0].message

    def test_disabled_store_has_no_signal(self):
        store = ProvenanceStore(Mock(), enabled=False)
        assert store.detect_drift(MODEL).signal == DriftSignal.NO_SIGNAL

    def test_read_failure_has_no_signal(self):
        repository = Mock()
        repository.window_aggregate.side_effect = sqlite3.OperationalError("database is locked")
        store = ProvenanceStore(repository, clock=lambda: NOW)

        report = store.detect_drift(MODEL)

        assert report.signal == DriftSignal.NO_SIGNAL
        assert report.drift_detected is None
        assert store.drift_warnings([MODEL]) == []
