"""
Provenance store.

Best-effort writer and on-demand aggregate reader over the provenance ledger.
Writing a record must never break the request that produced it.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from llm_orchestrator.config.loader import DriftSettings
from llm_orchestrator.storage.models import ErrorEntry, ModelStats, RequestProvenance, WindowAggregate
from llm_orchestrator.storage.repository import DuplicateRequestError, ProvenanceRepository

from .drift import DriftReport, DriftSignal, DriftWarning, compute_drift
from .errors import ValidationError

logger = logging.getLogger(__name__)


class ProvenanceStore:
    """Append-only audit log of every attempted model call."""

    def __init__(
        self,
        repository: ProvenanceRepository,
        enabled: bool = True,
        drift_settings: Optional[DriftSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.enabled = enabled
        self.drift_settings = drift_settings or DriftSettings()
        self._clock = clock
        if enabled:
            repository.initialize_schema()
            logger.info("Provenance ledger ready at %s", repository.db_path)

    def log_request(self, record: RequestProvenance) -> bool:
        """Append one record. Never raises.

        A repeated request id is dropped so aggregates never double count.

        Returns:
            True if the record was written
        """
        if not self.enabled:
            return False
        try:
            self.repository.insert(record)
            return True
        except DuplicateRequestError:
            logger.warning("Duplicate provenance record dropped: %s", record.request_id)
        except (sqlite3.Error, OSError):
            logger.exception("Failed to log provenance for %s", record.request_id)
        return False

    def update_quality_score(self, request_id: str, score: float) -> bool:
        """Backfill the quality score (0-100) of a record, once.

        Raises:
            ValidationError: If score is outside 0-100
        """
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
            raise ValidationError("quality score must be between 0 and 100")
        if not self.enabled:
            return False
        try:
            patched = self.repository.backfill_quality_score(request_id, float(score))
        except sqlite3.Error:
            logger.exception("Failed to update quality score for %s", request_id)
            return False
        if not patched:
            logger.warning("Quality score not applied to %s (unknown or already scored)", request_id)
        return patched

    def get_model_stats(self, model_id: str, days: int = 7) -> Optional[ModelStats]:
        stats = self._read(
            lambda: self.repository.model_stats(self._since(days), model_id=model_id), []
        )
        return stats[0] if stats else None

    def get_all_model_stats(self, days: int = 7) -> List[ModelStats]:
        return self._read(lambda: self.repository.model_stats(self._since(days)), [])

    def get_task_distribution(self, days: int = 7) -> Dict[str, int]:
        return self._read(lambda: self.repository.task_distribution(self._since(days)), {})

    def get_recent_errors(self, limit: int = 10) -> List[ErrorEntry]:
        return self._read(lambda: self.repository.recent_errors(limit), [])

    def get_total_requests(self) -> int:
        return self._read(self.repository.count, 0)

    def detect_drift(self, model_id: str) -> DriftReport:
        """Compare the last 24h of a model against the 30 days before it.

        A failed read yields a no-signal report.
        """
        settings = self.drift_settings
        empty = WindowAggregate(sample_count=0, average_latency_ms=0.0, error_rate=0.0)
        now = self._clock()
        recent_start = now - timedelta(hours=settings.recent_hours)
        historical_start = now - timedelta(days=settings.historical_days)

        recent = self._read(
            lambda: self.repository.window_aggregate(model_id, recent_start, now), empty
        )
        historical = self._read(
            lambda: self.repository.window_aggregate(model_id, historical_start, recent_start),
            empty,
        )
        report = compute_drift(model_id, recent, historical, settings)
        if report.signal == DriftSignal.DRIFTING:
            logger.warning("Drift detected for %s: %s", model_id, "; ".join(report.reasons))
        return report

    def drift_warnings(self, model_ids: Iterable[str]) -> List[DriftWarning]:
        """Drift warnings for every drifting model."""
        warnings = []
        for model_id in model_ids:
            report = self.detect_drift(model_id)
            if report.drift_detected:
                warnings.append(DriftWarning(model_id, "; ".join(report.reasons)))
        return warnings

    def _since(self, days: int) -> datetime:
        return self._clock() - timedelta(days=days)

    def _read(self, query, default):
        if not self.enabled:
            return default
        try:
            return query()
        except sqlite3.Error:
            logger.exception("Provenance query failed")
            return default
