"""
Metrics service for Prometheus monitoring
"""

from typing import Optional

from prometheus_client import (
    Counter, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)
import structlog

from ..models.position import BinlogPosition


class MetricsService:
    """Prometheus metrics for the snapshot, the event stream and checkpoints"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = structlog.get_logger()
        self.registry = registry or CollectorRegistry()
        self._state = "init"
        self._last_checkpoint: Optional[BinlogPosition] = None
        self._init_metrics()

    def _init_metrics(self) -> None:
        # === SNAPSHOT METRICS ===
        self.snapshot_rows_total = Counter(
            'binsync_snapshot_rows_total',
            'Rows copied by the initial full sync',
            ['target_table'],
            registry=self.registry
        )
        self.snapshot_batches_total = Counter(
            'binsync_snapshot_batches_total',
            'Initial sync batches by outcome',
            ['target_table', 'status'],
            registry=self.registry
        )

        # === EVENT METRICS ===
        self.events_total = Counter(
            'binsync_events_total',
            'Row change events by type and outcome',
            ['event_type', 'status'],
            registry=self.registry
        )

        # === CHECKPOINT METRICS ===
        self.checkpoint_writes_total = Counter(
            'binsync_checkpoint_writes_total',
            'Checkpoint writes by outcome',
            ['status'],
            registry=self.registry
        )
        self.checkpoint_offset = Gauge(
            'binsync_checkpoint_offset',
            'Binlog offset of the last written checkpoint',
            registry=self.registry
        )

        # === SERVICE METRICS ===
        self.service_state = Gauge(
            'binsync_service_state',
            'Current replication phase (1 for the active phase)',
            ['state'],
            registry=self.registry
        )

    def record_snapshot_batch(self, target_table: str, rows: int, success: bool) -> None:
        status = "success" if success else "error"
        self.snapshot_batches_total.labels(target_table=target_table, status=status).inc()
        if success:
            self.snapshot_rows_total.labels(target_table=target_table).inc(rows)

    def record_event(self, event_type: str, status: str) -> None:
        """status is one of applied, failed, skipped"""
        self.events_total.labels(event_type=event_type, status=status).inc()

    def record_checkpoint(self, position: Optional[BinlogPosition], success: bool) -> None:
        self.checkpoint_writes_total.labels(status="success" if success else "error").inc()
        if success and position is not None:
            self._last_checkpoint = position
            self.checkpoint_offset.set(position.pos)

    def set_state(self, state: str) -> None:
        if self._state:
            self.service_state.labels(state=self._state).set(0)
        self._state = state
        self.service_state.labels(state=state).set(1)

    def get_health_status(self) -> dict:
        healthy = self._state in ("init", "snapshot", "incremental")
        return {
            "status": "healthy" if healthy else "unhealthy",
            "state": self._state,
            "last_checkpoint": str(self._last_checkpoint) if self._last_checkpoint else None
        }

    def get_metrics(self) -> str:
        return generate_latest(self.registry).decode('utf-8')

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST
