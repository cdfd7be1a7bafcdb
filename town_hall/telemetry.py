"""Telemetry for reaction evaluation and turn progression."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of metrics tracked."""
    GAME_PROGRESSION = "game_progression"
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"
    LLM_ACTIVITY = "llm_activity"
    SYSTEM_EVENT = "system_event"


@dataclass
class MetricEvent:
    """Individual metric event."""
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Buffers metric events and persists them to SQLite."""

    def __init__(self, db_path: Optional[Path] = None, flush_interval: float = 60.0):
        self.db_path = db_path or Path(os.getenv("TOWN_HALL_TELEMETRY_DB", "telemetry.db"))
        self._init_database()
        self._start_time = time.time()
        self._metrics_buffer: List[MetricEvent] = []
        self._flush_interval = flush_interval
        self._last_flush = time.time()

    def _init_database(self):
        """Initialize telemetry database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    metric_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value REAL NOT NULL,
                    tags TEXT,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_name
                ON metrics(metric_type, name)
            """)
            conn.commit()

    def track_llm_activity(
        self,
        demographic_id: str,
        success: bool,
        duration_ms: float,
        outcome: str = "valid",
        error: Optional[str] = None,
    ) -> None:
        """Record latency and outcome for one reaction evaluation."""

        tags = {
            "demographic": demographic_id,
            "success": "true" if success else "false",
            "outcome": outcome,
        }
        metadata: Dict[str, Any] = {"duration_ms": duration_ms}
        if error:
            metadata["error"] = error

        self.record(
            MetricType.LLM_ACTIVITY,
            demographic_id,
            duration_ms,
            tags=tags,
            metadata=metadata,
        )

    def track_turn(
        self,
        player_id: str,
        save_name: str,
        turn_number: int,
        approval_rating: float,
        economic_health: float,
        budget: float,
        fallbacks: int = 0,
    ) -> None:
        """Record the headline numbers after a completed turn."""
        self.record(
            MetricType.GAME_PROGRESSION,
            "turn_completed",
            float(turn_number),
            tags={"player_id": player_id, "save_name": save_name},
            metadata={
                "approval_rating": approval_rating,
                "economic_health": economic_health,
                "budget": budget,
                "fallbacks": fallbacks,
            },
        )

    def track_error(
        self,
        error_type: str,
        operation: Optional[str] = None,
        player_id: Optional[str] = None,
        error_details: Optional[str] = None
    ):
        """Track errors and failures."""
        tags = {}
        if operation:
            tags["operation"] = operation
        if player_id:
            tags["player_id"] = player_id

        self.record(
            MetricType.ERROR_RATE,
            error_type,
            1.0,
            tags=tags,
            metadata={"error_details": error_details} if error_details else {}
        )

    def track_performance(
        self,
        operation: str,
        duration_ms: float,
        tags: Optional[Dict[str, str]] = None
    ):
        """Track performance metrics."""
        self.record(
            MetricType.PERFORMANCE,
            operation,
            duration_ms,
            tags=tags or {},
            metadata={"unit": "milliseconds"}
        )

    def track_system_event(
        self,
        event: str,
        *,
        source: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record lifecycle or health events."""

        tags = {}
        if source:
            tags["source"] = source

        metadata = {}
        if reason:
            metadata["reason"] = reason

        self.record(
            MetricType.SYSTEM_EVENT,
            event,
            1.0,
            tags=tags,
            metadata=metadata,
        )

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """Record a metric event."""
        event = MetricEvent(
            timestamp=time.time(),
            metric_type=metric_type,
            name=name,
            value=value,
            tags=tags or {},
            metadata=metadata or {}
        )

        self._metrics_buffer.append(event)

        if len(self._metrics_buffer) >= 100 or \
           time.time() - self._last_flush > self._flush_interval:
            self.flush()

    def flush(self):
        """Flush buffered metrics to database."""
        if not self._metrics_buffer:
            return

        try:
            with sqlite3.connect(self.db_path) as conn:
                for event in self._metrics_buffer:
                    conn.execute("""
                        INSERT INTO metrics
                        (timestamp, metric_type, name, value, tags, metadata)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        event.timestamp,
                        event.metric_type.value,
                        event.name,
                        event.value,
                        json.dumps(event.tags),
                        json.dumps(event.metadata)
                    ))
                conn.commit()

            logger.info(f"Flushed {len(self._metrics_buffer)} metrics to database")
            self._metrics_buffer.clear()
            self._last_flush = time.time()

        except sqlite3.Error as e:
            logger.error(f"Failed to flush metrics: {e}")

    def get_llm_activity_summary(
        self,
        hours: int = 24
    ) -> Dict[str, Dict[str, Any]]:
        """Summarise reaction evaluations per demographic."""

        start_time = time.time() - (hours * 3600)

        query = """
            SELECT
                name,
                SUM(CASE WHEN json_extract(tags, '$.success') = 'true' THEN 1 ELSE 0 END) as success_count,
                SUM(CASE WHEN json_extract(tags, '$.success') = 'false' THEN 1 ELSE 0 END) as failure_count,
                COUNT(*) as total_calls,
                AVG(value) as avg_duration,
                MAX(value) as max_duration
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
            GROUP BY name
        """

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(query, [
                MetricType.LLM_ACTIVITY.value,
                start_time,
            ])
            summary: Dict[str, Dict[str, Any]] = {}
            for row in cursor.fetchall():
                successes = row[1] or 0
                failures = row[2] or 0
                total = row[3] or 0
                summary[row[0]] = {
                    "total_calls": total,
                    "successes": successes,
                    "failures": failures,
                    "success_rate": successes / total if total else 0.0,
                    "avg_duration_ms": row[4] or 0.0,
                    "max_duration_ms": row[5] or 0.0,
                }

            return summary

    def get_fallback_breakdown(self, hours: int = 24) -> Dict[str, int]:
        """Count evaluations by outcome (valid, timeout, malformed, ...)."""
        start_time = time.time() - (hours * 3600)
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT json_extract(tags, '$.outcome') as outcome, COUNT(*)
                FROM metrics
                WHERE metric_type = ? AND timestamp >= ?
                GROUP BY outcome
                """,
                [MetricType.LLM_ACTIVITY.value, start_time],
            )
            return {row[0]: row[1] for row in cursor.fetchall() if row[0]}

    def get_turn_summary(self, hours: int = 24) -> Dict[str, Any]:
        start_time = time.time() - (hours * 3600)
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*),
                    AVG(json_extract(metadata, '$.approval_rating')),
                    AVG(json_extract(metadata, '$.economic_health')),
                    SUM(json_extract(metadata, '$.fallbacks'))
                FROM metrics
                WHERE metric_type = ? AND name = 'turn_completed' AND timestamp >= ?
                """,
                [MetricType.GAME_PROGRESSION.value, start_time],
            ).fetchone()
        return {
            "turns": row[0] or 0,
            "avg_approval_rating": row[1],
            "avg_economic_health": row[2],
            "fallback_reactions": row[3] or 0,
        }

    def get_error_summary(
        self,
        hours: int = 24
    ) -> Dict[str, int]:
        """Get error counts for the last N hours."""
        start_time = time.time() - (hours * 3600)

        query = """
            SELECT name, COUNT(*) as error_count
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
            GROUP BY name
            ORDER BY error_count DESC
        """

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(query, [
                MetricType.ERROR_RATE.value,
                start_time
            ])
            return {row[0]: row[1] for row in cursor.fetchall()}

    def get_performance_summary(
        self,
        operation: Optional[str] = None,
        hours: int = 1
    ) -> Dict[str, Dict[str, float]]:
        """Get performance statistics for operations."""
        start_time = time.time() - (hours * 3600)

        query = """
            SELECT
                name,
                AVG(value) as avg_duration,
                MIN(value) as min_duration,
                MAX(value) as max_duration,
                COUNT(*) as sample_count
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
        """
        params: List[Any] = [MetricType.PERFORMANCE.value, start_time]

        if operation:
            query += " AND name = ?"
            params.append(operation)

        query += " GROUP BY name"

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            results = {}
            for row in cursor.fetchall():
                results[row[0]] = {
                    "avg_duration_ms": row[1],
                    "min_duration_ms": row[2],
                    "max_duration_ms": row[3],
                    "sample_count": row[4]
                }
            return results

    def generate_report(self) -> Dict[str, Any]:
        """Generate a telemetry report covering the last day."""
        self.flush()
        return {
            "generated_at": datetime.now().isoformat(),
            "uptime_seconds": time.time() - self._start_time,
            "turns_24h": self.get_turn_summary(24),
            "llm_activity_24h": self.get_llm_activity_summary(24),
            "reaction_outcomes_24h": self.get_fallback_breakdown(24),
            "errors_24h": self.get_error_summary(24),
            "performance_1h": self.get_performance_summary(hours=1),
        }

    def cleanup_old_data(self, days_to_keep: int = 30):
        """Clean up old telemetry data."""
        cutoff_time = time.time() - (days_to_keep * 86400)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM metrics WHERE timestamp < ?",
                (cutoff_time,)
            )
            deleted = cursor.rowcount
            conn.commit()

        logger.info(f"Cleaned up {deleted} old metric events")
        return deleted

    def close(self) -> None:
        self.flush()


class track_duration:
    """Context manager for tracking operation duration."""

    def __init__(
        self,
        telemetry: Optional[TelemetryCollector],
        operation: str,
        tags: Optional[Dict[str, str]] = None,
    ):
        self.telemetry = telemetry
        self.operation = operation
        self.tags = tags or {}
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.telemetry is None:
            return
        duration_ms = (time.time() - self.start_time) * 1000
        self.telemetry.track_performance(self.operation, duration_ms, self.tags)

        if exc_type:
            self.telemetry.track_error(
                exc_type.__name__,
                operation=self.operation,
                error_details=str(exc_val)
            )


__all__ = ["MetricType", "MetricEvent", "TelemetryCollector", "track_duration"]
