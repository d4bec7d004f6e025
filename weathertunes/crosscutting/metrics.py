import json
import time
from datetime import datetime
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field
from contextlib import contextmanager
import threading


@dataclass
class SessionMetrics:
    """Counters for a single playlist assembly session."""
    session_id: str
    hints_received: int = 0
    hints_searched: int = 0
    collected_count: int = 0
    no_match_count: int = 0
    expired_in_batch_count: int = 0
    search_error_count: int = 0
    supplemental_query_count: int = 0
    supplemental_candidate_count: int = 0
    refresh_count: int = 0
    unique_candidate_count: int = 0
    final_track_count: int = 0
    batch_count: int = 0
    duration_ms: int = 0
    stage_durations_ms: Dict[str, int] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def hit_rate(self) -> float:
        """Share of searched hints that resolved to a track."""
        if self.hints_searched == 0:
            return 0.0
        return self.collected_count / self.hints_searched


class MetricsCollector:
    """Collects metrics for one assembly session.

    Counter updates are lock-guarded since the collector's worker threads
    record results concurrently.
    """

    def __init__(self, session_id: str):
        """Initialize metrics collector."""
        self.session_id = session_id
        self.metrics = SessionMetrics(session_id=session_id)
        self._lock = threading.Lock()

    def start_session(self) -> None:
        """Mark session start."""
        with self._lock:
            self.metrics.start_time = datetime.now()

    def end_session(self) -> None:
        """Mark session end."""
        with self._lock:
            self.metrics.end_time = datetime.now()
            if self.metrics.start_time:
                self.metrics.duration_ms = int(
                    (self.metrics.end_time - self.metrics.start_time).total_seconds() * 1000
                )

    def increment(self, name: str, amount: int = 1) -> None:
        """Increase a named counter."""
        with self._lock:
            if not hasattr(self.metrics, name):
                raise AttributeError(f"Unknown metric: {name}")
            setattr(self.metrics, name, getattr(self.metrics, name) + amount)

    def set(self, name: str, value: int) -> None:
        """Set a named counter."""
        with self._lock:
            if not hasattr(self.metrics, name):
                raise AttributeError(f"Unknown metric: {name}")
            setattr(self.metrics, name, value)

    @contextmanager
    def stage_timer(self, stage: str):
        """Context manager recording wall time spent in a stage."""
        started = time.monotonic()
        try:
            yield self
        finally:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            with self._lock:
                self.metrics.stage_durations_ms[stage] = elapsed_ms

    def get_metrics(self) -> SessionMetrics:
        """Get current session metrics."""
        with self._lock:
            return self.metrics

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        with self._lock:
            data = asdict(self.metrics)
            if data['start_time']:
                data['start_time'] = data['start_time'].isoformat()
            if data['end_time']:
                data['end_time'] = data['end_time'].isoformat()
            data['hit_rate'] = self.metrics.hit_rate
            return data

    def save_to_file(self, file_path: str) -> None:
        """Save metrics to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
