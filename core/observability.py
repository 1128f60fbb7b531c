# Span timing and metric counters for the portal's fan-out operations (search)

from typing import Dict, Any, List, Optional
from contextlib import contextmanager
from collections import deque
import threading
import time
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Finished spans kept for inspection
SPAN_HISTORY = 200

@dataclass
class TraceSpan:
    """A timed operation, optionally nested under a parent span."""
    span_id: str
    operation: str
    start_time: float
    parent_id: Optional[str] = None
    end_time: Optional[float] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

class ObservabilityManager:
    """
    Keeps open spans, a bounded history of finished ones, gauges (last value)
    and counters (running totals). Safe to use from worker threads.
    """

    def __init__(self, history: int = SPAN_HISTORY):
        self.active_spans: Dict[str, TraceSpan] = {}
        self.finished_spans: deque = deque(maxlen=history)
        self.metrics: Dict[str, float] = {}
        self.counters: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._seq = 0

    def start_span(self, request_id: str, operation: str, metadata: Optional[Dict[str, Any]] = None,
                   parent_id: Optional[str] = None) -> TraceSpan:
        with self._lock:
            self._seq += 1
            span = TraceSpan(
                span_id=f"{request_id}:{operation}:{self._seq}",
                operation=operation,
                start_time=time.perf_counter(),
                parent_id=parent_id,
                metadata=dict(metadata or {}),
            )
            self.active_spans[span.span_id] = span
        logger.debug(f"Started span: {span.span_id}")
        return span

    def end_span(self, span_id: str, error: Optional[BaseException] = None) -> Optional[TraceSpan]:
        with self._lock:
            span = self.active_spans.pop(span_id, None)
            if span is None:
                return None
            span.end_time = time.perf_counter()
            if error is not None:
                span.error = type(error).__name__
            self.finished_spans.append(span)
        logger.debug(f"Ended span: {span.operation}, duration: {span.duration:.3f}s, error: {span.error}")
        return span

    def log_metric(self, name: str, value: float) -> None:
        with self._lock:
            self.metrics[name] = value
        logger.debug(f"Metric: {name} = {value}")

    def log_metrics(self, metrics: Dict[str, float]) -> None:
        for name, value in metrics.items():
            self.log_metric(name, value)

    def increment(self, name: str, amount: int = 1) -> int:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + amount
            return self.counters[name]

    def get_metrics(self) -> Dict[str, float]:
        with self._lock:
            return {**self.metrics, **self.counters}

    def recent_spans(self, operation: Optional[str] = None) -> List[TraceSpan]:
        with self._lock:
            spans = list(self.finished_spans)
        if operation:
            spans = [s for s in spans if s.operation == operation]
        return spans

    def clear(self) -> None:
        with self._lock:
            self.active_spans.clear()
            self.finished_spans.clear()
            self.metrics.clear()
            self.counters.clear()

# Global observability manager
observability = ObservabilityManager()

@contextmanager
def trace_request(request_id: str, operation: str, metadata: Optional[Dict[str, Any]] = None,
                  parent: Optional[TraceSpan] = None):
    """Time the enclosed block; the span records the exception type if one escapes."""
    span = observability.start_span(request_id, operation, metadata,
                                    parent_id=parent.span_id if parent else None)
    try:
        yield span
    except BaseException as e:
        observability.end_span(span.span_id, error=e)
        raise
    else:
        observability.end_span(span.span_id)

def log_metrics(metrics: Dict[str, float]) -> None:
    observability.log_metrics(metrics)

def increment(name: str, amount: int = 1) -> int:
    return observability.increment(name, amount)
