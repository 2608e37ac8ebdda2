"""Counters, timings and periodic queue-size sampling."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Protocol

from redis.exceptions import RedisError

from .errors import RedisMQError


class MetricType(str, Enum):
    """Names of the tracked metrics."""

    PUBLISHED = "published"
    CONSUMED = "consumed"
    FAILED = "failed"
    PUBLISH_TIME = "publish_time"
    CONSUME_TIME = "consume_time"
    QUEUE_SIZE = "queue_size"
    DEAD_SIZE = "dead_size"


@dataclass
class MetricValue:
    """One metric; durations, min and max are in nanoseconds."""

    count: int = 0
    duration: int = 0
    average: float = 0.0
    min: int = 0
    max: int = 0


MonitorHook = Callable[[dict[MetricType, MetricValue]], None]


class _SizedQueue(Protocol):
    def size(self) -> int: ...

    def dead_size(self) -> int: ...


_SAMPLE_ERRORS = (RedisMQError, RedisError, OSError)


class Monitor:
    """Collects queue metrics and periodically reports them to hooks."""

    def __init__(self, mq: _SizedQueue, interval: float = 10.0) -> None:
        self._mq = mq
        self._values: dict[MetricType, MetricValue] = {}
        self._metrics_lock = threading.Lock()
        self._lock = threading.Lock()
        self._interval = interval
        self._hooks: list[MonitorHook] = []
        self._stop_event: threading.Event | None = None
        self._running = False

    def add_hook(self, hook: MonitorHook) -> None:
        """Register a function called with a metrics snapshot on every tick."""
        with self._lock:
            self._hooks.append(hook)

    def set_interval(self, interval: float) -> None:
        """Set the sampling interval in seconds; it applies from the next start."""
        if interval <= 0:
            raise ValueError("monitor interval must be positive")
        with self._lock:
            self._interval = interval

    def start(self) -> None:
        """Reset all metrics and begin sampling in a background thread."""
        with self._lock:
            if self._running:
                return
            self._running = True
            stop = threading.Event()
            self._stop_event = stop
            interval = self._interval
        with self._metrics_lock:
            self._values = {metric: MetricValue() for metric in MetricType}
        threading.Thread(
            target=self._run, args=(stop, interval), name="redismq-monitor", daemon=True
        ).start()

    def stop(self) -> None:
        """Stop sampling; recorded metrics are kept."""
        with self._lock:
            if not self._running:
                return
            if self._stop_event is not None:
                self._stop_event.set()
            self._running = False

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def _run(self, stop: threading.Event, interval: float) -> None:
        while not stop.wait(interval):
            self.update_queue_metrics()
            self.trigger_hooks()

    def update_queue_metrics(self) -> None:
        """Sample the queue and dead-letter sizes; failed samples are skipped."""
        try:
            size = self._mq.size()
        except _SAMPLE_ERRORS:
            pass
        else:
            self._set_count(MetricType.QUEUE_SIZE, size)
        try:
            dead = self._mq.dead_size()
        except _SAMPLE_ERRORS:
            pass
        else:
            self._set_count(MetricType.DEAD_SIZE, dead)

    def _set_count(self, metric: MetricType, count: int) -> None:
        with self._metrics_lock:
            value = self._values.get(metric)
            if value is not None:
                value.count = count

    def trigger_hooks(self) -> None:
        """Call every hook with a snapshot of the current metrics."""
        with self._lock:
            hooks = list(self._hooks)
        if not hooks:
            return
        snapshot = self.get_metrics()
        for hook in hooks:
            hook(snapshot)

    def record_publish(self, duration: int) -> None:
        """Record one published message taking ``duration`` nanoseconds."""
        self._record_metric(MetricType.PUBLISHED, 1, duration)
        self._record_duration(MetricType.PUBLISH_TIME, duration)

    def record_consume(self, duration: int) -> None:
        """Record one consumed message taking ``duration`` nanoseconds."""
        self._record_metric(MetricType.CONSUMED, 1, 0)
        self._record_duration(MetricType.CONSUME_TIME, duration)

    def record_failed(self) -> None:
        """Record one message whose handler failed."""
        self._record_metric(MetricType.FAILED, 1, 0)

    def _record_metric(self, metric: MetricType, count: int, duration: int) -> None:
        with self._metrics_lock:
            value = self._values.get(metric)
            if value is None:
                return
            value.count += count
            value.duration += duration
            if value.count > 0:
                value.average = value.duration / value.count

    def _record_duration(self, metric: MetricType, duration: int) -> None:
        with self._metrics_lock:
            value = self._values.get(metric)
            if value is None:
                return
            if value.min == 0 or duration < value.min:
                value.min = duration
            if duration > value.max:
                value.max = duration

    def get_metrics(self) -> dict[MetricType, MetricValue]:
        """Return a copy of all metrics."""
        with self._metrics_lock:
            return {metric: replace(value) for metric, value in self._values.items()}