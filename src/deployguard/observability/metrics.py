"""Prometheus-style metrics without external dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
import time
from types import TracebackType


@dataclass
class _LabeledCounter:
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class _LabeledHistogram:
    count: int = 0
    total: float = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value

    def time(self) -> _Timer:
        return _Timer(self)


@dataclass
class Counter:
    name: str
    description: str
    label_names: tuple[str, ...]
    values: dict[tuple[str, ...], _LabeledCounter] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def labels(self, **labels: str) -> _LabeledCounter:
        key = tuple(labels[name] for name in self.label_names)
        with self._lock:
            if key not in self.values:
                self.values[key] = _LabeledCounter()
            return self.values[key]


@dataclass
class Histogram:
    name: str
    description: str
    label_names: tuple[str, ...]
    values: dict[tuple[str, ...], _LabeledHistogram] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def labels(self, **labels: str) -> _LabeledHistogram:
        key = tuple(labels[name] for name in self.label_names)
        with self._lock:
            if key not in self.values:
                self.values[key] = _LabeledHistogram()
            return self.values[key]


DEPLOYMENTS = Counter(
    name="deployguard_deployments_total",
    description="Deployment attempts by terminal state",
    label_names=("environment", "state"),
)

CHECK_DURATION = Histogram(
    name="deployguard_health_check_duration_seconds",
    description="Duration of health checks",
    label_names=("check",),
)

BREAKER_TRANSITIONS = Counter(
    name="deployguard_breaker_transitions_total",
    description="Circuit breaker state transitions",
    label_names=("dependency", "state"),
)


def _label_str(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    return ",".join(f'{name}="{value}"' for name, value in zip(names, values))


def render_metrics() -> str:
    lines: list[str] = []
    for counter in (DEPLOYMENTS, BREAKER_TRANSITIONS):
        lines.append(f"# HELP {counter.name} {counter.description}")
        lines.append(f"# TYPE {counter.name} counter")
        for labels, value in counter.values.items():
            lines.append(f"{counter.name}{{{_label_str(counter.label_names, labels)}}} {value.value}")

    lines.append(f"# HELP {CHECK_DURATION.name} {CHECK_DURATION.description}")
    lines.append(f"# TYPE {CHECK_DURATION.name} summary")
    for labels, histogram in CHECK_DURATION.values.items():
        label_str = _label_str(CHECK_DURATION.label_names, labels)
        lines.append(f"{CHECK_DURATION.name}_count{{{label_str}}} {histogram.count}")
        lines.append(f"{CHECK_DURATION.name}_sum{{{label_str}}} {histogram.total}")

    return "\n".join(lines) + "\n"


class _Timer:
    def __init__(self, histogram: _LabeledHistogram) -> None:
        self._histogram = histogram
        self._start: float | None = None

    def __enter__(self) -> _Timer:
        self._start = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._start is None:
            return
        self._histogram.observe(time.perf_counter() - self._start)
