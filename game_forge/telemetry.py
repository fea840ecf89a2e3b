"""Pipeline telemetry: run timing, rolling aggregates, threshold alerts.

Metric families:

    generation              whole-run duration and success
    stage:<name>            per-stage duration inside a run
    validation              quality scores (also kept per genre)
    ai_request              text-generation response time and tokens
    requirement_collection  completion score per conversation turn

Every family keeps a running count and mean plus a bounded window of recent
samples for trend comparison. Alerts fire when a watched mean crosses its
threshold and are delivered to listeners without blocking the caller.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

from game_forge.events import Listener, notify
from game_forge.models import utcnow

logger = logging.getLogger(__name__)

TREND_SPAN = 10
COMPLETED_RUNS_MAX = 1000
RECENT_ALERTS_MAX = 50
MIN_SAMPLES_FOR_RATE = 5
BOTTLENECK_SHARE = 0.3
STALE_RUN_SECONDS = 24 * 3600

Severity = Literal["low", "medium", "high"]


def current_memory_bytes() -> int | None:
    """Peak resident set size of this process, where the platform reports it."""
    try:
        import resource
    except ImportError:
        return None
    # ru_maxrss is in kilobytes on Linux
    return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024


class Alert(BaseModel):
    type: str
    severity: Severity
    message: str
    value: float
    threshold: float
    timestamp: str = Field(default_factory=lambda: utcnow().isoformat())


@dataclass
class Thresholds:
    max_generation_ms: float = 60000
    min_validation_score: float = 70
    max_response_ms: float = 10000
    max_memory_bytes: float = 1024 * 1024 * 1024
    min_success_rate: float = 0.8


class RollingMetric:
    """Running count/mean with a bounded window of recent samples."""

    def __init__(self, window: int = 100) -> None:
        self.count = 0
        self.total = 0.0
        self.successes = 0
        self.samples: deque[float] = deque(maxlen=window)

    def add(self, value: float, success: bool = True) -> None:
        self.count += 1
        self.total += value
        if success:
            self.successes += 1
        self.samples.append(value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.count if self.count else 1.0

    def trend(self, span: int = TREND_SPAN) -> dict[str, Any] | None:
        """Compare the mean of the last `span` samples with the `span` before."""
        if len(self.samples) < span * 2:
            return None
        values = list(self.samples)
        recent = sum(values[-span:]) / span
        previous = sum(values[-2 * span:-span]) / span
        change = (recent - previous) / previous if previous else 0.0
        direction = "flat"
        if change > 0.05:
            direction = "up"
        elif change < -0.05:
            direction = "down"
        return {
            "recent": round(recent, 2),
            "previous": round(previous, 2),
            "change": round(change, 4),
            "direction": direction,
        }

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "mean": round(self.mean, 2),
            "success_rate": round(self.success_rate, 4),
            "window": len(self.samples),
        }


@dataclass
class RunHandle:
    run_id: str
    session_id: str
    started: float
    last_mark: float
    metadata: dict[str, Any] = field(default_factory=dict)
    stages: list[dict[str, Any]] = field(default_factory=list)


class TelemetryMonitor:
    """Records pipeline runs and raises alerts on threshold crossings.

    Args:
        window:       Samples kept per metric family.
        thresholds:   Alert thresholds.
        clock:        Monotonic seconds, injectable for tests.
        memory_probe: Returns process memory in bytes, or None.
    """

    def __init__(
        self,
        window: int = 100,
        thresholds: Thresholds | None = None,
        clock: Callable[[], float] = time.monotonic,
        memory_probe: Callable[[], int | None] = current_memory_bytes,
    ) -> None:
        self._window = window
        self.thresholds = thresholds or Thresholds()
        self._clock = clock
        self._memory_probe = memory_probe
        self._metrics: dict[str, RollingMetric] = {}
        self._genre_scores: dict[str, RollingMetric] = {}
        self._active: dict[str, RunHandle] = {}
        self._completed: deque[dict[str, Any]] = deque(maxlen=COMPLETED_RUNS_MAX)
        self._alerts: deque[Alert] = deque(maxlen=RECENT_ALERTS_MAX)
        self._breached: set[str] = set()
        self._listeners: list[Listener] = []

    # -- listeners -------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def metric(self, family: str) -> RollingMetric:
        found = self._metrics.get(family)
        if found is None:
            found = self._metrics[family] = RollingMetric(self._window)
        return found

    # -- runs --------------------------------------------------------------------

    def start_run(self, session_id: str, metadata: dict[str, Any] | None = None) -> RunHandle:
        now = self._clock()
        handle = RunHandle(
            run_id=uuid.uuid4().hex,
            session_id=session_id,
            started=now,
            last_mark=now,
            metadata=dict(metadata or {}),
        )
        self._active[handle.run_id] = handle
        logger.debug("telemetry run %s started for session %s", handle.run_id, session_id)
        return handle

    def record_stage(self, handle: RunHandle, name: str, data: dict[str, Any] | None = None) -> float:
        """Record a finished stage. Duration is measured from the previous mark
        unless data carries duration_ms. Returns the duration in ms."""
        data = dict(data or {})
        now = self._clock()
        duration_ms = float(data.pop("duration_ms", (now - handle.last_mark) * 1000))
        handle.last_mark = now
        handle.stages.append({"name": name, "duration_ms": round(duration_ms, 2), **data})
        self.metric(f"stage:{name}").add(duration_ms)

        if name == "validation" and "score" in data:
            self.record_validation(data["score"], data.get("genre"))
        return duration_ms

    def complete_run(self, handle: RunHandle, success: bool, data: dict[str, Any] | None = None) -> dict[str, Any]:
        duration_ms = (self._clock() - handle.started) * 1000
        self._active.pop(handle.run_id, None)
        generation = self.metric("generation")
        generation.add(duration_ms, success)
        summary = {
            "run_id": handle.run_id,
            "session_id": handle.session_id,
            "success": success,
            "duration_ms": round(duration_ms, 2),
            "stages": handle.stages,
            **handle.metadata,
            **(data or {}),
        }
        self._completed.append(summary)
        logger.info(
            "telemetry run %s %s in %.0fms",
            handle.run_id, "succeeded" if success else "failed", duration_ms,
        )

        self._check("long_generation_time", "high", generation.mean,
                    self.thresholds.max_generation_ms, above=True,
                    message="Average generation time is {value:.0f}ms")
        if generation.count >= MIN_SAMPLES_FOR_RATE:
            self._check("low_success_rate", "high", generation.success_rate,
                        self.thresholds.min_success_rate, above=False,
                        message="Generation success rate dropped to {value:.0%}")
        self.check_memory()
        return summary

    # -- other samples -------------------------------------------------------------

    def record_validation(self, score: float, genre: str | None = None) -> None:
        validation = self.metric("validation")
        validation.add(score)
        if genre:
            per_genre = self._genre_scores.setdefault(genre, RollingMetric(self._window))
            per_genre.add(score)
        self._check("low_validation_score", "medium", validation.mean,
                    self.thresholds.min_validation_score, above=False,
                    message="Average validation score is {value:.1f}")

    def record_ai_request(self, response_ms: float, output_tokens: int = 0, success: bool = True) -> None:
        requests = self.metric("ai_request")
        requests.add(response_ms, success)
        self.metric("ai_tokens").add(output_tokens)
        self._check("high_response_time", "medium", requests.mean,
                    self.thresholds.max_response_ms, above=True,
                    message="Average text generation response time is {value:.0f}ms")

    def record_requirement_turn(self, session_id: str, completion_score: int) -> None:
        self.metric("requirement_collection").add(completion_score)

    def check_memory(self) -> None:
        used = self._memory_probe()
        if used is None:
            return
        self._check("high_memory_usage", "high", used, self.thresholds.max_memory_bytes,
                    above=True, message="Process memory is {value:.0f} bytes")

    def _check(self, kind: str, severity: Severity, value: float, threshold: float,
               above: bool, message: str) -> None:
        breached = value > threshold if above else value < threshold
        if not breached:
            self._breached.discard(kind)
            return
        if kind in self._breached:
            return
        self._breached.add(kind)
        alert = Alert(
            type=kind,
            severity=severity,
            message=message.format(value=value),
            value=value,
            threshold=threshold,
        )
        self._alerts.append(alert)
        logger.warning("alert %s (%s): %s", kind, severity, alert.message)
        notify(self._listeners, alert)

    # -- housekeeping and reporting ----------------------------------------------------

    def cleanup_stale(self, max_age: float = STALE_RUN_SECONDS) -> list[str]:
        """Drop active runs that never completed."""
        now = self._clock()
        stale = [rid for rid, h in self._active.items() if now - h.started > max_age]
        for rid in stale:
            del self._active[rid]
        return stale

    @property
    def active_runs(self) -> int:
        return len(self._active)

    @property
    def completed_runs(self) -> list[dict[str, Any]]:
        return list(self._completed)

    @property
    def alerts(self) -> list[Alert]:
        return list(self._alerts)

    def bottlenecks(self) -> list[dict[str, Any]]:
        generation = self._metrics.get("generation")
        if generation is None or not generation.count:
            return []
        found = []
        for family, metric in self._metrics.items():
            if not family.startswith("stage:"):
                continue
            share = metric.mean / generation.mean if generation.mean else 0.0
            if share > BOTTLENECK_SHARE:
                found.append({
                    "stage": family.split(":", 1)[1],
                    "mean_ms": round(metric.mean, 2),
                    "share": round(share, 4),
                })
        found.sort(key=lambda b: b["share"], reverse=True)
        return found

    def recommendations(self) -> list[str]:
        advice = []
        for kind in sorted(self._breached):
            if kind == "long_generation_time":
                advice.append("Generation is slow: reduce max output tokens or trim reference context.")
            elif kind == "low_validation_score":
                advice.append("Validation scores are low: strengthen the prompt's integration requirements.")
            elif kind == "high_response_time":
                advice.append("Text generation responses are slow: check provider latency or switch model.")
            elif kind == "high_memory_usage":
                advice.append("Memory use is high: lower the session limit or the context cache size.")
            elif kind == "low_success_rate":
                advice.append("Many runs fail: inspect recent errors and the provider's availability.")
        for bottleneck in self.bottlenecks():
            advice.append(f"Stage '{bottleneck['stage']}' takes {bottleneck['share']:.0%} of generation time.")
        return advice

    def report(self) -> dict[str, Any]:
        return {
            "metrics": {name: m.snapshot() for name, m in sorted(self._metrics.items())},
            "validation_by_genre": {g: m.snapshot() for g, m in sorted(self._genre_scores.items())},
            "trends": {
                name: trend for name, m in sorted(self._metrics.items())
                if (trend := m.trend()) is not None
            },
            "active_runs": self.active_runs,
            "completed_runs": len(self._completed),
            "alerts": [a.model_dump() for a in self._alerts],
            "bottlenecks": self.bottlenecks(),
            "recommendations": self.recommendations(),
        }
