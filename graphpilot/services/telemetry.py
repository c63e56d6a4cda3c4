"""In-process copilot telemetry for the health endpoint.

Three views are kept: a rolling window of HTTP outcomes (availability), one
rolling window per upstream integration (identity, LLM provider), and a
stage funnel showing how far requests get through the pipeline. Everything
lives in process memory and resets on restart.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
import time
from typing import Callable, Deque

_RETENTION_S = 900
_MAX_SAMPLES = 5000


@dataclass(frozen=True)
class OutcomeSummary:
    calls: int
    failures: int
    p95_ms: float | None

    def as_dict(self) -> dict[str, float | int | None]:
        return {"calls": self.calls, "failures": self.failures, "p95_ms": self.p95_ms}


class OutcomeWindow:
    """Time-ordered ``(timestamp, ok, latency_ms)`` outcomes pruned to a retention horizon."""

    def __init__(
        self,
        *,
        retention_s: int = _RETENTION_S,
        max_samples: int = _MAX_SAMPLES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._retention_s = retention_s
        self._clock = clock
        self._samples: Deque[tuple[float, bool, float]] = deque(maxlen=max_samples)

    def add(self, *, ok: bool, latency_ms: float) -> None:
        now = self._clock()
        self._prune(now)
        self._samples.append((now, ok, latency_ms))

    def summary(self, window_s: int) -> OutcomeSummary:
        now = self._clock()
        self._prune(now)
        cutoff = now - window_s
        recent = [(ok, latency) for ts, ok, latency in self._samples if ts >= cutoff]
        if not recent:
            return OutcomeSummary(calls=0, failures=0, p95_ms=None)
        latencies = sorted(latency for _, latency in recent)
        # Nearest-rank percentile.
        rank = max(1, -(-len(latencies) * 95 // 100))
        return OutcomeSummary(
            calls=len(recent),
            failures=sum(1 for ok, _ in recent if not ok),
            p95_ms=round(latencies[rank - 1], 2),
        )

    def clear(self) -> None:
        self._samples.clear()

    def _prune(self, now: float) -> None:
        horizon = now - self._retention_s
        while self._samples and self._samples[0][0] < horizon:
            self._samples.popleft()


_requests = OutcomeWindow()
_integrations: dict[str, OutcomeWindow] = {}
_stages: Counter[str] = Counter()
_counters: Counter[str] = Counter()


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    # Health probes are not counted.
    if path.endswith("/health"):
        return
    _requests.add(ok=status_code < 500, latency_ms=latency_ms)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    window = _integrations.get(integration)
    if window is None:
        window = _integrations[integration] = OutcomeWindow()
    window.add(ok=success, latency_ms=latency_ms)


def record_stage(stage: str) -> None:
    _stages[stage] += 1


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def availability(window_s: int) -> float | None:
    # Percentage of non-5xx copilot responses; None until traffic arrives.
    summary = _requests.summary(window_s)
    if summary.calls == 0:
        return None
    return round(100.0 * (summary.calls - summary.failures) / summary.calls, 2)


def integration_health(window_s: int) -> dict[str, dict[str, float | int | None]]:
    result = {}
    for name, window in sorted(_integrations.items()):
        summary = window.summary(window_s)
        if summary.calls:
            result[name] = summary.as_dict()
    return result


def stage_funnel() -> dict[str, int]:
    return dict(_stages)


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    _requests.clear()
    _integrations.clear()
    _stages.clear()
    _counters.clear()
