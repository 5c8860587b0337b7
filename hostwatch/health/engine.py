"""Health check engine — data model and threshold evaluation.

A sample is one reading of a metric; evaluating it against a threshold yields
a CheckResult. Evaluation is pure: unreadable sources are the sampler's concern
and show up here only as sentinel samples (``value is None``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import MonitorConfig

NO_RESPONSE = "NO_RESPONSE"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Models ───────────────────────────────────────────────────────────────────


class Unit(str, Enum):
    PERCENT = "percent"
    BOOLEAN = "boolean"
    HTTP = "http"  # status code + latency


class Comparator(str, Enum):
    GTE = ">="
    EQ = "=="
    PRESENCE = "presence"
    HTTP_SUCCESS = "http-success"


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class Status(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    DOWN = "DOWN"
    CRITICAL = "CRITICAL"


class Policy(str, Enum):
    """Scheduling policy that produced a report."""

    LOCAL = "local"
    HTTP = "http"


@dataclass(frozen=True)
class MetricSample:
    """One instantaneous reading of a named metric."""

    name: str
    value: float | int | bool | None
    unit: Unit
    timestamp: str = field(default_factory=_utcnow)
    elapsed: float | None = None  # HTTP only, seconds
    detail: str = ""

    @property
    def is_sentinel(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class Threshold:
    metric: str
    comparator: Comparator
    limit: float | int | bool | None = None


@dataclass(frozen=True)
class CheckResult:
    """Verdict of one sample against its threshold."""

    name: str
    sample: MetricSample
    threshold: Threshold
    verdict: Verdict
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS


@dataclass(frozen=True)
class HealthReport:
    """Outcome of one poll cycle (or one bounded-retry HTTP probe)."""

    status: Status
    results: tuple[CheckResult, ...]
    policy: Policy = Policy.LOCAL
    attempts: int = 1
    error: str | None = None
    timestamp: str = field(default_factory=_utcnow)

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if not r.passed]


# ── Evaluation ───────────────────────────────────────────────────────────────


_LABELS = {"cpu": "CPU", "memory": "Memory"}


def is_http_success(code: int | None) -> bool:
    """2xx, 301 and 302 count as up; anything else (or no response) does not."""
    if code is None or isinstance(code, bool):
        return False
    return 200 <= code <= 299 or code in (301, 302)


def _fmt_pct(value: float) -> str:
    return f"{value:g}%"


def _percent_message(sample: MetricSample, threshold: Threshold, failed: bool) -> str:
    if sample.is_sentinel:
        return f"{sample.name} unavailable{': ' + sample.detail if sample.detail else ''}"

    value, limit = _fmt_pct(sample.value), _fmt_pct(threshold.limit)
    if sample.name.startswith("disk:"):
        mount = sample.name.split(":", 1)[1]
        if failed:
            return f"Disk usage on {mount}: {value} (threshold {limit})"
        return f"Disk usage on {mount}: {value}"

    label = _LABELS.get(sample.name, sample.name)
    if failed:
        return f"High {label} usage: {value} (threshold {limit})"
    return f"{label} usage: {value}"


def _http_message(sample: MetricSample) -> str:
    if sample.is_sentinel:
        return f"{sample.detail or sample.name} returned {NO_RESPONSE}"
    elapsed = f" in {sample.elapsed:.3f}s" if sample.elapsed is not None else ""
    return f"{sample.detail or sample.name} returned {sample.value}{elapsed}"


def evaluate(sample: MetricSample, threshold: Threshold) -> CheckResult:
    """Compare a sample to its threshold. Never raises."""
    cmp = threshold.comparator

    if cmp is Comparator.GTE:
        failed = sample.is_sentinel or sample.value >= threshold.limit
        message = _percent_message(sample, threshold, failed)
    elif cmp is Comparator.EQ:
        failed = sample.is_sentinel or sample.value != threshold.limit
        message = (
            f"{sample.name}: {sample.value} (expected {threshold.limit})"
            if sample.unit is not Unit.HTTP else _http_message(sample)
        )
    elif cmp is Comparator.PRESENCE:
        failed = sample.value is not True
        pattern = sample.name.split(":", 1)[-1]
        message = (
            f"Process {pattern} is not running" if failed
            else f"Process {pattern} is running"
        )
    elif cmp is Comparator.HTTP_SUCCESS:
        failed = not is_http_success(sample.value)
        message = _http_message(sample)
    else:  # pragma: no cover - exhaustive over Comparator
        failed, message = True, f"Unknown comparator: {cmp}"

    return CheckResult(
        name=sample.name,
        sample=sample,
        threshold=threshold,
        verdict=Verdict.FAIL if failed else Verdict.PASS,
        message=message,
    )


def default_thresholds(config: MonitorConfig) -> dict[str, Threshold]:
    """Startup threshold table keyed by metric kind."""
    return {
        "cpu": Threshold("cpu", Comparator.GTE, config.cpu_threshold),
        "memory": Threshold("memory", Comparator.GTE, config.mem_threshold),
        "disk": Threshold("disk", Comparator.GTE, config.disk_threshold),
        "process": Threshold("process", Comparator.PRESENCE, True),
        "http": (
            Threshold("http", Comparator.EQ, config.http_expected_status)
            if config.http_expected_status is not None
            else Threshold("http", Comparator.HTTP_SUCCESS)
        ),
    }
