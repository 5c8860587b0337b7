"""Health check scheduler — runs poll cycles sequentially.

Two policies:
- local cycle: CPU, memory, disk, processes once each, in order, no retry
- HTTP probe: bounded retry with a fixed delay, stopping on the first pass

``run()`` repeats either policy as a daemon. Cycles never overlap: the CPU
sampling window must not share wall time with the other checks.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from .engine import (
    CheckResult,
    HealthReport,
    MetricSample,
    Policy,
    Status,
    Unit,
    Verdict,
    default_thresholds,
    evaluate,
)
from .errors import SourceUnavailable
from .report import aggregate
from .samplers import Sampler

if TYPE_CHECKING:
    from ..config import MonitorConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _passed(result: Any) -> bool:
    return bool(getattr(result, "passed", result))


@dataclass
class RetryPolicy:
    """Repeat an operation up to ``retries + 1`` times with a fixed delay."""

    retries: int = 2
    delay: float = 1.0
    stop: Callable[[Any], bool] = _passed
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def run(self, operation: Callable[[int], T]) -> list[T]:
        """Call ``operation(attempt)`` (1-based) until ``stop`` accepts a result."""
        attempts: list[T] = []
        for attempt in range(1, self.max_attempts + 1):
            result = operation(attempt)
            attempts.append(result)
            if self.stop(result):
                break
            if attempt < self.max_attempts:
                self.sleep(self.delay)
        return attempts


class HealthScheduler:
    """Drives sampler → evaluator per check and hands each report onward."""

    def __init__(
        self,
        config: MonitorConfig,
        sampler: Sampler | None = None,
        retry: RetryPolicy | None = None,
        on_report: Callable[[HealthReport], Any] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.sampler = sampler or Sampler(config)
        self.retry = retry or RetryPolicy(
            retries=config.http_retries, delay=config.http_retry_delay, sleep=sleep,
        )
        self.thresholds = default_thresholds(config)
        self.on_report = on_report
        self._sleep = sleep
        self._running = False

    # -- Single cycles -------------------------------------------------------

    def run_system_cycle(self) -> HealthReport:
        """One pass over the local checks. An unreadable source stops the cycle."""
        results: list[CheckResult] = []
        t = self.thresholds

        steps: list[tuple[str, Callable[[], list[MetricSample]]]] = [
            ("cpu", lambda: [self.sampler.sample_cpu()]),
            ("memory", lambda: [self.sampler.sample_memory()]),
            ("disk", self.sampler.sample_disks),
            ("process", self.sampler.sample_processes),
        ]
        for kind, take in steps:
            try:
                samples = take()
            except SourceUnavailable as e:
                logger.error("Aborting cycle: %s", e)
                unit = Unit.BOOLEAN if kind == "process" else Unit.PERCENT
                results.append(CheckResult(
                    name=kind,
                    sample=MetricSample(kind, None, unit, detail=e.source),
                    threshold=t[kind],
                    verdict=Verdict.FAIL,
                    message=f"Cannot read {e.source}: {e.reason}",
                ))
                return aggregate(results, Policy.LOCAL, error=str(e))
            results.extend(evaluate(s, t[kind]) for s in samples)

        report = aggregate(results, Policy.LOCAL)
        logger.debug("System cycle: %s (%d checks)", report.status.value, len(results))
        return report

    def run_http_check(self, url: str | None = None) -> HealthReport:
        """Probe the target under the retry policy; all attempts failing means DOWN."""
        threshold = self.thresholds["http"]

        def attempt(n: int) -> CheckResult:
            result = evaluate(self.sampler.sample_http(url), threshold)
            logger.debug("HTTP attempt %d/%d: %s", n, self.retry.max_attempts, result.message)
            return result

        attempts = self.retry.run(attempt)
        return aggregate(attempts, Policy.HTTP, attempts=len(attempts))

    # -- Daemon loop ---------------------------------------------------------

    def run_once(self, mode: str = "system") -> HealthReport:
        if mode == "system":
            report = self.run_system_cycle()
        elif mode == "http":
            report = self.run_http_check()
        else:
            raise ValueError(f"Unknown mode: {mode}")

        if self.on_report:
            self.on_report(report)
        return report

    def run(self, cycles: int | None = None, mode: str = "system") -> HealthReport | None:
        """Run cycles back to back, ``interval_seconds`` apart; ``None`` = forever."""
        self._running = True
        last: HealthReport | None = None
        done = 0
        logger.info(
            "Scheduler started: mode=%s interval=%ss cycles=%s",
            mode, self.config.interval_seconds, cycles if cycles is not None else "unbounded",
        )
        try:
            while self._running and (cycles is None or done < cycles):
                last = self.run_once(mode)
                done += 1
                if last.status is Status.CRITICAL:
                    logger.warning("Cycle %d ended CRITICAL: %s", done, last.error)
                if cycles is not None and done >= cycles:
                    break
                self._sleep(self.config.interval_seconds)
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted")
        finally:
            self._running = False
        logger.info("Scheduler stopped after %d cycles", done)
        return last

    def stop(self) -> None:
        """Let the current cycle finish, then exit ``run()``."""
        self._running = False
