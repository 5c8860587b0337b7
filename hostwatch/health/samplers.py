"""Metric samplers — CPU, memory, disk, process liveness, HTTP.

CPU and memory are read from the kernel's ``/proc`` counters and parsed into
typed records; disk and process tables come from psutil. Local read failures
raise SourceUnavailable. The HTTP probe never raises: a request that gets no
response yields a sentinel sample instead.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import psutil

from .engine import MetricSample, Unit
from .errors import SourceUnavailable

if TYPE_CHECKING:
    from ..config import MonitorConfig

logger = logging.getLogger(__name__)


# ── CPU ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CpuCounters:
    """Cumulative jiffies from the aggregate ``cpu`` line of /proc/stat."""

    user: int
    nice: int
    system: int
    idle: int
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    @property
    def total(self) -> int:
        return (self.user + self.nice + self.system + self.idle
                + self.iowait + self.irq + self.softirq + self.steal)

    @property
    def idle_all(self) -> int:
        return self.idle + self.iowait


def parse_cpu_counters(text: str) -> CpuCounters:
    """Parse the aggregate ``cpu`` line. Older kernels report fewer columns."""
    for line in text.splitlines():
        parts = line.split()
        if parts and parts[0] == "cpu":
            break
    else:
        raise SourceUnavailable("/proc/stat", "no aggregate cpu line")

    try:
        values = [int(v) for v in parts[1:9]]
    except ValueError as e:
        raise SourceUnavailable("/proc/stat", f"malformed cpu line: {line!r}") from e
    if len(values) < 4:
        raise SourceUnavailable("/proc/stat", f"too few cpu fields: {line!r}")
    return CpuCounters(*values)


def cpu_utilization(prev: CpuCounters, cur: CpuCounters) -> float:
    """Busy share of the window between two readings, in [0, 100]."""
    total_diff = cur.total - prev.total
    if total_diff <= 0:
        return 0.0
    idle_diff = cur.idle_all - prev.idle_all
    pct = 100.0 * (total_diff - idle_diff) / total_diff
    return round(min(max(pct, 0.0), 100.0), 1)


# ── Memory ───────────────────────────────────────────────────────────────────


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse /proc/meminfo into ``{key: kB}``."""
    info: dict[str, int] = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        key, sep, rest = line.partition(":")
        fields_ = rest.split()
        if not sep or not fields_:
            raise SourceUnavailable("/proc/meminfo", f"malformed line: {line!r}")
        try:
            info[key.strip()] = int(fields_[0])
        except ValueError as e:
            raise SourceUnavailable("/proc/meminfo", f"malformed line: {line!r}") from e

    if "MemTotal" not in info:
        raise SourceUnavailable("/proc/meminfo", "MemTotal missing")
    return info


def memory_utilization(info: dict[str, int]) -> float:
    """Used share of RAM in [0, 100].

    Prefers the kernel's own ``MemAvailable`` estimate; kernels older than 3.14
    don't report it, so it is rebuilt as free + buffers + cache.
    """
    total = info.get("MemTotal", 0)
    if total <= 0:
        return 0.0
    available = info.get("MemAvailable")
    if available is None:
        available = info.get("MemFree", 0) + info.get("Buffers", 0) + info.get("Cached", 0)
    pct = 100.0 * (total - available) / total
    return round(min(max(pct, 0.0), 100.0), 1)


# ── Disk ─────────────────────────────────────────────────────────────────────


def filter_mounts(partitions: Iterable, excluded_fstypes: Sequence[str]) -> list:
    """Drop pseudo filesystems and repeated mount points, keeping table order."""
    excluded = set(excluded_fstypes)
    seen: set[str] = set()
    kept = []
    for p in partitions:
        if p.fstype in excluded or p.mountpoint in seen:
            continue
        seen.add(p.mountpoint)
        kept.append(p)
    return kept


# ── Processes ────────────────────────────────────────────────────────────────


def _matcher(pattern: str) -> Callable[[str], bool]:
    try:
        rx = re.compile(pattern)
    except re.error:
        logger.warning("Invalid process pattern %r — using substring match", pattern)
        return lambda cmdline: pattern in cmdline
    return lambda cmdline: rx.search(cmdline) is not None


def find_running(patterns: Sequence[str], cmdlines: Sequence[str]) -> list[bool]:
    """For each pattern, whether any command line matches it."""
    found = []
    for pattern in patterns:
        match = _matcher(pattern)
        found.append(any(match(c) for c in cmdlines))
    return found


def process_cmdlines() -> list[str]:
    """Command lines of every process except this one."""
    own = os.getpid()
    cmdlines = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        info = proc.info
        if info.get("pid") == own:
            continue
        cmdline = " ".join(info.get("cmdline") or []) or (info.get("name") or "")
        if cmdline:
            cmdlines.append(cmdline)
    return cmdlines


# ── Sampler ──────────────────────────────────────────────────────────────────


class Sampler:
    """Takes single readings of the configured metrics."""

    def __init__(
        self,
        config: MonitorConfig,
        sleep: Callable[[float], None] = time.sleep,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._proc = Path(config.proc_root)
        self._sleep = sleep
        self._transport = http_transport

    def sample(self, name: str) -> MetricSample:
        """Single scalar reading by metric name (cpu | memory | http)."""
        runners = {"cpu": self.sample_cpu, "memory": self.sample_memory, "http": self.sample_http}
        runner = runners.get(name)
        if runner is None:
            raise ValueError(f"Unknown scalar metric: {name}")
        return runner()

    def _read_proc(self, name: str) -> str:
        path = self._proc / name
        try:
            return path.read_text(encoding="ascii")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnavailable(str(path), str(e)) from e

    def sample_cpu(self) -> MetricSample:
        """Utilization over a blocking ``cpu_window``; the full window always elapses."""
        prev = parse_cpu_counters(self._read_proc("stat"))
        self._sleep(self.config.cpu_window)
        cur = parse_cpu_counters(self._read_proc("stat"))
        return MetricSample("cpu", cpu_utilization(prev, cur), Unit.PERCENT)

    def sample_memory(self) -> MetricSample:
        info = parse_meminfo(self._read_proc("meminfo"))
        return MetricSample("memory", memory_utilization(info), Unit.PERCENT)

    def sample_disks(self) -> list[MetricSample]:
        """One sample per real mounted filesystem."""
        try:
            partitions = filter_mounts(
                psutil.disk_partitions(all=False), self.config.excluded_fstypes,
            )
            samples = []
            for p in partitions:
                usage = psutil.disk_usage(p.mountpoint)
                samples.append(MetricSample(
                    f"disk:{p.mountpoint}", float(usage.percent), Unit.PERCENT,
                    detail=f"{p.device} ({p.fstype})",
                ))
        except (OSError, psutil.Error) as e:
            raise SourceUnavailable("mount table", str(e)) from e
        return samples

    def sample_processes(self) -> list[MetricSample]:
        """One liveness sample per watched pattern, in watch-list order."""
        patterns = list(self.config.watch_processes)
        try:
            cmdlines = process_cmdlines()
        except (OSError, psutil.Error) as e:
            raise SourceUnavailable("process table", str(e)) from e
        return [
            MetricSample(f"process:{pattern}", found, Unit.BOOLEAN)
            for pattern, found in zip(patterns, find_running(patterns, cmdlines))
        ]

    def sample_http(self, url: str | None = None) -> MetricSample:
        """GET the target once: status code + elapsed seconds, or NO_RESPONSE."""
        url = url or self.config.http_url
        t0 = time.perf_counter()
        try:
            with httpx.Client(
                timeout=self.config.http_timeout,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                resp = client.get(url)
            elapsed = time.perf_counter() - t0
            return MetricSample("http", resp.status_code, Unit.HTTP,
                                elapsed=round(elapsed, 3), detail=url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed = time.perf_counter() - t0
            logger.debug("HTTP probe %s got no response: %s: %s", url, type(e).__name__, e)
            return MetricSample("http", None, Unit.HTTP,
                                elapsed=round(elapsed, 3), detail=url)

