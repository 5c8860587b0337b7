"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from hostwatch.config import MonitorConfig
from hostwatch.health.engine import MetricSample, Unit
from hostwatch.health.errors import SourceUnavailable

STAT_TEMPLATE = (
    "cpu  {user} {nice} {system} {idle} {iowait} {irq} {softirq} {steal} 0 0\n"
    "cpu0 1 2 3 4 5 6 7 8 0 0\n"
    "intr 12345\n"
)

MEMINFO = (
    "MemTotal:       16000000 kB\n"
    "MemFree:         2000000 kB\n"
    "MemAvailable:    8000000 kB\n"
    "Buffers:          500000 kB\n"
    "Cached:          3000000 kB\n"
    "HugePages_Total:       0\n"
)


class StaticSampler:
    """Returns fixed readings; ``fail`` names a source that raises."""

    def __init__(
        self,
        cpu: float = 10.0,
        memory: float = 10.0,
        disks: Sequence[tuple[str, float]] = (("/", 10.0),),
        processes: Sequence[tuple[str, bool]] = (("sshd", True), ("nginx", True)),
        fail: str | None = None,
    ) -> None:
        self.cpu = cpu
        self.memory = memory
        self.disks = disks
        self.processes = processes
        self.fail = fail
        self.calls: list[str] = []

    def _take(self, name: str) -> None:
        self.calls.append(name)
        if self.fail == name:
            raise SourceUnavailable(f"/proc/{name}", "No such file or directory")

    def sample_cpu(self) -> MetricSample:
        self._take("cpu")
        return MetricSample("cpu", self.cpu, Unit.PERCENT)

    def sample_memory(self) -> MetricSample:
        self._take("memory")
        return MetricSample("memory", self.memory, Unit.PERCENT)

    def sample_disks(self) -> list[MetricSample]:
        self._take("disk")
        return [MetricSample(f"disk:{m}", v, Unit.PERCENT) for m, v in self.disks]

    def sample_processes(self) -> list[MetricSample]:
        self._take("process")
        return [MetricSample(f"process:{p}", found, Unit.BOOLEAN) for p, found in self.processes]


@pytest.fixture
def config(tmp_path: Path) -> MonitorConfig:
    """Defaults, with the report going to tmp and no real sleeping windows."""
    return MonitorConfig(
        report_path=str(tmp_path / "system_health.log"),
        cpu_window=0,
        http_retry_delay=0,
        http_url="http://monitored.test/",
    )


@pytest.fixture
def proc_root(tmp_path: Path, write_stat) -> Path:
    """A fake /proc with stat and meminfo."""
    root = tmp_path / "proc"
    root.mkdir()
    write_stat(root / "stat", user=100, system=50, idle=800, iowait=50)
    (root / "meminfo").write_text(MEMINFO)
    return root


@pytest.fixture
def static_sampler() -> type[StaticSampler]:
    """Factory for canned-reading samplers: ``static_sampler(cpu=99)``."""
    return StaticSampler


@pytest.fixture
def write_stat() -> Callable[..., None]:
    """Writes a /proc/stat with the given aggregate cpu counters."""

    def write(path: Path, **counters: int) -> None:
        fields = dict.fromkeys(
            ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal"), 0,
        )
        fields.update(counters)
        path.write_text(STAT_TEMPLATE.format(**fields))

    return write
