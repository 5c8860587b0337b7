"""Tests for the metric samplers."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import psutil
import pytest

from hostwatch.config import MonitorConfig
from hostwatch.health.engine import Unit
from hostwatch.health.errors import SourceUnavailable
from hostwatch.health.samplers import (
    CpuCounters,
    Sampler,
    cpu_utilization,
    filter_mounts,
    find_running,
    memory_utilization,
    parse_cpu_counters,
    parse_meminfo,
    process_cmdlines,
)


def part(mountpoint: str, fstype: str = "ext4", device: str = "/dev/sda1") -> SimpleNamespace:
    return SimpleNamespace(device=device, mountpoint=mountpoint, fstype=fstype)


# ── CPU ──────────────────────────────────────────────────────────────────────


class TestCpu:
    def test_parse_full_line(self) -> None:
        c = parse_cpu_counters("cpu  1 2 3 4 5 6 7 8 9 10\ncpu0 1 1 1 1\n")
        assert c == CpuCounters(1, 2, 3, 4, 5, 6, 7, 8)
        assert c.total == 36
        assert c.idle_all == 9

    def test_parse_old_kernel(self) -> None:
        c = parse_cpu_counters("cpu 10 0 5 85\n")
        assert c == CpuCounters(10, 0, 5, 85)

    @pytest.mark.parametrize("text", [
        "",
        "cpu0 1 2 3 4\n",
        "cpu 1 2 x 4\n",
        "cpu 1 2\n",
    ])
    def test_parse_malformed(self, text: str) -> None:
        with pytest.raises(SourceUnavailable):
            parse_cpu_counters(text)

    def test_utilization(self) -> None:
        prev = CpuCounters(100, 0, 50, 800, 50)
        cur = CpuCounters(150, 0, 100, 850, 50)  # 100 busy of 150
        assert cpu_utilization(prev, cur) == pytest.approx(66.7)

    def test_iowait_counts_as_idle(self) -> None:
        prev = CpuCounters(0, 0, 0, 0, 0)
        cur = CpuCounters(0, 0, 0, 50, 50)
        assert cpu_utilization(prev, cur) == 0.0

    def test_zero_window(self) -> None:
        c = CpuCounters(1, 2, 3, 4)
        assert cpu_utilization(c, c) == 0.0

    def test_counter_reset_stays_in_range(self) -> None:
        assert cpu_utilization(CpuCounters(100, 0, 0, 100), CpuCounters(1, 0, 0, 1)) == 0.0
        assert 0 <= cpu_utilization(CpuCounters(0, 0, 0, 100), CpuCounters(10, 0, 0, 50)) <= 100

    def test_sample_reads_twice_around_window(
        self, config: MonitorConfig, proc_root: Path, write_stat,
    ) -> None:
        stat = proc_root / "stat"
        slept: list[float] = []

        def fake_sleep(seconds: float) -> None:
            slept.append(seconds)
            write_stat(stat, user=150, system=100, idle=850, iowait=50)

        cfg = replace(config, proc_root=str(proc_root), cpu_window=1.0)
        s = Sampler(cfg, sleep=fake_sleep).sample_cpu()
        assert slept == [1.0]
        assert s.name == "cpu"
        assert s.unit is Unit.PERCENT
        assert s.value == pytest.approx(66.7)

    def test_missing_source(self, config: MonitorConfig, tmp_path: Path) -> None:
        cfg = replace(config, proc_root=str(tmp_path / "nope"))
        with pytest.raises(SourceUnavailable):
            Sampler(cfg, sleep=lambda s: None).sample_cpu()


# ── Memory ───────────────────────────────────────────────────────────────────


class TestMemory:
    def test_uses_mem_available(self) -> None:
        info = {"MemTotal": 1000, "MemAvailable": 700, "MemFree": 100, "Buffers": 0, "Cached": 0}
        assert memory_utilization(info) == 30.0

    def test_fallback_without_mem_available(self) -> None:
        info = {"MemTotal": 1000, "MemFree": 100, "Buffers": 100, "Cached": 300}
        assert memory_utilization(info) == 50.0

    def test_zero_total(self) -> None:
        assert memory_utilization({"MemTotal": 0}) == 0.0

    def test_clamped(self) -> None:
        assert memory_utilization({"MemTotal": 100, "MemAvailable": 150}) == 0.0

    def test_parse(self) -> None:
        info = parse_meminfo("MemTotal: 100 kB\nMemAvailable: 40 kB\nHugePages_Total: 0\n")
        assert info == {"MemTotal": 100, "MemAvailable": 40, "HugePages_Total": 0}

    @pytest.mark.parametrize("text", [
        "MemFree: 100 kB\n",
        "MemTotal: lots kB\n",
        "garbage\n",
    ])
    def test_parse_malformed(self, text: str) -> None:
        with pytest.raises(SourceUnavailable):
            parse_meminfo(text)

    def test_sample(self, config: MonitorConfig, proc_root: Path) -> None:
        s = Sampler(replace(config, proc_root=str(proc_root))).sample_memory()
        assert s.name == "memory"
        assert s.value == 50.0  # 16G total, 8G available


# ── Disk ─────────────────────────────────────────────────────────────────────


class TestDisk:
    def test_filter_excludes_pseudo(self) -> None:
        table = [
            part("/"),
            part("/dev", "devtmpfs", "udev"),
            part("/run", "tmpfs", "tmpfs"),
            part("/data", "xfs", "/dev/sdb1"),
            part("/snap/core", "squashfs", "/dev/loop0"),
        ]
        kept = filter_mounts(table, MonitorConfig().excluded_fstypes)
        assert [p.mountpoint for p in kept] == ["/", "/data"]

    def test_filter_all_pseudo(self) -> None:
        table = [part("/run", "tmpfs"), part("/dev/shm", "tmpfs")]
        assert filter_mounts(table, ["tmpfs"]) == []

    def test_filter_dedupes_mountpoints(self) -> None:
        table = [part("/"), part("/", device="/dev/sda2")]
        assert len(filter_mounts(table, [])) == 1

    def test_sample_per_mount(self, config: MonitorConfig) -> None:
        table = [part("/"), part("/run", "tmpfs"), part("/data", "xfs", "/dev/sdb1")]
        usage = {"/": 10.0, "/data": 25.0}
        with patch("hostwatch.health.samplers.psutil.disk_partitions", return_value=table), \
             patch("hostwatch.health.samplers.psutil.disk_usage",
                   side_effect=lambda m: SimpleNamespace(percent=usage[m])):
            samples = Sampler(config).sample_disks()

        assert [(s.name, s.value) for s in samples] == [("disk:/", 10.0), ("disk:/data", 25.0)]
        assert samples[1].detail == "/dev/sdb1 (xfs)"

    def test_unreadable_mount(self, config: MonitorConfig) -> None:
        with patch("hostwatch.health.samplers.psutil.disk_partitions", return_value=[part("/")]), \
             patch("hostwatch.health.samplers.psutil.disk_usage", side_effect=OSError("EIO")):
            with pytest.raises(SourceUnavailable):
                Sampler(config).sample_disks()


# ── Processes ────────────────────────────────────────────────────────────────


class TestProcesses:
    cmdlines = ["/usr/sbin/sshd -D", "postgres: checkpointer", "python app.py"]

    def watching(self, config: MonitorConfig, *patterns: str) -> list[tuple[str, bool]]:
        cfg = replace(config, watch_processes=patterns)
        with patch("hostwatch.health.samplers.process_cmdlines", return_value=self.cmdlines):
            samples = Sampler(cfg).sample_processes()
        return [(s.name.removeprefix("process:"), s.value) for s in samples]

    def test_watch_list_order(self, config: MonitorConfig) -> None:
        assert self.watching(config, "nginx", "sshd", "redis", "postgres") == [
            ("nginx", False), ("sshd", True), ("redis", False), ("postgres", True),
        ]

    def test_none_missing(self, config: MonitorConfig) -> None:
        assert all(found for _, found in self.watching(config, "sshd", "app.py"))

    def test_regex_pattern(self) -> None:
        assert find_running([r"^/usr/sbin/ssh", r"nginx: (master|worker)"], self.cmdlines) == [
            True, False,
        ]

    def test_invalid_regex_falls_back_to_substring(self) -> None:
        assert find_running(["app.py ["], ["python app.py [x]"]) == [True]

    def test_sample(self, config: MonitorConfig) -> None:
        with patch("hostwatch.health.samplers.process_cmdlines", return_value=self.cmdlines):
            samples = Sampler(config).sample_processes()
        assert [(s.name, s.value) for s in samples] == [
            ("process:sshd", True), ("process:nginx", False),
        ]
        assert all(s.unit is Unit.BOOLEAN for s in samples)

    def test_cmdlines_skip_self(self) -> None:
        procs = [
            SimpleNamespace(info={"pid": 1, "name": "systemd", "cmdline": ["/sbin/init"]}),
            SimpleNamespace(info={"pid": 42, "name": "python", "cmdline": ["python", "-m", "nginx"]}),
            SimpleNamespace(info={"pid": 2, "name": "kthreadd", "cmdline": []}),
            SimpleNamespace(info={"pid": 3, "name": None, "cmdline": None}),
        ]
        with patch("hostwatch.health.samplers.psutil.process_iter", return_value=procs), \
             patch("hostwatch.health.samplers.os.getpid", return_value=42):
            assert process_cmdlines() == ["/sbin/init", "kthreadd"]

    def test_process_table_error(self, config: MonitorConfig) -> None:
        with patch("hostwatch.health.samplers.process_cmdlines", side_effect=psutil.AccessDenied()):
            with pytest.raises(SourceUnavailable):
                Sampler(config).sample_processes()


# ── HTTP ─────────────────────────────────────────────────────────────────────


class TestHTTP:
    def test_status_and_latency(self, config: MonitorConfig) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        s = Sampler(config, http_transport=transport).sample_http()
        assert s.value == 200
        assert s.unit is Unit.HTTP
        assert s.elapsed is not None and s.elapsed >= 0
        assert s.detail == config.http_url

    def test_redirect_not_followed(self, config: MonitorConfig) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(301, headers={"Location": "http://elsewhere.test/"}),
        )
        assert Sampler(config, http_transport=transport).sample_http().value == 301

    def test_timeout_is_sentinel(self, config: MonitorConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        s = Sampler(config, http_transport=httpx.MockTransport(handler)).sample_http()
        assert s.is_sentinel

    def test_connection_error_is_sentinel(self, config: MonitorConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert Sampler(config, http_transport=httpx.MockTransport(handler)).sample_http().is_sentinel

    def test_sample_by_name(self, config: MonitorConfig) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        assert Sampler(config, http_transport=transport).sample("http").value == 204

    def test_unknown_name(self, config: MonitorConfig) -> None:
        with pytest.raises(ValueError):
            Sampler(config).sample("gpu")
