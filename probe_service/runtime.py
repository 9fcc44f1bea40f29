"""Process and interpreter facts, read-only, backed by psutil."""
from __future__ import annotations

import os
import platform
import sys
from typing import Optional

import psutil

from .probes import LivenessTracker, MetricKind, MetricsRegistry

MB = 1024 * 1024


class ProcessInfo:
    """Wraps ``psutil.Process`` for the current (or given) pid."""

    def __init__(self, process: Optional[psutil.Process] = None):
        self.process = process or psutil.Process(os.getpid())

    @property
    def pid(self) -> int:
        return self.process.pid

    def resident_memory_bytes(self) -> int:
        return self.process.memory_info().rss

    def virtual_memory_bytes(self) -> int:
        return self.process.memory_info().vms

    def system_memory_total_bytes(self) -> int:
        return psutil.virtual_memory().total

    def cpu_seconds(self) -> float:
        times = self.process.cpu_times()
        return times.user + times.system

    def threads(self) -> int:
        return self.process.num_threads()

    @staticmethod
    def python_version() -> str:
        return platform.python_version()

    @staticmethod
    def platform() -> str:
        return sys.platform

    @staticmethod
    def architecture() -> str:
        return platform.machine()


def register_process_metrics(registry: MetricsRegistry, info: ProcessInfo, liveness: LivenessTracker) -> None:
    registry.register(
        "app_uptime_seconds", MetricKind.GAUGE, liveness.uptime,
        help="Application uptime in seconds",
    )
    registry.register(
        "process_resident_memory_bytes", MetricKind.GAUGE, info.resident_memory_bytes,
        help="Resident memory size in bytes",
    )
    registry.register(
        "process_cpu_seconds_total", MetricKind.COUNTER, info.cpu_seconds,
        help="Total user and system CPU time spent in seconds",
    )
    registry.register(
        "process_threads", MetricKind.GAUGE, info.threads,
        help="Number of OS threads in the process",
    )
