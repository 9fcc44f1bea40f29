from __future__ import annotations

import asyncio

import pytest

from probe_service.checks import DependencyMonitor, tcp_check
from probe_service.probes import CheckStatus, ReadinessTracker


@pytest.fixture
def readiness() -> ReadinessTracker:
    return ReadinessTracker(expected=["db"])


def test_sync_check_passing_reports_ok(readiness) -> None:
    monitor = DependencyMonitor(readiness, timeout=1.0)
    monitor.add("db", lambda: True)

    check = asyncio.run(monitor.run_check("db"))

    assert check.status is CheckStatus.OK
    assert readiness.snapshot().ready


def test_async_check_returning_false_reports_failing(readiness) -> None:
    async def db_check():
        return False

    monitor = DependencyMonitor(readiness, timeout=1.0)
    monitor.add("db", db_check)

    check = asyncio.run(monitor.run_check("db"))

    assert check.status is CheckStatus.FAILING
    assert check.detail == "check returned false"


def test_raising_check_reports_failing(readiness) -> None:
    def db_check():
        raise ConnectionError("refused")

    monitor = DependencyMonitor(readiness, timeout=1.0)
    monitor.add("db", db_check)

    check = asyncio.run(monitor.run_check("db"))

    assert check.status is CheckStatus.FAILING
    assert check.detail == "ConnectionError: refused"
    assert readiness.snapshot().failing == ("db",)


def test_slow_check_times_out(readiness) -> None:
    async def db_check():
        await asyncio.sleep(5)
        return True

    monitor = DependencyMonitor(readiness, timeout=0.05)
    monitor.add("db", db_check)

    check = asyncio.run(monitor.run_check("db"))

    assert check.status is CheckStatus.FAILING
    assert "timed out" in check.detail


def test_duplicate_check_name_rejected(readiness) -> None:
    monitor = DependencyMonitor(readiness)
    monitor.add("db", lambda: True)

    with pytest.raises(ValueError):
        monitor.add("db", lambda: True)


def test_tcp_check_against_local_server(readiness) -> None:
    async def scenario():
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        monitor = DependencyMonitor(readiness, timeout=1.0)
        monitor.add("db", tcp_check("127.0.0.1", port))

        up = await monitor.run_check("db")
        server.close()
        await server.wait_closed()
        down = await monitor.run_check("db")
        return up, down

    up, down = asyncio.run(scenario())

    assert up.status is CheckStatus.OK
    assert down.status is CheckStatus.FAILING


def test_started_monitor_keeps_reporting_until_stopped(readiness) -> None:
    calls = []

    def db_check():
        calls.append(1)
        return True

    async def scenario():
        monitor = DependencyMonitor(readiness, interval=0.01, timeout=1.0)
        monitor.add("db", db_check)
        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.2)
        await monitor.stop()
        return monitor.running

    running_after_stop = asyncio.run(scenario())

    assert running_after_stop is False
    assert len(calls) >= 2
    assert readiness.snapshot().ready


def test_run_once_checks_everything() -> None:
    readiness = ReadinessTracker()
    monitor = DependencyMonitor(readiness, timeout=1.0)
    monitor.add("db", lambda: True)
    monitor.add("cache", lambda: False)

    results = asyncio.run(monitor.run_once())

    assert {c.name: c.status for c in results} == {"db": CheckStatus.OK, "cache": CheckStatus.FAILING}
    assert readiness.snapshot().failing == ("cache",)


def test_add_while_running_is_rejected(readiness) -> None:
    async def scenario():
        monitor = DependencyMonitor(readiness, interval=0.01, timeout=1.0)
        monitor.add("db", lambda: True)
        monitor.start()
        try:
            with pytest.raises(RuntimeError):
                monitor.add("cache", lambda: True)
        finally:
            await monitor.stop()
        monitor.add("cache", lambda: True)
        return monitor.names

    assert asyncio.run(scenario()) == ("db", "cache")
