"""
Background dependency checkers that feed the readiness cache.

Checks run on their own schedule, off the request path. ``/ready`` only ever
reads the last result, so a slow database cannot make the readiness probe
itself time out.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Union

from fastapi.concurrency import run_in_threadpool

from .probes import CheckStatus, DependencyCheck, ReadinessTracker

logger = logging.getLogger(__name__)

CheckFn = Callable[[], Union[bool, Awaitable[bool]]]


def tcp_check(host: str, port: int) -> CheckFn:
    """A check that passes when a TCP connection to ``host:port`` opens."""

    async def check():
        _, writer = await asyncio.open_connection(host, port)
        writer.close()
        await writer.wait_closed()
        return True

    check.__name__ = f"tcp_check({host}:{port})"
    return check


class DependencyMonitor:
    """Runs named checks every ``interval`` seconds and reports the results."""

    def __init__(self, readiness: ReadinessTracker, interval: float = 5.0, timeout: float = 2.0):
        self.readiness = readiness
        self.interval = interval
        self.timeout = timeout
        self._checks: Dict[str, CheckFn] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def names(self):
        return tuple(self._checks)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def add(self, name: str, check_fn: CheckFn) -> None:
        if self.running:
            raise RuntimeError("cannot add dependency checks while the monitor is running")
        if name in self._checks:
            raise ValueError(f"dependency check {name!r} already added")
        self._checks[name] = check_fn

    async def _call(self, check_fn: CheckFn):
        if inspect.iscoroutinefunction(check_fn):
            result = await check_fn()
        else:
            result = await run_in_threadpool(check_fn)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def run_check(self, name: str) -> DependencyCheck:
        check_fn = self._checks[name]
        try:
            passed = await asyncio.wait_for(self._call(check_fn), self.timeout)
        except asyncio.TimeoutError:
            return self.readiness.report(name, CheckStatus.FAILING, f"timed out after {self.timeout}s")
        except Exception as exc:
            logger.debug("Dependency check %r raised", name, exc_info=True)
            return self.readiness.report(name, CheckStatus.FAILING, f"{type(exc).__name__}: {exc}")
        if passed:
            return self.readiness.report(name, CheckStatus.OK)
        return self.readiness.report(name, CheckStatus.FAILING, "check returned false")

    async def run_once(self) -> List[DependencyCheck]:
        return list(await asyncio.gather(*(self.run_check(name) for name in self._checks)))

    async def _loop(self, name: str) -> None:
        while True:
            await self.run_check(name)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Schedule one loop per check on the running event loop."""
        if self.running:
            return
        self._tasks = [asyncio.ensure_future(self._loop(name)) for name in self._checks]
        if self._tasks:
            logger.info("Started %d dependency check(s): %s", len(self._tasks), ", ".join(self._checks))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
