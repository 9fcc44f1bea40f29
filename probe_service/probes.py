"""
Probe state and the three probe queries an orchestrator polls.

Features
--------
- ``LivenessTracker``: uptime since process start plus an informational
  degraded flag. Answering at all is what makes the process "alive".
- ``ReadinessTracker``: cached dependency check results pushed by external
  checkers. Overall readiness is the AND of every check being ``ok``.
- ``MetricsRegistry``: ordered metric producers sampled at scrape time.
- ``ProbeContext``: the process-scoped object handed to the HTTP layer.

Notes
-----
Shared state is copy-on-write. Writers build a new immutable container under
a lock and publish it with a single assignment; readers grab the current
reference without locking. A reader therefore sees either the old or the new
value of a check, never a half-built one, and never waits on a writer.
"""
from __future__ import annotations

import logging
import math
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from .errors import DuplicateProducerError, MetricProducerFault

logger = logging.getLogger(__name__)

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

NEVER_REPORTED = "never reported"
SKIPPED_METRIC = "probe_scrape_skipped_producers"


class LivenessStatus(str, Enum):
    ALIVE = "alive"
    DEGRADED = "degraded"


class ReadinessStatus(str, Enum):
    READY = "ready"
    NOT_READY = "not-ready"


class CheckStatus(str, Enum):
    OK = "ok"
    FAILING = "failing"
    UNKNOWN = "unknown"


class MetricKind(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


def exposed_name(name: str, kind: MetricKind) -> str:
    """Name a sample carries in the text format; counters always end in ``_total``."""
    if kind is MetricKind.COUNTER and not name.endswith("_total"):
        return name + "_total"
    return name


@dataclass(frozen=True)
class LivenessState:
    status: LivenessStatus
    uptime_seconds: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class DependencyCheck:
    """Latest known result of one named dependency check."""

    name: str
    status: CheckStatus
    detail: Optional[str] = None
    updated_at: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status is CheckStatus.OK


@dataclass(frozen=True)
class ReadinessState:
    status: ReadinessStatus
    checks: Tuple[DependencyCheck, ...] = ()

    @property
    def ready(self) -> bool:
        return self.status is ReadinessStatus.READY

    @property
    def failing(self) -> Tuple[str, ...]:
        return tuple(check.name for check in self.checks if not check.ok)

    @classmethod
    def from_checks(cls, checks: Iterable[DependencyCheck]) -> "ReadinessState":
        checks = tuple(checks)
        if all(check.ok for check in checks):
            return cls(ReadinessStatus.READY, checks)
        return cls(ReadinessStatus.NOT_READY, checks)


@dataclass(frozen=True)
class MetricSample:
    name: str
    kind: MetricKind
    value: float
    labels: Mapping[str, str] = field(default_factory=dict)
    help: str = ""

    @property
    def exposed_name(self) -> str:
        return exposed_name(self.name, self.kind)


@dataclass(frozen=True)
class MetricProducer:
    """A registered ``sample_fn`` and the identity of the sample it yields."""

    name: str
    kind: MetricKind
    sample_fn: Callable[[], float]
    labels: Mapping[str, str] = field(default_factory=dict)
    help: str = ""

    @property
    def key(self) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return exposed_name(self.name, self.kind), tuple(sorted(self.labels.items()))

    def sample(self) -> MetricSample:
        try:
            value = float(self.sample_fn())
        except Exception as exc:
            raise MetricProducerFault(self.name, exc) from exc
        if not math.isfinite(value):
            raise MetricProducerFault(self.name, f"non-finite value {value}")
        if self.kind is MetricKind.COUNTER and value < 0:
            raise MetricProducerFault(self.name, f"negative counter value {value}")
        return MetricSample(self.name, self.kind, value, self.labels, self.help)


@dataclass(frozen=True)
class ScrapeResult:
    samples: Tuple[MetricSample, ...] = ()
    skipped_producers: Tuple[str, ...] = ()

    @property
    def skipped(self) -> int:
        return len(self.skipped_producers)

    @property
    def degraded(self) -> bool:
        return bool(self.skipped_producers)


class LivenessTracker:
    """Uptime since process start. Only the clock moves it forward."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started_at = clock()
        self._degraded_reason: Optional[str] = None

    @property
    def started_at(self) -> float:
        return self._started_at

    def uptime(self) -> float:
        return max(0.0, self._clock() - self._started_at)

    def mark_degraded(self, reason: str) -> None:
        if self._degraded_reason is None:
            logger.warning("Liveness marked degraded: %s", reason)
        self._degraded_reason = reason

    def mark_alive(self) -> None:
        if self._degraded_reason is not None:
            logger.info("Liveness restored after: %s", self._degraded_reason)
        self._degraded_reason = None

    def snapshot(self) -> LivenessState:
        reason = self._degraded_reason
        if reason is None:
            return LivenessState(LivenessStatus.ALIVE, self.uptime())
        return LivenessState(LivenessStatus.DEGRADED, self.uptime(), reason)


class ReadinessTracker:
    """
    Cached dependency check results.

    Names listed in ``expected`` start out ``unknown`` and keep readiness
    down until their checker reports for the first time.
    """

    def __init__(self, expected: Iterable[str] = (), clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        checks = {}
        for name in expected:
            checks[name] = DependencyCheck(name, CheckStatus.UNKNOWN, NEVER_REPORTED)
        self._checks: Mapping[str, DependencyCheck] = MappingProxyType(checks)

    def report(self, name: str, status: CheckStatus, detail: Optional[str] = None) -> DependencyCheck:
        status = CheckStatus(status)
        check = DependencyCheck(name, status, detail, self._clock())
        with self._lock:
            previous = self._checks.get(name)
            checks = dict(self._checks)
            checks[name] = check
            self._checks = MappingProxyType(checks)
        if previous is None or previous.status is not status:
            log = logger.info if status is CheckStatus.OK else logger.warning
            log("Dependency %r is now %s%s", name, status.value, f" ({detail})" if detail else "")
        return check

    def forget(self, name: str) -> bool:
        with self._lock:
            if name not in self._checks:
                return False
            checks = dict(self._checks)
            del checks[name]
            self._checks = MappingProxyType(checks)
        logger.info("Dependency %r deregistered", name)
        return True

    def get(self, name: str) -> Optional[DependencyCheck]:
        return self._checks.get(name)

    def snapshot(self) -> ReadinessState:
        checks = self._checks
        return ReadinessState.from_checks(checks.values())


class MetricsRegistry:
    """
    Producers in registration order; that order is the scrape order.

    Counters are also checked against the last value a scrape accepted. Each
    scrape takes a ticket before sampling, and only a read with a newer
    ticket than the recorded one is compared, so two overlapping scrapes
    never flag each other.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._producers: Tuple[MetricProducer, ...] = ()
        self._scrapes = 0
        self._high_water: Dict[Tuple, Tuple[int, float]] = {}

    def register(
        self,
        name: str,
        kind: MetricKind,
        sample_fn: Callable[[], float],
        labels: Optional[Mapping[str, str]] = None,
        help: str = "",
    ) -> MetricProducer:
        kind = MetricKind(kind)
        if not METRIC_NAME_RE.match(name):
            raise ValueError(f"invalid metric name: {name!r}")
        if exposed_name(name, kind) == SKIPPED_METRIC:
            raise ValueError(f"metric name {name!r} is reserved")
        labels = dict(labels or {})
        for key, value in labels.items():
            if not isinstance(key, str) or not LABEL_NAME_RE.match(key) or key.startswith("__"):
                raise ValueError(f"invalid label name {key!r} for metric {name!r}")
            if not isinstance(value, str):
                raise ValueError(f"label {key!r} of metric {name!r} must be a string, got {value!r}")
        producer = MetricProducer(name, kind, sample_fn, MappingProxyType(labels), help)
        with self._lock:
            for existing in self._producers:
                if existing.key == producer.key:
                    raise DuplicateProducerError(
                        f"metric {producer.key[0]!r} with labels {labels} already registered"
                    )
                if existing.key[0] == producer.key[0] and existing.kind is not producer.kind:
                    raise ValueError(f"metric {producer.key[0]!r} already registered as {existing.kind.value}")
            self._producers = self._producers + (producer,)
            self._high_water.pop(producer.key, None)
        return producer

    def deregister(self, name: str, labels: Optional[Mapping[str, str]] = None) -> bool:
        labels = tuple(sorted((labels or {}).items()))
        with self._lock:
            removed = [p for p in self._producers if p.name == name and p.key[1] == labels]
            if not removed:
                return False
            self._producers = tuple(p for p in self._producers if not (p.name == name and p.key[1] == labels))
            for producer in removed:
                self._high_water.pop(producer.key, None)
        return True

    def producers(self) -> Tuple[MetricProducer, ...]:
        return self._producers

    def __len__(self):
        return len(self._producers)

    def _check_counter(self, producer: MetricProducer, ticket: int, value: float) -> None:
        with self._lock:
            mark = self._high_water.get(producer.key)
            if mark is not None and ticket < mark[0]:
                return
            if mark is not None and value < mark[1]:
                raise MetricProducerFault(producer.name, f"counter decreased from {mark[1]} to {value}")
            self._high_water[producer.key] = (ticket, value)

    def scrape(self) -> ScrapeResult:
        with self._lock:
            self._scrapes += 1
            ticket = self._scrapes
        samples = []
        skipped = []
        for producer in self._producers:
            try:
                sample = producer.sample()
                if producer.kind is MetricKind.COUNTER:
                    self._check_counter(producer, ticket, sample.value)
            except MetricProducerFault as fault:
                logger.warning("Skipping metric sample: %s", fault)
                skipped.append(producer.name)
            else:
                samples.append(sample)
        return ScrapeResult(tuple(samples), tuple(skipped))


class ProbeContext:
    """
    Process-scoped probe state, constructed once at startup.

    The HTTP layer only calls the three ``query_*`` methods; checkers and
    producers mutate ``readiness`` and ``metrics`` directly.
    """

    def __init__(
        self,
        liveness: Optional[LivenessTracker] = None,
        readiness: Optional[ReadinessTracker] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.liveness = liveness or LivenessTracker()
        self.readiness = readiness or ReadinessTracker()
        self.metrics = metrics or MetricsRegistry()

    def query_liveness(self) -> LivenessState:
        return self.liveness.snapshot()

    def query_readiness(self) -> ReadinessState:
        try:
            return self.readiness.snapshot()
        except Exception:
            logger.exception("Could not read readiness state; reporting not-ready")
            return ReadinessState(ReadinessStatus.NOT_READY)

    def query_metrics(self) -> ScrapeResult:
        try:
            return self.metrics.scrape()
        except Exception:
            logger.exception("Could not read metrics registry; returning empty scrape")
            return ScrapeResult()
