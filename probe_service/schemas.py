"""Response bodies for the probe routes."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .probes import LivenessState, ReadinessState, ScrapeResult


class _Response(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_content(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class RootResponse(_Response):
    message: str
    version: str
    environment: str
    timestamp: str


class LivenessResponse(_Response):
    status: str = Field(..., description="alive or degraded; informational only")
    uptime_seconds: float = Field(..., alias="uptimeSeconds")
    reason: Optional[str] = None

    @classmethod
    def from_state(cls, state: LivenessState) -> "LivenessResponse":
        return cls(status=state.status.value, uptime_seconds=state.uptime_seconds, reason=state.reason)


class CheckResponse(_Response):
    name: str
    status: str
    detail: Optional[str] = None


class ReadinessResponse(_Response):
    status: str = Field(..., description="ready or not-ready")
    checks: List[CheckResponse] = Field(default_factory=list)
    failing: List[str] = Field(default_factory=list)

    @classmethod
    def from_state(cls, state: ReadinessState) -> "ReadinessResponse":
        return cls(
            status=state.status.value,
            checks=[CheckResponse(name=c.name, status=c.status.value, detail=c.detail) for c in state.checks],
            failing=list(state.failing),
        )


class SampleResponse(_Response):
    name: str
    kind: str
    value: float
    labels: Dict[str, str] = Field(default_factory=dict)


class MetricsResponse(_Response):
    samples: List[SampleResponse] = Field(default_factory=list)
    skipped: int = 0
    skipped_producers: List[str] = Field(default_factory=list, alias="skippedProducers")

    @classmethod
    def from_result(cls, result: ScrapeResult) -> "MetricsResponse":
        return cls(
            samples=[
                SampleResponse(name=s.name, kind=s.kind.value, value=s.value, labels=dict(s.labels))
                for s in result.samples
            ],
            skipped=result.skipped,
            skipped_producers=list(result.skipped_producers),
        )


class MemoryInfo(_Response):
    used_mb: int = Field(..., alias="usedMb")
    virtual_mb: int = Field(..., alias="virtualMb")
    system_total_mb: int = Field(..., alias="systemTotalMb")


class InfoResponse(_Response):
    application: str
    version: str
    environment: str
    python_version: str = Field(..., alias="pythonVersion")
    platform: str
    architecture: str
    pid: int
    memory: MemoryInfo


class ErrorResponse(_Response):
    error: str
    path: Optional[str] = None
    message: Optional[str] = None
