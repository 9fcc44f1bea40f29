"""Liveness, readiness and metrics probes for orchestrated services."""

__version__ = "1.0.0"
