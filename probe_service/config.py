"""
Runtime configuration read from environment variables.

Variables
---------
- ``HOST`` / ``PORT``: listen address (default ``0.0.0.0:8080``).
- ``APP_NAME``, ``APP_VERSION``, ``APP_ENV``: reported by ``/`` and ``/api/info``.
- ``LOG_LEVEL``: level of the ``probe_service`` logger.
- ``READINESS_DEPENDENCIES``: comma separated names reported by external
  checkers; each keeps the pod unready until it reports ``ok``.
- ``DEPENDENCY_TCP_CHECKS``: ``name=host:port`` pairs, comma separated,
  checked by the built-in TCP connect checker.
- ``CHECK_INTERVAL_SECONDS`` / ``CHECK_TIMEOUT_SECONDS``: checker schedule.
- ``INSTRUMENT_HTTP``: add HTTP request metrics to ``/metrics``.

In Kubernetes these come from the Deployment spec, ConfigMaps or Secrets.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from .errors import ConfigError

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _parse_number(name: str, value: str, cast=float, minimum=None):
    try:
        number = cast(value)
    except ValueError:
        raise ConfigError(f"{name} must be a {cast.__name__}, got {value!r}") from None
    if minimum is not None and number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def parse_tcp_checks(value: str) -> Dict[str, Tuple[str, int]]:
    """Parse ``db=postgres:5432,cache=redis:6379`` into ``{name: (host, port)}``."""
    checks = {}
    for item in _split_list(value):
        name, sep, target = item.partition("=")
        host, colon, port = target.rpartition(":")
        if not sep or not colon or not name.strip() or not host.strip():
            raise ConfigError(f"DEPENDENCY_TCP_CHECKS entry must look like name=host:port, got {item!r}")
        checks[name.strip()] = (host.strip().strip("[]"), _parse_number("DEPENDENCY_TCP_CHECKS port", port, int, 1))
    return checks


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    app_name: str = "k8s-probe-service"
    app_version: str = "1.0.0"
    app_env: str = "development"
    log_level: str = "INFO"
    readiness_dependencies: Tuple[str, ...] = ()
    tcp_checks: Mapping[str, Tuple[str, int]] = field(default_factory=dict)
    check_interval_seconds: float = 5.0
    check_timeout_seconds: float = 2.0
    instrument_http: bool = True

    @property
    def expected_dependencies(self) -> Tuple[str, ...]:
        names = list(self.readiness_dependencies)
        names.extend(name for name in self.tcp_checks if name not in names)
        return tuple(names)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()

        log_level = env.get("LOG_LEVEL", defaults.log_level).strip().upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        port = _parse_number("PORT", env.get("PORT", str(defaults.port)), int, 1)
        if port > 65535:
            raise ConfigError(f"PORT must be <= 65535, got {port}")

        return cls(
            host=env.get("HOST", defaults.host),
            port=port,
            app_name=env.get("APP_NAME", defaults.app_name),
            app_version=env.get("APP_VERSION", defaults.app_version),
            app_env=env.get("APP_ENV", defaults.app_env),
            log_level=log_level,
            readiness_dependencies=_split_list(env.get("READINESS_DEPENDENCIES", "")),
            tcp_checks=parse_tcp_checks(env.get("DEPENDENCY_TCP_CHECKS", "")),
            check_interval_seconds=_parse_number(
                "CHECK_INTERVAL_SECONDS", env.get("CHECK_INTERVAL_SECONDS", "5"), float, 0.1
            ),
            check_timeout_seconds=_parse_number(
                "CHECK_TIMEOUT_SECONDS", env.get("CHECK_TIMEOUT_SECONDS", "2"), float, 0.01
            ),
            instrument_http=_parse_bool("INSTRUMENT_HTTP", env.get("INSTRUMENT_HTTP", "true")),
        )
