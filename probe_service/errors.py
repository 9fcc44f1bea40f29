"""Exception types raised by the probe service."""


class ProbeError(Exception):
    """Base class for probe service errors."""


class ConfigError(ProbeError, ValueError):
    """An environment variable holds a value that cannot be used."""


class DuplicateProducerError(ProbeError, ValueError):
    """A producer with the same name and label set is already registered."""


class MetricProducerFault(ProbeError):
    """A metric producer failed to compute its sample."""

    def __init__(self, producer, cause):
        super().__init__(f"metric producer {producer!r} failed: {cause}")
        self.producer = producer
        self.cause = cause
