"""Exceptions raised by the service."""


class ConfigError(ValueError):
    """A configuration or settings file is invalid."""


class SubnetExhaustedError(RuntimeError):
    """No private /24 could be found that doesn't overlap a local subnet."""
