"""Exceptions raised while configuring an application manager."""


class ConfigurationError(RuntimeError):
    """Fatal setup error: the manager cannot run with its current configuration."""


class InvalidArgumentError(ConfigurationError, ValueError):
    """A configuration value is out of its admissible domain."""
