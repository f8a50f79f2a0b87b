class TSPIslandError(Exception):
    """Base class for errors raised by tsp_island."""


class ConfigurationError(TSPIslandError, ValueError):
    """Invalid run configuration or point-source expression."""


class PointSourceExhausted(TSPIslandError, RuntimeError):
    """A point source was asked for more points than it holds."""


class MigrationTimeout(TSPIslandError, TimeoutError):
    """No migration envelope arrived within the allotted time."""
