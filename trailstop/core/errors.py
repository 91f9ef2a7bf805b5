"""Exceptions raised at the package boundary."""


class TrailStopError(Exception):
    """Base class for trailstop errors."""


class InvalidPositionError(TrailStopError, ValueError):
    """Position input rejected (non-positive quantity or price, bad side)."""


class InvalidParameterError(TrailStopError, ValueError):
    """Strategy or switching parameter out of range."""


class PositionLimitError(TrailStopError):
    """Creating the position would exceed max_positions."""


class PriceUnavailableError(TrailStopError):
    """No usable price from the source or the cache."""
