"""
Exception taxonomy of the simulation engine.

Every failure raised by :mod:`cropsim` derives from :class:`CropSimError`, so
callers can catch the whole family at once. Each class also derives from the
closest builtin (``KeyError`` for lookups, ``ValueError`` for bad inputs,
``RuntimeError`` for run-time conditions) so existing ``except`` clauses keep
working.
"""

from __future__ import annotations


class CropSimError(Exception):
    """Base class for all simulation errors."""


class UnknownCropError(CropSimError, KeyError):
    """The requested crop identifier has no profile."""

    def __str__(self) -> str:
        # KeyError quotes its message; keep it readable.
        return str(self.args[0]) if self.args else ""


class UnknownLocationError(CropSimError, KeyError):
    """The requested location cannot be resolved."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class OutOfOrderWeatherError(CropSimError, ValueError):
    """A weather observation was supplied for the wrong simulated day."""


class WeatherUnavailableError(CropSimError, RuntimeError):
    """No weather data exists (or could be fetched) for a day/location."""


class BusyError(CropSimError, RuntimeError):
    """A step is already in flight for this run; retry once it completes."""


class SimulationStateError(CropSimError, RuntimeError):
    """The command is not allowed in the controller's current state."""
