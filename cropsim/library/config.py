"""
Explicit configuration of a simulation controller.

All tunables (weather source, timeouts, auto-advance cadence, seed, extra
crop profiles and locations) live in one frozen :class:`SimulationConfig`
that is passed to the collaborators at construction time. Nothing is read
from the environment.

Configuration files are YAML mappings whose keys mirror the dataclass
fields; ``crops`` and ``locations`` are lists of plain records::

    seed: 7
    start_date: 2024-06-15
    tick_interval: 1.0
    live_fallback: pause
    crops:
      - crop_id: sorghum
        base_temperature: 10
        ...
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from cropsim.core.crops import CropProfile
from cropsim.core.data_containers import LocationRef, WeatherMode
from cropsim.library.locations import location_from_mapping

FALLBACK_POLICIES = ("pause", "synthetic")

OPEN_METEO_ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"

# Calendar of synthetic runs without an explicit start date.
DEFAULT_SYNTHETIC_START = datetime.date(2024, 6, 1)
# Live runs without a start date replay the season that began a year ago.
LIVE_LOOKBACK_DAYS = 365


@dataclass(frozen=True, slots=True)
class SimulationConfig:
    """
    Controller and collaborator settings.

    Parameters
    ----------
    seed : int, default=42
        Seed of synthetic weather.
    start_date : datetime.date, optional
        Calendar date of day 1. ``None`` means ``DEFAULT_SYNTHETIC_START``
        for synthetic weather and ``LIVE_LOOKBACK_DAYS`` before the
        initialization date for live weather.
    tick_interval : float, default=5.0
        Seconds between auto-advance steps.
    live_weather_url : str
        Daily weather archive endpoint (Open-Meteo compatible).
    live_timeout : float, default=10.0
        Seconds before a live request fails with ``WeatherUnavailableError``.
    live_window_days : int, default=30
        Days fetched per live request.
    live_fallback : {'pause', 'synthetic'}, default='pause'
        What the controller does when live data is unavailable.
    weather_records : pathlib.Path, optional
        CSV of recorded daily weather; when set, live mode looks days up in
        it instead of calling the network.
    soil_moisture_scale : float, default=1.0
        Multiplier on the initial soil moisture.
    max_days : int, default=365
        Upper bound for :meth:`SimulationController.run_until_complete`.
    crops : tuple of CropProfile
        Extra crop profiles (override presets with the same id).
    locations : tuple of LocationRef
        Extra locations.
    """

    seed: int = 42
    start_date: Optional[datetime.date] = None
    tick_interval: float = 5.0
    live_weather_url: str = OPEN_METEO_ARCHIVE_URL
    live_timeout: float = 10.0
    live_window_days: int = 30
    live_fallback: str = "pause"
    weather_records: Optional[Path] = None
    soil_moisture_scale: float = 1.0
    max_days: int = 365
    crops: tuple[CropProfile, ...] = field(default_factory=tuple)
    locations: tuple[LocationRef, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.tick_interval <= 0.0:
            raise ValueError("tick_interval must be positive.")
        if self.live_timeout <= 0.0:
            raise ValueError("live_timeout must be positive.")
        if self.live_window_days < 1:
            raise ValueError("live_window_days must be ≥ 1.")
        if self.live_fallback not in FALLBACK_POLICIES:
            raise ValueError(
                f"live_fallback must be one of {FALLBACK_POLICIES}, "
                f"got '{self.live_fallback}'."
            )
        if self.max_days < 1:
            raise ValueError("max_days must be ≥ 1.")
        if self.weather_records is not None:
            object.__setattr__(
                self, "weather_records", Path(self.weather_records)
            )
        object.__setattr__(self, "crops", tuple(self.crops))
        object.__setattr__(self, "locations", tuple(self.locations))

    def resolved_start_date(
        self, mode: WeatherMode | str = WeatherMode.SYNTHETIC
    ) -> datetime.date:
        """Calendar date of day 1 for a run in weather ``mode``."""
        if self.start_date is not None:
            return self.start_date
        if WeatherMode(mode) is WeatherMode.SYNTHETIC:
            return DEFAULT_SYNTHETIC_START
        return datetime.date.today() - datetime.timedelta(
            days=LIVE_LOOKBACK_DAYS
        )

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], base_dir: Optional[Path] = None
    ) -> "SimulationConfig":
        """
        Build a config from a plain mapping.

        Relative ``weather_records`` paths are resolved against
        ``base_dir``.

        Raises
        ------
        ValueError
            On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(
                f"Unknown configuration keys: {sorted(unknown)}"
            )
        kwargs = dict(data)
        if "crops" in kwargs:
            kwargs["crops"] = tuple(
                CropProfile.from_mapping(c) for c in kwargs["crops"] or ()
            )
        if "locations" in kwargs:
            kwargs["locations"] = tuple(
                location_from_mapping(rec) for rec in kwargs["locations"] or ()
            )
        start = kwargs.get("start_date")
        if isinstance(start, str):
            kwargs["start_date"] = datetime.date.fromisoformat(start)
        records = kwargs.get("weather_records")
        if records is not None:
            records = Path(records)
            if base_dir is not None and not records.is_absolute():
                records = Path(base_dir, records)
            kwargs["weather_records"] = records
        return cls(**kwargs)


def load_config(path: Path | str) -> SimulationConfig:
    """Read a YAML configuration file into a :class:`SimulationConfig`."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{path} must contain a YAML mapping.")
    return SimulationConfig.from_mapping(data, base_dir=path.parent)
