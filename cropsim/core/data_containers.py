"""
Core containers for weather, soil, locations and simulation state.

This module defines the value objects exchanged between the simulation
collaborators. Inputs (:class:`WeatherObservation`, :class:`SoilState`,
:class:`LocationRef`) validate themselves on construction; the run state
(:class:`SimulationState`) is a frozen record that the engine replaces
wholesale every simulated day, so readers never observe a half-updated day.

Classes
-------
WeatherMode
    ``live`` or ``synthetic`` weather source selection.
TextureClass
    Enumerated soil texture with its root-zone water-holding capacity.
ClimateNormals
    Long-term climate summary used by synthetic weather generation.
LocationRef
    Named place with coordinates, soil region and climate normals.
WeatherObservation
    One day of forcing data.
SoilState
    Soil moisture, fertility, texture and pH.
DayRecord
    Audit/agronomic record of one simulated day.
SimulationState
    Mutable-by-replacement root of a simulation run.
DayResult
    ``(state, record)`` pair returned by the engine.

Notes
-----
- Moisture and fertility are fractions in ``[0, 1]``; precipitation is in mm,
  radiation in MJ m⁻² day⁻¹, temperatures in °C.
- ``SoilState.with_moisture`` clamps to ``[0, 1]``; callers never need to
  clip by hand.
"""

from __future__ import annotations

import datetime
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from cropsim.core.crops import GrowthStage

STRESS_KINDS: tuple[str, ...] = ("heat", "drought")


class WeatherMode(str, Enum):
    """Weather source of a run."""

    LIVE = "live"
    SYNTHETIC = "synthetic"


class TextureClass(str, Enum):
    """Soil texture classes with their root-zone capacity."""

    SANDY = "sandy"
    LOAM = "loam"
    CLAY = "clay"
    SILTY = "silty"

    @property
    def capacity_mm(self) -> float:
        """Plant-available water held by a full root zone [mm]."""
        return _CAPACITY_MM[self]

    @property
    def field_moisture(self) -> float:
        """Typical moisture fraction a few days after a soaking rain."""
        return _FIELD_MOISTURE[self]

    @classmethod
    def parse(cls, value: "str | TextureClass") -> "TextureClass":
        """Map free-form texture names (``"Clay loam"``) onto a class."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text.startswith("sand"):
            return cls.SANDY
        if text.startswith("silt"):
            return cls.SILTY
        if text.startswith("clay"):
            return cls.CLAY
        if "loam" in text:
            return cls.LOAM
        raise ValueError(f"Unknown soil texture '{value}'.")


_CAPACITY_MM = {
    TextureClass.SANDY: 70.0,
    TextureClass.LOAM: 140.0,
    TextureClass.CLAY: 180.0,
    TextureClass.SILTY: 160.0,
}
_FIELD_MOISTURE = {
    TextureClass.SANDY: 0.45,
    TextureClass.LOAM: 0.60,
    TextureClass.CLAY: 0.70,
    TextureClass.SILTY: 0.65,
}


@dataclass(frozen=True, slots=True)
class ClimateNormals:
    """
    Long-term climate of a location.

    Parameters
    ----------
    mean_temp : float
        Annual mean daily temperature [°C].
    temp_amplitude : float
        Half the difference between the warmest and coldest month [°C].
    diurnal_range : float
        Mean daily max − min temperature [°C].
    annual_precip : float
        Annual precipitation [mm].
    wet_peak_doy : int
        Day of year at the centre of the rainy season.
    rain_seasonality : float
        0 for evenly spread rain, up to 1 for a strongly monsoonal regime.
    """

    mean_temp: float = 20.0
    temp_amplitude: float = 8.0
    diurnal_range: float = 11.0
    annual_precip: float = 800.0
    wet_peak_doy: int = 200
    rain_seasonality: float = 0.4

    def __post_init__(self):
        if self.temp_amplitude < 0.0 or self.diurnal_range < 0.0:
            raise ValueError("Temperature amplitudes must be ≥ 0.")
        if self.annual_precip < 0.0:
            raise ValueError("annual_precip must be ≥ 0.")
        if not (0.0 <= self.rain_seasonality <= 1.0):
            raise ValueError("rain_seasonality must be in [0, 1].")
        if not (1 <= self.wet_peak_doy <= 366):
            raise ValueError("wet_peak_doy must be in [1, 366].")


@dataclass(frozen=True, slots=True)
class LocationRef:
    """
    A place a crop can be simulated at.

    ``key`` is the normalized lookup name; ``soil_region`` names the WRB
    reference soil group used by the soil lookup table.
    """

    name: str
    latitude: float
    longitude: float
    soil_region: str = "default"
    climate: ClimateNormals = field(default_factory=ClimateNormals)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Location name must be non-empty.")
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError("latitude must be in [-90, 90].")
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError("longitude must be in [-180, 180].")

    @property
    def key(self) -> str:
        return normalize_location_name(self.name)


def normalize_location_name(name: str) -> str:
    return " ".join(str(name).lower().replace(",", " ").split())


@dataclass(frozen=True, slots=True)
class WeatherObservation:
    """
    One simulated day of weather.

    Attributes
    ----------
    day : int
        Simulated day index (1 for the first advanced day).
    min_temp, max_temp : float
        Daily temperature bounds [°C]; ``min_temp ≤ max_temp``.
    precipitation : float
        Daily precipitation [mm], ≥ 0.
    radiation : float
        Global radiation [MJ m⁻² day⁻¹], ≥ 0.
    date : datetime.date, optional
        Calendar date mapped to ``day``.
    source : str
        ``"synthetic"``, ``"live"`` or ``"recorded"``.

    Raises
    ------
    ValueError
        If a value is not finite, ``day < 1``, ``min_temp > max_temp`` or a
        flux is negative.
    """

    day: int
    min_temp: float
    max_temp: float
    precipitation: float = 0.0
    radiation: float = 15.0
    date: Optional[datetime.date] = None
    source: str = "synthetic"

    def __post_init__(self):
        values = (self.min_temp, self.max_temp, self.precipitation,
                  self.radiation)
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Non-finite weather value for day {self.day}.")
        if self.day < 1:
            raise ValueError("Weather day index must be ≥ 1.")
        if self.min_temp > self.max_temp:
            raise ValueError(
                f"min_temp ({self.min_temp}) exceeds max_temp "
                f"({self.max_temp}) on day {self.day}."
            )
        if self.precipitation < 0.0 or self.radiation < 0.0:
            raise ValueError("precipitation and radiation must be ≥ 0.")

    @property
    def mean_temp(self) -> float:
        return 0.5 * (self.min_temp + self.max_temp)


@dataclass(frozen=True, slots=True)
class SoilState:
    """
    Soil condition of a run.

    Moisture is mutated daily by the growth engine (through
    :meth:`with_moisture`); fertility, texture and pH stay fixed for the
    whole run.
    """

    moisture: float
    fertility: float
    texture: TextureClass = TextureClass.LOAM
    ph: float = 6.5
    soil_class: str = "default"

    def __post_init__(self):
        object.__setattr__(self, "texture", TextureClass.parse(self.texture))
        if not (0.0 <= self.moisture <= 1.0):
            raise ValueError("Soil moisture must be in [0, 1].")
        if not (0.0 <= self.fertility <= 1.0):
            raise ValueError("Soil fertility must be in [0, 1].")
        if not (0.0 < self.ph <= 14.0):
            raise ValueError("Soil pH must be in (0, 14].")

    @property
    def capacity_mm(self) -> float:
        return self.texture.capacity_mm

    def with_moisture(self, moisture: float) -> "SoilState":
        """Return a copy with ``moisture`` clamped to ``[0, 1]``."""
        return replace(self, moisture=min(max(float(moisture), 0.0), 1.0))


@dataclass(frozen=True, slots=True)
class DayRecord:
    """Audit record of one ``advance_one_day`` call."""

    day: int
    stage_code: str
    accumulated_growth_units: float
    raw_growth_units: float = 0.0
    growth_units: float = 0.0
    moisture_modifier: float = 1.0
    moisture: float = 0.0
    stress: Mapping[str, float] = field(
        default_factory=lambda: {k: 0.0 for k in STRESS_KINDS}
    )
    biomass_increment: float = 0.0
    transitioned: bool = False
    weather: Optional[WeatherObservation] = None
    noop: bool = False

    def as_row(self) -> dict[str, Any]:
        """Flatten into a plain dict (one table row)."""
        row: dict[str, Any] = dict(
            day=self.day,
            stage=self.stage_code,
            gdd_raw=self.raw_growth_units,
            gdd=self.growth_units,
            gdd_cum=self.accumulated_growth_units,
            moisture_modifier=self.moisture_modifier,
            moisture=self.moisture,
            biomass_increment=self.biomass_increment,
            transitioned=self.transitioned,
            noop=self.noop,
        )
        for kind in STRESS_KINDS:
            row[f"{kind}_stress"] = self.stress.get(kind, 0.0)
        w = self.weather
        row.update(
            date=w.date if w else None,
            min_temp=w.min_temp if w else float("nan"),
            max_temp=w.max_temp if w else float("nan"),
            precipitation=w.precipitation if w else float("nan"),
            radiation=w.radiation if w else float("nan"),
            source=w.source if w else None,
        )
        return row


@dataclass(frozen=True, slots=True)
class SimulationState:
    """
    Root record of a simulation run.

    Attributes
    ----------
    initialized : bool
        False until a crop, location, soil and weather source are resolved.
    crop_id : str or None
        Selected crop.
    current_day : int
        Days advanced since initialization (≥ 0).
    accumulated_growth_units : float
        Growing degree days accrued so far; never decreases within a run.
    stage_index : int
        Index of ``current_stage`` in the profile; never decreases.
    current_stage : GrowthStage or None
        Highest stage whose threshold ≤ ``accumulated_growth_units``.
    cumulative_stress : mapping of str to float
        Accumulated stress per kind (``"heat"``, ``"drought"``); each entry
        never decreases.
    running : bool
        Whether auto-advance is active.
    soil : SoilState or None
        Current soil condition.
    location : LocationRef or None
        Location of the run.
    weather_mode : WeatherMode
        Weather source selection.
    biomass : float
        Cumulative above-ground biomass proxy [g m⁻²].
    idle_days : int
        Advances requested after maturity (each one a no-op).
    """

    initialized: bool = False
    crop_id: Optional[str] = None
    current_day: int = 0
    accumulated_growth_units: float = 0.0
    stage_index: int = 0
    current_stage: Optional[GrowthStage] = None
    cumulative_stress: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType(
            {k: 0.0 for k in STRESS_KINDS}
        )
    )
    running: bool = False
    soil: Optional[SoilState] = None
    location: Optional[LocationRef] = None
    weather_mode: WeatherMode = WeatherMode.SYNTHETIC
    biomass: float = 0.0
    idle_days: int = 0

    def __post_init__(self):
        if self.current_day < 0:
            raise ValueError("current_day must be ≥ 0.")
        if self.accumulated_growth_units < 0.0:
            raise ValueError("accumulated_growth_units must be ≥ 0.")
        # Freeze a private copy so callers cannot mutate shared totals.
        object.__setattr__(
            self,
            "cumulative_stress",
            MappingProxyType(dict(self.cumulative_stress)),
        )
        object.__setattr__(
            self, "weather_mode", WeatherMode(self.weather_mode)
        )

    @classmethod
    def uninitialized(
        cls, weather_mode: WeatherMode = WeatherMode.SYNTHETIC
    ) -> "SimulationState":
        """Default record for a run that has not been initialized yet."""
        return cls(weather_mode=weather_mode)

    def agronomic_fields(self) -> dict[str, Any]:
        """The fields that define a run's agronomic trajectory."""
        return dict(
            current_day=self.current_day,
            accumulated_growth_units=self.accumulated_growth_units,
            stage_index=self.stage_index,
            stage_code=self.current_stage.code if self.current_stage else None,
            cumulative_stress=dict(self.cumulative_stress),
            moisture=self.soil.moisture if self.soil else None,
            biomass=self.biomass,
        )


@dataclass(frozen=True, slots=True)
class DayResult:
    """New state plus the audit record of the day that produced it."""

    state: SimulationState
    record: DayRecord
