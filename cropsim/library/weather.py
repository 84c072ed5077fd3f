"""
Daily weather providers.

Every provider answers one question, :meth:`WeatherProvider.observation_for`:
*what was the weather of simulated day ``day`` at ``location``?* Day ``1`` is
mapped to the provider's ``start_date`` and each following day to the next
calendar date.

Classes
-------
WeatherProvider
    Abstract base; enforces strictly increasing days per location.
SyntheticWeatherProvider
    Seeded pseudo-seasonal generator; identical ``(location, day, seed)``
    always yields an identical observation.
LiveWeatherProvider
    Daily archive lookups over HTTP (Open-Meteo compatible) with a timeout.
RecordedWeatherProvider
    Lookups in a table of recorded daily weather (pandas).

Functions
---------
make_provider
    Select the provider for a weather mode and configuration.
clear_sky_radiation
    FAO-56 clear-sky global radiation for a latitude and day of year.

Notes
-----
- Providers keep no data beyond the current run: :meth:`reset` clears the
  ordering bookkeeping and any cached downloads.
- A day whose lookup failed can be requested again; a day that was already
  delivered cannot (``OutOfOrderWeatherError``).
"""

from __future__ import annotations

import datetime
import logging
import math
import threading
import zlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional

import numpy as np
import pandas as pd
import requests

from cropsim.core.data_containers import (
    LocationRef,
    WeatherMode,
    WeatherObservation,
)
from cropsim.core.errors import (
    OutOfOrderWeatherError,
    WeatherUnavailableError,
)
from cropsim.library.config import DEFAULT_SYNTHETIC_START, SimulationConfig

logger = logging.getLogger(__name__)

# Solar constant [MJ m⁻² min⁻¹] (FAO-56, eq. 21).
SOLAR_CONSTANT = 0.0820

# Perturbations are drawn from N(0, σ) and clipped at ±CLIP_SIGMAS·σ.
CLIP_SIGMAS = 2.5


def clear_sky_radiation(latitude: float, doy: int) -> float:
    """
    Clear-sky global radiation [MJ m⁻² day⁻¹] (FAO-56, eqs. 21-25, 37).

    Parameters
    ----------
    latitude : float
        Latitude in decimal degrees.
    doy : int
        Day of year (1-366).

    Returns
    -------
    float
        ``0.75 × Ra`` where ``Ra`` is the extraterrestrial radiation.
    """
    phi = math.radians(latitude)
    dr = 1.0 + 0.033 * math.cos(2.0 * math.pi * doy / 365.0)
    delta = 0.409 * math.sin(2.0 * math.pi * doy / 365.0 - 1.39)
    x = -math.tan(phi) * math.tan(delta)
    ws = math.acos(min(max(x, -1.0), 1.0))  # polar day/night safe
    ra = (
        24.0 * 60.0 / math.pi
        * SOLAR_CONSTANT
        * dr
        * (
            ws * math.sin(phi) * math.sin(delta)
            + math.cos(phi) * math.cos(delta) * math.sin(ws)
        )
    )
    return max(0.75 * ra, 0.0)


class WeatherProvider(ABC):
    """
    Base class of all weather sources.

    Parameters
    ----------
    start_date : datetime.date
        Calendar date of simulated day 1.
    """

    source = "unknown"

    def __init__(self, start_date: datetime.date):
        self.start_date = start_date
        self._last_day: dict[str, int] = {}
        self._lock = threading.Lock()

    def date_for(self, day: int) -> datetime.date:
        return self.start_date + datetime.timedelta(days=day - 1)

    def observation_for(
        self, day: int, location: LocationRef
    ) -> WeatherObservation:
        """
        Weather of simulated ``day`` at ``location``.

        Raises
        ------
        ValueError
            If ``day < 1``.
        OutOfOrderWeatherError
            If ``day`` was already delivered (or an earlier day is asked
            after a later one) for this location.
        WeatherUnavailableError
            If the source has no data for the day.
        """
        if day < 1:
            raise ValueError(f"Simulated days start at 1, got {day}.")
        with self._lock:
            last = self._last_day.get(location.key, 0)
        if day <= last:
            raise OutOfOrderWeatherError(
                f"Day {day} requested after day {last} for {location.name}."
            )
        obs = self._observe(day, location)
        with self._lock:
            self._last_day[location.key] = max(
                self._last_day.get(location.key, 0), day
            )
        return obs

    def reset(self) -> None:
        """Forget everything about the current run."""
        with self._lock:
            self._last_day.clear()

    @abstractmethod
    def _observe(
        self, day: int, location: LocationRef
    ) -> WeatherObservation:
        """Produce the observation; ordering is already checked."""


# ---------------------------
# Synthetic
# ---------------------------
class SyntheticWeatherProvider(WeatherProvider):
    """
    Deterministic pseudo-seasonal weather.

    Each observation is generated from its own random stream, seeded with
    ``SeedSequence([seed, crc32(location.key), day])``, so observations do
    not depend on which other days were generated before.

    Temperature follows the location's annual sinusoid (peak in July in the
    northern hemisphere, January in the southern one) plus a bounded
    Gaussian perturbation. Rain occurrence and amount follow the seasonal
    rain distribution (gamma-distributed wet-day totals). Radiation is the
    clear-sky value reduced by cloudiness, which is higher on wet days.

    Parameters
    ----------
    seed : int, default=42
        Global seed of the generator.
    start_date : datetime.date
        Calendar date of day 1.
    temp_sigma : float, default=1.5
        Standard deviation of the daily temperature perturbation [°C].
    """

    source = "synthetic"

    def __init__(
        self,
        seed: int = 42,
        start_date: datetime.date = DEFAULT_SYNTHETIC_START,
        temp_sigma: float = 1.5,
    ):
        super().__init__(start_date)
        self.seed = int(seed)
        self.temp_sigma = temp_sigma

    def rng_for(self, day: int, location: LocationRef) -> np.random.Generator:
        entropy = [
            self.seed % 2**32,
            zlib.crc32(location.key.encode("utf-8")),
            int(day),
        ]
        return np.random.default_rng(np.random.SeedSequence(entropy))

    def _observe(
        self, day: int, location: LocationRef
    ) -> WeatherObservation:
        rng = self.rng_for(day, location)
        normals = location.climate
        when = self.date_for(day)
        doy = when.timetuple().tm_yday

        # Warmest day: ~19 July (north) or ~19 January (south).
        peak = 200 if location.latitude >= 0.0 else 19
        seasonal = normals.temp_amplitude * math.cos(
            2.0 * math.pi * (doy - peak) / 365.25
        )

        # Rain first: wet days are cooler and have a narrower daily range.
        wetness = 1.0 + normals.rain_seasonality * math.cos(
            2.0 * math.pi * (doy - normals.wet_peak_doy) / 365.25
        )
        expected_mm = normals.annual_precip / 365.0 * wetness
        p_wet = float(np.clip(0.3 * wetness, 0.02, 0.9))
        wet = rng.random() < p_wet
        shape = 0.8
        amount = rng.gamma(shape, max(expected_mm / p_wet, 1e-6) / shape)
        precipitation = float(amount) if wet else 0.0

        noise = float(
            np.clip(
                rng.normal(0.0, self.temp_sigma),
                -CLIP_SIGMAS * self.temp_sigma,
                CLIP_SIGMAS * self.temp_sigma,
            )
        )
        mean = normals.mean_temp + seasonal + noise - (1.0 if wet else 0.0)
        spread = normals.diurnal_range * float(
            np.clip(rng.normal(1.0, 0.15), 0.6, 1.4)
        )
        if wet:
            spread *= 0.7

        cloud = rng.uniform(0.35, 0.7) if wet else rng.uniform(0.8, 1.0)
        radiation = clear_sky_radiation(location.latitude, doy) * float(cloud)

        return WeatherObservation(
            day=day,
            min_temp=mean - 0.5 * spread,
            max_temp=mean + 0.5 * spread,
            precipitation=precipitation,
            radiation=radiation,
            date=when,
            source=self.source,
        )


# ---------------------------
# Live (HTTP)
# ---------------------------
class LiveWeatherProvider(WeatherProvider):
    """
    Daily weather from an Open-Meteo compatible archive endpoint.

    Requests cover ``window_days`` consecutive dates so that a season of
    stepping needs only a handful of calls. Every request uses ``timeout``;
    network errors, HTTP errors, malformed payloads, missing dates and null
    values all surface as :class:`WeatherUnavailableError`.

    Parameters
    ----------
    start_date : datetime.date
        Calendar date of day 1.
    base_url : str
        Endpoint URL.
    timeout : float, default=10.0
        Request timeout [s].
    window_days : int, default=30
        Dates fetched per request.
    archive_lag_days : int, default=5
        Days before today that the archive may still be missing; later
        dates are never requested.
    session : requests.Session, optional
        HTTP session (injectable for tests).
    """

    source = "live"
    DAILY_FIELDS = (
        "temperature_2m_min",
        "temperature_2m_max",
        "precipitation_sum",
        "shortwave_radiation_sum",
    )

    def __init__(
        self,
        start_date: datetime.date,
        base_url: str,
        timeout: float = 10.0,
        window_days: int = 30,
        archive_lag_days: int = 5,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(start_date)
        self.base_url = base_url
        self.timeout = timeout
        self.window_days = window_days
        self.archive_lag_days = archive_lag_days
        self.session = session or requests.Session()
        self._cache: dict[tuple[str, datetime.date], tuple[float, ...]] = {}

    def reset(self) -> None:
        super().reset()
        with self._lock:
            self._cache.clear()

    def latest_archived_date(self) -> datetime.date:
        return datetime.date.today() - datetime.timedelta(
            days=self.archive_lag_days
        )

    def _observe(
        self, day: int, location: LocationRef
    ) -> WeatherObservation:
        when = self.date_for(day)
        key = (location.key, when)
        with self._lock:
            cached = self._cache.get(key)
        if cached is None:
            if when > self.latest_archived_date():
                raise WeatherUnavailableError(
                    f"Live weather for {when.isoformat()} is not archived yet."
                )
            self._fetch_window(location, when)
            with self._lock:
                cached = self._cache.get(key)
        if cached is None:
            raise WeatherUnavailableError(
                f"No live weather for {location.name} on {when.isoformat()}."
            )
        tmin, tmax, precip, rad = cached
        try:
            return WeatherObservation(
                day=day,
                min_temp=min(tmin, tmax),
                max_temp=max(tmin, tmax),
                precipitation=max(precip, 0.0),
                radiation=max(rad, 0.0),
                date=when,
                source=self.source,
            )
        except ValueError as e:
            raise WeatherUnavailableError(
                f"Invalid live weather for {location.name} on "
                f"{when.isoformat()}: {e}"
            ) from e

    def _fetch_window(
        self, location: LocationRef, first: datetime.date
    ) -> None:
        last = min(
            first + datetime.timedelta(days=self.window_days - 1),
            self.latest_archived_date(),
        )
        params = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "start_date": first.isoformat(),
            "end_date": last.isoformat(),
            "daily": ",".join(self.DAILY_FIELDS),
            "timezone": "auto",
        }
        logger.debug("Fetching live weather %s", params)
        try:
            response = self.session.get(
                self.base_url, params=params, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise WeatherUnavailableError(
                f"Live weather request for {location.name} failed: {e}"
            ) from e

        rows = self._parse_daily(payload)
        with self._lock:
            for when, values in rows.items():
                self._cache[(location.key, when)] = values
        logger.info(
            "Fetched %d live weather days for %s from %s",
            len(rows),
            location.name,
            first.isoformat(),
        )

    @classmethod
    def _parse_daily(
        cls, payload: Any
    ) -> dict[datetime.date, tuple[float, ...]]:
        """Complete (non-null) rows of a ``daily`` payload by date."""
        if not isinstance(payload, Mapping):
            raise WeatherUnavailableError("Live weather payload is not JSON.")
        if payload.get("error"):
            raise WeatherUnavailableError(
                f"Live weather error: {payload.get('reason', 'unknown')}"
            )
        daily = payload.get("daily") or {}
        times = daily.get("time") or []
        columns = [daily.get(name) or [] for name in cls.DAILY_FIELDS]
        rows: dict[datetime.date, tuple[float, ...]] = {}
        for i, stamp in enumerate(times):
            values = [col[i] if i < len(col) else None for col in columns]
            if any(v is None for v in values):
                continue
            try:
                rows[datetime.date.fromisoformat(str(stamp))] = tuple(
                    float(v) for v in values
                )
            except (TypeError, ValueError):
                logger.warning("Skipping malformed live row %r", stamp)
        return rows


# ---------------------------
# Recorded (tabular)
# ---------------------------
class RecordedWeatherProvider(WeatherProvider):
    """
    Lookups in recorded daily weather.

    Parameters
    ----------
    frame : pandas.DataFrame
        Columns ``date``, ``min_temp``, ``max_temp``, ``precipitation``,
        ``radiation``; one row per date.
    start_date : datetime.date
        Calendar date of day 1.
    location_name : str, optional
        When set, only this location may be looked up.
    """

    source = "recorded"
    COLUMNS = ("min_temp", "max_temp", "precipitation", "radiation")
    ALIASES = {
        "FECHA": "date",
        "TMIN": "min_temp",
        "TMAX": "max_temp",
        "PREC": "precipitation",
        "RAD": "radiation",
    }

    def __init__(
        self,
        frame: pd.DataFrame,
        start_date: datetime.date,
        location_name: Optional[str] = None,
    ):
        super().__init__(start_date)
        missing = {"date", *self.COLUMNS} - set(frame.columns)
        if missing:
            raise ValueError(f"Weather records miss columns {sorted(missing)}")
        df = frame.loc[:, ["date", *self.COLUMNS]].copy()
        df["date"] = pd.to_datetime(df["date"]).dt.normalize()
        self._frame = df.drop_duplicates("date", keep="last").set_index("date")
        self.location_name = location_name

    @classmethod
    def from_csv(
        cls,
        path: Path | str,
        start_date: datetime.date,
        location_name: Optional[str] = None,
        **read_csv_kwargs,
    ) -> "RecordedWeatherProvider":
        df = pd.read_csv(path, **read_csv_kwargs)
        df.rename(columns=cls.ALIASES, inplace=True)
        return cls(df, start_date, location_name=location_name)

    def _observe(
        self, day: int, location: LocationRef
    ) -> WeatherObservation:
        if self.location_name and location.key != LocationRef(
            self.location_name, 0.0, 0.0
        ).key:
            raise WeatherUnavailableError(
                f"Recorded weather is for {self.location_name}, "
                f"not {location.name}."
            )
        when = self.date_for(day)
        try:
            row = self._frame.loc[pd.Timestamp(when)]
        except KeyError as e:
            raise WeatherUnavailableError(
                f"No recorded weather for {when.isoformat()}."
            ) from e
        values = [row[c] for c in self.COLUMNS]
        if any(pd.isna(v) for v in values):
            raise WeatherUnavailableError(
                f"Incomplete recorded weather for {when.isoformat()}."
            )
        tmin, tmax, precip, rad = (float(v) for v in values)
        return WeatherObservation(
            day=day,
            min_temp=tmin,
            max_temp=tmax,
            precipitation=precip,
            radiation=rad,
            date=when,
            source=self.source,
        )


def make_provider(
    mode: WeatherMode | str,
    config: SimulationConfig,
    start_date: Optional[datetime.date] = None,
    session: Optional[requests.Session] = None,
) -> WeatherProvider:
    """
    Provider for ``mode`` under ``config``.

    ``synthetic`` → :class:`SyntheticWeatherProvider`; ``live`` →
    :class:`RecordedWeatherProvider` when ``config.weather_records`` is set,
    otherwise :class:`LiveWeatherProvider`.
    """
    mode = WeatherMode(mode)
    start = start_date or config.resolved_start_date(mode)
    if mode is WeatherMode.SYNTHETIC:
        return SyntheticWeatherProvider(seed=config.seed, start_date=start)
    if config.weather_records is not None:
        return RecordedWeatherProvider.from_csv(config.weather_records, start)
    return LiveWeatherProvider(
        start_date=start,
        base_url=config.live_weather_url,
        timeout=config.live_timeout,
        window_days=config.live_window_days,
        session=session,
    )
