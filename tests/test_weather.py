from __future__ import annotations

import datetime

import numpy as np
import pandas as pd
import pytest
import requests

from cropsim.core.data_containers import WeatherMode
from cropsim.core.errors import (
    OutOfOrderWeatherError,
    WeatherUnavailableError,
)
from cropsim.library.config import (
    DEFAULT_SYNTHETIC_START,
    LIVE_LOOKBACK_DAYS,
    SimulationConfig,
)
from cropsim.library.locations import LocationRegistry
from cropsim.library.weather import (
    LiveWeatherProvider,
    RecordedWeatherProvider,
    SyntheticWeatherProvider,
    clear_sky_radiation,
    make_provider,
)

START = datetime.date(2024, 1, 1)
REGISTRY = LocationRegistry()


# ---------------------------
# HTTP doubles
# ---------------------------
class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Replays queued responses (or raises queued exceptions)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(dict(url=url, params=params, timeout=timeout))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _daily(start, n, tmin=10.0, tmax=22.0, precip=1.5, rad=18.0):
    days = [start + datetime.timedelta(days=i) for i in range(n)]
    return {
        "daily": {
            "time": [d.isoformat() for d in days],
            "temperature_2m_min": [tmin] * n,
            "temperature_2m_max": [tmax] * n,
            "precipitation_sum": [precip] * n,
            "shortwave_radiation_sum": [rad] * n,
        }
    }


def _live(session, window=5):
    return LiveWeatherProvider(
        start_date=START,
        base_url="https://example.test/archive",
        timeout=2.5,
        window_days=window,
        session=session,
    )


# ---------------------------
# Synthetic
# ---------------------------
def test_synthetic_is_deterministic_per_seed():
    loc = REGISTRY.resolve("New Delhi, India")
    p1 = SyntheticWeatherProvider(7, START)
    p2 = SyntheticWeatherProvider(7, START)
    series1 = [p1.observation_for(d, loc) for d in range(1, 61)]
    series2 = [p2.observation_for(d, loc) for d in range(1, 61)]
    assert series1 == series2

    other = SyntheticWeatherProvider(8, START)
    series3 = [other.observation_for(d, loc) for d in range(1, 61)]
    assert series1 != series3


def test_synthetic_day_does_not_depend_on_history():
    loc = REGISTRY.resolve("Iowa, USA")
    full = SyntheticWeatherProvider(1, START)
    for d in range(1, 30):
        full.observation_for(d, loc)
    skipped = SyntheticWeatherProvider(1, START)
    assert full.observation_for(30, loc) == skipped.observation_for(30, loc)


def test_synthetic_values_are_physical():
    loc = REGISTRY.resolve("Mato Grosso, Brazil")
    provider = SyntheticWeatherProvider(11, START)
    obs = [provider.observation_for(d, loc) for d in range(1, 366)]
    assert all(o.min_temp <= o.max_temp for o in obs)
    assert all(o.precipitation >= 0.0 for o in obs)
    assert all(o.radiation >= 0.0 for o in obs)
    assert all(o.source == "synthetic" for o in obs)
    assert obs[0].date == START
    assert obs[-1].date == datetime.date(2024, 12, 30)
    assert sum(o.precipitation for o in obs) > 0.0


@pytest.mark.parametrize(
    "name, warmer_in_july",
    [("Iowa, USA", True), ("Cordoba, Argentina", False)],
)
def test_synthetic_seasonality_follows_hemisphere(name, warmer_in_july):
    loc = REGISTRY.resolve(name)
    provider = SyntheticWeatherProvider(5, START)
    jan = np.mean(
        [provider.observation_for(d, loc).mean_temp for d in range(10, 25)]
    )
    jul = np.mean(
        [provider.observation_for(d, loc).mean_temp for d in range(190, 205)]
    )
    assert bool(jul > jan) == warmer_in_july


def test_clear_sky_radiation_longer_days_in_summer():
    assert clear_sky_radiation(45.0, 172) > clear_sky_radiation(45.0, 355)
    assert clear_sky_radiation(-45.0, 355) > clear_sky_radiation(-45.0, 172)
    assert clear_sky_radiation(89.0, 355) == pytest.approx(0.0, abs=1e-6)


def test_days_must_strictly_increase(location):
    provider = SyntheticWeatherProvider(1, START)
    provider.observation_for(2, location)
    with pytest.raises(OutOfOrderWeatherError):
        provider.observation_for(2, location)
    with pytest.raises(OutOfOrderWeatherError):
        provider.observation_for(1, location)
    provider.reset()
    provider.observation_for(1, location)


def test_day_index_starts_at_one(location):
    with pytest.raises(ValueError):
        SyntheticWeatherProvider(1, START).observation_for(0, location)


# ---------------------------
# Live
# ---------------------------
def test_live_fetches_a_window_and_caches_it(location):
    session = FakeSession(FakeResponse(_daily(START, 5)))
    provider = _live(session)
    first = provider.observation_for(1, location)
    second = provider.observation_for(2, location)

    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["timeout"] == 2.5
    assert call["params"]["start_date"] == "2024-01-01"
    assert call["params"]["end_date"] == "2024-01-05"
    assert call["params"]["latitude"] == location.latitude
    assert first.min_temp == 10.0 and first.max_temp == 22.0
    assert second.date == datetime.date(2024, 1, 2)
    assert second.source == "live"


def test_live_timeout_is_unavailable(location):
    session = FakeSession(requests.Timeout("read timed out"))
    with pytest.raises(WeatherUnavailableError):
        _live(session).observation_for(1, location)


def test_live_http_error_is_unavailable(location):
    session = FakeSession(FakeResponse({}, status=503))
    with pytest.raises(WeatherUnavailableError):
        _live(session).observation_for(1, location)


def test_live_null_values_are_unavailable(location):
    payload = _daily(START, 3)
    payload["daily"]["temperature_2m_max"][0] = None
    session = FakeSession(FakeResponse(payload), FakeResponse(payload))
    provider = _live(session, window=3)
    with pytest.raises(WeatherUnavailableError):
        provider.observation_for(1, location)
    assert provider.observation_for(2, location).day == 2


def test_live_failed_day_can_be_retried(location):
    session = FakeSession(
        requests.ConnectionError("offline"),
        FakeResponse(_daily(START, 5)),
    )
    provider = _live(session)
    with pytest.raises(WeatherUnavailableError):
        provider.observation_for(1, location)
    assert provider.observation_for(1, location).day == 1


def test_live_error_payload_is_unavailable(location):
    session = FakeSession(
        FakeResponse({"error": True, "reason": "out of range"})
    )
    with pytest.raises(WeatherUnavailableError, match="out of range"):
        _live(session).observation_for(1, location)


# ---------------------------
# Recorded
# ---------------------------
def _records():
    return pd.DataFrame(
        {
            "date": pd.date_range(START, periods=4, freq="D"),
            "min_temp": [5.0, 6.0, np.nan, 8.0],
            "max_temp": [15.0, 16.0, 17.0, 18.0],
            "precipitation": [0.0, 2.0, 0.0, 4.0],
            "radiation": [10.0, 11.0, 12.0, 13.0],
        }
    )


def test_recorded_lookup_by_calendar_date(location):
    provider = RecordedWeatherProvider(_records(), START)
    obs = provider.observation_for(2, location)
    assert obs.min_temp == 6.0
    assert obs.precipitation == 2.0
    assert obs.source == "recorded"


def test_recorded_gaps_are_unavailable(location):
    provider = RecordedWeatherProvider(_records(), START)
    with pytest.raises(WeatherUnavailableError):
        provider.observation_for(3, location)
    with pytest.raises(WeatherUnavailableError):
        provider.observation_for(10, location)


def test_recorded_from_csv_with_column_aliases(tmp_path, location):
    df = _records().rename(
        columns={
            "date": "FECHA",
            "min_temp": "TMIN",
            "max_temp": "TMAX",
            "precipitation": "PREC",
            "radiation": "RAD",
        }
    )
    path = tmp_path / "weather.csv"
    df.to_csv(path, index=False)
    provider = RecordedWeatherProvider.from_csv(path, START)
    assert provider.observation_for(4, location).max_temp == 18.0


def test_recorded_missing_columns_rejected():
    with pytest.raises(ValueError):
        RecordedWeatherProvider(_records().drop(columns="radiation"), START)


# ---------------------------
# Factory
# ---------------------------
def test_make_provider_selects_source(tmp_path):
    config = SimulationConfig(start_date=START)
    assert isinstance(
        make_provider(WeatherMode.SYNTHETIC, config), SyntheticWeatherProvider
    )
    assert isinstance(make_provider("live", config), LiveWeatherProvider)

    path = tmp_path / "weather.csv"
    _records().to_csv(path, index=False)
    recorded = SimulationConfig(start_date=START, weather_records=path)
    provider = make_provider("live", recorded)
    assert isinstance(provider, RecordedWeatherProvider)
    assert provider.start_date == START


def test_make_provider_default_start_dates():
    config = SimulationConfig()
    synthetic = make_provider("synthetic", config)
    assert synthetic.start_date == DEFAULT_SYNTHETIC_START

    live = make_provider("live", config, session=FakeSession())
    expected = datetime.date.today() - datetime.timedelta(
        days=LIVE_LOOKBACK_DAYS
    )
    assert live.start_date == expected
    assert live.start_date < live.latest_archived_date()


def _live_from(start, session, window=30):
    return LiveWeatherProvider(
        start_date=start,
        base_url="https://example.test/archive",
        window_days=window,
        archive_lag_days=5,
        session=session,
    )


def test_live_window_stops_at_the_archive():
    start = datetime.date.today() - datetime.timedelta(days=10)
    session = FakeSession(FakeResponse(_daily(start, 6)))
    provider = _live_from(start, session)
    loc = REGISTRY.resolve("New Delhi, India")

    assert provider.observation_for(1, loc).date == start
    params = session.calls[0]["params"]
    assert params["start_date"] == start.isoformat()
    latest = datetime.date.today() - datetime.timedelta(days=5)
    assert params["end_date"] == latest.isoformat()


def test_live_unarchived_day_fails_without_a_request():
    session = FakeSession()
    provider = _live_from(datetime.date.today(), session)
    with pytest.raises(WeatherUnavailableError, match="not archived"):
        provider.observation_for(1, REGISTRY.resolve("Iowa, USA"))
    assert session.calls == []
