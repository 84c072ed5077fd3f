from __future__ import annotations

import datetime
from dataclasses import replace

import numpy.testing as npt
import pytest

from cropsim.core.crops import CropProfile
from cropsim.core.data_containers import (
    SoilState,
    WeatherObservation,
)
from cropsim.core.engine import (
    GrowthEngine,
    growing_degree_days,
    moisture_modifier,
    soil_factor,
    thermal_factor,
)
from cropsim.core.errors import OutOfOrderWeatherError, SimulationStateError
from cropsim.library.locations import LocationRegistry
from cropsim.library.weather import SyntheticWeatherProvider

ATOL = 1e-9
RTOL = 1e-9

ENGINE = GrowthEngine()


def _obs(day, tmin, tmax, precip=0.0, rad=20.0):
    return WeatherObservation(
        day=day, min_temp=tmin, max_temp=tmax, precipitation=precip,
        radiation=rad,
    )


# ---------------------------
# Rate functions
# ---------------------------
def test_gdd_average_method():
    assert growing_degree_days(8.0, 20.0, 10.0) == pytest.approx(4.0)
    assert growing_degree_days(2.0, 8.0, 10.0) == 0.0


def test_moisture_modifier_is_bounded_and_monotone():
    values = [moisture_modifier(m / 20, 0.5, 3.0) for m in range(21)]
    assert values[0] == pytest.approx(0.0, abs=ATOL)
    assert values[-1] == 1.0
    assert all(0.0 <= v <= 1.0 for v in values)
    assert all(b >= a for a, b in zip(values, values[1:]))
    assert moisture_modifier(0.5, 0.5) == 1.0


def test_thermal_factor_trapezoid(profile):
    # base 10, optimal (25, 30), critical 40
    assert thermal_factor(5.0, profile) == 0.0
    npt.assert_allclose(thermal_factor(17.5, profile), 0.5, atol=1e-6)
    assert thermal_factor(27.0, profile) == 1.0
    npt.assert_allclose(thermal_factor(35.0, profile), 0.5, atol=1e-6)
    assert thermal_factor(40.0, profile) == 0.0


def test_soil_factor_penalizes_acid_and_poor_soils():
    good = SoilState(moisture=0.5, fertility=0.8, ph=6.5)
    acid = SoilState(moisture=0.5, fertility=0.8, ph=4.0)
    poor = SoilState(moisture=0.5, fertility=0.1, ph=6.5)
    assert soil_factor(good) == 1.0
    assert soil_factor(acid) == pytest.approx(0.3)
    assert soil_factor(poor) == pytest.approx(0.3)


# ---------------------------
# advance_one_day
# ---------------------------
def test_cool_day_adds_four_growth_units(profile, state):
    res = ENGINE.advance_one_day(state, profile, _obs(1, 8.0, 20.0))
    assert res.record.growth_units == pytest.approx(4.0)
    assert res.state.accumulated_growth_units == pytest.approx(4.0)
    assert res.state.current_day == 1
    assert res.state.current_stage.code == "S0"


def test_stage_is_highest_threshold_reached(profile_factory, state_factory):
    profile = profile_factory(water=0.0)
    state = state_factory(profile)
    # 25 GDD per day: day 10 reaches 250 → stage with threshold 100.
    for day in range(1, 11):
        state = ENGINE.advance_one_day(
            state, profile, _obs(day, 30.0, 40.0)
        ).state
    npt.assert_allclose(state.accumulated_growth_units, 250.0, rtol=RTOL)
    assert state.current_stage.threshold == 100.0
    assert state.stage_index == 1


def test_transition_is_flagged_once(profile_factory, state_factory):
    profile = profile_factory(water=0.0)
    state = state_factory(profile)
    flags = []
    for day in range(1, 6):
        res = ENGINE.advance_one_day(state, profile, _obs(day, 30.0, 40.0))
        flags.append(res.record.transitioned)
        state = res.state
    assert flags == [False, False, False, True, False]


def test_engine_does_not_mutate_inputs(profile, state):
    before = state.agronomic_fields()
    ENGINE.advance_one_day(state, profile, _obs(1, 20.0, 30.0))
    assert state.agronomic_fields() == before


def test_out_of_order_weather_rejected(profile, state):
    with pytest.raises(OutOfOrderWeatherError):
        ENGINE.advance_one_day(state, profile, _obs(2, 20.0, 30.0))
    assert state.current_day == 0


def test_uninitialized_state_rejected(profile, state):
    with pytest.raises(SimulationStateError):
        ENGINE.advance_one_day(
            replace(state, initialized=False), profile, _obs(1, 20.0, 30.0)
        )


def test_missing_weather_before_maturity_rejected(profile, state):
    with pytest.raises(SimulationStateError):
        ENGINE.advance_one_day(state, profile, None)


def test_moisture_stays_in_unit_interval(profile, state_factory):
    wet = state_factory(profile, moisture=0.95)
    res = ENGINE.advance_one_day(wet, profile, _obs(1, 20.0, 30.0, 400.0))
    assert res.state.soil.moisture == 1.0

    dry = state_factory(profile, moisture=0.01)
    hot = ENGINE.advance_one_day(dry, profile, _obs(1, 35.0, 45.0))
    assert 0.0 <= hot.state.soil.moisture <= 1.0


def test_rain_and_uptake_balance(profile, state):
    # 20 mm rain (19 mm effective) on loam (140 mm), 15 GDD × 0.3 mm uptake.
    res = ENGINE.advance_one_day(state, profile, _obs(1, 20.0, 30.0, 20.0))
    expected = 0.6 + 19.0 / 140.0 - 0.3 * 15.0 / 140.0
    npt.assert_allclose(res.state.soil.moisture, expected, atol=ATOL)


def test_stress_accumulates_for_current_stage(profile, state_factory):
    dry = state_factory(profile, moisture=0.05)
    res = ENGINE.advance_one_day(dry, profile, _obs(1, 30.0, 38.0))
    # heat threshold 35 °C, drought threshold 0.2
    npt.assert_allclose(res.record.stress["heat"], 3.0, atol=ATOL)
    assert res.record.stress["drought"] > 0.0
    assert res.state.cumulative_stress["heat"] == res.record.stress["heat"]


def test_no_biomass_before_emergence(profile, state):
    res = ENGINE.advance_one_day(state, profile, _obs(1, 20.0, 30.0))
    assert res.state.stage_index == 0
    assert res.record.biomass_increment == 0.0


def test_terminal_state_is_a_noop(profile_factory, state_factory):
    profile = profile_factory(thresholds=(0.0, 10.0))
    state = state_factory(profile)
    state = ENGINE.advance_one_day(state, profile, _obs(1, 20.0, 30.0)).state
    assert state.stage_index == profile.final_index

    before = state.agronomic_fields()
    for _ in range(3):
        res = ENGINE.advance_one_day(state, profile, None)
        assert res.record.noop
        state = res.state
    assert state.agronomic_fields() == before
    assert state.idle_days == 3


def test_terminal_state_ignores_weather_day(profile_factory, state_factory):
    profile = profile_factory(thresholds=(0.0, 10.0))
    state = state_factory(profile)
    state = ENGINE.advance_one_day(state, profile, _obs(1, 20.0, 30.0)).state
    res = ENGINE.advance_one_day(state, profile, _obs(7, 20.0, 30.0))
    assert res.record.noop
    assert res.state.current_day == 1


def _run(profile, state, provider, location, days):
    out = []
    for day in range(1, days + 1):
        obs = provider.observation_for(day, location)
        state = ENGINE.advance_one_day(state, profile, obs).state
        out.append(state)
    return out


def test_season_is_monotone_and_reproducible(state_factory):
    profile = CropProfile.maize()
    location = LocationRegistry().resolve("Iowa, USA")
    start = datetime.date(2024, 5, 1)

    def season():
        state = state_factory(profile)
        return _run(
            profile,
            state,
            SyntheticWeatherProvider(seed=3, start_date=start),
            location,
            120,
        )

    a, b = season(), season()
    assert [s.agronomic_fields() for s in a] == [
        s.agronomic_fields() for s in b
    ]
    for prev, cur in zip(a, a[1:]):
        assert cur.accumulated_growth_units >= prev.accumulated_growth_units
        assert cur.stage_index >= prev.stage_index
        assert cur.biomass >= prev.biomass
        for kind, total in cur.cumulative_stress.items():
            assert total >= prev.cumulative_stress[kind]
        assert 0.0 <= cur.soil.moisture <= 1.0

