from __future__ import annotations

import datetime
import threading
from typing import Iterable, Optional

import pytest

from cropsim.core.crops import CropProfile, GrowthStage
from cropsim.core.data_containers import (
    LocationRef,
    SimulationState,
    SoilState,
    WeatherObservation,
)
from cropsim.core.errors import WeatherUnavailableError
from cropsim.library.weather import WeatherProvider

START = datetime.date(2024, 6, 1)


class ScriptedWeatherProvider(WeatherProvider):
    """Constant weather with optional failures and a gate to hold a fetch."""

    source = "scripted"

    def __init__(
        self,
        start_date: datetime.date = START,
        temps: tuple[float, float] = (20.0, 30.0),
        precipitation: float = 0.0,
        fail_days: Iterable[int] = (),
        gate: Optional[threading.Event] = None,
        entered: Optional[threading.Event] = None,
    ):
        super().__init__(start_date)
        self.temps = temps
        self.precipitation = precipitation
        self.fail_days = set(fail_days)
        self.gate = gate
        self.entered = entered
        self.calls: list[int] = []

    def _observe(self, day, location):
        self.calls.append(day)
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        if day in self.fail_days:
            raise WeatherUnavailableError(f"no data for day {day}")
        return WeatherObservation(
            day=day,
            min_temp=self.temps[0],
            max_temp=self.temps[1],
            precipitation=self.precipitation,
            radiation=20.0,
            date=self.date_for(day),
            source=self.source,
        )


def make_profile(
    thresholds=(0.0, 100.0, 300.0, 600.0),
    base_temperature: float = 10.0,
    water: float = 0.3,
    crop_id: str = "test",
) -> CropProfile:
    stages = tuple(
        GrowthStage(code=f"S{i}", label=f"Stage {i}", threshold=t)
        for i, t in enumerate(thresholds)
    )
    return CropProfile(
        crop_id=crop_id,
        name=crop_id.title(),
        stages=stages,
        base_temperature=base_temperature,
        optimal_temperature=(25.0, 30.0),
        critical_temperature=40.0,
        water_requirement=(water,) * len(stages),
    )


def make_state(profile: CropProfile, moisture: float = 0.6) -> SimulationState:
    return SimulationState(
        initialized=True,
        crop_id=profile.crop_id,
        current_stage=profile.initial_stage,
        soil=SoilState(moisture=moisture, fertility=0.8),
        location=LocationRef("Testville", 30.0, 75.0),
    )


@pytest.fixture
def profile() -> CropProfile:
    return make_profile()


@pytest.fixture
def state(profile) -> SimulationState:
    return make_state(profile)


@pytest.fixture
def location() -> LocationRef:
    return LocationRef("Testville", 30.0, 75.0)


@pytest.fixture
def scripted():
    return ScriptedWeatherProvider


@pytest.fixture
def profile_factory():
    return make_profile


@pytest.fixture
def state_factory():
    return make_state
