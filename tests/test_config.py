from __future__ import annotations

import datetime
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pytest

from cropsim.core.controller import SimulationController
from cropsim.library.config import (
    DEFAULT_SYNTHETIC_START,
    LIVE_LOOKBACK_DAYS,
    SimulationConfig,
    load_config,
)
from cropsim.library.plotting import plot_history

EXAMPLE_CONFIG = Path(__file__).parent.parent / "examples" / "cropsim.yaml"

CONFIG_YAML = """\
seed: 7
start_date: 2024-03-01
tick_interval: 0.5
live_fallback: synthetic
weather_records: data/weather.csv
locations:
  - name: Test Farm
    latitude: -33.0
    longitude: -60.0
    soil_region: vertisol
crops:
  - crop_id: Sorghum
    base_temperature: 10
    optimal_temperature: [27, 35]
    critical_temperature: 42
    water_requirement: [0.5, 0.6]
    stages:
      - {code: "00", threshold: 0}
      - {code: "89", threshold: 1800}
"""


def test_load_config(tmp_path):
    path = tmp_path / "cropsim.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    config = load_config(path)

    assert config.seed == 7
    assert config.start_date == datetime.date(2024, 3, 1)
    assert config.resolved_start_date() == datetime.date(2024, 3, 1)
    assert config.tick_interval == 0.5
    assert config.live_fallback == "synthetic"
    assert config.weather_records == tmp_path / "data" / "weather.csv"
    assert config.locations[0].soil_region == "vertisol"
    assert config.crops[0].final_stage.threshold == 1800.0


def test_config_crops_and_locations_reach_the_controller(tmp_path):
    path = tmp_path / "cropsim.yaml"
    path.write_text(CONFIG_YAML.replace("weather_records: data/weather.csv\n",
                                        ""), encoding="utf-8")
    ctrl = SimulationController(load_config(path))
    assert "sorghum" in ctrl.crops
    state = ctrl.initialize("sorghum", location="test farm")
    assert state.crop_id == "Sorghum"
    assert state.soil.soil_class == "vertisol"


def test_example_config_is_valid():
    config = load_config(EXAMPLE_CONFIG)
    assert config.crops[0].crop_id == "sorghum"
    assert config.max_days == 240


@pytest.mark.parametrize(
    "data",
    [
        {"tick_interval": 0},
        {"live_timeout": -1},
        {"live_fallback": "guess"},
        {"max_days": 0},
        {"colour": "blue"},
    ],
)
def test_invalid_config_rejected(data):
    with pytest.raises(ValueError):
        SimulationConfig.from_mapping(data)


def test_non_mapping_yaml_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_default_start_date_depends_on_weather_mode():
    config = SimulationConfig()
    assert config.resolved_start_date() == DEFAULT_SYNTHETIC_START
    assert config.resolved_start_date("live") == (
        datetime.date.today() - datetime.timedelta(days=LIVE_LOOKBACK_DAYS)
    )
    pinned = SimulationConfig(start_date=datetime.date(2023, 1, 1))
    assert pinned.resolved_start_date("live") == datetime.date(2023, 1, 1)


def test_plot_history_marks_transitions():
    ctrl = SimulationController(
        SimulationConfig(start_date=datetime.date(2024, 6, 1))
    )
    ctrl.initialize("maize", location="Punjab, India")
    for _ in range(20):
        ctrl.step()
    frame = ctrl.history_frame()
    ax = plot_history(frame, "gdd_cum")
    assert ax.get_ylabel() == "gdd_cum"
    assert len(ax.lines) >= 1 + int(frame["transitioned"].sum())
    with pytest.raises(KeyError):
        plot_history(frame, "nope")
