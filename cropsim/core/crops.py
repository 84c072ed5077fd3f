"""
Crop profiles: ordered growth stages and crop-specific parameters.

This module provides the immutable dataclasses that describe *what* a crop is
to the growth engine: :class:`GrowthStage` (one phenological phase and its
stress tolerances) and :class:`CropProfile` (the ordered stage list plus the
thermal, water and biomass parameters). Both classes are **frozen** and use
**slots**; profiles are validated once on construction and never change
during a run.

Classes
-------
StressSensitivity
    Threshold/weight pair used for heat or drought stress in one stage.
GrowthStage
    A phenological phase entered once accumulated growth units reach its
    threshold.
CropProfile
    Complete crop definition. Provides :meth:`CropProfile.from_preset` and
    :meth:`CropProfile.from_mapping` constructors.

Notes
-----
- **Stage 0**: every profile starts with a stage of threshold ``0`` that
  represents the sown-but-not-emerged crop. It is the initial stage of every
  run.
- **Ordering**: stage thresholds are strictly increasing and stage codes are
  unique, so "the last stage whose threshold ≤ units" is well defined.
- **Water-requirement curve**: ``water_requirement[i]`` is the soil moisture
  fraction at which growth in stage ``i`` stops being water limited.
- **Thermal trapezoid**: ``base_temperature ≤ optimal_temperature[0] ≤
  optimal_temperature[1] ≤ critical_temperature``. The base drives growing
  degree days; the full trapezoid drives the biomass proxy.
- **Presets**: thresholds follow PCSE-style temperature sums (emergence,
  emergence to anthesis, anthesis to maturity); thermal breakpoints and RUE
  for maize and soybean follow the Pampas maize and soybean calibrations.

Examples
--------
>>> from cropsim.core.crops import CropProfile
>>> maize = CropProfile.from_preset("maize")
>>> maize.final_stage.code
'R6'
>>> maize.stage_for(95.0).code
'VE'
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence


@dataclass(frozen=True, slots=True)
class StressSensitivity:
    """
    Stress tolerance of one growth stage.

    Parameters
    ----------
    threshold : float
        Heat: maximum daily temperature [°C] above which stress accrues.
        Drought: soil moisture fraction in [0, 1] below which stress accrues.
    weight : float, default=1.0
        Magnitude added per unit of exceedance (≥ 0).
    """

    threshold: float
    weight: float = 1.0

    def __post_init__(self):
        if self.weight < 0.0:
            raise ValueError("Stress weight must be ≥ 0.")

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> "StressSensitivity":
        return cls(
            threshold=float(record["threshold"]),
            weight=float(record.get("weight", 1.0)),
        )


@dataclass(frozen=True, slots=True)
class GrowthStage:
    """
    Phenological phase of a crop.

    Parameters
    ----------
    code : str
        Short identifier (e.g. ``"VE"``, ``"R1"`` or a BBCH code).
    label : str
        Human-readable description.
    threshold : float
        Cumulative growth units [°C·day] required to enter the stage.
    heat : StressSensitivity
        Heat tolerance; ``heat.threshold`` is a temperature in °C.
    drought : StressSensitivity
        Drought tolerance; ``drought.threshold`` is a moisture fraction.

    Raises
    ------
    ValueError
        If the code is empty, the threshold is negative or the drought
        threshold is outside ``[0, 1]``.
    """

    code: str
    label: str
    threshold: float
    heat: StressSensitivity = field(
        default_factory=lambda: StressSensitivity(threshold=35.0)
    )
    drought: StressSensitivity = field(
        default_factory=lambda: StressSensitivity(threshold=0.2)
    )

    def __post_init__(self):
        if not self.code:
            raise ValueError("Stage code must be non-empty.")
        if self.threshold < 0.0:
            raise ValueError(
                f"Stage '{self.code}' threshold must be ≥ 0, "
                f"got {self.threshold}."
            )
        if not (0.0 <= self.drought.threshold <= 1.0):
            raise ValueError(
                f"Stage '{self.code}' drought threshold must be in [0, 1]."
            )

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> "GrowthStage":
        """Build a stage from a plain record (e.g. one YAML list item)."""
        kwargs: dict[str, Any] = dict(
            code=str(record["code"]),
            label=str(record.get("label", record["code"])),
            threshold=float(record["threshold"]),
        )
        if "heat" in record:
            kwargs["heat"] = StressSensitivity.from_mapping(record["heat"])
        if "drought" in record:
            kwargs["drought"] = StressSensitivity.from_mapping(
                record["drought"]
            )
        return cls(**kwargs)


@dataclass(frozen=True, slots=True)
class CropProfile:
    """
    Static, validated definition of one crop.

    Parameters
    ----------
    crop_id : str
        Identifier used to select the crop (e.g. ``"maize"``).
    name : str
        Display name.
    stages : tuple of GrowthStage
        Stages ordered by strictly increasing threshold; the first stage has
        threshold 0 and the last one is maturity.
    base_temperature : float
        Temperature [°C] below which no growth units accrue.
    optimal_temperature : tuple of float
        ``(low, high)`` optimal range [°C] of the thermal trapezoid.
    critical_temperature : float
        Temperature [°C] at and above which the thermal factor is 0.
    water_requirement : tuple of float
        Moisture fraction per stage at which the water modifier saturates.
    uptake_coefficient : float
        Soil water taken up per growth unit [mm / °C·day].
    water_stress_shape : float
        Shape of the sigmoid moisture modifier (> 0).
    radiation_use_efficiency : float
        Potential RUE [g DM / MJ PAR].
    harvest_index : float
        Fraction of biomass converted to yield, in [0, 1].

    Raises
    ------
    ValueError
        If any validation fails: fewer than two stages, first threshold not
        0, thresholds not strictly increasing, duplicate codes, mismatched or
        out-of-range water requirements, unordered thermal breakpoints, or
        non-positive coefficients.

    Notes
    -----
    Sequences passed for ``stages``, ``optimal_temperature`` and
    ``water_requirement`` are coerced to tuples, so a profile is hashable
    and safe to share between runs.
    """

    crop_id: str
    name: str
    stages: tuple[GrowthStage, ...]
    base_temperature: float
    optimal_temperature: tuple[float, float]
    critical_temperature: float
    water_requirement: tuple[float, ...]
    uptake_coefficient: float = 0.3
    water_stress_shape: float = 3.0
    radiation_use_efficiency: float = 2.5
    harvest_index: float = 0.45

    thresholds: tuple[float, ...] = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(
            self,
            "optimal_temperature",
            tuple(float(t) for t in self.optimal_temperature),
        )
        object.__setattr__(
            self,
            "water_requirement",
            tuple(float(w) for w in self.water_requirement),
        )
        object.__setattr__(
            self, "thresholds", tuple(s.threshold for s in self.stages)
        )

        if len(self.stages) < 2:
            raise ValueError("A crop profile needs at least two stages.")
        if self.thresholds[0] != 0.0:
            raise ValueError("The first stage must have threshold 0.")
        for prev, cur in zip(self.thresholds, self.thresholds[1:]):
            if not cur > prev:
                raise ValueError(
                    "Stage thresholds must be strictly increasing."
                )
        codes = [s.code for s in self.stages]
        if len(set(codes)) != len(codes):
            raise ValueError(f"Duplicate stage codes in {codes}.")

        if len(self.water_requirement) != len(self.stages):
            raise ValueError(
                "water_requirement must have one value per stage "
                f"({len(self.stages)}), got {len(self.water_requirement)}."
            )
        if not all(0.0 <= w <= 1.0 for w in self.water_requirement):
            raise ValueError("All water requirements must be in [0, 1].")

        if len(self.optimal_temperature) != 2:
            raise ValueError("optimal_temperature must be a (low, high) pair.")
        low, high = self.optimal_temperature
        if not (
            self.base_temperature <= low <= high <= self.critical_temperature
        ):
            raise ValueError(
                "Thermal breakpoints must satisfy base ≤ optimal low ≤ "
                "optimal high ≤ critical."
            )
        if self.uptake_coefficient < 0.0:
            raise ValueError("uptake_coefficient must be ≥ 0.")
        if self.water_stress_shape <= 0.0:
            raise ValueError("water_stress_shape must be positive.")
        if self.radiation_use_efficiency <= 0.0:
            raise ValueError("radiation_use_efficiency must be positive.")
        if not (0.0 <= self.harvest_index <= 1.0):
            raise ValueError("harvest_index must be in [0, 1].")

    # -------------------------
    # Stage lookup
    # -------------------------
    @property
    def initial_stage(self) -> GrowthStage:
        return self.stages[0]

    @property
    def final_stage(self) -> GrowthStage:
        """Maturity: the terminal stage of a run."""
        return self.stages[-1]

    @property
    def final_index(self) -> int:
        return len(self.stages) - 1

    def stage_index_for(self, units: float) -> int:
        """Index of the last stage whose threshold ≤ ``units``."""
        return max(bisect_right(self.thresholds, units) - 1, 0)

    def stage_for(self, units: float) -> GrowthStage:
        return self.stages[self.stage_index_for(units)]

    def stage_by_code(self, code: str) -> GrowthStage:
        for stage in self.stages:
            if stage.code == code:
                return stage
        raise KeyError(f"Unknown stage code '{code}' for {self.crop_id}.")

    def index_of(self, code: str) -> int:
        return self.stages.index(self.stage_by_code(code))

    # -------------------------
    # Convenience constructors / presets
    # -------------------------
    @classmethod
    def maize(cls) -> "CropProfile":
        """Return the maize preset."""
        return cls.from_preset("maize")

    @classmethod
    def soy(cls) -> "CropProfile":
        """Return the soybean preset."""
        return cls.from_preset("soy")

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> "CropProfile":
        """
        Build a validated profile from a plain structured record.

        Parameters
        ----------
        record : mapping
            Keys mirror the constructor arguments; ``stages`` is a list of
            mappings accepted by :meth:`GrowthStage.from_mapping`. When
            ``water_requirement`` is absent, each stage record must carry its
            own ``water_requirement`` value.

        Returns
        -------
        CropProfile

        Raises
        ------
        KeyError
            If a required key is missing.
        ValueError
            If the resulting profile is invalid.
        """
        stage_records: Sequence[Mapping[str, Any]] = record["stages"]
        if "water_requirement" in record:
            water = [float(w) for w in record["water_requirement"]]
        else:
            water = [float(s["water_requirement"]) for s in stage_records]

        optional = {
            k: float(record[k])
            for k in (
                "uptake_coefficient",
                "water_stress_shape",
                "radiation_use_efficiency",
                "harvest_index",
            )
            if k in record
        }
        crop_id = str(record["crop_id"])
        return cls(
            crop_id=crop_id,
            name=str(record.get("name", crop_id)),
            stages=tuple(GrowthStage.from_mapping(s) for s in stage_records),
            base_temperature=float(record["base_temperature"]),
            optimal_temperature=tuple(record["optimal_temperature"]),
            critical_temperature=float(record["critical_temperature"]),
            water_requirement=tuple(water),
            **optional,
        )

    @classmethod
    def from_preset(cls, name: str) -> "CropProfile":
        """
        Instantiate from a named preset.

        Parameters
        ----------
        name : {'maize', 'wheat', 'rice', 'cotton', 'soy'}
            Preset identifier.

        Returns
        -------
        CropProfile
            Profile for the given preset.

        Raises
        ------
        KeyError
            If `name` is not a known preset.
        """
        try:
            return cls.from_mapping(_PRESETS[name])
        except KeyError as e:
            if name in _PRESETS:
                raise
            raise KeyError(
                f"Unknown preset '{name}'. Known: {sorted(_PRESETS)}"
            ) from e


def _rows(*rows: tuple) -> list[dict[str, Any]]:
    """Expand compact stage rows into stage records.

    Each row is ``(code, label, threshold, heat_threshold, heat_weight,
    drought_threshold, drought_weight, water_requirement)``.
    """
    return [
        dict(
            code=code,
            label=label,
            threshold=threshold,
            heat=dict(threshold=heat_t, weight=heat_w),
            drought=dict(threshold=dry_t, weight=dry_w),
            water_requirement=water,
        )
        for (code, label, threshold, heat_t, heat_w, dry_t, dry_w, water)
        in rows
    ]


_PRESETS: Mapping[str, Mapping[str, Any]] = {
    # --- maize (Pampas thermal trapezoid and RUE) ---
    "maize": dict(
        crop_id="maize",
        name="Maize",
        base_temperature=8.0,
        optimal_temperature=(29.0, 39.0),
        critical_temperature=45.0,
        uptake_coefficient=0.35,
        water_stress_shape=4.9,
        radiation_use_efficiency=3.65,
        harvest_index=0.5,
        stages=_rows(
            ("PL", "Planted, not yet emerged", 0.0, 40.0, 0.1, 0.15, 0.2, 0.25),
            ("VE", "Emergence", 90.0, 38.0, 0.3, 0.20, 0.5, 0.35),
            ("V2", "Two leaf collars", 200.0, 37.0, 0.4, 0.25, 0.6, 0.40),
            ("V6", "Six leaf collars", 400.0, 36.0, 0.6, 0.30, 0.8, 0.50),
            ("VT", "Tasseling", 650.0, 35.0, 1.0, 0.35, 1.0, 0.60),
            ("R1", "Silking", 700.0, 35.0, 1.0, 0.40, 1.0, 0.65),
            ("R3", "Milk", 880.0, 35.0, 0.8, 0.35, 0.8, 0.60),
            ("R5", "Dent", 1100.0, 36.0, 0.5, 0.30, 0.5, 0.50),
            ("R6", "Physiological maturity", 1300.0, 38.0, 0.2, 0.20, 0.2,
             0.35),
        ),
    ),
    # --- wheat / barley ("cereals" in PCSE parameter tables) ---
    "wheat": dict(
        crop_id="wheat",
        name="Wheat",
        base_temperature=0.0,
        optimal_temperature=(12.0, 24.0),
        critical_temperature=34.0,
        uptake_coefficient=0.30,
        water_stress_shape=3.0,
        radiation_use_efficiency=2.8,
        harvest_index=0.45,
        stages=_rows(
            ("00", "Dry seed", 0.0, 32.0, 0.1, 0.15, 0.2, 0.25),
            ("09", "Emergence", 80.0, 30.0, 0.3, 0.20, 0.5, 0.30),
            ("13", "Three leaves unfolded", 200.0, 30.0, 0.3, 0.20, 0.5,
             0.35),
            ("21", "Beginning of tillering", 350.0, 30.0, 0.4, 0.25, 0.6,
             0.40),
            ("31", "First node detectable", 500.0, 29.0, 0.6, 0.30, 0.8,
             0.50),
            ("51", "Beginning of heading", 700.0, 28.0, 0.9, 0.35, 1.0, 0.55),
            ("61", "Beginning of flowering", 800.0, 27.0, 1.0, 0.35, 1.0,
             0.60),
            ("75", "Medium milk", 1100.0, 28.0, 0.8, 0.30, 0.8, 0.50),
            ("85", "Soft dough", 1350.0, 30.0, 0.4, 0.25, 0.4, 0.40),
            ("89", "Fully ripe", 1500.0, 32.0, 0.1, 0.15, 0.1, 0.25),
        ),
    ),
    "rice": dict(
        crop_id="rice",
        name="Rice",
        base_temperature=10.0,
        optimal_temperature=(25.0, 33.0),
        critical_temperature=40.0,
        uptake_coefficient=0.45,
        water_stress_shape=4.0,
        radiation_use_efficiency=2.6,
        harvest_index=0.45,
        stages=_rows(
            ("00", "Dry seed", 0.0, 38.0, 0.1, 0.30, 0.3, 0.50),
            ("09", "Emergence", 100.0, 37.0, 0.3, 0.40, 0.6, 0.65),
            ("13", "Three leaves unfolded", 250.0, 36.0, 0.4, 0.45, 0.7,
             0.70),
            ("21", "Beginning of tillering", 400.0, 36.0, 0.5, 0.50, 0.8,
             0.75),
            ("30", "Panicle initiation", 600.0, 35.0, 0.7, 0.55, 1.0, 0.80),
            ("51", "Beginning of heading", 820.0, 35.0, 1.0, 0.55, 1.0, 0.85),
            ("61", "Beginning of flowering", 900.0, 35.0, 1.0, 0.55, 1.0,
             0.85),
            ("75", "Medium milk", 1200.0, 36.0, 0.7, 0.50, 0.7, 0.75),
            ("85", "Soft dough", 1450.0, 37.0, 0.4, 0.40, 0.4, 0.60),
            ("89", "Fully ripe", 1700.0, 38.0, 0.1, 0.30, 0.1, 0.45),
        ),
    ),
    "cotton": dict(
        crop_id="cotton",
        name="Cotton",
        base_temperature=12.0,
        optimal_temperature=(25.0, 32.0),
        critical_temperature=40.0,
        uptake_coefficient=0.28,
        water_stress_shape=2.5,
        radiation_use_efficiency=2.2,
        harvest_index=0.35,
        stages=_rows(
            ("00", "Dry seed", 0.0, 40.0, 0.1, 0.15, 0.2, 0.25),
            ("09", "Emergence", 120.0, 39.0, 0.3, 0.20, 0.5, 0.30),
            ("14", "Four true leaves", 300.0, 38.0, 0.4, 0.25, 0.6, 0.40),
            ("51", "First squares visible", 520.0, 37.0, 0.7, 0.30, 0.8,
             0.50),
            ("61", "First flowers open", 1000.0, 36.0, 1.0, 0.35, 1.0, 0.60),
            ("71", "Boll set", 1300.0, 36.0, 0.9, 0.35, 0.9, 0.60),
            ("81", "First bolls open", 1900.0, 38.0, 0.4, 0.25, 0.4, 0.40),
            ("89", "Harvest maturity", 2200.0, 40.0, 0.1, 0.15, 0.1, 0.25),
        ),
    ),
    # --- soybean (Pampas thermal trapezoid and RUE) ---
    "soy": dict(
        crop_id="soy",
        name="Soybean",
        base_temperature=10.0,
        optimal_temperature=(20.0, 30.0),
        critical_temperature=40.0,
        uptake_coefficient=0.32,
        water_stress_shape=1.2,
        radiation_use_efficiency=1.36,
        harvest_index=0.4,
        stages=_rows(
            ("PL", "Planted, not yet emerged", 0.0, 38.0, 0.1, 0.15, 0.2, 0.25),
            ("VE", "Emergence", 90.0, 36.0, 0.3, 0.20, 0.5, 0.35),
            ("VC", "Unifoliate leaves", 160.0, 36.0, 0.3, 0.20, 0.5, 0.35),
            ("V3", "Third trifoliate", 330.0, 35.0, 0.5, 0.25, 0.7, 0.45),
            ("R1", "Beginning bloom", 600.0, 34.0, 1.0, 0.35, 1.0, 0.55),
            ("R3", "Beginning pod", 850.0, 34.0, 1.0, 0.40, 1.0, 0.60),
            ("R5", "Beginning seed", 1100.0, 34.0, 0.8, 0.40, 1.0, 0.60),
            ("R7", "Beginning maturity", 1400.0, 36.0, 0.3, 0.25, 0.3, 0.40),
            ("R8", "Full maturity", 1550.0, 38.0, 0.1, 0.15, 0.1, 0.25),
        ),
    ),
}

PRESETS: tuple[str, ...] = tuple(sorted(_PRESETS))
