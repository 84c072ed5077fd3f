"""
Day-stepped crop growth engine.

This module implements the deterministic daily update of a
:class:`~.data_containers.SimulationState`. The public entry point is
:meth:`GrowthEngine.advance_one_day`, a pure function of its inputs: it never
mutates the state, profile, weather or soil it receives and returns a new
:class:`~.data_containers.DayResult`.

Design Principles
-----------------
- **Deterministic & reproducible**: the same inputs always give the same
  output; there is no randomness in the engine.
- **Growing degree days drive phenology**: the daily increment is
  ``max(0, mean_temp − base_temperature)`` scaled by a moisture modifier; it
  is the sole driver of stage progression.
- **Monotone state**: accumulated growth units, stress totals and the stage
  index never decrease within a run.
- **All-or-nothing**: validation happens before any computation, so a
  rejected call leaves the caller's state untouched.

See Also
--------
cropsim.core.crops : ``CropProfile`` and ``GrowthStage``.
cropsim.core.data_containers : ``SimulationState``, ``SoilState``,
    ``WeatherObservation``.
cropsim.library.hydrology : rainfall infiltration and uptake helpers.

Examples
--------
>>> from cropsim.core.engine import GrowthEngine
>>> result = GrowthEngine().advance_one_day(state, profile, weather, soil)
>>> result.state.current_day
1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from cropsim.core.crops import CropProfile, GrowthStage
from cropsim.core.data_containers import (
    STRESS_KINDS,
    DayRecord,
    DayResult,
    SimulationState,
    SoilState,
    WeatherObservation,
)
from cropsim.core.errors import OutOfOrderWeatherError, SimulationStateError
from cropsim.library.hydrology import moisture_gain, uptake_loss

logger = logging.getLogger(__name__)

# Fraction of global radiation that is photosynthetically active.
PAR_FRACTION = 0.5


# ---------------------------
# Daily rate functions
# ---------------------------
def growing_degree_days(
    min_temp: float, max_temp: float, base_temperature: float
) -> float:
    """
    Daily growing degree days (average method).

    Parameters
    ----------
    min_temp, max_temp : float
        Daily temperature bounds [°C].
    base_temperature : float
        Crop base temperature [°C].

    Returns
    -------
    float
        ``max(0, (min_temp + max_temp)/2 − base_temperature)``.
    """
    return max(0.0, 0.5 * (min_temp + max_temp) - base_temperature)


def moisture_modifier(
    moisture: float, requirement: float, shape: float = 3.0
) -> float:
    """
    Growth-rate modifier for soil moisture.

    Sigmoid water-stress response: 0 for dry soil, rising monotonically with
    moisture and saturating at 1 once ``moisture ≥ requirement``. It
    implements ::

        1 - (exp(hrs * c) - 1) / (exp(c) - 1),  hrs = (req - m) / req

    with ``hrs`` clipped to ``[0, 1]`` and ``c = shape``.

    Parameters
    ----------
    moisture : float
        Soil moisture fraction in [0, 1].
    requirement : float
        Stage water requirement (moisture fraction) in [0, 1].
    shape : float, default=3.0
        Curvature of the response (> 0). Larger values keep the modifier
        close to 1 until the soil is quite dry.

    Returns
    -------
    float
        Modifier in [0, 1].

    Notes
    -----
    `np.expm1` is used to compute ``exp(x) - 1`` accurately for small
    arguments.
    """
    if moisture >= requirement:
        return 1.0
    hrs = (requirement - moisture) / max(requirement, 1e-6)
    num = np.expm1(np.clip(hrs, 0.0, 1.0) * shape)
    den = np.expm1(shape)
    return float(np.clip(1.0 - num / max(den, 1e-9), 0.0, 1.0))


def thermal_factor(temp: float, profile: CropProfile) -> float:
    """
    Thermal efficiency of biomass production at daily mean ``temp``.

    Trapezoid over the profile's breakpoints:

    - 0 at or below ``base_temperature``
    - linear rise to 1 at ``optimal_temperature[0]``
    - 1 across the optimal range
    - linear decline to 0 at ``critical_temperature``
    - 0 above it
    """
    base = profile.base_temperature
    low, high = profile.optimal_temperature
    crit = profile.critical_temperature
    if temp <= base or temp >= crit:
        return 0.0
    if temp < low:
        return (temp - base) / (low - base + 1e-9)
    if temp <= high:
        return 1.0
    return (crit - temp) / (crit - high + 1e-9)


def soil_factor(soil: SoilState) -> float:
    """
    Fertility and pH effect on biomass production, in (0, 1].

    Step responses: full effect at fertility ≥ 0.6 and pH within 0.5 of 6.5,
    decreasing to 0.3 for very poor or strongly acidic/alkaline soils.
    """
    f = soil.fertility
    if f >= 0.6:
        fert = 1.0
    elif f >= 0.4:
        fert = 0.75
    elif f >= 0.2:
        fert = 0.5
    else:
        fert = 0.3

    deviation = abs(soil.ph - 6.5)
    if deviation <= 0.5:
        ph = 1.0
    elif deviation <= 1.0:
        ph = 0.85
    elif deviation <= 1.5:
        ph = 0.7
    elif deviation <= 2.0:
        ph = 0.5
    else:
        ph = 0.3
    return fert * ph


@dataclass(frozen=True, slots=True)
class GrowthEngine:
    r"""Deterministic daily crop phenology and water-balance update.

    The engine is stateless: every call reads the current
    :class:`~cropsim.core.data_containers.SimulationState`, the crop's
    :class:`~cropsim.core.crops.CropProfile`, one
    :class:`~cropsim.core.data_containers.WeatherObservation` and the
    current :class:`~cropsim.core.data_containers.SoilState`, and returns the
    state of the next day together with its audit record.

    Parameters
    ----------
    par_fraction : float, default=0.5
        Fraction of global radiation used by the biomass proxy.

    Notes
    -----
    - **Units.** Growth units [°C·day], water [mm] converted to moisture
      fractions through the texture capacity, radiation [MJ m⁻² day⁻¹],
      biomass [g m⁻²].
    - **Terminal stability.** Once the final stage is reached, further
      advances are no-ops that only increment ``idle_days``.

    Examples
    --------
    >>> engine = GrowthEngine()
    >>> res = engine.advance_one_day(state, profile, weather, state.soil)
    >>> res.record.growth_units
    4.0
    """

    par_fraction: float = PAR_FRACTION

    # ---------------------------
    # Public API
    # ---------------------------
    def advance_one_day(
        self,
        state: SimulationState,
        profile: CropProfile,
        weather: Optional[WeatherObservation],
        soil: Optional[SoilState] = None,
    ) -> DayResult:
        """
        Advance the simulation by exactly one day.

        Parameters
        ----------
        state : SimulationState
            Current state; must be initialized.
        profile : CropProfile
            Crop definition for the run.
        weather : WeatherObservation or None
            Observation for day ``state.current_day + 1``. May be ``None``
            only when the crop is already mature.
        soil : SoilState, optional
            Soil condition; defaults to ``state.soil``.

        Returns
        -------
        DayResult
            New state and the day's audit record.

        Raises
        ------
        SimulationStateError
            If the state is not initialized, or no soil/weather is available.
        OutOfOrderWeatherError
            If ``weather.day != state.current_day + 1``.
        """
        if not state.initialized:
            raise SimulationStateError(
                "Cannot advance an uninitialized simulation."
            )
        if state.stage_index >= profile.final_index:
            return self._idle_day(state, profile)

        if weather is None:
            raise SimulationStateError(
                f"No weather supplied for day {state.current_day + 1}."
            )
        expected = state.current_day + 1
        if weather.day != expected:
            raise OutOfOrderWeatherError(
                f"Weather for day {weather.day} supplied while the run "
                f"expects day {expected}."
            )
        soil = soil if soil is not None else state.soil
        if soil is None:
            raise SimulationStateError("No soil state for this run.")

        stage_index = state.stage_index
        stage = profile.stages[stage_index]

        # --- Growth units, limited by water availability
        raw = growing_degree_days(
            weather.min_temp, weather.max_temp, profile.base_temperature
        )
        modifier = moisture_modifier(
            soil.moisture,
            profile.water_requirement[stage_index],
            profile.water_stress_shape,
        )
        increment = raw * modifier

        # --- Soil water balance
        new_soil = self._update_moisture(soil, weather, increment, profile)

        # --- Stress for the stage in force today
        added = self._stress_increments(stage, weather, new_soil.moisture)
        stress = {
            k: state.cumulative_stress.get(k, 0.0) + added[k]
            for k in STRESS_KINDS
        }

        # --- Phenology (monotone)
        accumulated = state.accumulated_growth_units + increment
        new_index = max(stage_index, profile.stage_index_for(accumulated))
        new_stage = profile.stages[new_index]
        transitioned = new_index != stage_index
        if transitioned:
            logger.debug(
                "%s day %d: %s -> %s (%.1f GDD)",
                profile.crop_id,
                expected,
                stage.code,
                new_stage.code,
                accumulated,
            )

        # --- Biomass proxy (after emergence)
        biomass_inc = self._biomass_increment(
            profile, weather, modifier, new_soil, new_index
        )

        new_state = replace(
            state,
            current_day=expected,
            accumulated_growth_units=accumulated,
            stage_index=new_index,
            current_stage=new_stage,
            cumulative_stress=stress,
            soil=new_soil,
            biomass=state.biomass + biomass_inc,
        )
        record = DayRecord(
            day=expected,
            stage_code=new_stage.code,
            accumulated_growth_units=accumulated,
            raw_growth_units=raw,
            growth_units=increment,
            moisture_modifier=modifier,
            moisture=new_soil.moisture,
            stress=added,
            biomass_increment=biomass_inc,
            transitioned=transitioned,
            weather=weather,
        )
        return DayResult(state=new_state, record=record)

    # --------------------------- End of public API --------------------------

    @staticmethod
    def _idle_day(state: SimulationState, profile: CropProfile) -> DayResult:
        """No-op advance after maturity: only the audit counter moves."""
        new_state = replace(state, idle_days=state.idle_days + 1)
        record = DayRecord(
            day=state.current_day,
            stage_code=profile.final_stage.code,
            accumulated_growth_units=state.accumulated_growth_units,
            growth_units=0.0,
            moisture=state.soil.moisture if state.soil else 0.0,
            noop=True,
        )
        return DayResult(state=new_state, record=record)

    @staticmethod
    def _update_moisture(
        soil: SoilState,
        weather: WeatherObservation,
        growth_units: float,
        profile: CropProfile,
    ) -> SoilState:
        """
        Rain in, crop uptake out, clamped to ``[0, 1]``.

        Rain enters as effective precipitation (runoff removed) divided by
        the texture's root-zone capacity; uptake is
        ``uptake_coefficient × growth_units`` millimetres over the same
        capacity.
        """
        cap = soil.capacity_mm
        moisture = (
            soil.moisture
            + moisture_gain(weather.precipitation, cap)
            - uptake_loss(growth_units, profile.uptake_coefficient, cap)
        )
        return soil.with_moisture(moisture)

    @staticmethod
    def _stress_increments(
        stage: GrowthStage, weather: WeatherObservation, moisture: float
    ) -> dict[str, float]:
        """Heat and drought magnitudes added today (each ≥ 0)."""
        heat = 0.0
        if weather.max_temp > stage.heat.threshold:
            heat = (weather.max_temp - stage.heat.threshold) * stage.heat.weight
        drought = 0.0
        if moisture < stage.drought.threshold:
            drought = (stage.drought.threshold - moisture) * stage.drought.weight
        return {"heat": heat, "drought": drought}

    def _biomass_increment(
        self,
        profile: CropProfile,
        weather: WeatherObservation,
        modifier: float,
        soil: SoilState,
        stage_index: int,
    ) -> float:
        """Radiation-use-efficiency biomass gain [g m⁻²] for the day."""
        if stage_index < 1:
            return 0.0
        par = self.par_fraction * weather.radiation
        return (
            profile.radiation_use_efficiency
            * par
            * thermal_factor(weather.mean_temp, profile)
            * modifier
            * soil_factor(soil)
        )
