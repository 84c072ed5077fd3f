"""
Simulation controller: the single owner of a crop simulation run.

The controller resolves a crop profile, a location, its initial soil and a
weather provider into a :class:`~.data_containers.SimulationState`, then
advances it one day at a time, either on demand (:meth:`step`) or from a
background auto-advance thread (:meth:`start` / :meth:`pause`).

State machine
-------------
::

    UNINITIALIZED --initialize--> INITIALIZED --start--> RUNNING
    RUNNING --pause--> PAUSED --start--> RUNNING
    INITIALIZED/PAUSED/RUNNING --step reaches maturity--> COMPLETED
    * --reset--> UNINITIALIZED

Concurrency
-----------
- A non-blocking *step lock* serializes day advances. A second
  :meth:`step` (or :meth:`start`) issued while a step is in flight raises
  :class:`~.errors.BusyError`; auto-advance ticks that collide with a manual
  step are skipped.
- :meth:`pause` and :meth:`reset` only take the short *state lock*, so they
  take effect immediately even while a live weather request is outstanding.
- Every run carries a generation number. A step whose weather arrives after
  a reset (or re-initialization) discards its result and returns ``None``.
- State commits replace the frozen state object under the state lock; readers
  never observe a half-applied day.
"""

from __future__ import annotations

import datetime
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

import pandas as pd

from cropsim.core.crops import PRESETS, CropProfile, GrowthStage
from cropsim.core.data_containers import (
    STRESS_KINDS,
    DayRecord,
    LocationRef,
    SimulationState,
    WeatherMode,
)
from cropsim.core.engine import GrowthEngine
from cropsim.core.errors import (
    BusyError,
    SimulationStateError,
    UnknownCropError,
    WeatherUnavailableError,
)
from cropsim.library.config import SimulationConfig
from cropsim.library.locations import DEFAULT_LOCATION, LocationRegistry
from cropsim.library.soil import SoilModel
from cropsim.library.weather import (
    SyntheticWeatherProvider,
    WeatherProvider,
    make_provider,
)

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[WeatherMode, datetime.date], WeatherProvider]

# Yield penalty per unit of accumulated stress (heat in °C·day above the
# stage threshold, drought in moisture-fraction·day below it).
HEAT_PENALTY = 0.005
DROUGHT_PENALTY = 0.05


class ControllerStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class RunSummary:
    """
    Headline numbers of a run.

    ``yield_estimate`` [t/ha] is ``biomass × harvest_index`` converted from
    g m⁻², divided by ``1 + 0.005·heat + 0.05·drought``.
    """

    crop_id: Optional[str]
    location: Optional[str]
    days: int
    stage_code: Optional[str]
    stage_label: Optional[str]
    growth_units: float
    stress: dict[str, float]
    biomass: float
    yield_estimate: float
    completed: bool
    idle_days: int

    @classmethod
    def from_state(
        cls, state: SimulationState, profile: Optional[CropProfile]
    ) -> "RunSummary":
        stress = {k: state.cumulative_stress.get(k, 0.0) for k in STRESS_KINDS}
        completed = bool(
            profile is not None and state.stage_index >= profile.final_index
        )
        yield_estimate = 0.0
        if profile is not None:
            penalty = 1.0 + (
                HEAT_PENALTY * stress["heat"]
                + DROUGHT_PENALTY * stress["drought"]
            )
            yield_estimate = (
                state.biomass * 0.01 * profile.harvest_index / penalty
            )
        stage = state.current_stage
        return cls(
            crop_id=state.crop_id,
            location=state.location.name if state.location else None,
            days=state.current_day,
            stage_code=stage.code if stage else None,
            stage_label=stage.label if stage else None,
            growth_units=state.accumulated_growth_units,
            stress=stress,
            biomass=state.biomass,
            yield_estimate=yield_estimate,
            completed=completed,
            idle_days=state.idle_days,
        )


class AutoAdvance(threading.Thread):
    """
    Daemon thread issuing one controller step every ``interval`` seconds.

    The first step happens one interval after :meth:`start`. The thread ends
    when :meth:`stop` is called or the controller reports that the run no
    longer wants ticks.
    """

    def __init__(self, controller: "SimulationController", interval: float):
        super().__init__(name="cropsim-auto-advance", daemon=True)
        self.controller = controller
        self.interval = interval
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            if not self.controller._tick(self):
                break
        logger.debug("Auto-advance thread finished")


class SimulationController:
    """
    Owner of one simulation run and the surface a user interface talks to.

    Parameters
    ----------
    config : SimulationConfig, optional
        Settings; defaults to ``SimulationConfig()``.
    registry : LocationRegistry, optional
        Known locations; ``config.locations`` are registered on top.
    soil_model : SoilModel, optional
        Initial soil lookup; defaults to the built-in WRB table scaled by
        ``config.soil_moisture_scale``.
    engine : GrowthEngine, optional
        Daily update rule.
    provider_factory : callable, optional
        ``(mode, start_date) -> WeatherProvider``; defaults to
        :func:`~cropsim.library.weather.make_provider` under ``config``.

    Notes
    -----
    Crop profiles are the built-in presets plus ``config.crops`` (which
    override presets sharing a ``crop_id``).
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        registry: Optional[LocationRegistry] = None,
        soil_model: Optional[SoilModel] = None,
        engine: Optional[GrowthEngine] = None,
        provider_factory: Optional[ProviderFactory] = None,
    ):
        self.config = config or SimulationConfig()
        self.registry = registry or LocationRegistry()
        for loc in self.config.locations:
            self.registry.register(loc)
        self.soil_model = soil_model or SoilModel(
            moisture_scale=self.config.soil_moisture_scale
        )
        self.engine = engine or GrowthEngine()
        self._provider_factory = provider_factory or self._default_provider

        self._profiles: dict[str, CropProfile] = {
            name: CropProfile.from_preset(name) for name in PRESETS
        }
        for profile in self.config.crops:
            self._profiles[profile.crop_id.lower()] = profile

        self._state_lock = threading.Lock()
        self._step_lock = threading.Lock()
        self._generation = 0

        self._selected_crop: Optional[str] = None
        self._selected_location: Optional[LocationRef] = (
            self.registry.resolve(DEFAULT_LOCATION)
            if DEFAULT_LOCATION in self.registry
            else next(iter(self.registry), None)
        )
        self._weather_mode = WeatherMode.SYNTHETIC
        self._show_soil_analysis = False

        self._state = SimulationState.uninitialized(self._weather_mode)
        self._profile: Optional[CropProfile] = None
        self._provider: Optional[WeatherProvider] = None
        self._fallback: Optional[WeatherProvider] = None
        self._start_date: Optional[datetime.date] = None
        self._history: list[DayRecord] = []
        self._last_error: Optional[Exception] = None
        self._started = False
        self._auto: Optional[AutoAdvance] = None
        self._thread: Optional[AutoAdvance] = None

    def _default_provider(
        self, mode: WeatherMode, start_date: datetime.date
    ) -> WeatherProvider:
        return make_provider(mode, self.config, start_date=start_date)

    # ---------------------------
    # Read accessors
    # ---------------------------
    @property
    def state(self) -> SimulationState:
        with self._state_lock:
            return self._state

    @property
    def initialized(self) -> bool:
        return self.state.initialized

    @property
    def current_day(self) -> int:
        return self.state.current_day

    @property
    def current_stage(self) -> Optional[GrowthStage]:
        return self.state.current_stage

    @property
    def selected_crop(self) -> Optional[str]:
        with self._state_lock:
            return self._selected_crop

    @property
    def current_location(self) -> Optional[str]:
        with self._state_lock:
            loc = self._selected_location
        return loc.name if loc else None

    @property
    def running(self) -> bool:
        return self.state.running

    @property
    def weather_mode(self) -> WeatherMode:
        with self._state_lock:
            return self._weather_mode

    @property
    def use_live_weather(self) -> bool:
        return self.weather_mode is WeatherMode.LIVE

    @property
    def show_soil_analysis(self) -> bool:
        return self._show_soil_analysis

    @show_soil_analysis.setter
    def show_soil_analysis(self, flag: bool) -> None:
        self._show_soil_analysis = bool(flag)

    def toggle_soil_analysis(self) -> bool:
        self._show_soil_analysis = not self._show_soil_analysis
        return self._show_soil_analysis

    @property
    def profile(self) -> Optional[CropProfile]:
        with self._state_lock:
            return self._profile

    @property
    def crops(self) -> list[str]:
        return sorted(self._profiles)

    @property
    def history(self) -> tuple[DayRecord, ...]:
        with self._state_lock:
            return tuple(self._history)

    @property
    def last_error(self) -> Optional[Exception]:
        with self._state_lock:
            return self._last_error

    @property
    def status(self) -> ControllerStatus:
        with self._state_lock:
            return self._status_locked()

    def _status_locked(self) -> ControllerStatus:
        state = self._state
        if not state.initialized:
            return ControllerStatus.UNINITIALIZED
        if state.stage_index >= self._profile.final_index:
            return ControllerStatus.COMPLETED
        if state.running:
            return ControllerStatus.RUNNING
        if self._started:
            return ControllerStatus.PAUSED
        return ControllerStatus.INITIALIZED

    def summary(self) -> RunSummary:
        with self._state_lock:
            return RunSummary.from_state(self._state, self._profile)

    def history_frame(self) -> pd.DataFrame:
        """Daily records of the run as a DataFrame indexed by day."""
        rows = [rec.as_row() for rec in self.history]
        if not rows:
            return pd.DataFrame(columns=list(DayRecord(0, "", 0.0).as_row()))
        return pd.DataFrame(rows).set_index("day")

    # ---------------------------
    # Selection commands
    # ---------------------------
    def profile_for(self, crop_id: str) -> CropProfile:
        """
        Registered profile for ``crop_id`` (case-insensitive).

        Raises
        ------
        UnknownCropError
            If no profile is registered under that id.
        """
        if not crop_id:
            raise UnknownCropError("No crop selected.")
        try:
            return self._profiles[str(crop_id).strip().lower()]
        except KeyError:
            raise UnknownCropError(
                f"Unknown crop '{crop_id}'. Known: {self.crops}"
            ) from None

    def select_crop(self, crop_id: str) -> None:
        """Select the crop; choosing a different one discards the run."""
        profile = self.profile_for(crop_id)
        with self._state_lock:
            if profile.crop_id != self._selected_crop:
                if self._state.initialized:
                    logger.info(
                        "Crop changed to %s; discarding current run",
                        profile.crop_id,
                    )
                    self._discard_run_locked()
                self._selected_crop = profile.crop_id

    def select_location(self, location: "str | LocationRef") -> None:
        """Select the location; choosing a different one discards the run."""
        loc = self.registry.resolve(location)
        with self._state_lock:
            previous = self._selected_location
            if previous is None or loc.key != previous.key:
                if self._state.initialized:
                    logger.info(
                        "Location changed to %s; discarding current run",
                        loc.name,
                    )
                    self._discard_run_locked()
            self._selected_location = loc

    def set_weather_mode(self, mode: "WeatherMode | str") -> None:
        """
        Choose live or synthetic weather.

        On an initialized run the new source applies from the next day on;
        days already simulated are kept.
        """
        mode = WeatherMode(mode)
        with self._state_lock:
            state = self._state
            generation = self._generation
            start_date = self._start_date
        provider = None
        if state.initialized and state.weather_mode is not mode:
            provider = self._provider_factory(mode, start_date)
        with self._state_lock:
            self._weather_mode = mode
            if provider is not None and generation == self._generation:
                self._provider = provider
                self._state = replace(self._state, weather_mode=mode)
                logger.info(
                    "Weather mode switched to %s from day %d",
                    mode.value,
                    self._state.current_day + 1,
                )

    def toggle_weather_mode(self) -> WeatherMode:
        new = (
            WeatherMode.SYNTHETIC
            if self.weather_mode is WeatherMode.LIVE
            else WeatherMode.LIVE
        )
        self.set_weather_mode(new)
        return new

    # ---------------------------
    # Run lifecycle
    # ---------------------------
    def initialize(
        self,
        crop_id: Optional[str] = None,
        location: "str | LocationRef | None" = None,
        weather_mode: "WeatherMode | str | None" = None,
    ) -> SimulationState:
        """
        Start a fresh run at day 0.

        Arguments override (and update) the current selections. Everything
        is resolved before anything is committed, so a failure leaves the
        controller as it was.

        Raises
        ------
        UnknownCropError
            If no crop is selected or the crop is not registered.
        UnknownLocationError
            If the location cannot be resolved.
        """
        with self._state_lock:
            crop_id = crop_id or self._selected_crop
            location = location or self._selected_location
            mode = WeatherMode(weather_mode or self._weather_mode)

        profile = self.profile_for(crop_id)
        loc = self.registry.resolve(location)
        soil = self.soil_model.initial_state(loc)
        start_date = self.config.resolved_start_date(mode)
        provider = self._provider_factory(mode, start_date)

        with self._state_lock:
            self._stop_auto_locked()
            self._generation += 1
            self._selected_crop = profile.crop_id
            self._selected_location = loc
            self._weather_mode = mode
            self._profile = profile
            self._provider = provider
            self._fallback = None
            self._start_date = start_date
            self._history = []
            self._last_error = None
            self._started = False
            self._state = SimulationState(
                initialized=True,
                crop_id=profile.crop_id,
                current_stage=profile.initial_stage,
                soil=soil,
                location=loc,
                weather_mode=mode,
            )
            state = self._state
        logger.info(
            "Initialized %s at %s (%s weather, soil %s, start %s)",
            profile.crop_id,
            loc.name,
            mode.value,
            soil.soil_class,
            start_date.isoformat(),
        )
        return state

    def start(self) -> None:
        """
        Begin auto-advance (one step per ``config.tick_interval`` seconds).

        Starting an already running simulation is a no-op.

        Raises
        ------
        BusyError
            If a step is in flight.
        SimulationStateError
            If the run is uninitialized or completed.
        """
        with self._state_lock:
            if self._state.running:
                return
        if not self._step_lock.acquire(blocking=False):
            raise BusyError("Cannot start while a step is in progress.")
        try:
            with self._state_lock:
                status = self._status_locked()
                if status is ControllerStatus.UNINITIALIZED:
                    raise SimulationStateError("Initialize the run first.")
                if status is ControllerStatus.COMPLETED:
                    raise SimulationStateError("The run is already complete.")
                if status is ControllerStatus.RUNNING:
                    return
                self._state = replace(self._state, running=True)
                self._started = True
                self._last_error = None
                self._auto = AutoAdvance(self, self.config.tick_interval)
                self._auto.start()
                self._thread = self._auto
            logger.info("Auto-advance started")
        finally:
            self._step_lock.release()

    def pause(self) -> None:
        """Stop auto-advance; effective immediately, never raises ``BusyError``."""
        with self._state_lock:
            if self._state.running:
                self._state = replace(self._state, running=False)
                logger.info("Paused at day %d", self._state.current_day)
            self._stop_auto_locked()

    def reset(self) -> None:
        """Discard the run; crop, location and weather selections are kept."""
        with self._state_lock:
            self._discard_run_locked()
        logger.info("Simulation reset")

    def step(self) -> Optional[DayRecord]:
        """
        Advance the run by exactly one day.

        Returns
        -------
        DayRecord or None
            The day's record (a no-op record once the crop is mature), or
            ``None`` when the run was reset while the day was computed.

        Raises
        ------
        BusyError
            If another step is in flight.
        SimulationStateError
            If the run is uninitialized.
        WeatherUnavailableError
            If the day's weather cannot be obtained; a running simulation is
            paused first and the error is kept in :attr:`last_error`.
        """
        if not self._step_lock.acquire(blocking=False):
            raise BusyError("A simulation step is already in progress.")
        try:
            return self._step_locked()
        finally:
            self._step_lock.release()

    def run_until_complete(
        self, max_days: Optional[int] = None
    ) -> RunSummary:
        """
        Step until maturity or ``max_days`` advances, whichever is first.

        ``max_days`` defaults to ``config.max_days``.
        """
        limit = max_days if max_days is not None else self.config.max_days
        for _ in range(limit):
            if self.status is ControllerStatus.COMPLETED:
                break
            if self.step() is None:
                break
        return self.summary()

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until auto-advance ends; ``True`` if it did within ``timeout``."""
        with self._state_lock:
            auto = self._thread
        if auto is None:
            return True
        auto.join(timeout)
        return not auto.is_alive()

    # --------------------------- End of public API --------------------------

    def _step_locked(self) -> Optional[DayRecord]:
        """One day; the caller holds the step lock."""
        with self._state_lock:
            state = self._state
            profile = self._profile
            provider = self._provider
            generation = self._generation
        if not state.initialized:
            raise SimulationStateError("Initialize the run before stepping.")

        weather = None
        if state.stage_index < profile.final_index:
            day = state.current_day + 1
            try:
                weather = provider.observation_for(day, state.location)
            except WeatherUnavailableError as e:
                if (
                    self.config.live_fallback == "synthetic"
                    and state.weather_mode is WeatherMode.LIVE
                ):
                    logger.warning(
                        "Live weather unavailable for day %d (%s); "
                        "using synthetic weather for this day",
                        day,
                        e,
                    )
                    weather = self._fallback_provider(generation).observation_for(
                        day, state.location
                    )
                else:
                    self._fail(e, generation)
                    return None

        result = self.engine.advance_one_day(state, profile, weather)

        with self._state_lock:
            if generation != self._generation:
                logger.info(
                    "Discarding day %d: the run was reset meanwhile",
                    result.record.day,
                )
                return None
            current = self._state
            completed = result.state.stage_index >= profile.final_index
            self._state = replace(
                result.state,
                running=current.running and not completed,
                weather_mode=current.weather_mode,
            )
            if not result.record.noop:
                self._history.append(result.record)
            if completed:
                self._stop_auto_locked()
            if result.record.transitioned:
                logger.info(
                    "Day %d: %s reached stage %s",
                    result.record.day,
                    profile.crop_id,
                    result.record.stage_code,
                )
        return result.record

    def _fallback_provider(self, generation: int) -> WeatherProvider:
        with self._state_lock:
            if self._fallback is None or generation != self._generation:
                fallback = SyntheticWeatherProvider(
                    seed=self.config.seed, start_date=self._start_date
                )
                if generation == self._generation:
                    self._fallback = fallback
                return fallback
            return self._fallback

    def _fail(self, error: Exception, generation: int) -> None:
        """Record ``error``, pause the run and re-raise (unless reset)."""
        with self._state_lock:
            if generation != self._generation:
                logger.info("Dropping error from a discarded run: %s", error)
                return
            self._last_error = error
            if self._state.running:
                self._state = replace(self._state, running=False)
                logger.warning(
                    "Paused at day %d: %s", self._state.current_day, error
                )
            self._stop_auto_locked()
        raise error

    def _tick(self, auto: AutoAdvance) -> bool:
        """One auto-advance tick; returns whether ticking should continue."""
        with self._state_lock:
            if auto is not self._auto or not self._state.running:
                return False
        if not self._step_lock.acquire(blocking=False):
            logger.debug("Auto-advance tick skipped: a step is in progress")
            return True
        try:
            # pause() may have landed while the step lock was being taken.
            with self._state_lock:
                if auto is not self._auto or not self._state.running:
                    return False
            self._step_locked()
        except WeatherUnavailableError:
            return False
        except Exception as e:
            logger.exception("Auto-advance stopped by an error")
            with self._state_lock:
                self._last_error = e
                if auto is self._auto:
                    self._state = replace(self._state, running=False)
                    self._stop_auto_locked()
            return False
        finally:
            self._step_lock.release()
        with self._state_lock:
            return auto is self._auto and self._state.running

    def _stop_auto_locked(self) -> None:
        if self._auto is not None:
            self._auto.stop()
            self._auto = None

    def _discard_run_locked(self) -> None:
        self._stop_auto_locked()
        self._generation += 1
        self._state = SimulationState.uninitialized(self._weather_mode)
        self._profile = None
        self._provider = None
        self._fallback = None
        self._start_date = None
        self._history = []
        self._last_error = None
        self._started = False
