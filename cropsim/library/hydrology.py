"""Daily soil-water bookkeeping helpers (rain infiltration and crop uptake)."""

from __future__ import annotations

import numpy as np

Array = np.ndarray

# Breakpoints of the piecewise rainfall → effective rainfall mapping [mm].
_PP_BREAKS = np.array([0, 25, 50, 75, 100, 125, 150], dtype=float)
_PPEF_BREAKS = np.array(
    [0, 23.75, 46.25, 66.75, 83.0, 94.25, 100.25], dtype=float
)


def effective_precipitation(pp: Array | float) -> Array | float:
    """
    Piecewise-linear effective precipitation (mm/day).

    Light rain infiltrates almost completely; beyond 150 mm only 5 % of the
    excess is retained, the rest runs off.

    Parameters
    ----------
    pp : ndarray or scalar
        Daily precipitation [mm].

    Returns
    -------
    ndarray or float
        Effective precipitation [mm/day]; a float when ``pp`` is a scalar.
    """
    arr = np.asarray(pp, dtype=float)
    out = np.interp(
        arr,
        _PP_BREAKS,
        _PPEF_BREAKS,
        left=0.0,
        right=np.nan,
    )
    # np.interp only accepts scalar fill values; extend the tail by hand.
    out = np.where(arr > _PP_BREAKS[-1], 100.25 + 0.05 * (arr - 150), out)
    if out.ndim == 0:
        return float(out)
    return out


def moisture_gain(precip_mm: float, capacity_mm: float) -> float:
    """Moisture fraction added by one day of rain on a root zone."""
    return effective_precipitation(precip_mm) / max(capacity_mm, 1e-9)


def uptake_loss(
    growth_units: float, uptake_coefficient: float, capacity_mm: float
) -> float:
    """Moisture fraction taken up by the crop for ``growth_units`` of growth."""
    return uptake_coefficient * max(growth_units, 0.0) / max(capacity_mm, 1e-9)
