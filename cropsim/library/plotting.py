from __future__ import annotations

from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd


def plot_history(
    frame: pd.DataFrame,
    key: str = "gdd_cum",
    ax: Optional[plt.Axes] = None,
    mark_stages: bool = True,
) -> plt.Axes:
    """Plot one column of a run history against the simulated day.

    Parameters
    ----------
    frame : pandas.DataFrame
        Output of ``SimulationController.history_frame()`` (indexed by day).
    key : str, default="gdd_cum"
        Column to plot (e.g. ``"moisture"``, ``"heat_stress"``).
    ax : matplotlib.axes.Axes, optional
        Target axes; a new figure is created when omitted.
    mark_stages : bool, default=True
        Draw a vertical line and the stage code at each stage transition.

    Returns
    -------
    matplotlib.axes.Axes
    """
    if key not in frame.columns:
        raise KeyError(f"Column '{key}' not in history. Known: {list(frame)}")
    if ax is None:
        _, ax = plt.subplots(figsize=(10, 6))
    ax.plot(frame.index, frame[key])
    if mark_stages and "transitioned" in frame.columns:
        for day, stage in frame.loc[frame["transitioned"], "stage"].items():
            ax.axvline(day, color="grey", lw=0.8, ls="--")
            ax.annotate(
                stage,
                (day, 1.0),
                xycoords=("data", "axes fraction"),
                rotation=90,
                va="top",
                fontsize=8,
            )
    ax.set_xlabel("Day")
    ax.set_ylabel(key)
    ax.set_title(key)
    return ax
