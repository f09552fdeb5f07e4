# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Posterior plots of DagStan draws.

Two views of a posterior are available through :py:func:`plot_posterior`:

    - **Credible intervals** (the default): parameters that share a prior (the
      columns of one node) are drawn together in one panel. Each parameter is a
      light bar spanning its 90% credible interval (5th to 95th percentile) and
      a dark bar spanning its central 10% (45th to 55th percentile). Parameters
      whose interquartile range is unusually wide for their group are drawn
      faded, so that well-identified parameters stand out.
    - **Densities**: one kernel density estimate per column.

The module leverages HoloViews and hvplot for interactive visualizations.
"""

from __future__ import annotations

import math
import warnings

from typing import Union

import holoviews as hv
import hvplot.pandas  # pylint: disable=unused-import
import pandas as pd

from dagstan import utils
from dagstan.defaults import (
    DEFAULT_ABBREV_LENGTH,
    DEFAULT_INNER_INTERVAL,
    DEFAULT_OUTER_INTERVAL,
    DEFAULT_WIDE_INTERVAL_FACTOR,
)
from dagstan.model.results.draws import DrawsTable

# Colors of the interval bars
LIGHT_COLOR = "#5f9ea0"
DARK_COLOR = "#11114e"

# Opacity of parameters with unusually wide intervals
FADED_ALPHA = 0.6

INTERVAL_CAPTION = "Credible Intervals - 10% (dark) & 90% (light)"


def _layout_columns(n_panels: int) -> int:
    """Number of columns to lay panels out in."""
    return 1 if n_panels == 1 else math.floor(1 + math.sqrt(n_panels))


def interval_summary(values: pd.DataFrame) -> pd.DataFrame:
    """Summarize the draws of a group of parameters for an interval plot.

    :param values: One column per parameter, one row per draw
    :type values: pd.DataFrame

    :returns: One row per parameter with the interval quantiles, the
        interquartile width, and the opacity to draw it with, sorted by opacity
        and then median. The ``position`` and ``position_end`` columns give each
        parameter's place on the y-axis.
    :rtype: pd.DataFrame

    :raises TypeError: If a column is not numeric
    """
    if non_numeric := [
        column
        for column in values.columns
        if not pd.api.types.is_numeric_dtype(values[column])
    ]:
        raise TypeError(f"Cannot summarize non-numeric draws: {', '.join(non_numeric)}")

    (q_lo, q_hi), (q_inner_lo, q_inner_hi) = DEFAULT_OUTER_INTERVAL, DEFAULT_INNER_INTERVAL
    quantiles = values.quantile([q_lo, q_inner_lo, 0.25, 0.5, 0.75, q_inner_hi, q_hi]).T
    quantiles.columns = ["outer_lo", "inner_lo", "q25", "median", "q75", "inner_hi", "outer_hi"]

    # Intervals much wider than is typical for the group are faded
    quantiles["iqr"] = quantiles["q75"] - quantiles["q25"]
    reasonable_width = DEFAULT_WIDE_INTERVAL_FACTOR * quantiles["iqr"].quantile(0.75)
    quantiles["alpha"] = 1.0
    quantiles.loc[quantiles["iqr"] > reasonable_width, "alpha"] = FADED_ALPHA

    quantiles = quantiles.rename_axis("param").reset_index()
    quantiles = quantiles.sort_values(["alpha", "median"], kind="stable").reset_index(drop=True)
    quantiles["position"] = range(len(quantiles))
    quantiles["position_end"] = quantiles["position"]
    return quantiles


def _interval_panel(values: pd.DataFrame, title: str) -> hv.Overlay:
    """Build the credible-interval panel of one group of parameters."""
    summary = interval_summary(values)
    yticks = list(zip(summary["position"], summary["param"]))

    segments = []
    for (start, end), color in (
        (("outer_lo", "outer_hi"), LIGHT_COLOR),
        (("inner_lo", "inner_hi"), DARK_COLOR),
    ):
        segments.append(
            hv.Segments(
                summary,
                kdims=[start, "position", end, "position_end"],
                vdims=["alpha", "param"],
            ).opts(color=color, alpha=hv.dim("alpha"), line_width=8)
        )

    return hv.Overlay(segments).opts(
        title=title,
        xlabel="parameter value",
        ylabel="",
        yticks=yticks,
        height=max(150, 40 * len(summary) + 80),
        width=400,
    )


def plot_density(draws: pd.DataFrame) -> hv.Layout:
    """Plot one kernel density estimate per column.

    :param draws: One column per parameter, one row per draw
    :type draws: pd.DataFrame

    :returns: A grid of density plots
    :rtype: hv.Layout
    """
    plots = [
        draws.hvplot.kde(y=column, title=str(column), width=300, height=250)
        for column in draws.columns
    ]
    return hv.Layout(plots).cols(_layout_columns(len(plots)))


def plot_intervals(draws: pd.DataFrame, groups: dict[str, tuple[str, ...]]) -> hv.Layout:
    """Plot credible intervals with one panel per group of parameters.

    :param draws: One column per parameter, one row per draw
    :type draws: pd.DataFrame
    :param groups: Columns of each group, keyed by the group's title
    :type groups: dict[str, tuple[str, ...]]

    :returns: A grid of interval panels
    :rtype: hv.Layout

    :raises TypeError: If a column is not numeric
    """
    panels = [
        _interval_panel(draws[list(columns)], title) for title, columns in groups.items()
    ]
    return (
        hv.Layout(panels)
        .cols(_layout_columns(len(panels)))
        .opts(title=INTERVAL_CAPTION)
    )


def plot_posterior(
    draws: Union[DrawsTable, pd.DataFrame],
    density_plot: bool = False,
    abbrev_labels: bool = False,
) -> hv.Layout:
    """Plot the posterior distribution of every column of a draws table.

    :param draws: The posterior draws. A draws table is plotted with one panel
        per group of parameters sharing a prior. When a plain DataFrame is given,
        every column forms its own group.
    :type draws: Union[DrawsTable, pd.DataFrame]
    :param density_plot: Whether to draw one density per parameter instead of
        grouped credible intervals. Defaults to False.
    :type density_plot: bool
    :param abbrev_labels: Whether to abbreviate long parameter names to about
        10 characters. Defaults to False.
    :type abbrev_labels: bool

    :returns: The plot
    :rtype: hv.Layout

    If the credible intervals cannot be computed (for example because a column
    is not numeric), the density plot is returned instead, with a warning.

    Example:
        >>> draws = graph.mcmc()
        >>> plot_posterior(draws)
        >>> plot_posterior(draws.draws, density_plot=True)
    """
    if isinstance(draws, DrawsTable):
        frame, groups = draws.draws, draws.groups
    else:
        frame = draws.rename(columns=str)
        groups = {column: (column,) for column in frame.columns}

    # Shorten the names shown on the plot
    if abbrev_labels:
        renamed = {
            column: utils.abbreviate(column, DEFAULT_ABBREV_LENGTH)
            for column in frame.columns
        }
        frame = frame.rename(columns=renamed)
        groups = {
            title: tuple(renamed[column] for column in columns)
            for title, columns in groups.items()
        }

    if density_plot:
        return plot_density(frame)

    try:
        return plot_intervals(frame, groups)
    except (TypeError, ValueError) as err:
        warnings.warn(
            f"Could not build credible-interval plots ({err}); showing densities "
            "instead."
        )
        return plot_density(frame)
