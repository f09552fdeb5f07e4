# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Visualization of DagStan graphs and their posteriors.

This subpackage provides two kinds of figures:

    - Model diagrams, built with Graphviz by
      :py:func:`~dagstan.plotting.diagram.render`
    - Posterior plots, built with HoloViews and hvplot by
      :py:func:`~dagstan.plotting.plotting.plot_posterior`

Users will normally reach these through
:py:meth:`Graph.render() <dagstan.graph.graph.Graph.render>` and
:py:meth:`DrawsTable.plot() <dagstan.model.results.draws.DrawsTable.plot>`.
"""

from .diagram import diagram_records, render
from .plotting import interval_summary, plot_density, plot_intervals, plot_posterior
