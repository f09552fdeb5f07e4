# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Posterior draws returned by sampling DagStan graphs.

The main class is :py:class:`~dagstan.model.results.draws.DrawsTable`, a table
with one row per retained draw and one column per scalar unobserved quantity.
Columns are named after node labels and plate index levels, and the columns of
each node are grouped so that they can be plotted together. Draws tables
convert to ArviZ ``InferenceData`` for diagnostics:

    >>> draws = graph.mcmc()
    >>> draws.summary()
    >>> draws.plot()

Users will not typically build draws tables themselves; they are returned by
:py:meth:`Graph.mcmc() <dagstan.graph.graph.Graph.mcmc>`.
"""

from dagstan.model.results.draws import DrawsTable, draw_column_names
