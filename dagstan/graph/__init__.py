# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Graph description of DagStan models.

This subpackage holds the immutable graph store and builder
(:py:class:`~dagstan.graph.graph.Graph`), the expression trees that right-hand
sides are parsed into, and the registry of distributions that may appear in
them.
"""

from dagstan.graph.expressions import parse_rhs
from dagstan.graph.graph import Edge, Graph, Node, Plate
