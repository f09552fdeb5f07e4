# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
DagStan: Bayesian graphical models described as DAGs and compiled to Stan.

DagStan lets an analyst describe a Bayesian graphical model as a graph of
nodes (random variables and deterministic quantities), edges (dependencies),
and plates (repeated structure). The graph is compiled into a fully indexed
Stan program, sampled with CmdStan, and the posterior draws are returned as a
tidy table that can be plotted directly.

Key Features:
    - Immutable, fluent graph builder (``Graph().node(...).plate(...)``)
    - Automatic plate index resolution and subscript alignment across plates
    - Deterministic Stan code emission
    - Sampling through CmdStanPy with draws named by node label and index level
    - Graphviz diagrams of the model and HoloViews posterior plots

Global Variables:
    RNG: Global random number generator used to seed sampling runs
    __version__: Package version string

Example:
    >>> import dagstan as ds
    >>> ds.manual_seed(42)
    >>> graph = (
    ...     ds.Graph()
    ...     .node("Get Card", "x", rhs="bernoulli(theta)", data=[0, 1, 1, 0])
    ...     .node("Card Probability", "theta", rhs="uniform(0, 1)", child="x")
    ... )
    >>> print(graph.to_stan().code())
"""

from typing import Optional

from typeguard import install_import_hook

import numpy as np

# Define the version
__version__ = "0.1.0"

# Set up type checking
install_import_hook("dagstan")

# Define the global random number generator
RNG: np.random.Generator
"""Global random number generator for DagStan.

Sampling runs that are not given an explicit seed draw one from this generator.
It can be seeded using the manual_seed() function to ensure consistent results
across runs.

:type: np.random.Generator
"""


def manual_seed(seed: Optional[int] = None):
    """Set the seed for the global random number generator.

    :param seed: Seed value for random number generation. If None, uses
                system entropy to generate a random seed.
    :type seed: Optional[int]

    Example:
        >>> import dagstan as ds
        >>> ds.manual_seed(42)
        >>> draws = graph.mcmc()  # Reproducible seed for CmdStan
    """
    global RNG  # pylint: disable=global-statement
    RNG = np.random.default_rng(seed)


manual_seed()  # Set the seed for the global random number generator

# Import objects that should be easily accessible from the package level
# pylint: disable=wrong-import-position
from dagstan import utils
from dagstan.exceptions import (
    AmbiguousPlateSizeError,
    ColumnCollisionError,
    CyclicGraphError,
    DagStanError,
    DuplicateLabelError,
    IndexScopeError,
    InvalidRhsError,
    NotAGraphError,
    UndefinedParentError,
)
from dagstan.graph import Graph

# Lazy imports for performance
plotting = utils.lazy_import("dagstan.plotting")
results = utils.lazy_import("dagstan.model.results")
