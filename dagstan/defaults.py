# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Default configuration values for DagStan package components.

This module centralizes default values used across the DagStan package,
including naming conventions for generated Stan code, Stan compilation options,
sampling settings, and rendering/plotting choices.

The module is organized into logical groups covering:
    - Variable and index naming conventions
    - Stan model compilation and sampling settings
    - Draws-table naming
    - Diagram and posterior-plot appearance

Default values cannot be programmatically altered. Every function that uses one
of these values exposes a keyword argument to override it per call.
"""

from typing import Any

# Default order for loop-index variable names
DEFAULT_INDEX_ORDER: tuple[str, ...] = (
    "i",
    "j",
    "k",
    "l",
    "m",
    "n",
    "o",
    "p",
    "q",
    "r",
    "s",
    "t",
    "u",
    "v",
    "w",
)
"""Ordering of loop-variable names used in generated Stan for-loops.

Names that clash with a node label, a plate label, or a generated size name are
skipped.

:type: tuple[str, ...]
"""

PLATE_SIZE_SUFFIX: str = "_dim"
"""Suffix appended to a plate label to name its size in the Stan data block.

:type: str
"""

ROW_LENGTH_SUFFIX: str = "_len"
"""Suffix appended to a node label to name the length of its row-valued data.

:type: str
"""

DATA_NODE_DESCR_SUFFIX: str = " Observed"
"""Suffix appended to a plate description to describe its synthesized data node.

:type: str
"""

# Defaults for the Stan model
DEFAULT_FORCE_COMPILE: bool = False
"""Default setting for forcing Stan model recompilation.

:type: bool
"""

DEFAULT_STANC_OPTIONS: dict[str, Any] = {"warn-pedantic": True, "O1": True}
"""Default options passed to the Stan compiler (stanc).

:type: dict[str, Any]
"""

DEFAULT_CPP_OPTIONS: dict[str, Any] = {"STAN_THREADS": True}
"""Default C++ compilation options for Stan models.

:type: dict[str, Any]
"""

DEFAULT_MODEL_NAME: str = "model"
"""Default name for generated Stan models.

:type: str
"""

# Sampling defaults
DEFAULT_ITER_SAMPLING: int = 1000
"""Default number of retained posterior draws per chain.

:type: int
"""

DEFAULT_ITER_WARMUP: int = 1000
"""Default number of warmup (burn-in) iterations per chain.

:type: int
"""

DEFAULT_CHAINS: int = 4
"""Default number of Markov chains.

:type: int
"""

# Draws-table defaults
DEFAULT_COLUMN_SEPARATOR: str = "_"
"""Separator placed between a node label and its index levels in column names.

:type: str
"""

DEFAULT_ABBREV_LENGTH: int = 10
"""Minimum length that abbreviated column names are shortened towards.

:type: int
"""

# Rendering defaults
DEFAULT_WRAP_WIDTH: int = 24
"""Number of characters after which node descriptions are wrapped.

:type: int
"""

DEFAULT_FILL_COLOR: str = "aliceblue"
"""Fill color for latent (unobserved) nodes in rendered diagrams.

:type: str
"""

DEFAULT_FILL_COLOR_OBS: str = "cadetblue"
"""Fill color for observed nodes in rendered diagrams.

:type: str
"""

EMPTY_GRAPH_PLACEHOLDER: tuple[str, str] = ("START MODELLING", "use Graph.node()")
"""Description and label text shown when an empty graph is rendered.

:type: tuple[str, str]
"""

# Posterior plot defaults
DEFAULT_OUTER_INTERVAL: tuple[float, float] = (0.05, 0.95)
"""Quantiles bounding the light (90%) credible-interval segment.

:type: tuple[float, float]
"""

DEFAULT_INNER_INTERVAL: tuple[float, float] = (0.45, 0.55)
"""Quantiles bounding the dark (10%) credible-interval segment.

:type: tuple[float, float]
"""

DEFAULT_WIDE_INTERVAL_FACTOR: float = 1.5
"""Multiple of the group's 75th-percentile interquartile width above which a
parameter's interval is drawn faded.

:type: float
"""
