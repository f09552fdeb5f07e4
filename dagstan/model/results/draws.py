# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Posterior draws of compiled graphs.

Sampling backends return one column per Stan output, named the way CmdStan
names them (``theta``, ``theta[2]``, ``theta[1,3]``). This module renames those
columns after the graph they were sampled from:

    - scalar nodes keep their label (``theta``)
    - plated nodes get one column per combination of index levels, named by
      joining the label and the levels (``theta_Toyota``, ``theta_Toyota_3``)
    - row parameters use the row number as their level (``z_1``, ``z_2``, ...)

Optionally, every column name is abbreviated in the manner of R's
``abbreviate``. Column names are guaranteed to be unique; a clash raises
:py:class:`~dagstan.exceptions.ColumnCollisionError` rather than silently
dropping draws.
"""

from __future__ import annotations

import itertools
import logging
import re

from typing import Optional

import arviz as az
import numpy as np
import pandas as pd

from dagstan import utils
from dagstan.defaults import DEFAULT_ABBREV_LENGTH, DEFAULT_COLUMN_SEPARATOR
from dagstan.exceptions import ColumnCollisionError
from dagstan.model.compiler import CompiledGraph, CompiledNode

plotting = utils.lazy_import("dagstan.plotting")

logger = logging.getLogger(__name__)

# Chain column written by CmdStanPy's `draws_pd`
_CHAIN_COLUMN = "chain__"

_STAN_COLUMN_RE = re.compile(r"^(?P<label>[^\[\]]+)(?:\[(?P<indices>[0-9,\s]+)\])?$")


def stan_column_names(node: CompiledNode) -> dict[str, tuple[str, ...]]:
    """Map the Stan output columns of a node to the index levels they hold."""
    if not node.shape:
        return {node.label: ()}

    # One column per combination of levels, last dimension fastest
    return {
        f"{node.label}[{','.join(str(i + 1) for i in indices)}]": tuple(
            node.index_levels[dim][i] for dim, i in enumerate(indices)
        )
        for indices in itertools.product(*(range(size) for size in node.shape))
    }


def draw_column_names(
    compiled: CompiledGraph,
    abbreviate: bool = False,
    separator: str = DEFAULT_COLUMN_SEPARATOR,
    abbrev_length: int = DEFAULT_ABBREV_LENGTH,
) -> dict[str, str]:
    """Name the draws-table columns of a compiled graph.

    :param compiled: The compiled graph
    :type compiled: CompiledGraph
    :param abbreviate: Whether to abbreviate column names. Defaults to False.
    :type abbreviate: bool
    :param separator: Text placed between a label and its levels. Defaults to "_".
    :type separator: str
    :param abbrev_length: Length abbreviated names are shortened towards.
        Defaults to 10.
    :type abbrev_length: int

    :returns: Draws-table column name keyed by Stan output column, in emission
        order
    :rtype: dict[str, str]

    :raises ColumnCollisionError: If two columns would get the same name
    """
    names: dict[str, str] = {}
    owners: dict[str, str] = {}
    for node in compiled.draw_nodes:
        for stan_name, levels in stan_column_names(node).items():
            name = separator.join((node.label, *levels))
            if abbreviate:
                name = utils.abbreviate(name, abbrev_length)

            if name in owners:
                raise ColumnCollisionError(
                    f"Draws columns '{owners[name]}' and '{stan_name}' would both be "
                    f"named '{name}'. Use distinct plate levels, rename the nodes, or "
                    "disable abbreviation.",
                    labels=(name,),
                )
            owners[name] = stan_name
            names[stan_name] = name

    return names


class DrawsTable:
    """Posterior draws with one column per scalar quantity.

    :param draws: One row per retained draw, one column per scalar quantity
    :type draws: pd.DataFrame
    :param groups: Columns plotted together, keyed by a group title. Defaults to
        None, in which case every column forms its own group.
    :type groups: Optional[dict[str, tuple[str, ...]]]
    :param chain: Chain of every draw. Defaults to None (a single chain).
    :type chain: Optional[np.ndarray]

    Draws tables are normally built by
    :py:meth:`StanModel.sample() <dagstan.model.stan.stan_model.StanModel.sample>`.
    The underlying frame is available through :py:attr:`draws`; columns can also
    be accessed directly:

        >>> draws = graph.mcmc()
        >>> draws["theta"].mean()
        >>> draws.groups
        {'theta': ('theta_Toyota', 'theta_Subaru')}
    """

    def __init__(
        self,
        draws: pd.DataFrame,
        groups: Optional[dict[str, tuple[str, ...]]] = None,
        chain: Optional[np.ndarray] = None,
    ):
        if not draws.columns.is_unique:
            duplicated = draws.columns[draws.columns.duplicated()].unique().tolist()
            raise ColumnCollisionError(
                f"Draws columns must be unique; duplicated: {', '.join(map(str, duplicated))}",
                labels=duplicated,
            )
        if chain is not None and len(chain) != len(draws):
            raise ValueError("There must be exactly one chain entry per draw.")

        self._draws = draws.reset_index(drop=True)
        self._groups = (
            {column: (column,) for column in draws.columns}
            if groups is None
            else dict(groups)
        )
        self._chain = (
            np.zeros(len(draws), dtype=np.int64) if chain is None else np.asarray(chain)
        )

    @classmethod
    def from_stan_draws(
        cls,
        raw: pd.DataFrame,
        compiled: CompiledGraph,
        abbreviate: bool = False,
        separator: str = DEFAULT_COLUMN_SEPARATOR,
        abbrev_length: int = DEFAULT_ABBREV_LENGTH,
    ) -> "DrawsTable":
        """Build a draws table from the output of a sampling backend.

        :param raw: Backend output with CmdStan-style column names
        :type raw: pd.DataFrame
        :param compiled: The compiled graph that was sampled
        :type compiled: CompiledGraph
        :param abbreviate: Whether to abbreviate column names. Defaults to False.
        :type abbreviate: bool
        :param separator: Text placed between a label and its levels. Defaults
            to "_".
        :type separator: str
        :param abbrev_length: Length abbreviated names are shortened towards.
            Defaults to 10.
        :type abbrev_length: int

        :returns: The draws table
        :rtype: DrawsTable

        :raises ValueError: If the backend output lacks an expected column
        :raises ColumnCollisionError: If two columns would get the same name
        """
        names = draw_column_names(
            compiled,
            abbreviate=abbreviate,
            separator=separator,
            abbrev_length=abbrev_length,
        )

        # CmdStanPy may format multi-index columns with or without spaces
        available = {_normalize_stan_column(column): column for column in raw.columns}
        if missing := [stan_name for stan_name in names if stan_name not in available]:
            raise ValueError(
                "The sampling backend returned no draws for: " + ", ".join(missing)
            )

        draws = pd.DataFrame(
            {names[stan_name]: raw[available[stan_name]].to_numpy() for stan_name in names}
        )

        # Nodes with the same prior are plotted together
        by_rhs: dict[str, dict[str, tuple[str, ...]]] = {}
        for stan_name, column in names.items():
            label = _STAN_COLUMN_RE.match(stan_name).group("label")
            members = by_rhs.setdefault(str(compiled.graph[label].rhs), {})
            members[label] = members.get(label, ()) + (column,)
        groups = {
            ", ".join(members): sum(members.values(), ())
            for members in by_rhs.values()
        }

        chain = raw[_CHAIN_COLUMN].to_numpy() if _CHAIN_COLUMN in raw.columns else None
        logger.debug(
            "Collected %d draw(s) of %d column(s)", len(draws), len(draws.columns)
        )
        return cls(draws, groups=groups, chain=chain)

    @property
    def draws(self) -> pd.DataFrame:
        """A copy of the draws as a DataFrame."""
        return self._draws.copy()

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self._draws.columns)

    @property
    def groups(self) -> dict[str, tuple[str, ...]]:
        """Columns plotted together, keyed by group title.

        Draws sampled by a graph are grouped by prior: all columns of nodes with
        the same RHS form one group, titled with the labels of those nodes.
        """
        return dict(self._groups)

    @property
    def chain(self) -> np.ndarray:
        """The chain of every draw."""
        return self._chain.copy()

    def __getitem__(self, column: str) -> pd.Series:
        return self._draws[column]

    def __len__(self) -> int:
        return len(self._draws)

    def __repr__(self) -> str:
        return f"DrawsTable(draws={len(self)}, columns={len(self.columns)})"

    def to_inference_data(self) -> az.InferenceData:
        """Convert the draws to an ArviZ InferenceData object.

        Every column becomes a scalar posterior variable with dimensions
        ``(chain, draw)``. Chains must have equal numbers of draws.

        :returns: The posterior as InferenceData
        :rtype: az.InferenceData
        """
        chains = pd.unique(self._chain)
        per_chain = [np.flatnonzero(self._chain == chain) for chain in chains]
        if len({len(rows) for rows in per_chain}) != 1:
            raise ValueError("All chains must hold the same number of draws.")

        posterior = {
            column: np.stack([self._draws[column].to_numpy()[rows] for rows in per_chain])
            for column in self.columns
        }
        return az.from_dict(posterior=posterior)

    def summary(self, **kwargs) -> pd.DataFrame:
        """Summarize the posterior with ArviZ.

        :param kwargs: Keyword arguments passed to ``arviz.summary``

        :returns: Summary statistics and diagnostics, one row per column
        :rtype: pd.DataFrame
        """
        return az.summary(self.to_inference_data(), **kwargs)

    def plot(self, **kwargs):
        """Plot the posterior.

        :param kwargs: Keyword arguments passed to
            :py:func:`dagstan.plotting.plot_posterior`

        :returns: The plot
        :rtype: hv.Layout
        """
        return plotting.plot_posterior(self, **kwargs)


def _normalize_stan_column(column: str) -> str:
    """Remove whitespace from a Stan column name (``theta[1, 2]`` -> ``theta[1,2]``)."""
    return re.sub(r"\s+", "", str(column))
