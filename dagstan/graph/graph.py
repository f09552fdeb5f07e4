# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Graph data store and builder for DagStan models.

A DagStan model is described by three related tables:

    - **Nodes**: random variables or deterministic quantities, each with a unique
      label, a description, an optional right-hand-side (RHS) expression, and
      optional observed data.
    - **Edges**: directed ``parent -> child`` dependencies.
    - **Plates**: repetition structures that instantiate their member nodes once
      per index level.

The :py:class:`Graph` class holds these tables and is immutable. Every builder
method returns a new graph that shares the records of its predecessor, so a
graph can be extended step by step without hidden global state, and any
snapshot can be compiled repeatedly:

    >>> graph = (
    ...     Graph()
    ...     .node("Get Card", "x", rhs="bernoulli(theta)", data=card_df.getCard)
    ...     .node("Card Probability", "theta", rhs="uniform(0, 1)", child="x")
    ...     .plate("Car Model", "y", node_labels="theta",
    ...            data=card_df.carModel, add_data_node=True)
    ... )
    >>> graph.nodes_df
    >>> draws = graph.mcmc()

Graph-structure problems are detected as early as possible: duplicate labels
and malformed RHS expressions fail at declaration time, while references to
labels that may still be declared later (edges) are checked when the graph is
compiled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

import numpy.typing as npt
import pandas as pd

from dagstan import custom_types, utils
from dagstan.exceptions import DuplicateLabelError, UndefinedParentError
from dagstan.graph.expressions import Expression, parse_rhs

compiler = utils.lazy_import("dagstan.model.compiler")
stan_model = utils.lazy_import("dagstan.model.stan.stan_model")


def _validate_label(label: str, kind: str) -> str:
    """Labels are used as Stan identifiers and in RHS expressions."""
    if not label.isidentifier() or label.startswith("_") or label.endswith("__"):
        raise ValueError(
            f"{kind} label '{label}' is not a valid identifier. Labels must start "
            "with a letter, contain only letters, digits, and underscores, and must "
            "not end with a double underscore."
        )
    return label


def _as_labels(labels: Optional[custom_types.LabelArg]) -> tuple[str, ...]:
    if labels is None:
        return ()
    if isinstance(labels, str):
        return (labels,)
    return tuple(labels)


@dataclass(frozen=True, eq=False)
class Node:
    """A random variable or deterministic quantity.

    :ivar label: Unique identifier, used in RHS expressions
    :ivar descr: Human-readable description
    :ivar rhs: Parsed RHS expression, or None
    :ivar data: Read-only observed data, or None for latent nodes
    :ivar order: Declaration order within the graph
    """

    label: str
    descr: str
    rhs: Optional[Expression] = None
    data: Optional[npt.NDArray] = field(default=None, repr=False)
    order: int = 0

    @property
    def observed(self) -> bool:
        """Whether the node carries observed data."""
        return self.data is not None

    @property
    def references(self) -> tuple[str, ...]:
        """Labels referenced by the node's RHS."""
        return () if self.rhs is None else self.rhs.references()

    @property
    def is_distribution(self) -> bool:
        """Whether the RHS is a draw from a distribution (as opposed to a formula)."""
        return self.rhs is not None and self.rhs.distribution is not None


@dataclass(frozen=True)
class Edge:
    """A directed dependency from ``parent`` to ``child``."""

    parent: str
    child: str


@dataclass(frozen=True, eq=False)
class Plate:
    """A repetition structure over a set of member nodes.

    :ivar descr: Human-readable description
    :ivar label: Index label, used as the plate's subscript name
    :ivar node_labels: Labels of the member nodes
    :ivar data: Read-only source vector whose distinct values are the index
        levels, or None to infer the number of levels from observed members
    :ivar add_data_node: Whether to synthesize an observed node carrying each
        entry's index level
    :ivar order: Declaration order among plates
    """

    descr: str
    label: str
    node_labels: tuple[str, ...]
    data: Optional[npt.NDArray] = field(default=None, repr=False)
    add_data_node: bool = False
    order: int = 0


class Graph:
    """Immutable store of the nodes, edges, and plates of a graphical model.

    :param nodes: Node records. Defaults to none.
    :type nodes: tuple[Node, ...]
    :param edges: Edge records. Defaults to none.
    :type edges: tuple[Edge, ...]
    :param plates: Plate records. Defaults to none.
    :type plates: tuple[Plate, ...]

    Users build graphs through the fluent builder methods :py:meth:`node`,
    :py:meth:`edge`, and :py:meth:`plate`, starting from ``Graph()``. Each
    method returns a new graph; the original is left untouched.
    """

    def __init__(
        self,
        nodes: tuple[Node, ...] = (),
        edges: tuple[Edge, ...] = (),
        plates: tuple[Plate, ...] = (),
    ):
        self._nodes = nodes
        self._edges = edges
        self._plates = plates
        self._node_lookup = {node.label: node for node in nodes}
        self._plate_lookup = {plate.label: plate for plate in plates}

    def node(
        self,
        descr: str,
        label: Optional[str] = None,
        rhs: Optional[Union[str, Expression]] = None,
        child: Optional[custom_types.LabelArg] = None,
        data: Optional[custom_types.DataVector] = None,
    ) -> Graph:
        """Declare a node.

        :param descr: Description of the node
        :type descr: str
        :param label: Identifier of the node. Defaults to ``descr``, which must
            then be a valid identifier.
        :type label: Optional[str]
        :param rhs: Distribution or formula defining the node, e.g.
            ``"beta(2, 2)"``. Defaults to None.
        :type rhs: Optional[Union[str, Expression]]
        :param child: Label(s) of nodes this node influences. One edge is added
            per child. Defaults to None.
        :type child: Optional[Union[str, Sequence[str]]]
        :param data: Observed data. Defaults to None (latent node).
        :type data: Optional[custom_types.DataVector]

        :returns: A new graph containing the node
        :rtype: Graph

        :raises DuplicateLabelError: If the label is already used
        :raises InvalidRhsError: If the RHS cannot be parsed
        :raises ValueError: If the label is not a valid identifier
        """
        label = _validate_label(descr if label is None else label, "Node")
        if label in self._node_lookup:
            raise DuplicateLabelError(
                f"A node labelled '{label}' already exists.", labels=(label,)
            )
        if label in self._plate_lookup and self._plate_lookup[label].add_data_node:
            raise DuplicateLabelError(
                f"Plate '{label}' already adds a data node labelled '{label}'.",
                labels=(label,),
            )

        new_node = Node(
            label=label,
            descr=descr,
            rhs=None if rhs is None else parse_rhs(rhs),
            data=utils.as_readonly_array(data),
            order=len(self._nodes),
        )
        graph = Graph(self._nodes + (new_node,), self._edges, self._plates)
        for child_label in _as_labels(child):
            graph = graph.edge(label, child_label)
        return graph

    def edge(self, parent: str, child: str) -> Graph:
        """Declare a dependency from ``parent`` to ``child``.

        Declaring an existing edge again leaves the graph unchanged. Endpoints
        are validated when the graph is compiled.

        :param parent: Label of the parent node
        :type parent: str
        :param child: Label of the child node
        :type child: str

        :returns: A new graph containing the edge
        :rtype: Graph
        """
        new_edge = Edge(parent, child)
        if new_edge in self._edges:
            return self
        return Graph(self._nodes, self._edges + (new_edge,), self._plates)

    def plate(
        self,
        descr: str,
        label: str,
        node_labels: custom_types.LabelArg,
        data: Optional[custom_types.DataVector] = None,
        add_data_node: bool = False,
    ) -> Graph:
        """Declare a plate repeating its member nodes once per index level.

        :param descr: Description of the plate
        :type descr: str
        :param label: Index label of the plate
        :type label: str
        :param node_labels: Label(s) of the member nodes, which must already exist.
            The data node of an earlier plate declared with ``add_data_node=True``
            may be listed as well.
        :type node_labels: Union[str, Sequence[str]]
        :param data: Source vector whose distinct values define the index levels.
            Defaults to None, in which case the number of levels is inferred from
            the observed data of the plate's members.
        :type data: Optional[custom_types.DataVector]
        :param add_data_node: Whether to add an observed node (labelled
            ``label``) holding the index level of every entry of ``data``.
            Defaults to False.
        :type add_data_node: bool

        :returns: A new graph containing the plate
        :rtype: Graph

        :raises DuplicateLabelError: If the plate label is already used by a
            plate, or, when adding a data node, by a node
        :raises UndefinedParentError: If a member label is not a declared node
            or the data node of an earlier plate
        :raises ValueError: If ``add_data_node`` is requested without data, or no
            member labels are given
        """
        label = _validate_label(label, "Plate")
        members = _as_labels(node_labels)

        if label in self._plate_lookup:
            raise DuplicateLabelError(
                f"A plate labelled '{label}' already exists.", labels=(label,)
            )
        if len(members) == 0:
            raise ValueError(f"Plate '{label}' must contain at least one node.")
        data_nodes = {plate.label for plate in self._plates if plate.add_data_node}
        if missing := [
            member
            for member in members
            if member not in self._node_lookup and member not in data_nodes
        ]:
            raise UndefinedParentError(
                f"Plate '{label}' lists undeclared node(s): {', '.join(missing)}",
                labels=missing,
            )
        if len(set(members)) != len(members):
            raise DuplicateLabelError(
                f"Plate '{label}' lists a node more than once.", labels=members
            )
        if add_data_node and data is None:
            raise ValueError(
                f"Plate '{label}' can only add a data node when source data is given."
            )
        if add_data_node and label in self._node_lookup:
            raise DuplicateLabelError(
                f"Plate '{label}' would add a data node labelled '{label}', but a "
                "node with that label already exists.",
                labels=(label,),
            )

        new_plate = Plate(
            descr=descr,
            label=label,
            node_labels=members,
            data=utils.as_readonly_array(data),
            add_data_node=add_data_node,
            order=len(self._plates),
        )
        return Graph(self._nodes, self._edges, self._plates + (new_plate,))

    def children(self, label: str) -> tuple[str, ...]:
        """Labels of the declared children of a node, in edge declaration order."""
        return tuple(edge.child for edge in self._edges if edge.parent == label)

    def parents(self, label: str) -> tuple[str, ...]:
        """Labels of the declared parents of a node, in edge declaration order."""
        return tuple(edge.parent for edge in self._edges if edge.child == label)

    def plates_of(self, label: str) -> tuple[Plate, ...]:
        """Plates listing a node as a member, in plate declaration order."""
        return tuple(plate for plate in self._plates if label in plate.node_labels)

    def get_plate(self, label: str) -> Plate:
        """Get a plate by its index label.

        :raises KeyError: If no plate has the label
        """
        return self._plate_lookup[label]

    def compile(self) -> "compiler.CompiledGraph":
        """Resolve plates and rewrite RHS expressions with explicit subscripts.

        :returns: The compiled graph
        :rtype: compiler.CompiledGraph

        See :py:func:`dagstan.model.compiler.compile_graph` for details.
        """
        return compiler.compile_graph(self)

    def to_stan(self, **kwargs) -> "stan_model.StanModel":
        """Compile the graph into a Stan model.

        :param kwargs: Keyword arguments passed to
            :py:class:`~dagstan.model.stan.stan_model.StanModel`

        :returns: The Stan model
        :rtype: stan_model.StanModel
        """
        return stan_model.StanModel(self, **kwargs)

    def mcmc(self, *, backend: Any = None, **sample_kwargs):
        """Compile the graph, sample its posterior, and return the draws.

        :param backend: Sampling backend. Defaults to None, which uses CmdStan.
        :type backend: Optional[stan_model.SamplingBackend]
        :param sample_kwargs: Keyword arguments passed to
            :py:meth:`~dagstan.model.stan.stan_model.StanModel.sample`

        :returns: Posterior draws
        :rtype: dagstan.model.results.DrawsTable
        """
        return self.to_stan(backend=backend).sample(**sample_kwargs)

    def render(self, **kwargs):
        """Render the graph as a Graphviz diagram.

        :param kwargs: Keyword arguments passed to
            :py:func:`dagstan.plotting.diagram.render`

        :returns: The diagram
        :rtype: graphviz.Digraph
        """
        # dagstan.plotting imports this module at load time
        from dagstan.plotting import diagram  # pylint: disable=import-outside-toplevel

        return diagram.render(self, **kwargs)

    def __getitem__(self, label: str) -> Node:
        """Get a node by label.

        :raises KeyError: If no node has the label
        """
        return self._node_lookup[label]

    def __contains__(self, label: str) -> bool:
        return label in self._node_lookup

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return (
            f"Graph(nodes={len(self._nodes)}, edges={len(self._edges)}, "
            f"plates={len(self._plates)})"
        )

    @property
    def nodes(self) -> tuple[Node, ...]:
        """Node records in declaration order."""
        return self._nodes

    @property
    def edges(self) -> tuple[Edge, ...]:
        """Edge records in declaration order."""
        return self._edges

    @property
    def plates(self) -> tuple[Plate, ...]:
        """Plate records in declaration order."""
        return self._plates

    @property
    def labels(self) -> tuple[str, ...]:
        """Node labels in declaration order."""
        return tuple(node.label for node in self._nodes)

    @property
    def nodes_df(self) -> pd.DataFrame:
        """The node table: one row per node."""
        return pd.DataFrame(
            {
                "label": [node.label for node in self._nodes],
                "descr": [node.descr for node in self._nodes],
                "rhs": [
                    None if node.rhs is None else str(node.rhs) for node in self._nodes
                ],
                "observed": [node.observed for node in self._nodes],
                "data_size": [
                    0 if node.data is None else node.data.size for node in self._nodes
                ],
            },
            columns=["label", "descr", "rhs", "observed", "data_size"],
        )

    @property
    def edges_df(self) -> pd.DataFrame:
        """The edge table: one row per ``parent -> child`` pair."""
        return pd.DataFrame(
            {
                "parent": [edge.parent for edge in self._edges],
                "child": [edge.child for edge in self._edges],
            },
            columns=["parent", "child"],
        )

    @property
    def plates_df(self) -> pd.DataFrame:
        """The plate table: one row per plate."""
        return pd.DataFrame(
            {
                "label": [plate.label for plate in self._plates],
                "descr": [plate.descr for plate in self._plates],
                "node_labels": [plate.node_labels for plate in self._plates],
                "has_data": [plate.data is not None for plate in self._plates],
                "add_data_node": [plate.add_data_node for plate in self._plates],
            },
            columns=["label", "descr", "node_labels", "has_data", "add_data_node"],
        )
