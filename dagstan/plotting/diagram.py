# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Graphviz diagrams of DagStan graphs.

Graphs are drawn the way they are usually drawn on paper: one ellipse per node,
filled darker when the node is observed and outlined twice when it is a
deterministic function of its parents, with plates drawn as boxes around their
members. Each node shows its description and, unless a short label is requested,
its label and right-hand side (``theta ~ beta(2, 2)``).

Rendering never fails because a graph cannot yet be compiled: plate sizes and
plate data nodes are shown only when the graph's plates can be resolved.
"""

from __future__ import annotations

import logging

from dataclasses import dataclass
from typing import Any, Optional

import graphviz

from dagstan import utils
from dagstan.defaults import (
    DEFAULT_FILL_COLOR,
    DEFAULT_FILL_COLOR_OBS,
    DEFAULT_WRAP_WIDTH,
    EMPTY_GRAPH_PLACEHOLDER,
)
from dagstan.exceptions import DagStanError, NotAGraphError
from dagstan.graph.graph import Graph, Node
from dagstan.model.resolver import resolve_plates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagramNode:
    """Display record of a node.

    :ivar label: Node label
    :ivar descr: Node description
    :ivar rhs: Right-hand side as the user wrote it, or None
    :ivar observed: Whether the node is observed
    :ivar deterministic: Whether the node is a deterministic formula
    :ivar plates: Labels of the plates containing the node, outermost first
    """

    label: str
    descr: str
    rhs: Optional[str]
    observed: bool
    deterministic: bool
    plates: tuple[str, ...]

    def text(self, short_label: bool, wrap_width: int) -> str:
        """Text shown inside the node."""
        lines = [utils.wrap_text(self.descr, wrap_width)]
        if short_label or self.rhs is None:
            lines.append(self.label)
        else:
            lines.append(f"{self.label} {'=' if self.deterministic else '~'} {self.rhs}")
        return "\n".join(lines)


@dataclass(frozen=True)
class DiagramPlate:
    """Display record of a plate.

    :ivar label: Plate index label
    :ivar descr: Plate description
    :ivar size: Number of index levels, or None if unknown
    """

    label: str
    descr: str
    size: Optional[int]

    @property
    def caption(self) -> str:
        caption = f"{self.descr} [{self.label}]"
        return caption if self.size is None else f"{caption}\nN = {self.size}"


def _node_record(graph: Graph, node: Node) -> DiagramNode:
    return DiagramNode(
        label=node.label,
        descr=node.descr,
        rhs=None if node.rhs is None else str(node.rhs),
        observed=node.observed,
        deterministic=node.rhs is not None and not node.is_distribution,
        plates=tuple(plate.label for plate in graph.plates_of(node.label)),
    )


def diagram_records(
    graph: Any,
) -> tuple[tuple[DiagramNode, ...], tuple[tuple[str, str], ...], tuple[DiagramPlate, ...]]:
    """Get the records a diagram is drawn from.

    :param graph: The graph to describe
    :type graph: Graph

    :returns: Node records, ``(parent, child)`` edge pairs, and plate records,
        each in declaration order
    :rtype: tuple[tuple[DiagramNode, ...], tuple[tuple[str, str], ...],
        tuple[DiagramPlate, ...]]

    :raises NotAGraphError: If ``graph`` is not a :py:class:`~dagstan.graph.Graph`
    """
    if not isinstance(graph, Graph):
        raise NotAGraphError(
            f"Cannot render an object of type {type(graph).__name__}; expected a "
            "dagstan Graph."
        )

    # Show plate sizes and data nodes if the plates can be resolved
    sizes: dict[str, int] = {}
    try:
        resolved = resolve_plates(graph)
    except DagStanError as err:
        logger.debug("Rendering without resolved plates: %s", err)
    else:
        graph = resolved.graph
        sizes = {label: plate.size for label, plate in resolved.plates.items()}

    nodes = tuple(_node_record(graph, node) for node in graph)
    edges = tuple((edge.parent, edge.child) for edge in graph.edges)
    plates = tuple(
        DiagramPlate(label=plate.label, descr=plate.descr, size=sizes.get(plate.label))
        for plate in graph.plates
    )
    return nodes, edges, plates


def _add_clusters(
    dot: graphviz.Digraph,
    path: tuple[str, ...],
    nodes: tuple[DiagramNode, ...],
    plates: dict[str, DiagramPlate],
    node_attrs: dict[str, dict[str, str]],
) -> None:
    """Add the nodes whose plates are exactly ``path`` and the clusters nested
    within ``path``.
    """
    for node in nodes:
        if node.plates == path:
            dot.node(node.label, **node_attrs[node.label])

    # Nested plates, in order of first appearance
    children = dict.fromkeys(
        node.plates[: len(path) + 1]
        for node in nodes
        if len(node.plates) > len(path) and node.plates[: len(path)] == path
    )
    for child in children:
        with dot.subgraph(name="cluster_" + "_".join(child)) as cluster:
            cluster.attr(label=plates[child[-1]].caption, labeljust="r", labelloc="b")
            _add_clusters(cluster, child, nodes, plates, node_attrs)


def render(
    graph: Any,
    short_label: bool = False,
    wrap_width: int = DEFAULT_WRAP_WIDTH,
    fill_color: str = DEFAULT_FILL_COLOR,
    fill_color_obs: str = DEFAULT_FILL_COLOR_OBS,
) -> graphviz.Digraph:
    """Render a graph as a Graphviz diagram.

    :param graph: The graph to render
    :type graph: Graph
    :param short_label: Whether to hide distributions and formulas, showing only
        descriptions and labels. Defaults to False.
    :type short_label: bool
    :param wrap_width: Number of characters after which descriptions wrap.
        Defaults to 24.
    :type wrap_width: int
    :param fill_color: Fill color of latent nodes. Defaults to "aliceblue".
    :type fill_color: str
    :param fill_color_obs: Fill color of observed nodes. Defaults to "cadetblue".
    :type fill_color_obs: str

    :returns: The diagram. It displays inline in notebooks and can be written to
        a file with ``render()``.
    :rtype: graphviz.Digraph

    :raises NotAGraphError: If ``graph`` is not a :py:class:`~dagstan.graph.Graph`
    """
    nodes, edges, plates = diagram_records(graph)

    dot = graphviz.Digraph("dagstan")
    dot.attr("graph", rankdir="TB")
    dot.attr("node", shape="ellipse", style="filled", fontname="Helvetica")

    # Something to look at before anything is modelled
    if len(nodes) == 0:
        descr, label = EMPTY_GRAPH_PLACEHOLDER
        dot.node("placeholder", label=f"{descr}\n{label}", fillcolor=fill_color)
        return dot

    node_attrs = {
        node.label: {
            "label": node.text(short_label, wrap_width),
            "fillcolor": fill_color_obs if node.observed else fill_color,
            "peripheries": "2" if node.deterministic else "1",
        }
        for node in nodes
    }
    _add_clusters(dot, (), nodes, {plate.label: plate for plate in plates}, node_attrs)

    # Edges whose endpoints are undeclared are not drawn
    labels = {node.label for node in nodes}
    for parent, child in edges:
        if parent in labels and child in labels:
            dot.edge(parent, child)

    return dot
