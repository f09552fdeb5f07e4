# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Plate index resolution.

This module determines, for every plate of a graph, the ordered index levels it
repeats its members over, and, for every node, the ordered tuple of plates (its
*scope*) that the node varies over.

Index levels are found as follows:

    - If the plate has source data, its levels are the distinct values of that
      data in **first-occurrence order**, converted to strings. This order fixes
      the naming of posterior-draw columns.
    - Otherwise, the number of levels is inferred from the observed data of the
      plate's *eligible* members (observed members that belong to no other
      plate). All eligible members must agree on one data length ``N``, and the
      levels become ``"1" .. "N"``.

Plates declared with ``add_data_node=True`` additionally contribute an observed
node, labelled with the plate's index label, whose data is the 1-based level of
every entry of the plate's source data. The synthesized node is wired as a
parent of every node outside the plate that depends on a plate member, which is
what allows those nodes to select the member by its per-row level (the
``theta[y]`` pattern).
Other plates may list the synthesized node as a member; those plates are
resolved after the plates with source data, so the node can size them.

The output of resolution is a :py:class:`ResolvedGraph`, a disposable view over
an augmented copy of the input graph. The input graph is never modified.
"""

from __future__ import annotations

import logging

from dataclasses import dataclass
from typing import Optional

import numpy.typing as npt

from dagstan import custom_types, utils
from dagstan.defaults import DATA_NODE_DESCR_SUFFIX
from dagstan.exceptions import (
    AmbiguousPlateSizeError,
    DuplicateLabelError,
    UndefinedParentError,
)
from dagstan.graph.graph import Graph, Node, Plate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ResolvedPlate:
    """A plate with its index levels determined.

    :ivar plate: The plate record
    :ivar levels: Index levels, as strings, in first-occurrence order
    :ivar assignment: 1-based level of every entry of the plate's source data, or
        None if the plate has no source data
    :ivar data_node: Label of the synthesized data node, or None
    """

    plate: Plate
    levels: tuple[str, ...]
    assignment: Optional[npt.NDArray] = None
    data_node: Optional[str] = None

    @property
    def label(self) -> str:
        return self.plate.label

    @property
    def descr(self) -> str:
        return self.plate.descr

    @property
    def size(self) -> int:
        """Number of index levels."""
        return len(self.levels)

    @property
    def members(self) -> tuple[str, ...]:
        return self.plate.node_labels


@dataclass(frozen=True, eq=False)
class ResolvedGraph:
    """A graph together with its resolved plates and node scopes.

    :ivar graph: The augmented graph, including synthesized data nodes and the
        edges wiring them to their dependents
    :ivar plates: Resolved plates keyed by index label, in declaration order
    :ivar scopes: Scope of every node, keyed by node label
    """

    graph: Graph
    plates: dict[str, ResolvedPlate]
    scopes: dict[str, custom_types.Scope]

    def scope(self, label: str) -> custom_types.Scope:
        """Get the scope of a node."""
        return self.scopes[label]

    def dependencies(self, label: str) -> tuple[str, ...]:
        """Get the labels a node depends on: its declared parents followed by any
        further labels referenced in its RHS, without duplicates.
        """
        combined = dict.fromkeys(self.graph.parents(label))
        combined.update(dict.fromkeys(self.graph[label].references))
        return tuple(combined)

    def data_node_plates(self) -> dict[str, str]:
        """Map the label of every synthesized data node to its plate's label."""
        return {
            plate.data_node: plate.label
            for plate in self.plates.values()
            if plate.data_node is not None
        }


def validate_references(graph: Graph) -> None:
    """Check the referential integrity of a graph.

    :param graph: The graph to check
    :type graph: Graph

    :raises DuplicateLabelError: If two nodes or two plates share a label
    :raises UndefinedParentError: If an edge, an RHS, or a plate refers to a
        label that is not a declared node
    """
    # Labels must be unique. The builder enforces this on declaration, but graphs
    # can also be assembled from records directly.
    for kind, labels in (
        ("node", [node.label for node in graph.nodes]),
        ("plate", [plate.label for plate in graph.plates]),
    ):
        if duplicated := sorted({label for label in labels if labels.count(label) > 1}):
            raise DuplicateLabelError(
                f"Duplicate {kind} label(s): {', '.join(duplicated)}",
                labels=duplicated,
            )

    # Data nodes synthesized by plates count as nodes
    synthesized = {plate.label for plate in graph.plates if plate.add_data_node}

    # Edges may be declared before their endpoints, so they are checked here
    for edge in graph.edges:
        if missing := [
            label
            for label in (edge.parent, edge.child)
            if label not in graph and label not in synthesized
        ]:
            raise UndefinedParentError(
                f"Edge {edge.parent} -> {edge.child} refers to undeclared node(s): "
                f"{', '.join(missing)}",
                labels=missing,
            )

    # Every label referenced in an RHS must be a node
    for node in graph.nodes:
        if missing := [
            label
            for label in node.references
            if label not in graph and label not in synthesized
        ]:
            raise UndefinedParentError(
                f"The RHS of '{node.label}' ({node.rhs}) refers to undeclared "
                f"label(s): {', '.join(missing)}",
                labels=missing,
            )

    # Plate members may include the data nodes of other plates
    for plate in graph.plates:
        if missing := [
            label
            for label in plate.node_labels
            if label not in graph
            and (label not in synthesized or label == plate.label)
        ]:
            raise UndefinedParentError(
                f"Plate '{plate.label}' lists undeclared node(s): {', '.join(missing)}",
                labels=missing,
            )


def _infer_size(graph: Graph, plate: Plate) -> int:
    """Infer the number of levels of a plate without source data.

    Several eligible members may share the plate, as long as they agree on their
    data length. Observation plates commonly hold more than one observed column
    (counts together with their trial sizes, for example), all of one length.

    :param graph: The graph including synthesized data nodes, which can be
        eligible members themselves
    :type graph: Graph
    :param plate: The plate to size
    :type plate: Plate

    :returns: The number of levels
    :rtype: int

    :raises AmbiguousPlateSizeError: If there are no eligible members or they
        disagree on the data length
    """
    # Only observed members that are not repeated by any other plate can tell us
    # the plate's size directly
    eligible = {
        label: graph[label].data.size
        for label in plate.node_labels
        if graph[label].observed and len(graph.plates_of(label)) == 1
    }
    sizes = set(eligible.values())

    if len(sizes) == 1:
        return sizes.pop()

    if len(eligible) == 0:
        raise AmbiguousPlateSizeError(
            f"Cannot infer the number of levels of plate '{plate.label}': it has no "
            "source data and none of its members is an observed node belonging to "
            "this plate alone. Pass `data` when declaring the plate.",
            labels=(plate.label,),
        )
    raise AmbiguousPlateSizeError(
        f"Cannot infer the number of levels of plate '{plate.label}': its observed "
        "members disagree on the data length ("
        + ", ".join(f"{label}: {size}" for label, size in eligible.items())
        + "). Pass `data` when declaring the plate.",
        labels=(plate.label, *eligible),
    )


def _resolve_plate(graph: Graph, plate: Plate) -> ResolvedPlate:
    """Determine the index levels of a single plate."""
    if plate.data is None:
        size = _infer_size(graph, plate)
        return ResolvedPlate(
            plate=plate, levels=tuple(str(level) for level in range(1, size + 1))
        )

    levels, assignment = utils.first_occurrence_levels(plate.data)
    assignment.flags.writeable = False
    return ResolvedPlate(
        plate=plate,
        levels=levels,
        assignment=assignment,
        data_node=plate.label if plate.add_data_node else None,
    )


def _add_data_nodes(graph: Graph, plates: dict[str, ResolvedPlate]) -> Graph:
    """Add the synthesized data node of every plate that asks for one and wire it
    to the dependents of the plate's members.
    """
    for plate in plates.values():
        if plate.data_node is None:
            continue

        if plate.data_node in graph:
            raise DuplicateLabelError(
                f"Plate '{plate.label}' adds a data node labelled '{plate.data_node}', "
                "but a node with that label already exists.",
                labels=(plate.data_node,),
            )
        data_node = Node(
            label=plate.data_node,
            descr=plate.descr + DATA_NODE_DESCR_SUFFIX,
            data=plate.assignment,
            order=len(graph),
        )
        graph = Graph(graph.nodes + (data_node,), graph.edges, graph.plates)

        # Every node outside the plate that depends on one of its members must be
        # able to select that member by level
        members = set(plate.members)
        for node in graph:
            if node.label in members or node.label == plate.data_node:
                continue
            if members.intersection(graph.parents(node.label)) or members.intersection(
                node.references
            ):
                graph = graph.edge(plate.data_node, node.label)

    return graph


def resolve_plates(graph: Graph) -> ResolvedGraph:
    """Resolve the index levels of every plate and the scope of every node.

    :param graph: The graph to resolve
    :type graph: Graph

    :returns: The resolved graph
    :rtype: ResolvedGraph

    :raises DuplicateLabelError: If two nodes or two plates share a label
    :raises UndefinedParentError: If the graph refers to an undeclared label
    :raises AmbiguousPlateSizeError: If the size of a plate without source data
        cannot be inferred
    """
    validate_references(graph)

    # Plates with source data are resolved first, so that their data nodes can
    # size the plates without source data that list them
    resolved = {
        plate.label: _resolve_plate(graph, plate)
        for plate in graph.plates
        if plate.data is not None
    }
    augmented = _add_data_nodes(graph, resolved)
    resolved.update(
        (plate.label, _resolve_plate(augmented, plate))
        for plate in graph.plates
        if plate.data is None
    )

    # Keep declaration order
    plates = {plate.label: resolved[plate.label] for plate in graph.plates}
    for plate in plates.values():
        logger.debug(
            "Plate '%s' resolved to %d level(s)%s",
            plate.label,
            plate.size,
            "" if plate.data_node is None else f" with data node '{plate.data_node}'",
        )

    # A node's scope is the labels of the plates listing it, in plate order
    scopes = {
        node.label: tuple(plate.label for plate in augmented.plates_of(node.label))
        for node in augmented
    }

    return ResolvedGraph(graph=augmented, plates=plates, scopes=scopes)
