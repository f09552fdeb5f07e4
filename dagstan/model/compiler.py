# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Expression and indexing compiler.

This module turns a resolved graph into a :py:class:`CompiledGraph`: every node
is classified, typed, placed in dependency order, and its RHS is rewritten into
Stan code with every parent reference subscripted explicitly.

Node kinds
----------
    - ``data``: observed node without an RHS
    - ``likelihood``: observed node drawn from a distribution
    - ``parameter``: unobserved node drawn from a distribution
    - ``transformed``: unobserved node defined by a deterministic formula

Rows
----
An observed node outside every plate that carries more than one value is a
*row* node: it holds one value per observation. Unobserved nodes outside every
plate that depend on row nodes become row nodes of the same length. Row nodes
are emitted inside an implicit loop over their rows.

Index alignment
---------------
When a child references a parent that varies over plates, the parent is
subscripted by one index per parent plate, in the parent's plate order:

    1. If the child varies over the plate too, the plate's loop variable is used.
    2. Otherwise, if the plate has a synthesized data node that the child depends
       on, the data node's own aligned reference is used, selecting the parent's
       level per row (``theta[y[i]]``).
    3. Otherwise the reference cannot be aligned and
       :py:class:`~dagstan.exceptions.IndexScopeError` is raised.

Plates the child varies over but the parent does not are left to broadcasting:
the parent is simply not indexed by them. A row parent can be referenced from a
row child of the same length, or, if it is observed data, from a child in a
single plate with as many levels as the parent has rows.

Compilation is pure: compiling the same graph twice gives identical results.
"""

from __future__ import annotations

import heapq
import logging
import warnings

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import numpy.typing as npt

from dagstan import custom_types, utils
from dagstan.defaults import DEFAULT_INDEX_ORDER, PLATE_SIZE_SUFFIX, ROW_LENGTH_SUFFIX
from dagstan.exceptions import (
    CyclicGraphError,
    DuplicateLabelError,
    IndexScopeError,
    InvalidRhsError,
)
from dagstan.graph import expressions
from dagstan.graph.graph import Graph, Node
from dagstan.model.resolver import ResolvedGraph, ResolvedPlate, resolve_plates

logger = logging.getLogger(__name__)

NODE_KINDS = ("data", "likelihood", "parameter", "transformed")
"""Kinds of compiled nodes."""


@dataclass(frozen=True, eq=False)
class CompiledNode:
    """A node ready for emission.

    :ivar label: Node label, also its Stan variable name
    :ivar descr: Node description
    :ivar kind: One of ``data``, ``likelihood``, ``parameter``, ``transformed``
    :ivar scope: Plates the node varies over, in plate declaration order
    :ivar row_length: Number of rows for row nodes, None otherwise
    :ivar dims: Stan names of the sizes of the node's dimensions
    :ivar shape: Sizes of the node's dimensions
    :ivar index_levels: Level names along each dimension
    :ivar stan_type: Declared Stan type, including bounds
    :ivar target: Stan text of one element of the node inside its loops
    :ivar loops: ``(loop variable, size name)`` pairs, outermost first
    :ivar statement: Rewritten RHS in Stan, or None for data nodes
    :ivar dependencies: Labels the node depends on
    :ivar rank: Position in emission order
    :ivar data: Observed data shaped for Stan, or None
    """

    label: str
    descr: str
    kind: str
    scope: custom_types.Scope
    row_length: Optional[int]
    dims: tuple[str, ...]
    shape: tuple[int, ...]
    index_levels: tuple[tuple[str, ...], ...]
    stan_type: str
    target: str
    loops: tuple[tuple[str, str], ...]
    statement: Optional[str]
    dependencies: tuple[str, ...]
    rank: int
    data: Optional[npt.NDArray] = None

    @property
    def observed(self) -> bool:
        return self.kind in ("data", "likelihood")

    @property
    def is_row(self) -> bool:
        return self.row_length is not None

    @property
    def is_local(self) -> bool:
        """Whether the node is a model-block local rather than a program variable.

        Row-valued transformed nodes are recomputed within the model block and
        never reported as draws.
        """
        return self.kind == "transformed" and self.is_row

    @property
    def in_draws(self) -> bool:
        """Whether the node appears in the posterior draws."""
        return self.kind == "parameter" or (
            self.kind == "transformed" and not self.is_row
        )


class CompiledGraph:
    """A graph compiled into fully indexed, dependency-ordered nodes.

    :param resolved: The resolved graph
    :type resolved: ResolvedGraph
    :param nodes: Compiled nodes in emission order
    :type nodes: tuple[CompiledNode, ...]
    :param loop_variables: Loop variable of every plate, keyed by plate label
    :type loop_variables: dict[str, str]
    :param row_variable: Loop variable used for rows, or None if there are none
    :type row_variable: Optional[str]
    :param size_names: Stan names and values of all plate sizes and row lengths
    :type size_names: dict[str, int]

    Instances are disposable and recomputed on every compilation.
    """

    def __init__(
        self,
        resolved: ResolvedGraph,
        nodes: tuple[CompiledNode, ...],
        loop_variables: dict[str, str],
        row_variable: Optional[str],
        size_names: dict[str, int],
    ):
        self.resolved = resolved
        self.nodes = nodes
        self.loop_variables = loop_variables
        self.row_variable = row_variable
        self.size_names = size_names
        self._lookup = {node.label: node for node in nodes}

    def __getitem__(self, label: str) -> CompiledNode:
        return self._lookup[label]

    def __contains__(self, label: str) -> bool:
        return label in self._lookup

    def __iter__(self):
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def graph(self) -> Graph:
        """The augmented graph the compilation was run on."""
        return self.resolved.graph

    @property
    def plates(self) -> dict[str, ResolvedPlate]:
        return self.resolved.plates

    @property
    def order(self) -> tuple[str, ...]:
        """Node labels in emission order."""
        return tuple(node.label for node in self.nodes)

    @property
    def scopes(self) -> dict[str, custom_types.Scope]:
        return {node.label: node.scope for node in self.nodes}

    @property
    def draw_nodes(self) -> tuple[CompiledNode, ...]:
        """Nodes reported in the posterior draws, in emission order."""
        return tuple(node for node in self.nodes if node.in_draws)

    def nodes_of_kind(self, *kinds: str) -> tuple[CompiledNode, ...]:
        """Get the nodes of the given kind(s) in emission order."""
        return tuple(node for node in self.nodes if node.kind in kinds)

    def stan_data(self) -> dict[str, Any]:
        """Build the data dictionary passed to Stan.

        :returns: Plate sizes and row lengths followed by observed data
        :rtype: dict[str, Any]
        """
        data: dict[str, Any] = dict(self.size_names)
        for node in self.nodes:
            if node.data is None:
                continue
            data[node.label] = node.data.item() if node.data.ndim == 0 else node.data
        return data

    def signature(self) -> tuple:
        """A hashable summary of the compiled structure, for comparing compilations."""
        return tuple(
            (node.label, node.kind, node.scope, node.rank, node.stan_type, node.statement)
            for node in self.nodes
        )


def _classify(node: Node) -> str:
    """Determine the kind of a node, raising for RHS definitions Stan cannot use."""
    if node.observed:
        if node.rhs is None:
            return "data"
        if not node.is_distribution:
            raise InvalidRhsError(
                f"Observed node '{node.label}' is defined by a deterministic formula "
                f"({node.rhs}); observed nodes need a distribution or no RHS.",
                labels=(node.label,),
            )
        return "likelihood"

    if node.rhs is None:
        raise InvalidRhsError(
            f"Node '{node.label}' has neither observed data nor an RHS.",
            labels=(node.label,),
        )
    if not node.is_distribution:
        return "transformed"
    if node.rhs.distribution.is_discrete():
        raise InvalidRhsError(
            f"Node '{node.label}' is a latent draw from the discrete distribution "
            f"'{node.rhs.distribution.NAME}'. Stan cannot sample discrete "
            "parameters; marginalize them out or observe the node.",
            labels=(node.label,),
        )
    return "parameter"


def dependency_order(resolved: ResolvedGraph) -> tuple[str, ...]:
    """Sort node labels so that every node follows all of its dependencies.

    Ties are broken by declaration order, so the result is deterministic.

    :param resolved: The resolved graph
    :type resolved: ResolvedGraph

    :returns: Node labels in dependency order
    :rtype: tuple[str, ...]

    :raises CyclicGraphError: If the dependencies contain a cycle or a self-loop
    """
    graph = resolved.graph
    dependencies = {node.label: resolved.dependencies(node.label) for node in graph}

    # Self-loops are reported on their own
    for label, parents in dependencies.items():
        if label in parents:
            raise CyclicGraphError(
                f"Node '{label}' depends on itself.", labels=(label,)
            )

    # Kahn's algorithm with a heap keyed on declaration order
    remaining = {label: len(parents) for label, parents in dependencies.items()}
    dependents: dict[str, list[str]] = {label: [] for label in dependencies}
    for label, parents in dependencies.items():
        for parent in parents:
            dependents[parent].append(label)

    ready = [(graph[label].order, label) for label, count in remaining.items() if not count]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, label = heapq.heappop(ready)
        order.append(label)
        for child in dependents[label]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, (graph[child].order, child))

    if len(order) == len(dependencies):
        return tuple(order)

    # Every node left over waits on another left-over node, so following
    # unsatisfied dependencies from any of them must come back around
    stuck = {label for label, count in remaining.items() if count > 0}
    path = [min(stuck, key=lambda label: graph[label].order)]
    while True:
        step = next(parent for parent in dependencies[path[-1]] if parent in stuck)
        if step in path:
            cycle = path[path.index(step) :]
            break
        path.append(step)
    cycle.reverse()
    raise CyclicGraphError(
        "The graph contains a cycle: " + " -> ".join(cycle + [cycle[0]]),
        labels=cycle,
    )


class _Compiler:
    """Single-use state for compiling one resolved graph."""

    def __init__(self, resolved: ResolvedGraph):
        self.resolved = resolved
        self.graph = resolved.graph
        self.compiled: dict[str, CompiledNode] = {}

        # Names of plate sizes
        self.size_names: dict[str, int] = {}
        self.plate_dims: dict[str, str] = {}
        for plate in resolved.plates.values():
            name = plate.label + PLATE_SIZE_SUFFIX
            self.plate_dims[plate.label] = name
            self.size_names[name] = plate.size

        # Names of row lengths are assigned as row nodes are found
        self.row_dims: dict[int, str] = {}

        self.loop_variables: dict[str, str] = {}
        self.row_variable: Optional[str] = None

    def _check_generated_name(self, name: str) -> None:
        if name in self.graph:
            raise DuplicateLabelError(
                f"The generated Stan name '{name}' clashes with a node label. Rename "
                "the node.",
                labels=(name,),
            )

    def _assign_loop_variables(self, has_rows: bool) -> None:
        """Choose a loop variable for every plate and, if needed, for rows."""
        taken = set(self.graph.labels) | set(self.size_names)
        candidates = iter(name for name in DEFAULT_INDEX_ORDER if name not in taken)

        def next_candidate() -> str:
            for name in candidates:
                if name not in taken:
                    taken.add(name)
                    return name
            raise ValueError(
                "Ran out of loop variable names; rename nodes that use single-letter "
                "labels."
            )

        # A plate loops over its own label unless that name is already in use
        for label in self.resolved.plates:
            if label not in taken:
                taken.add(label)
                self.loop_variables[label] = label
        for label in self.resolved.plates:
            if label not in self.loop_variables:
                self.loop_variables[label] = next_candidate()

        if has_rows:
            self.row_variable = next_candidate()

    def _row_length(self, node: Node, scope: custom_types.Scope) -> Optional[int]:
        """Determine whether a node holds one value per row, and how many rows."""
        if scope:
            return None
        if node.observed:
            return node.data.size if node.data.size > 1 else None

        lengths = {
            self.compiled[label].row_length: label
            for label in self.resolved.dependencies(node.label)
            if self.compiled[label].is_row
        }
        if len(lengths) > 1:
            raise IndexScopeError(
                f"Node '{node.label}' depends on row data of different lengths: "
                + ", ".join(f"{label} ({length})" for length, label in lengths.items()),
                labels=(node.label, *lengths.values()),
            )
        return next(iter(lengths), None)

    def _row_dim(self, label: str, length: int) -> str:
        """Get the Stan name of a row length, naming it after the first row node
        that has it.
        """
        if length not in self.row_dims:
            name = label + ROW_LENGTH_SUFFIX
            self._check_generated_name(name)
            if name in self.size_names:
                raise DuplicateLabelError(
                    f"The generated Stan name '{name}' is used twice.", labels=(label,)
                )
            self.row_dims[length] = name
            self.size_names[name] = length
        return self.row_dims[length]

    def _plate_subscript(
        self,
        child: str,
        scope: custom_types.Scope,
        row_length: Optional[int],
        parent: str,
        plate: str,
    ) -> str:
        """Get the subscript selecting the level of ``plate`` for ``child``."""
        if plate in scope:
            return self.loop_variables[plate]

        data_node = self.resolved.plates[plate].data_node
        if data_node is not None and data_node in self.resolved.dependencies(child):
            return self._reference(child, scope, row_length, data_node)

        raise IndexScopeError(
            f"Node '{child}' references '{parent}', which varies over plate "
            f"'{plate}'. '{child}' is not in plate '{plate}' and does not depend on "
            "a data node selecting its levels. Add the node to the plate, or declare "
            f"the plate with source data and `add_data_node=True`.",
            labels=(child, parent),
        )

    def _reference(
        self,
        child: str,
        scope: custom_types.Scope,
        row_length: Optional[int],
        parent: str,
    ) -> str:
        """Get the Stan text of a reference from ``child`` to ``parent``."""
        target = self.compiled[parent]

        if target.scope:
            subscripts = [
                self._plate_subscript(child, scope, row_length, parent, plate)
                for plate in target.scope
            ]
            return f"{parent}[{', '.join(subscripts)}]"

        if target.is_row:
            if row_length == target.row_length:
                return f"{parent}[{self.row_variable}]"
            if (
                target.observed
                and len(scope) == 1
                and self.resolved.plates[scope[0]].size == target.row_length
            ):
                return f"{parent}[{self.loop_variables[scope[0]]}]"
            raise IndexScopeError(
                f"Node '{child}' references '{parent}', which holds one value for "
                f"each of {target.row_length} rows, but '{child}' is not defined "
                "over the same rows.",
                labels=(child, parent),
            )

        return parent

    def _bounds(self, node: Node) -> tuple[Optional[str], Optional[str]]:
        """Get the declared bounds of a parameter from its distribution's support."""
        dist = node.rhs.distribution

        # Arguments can only appear in a declaration if they are constants or
        # scalars declared in an earlier block
        args: list[Optional[str]] = []
        for arg in node.rhs.children:
            if (value := expressions.constant_value(arg)) is not None:
                args.append(repr(value))
            elif (
                isinstance(arg, expressions.Reference)
                and not self.compiled[arg.label].scope
                and not self.compiled[arg.label].is_row
                and self.compiled[arg.label].kind != "transformed"
            ):
                args.append(arg.label)
            else:
                args.append(None)

        if dist.BOUNDS_FROM_ARGS and None in args:
            warnings.warn(
                f"The support of '{node.label}' ~ {node.rhs} depends on values that "
                "cannot be used to bound its declaration. It is declared unbounded, "
                "which may cause sampling problems."
            )
            return None, None
        return dist.get_bounds(tuple(args))

    @staticmethod
    def _stan_type(
        dtype: str, dims: tuple[str, ...], lower: Optional[str], upper: Optional[str]
    ) -> str:
        """Build the declared Stan type of a variable."""
        constraints = [
            f"{name}={value}"
            for name, value in (("lower", lower), ("upper", upper))
            if value is not None
        ]
        bounds = f"<{', '.join(constraints)}>" if constraints else ""

        if dtype == "int":
            return f"array[{', '.join(dims)}] int{bounds}" if dims else f"int{bounds}"
        if len(dims) == 0:
            return f"real{bounds}"
        if len(dims) == 1:
            return f"vector{bounds}[{dims[0]}]"
        if len(dims) == 2:
            return f"matrix{bounds}[{dims[0]}, {dims[1]}]"
        return (
            f"array[{', '.join(dims[:-2])}] matrix{bounds}[{dims[-2]}, {dims[-1]}]"
        )

    def _observed_data(
        self, node: Node, kind: str, shape: tuple[int, ...]
    ) -> tuple[str, npt.NDArray]:
        """Check and shape the observed data of a node."""
        data = node.data
        if data.dtype.kind not in "iubf":
            raise ValueError(
                f"Observed data of '{node.label}' must be numeric, got dtype "
                f"{data.dtype}."
            )
        if data.size != int(np.prod(shape)):
            raise IndexScopeError(
                f"Observed data of '{node.label}' has {data.size} values, but its "
                f"plates ({', '.join(self.resolved.scope(node.label))}) have "
                f"{int(np.prod(shape))} levels in total.",
                labels=(node.label,),
            )

        # Discrete likelihoods and plate data nodes need integers
        needs_int = node.label in self.resolved.data_node_plates() or (
            kind == "likelihood" and node.rhs.distribution.is_discrete()
        )
        if needs_int or data.dtype.kind in "iub":
            if not utils.is_integer_valued(data):
                raise InvalidRhsError(
                    f"'{node.label}' is drawn from the discrete distribution "
                    f"'{node.rhs.distribution.NAME}' but its observed data is not "
                    "integer valued.",
                    labels=(node.label,),
                )
            data = data.astype(np.int64)
            dtype = "int"
        else:
            data = data.astype(np.float64)
            dtype = "real"

        data = data.reshape(shape)
        data.flags.writeable = False
        return dtype, data

    def _compile_node(self, label: str, rank: int) -> CompiledNode:
        node = self.graph[label]
        kind = _classify(node)
        scope = self.resolved.scope(label)
        row_length = self._row_length(node, scope)

        # Dimensions and loops
        if scope:
            dims = tuple(self.plate_dims[plate] for plate in scope)
            shape = tuple(self.resolved.plates[plate].size for plate in scope)
            index_levels = tuple(self.resolved.plates[plate].levels for plate in scope)
            loop_variables = tuple(self.loop_variables[plate] for plate in scope)
        elif row_length is not None:
            dims = (self._row_dim(label, row_length),)
            shape = (row_length,)
            index_levels = (tuple(str(row) for row in range(1, row_length + 1)),)
            loop_variables = (self.row_variable,)
        else:
            dims, shape, index_levels, loop_variables = (), (), (), ()
        loops = tuple(zip(loop_variables, dims))
        target = f"{label}[{', '.join(loop_variables)}]" if loop_variables else label

        # Types and data
        data = None
        lower = upper = None
        if kind in ("data", "likelihood"):
            dtype, data = self._observed_data(node, kind, shape)
        else:
            dtype = "real"
            if kind == "parameter":
                lower, upper = self._bounds(node)

        # Rewrite the RHS with every reference aligned
        statement = None
        if node.rhs is not None:
            statement = node.rhs.to_stan(
                lambda parent: self._reference(label, scope, row_length, parent)
            )

        compiled = CompiledNode(
            label=label,
            descr=node.descr,
            kind=kind,
            scope=scope,
            row_length=row_length,
            dims=dims,
            shape=shape,
            index_levels=index_levels,
            stan_type=self._stan_type(dtype, dims, lower, upper),
            target=target,
            loops=loops,
            statement=statement,
            dependencies=self.resolved.dependencies(label),
            rank=rank,
            data=data,
        )
        logger.debug(
            "Compiled %s node '%s' with scope (%s): %s",
            kind,
            label,
            ", ".join(scope),
            statement,
        )
        return compiled

    def compile(self) -> CompiledGraph:
        order = dependency_order(self.resolved)

        for name in self.size_names:
            self._check_generated_name(name)

        # Any empty-scope observed node with several values introduces rows
        has_rows = any(
            node.observed and node.data.size > 1 and not self.resolved.scope(node.label)
            for node in self.graph
        )
        self._assign_loop_variables(has_rows)

        for rank, label in enumerate(order):
            self.compiled[label] = self._compile_node(label, rank)

        logger.info(
            "Compiled graph with %d node(s) and %d plate(s)",
            len(order),
            len(self.resolved.plates),
        )
        return CompiledGraph(
            resolved=self.resolved,
            nodes=tuple(self.compiled[label] for label in order),
            loop_variables=self.loop_variables,
            row_variable=self.row_variable,
            size_names=self.size_names,
        )


def compile_graph(graph: Graph) -> CompiledGraph:
    """Compile a graph: resolve its plates, order its nodes by dependency, and
    rewrite every RHS with explicit subscripts.

    :param graph: The graph to compile
    :type graph: Graph

    :returns: The compiled graph
    :rtype: CompiledGraph

    :raises UndefinedParentError: If the graph refers to an undeclared label
    :raises DuplicateLabelError: If labels or generated Stan names clash
    :raises AmbiguousPlateSizeError: If a plate's size cannot be inferred
    :raises CyclicGraphError: If the dependencies are not acyclic
    :raises InvalidRhsError: If a node's definition cannot be expressed in Stan
    :raises IndexScopeError: If a reference cannot be aligned across plates
    """
    return _Compiler(resolve_plates(graph)).compile()
