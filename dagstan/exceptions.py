# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Custom exception classes for the DagStan package.

This module defines the hierarchy of exceptions raised while building and
compiling DagStan graphs. All custom exceptions inherit from the base
:py:class:`DagStanError` so that every package-specific failure can be caught
with a single except clause. Each concrete exception also derives from the
closest builtin exception (``KeyError``, ``ValueError``, ``TypeError``) so that
callers that already handle builtins keep working.

Every graph-structure exception records the offending label(s) in its
``labels`` attribute, allowing callers to point precisely at the node or plate
that caused the failure.

Errors raised by the sampling backend (CmdStan) are never wrapped by DagStan;
they propagate unmodified.
"""

from typing import Iterable


class DagStanError(Exception):
    """Base class for all exceptions in the DagStan package.

    :param message: Error message describing the exception
    :type message: str
    :param labels: Labels of the nodes or plates involved in the failure.
        Defaults to an empty tuple.
    :type labels: Iterable[str]

    Example:
        >>> try:
        ...     graph.compile()
        ... except DagStanError as e:
        ...     print(f"Cannot compile graph; offending labels: {e.labels}")
    """

    def __init__(self, message: str, labels: Iterable[str] = ()):
        super().__init__(message)
        self.message = message
        self.labels = tuple(labels)

    def __str__(self) -> str:
        return self.message


class UndefinedParentError(DagStanError, KeyError):
    """Raised when a label is referenced that was never declared as a node.

    This covers RHS expressions that reference unknown labels, edges whose
    endpoints do not exist, and plates that list unknown member labels.
    Compilation fails before any emission occurs.
    """


class AmbiguousPlateSizeError(DagStanError, ValueError):
    """Raised when the number of index levels of a plate cannot be inferred.

    A plate without source data must contain observed member nodes that all agree
    on a single data length.
    """


class IndexScopeError(DagStanError, ValueError):
    """Raised when a node references a parent whose plates cannot be aligned.

    This happens when the parent varies over a plate that the child neither
    loops over nor can select through a plate data node, when row-valued data is
    referenced from an incompatible context, or when observed data does not match
    the shape implied by the node's plates.
    """


class CyclicGraphError(DagStanError, ValueError):
    """Raised when the dependency graph is not a directed acyclic graph."""


class DuplicateLabelError(DagStanError, ValueError):
    """Raised when two nodes or plates share an identifier."""


class ColumnCollisionError(DuplicateLabelError):
    """Raised when two draws-table columns would receive the same name."""


class InvalidRhsError(DagStanError, ValueError):
    """Raised when a right-hand-side expression cannot be used.

    Examples are unsupported syntax, a distribution called with the wrong number
    of arguments, observed nodes defined by a deterministic formula, unobserved
    nodes with no RHS, and discrete latent variables (which Stan cannot sample).
    """


class NotAGraphError(DagStanError, TypeError):
    """Raised when an object that is not a DagStan graph is passed for rendering."""
