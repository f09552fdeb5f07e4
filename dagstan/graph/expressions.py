# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Typed expression trees for node right-hand sides.

A node's right-hand side (RHS) describes how the node is generated from its
parents, e.g. ``bernoulli(theta)`` or ``inv_logit(alpha + beta * x)``. RHS
strings are parsed exactly once, when the node is declared, into a small tree of
:py:class:`Expression` objects:

    - :py:class:`Literal`: a numeric constant
    - :py:class:`Reference`: a reference to another node by label
    - :py:class:`Call`: a distribution or deterministic function call
    - :py:class:`BinaryOp` and :py:class:`UnaryOp`: arithmetic

The compiler never searches RHS strings for labels. Instead it asks the tree for
its references and renders Stan code through :py:meth:`Expression.to_stan`,
supplying the subscripted text for each reference.

Example:
    >>> expr = parse_rhs("normal(alpha + beta * x, sigma)")
    >>> expr.references()
    ('alpha', 'beta', 'x', 'sigma')
    >>> expr.to_stan(lambda label: f"{label}[i]")
    'normal(alpha[i] + beta[i] * x[i], sigma[i])'
"""

from __future__ import annotations

import ast

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

from dagstan.exceptions import InvalidRhsError
from dagstan.graph import distributions

# Operator precedence shared by Python and Stan for the supported operators
_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, "unary": 3, "**": 4}
_ATOM_PRECEDENCE = 5

_BINARY_OPS = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
    ast.Pow: "**",
}
_UNARY_OPS = {ast.USub: "-", ast.UAdd: "+"}
_STAN_OPS = {"**": "^"}

Resolver = Callable[[str], str]


class Expression(ABC):
    """Base class for RHS expression tree nodes."""

    precedence: int = _ATOM_PRECEDENCE

    def references(self) -> tuple[str, ...]:
        """Get the labels referenced by the expression.

        :returns: Referenced labels, deduplicated, in order of first appearance
        :rtype: tuple[str, ...]
        """
        seen: dict[str, None] = {}
        for child in self.walk():
            if isinstance(child, Reference):
                seen.setdefault(child.label, None)
        return tuple(seen)

    def walk(self):
        """Yield this node and every node below it, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    @property
    def children(self) -> tuple["Expression", ...]:
        return ()

    @property
    def distribution(self) -> Optional[type[distributions.Distribution]]:
        """The distribution this expression draws from, if it is a distribution call."""
        return None

    @abstractmethod
    def to_stan(self, resolve: Resolver) -> str:
        """Render the expression as Stan code.

        :param resolve: Function returning the Stan text for a referenced label
        :type resolve: Callable[[str], str]

        :returns: Stan code for the expression
        :rtype: str
        """

    @abstractmethod
    def __str__(self) -> str:
        """Render the expression as the user would write it."""


@dataclass(frozen=True)
class Literal(Expression):
    """A numeric constant."""

    value: Union[int, float]

    def to_stan(self, resolve: Resolver) -> str:
        return repr(self.value)

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class Reference(Expression):
    """A reference to another node."""

    label: str

    def to_stan(self, resolve: Resolver) -> str:
        return resolve(self.label)

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Call(Expression):
    """A call to a distribution or deterministic function."""

    name: str
    args: tuple[Expression, ...]

    @property
    def children(self) -> tuple[Expression, ...]:
        return self.args

    @property
    def distribution(self) -> Optional[type[distributions.Distribution]]:
        return distributions.get_distribution(self.name)

    def to_stan(self, resolve: Resolver) -> str:
        rendered = tuple(arg.to_stan(resolve) for arg in self.args)
        if (dist := self.distribution) is not None:
            return dist.stan_call(rendered)
        return f"{self.name}({', '.join(rendered)})"

    def __str__(self) -> str:
        return f"{self.name}({', '.join(str(arg) for arg in self.args)})"


def _wrap(child: Expression, text: str, parent_prec: int, tighter: bool) -> str:
    """Parenthesize a rendered child if operator precedence requires it."""
    if child.precedence < parent_prec or (tighter and child.precedence == parent_prec):
        return f"({text})"
    return text


@dataclass(frozen=True)
class BinaryOp(Expression):
    """Binary arithmetic. ``**`` is right-associative; the rest are left-associative."""

    op: str
    left: Expression
    right: Expression

    @property
    def precedence(self) -> int:  # pylint: disable=invalid-overridden-method
        return _PRECEDENCE[self.op]

    @property
    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)

    def _render(self, left: str, right: str, op: str) -> str:
        right_assoc = self.op == "**"
        return (
            f"{_wrap(self.left, left, self.precedence, right_assoc)} {op} "
            f"{_wrap(self.right, right, self.precedence, not right_assoc)}"
        )

    def to_stan(self, resolve: Resolver) -> str:
        return self._render(
            self.left.to_stan(resolve),
            self.right.to_stan(resolve),
            _STAN_OPS.get(self.op, self.op),
        )

    def __str__(self) -> str:
        return self._render(str(self.left), str(self.right), self.op)


@dataclass(frozen=True)
class UnaryOp(Expression):
    """Unary plus or minus."""

    op: str
    operand: Expression

    precedence = _PRECEDENCE["unary"]

    @property
    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def to_stan(self, resolve: Resolver) -> str:
        text = self.operand.to_stan(resolve)
        return f"{self.op}{_wrap(self.operand, text, self.precedence, False)}"

    def __str__(self) -> str:
        return f"{self.op}{_wrap(self.operand, str(self.operand), self.precedence, False)}"


def constant_value(expr: Expression) -> Optional[Union[int, float]]:
    """Get the numeric value of a literal (possibly negated) expression.

    :returns: The value, or None if the expression is not a constant
    :rtype: Optional[Union[int, float]]
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, UnaryOp) and (value := constant_value(expr.operand)) is not None:
        return -value if expr.op == "-" else value
    return None


def _convert(node: ast.AST, source: str) -> Expression:
    """Convert a Python AST node into an Expression tree."""
    # Numbers
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise InvalidRhsError(
                f"Only numeric constants are allowed in RHS expressions: '{source}'"
            )
        return Literal(node.value)

    # Labels
    if isinstance(node, ast.Name):
        return Reference(node.id)

    # Arithmetic
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return BinaryOp(
            _BINARY_OPS[type(node.op)],
            _convert(node.left, source),
            _convert(node.right, source),
        )
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return UnaryOp(_UNARY_OPS[type(node.op)], _convert(node.operand, source))

    # Function and distribution calls
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name):
            raise InvalidRhsError(
                f"Calls must name a function or distribution directly: '{source}'"
            )
        name = node.func.id
        args = tuple(_convert(arg, source) for arg in node.args)
        if node.keywords:
            args = _order_keywords(name, args, node.keywords, source)
        return Call(name, args)

    raise InvalidRhsError(
        f"Unsupported syntax '{ast.unparse(node)}' in RHS expression '{source}'"
    )


def _order_keywords(
    name: str,
    args: tuple[Expression, ...],
    keywords: list[ast.keyword],
    source: str,
) -> tuple[Expression, ...]:
    """Merge keyword arguments of a distribution call into positional order."""
    dist = distributions.get_distribution(name)
    if dist is None:
        raise InvalidRhsError(
            f"Keyword arguments are only supported for distributions, not '{name}': "
            f"'{source}'"
        )

    # Fill the positional slots first, then keywords by parameter name
    slots: dict[str, Expression] = dict(zip(dist.PARAMS, args))
    for keyword in keywords:
        if keyword.arg not in dist.PARAMS:
            raise InvalidRhsError(
                f"'{name}' has no parameter '{keyword.arg}'; expected one of "
                f"{', '.join(dist.PARAMS)}: '{source}'"
            )
        if keyword.arg in slots:
            raise InvalidRhsError(
                f"Parameter '{keyword.arg}' of '{name}' given more than once: '{source}'"
            )
        slots[keyword.arg] = _convert(keyword.value, source)

    if missing := [param for param in dist.PARAMS if param not in slots]:
        raise InvalidRhsError(
            f"Missing parameter(s) {', '.join(missing)} for '{name}': '{source}'"
        )
    return tuple(slots[param] for param in dist.PARAMS)


def parse_rhs(source: Union[str, Expression]) -> Expression:
    """Parse an RHS string into an expression tree.

    :param source: The RHS as written by the user, or an already-built expression
    :type source: Union[str, Expression]

    :returns: The parsed expression
    :rtype: Expression

    :raises InvalidRhsError: If the string is not valid RHS syntax, uses
        unsupported constructs, calls a distribution with the wrong number of
        arguments, or nests a distribution inside another expression
    """
    if isinstance(source, Expression):
        expr = source
        text = str(source)
    else:
        text = source.strip()
        try:
            tree = ast.parse(text, mode="eval")
        except SyntaxError as err:
            raise InvalidRhsError(f"Could not parse RHS expression '{text}'") from err
        expr = _convert(tree.body, text)

    # Distributions may only be the outermost call, and must get every parameter
    for position, child in enumerate(expr.walk()):
        if (dist := child.distribution) is None:
            continue
        if position > 0:
            raise InvalidRhsError(
                f"Distribution '{dist.NAME}' must be the outermost call of the RHS: "
                f"'{text}'"
            )
        if len(child.children) != len(dist.PARAMS):
            raise InvalidRhsError(
                f"'{dist.NAME}' takes {len(dist.PARAMS)} argument(s) "
                f"({', '.join(dist.PARAMS)}) but {len(child.children)} were given: "
                f"'{text}'"
            )

    return expr
