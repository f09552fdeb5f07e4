# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Probability distributions available in right-hand-side expressions.

Every distribution that may appear as the outermost call of a node's RHS is
represented by a class carrying the metadata needed to emit Stan code:

    - ``NAME``: the name used in RHS expressions (e.g. ``half_normal``)
    - ``STAN_DIST``: the name of the Stan distribution (e.g. ``normal``)
    - ``PARAMS``: ordered parameter names, used for arity checks and keyword
      arguments
    - ``LOWER_BOUND``/``UPPER_BOUND``: the support, used to constrain parameter
      declarations
    - ``BASE_STAN_DTYPE``: ``real`` for continuous and ``int`` for discrete
      distributions
    - ``STAN_PREFIX_ARGS``: literal arguments inserted before the user's arguments
      when emitting Stan (half distributions are centred at zero)

Subclasses with a ``NAME`` are registered automatically and can be looked up
with :py:func:`get_distribution`. Calls to any other function name in an RHS are
treated as deterministic functions and passed to Stan verbatim.
"""

from __future__ import annotations

from typing import Optional, Union

DISTRIBUTIONS: dict[str, type["Distribution"]] = {}
"""Registry mapping RHS distribution names to distribution classes."""


def get_distribution(name: str) -> Optional[type["Distribution"]]:
    """Look up a registered distribution by its RHS name.

    :param name: Name used in the RHS expression
    :type name: str

    :returns: The distribution class, or None if the name is not a distribution
    :rtype: Optional[type[Distribution]]
    """
    return DISTRIBUTIONS.get(name)


class Distribution:
    """Base class for distributions usable in RHS expressions.

    :cvar NAME: RHS name of the distribution. Classes without a name are not
        registered.
    :cvar STAN_DIST: Name of the Stan distribution.
    :cvar PARAMS: Ordered parameter names.
    :cvar LOWER_BOUND: Lower bound of the support, or None.
    :cvar UPPER_BOUND: Upper bound of the support, or None.
    :cvar BASE_STAN_DTYPE: Stan scalar type of a draw (``real`` or ``int``).
    :cvar STAN_PREFIX_ARGS: Literal Stan arguments placed before the user's.
    :cvar BOUNDS_FROM_ARGS: Whether the support is given by the arguments
        themselves, in which case every argument must be usable in a declaration.
    """

    NAME: str = ""
    STAN_DIST: str = ""
    PARAMS: tuple[str, ...] = ()
    LOWER_BOUND: Optional[Union[int, float]] = None
    UPPER_BOUND: Optional[Union[int, float]] = None
    BASE_STAN_DTYPE: str = "real"
    STAN_PREFIX_ARGS: tuple[str, ...] = ()
    BOUNDS_FROM_ARGS: bool = False

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        # Abstract groupings carry no name and are not registered
        if not cls.NAME:
            return
        if cls.NAME in DISTRIBUTIONS:
            raise ValueError(f"Distribution '{cls.NAME}' is already registered.")
        if not cls.STAN_DIST:
            raise ValueError(f"Distribution '{cls.NAME}' must define STAN_DIST.")
        DISTRIBUTIONS[cls.NAME] = cls

    @classmethod
    def is_discrete(cls) -> bool:
        """Whether draws from the distribution are integers."""
        return cls.BASE_STAN_DTYPE == "int"

    @classmethod
    def stan_call(cls, args: tuple[str, ...]) -> str:
        """Render the Stan distribution call for already-rendered arguments.

        :param args: Rendered Stan arguments in ``PARAMS`` order
        :type args: tuple[str, ...]

        :returns: Stan code for the right side of a sampling statement
        :rtype: str
        """
        return f"{cls.STAN_DIST}({', '.join(cls.STAN_PREFIX_ARGS + args)})"

    @classmethod
    def get_bounds(
        cls, args: tuple[Optional[str], ...]
    ) -> tuple[Optional[str], Optional[str]]:
        """Get the Stan text for the lower and upper bound of the support.

        :param args: Rendered declaration-safe Stan arguments in ``PARAMS`` order.
            An entry is None if that argument cannot be used in a declaration.
        :type args: tuple[Optional[str], ...]

        :returns: Lower and upper bound text, None where unbounded
        :rtype: tuple[Optional[str], Optional[str]]
        """
        return (
            None if cls.LOWER_BOUND is None else str(cls.LOWER_BOUND),
            None if cls.UPPER_BOUND is None else str(cls.UPPER_BOUND),
        )


class ContinuousDistribution(Distribution):
    """Base class for distributions with continuous sample spaces."""


class DiscreteDistribution(Distribution):
    """Base class for distributions with discrete sample spaces.

    All discrete distributions implemented here are defined for non-negative
    integers.
    """

    BASE_STAN_DTYPE: str = "int"
    LOWER_BOUND: Optional[Union[int, float]] = 0


class Normal(ContinuousDistribution):
    NAME = "normal"
    STAN_DIST = "normal"
    PARAMS = ("mu", "sigma")


class HalfNormal(ContinuousDistribution):
    """Normal distribution truncated to positive values, centred at zero."""

    NAME = "half_normal"
    STAN_DIST = "normal"
    PARAMS = ("sigma",)
    LOWER_BOUND = 0
    STAN_PREFIX_ARGS = ("0",)


class StudentT(ContinuousDistribution):
    NAME = "student_t"
    STAN_DIST = "student_t"
    PARAMS = ("nu", "mu", "sigma")


class Cauchy(ContinuousDistribution):
    NAME = "cauchy"
    STAN_DIST = "cauchy"
    PARAMS = ("mu", "sigma")


class HalfCauchy(ContinuousDistribution):
    """Cauchy distribution truncated to positive values, centred at zero."""

    NAME = "half_cauchy"
    STAN_DIST = "cauchy"
    PARAMS = ("sigma",)
    LOWER_BOUND = 0
    STAN_PREFIX_ARGS = ("0",)


class Laplace(ContinuousDistribution):
    NAME = "laplace"
    STAN_DIST = "double_exponential"
    PARAMS = ("mu", "sigma")


class Logistic(ContinuousDistribution):
    NAME = "logistic"
    STAN_DIST = "logistic"
    PARAMS = ("mu", "sigma")


class LogNormal(ContinuousDistribution):
    NAME = "lognormal"
    STAN_DIST = "lognormal"
    PARAMS = ("mu", "sigma")
    LOWER_BOUND = 0


class Exponential(ContinuousDistribution):
    NAME = "exponential"
    STAN_DIST = "exponential"
    PARAMS = ("rate",)
    LOWER_BOUND = 0


class Gamma(ContinuousDistribution):
    NAME = "gamma"
    STAN_DIST = "gamma"
    PARAMS = ("alpha", "beta")
    LOWER_BOUND = 0


class InverseGamma(ContinuousDistribution):
    NAME = "inv_gamma"
    STAN_DIST = "inv_gamma"
    PARAMS = ("alpha", "beta")
    LOWER_BOUND = 0


class Weibull(ContinuousDistribution):
    NAME = "weibull"
    STAN_DIST = "weibull"
    PARAMS = ("alpha", "sigma")
    LOWER_BOUND = 0


class Beta(ContinuousDistribution):
    NAME = "beta"
    STAN_DIST = "beta"
    PARAMS = ("alpha", "beta")
    LOWER_BOUND = 0
    UPPER_BOUND = 1


class Uniform(ContinuousDistribution):
    """Uniform distribution whose support is given by its own arguments."""

    NAME = "uniform"
    STAN_DIST = "uniform"
    PARAMS = ("lower", "upper")
    BOUNDS_FROM_ARGS = True

    @classmethod
    def get_bounds(
        cls, args: tuple[Optional[str], ...]
    ) -> tuple[Optional[str], Optional[str]]:
        # The support is the interval spanned by the arguments
        lower, upper = args
        return lower, upper


class Bernoulli(DiscreteDistribution):
    NAME = "bernoulli"
    STAN_DIST = "bernoulli"
    PARAMS = ("theta",)
    UPPER_BOUND = 1


class BernoulliLogit(DiscreteDistribution):
    NAME = "bernoulli_logit"
    STAN_DIST = "bernoulli_logit"
    PARAMS = ("alpha",)
    UPPER_BOUND = 1


class Binomial(DiscreteDistribution):
    NAME = "binomial"
    STAN_DIST = "binomial"
    PARAMS = ("n", "theta")


class BinomialLogit(DiscreteDistribution):
    NAME = "binomial_logit"
    STAN_DIST = "binomial_logit"
    PARAMS = ("n", "alpha")


class Poisson(DiscreteDistribution):
    NAME = "poisson"
    STAN_DIST = "poisson"
    PARAMS = ("rate",)


class PoissonLog(DiscreteDistribution):
    NAME = "poisson_log"
    STAN_DIST = "poisson_log"
    PARAMS = ("alpha",)


class NegativeBinomial(DiscreteDistribution):
    NAME = "negative_binomial"
    STAN_DIST = "neg_binomial"
    PARAMS = ("alpha", "beta")


class NegativeBinomial2(DiscreteDistribution):
    """Negative binomial parameterized by mean and overdispersion."""

    NAME = "negative_binomial_2"
    STAN_DIST = "neg_binomial_2"
    PARAMS = ("mu", "phi")
