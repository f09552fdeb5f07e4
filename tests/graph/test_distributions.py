import pytest

from dagstan.graph import distributions


def test_registry_lookup() -> None:
    assert distributions.get_distribution("normal") is distributions.Normal
    assert distributions.get_distribution("half_cauchy") is distributions.HalfCauchy
    assert distributions.get_distribution("exp") is None


def test_abstract_groupings_are_not_registered() -> None:
    registered = set(distributions.DISTRIBUTIONS.values())
    assert distributions.ContinuousDistribution not in registered
    assert distributions.DiscreteDistribution not in registered


@pytest.mark.parametrize(
    "name,discrete",
    [
        ("normal", False),
        ("beta", False),
        ("uniform", False),
        ("bernoulli", True),
        ("poisson", True),
        ("negative_binomial_2", True),
    ],
)
def test_discreteness(name, discrete) -> None:
    assert distributions.get_distribution(name).is_discrete() is discrete


def test_duplicate_registration_fails() -> None:
    with pytest.raises(ValueError, match="already registered"):

        class AnotherNormal(distributions.ContinuousDistribution):  # pylint: disable=unused-variable
            NAME = "normal"
            STAN_DIST = "normal"
            PARAMS = ("mu", "sigma")


def test_registration_requires_stan_name() -> None:
    with pytest.raises(ValueError, match="STAN_DIST"):

        class Nameless(distributions.ContinuousDistribution):  # pylint: disable=unused-variable
            NAME = "nameless_for_test"
            PARAMS = ("x",)

    assert distributions.get_distribution("nameless_for_test") is None


@pytest.mark.parametrize(
    "dist,args,expected",
    [
        (distributions.Normal, ("0", "1"), (None, None)),
        (distributions.Beta, ("2", "2"), ("0", "1")),
        (distributions.HalfNormal, ("1",), ("0", None)),
        (distributions.Exponential, (None,), ("0", None)),
        (distributions.Bernoulli, (None,), ("0", "1")),
        (distributions.Uniform, ("-1", "a"), ("-1", "a")),
    ],
)
def test_bounds(dist, args, expected) -> None:
    assert dist.get_bounds(args) == expected


def test_stan_call() -> None:
    assert distributions.HalfNormal.stan_call(("2.5",)) == "normal(0, 2.5)"
    assert distributions.Beta.stan_call(("a", "b")) == "beta(a, b)"
