import itertools

import numpy as np
import pytest

import dagstan as ds

from dagstan.graph import Graph
from dagstan.model.compiler import compile_graph, dependency_order
from dagstan.model.resolver import resolve_plates

PLATE_LEVELS = {"a": ["u", "v"], "b": ["p", "q", "r"], "c": ["1", "2", "3", "4"]}


def test_single_parameter(simple_graph) -> None:
    compiled = simple_graph.compile()

    assert compiled.order == ("theta", "x")
    assert [node.kind for node in compiled] == ["parameter", "likelihood"]
    assert [node.label for node in compiled.draw_nodes] == ["theta"]

    theta = compiled["theta"]
    assert theta.scope == ()
    assert theta.stan_type == "real<lower=0, upper=1>"
    assert theta.statement == "uniform(0, 1)"
    assert theta.target == "theta"

    # Observed data outside every plate holds one value per row
    x = compiled["x"]
    assert x.row_length == 1000
    assert x.is_row
    assert x.stan_type == "array[x_len] int"
    assert x.target == "x[i]"
    assert x.statement == "bernoulli(theta)"
    assert compiled.row_variable == "i"
    assert compiled.size_names == {"x_len": 1000}


def test_plated_parameter_with_data_node(car_graph) -> None:
    compiled = car_graph.compile()

    assert compiled.order == ("theta", "y", "x")
    assert compiled["y"].kind == "data"
    assert compiled.loop_variables == {"y": "i"}
    assert compiled.row_variable == "j"
    assert compiled.size_names == {"y_dim": 4, "y_len": 1000}

    theta = compiled["theta"]
    assert theta.scope == ("y",)
    assert theta.shape == (4,)
    assert theta.index_levels == (("Toyota", "Subaru", "Ford", "Honda"),)
    assert theta.stan_type == "vector<lower=0, upper=1>[y_dim]"
    assert theta.target == "theta[i]"
    assert theta.loops == (("i", "y_dim"),)

    assert compiled["y"].stan_type == "array[y_len] int"
    assert compiled["x"].statement == "bernoulli(theta[y[j]])"


def test_nested_plates_compose(card_data) -> None:
    graph = (
        Graph()
        .node("Get Card", "x", rhs="bernoulli(theta)", data=card_data.getCard)
        .node("Card Probability", "theta", rhs="uniform(0, 1)", child="x")
        .plate(
            "Car Model",
            "car",
            node_labels="theta",
            data=card_data.carModel,
            add_data_node=True,
        )
        .plate("Observation", "obs", node_labels=["theta", "x"], data=np.arange(1000))
    )
    compiled = graph.compile()

    theta = compiled["theta"]
    assert theta.scope == ("car", "obs")
    assert theta.shape == (4, 1000)
    assert theta.stan_type == "matrix<lower=0, upper=1>[car_dim, obs_dim]"
    assert theta.target == "theta[i, obs]"

    # The car of each observation is selected through the data node
    x = compiled["x"]
    assert x.scope == ("obs",)
    assert x.statement == "bernoulli(theta[car[obs], obs])"


def test_compilation_is_deterministic(car_graph) -> None:
    first = car_graph.compile()
    second = car_graph.compile()
    assert first is not second
    assert first.signature() == second.signature()
    assert first.stan_data().keys() == second.stan_data().keys()


def test_dependency_order_breaks_ties_by_declaration() -> None:
    graph = (
        Graph()
        .node("Outcome", "y", rhs="normal(mu, sigma)", data=[1.0, 2.0, 3.0])
        .node("Covariate", "x", data=[0.5, 1.0, 1.5])
        .node("Mean", "mu", rhs="intercept + slope * x", child="y")
        .node("Intercept", "intercept", rhs="normal(0, 10)", child="mu")
        .node("Slope", "slope", rhs="normal(0, 10)", child="mu")
        .node("Noise", "sigma", rhs="exponential(1)", child="y")
    )
    assert dependency_order(resolve_plates(graph)) == (
        "x",
        "intercept",
        "slope",
        "mu",
        "sigma",
        "y",
    )


def test_row_transformed_nodes() -> None:
    graph = (
        Graph()
        .node("Outcome", "y", rhs="normal(mu, sigma)", data=[1.0, 2.0, 3.0])
        .node("Covariate", "x", data=[0.5, 1.0, 1.5])
        .node("Mean", "mu", rhs="intercept + slope * x", child="y")
        .node("Intercept", "intercept", rhs="normal(0, 10)", child="mu")
        .node("Slope", "slope", rhs="normal(0, 10)", child="mu")
        .node("Noise", "sigma", rhs="exponential(1)", child="y")
    )
    compiled = graph.compile()

    mu = compiled["mu"]
    assert mu.kind == "transformed"
    assert mu.row_length == 3
    assert mu.is_local
    assert not mu.in_draws
    assert mu.stan_type == "vector[x_len]"
    assert mu.statement == "intercept + slope * x[i]"

    assert compiled["x"].stan_type == "vector[x_len]"
    assert compiled["y"].statement == "normal(mu[i], sigma)"
    assert compiled["sigma"].stan_type == "real<lower=0>"
    assert [node.label for node in compiled.draw_nodes] == ["intercept", "slope", "sigma"]


def test_row_lengths_must_agree() -> None:
    graph = (
        Graph()
        .node("First", "a", data=[1.0, 2.0])
        .node("Second", "b", data=[1.0, 2.0, 3.0])
        .node("Sum", "s", rhs="a + b")
    )
    with pytest.raises(ds.IndexScopeError) as err:
        graph.compile()
    assert err.value.labels[0] == "s"


def test_row_data_selected_by_matching_plate() -> None:
    graph = (
        Graph()
        .node("Covariate", "cov", data=[1.0, 2.0, 3.0])
        .node("Mean", "mu", rhs="normal(cov, 1)")
        .plate("Group", "g", node_labels="mu", data=["a", "b", "c"])
    )
    assert graph.compile()["mu"].statement == "normal(cov[g], 1)"

    mismatched = (
        Graph()
        .node("Covariate", "cov", data=[1.0, 2.0, 3.0])
        .node("Mean", "mu", rhs="normal(cov, 1)")
        .plate("Group", "g", node_labels="mu", data=["a", "b"])
    )
    with pytest.raises(ds.IndexScopeError):
        mismatched.compile()


def test_parent_plate_without_data_node() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, 1)", data=[1.0])
        .node("Mean", "mu", rhs="normal(0, 1)", child="out")
        .plate("Group", "g", node_labels="mu", data=["a", "b"])
    )
    with pytest.raises(ds.IndexScopeError) as err:
        graph.compile()
    assert err.value.labels == ("out", "mu")


def test_broadcast_over_child_plates() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, sigma)", data=np.zeros(6))
        .node("Mean", "mu", rhs="normal(0, 1)", child="out")
        .node("Scale", "sigma", rhs="exponential(1)", child="out")
        .plate("Group", "g", node_labels=["out", "mu"], data=["a", "b"])
        .plate("Trial", "t", node_labels="out", data=[1, 2, 3])
    )
    compiled = graph.compile()

    out = compiled["out"]
    assert out.scope == ("g", "t")
    assert out.stan_type == "matrix[g_dim, t_dim]"
    assert out.target == "out[g, t]"
    assert out.statement == "normal(mu[g], sigma)"
    assert out.data.shape == (2, 3)


@pytest.mark.parametrize(
    "parent_plates,child_plates",
    list(
        itertools.product(
            [
                combo
                for size in range(len(PLATE_LEVELS) + 1)
                for combo in itertools.combinations(PLATE_LEVELS, size)
            ],
            repeat=2,
        )
    ),
)
def test_subscripts_follow_plate_intersection(parent_plates, child_plates) -> None:
    graph = (
        Graph()
        .node("Parent", "mu", rhs="normal(0, 1)")
        .node("Child", "nu", rhs="normal(mu, 1)")
    )
    for plate, levels in PLATE_LEVELS.items():
        members = [
            label
            for label, plates in (("mu", parent_plates), ("nu", child_plates))
            if plate in plates
        ]
        if members:
            graph = graph.plate(f"Plate {plate}", plate, node_labels=members, data=levels)

    # The parent is indexed by every one of its plates, which the child must share
    if not set(parent_plates) <= set(child_plates):
        with pytest.raises(ds.IndexScopeError):
            graph.compile()
        return

    compiled = graph.compile()
    expected = f"mu[{', '.join(parent_plates)}]" if parent_plates else "mu"
    assert compiled["nu"].statement == f"normal({expected}, 1)"
    assert compiled["nu"].scope == child_plates
    assert compiled["nu"].shape == tuple(len(PLATE_LEVELS[p]) for p in child_plates)


def test_loop_variable_avoids_node_labels() -> None:
    graph = (
        Graph()
        .node("Mean", "mu", rhs="normal(0, 1)")
        .node("Gee", "g", rhs="normal(0, 1)")
        .plate("Group", "g", node_labels="mu", data=["a", "b"])
    )
    compiled = graph.compile()
    assert compiled.loop_variables == {"g": "i"}
    assert compiled["mu"].target == "mu[i]"


def test_generated_names_must_not_clash() -> None:
    graph = (
        Graph()
        .node("Mean", "mu", rhs="normal(0, 1)")
        .node("Size", "g_dim", rhs="normal(0, 1)")
        .plate("Group", "g", node_labels="mu", data=["a", "b"])
    )
    with pytest.raises(ds.DuplicateLabelError):
        graph.compile()

    rows = (
        Graph()
        .node("Outcome", "x", rhs="normal(0, 1)", data=[1.0, 2.0])
        .node("Length", "x_len", rhs="normal(0, 1)")
    )
    with pytest.raises(ds.DuplicateLabelError):
        rows.compile()


def test_cycle_detection() -> None:
    graph = (
        Graph()
        .node("A", "a", rhs="normal(b, 1)")
        .node("B", "b", rhs="normal(a, 1)")
    )
    with pytest.raises(ds.CyclicGraphError) as err:
        graph.compile()
    assert set(err.value.labels) == {"a", "b"}

    # Cycles made of edges are found too
    graph = Graph().node("A", "a", rhs="normal(0, 1)", child="b").node(
        "B", "b", rhs="normal(0, 1)", child="a"
    )
    with pytest.raises(ds.CyclicGraphError):
        graph.compile()


def test_self_loop() -> None:
    graph = Graph().node("A", "a", rhs="normal(a, 1)")
    with pytest.raises(ds.CyclicGraphError, match="depends on itself"):
        graph.compile()


@pytest.mark.parametrize(
    "graph",
    [
        Graph().node("Observed formula", "y", rhs="exp(1)", data=[1.0]),
        Graph().node("Nothing", "a"),
        Graph().node("Count", "k", rhs="poisson(3)"),
        Graph().node("Coin", "x", rhs="bernoulli(0.5)", data=[0.5, 1.0]),
    ],
)
def test_invalid_definitions(graph) -> None:
    with pytest.raises(ds.InvalidRhsError):
        graph.compile()


def test_non_numeric_data() -> None:
    graph = Graph().node("Names", "n", data=["a", "b"])
    with pytest.raises(ValueError, match="numeric"):
        graph.compile()


def test_data_must_match_plates() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(0, 1)", data=[1.0, 2.0, 3.0])
        .plate("Group", "g", node_labels="out", data=["a", "b"])
    )
    with pytest.raises(ds.IndexScopeError):
        graph.compile()


def test_uniform_bounds() -> None:
    graph = (
        Graph()
        .node("Upper", "hi", rhs="exponential(1)")
        .node("Value", "v", rhs="uniform(-1, hi)")
    )
    assert graph.compile()["v"].stan_type == "real<lower=-1, upper=hi>"


def test_uniform_with_unusable_bounds_warns() -> None:
    graph = (
        Graph()
        .node("Lower", "lo", rhs="normal(0, 1)")
        .node("Value", "v", rhs="uniform(lo, hi)")
        .node("Upper", "hi", rhs="lo + 1")
    )
    with pytest.warns(UserWarning, match="declared unbounded"):
        compiled = graph.compile()
    assert compiled["v"].stan_type == "real"
    assert compiled.order == ("lo", "hi", "v")


def test_stan_data() -> None:
    graph = (
        Graph()
        .node("Successes", "k", rhs="binomial(n, p)", data=[3, 5, 4])
        .node("Trials", "n", data=10)
        .node("Probability", "p", rhs="beta(1, 1)", child="k")
    )
    compiled = graph.compile()
    data = compiled.stan_data()

    assert data["k_len"] == 3
    assert data["n"] == 10
    np.testing.assert_array_equal(data["k"], [3, 5, 4])
    assert compiled["n"].stan_type == "int"
    assert compiled["k"].stan_type == "array[k_len] int"
    assert compiled["k"].statement == "binomial(n, p)"
    assert compiled["p"].stan_type == "real<lower=0, upper=1>"


def test_data_node_listed_in_observation_plate() -> None:
    graph = (
        Graph()
        .node("Cust Signed", "k", rhs="binomial(n, p)", data=[3, 5, 2, 4, 6, 1])
        .node("Probability of Signing", "p", rhs="beta(2, 2)", child="k")
        .node("Trial Size", "n", data=[10, 10, 8, 9, 12, 7], child="k")
        .plate(
            "Yoga Stretch",
            "x",
            node_labels="p",
            data=["Pool", "Yoga", "Pool", "Yoga", "Pool", "Yoga"],
            add_data_node=True,
        )
        .plate("Observation", "i", node_labels=["x", "k", "n"])
        .plate(
            "Gym", "j", node_labels="p", data=[1, 1, 2, 2, 3, 3], add_data_node=True
        )
    )
    compiled = graph.compile()

    assert compiled.scopes["x"] == ("i",)
    assert compiled.loop_variables == {"x": "l", "i": "i", "j": "m"}
    assert compiled.size_names == {"x_dim": 2, "i_dim": 6, "j_dim": 3, "j_len": 6}

    assert compiled["x"].kind == "data"
    assert compiled["x"].stan_type == "array[i_dim] int"
    assert compiled["p"].stan_type == "matrix<lower=0, upper=1>[x_dim, j_dim]"
    assert compiled["k"].target == "k[i]"
    assert compiled["k"].statement == "binomial(n[i], p[x[i], j[i]])"
