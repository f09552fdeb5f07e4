import numpy as np
import pytest

import dagstan as ds

from dagstan.graph import Edge, Graph, Node, Plate
from dagstan.model.resolver import resolve_plates, validate_references


def test_levels_follow_first_occurrence() -> None:
    graph = (
        Graph()
        .node("Score", "s", rhs="normal(mu, 1)", data=[1.0, 2.0, 3.0, 4.0, 5.0])
        .node("Mean", "mu", rhs="normal(0, 1)", child="s")
        .plate("Team", "team", node_labels="mu", data=["b", "a", "b", "c", "a"])
    )
    plate = resolve_plates(graph).plates["team"]
    assert plate.levels == ("b", "a", "c")
    assert plate.size == 3
    np.testing.assert_array_equal(plate.assignment, [1, 2, 1, 3, 2])
    assert plate.data_node is None


def test_numeric_levels_become_strings() -> None:
    graph = (
        Graph()
        .node("Mean", "mu", rhs="normal(0, 1)")
        .plate("Year", "year", node_labels="mu", data=[2021, 2019, 2021])
    )
    assert resolve_plates(graph).plates["year"].levels == ("2021", "2019")


def test_data_node_is_synthesized(car_graph) -> None:
    resolved = resolve_plates(car_graph)
    plate = resolved.plates["y"]
    assert plate.levels == ("Toyota", "Subaru", "Ford", "Honda")
    assert plate.data_node == "y"

    data_node = resolved.graph["y"]
    assert data_node.descr == "Car Model Observed"
    assert data_node.observed
    assert data_node.rhs is None
    np.testing.assert_array_equal(data_node.data[:6], [1, 2, 3, 4, 1, 2])

    # The data node selects the member for the dependent outside the plate
    assert Edge("y", "x") in resolved.graph.edges
    assert resolved.dependencies("x") == ("theta", "y")
    assert resolved.data_node_plates() == {"y": "y"}

    # The data node is not a member of its own plate
    assert resolved.scopes == {"x": (), "theta": ("y",), "y": ()}


def test_input_graph_is_not_modified(car_graph) -> None:
    resolve_plates(car_graph)
    assert "y" not in car_graph
    assert len(car_graph.edges) == 1


def test_data_node_wired_through_rhs_reference() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, 1)", data=[0.5, 1.5, 2.5])
        .node("Mean", "mu", rhs="normal(0, 1)")
        .plate("Group", "g", node_labels="mu", data=["u", "v", "u"], add_data_node=True)
    )
    resolved = resolve_plates(graph)
    assert resolved.graph.parents("out") == ("g",)
    assert resolved.dependencies("out") == ("g", "mu")


def test_size_inferred_from_observed_members() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, 1)", data=np.zeros(7))
        .node("Mean", "mu", rhs="normal(0, 1)", child="out")
        .plate("Observation", "obs", node_labels="out")
    )
    resolved = resolve_plates(graph)
    assert resolved.plates["obs"].levels == tuple(str(i) for i in range(1, 8))
    assert resolved.plates["obs"].assignment is None
    assert resolved.scope("out") == ("obs",)
    assert resolved.scope("mu") == ()


def test_size_ignores_members_of_other_plates() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, 1)", data=np.zeros(3))
        .node("Grid", "grid", rhs="normal(mu, 1)", data=np.zeros(6))
        .node("Mean", "mu", rhs="normal(0, 1)", child=["out", "grid"])
        .plate("Rows", "r", node_labels=["out", "grid"])
        .plate("Columns", "c", node_labels="grid", data=["a", "b"])
    )
    resolved = resolve_plates(graph)
    assert resolved.plates["r"].size == 3
    assert resolved.scope("grid") == ("r", "c")


def test_ambiguous_size_without_observed_members() -> None:
    graph = (
        Graph()
        .node("Mean", "mu", rhs="normal(0, 1)")
        .plate("Group", "g", node_labels="mu")
    )
    with pytest.raises(ds.AmbiguousPlateSizeError) as err:
        resolve_plates(graph)
    assert err.value.labels == ("g",)


def test_ambiguous_size_with_disagreeing_members() -> None:
    graph = (
        Graph()
        .node("First", "a", rhs="normal(0, 1)", data=np.zeros(3))
        .node("Second", "b", rhs="normal(0, 1)", data=np.zeros(4))
        .plate("Group", "g", node_labels=["a", "b"])
    )
    with pytest.raises(ds.AmbiguousPlateSizeError) as err:
        resolve_plates(graph)
    assert err.value.labels == ("g", "a", "b")


def test_undefined_edge_endpoint() -> None:
    graph = Graph().node("Mean", "mu", rhs="normal(0, 1)").edge("ghost", "mu")
    with pytest.raises(ds.UndefinedParentError) as err:
        validate_references(graph)
    assert err.value.labels == ("ghost",)

    # Also raised as a KeyError for callers handling builtins
    with pytest.raises(KeyError):
        resolve_plates(graph)


def test_undefined_rhs_reference() -> None:
    graph = Graph().node("Outcome", "y", rhs="normal(mu, sigma)", data=[1.0])
    with pytest.raises(ds.UndefinedParentError) as err:
        resolve_plates(graph)
    assert err.value.labels == ("mu", "sigma")


def test_data_node_can_be_referenced_before_resolution() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, 1)", data=[0.5, 1.5, 2.5])
        .node("Mean", "mu", rhs="normal(0, 1)", child="out")
        .edge("g", "out")
        .plate("Group", "g", node_labels="mu", data=["u", "v", "u"], add_data_node=True)
    )
    resolved = resolve_plates(graph)
    assert resolved.graph.parents("out") == ("mu", "g")


def test_duplicate_labels_in_assembled_graph() -> None:
    graph = Graph(nodes=(Node("a", "First"), Node("a", "Second", order=1)))
    with pytest.raises(ds.DuplicateLabelError):
        validate_references(graph)


def test_size_agrees_across_observed_members() -> None:
    graph = (
        Graph()
        .node("Successes", "k", rhs="binomial(n, p)", data=[3, 5, 4, 2])
        .node("Trials", "n", data=[10, 10, 9, 8], child="k")
        .node("Probability", "p", rhs="beta(1, 1)", child="k")
        .plate("Observation", "obs", node_labels=["k", "n"])
    )
    assert resolve_plates(graph).plates["obs"].size == 4


def test_data_node_sizes_plate_listing_it() -> None:
    graph = (
        Graph()
        .node("Outcome", "out", rhs="normal(mu, 1)", data=np.zeros(5))
        .node("Mean", "mu", rhs="normal(0, 1)", child="out")
        .plate("Group", "g", node_labels="mu", data=list("abcab"), add_data_node=True)
        .plate("Observation", "obs", node_labels=["g", "out"])
    )
    resolved = resolve_plates(graph)
    assert resolved.plates["obs"].size == 5
    assert resolved.scope("g") == ("obs",)
    assert resolved.scope("mu") == ("g",)


def test_plate_cannot_list_its_own_data_node() -> None:
    graph = Graph(
        nodes=(Node("mu", "Mean"),),
        plates=(
            Plate(
                "Group",
                "g",
                ("mu", "g"),
                data=np.array(["a", "b"]),
                add_data_node=True,
            ),
        ),
    )
    with pytest.raises(ds.UndefinedParentError) as err:
        validate_references(graph)
    assert err.value.labels == ("g",)
