import numpy as np
import pandas as pd
import pytest

import dagstan as ds

from dagstan.graph import Edge, Graph


def test_empty_graph() -> None:
    graph = Graph()
    assert len(graph) == 0
    assert graph.nodes_df.empty
    assert list(graph.nodes_df.columns) == ["label", "descr", "rhs", "observed", "data_size"]
    assert graph.edges_df.empty
    assert graph.plates_df.empty
    assert repr(graph) == "Graph(nodes=0, edges=0, plates=0)"


def test_builder_is_immutable() -> None:
    base = Graph().node("Card Probability", "theta", rhs="uniform(0, 1)")
    extended = base.node("Get Card", "x", rhs="bernoulli(theta)", data=[0, 1, 1])

    assert base.labels == ("theta",)
    assert extended.labels == ("theta", "x")
    assert "x" not in base
    assert "x" in extended

    # Records are shared between snapshots
    assert extended["theta"] is base["theta"]


def test_node_records(simple_graph) -> None:
    x = simple_graph["x"]
    assert x.descr == "Get Card"
    assert str(x.rhs) == "bernoulli(theta)"
    assert x.observed
    assert x.references == ("theta",)
    assert x.is_distribution

    theta = simple_graph["theta"]
    assert not theta.observed
    assert theta.order == 1

    assert simple_graph.children("theta") == ("x",)
    assert simple_graph.parents("x") == ("theta",)
    assert simple_graph.edges == (Edge("theta", "x"),)


def test_data_is_read_only_copy() -> None:
    values = np.array([1.0, 2.0, 3.0])
    graph = Graph().node("Weight", "w", data=values)
    values[0] = 100.0

    assert graph["w"].data[0] == 1.0
    with pytest.raises(ValueError):
        graph["w"].data[0] = 5.0


def test_data_from_pandas() -> None:
    series = pd.Series([3, 1, 2], index=[10, 20, 30])
    graph = Graph().node("Count", "n", data=series)
    np.testing.assert_array_equal(graph["n"].data, [3, 1, 2])


def test_label_defaults_to_description() -> None:
    graph = Graph().node("alpha", rhs="normal(0, 1)")
    assert graph.labels == ("alpha",)

    with pytest.raises(ValueError, match="not a valid identifier"):
        Graph().node("Card Probability", rhs="normal(0, 1)")


@pytest.mark.parametrize("label", ["1x", "my label", "_hidden", "x__", "a-b"])
def test_invalid_labels(label) -> None:
    with pytest.raises(ValueError):
        Graph().node("A node", label)


def test_duplicate_node_label() -> None:
    graph = Graph().node("First", "a", rhs="normal(0, 1)")
    with pytest.raises(ds.DuplicateLabelError) as err:
        graph.node("Second", "a", rhs="normal(0, 1)")
    assert err.value.labels == ("a",)


def test_invalid_rhs_fails_at_declaration() -> None:
    with pytest.raises(ds.InvalidRhsError):
        Graph().node("Bad", "a", rhs="normal(0)")


def test_duplicate_edges_are_ignored() -> None:
    graph = Graph().edge("a", "b")
    assert graph.edge("a", "b") is graph
    assert len(graph.edges) == 1


def test_child_argument_adds_edges() -> None:
    graph = (
        Graph()
        .node("Outcome", "y", rhs="normal(mu, 1)", data=[1.0])
        .node("Other outcome", "z", rhs="normal(mu, 1)", data=[1.0])
        .node("Mean", "mu", rhs="normal(0, 1)", child=["y", "z"])
    )
    assert graph.children("mu") == ("y", "z")
    assert graph.edges_df.to_dict("records") == [
        {"parent": "mu", "child": "y"},
        {"parent": "mu", "child": "z"},
    ]


def test_plate_records(car_graph) -> None:
    plate = car_graph.get_plate("y")
    assert plate.descr == "Car Model"
    assert plate.node_labels == ("theta",)
    assert plate.add_data_node
    assert plate.data.size == 1000

    assert car_graph.plates_of("theta") == (plate,)
    assert car_graph.plates_of("x") == ()

    # The data node is only added on compilation
    assert "y" not in car_graph
    assert car_graph.plates_df.to_dict("records") == [
        {
            "label": "y",
            "descr": "Car Model",
            "node_labels": ("theta",),
            "has_data": True,
            "add_data_node": True,
        }
    ]


def test_plate_errors(simple_graph) -> None:
    with pytest.raises(ds.UndefinedParentError) as err:
        simple_graph.plate("Group", "g", node_labels=["theta", "missing"])
    assert err.value.labels == ("missing",)

    with pytest.raises(ValueError, match="at least one"):
        simple_graph.plate("Group", "g", node_labels=[])

    with pytest.raises(ds.DuplicateLabelError):
        simple_graph.plate("Group", "g", node_labels=["theta", "theta"])

    with pytest.raises(ValueError, match="source data"):
        simple_graph.plate("Group", "g", node_labels="theta", add_data_node=True)

    with pytest.raises(ds.DuplicateLabelError):
        simple_graph.plate("Group", "x", node_labels="theta", data=[1, 2], add_data_node=True)

    graph = simple_graph.plate("Group", "g", node_labels="theta", data=[1, 2])
    with pytest.raises(ds.DuplicateLabelError):
        graph.plate("Group again", "g", node_labels="x")


def test_plate_may_list_earlier_data_node(car_graph) -> None:
    graph = car_graph.plate("Observation", "obs", node_labels=["y", "x"])
    assert graph.get_plate("obs").node_labels == ("y", "x")
    assert graph.plates_of("y") == (graph.get_plate("obs"),)

    # A plate cannot list its own data node
    with pytest.raises(ds.UndefinedParentError):
        car_graph.plate(
            "Group", "g", node_labels=["theta", "g"], data=[1, 2], add_data_node=True
        )


def test_node_cannot_take_data_node_label(car_graph) -> None:
    with pytest.raises(ds.DuplicateLabelError):
        car_graph.node("Car", "y", rhs="normal(0, 1)")


def test_plate_label_may_match_node_without_data_node(simple_graph) -> None:
    graph = simple_graph.plate("Group", "g", node_labels="theta", data=[1, 2])
    graph = graph.node("Shared name", "g", rhs="normal(0, 1)")
    assert "g" in graph


def test_nodes_df(car_graph) -> None:
    nodes = car_graph.nodes_df
    assert nodes["label"].tolist() == ["x", "theta"]
    assert nodes["rhs"].tolist() == ["bernoulli(theta)", "uniform(0, 1)"]
    assert nodes["observed"].tolist() == [True, False]
    assert nodes["data_size"].tolist() == [1000, 0]


def test_iteration_order(simple_graph) -> None:
    assert [node.label for node in simple_graph] == ["x", "theta"]
    assert len(simple_graph) == 2
