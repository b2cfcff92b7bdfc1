import pytest

from network_data import Cable, Node
from solve_state import SolveState
from data_input import TopologyError
from topology_discovery import gridtopology, subtree_power


def test_tree_orientation(feeder_network):
    nodes, cables = feeder_network
    tree = gridtopology(nodes, cables)

    assert tree.order[0] == "src"
    assert tree.parent["b"] == "a"
    assert tree.parent_cable["b"] == "c-b"
    assert tree.feeders == ["c-a", "c-p"]
    assert tree.path_cables("b") == ["c-a", "c-b"]
    assert tree.circuit_of("b") == 1
    assert tree.circuit_of("p") == 2
    assert tree.circuit_of("src") is None
    assert tree.feeder_of("b") == "c-a"
    assert tree.feeder_of("src") is None


def test_post_order_visits_children_first(feeder_network):
    nodes, cables = feeder_network
    order = gridtopology(nodes, cables).post_order()
    assert order[-1] == "src"
    assert order.index("b") < order.index("a")


def test_subtree_power(feeder_network):
    nodes, cables = feeder_network
    tree = gridtopology(nodes, cables)
    totals = subtree_power(tree, {"a": 2 + 1j, "b": 3 + 0j, "p": -4 + 0j})
    assert totals["a"] == 5 + 1j
    assert totals["src"] == 1 + 1j
    assert sorted(tree.subtree("a")) == ["a", "b"]


def test_loop_is_rejected():
    nodes = [Node(id="src", is_source=True), Node(id="a"), Node(id="b")]
    cables = [
        Cable(id="1", node_a="src", node_b="a", cable_type_id="test"),
        Cable(id="2", node_a="a", node_b="b", cable_type_id="test"),
        Cable(id="3", node_a="b", node_b="src", cable_type_id="test"),
    ]
    with pytest.raises(TopologyError) as error:
        gridtopology(nodes, cables)
    assert error.value.constraint == "radial_topology"


def test_dangling_cable_is_ignored_with_warning(two_node_network):
    nodes, cables = two_node_network
    cables = cables + [Cable(id="dangling", node_a="n1", node_b="ghost", cable_type_id="test")]
    state = SolveState()
    tree = gridtopology(nodes, cables, state)
    assert tree.ignored_cables == ["dangling"]
    assert any("dangling" in message for message in state.warnings)


def test_disconnected_nodes(two_node_network):
    nodes, cables = two_node_network
    tree = gridtopology(nodes + [Node(id="island")], cables)
    assert tree.disconnected == ["island"]
    assert "island" not in tree.order
