import pytest

from network_data import CableType, Cable, Equipment, Node


@pytest.fixture
def cable_types():
    return [
        CableType(id="test", label="R0.2 X0.1", r12=0.2, x12=0.1, r0=0.4, x0=0.2),
        CableType(id="heavy", label="R1.0 X0.5", r12=1.0, x12=0.5, r0=1.5, x0=0.8),
    ]


def load(kva, **kwargs):
    return Equipment(id=f"load-{kva}", s_kva=kva, **kwargs)


def production(kva, **kwargs):
    return Equipment(id=f"pv-{kva}", s_kva=kva, **kwargs)


@pytest.fixture
def two_node_network():
    nodes = [
        Node(id="src", is_source=True, target_voltage=400.0),
        Node(id="n1", loads=(load(10.0),)),
    ]
    cables = [Cable(id="c1", node_a="src", node_b="n1", cable_type_id="test", length_m=500.0)]
    return nodes, cables


@pytest.fixture
def feeder_network():
    """Source with two feeders: src-a-b (loads) and src-p (production)."""
    nodes = [
        Node(id="src", is_source=True, target_voltage=400.0),
        Node(id="a", loads=(load(12.0),)),
        Node(id="b", loads=(load(8.0),)),
        Node(id="p", productions=(production(9.0),)),
    ]
    cables = [
        Cable(id="c-a", node_a="src", node_b="a", cable_type_id="test", length_m=300.0),
        Cable(id="c-b", node_a="b", node_b="a", cable_type_id="test", length_m=200.0),
        Cable(id="c-p", node_a="src", node_b="p", cable_type_id="test", length_m=250.0),
    ]
    return nodes, cables
