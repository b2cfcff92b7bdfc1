import pandas as pd
import pytest

from network_data import Cable, InstallationMode, Node, PhaseSplit, ProjectConfig, TransformerConfig
from data_input import (DEFAULT_CABLE_TYPES, NetworkValidationError, cable_types_from_frame, default_cable_types,
                        find_source, validate_network)


@pytest.mark.parametrize("sources", [0, 2])
def test_single_source_is_enforced(sources, cable_types):
    nodes = [Node(id=f"n{k}", is_source=k < sources) for k in range(3)]
    with pytest.raises(NetworkValidationError) as error:
        validate_network(nodes, [], cable_types)
    assert error.value.constraint == "single_source"


def test_find_source(two_node_network):
    nodes, _ = two_node_network
    assert find_source(nodes).id == "src"


def test_unknown_cable_type(two_node_network, cable_types):
    nodes, _ = two_node_network
    cables = [Cable(id="c1", node_a="src", node_b="n1", cable_type_id="missing")]
    with pytest.raises(NetworkValidationError) as error:
        validate_network(nodes, cables, cable_types)
    assert error.value.constraint == "unknown_cable_type"


def test_unknown_node(two_node_network, cable_types):
    nodes, _ = two_node_network
    cables = [Cable(id="c1", node_a="src", node_b="ghost", cable_type_id="test")]
    with pytest.raises(NetworkValidationError) as error:
        validate_network(nodes, cables, cable_types)
    assert error.value.constraint == "unknown_node"


def test_duplicated_node(cable_types):
    nodes = [Node(id="src", is_source=True), Node(id="a"), Node(id="a")]
    with pytest.raises(NetworkValidationError) as error:
        validate_network(nodes, [], cable_types)
    assert error.value.constraint == "duplicate_node"


@pytest.mark.parametrize("config, constraint", [
    (ProjectConfig(load_diversity=250.0), "diversity_range"),
    (ProjectConfig(production_diversity=-1.0), "diversity_range"),
    (ProjectConfig(power_factor=1.2), "power_factor_range"),
    (ProjectConfig(imbalance=-5.0), "imbalance_range"),
    (ProjectConfig(imbalance=101.0), "imbalance_range"),
    (ProjectConfig(phase_split=PhaseSplit(loads=(30.0, 30.0, 30.0))), "phase_split"),
    (ProjectConfig(transformer=TransformerConfig(rating_kva=0.0)), "transformer"),
])
def test_parameter_ranges(config, constraint, two_node_network, cable_types):
    nodes, cables = two_node_network
    with pytest.raises(NetworkValidationError) as error:
        validate_network(nodes, cables, cable_types, config)
    assert error.value.constraint == constraint


def test_valid_network_returns_source(two_node_network, cable_types):
    nodes, cables = two_node_network
    config = ProjectConfig(load_diversity=0.0, power_factor=1.0, imbalance=100.0)
    assert validate_network(nodes, cables, cable_types, config).id == "src"


def test_validation_error_is_a_value_error():
    assert issubclass(NetworkValidationError, ValueError)


def test_default_catalogue():
    types = {ct.id: ct for ct in default_cable_types()}
    assert len(types) == len(DEFAULT_CABLE_TYPES)
    assert types["baxb-150"].installations == (InstallationMode.AERIAL,)
    assert types["eaxecwb-4x150"].installations == (InstallationMode.UNDERGROUND,)
    assert types["cu-10"].material == "copper"
    assert types["cu-10"].max_current_a is None


def test_catalogue_columns_are_checked():
    frame = DEFAULT_CABLE_TYPES.drop(columns=["r0"])
    with pytest.raises(NetworkValidationError):
        cable_types_from_frame(frame)


def test_catalogue_duplicates_are_checked():
    frame = pd.concat([DEFAULT_CABLE_TYPES, DEFAULT_CABLE_TYPES.iloc[[0]]])
    with pytest.raises(NetworkValidationError):
        cable_types_from_frame(frame)


def test_catalogue_multiple_installations():
    frame = pd.DataFrame([["x", "X", 0.1, 0.1, 0.3, 0.3, "copper", "aerial|underground"]],
                         columns=DEFAULT_CABLE_TYPES.columns)
    (cable_type,) = cable_types_from_frame(frame)
    assert cable_type.installations == (InstallationMode.AERIAL, InstallationMode.UNDERGROUND)
