import math

import pytest

from network_data import Cable, Equipment, LoadModel, Node, OverrideKind, ProjectConfig, Scenario, VoltageSystem
from power_flow import solve
from neutral_compensation import (CompensationMode, CompensationStatus, CompensatorConfig,
                                  apply_neutral_compensation, equi8_correction, path_impedances)


def test_reference_correction():
    result = equi8_correction((232.0, 229.0, 226.0), zph=0.5, zn=0.5)
    assert result.u_mean == pytest.approx(229.0)
    assert result.du_initial == pytest.approx(6.0)
    assert result.du_equi8 == pytest.approx(1.8557, abs=1e-3)
    assert result.u_equi8 == pytest.approx((229.928, 229.0, 228.072), abs=1e-2)
    assert result.i_neutral_a == pytest.approx(4.114, abs=1e-2)
    assert result.reduction_percent == pytest.approx(69.07, abs=0.05)
    assert result.in_validity_domain


@pytest.mark.parametrize("zph, zn", [(0.2, 0.2), (0.5, 1.5), (3.0, 0.4)])
def test_balanced_voltages_are_a_no_op(zph, zn):
    result = equi8_correction((230.0, 230.0, 230.0), zph, zn)
    assert result.du_equi8 == 0.0
    assert result.i_neutral_a == 0.0
    assert result.u_equi8 == (230.0, 230.0, 230.0)


def test_validity_domain_warning():
    result = equi8_correction((232.0, 229.0, 226.0), zph=0.1, zn=0.5)
    assert not result.in_validity_domain
    assert "validity" in result.warning


@pytest.mark.parametrize("zph", [0.01, math.exp(-3.8654 / 0.9119), 0.001])
def test_very_low_impedance_stays_bounded(zph):
    result = equi8_correction((232.0, 229.0, 226.0), zph=zph, zn=zph)
    assert 0.0 <= result.du_equi8 <= result.du_initial
    assert result.u_equi8[0] > result.u_equi8[1] > result.u_equi8[2]
    assert 0.0 <= result.reduction_percent <= 100.0
    assert not result.in_validity_domain


def test_non_positive_impedance_is_rejected():
    with pytest.raises(ValueError):
        equi8_correction((232.0, 229.0, 226.0), zph=0.0, zn=0.5)


@pytest.fixture
def unbalanced_network():
    nodes = [
        Node(id="src", is_source=True, target_voltage=400.0),
        Node(id="n1", loads=(Equipment(id="l", s_kva=10.0),)),
    ]
    cables = [Cable(id="c1", node_a="src", node_b="n1", cable_type_id="test", length_m=1000.0)]
    return nodes, cables


UNBALANCED = ProjectConfig(load_model=LoadModel.PHASE_DISTRIBUTED, imbalance=30.0)


def test_path_impedances(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    zph, zn = path_impedances(nodes, cables, cable_types, "n1")
    assert zph == pytest.approx(abs(0.2 + 0.1j))
    assert zn == pytest.approx(abs(0.4 + 0.2j))
    assert path_impedances(nodes, cables, cable_types, "src") == (0.0, 0.0)


def test_advisory_mode_leaves_voltages(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    base = solve(nodes, cables, cable_types, Scenario.LOAD, UNBALANCED)
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, UNBALANCED,
                                        [CompensatorConfig(node_id="n1")])
    (report,) = result.compensators
    assert report.status is CompensationStatus.ADVISORY
    assert report.equi8.du_initial > 0.0
    assert report.equi8.i_neutral_a > 0.0
    assert result.nodes == base.nodes
    assert result.overrides == ()


def test_integrated_mode_reduces_spread(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    base = solve(nodes, cables, cable_types, Scenario.LOAD, UNBALANCED)
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, UNBALANCED,
                                        [CompensatorConfig(node_id="n1", mode=CompensationMode.INTEGRATED)])
    (report,) = result.compensators
    assert report.status is CompensationStatus.APPLIED
    before = base.node("n1").phase_voltages_v
    after = result.node("n1").phase_voltages_v
    assert max(after) - min(after) == pytest.approx(report.equi8.du_equi8, abs=1e-6)
    assert max(after) - min(after) < max(before) - min(before)
    assert result.override("n1").kind is OverrideKind.COMPENSATOR
    hash(result)


def test_overloaded_compensator_is_limited(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, UNBALANCED,
                                        [CompensatorConfig(node_id="n1", max_power_kva=5.0)])
    (report,) = result.compensators
    assert report.status is CompensationStatus.LIMITED
    assert report.overloaded
    assert any("limited" in message for message in result.warnings)


def test_low_impedance_is_flagged(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, UNBALANCED,
                                        [CompensatorConfig(node_id="n1", zph_ohm=0.1, zn_ohm=0.1)])
    assert not result.compensators[0].equi8.in_validity_domain
    assert any("validity" in message for message in result.warnings)


def test_balanced_node_reports_balanced(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, ProjectConfig(),
                                        [CompensatorConfig(node_id="n1", mode=CompensationMode.INTEGRATED)])
    assert result.compensators[0].status is CompensationStatus.BALANCED


def test_230v_network_is_skipped(unbalanced_network, cable_types):
    nodes, cables = unbalanced_network
    config = ProjectConfig(voltage_system=VoltageSystem.TRIPHASE_230V)
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, config,
                                        [CompensatorConfig(node_id="n1")])
    assert result.compensators[0].status is CompensationStatus.SKIPPED


def test_integrated_on_short_feeder_keeps_phase_order(cable_types):
    nodes = [
        Node(id="src", is_source=True, target_voltage=400.0),
        Node(id="n1", loads=(Equipment(id="l", s_kva=30.0),)),
    ]
    cables = [Cable(id="c1", node_a="src", node_b="n1", cable_type_id="test", length_m=30.0)]
    config = ProjectConfig(load_model=LoadModel.PHASE_DISTRIBUTED, imbalance=60.0)
    base = solve(nodes, cables, cable_types, Scenario.LOAD, config)
    result = apply_neutral_compensation(nodes, cables, cable_types, Scenario.LOAD, config,
                                        [CompensatorConfig(node_id="n1", mode=CompensationMode.INTEGRATED)])

    before = base.node("n1").phase_voltages_v
    after = result.node("n1").phase_voltages_v
    assert result.compensators[0].status is CompensationStatus.APPLIED
    assert max(after) - min(after) <= max(before) - min(before)
    assert after[0] == min(after)
    assert any("validity" in message for message in result.warnings)
