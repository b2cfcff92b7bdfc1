import numpy as np
import pytest

import phasors
from sweep_procedures import backwardsweep, forward_backward_sweep


PARENT = np.array([-1, 0, 1, 0])
Z = np.array([0j, 0.1 + 0.05j, 0.2 + 0.1j, 0.05 + 0.02j])


def test_no_load_keeps_slack_everywhere():
    result = forward_backward_sweep(PARENT, Z, np.zeros(4, dtype=complex), 230.0 + 0j)
    assert result.converged
    assert np.allclose(result.voltages, 230.0)
    assert np.allclose(result.branch_currents, 0.0)


def test_backward_sweep_accumulates_currents():
    s = np.array([0j, 2300.0, 2300.0, 4600.0])
    currents = backwardsweep(PARENT, s, np.full(4, 230.0 + 0j))
    assert currents[2] == pytest.approx(10.0)
    assert currents[1] == pytest.approx(20.0)
    assert currents[0] == pytest.approx(40.0)


def test_loaded_feeder_drops_towards_the_leaves():
    s = np.array([0j, 3000 + 1000j, 2000 + 500j, 1000j])
    result = forward_backward_sweep(PARENT, Z, s, 230.0 + 0j)
    mags = np.abs(result.voltages)
    assert result.converged
    assert mags[0] == pytest.approx(230.0)
    assert mags[0] > mags[1] > mags[2]
    # power balance at the slack: delivered power = loads + series losses
    losses = sum(abs(result.branch_currents[k]) ** 2 * Z[k] for k in range(1, 4))
    delivered = result.voltages[0] * np.conj(result.branch_currents[0])
    assert delivered == pytest.approx(s.sum() + losses, rel=1e-4)


def test_transformer_drop_moves_the_source_bus():
    s = np.array([0j, 5000.0, 0j, 0j])
    result = forward_backward_sweep(PARENT, Z, s, 230.0 + 0j, z_source=0.01 + 0.03j)
    assert abs(result.source_voltage) < 230.0


def test_pinned_node_keeps_angle():
    s = np.array([0j, 3000 + 1000j, 2000 + 500j, 0j])
    result = forward_backward_sweep(PARENT, Z, s, 230.0 + 0j, pinned={1: 240.0})
    assert abs(result.voltages[1]) == pytest.approx(240.0)
    assert abs(result.input_voltages[1]) < 230.0
    assert np.angle(result.voltages[1]) == pytest.approx(np.angle(result.input_voltages[1]))
    assert abs(result.voltages[2]) < 240.0


def test_iteration_cap_flags_non_convergence():
    s = np.array([0j, 3000 + 1000j, 2000 + 500j, 1000j])
    result = forward_backward_sweep(PARENT, Z, s, 230.0 + 0j, max_iterations=1)
    assert result.iterations == 1
    assert not result.converged


def test_safe_divide_floors_the_denominator():
    assert np.isfinite(phasors.safe_divide(1.0, 0.0))
    assert phasors.safe_divide(1.0, 2.0) == pytest.approx(0.5)


def test_neutral_current_of_balanced_phases_is_zero():
    assert phasors.neutral_current(10 + 0j, 10 + 0j, 10 + 0j) == pytest.approx(0.0, abs=1e-9)
    assert phasors.neutral_current(10 + 0j, 0j, 0j) == pytest.approx(10.0)
