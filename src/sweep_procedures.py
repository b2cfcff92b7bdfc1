import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

import phasors

logger = logging.getLogger(__name__)

TOLERANCE = 1e-4
MAX_ITERATIONS = 100


@dataclass
class SweepResult:
    voltages: np.ndarray  # complex node voltages, breadth-first order
    branch_currents: np.ndarray  # current entering each node from its parent (source: bus total)
    source_voltage: complex  # voltage at the source bus, after the transformer drop
    iterations: int
    converged: bool
    input_voltages: Dict[int, complex] = field(default_factory=dict)  # pinned nodes, before pinning


def backwardsweep(parent: np.ndarray, s_node: np.ndarray, voltages: np.ndarray) -> np.ndarray:
    """
    Injection currents conj(S/V) of every node, accumulated from the leaves
    toward the source. Entry k is the current flowing from parent[k] into k.
    """
    currents = phasors.current_from_power(s_node, voltages, phasors.MIN_VOLTAGE_SAFETY)
    for k in range(len(parent) - 1, 0, -1):
        currents[parent[k]] += currents[k]
    return currents


def forwardsweep(parent: np.ndarray, z_branch: np.ndarray, currents: np.ndarray, v_slack: complex,
                 z_source: complex, pinned: Mapping[int, float]):
    """
    Voltages from the source toward the leaves. The source bus sits one
    transformer drop below the slack; pinned nodes keep the computed angle and
    take the pinned magnitude.
    """
    voltages = np.empty(len(parent), dtype=complex)
    input_voltages = {}
    voltages[0] = v_slack - z_source * currents[0]
    for k in range(1, len(parent)):
        v = voltages[parent[k]] - z_branch[k] * currents[k]
        if k in pinned:
            input_voltages[k] = v
            angle = np.angle(v) if abs(v) > phasors.MIN_VOLTAGE_SAFETY else 0.0
            v = pinned[k] * np.exp(1j * angle)
        voltages[k] = v
    return voltages, input_voltages


def forward_backward_sweep(parent: np.ndarray, z_branch: np.ndarray, s_node: np.ndarray, v_slack: complex,
                           z_source: complex = 0j, pinned: Optional[Mapping[int, float]] = None,
                           tolerance: float = TOLERANCE, max_iterations: int = MAX_ITERATIONS) -> SweepResult:
    """
    Single-phase backward/forward sweep on a radial tree.

    Parameters:
      - parent: parent index of each node (breadth-first order, parent[0] = -1)
      - z_branch: impedance of the cable feeding each node (entry 0 unused)
      - s_node: complex power per node (VA), load positive
      - v_slack: slack phase voltage upstream of the transformer
      - z_source: transformer series impedance (0 for an ideal source)
      - pinned: node index -> imposed phase voltage magnitude

    Returns:
      - SweepResult, flagged not converged when max_iterations was hit
    """
    pinned = dict(pinned or {})
    v_ref = abs(v_slack) if abs(v_slack) > 0 else 1.0
    voltages = np.full(len(parent), v_slack, dtype=complex)
    currents = np.zeros(len(parent), dtype=complex)
    input_voltages = {}

    iteration = 0
    converged = False
    while iteration < max_iterations:
        iteration += 1
        currents = backwardsweep(parent, s_node, voltages)
        new_voltages, input_voltages = forwardsweep(parent, z_branch, currents, v_slack, z_source, pinned)
        max_error = float(np.max(np.abs(new_voltages - voltages))) / v_ref
        voltages = new_voltages
        if max_error < tolerance:
            converged = True
            break

    # Branch currents consistent with the returned voltages
    currents = backwardsweep(parent, s_node, voltages)
    logger.debug("sweep finished after %d iterations (converged=%s)", iteration, converged)
    return SweepResult(voltages=voltages, branch_currents=currents, source_voltage=voltages[0],
                       iterations=iteration, converged=converged, input_voltages=input_voltages)


def tree_arrays(buses: pd.DataFrame, lines: pd.DataFrame):
    """Parent indices and branch impedances in the breadth-first order of ``buses``."""
    position = {node_id: n for n, node_id in enumerate(buses.index)}
    parent = np.full(len(buses), -1, dtype=int)
    z_branch = np.zeros(len(buses), dtype=complex)
    for node_id, row in buses.iterrows():
        if row["parent"] is None or pd.isna(row["parent"]):
            continue
        n = position[node_id]
        parent[n] = position[row["parent"]]
        z_branch[n] = lines.at[row["cable"], "z"]
    return parent, z_branch


@dataclass
class PhaseSolution:
    """Solved voltages and branch currents for phases A, B, C, shape (3, n)."""
    voltages: np.ndarray
    currents: np.ndarray
    iterations: int
    converged: bool
    balanced: bool
    input_voltages: Dict[int, np.ndarray] = field(default_factory=dict)


def solve_phases(buses: pd.DataFrame, lines: pd.DataFrame, v_slack: float, z_source: complex,
                 balanced: bool, pinned: Optional[Mapping[str, tuple]] = None,
                 tolerance: float = TOLERANCE, max_iterations: int = MAX_ITERATIONS,
                 state=None) -> PhaseSolution:
    """
    Runs one sweep in balanced mode (replicated on the three phases) or three
    independent sweeps at a 0 deg reference in phase-distributed mode.

    ``pinned`` maps node ids to three phase-voltage magnitudes.
    """
    parent, z_branch = tree_arrays(buses, lines)
    position = {node_id: n for n, node_id in enumerate(buses.index)}
    pinned_idx = {position[node_id]: values for node_id, values in (pinned or {}).items() if node_id in position}
    power = buses[["s_ph1", "s_ph2", "s_ph3"]].to_numpy(dtype=complex).T

    runs = []
    for ph in range(1 if balanced else 3):
        phase_pins = {n: float(values[ph]) for n, values in pinned_idx.items()}
        runs.append(forward_backward_sweep(parent, z_branch, power[ph], complex(v_slack), z_source,
                                           phase_pins, tolerance, max_iterations))
    if balanced:
        runs = runs * 3

    voltages = np.vstack([run.voltages for run in runs])
    currents = np.vstack([run.branch_currents for run in runs])
    inputs = {n: np.array([run.input_voltages[n] for run in runs]) for n in pinned_idx}
    iterations = max(run.iterations for run in runs)
    converged = all(run.converged for run in runs)

    if not converged:
        message = (f"sweep did not converge within {max_iterations} iterations, "
                   f"results are approximate")
        if state is not None:
            state.warn(message)
        else:
            logger.warning(message)
    if state is not None:
        state.inner_iteration = iterations
        state.converged = state.converged and converged

    return PhaseSolution(voltages=voltages, currents=currents, iterations=iterations, converged=converged,
                         balanced=balanced, input_voltages=inputs)
