import logging
from dataclasses import asdict
from typing import Dict, Optional

import numpy as np
import pandas as pd

from network_data import (CableResult, CalculationResult, Compliance, LoadModel, NodeResult, ProjectConfig,
                          Scenario, VoltageSystem)
import phasors
from sweep_procedures import PhaseSolution
from topology_discovery import RadialTree
import virtual_busbar

logger = logging.getLogger(__name__)

NORMAL_LIMIT_PERCENT = 8.0
WARNING_LIMIT_PERCENT = 10.0


def compliance_status(deviation_percent: float) -> Compliance:
    deviation = abs(deviation_percent)
    if deviation <= NORMAL_LIMIT_PERCENT:
        return Compliance.NORMAL
    if deviation <= WARNING_LIMIT_PERCENT:
        return Compliance.WARNING
    return Compliance.CRITICAL


def node_results(tree: RadialTree, buses: pd.DataFrame, solution: PhaseSolution) -> Dict[str, NodeResult]:
    v_source = np.abs(solution.voltages[:, 0])
    records = {}
    for n, node_id in enumerate(buses.index):
        ct = buses.at[node_id, "connection_type"]
        v = solution.voltages[:, n]
        mags = np.abs(v)
        service = mags * ct.line_scale
        deviations = (service - ct.base_voltage) / ct.base_voltage * 100.0
        worst = float(deviations[int(np.argmax(np.abs(deviations)))])
        delta = float(np.mean(v_source - mags))
        delta_percent = delta / float(np.mean(v_source)) * 100.0 if np.mean(v_source) > 0 else 0.0
        inputs = solution.input_voltages.get(n)
        records[node_id] = NodeResult(
            node_id=node_id,
            connection_type=ct,
            phase_voltages_v=tuple(float(x) for x in mags),
            phase_angles_deg=tuple(float(x) for x in np.degrees(np.angle(v))),
            service_voltages_v=tuple(float(x) for x in service),
            nominal_voltage_v=ct.base_voltage,
            deviation_percent=worst,
            delta_u_v=delta * ct.line_scale,
            delta_u_percent=delta_percent,
            compliance=compliance_status(worst),
            circuit=tree.circuit_of(node_id),
            input_phase_voltages_v=None if inputs is None else tuple(float(x) for x in np.abs(inputs)),
        )
    return records


def cable_results(buses: pd.DataFrame, lines: pd.DataFrame, cables_by_id: Dict, solution: PhaseSolution,
                  v_slack: float, voltage_system: VoltageSystem) -> Dict[str, CableResult]:
    """
    Current, drop, losses and sending-end power of every connected cable.

    In balanced mode one phase is solved and losses/powers are multiplied by the
    number of phases of the fed connection; otherwise the three phases are summed.
    """
    position = {node_id: n for n, node_id in enumerate(buses.index)}
    records = {}
    for cable_id, line in lines.iterrows():
        k = position[line["bus2"]]
        p = position[line["bus1"]]
        ct = buses.at[line["bus2"], "connection_type"]
        z = line["z"]
        i = solution.currents[:, k]
        mags = np.abs(i)
        drops = np.abs(i * z)
        longitudinal = np.abs(solution.voltages[:, p]) - np.abs(solution.voltages[:, k])
        longitudinal = float(longitudinal[int(np.argmax(np.abs(longitudinal)))])

        if solution.balanced:
            losses = mags[0] ** 2 * z.real * ct.phases
            s = solution.voltages[0, p] * np.conj(i[0]) * ct.phases
            neutral = 0.0
        else:
            losses = float(np.sum(mags ** 2)) * z.real
            s = np.sum(solution.voltages[:, p] * np.conj(i))
            neutral = 0.0
            if voltage_system is VoltageSystem.TETRAPHASE_400V:
                neutral = float(phasors.neutral_current(*i))

        records[cable_id] = CableResult(
            cable=cables_by_id[cable_id],
            length_m=float(line["length_m"]),
            current_a=float(np.max(mags)),
            phase_currents_a=tuple(float(x) for x in mags),
            neutral_current_a=neutral,
            voltage_drop_v=float(np.max(drops)) * ct.line_scale,
            voltage_drop_percent=float(np.max(drops)) / v_slack * 100.0 if v_slack else 0.0,
            longitudinal_drop_v=longitudinal * ct.line_scale,
            losses_kw=float(losses) / 1000.0,
            apparent_power_kva=float(abs(s)) / 1000.0,
            active_power_kw=float(s.real) / 1000.0,
            reactive_power_kvar=float(s.imag) / 1000.0,
        )
    return records


def calculation_result(tree: RadialTree, buses: pd.DataFrame, lines: pd.DataFrame, cables_by_id: Dict,
                       solution: PhaseSolution, scenario: Scenario, config: ProjectConfig, reference: float,
                       v_slack: float, z_source: complex, state, overrides=None) -> CalculationResult:
    nodes = node_results(tree, buses, solution)
    cables = cable_results(buses, lines, cables_by_id, solution, v_slack, config.voltage_system)
    busbar = virtual_busbar.virtual_busbar(tree, buses, solution, nodes, v_slack, z_source, config.voltage_system)

    worst = max(nodes.values(), key=lambda record: abs(record.deviation_percent))
    logger.debug("worst node %s at %.2f%%", worst.node_id, worst.deviation_percent)
    # cables are reported in input order
    ordered = tuple(cables[c] for c in cables_by_id if c in cables)

    return CalculationResult(
        scenario=scenario,
        load_model=config.load_model,
        reference_voltage=reference,
        cables=ordered,
        nodes=tuple(nodes[node_id] for node_id in buses.index),
        total_loads_kva=float(buses["loads_kva"].sum()),
        total_productions_kva=float(buses["productions_kva"].sum()),
        global_losses_kw=float(sum(c.losses_kw for c in ordered)),
        max_voltage_drop_percent=abs(worst.deviation_percent),
        max_voltage_drop_circuit=worst.circuit,
        compliance=compliance_status(worst.deviation_percent),
        busbar=busbar,
        iterations=solution.iterations,
        converged=solution.converged,
        warnings=tuple(state.warnings),
        disconnected_nodes=tuple(tree.disconnected),
        overrides=tuple(sorted((overrides or {}).items(), key=lambda item: item[0])),
    )


# ----------------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------------

def node_table(result: CalculationResult) -> pd.DataFrame:
    rows = []
    for node in result.nodes:
        rows.append({
            "id": node.node_id,
            "connection": node.connection_type.value,
            "volt_A": round(node.service_voltages_v[0], 2),
            "volt_B": round(node.service_voltages_v[1], 2),
            "volt_C": round(node.service_voltages_v[2], 2),
            "deg_A": round(node.phase_angles_deg[0], 2),
            "deg_B": round(node.phase_angles_deg[1], 2),
            "deg_C": round(node.phase_angles_deg[2], 2),
            "deviation_pct": round(node.deviation_percent, 3),
            "delta_u_v": round(node.delta_u_v, 3),
            "delta_u_pct": round(node.delta_u_percent, 3),
            "compliance": node.compliance.value,
            "circuit": node.circuit,
        })
    return pd.DataFrame(rows)


def cable_table(result: CalculationResult) -> pd.DataFrame:
    rows = []
    for cable in result.cables:
        rows.append({
            "id": cable.cable.id,
            "from": cable.cable.node_a,
            "to": cable.cable.node_b,
            "length_m": round(cable.length_m, 1),
            "current_a": round(cable.current_a, 2),
            "current_n_a": round(cable.neutral_current_a, 2),
            "drop_v": round(cable.voltage_drop_v, 3),
            "drop_pct": round(cable.voltage_drop_percent, 3),
            "longitudinal_drop_v": round(cable.longitudinal_drop_v, 3),
            "losses_kw": round(cable.losses_kw, 4),
            "s_kva": round(cable.apparent_power_kva, 3),
            "p_kw": round(cable.active_power_kw, 3),
            "q_kvar": round(cable.reactive_power_kvar, 3),
        })
    return pd.DataFrame(rows)


def circuit_table(result: CalculationResult) -> pd.DataFrame:
    circuits = result.busbar.circuits if result.busbar is not None else ()
    return pd.DataFrame([asdict(c) for c in circuits])


def results(result: CalculationResult, display_summary: bool = False) -> Dict[str, pd.DataFrame]:
    """
    Tabular reports (nodes, cables, circuits) of a calculation result.
    Optionally prints a console summary.
    """
    tables = {
        "nodes": node_table(result),
        "cables": cable_table(result),
        "circuits": circuit_table(result),
    }

    if display_summary:
        mode = "balanced" if result.load_model is LoadModel.BALANCED else "phase-distributed"
        print(f"Scenario: {result.scenario.value} ({mode}), reference voltage {result.reference_voltage:.1f} V")
        print(f"Iterations: {result.iterations}, converged: {result.converged}")
        circuit = result.max_voltage_drop_circuit
        print(f"Maximum voltage deviation: {result.max_voltage_drop_percent:.2f} %"
              f"{f' on circuit {circuit}' if circuit is not None else ''} ({result.compliance.value})")
        print(f"Total Loads:  {result.total_loads_kva:.3f} kVA")
        print(f"Total Productions:  {result.total_productions_kva:.3f} kVA")
        print(f"Total Cable Losses:  {result.global_losses_kw:.3f} kW")
        busbar = result.busbar
        if busbar is not None:
            print(f"Busbar: {busbar.voltage_v:.1f} V, {busbar.current_a:.1f} A, I_N {busbar.current_n_a:.1f} A, "
                  f"net {busbar.net_s_kva:.2f} kVA, transformer drop {busbar.delta_u_v:.2f} V")
        for message in result.warnings:
            print(f"Warning: {message}")
        print()
    return tables


def summary_line(result: Optional[CalculationResult]) -> str:
    if result is None:
        return "no result"
    return (f"{result.scenario.value}: {result.max_voltage_drop_percent:.2f}% "
            f"{result.compliance.value}, losses {result.global_losses_kw:.3f} kW")
