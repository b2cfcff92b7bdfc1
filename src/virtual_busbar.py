from typing import Dict

import numpy as np
import pandas as pd

from network_data import SQRT3, CircuitSummary, NodeResult, VirtualBusbar, VoltageSystem
import phasors
from sweep_procedures import PhaseSolution
from topology_discovery import RadialTree, subtree_power


def signed_kva(s: complex) -> float:
    """|S| in kVA, negative when the net active power is injected."""
    magnitude = abs(s) / 1000.0
    return -magnitude if s.real < 0 else magnitude


def virtual_busbar(tree: RadialTree, buses: pd.DataFrame, solution: PhaseSolution, node_results: Dict[str, NodeResult],
                   v_slack: float, z_source: complex, voltage_system: VoltageSystem) -> VirtualBusbar:
    """
    Electrical state at the transformer LV terminal, split per outgoing feeder.

    Feeder powers are the aggregated (diversified) subtree powers; the
    transformer drop is shared between feeders in proportion to their net power.
    """
    source_ct = buses.at[tree.source_id, "connection_type"]
    scale = source_ct.line_scale
    v_bus = solution.voltages[:, 0]
    i_bus = solution.currents[:, 0]

    voltage = float(np.mean(np.abs(v_bus))) * scale
    delta_u = (v_slack - float(np.mean(np.abs(v_bus)))) * scale
    delta_u_percent = delta_u / (v_slack * scale) * 100.0 if v_slack else 0.0
    losses_kw = float(np.sum(np.abs(i_bus) ** 2)) * z_source.real / 1000.0

    current_n = 0.0
    if voltage_system is VoltageSystem.TETRAPHASE_400V and not solution.balanced:
        current_n = float(phasors.neutral_current(*i_bus))

    totals = subtree_power(tree, buses["s_total"].to_dict())
    net_total = signed_kva(totals[tree.source_id])

    circuits = []
    for number, cable_id in enumerate(tree.feeders, start=1):
        head = next(node for node in tree.children[tree.source_id] if tree.parent_cable[node] == cable_id)
        s_circuit = totals[head]
        net = signed_kva(s_circuit)
        share = delta_u * net / net_total if net_total else 0.0
        readings = [v for node_id in tree.subtree(head) for v in node_results[node_id].service_voltages_v]
        circuits.append(CircuitSummary(
            number=number,
            cable_id=cable_id,
            head_node_id=head,
            subtree_s_kva=net,
            subtree_q_kvar=s_circuit.imag / 1000.0,
            direction="injection" if s_circuit.real < 0 else "draw",
            current_a=abs(s_circuit) / (SQRT3 * voltage) if voltage else 0.0,
            delta_u_share_v=share,
            min_voltage_v=min(readings),
            max_voltage_v=max(readings),
        ))

    return VirtualBusbar(
        voltage_v=voltage,
        current_a=float(np.max(np.abs(i_bus))),
        current_n_a=current_n,
        net_s_kva=net_total,
        delta_u_v=delta_u,
        delta_u_percent=delta_u_percent,
        losses_kw=losses_kw,
        circuits=tuple(circuits),
    )

