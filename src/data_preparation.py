import logging
import math
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from network_data import (Cable, CableType, ConnectionType, LoadModel, Node, Phase, ProjectConfig,
                          Scenario, TransformerConfig, VoltageSystem)
import data_input
import topology_discovery

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0
DEFAULT_RESISTIVE_FRACTION = 0.05

# Manual phase split bounds (% of the node power on a single phase)
PHASE_SHARE_MIN = 13.33
PHASE_SHARE_MAX = 53.33


# ----------------------------------------------------------------------------
# Impedance model
# ----------------------------------------------------------------------------

def geodetic_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres (haversine)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def cable_length(cable: Cable) -> float:
    if cable.length_m is not None:
        return float(cable.length_m)
    points = cable.coordinates
    if len(points) < 2:
        return 0.0
    return sum(geodetic_distance(*points[k - 1], *points[k]) for k in range(1, len(points)))


def cable_impedance(cable_type: CableType, length_m: float) -> Tuple[complex, complex]:
    """Phase and neutral (homopolar) series impedances of a cable, in ohms."""
    km = length_m / 1000.0
    return complex(cable_type.r12, cable_type.x12) * km, complex(cable_type.r0, cable_type.x0) * km


def transformer_impedance(transformer: Optional[TransformerConfig]) -> complex:
    """
    Series impedance seen from the LV side.

    |Z| = ucc/100 * U^2 / S. With an X/R ratio R = |Z|/sqrt(1 + (X/R)^2) and
    X = R * X/R, otherwise R takes a 5% share of |Z|. No transformer means an
    ideal source.
    """
    if transformer is None:
        return 0j
    u = transformer.nominal_voltage
    z_abs = (transformer.short_circuit_percent / 100.0) * u * u / (transformer.rating_kva * 1000.0)
    if transformer.xr_ratio is not None and transformer.xr_ratio > 0:
        r = z_abs / math.sqrt(1.0 + transformer.xr_ratio ** 2)
        x = r * transformer.xr_ratio
    else:
        r = DEFAULT_RESISTIVE_FRACTION * z_abs
        x = math.sqrt(max(z_abs ** 2 - r ** 2, 0.0))
    return complex(r, x)


# ----------------------------------------------------------------------------
# Voltage references
# ----------------------------------------------------------------------------

def detect_network_type(transformer: Optional[TransformerConfig]) -> VoltageSystem:
    if transformer is None:
        return VoltageSystem.TETRAPHASE_400V
    if 380 <= transformer.nominal_voltage <= 420:
        return VoltageSystem.TETRAPHASE_400V
    if 220 <= transformer.nominal_voltage <= 240:
        return VoltageSystem.TRIPHASE_230V
    return VoltageSystem.TETRAPHASE_400V


def node_connection_type(node: Node, config: ProjectConfig) -> ConnectionType:
    if node.connection_type is not None:
        return node.connection_type
    if config.voltage_system is VoltageSystem.TRIPHASE_230V:
        if node.is_source or config.load_model is LoadModel.BALANCED:
            return ConnectionType.TRI_230V_3F
        return ConnectionType.MONO_230V_PP
    if node.is_source or config.load_model is LoadModel.BALANCED:
        return ConnectionType.TETRA_3P_N_230_400V
    return ConnectionType.MONO_230V_PN


def source_voltage_from_ht(config: ProjectConfig) -> Optional[float]:
    """LV source voltage implied by a measured HT level: U_LT_nom * U_HT_meas / U_HT_nom."""
    ht = config.ht_measurement
    if ht is None or ht.nominal_ht_voltage <= 0:
        return None
    return ht.nominal_lt_voltage * ht.measured_ht_voltage / ht.nominal_ht_voltage


def reference_voltage(source: Node, config: ProjectConfig) -> float:
    """Line voltage at the source: target, then HT measurement, then transformer, then system base."""
    if source.target_voltage:
        return float(source.target_voltage)
    from_ht = source_voltage_from_ht(config)
    if from_ht:
        return from_ht
    if config.transformer is not None and config.transformer.nominal_voltage:
        return float(config.transformer.nominal_voltage)
    return config.voltage_system.base_voltage


def slack_phase_voltage(source: Node, config: ProjectConfig) -> float:
    """Phase (star) voltage magnitude feeding the sweep."""
    ct = node_connection_type(source, config)
    u_ref = reference_voltage(source, config)
    return u_ref / ct.line_scale


# ----------------------------------------------------------------------------
# Scenario power aggregation
# ----------------------------------------------------------------------------

def phase_shares(config: ProjectConfig) -> Tuple[np.ndarray, np.ndarray]:
    """Fractions of node load and production carried by phases A, B, C."""
    if config.load_model is LoadModel.BALANCED:
        thirds = np.full(3, 1.0 / 3)
        return thirds, thirds.copy()
    if config.phase_split is not None:
        loads = np.array(config.phase_split.loads, dtype=float) / 100.0
        productions = np.array(config.phase_split.productions, dtype=float) / 100.0
        return loads, productions
    share_a = (1.0 / 3) * (1.0 + config.imbalance / 100.0)
    share_bc = (1.0 - share_a) / 2.0
    loads = np.array([share_a, share_bc, share_bc])
    return loads, loads.copy()


def manual_split_warnings(config: ProjectConfig):
    warnings = []
    if config.phase_split is None:
        return warnings
    for label, shares in (("load", config.phase_split.loads), ("production", config.phase_split.productions)):
        for phase, share in zip(Phase, shares):
            if not PHASE_SHARE_MIN <= share <= PHASE_SHARE_MAX:
                warnings.append(f"{label} share on phase {phase.name} ({share:.2f}%) is outside "
                                f"[{PHASE_SHARE_MIN}, {PHASE_SHARE_MAX}]%")
    return warnings


def _scenario_signs(scenario: Scenario) -> Tuple[int, int]:
    """Multipliers applied to (loads, productions)."""
    if scenario is Scenario.LOAD:
        return 1, 0
    if scenario is Scenario.PRODUCTION:
        return 0, -1
    return 1, -1


def node_power(node: Node, scenario: Scenario, config: ProjectConfig) -> Dict[str, object]:
    """
    Signed complex power of one node for a scenario.

    Returns a dict with the diversified ``loads_kva``/``productions_kva`` totals,
    the per-phase complex power ``phases`` (VA, shape 3, load positive) and the
    network-total ``total`` (VA).
    """
    load_sign, production_sign = _scenario_signs(scenario)
    cos_phi = config.power_factor
    sin_phi = math.sqrt(max(1.0 - cos_phi ** 2, 0.0))

    # totals only count what the scenario applies
    loads_kva = (sum(e.s_kva for e in node.loads if not e.has_override)
                 * config.load_diversity / 100.0 * abs(load_sign))
    productions_kva = (sum(e.s_kva for e in node.productions if not e.has_override)
                       * config.production_diversity / 100.0 * abs(production_sign))

    s_load = loads_kva * 1000.0 * complex(cos_phi, sin_phi) * load_sign
    s_production = productions_kva * 1000.0 * production_sign  # injected at unity power factor
    load_shares, production_shares = phase_shares(config)
    phases = s_load * load_shares + s_production * production_shares

    # Explicit P/Q overrides on top of the diversified totals
    for entries, sign in ((node.loads, load_sign), (node.productions, production_sign)):
        for entry in entries:
            if not entry.has_override or sign == 0:
                continue
            s_entry = sign * 1000.0 * complex(entry.p_kw or 0.0, entry.q_kvar or 0.0)
            if entry.phase is not None and config.load_model is LoadModel.PHASE_DISTRIBUTED:
                phases[entry.phase.value] += s_entry
            else:
                phases += s_entry / 3.0
            if entries is node.loads:
                loads_kva += abs(s_entry) / 1000.0
            else:
                productions_kva += abs(s_entry) / 1000.0

    return {
        "loads_kva": loads_kva,
        "productions_kva": productions_kva,
        "phases": phases.astype(complex),
        "total": complex(phases.sum()),
    }


# ----------------------------------------------------------------------------
# Working tables
# ----------------------------------------------------------------------------

def working_lines(tree: topology_discovery.RadialTree, cables: Sequence[Cable],
                  cable_types: Sequence[CableType]) -> pd.DataFrame:
    """One row per connected cable, oriented parent (bus1) -> child (bus2)."""
    types = data_input.index_cable_types(cable_types)
    by_id = {cable.id: cable for cable in cables}
    rows = []
    for node_id in tree.order[1:]:
        cable = by_id[tree.parent_cable[node_id]]
        length = cable_length(cable)
        z, z0 = cable_impedance(types[cable.cable_type_id], length)
        rows.append({
            "id": cable.id,
            "bus1": tree.parent[node_id],
            "bus2": node_id,
            "config": cable.cable_type_id,
            "length_m": length,
            "z": z,
            "z0": z0,
        })
    return pd.DataFrame(rows, columns=["id", "bus1", "bus2", "config", "length_m", "z", "z0"]).set_index("id")


def working_buses(tree: topology_discovery.RadialTree, nodes: Sequence[Node], scenario: Scenario,
                  config: ProjectConfig) -> pd.DataFrame:
    """
    One row per connected node in breadth-first order with its connection type
    and the per-phase power used by the sweep.

    In balanced mode the sweep power is a third of the node power for
    three-phase connections and the full node power for single-phase ones.
    """
    by_id = {node.id: node for node in nodes}
    rows = []
    for number, node_id in enumerate(tree.order):
        node = by_id[node_id]
        ct = node_connection_type(node, config)
        power = node_power(node, scenario, config)
        sweep_power = power["phases"]
        if config.load_model is LoadModel.BALANCED and not ct.is_three_phase:
            sweep_power = np.full(3, power["total"])
        rows.append({
            "id": node_id,
            "number": number,
            "parent": tree.parent[node_id],
            "cable": tree.parent_cable[node_id],
            "connection_type": ct,
            "loads_kva": power["loads_kva"],
            "productions_kva": power["productions_kva"],
            "s_total": power["total"],
            "s_ph1": complex(sweep_power[0]),
            "s_ph2": complex(sweep_power[1]),
            "s_ph3": complex(sweep_power[2]),
        })
    return pd.DataFrame(rows).set_index("id")


def data_preparation(tree: topology_discovery.RadialTree, nodes: Sequence[Node], cables: Sequence[Cable],
                     cable_types: Sequence[CableType], scenario: Scenario,
                     config: ProjectConfig, state=None) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Prepares the working bus and line tables of one scenario.

    Returns:
      - buses: DataFrame indexed by node id (breadth-first order)
      - lines: DataFrame indexed by cable id
    """
    if state is not None and config.load_model is LoadModel.PHASE_DISTRIBUTED:
        for message in manual_split_warnings(config):
            state.warn(message)
    buses = working_buses(tree, nodes, scenario, config)
    lines = working_lines(tree, cables, cable_types)
    logger.debug("prepared %d buses and %d lines for scenario %s", len(buses), len(lines), scenario.value)
    return buses, lines


def downstream_powers(nodes: Sequence[Node], cables: Sequence[Cable], node_id: str,
                      scenario: Scenario, config: ProjectConfig) -> Tuple[float, float]:
    """Diversified load and production (kVA) fed through ``node_id`` in a scenario."""
    tree = topology_discovery.gridtopology(nodes, cables)
    if node_id not in tree.parent:
        return 0.0, 0.0
    by_id = {node.id: node for node in nodes}
    load = production = 0.0
    for member in tree.subtree(node_id):
        power = node_power(by_id[member], Scenario.MIXED, config)
        load += power["loads_kva"]
        production += power["productions_kva"]
    if scenario is Scenario.LOAD:
        production = 0.0
    elif scenario is Scenario.PRODUCTION:
        load = 0.0
    return load, production
