"""EQUI8 neutral compensator.

The compensator sits on a three-phase-plus-neutral node and pulls the three
phase voltages toward their mean. Its effect follows the vendor's empirical
curve fit, characterised for phase and neutral path impedances above 0.15 ohm.
"""
import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from network_data import (Cable, CableType, CalculationResult, Node, OverrideKind, ProjectConfig, Scenario,
                          VoltageOverride, VoltageSystem)
from solve_state import SolveState
import data_input
import data_preparation
import power_flow
import topology_discovery

logger = logging.getLogger(__name__)

MIN_VALID_IMPEDANCE = 0.15  # ohm


class CompensationMode(Enum):
    ADVISORY = "advisory"
    INTEGRATED = "integrated"


class CompensationStatus(Enum):
    ADVISORY = "advisory"
    APPLIED = "applied"
    BALANCED = "balanced"
    LIMITED = "limited"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Equi8Result:
    u_initial: Tuple[float, float, float]
    u_mean: float
    du_initial: float
    du_equi8: float
    ratios: Tuple[float, float, float]
    u_equi8: Tuple[float, float, float]
    i_neutral_a: float
    reduction_percent: float
    zph: float
    zn: float
    warning: Optional[str] = None

    @property
    def in_validity_domain(self) -> bool:
        return self.warning is None


@dataclass(frozen=True)
class CompensatorConfig:
    node_id: str
    max_power_kva: float = 44.0
    mode: CompensationMode = CompensationMode.ADVISORY
    zph_ohm: Optional[float] = None  # None: path impedance from the source
    zn_ohm: Optional[float] = None
    enabled: bool = True


@dataclass(frozen=True)
class CompensationResult:
    node_id: str
    status: CompensationStatus
    equi8: Optional[Equi8Result] = None
    overloaded: bool = False
    downstream_load_kva: float = 0.0
    reason: str = ""


def equi8_correction(voltages: Sequence[float], zph: float, zn: float) -> Equi8Result:
    """
    Corrected phase voltages and neutral current of an EQUI8 compensator.

    Parameters:
      - voltages: initial phase-neutral voltages (V)
      - zph: phase path impedance (ohm), > 0
      - zn: neutral path impedance (ohm), > 0

    Raises:
      - ValueError for non-positive impedances
    """
    if zph <= 0 or zn <= 0:
        raise ValueError(f"EQUI8 needs positive impedances, got Zph={zph}, Zn={zn}")
    u = tuple(float(v) for v in voltages)
    u_mean = sum(u) / 3
    du_initial = max(u) - min(u)
    impedance_term = 2 * zph / (zph + zn)
    # the curve fit is only characterised down to MIN_VALID_IMPEDANCE
    z_fit = max(zph, MIN_VALID_IMPEDANCE)

    du_equi8 = du_initial * impedance_term / (0.9119 * math.log(z_fit) + 3.8654)
    du_equi8 = min(max(du_equi8, 0.0), du_initial)
    if du_initial > 0:
        ratios = tuple((v - u_mean) / du_initial for v in u)
    else:
        ratios = (0.0, 0.0, 0.0)
    u_equi8 = tuple(u_mean + r * du_equi8 for r in ratios)
    i_neutral = 0.392 * z_fit ** -0.8065 * du_initial * impedance_term
    reduction = (1 - du_equi8 / du_initial) * 100 if du_initial > 0 else 0.0

    warning = None
    if zph <= MIN_VALID_IMPEDANCE or zn <= MIN_VALID_IMPEDANCE:
        warning = (f"EQUI8 impedances Zph={zph:.3f} ohm, Zn={zn:.3f} ohm are outside the validity "
                   f"domain (> {MIN_VALID_IMPEDANCE} ohm), results are indicative")

    return Equi8Result(u_initial=u, u_mean=u_mean, du_initial=du_initial, du_equi8=du_equi8, ratios=ratios,
                       u_equi8=u_equi8, i_neutral_a=i_neutral, reduction_percent=reduction, zph=zph, zn=zn,
                       warning=warning)


def path_impedances(nodes: Sequence[Node], cables: Sequence[Cable], cable_types: Sequence[CableType],
                    node_id: str) -> Tuple[float, float]:
    """Sum of |Z12| and |Z0| of the cables between the source and ``node_id``."""
    tree = topology_discovery.gridtopology(nodes, cables)
    types = data_input.index_cable_types(cable_types)
    by_id = {cable.id: cable for cable in cables}
    zph = zn = 0.0
    for cable_id in tree.path_cables(node_id):
        cable = by_id[cable_id]
        z, z0 = data_preparation.cable_impedance(types[cable.cable_type_id], data_preparation.cable_length(cable))
        zph += abs(z)
        zn += abs(z0)
    return zph, zn


def apply_neutral_compensation(nodes: Sequence[Node], cables: Sequence[Cable], cable_types: Sequence[CableType],
                               scenario: Scenario, config: ProjectConfig, compensators: Sequence[CompensatorConfig],
                               *, base_result: Optional[CalculationResult] = None,
                               **solve_kwargs) -> CalculationResult:
    """
    Attaches an EQUI8 correction to each enabled compensator node.

    Advisory compensators leave the solved voltages untouched. Integrated ones
    pin the corrected voltages at their node and the network is solved again,
    so downstream nodes follow approximately. Compensators whose downstream
    load exceeds their rating are reported as limited and not applied.
    """
    state = SolveState(scenario=scenario)
    result = base_result or power_flow.solve(nodes, cables, cable_types, scenario, config, state=state,
                                             **solve_kwargs)
    for message in result.warnings:
        state.warn(message)

    reports: Dict[str, CompensationResult] = {}
    overrides: Dict[str, VoltageOverride] = {}
    for compensator in compensators:
        if not compensator.enabled:
            continue
        node_id = compensator.node_id
        node = result.node(node_id)
        reason = ""
        if config.voltage_system is not VoltageSystem.TETRAPHASE_400V:
            reason = "EQUI8 needs a three-phase-plus-neutral network"
        elif node is None:
            reason = "node is not connected to the source"
        if reason:
            state.warn(f"compensator on {node_id} skipped, {reason}")
            reports[node_id] = CompensationResult(node_id, CompensationStatus.SKIPPED, reason=reason)
            continue

        load, _ = data_preparation.downstream_powers(nodes, cables, node_id, scenario, config)
        if load > compensator.max_power_kva:
            reason = f"downstream load {load:.1f} kVA > {compensator.max_power_kva:.0f} kVA"
            state.warn(f"compensator on {node_id} limited, {reason}")
            reports[node_id] = CompensationResult(node_id, CompensationStatus.LIMITED, overloaded=True,
                                                  downstream_load_kva=load, reason=reason)
            continue

        zph, zn = path_impedances(nodes, cables, cable_types, node_id)
        zph = compensator.zph_ohm if compensator.zph_ohm is not None else zph
        zn = compensator.zn_ohm if compensator.zn_ohm is not None else zn
        if zph <= 0 or zn <= 0:
            reason = "no impedance between the source and the node"
            state.warn(f"compensator on {node_id} skipped, {reason}")
            reports[node_id] = CompensationResult(node_id, CompensationStatus.SKIPPED,
                                                  downstream_load_kva=load, reason=reason)
            continue

        equi8 = equi8_correction(node.phase_voltages_v, zph, zn)
        if equi8.warning:
            state.warn(f"compensator on {node_id}: {equi8.warning}")
        if equi8.du_initial == 0:
            status = CompensationStatus.BALANCED
        elif compensator.mode is CompensationMode.INTEGRATED:
            status = CompensationStatus.APPLIED
            overrides[node_id] = VoltageOverride(kind=OverrideKind.COMPENSATOR, phase_voltages=equi8.u_equi8,
                                                 label="EQUI8")
        else:
            status = CompensationStatus.ADVISORY
        reports[node_id] = CompensationResult(node_id, status, equi8=equi8, downstream_load_kva=load)
        logger.debug("compensator on %s: %s, spread %.2f V -> %.2f V", node_id, status.value, equi8.du_initial,
                     equi8.du_equi8)

    regulators = result.regulators
    if overrides:
        merged = dict(result.overrides)
        merged.update(overrides)
        result = power_flow.solve(nodes, cables, cable_types, scenario, config, overrides=merged, state=state,
                                  **solve_kwargs)

    ordered = tuple(reports[c.node_id] for c in compensators if c.node_id in reports)
    return replace(result, regulators=regulators, compensators=ordered, warnings=tuple(state.warnings))
