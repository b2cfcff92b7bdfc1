"""Switched five-step voltage regulator (SRG2 type) and its re-solve loop.

The regulator reads the voltage arriving at its node, picks one position per
phase among BO2, BO1, BYP, LO1, LO2 and imposes the stepped output voltage on
the node. Switching uses a symmetric hysteresis band around each boundary: a
move across boundary ``b`` needs ``v > b + h`` going up or ``v < b - h`` going
down, so a reading sitting on the edge of a band keeps the previous position.

The input-voltage ceiling (246 V plus hysteresis) sits below the 400 V LO2
threshold, so an applied SRG2-400 never reaches LO2 and only reaches LO1
between 244 and 248 V.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from network_data import (SQRT3, Cable, CableType, CalculationResult, Node, OverrideKind, ProjectConfig, Scenario,
                          VoltageOverride, VoltageSystem)
from solve_state import SolveState
import data_preparation
import power_flow

logger = logging.getLogger(__name__)

MAX_REGULATION_ITERATIONS = 3
CONVERGENCE_VOLTAGE = 2.0  # V, change of the average regulated voltage


class RegulatorState(Enum):
    BO2 = -2
    BO1 = -1
    BYP = 0
    LO1 = 1
    LO2 = 2


@dataclass(frozen=True)
class RegulatorType:
    name: str
    # boundaries BO2|BO1, BO1|BYP, BYP|LO1, LO1|LO2 (V)
    boundaries: Tuple[float, float, float, float]
    # output ratio per position
    ratios: Dict[RegulatorState, float]
    hysteresis: float = 2.0
    max_input_voltage: float = 246.0


SRG2_400 = RegulatorType(
    name="SRG2-400",
    boundaries=(214.0, 224.0, 242.0, 250.0),
    ratios={RegulatorState.BO2: 1.07, RegulatorState.BO1: 1.035, RegulatorState.BYP: 1.0,
            RegulatorState.LO1: 0.965, RegulatorState.LO2: 0.93},
)

SRG2_230 = RegulatorType(
    name="SRG2-230",
    boundaries=(216.0, 223.0, 237.0, 244.0),
    ratios={RegulatorState.BO2: 1.06, RegulatorState.BO1: 1.03, RegulatorState.BYP: 1.0,
            RegulatorState.LO1: 0.97, RegulatorState.LO2: 0.94},
)


@dataclass(frozen=True)
class RegulatorConfig:
    node_id: str
    regulator_type: Optional[RegulatorType] = None  # None: chosen from the voltage system
    enabled: bool = True
    max_load_kva: float = 100.0
    max_injection_kva: float = 85.0
    name: str = ""


@dataclass(frozen=True)
class RegulationResult:
    node_id: str
    regulator_type: str
    applied: bool
    states: Tuple[RegulatorState, ...] = ()
    ratios: Tuple[float, ...] = ()
    input_voltages_v: Tuple[float, ...] = ()
    output_voltages_v: Tuple[float, ...] = ()
    downstream_load_kva: float = 0.0
    downstream_injection_kva: float = 0.0
    iterations: int = 0
    reason: str = ""


def regulator_type_for(voltage_system: VoltageSystem) -> RegulatorType:
    return SRG2_230 if voltage_system is VoltageSystem.TRIPHASE_230V else SRG2_400


def next_state(voltage: float, previous: RegulatorState = RegulatorState.BYP,
               regulator_type: RegulatorType = SRG2_400) -> RegulatorState:
    level = previous.value
    h = regulator_type.hysteresis
    # boundary between level and level + 1 is boundaries[level + 2]
    while level < 2 and voltage > regulator_type.boundaries[level + 2] + h:
        level += 1
    while level > -2 and voltage < regulator_type.boundaries[level + 1] - h:
        level -= 1
    return RegulatorState(level)


def regulate(voltages: Sequence[float], previous: Optional[Sequence[RegulatorState]] = None,
             regulator_type: RegulatorType = SRG2_400) -> Tuple[Tuple[RegulatorState, ...], Tuple[float, ...]]:
    """Position and ratio of each phase for the given input readings."""
    previous = previous or [RegulatorState.BYP] * len(voltages)
    states = tuple(next_state(v, p, regulator_type) for v, p in zip(voltages, previous))
    return states, tuple(regulator_type.ratios[s] for s in states)


def _reading_scale(voltage_system: VoltageSystem) -> float:
    # 400 V networks read phase-neutral, 230 V networks phase-phase
    return SQRT3 if voltage_system is VoltageSystem.TRIPHASE_230V else 1.0


def apply_voltage_regulators(nodes: Sequence[Node], cables: Sequence[Cable], cable_types: Sequence[CableType],
                             scenario: Scenario, config: ProjectConfig, regulators: Sequence[RegulatorConfig], *,
                             max_regulation_iterations: int = MAX_REGULATION_ITERATIONS,
                             convergence_voltage: float = CONVERGENCE_VOLTAGE,
                             **solve_kwargs) -> CalculationResult:
    """
    Solves the network, then repeatedly sets each enabled regulator's position
    from the voltage arriving at its node and re-solves with the regulated
    voltages pinned. Stops after ``max_regulation_iterations`` re-solves or when
    every regulated average voltage moved less than ``convergence_voltage``.

    Regulators whose downstream load or injection exceeds their rating, or whose
    input voltage is above the safety ceiling, are skipped with a warning.
    """
    state = SolveState(scenario=scenario)
    result = power_flow.solve(nodes, cables, cable_types, scenario, config, state=state, **solve_kwargs)

    scale = _reading_scale(config.voltage_system)
    reports: Dict[str, RegulationResult] = {}
    active: List[Tuple[RegulatorConfig, RegulatorType]] = []

    # 1. Gates, checked on the unregulated solve
    for regulator in regulators:
        if not regulator.enabled:
            continue
        regulator_type = regulator.regulator_type or regulator_type_for(config.voltage_system)
        node = result.node(regulator.node_id)
        if node is None:
            state.warn(f"regulator on {regulator.node_id} skipped, node is not connected to the source")
            reports[regulator.node_id] = RegulationResult(regulator.node_id, regulator_type.name, False,
                                                          reason="not connected")
            continue
        load, injection = data_preparation.downstream_powers(nodes, cables, regulator.node_id, scenario, config)
        readings = tuple(v * scale for v in node.phase_voltages_v)
        ceiling = regulator_type.max_input_voltage + regulator_type.hysteresis
        reason = ""
        if node.node_id == result.nodes[0].node_id:
            reason = "a regulator cannot sit on the source node"
        elif load > regulator.max_load_kva:
            reason = f"downstream load {load:.1f} kVA > {regulator.max_load_kva:.0f} kVA"
        elif injection > regulator.max_injection_kva:
            reason = f"downstream injection {injection:.1f} kVA > {regulator.max_injection_kva:.0f} kVA"
        elif max(readings) > ceiling:
            reason = f"max voltage {max(readings):.1f}V > {ceiling:.0f}V"
        if reason:
            state.warn(f"regulator on {regulator.node_id} skipped, {reason}")
            reports[regulator.node_id] = RegulationResult(
                regulator.node_id, regulator_type.name, False, input_voltages_v=readings,
                downstream_load_kva=load, downstream_injection_kva=injection, reason=reason)
            continue
        active.append((regulator, regulator_type))

    # 2. Bounded re-solve loop
    overrides: Dict[str, VoltageOverride] = {}
    for iteration in range(1, max_regulation_iterations + 1):
        state.outer_iteration = iteration
        moved = 0.0
        for regulator, regulator_type in active:
            node = result.node(regulator.node_id)
            arriving = node.input_phase_voltages_v or node.phase_voltages_v
            readings = tuple(v * scale for v in arriving)
            previous = [RegulatorState[state.regulator_states.get((regulator.node_id, ph), "BYP")]
                        for ph in range(3)]
            states, ratios = regulate(readings, previous, regulator_type)
            for ph, position in enumerate(states):
                state.regulator_states[(regulator.node_id, ph)] = position.name
            outputs = tuple(v * r for v, r in zip(readings, ratios))
            overrides[regulator.node_id] = VoltageOverride(
                kind=OverrideKind.REGULATOR,
                phase_voltages=tuple(v / scale for v in outputs),
                label="/".join(position.name for position in states),
            )
            average = sum(outputs) / 3
            if regulator.node_id in state.previous_voltages:
                moved = max(moved, abs(average - state.previous_voltages[regulator.node_id]))
            else:
                moved = max(moved, abs(average - sum(readings) / 3))
            state.previous_voltages[regulator.node_id] = average
            load, injection = data_preparation.downstream_powers(nodes, cables, regulator.node_id, scenario, config)
            reports[regulator.node_id] = RegulationResult(
                regulator.node_id, regulator_type.name, True, states=states, ratios=ratios,
                input_voltages_v=readings, output_voltages_v=outputs, downstream_load_kva=load,
                downstream_injection_kva=injection, iterations=iteration)

        if not active:
            break
        result = power_flow.solve(nodes, cables, cable_types, scenario, config, overrides=overrides,
                                  state=state, **solve_kwargs)
        logger.debug("regulation iteration %d, largest move %.3f V", iteration, moved)
        if moved < convergence_voltage:
            break
    else:
        state.warn(f"voltage regulation stopped after {max_regulation_iterations} iterations")

    ordered = tuple(reports[r.node_id] for r in regulators if r.node_id in reports)
    return replace(result, regulators=ordered, warnings=tuple(state.warnings))
