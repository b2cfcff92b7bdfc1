import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Mapping, Optional, Sequence

from network_data import (Cable, CableType, CalculationResult, LoadModel, Node, ProjectConfig, Scenario,
                          VoltageOverride)
from solve_state import SolveState
import data_input
import topology_discovery
import data_preparation
import sweep_procedures
import print_results

logger = logging.getLogger(__name__)


def solve(nodes: Sequence[Node], cables: Sequence[Cable], cable_types: Sequence[CableType],
          scenario: Scenario = Scenario.MIXED, config: Optional[ProjectConfig] = None, *,
          overrides: Optional[Mapping[str, VoltageOverride]] = None,
          tolerance: float = sweep_procedures.TOLERANCE, max_iterations: int = sweep_procedures.MAX_ITERATIONS,
          display_summary: bool = False, verbose: int = 0, state: Optional[SolveState] = None) -> CalculationResult:
    """
    Steady-state voltages, currents, losses and compliance of a radial LV
    network for one scenario.

    ``overrides`` is a side table of pinned voltages keyed by node id (regulator
    outputs, integrated compensators). Inputs are never modified; every call
    returns a new result.

    Raises:
      - NetworkValidationError when the input is not computable
    """
    config = config or ProjectConfig()
    state = state or SolveState()
    state.scenario = scenario

    # 1. Validation
    source = data_input.validate_network(nodes, cables, cable_types, config)

    # 2. Topology discovery
    tree = topology_discovery.gridtopology(nodes, cables, state)
    if tree.disconnected:
        state.warn(f"{len(tree.disconnected)} node(s) not connected to the source are left out: "
                   f"{', '.join(tree.disconnected)}")

    # 3. Data preparation (impedances and scenario powers)
    buses, lines = data_preparation.data_preparation(tree, nodes, cables, cable_types, scenario, config, state)
    reference = data_preparation.reference_voltage(source, config)
    v_slack = data_preparation.slack_phase_voltage(source, config)
    z_source = data_preparation.transformer_impedance(config.transformer)

    # 4. Backward/forward sweep
    pinned = {node_id: override.phase_voltages for node_id, override in (overrides or {}).items()}
    solution = sweep_procedures.solve_phases(buses, lines, v_slack, z_source,
                                             balanced=config.load_model is LoadModel.BALANCED,
                                             pinned=pinned, tolerance=tolerance, max_iterations=max_iterations,
                                             state=state)

    # 5. Results
    cables_by_id = {cable.id: cable for cable in cables}
    result = print_results.calculation_result(tree, buses, lines, cables_by_id, solution, scenario, config,
                                              reference, v_slack, z_source, state, overrides)
    logger.debug("scenario %s solved in %d iterations, worst deviation %.2f%%", scenario.value,
                 result.iterations, result.max_voltage_drop_percent)
    if verbose != 0:
        print(f"Execution finished, {solution.iterations} sweep iterations, {tolerance} tolerance")
    if display_summary:
        print_results.results(result, display_summary=True)
    return result


def solve_all_scenarios(nodes: Sequence[Node], cables: Sequence[Cable], cable_types: Sequence[CableType],
                        config: Optional[ProjectConfig] = None, scenarios: Sequence[Scenario] = tuple(Scenario),
                        max_workers: Optional[int] = None, verbose: int = 0,
                        **kwargs) -> Dict[Scenario, CalculationResult]:
    """
    Runs independent scenario calculations side by side. Each call owns its
    own solve state; inputs are shared read-only.
    """
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {scenario: pool.submit(solve, nodes, cables, cable_types, scenario, config, **kwargs)
                   for scenario in scenarios}
        results = {scenario: future.result() for scenario, future in futures.items()}
    if verbose != 0:
        for result in results.values():
            print(print_results.summary_line(result))
    return results
