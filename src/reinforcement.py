from dataclasses import dataclass
from typing import List, Sequence

from network_data import CableType, CalculationResult
import data_input

VOLTAGE_DROP_THRESHOLD = 8.0  # %


@dataclass(frozen=True)
class CableUpgrade:
    cable_id: str
    current_type_id: str
    proposed_type_id: str
    drop_before_percent: float
    drop_after_percent: float  # estimate, scaled by the R12 ratio
    resistance_reduction_percent: float


def propose_cable_upgrades(result: CalculationResult, cable_types: Sequence[CableType],
                           threshold_percent: float = VOLTAGE_DROP_THRESHOLD) -> List[CableUpgrade]:
    """
    Suggests a lower-resistance cable for every cable feeding a node whose
    cumulative voltage drop exceeds ``threshold_percent``. The candidate keeps
    the same material and must be allowed for the cable's installation mode;
    the lowest R12 wins.
    """
    types = data_input.index_cable_types(cable_types)
    drops = {node.node_id: abs(node.delta_u_percent) for node in result.nodes}
    upgrades = []
    for cable_result in result.cables:
        cable = cable_result.cable
        drop = max(drops.get(cable.node_a, 0.0), drops.get(cable.node_b, 0.0))
        if drop <= threshold_percent:
            continue
        current = types.get(cable.cable_type_id)
        if current is None:
            continue
        candidates = sorted(
            (ct for ct in cable_types
             if ct.material == current.material
             and cable.installation in ct.installations
             and ct.r12 < current.r12),
            key=lambda ct: ct.r12,
        )
        if not candidates:
            continue
        best = candidates[0]
        upgrades.append(CableUpgrade(
            cable_id=cable.id,
            current_type_id=current.id,
            proposed_type_id=best.id,
            drop_before_percent=drop,
            drop_after_percent=drop * best.r12 / current.r12,
            resistance_reduction_percent=(current.r12 - best.r12) / current.r12 * 100.0,
        ))
    return upgrades
