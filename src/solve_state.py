import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from network_data import Scenario

logger = logging.getLogger(__name__)


@dataclass
class SolveState:
    """Mutable bookkeeping owned by a single top-level call.

    A fresh instance is created by every ``solve``/``apply_*`` call and is never
    stored at module level, so scenario calculations can run side by side.
    """
    scenario: Optional[Scenario] = None

    # Iteration counters
    outer_iteration: int = 0  # regulation re-solve loop
    inner_iteration: int = 0  # sweep iterations of the latest solve (worst phase)
    converged: bool = True

    # Regulation bookkeeping
    previous_voltages: Dict[str, float] = field(default_factory=dict)  # node id -> average regulated voltage
    regulator_states: Dict[Tuple[str, int], str] = field(default_factory=dict)  # (node id, phase) -> state name

    # Recoverable problems, in the order they were raised
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str):
        logger.warning(message)
        if message not in self.warnings:
            self.warnings.append(message)
