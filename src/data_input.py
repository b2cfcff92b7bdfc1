import logging
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from network_data import Cable, CableType, InstallationMode, Node, ProjectConfig

logger = logging.getLogger(__name__)

CABLE_TYPE_COLUMNS = ["id", "label", "r12", "x12", "r0", "x0", "material", "installations"]

# Default catalogue (ohm/km)
DEFAULT_CABLE_TYPES = pd.DataFrame(
    [
        ["cu-10", "Cuivre 10", 1.83, 0.09, 5.49, 0.27, "copper", "aerial"],
        ["cu-16", "Cuivre 16", 1.15, 0.09, 3.45, 0.27, "copper", "aerial"],
        ["cu-25", "Cuivre 25", 0.727, 0.08, 2.18, 0.24, "copper", "aerial"],
        ["cu-4x35", "Cuivre 4x35", 0.524, 0.08, 1.57, 0.24, "copper", "aerial"],
        ["cu-50", "Cuivre 50", 0.387, 0.08, 1.16, 0.24, "copper", "aerial"],
        ["cu-70", "Cuivre 70", 0.268, 0.07, 0.80, 0.21, "copper", "aerial"],
        ["baxb-70", "BAXB 70", 0.519, 0.11, 2.515, 0.257, "aluminium", "aerial"],
        ["baxb-95", "BAXB 95", 0.383, 0.104, 2.379, 0.263, "aluminium", "aerial"],
        ["baxb-150", "BAXB 150", 0.244, 0.098, 1.805, 0.258, "aluminium", "aerial"],
        ["eaxecwb-4x150", "EAXeCWB 4x150", 0.242, 0.069, 0.972, 0.273, "aluminium", "underground"],
    ],
    columns=CABLE_TYPE_COLUMNS,
)


class NetworkValidationError(ValueError):
    """Raised before any computation when the input violates a hard constraint.

    ``constraint`` is a stable identifier of the violated rule, e.g.
    ``single_source`` or ``diversity_range``.
    """

    def __init__(self, constraint: str, message: str):
        super().__init__(message)
        self.constraint = constraint


class TopologyError(NetworkValidationError):
    pass


def cable_types_from_frame(frame: pd.DataFrame) -> List[CableType]:
    """
    Converts a cable catalogue table into CableType records.

    The ``installations`` column holds installation modes separated by ``|``.
    """
    missing = [col for col in CABLE_TYPE_COLUMNS[:6] if col not in frame.columns]
    if missing:
        raise NetworkValidationError("cable_catalogue", f"check for column names in cable catalogue, missing {missing}")
    if frame["id"].duplicated().any():
        raise NetworkValidationError("cable_catalogue", "check for duplicated ids in cable catalogue")

    cable_types = []
    for _, row in frame.iterrows():
        installations = tuple(InstallationMode(mode.strip())
                              for mode in str(row.get("installations", "aerial|underground")).split("|"))
        max_current = row.get("max_current_a")
        cable_types.append(CableType(
            id=str(row["id"]),
            label=str(row.get("label", row["id"])),
            r12=float(row["r12"]), x12=float(row["x12"]),
            r0=float(row["r0"]), x0=float(row["x0"]),
            material=str(row.get("material", "aluminium")),
            installations=installations,
            max_current_a=None if pd.isna(max_current) else float(max_current),
        ))
    return cable_types


def default_cable_types() -> List[CableType]:
    return cable_types_from_frame(DEFAULT_CABLE_TYPES)


def index_cable_types(cable_types: Iterable[CableType]) -> Dict[str, CableType]:
    return {ct.id: ct for ct in cable_types}


def find_source(nodes: Sequence[Node]) -> Node:
    sources = [node for node in nodes if node.is_source]
    if len(sources) != 1:
        raise NetworkValidationError(
            "single_source", f"network must have exactly one source node, found {len(sources)}")
    return sources[0]


def _check_range(value: float, low: float, high: float, constraint: str, label: str):
    if value is None or not (low <= value <= high):
        raise NetworkValidationError(constraint, f"{label} must be within [{low}, {high}], got {value}")


def validate_config(config: ProjectConfig):
    _check_range(config.load_diversity, 0.0, 200.0, "diversity_range", "load diversity (%)")
    _check_range(config.production_diversity, 0.0, 200.0, "diversity_range", "production diversity (%)")
    _check_range(config.power_factor, 0.0, 1.0, "power_factor_range", "power factor")
    _check_range(config.imbalance, 0.0, 100.0, "imbalance_range", "imbalance (%)")
    if config.transformer is not None:
        _check_range(config.transformer.power_factor, 0.0, 1.0, "power_factor_range", "transformer power factor")
        if config.transformer.rating_kva <= 0 or config.transformer.nominal_voltage <= 0:
            raise NetworkValidationError("transformer", "transformer rating and nominal voltage must be positive")

    split = config.phase_split
    if split is not None:
        for label, shares in (("load", split.loads), ("production", split.productions)):
            if len(shares) != 3 or any(share < 0 for share in shares):
                raise NetworkValidationError("phase_split", f"{label} phase split needs three non-negative shares")
            if abs(sum(shares) - 100.0) > 0.1:
                raise NetworkValidationError(
                    "phase_split", f"{label} phase split must total 100%, got {sum(shares):.2f}%")


def validate_network(nodes: Sequence[Node], cables: Sequence[Cable],
                     cable_types: Iterable[CableType], config: Optional[ProjectConfig] = None) -> Node:
    """
    Rejects inputs that cannot be computed. Returns the source node.

    Raises:
      - NetworkValidationError with the violated constraint
    """
    # 1. Exactly one source
    source = find_source(nodes)

    # 2. Node ids and cable references
    node_ids = set()
    for node in nodes:
        if node.id in node_ids:
            raise NetworkValidationError("duplicate_node", f"duplicated node id {node.id!r}")
        node_ids.add(node.id)

    type_ids = set(index_cable_types(cable_types))
    for cable in cables:
        for end in (cable.node_a, cable.node_b):
            if end not in node_ids:
                raise NetworkValidationError("unknown_node", f"cable {cable.id!r} references unknown node {end!r}")
        if cable.cable_type_id not in type_ids:
            raise NetworkValidationError(
                "unknown_cable_type", f"cable {cable.id!r} references unknown cable type {cable.cable_type_id!r}")

    # 3. Equipment powers
    for node in nodes:
        for entry in node.loads + node.productions:
            if entry.s_kva < 0:
                raise NetworkValidationError(
                    "negative_power", f"equipment {entry.id!r} on node {node.id!r} has negative apparent power")

    # 4. Project parameters
    if config is not None:
        validate_config(config)

    logger.debug("validated %d nodes and %d cables, source %s", len(nodes), len(cables), source.id)
    return source
