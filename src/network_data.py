import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

SQRT3 = math.sqrt(3)


class ConnectionType(Enum):
    MONO_230V_PN = "MONO_230V_PN"
    MONO_230V_PP = "MONO_230V_PP"
    TRI_230V_3F = "TRI_230V_3F"
    TETRA_3P_N_230_400V = "TETRA_3P+N_230_400V"

    @property
    def base_voltage(self) -> float:
        return 400.0 if self is ConnectionType.TETRA_3P_N_230_400V else 230.0

    @property
    def is_three_phase(self) -> bool:
        return self in (ConnectionType.TRI_230V_3F, ConnectionType.TETRA_3P_N_230_400V)

    @property
    def line_scale(self) -> float:
        # per-phase (star) quantity -> voltage read at the connection
        return 1.0 if self is ConnectionType.MONO_230V_PN else SQRT3

    @property
    def phases(self) -> int:
        return 3 if self.is_three_phase else 1


class VoltageSystem(Enum):
    TRIPHASE_230V = "230V"
    TETRAPHASE_400V = "400V"

    @property
    def base_voltage(self) -> float:
        return 230.0 if self is VoltageSystem.TRIPHASE_230V else 400.0


class LoadModel(Enum):
    BALANCED = "balanced"
    PHASE_DISTRIBUTED = "phase_distributed"


class Scenario(Enum):
    LOAD = "load"
    MIXED = "mixed"
    PRODUCTION = "production"
    FORCED = "forced"


class InstallationMode(Enum):
    AERIAL = "aerial"
    UNDERGROUND = "underground"


class Phase(Enum):
    A = 0
    B = 1
    C = 2


class Compliance(Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class OverrideKind(Enum):
    REGULATOR = "regulator"
    COMPENSATOR = "compensator"


# ----------------------------------------------------------------------------
# Input data
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class Equipment:
    """A load (client) or production entry attached to a node.

    ``p_kw``/``q_kvar`` are explicit overrides: when either is given the entry
    contributes exactly that power instead of its diversified ``s_kva``.
    """
    id: str
    s_kva: float
    p_kw: Optional[float] = None
    q_kvar: Optional[float] = None
    phase: Optional[Phase] = None

    @property
    def has_override(self) -> bool:
        return self.p_kw is not None or self.q_kvar is not None


@dataclass(frozen=True)
class Node:
    id: str
    lat: float = 0.0
    lng: float = 0.0
    is_source: bool = False
    connection_type: Optional[ConnectionType] = None
    loads: Tuple[Equipment, ...] = ()
    productions: Tuple[Equipment, ...] = ()
    target_voltage: Optional[float] = None
    name: str = ""


@dataclass(frozen=True)
class Cable:
    id: str
    node_a: str
    node_b: str
    cable_type_id: str
    installation: InstallationMode = InstallationMode.AERIAL
    coordinates: Tuple[Tuple[float, float], ...] = ()  # (lat, lng) polyline
    length_m: Optional[float] = None


@dataclass(frozen=True)
class CableType:
    id: str
    label: str
    r12: float  # ohm/km
    x12: float
    r0: float
    x0: float
    material: str = "aluminium"
    installations: Tuple[InstallationMode, ...] = (InstallationMode.AERIAL, InstallationMode.UNDERGROUND)
    max_current_a: Optional[float] = None


@dataclass(frozen=True)
class TransformerConfig:
    rating_kva: float
    nominal_voltage: float = 400.0
    short_circuit_percent: float = 4.0
    power_factor: float = 0.95
    xr_ratio: Optional[float] = None
    connection_type: Optional[ConnectionType] = None


@dataclass(frozen=True)
class HTMeasurement:
    """Measured medium-voltage level used to derive a realistic LV source voltage."""
    nominal_ht_voltage: float = 20000.0
    measured_ht_voltage: float = 20000.0
    nominal_lt_voltage: float = 400.0


@dataclass(frozen=True)
class PhaseSplit:
    """Manual percentages of node load/production carried by phases A, B, C."""
    loads: Tuple[float, float, float] = (100.0 / 3, 100.0 / 3, 100.0 / 3)
    productions: Tuple[float, float, float] = (100.0 / 3, 100.0 / 3, 100.0 / 3)


@dataclass(frozen=True)
class ProjectConfig:
    voltage_system: VoltageSystem = VoltageSystem.TETRAPHASE_400V
    load_model: LoadModel = LoadModel.BALANCED
    load_diversity: float = 100.0
    production_diversity: float = 100.0
    power_factor: float = 0.95
    imbalance: float = 0.0
    phase_split: Optional[PhaseSplit] = None
    transformer: Optional[TransformerConfig] = None
    ht_measurement: Optional[HTMeasurement] = None


@dataclass(frozen=True)
class VoltageOverride:
    """Pinned per-phase voltage at a node, kept apart from the Node itself.

    ``phase_voltages`` are phase-to-neutral magnitudes in volts.
    """
    kind: OverrideKind
    phase_voltages: Tuple[float, float, float]
    label: str = ""


# ----------------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class CableResult:
    cable: Cable
    length_m: float
    current_a: float
    phase_currents_a: Tuple[float, float, float]
    neutral_current_a: float
    voltage_drop_v: float  # phasor drop |I·Z| at the connection voltage
    voltage_drop_percent: float
    longitudinal_drop_v: float  # |V_from| - |V_to|, negative when the voltage rises
    losses_kw: float
    apparent_power_kva: float
    active_power_kw: float
    reactive_power_kvar: float


@dataclass(frozen=True)
class NodeResult:
    node_id: str
    connection_type: ConnectionType
    phase_voltages_v: Tuple[float, float, float]
    phase_angles_deg: Tuple[float, float, float]
    service_voltages_v: Tuple[float, float, float]
    nominal_voltage_v: float
    deviation_percent: float
    delta_u_v: float
    delta_u_percent: float
    compliance: Compliance
    circuit: Optional[int] = None
    input_phase_voltages_v: Optional[Tuple[float, float, float]] = None

    @property
    def average_service_voltage(self) -> float:
        return sum(self.service_voltages_v) / 3


@dataclass(frozen=True)
class CircuitSummary:
    number: int
    cable_id: str
    head_node_id: str
    subtree_s_kva: float
    subtree_q_kvar: float
    direction: str  # "injection" or "draw"
    current_a: float
    delta_u_share_v: float
    min_voltage_v: float
    max_voltage_v: float


@dataclass(frozen=True)
class VirtualBusbar:
    voltage_v: float
    current_a: float
    current_n_a: float
    net_s_kva: float
    delta_u_v: float
    delta_u_percent: float
    losses_kw: float
    circuits: Tuple[CircuitSummary, ...] = ()


@dataclass(frozen=True)
class CalculationResult:
    scenario: Scenario
    load_model: LoadModel
    reference_voltage: float
    cables: Tuple[CableResult, ...]
    nodes: Tuple[NodeResult, ...]
    total_loads_kva: float
    total_productions_kva: float
    global_losses_kw: float
    max_voltage_drop_percent: float
    max_voltage_drop_circuit: Optional[int]
    compliance: Compliance
    busbar: Optional[VirtualBusbar]
    iterations: int
    converged: bool
    warnings: Tuple[str, ...] = ()
    disconnected_nodes: Tuple[str, ...] = ()
    overrides: Tuple[Tuple[str, VoltageOverride], ...] = ()  # (node id, override), sorted by node id
    regulators: Tuple = ()
    compensators: Tuple = ()

    def node(self, node_id: str) -> Optional[NodeResult]:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    def override(self, node_id: str) -> Optional[VoltageOverride]:
        for override_node, override in self.overrides:
            if override_node == node_id:
                return override
        return None

    def cable(self, cable_id: str) -> Optional[CableResult]:
        for cable in self.cables:
            if cable.cable.id == cable_id:
                return cable
        return None
