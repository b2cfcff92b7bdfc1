import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from network_data import Cable, Node
import data_input

logger = logging.getLogger(__name__)


@dataclass
class RadialTree:
    """Source-rooted orientation of the cable graph."""
    source_id: str
    order: List[str] = field(default_factory=list)  # breadth-first, source first
    parent: Dict[str, Optional[str]] = field(default_factory=dict)
    parent_cable: Dict[str, Optional[str]] = field(default_factory=dict)
    children: Dict[str, List[str]] = field(default_factory=dict)
    feeders: List[str] = field(default_factory=list)  # source-incident cable ids, input order
    disconnected: List[str] = field(default_factory=list)
    ignored_cables: List[str] = field(default_factory=list)

    @property
    def index(self) -> Dict[str, int]:
        return {node_id: n for n, node_id in enumerate(self.order)}

    def post_order(self) -> List[str]:
        result = []
        stack = [(self.source_id, False)]
        while stack:
            node_id, expanded = stack.pop()
            if expanded:
                result.append(node_id)
                continue
            stack.append((node_id, True))
            for child in reversed(self.children[node_id]):
                stack.append((child, False))
        return result

    def subtree(self, node_id: str) -> List[str]:
        nodes = []
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            nodes.append(current)
            queue.extend(self.children.get(current, []))
        return nodes

    def path_cables(self, node_id: str) -> List[str]:
        """Cables crossed from the source down to ``node_id``."""
        cables = []
        while self.parent.get(node_id) is not None:
            cables.append(self.parent_cable[node_id])
            node_id = self.parent[node_id]
        cables.reverse()
        return cables

    def feeder_of(self, node_id: str) -> Optional[str]:
        """Source-incident cable heading the branch of ``node_id``."""
        path = self.path_cables(node_id)
        return path[0] if path else None

    def circuit_of(self, node_id: str) -> Optional[int]:
        """1-based number of the feeder carrying ``node_id``; None for the source."""
        feeder = self.feeder_of(node_id)
        if feeder is None:
            return None
        return self.feeders.index(feeder) + 1


def gridtopology(nodes: Sequence[Node], cables: Sequence[Cable], state=None) -> RadialTree:
    """
    Builds the radial tree seen from the single source node.

    Cables touching an unknown node are ignored (warned through ``state``), nodes
    the source cannot reach are listed as disconnected.

    Raises:
      - NetworkValidationError (single_source) unless exactly one source exists
      - TopologyError (radial_topology) if the connected part holds a loop
    """
    source = data_input.find_source(nodes)
    node_ids = {node.id for node in nodes}

    # Adjacency list, skipping cables with dangling ends
    adjacency: Dict[str, List[tuple]] = {node.id: [] for node in nodes}
    usable = []
    tree = RadialTree(source_id=source.id)
    for cable in cables:
        if cable.node_a not in node_ids or cable.node_b not in node_ids:
            tree.ignored_cables.append(cable.id)
            message = f"cable {cable.id} ignored, it references an unknown node"
            if state is not None:
                state.warn(message)
            else:
                logger.warning(message)
            continue
        adjacency[cable.node_a].append((cable.node_b, cable.id))
        adjacency[cable.node_b].append((cable.node_a, cable.id))
        usable.append(cable)

    # Breadth-first walk from the source
    tree.parent[source.id] = None
    tree.parent_cable[source.id] = None
    tree.children[source.id] = []
    tree.order.append(source.id)
    queue = deque([source.id])
    while queue:
        current = queue.popleft()
        for neighbour, cable_id in adjacency[current]:
            if cable_id == tree.parent_cable[current]:
                continue
            if neighbour in tree.parent:
                raise data_input.TopologyError(
                    "radial_topology",
                    f"topology has a loop through cable {cable_id}, only radial networks are supported")
            tree.parent[neighbour] = current
            tree.parent_cable[neighbour] = cable_id
            tree.children[neighbour] = []
            tree.children[current].append(neighbour)
            tree.order.append(neighbour)
            queue.append(neighbour)

    tree.feeders = [cable.id for cable in usable
                    if source.id in (cable.node_a, cable.node_b) and tree.parent_cable.get(
                        cable.node_b if cable.node_a == source.id else cable.node_a) == cable.id]
    tree.disconnected = [node.id for node in nodes if node.id not in tree.parent]
    if tree.disconnected:
        logger.debug("nodes not connected to source %s: %s", source.id, tree.disconnected)
    return tree


def subtree_power(tree: RadialTree, node_power: Mapping[str, complex]) -> Dict[str, complex]:
    """Signed apparent power of every subtree (own power plus children), post-order."""
    totals: Dict[str, complex] = {}
    for node_id in tree.post_order():
        total = complex(node_power.get(node_id, 0j))
        for child in tree.children[node_id]:
            total += totals[child]
        totals[node_id] = total
    return totals


def connected_node_ids(tree: RadialTree) -> List[str]:
    return list(tree.order)
