"""
Genome representation: node genes, connection genes and crossover.
"""

import random
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .body import BIPED_LAYOUT, ControllerLayout, resolve
from .innovation import InnovationTracker
from .network import Network

WEIGHT_LIMIT = 5.0


def clamp_weight(weight: float) -> float:
    return max(-WEIGHT_LIMIT, min(WEIGHT_LIMIT, weight))


@dataclass
class NodeGene:
    id: int
    type: str  # 'input', 'bias', 'hidden', 'output'
    layer: float


@dataclass
class ConnectionGene:
    innovation: int
    in_node: int
    out_node: int
    weight: float
    enabled: bool = True


class Genome:
    """Variable-topology DAG of node and connection genes.

    Connections are keyed by innovation number. Node layers strictly
    increase along every connection, which keeps the graph acyclic without
    any cycle checks.
    """

    def __init__(
        self,
        input_count: int,
        output_count: int,
        input_ids: List[int],
        output_ids: List[int],
        bias_id: int,
        nodes: Dict[int, NodeGene],
        connections: Dict[int, ConnectionGene],
        fitness: float = 0.0,
    ):
        self.input_count = input_count
        self.output_count = output_count
        self.input_ids = input_ids
        self.output_ids = output_ids
        self.bias_id = bias_id
        self.nodes = nodes
        self.connections = connections
        self.fitness = fitness

    @classmethod
    def minimal(
        cls,
        input_count: int,
        output_count: int,
        tracker: InnovationTracker,
        rng: random.Random,
        layout: ControllerLayout = BIPED_LAYOUT,
    ) -> "Genome":
        """Sparse starting topology that leaves room for structural search."""
        input_ids = list(range(input_count))
        bias_id = input_count
        output_ids = [input_count + 1 + i for i in range(output_count)]

        nodes = {i: NodeGene(i, "input", 0.0) for i in input_ids}
        nodes[bias_id] = NodeGene(bias_id, "bias", 0.0)
        nodes.update({o: NodeGene(o, "output", 1.0) for o in output_ids})

        genome = cls(
            input_count, output_count, input_ids, output_ids, bias_id, nodes, {}
        )

        # Baseline activation for every output
        for out_node in output_ids:
            genome._seed_connection(tracker, bias_id, out_node, rng.uniform(-0.3, 0.3))

        # Gait timing signal drives the legs; cos offsets the knees
        sin_id = resolve(input_ids, layout.sin_phase_input)
        cos_id = resolve(input_ids, layout.cos_phase_input)
        if sin_id is not None:
            for pos in layout.leg_outputs:
                out_node = resolve(output_ids, pos)
                if out_node is not None and pos >= 0:
                    genome._seed_connection(tracker, sin_id, out_node, rng.uniform(-1.2, 1.2))
        if cos_id is not None and cos_id != sin_id:
            for pos in layout.knee_outputs:
                out_node = resolve(output_ids, pos)
                if out_node is not None and pos >= 0:
                    genome._seed_connection(tracker, cos_id, out_node, rng.uniform(-0.8, 0.8))

        # Torso tilt feeds the hips for balance
        torso_id = resolve(input_ids, layout.torso_angle_input)
        if torso_id is not None and layout.torso_angle_input >= 0:
            for pos in layout.hip_outputs:
                out_node = resolve(output_ids, pos)
                if out_node is not None and pos >= 0:
                    genome._seed_connection(tracker, torso_id, out_node, rng.uniform(-0.6, 0.6))

        return genome

    @classmethod
    def with_hidden_nodes(
        cls,
        input_count: int,
        output_count: int,
        tracker: InnovationTracker,
        hidden_count: int,
        rng: random.Random,
        layout: ControllerLayout = BIPED_LAYOUT,
    ) -> "Genome":
        """Minimal genome with `hidden_count` connection splits applied."""
        genome = cls.minimal(input_count, output_count, tracker, rng, layout)
        for _ in range(hidden_count):
            enabled = [c for c in genome.connections.values() if c.enabled]
            if not enabled:
                break
            genome.split_connection(rng.choice(enabled), tracker)
        return genome

    def _seed_connection(
        self, tracker: InnovationTracker, in_node: int, out_node: int, weight: float
    ):
        innovation = tracker.get_innovation(in_node, out_node)
        if innovation not in self.connections:
            self.connections[innovation] = ConnectionGene(
                innovation, in_node, out_node, clamp_weight(weight), True
            )

    def has_connection(self, in_node: int, out_node: int) -> bool:
        return any(
            c.in_node == in_node and c.out_node == out_node
            for c in self.connections.values()
        )

    def split_connection(self, conn: ConnectionGene, tracker: InnovationTracker) -> None:
        """Disable `conn` and route it through a hidden node.

        The incoming half gets weight 1 and the outgoing half keeps the old
        weight, so the network computes almost the same function right
        after the split. Pieces already present are left alone.
        """
        conn.enabled = False
        from_node = self.nodes.get(conn.in_node)
        to_node = self.nodes.get(conn.out_node)
        if from_node is None or to_node is None:
            return

        split = tracker.get_split_record(conn.innovation, conn.in_node, conn.out_node)
        if split.new_node_id not in self.nodes:
            layer = (from_node.layer + to_node.layer) / 2
            self.nodes[split.new_node_id] = NodeGene(split.new_node_id, "hidden", layer)

        if split.in_innovation not in self.connections:
            self.connections[split.in_innovation] = ConnectionGene(
                split.in_innovation, conn.in_node, split.new_node_id, 1.0, True
            )
        if split.out_innovation not in self.connections:
            self.connections[split.out_innovation] = ConnectionGene(
                split.out_innovation, split.new_node_id, conn.out_node, conn.weight, True
            )

    @property
    def hidden_count(self) -> int:
        return sum(1 for n in self.nodes.values() if n.type == "hidden")

    @property
    def enabled_connection_count(self) -> int:
        return sum(1 for c in self.connections.values() if c.enabled)

    def sorted_connections(self) -> List[ConnectionGene]:
        return sorted(self.connections.values(), key=lambda c: c.innovation)

    def clone(self) -> "Genome":
        """Create a deep copy of the genome."""
        return Genome(
            self.input_count,
            self.output_count,
            list(self.input_ids),
            list(self.output_ids),
            self.bias_id,
            {k: replace(v) for k, v in self.nodes.items()},
            {k: replace(v) for k, v in self.connections.items()},
            self.fitness,
        )

    def build_network(self) -> Network:
        return Network.from_genome(self)

    def gene_signature(self):
        """Gene content as comparable tuples, ignoring fitness."""
        nodes = tuple(sorted((n.id, n.type, n.layer) for n in self.nodes.values()))
        conns = tuple(
            (c.innovation, c.in_node, c.out_node, c.weight, c.enabled)
            for c in self.sorted_connections()
        )
        return nodes, conns

    @staticmethod
    def crossover(
        fitter: "Genome",
        other: "Genome",
        rng: random.Random,
        inherit_probability: float = 0.2,
        reenable_probability: float = 0.25,
        keep_enabled_probability: float = 0.75,
    ) -> "Genome":
        """Create a child that follows the fitter parent's structure."""
        child = fitter.clone()
        child.fitness = 0.0

        for innovation, conn in child.connections.items():
            match = other.connections.get(innovation)
            if match is None:
                continue
            if rng.random() < 0.5:
                conn.weight = match.weight
            if conn.enabled != match.enabled:
                conn.enabled = rng.random() < reenable_probability

        # Structural innovations can still spread from the less fit lineage
        for innovation, conn in other.connections.items():
            if innovation in fitter.connections:
                continue
            if rng.random() < inherit_probability:
                inherited = replace(conn)
                inherited.enabled = conn.enabled and rng.random() < keep_enabled_probability
                child.connections[innovation] = inherited

        for conn in child.connections.values():
            for node_id in (conn.in_node, conn.out_node):
                if node_id in child.nodes:
                    continue
                source: Optional[NodeGene] = fitter.nodes.get(node_id) or other.nodes.get(node_id)
                if source is not None:
                    child.nodes[node_id] = replace(source)

        return child

    def __repr__(self):
        return (
            f"Genome(nodes={len(self.nodes)}, hidden={self.hidden_count}, "
            f"conns={self.enabled_connection_count}/{len(self.connections)}, "
            f"fitness={self.fitness:.2f})"
        )
