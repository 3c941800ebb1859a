import random

import pytest

from neat_walker.body import INPUT_COUNT, JOINT_ORDER, OUTPUT_COUNT, BodyState
from neat_walker.genome import ConnectionGene, Genome, NodeGene
from neat_walker.innovation import InnovationTracker


class ScriptedWalker:
    """Motion simulator stand-in with a fixed alternating gait.

    Each stride one foot swings for the first 60% of the stride and lands
    ahead of the torso. The torso moves forward at a constant speed; with
    ``fall_after`` set, the head hits the ground after that many steps.
    """

    def __init__(self, speed=0.5, stride_seconds=0.5, fall_after=None):
        self.speed = speed
        self.stride_seconds = stride_seconds
        self.fall_after = fall_after
        self.t = 0.0
        self.steps = 0
        self.commands = []

    def reset(self):
        self.t = 0.0
        self.steps = 0
        return self._state()

    def step(self, commands, dt_seconds):
        assert len(commands) == OUTPUT_COUNT
        self.commands.append(list(commands))
        self.t += dt_seconds
        self.steps += 1
        return self._state()

    def _state(self):
        x = self.speed * self.t
        segment = int(self.t / self.stride_seconds)
        frac = (self.t % self.stride_seconds) / self.stride_seconds
        left_swings = segment % 2 == 0
        airborne = frac < 0.6
        left_contact = not (left_swings and airborne)
        right_contact = not (not left_swings and airborne)
        fallen = self.fall_after is not None and self.steps >= self.fall_after
        return BodyState(
            joint_angles=[0.0] * len(JOINT_ORDER),
            joint_speeds=[0.0] * len(JOINT_ORDER),
            torso_x=x,
            com_x=x,
            com_vx=self.speed,
            left_foot_contact=left_contact,
            right_foot_contact=right_contact,
            left_foot_x=x + 0.2 if left_swings else x - 0.1,
            right_foot_x=x - 0.1 if left_swings else x + 0.2,
            left_foot_y=0.0 if left_contact else 0.1,
            right_foot_y=0.0 if right_contact else 0.1,
            head_ground=fallen,
        )


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def tracker():
    return InnovationTracker(next_node_id=INPUT_COUNT + 1 + OUTPUT_COUNT)


@pytest.fixture
def minimal_genome(tracker, rng):
    return Genome.minimal(INPUT_COUNT, OUTPUT_COUNT, tracker, rng)


@pytest.fixture
def hidden_genome(tracker, rng):
    return Genome.with_hidden_nodes(INPUT_COUNT, OUTPUT_COUNT, tracker, 3, rng)


@pytest.fixture
def walker():
    return ScriptedWalker()


@pytest.fixture
def walker_factory():
    return ScriptedWalker


def gene_genome(genes):
    """One input, bias and one output, with the given (innovation, weight, enabled) genes.

    Every gene wires the input to the output; only innovation numbers,
    weights and enabled flags matter to the tests that use it.
    """
    nodes = {0: NodeGene(0, "input", 0.0), 1: NodeGene(1, "bias", 0.0), 2: NodeGene(2, "output", 1.0)}
    connections = {
        innovation: ConnectionGene(innovation, 0, 2, weight, enabled)
        for innovation, weight, enabled in genes
    }
    return Genome(1, 1, [0], [2], 1, nodes, connections)


@pytest.fixture
def genome_factory():
    return gene_genome
