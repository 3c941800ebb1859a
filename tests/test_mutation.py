import random

from neat_walker.body import BIPED_LAYOUT
from neat_walker.config import MutationParams, WeightMutationConfig
from neat_walker.genome import WEIGHT_LIMIT, Genome, NodeGene
from neat_walker.innovation import InnovationTracker
from neat_walker.mutation import (
    effective_mutation_rate,
    mutate_add_connection,
    mutate_add_node,
    mutate_genome,
    mutate_mirror_weights,
    mutate_toggle_connection,
    mutate_weights,
    seed_walking_pattern,
)


def empty_genome():
    nodes = {
        0: NodeGene(0, "input", 0.0),
        1: NodeGene(1, "input", 0.0),
        2: NodeGene(2, "bias", 0.0),
        3: NodeGene(3, "output", 1.0),
    }
    return Genome(2, 1, [0, 1], [3], 2, nodes, {})


def test_effective_rate_with_target(minimal_genome):
    opts = WeightMutationConfig(mutations_per_genome=4)
    expected = 4 / len(minimal_genome.connections)

    assert effective_mutation_rate(minimal_genome, 0.4, opts) == expected
    assert effective_mutation_rate(empty_genome(), 0.4, opts) == 0.0
    assert effective_mutation_rate(minimal_genome, 0.4, WeightMutationConfig()) == 0.4


def test_mutate_weights_stays_clamped(hidden_genome, rng):
    opts = WeightMutationConfig(perturb_chance=0.5, perturb_scale=4.0, reset_scale=10.0)
    for _ in range(50):
        mutate_weights(hidden_genome, 1.0, rng, opts)

    assert all(abs(c.weight) <= WEIGHT_LIMIT for c in hidden_genome.connections.values())


def test_mutate_weights_zero_rate_is_noop(hidden_genome, rng):
    before = hidden_genome.gene_signature()
    mutate_weights(hidden_genome, 0.0, rng)
    assert hidden_genome.gene_signature() == before


def test_add_node_splits_enabled_connection(minimal_genome, tracker, rng):
    enabled_before = minimal_genome.enabled_connection_count
    mutate_add_node(minimal_genome, tracker, rng)

    assert minimal_genome.hidden_count == 1
    # One disabled, two added
    assert minimal_genome.enabled_connection_count == enabled_before + 1
    hidden = next(n for n in minimal_genome.nodes.values() if n.type == "hidden")
    assert 0.0 < hidden.layer < 1.0


def test_add_connection_respects_layers(hidden_genome, tracker, rng):
    for _ in range(30):
        mutate_add_connection(hidden_genome, tracker, rng)

    pairs = set()
    for conn in hidden_genome.connections.values():
        src = hidden_genome.nodes[conn.in_node]
        dst = hidden_genome.nodes[conn.out_node]
        assert src.layer < dst.layer
        assert src.type != "output"
        assert dst.type not in ("input", "bias")
        assert (conn.in_node, conn.out_node) not in pairs, "Duplicate connection added."
        pairs.add((conn.in_node, conn.out_node))


def test_structural_mutation_without_targets_is_noop(rng):
    tracker = InnovationTracker(next_node_id=4)
    genome = empty_genome()

    mutate_add_node(genome, tracker, rng)
    mutate_toggle_connection(genome, rng)
    mutate_weights(genome, 1.0, rng)

    assert genome.connections == {}
    assert genome.hidden_count == 0


def test_toggle_flips_one_connection(minimal_genome, rng):
    enabled_before = minimal_genome.enabled_connection_count
    mutate_toggle_connection(minimal_genome, rng)
    assert minimal_genome.enabled_connection_count == enabled_before - 1


def test_seed_walking_pattern_antiphase(minimal_genome, rng):
    seed_walking_pattern(minimal_genome, rng)
    sin_id = minimal_genome.input_ids[-2]

    for left_pos, right_pos in BIPED_LAYOUT.mirror_pairs:
        left_id = minimal_genome.output_ids[left_pos]
        right_id = minimal_genome.output_ids[right_pos]
        for conn in minimal_genome.connections.values():
            if conn.in_node != sin_id:
                continue
            if conn.out_node == left_id:
                assert 0.8 <= conn.weight <= 1.2
            if conn.out_node == right_id:
                assert -1.2 <= conn.weight <= -0.8


def test_mirror_moves_right_toward_negated_left(minimal_genome):
    sin_id = minimal_genome.input_ids[-2]
    left_id = minimal_genome.output_ids[5]
    right_id = minimal_genome.output_ids[8]
    for conn in minimal_genome.connections.values():
        if conn.in_node == sin_id and conn.out_node == left_id:
            conn.weight = 1.0
        if conn.in_node == sin_id and conn.out_node == right_id:
            conn.weight = 1.0
            right = conn

    mutate_mirror_weights(minimal_genome, random.Random(0))

    # Gap to the target (-1) shrinks by at most 30%
    assert 0.4 <= right.weight < 1.0


def test_weight_only_lane_keeps_topology(hidden_genome, tracker, rng):
    params = MutationParams.weights_only(mutations_per_genome=6, scale=0.03)
    before = {i: (c.in_node, c.out_node, c.enabled) for i, c in hidden_genome.connections.items()}
    for _ in range(20):
        mutate_genome(hidden_genome, tracker, params, rng)

    after = {i: (c.in_node, c.out_node, c.enabled) for i, c in hidden_genome.connections.items()}
    assert before == after
    assert hidden_genome.hidden_count == 3


def test_structural_lane_grows_genome(minimal_genome, tracker, rng):
    params = MutationParams(
        mutation_rate=0.5,
        add_node_probability=1.0,
        add_connection_probability=1.0,
        allow_toggle=False,
    )
    for _ in range(5):
        mutate_genome(minimal_genome, tracker, params, rng)

    assert minimal_genome.hidden_count == 5
    for conn in minimal_genome.connections.values():
        assert minimal_genome.nodes[conn.in_node].layer < minimal_genome.nodes[conn.out_node].layer
