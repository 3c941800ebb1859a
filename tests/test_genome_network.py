import math
import random

import numpy as np
import pytest

from neat_walker.body import BIPED_LAYOUT, INPUT_COUNT, OUTPUT_COUNT, gait_symmetry
from neat_walker.errors import InputArityMismatch, NeatWalkerError
from neat_walker.genome import Genome
from neat_walker.innovation import InnovationTracker


def random_inputs(seed, count=INPUT_COUNT):
    r = random.Random(seed)
    return [r.uniform(-1, 1) for _ in range(count)]


def test_minimal_wiring(minimal_genome):
    g = minimal_genome
    sin_id = g.input_ids[-2]
    cos_id = g.input_ids[-1]
    torso_id = g.input_ids[BIPED_LAYOUT.torso_angle_input]

    from_bias = [c for c in g.connections.values() if c.in_node == g.bias_id]
    from_sin = [c for c in g.connections.values() if c.in_node == sin_id]
    from_cos = [c for c in g.connections.values() if c.in_node == cos_id]
    from_torso = [c for c in g.connections.values() if c.in_node == torso_id]

    assert len(from_bias) == OUTPUT_COUNT, "Bias should feed every output."
    assert len(from_sin) == len(BIPED_LAYOUT.leg_outputs)
    assert len(from_cos) == len(BIPED_LAYOUT.knee_outputs)
    assert len(from_torso) == len(BIPED_LAYOUT.hip_outputs)
    assert all(abs(c.weight) <= 0.3 for c in from_bias)
    assert all(abs(c.weight) <= 1.2 for c in from_sin)
    assert g.hidden_count == 0


def test_minimal_skips_missing_positions():
    tracker = InnovationTracker(next_node_id=4)
    g = Genome.minimal(2, 1, tracker, random.Random(0))

    assert len(g.nodes) == 4
    assert [(c.in_node, c.out_node) for c in g.connections.values()] == [(2, 3)]
    assert g.build_network().activate([0.5, -0.5])[0] == pytest.approx(
        math.tanh(g.connections[1].weight)
    )


def test_with_hidden_nodes_layers(hidden_genome):
    g = hidden_genome
    assert g.hidden_count == 3, "Three splits should add three hidden nodes."
    for conn in g.connections.values():
        assert g.nodes[conn.in_node].layer < g.nodes[conn.out_node].layer, (
            "Layers must increase along every connection."
        )


def test_activate_outputs_in_tanh_range(minimal_genome, hidden_genome):
    for genome in (minimal_genome, hidden_genome):
        outputs = genome.build_network().activate(random_inputs(3))
        assert len(outputs) == OUTPUT_COUNT
        assert all(math.isfinite(v) and -1.0 <= v <= 1.0 for v in outputs)


def test_activate_wrong_arity_raises(minimal_genome):
    network = minimal_genome.build_network()
    with pytest.raises(InputArityMismatch) as excinfo:
        network.activate([0.0] * (INPUT_COUNT - 1))

    assert excinfo.value.expected == INPUT_COUNT
    assert excinfo.value.got == INPUT_COUNT - 1
    assert isinstance(excinfo.value, NeatWalkerError)
    assert isinstance(excinfo.value, ValueError)


def test_disabled_connections_are_ignored(minimal_genome):
    network_before = minimal_genome.build_network()
    for conn in minimal_genome.connections.values():
        conn.enabled = False
    outputs = minimal_genome.build_network().activate(random_inputs(5))

    assert outputs == [0.0] * OUTPUT_COUNT
    assert network_before.output_count == OUTPUT_COUNT


def test_activate_batch_matches_single(hidden_genome):
    network = hidden_genome.build_network()
    batch = np.array([random_inputs(seed) for seed in range(4)], dtype=np.float32)

    batched = np.asarray(network.activate_batch(batch))
    single = np.array([network.activate([float(v) for v in row]) for row in batch])

    assert batched.shape == (4, OUTPUT_COUNT)
    np.testing.assert_allclose(batched, single, atol=1e-4)


def test_activate_batch_wrong_arity_raises(minimal_genome):
    with pytest.raises(InputArityMismatch):
        minimal_genome.build_network().activate_batch(np.zeros((2, 3)))


def test_clone_is_deep(hidden_genome):
    hidden_genome.fitness = 12.5
    copy = hidden_genome.clone()
    next(iter(copy.connections.values())).weight += 1.0

    assert copy.fitness == 12.5, "Clone should keep fitness."
    assert copy.gene_signature() != hidden_genome.gene_signature()


def test_crossover_with_self_preserves_genes(hidden_genome):
    first = next(iter(hidden_genome.connections.values()))
    first.enabled = False
    hidden_genome.fitness = 7.0

    child = Genome.crossover(hidden_genome, hidden_genome, random.Random(9))

    assert child.gene_signature() == hidden_genome.gene_signature()
    assert child.fitness == 0.0, "Child fitness must be reset."


def test_crossover_pulls_referenced_nodes(tracker):
    rng = random.Random(4)
    fitter = Genome.minimal(INPUT_COUNT, OUTPUT_COUNT, tracker, rng)
    other = fitter.clone()
    for _ in range(4):
        enabled = [c for c in other.connections.values() if c.enabled]
        other.split_connection(rng.choice(enabled), tracker)

    # With certain inheritance every gene of the other parent comes across
    child = Genome.crossover(fitter, other, rng, inherit_probability=1.0)

    for conn in child.connections.values():
        assert conn.in_node in child.nodes
        assert conn.out_node in child.nodes
    assert child.hidden_count == other.hidden_count


def test_crossover_enable_rules(genome_factory):
    fitter = genome_factory([(1, 0.1, True), (2, 0.1, False), (3, 0.1, True), (4, 0.1, False)])
    other = genome_factory([(1, 0.2, False), (2, 0.2, True), (3, 0.2, True), (4, 0.2, False)])
    rng = random.Random(21)
    trials = 2000

    enabled = {innovation: 0 for innovation in (1, 2, 3, 4)}
    for _ in range(trials):
        child = Genome.crossover(fitter, other, rng)
        for innovation in enabled:
            enabled[innovation] += child.connections[innovation].enabled

    assert enabled[3] == trials, "Genes enabled in both parents stay enabled."
    assert enabled[4] == 0, "Genes disabled in both parents stay disabled."
    for innovation in (1, 2):
        assert 0.21 < enabled[innovation] / trials < 0.29, (
            f"Gene {innovation}: parents disagree, so it should be enabled about 25% of the time."
        )


def test_crossover_inherits_from_less_fit_parent(genome_factory):
    fitter = genome_factory([(1, 0.1, True)])
    other = genome_factory([(1, 0.2, True), (5, 0.3, True), (6, 0.3, False)])
    rng = random.Random(8)
    trials = 2000

    present = enabled = present_disabled_source = 0
    for _ in range(trials):
        child = Genome.crossover(fitter, other, rng)
        if 5 in child.connections:
            present += 1
            enabled += child.connections[5].enabled
        if 6 in child.connections:
            present_disabled_source += 1
            assert not child.connections[6].enabled

    assert 0.17 < present / trials < 0.23, "Unmatched genes are inherited about 20% of the time."
    assert 0.65 < enabled / present < 0.85, "Inherited enabled genes stay enabled about 75% of the time."
    assert present_disabled_source > 0


def test_gait_symmetry_of_antiphase_legs():
    tracker = InnovationTracker(next_node_id=INPUT_COUNT + 1 + OUTPUT_COUNT)
    g = Genome.minimal(INPUT_COUNT, OUTPUT_COUNT, tracker, random.Random(0))
    sin_id = g.input_ids[-2]
    left = {g.output_ids[l] for l, _ in BIPED_LAYOUT.mirror_pairs}
    right = {g.output_ids[r] for _, r in BIPED_LAYOUT.mirror_pairs}
    for conn in g.connections.values():
        if conn.in_node == sin_id and conn.out_node in left:
            conn.weight = 1.0
        elif conn.in_node == sin_id and conn.out_node in right:
            conn.weight = -1.0
        elif conn.in_node != sin_id:
            conn.weight = 0.0

    assert gait_symmetry(g.build_network()) == pytest.approx(1.0, abs=1e-3)
