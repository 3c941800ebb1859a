"""
Mutation operators. All of them edit a genome in place and draw from an
explicit random source; none of them raise when there is nothing to mutate.
"""

import random

from .body import BIPED_LAYOUT, ControllerLayout, resolve
from .config import MutationParams, WeightMutationConfig
from .genome import ConnectionGene, Genome, clamp_weight
from .innovation import InnovationTracker

ADD_CONNECTION_ATTEMPTS = 30


def effective_mutation_rate(
    genome: Genome, mutation_rate: float, opts: WeightMutationConfig
) -> float:
    """Per-connection rate; a per-genome target keeps big networks from
    being mutated harder in aggregate."""
    if opts.mutations_per_genome is None:
        return mutation_rate
    if not genome.connections:
        return 0.0
    return min(1.0, opts.mutations_per_genome / len(genome.connections))


def mutate_weights(
    genome: Genome,
    mutation_rate: float,
    rng: random.Random,
    opts: WeightMutationConfig = WeightMutationConfig(),
) -> None:
    """Perturb or reset connection weights, clamped to the weight limit."""
    rate = effective_mutation_rate(genome, mutation_rate, opts)
    for conn in genome.connections.values():
        if rng.random() >= rate:
            continue
        if rng.random() < opts.perturb_chance:
            conn.weight = clamp_weight(
                conn.weight + rng.uniform(-opts.perturb_scale, opts.perturb_scale)
            )
        else:
            conn.weight = clamp_weight(rng.uniform(-opts.reset_scale, opts.reset_scale))


def mutate_toggle_connection(genome: Genome, rng: random.Random) -> None:
    """Flip the enabled flag of one random connection."""
    if not genome.connections:
        return
    conn = rng.choice(list(genome.connections.values()))
    conn.enabled = not conn.enabled


def mutate_add_connection(
    genome: Genome, tracker: InnovationTracker, rng: random.Random
) -> None:
    """Connect two unconnected nodes, lower layer to higher; gives up after a few tries."""
    sources = [n for n in genome.nodes.values() if n.type != "output"]
    targets = [n for n in genome.nodes.values() if n.type not in ("input", "bias")]
    if not sources or not targets:
        return

    for _ in range(ADD_CONNECTION_ATTEMPTS):
        src = rng.choice(sources)
        dst = rng.choice(targets)
        # Layers must increase along every edge
        if src.id == dst.id or src.layer >= dst.layer:
            continue
        if genome.has_connection(src.id, dst.id):
            continue
        innovation = tracker.get_innovation(src.id, dst.id)
        genome.connections[innovation] = ConnectionGene(
            innovation, src.id, dst.id, clamp_weight(rng.uniform(-1.5, 1.5)), True
        )
        return


def mutate_add_node(genome: Genome, tracker: InnovationTracker, rng: random.Random) -> None:
    """Split a random enabled connection with a new hidden node."""
    enabled = [c for c in genome.connections.values() if c.enabled]
    if not enabled:
        return
    genome.split_connection(rng.choice(enabled), tracker)


def mutate_mirror_weights(
    genome: Genome, rng: random.Random, layout: ControllerLayout = BIPED_LAYOUT
) -> None:
    """Nudge right-leg weights toward the negated left-leg weights.

    Antiphase between the legs is what a walking gait needs, so this
    partial step biases search toward it without forcing it.
    """
    for left_pos, right_pos in layout.mirror_pairs:
        left_id = resolve(genome.output_ids, left_pos)
        right_id = resolve(genome.output_ids, right_pos)
        if left_id is None or right_id is None:
            continue

        left_by_source = {
            c.in_node: c
            for c in genome.connections.values()
            if c.out_node == left_id and c.enabled
        }
        for conn in genome.connections.values():
            if conn.out_node != right_id or not conn.enabled:
                continue
            left = left_by_source.get(conn.in_node)
            if left is None:
                continue
            target = -left.weight
            conn.weight = clamp_weight(
                conn.weight + (target - conn.weight) * 0.3 * rng.random()
            )


def seed_walking_pattern(
    genome: Genome, rng: random.Random, layout: ControllerLayout = BIPED_LAYOUT
) -> None:
    """Drive the legs from the phase signal in antiphase."""
    sin_id = resolve(genome.input_ids, layout.sin_phase_input)
    if sin_id is None:
        return
    sides = {}
    for left_pos, right_pos in layout.mirror_pairs:
        left_id = resolve(genome.output_ids, left_pos)
        right_id = resolve(genome.output_ids, right_pos)
        if left_id is not None:
            sides[left_id] = 1.0
        if right_id is not None:
            sides[right_id] = -1.0

    for conn in genome.connections.values():
        if conn.in_node == sin_id and conn.out_node in sides:
            conn.weight = sides[conn.out_node] * (0.8 + rng.random() * 0.4)


def mutate_genome(
    genome: Genome,
    tracker: InnovationTracker,
    params: MutationParams,
    rng: random.Random,
    layout: ControllerLayout = BIPED_LAYOUT,
) -> None:
    """Weight mutation always; the rest gated by the lane's switches."""
    mutate_weights(genome, params.mutation_rate, rng, params.weight)

    if params.allow_structural and rng.random() < params.add_connection_probability:
        mutate_add_connection(genome, tracker, rng)
    if params.allow_structural and rng.random() < params.add_node_probability:
        mutate_add_node(genome, tracker, rng)
    if params.allow_toggle and rng.random() < params.toggle_probability:
        mutate_toggle_connection(genome, rng)
    if params.allow_mirror and rng.random() < params.mirror_probability:
        mutate_mirror_weights(genome, rng, layout)
