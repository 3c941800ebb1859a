import random

import pytest

from neat_walker.body import INPUT_COUNT, OUTPUT_COUNT
from neat_walker.config import PopulationConfig, SpeciationConfig
from neat_walker.population import Population
from neat_walker.species import Species, compatibility_distance


def test_distance_to_self_is_zero(minimal_genome, hidden_genome):
    assert compatibility_distance(minimal_genome, minimal_genome) == 0.0
    assert compatibility_distance(hidden_genome, hidden_genome) == 0.0


def test_distance_is_symmetric(minimal_genome, hidden_genome):
    ab = compatibility_distance(minimal_genome, hidden_genome)
    ba = compatibility_distance(hidden_genome, minimal_genome)
    assert ab == pytest.approx(ba)
    assert ab > 0


def test_distance_counts_weights_and_hidden_nodes(minimal_genome, tracker):
    other = minimal_genome.clone()
    for conn in other.connections.values():
        conn.weight += 0.5
    assert compatibility_distance(minimal_genome, other) == pytest.approx(0.4 * 0.5)

    enabled = next(c for c in other.connections.values() if c.enabled)
    other.split_connection(enabled, tracker)
    config = SpeciationConfig(weight_coefficient=0.0)
    # Two excess genes over 23, one hidden node
    assert compatibility_distance(minimal_genome, other, config) == pytest.approx(2 / 23 + 0.3)


@pytest.mark.parametrize(
    "coefficients, expected",
    [
        ({}, 2.0 + 3.0 + 0.4 * 1.0),
        ({"disjoint_coefficient": 0.0, "weight_coefficient": 0.0}, 2.0),
        ({"excess_coefficient": 0.0, "weight_coefficient": 0.0}, 3.0),
        ({"excess_coefficient": 0.0, "disjoint_coefficient": 0.0}, 0.4),
    ],
)
def test_distance_splits_disjoint_and_excess(genome_factory, coefficients, expected):
    # Innovations {1, 2, 4} vs {1, 3, 5, 6}: 2, 3 and 4 are disjoint, 5 and 6 excess
    a = genome_factory([(1, 0.5, True), (2, 0.1, True), (4, 0.1, True)])
    b = genome_factory([(1, 1.5, True), (3, 0.1, True), (5, 0.1, True), (6, 0.1, True)])
    config = SpeciationConfig(**coefficients)

    assert compatibility_distance(a, b, config) == pytest.approx(expected)
    assert compatibility_distance(b, a, config) == pytest.approx(expected)


def test_small_genomes_are_not_normalized(genome_factory):
    a = genome_factory([(1, 0.0, True), (2, 0.0, True), (4, 0.0, True)])
    b = genome_factory([(1, 0.0, True), (3, 0.0, True), (5, 0.0, True), (6, 0.0, True)])

    assert compatibility_distance(a, b) == pytest.approx(5.0), "Under 20 genes the normalizer is 1."
    # Lowering the threshold to the larger genome's size turns normalization on
    lowered = SpeciationConfig(normalize_threshold=4)
    assert compatibility_distance(a, b, lowered) == pytest.approx(5.0 / 4)


def test_species_reset_keeps_identity(minimal_genome):
    species = Species(3, minimal_genome.clone(), [minimal_genome], 4.0)
    species.reset()

    assert species.id == 3
    assert species.members == []
    assert species.adjusted_fitness_sum == 0.0
    assert len(species) == 0


def test_speciation_is_deterministic():
    config = PopulationConfig(population_size=30)
    counts = []
    for _ in range(2):
        population = Population(INPUT_COUNT, OUTPUT_COUNT, config, seed=11)
        population.speciate()
        counts.append(sorted(len(s.members) for s in population.species))

    assert counts[0] == counts[1]


def test_speciation_assigns_everyone_once():
    population = Population(INPUT_COUNT, OUTPUT_COUNT, PopulationConfig(population_size=25), seed=3)
    population.speciate()

    members = [id(g) for s in population.species for g in s.members]
    assert len(members) == 25
    assert len(set(members)) == 25
    assert all(s.members for s in population.species), "Empty species should be dropped."


def test_species_ids_persist_across_speciation():
    population = Population(INPUT_COUNT, OUTPUT_COUNT, PopulationConfig(population_size=20), seed=5)
    population.speciate()
    first_ids = {s.id for s in population.species}
    population.speciate()

    assert first_ids & {s.id for s in population.species}


def test_threshold_drops_with_too_few_species():
    population = Population(INPUT_COUNT, OUTPUT_COUNT, PopulationConfig(population_size=10), seed=1)
    population.genomes = [population.genomes[0].clone() for _ in range(10)]
    population.speciate()

    assert len(population.species) == 1
    assert population.compatibility_threshold == pytest.approx(2.7)


def test_threshold_rises_with_too_many_species():
    config = PopulationConfig(population_size=20, compatibility_threshold=0.01)
    population = Population(INPUT_COUNT, OUTPUT_COUNT, config, seed=1)
    rng = random.Random(0)
    for g in population.genomes:
        for conn in g.connections.values():
            conn.weight = rng.uniform(-5, 5)
    population.speciate()

    overshoot = len(population.species) - 12
    assert overshoot > 0
    assert population.compatibility_threshold == pytest.approx(
        0.01 + min(0.5, 0.15 + 0.02 * overshoot)
    )
