"""
Population management: speciation with an adaptive threshold and the
stagnation-aware reproduction strategy.
"""

import math
import random
from typing import List, Optional

from loguru import logger

from .body import BIPED_LAYOUT, ControllerLayout
from .config import MutationParams, PopulationConfig, WeightMutationConfig, tier
from .errors import ConfigurationOutOfRange
from .genome import Genome
from .innovation import InnovationTracker
from .mutation import mutate_genome, seed_walking_pattern
from .species import Species, compatibility_distance

LOCAL_SEARCH_LANE = MutationParams.weights_only(mutations_per_genome=6, scale=0.03)
REFINEMENT_LANE = MutationParams.weights_only(mutations_per_genome=8, scale=0.08)
EXPLORATION_WEIGHTS = WeightMutationConfig(
    perturb_chance=0.9, perturb_scale=0.35, reset_scale=1.2
)
# Used three times in a row on survivors of a nuclear reset.
NUCLEAR_LANE = MutationParams(
    mutation_rate=0.6,
    add_node_probability=0.25,
    add_connection_probability=0.35,
    weight=EXPLORATION_WEIGHTS,
)
NUCLEAR_CLONE_PROBABILITY = 0.3
NUCLEAR_WALKING_PROBABILITY = 0.5
INJECTION_WALKING_PROBABILITY = 0.4
TOURNAMENT_SIZE = 3


def _by_fitness(genome: Genome) -> float:
    return genome.fitness


class Population:
    """A generation of genomes plus everything needed to breed the next one.

    The population owns its innovation tracker and its random source; both
    live as long as the population does.
    """

    def __init__(
        self,
        input_count: int,
        output_count: int,
        config: PopulationConfig = PopulationConfig(),
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        layout: ControllerLayout = BIPED_LAYOUT,
    ):
        if not isinstance(input_count, int) or input_count < 1:
            raise ConfigurationOutOfRange("input_count", input_count, "must be >= 1")
        if not isinstance(output_count, int) or output_count < 1:
            raise ConfigurationOutOfRange("output_count", output_count, "must be >= 1")

        self.input_count = input_count
        self.output_count = output_count
        self.config = config
        self.layout = layout
        self.rng = rng if rng is not None else random.Random(seed)
        self.tracker = InnovationTracker(next_node_id=input_count + 1 + output_count)
        self.generation = 1
        self.species: List[Species] = []
        self.compatibility_threshold = config.compatibility_threshold
        self._next_species_id = 1

        self.genomes = self._initial_genomes()

    def _initial_genomes(self) -> List[Genome]:
        """Mixed starting topologies so hidden structure exists from generation 1."""
        size = self.config.population_size
        counts = [math.floor(size * share) for share in self.config.initial_hidden_mix]
        counts.append(size - sum(counts))

        genomes = []
        for hidden_count, count in enumerate(counts):
            for _ in range(count):
                genomes.append(self._fresh_genome(hidden_count))

        walking_count = math.floor(size * self.config.walking_seed_fraction)
        for idx in self.rng.sample(range(len(genomes)), walking_count):
            seed_walking_pattern(genomes[idx], self.rng, self.layout)

        logger.debug(
            "[NEAT] Initialized population: {} minimal, {} 1-hidden, {} 2-hidden, {} 3-hidden",
            *counts,
        )
        return genomes

    def _fresh_genome(self, hidden_count: int, walking_probability: float = 0.0) -> Genome:
        genome = Genome.with_hidden_nodes(
            self.input_count,
            self.output_count,
            self.tracker,
            hidden_count,
            self.rng,
            self.layout,
        )
        if walking_probability and self.rng.random() < walking_probability:
            seed_walking_pattern(genome, self.rng, self.layout)
        return genome

    def best_genome(self) -> Optional[Genome]:
        if not self.genomes:
            return None
        return max(self.genomes, key=_by_fitness)

    def speciate(self):
        """Assign every genome to a species and retune the threshold.

        Species from the previous generation are offered first, in order, so
        lineages keep their ids. A genome joins the first species whose
        representative is strictly closer than the threshold.
        """
        speciation = self.config.speciation
        for species in self.species:
            species.reset()

        candidates = list(self.species)
        threshold = self.compatibility_threshold
        for genome in self.genomes:
            for species in candidates:
                if compatibility_distance(genome, species.representative, speciation) < threshold:
                    species.members.append(genome)
                    break
            else:
                founded = Species(self._next_species_id, genome.clone(), [genome])
                self._next_species_id += 1
                candidates.append(founded)

        self.species = [s for s in candidates if s.members]
        for species in self.species:
            size = len(species.members)
            species.adjusted_fitness_sum = sum(g.fitness / size for g in species.members)
            species.representative = self.rng.choice(species.members).clone()

        count = len(self.species)
        if count < speciation.min_species:
            self.compatibility_threshold = max(
                speciation.threshold_floor,
                self.compatibility_threshold - speciation.threshold_step_down,
            )
            logger.debug(
                "[NEAT] Species: {} < {}, threshold -> {:.2f}",
                count,
                speciation.min_species,
                self.compatibility_threshold,
            )
        elif count > speciation.max_species:
            overshoot = count - speciation.max_species
            step = min(
                speciation.threshold_step_up_max,
                speciation.threshold_step_up + overshoot * speciation.threshold_overshoot_gain,
            )
            self.compatibility_threshold = min(
                speciation.threshold_ceiling, self.compatibility_threshold + step
            )
            logger.debug(
                "[NEAT] Species: {} > {}, threshold -> {:.2f}",
                count,
                speciation.max_species,
                self.compatibility_threshold,
            )

    def evolve(
        self,
        stagnation_level: int = 0,
        inject_diversity: bool = False,
        hall_of_fame: Optional[Genome] = None,
    ):
        """Replace the current genomes with the next generation.

        Fitness values must already be set on every genome. At the nuclear
        stagnation level the population is rebuilt around a few survivors
        and normal reproduction is skipped; the caller is expected to clear
        its stagnation counter afterwards.
        """
        cfg = self.config
        stagnation = cfg.stagnation
        size = cfg.population_size

        self.genomes.sort(key=_by_fitness, reverse=True)
        if stagnation_level >= stagnation.fitness_sharing_level:
            self._apply_fitness_sharing(stagnation_level)
            self.genomes.sort(key=_by_fitness, reverse=True)

        self.speciate()

        if stagnation_level >= stagnation.nuclear_level:
            self._nuclear_reset(hall_of_fame)
            return

        next_gen = [g.clone() for g in self.genomes[: cfg.effective_elitism]]
        if hall_of_fame is not None:
            next_gen.append(hall_of_fame.clone())

        next_gen.extend(self._local_search_lane(stagnation_level, size - len(next_gen)))
        next_gen.extend(
            self._injection_lane(stagnation_level, inject_diversity, size - len(next_gen))
        )

        exploration_chance = tier(stagnation.exploration_chances, stagnation_level)
        exploration = self._exploration_lane(stagnation_level)

        for species, count in self._allocate_offspring(size - len(next_gen)):
            next_gen.extend(
                self._make_offspring(species, count, exploration_chance, exploration)
            )

        while len(next_gen) < size:
            child = self.rng.choice(self.genomes).clone()
            lane = exploration if self.rng.random() < exploration_chance else REFINEMENT_LANE
            mutate_genome(child, self.tracker, lane, self.rng, self.layout)
            next_gen.append(child)

        self.genomes = next_gen[:size]
        self.generation += 1

    def _apply_fitness_sharing(self, stagnation_level: int):
        """Penalize genomes that crowd around the current best."""
        if len(self.genomes) < 2:
            return
        stagnation = self.config.stagnation
        if stagnation_level >= stagnation.nuclear_level:
            radius = stagnation.nuclear_sharing_radius
            strength = stagnation.nuclear_sharing_strength
        else:
            radius = stagnation.sharing_radius
            strength = stagnation.sharing_strength

        best = self.genomes[0]
        shared = 0
        for genome in self.genomes[1:]:
            dist = compatibility_distance(genome, best, self.config.speciation)
            if dist < radius:
                genome.fitness *= 1 - (1 - dist / radius) * strength
                shared += 1

        if shared:
            logger.debug(
                "[NEAT] Fitness sharing (level {}): penalized {} genomes (radius={:.1f}, strength={:.0%})",
                stagnation_level,
                shared,
                radius,
                strength,
            )

    def _nuclear_reset(self, hall_of_fame: Optional[Genome]):
        cfg = self.config
        survivors = [g.clone() for g in self.genomes[: cfg.stagnation.nuclear_survivors]]
        next_gen = list(survivors)
        if hall_of_fame is not None:
            next_gen.append(hall_of_fame.clone())

        logger.info(
            "[NEAT] Nuclear reset: keeping {}, regenerating {} genomes",
            len(next_gen),
            max(0, cfg.population_size - len(next_gen)),
        )

        while len(next_gen) < cfg.population_size:
            if survivors and self.rng.random() < NUCLEAR_CLONE_PROBABILITY:
                mutated = self.rng.choice(survivors).clone()
                for _ in range(3):
                    mutate_genome(mutated, self.tracker, NUCLEAR_LANE, self.rng, self.layout)
                next_gen.append(mutated)
            else:
                next_gen.append(
                    self._fresh_genome(self.rng.randint(1, 5), NUCLEAR_WALKING_PROBABILITY)
                )

        self.genomes = next_gen[: cfg.population_size]
        self.generation += 1

    def _local_search_lane(self, stagnation_level: int, room: int) -> List[Genome]:
        """Weight-only fine-tuning clones of the current top genomes."""
        stagnation = self.config.stagnation
        fraction = tier(stagnation.local_search_fractions, stagnation_level)
        count = min(math.floor(self.config.population_size * fraction), max(0, room))
        if count <= 0:
            return []

        parents = self.genomes[: stagnation.local_search_parents]
        children = []
        for _ in range(count):
            child = self.rng.choice(parents).clone()
            mutate_genome(child, self.tracker, LOCAL_SEARCH_LANE, self.rng, self.layout)
            children.append(child)
        logger.debug("[NEAT] Local search: +{} fine-tune clones ({:.0%})", count, fraction)
        return children

    def _injection_lane(
        self, stagnation_level: int, inject_diversity: bool, room: int
    ) -> List[Genome]:
        stagnation = self.config.stagnation
        if stagnation_level > 0:
            fraction = tier(stagnation.injection_fractions, stagnation_level)
        elif inject_diversity:
            fraction = stagnation.baseline_injection
        else:
            fraction = 0.0
        count = min(math.floor(self.config.population_size * fraction), max(0, room))
        if count <= 0:
            return []

        low, high = (2, 5) if stagnation_level >= 3 else (1, 4)
        logger.debug(
            "[NEAT] Diversity injection (level {}): {} fresh genomes", stagnation_level, count
        )
        return [
            self._fresh_genome(self.rng.randint(low, high), INJECTION_WALKING_PROBABILITY)
            for _ in range(count)
        ]

    def _exploration_lane(self, stagnation_level: int) -> MutationParams:
        cfg = self.config
        boost = tier(cfg.stagnation.structural_boosts, stagnation_level)
        return MutationParams(
            mutation_rate=min(0.65, cfg.mutation_rate * 1.25),
            add_node_probability=min(0.35, cfg.add_node_probability * boost),
            add_connection_probability=min(0.45, cfg.add_connection_probability * boost),
            weight=EXPLORATION_WEIGHTS,
        )

    def _allocate_offspring(self, desired: int):
        """Split `desired` children across species by adjusted fitness.

        Largest-remainder rounding, so the counts add up to `desired`
        whenever there is at least one species.
        """
        if desired <= 0 or not self.species:
            return []
        shares = [max(0.0, s.adjusted_fitness_sum) for s in self.species]
        total = sum(shares) or 1.0

        allocations = []
        for species, share in zip(self.species, shares):
            raw = share / total * desired
            allocations.append([species, math.floor(raw), raw - math.floor(raw)])

        allocated = sum(a[1] for a in allocations)
        allocations.sort(key=lambda a: a[2], reverse=True)
        for allocation in allocations:
            if allocated >= desired:
                break
            allocation[1] += 1
            allocated += 1

        return [(species, count) for species, count, _ in allocations if count > 0]

    def _make_offspring(
        self,
        species: Species,
        count: int,
        exploration_chance: float,
        exploration: MutationParams,
    ) -> List[Genome]:
        pool = sorted(species.members, key=_by_fitness, reverse=True)
        survivors = pool[: max(2, math.ceil(len(pool) * 0.5))]

        children = []
        for _ in range(count):
            parent_a = self._tournament_select(survivors)
            parent_b = self._tournament_select(survivors)
            if parent_a.fitness >= parent_b.fitness:
                fitter, other = parent_a, parent_b
            else:
                fitter, other = parent_b, parent_a
            child = Genome.crossover(fitter, other, self.rng)
            lane = exploration if self.rng.random() < exploration_chance else REFINEMENT_LANE
            mutate_genome(child, self.tracker, lane, self.rng, self.layout)
            children.append(child)
        return children

    def _tournament_select(self, genomes: List[Genome]) -> Genome:
        """Tournament selection with replacement."""
        k = min(TOURNAMENT_SIZE, len(genomes))
        best = self.rng.choice(genomes)
        for _ in range(1, k):
            candidate = self.rng.choice(genomes)
            if candidate.fitness > best.fitness:
                best = candidate
        return best
