"""
Immutable configuration for every component of the evolutionary core.

Each dataclass validates its own fields on construction and raises
ConfigurationOutOfRange on the first bad value. Derived variants are built
with dataclasses.replace, which re-runs validation.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from .errors import ConfigurationOutOfRange


def _require(condition: bool, name: str, value, requirement: str):
    if not condition:
        raise ConfigurationOutOfRange(name, value, requirement)


def _require_probability(name: str, value: float):
    _require(0.0 <= value <= 1.0, name, value, "must be within [0, 1]")


def _require_non_negative(name: str, value: float):
    _require(value >= 0, name, value, "must be >= 0")


def _require_tiers(name: str, values: Sequence[float]):
    _require(len(values) > 0, name, values, "needs at least one tier")
    for v in values:
        _require(v >= 0, name, values, "tiers must be >= 0")


def tier(values: Sequence[float], level: int) -> float:
    """Pick the value for a stagnation level, saturating at the last tier."""
    return values[max(0, min(level, len(values) - 1))]


@dataclass(frozen=True)
class WeightMutationConfig:
    # Probability of perturbing the existing weight instead of resetting it.
    perturb_chance: float = 0.97
    # Max uniform delta applied when perturbing.
    perturb_scale: float = 0.25
    # Reset samples uniformly in [-reset_scale, reset_scale].
    reset_scale: float = 0.9
    # When set, overrides the per-connection rate with target / connection count.
    mutations_per_genome: Optional[float] = None

    def __post_init__(self):
        _require_probability("perturb_chance", self.perturb_chance)
        _require_non_negative("perturb_scale", self.perturb_scale)
        _require_non_negative("reset_scale", self.reset_scale)
        if self.mutations_per_genome is not None:
            _require_non_negative("mutations_per_genome", self.mutations_per_genome)


@dataclass(frozen=True)
class MutationParams:
    """One mutation lane: which operators run and how strongly."""

    mutation_rate: float
    add_node_probability: float
    add_connection_probability: float
    weight: WeightMutationConfig = field(default_factory=WeightMutationConfig)
    allow_structural: bool = True
    allow_toggle: bool = True
    allow_mirror: bool = True
    toggle_probability: float = 0.02
    mirror_probability: float = 0.08

    def __post_init__(self):
        _require_probability("mutation_rate", self.mutation_rate)
        _require_probability("add_node_probability", self.add_node_probability)
        _require_probability(
            "add_connection_probability", self.add_connection_probability
        )
        _require_probability("toggle_probability", self.toggle_probability)
        _require_probability("mirror_probability", self.mirror_probability)

    @classmethod
    def weights_only(cls, mutations_per_genome: float, scale: float) -> "MutationParams":
        """Small, weight-only perturbations for fine-tuning a gait."""
        return cls(
            mutation_rate=1.0,
            add_node_probability=0.0,
            add_connection_probability=0.0,
            weight=WeightMutationConfig(
                perturb_chance=1.0,
                perturb_scale=scale,
                reset_scale=scale,
                mutations_per_genome=mutations_per_genome,
            ),
            allow_structural=False,
            allow_toggle=False,
            allow_mirror=False,
        )


@dataclass(frozen=True)
class SpeciationConfig:
    excess_coefficient: float = 1.0
    disjoint_coefficient: float = 1.0
    weight_coefficient: float = 0.4
    hidden_node_coefficient: float = 0.3
    # Genomes with fewer genes than this are normalized by 1.
    normalize_threshold: int = 20
    min_species: int = 5
    max_species: int = 12
    threshold_floor: float = 0.5
    threshold_ceiling: float = 5.0
    threshold_step_down: float = 0.3
    threshold_step_up: float = 0.15
    threshold_overshoot_gain: float = 0.02
    threshold_step_up_max: float = 0.5

    def __post_init__(self):
        for name in (
            "excess_coefficient",
            "disjoint_coefficient",
            "weight_coefficient",
            "hidden_node_coefficient",
            "threshold_step_down",
            "threshold_step_up",
            "threshold_overshoot_gain",
            "threshold_step_up_max",
        ):
            _require_non_negative(name, getattr(self, name))
        _require(self.normalize_threshold >= 1, "normalize_threshold",
                 self.normalize_threshold, "must be >= 1")
        _require(self.min_species >= 1, "min_species", self.min_species, "must be >= 1")
        _require(
            self.max_species >= self.min_species,
            "max_species",
            self.max_species,
            "must be >= min_species",
        )
        _require(
            0 < self.threshold_floor <= self.threshold_ceiling,
            "threshold_floor",
            self.threshold_floor,
            "must be > 0 and <= threshold_ceiling",
        )


@dataclass(frozen=True)
class StagnationConfig:
    """How reproduction reacts to generations without distance improvement.

    Levels run from 0 (healthy) to ``nuclear_level``. Tuples are indexed by
    level and saturate at their last entry.
    """

    # Generations without improvement needed to reach levels 1..5.
    level_thresholds: Tuple[int, ...] = (5, 10, 20, 40, 70)
    local_search_fractions: Tuple[float, ...] = (0.06, 0.12, 0.18, 0.22, 0.25)
    injection_fractions: Tuple[float, ...] = (0.0, 0.08, 0.12, 0.18, 0.25)
    # Injection at level 0 when the caller explicitly asks for diversity.
    baseline_injection: float = 0.06
    exploration_chances: Tuple[float, ...] = (0.15, 0.20, 0.25, 0.30, 0.35)
    structural_boosts: Tuple[float, ...] = (1.2, 1.3, 1.5, 1.8, 2.2)
    fitness_sharing_level: int = 4
    nuclear_level: int = 5
    sharing_radius: float = 2.5
    sharing_strength: float = 0.35
    nuclear_sharing_radius: float = 3.0
    nuclear_sharing_strength: float = 0.45
    nuclear_survivors: int = 5
    local_search_parents: int = 5

    def __post_init__(self):
        _require(
            list(self.level_thresholds) == sorted(self.level_thresholds),
            "level_thresholds",
            self.level_thresholds,
            "must be ascending",
        )
        _require_tiers("local_search_fractions", self.local_search_fractions)
        _require_tiers("injection_fractions", self.injection_fractions)
        _require_tiers("exploration_chances", self.exploration_chances)
        _require_tiers("structural_boosts", self.structural_boosts)
        for name in ("local_search_fractions", "injection_fractions", "exploration_chances"):
            for v in getattr(self, name):
                _require_probability(name, v)
        _require_probability("baseline_injection", self.baseline_injection)
        _require_probability("sharing_strength", self.sharing_strength)
        _require_probability("nuclear_sharing_strength", self.nuclear_sharing_strength)
        _require(self.sharing_radius > 0, "sharing_radius", self.sharing_radius, "must be > 0")
        _require(
            self.nuclear_sharing_radius > 0,
            "nuclear_sharing_radius",
            self.nuclear_sharing_radius,
            "must be > 0",
        )
        _require(self.nuclear_survivors >= 1, "nuclear_survivors",
                 self.nuclear_survivors, "must be >= 1")
        _require(self.local_search_parents >= 1, "local_search_parents",
                 self.local_search_parents, "must be >= 1")

    def level_for(self, generations_without_improvement: int) -> int:
        level = 0
        for i, threshold in enumerate(self.level_thresholds):
            if generations_without_improvement >= threshold:
                level = i + 1
        return level


@dataclass(frozen=True)
class PopulationConfig:
    population_size: int = 150
    mutation_rate: float = 0.4
    add_node_probability: float = 0.12
    add_connection_probability: float = 0.20
    # Seed for the adaptive compatibility threshold.
    compatibility_threshold: float = 3.0
    elitism: int = 3
    # Elites kept regardless of `elitism`.
    min_elitism: int = 2
    # Shares of the initial population seeded with 0, 1 and 2 hidden nodes;
    # the rest start with 3.
    initial_hidden_mix: Tuple[float, float, float] = (0.35, 0.30, 0.20)
    walking_seed_fraction: float = 0.15
    speciation: SpeciationConfig = field(default_factory=SpeciationConfig)
    stagnation: StagnationConfig = field(default_factory=StagnationConfig)

    def __post_init__(self):
        _require(
            isinstance(self.population_size, int) and self.population_size > 0,
            "population_size",
            self.population_size,
            "must be a positive integer",
        )
        _require_probability("mutation_rate", self.mutation_rate)
        _require_probability("add_node_probability", self.add_node_probability)
        _require_probability(
            "add_connection_probability", self.add_connection_probability
        )
        _require(
            self.compatibility_threshold > 0,
            "compatibility_threshold",
            self.compatibility_threshold,
            "must be > 0",
        )
        _require_non_negative("elitism", self.elitism)
        _require(self.min_elitism >= 2, "min_elitism", self.min_elitism, "must be >= 2")
        _require(
            len(self.initial_hidden_mix) == 3 and sum(self.initial_hidden_mix) <= 1.0,
            "initial_hidden_mix",
            self.initial_hidden_mix,
            "needs three shares summing to at most 1",
        )
        for share in self.initial_hidden_mix:
            _require_probability("initial_hidden_mix", share)
        _require_probability("walking_seed_fraction", self.walking_seed_fraction)

    @property
    def effective_elitism(self) -> int:
        return min(max(self.min_elitism, self.elitism), self.population_size)


@dataclass(frozen=True)
class FitnessConfig:
    """Every constant of the gait-shaping fitness function."""

    step_coverage_threshold: float = 0.35
    shuffle_distance_cap: float = 3.0
    shuffle_multiplier: float = 0.5
    coverage_bonus_gain: float = 0.86
    coverage_bonus_cap: float = 0.3
    points_per_meter: float = 300.0
    survival_weight_base: float = 0.6
    distance_milestones: Tuple[Tuple[float, float], ...] = (
        (4.0, 100.0),
        (5.0, 100.0),
        (6.0, 150.0),
        (7.0, 150.0),
        (8.0, 200.0),
        (10.0, 250.0),
        (12.0, 300.0),
    )
    milestone_velocity_floor: float = 0.2
    milestone_velocity_gain: float = 1.5
    survival_bonus_per_second: float = 15.0
    completion_bonus: float = 400.0
    completion_tolerance: float = 0.1
    velocity_bonus_walking: float = 1500.0
    velocity_bonus_shuffling: float = 200.0
    velocity_milestones: Tuple[Tuple[float, float], ...] = (
        (0.15, 100.0),
        (0.25, 200.0),
        (0.35, 300.0),
        (0.45, 400.0),
        (0.55, 500.0),
        (0.70, 600.0),
    )
    coverage_distance_bonus_completed: float = 80.0
    coverage_distance_bonus_fallen: float = 30.0
    effective_step_bonus: float = 5.0
    single_support_bonus_per_second: float = 4.0
    fall_base_penalty: float = 50.0
    fall_wasted_potential_gain: float = 80.0
    backwards_penalty_per_meter: float = 150.0
    slow_velocity_target: float = 0.3
    slow_movement_gain: float = 800.0
    standing_velocity_target: float = 0.05
    standing_still_gain: float = 500.0
    min_fitness_base: float = 1.0
    min_fitness_per_second: float = 2.0

    def __post_init__(self):
        _require_probability("step_coverage_threshold", self.step_coverage_threshold)
        _require(
            self.step_coverage_threshold > 0,
            "step_coverage_threshold",
            self.step_coverage_threshold,
            "must be > 0",
        )
        for name in (
            "shuffle_distance_cap",
            "shuffle_multiplier",
            "points_per_meter",
            "completion_tolerance",
            "min_fitness_base",
            "min_fitness_per_second",
        ):
            _require_non_negative(name, getattr(self, name))
        for name in ("distance_milestones", "velocity_milestones"):
            thresholds = [t for t, _ in getattr(self, name)]
            _require(
                thresholds == sorted(thresholds),
                name,
                getattr(self, name),
                "thresholds must be ascending",
            )


@dataclass(frozen=True)
class EvaluationConfig:
    dt_seconds: float = 1.0 / 60.0
    # Episode time limit in training mode.
    max_seconds: float = 25.0

    def __post_init__(self):
        _require(self.dt_seconds > 0, "dt_seconds", self.dt_seconds, "must be > 0")
        _require(self.max_seconds > 0, "max_seconds", self.max_seconds, "must be > 0")


@dataclass(frozen=True)
class TrainerConfig:
    population: PopulationConfig = field(default_factory=PopulationConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    fitness: FitnessConfig = field(default_factory=FitnessConfig)
    # Best-distance gain (m) that resets the stagnation counter.
    improvement_threshold: float = 0.05
    # Generations whose champion is kept as an in-memory snapshot.
    snapshot_generations: Tuple[int, ...] = (1, 10, 25, 50, 100, 200)
    # Phase samples for the champion's symmetry probe; 0 turns it off.
    symmetry_samples: int = 24
    seed: Optional[int] = None

    def __post_init__(self):
        _require_non_negative("improvement_threshold", self.improvement_threshold)
        _require_non_negative("symmetry_samples", self.symmetry_samples)
