"""
Training loop: runs every genome of a generation through the motion
simulator, scores it, and breeds the next generation.
"""

from typing import Dict, List, Optional

from loguru import logger

from .body import (
    BIPED_LAYOUT,
    INPUT_COUNT,
    OUTPUT_COUNT,
    BodyState,
    ControllerLayout,
    MotionSimulator,
    encode_inputs,
    gait_symmetry,
)
from .config import TrainerConfig
from .fitness import EpisodeRecord, GaitTracker, curriculum_phase, score_episode
from .genome import Genome
from .network import Network
from .population import Population
from .telemetry import EvaluationRecord, GenerationRecord, NullTelemetry, TelemetrySink

SKIPPED_FITNESS = 0.0


class Episode:
    """One genome being driven through the simulator."""

    def __init__(self, genome: Genome, simulator: MotionSimulator):
        self.genome = genome
        self.network: Network = genome.build_network()
        self.state: BodyState = simulator.reset()
        self.start_com_y = self.state.com_y
        self.tracker = GaitTracker(self.state)
        self.t = 0.0
        self.steps = 0

    def step(self, simulator: MotionSimulator, dt: float):
        inputs = encode_inputs(self.state, self.t, self.start_com_y)
        outputs = self.network.activate(inputs)
        self.state = simulator.step(outputs, dt)
        self.t += dt
        self.steps += 1
        self.tracker.update(self.state, outputs, dt)

    @property
    def distance(self) -> float:
        return self.tracker.distance


class Trainer:
    """Single-threaded driver of the evolutionary loop.

    Call ``tick`` from any outer loop to advance by a number of control
    steps, or ``run_generation`` to evaluate a full generation at once.
    The trainer owns its population and innovation tracker.
    """

    def __init__(
        self,
        simulator: MotionSimulator,
        config: TrainerConfig = TrainerConfig(),
        telemetry: Optional[TelemetrySink] = None,
        layout: ControllerLayout = BIPED_LAYOUT,
        input_count: int = INPUT_COUNT,
        output_count: int = OUTPUT_COUNT,
    ):
        self.simulator = simulator
        self.config = config
        self.telemetry = telemetry if telemetry is not None else NullTelemetry()
        self.layout = layout
        self.population = Population(
            input_count, output_count, config.population, seed=config.seed, layout=layout
        )

        self.current_index = 0
        self._episode: Optional[Episode] = None

        # Stagnation tracking across generations
        self.best_distance_ever = 0.0
        self.generations_without_improvement = 0
        self.stagnation_level = 0

        # Best final distance ever and its genome
        self.hall_of_fame: Optional[Genome] = None
        self.hall_of_fame_distance = 0.0
        self.snapshots: Dict[int, Genome] = {}
        self.last_generation_record: Optional[GenerationRecord] = None

        # Curriculum inputs from the previous generation's best genome
        self.last_gen_best_distance = 0.0
        self.last_gen_best_velocity = 0.0
        self.last_gen_best_fitness = 0.0
        self.last_gen_step_coverage = 0.0

        self._reset_generation_state()

    def _reset_generation_state(self):
        self.best_distance_this_gen = 0.0
        self._best_final_distance = float("-inf")
        self._best_distance_genome: Optional[Genome] = None
        self._best_fitness = float("-inf")
        self._best_record: Optional[EpisodeRecord] = None
        self._best_genome: Optional[Genome] = None

    @property
    def generation(self) -> int:
        return self.population.generation

    @property
    def current_genome(self) -> Genome:
        return self.population.genomes[self.current_index]

    def tick(self, steps: int = 1) -> int:
        """Advance `steps` control steps; returns the number of finished episodes."""
        finished = 0
        for _ in range(steps):
            if self.step_once() is not None:
                finished += 1
        return finished

    def step_once(self) -> Optional[EvaluationRecord]:
        """One control step of the current episode.

        Returns the evaluation record when the step ended the episode.
        """
        if self._episode is None:
            self._episode = Episode(self.current_genome, self.simulator)

        episode = self._episode
        eval_cfg = self.config.evaluation
        episode.step(self.simulator, eval_cfg.dt_seconds)
        self.best_distance_this_gen = max(self.best_distance_this_gen, episode.distance)

        fallen = episode.state.fallen
        if fallen or episode.t >= eval_cfg.max_seconds:
            return self._finish_episode(fallen)
        return None

    def run_episode(self) -> EvaluationRecord:
        while True:
            record = self.step_once()
            if record is not None:
                return record

    def run_generation(self) -> GenerationRecord:
        """Evaluate every remaining genome and evolve; returns the generation record."""
        generation = self.generation
        while self.generation == generation:
            self.run_episode()
        return self.last_generation_record

    def skip_to_next_generation(self) -> GenerationRecord:
        """Abort the current episode and give every pending genome the minimum score."""
        self._episode = None
        pending = self.population.genomes[self.current_index:]
        for index, genome in enumerate(pending, start=self.current_index):
            genome.fitness = SKIPPED_FITNESS
            self.telemetry.on_evaluation(self._skipped_evaluation(index, genome))
        logger.debug(
            "[Trainer] Skipping {} genomes in generation {}",
            len(self.population.genomes) - self.current_index,
            self.generation,
        )
        return self._finish_generation()

    def _skipped_evaluation(self, index: int, genome: Genome) -> EvaluationRecord:
        return EvaluationRecord(
            generation=self.generation,
            genome_index=index,
            fitness=SKIPPED_FITNESS,
            distance=0.0,
            avg_velocity=0.0,
            step_count=0,
            step_length_sum=0.0,
            step_coverage=0.0,
            single_support_time=0.0,
            foot_lift_count=0,
            contact_alternations=0,
            survival_time=0.0,
            energy_cost=0.0,
            slip_cost=0.0,
            slip_per_meter=0.0,
            fallen=False,
            hidden_nodes=genome.hidden_count,
            enabled_connections=genome.enabled_connection_count,
            skipped=True,
        )

    def _finish_episode(self, fallen: bool) -> EvaluationRecord:
        episode = self._episode
        genome = episode.genome
        self._episode = None

        record = episode.tracker.finish(
            fallen=fallen,
            max_survival_time=self.config.evaluation.max_seconds,
            generation=self.generation,
            hidden_node_count=genome.hidden_count,
            last_gen_best_distance=self.last_gen_best_distance,
            last_gen_best_velocity=self.last_gen_best_velocity,
            last_gen_best_fitness=self.last_gen_best_fitness,
            last_gen_step_coverage=self.last_gen_step_coverage,
        )
        fitness = score_episode(record, self.config.fitness).total
        genome.fitness = fitness

        if record.distance > self._best_final_distance:
            self._best_final_distance = record.distance
            self._best_distance_genome = genome
        if fitness > self._best_fitness:
            self._best_fitness = fitness
            self._best_record = record
            self._best_genome = genome

        evaluation = EvaluationRecord(
            generation=self.generation,
            genome_index=self.current_index,
            fitness=fitness,
            distance=record.distance,
            avg_velocity=record.avg_velocity,
            step_count=record.step_count,
            step_length_sum=record.step_length_sum,
            step_coverage=record.step_coverage,
            single_support_time=record.single_support_time,
            foot_lift_count=record.foot_lift_count,
            contact_alternations=record.contact_alternations,
            survival_time=record.survived,
            energy_cost=record.energy_cost,
            slip_cost=record.slip_cost,
            slip_per_meter=record.slip_per_meter,
            fallen=record.fallen,
            hidden_nodes=genome.hidden_count,
            enabled_connections=genome.enabled_connection_count,
        )
        self.telemetry.on_evaluation(evaluation)

        self.current_index += 1
        if self.current_index >= len(self.population.genomes):
            self._finish_generation()
        return evaluation

    def _finish_generation(self) -> GenerationRecord:
        population = self.population
        stagnation = self.config.population.stagnation
        fitnesses = [g.fitness for g in population.genomes]

        best_genome = self._best_genome or population.genomes[0]
        best_record = self._best_record or EpisodeRecord(
            fallen=True, max_survival_time=self.config.evaluation.max_seconds
        )

        self.last_gen_best_distance = best_record.distance
        self.last_gen_best_velocity = best_record.avg_velocity
        self.last_gen_best_fitness = max(fitnesses + [0.0])
        self.last_gen_step_coverage = best_record.step_coverage

        # Distance, unlike fitness, is stable across curriculum phases
        if self.best_distance_this_gen > self.best_distance_ever + self.config.improvement_threshold:
            self.best_distance_ever = self.best_distance_this_gen
            self.generations_without_improvement = 0
        else:
            self.generations_without_improvement += 1

        if (
            self._best_distance_genome is not None
            and self._best_final_distance > self.hall_of_fame_distance
        ):
            self.hall_of_fame_distance = self._best_final_distance
            self.hall_of_fame = self._best_distance_genome.clone()

        if population.generation in self.config.snapshot_generations:
            self.snapshots[population.generation] = best_genome.clone()

        level = stagnation.level_for(self.generations_without_improvement)
        self.stagnation_level = level
        phase = curriculum_phase(
            best_record.distance, best_record.step_coverage, self.config.fitness
        )
        symmetry = 0.0
        if self.config.symmetry_samples:
            symmetry = gait_symmetry(
                best_genome.build_network(), self.layout, self.config.symmetry_samples
            )

        record = GenerationRecord(
            generation=population.generation,
            population_size=len(fitnesses),
            species_count=len(population.species),
            best_fitness=max(fitnesses) if fitnesses else 0.0,
            avg_fitness=sum(fitnesses) / len(fitnesses) if fitnesses else 0.0,
            worst_fitness=min(fitnesses) if fitnesses else 0.0,
            best_genome_stats=best_record.to_dict(),
            hidden_nodes=best_genome.hidden_count,
            total_connections=len(best_genome.connections),
            enabled_connections=best_genome.enabled_connection_count,
            step_phase=phase.step_phase,
            intermediate_phase=phase.intermediate_phase,
            penalty_phase=phase.penalty_phase,
            generations_without_improvement=self.generations_without_improvement,
            stagnation_level=level,
            best_distance_ever=self.best_distance_ever,
            compatibility_threshold=population.compatibility_threshold,
            gait_symmetry=symmetry,
        )
        self.telemetry.on_generation(record)
        self.last_generation_record = record

        if level > 0:
            logger.debug(
                "[Stagnation] Level {}: {} generations without improvement",
                level,
                self.generations_without_improvement,
            )

        population.evolve(
            stagnation_level=level,
            inject_diversity=level >= 1,
            hall_of_fame=self.hall_of_fame,
        )
        if level >= stagnation.nuclear_level:
            # The rebuilt population gets a fresh window before escalating again
            self.generations_without_improvement = 0

        self.current_index = 0
        self._episode = None
        self._reset_generation_state()
        return record

    def replay(self, genome: Genome, max_steps: Optional[int] = None) -> EpisodeRecord:
        """Run `genome` until it falls, without a time limit.

        Training state is left untouched. `max_steps` bounds the run for
        controllers that never fall.
        """
        episode = Episode(genome, self.simulator)
        dt = self.config.evaluation.dt_seconds
        while not episode.state.fallen:
            if max_steps is not None and episode.steps >= max_steps:
                break
            episode.step(self.simulator, dt)
        return episode.tracker.finish(
            fallen=episode.state.fallen,
            max_survival_time=episode.t,
            generation=self.generation,
            hidden_node_count=genome.hidden_count,
        )

    def snapshot_genomes(self) -> List[Genome]:
        """Snapshot champions ordered by generation."""
        return [self.snapshots[g] for g in sorted(self.snapshots)]
