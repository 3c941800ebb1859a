"""
Structured training telemetry.

The trainer reports one EvaluationRecord per episode and one
GenerationRecord per generation to a TelemetrySink. Sinks are
fire-and-forget: nothing they return is used.
"""

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Protocol

from loguru import logger


@dataclass
class EvaluationRecord:
    generation: int
    genome_index: int
    fitness: float
    distance: float
    avg_velocity: float
    step_count: int
    step_length_sum: float
    step_coverage: float
    single_support_time: float
    foot_lift_count: int
    contact_alternations: int
    survival_time: float
    energy_cost: float
    slip_cost: float
    slip_per_meter: float
    fallen: bool
    hidden_nodes: int
    enabled_connections: int
    skipped: bool = False


@dataclass
class GenerationRecord:
    generation: int
    population_size: int
    species_count: int
    best_fitness: float
    avg_fitness: float
    worst_fitness: float
    # Episode stats of the generation's fittest genome (EpisodeRecord.to_dict).
    best_genome_stats: Dict
    hidden_nodes: int
    total_connections: int
    enabled_connections: int
    step_phase: float
    intermediate_phase: float
    penalty_phase: float
    generations_without_improvement: int
    stagnation_level: int
    best_distance_ever: float
    compatibility_threshold: float
    gait_symmetry: float
    timestamp: float = field(default_factory=time.time)


class TelemetrySink(Protocol):
    def on_evaluation(self, record: EvaluationRecord) -> None:
        ...

    def on_generation(self, record: GenerationRecord) -> None:
        ...


class NullTelemetry:
    def on_evaluation(self, record: EvaluationRecord) -> None:
        pass

    def on_generation(self, record: GenerationRecord) -> None:
        pass


class TelemetryRecorder:
    """Keeps every generation record in memory and can print summaries."""

    def __init__(self, console: bool = True, keep_evaluations: bool = False):
        self.console = console
        self.keep_evaluations = keep_evaluations
        self.generations: List[GenerationRecord] = []
        self.evaluations: List[EvaluationRecord] = []
        self._current: List[EvaluationRecord] = []

    def on_evaluation(self, record: EvaluationRecord) -> None:
        self._current.append(record)
        if self.keep_evaluations:
            self.evaluations.append(record)

    def on_generation(self, record: GenerationRecord) -> None:
        self.generations.append(record)
        self._current = []
        if self.console:
            self._print_summary(record)

    @property
    def current_evaluations(self) -> List[EvaluationRecord]:
        """Episodes reported since the last generation ended."""
        return list(self._current)

    def latest(self) -> Optional[GenerationRecord]:
        return self.generations[-1] if self.generations else None

    def clear(self):
        self.generations = []
        self.evaluations = []
        self._current = []

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(
            {
                "exported_at": time.strftime("%Y-%m-%dT%H:%M:%S"),
                "total_generations": len(self.generations),
                "logs": [asdict(r) for r in self.generations],
            },
            indent=indent,
        )

    def save(self, path: str):
        with open(path, "w") as f:
            f.write(self.to_json())

    def _print_summary(self, record: GenerationRecord):
        stats = record.best_genome_stats
        logger.info(
            "[Gen {}] fitness best={:.1f} avg={:.1f} worst={:.1f} | species={}",
            record.generation,
            record.best_fitness,
            record.avg_fitness,
            record.worst_fitness,
            record.species_count,
        )
        logger.info(
            "[Gen {}] dist={:.2f}m vel={:.2f}m/s survived={:.1f}s{} | steps raw={} effective={} coverage={:.0%}",
            record.generation,
            stats.get("distance", 0.0),
            stats.get("avg_velocity", 0.0),
            stats.get("survived", 0.0),
            " (FELL)" if stats.get("fallen") else "",
            stats.get("step_count", 0),
            stats.get("effective_step_count", 0),
            stats.get("step_coverage", 0.0),
        )
        logger.info(
            "[Gen {}] network {} hidden, {}/{} connections | curriculum step={:.0%} intermediate={:.0%} penalty={:.0%}",
            record.generation,
            record.hidden_nodes,
            record.enabled_connections,
            record.total_connections,
            record.step_phase,
            record.intermediate_phase,
            record.penalty_phase,
        )
        if record.generations_without_improvement > 0:
            logger.warning(
                "[Stagnation] No distance improvement for {} generations (best={:.2f}m, level {})",
                record.generations_without_improvement,
                record.best_distance_ever,
                record.stagnation_level,
            )
