"""
Compatibility distance and the species container.
"""

from dataclasses import dataclass, field
from typing import List

from .config import SpeciationConfig
from .genome import Genome

DEFAULT_SPECIATION = SpeciationConfig()


def compatibility_distance(
    a: Genome, b: Genome, config: SpeciationConfig = DEFAULT_SPECIATION
) -> float:
    """NEAT distance between two genomes.

    Connections are aligned by innovation in one merge pass. Genes past the
    other genome's highest innovation count as excess, the rest of the
    unmatched ones as disjoint. Small genomes (under
    ``config.normalize_threshold`` genes) are not normalized by size.
    """
    a_genes = a.sorted_connections()
    b_genes = b.sorted_connections()
    a_max = a_genes[-1].innovation if a_genes else 0
    b_max = b_genes[-1].innovation if b_genes else 0

    i = j = 0
    matching = 0
    weight_diff = 0.0
    disjoint = 0
    excess = 0

    while i < len(a_genes) and j < len(b_genes):
        ga, gb = a_genes[i], b_genes[j]
        if ga.innovation == gb.innovation:
            matching += 1
            weight_diff += abs(ga.weight - gb.weight)
            i += 1
            j += 1
        elif ga.innovation < gb.innovation:
            if ga.innovation > b_max:
                excess += 1
            else:
                disjoint += 1
            i += 1
        else:
            if gb.innovation > a_max:
                excess += 1
            else:
                disjoint += 1
            j += 1

    # Whatever is left on either side lies past the other genome's range
    excess += (len(a_genes) - i) + (len(b_genes) - j)

    n = max(len(a_genes), len(b_genes))
    normalizer = n if n >= config.normalize_threshold else 1
    avg_weight_diff = weight_diff / matching if matching else 0.0
    hidden_diff = abs(a.hidden_count - b.hidden_count)

    return (
        config.excess_coefficient * excess / normalizer
        + config.disjoint_coefficient * disjoint / normalizer
        + config.weight_coefficient * avg_weight_diff
        + config.hidden_node_coefficient * hidden_diff
    )


@dataclass
class Species:
    id: int
    representative: Genome
    members: List[Genome] = field(default_factory=list)
    adjusted_fitness_sum: float = 0.0

    def reset(self):
        """Drop members before the next speciation pass; keeps id and representative."""
        self.members = []
        self.adjusted_fitness_sum = 0.0

    def __len__(self):
        return len(self.members)
