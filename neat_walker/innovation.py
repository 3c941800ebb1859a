"""
Historical markings shared by every genome of one population.
"""

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class SplitRecord:
    new_node_id: int
    in_innovation: int
    out_innovation: int


class InnovationTracker:
    """Assigns innovation numbers to connections and node ids to splits.

    The same (in_node, out_node) pair always maps to the same innovation,
    and splitting the same connection in two genomes yields the same hidden
    node and replacement connections, so crossover can align genes by
    innovation alone. One tracker lives as long as its population.
    """

    def __init__(self, next_node_id: int):
        self._next_innovation = 1
        self._next_node_id = next_node_id
        self._connection_innovations: Dict[Tuple[int, int], int] = {}
        self._splits: Dict[int, SplitRecord] = {}

    @property
    def next_node_id(self) -> int:
        return self._next_node_id

    @property
    def innovation_count(self) -> int:
        return self._next_innovation - 1

    def get_innovation(self, in_node: int, out_node: int) -> int:
        key = (in_node, out_node)
        if key not in self._connection_innovations:
            self._connection_innovations[key] = self._next_innovation
            self._next_innovation += 1
        return self._connection_innovations[key]

    def get_split_record(
        self, connection_innovation: int, in_node: int, out_node: int
    ) -> SplitRecord:
        existing = self._splits.get(connection_innovation)
        if existing is not None:
            return existing
        new_node_id = self.allocate_node_id()
        record = SplitRecord(
            new_node_id=new_node_id,
            in_innovation=self.get_innovation(in_node, new_node_id),
            out_innovation=self.get_innovation(new_node_id, out_node),
        )
        self._splits[connection_innovation] = record
        return record

    def allocate_node_id(self) -> int:
        node_id = self._next_node_id
        self._next_node_id += 1
        return node_id
