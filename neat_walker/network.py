"""
Feed-forward evaluator compiled from a genome.
"""

from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from .errors import InputArityMismatch

if TYPE_CHECKING:
    from .genome import Genome

Incoming = Tuple[np.ndarray, np.ndarray]  # (source indices, weights)


class Network:
    """Layered network built once per genome evaluation.

    Nodes are stored in (layer, id) order. Every connection goes from a
    lower to a higher layer, so one pass over that order evaluates the
    whole graph.
    """

    def __init__(
        self,
        node_types: List[str],
        incoming: List[Incoming],
        input_indices: List[int],
        bias_index: Optional[int],
        output_indices: List[int],
    ):
        self.node_types = node_types
        self.incoming = incoming
        self.input_indices = input_indices
        self.bias_index = bias_index
        self.output_indices = output_indices
        self._values = np.zeros(len(node_types), dtype=np.float64)
        self._batched = None

    @classmethod
    def from_genome(cls, genome: "Genome") -> "Network":
        ordered = sorted(genome.nodes.values(), key=lambda n: (n.layer, n.id))
        index_by_id = {node.id: i for i, node in enumerate(ordered)}

        sources: List[List[int]] = [[] for _ in ordered]
        weights: List[List[float]] = [[] for _ in ordered]
        for conn in genome.connections.values():
            if not conn.enabled:
                continue
            src = index_by_id.get(conn.in_node)
            dst = index_by_id.get(conn.out_node)
            if src is None or dst is None:
                continue
            sources[dst].append(src)
            weights[dst].append(conn.weight)

        incoming = [
            (np.asarray(s, dtype=np.intp), np.asarray(w, dtype=np.float64))
            for s, w in zip(sources, weights)
        ]
        return cls(
            node_types=[node.type for node in ordered],
            incoming=incoming,
            input_indices=[index_by_id[i] for i in genome.input_ids if i in index_by_id],
            bias_index=index_by_id.get(genome.bias_id),
            output_indices=[index_by_id[o] for o in genome.output_ids if o in index_by_id],
        )

    @property
    def input_count(self) -> int:
        return len(self.input_indices)

    @property
    def output_count(self) -> int:
        return len(self.output_indices)

    def activate(self, inputs: Sequence[float]) -> List[float]:
        """Evaluate one input vector; returns outputs in declared order."""
        if len(inputs) != len(self.input_indices):
            raise InputArityMismatch(len(self.input_indices), len(inputs))

        values = self._values
        values.fill(0.0)
        values[self.input_indices] = inputs
        if self.bias_index is not None:
            values[self.bias_index] = 1.0

        for i, node_type in enumerate(self.node_types):
            if node_type in ("input", "bias"):
                continue
            src, w = self.incoming[i]
            values[i] = np.tanh(np.dot(values[src], w)) if len(src) else 0.0

        return [float(values[i]) for i in self.output_indices]

    def _forward_impl(self, x: jnp.ndarray) -> jnp.ndarray:
        values = [jnp.zeros((), dtype=x.dtype) for _ in self.node_types]
        for pos, i in enumerate(self.input_indices):
            values[i] = x[pos]
        if self.bias_index is not None:
            values[self.bias_index] = jnp.ones((), dtype=x.dtype)

        for i, node_type in enumerate(self.node_types):
            if node_type in ("input", "bias"):
                continue
            src, w = self.incoming[i]
            total = jnp.zeros((), dtype=x.dtype)
            for j, weight in zip(src.tolist(), w.tolist()):
                total = total + values[j] * weight
            values[i] = jnp.tanh(total)

        return jnp.stack([values[i] for i in self.output_indices])

    def activate_batch(self, inputs) -> jnp.ndarray:
        """Evaluate a (batch, input_count) array in one compiled call."""
        x = jnp.asarray(inputs, dtype=jnp.float32)
        if x.ndim == 1:
            x = x[None, :]
        if x.shape[-1] != len(self.input_indices):
            raise InputArityMismatch(len(self.input_indices), int(x.shape[-1]))
        if not self.output_indices:
            return jnp.zeros((x.shape[0], 0), dtype=x.dtype)
        if self._batched is None:
            self._batched = jax.jit(jax.vmap(self._forward_impl))
        return self._batched(x)
