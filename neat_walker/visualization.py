"""
Offline plots for evolved controllers and training runs.
"""

from collections import defaultdict
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import networkx as nx
from matplotlib.lines import Line2D

from .genome import Genome
from .telemetry import GenerationRecord

TYPE_COLORS = {
    "input": "#1B1464",  # Deep navy
    "bias": "#F39C12",  # Golden orange
    "hidden": "#9C27B0",  # Vibrant purple
    "output": "#6F1E51",  # Deep magenta
}
POSITIVE_COLOR = "#2ECC71"
NEGATIVE_COLOR = "#E74C3C"


def network_graph(genome: Genome) -> nx.DiGraph:
    """Enabled topology of a genome as a directed graph."""
    G = nx.DiGraph()
    for node in genome.nodes.values():
        G.add_node(node.id, type=node.type, layer=node.layer)
    for conn in genome.connections.values():
        if conn.enabled:
            G.add_edge(conn.in_node, conn.out_node, weight=conn.weight)
    return G


def layer_positions(genome: Genome, layer_spacing: float = 4.0, node_spacing: float = 1.0):
    """x from the node's layer, nodes of one layer spread vertically."""
    by_layer = defaultdict(list)
    for node in sorted(genome.nodes.values(), key=lambda n: n.id):
        by_layer[node.layer].append(node.id)

    pos = {}
    for layer, ids in by_layer.items():
        for i, node_id in enumerate(ids):
            pos[node_id] = (layer * layer_spacing, (i - len(ids) / 2) * node_spacing)
    return pos


def plot_network(genome: Genome, title: Optional[str] = None):
    """Draw the controller network, saving to ``{title}.png`` when a title is given."""
    G = network_graph(genome)
    pos = layer_positions(genome)

    plt.figure(figsize=(10, 8))
    for node_type, color in TYPE_COLORS.items():
        nodes = [n for n, data in G.nodes(data=True) if data["type"] == node_type]
        if nodes:
            nx.draw_networkx_nodes(
                G, pos, nodelist=nodes, node_color=color, node_shape="o", node_size=300
            )

    edges = list(G.edges(data=True))
    if edges:
        nx.draw_networkx_edges(
            G,
            pos,
            edgelist=[(u, v) for u, v, _ in edges],
            edge_color=[
                POSITIVE_COLOR if d["weight"] >= 0 else NEGATIVE_COLOR for _, _, d in edges
            ],
            width=[0.5 + abs(d["weight"]) for _, _, d in edges],
            arrows=True,
            alpha=0.6,
            arrowsize=8,
        )

    labels = {node: str(node) for node in G.nodes()}
    nx.draw_networkx_labels(G, pos, labels, font_color="white", font_size=7)

    legend_elements = [
        Line2D(
            [0],
            [0],
            marker="o",
            color="w",
            markerfacecolor=color,
            label=node_type.capitalize(),
            markersize=10,
        )
        for node_type, color in TYPE_COLORS.items()
    ]
    legend_elements.append(Line2D([0], [0], color=POSITIVE_COLOR, label="Positive weight"))
    legend_elements.append(Line2D([0], [0], color=NEGATIVE_COLOR, label="Negative weight"))
    plt.legend(handles=legend_elements, loc="center left", bbox_to_anchor=(1, 0.5))
    plt.axis("off")

    if title:
        plt.savefig(f"{title}.png", bbox_inches="tight", dpi=150)
        plt.close()
    else:
        plt.show()


def plot_fitness_history(records: Sequence[GenerationRecord], title: Optional[str] = None):
    """Fitness band and best distance per generation."""
    generations = [r.generation for r in records]
    fig, axes = plt.subplots(1, 2, figsize=(16, 6))

    axes[0].plot(generations, [r.best_fitness for r in records], label="Best")
    axes[0].plot(generations, [r.avg_fitness for r in records], label="Average")
    axes[0].fill_between(
        generations,
        [r.worst_fitness for r in records],
        [r.best_fitness for r in records],
        alpha=0.2,
    )
    axes[0].set_title("Fitness", fontsize=14)
    axes[0].set_xlabel("Generation", fontsize=12)
    axes[0].legend()

    axes[1].plot(
        generations,
        [r.best_genome_stats.get("distance", 0.0) for r in records],
        label="Champion distance",
    )
    axes[1].plot(generations, [r.best_distance_ever for r in records], label="Best ever")
    axes[1].set_title("Distance (m)", fontsize=14)
    axes[1].set_xlabel("Generation", fontsize=12)
    axes[1].legend()

    if title:
        plt.savefig(f"{title}.png", bbox_inches="tight", dpi=150)
        plt.close(fig)
    else:
        plt.show()
