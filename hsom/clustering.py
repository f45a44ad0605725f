"""
Post-training cluster assignment and descriptive feature tags
"""

from collections import Counter
from typing import Dict, List, Sequence, Any

import numpy as np

from .structures import Layer

HIGH_THRESHOLD = 0.7
LOW_THRESHOLD = 0.3


def cluster_index(weights: np.ndarray, level: int, n_clusters: int) -> int:
    """
    Map the position of the strongest weight onto the base cluster list.

    Coarser levels may only use the first ``n_clusters - level - 1`` slots
    beyond index 0, modelling fewer distinctions at higher abstraction.
    """
    max_index = int(np.argmax(weights))
    index = int(np.floor(max_index / len(weights) * n_clusters))
    if level > 0:
        index = min(index, max(0, n_clusters - level - 1))
    return min(index, n_clusters - 1)


def cluster_label(weights: np.ndarray, level: int, cluster_names: Sequence[str]) -> str:
    name = cluster_names[cluster_index(weights, level, len(cluster_names))]
    return name if level == 0 else f"{name}-Meta{level}"


def feature_tags(
    weights: np.ndarray, level: int, feature_names: Sequence[str]
) -> List[str]:
    """High/Low tags for extreme weights, plus the abstraction marker above level 0"""
    tags = []
    for i, weight in enumerate(weights):
        name = feature_names[i] if i < len(feature_names) else f"feature_{i}"
        if weight > HIGH_THRESHOLD:
            tags.append(f"High:{name}")
        elif weight < LOW_THRESHOLD:
            tags.append(f"Low:{name}")
    if level > 0:
        tags.append(f"AbstractionLevel:{level + 1}")
    return tags


def assign_clusters(layer: Layer, cluster_names: Sequence[str]) -> None:
    """Label every node of a layer in place"""
    for index in range(layer.n_nodes):
        weights = layer.weights[index]
        layer.clusters[index] = cluster_label(weights, layer.level, cluster_names)
        layer.tags[index] = feature_tags(weights, layer.level, layer.feature_names)


def cluster_distribution(layer: Layer) -> Dict[str, int]:
    return dict(Counter(c for c in layer.clusters if c is not None))


def hierarchy_summary(layers: Sequence[Layer]) -> List[Dict[str, Any]]:
    """Per-layer overview: sizes, active clusters and refinement coverage"""
    summary = []
    for layer in layers:
        distribution = cluster_distribution(layer)
        refined = layer.refinement_levels[layer.refinement_levels > 0]
        summary.append(
            {
                "level": layer.level,
                "abstraction_level": layer.abstraction_level,
                "shape": (layer.width, layer.height),
                "total_nodes": layer.n_nodes,
                "resolution": layer.resolution,
                "active_clusters": len(distribution),
                "cluster_distribution": distribution,
                "refined_nodes": int(refined.size),
                "mean_refinement": float(refined.mean()) if refined.size else 0.0,
            }
        )
    return summary
