"""
Per-layer diagnostics: quantization/topographic error, convergence, abstraction
"""

import numpy as np
from sklearn.neighbors import KDTree

from .distance import DistanceCalculator
from .structures import Layer, LayerStats


def quantization_error(error_sum: float, iterations: int) -> float:
    """Accumulated BMU distance averaged over the iterations of the run"""
    if iterations <= 0:
        return 0.0
    return float(error_sum) / iterations


def topographic_error(layer: Layer, projected: np.ndarray) -> float:
    """
    Fraction of samples whose two nearest nodes are not grid neighbours.

    ``projected`` holds the samples gated to this layer, already projected
    to its feature count.
    """
    if len(projected) == 0 or layer.n_nodes < 2:
        return 0.0

    tree = KDTree(layer.weights)
    _, indices = tree.query(projected, k=2)
    first = layer.coords[indices[:, 0]]
    second = layer.coords[indices[:, 1]]
    adjacent = DistanceCalculator.chebyshev(first, second) <= 1
    return float(np.count_nonzero(~adjacent)) / len(projected)


def convergence_rate(layer: Layer) -> float:
    """Mean over max activation count; 1.0 means evenly used nodes"""
    counts = layer.activation_counts
    max_count = counts.max() if counts.size else 0
    if max_count == 0:
        return 0.0
    return float(counts.mean() / max_count)


def activation_variance_score(layer: Layer) -> float:
    counts = layer.activation_counts.astype(np.float64)
    if counts.size == 0:
        return 0.0
    mean = counts.mean()
    return float(min(1.0, counts.var() / (mean + 1)))


def cluster_separation(layer: Layer) -> float:
    """Average pairwise mean weight distance between distinct-label node groups"""
    labels = sorted({c for c in layer.clusters if c is not None})
    if len(labels) < 2:
        return 0.0

    groups = {
        label: layer.weights[[i for i, c in enumerate(layer.clusters) if c == label]]
        for label in labels
    }
    distances = [
        DistanceCalculator.mean_pairwise_euclidean(groups[a], groups[b])
        for i, a in enumerate(labels)
        for b in labels[i + 1 :]
    ]
    return float(min(1.0, np.mean(distances)))


def abstraction_quality(layer: Layer) -> float:
    # Level 0 is the baseline of full detail fidelity
    if layer.level == 0:
        return 1.0
    return (activation_variance_score(layer) + cluster_separation(layer)) / 2


def compute_layer_stats(
    layer: Layer, error_sum: float, iterations: int, projected: np.ndarray
) -> LayerStats:
    return LayerStats(
        level=layer.level,
        quantization_error=quantization_error(error_sum, iterations),
        topographic_error=topographic_error(layer, projected),
        convergence_rate=convergence_rate(layer),
        abstraction_quality=abstraction_quality(layer),
        gated_samples=len(projected),
    )
