"""
Bottom-up refinement: activation evidence from fine layers nudges coarser ones
"""

from typing import List

import numpy as np

from .config import HSOMConfig
from .structures import Layer


def _aligned(child: np.ndarray, length: int) -> np.ndarray:
    """Child weights padded with zeros (or truncated) to the parent's length"""
    out = np.zeros(length, dtype=np.float64)
    n = min(length, len(child))
    out[:n] = child[:n]
    return out


def refine_pair(fine: Layer, coarse: Layer, config: HSOMConfig) -> int:
    """
    Propagate strongly activated fine nodes into their parents.

    Returns the number of parent updates applied.
    """
    max_count = int(fine.activation_counts.max()) if fine.n_nodes else 0
    if max_count == 0:
        return 0

    updates = 0
    blend = config.refinement_blend
    for index in np.flatnonzero(fine.activation_counts > 0):
        parent = int(fine.parents[index])
        if parent == Layer.NO_PARENT:
            continue
        strength = fine.activation_counts[index] / max_count
        if strength <= config.refinement_threshold:
            continue
        coarse.refinement_levels[parent] = min(
            1.0, coarse.refinement_levels[parent] + config.refinement_step
        )
        child = _aligned(fine.weights[index], coarse.n_features)
        coarse.weights[parent] = (1 - blend) * coarse.weights[parent] + blend * child
        updates += 1
    return updates


def refine_hierarchy(layers: List[Layer], config: HSOMConfig) -> int:
    """Run one refinement pass over every adjacent (fine, coarse) pair"""
    return sum(
        refine_pair(fine, coarse, config) for fine, coarse in zip(layers, layers[1:])
    )
