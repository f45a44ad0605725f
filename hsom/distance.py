"""Distance calculation utilities for the hierarchical SOM."""

import numpy as np


class DistanceCalculator:
    """Calculate weight-space and grid-space distances."""

    @staticmethod
    def euclidean(a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Calculate Euclidean distance."""
        return np.linalg.norm(a - b, axis=-1)

    @staticmethod
    def chebyshev(a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Calculate Chebyshev distance."""
        return np.max(np.abs(a - b), axis=-1)

    @staticmethod
    def mean_pairwise_euclidean(a: np.ndarray, b: np.ndarray) -> float:
        """Average Euclidean distance over every (row of a, row of b) pair."""
        if len(a) == 0 or len(b) == 0:
            return 0.0
        diffs = a[:, np.newaxis, :] - b[np.newaxis, :, :]
        return float(np.mean(np.linalg.norm(diffs, axis=-1)))
