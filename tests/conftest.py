"""
Pytest configuration and fixtures for HSOM tests
"""

import pytest
import numpy as np

from examples import generate_operational_samples
from hsom import HSOM, HSOMConfig, TrainingSample


@pytest.fixture
def operational_samples():
    """Synthetic three-tier operational dataset"""
    return generate_operational_samples(300, seed=42)


@pytest.fixture
def small_samples():
    """Small mixed-tier dataset for quick tests"""
    return generate_operational_samples(60, seed=7)


@pytest.fixture
def tier_one_samples():
    """Samples that only unlock the finest level"""
    rng = np.random.RandomState(3)
    return [
        TrainingSample(features=rng.random_sample(5), label="base", complexity=1)
        for _ in range(30)
    ]


@pytest.fixture
def basic_config():
    """Three-level hierarchy configuration for testing"""
    return HSOMConfig(layers=3, width=8, height=8, max_iterations=100, seed=42)


@pytest.fixture
def minimal_config():
    """Minimal configuration for quick tests"""
    return HSOMConfig(layers=2, width=6, height=6, max_iterations=40, seed=42)


@pytest.fixture
def trained_hsom(basic_config, small_samples):
    """Pre-trained hierarchy for testing"""
    hsom = HSOM(basic_config, verbose=False)
    hsom.fit(small_samples)
    return hsom
