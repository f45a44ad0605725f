"""
Example usage of the HSOM package
"""

import os
import shutil
from typing import List, Optional

import numpy as np

from hsom import HSOM, HSOMConfig, ProgressCallback, TrainingSample


# Base operating patterns per complexity tier, with their share of the dataset
OPERATIONAL_PATTERNS = [
    ([0.2, 0.8, 0.3, 0.7, 0.1], "Normal operation", 1, 0.40),
    ([0.9, 0.1, 0.8, 0.2, 0.6], "Door blockage", 1, 0.15),
    ([0.3, 0.4, 0.6, 0.3, 0.9], "Scheduled maintenance", 1, 0.10),
    ([0.4, 0.6, 0.9, 0.5, 0.7], "Weather + delay", 2, 0.12),
    ([0.8, 0.3, 0.7, 0.8, 0.4], "Rush hour + door issues", 2, 0.08),
    ([0.7, 0.9, 0.8, 0.6, 0.5], "Multi-factor emergency", 3, 0.05),
    ([0.6, 0.5, 0.9, 0.9, 0.8], "Network overload", 3, 0.04),
    ([0.9, 0.7, 0.4, 0.8, 0.3], "Rush hour standard", 2, 0.06),
]


def generate_operational_samples(
    n_samples: int = 300, noise: float = 0.3, seed: Optional[int] = None
) -> List[TrainingSample]:
    """
    Synthetic labeled operational data across three complexity tiers.

    Tier 2 samples carry two extra interaction features and tier 3 samples
    two more network features on top of the five base measurements.
    """
    rng = np.random.RandomState(seed)
    samples = []
    for pattern_index, (base, label, complexity, share) in enumerate(
        OPERATIONAL_PATTERNS
    ):
        for i in range(int(np.floor(share * n_samples))):
            features = np.clip(
                np.array(base) + (rng.random_sample(len(base)) - 0.5) * noise, 0, 1
            ).tolist()
            if complexity >= 2:
                features += [rng.random_sample(), rng.random_sample() * 0.5 + 0.2]
            if complexity >= 3:
                features += [rng.random_sample() * 0.8, rng.random_sample() * 0.6 + 0.1]
            samples.append(
                TrainingSample(
                    features=features,
                    label=label,
                    complexity=complexity,
                    id=f"{pattern_index}-{i}",
                )
            )
    rng.shuffle(samples)
    return samples


def run_examples():
    """Run examples of HSOM usage"""

    # Example 1: Train a three-level hierarchy with progress reporting
    print("Example 1: Three-level hierarchy")
    samples = generate_operational_samples(300, seed=42)

    config = HSOMConfig(
        layers=3, width=16, height=16, decay_rate=0.995, max_iterations=2000, seed=42
    )
    hsom = HSOM(config)

    reports = []
    hsom.fit(samples, callbacks=[ProgressCallback(reports.append)])
    print(f"Received {len(reports)} progress reports")

    for stats in hsom.stats.layer_stats:
        print(
            f"Level {stats.level}: QE={stats.quantization_error:.4f} "
            f"TE={stats.topographic_error:.4f} "
            f"convergence={stats.convergence_rate:.3f} "
            f"abstraction={stats.abstraction_quality:.3f}"
        )

    for summary in hsom.hierarchy_summary():
        print(
            f"{summary['abstraction_level']}: {summary['shape'][0]}x{summary['shape'][1]}, "
            f"{summary['active_clusters']} active clusters, "
            f"{summary['refined_nodes']} refined nodes"
        )

    hsom.save("hsom_example.pkl")
    print("Model saved!")

    # Example 2: Cooperative training, cancelled halfway and resumed after reload
    print("\nExample 2: Cancel, save, reload and resume")
    hsom = HSOM(HSOMConfig(layers=3, max_iterations=1000, seed=7), verbose=False)
    task = hsom.start_training(samples)
    progress = task.resume()
    while progress.progress_percent < 50:
        progress = task.resume()
    task.cancel()
    progress = task.resume()
    print(f"Cancelled at iteration {progress.iteration} ({hsom.run_status.value})")

    hsom.save("hsom_interrupted.pkl")
    restored = HSOM.load("hsom_interrupted.pkl")
    restored.fit(samples)
    print(
        f"Resumed run finished with status {restored.run_status.value} "
        f"after {restored.stats.total_iterations} iterations"
    )

    # Example 3: Map new observations onto the trained hierarchy
    print("\nExample 3: Predictions")
    for result in restored.predict(generate_operational_samples(20, seed=3)[:3]):
        path = " -> ".join(level["cluster"] for level in result["levels"])
        print(f"{result['label']}: {path}")

    if os.path.exists("models"):
        shutil.rmtree("models")


if __name__ == "__main__":
    run_examples()
