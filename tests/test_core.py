"""
Tests for the core hierarchical SOM engine
"""

import asyncio
import math
import os
import tempfile

import pytest
import numpy as np

from hsom import (
    HSOM,
    HSOMConfig,
    RunStatus,
    TrainingSample,
    EmptyTrainingSetError,
    HSOMError,
    ProgressCallback,
)
from hsom.builder import layer_dimensions


def two_cluster_samples(n=200, seed=0):
    rng = np.random.RandomState(seed)
    samples = []
    for i in range(n):
        center = 0.2 if i % 2 == 0 else 0.8
        features = center + (rng.random_sample(5) - 0.5) * 0.1
        samples.append(TrainingSample(features=features, label=str(center)))
    return samples


@pytest.mark.unit
class TestHSOMInitialization:
    """Test engine construction and lifecycle"""

    def test_hsom_creation(self, basic_config):
        hsom = HSOM(basic_config, verbose=False)
        assert hsom.config == basic_config
        assert len(hsom.layers) == 3
        shapes = [(layer.width, layer.height) for layer in hsom.layers]
        assert shapes == [(8, 8), (5, 5), (4, 4)]
        assert hsom.run_status == RunStatus.IDLE
        assert hsom.training_state["iteration"] == 0
        assert hsom.training_state["learning_rate"] == basic_config.learning_rate
        assert hsom.missing_links == []
        assert hsom.stats.layer_stats == []

    def test_dispose_and_initialize(self, trained_hsom):
        trained_hsom.dispose()
        assert trained_hsom.layers == []
        assert trained_hsom.samples == []

        trained_hsom.initialize()
        assert len(trained_hsom.layers) == 3
        assert trained_hsom.run_status == RunStatus.IDLE
        assert all(layer.activation_counts.sum() == 0 for layer in trained_hsom.layers)


@pytest.mark.unit
class TestTrainingData:
    """Test sample validation"""

    def test_empty_training_set(self, basic_config):
        hsom = HSOM(basic_config, verbose=False)
        with pytest.raises(EmptyTrainingSetError, match="empty"):
            hsom.fit([])

        # No run happened, so there are no stats and nothing is NaN
        assert hsom.run_status == RunStatus.IDLE
        assert hsom.stats.layer_stats == []
        assert hsom.training_state["iteration"] == 0

    def test_start_without_samples(self, basic_config):
        hsom = HSOM(basic_config, verbose=False)
        with pytest.raises(EmptyTrainingSetError):
            hsom.start_training()

    def test_malformed_samples_skipped(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        malformed = [
            {"features": [math.nan, 0.1, 0.2, 0.3, 0.4]},
            {"features": "not numbers"},
            {"label": "no features"},
            {"features": [0.1] * 5, "complexity": 0},
            {"features": []},
        ]

        usable = hsom.set_training_data(list(small_samples) + malformed)

        assert usable == len(small_samples)
        assert hsom.metadata["skipped_samples"] == len(malformed)

    def test_only_malformed_samples(self, basic_config):
        hsom = HSOM(basic_config, verbose=False)
        with pytest.raises(EmptyTrainingSetError):
            hsom.fit([{"features": [math.inf] * 5}])

    def test_mapping_samples_accepted(self, minimal_config):
        hsom = HSOM(minimal_config, verbose=False)
        samples = [
            {"features": [0.1, 0.2, 0.3, 0.4, 0.5], "label": "a", "complexity": 2},
            {"features": [0.5, 0.4, 0.3, 0.2, 0.1, 0.9, 0.9], "complexity": 2},
        ]
        hsom.fit(samples)
        assert hsom.run_status == RunStatus.COMPLETED
        assert hsom.samples[0].label == "a"


@pytest.mark.integration
class TestHSOMTraining:
    """Test training runs"""

    def test_basic_training(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        result = hsom.fit(small_samples)

        assert result is hsom
        assert hsom.run_status == RunStatus.COMPLETED
        assert hsom.training_state["iteration"] == basic_config.max_iterations
        assert hsom.metadata["total_iterations"] == basic_config.max_iterations
        assert hsom.metadata["total_runs"] == 1
        assert hsom.stats.total_iterations == basic_config.max_iterations
        assert len(hsom.stats.layer_stats) == 3
        for stats in hsom.stats.layer_stats:
            assert math.isfinite(stats.quantization_error)
            assert 0.0 <= stats.topographic_error <= 1.0
            assert 0.0 <= stats.convergence_rate <= 1.0
            assert 0.0 <= stats.abstraction_quality <= 1.0
        assert hsom.stats.layer_stats[0].abstraction_quality == 1.0

    def test_learning_rate_and_radius_decay(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False).fit(small_samples)
        decay = basic_config.decay_rate**basic_config.max_iterations
        assert hsom.training_state["learning_rate"] == pytest.approx(
            basic_config.learning_rate * decay
        )
        assert hsom.training_state["radius"] == pytest.approx(
            basic_config.neighborhood_radius * decay
        )

    def test_every_iteration_trains_finest_level(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False).fit(small_samples)
        assert hsom.layers[0].activation_counts.sum() == basic_config.max_iterations

    def test_gating_attributes_tiers(self, basic_config):
        rng = np.random.RandomState(11)
        samples = [
            TrainingSample(features=rng.random_sample(5), complexity=1)
            for _ in range(20)
        ] + [
            TrainingSample(features=rng.random_sample(9), complexity=3)
            for _ in range(10)
        ]
        hsom = HSOM(basic_config, verbose=False).fit(samples)

        # Replay the engine RNG: initial weights first, then one draw per iteration
        replay = np.random.RandomState(basic_config.seed)
        for level, (width, height) in enumerate(layer_dimensions(basic_config)):
            n_features = basic_config.projection.feature_count(level)
            replay.random_sample((width * height, n_features))
        draws = [replay.randint(len(samples)) for _ in range(basic_config.max_iterations)]
        tier_three = sum(1 for i in draws if samples[i].complexity == 3)

        assert 0 < tier_three < basic_config.max_iterations
        assert hsom.layers[0].activation_counts.sum() == basic_config.max_iterations
        assert hsom.layers[1].activation_counts.sum() == tier_three
        assert hsom.layers[2].activation_counts.sum() == tier_three

    def test_gating_blocks_coarse_levels(self, basic_config, tier_one_samples):
        hsom = HSOM(basic_config, verbose=False).fit(tier_one_samples)

        assert hsom.layers[0].activation_counts.sum() == basic_config.max_iterations
        assert hsom.layers[1].activation_counts.sum() == 0
        assert hsom.layers[2].activation_counts.sum() == 0
        assert hsom.training_state["gated_counts"] == [basic_config.max_iterations, 0, 0]
        # Refinement reaches level 1 from level 0 but level 1 never activates
        assert hsom.layers[1].refinement_levels.max() > 0
        assert np.all(hsom.layers[2].refinement_levels == 0)
        assert hsom.stats.layer_stats[1].gated_samples == 0
        assert hsom.stats.layer_stats[1].quantization_error == 0.0

    def test_refinement_bounded(self, trained_hsom):
        for layer in trained_hsom.layers:
            assert np.all(layer.refinement_levels >= 0)
            assert np.all(layer.refinement_levels <= 1)
        assert np.all(trained_hsom.layers[0].refinement_levels == 0)
        # Two passes ran (iterations 0 and 50)
        assert trained_hsom.training_state["refinement_passes"] == 2

    def test_refinement_disabled(self, small_samples):
        config = HSOMConfig(
            layers=3,
            width=8,
            height=8,
            max_iterations=200,
            refinement_threshold=1.1,
            seed=42,
        )
        hsom = HSOM(config, verbose=False).fit(small_samples)

        for layer in hsom.layers:
            assert np.all(layer.refinement_levels == 0)
        assert hsom.run_status == RunStatus.COMPLETED
        assert len(hsom.stats.layer_stats) == 3

    def test_clusters_assigned_after_training(self, trained_hsom):
        for layer in trained_hsom.layers:
            assert all(cluster is not None for cluster in layer.clusters)
        assert all("-Meta1" in c for c in trained_hsom.layers[1].clusters)
        assert all("AbstractionLevel:3" in t for t in trained_hsom.layers[2].tags)

    def test_seeded_runs_are_reproducible(self, basic_config, small_samples):
        first = HSOM(basic_config, verbose=False).fit(small_samples)
        second = HSOM(basic_config, verbose=False).fit(small_samples)
        for a, b in zip(first.layers, second.layers):
            np.testing.assert_array_equal(a.weights, b.weights)
            np.testing.assert_array_equal(a.activation_counts, b.activation_counts)

    @pytest.mark.slow
    def test_longer_training_lowers_quantization_error(self):
        samples = two_cluster_samples()

        def run(iterations):
            config = HSOMConfig(
                layers=2,
                width=8,
                height=8,
                neighborhood_radius=4.0,
                decay_rate=0.995,
                max_iterations=iterations,
                seed=0,
            )
            return HSOM(config, verbose=False).fit(samples)

        short = run(200).stats.layer_stats[0].quantization_error
        long = run(2000).stats.layer_stats[0].quantization_error
        assert long < short

    @pytest.mark.slow
    @pytest.mark.parametrize("seed", [0, 3, 42])
    def test_reference_hierarchy(self, operational_samples, seed):
        config = HSOMConfig(
            layers=3,
            width=16,
            height=16,
            hierarchy_factor=0.65,
            decay_rate=0.995,
            max_iterations=2000,
            seed=seed,
        )
        hsom = HSOM(config, verbose=False).fit(operational_samples)

        shapes = [(layer.width, layer.height) for layer in hsom.layers]
        assert shapes == [(16, 16), (10, 10), (6, 6)]
        assert hsom.stats.layer_stats[0].abstraction_quality == 1.0
        assert hsom.stats.layer_stats[0].topographic_error < 0.3
        assert hsom.run_status == RunStatus.COMPLETED


@pytest.mark.integration
class TestCooperativeTraining:
    """Test yielding, progress reports and cancellation"""

    def test_progress_cadence(self, basic_config, small_samples):
        reports = []
        hsom = HSOM(basic_config, verbose=False)
        hsom.fit(small_samples, callbacks=[ProgressCallback(reports.append)])

        iterations = [r["iteration"] for r in reports]
        assert iterations == [0, 20, 40, 60, 80, 100]
        assert reports[-1]["progress_percent"] == 100.0
        percents = [r["progress_percent"] for r in reports]
        assert percents == sorted(percents)

    def test_resume_returns_progress(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        task = hsom.start_training(small_samples)
        assert hsom.run_status == RunStatus.RUNNING

        progress = task.resume()
        assert progress.iteration == 0
        assert not progress.done
        progress = task.resume()
        assert progress.iteration == 20
        assert progress.progress_percent == pytest.approx(20.0)
        assert hsom.training_state["iteration"] == 21

        final = task.run()
        assert final.done
        assert task.done
        assert task.resume() is final
        assert hsom.run_status == RunStatus.COMPLETED

    def test_cancel_at_next_boundary(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        task = hsom.start_training(small_samples)
        task.resume()
        task.cancel()
        assert task.cancel_requested

        progress = task.resume()

        assert progress.cancelled
        assert progress.iteration == 1
        assert task.done
        assert hsom.run_status == RunStatus.CANCELLED
        assert hsom.layers[0].activation_counts.sum() == 1
        # Stats stay empty until a run completes
        assert hsom.stats.layer_stats == []

    def test_cancelled_run_resumes(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        task = hsom.start_training(small_samples)
        task.resume()
        task.resume()
        task.cancel()
        task.resume()

        hsom.fit()

        assert hsom.run_status == RunStatus.COMPLETED
        assert hsom.training_state["iteration"] == basic_config.max_iterations
        assert hsom.layers[0].activation_counts.sum() == basic_config.max_iterations

    def test_completed_run_restarts_fresh(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False).fit(small_samples)
        hsom.fit()
        assert hsom.training_state["iteration"] == basic_config.max_iterations
        assert hsom.metadata["total_iterations"] == 2 * basic_config.max_iterations
        assert hsom.metadata["total_runs"] == 2

    def test_fit_async(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        asyncio.run(hsom.fit_async(small_samples))
        assert hsom.run_status == RunStatus.COMPLETED
        assert hsom.training_state["iteration"] == basic_config.max_iterations

    def test_fit_with_progress_bar(self, minimal_config, small_samples):
        hsom = HSOM(minimal_config, verbose=True)
        hsom.fit(small_samples)
        assert hsom.run_status == RunStatus.COMPLETED

    def test_failure_marks_run_failed(self, basic_config, small_samples, monkeypatch):
        hsom = HSOM(basic_config, verbose=False)

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(hsom, "_train_sample", broken)
        with pytest.raises(RuntimeError, match="boom"):
            hsom.fit(small_samples)
        assert hsom.run_status == RunStatus.FAILED

    def test_failed_run_stays_failed(self, basic_config, small_samples, monkeypatch):
        hsom = HSOM(basic_config, verbose=False)
        task = hsom.start_training(small_samples)

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(hsom, "_train_sample", broken)
        with pytest.raises(RuntimeError, match="boom"):
            task.resume()

        progress = task.resume()

        assert progress.failed
        assert not progress.done
        assert task.done
        assert progress.iteration == 0
        assert hsom.run_status == RunStatus.FAILED
        assert hsom.stats.layer_stats == []

    def test_disposed_engine_refuses_training(self, basic_config, small_samples):
        hsom = HSOM(basic_config, verbose=False)
        hsom.dispose()

        with pytest.raises(HSOMError, match="initialize"):
            hsom.fit(small_samples)
        assert hsom.run_status == RunStatus.IDLE

        hsom.initialize().fit(small_samples)
        assert hsom.run_status == RunStatus.COMPLETED


@pytest.mark.integration
class TestHSOMAnalysis:
    """Test predictions, errors and read models"""

    def test_predict(self, trained_hsom, small_samples):
        results = trained_hsom.predict(small_samples)
        assert len(results) == len(small_samples)
        for sample, result in zip(small_samples, results):
            assert result["sample_id"] == sample.id
            assert len(result["levels"]) == min(sample.complexity, 3)
            for level in result["levels"]:
                layer = trained_hsom.layers[level["level"]]
                assert 0 <= level["bmu"] < layer.n_nodes
                assert layer.index_of(level["x"], level["y"]) == level["bmu"]
                assert level["cluster"] == layer.clusters[level["bmu"]]
                assert level["distance"] >= 0

    def test_predict_skips_malformed(self, trained_hsom):
        results = trained_hsom.predict([{"features": [math.nan] * 5}])
        assert results == []

    def test_quantization_error(self, trained_hsom, small_samples):
        errors = trained_hsom.quantization_error(small_samples)
        assert len(errors) == 3
        assert all(e >= 0 and math.isfinite(e) for e in errors)

    def test_topographic_error(self, trained_hsom, small_samples):
        errors = trained_hsom.topographic_error(small_samples)
        assert len(errors) == 3
        assert all(0.0 <= e <= 1.0 for e in errors)
        tier_one = [s for s in small_samples if s.complexity == 1]
        assert trained_hsom.topographic_error(tier_one)[1:] == [0.0, 0.0]

    def test_find_bmu_ties_go_to_lowest_index(self, minimal_config):
        hsom = HSOM(minimal_config, verbose=False)
        layer = hsom.layers[0]
        layer.weights[:] = 0.5
        bmu, distance = hsom.find_bmu(layer, np.full(5, 0.5))
        assert bmu == 0
        assert distance == 0.0

    def test_snapshot(self, trained_hsom):
        snapshot = trained_hsom.snapshot()

        assert snapshot["run_status"] == "completed"
        assert snapshot["iteration"] == 100
        assert len(snapshot["layers"]) == 3
        first = snapshot["layers"][0]
        assert first["abstraction_level"] == "Detailed"
        assert len(first["nodes"]) == 64
        node = first["nodes"][9]
        assert node["id"] == "L0-1-1"
        assert (node["x"], node["y"]) == (1, 1)
        assert len(node["weights"]) == 5
        assert node["parent"] is not None
        for key in ("activation_count", "refinement_level", "cluster", "tags", "children"):
            assert key in node
        assert len(snapshot["links"]) == 64 + 25
        assert len(snapshot["stats"]["layer_stats"]) == 3

    def test_snapshot_is_a_copy(self, trained_hsom):
        snapshot = trained_hsom.snapshot()
        snapshot["layers"][0]["nodes"][0]["weights"][0] = 99.0
        assert trained_hsom.layers[0].weights[0, 0] != 99.0

    def test_hierarchy_summary(self, trained_hsom):
        summary = trained_hsom.hierarchy_summary()
        assert [s["abstraction_level"] for s in summary] == [
            "Detailed",
            "Abstracted",
            "Conceptual",
        ]
        assert all(s["active_clusters"] >= 1 for s in summary)
        assert summary[1]["refined_nodes"] >= 1

    def test_get_info(self, trained_hsom):
        info = trained_hsom.get_info()
        assert info["run_status"] == "completed"
        assert info["shapes"] == [(8, 8), (5, 5), (4, 4)]
        assert info["n_nodes"] == [64, 25, 16]
        assert info["n_features"] == [5, 7, 9]
        assert info["missing_links"] == 0
        assert info["config"]["layers"] == 3
        assert "creation_time" in info["metadata"]
        assert len(info["hierarchy"]) == 3


@pytest.mark.integration
@pytest.mark.io
class TestPersistence:
    """Test save/load and resumable state"""

    def test_save_load(self, trained_hsom):
        with tempfile.NamedTemporaryFile(delete=False, suffix=".pkl") as f:
            filepath = f.name

        try:
            trained_hsom.save(filepath)
            assert os.path.exists(filepath)

            loaded = HSOM.load(filepath)

            assert loaded.config == trained_hsom.config
            assert loaded.run_status == RunStatus.COMPLETED
            assert loaded.stats == trained_hsom.stats
            for a, b in zip(loaded.layers, trained_hsom.layers):
                np.testing.assert_array_equal(a.weights, b.weights)
                np.testing.assert_array_equal(a.parents, b.parents)
                assert a.children == b.children
                assert a.clusters == b.clusters
        finally:
            if os.path.exists(filepath):
                os.unlink(filepath)

    def test_resume_after_reload_matches_uninterrupted_run(
        self, basic_config, small_samples
    ):
        reference = HSOM(basic_config, verbose=False).fit(small_samples)

        hsom = HSOM(basic_config, verbose=False)
        task = hsom.start_training(small_samples)
        for _ in range(3):
            task.resume()
        task.cancel()
        task.resume()

        with tempfile.TemporaryDirectory() as tmpdir:
            filepath = os.path.join(tmpdir, "interrupted.pkl")
            hsom.save(filepath)
            restored = HSOM.load(filepath)

        assert restored.run_status == RunStatus.CANCELLED
        restored.fit(small_samples)

        assert restored.run_status == RunStatus.COMPLETED
        assert restored.metadata["total_iterations"] == basic_config.max_iterations
        for a, b in zip(restored.layers, reference.layers):
            np.testing.assert_allclose(a.weights, b.weights)
            np.testing.assert_array_equal(a.activation_counts, b.activation_counts)

    def test_state_round_trip(self, trained_hsom):
        restored = HSOM.from_state(trained_hsom.to_state())
        assert restored.training_state == trained_hsom.training_state
        assert restored.metadata == trained_hsom.metadata
        assert restored.snapshot()["links"] == trained_hsom.snapshot()["links"]

    def test_invalid_file_operations(self, trained_hsom):
        with pytest.raises(IOError):
            trained_hsom.save("/invalid/path/model.pkl")

        with pytest.raises(IOError):
            HSOM.load("/non/existent/file.pkl")
