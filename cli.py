"""
Command Line Interface for the hierarchical SOM with observability
"""

import argparse
import json
import os
import sys
import structlog
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd

from hsom import (
    HSOM,
    HSOMConfig,
    HSOMError,
    TrainingSample,
    setup_logging,
    trace_operation,
    write_metrics,
)

# Initialize observability
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_format=False,  # Use console format for CLI
)

logger = structlog.get_logger()

SAMPLE_COLUMNS = ("id", "label", "complexity", "timestamp")


def _csv_samples(df: pd.DataFrame) -> List[TrainingSample]:
    feature_columns = [
        c
        for c in df.columns
        if c not in SAMPLE_COLUMNS and pd.api.types.is_numeric_dtype(df[c])
    ]
    samples = []
    for position, record in enumerate(df.to_dict(orient="records")):
        features = np.array([record[c] for c in feature_columns], dtype=np.float64)
        # Lower tiers leave their trailing feature cells empty
        present = np.flatnonzero(~np.isnan(features))
        features = features[: present[-1] + 1] if present.size else features[:0]
        samples.append(
            TrainingSample(
                features=features,
                label=str(record.get("label", "")),
                complexity=int(record.get("complexity", 1)),
                id=str(record["id"]) if "id" in record else f"row-{position}",
            )
        )
    return samples


def load_samples(file_path: str, format: str = "auto") -> list:
    """
    Load training samples from JSON or CSV

    JSON holds a list of {features, label, complexity} objects (optionally
    wrapped in {"samples": [...]}); CSV holds label/complexity columns plus
    one numeric column per feature.
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    if format == "auto":
        format = path.suffix.lower()

    try:
        if format in [".csv", "csv"]:
            return _csv_samples(pd.read_csv(file_path))
        elif format in [".json", "json"]:
            with open(file_path, "r") as f:
                data = json.load(f)
            if isinstance(data, dict):
                data = data["samples"]
            return list(data)
        else:
            raise ValueError(f"Unsupported format: {format}")
    except Exception as e:
        raise ValueError(f"Failed to load samples from {file_path}: {e}")


def save_model(hsom: HSOM, output_path: str) -> None:
    """Save trained hierarchy"""
    try:
        hsom.save(output_path)
        print(f"Model saved to: {output_path}")
    except Exception as e:
        print(f"Error saving model: {e}", file=sys.stderr)
        sys.exit(1)


def build_config(args) -> HSOMConfig:
    return HSOMConfig(
        layers=args.layers,
        width=args.width,
        height=args.height,
        learning_rate=args.learning_rate,
        neighborhood_radius=args.radius,
        max_iterations=args.iterations,
        decay_rate=args.decay_rate,
        hierarchy_factor=args.hierarchy_factor,
        refinement_threshold=args.refinement_threshold,
        seed=args.seed,
    )


def print_stats(hsom: HSOM) -> None:
    for stats in hsom.stats.layer_stats:
        print(
            f"Level {stats.level}: "
            f"QE={stats.quantization_error:.4f} "
            f"TE={stats.topographic_error:.4f} "
            f"Convergence={stats.convergence_rate:.4f} "
            f"Abstraction={stats.abstraction_quality:.4f}"
        )


def train_command(args) -> None:
    """Train (or resume) a hierarchical SOM"""
    print(f"Loading samples from: {args.input}")
    try:
        samples = load_samples(args.input, args.format)
        print(f"Samples: {len(samples)}")
        logger.info("Training samples loaded", path=args.input, count=len(samples))

        if args.resume:
            hsom = HSOM.load(args.resume)
            hsom.verbose = args.verbose
            print(f"Resuming from: {args.resume} ({hsom.run_status.value})")
        else:
            hsom = HSOM(build_config(args), verbose=args.verbose)

        shapes = " -> ".join(f"{w}x{h}" for w, h in hsom.get_info()["shapes"])
        print(f"Training HSOM: {shapes}, {hsom.config.max_iterations} iterations")

        with trace_operation(
            "hsom_training", layers=hsom.config.layers, samples=len(samples)
        ):
            hsom.fit(samples)

        print(f"Training completed! Status: {hsom.run_status.value}")
        print_stats(hsom)
    except (HSOMError, ValueError, FileNotFoundError, IOError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    save_model(hsom, args.output)

    if args.metrics_file:
        write_metrics(args.metrics_file)
        print(f"Metrics written to: {args.metrics_file}")


def predict_command(args) -> None:
    """Map samples onto a trained hierarchy"""
    print(f"Loading model from: {args.model}")
    try:
        hsom = HSOM.load(args.model)
    except Exception as e:
        print(f"Error loading model: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Loading samples from: {args.input}")
    try:
        samples = load_samples(args.input, args.format)
        print("Making predictions...")
        results = hsom.predict(samples)

        with open(args.output, "w") as f:
            json.dump({"predictions": results}, f, indent=2)

        print(f"Predictions saved to: {args.output}")
        print(f"Predicted {len(results)} samples")
    except Exception as e:
        print(f"Error loading samples: {e}", file=sys.stderr)
        sys.exit(1)


def snapshot_command(args) -> None:
    """Export the visualization read model of a trained hierarchy"""
    try:
        hsom = HSOM.load(args.model)
        snapshot = hsom.snapshot()
        if args.level is not None:
            snapshot["layers"] = [
                layer for layer in snapshot["layers"] if layer["level"] == args.level
            ]
        with open(args.output, "w") as f:
            json.dump(snapshot, f, indent=2)
        print(f"Snapshot saved to: {args.output}")
    except Exception as e:
        print(f"Error exporting snapshot: {e}", file=sys.stderr)
        sys.exit(1)


def info_command(args) -> None:
    """Show information about a trained hierarchy"""
    print(f"Loading model from: {args.model}")
    try:
        hsom = HSOM.load(args.model)

        info = hsom.get_info()

        print("\n=== HSOM Model Information ===")
        print(f"Status: {info['run_status']}")
        print(f"Iteration: {info['iteration']}")
        print(f"Total Iterations: {info['metadata']['total_iterations']}")
        print(f"Missing Parent Links: {info['missing_links']}")

        print("\n=== Layers ===")
        for summary in info["hierarchy"]:
            width, height = summary["shape"]
            print(
                f"Level {summary['level']} ({summary['abstraction_level']}): "
                f"{width}x{height}, {summary['active_clusters']} clusters, "
                f"{summary['refined_nodes']} refined nodes"
            )

        if hsom.stats.layer_stats:
            print("\n=== Metrics ===")
            print_stats(hsom)

        print("\n=== Configuration ===")
        for key, value in info["config"].items():
            if key not in ["level_features", "input_features"]:  # Skip verbose settings
                print(f"{key}: {value}")

    except Exception as e:
        print(f"Error loading model: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Hierarchical Self-Organizing Map CLI",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Train command
    train_parser = subparsers.add_parser("train", help="Train a new hierarchy")
    train_parser.add_argument("input", help="Input samples file")
    train_parser.add_argument(
        "--output", "-o", default="trained_hsom.pkl", help="Output model file"
    )
    train_parser.add_argument("--layers", type=int, default=5, help="Number of layers")
    train_parser.add_argument("--width", type=int, default=16, help="Base grid width")
    train_parser.add_argument("--height", type=int, default=16, help="Base grid height")
    train_parser.add_argument(
        "--iterations", type=int, default=2000, help="Number of training iterations"
    )
    train_parser.add_argument(
        "--learning-rate", type=float, default=0.4, help="Initial learning rate"
    )
    train_parser.add_argument(
        "--radius", type=float, default=8.0, help="Initial neighborhood radius"
    )
    train_parser.add_argument(
        "--decay-rate", type=float, default=0.98, help="Per-iteration decay"
    )
    train_parser.add_argument(
        "--hierarchy-factor", type=float, default=0.65, help="Grid shrink per level"
    )
    train_parser.add_argument(
        "--refinement-threshold",
        type=float,
        default=0.25,
        help="Activation strength needed to refine a parent",
    )
    train_parser.add_argument(
        "--format",
        choices=["auto", "csv", "json"],
        default="auto",
        help="Input data format",
    )
    train_parser.add_argument(
        "--seed", type=int, help="Random seed for reproducibility"
    )
    train_parser.add_argument(
        "--resume", help="Continue training a saved model instead of creating one"
    )
    train_parser.add_argument(
        "--metrics-file", help="Write Prometheus metrics to this textfile"
    )
    train_parser.add_argument("--verbose", action="store_true", help="Verbose output")

    # Predict command
    predict_parser = subparsers.add_parser(
        "predict", help="Map samples onto a trained hierarchy"
    )
    predict_parser.add_argument("model", help="Trained model file")
    predict_parser.add_argument("input", help="Input samples file")
    predict_parser.add_argument(
        "--output", "-o", default="predictions.json", help="Output predictions file"
    )
    predict_parser.add_argument(
        "--format",
        choices=["auto", "csv", "json"],
        default="auto",
        help="Input data format",
    )

    # Snapshot command
    snapshot_parser = subparsers.add_parser(
        "snapshot", help="Export layers, nodes and links as JSON"
    )
    snapshot_parser.add_argument("model", help="Trained model file")
    snapshot_parser.add_argument(
        "--output", "-o", default="snapshot.json", help="Output JSON file"
    )
    snapshot_parser.add_argument("--level", type=int, help="Only export this level")

    # Info command
    info_parser = subparsers.add_parser("info", help="Show model information")
    info_parser.add_argument("model", help="Trained model file")

    # Version command
    subparsers.add_parser("version", help="Show version information")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "train":
        train_command(args)
    elif args.command == "predict":
        predict_command(args)
    elif args.command == "snapshot":
        snapshot_command(args)
    elif args.command == "info":
        info_command(args)
    elif args.command == "version":
        print("HSOM CLI v0.1.0")
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
