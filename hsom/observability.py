"""
Observability infrastructure for the hierarchical SOM
Provides structured logging, metrics and operation tracing
"""

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Iterable

import structlog
from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    write_to_textfile,
)


# Prometheus Metrics
TRAINING_DURATION = Histogram(
    "hsom_training_duration_seconds",
    "Hierarchical SOM training duration in seconds",
    ["layers"],
)

TRAINING_ITERATIONS = Counter(
    "hsom_training_iterations_total", "Total training iterations completed"
)

TRAINING_RUNS = Counter(
    "hsom_training_runs_total", "Training runs by final status", ["status"]
)

REFINEMENT_PASSES = Counter(
    "hsom_refinement_passes_total", "Hierarchical refinement passes executed"
)

REFINEMENT_UPDATES = Counter(
    "hsom_refinement_updates_total", "Parent nodes updated by refinement"
)

SKIPPED_SAMPLES = Counter(
    "hsom_skipped_samples_total", "Malformed training samples that were skipped"
)

MODELS_CREATED = Counter(
    "hsom_models_created_total", "Total number of hierarchies initialized"
)

PREDICTION_REQUESTS = Counter(
    "hsom_predictions_total", "Total samples mapped onto a trained hierarchy"
)

LAYER_QUANTIZATION_ERROR = Gauge(
    "hsom_layer_quantization_error",
    "Quantization error of the last completed run",
    ["level"],
)

LAYER_TOPOGRAPHIC_ERROR = Gauge(
    "hsom_layer_topographic_error",
    "Topographic error of the last completed run",
    ["level"],
)


class CorrelationIDProcessor:
    """Make sure every log entry carries a correlation ID"""

    def __call__(self, logger, method_name, event_dict):
        event_dict.setdefault("correlation_id", "unknown")
        return event_dict


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structured logging with structlog"""

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        CorrelationIDProcessor(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )


def get_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid.uuid4())


@contextmanager
def trace_operation(operation_name: str, **extra_context):
    """Context manager for tracing operations with logging"""
    logger = structlog.get_logger()
    correlation_id = get_correlation_id()
    start_time = time.time()

    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
        logger.info("Operation started", operation=operation_name, **extra_context)
        try:
            yield correlation_id
        except Exception as e:
            logger.error(
                "Operation failed",
                operation=operation_name,
                duration_seconds=time.time() - start_time,
                error=str(e),
                error_type=type(e).__name__,
                **extra_context,
            )
            raise
        logger.info(
            "Operation completed",
            operation=operation_name,
            duration_seconds=time.time() - start_time,
            **extra_context,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format"""
    return generate_latest()


def write_metrics(path: str) -> None:
    """Write the metrics to a node_exporter textfile-collector file"""
    write_to_textfile(path, REGISTRY)


def log_training_metrics(layers: int, duration: float, iterations: int, status: str):
    """Record a finished (or interrupted) training run"""
    TRAINING_DURATION.labels(layers=str(layers)).observe(duration)
    TRAINING_ITERATIONS.inc(iterations)
    TRAINING_RUNS.labels(status=status).inc()


def log_refinement_pass(updates: int):
    REFINEMENT_PASSES.inc()
    REFINEMENT_UPDATES.inc(updates)


def log_skipped_samples(count: int):
    if count:
        SKIPPED_SAMPLES.inc(count)


def log_model_created():
    MODELS_CREATED.inc()


def log_prediction_metrics(count: int = 1):
    PREDICTION_REQUESTS.inc(count)


def log_layer_stats(layer_stats: Iterable) -> None:
    for stats in layer_stats:
        LAYER_QUANTIZATION_ERROR.labels(level=str(stats.level)).set(
            stats.quantization_error
        )
        LAYER_TOPOGRAPHIC_ERROR.labels(level=str(stats.level)).set(
            stats.topographic_error
        )
