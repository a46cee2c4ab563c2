"""Prometheus metrics for contract inference and lifecycle changes"""

from prometheus_client import Counter, Histogram

from contract_engine.domain.exceptions import (
    InvariantViolationError,
    NotFoundError,
    PipelineTimeoutError,
    StorageFailureError,
)
from contract_engine.domain.models import PipelineOutcome

# Contract lifecycle
contracts_created_counter = Counter(
    "contract_engine_contracts_created_total",
    "Contracts synthesized from recurring transactions",
)

contracts_closed_counter = Counter(
    "contract_engine_contracts_closed_total",
    "Contracts closed because their payments lapsed",
)

contracts_reopened_counter = Counter(
    "contract_engine_contracts_reopened_total",
    "Closed contracts reopened by a new payment",
)

contracts_merged_counter = Counter(
    "contract_engine_contracts_merged_total",
    "Contracts absorbed into a head contract",
)

# Matching
transactions_linked_counter = Counter(
    "contract_engine_transactions_linked_total",
    "Transactions linked to a contract",
    ["match"],  # exact | drift | synthesized
)

# Pipeline health
pipeline_failure_counter = Counter(
    "contract_engine_pipeline_failures_total",
    "Contract scans aborted and rolled back",
    ["reason"],  # not_found | storage | invariant | timeout | unexpected
)

pipeline_duration_histogram = Histogram(
    "contract_engine_pipeline_duration_seconds",
    "Contract scan duration",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


def record_pipeline_outcome(outcome: PipelineOutcome) -> None:
    """Record what a completed scan changed"""
    contracts_created_counter.inc(len(outcome.new_contracts))
    contracts_closed_counter.inc(len(outcome.closed_contracts))
    contracts_reopened_counter.inc(len(outcome.reopened_contracts))

    transactions_linked_counter.labels(match="exact").inc(outcome.exact_matched)
    transactions_linked_counter.labels(match="drift").inc(outcome.drift_matched)
    transactions_linked_counter.labels(match="synthesized").inc(outcome.synthesized_linked)


def record_pipeline_failure(error: Exception) -> None:
    """Count an aborted scan by failure kind"""
    if isinstance(error, NotFoundError):
        reason = "not_found"
    elif isinstance(error, StorageFailureError):
        reason = "storage"
    elif isinstance(error, PipelineTimeoutError):
        reason = "timeout"
    elif isinstance(error, InvariantViolationError):
        reason = "invariant"
    else:
        reason = "unexpected"

    pipeline_failure_counter.labels(reason=reason).inc()
