"""Scheduling, classification, metrics and the pass/fail gate."""

from .aggregator import ResultAggregator, ScenarioOutcome, Verdict
from .classification import (
    LABEL_ERROR,
    LABEL_FAILED,
    LABEL_PASSED,
    BodyContainsValidator,
    BodyRegexValidator,
    Classification,
    JsonFieldValidator,
    PredicateValidator,
    StatusRangeValidator,
    StatusValidator,
    Validator,
    build_validator,
    classify,
)
from .metrics import MetricsCollector, MetricsSnapshot, Sample, nearest_rank, summarize
from .scheduler import ExecutionScheduler, SchedulerRun, SchedulerState, TestResult

__all__ = [
    "BodyContainsValidator",
    "BodyRegexValidator",
    "Classification",
    "ExecutionScheduler",
    "JsonFieldValidator",
    "LABEL_ERROR",
    "LABEL_FAILED",
    "LABEL_PASSED",
    "MetricsCollector",
    "MetricsSnapshot",
    "PredicateValidator",
    "ResultAggregator",
    "Sample",
    "ScenarioOutcome",
    "SchedulerRun",
    "SchedulerState",
    "StatusRangeValidator",
    "StatusValidator",
    "TestResult",
    "Validator",
    "Verdict",
    "build_validator",
    "classify",
    "nearest_rank",
    "summarize",
]
