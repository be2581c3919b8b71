"""Finalize a scheduler run into a scenario verdict."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from perfcore.engine.metrics import MetricsSnapshot
from perfcore.engine.scheduler import SchedulerRun, TestResult

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


@dataclass
class ScenarioOutcome:
    """The reportable payload of one scenario: verdict, snapshot and ordered results."""

    scenario_name: str
    verdict: Verdict
    threshold: float
    snapshot: MetricsSnapshot
    results: List[TestResult]
    by_request: Dict[str, MetricsSnapshot] = field(default_factory=dict)
    details: List[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    def to_dict(self, include_results: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "scenario": self.scenario_name,
            "verdict": self.verdict.value,
            "threshold": self.threshold,
            "metrics": self.snapshot.to_dict(),
            "requests": {name: snapshot.to_dict() for name, snapshot in self.by_request.items()},
            "details": list(self.details),
            "timed_out": self.timed_out,
        }
        if include_results:
            payload["results"] = [result.to_dict() for result in self.results]
        return payload


def _execution_order(result: TestResult) -> tuple:
    return (result.started_at, result.worker_id, result.iteration, result.request_index)


class ResultAggregator:
    """Apply the success-threshold gate to a finished run.

    Failed requests are never retried and the scenario is never re-run; the
    single attempt per configured iteration is final.
    """

    def finalize(self, run: SchedulerRun, threshold: Optional[float] = None) -> ScenarioOutcome:
        scenario = run.scenario
        gate = scenario.success_threshold if threshold is None else float(threshold)
        if not 0 <= gate <= 100:
            raise ValueError("Success threshold must be between 0 and 100")

        snapshot = run.collector.snapshot()
        verdict = Verdict.PASS if snapshot.success_rate >= gate else Verdict.FAIL

        details: List[str] = []
        if verdict is Verdict.FAIL:
            details.append(f"success rate {snapshot.success_rate:.2f}% is below threshold {gate:.2f}%")
            logger.warning(
                "Scenario %r below threshold: %.2f%% < %.2f%%",
                scenario.name,
                snapshot.success_rate,
                gate,
            )
        if run.timed_out:
            details.append("scenario stopped by timeout before all iterations completed")
        if snapshot.error_count:
            details.append(f"{snapshot.error_count} request(s) raised unexpected errors")

        logger.info(
            "Scenario %r verdict %s (%s samples, success rate %.2f%%)",
            scenario.name,
            verdict.value,
            snapshot.count,
            snapshot.success_rate,
        )
        return ScenarioOutcome(
            scenario_name=scenario.name,
            verdict=verdict,
            threshold=gate,
            snapshot=snapshot,
            results=sorted(run.results, key=_execution_order),
            by_request=run.collector.snapshot_by_request(),
            details=details,
            timed_out=run.timed_out,
        )
