"""Run one or more scenarios and hand each outcome to reporters."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from perfcore.config import ExecutionConfig
from perfcore.data.rows import DataRowSource
from perfcore.engine.aggregator import ResultAggregator, ScenarioOutcome, Verdict
from perfcore.engine.metrics import MetricsSnapshot
from perfcore.engine.scheduler import ExecutionScheduler, TestResult
from perfcore.executors.base import ExecutorRegistry
from perfcore.scenario.models import ScenarioSpec
from perfcore.variables.resolver import VariableResolver

logger = logging.getLogger(__name__)


class Reporter(Protocol):
    """Consumer of a finished scenario. Output format is entirely up to the reporter."""

    def report(self, results: Sequence[TestResult], snapshot: MetricsSnapshot, verdict: Verdict) -> None:
        ...


@dataclass
class RunSummary:
    outcomes: List[ScenarioOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def gates(self) -> Dict[str, bool]:
        gates = {outcome.scenario_name: outcome.passed for outcome in self.outcomes}
        gates["all"] = bool(self.outcomes) and all(gates.values())
        return gates

    @property
    def passed(self) -> bool:
        return self.gates["all"]

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_seconds": self.duration_seconds,
            "scenarios": {outcome.scenario_name: outcome.to_dict() for outcome in self.outcomes},
            "gates": self.gates,
        }


class LoadTestHarness:
    """Sequential runner: each scenario gets its own scheduler and collector.

    A :class:`~perfcore.scenario.validation.ConfigurationError` aborts the
    scenario that raised it before any worker starts and propagates to the
    caller; every other failure is already folded into the outcome.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        config: Optional[ExecutionConfig] = None,
        reporters: Iterable[Reporter] = (),
        data_sources: Optional[Mapping[str, DataRowSource]] = None,
        resolver: Optional[VariableResolver] = None,
    ) -> None:
        self.registry = registry
        self.config = config or ExecutionConfig()
        self.reporters = list(reporters)
        self.data_sources: Dict[str, DataRowSource] = dict(data_sources or {})
        self.resolver = resolver or VariableResolver()
        self.aggregator = ResultAggregator()

    def run_scenario(
        self,
        scenario: ScenarioSpec,
        threshold: Optional[float] = None,
        data_sources: Optional[Mapping[str, DataRowSource]] = None,
    ) -> ScenarioOutcome:
        sources = {**self.data_sources, **(data_sources or {})}
        scheduler = ExecutionScheduler(scenario, self.registry, self.config, sources, self.resolver)
        run = scheduler.run()
        outcome = self.aggregator.finalize(run, threshold)
        self._publish(outcome)
        return outcome

    def run(self, scenarios: Iterable[ScenarioSpec], threshold: Optional[float] = None) -> RunSummary:
        start = time.perf_counter()
        summary = RunSummary()
        for scenario in scenarios:
            summary.outcomes.append(self.run_scenario(scenario, threshold))
        summary.duration_seconds = time.perf_counter() - start

        failed = [name for name, passed in summary.gates.items() if name != "all" and not passed]
        if failed:
            logger.warning("Run finished with failing scenarios: %s", ", ".join(failed))
        else:
            logger.info("All %s scenario(s) passed", len(summary.outcomes))
        return summary

    def _publish(self, outcome: ScenarioOutcome) -> None:
        for reporter in self.reporters:
            try:
                reporter.report(outcome.results, outcome.snapshot, outcome.verdict)
            except Exception as exc:  # noqa: BLE001 - a broken reporter must not discard the outcome
                logger.exception("Reporter %s failed for scenario %r: %s", type(reporter).__name__, outcome.scenario_name, exc)
