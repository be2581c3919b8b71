"""Concurrent execution of a scenario: ramp-up, iteration and hold caps, draining."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Mapping, Optional

from perfcore.config import ExecutionConfig
from perfcore.data.rows import EMPTY_ROW, DataRowSource, RowCursor
from perfcore.engine.classification import LABEL_ERROR, Classification, classify
from perfcore.engine.metrics import MetricsCollector, MetricsSnapshot, Sample
from perfcore.executors.base import ExecutorRegistry, ProtocolExecutor, ResolvedRequest, Response
from perfcore.scenario.models import RequestSpec, RequestSummary, ScenarioSpec
from perfcore.scenario.validation import ConfigurationError, validate_scenario
from perfcore.variables.context import build_context
from perfcore.variables.resolver import VariableResolver

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    INIT = "INIT"
    RAMPING_UP = "RAMPING_UP"
    STEADY = "STEADY"
    DRAINING = "DRAINING"
    DONE = "DONE"


@dataclass(frozen=True)
class TestResult:
    """One executed request instance with its resolved metadata."""

    __test__: ClassVar[bool] = False

    scenario_name: str
    worker_id: int
    iteration: int
    request_index: int
    request_name: str
    protocol: str
    sample: Sample
    request: Optional[RequestSummary] = None
    status_code: Optional[int] = None
    received_bytes: int = 0

    @property
    def success(self) -> bool:
        return self.sample.success

    @property
    def label(self) -> str:
        return self.sample.label

    @property
    def elapsed_ms(self) -> float:
        return self.sample.elapsed_ms

    @property
    def started_at(self) -> float:
        return self.sample.started_at

    @property
    def error(self) -> Optional[str]:
        return self.sample.error

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "scenario": self.scenario_name,
            "worker_id": self.worker_id,
            "iteration": self.iteration,
            "request": self.request_name,
            "protocol": self.protocol,
            "started_at": self.started_at,
            "elapsed_ms": self.elapsed_ms,
            "success": self.success,
            "label": self.label,
            "status_code": self.status_code,
            "received_bytes": self.received_bytes,
        }
        if self.request is not None:
            payload["endpoint"] = self.request.endpoint
            payload["method"] = self.request.method
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class SchedulerRun:
    """Everything the scheduler observed during one scenario run."""

    scenario: ScenarioSpec
    collector: MetricsCollector
    results: List[TestResult]
    states: List[SchedulerState]
    timed_out: bool = False
    duration_seconds: float = 0.0
    # worker id -> seconds between scenario start and the worker's first iteration
    worker_start_offsets: Dict[int, float] = field(default_factory=dict)
    iterations_completed: Dict[int, int] = field(default_factory=dict)

    @property
    def total_iterations(self) -> int:
        return sum(self.iterations_completed.values())


class ExecutionScheduler:
    """Run one scenario on a pool of ``scenario.threads`` worker threads.

    Setup (validation, executor binding, data row loading) happens in the
    constructor, so configuration problems raise :class:`ConfigurationError`
    before any worker exists. Worker ``i`` waits ``i * ramp_up / threads``
    seconds before its first iteration and stops at whichever comes first:
    the iteration count, the hold duration (measured from its own start), or
    the shared stop flag, which is only checked between iterations.
    """

    def __init__(
        self,
        scenario: ScenarioSpec,
        registry: ExecutorRegistry,
        config: Optional[ExecutionConfig] = None,
        data_sources: Optional[Mapping[str, DataRowSource]] = None,
        resolver: Optional[VariableResolver] = None,
    ) -> None:
        validate_scenario(scenario)
        self.scenario = scenario
        self.config = config or ExecutionConfig()
        self._executors: Dict[str, ProtocolExecutor] = registry.bind(scenario)
        self._cursors: Dict[str, RowCursor] = self._load_rows(data_sources or {})
        self._resolver = resolver or VariableResolver()

        self._collector = MetricsCollector(self.config.percentiles)
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._state = SchedulerState.INIT
        self._states: List[SchedulerState] = [SchedulerState.INIT]
        self._results: List[TestResult] = []
        self._started_workers = 0
        self._start_offsets: Dict[int, float] = {}
        self._iterations_completed: Dict[int, int] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    @property
    def timeout_seconds(self) -> float:
        if self.scenario.max_duration_seconds is not None:
            return self.scenario.max_duration_seconds
        return self.config.global_timeout_seconds

    def live_snapshot(self) -> MetricsSnapshot:
        return self._collector.snapshot()

    def stop(self) -> None:
        """Ask workers to finish their current iteration and exit."""
        if not self._stop.is_set():
            logger.info("Stop requested for scenario %r", self.scenario.name)
        self._stop.set()

    def run(self) -> SchedulerRun:
        with self._lock:
            if self._state is not SchedulerState.INIT:
                raise RuntimeError("An ExecutionScheduler can only run once")

        scenario = self.scenario
        logger.info(
            "Starting scenario %r: threads=%s iterations=%s ramp_up=%ss hold=%ss",
            scenario.name,
            scenario.threads,
            scenario.iterations,
            scenario.ramp_up_seconds,
            scenario.hold_seconds,
        )

        started = time.monotonic()
        deadline = started + self.timeout_seconds
        self._collector.start()
        self._transition(SchedulerState.RAMPING_UP)

        workers = [
            threading.Thread(
                target=self._worker,
                args=(worker_id, started),
                name=f"perfcore-{scenario.name}-{worker_id}",
                daemon=True,
            )
            for worker_id in range(scenario.threads)
        ]
        for worker in workers:
            worker.start()

        timed_out = not self._join(workers, deadline)
        if timed_out:
            logger.warning(
                "Scenario %r hit its %.1fs timeout; draining %s worker(s)",
                scenario.name,
                self.timeout_seconds,
                sum(1 for worker in workers if worker.is_alive()),
            )
            self._stop.set()
        self._transition(SchedulerState.DRAINING)
        self._join(workers, None)

        self._collector.finish()
        self._transition(SchedulerState.DONE)
        duration = time.monotonic() - started

        with self._lock:
            results = list(self._results)
            states = list(self._states)
            offsets = dict(self._start_offsets)
            completed = dict(self._iterations_completed)

        logger.info(
            "Scenario %r finished in %.2fs with %s sample(s)",
            scenario.name,
            duration,
            len(self._collector),
        )
        return SchedulerRun(
            scenario=scenario,
            collector=self._collector,
            results=results,
            states=states,
            timed_out=timed_out,
            duration_seconds=duration,
            worker_start_offsets=offsets,
            iterations_completed=completed,
        )

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------
    def _load_rows(self, data_sources: Mapping[str, DataRowSource]) -> Dict[str, RowCursor]:
        wanted = {
            name
            for name in (self.scenario.data_source_for(request) for request in self.scenario.requests)
            if name
        }
        missing = sorted(name for name in wanted if name not in data_sources)
        if missing:
            raise ConfigurationError(
                f"Scenario {self.scenario.name!r} references unknown data sources",
                [f"data source {name!r} is not registered" for name in missing],
            )
        return {name: RowCursor.load(name, data_sources[name]) for name in sorted(wanted)}

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------
    def _transition(self, state: SchedulerState) -> None:
        with self._lock:
            if self._state is state:
                return
            previous, self._state = self._state, state
            self._states.append(state)
        logger.info("Scenario %r: %s -> %s", self.scenario.name, previous.value, state.value)

    @staticmethod
    def _join(workers: List[threading.Thread], deadline: Optional[float]) -> bool:
        """Join workers until ``deadline`` (monotonic). Returns True when all have exited."""
        for worker in workers:
            if deadline is None:
                worker.join()
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            worker.join(remaining)
        return not any(worker.is_alive() for worker in workers)

    def _mark_started(self, worker_id: int, offset: float) -> None:
        with self._lock:
            self._start_offsets[worker_id] = offset
            self._started_workers += 1
            all_started = self._started_workers == self.scenario.threads
        if all_started:
            self._transition(SchedulerState.STEADY)

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------
    def _worker(self, worker_id: int, scenario_start: float) -> None:
        scenario = self.scenario
        delay = worker_id * scenario.ramp_up_seconds / scenario.threads
        remaining = scenario_start + delay - time.monotonic()
        if remaining > 0 and self._stop.wait(remaining):
            logger.debug("Worker %s stopped before its first iteration", worker_id)
            return

        worker_start = time.monotonic()
        self._mark_started(worker_id, worker_start - scenario_start)
        logger.debug("Worker %s started (%.3fs after scenario start)", worker_id, worker_start - scenario_start)

        completed = 0
        for iteration in range(scenario.iterations):
            if self._stop.is_set():
                logger.debug("Worker %s honouring stop after %s iteration(s)", worker_id, completed)
                break
            if scenario.hold_seconds > 0 and time.monotonic() - worker_start >= scenario.hold_seconds:
                logger.debug("Worker %s reached hold cap after %s iteration(s)", worker_id, completed)
                break
            for index, request in enumerate(scenario.requests):
                self._execute(worker_id, iteration, index, request)
            completed += 1

        with self._lock:
            self._iterations_completed[worker_id] = completed
        logger.debug("Worker %s done after %s iteration(s)", worker_id, completed)

    def _execute(self, worker_id: int, iteration: int, index: int, request: RequestSpec) -> None:
        """Run one request and record exactly one sample, whatever happens."""
        scenario = self.scenario
        protocol = request.protocol_id
        summary: Optional[RequestSummary] = None
        response: Optional[Response] = None
        raised = False
        started_at = time.time()
        clock = time.perf_counter()

        try:
            source = scenario.data_source_for(request)
            row = self._cursors[source].row_for(worker_id, iteration) if source else EMPTY_ROW
            context = build_context(
                worker_id,
                iteration,
                global_vars=self.config.global_variables,
                scenario_vars=scenario.variables,
                request_vars=request.variables,
                row=row,
                resolver=self._resolver,
            )
            payload = self._resolver.resolve_fields(request.target, context.scopes)
            summary = payload.summary()
            resolved = ResolvedRequest(
                name=request.name,
                protocol=protocol,
                payload=payload,
                variables=context.variables,
            )
            timeout_ms = request.timeout_ms or self.config.request_timeout_ms

            started_at = time.time()
            clock = time.perf_counter()
            response = self._executors[request.name].execute(resolved, timeout_ms)
            elapsed_ms = (time.perf_counter() - clock) * 1000
            outcome = classify(request, response)
        except Exception as exc:  # noqa: BLE001 - one failing request must not stop the worker
            elapsed_ms = (time.perf_counter() - clock) * 1000
            raised = True
            logger.exception(
                "Request %r failed unexpectedly (worker %s, iteration %s)",
                request.name,
                worker_id,
                iteration,
            )
            outcome = Classification(LABEL_ERROR, False, f"{type(exc).__name__}: {exc}")

        sample = Sample(
            request_name=request.name,
            started_at=started_at,
            elapsed_ms=elapsed_ms,
            success=outcome.success,
            label=outcome.label,
            error=None if outcome.success else outcome.reason,
            worker_id=worker_id,
            iteration=iteration,
            raised=raised,
        )
        self._collector.append(sample)

        result = TestResult(
            scenario_name=scenario.name,
            worker_id=worker_id,
            iteration=iteration,
            request_index=index,
            request_name=request.name,
            protocol=protocol,
            sample=sample,
            request=summary,
            status_code=getattr(response, "status_code", None),
            received_bytes=getattr(response, "received_bytes", 0) or 0,
        )
        with self._lock:
            self._results.append(result)
