"""
Integration tests for the execution scheduler with real worker threads.

Timing assertions use generous tolerances; only ordering and counts are
asserted exactly.
"""

import sqlite3
import threading
import time

import pytest

from perfcore.config import ExecutionConfig
from perfcore.data.rows import StaticRowSource
from perfcore.engine.aggregator import ResultAggregator, Verdict
from perfcore.engine.classification import LABEL_ERROR
from perfcore.engine.scheduler import ExecutionScheduler, SchedulerState
from perfcore.executors.base import ExecutorRegistry
from perfcore.executors.sql import DbApiExecutor
from perfcore.scenario.models import HttpRequest, JdbcRequest
from perfcore.scenario.validation import ConfigurationError

from tests.conftest import RaisingExecutor, StubExecutor


pytestmark = pytest.mark.integration


def test_two_threads_three_iterations_all_pass(make_scenario, registry, execution_config):
    scenario = make_scenario(threads=2, iterations=3)

    run = ExecutionScheduler(scenario, registry, execution_config).run()
    outcome = ResultAggregator().finalize(run)

    assert len(run.collector) == 6
    assert all(result.success for result in run.results)
    assert outcome.snapshot.success_rate == 100.0
    assert outcome.verdict is Verdict.PASS
    assert run.iterations_completed == {0: 3, 1: 3}
    assert run.states == [
        SchedulerState.INIT,
        SchedulerState.RAMPING_UP,
        SchedulerState.STEADY,
        SchedulerState.DRAINING,
        SchedulerState.DONE,
    ]


def test_each_result_keeps_its_identity(make_scenario, registry, execution_config):
    scenario = make_scenario(threads=3, iterations=2)

    run = ExecutionScheduler(scenario, registry, execution_config).run()

    identities = sorted((result.worker_id, result.iteration, result.request_name) for result in run.results)
    assert identities == [(worker, iteration, "ping") for worker in range(3) for iteration in range(2)]


def test_data_rows_are_used_round_robin(make_scenario, make_request, execution_config):
    executor = StubExecutor()
    registry = ExecutorRegistry({"http": executor})
    scenario = make_scenario(
        requests=[make_request(endpoint="http://svc.test/users/${user}")],
        iterations=4,
        data_source="users",
    )

    ExecutionScheduler(
        scenario,
        registry,
        execution_config,
        data_sources={"users": StaticRowSource([{"user": "row0"}, {"user": "row1"}])},
    ).run()

    endpoints = [call.payload.endpoint for call in executor.calls]
    assert endpoints == [
        "http://svc.test/users/row0",
        "http://svc.test/users/row1",
        "http://svc.test/users/row0",
        "http://svc.test/users/row1",
    ]


def test_every_request_runs_once_per_iteration_in_order(make_scenario, make_request, execution_config):
    executor = StubExecutor()
    registry = ExecutorRegistry({"http": executor})
    scenario = make_scenario(
        requests=[make_request("login"), make_request("browse"), make_request("logout")],
        iterations=2,
    )

    run = ExecutionScheduler(scenario, registry, execution_config).run()

    assert [call.name for call in executor.calls] == ["login", "browse", "logout"] * 2
    assert [result.request_index for result in run.results] == [0, 1, 2] * 2


def test_variables_resolve_per_iteration(make_scenario, make_request, execution_config):
    executor = StubExecutor()
    registry = ExecutorRegistry({"http": executor})
    config = ExecutionConfig(global_timeout_seconds=30.0, global_variables={"host": "svc.test"})
    scenario = make_scenario(
        requests=[
            make_request(
                endpoint="http://${host}/orders/${order}",
                headers={"X-Worker": "${threadId}"},
                variables={"order": "o-${iteration}"},
            )
        ],
        iterations=2,
    )

    run = ExecutionScheduler(scenario, registry, config).run()

    assert [call.payload.endpoint for call in executor.calls] == [
        "http://svc.test/orders/o-0",
        "http://svc.test/orders/o-1",
    ]
    assert dict(executor.calls[0].payload.headers) == {"X-Worker": "0"}
    assert run.results[1].request.endpoint == "http://svc.test/orders/o-1"


def test_raising_executor_still_completes(make_scenario, execution_config):
    registry = ExecutorRegistry({"http": RaisingExecutor()})
    scenario = make_scenario(threads=2, iterations=3, success_threshold=0.0)

    run = ExecutionScheduler(scenario, registry, execution_config).run()
    outcome = ResultAggregator().finalize(run)

    assert len(run.collector) == 6
    assert not any(result.success for result in run.results)
    assert {result.label for result in run.results} == {LABEL_ERROR}
    assert all("backend exploded" in result.error for result in run.results)
    assert outcome.snapshot.error_count == 6
    assert outcome.snapshot.success_rate == 0.0
    assert outcome.verdict is Verdict.PASS


def test_failures_below_threshold_fail_the_scenario(make_scenario, execution_config):
    registry = ExecutorRegistry({"http": StubExecutor(status=500)})
    scenario = make_scenario(threads=1, iterations=4)

    outcome = ResultAggregator().finalize(ExecutionScheduler(scenario, registry, execution_config).run())

    assert outcome.verdict is Verdict.FAIL
    assert "below threshold" in outcome.details[0]


def test_ramp_up_staggers_worker_starts(make_scenario, registry, execution_config):
    scenario = make_scenario(threads=4, iterations=1, ramp_up_seconds=0.4)

    run = ExecutionScheduler(scenario, registry, execution_config).run()

    offsets = run.worker_start_offsets
    for worker_id in range(4):
        assert offsets[worker_id] >= worker_id * 0.1 - 0.02
    assert offsets[3] - offsets[0] >= 0.25


def test_hold_caps_iterations(make_scenario, execution_config):
    registry = ExecutorRegistry({"http": StubExecutor(delay=0.05)})
    scenario = make_scenario(threads=2, iterations=1000, hold_seconds=0.3)

    started = time.monotonic()
    run = ExecutionScheduler(scenario, registry, execution_config).run()

    assert time.monotonic() - started < 5
    assert 0 < run.total_iterations < 2000
    assert not run.timed_out


def test_global_timeout_stops_workers(make_scenario):
    registry = ExecutorRegistry({"http": StubExecutor(delay=0.05)})
    config = ExecutionConfig(global_timeout_seconds=0.3)
    scenario = make_scenario(threads=2, iterations=1000)

    run = ExecutionScheduler(scenario, registry, config).run()

    assert run.timed_out
    assert run.total_iterations < 2000
    assert SchedulerState.DRAINING in run.states
    assert run.states[-1] is SchedulerState.DONE


def test_stop_is_cooperative(make_scenario, execution_config):
    registry = ExecutorRegistry({"http": StubExecutor(delay=0.02)})
    scenario = make_scenario(threads=2, iterations=10000)
    scheduler = ExecutionScheduler(scenario, registry, execution_config)

    timer = threading.Timer(0.2, scheduler.stop)
    timer.start()
    try:
        run = scheduler.run()
    finally:
        timer.cancel()

    assert not run.timed_out
    assert 0 < run.total_iterations < 20000
    assert len(run.collector) == run.total_iterations


def test_live_snapshot_during_run(make_scenario, execution_config):
    registry = ExecutorRegistry({"http": StubExecutor(delay=0.01)})
    scenario = make_scenario(threads=2, iterations=20)
    scheduler = ExecutionScheduler(scenario, registry, execution_config)
    snapshots = []

    def _observe():
        while scheduler.state is not SchedulerState.DONE:
            snapshots.append(scheduler.live_snapshot())
            time.sleep(0.02)

    observer = threading.Thread(target=_observe)
    observer.start()
    run = scheduler.run()
    observer.join(timeout=5)

    assert snapshots
    assert all(snapshot.count <= 40 for snapshot in snapshots)
    assert run.collector.snapshot().count == 40


def test_scheduler_runs_only_once(make_scenario, registry, execution_config):
    scheduler = ExecutionScheduler(make_scenario(), registry, execution_config)
    scheduler.run()

    with pytest.raises(RuntimeError):
        scheduler.run()


def test_configuration_errors_abort_before_workers_start(make_scenario, make_request, stub_executor):
    registry = ExecutorRegistry({"http": stub_executor})

    with pytest.raises(ConfigurationError):
        ExecutionScheduler(make_scenario(threads=0), registry)
    with pytest.raises(ConfigurationError):
        ExecutionScheduler(make_scenario(data_source="missing"), registry)
    with pytest.raises(ConfigurationError):
        ExecutionScheduler(make_scenario(requests=[make_request(protocol="grpc")]), registry)

    assert stub_executor.calls == []


def test_result_carries_request_metadata(make_scenario, make_request, registry, execution_config):
    scenario = make_scenario(
        requests=[make_request(endpoint="http://svc.test/a", method="post", body="x", headers={"K": "v"})]
    )

    result = ExecutionScheduler(scenario, registry, execution_config).run().results[0]

    assert result.scenario_name == "smoke"
    assert result.request.method == "POST"
    assert result.request.headers == {"K": "v"}
    assert result.request.body == "x"
    assert result.status_code == 200
    assert result.protocol == "http"
    assert result.received_bytes == 2
    assert result.elapsed_ms >= 0
    assert isinstance(scenario.requests[0].target, HttpRequest)


def test_sql_workers_each_get_their_own_connection(make_scenario, make_request, execution_config):
    opened = []
    lock = threading.Lock()

    def connect():
        connection = sqlite3.connect(":memory:", check_same_thread=False)
        with lock:
            opened.append(connection)
        return connection

    executor = DbApiExecutor(connect, error_types=(sqlite3.Error,))
    statement = JdbcRequest(statement="select :worker as worker", params={"worker": "${threadId}"})
    request = make_request("lookup", target=statement)
    scenario = make_scenario(requests=[request], threads=3, iterations=4)

    run = ExecutionScheduler(scenario, ExecutorRegistry({"jdbc": executor}), execution_config).run()

    assert len(run.collector) == 12
    assert all(result.success for result in run.results)
    assert len(opened) == 3
    assert len(executor._connections) == 3

    executor.close()

    assert executor._connections == []
