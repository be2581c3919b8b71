"""
Unit tests for response classification.
"""

import pytest

from perfcore.engine.classification import (
    LABEL_FAILED,
    LABEL_PASSED,
    BodyContainsValidator,
    BodyRegexValidator,
    JsonFieldValidator,
    PredicateValidator,
    StatusRangeValidator,
    StatusValidator,
    build_validator,
    classify,
)
from perfcore.executors.base import Response


pytestmark = pytest.mark.unit


@pytest.mark.parametrize("status,expected", [(200, True), (302, True), (399, True), (400, False), (503, False)])
def test_default_classification_uses_status_range(make_request, status, expected):
    outcome = classify(make_request(), Response(status_code=status, success=status < 400))

    assert outcome.success is expected
    assert outcome.label == (LABEL_PASSED if expected else LABEL_FAILED)


def test_default_classification_ignores_executor_success_flag(make_request):
    outcome = classify(make_request(), Response(status_code=200, success=False, error="executor said no"))

    assert outcome.label == LABEL_PASSED
    assert outcome.success is True


def test_default_classification_fails_on_protocol_fault(make_request):
    response = Response(status_code=200, success=False, error="GraphQL errors: []", fault="GraphQL errors: []")

    outcome = classify(make_request(), response)

    assert outcome.label == LABEL_FAILED
    assert outcome.success is False
    assert outcome.reason == "GraphQL errors: []"


def test_first_accepting_validator_wins(make_request):
    request = make_request(
        responses={
            "Created": StatusValidator(frozenset({201})),
            "Accepted": StatusRangeValidator(200, 300),
        }
    )

    assert classify(request, Response(status_code=201)).label == "Created"
    assert classify(request, Response(status_code=204)).label == "Accepted"


def test_validator_can_mark_label_unsuccessful(make_request):
    request = make_request(
        responses={
            "Passed": StatusValidator(frozenset({200})),
            "Throttled": StatusValidator(frozenset({429}), success=False),
        }
    )

    outcome = classify(request, Response(status_code=429, success=False, error="HTTP 429"))

    assert outcome.label == "Throttled"
    assert outcome.success is False


def test_validation_miss_is_labelled_failed(make_request):
    request = make_request(responses={"Passed": BodyContainsValidator("welcome")})

    outcome = classify(request, Response(status_code=200, body="goodbye"))

    assert outcome.label == LABEL_FAILED
    assert outcome.success is False
    assert "Passed" in outcome.reason


def test_transport_failure_skips_validators(make_request):
    request = make_request(responses={"Anything": PredicateValidator(lambda response: True)})

    outcome = classify(request, Response.failure("timeout after 100ms"))

    assert outcome.label == LABEL_FAILED
    assert outcome.reason == "timeout after 100ms"


def test_body_validators():
    response = Response(status_code=200, body='{"data": {"items": [{"id": 7}]}, "ok": true}')

    assert BodyRegexValidator(r'"id":\s*\d+')(response)
    assert JsonFieldValidator("data.items.0.id", 7)(response)
    assert JsonFieldValidator("ok")(response)
    assert not JsonFieldValidator("data.items.3.id")(response)
    assert not JsonFieldValidator("ok", False)(response)
    assert not JsonFieldValidator("ok")(Response(status_code=200, body="<html>"))


def test_build_validator_from_definitions():
    status = build_validator({"status": [200, 201]})
    ranged = build_validator({"status_range": [500, 600], "success": False})
    json_field = build_validator({"json_path": "state", "equals": "done"})

    assert status(Response(status_code=201))
    assert ranged(Response(status_code=503)) and ranged.success is False
    assert json_field(Response(status_code=200, body='{"state": "done"}'))
    assert build_validator({"contains": "ok"})(Response(status_code=200, body="all ok"))
    assert build_validator({"regex": "^a"})(Response(status_code=200, body="abc"))


def test_build_validator_rejects_unknown_definition():
    with pytest.raises(ValueError):
        build_validator({"xpath": "//a"})
