from __future__ import annotations

import json

from loadsim.core.client import CallResult
from loadsim.core.validation import (
    StatusClass,
    expect_created_with_id,
    expect_json_list,
    expect_non_empty_list,
    expect_status,
)


def _result(status, body=b"", error_type=None):
    if not isinstance(body, bytes):
        body = json.dumps(body).encode()
    return CallResult(operation="op", status_code=status, body=body, duration_ms=1.0, error_type=error_type)


def test_created_with_id():
    outcome = expect_created_with_id(_result(201, {"id": 3, "name": "x"}))
    assert outcome.ok
    assert outcome.payload["id"] == 3


def test_created_without_id_is_a_predicate_failure():
    outcome = expect_created_with_id(_result(201, {"name": "x"}))
    assert outcome.payload_valid and not outcome.predicate_ok
    assert outcome.error_type == "missing_id"


def test_created_with_malformed_body():
    outcome = expect_created_with_id(_result(201, b"<html>"))
    assert not outcome.payload_valid
    assert outcome.error_type == "malformed_body"


def test_status_classes():
    assert expect_created_with_id(_result(409)).status_class == StatusClass.CLIENT_ERROR
    assert expect_created_with_id(_result(409)).error_type == "conflict"
    assert expect_created_with_id(_result(503)).status_class == StatusClass.SERVER_ERROR
    transport = expect_created_with_id(_result(None, error_type="network_timeout"))
    assert transport.status_class == StatusClass.TRANSPORT_ERROR
    assert transport.error_type == "network_timeout"
    assert expect_status(_result(302), (200,)).status_class == StatusClass.UNEXPECTED


def test_json_list():
    assert expect_json_list(_result(200, [])).ok
    assert expect_json_list(_result(200, {"items": []})).error_type == "malformed_body"


def test_json_list_payload_size_check():
    small = expect_json_list(_result(200, [{"id": 1}]), min_payload_bytes=10000)
    assert small.payload_valid and not small.ok
    assert small.error_type == "payload_too_small"

    big = expect_json_list(_result(200, [{"id": i, "pad": "x" * 200} for i in range(60)]), min_payload_bytes=10000)
    assert big.ok


def test_non_empty_list():
    assert expect_non_empty_list(_result(200, [{"id": 1}])).ok
    empty = expect_non_empty_list(_result(200, []))
    assert empty.payload_valid and not empty.ok
    assert empty.error_type == "not_found"


def test_delete_accepts_404():
    assert expect_status(_result(404), {200, 204, 404}).ok
    assert not expect_status(_result(500), {200, 204, 404}).ok
