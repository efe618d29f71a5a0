"""Result validation shared by executors and tests.

Each validator turns a CallResult into an Outcome carrying three separate
judgements: the status class, whether the body parsed into the expected
shape, and whether the domain predicate held. ``Outcome.ok`` is the
conjunction.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Collection

from loadsim.core.client import CallResult, classify_http_error


class StatusClass(str, Enum):
    SUCCESS = "success"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Outcome:
    status_class: StatusClass
    status_code: int | None
    payload_valid: bool
    predicate_ok: bool
    payload: Any = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_class == StatusClass.SUCCESS and self.payload_valid and self.predicate_ok


def status_class(result: CallResult, accepted: Collection[int]) -> StatusClass:
    code = result.status_code
    if code is None:
        return StatusClass.TRANSPORT_ERROR
    if code in accepted:
        return StatusClass.SUCCESS
    if 400 <= code < 500:
        return StatusClass.CLIENT_ERROR
    if 500 <= code < 600:
        return StatusClass.SERVER_ERROR
    return StatusClass.UNEXPECTED


def _error_type(result: CallResult, cls: StatusClass) -> str | None:
    if cls == StatusClass.SUCCESS:
        return None
    if result.error_type is not None:
        return result.error_type
    return classify_http_error(result.status_code) or f"unexpected_{result.status_code}"


def _decode(result: CallResult) -> tuple[bool, Any]:
    try:
        return True, result.json()
    except ValueError:
        return False, None


def expect_status(result: CallResult, accepted: Collection[int]) -> Outcome:
    """Only the status matters; the body is not inspected."""
    cls = status_class(result, accepted)
    return Outcome(
        status_class=cls,
        status_code=result.status_code,
        payload_valid=True,
        predicate_ok=True,
        error_type=_error_type(result, cls),
    )


def expect_created_with_id(result: CallResult) -> Outcome:
    """201 and a JSON object body carrying an ``id``."""
    cls = status_class(result, (201,))
    if cls != StatusClass.SUCCESS:
        return Outcome(cls, result.status_code, False, False, error_type=_error_type(result, cls))

    valid, payload = _decode(result)
    if not valid or not isinstance(payload, dict):
        return Outcome(cls, result.status_code, False, False, payload, error_type="malformed_body")

    has_id = payload.get("id") is not None
    return Outcome(
        cls,
        result.status_code,
        True,
        has_id,
        payload,
        error_type=None if has_id else "missing_id",
    )


def expect_json_list(result: CallResult, *, min_payload_bytes: int | None = None) -> Outcome:
    """200 and a JSON array body, optionally larger than ``min_payload_bytes``."""
    cls = status_class(result, (200,))
    if cls != StatusClass.SUCCESS:
        return Outcome(cls, result.status_code, False, False, error_type=_error_type(result, cls))

    valid, payload = _decode(result)
    if not valid or not isinstance(payload, list):
        return Outcome(cls, result.status_code, False, False, payload, error_type="malformed_body")

    if min_payload_bytes is not None and result.size_bytes <= min_payload_bytes:
        return Outcome(cls, result.status_code, True, False, payload, error_type="payload_too_small")

    return Outcome(cls, result.status_code, True, True, payload)


def expect_non_empty_list(result: CallResult) -> Outcome:
    """Like expect_json_list, with the predicate "at least one item"."""
    outcome = expect_json_list(result)
    if not outcome.payload_valid:
        return outcome
    found = bool(outcome.payload)
    return Outcome(
        outcome.status_class,
        outcome.status_code,
        True,
        found,
        outcome.payload,
        error_type=None if found else "not_found",
    )
