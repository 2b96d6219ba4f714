"""
Interpretation of producer acknowledgements.

Brokers and proxies disagree on how a rejected send looks, so a reply is
scanned for the usual failure markers before it is reported as success.
"""

from __future__ import annotations

import time
from typing import Any

from pulsar_toolbox.types import SendResult

__all__ = ["interpret_producer_response", "build_failure_result"]

_FAILED_STATUSES = ("error", "failed", "failure")
_OK_RESULTS = ("ok", "success")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _pick_string(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _failure_message(record: dict[str, Any]) -> str | None:
    status = record.get("status")
    result = record.get("result")
    status_text = status.lower() if isinstance(status, str) else None
    result_text = result.lower() if isinstance(result, str) else None

    for candidate in (
        _pick_string(record.get("error")),
        _pick_string(record.get("reason")),
        _pick_string(record.get("message"))
        if record.get("success") is False or record.get("ok") is False
        else None,
        _pick_string(status) if status_text in _FAILED_STATUSES else None,
        _pick_string(result) if result_text is not None and result_text not in _OK_RESULTS else None,
        _pick_string(record.get("Exception")),
        _pick_string(record.get("exception")),
    ):
        if candidate:
            return candidate
    return None


def _failure_code(record: dict[str, Any]) -> str | None:
    code = record.get("code")
    status = record.get("status")
    if isinstance(code, (int, float)) and not isinstance(code, bool) and code >= 400:
        return f"Broker returned code {code}"
    if isinstance(status, (int, float)) and not isinstance(status, bool) and status >= 400:
        return f"Broker returned status {status}"
    return None


def interpret_producer_response(
    response: Any,
    target: str,
    default_success_message: str = "Message sent successfully",
) -> SendResult:
    """Classify a producer reply as success or failure.

    Args:
        response: Whatever ``produce`` returned (dict, string or ``None``).
        target: Full topic name the message was sent to.
        default_success_message: Message used when the reply says nothing useful.
    """
    record = response if isinstance(response, dict) else None
    succeeded = True
    message = default_success_message

    failure = _failure_message(record) if record is not None else None
    code = _failure_code(record) if record is not None else None

    if failure or code:
        succeeded = False
        message = failure or code or "Message send failed"
    elif record is not None and record.get("success") is False:
        succeeded = False
        message = _pick_string(record.get("message")) or "Message send failed"
    elif isinstance(response, str):
        lower = response.lower()
        if "error" in lower or "fail" in lower:
            succeeded = False
        message = response
    elif record is not None and record.get("success") is True:
        message = _pick_string(record.get("message")) or default_success_message

    if record is not None:
        result = record.get("result")
        if isinstance(result, str) and result.lower() not in _OK_RESULTS:
            succeeded = False
            message = result

    return SendResult(
        target=target,
        response=response,
        succeeded=succeeded,
        message=message,
        timestamp=_now_ms(),
    )


def build_failure_result(error: BaseException | str | Any, target: str) -> SendResult:
    """Wrap an exception raised by ``produce`` as a failed :class:`SendResult`."""
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
    elif isinstance(error, str):
        message = error
    else:
        message = "Message send failed"
    return SendResult(
        target=target,
        response=repr(error) if isinstance(error, BaseException) else error,
        succeeded=False,
        message=message,
        timestamp=_now_ms(),
    )
