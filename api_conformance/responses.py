"""Canned expected responses shared across scenarios.

The module-level values are frozen ExpectedResponse instances; derive
variants with ``with_()`` / ``with_body_field()``, which return copies.
"""

from __future__ import annotations

from typing import Any

from api_conformance.models import ExpectedResponse

ok_response = ExpectedResponse(status=200)
created_response = ExpectedResponse(status=201)
no_content_response = ExpectedResponse(status=204, body_raw="")
bad_request_response = ExpectedResponse(status=400)
unauthorized_response = ExpectedResponse(status=401)
forbidden_response = ExpectedResponse(status=403)
not_found_response = ExpectedResponse(status=404)
method_not_allowed_response = ExpectedResponse(status=405)
conflict_response = ExpectedResponse(status=409)


def ok_exact_response(body: dict[str, Any]) -> ExpectedResponse:
    """200 with exactly these body fields."""
    return ok_response.with_(body_exact=body)


def resource_created_exact_response(uri: Any) -> ExpectedResponse:
    """201 whose body is exactly {"uri": uri}. uri may be a compiled pattern."""
    return created_response.with_(body_exact={"uri": uri})


def error_response(status: int, message: str) -> ExpectedResponse:
    """The server's standard error shape: {"error": [message]} and nothing else."""
    return ExpectedResponse(status=status, body_exact={"error": [message]})


def error_message_response(message: Any) -> ExpectedResponse:
    """Any response whose "error" field matches message; status unchecked."""
    return ExpectedResponse(body={"error": message})


def empty_body_response(status: int) -> ExpectedResponse:
    """A response with the given status and an empty body."""
    return ExpectedResponse(status=status, body_raw="")
