"""Response Matcher - Checks an HTTP response against an expected response.

The matcher runs the checks an ExpectedResponse asks for, in a fixed order,
and stops at the first failure:

    1. status      (status_matches)
    2. body_raw    (exact string equality on the unparsed body)
    3. headers     (header_matches, one header at a time)
    4. body / body_exact  (parse JSON, exact key set if body_exact, then
                           one EntryMatch per expected field)

The body is only parsed in step 4, so a response with an empty or non-JSON
body can still be checked for status, raw body and headers.

Every failure is reduced to a MatchResult; nothing raises out of match().
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from http import HTTPStatus
from typing import Any

from api_conformance.comparator import EntryMatch, render_value, values_equal
from api_conformance.models import (
    BodyParseError,
    ExpectedResponse,
    MatchResult,
    MismatchType,
    ResponseCase,
)

# Longest raw body quoted in a failure message
_MAX_QUOTED_BODY = 200


# =============================================================================
# Status/Header Matchers
# =============================================================================


def status_matches(actual_code: int, expected: int | Collection[int]) -> bool:
    """Exact equality, or membership when expected is a collection of codes."""
    if isinstance(expected, Collection):
        return actual_code in expected
    return actual_code == expected


def header_matches(actual_value: str | None, expected: Any) -> bool:
    """Literal equality only. A missing header never matches a string."""
    return values_equal(expected, actual_value)


# =============================================================================
# Response Matcher
# =============================================================================


def coerce_expected(expected: ExpectedResponse | Mapping[str, Any]) -> ExpectedResponse:
    """Accept an ExpectedResponse or a plain mapping with the same keys.

    Raises:
        pydantic.ValidationError: If a mapping has a malformed recognized key.
    """
    if isinstance(expected, ExpectedResponse):
        return expected
    return ExpectedResponse.model_validate(dict(expected))


class ResponseMatcher:
    """Matches responses against expected responses.

    Stateless: one instance can be shared across threads and test cases.

    Usage:
        matcher = ResponseMatcher()
        result = matcher.match({"status": 201, "body": {"name": "x"}}, response)
        if not result.match:
            print(result.summary)
    """

    def match(
        self,
        expected: ExpectedResponse | Mapping[str, Any],
        response: ResponseCase,
    ) -> MatchResult:
        """Run every check expected asks for against response.

        Args:
            expected: Expected response (model or plain mapping).
            response: Actual response.

        Returns:
            MatchResult describing the first failed check, or a match.
        """
        expectation = coerce_expected(expected)

        status = expectation.status
        if status is not None and not status_matches(response.status_code, status):
            return _mismatch(
                MismatchType.STATUS_CODE,
                self._format_status_summary(status, response.status_code),
            )

        if expectation.body_raw is not None and response.body_text != expectation.body_raw:
            return _mismatch(
                MismatchType.BODY_RAW,
                f'Response body should have been "{_quote_body(expectation.body_raw)}", '
                f'but it was "{_quote_body(response.body_text)}"',
            )

        if expectation.headers:
            for name, value in expectation.headers.items():
                actual_value = response.header(name)
                if not header_matches(actual_value, value):
                    return _mismatch(
                        MismatchType.HEADERS,
                        f'Header "{name}" should be "{value}", but it was '
                        f'"{actual_value if actual_value is not None else "<missing>"}"',
                    )

        if expectation.checks_body:
            body_result = self._match_body(expectation, response)
            if body_result is not None:
                return body_result

        return MatchResult(match=True, mismatch_type=None, summary="Response matches")

    def matches(
        self,
        expected: ExpectedResponse | Mapping[str, Any],
        response: ResponseCase,
    ) -> tuple[bool, str | None]:
        """Like match(), returning (verdict, failure description or None)."""
        return self.match(expected, response).as_tuple()

    def _match_body(
        self,
        expectation: ExpectedResponse,
        response: ResponseCase,
    ) -> MatchResult | None:
        """Check body/body_exact. Returns None when the body satisfies expectation."""
        try:
            parsed = response.json_body()
        except BodyParseError as e:
            return _mismatch(
                MismatchType.BODY_NOT_PARSEABLE,
                f"Response body was not valid JSON ({e}); "
                f'raw body was "{_quote_body(response.body_text)}"',
            )

        if not isinstance(parsed, dict):
            return _mismatch(
                MismatchType.BODY_NOT_OBJECT,
                f"Response body should be a JSON object, but it was "
                f"{type(parsed).__name__}: {render_value(parsed)}",
            )

        # body wins when both are given; body_exact still fixes the key set
        expected_body = (
            expectation.body if expectation.body is not None else expectation.body_exact
        )

        if expectation.body_exact is not None:
            expected_keys = set(expectation.body_exact)
            actual_keys = set(parsed)
            if expected_keys != actual_keys:
                return _mismatch(
                    MismatchType.BODY_KEYS,
                    self._format_keys_summary(expected_keys, actual_keys),
                )

        for key, value in expected_body.items():
            entry = EntryMatch.check(key, value, parsed)
            if not entry.matched:
                return _mismatch(MismatchType.BODY, entry.description)

        return None

    def _format_status_summary(
        self,
        expected: int | Collection[int],
        actual: int,
    ) -> str:
        """Format a summary for a status code mismatch."""
        if isinstance(expected, Collection):
            wanted = "one of " + ", ".join(_describe_status(code) for code in sorted(expected))
        else:
            wanted = _describe_status(expected)
        return (
            f"Response should have HTTP status code {wanted}, "
            f"but it was actually {_describe_status(actual)}"
        )

    def _format_keys_summary(self, expected_keys: set, actual_keys: set) -> str:
        """Format a summary for a body_exact key set mismatch."""
        missing = sorted(expected_keys - actual_keys, key=str)
        extra = sorted(actual_keys - expected_keys, key=str)
        parts = []
        if missing:
            parts.append(f"missing: {', '.join(map(str, missing))}")
        if extra:
            parts.append(f"unexpected: {', '.join(map(str, extra))}")
        return (
            f"Response body keys should be exactly "
            f"[{', '.join(map(str, sorted(expected_keys, key=str)))}] "
            f"({'; '.join(parts)})"
        )


def assert_looks_like(
    response: ResponseCase,
    expected: ExpectedResponse | Mapping[str, Any],
) -> None:
    """Assert that response satisfies expected.

    Raises:
        AssertionError: With the failure description, if it does not.
    """
    result = ResponseMatcher().match(expected, response)
    if not result.match:
        raise AssertionError(result.summary)


def _mismatch(mismatch_type: MismatchType, summary: str) -> MatchResult:
    return MatchResult(match=False, mismatch_type=mismatch_type, summary=summary)


def _describe_status(code: int) -> str:
    try:
        phrase = HTTPStatus(code).phrase
    except ValueError:
        return str(code)
    return f"{code} ('{phrase}')"


def _quote_body(text: str) -> str:
    if len(text) > _MAX_QUOTED_BODY:
        return text[:_MAX_QUOTED_BODY] + "..."
    return text
