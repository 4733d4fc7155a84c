"""Internal data models for api-conformance.

All models use Pydantic v2. Expected values inside ``body``/``body_exact`` are
kept as plain Python objects (compiled ``re.Pattern`` for regex fields) so the
comparator can dispatch on their kind; see ``api_conformance.comparator``.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationInfo,
    field_validator,
)


# =============================================================================
# Core HTTP Models
# =============================================================================


class BodyParseError(ValueError):
    """Raised when a response body cannot be parsed as JSON."""


def _stringify_header_values(v: Any) -> Any:
    """Turn unquoted YAML scalars (Content-Length: 0) into header strings."""
    if not isinstance(v, dict):
        return v
    return {
        name: json.dumps(value) if isinstance(value, (bool, int, float)) else value
        for name, value in v.items()
    }


def _reject_sets(value: Any, path: str) -> None:
    """Sets only make sense for status; in a body they never equal a JSON list."""
    if isinstance(value, (set, frozenset)):
        raise ValueError(
            f"{path}: sets are only allowed for status; "
            f"use a list for an order-independent comparison"
        )
    if isinstance(value, dict):
        for key, item in value.items():
            _reject_sets(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _reject_sets(item, f"{path}[{index}]")


class RequestSpec(BaseModel):
    """One HTTP request a scenario sends.

    ``payload`` is JSON-encoded when it is a mapping or list; strings are sent
    verbatim so malformed bodies can be exercised.
    """

    model_config = ConfigDict(extra="forbid")

    method: str = Field(description="HTTP method (GET, POST, etc.)")
    path: str = Field(description="Path relative to the server base URL, e.g. /clients")
    payload: Any = Field(default=None, description="Request body")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra headers, applied after all others"
    )

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, v: Any) -> Any:
        return _stringify_header_values(v)


class ResponseCase(BaseModel):
    """One HTTP response captured from the server under test.

    Header keys are lowercase. The raw body is kept as text; the parsed JSON
    body is produced on demand by ``json_body()`` and cached per instance.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers (lowercase keys)"
    )
    body_text: str = Field(default="", description="Raw, unparsed response body")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")

    _parsed: Any = PrivateAttr(default=None)
    _parse_error: str | None = PrivateAttr(default=None)
    _parse_attempted: bool = PrivateAttr(default=False)

    @field_validator("headers")
    @classmethod
    def lowercase_header_names(cls, v: dict[str, str]) -> dict[str, str]:
        return {name.lower(): value for name, value in v.items()}

    def header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name, or None if absent."""
        return self.headers.get(name.lower())

    def json_body(self) -> Any:
        """Parse the raw body as JSON.

        Raises:
            BodyParseError: If the body is empty or not valid JSON.
        """
        if not self._parse_attempted:
            try:
                self._parsed = json.loads(self.body_text)
            except json.JSONDecodeError as e:
                self._parse_error = str(e)
            self._parse_attempted = True

        if self._parse_error is not None:
            raise BodyParseError(self._parse_error)
        return self._parsed


# =============================================================================
# Expected Response Models
# =============================================================================


class ExpectedResponse(BaseModel):
    """Declarative description of what a response must satisfy.

    All keys are optional and combinable. Unknown keys are ignored so older
    harness versions can read newer scenario files.

    status:     int, or a collection of acceptable ints
    headers:    header name -> exact expected value
    body:       field -> expected value; unlisted fields are ignored
    body_exact: like body, but the body's key set must equal this key set
    body_raw:   the unparsed body must equal this string ("" asserts empty)
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    status: int | frozenset[int] | None = Field(default=None, description="Expected status code(s)")
    headers: dict[str, str] | None = Field(default=None, description="Expected header values")
    body: dict[str, Any] | None = Field(default=None, description="Partial body expectation")
    body_exact: dict[str, Any] | None = Field(default=None, description="Exact-keys body expectation")
    body_raw: str | None = Field(default=None, description="Expected raw body")

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, v: Any) -> Any:
        return _stringify_header_values(v)

    @field_validator("body", "body_exact")
    @classmethod
    def no_sets_in_body(
        cls, v: dict[str, Any] | None, info: ValidationInfo
    ) -> dict[str, Any] | None:
        if v is not None:
            _reject_sets(v, info.field_name)
        return v

    @property
    def checks_body(self) -> bool:
        """True if the body has to be parsed as JSON to evaluate this expectation."""
        return self.body is not None or self.body_exact is not None

    def with_(self, **changes: Any) -> Self:
        """Return a copy with the given keys replaced. The original is unchanged."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return type(self).model_validate(data)

    def with_body_field(self, key: str, value: Any) -> Self:
        """Return a copy expecting one more body field.

        The field is added to body_exact when this expectation is exact,
        otherwise to body.
        """
        if self.body_exact is not None and self.body is None:
            return self.with_(body_exact={**self.body_exact, key: value})
        return self.with_(body={**(self.body or {}), key: value})


class MismatchType(str, Enum):
    """Which check of an expected response failed first."""

    STATUS_CODE = "status_code"
    BODY_RAW = "body_raw"
    HEADERS = "headers"
    BODY_NOT_PARSEABLE = "body_not_parseable"
    BODY_NOT_OBJECT = "body_not_object"
    BODY_KEYS = "body_keys"
    BODY = "body"


class MatchResult(BaseModel):
    """Verdict of matching one response against one expected response."""

    model_config = ConfigDict(extra="forbid")

    match: bool = Field(description="Whether the response satisfied every check")
    mismatch_type: MismatchType | None = Field(
        default=None, description="First check that failed (None if match=True)"
    )
    summary: str = Field(description="Human-readable description for operators")

    def as_tuple(self) -> tuple[bool, str | None]:
        """Return (verdict, failure description or None)."""
        return self.match, None if self.match else self.summary


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class ServerImplementation(str, Enum):
    """The server implementation a run is pointed at."""

    LEGACY = "legacy"
    REWRITE = "rewrite"


class RequestorConfig(BaseModel):
    """An identity requests are sent as.

    Signing is out of scope; a requestor contributes pre-computed headers
    (supports ${ENV_VAR} substitution in the config file).
    """

    model_config = ConfigDict(extra="forbid")

    headers: dict[str, str] = Field(default_factory=dict, description="Identity headers")

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, v: Any) -> Any:
        return _stringify_header_values(v)


class RuntimeConfig(BaseModel):
    """Top-level runtime configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Base URL of the server under test")
    implementation: ServerImplementation = Field(
        default=ServerImplementation.REWRITE, description="Implementation under test"
    )
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added to every request"
    )
    darklaunch: list[str] = Field(
        default_factory=list,
        description="Feature flags sent in X-Ops-Darklaunch to select the implementation",
    )
    requestors: dict[str, RequestorConfig] = Field(
        description="Requestor name -> identity mapping"
    )

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, v: Any) -> Any:
        return _stringify_header_values(v)


# =============================================================================
# Scenario Models
# =============================================================================


class RequestorExpectation(ExpectedResponse):
    """Per-requestor override of ``expect``, optionally refined per implementation.

        expect_by_requestor:
          normal:
            status: 403
            by_implementation:
              legacy: {status: 404}

    An entry that sets only ``by_implementation`` refines those implementations
    and leaves the others to the scenario-level expectations.
    """

    by_implementation: dict[ServerImplementation, ExpectedResponse] = Field(
        default_factory=dict, description="Overrides for this requestor on one implementation"
    )

    def own_expectation(self) -> ExpectedResponse | None:
        """This entry's own keys as an ExpectedResponse, or None if it sets none."""
        data = {name: getattr(self, name) for name in ExpectedResponse.model_fields}
        if all(value is None for value in data.values()):
            return None
        return ExpectedResponse.model_validate(data)


class Scenario(BaseModel):
    """One request sent as one or more requestors, with its expectations.

    Overrides are whole replacements of ``expect``. Lookup order, most
    specific first: requestor on this implementation, requestor, implementation,
    default.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="Human-readable scenario name")
    request: RequestSpec = Field(description="Request to send")
    requestors: list[str] = Field(min_length=1, description="Requestor names to send as")
    expect: ExpectedResponse = Field(description="Default expected response")
    expect_by_requestor: dict[str, RequestorExpectation] = Field(
        default_factory=dict, description="Per-requestor overrides"
    )
    expect_by_implementation: dict[ServerImplementation, ExpectedResponse] = Field(
        default_factory=dict, description="Per-implementation overrides"
    )
    pending_on: list[ServerImplementation] = Field(
        default_factory=list, description="Implementations this scenario is known to fail on"
    )

    def expectation_for(
        self,
        requestor: str,
        implementation: ServerImplementation,
    ) -> ExpectedResponse:
        """Select the expected response for one requestor on one implementation."""
        override = self.expect_by_requestor.get(requestor)
        if override is not None:
            if implementation in override.by_implementation:
                return override.by_implementation[implementation]
            own = override.own_expectation()
            if own is not None:
                return own
        if implementation in self.expect_by_implementation:
            return self.expect_by_implementation[implementation]
        return self.expect


class ScenarioFile(BaseModel):
    """Top-level scenario file structure."""

    model_config = ConfigDict(extra="forbid")

    description: str | None = Field(default=None, description="Optional description")
    scenarios: list[Scenario] = Field(description="Scenarios in file order")


class ScenarioOutcome(str, Enum):
    """Outcome of one scenario for one requestor."""

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"
