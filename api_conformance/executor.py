"""Executor - Sends requests to the server under test and captures responses.

Requests are sent as a named requestor. Header precedence, lowest first:

    standard headers < config headers < requestor headers < request headers

The implementation selector header (X-Ops-Darklaunch) is part of the standard
headers when the config names darklaunch features.
"""

from __future__ import annotations

import json
import time
from typing import Any

import httpx

from api_conformance.models import (
    RequestSpec,
    ResponseCase,
    RuntimeConfig,
    ServerImplementation,
)


class ExecutorError(Exception):
    """Base class for executor errors."""


class RequestError(ExecutorError):
    """Raised when a request fails (connection error, timeout, etc.)."""


USER_AGENT = "api-conformance"
DARKLAUNCH_HEADER = "X-Ops-Darklaunch"


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?' (RFC 7230 requires ASCII)."""
    return value.encode("ascii", errors="replace").decode("ascii")


def darklaunch_header_value(
    features: list[str],
    implementation: ServerImplementation,
) -> str | None:
    """Build the X-Ops-Darklaunch value that routes features to an implementation.

    Legacy turns every feature on, rewrite turns every feature off. Returns
    None when no features are configured (header omitted).
    """
    if not features:
        return None
    enabled = "true" if implementation == ServerImplementation.LEGACY else "false"
    return ";".join(f"{feature}={enabled}" for feature in features)


class Executor:
    """Executes requests against the configured server.

    Usage:
        with Executor(config) as executor:
            response = executor.execute(request, "admin")
    """

    def __init__(
        self,
        config: RuntimeConfig,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Runtime configuration (base URL, headers, requestors).
            timeout: Request timeout in seconds; defaults to config.timeout.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._config = config
        self._timeout = timeout if timeout is not None else config.timeout
        self._standard_headers = self._build_standard_headers(config)

        client_kwargs: dict[str, Any] = {
            "base_url": config.base_url,
            "timeout": self._timeout,
            "verify": config.verify_ssl,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.Client(**client_kwargs)

    def __enter__(self) -> "Executor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    @staticmethod
    def _build_standard_headers(config: RuntimeConfig) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        darklaunch = darklaunch_header_value(config.darklaunch, config.implementation)
        if darklaunch is not None:
            headers[DARKLAUNCH_HEADER] = darklaunch
        return headers

    def build_headers(self, request: RequestSpec, requestor: str) -> dict[str, str]:
        """Merge header layers for one request, later layers winning.

        Header names are merged case-insensitively; the spelling of the last
        layer that sets a header is kept.

        Raises:
            ExecutorError: If requestor is not configured.
        """
        if requestor not in self._config.requestors:
            raise ExecutorError(f"Unknown requestor '{requestor}'")

        merged: dict[str, tuple[str, str]] = {}
        for layer in (
            self._standard_headers,
            self._config.headers,
            self._config.requestors[requestor].headers,
            request.headers,
        ):
            for name, value in layer.items():
                merged[name.lower()] = (name, _sanitize_header_value(value))

        return {name: value for name, value in merged.values()}

    def execute(self, request: RequestSpec, requestor: str) -> ResponseCase:
        """Send one request as requestor.

        Args:
            request: The request to send.
            requestor: Name of a configured requestor.

        Returns:
            ResponseCase with the response.

        Raises:
            ExecutorError: If requestor is not configured.
            RequestError: If the request fails.
        """
        headers = self.build_headers(request, requestor)
        content = self._encode_payload(request.payload)

        try:
            start_time = time.perf_counter()

            http_response = self._client.request(
                method=request.method,
                url=request.path,
                headers=headers,
                content=content,
            )

            elapsed_ms = (time.perf_counter() - start_time) * 1000

        except httpx.TimeoutException as e:
            raise RequestError(f"{requestor}: request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise RequestError(f"{requestor}: connection error: {e}") from e
        except httpx.RequestError as e:
            raise RequestError(f"{requestor}: request error: {e}") from e
        except UnicodeEncodeError as e:
            raise RequestError(
                f"{requestor}: encoding error: non-ASCII characters in request "
                f"(header name or path). Character: {e.object[e.start:e.end]!r} "
                f"at position {e.start}."
            ) from e

        return self._convert_response(http_response, elapsed_ms)

    @staticmethod
    def _encode_payload(payload: Any) -> bytes | None:
        """JSON-encode mappings and lists; send strings and bytes verbatim."""
        if payload is None:
            return None
        if isinstance(payload, bytes):
            return payload
        if isinstance(payload, str):
            return payload.encode("utf-8")
        return json.dumps(payload).encode("utf-8")

    def _convert_response(
        self,
        response: httpx.Response,
        elapsed_ms: float,
    ) -> ResponseCase:
        """Convert httpx Response to ResponseCase.

        Repeated headers are joined with ", " as HTTP allows.
        """
        headers: dict[str, str] = {}
        for key, value in response.headers.multi_items():
            key_lower = key.lower()
            if key_lower in headers:
                headers[key_lower] = f"{headers[key_lower]}, {value}"
            else:
                headers[key_lower] = value

        return ResponseCase(
            status_code=response.status_code,
            headers=headers,
            body_text=response.text,
            elapsed_ms=elapsed_ms,
        )
