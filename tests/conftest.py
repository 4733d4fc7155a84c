"""Pytest configuration and fixtures for api-conformance tests.

This file provides:
- make_response_case: ResponseCase factory for matcher tests
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock API server
- Fixtures: matcher, mock servers for both implementations
"""

from __future__ import annotations

import json
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Generator

import pytest

from api_conformance.models import ResponseCase
from api_conformance.response_matcher import ResponseMatcher

PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

_UNSET = object()


def make_response_case(
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    body: Any = _UNSET,
    body_text: str | None = None,
    elapsed_ms: float = 10.0,
) -> ResponseCase:
    """Create a ResponseCase for matcher tests.

    body is JSON-encoded into body_text; pass body_text directly for raw or
    malformed bodies. With neither, the body is empty.
    """
    if body_text is None:
        body_text = "" if body is _UNSET else json.dumps(body)
    return ResponseCase(
        status_code=status_code,
        headers=headers or {},
        body_text=body_text,
        elapsed_ms=elapsed_ms,
    )


@pytest.fixture
def matcher() -> ResponseMatcher:
    return ResponseMatcher()


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    Usage:
        reservation = PortReservation()
        server = MockServer(reservation, variant="legacy")
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def find_free_port() -> int:
    """Find an available port on localhost (racy; prefer PortReservation)."""
    with PortReservation() as reservation:
        return reservation.port


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages a mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess. The variant selects
    which server implementation's behavior the mock imitates.
    """

    def __init__(self, port: int | PortReservation, variant: str = "rewrite") -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.variant = variant
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
                "--variant", self.variant,
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer(variant={self.variant}) failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess (SIGTERM, then SIGKILL after 5s)."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


@pytest.fixture(scope="session")
def mock_servers() -> Generator[dict[str, MockServer], None, None]:
    """Start a legacy and a rewrite mock server for the whole session.

    Yields dict with keys "legacy" and "rewrite".
    """
    reservation_legacy = PortReservation()
    reservation_rewrite = PortReservation()

    with MockServer(reservation_legacy, variant="legacy") as legacy:
        with MockServer(reservation_rewrite, variant="rewrite") as rewrite:
            yield {"legacy": legacy, "rewrite": rewrite}


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests as unit or integration based on their directory."""
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
