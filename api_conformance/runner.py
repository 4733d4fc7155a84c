"""Scenario Runner - Sends each scenario as each requestor and matches the result.

Scenarios run serially, in file order. Each (scenario, requestor) pair yields
one ScenarioResult. A transport failure is recorded as an ERROR outcome and
the run continues; a mismatch is a FAILED outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from api_conformance.executor import Executor, RequestError
from api_conformance.models import (
    MatchResult,
    Scenario,
    ScenarioOutcome,
    ServerImplementation,
)
from api_conformance.response_matcher import ResponseMatcher


@dataclass
class ScenarioResult:
    """Outcome of one scenario sent as one requestor."""

    scenario: str
    requestor: str
    outcome: ScenarioOutcome
    match: MatchResult | None = None
    error: str | None = None
    elapsed_ms: float = 0.0


@dataclass
class RunSummary:
    """All results of a run plus per-outcome counts."""

    implementation: ServerImplementation
    results: list[ScenarioResult] = field(default_factory=list)
    interrupted: bool = False

    def count(self, outcome: ScenarioOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def passed(self) -> int:
        return self.count(ScenarioOutcome.PASSED)

    @property
    def failed(self) -> int:
        return self.count(ScenarioOutcome.FAILED)

    @property
    def errors(self) -> int:
        return self.count(ScenarioOutcome.ERROR)

    @property
    def skipped(self) -> int:
        return self.count(ScenarioOutcome.SKIPPED)

    @property
    def ok(self) -> bool:
        """True if nothing failed or errored (skips are fine)."""
        return self.failed == 0 and self.errors == 0 and not self.interrupted


class ScenarioRunner:
    """Runs scenarios against one server implementation.

    Usage:
        with Executor(config) as executor:
            runner = ScenarioRunner(executor, config.implementation)
            summary = runner.run(scenarios)
    """

    def __init__(
        self,
        executor: Executor,
        implementation: ServerImplementation,
        matcher: ResponseMatcher | None = None,
        requestor_filter: list[str] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            executor: Executor for the server under test (caller owns lifecycle).
            implementation: Implementation under test; selects expectation overrides.
            matcher: Response matcher; a default one is created if None.
            requestor_filter: If given, only send as these requestors.
        """
        self._executor = executor
        self._implementation = implementation
        self._matcher = matcher or ResponseMatcher()
        self._requestor_filter = set(requestor_filter) if requestor_filter else None

    def run(
        self,
        scenarios: list[Scenario],
        on_result: Callable[[ScenarioResult], None] | None = None,
    ) -> RunSummary:
        """Run every scenario for every selected requestor.

        Args:
            scenarios: Scenarios in run order.
            on_result: Optional callback invoked after each result.

        Returns:
            RunSummary with one result per (scenario, requestor).
        """
        summary = RunSummary(implementation=self._implementation)
        try:
            for scenario in scenarios:
                for result in self.run_scenario(scenario):
                    summary.results.append(result)
                    if on_result is not None:
                        on_result(result)
        except KeyboardInterrupt:
            summary.interrupted = True
        return summary

    def run_scenario(self, scenario: Scenario) -> list[ScenarioResult]:
        """Run one scenario for each of its selected requestors."""
        results: list[ScenarioResult] = []
        for requestor in scenario.requestors:
            if self._requestor_filter is not None and requestor not in self._requestor_filter:
                continue
            results.append(self._run_as(scenario, requestor))
        return results

    def _run_as(self, scenario: Scenario, requestor: str) -> ScenarioResult:
        if self._implementation in scenario.pending_on:
            return ScenarioResult(
                scenario=scenario.name,
                requestor=requestor,
                outcome=ScenarioOutcome.SKIPPED,
                error=f"pending on {self._implementation.value}",
            )

        try:
            response = self._executor.execute(scenario.request, requestor)
        except RequestError as e:
            return ScenarioResult(
                scenario=scenario.name,
                requestor=requestor,
                outcome=ScenarioOutcome.ERROR,
                error=str(e),
            )

        expected = scenario.expectation_for(requestor, self._implementation)
        result = self._matcher.match(expected, response)

        return ScenarioResult(
            scenario=scenario.name,
            requestor=requestor,
            outcome=ScenarioOutcome.PASSED if result.match else ScenarioOutcome.FAILED,
            match=result,
            elapsed_ms=response.elapsed_ms,
        )
