"""Report - Formats run results for the terminal and writes summary.json."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from api_conformance.models import ScenarioOutcome
from api_conformance.runner import RunSummary, ScenarioResult

_LABELS = {
    ScenarioOutcome.PASSED: "PASS",
    ScenarioOutcome.FAILED: "FAIL",
    ScenarioOutcome.ERROR: "ERROR",
    ScenarioOutcome.SKIPPED: "SKIP",
}


def format_result(result: ScenarioResult, verbose: bool = False) -> str | None:
    """One line per result; passes and skips only in verbose mode."""
    if not verbose and result.outcome in (ScenarioOutcome.PASSED, ScenarioOutcome.SKIPPED):
        return None

    line = f"[{_LABELS[result.outcome]}] {result.scenario} (as {result.requestor})"
    if result.outcome == ScenarioOutcome.FAILED and result.match is not None:
        line += f"\n         {result.match.summary}"
    elif result.error:
        line += f": {result.error}"
    return line


def format_summary(summary: RunSummary) -> str:
    """Multi-line totals block printed at the end of a run."""
    lines = [
        "=" * 60,
        f"Implementation: {summary.implementation.value}",
        f"Total results: {len(summary.results)}",
        f"  Passed:  {summary.passed}",
        f"  Failed:  {summary.failed}",
        f"  Errors:  {summary.errors}",
        f"  Skipped: {summary.skipped}",
    ]
    if summary.interrupted:
        lines.append("Run was interrupted")
    return "\n".join(lines)


def summary_to_dict(summary: RunSummary) -> dict[str, Any]:
    """JSON-ready form of a run summary."""
    return {
        "implementation": summary.implementation.value,
        "interrupted": summary.interrupted,
        "totals": {
            "results": len(summary.results),
            "passed": summary.passed,
            "failed": summary.failed,
            "errors": summary.errors,
            "skipped": summary.skipped,
        },
        "results": [
            {
                "scenario": result.scenario,
                "requestor": result.requestor,
                "outcome": result.outcome.value,
                "mismatch_type": (
                    result.match.mismatch_type.value
                    if result.match is not None and result.match.mismatch_type is not None
                    else None
                ),
                "summary": result.match.summary if result.match is not None else None,
                "error": result.error,
                "elapsed_ms": result.elapsed_ms,
            }
            for result in summary.results
        ],
    }


def write_summary(path: Path, summary: RunSummary) -> None:
    """Write summary_to_dict(summary) as pretty-printed JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(summary_to_dict(summary), f, indent=2)
        f.write("\n")
