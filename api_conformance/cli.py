"""CLI entry point for api-conformance.

Handles argument parsing and dispatches to run or list mode.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path

from api_conformance.models import ServerImplementation


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


@dataclass
class ListArgs:
    """Parsed arguments for list mode."""

    scenarios: list[Path]


@dataclass
class RunArgs:
    """Parsed arguments for run mode."""

    config: Path
    scenarios: list[Path]
    implementation: ServerImplementation | None
    requestors: list[str]
    timeout: float | None
    out: Path | None
    validate: bool
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with run and list subcommands."""
    parser = argparse.ArgumentParser(
        prog="api-conformance",
        description="Conformance test suite for a configuration-management server's REST API.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Execution mode")

    list_parser = subparsers.add_parser(
        "list",
        help="List scenarios and the requestors they run as",
    )
    list_parser.add_argument(
        "--scenarios",
        type=Path,
        nargs="+",
        required=True,
        help="Scenario YAML files",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Run scenarios against a server",
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Runtime config YAML file",
    )
    run_parser.add_argument(
        "--scenarios",
        type=Path,
        nargs="+",
        required=True,
        help="Scenario YAML files",
    )
    run_parser.add_argument(
        "--implementation",
        choices=[impl.value for impl in ServerImplementation],
        default=None,
        help="Implementation under test (overrides the config file)",
    )
    run_parser.add_argument(
        "--requestor",
        action="append",
        default=[],
        dest="requestors",
        metavar="NAME",
        help="Only send as this requestor (can be repeated)",
    )
    run_parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Request timeout in seconds (overrides the config file)",
    )
    run_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Directory to write summary.json to",
    )
    run_parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate config and scenarios without sending requests",
    )
    run_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print passing and skipped results too",
    )

    return parser


def parse_list_args(namespace: argparse.Namespace) -> ListArgs:
    """Convert parsed namespace to ListArgs dataclass."""
    return ListArgs(scenarios=namespace.scenarios)


def parse_run_args(namespace: argparse.Namespace) -> RunArgs:
    """Convert parsed namespace to RunArgs dataclass."""
    implementation = (
        ServerImplementation(namespace.implementation) if namespace.implementation else None
    )
    return RunArgs(
        config=namespace.config,
        scenarios=namespace.scenarios,
        implementation=implementation,
        requestors=namespace.requestors or [],
        timeout=namespace.timeout,
        out=namespace.out,
        validate=namespace.validate,
        verbose=namespace.verbose,
    )


def parse_args(args: list[str] | None = None) -> ListArgs | RunArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "list":
        return parse_list_args(namespace)
    elif namespace.command == "run":
        return parse_run_args(namespace)
    else:
        # Should not happen with required=True on subparsers
        parser.error(f"Unknown command: {namespace.command}")


def dispatch(parsed: ListArgs | RunArgs) -> int:
    """Run the mode selected by parsed args and return the exit code."""
    if isinstance(parsed, ListArgs):
        return run_list(parsed)
    return run_scenarios(parsed)


def main() -> int:
    """Main entry point."""
    try:
        return dispatch(parse_args())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def run_list(args: ListArgs) -> int:
    """Print each scenario with its request and requestors."""
    from api_conformance.config_loader import ConfigError, load_scenarios

    try:
        scenarios = load_scenarios(args.scenarios)
    except ConfigError as e:
        print(f"Error loading scenarios: {e}", file=sys.stderr)
        return 1

    for scenario in scenarios:
        print(scenario.name)
        print(f"  {scenario.request.method} {scenario.request.path}")
        print(f"  Requestors: {', '.join(scenario.requestors)}")
        if scenario.pending_on:
            pending = ", ".join(impl.value for impl in scenario.pending_on)
            print(f"  Pending on: {pending}")
        print()

    print(f"Total: {len(scenarios)} scenarios")
    return 0


def run_scenarios(args: RunArgs) -> int:
    """Run mode: load, validate, execute, report."""
    from api_conformance.config_loader import (
        ConfigError,
        load_runtime_config,
        load_scenarios,
        validate_requestor_filter,
        validate_scenarios,
    )
    from api_conformance.executor import Executor, ExecutorError
    from api_conformance.report import format_result, format_summary, write_summary
    from api_conformance.runner import ScenarioRunner

    try:
        config = load_runtime_config(args.config)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    try:
        scenarios = load_scenarios(args.scenarios)
    except ConfigError as e:
        print(f"Error loading scenarios: {e}", file=sys.stderr)
        return 1

    implementation = args.implementation or config.implementation
    if implementation != config.implementation:
        config = config.model_copy(update={"implementation": implementation})

    validation = validate_scenarios(scenarios, config)
    validation.merge(validate_requestor_filter(args.requestors, config))

    for warning in validation.warnings:
        print(f"WARNING: {warning}", file=sys.stderr)
    for error in validation.errors:
        print(f"ERROR: {error}", file=sys.stderr)
    if not validation.is_valid:
        print("Validation failed", file=sys.stderr)
        return 1

    if args.validate:
        print(f"Validating: config={args.config}")
        print(f"  Server: {config.base_url} ({implementation.value})")
        print(f"  Requestors: {', '.join(sorted(config.requestors))}")
        print(f"  Scenarios: {len(scenarios)}")
        print("Validation successful")
        return 0

    print(f"Running {len(scenarios)} scenarios against {config.base_url} ({implementation.value})")

    def on_result(result):
        line = format_result(result, verbose=args.verbose)
        if line is not None:
            print(line)

    try:
        with Executor(config, timeout=args.timeout) as executor:
            runner = ScenarioRunner(
                executor,
                implementation,
                requestor_filter=args.requestors or None,
            )
            summary = runner.run(scenarios, on_result=on_result)
    except ExecutorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print()
    print(format_summary(summary))

    if args.out is not None:
        summary_path = args.out / "summary.json"
        write_summary(summary_path, summary)
        print(f"Summary written to: {summary_path}")

    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
