"""Config Loader - Loads runtime configuration and scenario files.

Runtime config is YAML with ${ENV_VAR} substitution (credentials usually come
from the environment). Scenario files are YAML with two extra tags:

    !regex "^http"                        compiled pattern (matched with re.search)
    !regex {pattern: "^abc", flags: i}    pattern with flags (i, m, s, x)
    !set [200, 204]                       set of acceptable values

Cross-validation (validate_scenarios) reports problems that are only visible
once both files are loaded, such as scenarios naming unknown requestors.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from api_conformance.models import RuntimeConfig, Scenario, ScenarioFile


class ConfigError(Exception):
    """Raised when configuration loading fails."""


# =============================================================================
# YAML Tags
# =============================================================================


_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}


class ScenarioYamlLoader(yaml.SafeLoader):
    """SafeLoader that understands the !regex and !set tags."""


def _construct_regex(loader: yaml.SafeLoader, node: yaml.Node) -> re.Pattern:
    if isinstance(node, yaml.MappingNode):
        mapping = loader.construct_mapping(node)
        source = mapping.get("pattern")
        flag_letters = str(mapping.get("flags", ""))
    else:
        source = loader.construct_scalar(node)
        flag_letters = ""

    if not isinstance(source, str):
        raise yaml.constructor.ConstructorError(
            None, None, "!regex needs a string pattern", node.start_mark
        )

    flags = 0
    for letter in flag_letters:
        if letter not in _REGEX_FLAGS:
            raise yaml.constructor.ConstructorError(
                None, None, f"unknown !regex flag '{letter}'", node.start_mark
            )
        flags |= _REGEX_FLAGS[letter]

    try:
        return re.compile(source, flags)
    except re.error as e:
        raise yaml.constructor.ConstructorError(
            None, None, f"invalid !regex '{source}': {e}", node.start_mark
        ) from e


def _construct_set(loader: yaml.SafeLoader, node: yaml.Node) -> frozenset:
    if not isinstance(node, yaml.SequenceNode):
        raise yaml.constructor.ConstructorError(
            None, None, "!set needs a sequence", node.start_mark
        )
    return frozenset(loader.construct_sequence(node))


ScenarioYamlLoader.add_constructor("!regex", _construct_regex)
ScenarioYamlLoader.add_constructor("!set", _construct_set)


# =============================================================================
# Loading
# =============================================================================


def load_runtime_config(config_path: Path) -> RuntimeConfig:
    """Load runtime configuration from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return RuntimeConfig.model_validate(raw_config)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def load_scenario_file(scenario_path: Path) -> ScenarioFile:
    """Load one scenario file."""
    if not scenario_path.exists():
        raise ConfigError(f"Scenario file not found: {scenario_path}")

    try:
        with open(scenario_path, "r", encoding="utf-8") as f:
            raw_scenarios = yaml.load(f, Loader=ScenarioYamlLoader)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in scenario file {scenario_path}: {e}") from e

    if not isinstance(raw_scenarios, dict):
        raise ConfigError(f"Scenario file must be a YAML mapping: {scenario_path}")

    try:
        return ScenarioFile.model_validate(raw_scenarios)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid scenario structure in {scenario_path}: {e}") from e


def load_scenarios(scenario_paths: list[Path]) -> list[Scenario]:
    """Load scenarios from several files, preserving file and scenario order."""
    scenarios: list[Scenario] = []
    for path in scenario_paths:
        scenarios.extend(load_scenario_file(path).scenarios)
    return scenarios


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return pattern.sub(replacer, s)


# =============================================================================
# Cross-Validation
# =============================================================================


class ValidationWarning:
    """A non-fatal validation warning."""

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        self.message = message

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


class ValidationError:
    """A fatal validation error."""

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        self.message = message

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


class ValidationResult:
    """Result of cross-validation checks."""

    def __init__(self) -> None:
        self.warnings: list[ValidationWarning] = []
        self.errors: list[ValidationError] = []

    def add_warning(self, category: str, message: str) -> None:
        self.warnings.append(ValidationWarning(category, message))

    def add_error(self, category: str, message: str) -> None:
        self.errors.append(ValidationError(category, message))

    @property
    def is_valid(self) -> bool:
        """True if no errors (warnings are OK)."""
        return len(self.errors) == 0

    def merge(self, other: "ValidationResult") -> None:
        """Merge another result into this one."""
        self.warnings.extend(other.warnings)
        self.errors.extend(other.errors)


def validate_scenarios(
    scenarios: list[Scenario],
    config: RuntimeConfig,
) -> ValidationResult:
    """Validate scenarios against the runtime config.

    Checks: (1) every requestor a scenario sends as is configured,
    (2) per-requestor overrides name a requestor the scenario sends as,
    (3) scenario names are unique.
    """
    result = ValidationResult()
    configured = set(config.requestors)
    seen_names: set[str] = set()

    for scenario in scenarios:
        if scenario.name in seen_names:
            result.add_warning(
                "scenarios",
                f"Scenario name '{scenario.name}' is used more than once. "
                f"Results will be hard to tell apart."
            )
        seen_names.add(scenario.name)

        for requestor in scenario.requestors:
            if requestor not in configured:
                available = ", ".join(sorted(configured))
                result.add_error(
                    "requestors",
                    f"{scenario.name}: Unknown requestor '{requestor}'. "
                    f"Available: {available}"
                )

        for requestor in scenario.expect_by_requestor:
            if requestor not in scenario.requestors:
                result.add_warning(
                    "expect_by_requestor",
                    f"{scenario.name}: Override for '{requestor}' is never used "
                    f"because the scenario does not send as '{requestor}'."
                )

    return result


def validate_requestor_filter(
    requestor_filter: list[str],
    config: RuntimeConfig,
) -> ValidationResult:
    """Error if --requestor names a requestor that is not configured."""
    result = ValidationResult()
    for requestor in requestor_filter:
        if requestor not in config.requestors:
            available = ", ".join(sorted(config.requestors))
            result.add_error(
                "requestor",
                f"--requestor '{requestor}' not found in config. Available: {available}"
            )
    return result
