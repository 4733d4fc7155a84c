"""Tests for config and scenario loading, YAML tags, and cross-validation."""

import re
from textwrap import dedent

import pytest

from api_conformance.config_loader import (
    ConfigError,
    load_runtime_config,
    load_scenario_file,
    load_scenarios,
    validate_requestor_filter,
    validate_scenarios,
)
from api_conformance.models import RuntimeConfig, Scenario, ServerImplementation


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(dedent(text))
    return path


class TestLoadRuntimeConfig:
    def test_full_config(self, tmp_path):
        path = write(tmp_path, "config.yaml", """\
            base_url: https://chef.example.com/organizations/acme
            implementation: legacy
            timeout: 10
            verify_ssl: false
            headers:
              X-Chef-Version: "12.0.0"
            darklaunch: [clients, nodes]
            requestors:
              admin:
                headers:
                  X-Ops-UserId: pivotal
        """)

        config = load_runtime_config(path)

        assert config.base_url == "https://chef.example.com/organizations/acme"
        assert config.implementation == ServerImplementation.LEGACY
        assert config.timeout == 10
        assert config.verify_ssl is False
        assert config.headers == {"X-Chef-Version": "12.0.0"}
        assert config.darklaunch == ["clients", "nodes"]
        assert config.requestors["admin"].headers == {"X-Ops-UserId": "pivotal"}

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONFORMANCE_HOST", "chef.internal")
        monkeypatch.setenv("CONFORMANCE_USER", "pivotal")
        path = write(tmp_path, "config.yaml", """\
            base_url: https://${CONFORMANCE_HOST}:8443
            requestors:
              admin:
                headers:
                  X-Ops-UserId: ${CONFORMANCE_USER}
        """)

        config = load_runtime_config(path)

        assert config.base_url == "https://chef.internal:8443"
        assert config.requestors["admin"].headers["X-Ops-UserId"] == "pivotal"

    def test_missing_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CONFORMANCE_UNSET_VAR", raising=False)
        path = write(tmp_path, "config.yaml", """\
            base_url: ${CONFORMANCE_UNSET_VAR}
            requestors: {}
        """)

        with pytest.raises(ConfigError, match="CONFORMANCE_UNSET_VAR"):
            load_runtime_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_runtime_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = write(tmp_path, "config.yaml", "base_url: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_runtime_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = write(tmp_path, "config.yaml", "- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_runtime_config(path)

    def test_invalid_structure(self, tmp_path):
        path = write(tmp_path, "config.yaml", """\
            base_url: http://localhost
            implementation: erlang
            requestors: {}
        """)
        with pytest.raises(ConfigError, match="Invalid config structure"):
            load_runtime_config(path)

    def test_unquoted_header_values(self, tmp_path):
        path = write(tmp_path, "config.yaml", """\
            base_url: http://localhost
            headers:
              X-Chef-Version: 12
            requestors:
              admin:
                headers:
                  X-Ops-UserId: pivotal
                  X-Ops-Server-API-Version: 1
        """)

        config = load_runtime_config(path)

        assert config.headers == {"X-Chef-Version": "12"}
        assert config.requestors["admin"].headers["X-Ops-Server-API-Version"] == "1"

    def test_unknown_key_rejected(self, tmp_path):
        path = write(tmp_path, "config.yaml", """\
            base_url: http://localhost
            requestors: {}
            retries: 3
        """)
        with pytest.raises(ConfigError):
            load_runtime_config(path)


class TestScenarioTags:
    def test_regex_scalar(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: create
                request: {method: POST, path: /clients}
                requestors: [admin]
                expect:
                  body_exact:
                    uri: !regex "^https?://"
        """)

        uri = load_scenario_file(path).scenarios[0].expect.body_exact["uri"]

        assert isinstance(uri, re.Pattern)
        assert uri.pattern == "^https?://"
        assert uri.flags & re.IGNORECASE == 0

    def test_regex_with_flags(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: create
                request: {method: POST, path: /clients}
                requestors: [admin]
                expect:
                  body:
                    key: !regex {pattern: "^-----begin", flags: im}
        """)

        key = load_scenario_file(path).scenarios[0].expect.body["key"]

        assert key.flags & re.IGNORECASE
        assert key.flags & re.MULTILINE

    def test_unknown_regex_flag(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: create
                request: {method: POST, path: /clients}
                requestors: [admin]
                expect:
                  body:
                    key: !regex {pattern: "a", flags: q}
        """)
        with pytest.raises(ConfigError, match="unknown !regex flag 'q'"):
            load_scenario_file(path)

    def test_invalid_regex(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: create
                request: {method: POST, path: /clients}
                requestors: [admin]
                expect:
                  body:
                    key: !regex "(unclosed"
        """)
        with pytest.raises(ConfigError, match="invalid !regex"):
            load_scenario_file(path)

    def test_set_status(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: delete
                request: {method: DELETE, path: /clients/x}
                requestors: [admin]
                expect:
                  status: !set [200, 204]
        """)

        assert load_scenario_file(path).scenarios[0].expect.status == frozenset({200, 204})

    def test_set_needs_sequence(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: delete
                request: {method: DELETE, path: /clients/x}
                requestors: [admin]
                expect:
                  status: !set 200
        """)
        with pytest.raises(ConfigError, match="!set needs a sequence"):
            load_scenario_file(path)

    def test_set_rejected_in_body(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: list users
                request: {method: GET, path: /users}
                requestors: [admin]
                expect:
                  body:
                    users: !set [alice, bob]
        """)
        with pytest.raises(ConfigError, match="sets are only allowed for status"):
            load_scenario_file(path)

    def test_runtime_config_does_not_accept_tags(self, tmp_path):
        path = write(tmp_path, "config.yaml", """\
            base_url: !regex "x"
            requestors: {}
        """)
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_runtime_config(path)


class TestLoadScenarios:
    def test_full_scenario(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            description: Clients
            scenarios:
              - name: create without name
                request:
                  method: post
                  path: /clients
                  payload: {}
                  headers:
                    X-Custom: "1"
                requestors: [admin, normal]
                expect:
                  status: 400
                  body_exact:
                    error: ["Field 'name' missing"]
                expect_by_requestor:
                  normal:
                    status: 403
                expect_by_implementation:
                  legacy:
                    status: 400
                pending_on: [rewrite]
        """)

        scenario_file = load_scenario_file(path)
        scenario = scenario_file.scenarios[0]

        assert scenario_file.description == "Clients"
        assert scenario.request.method == "POST"
        assert scenario.request.payload == {}
        assert scenario.request.headers == {"X-Custom": "1"}
        assert scenario.expect_by_requestor["normal"].status == 403
        assert ServerImplementation.LEGACY in scenario.expect_by_implementation
        assert scenario.pending_on == [ServerImplementation.REWRITE]

    def test_requestor_override_per_implementation(self, tmp_path):
        path = write(tmp_path, "s.yaml", """\
            scenarios:
              - name: create cookbook
                request:
                  method: PUT
                  path: /cookbooks/x/1.0.0
                  headers:
                    Content-Length: 0
                requestors: [admin, normal]
                expect:
                  status: 201
                expect_by_requestor:
                  normal:
                    status: 403
                    by_implementation:
                      legacy:
                        status: 404
                expect_by_implementation:
                  legacy:
                    status: 200
        """)

        scenario = load_scenario_file(path).scenarios[0]

        assert scenario.request.headers == {"Content-Length": "0"}
        assert scenario.expectation_for("admin", ServerImplementation.LEGACY).status == 200
        assert scenario.expectation_for("admin", ServerImplementation.REWRITE).status == 201
        assert scenario.expectation_for("normal", ServerImplementation.LEGACY).status == 404
        assert scenario.expectation_for("normal", ServerImplementation.REWRITE).status == 403

    def test_order_preserved_across_files(self, tmp_path):
        first = write(tmp_path, "a.yaml", """\
            scenarios:
              - {name: one, request: {method: GET, path: /a}, requestors: [x], expect: {}}
              - {name: two, request: {method: GET, path: /b}, requestors: [x], expect: {}}
        """)
        second = write(tmp_path, "b.yaml", """\
            scenarios:
              - {name: three, request: {method: GET, path: /c}, requestors: [x], expect: {}}
        """)

        scenarios = load_scenarios([first, second])

        assert [s.name for s in scenarios] == ["one", "two", "three"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Scenario file not found"):
            load_scenarios([tmp_path / "missing.yaml"])

    def test_invalid_structure_names_file(self, tmp_path):
        path = write(tmp_path, "bad.yaml", """\
            scenarios:
              - name: no request
                requestors: [admin]
                expect: {}
        """)
        with pytest.raises(ConfigError, match="bad.yaml"):
            load_scenario_file(path)

    def test_empty_file(self, tmp_path):
        path = write(tmp_path, "empty.yaml", "")
        with pytest.raises(ConfigError, match="must be a YAML mapping"):
            load_scenario_file(path)


def make_config(*requestors):
    return RuntimeConfig.model_validate({
        "base_url": "http://localhost",
        "requestors": {name: {"headers": {}} for name in requestors},
    })


def make_scenario(name="s", requestors=("admin",), **extra):
    return Scenario.model_validate({
        "name": name,
        "request": {"method": "GET", "path": "/clients"},
        "requestors": list(requestors),
        "expect": {"status": 200},
        **extra,
    })


class TestValidateScenarios:
    def test_valid(self):
        result = validate_scenarios([make_scenario()], make_config("admin"))
        assert result.is_valid
        assert result.warnings == []

    def test_unknown_requestor(self):
        result = validate_scenarios(
            [make_scenario(requestors=["admin", "ghost"])], make_config("admin", "normal")
        )
        assert not result.is_valid
        assert "Unknown requestor 'ghost'" in str(result.errors[0])
        assert "Available: admin, normal" in str(result.errors[0])

    def test_duplicate_names_warn(self):
        result = validate_scenarios(
            [make_scenario("same"), make_scenario("same")], make_config("admin")
        )
        assert result.is_valid
        assert "used more than once" in str(result.warnings[0])

    def test_unused_requestor_override_warns(self):
        scenario = make_scenario(expect_by_requestor={"normal": {"status": 403}})
        result = validate_scenarios([scenario], make_config("admin", "normal"))
        assert result.is_valid
        assert "never used" in str(result.warnings[0])


class TestValidateRequestorFilter:
    def test_known(self):
        assert validate_requestor_filter(["admin"], make_config("admin")).is_valid

    def test_unknown(self):
        result = validate_requestor_filter(["root"], make_config("admin"))
        assert not result.is_valid
        assert "--requestor 'root' not found" in str(result.errors[0])

    def test_merge(self):
        result = validate_scenarios([make_scenario(requestors=["ghost"])], make_config("admin"))
        result.merge(validate_requestor_filter(["root"], make_config("admin")))
        assert len(result.errors) == 2
