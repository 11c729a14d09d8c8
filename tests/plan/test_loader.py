"""
Tests for the pipeline definition loader.

Covers YAML/JSON adapters, field validation and cross-stage checks.
"""

import json

import pytest

from deployer.plan.application.loader import build_plan, load_plan, load_plan_text
from deployer.plan.domain.enums import CommandKind, FailurePolicy, TransportKind
from deployer.shared.domain.exceptions import PlanLoadError

PRODUCTION_YAML = """
name: production
vars:
  app_dir: /srv/app
source:
  repo: https://example.com/app.git
  ref: release
targets:
  web-1:
    host: 203.0.113.10
    user: deploy
    transport: ssh
    credential: deploy_key
    tags: [web]
  web-2:
    host: 203.0.113.11
    user: deploy
    port: 2222
    transport: ssh
    tags: [web]
stages:
  - name: copy
    targets: [web]
    commands:
      - transfer: {src: "${source_dir}/", dest: "${app_dir}"}
  - name: build
    policy: rollback-to-previous
    commands:
      - docker compose build ${no_cache}
    rollback:
      - run: docker compose up -d
  - name: prune
    cleanup: true
    needs: [copy]
    timeout: 30
    commands: docker system prune -f
"""


class TestLoadValidPlans:
    """Well-formed definitions produce the expected Plan."""

    def test_yaml_plan(self):
        plan = load_plan_text(PRODUCTION_YAML)

        assert plan.name == "production"
        assert plan.stage_names == ("copy", "build", "prune")
        assert plan.variables["app_dir"] == "/srv/app"
        assert plan.source.repo == "https://example.com/app.git"
        assert plan.source.ref == "release"

        web1 = plan.target("web-1")
        assert web1.transport is TransportKind.SSH
        assert web1.credential == "deploy_key"
        assert web1.address == "deploy@203.0.113.10"
        assert plan.target("web-2").port == 2222

    def test_stage_fields(self):
        plan = load_plan_text(PRODUCTION_YAML)
        copy, build, prune = plan.stages

        assert copy.commands[0].kind is CommandKind.TRANSFER
        assert copy.commands[0].destination == "${app_dir}"
        assert copy.policy is FailurePolicy.ABORT
        assert build.policy is FailurePolicy.ROLLBACK
        assert build.rollback[0].text == "docker compose up -d"
        assert prune.cleanup is True
        assert prune.needs == ("copy",)
        assert prune.timeout == 30.0
        assert prune.commands[0].text == "docker system prune -f"

    def test_json_adapter_matches_yaml(self, tmp_path):
        data = {
            "name": "json-plan",
            "stages": [{"name": "hello", "commands": ["echo hi"]}],
        }
        path = tmp_path / "plan.json"
        path.write_text(json.dumps(data))

        plan = load_plan(path)

        assert plan.name == "json-plan"
        assert plan.stages[0].commands[0].text == "echo hi"

    def test_default_local_target(self):
        plan = build_plan({"stages": [{"name": "only", "commands": ["true"]}]})

        assert [t.name for t in plan.targets] == ["local"]
        assert plan.targets[0].transport is TransportKind.LOCAL

    def test_name_defaults_to_file_stem(self, tmp_path):
        path = tmp_path / "staging.yml"
        path.write_text("stages:\n  - name: a\n    commands: [echo]\n")

        assert load_plan(path).name == "staging"

    def test_rollback_alias(self):
        plan = build_plan({"stages": [{"name": "a", "policy": "rollback", "commands": ["x"]}]})

        assert plan.stages[0].policy is FailurePolicy.ROLLBACK

    def test_plan_is_immutable(self):
        plan = load_plan_text(PRODUCTION_YAML)

        with pytest.raises(Exception):
            plan.stages[0].name = "changed"
        with pytest.raises(TypeError):
            plan.variables["app_dir"] = "/tmp"

    def test_selector_by_tag(self):
        plan = load_plan_text(PRODUCTION_YAML)

        assert [t.name for t in plan.targets_for(plan.stages[0])] == ["web-1", "web-2"]


class TestRejectMalformedPlans:
    """Malformed definitions raise PlanLoadError naming the location."""

    def test_duplicate_stage_name(self):
        with pytest.raises(PlanLoadError, match="duplicate stage name 'build'") as exc:
            build_plan({
                "stages": [
                    {"name": "build", "commands": ["a"]},
                    {"name": "build", "commands": ["b"]},
                ]
            })
        assert exc.value.location == "stages[1]"

    def test_duplicate_target_name(self):
        with pytest.raises(PlanLoadError, match="duplicate target name"):
            build_plan({
                "targets": [{"name": "a"}, {"name": "a"}],
                "stages": [{"name": "s", "commands": ["x"]}],
            })

    def test_dependency_cycle(self):
        with pytest.raises(PlanLoadError, match="cycle"):
            build_plan({
                "stages": [
                    {"name": "a", "needs": ["b"], "commands": ["x"]},
                    {"name": "b", "needs": ["a"], "commands": ["x"]},
                ]
            })

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(PlanLoadError, match="cycle"):
            build_plan({"stages": [{"name": "a", "needs": "a", "commands": ["x"]}]})

    def test_forward_dependency(self):
        with pytest.raises(PlanLoadError, match="declared later"):
            build_plan({
                "stages": [
                    {"name": "a", "needs": ["b"], "commands": ["x"]},
                    {"name": "b", "commands": ["x"]},
                ]
            })

    def test_unknown_dependency(self):
        with pytest.raises(PlanLoadError, match="unknown stage 'ghost'"):
            build_plan({"stages": [{"name": "a", "needs": ["ghost"], "commands": ["x"]}]})

    def test_unknown_policy(self):
        with pytest.raises(PlanLoadError) as exc:
            build_plan({"stages": [{"name": "a", "policy": "retry", "commands": ["x"]}]})
        assert exc.value.location == "stages[0](a).policy"

    def test_unknown_transport(self):
        with pytest.raises(PlanLoadError, match="unknown transport"):
            build_plan({"targets": {"a": {"transport": "telnet"}}, "stages": [{"name": "s", "commands": ["x"]}]})

    def test_ssh_target_requires_host(self):
        with pytest.raises(PlanLoadError, match="require a host"):
            build_plan({"targets": {"a": {"transport": "ssh"}}, "stages": [{"name": "s", "commands": ["x"]}]})

    def test_whitespace_in_stage_name(self):
        with pytest.raises(PlanLoadError, match="must not contain whitespace") as exc:
            build_plan({"stages": [{"name": "build image", "commands": ["x"]}]})
        assert exc.value.location == "stages[0].name"

    def test_whitespace_in_target_name(self):
        with pytest.raises(PlanLoadError, match="must not contain whitespace"):
            build_plan({"targets": {"web 1": {}}, "stages": [{"name": "s", "commands": ["x"]}]})

    def test_surrounding_whitespace_is_trimmed(self):
        plan = build_plan({"targets": [{"name": " web-1 "}], "stages": [{"name": " build ", "commands": ["x"]}]})

        assert plan.stage_names == ("build",)
        assert plan.targets[0].name == "web-1"

    @pytest.mark.parametrize("name", ["host", "target", "source_dir", "no_cache"])
    def test_reserved_variable_names(self, name):
        with pytest.raises(PlanLoadError, match="reserved variable name") as exc:
            build_plan({"vars": {name: "x"}, "stages": [{"name": "s", "commands": ["x"]}]})
        assert exc.value.location == f"vars.{name}"

    def test_stage_without_commands(self):
        with pytest.raises(PlanLoadError, match="non-empty list of commands"):
            build_plan({"stages": [{"name": "empty", "commands": []}]})

    def test_malformed_transfer(self):
        with pytest.raises(PlanLoadError, match="transfer requires"):
            build_plan({"stages": [{"name": "copy", "commands": [{"transfer": {"src": "a"}}]}]})

    def test_selector_matching_nothing(self):
        with pytest.raises(PlanLoadError, match="matches no target"):
            build_plan({"stages": [{"name": "s", "targets": ["db"], "commands": ["x"]}]})

    def test_empty_stages(self):
        with pytest.raises(PlanLoadError, match="stages"):
            build_plan({"stages": []})

    def test_invalid_yaml(self):
        with pytest.raises(PlanLoadError, match="Invalid YAML"):
            load_plan_text("stages: [unclosed")

    def test_non_mapping_document(self):
        with pytest.raises(PlanLoadError, match="must be a mapping"):
            load_plan_text("- just\n- a list\n")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "plan.toml"
        path.write_text("")
        with pytest.raises(PlanLoadError, match="Unsupported"):
            load_plan(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(PlanLoadError, match="Cannot read"):
            load_plan(tmp_path / "absent.yaml")
