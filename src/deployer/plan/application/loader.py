"""
Pipeline definition loader.

Turns a declarative deployment definition into a validated, immutable Plan.

The core works on plain mappings; each text format gets a thin adapter:
- YAML (.yaml, .yml)
- JSON (.json)

Example definition:

    name: production
    vars:
      app_dir: /srv/app
    source:
      repo: https://example.com/app.git
      ref: main
    targets:
      web-1: {host: 203.0.113.10, user: deploy, transport: ssh, credential: deploy_key, tags: [web]}
    stages:
      - name: copy
        commands:
          - transfer: {src: "${source_dir}/", dest: "${app_dir}"}
      - name: build
        policy: rollback-to-previous
        commands: ["docker compose build ${no_cache}"]
        rollback: ["docker compose up -d"]
      - name: prune
        cleanup: true
        commands: ["docker system prune -f"]

Loading has no side effects beyond reading the file.
"""

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional

import yaml

from deployer.plan.domain.enums import FailurePolicy, TransportKind
from deployer.plan.domain.models import (
    ALL_TARGETS,
    Command,
    Plan,
    SourceSpec,
    Stage,
    Target,
)
from deployer.shared.domain.exceptions import PlanLoadError
from deployer.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TARGET = Target(name="local", transport=TransportKind.LOCAL)

# Set per target and per run; a plan variable may not redefine them.
RESERVED_VARIABLES = frozenset({"target", "host", "source_dir", "no_cache"})


def _parse_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PlanLoadError(f"Invalid YAML: {e}")


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise PlanLoadError(f"Invalid JSON: {e}")


FORMAT_ADAPTERS: Dict[str, Callable[[str], Any]] = {
    "yaml": _parse_yaml,
    "yml": _parse_yaml,
    "json": _parse_json,
}


def load_plan(path: Path | str) -> Plan:
    """
    Load a plan from a file, picking the format adapter by extension.

    Raises:
        PlanLoadError: If the file is unreadable or the definition is malformed
    """
    path = Path(path)
    fmt = path.suffix.lstrip(".").lower() or "yaml"
    if fmt not in FORMAT_ADAPTERS:
        raise PlanLoadError(f"Unsupported plan format '.{fmt}'", location=str(path))
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanLoadError(f"Cannot read plan file: {e}", location=str(path))

    plan = load_plan_text(text, fmt=fmt, default_name=path.stem)
    logger.info("plan_loaded", path=str(path), plan=plan.name, stages=len(plan.stages), targets=len(plan.targets))
    return plan


def load_plan_text(text: str, fmt: str = "yaml", default_name: str = "deployment") -> Plan:
    """Parse ``text`` in the given format and build a Plan from it."""
    try:
        adapter = FORMAT_ADAPTERS[fmt]
    except KeyError:
        raise PlanLoadError(f"Unsupported plan format '{fmt}'")
    return build_plan(adapter(text), default_name=default_name)


def build_plan(data: Any, default_name: str = "deployment") -> Plan:
    """
    Validate a parsed definition and build a Plan.

    Raises:
        PlanLoadError: Naming the offending stage or field
    """
    if not isinstance(data, dict):
        raise PlanLoadError("Plan definition must be a mapping")

    name = data.get("name", default_name)
    if not isinstance(name, str) or not name.strip():
        raise PlanLoadError("must be a non-empty string", location="name")

    variables = _parse_variables(data.get("vars"))
    source = _parse_source(data.get("source"))
    targets = _parse_targets(data.get("targets"))
    stages = _parse_stages(data.get("stages"))

    _check_selectors(stages, targets)
    _check_dependencies(stages)

    return Plan(
        name=name.strip(),
        stages=tuple(stages),
        targets=tuple(targets),
        variables=MappingProxyType(variables),
        source=source,
    )


# =============================================================================
# Section parsers
# =============================================================================


def _parse_variables(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise PlanLoadError("must be a mapping", location="vars")
    variables = {}
    for key, value in raw.items():
        if str(key) in RESERVED_VARIABLES:
            raise PlanLoadError(f"'{key}' is a reserved variable name", location=f"vars.{key}")
        if isinstance(value, (dict, list)):
            raise PlanLoadError("must be a scalar", location=f"vars.{key}")
        variables[str(key)] = "" if value is None else str(value)
    return variables


def _parse_source(raw: Any) -> Optional[SourceSpec]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return SourceSpec(path=raw)
    if not isinstance(raw, dict):
        raise PlanLoadError("must be a mapping or a path", location="source")
    repo, path = raw.get("repo"), raw.get("path")
    if bool(repo) == bool(path):
        raise PlanLoadError("exactly one of 'repo' or 'path' is required", location="source")
    return SourceSpec(repo=repo, ref=str(raw.get("ref", "main")), path=path)


def _parse_targets(raw: Any) -> List[Target]:
    if raw is None:
        return [DEFAULT_TARGET]

    if isinstance(raw, dict):
        entries = []
        for key, spec in raw.items():
            spec = {} if spec is None else spec
            if not isinstance(spec, dict):
                raise PlanLoadError("must be a mapping", location=f"targets.{key}")
            entries.append((f"targets.{key}", {"name": key, **spec}))
    elif isinstance(raw, list):
        entries = [(f"targets[{i}]", spec) for i, spec in enumerate(raw)]
    else:
        raise PlanLoadError("must be a mapping or a list", location="targets")

    if not entries:
        raise PlanLoadError("at least one target is required", location="targets")

    targets: List[Target] = []
    seen = set()
    for location, spec in entries:
        target = _parse_target(spec, location)
        if target.name in seen:
            raise PlanLoadError(f"duplicate target name '{target.name}'", location=location)
        seen.add(target.name)
        targets.append(target)
    return targets


def _parse_target(spec: Any, location: str) -> Target:
    if not isinstance(spec, dict):
        raise PlanLoadError("must be a mapping", location=location)

    name = spec.get("name")
    if not isinstance(name, str) or not name.strip():
        raise PlanLoadError("must be a non-empty string", location=f"{location}.name")
    _check_name(name, f"{location}.name")

    try:
        transport = TransportKind(str(spec.get("transport", "local")).lower())
    except ValueError:
        choices = ", ".join(k.value for k in TransportKind)
        raise PlanLoadError(
            f"unknown transport '{spec.get('transport')}' (expected one of: {choices})",
            location=f"{location}.transport",
        )

    host = spec.get("host", "localhost")
    if transport is TransportKind.SSH and not spec.get("host"):
        raise PlanLoadError("ssh targets require a host", location=f"{location}.host")

    port = spec.get("port", 22)
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise PlanLoadError("must be an integer between 1 and 65535", location=f"{location}.port")

    tags = spec.get("tags", [])
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise PlanLoadError("must be a list of strings", location=f"{location}.tags")

    credential = spec.get("credential")
    if credential is not None and not isinstance(credential, str):
        raise PlanLoadError("must be a secret name", location=f"{location}.credential")

    return Target(
        name=name.strip(),
        host=str(host),
        user=spec.get("user"),
        port=port,
        transport=transport,
        credential=credential,
        tags=tuple(tags),
    )


def _parse_stages(raw: Any) -> List[Stage]:
    if not isinstance(raw, list) or not raw:
        raise PlanLoadError("must be a non-empty list", location="stages")

    stages: List[Stage] = []
    seen = set()
    for index, spec in enumerate(raw):
        location = f"stages[{index}]"
        stage = _parse_stage(spec, location)
        if stage.name in seen:
            raise PlanLoadError(f"duplicate stage name '{stage.name}'", location=location)
        seen.add(stage.name)
        stages.append(stage)
    return stages


def _parse_stage(spec: Any, location: str) -> Stage:
    if not isinstance(spec, dict):
        raise PlanLoadError("must be a mapping", location=location)

    name = spec.get("name")
    if not isinstance(name, str) or not name.strip():
        raise PlanLoadError("must be a non-empty string", location=f"{location}.name")
    _check_name(name, f"{location}.name")
    location = f"{location}({name})"

    commands = _parse_commands(spec.get("commands"), f"{location}.commands", required=True)
    rollback = _parse_commands(spec.get("rollback"), f"{location}.rollback", required=False)

    try:
        policy = FailurePolicy.parse(str(spec.get("policy", FailurePolicy.ABORT.value)))
    except ValueError:
        choices = ", ".join(p.value for p in FailurePolicy)
        raise PlanLoadError(
            f"unknown failure policy '{spec.get('policy')}' (expected one of: {choices})",
            location=f"{location}.policy",
        )
    if rollback and policy is not FailurePolicy.ROLLBACK:
        logger.warning("rollback_commands_unused", stage=name, policy=policy.value)

    cleanup = spec.get("cleanup", False)
    if not isinstance(cleanup, bool):
        raise PlanLoadError("must be true or false", location=f"{location}.cleanup")

    timeout = spec.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise PlanLoadError("must be a positive number of seconds", location=f"{location}.timeout")

    return Stage(
        name=name.strip(),
        commands=commands,
        selector=_string_list(spec.get("targets"), f"{location}.targets"),
        policy=policy,
        rollback=rollback,
        cleanup=cleanup,
        needs=_string_list(spec.get("needs"), f"{location}.needs"),
        timeout=float(timeout) if timeout is not None else None,
    )


def _parse_commands(raw: Any, location: str, required: bool) -> tuple:
    if raw is None and not required:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or (required and not raw):
        raise PlanLoadError("must be a non-empty list of commands", location=location)
    return tuple(_parse_command(item, f"{location}[{i}]") for i, item in enumerate(raw))


def _parse_command(raw: Any, location: str) -> Command:
    if isinstance(raw, str) and raw.strip():
        return Command.run(raw.strip())
    if isinstance(raw, dict) and len(raw) == 1:
        if "run" in raw and isinstance(raw["run"], str) and raw["run"].strip():
            return Command.run(raw["run"].strip())
        if "transfer" in raw and isinstance(raw["transfer"], dict):
            spec = raw["transfer"]
            src, dest = spec.get("src"), spec.get("dest")
            if isinstance(src, str) and src and isinstance(dest, str) and dest:
                return Command.transfer(src, dest)
            raise PlanLoadError("transfer requires 'src' and 'dest'", location=location)
    raise PlanLoadError("expected a command string, {run: ...} or {transfer: {src, dest}}", location=location)


def _string_list(raw: Any, location: str) -> tuple:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return tuple(raw)
    raise PlanLoadError("must be a string or a list of strings", location=location)


# =============================================================================
# Cross-stage validation
# =============================================================================


def _check_selectors(stages: List[Stage], targets: List[Target]) -> None:
    for index, stage in enumerate(stages):
        if ALL_TARGETS in stage.selector:
            continue
        for item in stage.selector:
            if not any(t.name == item or item in t.tags for t in targets):
                raise PlanLoadError(
                    f"selector '{item}' matches no target or tag",
                    location=f"stages[{index}]({stage.name}).targets",
                )


def _check_dependencies(stages: List[Stage]) -> None:
    """Reject unknown, cyclic and forward ``needs`` references."""
    position = {stage.name: i for i, stage in enumerate(stages)}

    for index, stage in enumerate(stages):
        for dep in stage.needs:
            if dep not in position:
                raise PlanLoadError(f"needs unknown stage '{dep}'", location=f"stages[{index}]({stage.name}).needs")

    graph = {stage.name: stage.needs for stage in stages}
    cycle = _find_cycle(graph)
    if cycle:
        raise PlanLoadError(f"dependency cycle: {' -> '.join(cycle)}", location="stages")

    for index, stage in enumerate(stages):
        for dep in stage.needs:
            if position[dep] >= index:
                raise PlanLoadError(
                    f"needs stage '{dep}' which is declared later",
                    location=f"stages[{index}]({stage.name}).needs",
                )


def _find_cycle(graph: Dict[str, tuple]) -> Optional[List[str]]:
    visiting: List[str] = []
    done = set()

    def visit(node: str) -> Optional[List[str]]:
        if node in done:
            return None
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        visiting.append(node)
        for dep in graph.get(node, ()):
            found = visit(dep)
            if found:
                return found
        visiting.pop()
        done.add(node)
        return None

    for node in graph:
        found = visit(node)
        if found:
            return found
    return None


def _check_name(name: str, location: str) -> None:
    # target and stage names are single fields of a deploy log line
    if any(ch.isspace() for ch in name.strip()):
        raise PlanLoadError(f"'{name.strip()}' must not contain whitespace", location=location)
