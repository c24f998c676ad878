"""Load, merge and validate the chatops configuration.

The configuration may come from a YAML file, an inline YAML/JSON string, or
both; inline top-level keys win. Validation runs once, before any event is
handled: first the JSON schema, then the semantic rules the schema cannot
express. Any violation raises ``ConfigError``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from automation.chatops.errors import ConfigError

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schemas" / "chatops.schema.json"

REF_FILTER_EVENTS = ("push", "pull_request")

logger = logging.getLogger("chatops-dispatcher.config")


@dataclass(frozen=True)
class ActionTemplates:
    label: str | None = None
    unlabel: str | None = None
    assignee: str | None = None
    unassignee: str | None = None
    request_reviewer: str | None = None
    unrequest_reviewer: str | None = None
    prefix_issue_title: str | None = None
    suffix_issue_title: str | None = None
    remove_issue_title: str | None = None
    replace_issue_title: str | None = None
    prefix_issue_body: str | None = None
    suffix_issue_body: str | None = None
    remove_issue_body: str | None = None
    replace_issue_body: str | None = None
    workflow_name: str | None = None

    def title_edits(self) -> list[tuple[str, str]]:
        return self._edits("title")

    def body_edits(self) -> list[tuple[str, str]]:
        return self._edits("body")

    def _edits(self, target: str) -> list[tuple[str, str]]:
        edits = []
        for mode in ("prefix", "suffix", "remove", "replace"):
            template = getattr(self, f"{mode}_issue_{target}")
            if template is not None:
                edits.append((mode, template))
        return edits


@dataclass(frozen=True)
class CommandDefinition:
    name: str
    help: str
    enabled: bool = True
    usage: str = ""
    args: int = 0
    issue_type: str = "issue"
    permission: str = "read"
    templates: ActionTemplates = field(default_factory=ActionTemplates)

    def visible_for(self, is_pull_request: bool) -> bool:
        if self.issue_type == "both":
            return True
        if self.issue_type == "pull_request":
            return is_pull_request
        return not is_pull_request


@dataclass(frozen=True)
class LabelRule:
    name: str
    if_include: tuple[str, ...] = ()
    if_not_include: tuple[str, ...] = ()


@dataclass(frozen=True)
class StatusRule:
    context: str
    state: str
    description: str = ""
    target_url: str | None = None
    if_include: tuple[str, ...] = ()
    if_not_include: tuple[str, ...] = ()


@dataclass(frozen=True)
class RouteConfig:
    event: str
    handlers: tuple[str, ...]
    types: tuple[str, ...] | None = None
    branches: tuple[str, ...] | None = None
    branch_ignores: tuple[str, ...] | None = None
    tags: tuple[str, ...] | None = None
    tag_ignores: tuple[str, ...] | None = None
    paths: tuple[str, ...] | None = None
    path_ignores: tuple[str, ...] | None = None

    def has_ref_filters(self) -> bool:
        return any(
            value is not None
            for value in (
                self.branches,
                self.branch_ignores,
                self.tags,
                self.tag_ignores,
                self.paths,
                self.path_ignores,
            )
        )


@dataclass(frozen=True)
class WorkflowPoll:
    interval: float = 2.0
    timeout: float = 60.0


DEFAULT_ROUTES: tuple[RouteConfig, ...] = (
    RouteConfig(event="workflow_run", types=("completed",), handlers=("report-workflow-run",)),
    RouteConfig(
        event="pull_request",
        types=("opened", "synchronize", "reopened"),
        handlers=("auto-label", "auto-status"),
    ),
)


@dataclass(frozen=True)
class ChatOpsConfig:
    use_reaction: bool = True
    commands: tuple[CommandDefinition, ...] = ()
    labels: tuple[LabelRule, ...] = ()
    statuses: tuple[StatusRule, ...] = ()
    routes: tuple[RouteConfig, ...] = DEFAULT_ROUTES
    workflow_poll: WorkflowPoll = field(default_factory=WorkflowPoll)


def _load_schema() -> dict[str, Any]:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def _parse_document(text: str, source: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"{source} is not valid YAML/JSON: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{source} must be a mapping at the top level")
    return data


def merge_sources(path: Path | None = None, inline: str | None = None) -> dict[str, Any]:
    """Merge the file document and the inline document, inline keys winning."""
    merged: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"config file missing: {path}")
        merged.update(_parse_document(path.read_text(encoding="utf-8"), str(path)))
    if inline:
        merged.update(_parse_document(inline, "inline config"))
    return merged


def _validate_schema(raw: dict[str, Any]) -> None:
    validator = Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(raw), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        path = "/".join(str(p) for p in first.absolute_path) or "<root>"
        raise ConfigError(f"schema error at {path}: {first.message}")


def _globs(value: list[str] | None) -> tuple[str, ...] | None:
    return None if value is None else tuple(value)


def _build_command(raw: dict[str, Any]) -> CommandDefinition:
    template_names = {f.name for f in fields(ActionTemplates)}
    # an empty template is the same as an unset one
    templates = ActionTemplates(
        **{name: raw.get(f"{name}_format") or None for name in template_names}
    )
    return CommandDefinition(
        enabled=raw.get("enable", True),
        name=raw.get("name", ""),
        usage=raw.get("usage", ""),
        help=raw.get("help", ""),
        args=raw.get("args", 0),
        issue_type=raw.get("issue_type", "issue"),
        permission=raw.get("permission", "read"),
        templates=templates,
    )


def _check_command(cmd: CommandDefinition, index: int) -> None:
    where = f"commands[{index}]"
    if not cmd.name.strip():
        raise ConfigError(f"{where}: command name is empty")
    where = f"command '{cmd.name}'"
    if not cmd.help.strip():
        raise ConfigError(f"{where}: help message is empty")
    if cmd.issue_type == "issue":
        for attr in ("workflow_name", "request_reviewer", "unrequest_reviewer"):
            if getattr(cmd.templates, attr) is not None:
                raise ConfigError(f"{where}: enabled on issues but has a {attr}_format")
    if len(cmd.templates.title_edits()) > 1:
        raise ConfigError(f"{where}: configured more than 1 issue title update")
    if len(cmd.templates.body_edits()) > 1:
        raise ConfigError(f"{where}: configured more than 1 issue body update")


def _build_route(raw: dict[str, Any]) -> RouteConfig:
    types = raw.get("types")
    return RouteConfig(
        event=raw["event"],
        handlers=tuple(raw["handlers"]),
        types=None if types is None else tuple(types),
        branches=_globs(raw.get("branches")),
        branch_ignores=_globs(raw.get("branch_ignores")),
        tags=_globs(raw.get("tags")),
        tag_ignores=_globs(raw.get("tag_ignores")),
        paths=_globs(raw.get("paths")),
        path_ignores=_globs(raw.get("path_ignores")),
    )


def check_route(route: RouteConfig) -> None:
    axes = (
        ("branch", route.branches, route.branch_ignores),
        ("tag", route.tags, route.tag_ignores),
        ("path", route.paths, route.path_ignores),
    )
    for axis, patterns, ignores in axes:
        if patterns is not None and ignores is not None:
            raise ConfigError(f"route '{route.event}': cannot set {axis} match and {axis} ignore patterns together")
    if route.event not in REF_FILTER_EVENTS and route.has_ref_filters():
        raise ConfigError(
            f"route '{route.event}': branch/tag/path matches are only for \"push\" and \"pull_request\" events"
        )


def build_config(raw: dict[str, Any]) -> ChatOpsConfig:
    """Validate a merged raw document and return the canonical configuration."""
    _validate_schema(raw)

    commands = tuple(_build_command(c) for c in raw.get("commands", []))
    for index, cmd in enumerate(commands):
        _check_command(cmd, index)

    routes = DEFAULT_ROUTES
    if "routes" in raw:
        routes = tuple(_build_route(r) for r in raw["routes"])
    for route in routes:
        check_route(route)

    poll = raw.get("workflow_poll", {})
    labels = tuple(
        LabelRule(
            name=item["name"],
            if_include=tuple(item.get("if_include", [])),
            if_not_include=tuple(item.get("if_not_include", [])),
        )
        for item in raw.get("labels", [])
    )
    statuses = tuple(
        StatusRule(
            context=item["context"],
            state=item["state"],
            description=item.get("description", ""),
            target_url=item.get("target_url"),
            if_include=tuple(item.get("if_include", [])),
            if_not_include=tuple(item.get("if_not_include", [])),
        )
        for item in raw.get("statuses", [])
    )
    config = ChatOpsConfig(
        use_reaction=raw.get("use_reaction", True),
        commands=commands,
        labels=labels,
        statuses=statuses,
        routes=routes,
        workflow_poll=WorkflowPoll(
            interval=float(poll.get("interval", WorkflowPoll.interval)),
            timeout=float(poll.get("timeout", WorkflowPoll.timeout)),
        ),
    )
    logger.debug("config commands=%s routes=%s", len(config.commands), len(config.routes))
    return config


def load_config(path: Path | None = None, inline: str | None = None) -> ChatOpsConfig:
    return build_config(merge_sources(path, inline))

