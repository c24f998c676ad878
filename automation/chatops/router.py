"""Declarative routing of lifecycle events to handlers.

A route fires when the event name and action type match and, for push and
pull_request events, the branch, tag and changed-path axes all match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

from automation.chatops.config import REF_FILTER_EVENTS, RouteConfig, check_route
from automation.chatops.context import EventContext
from automation.chatops.errors import ConfigError, UnresolvableRef
from automation.chatops.matching import MatchResult, match_axis

logger = logging.getLogger("chatops-dispatcher.router")

Handler = Callable[[EventContext, "RouteMatch"], Awaitable[None]]


@dataclass(frozen=True)
class HandlerEntry:
    name: str
    handler: Handler
    needs_files: bool = False


@dataclass(frozen=True)
class RouterEntry:
    route: RouteConfig
    handler_entries: tuple[HandlerEntry, ...]


@dataclass(frozen=True)
class RouteMatch:
    handler_entry: HandlerEntry
    event_name: str
    action: str | None
    branch: str | None = None
    tag: str | None = None
    # paths: survivors of the route's path filter; changed_files: everything
    paths: tuple[str, ...] | None = None
    changed_files: tuple[str, ...] | None = None


@dataclass(frozen=True)
class EventRef:
    branch: str | None
    tag: str | None
    sha: str | None


def resolve_ref(event_name: str, payload: dict[str, Any]) -> EventRef:
    if event_name == "push":
        ref = payload.get("ref") or ""
        branch = ref[len("refs/heads/") :] if ref.startswith("refs/heads/") else None
        tag = ref[len("refs/tags/") :] if ref.startswith("refs/tags/") else None
        ref_info = EventRef(branch, tag, payload.get("after"))
    else:
        pull = payload.get("pull_request") or {}
        ref_info = EventRef((pull.get("base") or {}).get("ref"), None, (pull.get("head") or {}).get("sha"))
    if not (ref_info.branch or ref_info.tag) or not ref_info.sha:
        raise UnresolvableRef(f"{event_name} event: branch/tag and sha cannot be resolved")
    return ref_info


def list_push_files(payload: dict[str, Any]) -> list[str]:
    files: list[str] = []
    for commit in payload.get("commits") or []:
        for key in ("added", "removed", "modified"):
            for path in commit.get(key) or []:
                if path not in files:
                    files.append(path)
    return files


async def list_changed_files(ctx: EventContext) -> list[str]:
    if ctx.event_name == "push":
        return list_push_files(ctx.payload)
    if ctx.event_name == "pull_request":
        return await ctx.client.list_pull_files(ctx.issue_number)
    raise ValueError(f"event name is {ctx.event_name}, neither \"push\" nor \"pull_request\"")


def _axis(candidates: list[str] | None, patterns: Iterable[str] | None, ignores: Iterable[str] | None) -> MatchResult:
    return match_axis(
        candidates,
        None if patterns is None else list(patterns),
        None if ignores is None else list(ignores),
    )


class EventRouter:
    def __init__(self, entries: Iterable[RouterEntry]) -> None:
        self.entries = tuple(entries)
        for entry in self.entries:
            check_route(entry.route)

    @classmethod
    def from_config(
        cls,
        routes: Iterable[RouteConfig],
        handlers: Mapping[str, Handler],
        file_handlers: Iterable[str] = (),
    ) -> EventRouter:
        """Build the router; handlers named in ``file_handlers`` get the changed files."""
        file_handlers = set(file_handlers)
        entries = []
        for route in routes:
            unknown = [name for name in route.handlers if name not in handlers]
            if unknown:
                raise ConfigError(f"route '{route.event}': unknown handlers: {', '.join(unknown)}")
            handler_entries = tuple(
                HandlerEntry(name, handlers[name], needs_files=name in file_handlers) for name in route.handlers
            )
            entries.append(RouterEntry(route, handler_entries))
        return cls(entries)

    async def route(self, ctx: EventContext) -> list[RouteMatch]:
        """Return one match per handler of every route that fires for ``ctx``."""
        results: list[RouteMatch] = []
        changed_files: list[str] | None = None
        for entry in self.entries:
            route = entry.route
            if route.event != ctx.event_name:
                continue
            if route.types is not None and not ctx.action:
                raise ConfigError(
                    f"event {ctx.event_name} has no action, but types to match is set ({', '.join(route.types)})"
                )
            if route.types is not None and ctx.action not in route.types:
                continue

            if ctx.event_name not in REF_FILTER_EVENTS:
                results.extend(RouteMatch(h, ctx.event_name, ctx.action) for h in entry.handler_entries)
                continue

            ref = resolve_ref(ctx.event_name, ctx.payload)
            branch_match = _axis([ref.branch] if ref.branch else None, route.branches, route.branch_ignores)
            tag_match = _axis([ref.tag] if ref.tag else None, route.tags, route.tag_ignores)
            if not (branch_match.matched and tag_match.matched):
                logger.debug(
                    "route event=%s skipped branch=%s(%s) tag=%s(%s)",
                    route.event,
                    ref.branch,
                    branch_match.matched,
                    ref.tag,
                    tag_match.matched,
                )
                continue

            has_path_filter = route.paths is not None or route.path_ignores is not None
            if not has_path_filter and not any(h.needs_files for h in entry.handler_entries):
                results.extend(
                    RouteMatch(h, ctx.event_name, ctx.action, branch=ref.branch, tag=ref.tag)
                    for h in entry.handler_entries
                )
                continue

            if changed_files is None:
                changed_files = await list_changed_files(ctx)
            path_match = _axis(changed_files, route.paths, route.path_ignores)
            logger.debug("route event=%s paths=%s(%s)", route.event, len(changed_files), path_match.matched)
            if path_match.matched:
                results.extend(
                    RouteMatch(
                        h,
                        ctx.event_name,
                        ctx.action,
                        branch=ref.branch,
                        tag=ref.tag,
                        paths=tuple(path_match.matches),
                        changed_files=tuple(changed_files),
                    )
                    for h in entry.handler_entries
                )

        for result in results:
            logger.info(
                "handler %s matched event=%s action=%s branch=%s tag=%s paths=%s",
                result.handler_entry.name,
                result.event_name,
                result.action,
                result.branch,
                result.tag,
                None if result.paths is None else len(result.paths),
            )
        return results

    async def dispatch(self, ctx: EventContext) -> list[RouteMatch]:
        matches = await self.route(ctx)
        for match in matches:
            await match.handler_entry.handler(ctx, match)
        return matches
