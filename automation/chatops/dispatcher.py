#!/usr/bin/env python3
"""GitHub event -> slash command / route dispatcher.

Supported flows:
- issue_comment: parse a slash command from the comment's first line, match
  it against the configured commands and run its actions
- every other event: match configured routes (event, action, branch, tag,
  changed paths) and run their handlers, e.g. reporting a completed
  workflow run back to the comment that dispatched it

Runs either as a webhook server or once per event inside GitHub Actions.
"""

from __future__ import annotations

import argparse
import asyncio
import hashlib
import hmac
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

from automation.chatops.actions import ActionDispatcher
from automation.chatops.commands import CommandRegistry, NonMatch, parse_invocation
from automation.chatops.config import ChatOpsConfig, load_config
from automation.chatops.context import EventContext, build_context, repo_from_payload
from automation.chatops.correlator import WorkflowRunCorrelator
from automation.chatops.errors import ChatOpsError, ConfigError
from automation.chatops.github_client import GH_API as DEFAULT_GH_API
from automation.chatops.github_client import GitHubClient
from automation.chatops.handlers import FILE_HANDLERS, HANDLERS
from automation.chatops.router import EventRouter

CONFIG_FILE = Path(os.getenv("CHATOPS_CONFIG_FILE", ".github/chatops.yml"))
INLINE_CONFIG = os.getenv("CHATOPS_CONFIG", "")

LOG_FILE = os.getenv("DISPATCHER_LOG_FILE", "")
LOG_LEVEL = os.getenv("DISPATCHER_LOG_LEVEL", "INFO").upper()

HOST = os.getenv("DISPATCHER_HOST", "127.0.0.1")
PORT = int(os.getenv("DISPATCHER_PORT", "8787"))

WEBHOOK_SECRET = os.getenv("GITHUB_WEBHOOK_SECRET", "")
GH_TOKEN = os.getenv("GITHUB_TOKEN", "")
GH_API = os.getenv("GITHUB_API_URL", DEFAULT_GH_API)

COMMENT_EVENT = "issue_comment"
# our own audit edits arrive as "edited" and must not re-trigger commands
COMMENT_ACTIONS_ALLOWED = {"created"}

logger = logging.getLogger("chatops-dispatcher")


@dataclass(frozen=True)
class EventOutcome:
    handled: bool
    reason: str = ""
    handlers: tuple[str, ...] = ()


def _setup_logging() -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(LOG_FILE, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
    )


def _verify_signature(body: bytes, signature_header: str) -> bool:
    if not WEBHOOK_SECRET:
        return False
    if not signature_header.startswith("sha256="):
        return False
    expected = "sha256=" + hmac.new(
        WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature_header)


def _load_config(path: Path | None = None, inline: str | None = None) -> ChatOpsConfig:
    """Load the config once and surface every configuration error up front."""
    path = path or CONFIG_FILE
    inline = INLINE_CONFIG if inline is None else inline
    if not path.exists():
        if not inline:
            raise ConfigError(f"no config: {path} is missing and CHATOPS_CONFIG is empty")
        path = None
    config = load_config(path, inline)
    EventRouter.from_config(config.routes, HANDLERS, FILE_HANDLERS)
    return config


async def handle_comment(ctx: EventContext, correlator: WorkflowRunCorrelator | None = None) -> EventOutcome:
    invocation = parse_invocation(ctx.comment_body)
    if invocation is None:
        logger.info("comment=%s first line is not a valid slash command", ctx.comment_id)
        return EventOutcome(False, NonMatch.NOT_A_COMMAND.value)

    registry = CommandRegistry(ctx.config.commands)
    selected = registry.select(invocation, ctx.is_pull_request)
    if selected.is_help:
        await ctx.client.suffix_comment(ctx.comment_id, ctx.comment_body, registry.help_table(ctx.is_pull_request))
        return EventOutcome(True, "help")
    if selected.reason is not None:
        logger.info(selected.message)
        return EventOutcome(False, selected.reason.value)

    if ctx.config.use_reaction:
        await ctx.client.add_reaction(ctx.comment_id, "eyes")

    permission = await ctx.client.get_permission(ctx.actor)
    logger.info("actor=%s permission=%s command=%s", ctx.actor, permission, invocation.name)
    resolved = registry.narrow(invocation, selected.candidates, permission)
    if resolved.reason is not None:
        logger.info(resolved.message)
        return EventOutcome(False, resolved.reason.value)

    await ActionDispatcher(ctx, correlator).dispatch(resolved.definition, invocation.args)
    return EventOutcome(True, f"dispatched {resolved.definition.name}")


async def handle_event(
    ctx: EventContext,
    router: EventRouter | None = None,
    correlator: WorkflowRunCorrelator | None = None,
) -> EventOutcome:
    logger.info("event=%s action=%s repo=%s actor=%s", ctx.event_name, ctx.action, ctx.repo_slug, ctx.actor)
    if ctx.event_name == COMMENT_EVENT:
        if ctx.action not in COMMENT_ACTIONS_ALLOWED:
            return EventOutcome(False, f"ignored action {ctx.action}")
        return await handle_comment(ctx, correlator)

    if ctx.event_name == "workflow_run" and ctx.action != "completed":
        raise ChatOpsError("cannot be triggered on workflow_run event with action except 'completed'")

    router = router or EventRouter.from_config(ctx.config.routes, HANDLERS, FILE_HANDLERS)
    matches = await router.dispatch(ctx)
    if not matches:
        logger.info("no route matched event=%s action=%s", ctx.event_name, ctx.action)
        return EventOutcome(False, "no route matched")
    return EventOutcome(True, "routed", tuple(m.handler_entry.name for m in matches))


async def process_event(
    event_name: str,
    payload: dict[str, Any],
    config: ChatOpsConfig,
    token: str,
    repo: str | None = None,
    actor: str | None = None,
    api_url: str = GH_API,
) -> dict[str, Any]:
    """Handle one event with a fresh client; any failure becomes one error result."""
    try:
        async with GitHubClient(token, repo or repo_from_payload(payload), api_url) as client:
            ctx = build_context(event_name, payload, config, client, repo=repo, actor=actor)
            outcome = await handle_event(ctx)
    except Exception as exc:
        logger.exception("failed to handle event=%s action=%s", event_name, payload.get("action"))
        return {"ok": False, "event": event_name, "error": str(exc) or type(exc).__name__}
    return {"ok": True, "event": event_name, **asdict(outcome)}


class Handler(BaseHTTPRequestHandler):
    config: ChatOpsConfig

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.info("http %s - %s", self.address_string(), fmt % args)

    def _respond(self, code: HTTPStatus, payload: dict[str, Any]) -> None:
        data = json.dumps(payload).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/healthz":
            self._respond(HTTPStatus.OK, {"ok": True})
            return
        self._respond(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})

    def do_POST(self) -> None:  # noqa: N802
        if self.path != "/github/webhook":
            self._respond(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})
            return

        body = self.rfile.read(int(self.headers.get("Content-Length", "0")))
        sig = self.headers.get("X-Hub-Signature-256", "")
        evt = self.headers.get("X-GitHub-Event", "")
        delivery = self.headers.get("X-GitHub-Delivery", "")

        if not _verify_signature(body, sig):
            self._respond(HTTPStatus.UNAUTHORIZED, {"ok": False, "error": "bad signature"})
            return

        try:
            payload = json.loads(body.decode("utf-8"))
            repo = repo_from_payload(payload)
        except ValueError as exc:
            self._respond(HTTPStatus.BAD_REQUEST, {"ok": False, "error": str(exc)})
            return

        logger.info("delivery=%s event=%s repo=%s", delivery, evt, repo)
        result = asyncio.run(process_event(evt, payload, self.config, GH_TOKEN, repo=repo))
        result["delivery"] = delivery
        self._respond(HTTPStatus.OK if result["ok"] else HTTPStatus.INTERNAL_SERVER_ERROR, result)


def serve(config: ChatOpsConfig) -> None:
    logger.info("Chatops dispatcher listening on http://%s:%s/github/webhook", HOST, PORT)
    logger.info("Health endpoint: http://%s:%s/healthz", HOST, PORT)
    logger.info("Commands: %s routes: %s", len(config.commands), len(config.routes))
    if not WEBHOOK_SECRET:
        logger.warning("GITHUB_WEBHOOK_SECRET is empty; signature checks will fail.")
    Handler.config = config
    server = ThreadingHTTPServer((HOST, PORT), Handler)
    server.serve_forever()


def run_actions_event(config: ChatOpsConfig, event_name: str, event_path: Path, repo: str, actor: str) -> int:
    if not GH_TOKEN:
        print("error: GITHUB_TOKEN is required", file=sys.stderr)
        return 2
    payload = json.loads(event_path.read_text(encoding="utf-8"))
    result = asyncio.run(process_event(event_name, payload, config, GH_TOKEN, repo=repo or None, actor=actor or None))
    print(json.dumps(result))
    return 0 if result["ok"] else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Slash command and event route dispatcher for GitHub")
    parser.add_argument("--config", type=Path, default=None, help="Path to the YAML config")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Serve the GitHub webhook endpoint")

    run = sub.add_parser("run-event", help="Handle one event from the GitHub Actions environment")
    run.add_argument("--event-name", default=os.getenv("GITHUB_EVENT_NAME", ""))
    run.add_argument("--event-path", type=Path, default=os.getenv("GITHUB_EVENT_PATH"))
    run.add_argument("--repo", default=os.getenv("GITHUB_REPOSITORY", ""), help="owner/repo")
    run.add_argument("--actor", default=os.getenv("GITHUB_ACTOR", ""))

    sub.add_parser("validate-config", help="Validate the config and exit")
    args = parser.parse_args(argv)

    _setup_logging()
    try:
        config = _load_config(args.config)
    except ConfigError as exc:
        print(f"❌ chatops config validation failed: {exc}")
        return 1

    if args.command == "validate-config":
        print("✅ chatops config passed schema + semantic validation")
        print(f"   commands: {len(config.commands)}")
        print(f"   routes: {len(config.routes)}")
        return 0
    if args.command == "run-event":
        if not args.event_name or args.event_path is None:
            print("error: --event-name and --event-path are required", file=sys.stderr)
            return 2
        return run_actions_event(config, args.event_name, args.event_path, args.repo, args.actor)
    serve(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
