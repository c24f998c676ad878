"""Side effects of a resolved slash command.

Actions run in a fixed order and each is skipped when its template is unset.
Every step receives the current comment body and returns it with the
step's audit line appended, so the comment is only suffixed after the
remote call succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from automation.chatops.commands import format_with_arguments
from automation.chatops.config import CommandDefinition
from automation.chatops.context import EventContext
from automation.chatops.correlator import WorkflowRunCorrelator, WorkflowRunProbe, dispatch_cutoff

AUDIT_PREFIX = ">chatops-bot:"
STATUS_DESCRIPTION = "Workflow run was triggered by slash command in comment {comment_id}"
DISPATCH_EVENT = "workflow_dispatch"

logger = logging.getLogger("chatops-dispatcher.actions")


@dataclass(frozen=True)
class ActionRequest:
    context: EventContext
    definition: CommandDefinition
    args: tuple[str, ...]

    def render(self, template: str) -> str:
        return format_with_arguments(template, self.args)


Step = Callable[[ActionRequest, str], Awaitable[str]]


async def _suffix(request: ActionRequest, body: str, suffix: str) -> str:
    ctx = request.context
    return await ctx.client.suffix_comment(ctx.comment_id, body, suffix)


def _client_step(template_attr: str, method: str, note: str) -> Step:
    async def step(request: ActionRequest, body: str) -> str:
        template = getattr(request.definition.templates, template_attr)
        if template is None:
            return body
        value = request.render(template)
        ctx = request.context
        await getattr(ctx.client, method)(ctx.issue_number, value)
        logger.info("command=%s %s %s issue=%s", request.definition.name, note, value, ctx.issue_number)
        return await _suffix(request, body, f"{AUDIT_PREFIX} {note} {value}")

    step.__name__ = method
    return step


def apply_edit(current: str, mode: str, value: str, joiner: str) -> str:
    if mode == "prefix":
        return f"{value}{joiner}{current}"
    if mode == "suffix":
        return f"{current}{joiner}{value}"
    if mode == "remove":
        return current.replace(value, "", 1)
    return value


async def update_issue(request: ActionRequest, body: str) -> str:
    templates = request.definition.templates
    title_edits = templates.title_edits()
    body_edits = templates.body_edits()
    if not title_edits and not body_edits:
        return body

    ctx = request.context
    issue = await ctx.client.get_issue(ctx.issue_number)
    title = issue.get("title") or ""
    issue_body = issue.get("body") or ""
    for mode, template in title_edits:
        title = apply_edit(title, mode, request.render(template), " ")
    for mode, template in body_edits:
        issue_body = apply_edit(issue_body, mode, request.render(template), "\n")
    await ctx.client.update_issue(ctx.issue_number, title.strip(), issue_body.strip())
    logger.info("command=%s updated issue=%s", request.definition.name, ctx.issue_number)
    return await _suffix(request, body, f"{AUDIT_PREFIX} updated issue {ctx.issue_number}")


class ActionDispatcher:
    def __init__(self, context: EventContext, correlator: WorkflowRunCorrelator | None = None) -> None:
        self.context = context
        self.correlator = correlator or WorkflowRunCorrelator(context.client)
        self.steps: tuple[Step, ...] = (
            _client_step("label", "add_label", "added label"),
            _client_step("unlabel", "remove_label", "removed label"),
            _client_step("assignee", "add_assignee", "added assignee"),
            _client_step("unassignee", "remove_assignee", "removed assignee"),
            _client_step("request_reviewer", "add_reviewer", "added reviewer"),
            _client_step("unrequest_reviewer", "remove_reviewer", "removed reviewer"),
            update_issue,
            self.dispatch_workflow,
        )

    async def dispatch(self, definition: CommandDefinition, args: tuple[str, ...]) -> str:
        """Run every configured action and return the final comment body."""
        request = ActionRequest(self.context, definition, tuple(args))
        body = self.context.comment_body
        for step in self.steps:
            body = await step(request, body)
        return body

    async def dispatch_workflow(self, request: ActionRequest, body: str) -> str:
        template = request.definition.templates.workflow_name
        if template is None:
            return body

        ctx = request.context
        poll = ctx.config.workflow_poll
        pull = await ctx.client.get_pull(ctx.issue_number)
        ref = pull["head"]["ref"]
        sha = pull["head"]["sha"]
        workflow_name = request.render(template)
        workflow = await ctx.client.get_workflow_by_name(workflow_name)

        cutoff = dispatch_cutoff()
        await ctx.client.create_workflow_dispatch(workflow["id"], ref)
        logger.info("dispatched workflow=%s ref=%s comment=%s", workflow_name, ref, ctx.comment_id)
        run = await self.correlator.find_run(
            WorkflowRunProbe(
                repo=ctx.repo_slug,
                workflow_id=workflow["id"],
                event=DISPATCH_EVENT,
                created_after=cutoff,
                interval=poll.interval,
                timeout=poll.timeout,
            )
        )

        target_url = None
        if run is None:
            logger.warning("workflow=%s dispatched but no run found within %ss", workflow_name, poll.timeout)
            body = await _suffix(
                request,
                body,
                f">Workflow run dispatched: name = {workflow_name}, ref = {ref}\n"
                f">No workflow run found within {poll.timeout:g} seconds",
            )
        else:
            target_url = run.get("html_url")
            body = await _suffix(
                request,
                body,
                f">Workflow run started: name = {workflow_name}, ref = {ref}\n>View workflow run at: {target_url}",
            )
        await ctx.client.create_commit_status(
            sha,
            workflow_name,
            "pending",
            STATUS_DESCRIPTION.format(comment_id=ctx.comment_id),
            target_url,
        )
        return body
