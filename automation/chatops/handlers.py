"""Route handlers for lifecycle events."""

from __future__ import annotations

import logging
import re

from automation.chatops.context import EventContext
from automation.chatops.errors import AmbiguousStatus
from automation.chatops.matching import grants
from automation.chatops.router import Handler, RouteMatch

STATUS_DESC_RE = re.compile(r"Workflow run was triggered by slash command in comment (\d+)")

CONCLUSION_DESCRIPTIONS = {
    "success": "Workflow run have finished successfully",
    "failure": "Workflow run have finished with failure",
    "cancelled": "Workflow run have been canceled",
    "timed_out": "Workflow run have timed out",
    "stale": "Workflow run is stale",
    "action_required": "Workflow run have completed with action required",
}

logger = logging.getLogger("chatops-dispatcher.handlers")


async def auto_label(ctx: EventContext, match: RouteMatch) -> None:
    files = list(match.changed_files or ())
    labels = [
        rule.name for rule in ctx.config.labels if grants(files, list(rule.if_include), list(rule.if_not_include))
    ]
    if not labels:
        logger.info("auto-label: no label rule matched pr=%s files=%s", ctx.issue_number, len(files))
        return
    logger.info("auto-label: adding labels=%s pr=%s", labels, ctx.issue_number)
    await ctx.client.add_labels(ctx.issue_number, labels)


async def auto_status(ctx: EventContext, match: RouteMatch) -> None:
    files = list(match.changed_files or ())
    sha = ctx.payload["pull_request"]["head"]["sha"]
    for rule in ctx.config.statuses:
        if not grants(files, list(rule.if_include), list(rule.if_not_include)):
            continue
        logger.info("auto-status: granting status=%s state=%s sha=%s", rule.context, rule.state, sha)
        await ctx.client.create_commit_status(sha, rule.context, rule.state, rule.description, rule.target_url)


def describe_conclusion(conclusion: str | None) -> str:
    return CONCLUSION_DESCRIPTIONS.get(
        conclusion or "", f"Workflow run have completed with unrecognized conclusion {conclusion}"
    )


async def report_workflow_run(ctx: EventContext, match: RouteMatch) -> None:
    """Resolve the pending status of a slash-command run and report back."""
    run = ctx.payload["workflow_run"]
    run_id = run["id"]
    sha = run["head_sha"]
    conclusion = run.get("conclusion")
    workflow_name = (ctx.payload.get("workflow") or {}).get("name") or run.get("name")

    combined = await ctx.client.get_combined_status(sha)
    statuses = [s for s in combined.get("statuses", []) if s.get("context") == workflow_name]
    if not statuses:
        logger.info("cannot find status context=%s sha=%s run=%s", workflow_name, sha, run_id)
        return
    if len(statuses) > 1:
        raise AmbiguousStatus(
            f"found more than 1 (actually {len(statuses)}) status with context {workflow_name} on SHA {sha} "
            f"(head SHA for workflow run {run_id})"
        )
    status = statuses[0]
    state = "success" if conclusion == "success" else "failure"
    await ctx.client.create_commit_status(
        sha, workflow_name, state, describe_conclusion(conclusion), status.get("target_url")
    )

    found = STATUS_DESC_RE.search(status.get("description") or "")
    if not found:
        logger.info("status description has no comment id, skip updating comment run=%s", run_id)
        return
    comment_id = int(found.group(1))
    logger.info("extracted comment=%s from status description run=%s", comment_id, run_id)
    comment = await ctx.client.get_comment(comment_id)
    await ctx.client.suffix_comment(
        comment_id,
        comment.get("body") or "",
        f">Workflow run completed: run id = {run_id}, conclusion = {conclusion}",
    )


HANDLERS: dict[str, Handler] = {
    "auto-label": auto_label,
    "auto-status": auto_status,
    "report-workflow-run": report_workflow_run,
}

# handlers that evaluate grant rules against every changed file
FILE_HANDLERS = frozenset({"auto-label", "auto-status"})
