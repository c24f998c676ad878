from __future__ import annotations

import unittest

from automation.chatops.config import ChatOpsConfig, LabelRule, RouteConfig, StatusRule
from automation.chatops.errors import AmbiguousStatus
from automation.chatops.handlers import (
    FILE_HANDLERS,
    HANDLERS,
    auto_label,
    auto_status,
    describe_conclusion,
    report_workflow_run,
)
from automation.chatops.router import EventRouter, HandlerEntry, RouteMatch
from automation.chatops.tests.fakes import FakeClient, make_context


def _match(name: str, changed_files: tuple[str, ...] | None = None) -> RouteMatch:
    return RouteMatch(
        HandlerEntry(name, HANDLERS[name], needs_files=name in FILE_HANDLERS),
        "pull_request",
        "opened",
        branch="main",
        paths=changed_files,
        changed_files=changed_files,
    )


def _run_payload(conclusion: str = "success") -> dict:
    return {
        "action": "completed",
        "repository": {"full_name": "fourmajor/hoopsmania"},
        "workflow": {"name": "ci"},
        "workflow_run": {"id": 555, "name": "ci", "head_sha": "abc123", "conclusion": conclusion},
    }


PULL_PAYLOAD = {
    "action": "opened",
    "repository": {"full_name": "fourmajor/hoopsmania"},
    "pull_request": {"number": 7, "base": {"ref": "main"}, "head": {"ref": "feature", "sha": "abc123"}},
}


class ReportWorkflowRunTests(unittest.IsolatedAsyncioTestCase):
    async def test_resolves_status_and_suffixes_originating_comment(self) -> None:
        client = FakeClient(
            combined={
                "statuses": [
                    {"context": "lint", "description": "other"},
                    {
                        "context": "ci",
                        "description": "Workflow run was triggered by slash command in comment 1001",
                        "target_url": "https://example.test/runs/555",
                    },
                ]
            },
            comments={1001: "/test"},
        )
        ctx = make_context("workflow_run", _run_payload("timed_out"), client=client)

        await report_workflow_run(ctx, _match("report-workflow-run"))

        self.assertIn(
            (
                "create_commit_status",
                "abc123",
                "ci",
                "failure",
                "Workflow run have timed out",
                "https://example.test/runs/555",
            ),
            client.calls,
        )
        self.assertEqual(client.comments[1001], "/test\n>Workflow run completed: run id = 555, conclusion = timed_out")

    async def test_missing_status_is_not_an_error(self) -> None:
        client = FakeClient()
        await report_workflow_run(make_context("workflow_run", _run_payload(), client=client), _match("report-workflow-run"))
        self.assertEqual(client.names(), ["get_combined_status"])

    async def test_status_without_comment_reference_skips_comment(self) -> None:
        client = FakeClient(combined={"statuses": [{"context": "ci", "description": "manual"}]})
        await report_workflow_run(make_context("workflow_run", _run_payload(), client=client), _match("report-workflow-run"))
        self.assertEqual(client.names(), ["get_combined_status", "create_commit_status"])

    async def test_duplicate_status_contexts_raise(self) -> None:
        client = FakeClient(combined={"statuses": [{"context": "ci"}, {"context": "ci"}]})
        with self.assertRaises(AmbiguousStatus):
            await report_workflow_run(
                make_context("workflow_run", _run_payload(), client=client), _match("report-workflow-run")
            )

    def test_unrecognized_conclusion_description(self) -> None:
        self.assertEqual(describe_conclusion("skipped"), "Workflow run have completed with unrecognized conclusion skipped")


class FileChangeHandlerTests(unittest.IsolatedAsyncioTestCase):
    async def test_auto_label_adds_granted_labels_in_one_call(self) -> None:
        config = ChatOpsConfig(
            labels=(
                LabelRule("backend", if_include=("backend/*",)),
                LabelRule("frontend", if_include=("frontend/*",)),
                LabelRule("no-docs", if_not_include=("docs/*",)),
                LabelRule("always"),
            )
        )
        client = FakeClient()
        ctx = make_context("pull_request", PULL_PAYLOAD, config=config, client=client)

        await auto_label(ctx, _match("auto-label", ("backend/api.py", "tests/test_api.py")))

        self.assertEqual(client.calls, [("add_labels", 7, ["backend", "no-docs", "always"])])

    async def test_auto_label_without_grants_makes_no_call(self) -> None:
        config = ChatOpsConfig(labels=(LabelRule("frontend", if_include=("frontend/*",)),))
        client = FakeClient()
        await auto_label(make_context("pull_request", PULL_PAYLOAD, config=config, client=client), _match("auto-label", ()))
        self.assertEqual(client.calls, [])

    async def test_auto_status_grants_on_head_sha(self) -> None:
        config = ChatOpsConfig(
            statuses=(
                StatusRule("docs-only", "success", description="docs only", if_not_include=("backend/*",)),
                StatusRule("backend-review", "pending", if_include=("backend/*",)),
            )
        )
        client = FakeClient()
        ctx = make_context("pull_request", PULL_PAYLOAD, config=config, client=client)

        await auto_status(ctx, _match("auto-status", ("docs/index.md",)))

        self.assertEqual(client.calls, [("create_commit_status", "abc123", "docs-only", "success", "docs only", None)])

    async def test_grant_rules_see_files_the_route_filtered_out(self) -> None:
        config = ChatOpsConfig(
            labels=(LabelRule("no-docs", if_not_include=("*.md",)), LabelRule("go", if_include=("**/*.go",))),
            routes=(RouteConfig(event="pull_request", path_ignores=("*.md",), handlers=("auto-label",)),),
        )
        client = FakeClient(pull_files=["README.md", "a.go"])
        ctx = make_context("pull_request", PULL_PAYLOAD, config=config, client=client)
        router = EventRouter.from_config(config.routes, HANDLERS, FILE_HANDLERS)

        matches = await router.dispatch(ctx)

        self.assertEqual(matches[0].paths, ("a.go",))
        self.assertEqual(matches[0].changed_files, ("README.md", "a.go"))
        self.assertEqual(client.calls, [("list_pull_files", 7), ("add_labels", 7, ["go"])])


if __name__ == "__main__":
    unittest.main()
