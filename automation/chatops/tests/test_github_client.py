from __future__ import annotations

import json
import unittest

import httpx

from automation.chatops.errors import GitHubError
from automation.chatops.github_client import PER_PAGE, GitHubClient
from automation.chatops.permissions import compare


class Recorder:
    def __init__(self, responder) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)


def _client(responder) -> tuple[GitHubClient, Recorder]:
    recorder = Recorder(responder)
    client = GitHubClient("t0ken", "fourmajor/hoopsmania", transport=httpx.MockTransport(recorder))
    return client, recorder


class GitHubClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_sends_auth_headers_and_json_body(self) -> None:
        client, recorder = _client(lambda _req: httpx.Response(201, json={"id": 1}))
        async with client:
            await client.add_reaction(1001, "eyes")

        request = recorder.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/repos/fourmajor/hoopsmania/issues/comments/1001/reactions")
        self.assertEqual(request.headers["Authorization"], "Bearer t0ken")
        self.assertEqual(request.headers["X-GitHub-Api-Version"], "2022-11-28")
        self.assertEqual(json.loads(request.content), {"content": "eyes"})

    async def test_label_names_are_quoted_in_path(self) -> None:
        client, recorder = _client(lambda _req: httpx.Response(204))
        async with client:
            self.assertIsNone(await client.remove_label(42, "kind/bug fix"))

        self.assertEqual(recorder.requests[0].url.raw_path, b"/repos/fourmajor/hoopsmania/issues/42/labels/kind%2Fbug%20fix")

    async def test_http_errors_become_github_errors(self) -> None:
        client, _ = _client(lambda _req: httpx.Response(404, json={"message": "Not Found"}))
        async with client:
            with self.assertRaises(GitHubError) as caught:
                await client.get_issue(42)

        self.assertEqual(caught.exception.status_code, 404)
        self.assertIn("get issue", str(caught.exception))

    async def test_transport_errors_become_github_errors(self) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _client(boom)
        async with client:
            with self.assertRaises(GitHubError) as caught:
                await client.get_comment(1)

        self.assertIsNone(caught.exception.status_code)

    async def test_pull_files_are_paginated(self) -> None:
        def pages(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            count = PER_PAGE if page == 1 else 3
            return httpx.Response(200, json=[{"filename": f"p{page}/f{i}.py"} for i in range(count)])

        client, recorder = _client(pages)
        async with client:
            files = await client.list_pull_files(7)

        self.assertEqual(len(files), PER_PAGE + 3)
        self.assertEqual(files[-1], "p2/f2.py")
        self.assertEqual([r.url.params["page"] for r in recorder.requests], ["1", "2"])

    async def test_permission_comparison(self) -> None:
        client, _ = _client(lambda _req: httpx.Response(200, json={"permission": "write"}))
        async with client:
            self.assertEqual(await client.get_permission("pipewire"), "write")
            self.assertTrue(await client.has_permission("pipewire", "read"))
            self.assertFalse(await client.has_permission("pipewire", "admin"))

    async def test_role_name_gates_commands_and_permission_gates_client_checks(self) -> None:
        client, _ = _client(lambda _req: httpx.Response(200, json={"permission": "write", "role_name": "maintain"}))
        async with client:
            role = await client.get_permission("neonflux")
            self.assertTrue(await client.has_permission("neonflux", "write"))
            self.assertFalse(await client.has_permission("neonflux", "admin"))

        self.assertEqual(role, "maintain")
        self.assertTrue(compare(role, "maintain"))
        self.assertFalse(compare(role, "admin"))

    async def test_triage_role_is_not_reported_as_read(self) -> None:
        client, _ = _client(lambda _req: httpx.Response(200, json={"permission": "read", "role_name": "triage"}))
        async with client:
            self.assertTrue(compare(await client.get_permission("docdrip"), "triage"))

    async def test_custom_role_falls_back_to_permission(self) -> None:
        client, _ = _client(lambda _req: httpx.Response(200, json={"permission": "read", "role_name": "auditor"}))
        async with client:
            self.assertEqual(await client.get_permission("docdrip"), "read")

    async def test_get_workflow_run(self) -> None:
        client, recorder = _client(lambda _req: httpx.Response(200, json={"id": 555, "conclusion": "success"}))
        async with client:
            run = await client.get_workflow_run(555)

        self.assertEqual(run["conclusion"], "success")
        self.assertEqual(recorder.requests[0].url.path, "/repos/fourmajor/hoopsmania/actions/runs/555")

    async def test_commit_status_omits_empty_target_url(self) -> None:
        client, recorder = _client(lambda _req: httpx.Response(201, json={}))
        async with client:
            await client.create_commit_status("abc123", "ci", "pending", "queued")

        self.assertEqual(
            json.loads(recorder.requests[0].content),
            {"context": "ci", "state": "pending", "description": "queued"},
        )


class WorkflowLookupTests(unittest.IsolatedAsyncioTestCase):
    async def _lookup(self, workflows: list[dict]) -> dict:
        client, _ = _client(lambda _req: httpx.Response(200, json={"workflows": workflows}))
        async with client:
            return await client.get_workflow_by_name("ci")

    async def test_single_match(self) -> None:
        found = await self._lookup([{"id": 1, "name": "lint"}, {"id": 2, "name": "ci"}])
        self.assertEqual(found["id"], 2)

    async def test_missing_workflow(self) -> None:
        with self.assertRaisesRegex(GitHubError, "cannot find any workflows"):
            await self._lookup([{"id": 1, "name": "lint"}])

    async def test_duplicate_workflow_names(self) -> None:
        with self.assertRaisesRegex(GitHubError, "more than 1"):
            await self._lookup([{"id": 1, "name": "ci"}, {"id": 2, "name": "ci"}])


class ConstructorTests(unittest.TestCase):
    def test_repo_must_be_owner_slash_name(self) -> None:
        with self.assertRaises(ValueError):
            GitHubClient("t0ken", "hoopsmania")


if __name__ == "__main__":
    unittest.main()
