"""Async GitHub REST client for the calls the dispatcher makes."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from automation.chatops.errors import GitHubError
from automation.chatops.permissions import COMMAND_LEVELS, client_allows

GH_API = "https://api.github.com"
API_VERSION = "2022-11-28"
PER_PAGE = 100

logger = logging.getLogger("chatops-dispatcher.github")


class GitHubClient:
    """Repository-scoped client; one instance per event delivery."""

    def __init__(
        self,
        token: str,
        repo: str,
        api_url: str = GH_API,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 20.0,
    ) -> None:
        if "/" not in repo:
            raise ValueError(f"repo must be owner/name, got {repo!r}")
        self.repo = repo
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, operation: str, target: Any, **kwargs: Any) -> Any:
        url = f"/repos/{self.repo}{path}"
        try:
            resp = await self._client.request(method, url, **kwargs)
            logger.debug("github %s target=%s status=%s", operation, target, resp.status_code)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "failed to %s repo=%s target=%s status=%s", operation, self.repo, target, exc.response.status_code
            )
            raise GitHubError(
                f"failed to {operation} {target}: HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("failed to %s repo=%s target=%s err=%s", operation, self.repo, target, exc)
            raise GitHubError(f"failed to {operation} {target}: {exc}") from exc
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def _paginate(self, path: str, operation: str, target: Any, **params: Any) -> list[Any]:
        items: list[Any] = []
        page = 1
        while True:
            chunk = await self._request(
                "GET", path, operation, target, params={**params, "per_page": PER_PAGE, "page": page}
            )
            chunk = chunk or []
            items.extend(chunk)
            if len(chunk) < PER_PAGE:
                return items
            page += 1

    async def add_reaction(self, comment_id: int, content: str) -> None:
        await self._request(
            "POST",
            f"/issues/comments/{comment_id}/reactions",
            "add reaction",
            f"comment {comment_id}",
            json={"content": content},
        )

    async def _collaborator_permission(self, username: str) -> dict[str, Any]:
        return await self._request(
            "GET", f"/collaborators/{quote(username, safe='')}/permission", "get permission", f"user {username}"
        )

    async def get_permission(self, username: str) -> str:
        """Return the actor's repository role for command gating.

        ``permission`` only reports admin/write/read/none, so a maintainer
        shows up as write and a triager as read. ``role_name`` carries the
        full role; custom role names fall back to ``permission``.
        """
        data = await self._collaborator_permission(username)
        role = data.get("role_name")
        if role in COMMAND_LEVELS:
            return role
        return data["permission"]

    async def has_permission(self, username: str, required: str) -> bool:
        data = await self._collaborator_permission(username)
        return client_allows(data["permission"], required)

    async def add_labels(self, issue_number: int, labels: list[str]) -> None:
        await self._request(
            "POST", f"/issues/{issue_number}/labels", "add labels", f"issue {issue_number}", json={"labels": labels}
        )

    async def add_label(self, issue_number: int, label: str) -> None:
        await self.add_labels(issue_number, [label])

    async def remove_label(self, issue_number: int, label: str) -> None:
        await self._request(
            "DELETE",
            f"/issues/{issue_number}/labels/{quote(label, safe='')}",
            "remove label",
            f"issue {issue_number}",
        )

    async def add_assignee(self, issue_number: int, assignee: str) -> None:
        await self._request(
            "POST",
            f"/issues/{issue_number}/assignees",
            "add assignee",
            f"issue {issue_number}",
            json={"assignees": [assignee]},
        )

    async def remove_assignee(self, issue_number: int, assignee: str) -> None:
        await self._request(
            "DELETE",
            f"/issues/{issue_number}/assignees",
            "remove assignee",
            f"issue {issue_number}",
            json={"assignees": [assignee]},
        )

    async def add_reviewer(self, pull_number: int, reviewer: str) -> None:
        await self._request(
            "POST",
            f"/pulls/{pull_number}/requested_reviewers",
            "add reviewer",
            f"pull request {pull_number}",
            json={"reviewers": [reviewer]},
        )

    async def remove_reviewer(self, pull_number: int, reviewer: str) -> None:
        await self._request(
            "DELETE",
            f"/pulls/{pull_number}/requested_reviewers",
            "remove reviewer",
            f"pull request {pull_number}",
            json={"reviewers": [reviewer]},
        )

    async def get_issue(self, issue_number: int) -> dict[str, Any]:
        return await self._request("GET", f"/issues/{issue_number}", "get issue", f"issue {issue_number}")

    async def update_issue(self, issue_number: int, title: str, body: str) -> None:
        await self._request(
            "PATCH",
            f"/issues/{issue_number}",
            "update issue",
            f"issue {issue_number}",
            json={"title": title, "body": body},
        )

    async def get_pull(self, pull_number: int) -> dict[str, Any]:
        return await self._request("GET", f"/pulls/{pull_number}", "get pull request", f"pull request {pull_number}")

    async def list_pull_files(self, pull_number: int) -> list[str]:
        files = await self._paginate(f"/pulls/{pull_number}/files", "list files", f"pull request {pull_number}")
        return [f["filename"] for f in files if f.get("filename")]

    async def get_comment(self, comment_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/issues/comments/{comment_id}", "get comment", f"comment {comment_id}")

    async def update_comment(self, comment_id: int, body: str) -> None:
        await self._request(
            "PATCH", f"/issues/comments/{comment_id}", "update comment", f"comment {comment_id}", json={"body": body}
        )

    async def suffix_comment(self, comment_id: int, old_body: str, suffix: str) -> str:
        new_body = f"{old_body}\n{suffix}"
        await self.update_comment(comment_id, new_body)
        return new_body

    async def create_commit_status(
        self,
        sha: str,
        context: str,
        state: str,
        description: str,
        target_url: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"context": context, "state": state, "description": description}
        if target_url:
            payload["target_url"] = target_url
        await self._request("POST", f"/statuses/{sha}", "create commit status", f"{context}@{sha}", json=payload)

    async def get_combined_status(self, ref: str) -> dict[str, Any]:
        return await self._request("GET", f"/commits/{ref}/status", "get combined status", f"ref {ref}")

    async def list_workflows(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/actions/workflows", "list workflows", self.repo, params={"per_page": PER_PAGE})
        return data.get("workflows", [])

    async def get_workflow_by_name(self, name: str) -> dict[str, Any]:
        found = [w for w in await self.list_workflows() if w.get("name") == name]
        if not found:
            raise GitHubError(f"cannot find any workflows with name '{name}'")
        if len(found) > 1:
            raise GitHubError(f"found more than 1 (actually {len(found)}) workflows with name '{name}'")
        return found[0]

    async def create_workflow_dispatch(self, workflow_id: int | str, ref: str) -> None:
        await self._request(
            "POST",
            f"/actions/workflows/{workflow_id}/dispatches",
            "create workflow dispatch",
            f"workflow {workflow_id} ref {ref}",
            json={"ref": ref},
        )

    async def list_workflow_runs(self, workflow_id: int | str, event: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/actions/workflows/{workflow_id}/runs",
            "list workflow runs",
            f"workflow {workflow_id} event {event}",
            params={"event": event, "per_page": PER_PAGE},
        )
        return data.get("workflow_runs", [])

    async def get_workflow_run(self, run_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/actions/runs/{run_id}", "get workflow run", f"run {run_id}")
