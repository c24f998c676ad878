"""Per-delivery event context passed explicitly to every component."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from automation.chatops.config import ChatOpsConfig
from automation.chatops.github_client import GitHubClient


@dataclass(frozen=True)
class EventContext:
    owner: str
    repo: str
    event_name: str
    action: str | None
    actor: str
    payload: dict[str, Any]
    config: ChatOpsConfig
    client: GitHubClient

    @property
    def repo_slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def issue_number(self) -> int:
        issue = self.payload.get("issue") or self.payload.get("pull_request") or {}
        return int(issue.get("number") or self.payload.get("number"))

    @property
    def is_pull_request(self) -> bool:
        if self.event_name == "pull_request":
            return True
        return bool((self.payload.get("issue") or {}).get("pull_request"))

    @property
    def comment_id(self) -> int:
        return int(self.payload["comment"]["id"])

    @property
    def comment_body(self) -> str:
        return self.payload.get("comment", {}).get("body") or ""


def repo_from_payload(payload: dict[str, Any]) -> str:
    repo = payload.get("repository", {}).get("full_name") or ""
    if "/" not in repo:
        raise ValueError("payload is missing repository.full_name")
    return repo


def build_context(
    event_name: str,
    payload: dict[str, Any],
    config: ChatOpsConfig,
    client: GitHubClient,
    repo: str | None = None,
    actor: str | None = None,
) -> EventContext:
    owner, name = (repo or repo_from_payload(payload)).split("/", 1)
    return EventContext(
        owner=owner,
        repo=name,
        event_name=event_name,
        action=payload.get("action"),
        actor=actor or payload.get("sender", {}).get("login", ""),
        payload=payload,
        config=config,
        client=client,
    )
