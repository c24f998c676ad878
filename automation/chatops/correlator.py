"""Locate the workflow run created by a workflow dispatch.

The dispatch endpoint returns no run id, and new runs show up in the list
endpoint with a delay, so the run is found by polling for runs of the
workflow created at or after a cutoff recorded before dispatching.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

from automation.chatops.errors import GitHubError
from automation.chatops.github_client import GitHubClient

logger = logging.getLogger("chatops-dispatcher.correlator")


def dispatch_cutoff() -> datetime:
    # run timestamps have second precision
    return datetime.now(UTC).replace(microsecond=0)


def parse_ts(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


@dataclass(frozen=True)
class WorkflowRunProbe:
    repo: str
    workflow_id: int | str
    event: str
    created_after: datetime
    interval: float
    timeout: float


class WorkflowRunCorrelator:
    def __init__(
        self,
        client: GitHubClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self._sleep = sleep
        self._clock = clock

    async def run_after(self, probe: WorkflowRunProbe) -> dict[str, Any] | None:
        runs = await self.client.list_workflow_runs(probe.workflow_id, probe.event)
        fresh = [r for r in runs if parse_ts(r["created_at"]) >= probe.created_after]
        logger.debug(
            "workflow=%s runs=%s after=%s fresh=%s",
            probe.workflow_id,
            len(runs),
            probe.created_after.isoformat(),
            [(r.get("id"), r.get("created_at")) for r in fresh],
        )
        return fresh[0] if fresh else None

    async def find_run(self, probe: WorkflowRunProbe) -> dict[str, Any] | None:
        """Poll until a run shows up or ``probe.timeout`` seconds have passed.

        Returns None on timeout. Failed list calls count as an empty poll.
        """
        start = self._clock()
        while True:
            logger.debug("sleep %ss before next workflow run search", probe.interval)
            await self._sleep(probe.interval)
            try:
                run = await self.run_after(probe)
            except GitHubError as exc:
                logger.debug("workflow run search failed workflow=%s err=%s", probe.workflow_id, exc)
                run = None
            if run is not None:
                logger.info("found workflow run id=%s repo=%s workflow=%s", run.get("id"), probe.repo, probe.workflow_id)
                return run
            if self._clock() - start > probe.timeout:
                logger.info(
                    "no workflow run found repo=%s workflow=%s within %ss", probe.repo, probe.workflow_id, probe.timeout
                )
                return None
