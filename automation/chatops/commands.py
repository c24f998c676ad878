"""Slash command parsing and the command matching pipeline.

A comment's first line such as ``/label bug`` becomes a ``CommandInvocation``.
The registry narrows the configured definitions in strict filter stages
(name and enabled, issue scope, actor permission) down to exactly one
definition, or reports why nothing matched.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Iterable

from automation.chatops.config import CommandDefinition
from automation.chatops.errors import AmbiguousCommand, ArgumentCountMismatch
from automation.chatops.permissions import compare

# key="quoted value", "quoted value" (escaped quotes allowed), or a bare word
TOKENISE_RE = re.compile(r'\S+="[^"\\]*(?:\\.[^"\\]*)*"|"[^"\\]*(?:\\.[^"\\]*)*"|\S+')
PLACEHOLDER_RE = re.compile(r"\$([1-9])")

HELP_COMMAND = "help"

logger = logging.getLogger("chatops-dispatcher.commands")


def tokenise(text: str) -> list[str]:
    return TOKENISE_RE.findall(text)


def format_with_arguments(template: str, args: list[str] | tuple[str, ...]) -> str:
    """Substitute ``$1``..``$9`` with positional arguments.

    Placeholders past the end of ``args`` are left as written.
    """

    def _sub(m: re.Match[str]) -> str:
        index = int(m.group(1))
        return args[index - 1] if index <= len(args) else m.group(0)

    return PLACEHOLDER_RE.sub(_sub, template)


@dataclass(frozen=True)
class CommandInvocation:
    name: str
    args: tuple[str, ...] = ()


def parse_invocation(comment_body: str) -> CommandInvocation | None:
    lines = (comment_body or "").splitlines()
    first_line = lines[0].strip() if lines else ""
    if len(first_line) < 2 or not first_line.startswith("/"):
        return None
    tokens = tokenise(first_line[1:])
    if not tokens:
        return None
    return CommandInvocation(name=tokens[0], args=tuple(tokens[1:]))


class NonMatch(str, enum.Enum):
    NOT_A_COMMAND = "not_a_command"
    COMMAND_NOT_REGISTERED = "command_not_registered"
    WRONG_ISSUE_TYPE = "wrong_issue_type"
    INSUFFICIENT_PERMISSION = "insufficient_permission"


@dataclass(frozen=True)
class CommandMatch:
    definition: CommandDefinition | None = None
    candidates: tuple[CommandDefinition, ...] = ()
    reason: NonMatch | None = None
    message: str = ""
    is_help: bool = False


class CommandRegistry:
    def __init__(self, commands: Iterable[CommandDefinition]) -> None:
        self.commands = tuple(commands)

    def help_table(self, is_pull_request: bool) -> str:
        lines = ["", "> Command | Description", "> --- | ---", ">/help | Show this help message in comment"]
        for cmd in self.commands:
            if cmd.visible_for(is_pull_request):
                lines.append(f"> /{cmd.name} {cmd.usage} | {cmd.help}")
        return "\n".join(lines) + "\n"

    def select(self, invocation: CommandInvocation, is_pull_request: bool) -> CommandMatch:
        """Run the name and issue scope stages.

        Returns the surviving candidates, a help marker, or a non-match.
        """
        if invocation.name == HELP_COMMAND:
            return CommandMatch(is_help=True)

        candidates = [c for c in self.commands if c.enabled and c.name == invocation.name]
        logger.debug("command=%s matches on enable+name=%s", invocation.name, len(candidates))
        if not candidates:
            return CommandMatch(
                reason=NonMatch.COMMAND_NOT_REGISTERED,
                message=f"Command '{invocation.name}' is not registered for dispatch",
            )

        candidates = [c for c in candidates if c.visible_for(is_pull_request)]
        logger.debug("command=%s matches on issue_type=%s", invocation.name, len(candidates))
        if not candidates:
            issue_type = "pull request" if is_pull_request else "issue"
            return CommandMatch(
                reason=NonMatch.WRONG_ISSUE_TYPE,
                message=f"Command {invocation.name} is not configured for the issue type {issue_type}",
            )
        return CommandMatch(candidates=tuple(candidates))

    def narrow(
        self,
        invocation: CommandInvocation,
        candidates: Iterable[CommandDefinition],
        actor_permission: str,
    ) -> CommandMatch:
        """Run the permission stage and resolve the single definition."""
        survivors = [c for c in candidates if compare(actor_permission, c.permission)]
        logger.debug("command=%s matches on permission=%s", invocation.name, len(survivors))
        if not survivors:
            return CommandMatch(
                reason=NonMatch.INSUFFICIENT_PERMISSION,
                message=(
                    f"Command {invocation.name} is not configured for the user permission level {actor_permission}"
                ),
            )
        if len(survivors) > 1:
            raise AmbiguousCommand(
                f"more than 1 command ({len(survivors)}) matched '{invocation.name}', the configuration is ambiguous"
            )

        definition = survivors[0]
        if len(invocation.args) != definition.args:
            raise ArgumentCountMismatch(
                f"Required number of arguments for command {definition.name} is {definition.args}, "
                f"found {len(invocation.args)}"
            )
        return CommandMatch(definition=definition)

    def match(self, invocation: CommandInvocation, is_pull_request: bool, actor_permission: str) -> CommandMatch:
        selected = self.select(invocation, is_pull_request)
        if selected.is_help or selected.reason is not None:
            return selected
        return self.narrow(invocation, selected.candidates, actor_permission)
