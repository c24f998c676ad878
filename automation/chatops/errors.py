"""Failure types for the chatops dispatcher.

Expected non-matches (unknown command, wrong issue type, missing permission)
are not exceptions; see ``commands.NonMatch``.
"""

from __future__ import annotations


class ChatOpsError(Exception):
    """Base class for failures that abort handling of an event."""


class ConfigError(ChatOpsError):
    """Raised when the configuration or a route entry is invalid."""


class InvalidLevel(ChatOpsError):
    """Raised when a permission level name is not part of the lattice."""


class AmbiguousCommand(ChatOpsError):
    """Raised when more than one command definition survives matching."""


class ArgumentCountMismatch(ChatOpsError):
    """Raised when a command is invoked with the wrong number of arguments."""


class UnresolvableRef(ChatOpsError):
    """Raised when a push/pull_request event has no branch/tag or no sha."""


class AmbiguousStatus(ChatOpsError):
    """Raised when a completed run maps to more than one commit status."""


class GitHubError(ChatOpsError):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
