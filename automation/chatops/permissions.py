"""Permission level orderings.

Command definitions are gated with the six repository roles. Raw client
authorization checks use the four levels reported by the collaborator
permission endpoint.
"""

from __future__ import annotations

import logging
from typing import Mapping

from automation.chatops.errors import InvalidLevel

logger = logging.getLogger("chatops-dispatcher.permissions")

COMMAND_LEVELS: Mapping[str, int] = {
    "none": 1,
    "read": 2,
    "triage": 3,
    "write": 4,
    "maintain": 5,
    "admin": 6,
}

CLIENT_LEVELS: Mapping[str, int] = {
    "none": 1,
    "read": 2,
    "write": 3,
    "admin": 4,
}


def compare(actual: str, required: str, levels: Mapping[str, int] = COMMAND_LEVELS) -> bool:
    """Return True when ``actual`` meets or exceeds ``required``."""
    for name in (actual, required):
        if name not in levels:
            raise InvalidLevel(f"'{name}' is not a valid permission level (expected one of {', '.join(levels)})")
    logger.debug("permission actual=%s(%s) required=%s(%s)", actual, levels[actual], required, levels[required])
    return levels[actual] >= levels[required]


def client_allows(actual: str, required: str) -> bool:
    return compare(actual, required, CLIENT_LEVELS)
