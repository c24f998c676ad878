"""Include/ignore glob matching used by routes and file-change rules."""

from __future__ import annotations

from dataclasses import dataclass, field

from wcmatch import glob

from automation.chatops.errors import ConfigError

# `*` stays within one path segment, `**` spans zero or more directories
GLOB_FLAGS = glob.GLOBSTAR | glob.BRACE | glob.EXTGLOB | glob.CASE


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    matches: list[str] = field(default_factory=list)


def glob_filter(candidates: list[str], patterns: list[str]) -> list[str]:
    """Return the candidates matched by any pattern, in candidate order."""
    if not patterns:
        return []
    return [c for c in candidates if glob.globmatch(c, patterns, flags=GLOB_FLAGS)]


def match(candidates: list[str], patterns: list[str], ignore: bool) -> MatchResult:
    hits = glob_filter(candidates, patterns)
    if not ignore and hits:
        return MatchResult(True, hits)
    if ignore and len(hits) != len(candidates):
        return MatchResult(True, [c for c in candidates if c not in hits])
    return MatchResult(False, [])


def match_axis(
    candidates: list[str] | None,
    patterns: list[str] | None,
    ignore_patterns: list[str] | None,
) -> MatchResult:
    """Match one axis configured with either ``patterns`` or ``ignore_patterns``.

    With neither set every candidate passes. A missing candidate list never
    matches a configured axis.
    """
    if patterns is not None and ignore_patterns is not None:
        raise ConfigError("cannot set pattern and ignore pattern at the same time")
    if patterns is None and ignore_patterns is None:
        return MatchResult(True, list(candidates or []))
    if candidates is None:
        return MatchResult(False, [])
    if patterns is not None:
        return match(candidates, patterns, ignore=False)
    return match(candidates, ignore_patterns or [], ignore=True)


def grants(candidates: list[str], if_include: list[str], if_not_include: list[str]) -> bool:
    """File-change grant rule for labels and statuses.

    Granted when no list is set, when ``if_include`` hits any candidate, or
    when ``if_not_include`` is set and hits none.
    """
    if not if_include and not if_not_include:
        return True
    if if_include and glob_filter(candidates, if_include):
        return True
    return bool(if_not_include) and not glob_filter(candidates, if_not_include)
