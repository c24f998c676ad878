from __future__ import annotations

import pytest

from automation.chatops.errors import ConfigError
from automation.chatops.matching import MatchResult, grants, match_axis


def test_match_patterns_keep_intersection() -> None:
    assert match_axis(["a.go", "b.md"], ["*.go"], None) == MatchResult(True, ["a.go"])


def test_ignore_patterns_keep_survivors() -> None:
    assert match_axis(["a.go", "b.md"], None, ["*.md"]) == MatchResult(True, ["a.go"])


def test_ignore_patterns_excluding_everything_do_not_match() -> None:
    assert match_axis(["a.md"], None, ["*.md"]) == MatchResult(False, [])


def test_no_patterns_always_match() -> None:
    assert match_axis(["main"], None, None) == MatchResult(True, ["main"])
    assert match_axis(None, None, None) == MatchResult(True, [])


def test_missing_candidates_never_match_a_configured_axis() -> None:
    assert not match_axis(None, ["main"], None).matched
    assert not match_axis(None, None, ["main"]).matched


def test_patterns_and_ignores_together_are_rejected() -> None:
    with pytest.raises(ConfigError):
        match_axis(["main"], ["main"], ["dev"])


def test_no_hit_in_match_mode() -> None:
    assert match_axis(["docs/readme.md"], ["backend/*"], None) == MatchResult(False, [])


def test_grants_rule() -> None:
    files = ["backend/api.py", "docs/index.md"]
    assert grants(files, [], [])
    assert grants(files, ["backend/*"], [])
    assert not grants(files, ["frontend/*"], [])
    assert grants(files, [], ["frontend/*"])
    assert not grants(files, [], ["docs/*"])


@pytest.mark.parametrize(
    "candidate,pattern,expected",
    [
        ("README.md", "**/*.md", True),
        ("docs/guide/intro.md", "**/*.md", True),
        ("docs/a/b.md", "docs/*", False),
        ("docs/a/b.md", "docs/**", True),
        ("feature/login", "*", False),
        ("feature/login", "feature/*", True),
        ("src/app.js", "src/*.{ts,js}", True),
        ("Docs/index.md", "docs/*", False),
    ],
)
def test_globs_are_path_aware(candidate: str, pattern: str, expected: bool) -> None:
    assert match_axis([candidate], [pattern], None).matched is expected


def test_globstar_ignore_covers_root_files() -> None:
    assert match_axis(["README.md", "a.go"], None, ["**/*.md"]) == MatchResult(True, ["a.go"])
