"""Unit tests for auth/scopes.py -- scope merging and parsing."""

from __future__ import annotations

import pytest

from auth.scopes import merge_scopes, parse_scopes, parse_token_scopes

_SETS = [
    (set(), set()),
    ({"repo"}, set()),
    (set(), {"read:user"}),
    ({"repo", "user:email"}, {"user:email", "read:org"}),
    ({"b", "a", "c"}, {"c", "d", "a"}),
]


class TestMergeScopes:
    def test_union_is_sorted(self) -> None:
        assert merge_scopes(["repo"], ["read:user"]) == ["read:user", "repo"]

    def test_duplicates_removed(self) -> None:
        assert merge_scopes(["repo", "repo"], ["repo", "api"]) == ["api", "repo"]

    def test_empty_inputs(self) -> None:
        assert merge_scopes([], []) == []

    @pytest.mark.parametrize("a,b", _SETS)
    def test_commutative(self, a: set, b: set) -> None:
        assert merge_scopes(a, b) == merge_scopes(b, a)

    @pytest.mark.parametrize("a,b", _SETS)
    def test_idempotent(self, a: set, b: set) -> None:
        merged = merge_scopes(a, b)
        assert merge_scopes(merged, b) == merged

    @pytest.mark.parametrize("a,b", _SETS)
    def test_result_sorted_without_duplicates(self, a: set, b: set) -> None:
        merged = merge_scopes(a, b)
        assert merged == sorted(set(merged))
        assert set(merged) == a | b


class TestParseScopes:
    def test_comma_separated_trimmed(self) -> None:
        assert parse_scopes(" repo , read:user") == ["repo", "read:user"]

    def test_empty_tokens_dropped(self) -> None:
        assert parse_scopes("repo,,  ,api,") == ["repo", "api"]

    def test_missing_value(self) -> None:
        assert parse_scopes(None) == []
        assert parse_scopes("") == []

    def test_order_preserved(self) -> None:
        """Override requests are forwarded exactly as asked."""
        assert parse_scopes("write:org,api,repo") == ["write:org", "api", "repo"]


class TestParseTokenScopes:
    def test_github_comma_format(self) -> None:
        assert parse_token_scopes("repo,user:email") == ["repo", "user:email"]

    def test_space_format(self) -> None:
        assert parse_token_scopes("read_user api") == ["read_user", "api"]

    def test_missing(self) -> None:
        assert parse_token_scopes(None) == []
