"""Tests for right matching and effect evaluation."""

import pytest

from app.features.rbac.engine import DecisionReason, evaluate_effects, matches
from app.features.rbac.models import Effect, Grant


class TestMatches:
    """Tests for matches."""

    @pytest.mark.parametrize("right", ["a", "backoffice:dashboard:access", "x.y(z)+"])
    def test_reflexive(self, right: str) -> None:
        assert matches(right, right) is True

    def test_prefix_wildcard(self) -> None:
        assert matches("backoffice:dashboard:access", "backoffice:*") is True
        assert matches("users:manage", "backoffice:*") is False

    def test_star_matches_anything(self) -> None:
        assert matches("anything", "*") is True
        assert matches("a:b:c", "*") is True

    def test_star_matches_empty_run(self) -> None:
        assert matches("backoffice:", "backoffice:*") is True

    def test_inner_wildcard(self) -> None:
        assert matches("file_manager:files:read", "file_manager:*:read") is True
        assert matches("file_manager:files:write", "file_manager:*:read") is False

    def test_whole_string_must_match(self) -> None:
        assert matches("xbackoffice:a", "backoffice:*") is False

    def test_regex_characters_are_literal(self) -> None:
        assert matches("a.b", "a.b") is True
        assert matches("axb", "a.b") is False
        assert matches("axb", "a.*") is False
        assert matches("a.xyz", "a.*") is True

    def test_no_wildcard_requires_equality(self) -> None:
        assert matches("admin_panel__users:read", "admin_panel__users") is False

    def test_case_sensitive(self) -> None:
        assert matches("Backoffice:x", "backoffice:*") is False

    def test_trims_whitespace(self) -> None:
        assert matches("  backoffice:x ", " backoffice:* ") is True

    @pytest.mark.parametrize("required,pattern", [("", "*"), ("x", ""), (None, "*"), ("x", None), ("  ", "*")])
    def test_empty_never_matches(self, required, pattern) -> None:
        assert matches(required, pattern) is False


class TestEvaluateEffects:
    """Tests for evaluate_effects."""

    def test_empty_entries_no_match(self) -> None:
        result = evaluate_effects([], "anything")
        assert result.allowed is False
        assert result.reason == DecisionReason.NO_MATCH
        assert result.matched == []

    def test_none_entries_no_match(self) -> None:
        assert evaluate_effects(None, "anything").reason == DecisionReason.NO_MATCH

    def test_empty_required_right(self) -> None:
        result = evaluate_effects([{"right": "*", "effect": "allow"}], "")
        assert result.allowed is False
        assert result.reason == DecisionReason.INVALID_REQUIRED_RIGHT

    def test_allow(self) -> None:
        entry = {"right": "backoffice:*", "effect": "allow"}
        result = evaluate_effects([entry], "backoffice:dashboard:access")
        assert result.allowed is True
        assert result.reason == DecisionReason.ALLOWED
        assert result.matched == [entry]

    @pytest.mark.parametrize("order", [0, 1])
    def test_deny_overrides_allow_in_any_order(self, order: int) -> None:
        entries = [{"right": "*", "effect": "allow"}, {"right": "secret", "effect": "deny"}]
        if order:
            entries.reverse()

        denied = evaluate_effects(entries, "secret")
        assert denied.allowed is False
        assert denied.reason == DecisionReason.DENIED
        assert denied.matched == [{"right": "secret", "effect": "deny"}]

        allowed = evaluate_effects(entries, "public")
        assert allowed.allowed is True
        assert allowed.reason == DecisionReason.ALLOWED

    def test_wildcard_deny_beats_exact_allow(self) -> None:
        entries = [
            {"right": "admin_panel__users:read", "effect": "allow"},
            {"right": "admin_panel__users:*", "effect": "deny"},
        ]
        assert evaluate_effects(entries, "admin_panel__users:read").reason == DecisionReason.DENIED

    def test_missing_or_unknown_effect_counts_as_allow(self) -> None:
        assert evaluate_effects([{"right": "x"}], "x").allowed is True
        assert evaluate_effects([{"right": "x", "effect": "maybe"}], "x").allowed is True

    def test_empty_entry_right_never_matches(self) -> None:
        result = evaluate_effects([{"right": "", "effect": "deny"}, {"effect": "deny"}, None], "x")
        assert result.reason == DecisionReason.NO_MATCH

    def test_accepts_orm_rows(self) -> None:
        grants = [
            Grant(right="backoffice:*", effect=Effect.ALLOW),
            Grant(right="backoffice:secret", effect=Effect.DENY),
        ]
        assert evaluate_effects(grants, "backoffice:dashboard:access").allowed is True
        result = evaluate_effects(grants, "backoffice:secret")
        assert result.reason == DecisionReason.DENIED
        assert result.matched == [grants[1]]
