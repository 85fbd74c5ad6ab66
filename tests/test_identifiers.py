"""
Unit tests for identifier normalization.

Tests prefix handling, alias derivation and lookup-form ordering.
"""

import pytest

from usage_reconciler.core.identifiers import (
    IdentityPolicy,
    alias_form,
    candidate_forms,
    ensure_prefix,
    strip_prefix,
)


class TestPrefixHelpers:
    """Test strip_prefix and ensure_prefix."""

    def test_strip_prefix_removes_leading_prefix(self):
        assert strip_prefix("user_abc") == "abc"

    def test_strip_prefix_ignores_inner_occurrence(self):
        """Only a leading prefix is removed."""
        assert strip_prefix("abc_user_x") == "abc_user_x"

    def test_ensure_prefix_adds_once(self):
        assert ensure_prefix("abc") == "user_abc"
        assert ensure_prefix("user_abc") == "user_abc"


class TestCandidateForms:
    """Test ordered lookup forms."""

    def test_raw_identifier(self):
        assert candidate_forms("abc") == ["abc", "user_abc"]

    def test_prefixed_identifier(self):
        assert candidate_forms("user_abc") == ["user_abc", "abc"]

    def test_email_identifier(self):
        assert candidate_forms("jane@example.com") == [
            "jane@example.com",
            "user_jane@example.com",
        ]

    def test_empty_identifier_is_singleton(self):
        assert candidate_forms("") == [""]

    def test_non_text_identifier_is_singleton(self):
        assert candidate_forms(None) == [None]

    def test_reserved_identifier_is_singleton(self):
        assert candidate_forms("test_runner") == ["test_runner"]

    def test_bare_prefix_drops_empty_form(self):
        assert candidate_forms("user_") == ["user_"]

    def test_custom_policy(self):
        policy = IdentityPolicy(alias_prefix="acct-", reserved_prefixes=("synthetic-",))
        assert policy.candidate_forms("42") == ["42", "acct-42"]
        assert policy.candidate_forms("synthetic-1") == ["synthetic-1"]


class TestAliasForm:
    """Test alias derivation for dual writes."""

    def test_unprefixed_gets_prefixed_alias(self):
        assert alias_form("abc") == "user_abc"

    def test_prefixed_gets_unprefixed_alias(self):
        assert alias_form("user_abc") == "abc"

    def test_reserved_marker_has_no_alias(self):
        assert alias_form("test_abc") is None

    def test_missing_identifier_has_no_alias(self):
        assert alias_form(None) is None
        assert alias_form("") is None

    def test_bare_prefix_has_no_alias(self):
        """An alias that would be empty is not written."""
        assert alias_form("user_") is None

    def test_alias_is_an_involution(self):
        for identifier in ("abc", "user_abc", "jane@example.com"):
            assert alias_form(alias_form(identifier)) == identifier


class TestPolicyValidation:
    """Test IdentityPolicy construction."""

    def test_empty_prefix_rejected(self):
        with pytest.raises(ValueError, match="alias_prefix"):
            IdentityPolicy(alias_prefix="")

    def test_empty_unknown_identifier_rejected(self):
        with pytest.raises(ValueError, match="unknown_identifier"):
            IdentityPolicy(unknown_identifier="")
