"""Unit tests for core/validation.py and auth/validation.py -- pure functions."""

import pytest

from auth.validation import password_strength, validate_login, validate_registration
from core.validation import normalize_tags, validate_collection_data, validate_snippet_data, validate_tag

VALID = {"title": "t", "code": "c", "language": "python"}


class TestSnippetData:
    def test_valid(self):
        assert validate_snippet_data(VALID) == []

    def test_all_required_missing(self):
        assert validate_snippet_data({}) == [
            "Title is required",
            "Code content is required",
            "Programming language is required",
        ]

    def test_whitespace_counts_as_missing(self):
        assert validate_snippet_data({**VALID, "title": "   "}) == ["Title is required"]

    @pytest.mark.parametrize(
        "field, size, message",
        [
            ("title", 201, "Title must be less than 200 characters"),
            ("description", 2001, "Description must be less than 2000 characters"),
            ("code", 50001, "Code must be less than 50000 characters"),
        ],
    )
    def test_length_limits(self, field, size, message):
        assert validate_snippet_data({**VALID, field: "x" * size}) == [message]

    def test_limits_are_inclusive(self):
        assert validate_snippet_data({**VALID, "title": "x" * 200, "code": "x" * 50000}) == []

    def test_partial_only_checks_present_keys(self):
        assert validate_snippet_data({"description": "new"}, partial=True) == []
        assert validate_snippet_data({"code": ""}, partial=True) == ["Code content is required"]


class TestCollectionData:
    def test_valid(self):
        assert validate_collection_data({"name": "Utils", "path": [1, 2]}) == []

    def test_name_rules(self):
        assert validate_collection_data({"name": ""}) == ["Collection name is required"]
        assert validate_collection_data({"name": "x" * 101}) == ["Collection name must be 100 characters or less"]

    def test_depth(self):
        assert validate_collection_data({"name": "n", "path": [1, 2, 3]}, max_depth=3) == [
            "Collections cannot be nested more than 3 levels deep"
        ]


class TestTags:
    def test_normalizes(self):
        assert validate_tag("  React-Hooks ") == "react-hooks"

    @pytest.mark.parametrize(
        "tag, message",
        [
            (None, "Tag must be a non-empty string"),
            ("   ", "Tag cannot be empty"),
            ("x" * 51, "Tag must be less than 50 characters"),
            ("c++", "Tags can only contain letters, numbers, and hyphens"),
        ],
    )
    def test_rejects(self, tag, message):
        with pytest.raises(ValueError, match=message.replace("+", r"\+")):
            validate_tag(tag)

    def test_normalize_tags_dedupes_in_order(self):
        assert normalize_tags(["B", "a", "b", "A"]) == ["b", "a"]


class TestAuthValidation:
    def test_login_both_missing(self):
        assert [e.field for e in validate_login("", "")] == ["email", "password"]

    def test_login_ok(self):
        assert validate_login("a@b.co", "pw") == []

    def test_registration_order(self):
        errors = validate_registration("not-an-email", "short", "different")
        assert [(e.field, e.message) for e in errors] == [
            ("email", "Email address is invalid"),
            ("password", "Password must be at least 8 characters"),
            ("confirm_password", "Passwords do not match"),
        ]

    def test_registration_ok(self):
        assert validate_registration("ada@example.com", "longenough", "longenough") == []

    @pytest.mark.parametrize(
        "password, expected",
        [
            ("short", "weak"),
            ("alllowercase", "weak"),
            ("lowercase123", "medium"),
            ("Mixed-Case-99", "strong"),
        ],
    )
    def test_password_strength(self, password, expected):
        assert password_strength(password) == expected
