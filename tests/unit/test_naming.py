"""Unit tests for naming module."""

import pytest

from vdcctl.naming import (
    MAX_NAME_LENGTH,
    is_valid_name,
    sanitize_label_value,
    sanitize_name,
)


class TestSanitizeName:
    """Tests for DNS-label name sanitization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("web-01", "web-01"),
            ("My_VM!!", "my-vm"),
            ("  Web   Server  ", "web-server"),
            ("--edge--", "edge"),
            ("a..b", "a-b"),
        ],
    )
    def test_sanitize(self, raw, expected):
        """Test common inputs."""
        assert sanitize_name(raw) == expected

    @pytest.mark.parametrize("raw", ["", "!!!", "---", "___"])
    def test_sanitize_empty_result_falls_back(self, raw):
        """Test that input with no valid characters yields the default name."""
        assert sanitize_name(raw) == "vm"

    def test_sanitize_truncates(self):
        """Test long names are truncated without a trailing hyphen."""
        name = sanitize_name("a" * 62 + "-bbbb")
        assert len(name) <= MAX_NAME_LENGTH
        assert not name.endswith("-")

    @pytest.mark.parametrize("raw", ["Prod DB #1", "x" * 200, "ÜNÏCÖDE", "a-" * 40])
    def test_sanitize_always_valid(self, raw):
        """Test every result is a valid DNS label."""
        assert is_valid_name(sanitize_name(raw))


class TestSanitizeLabelValue:
    """Tests for label value sanitization."""

    def test_keeps_allowed_characters(self):
        """Test that dots, underscores and case survive."""
        assert sanitize_label_value("Vdc_1.prod") == "Vdc_1.prod"

    def test_replaces_invalid_runs(self):
        """Test invalid runs collapse to one hyphen."""
        assert sanitize_label_value("a b/c") == "a-b-c"

    def test_empty_falls_back(self):
        """Test empty input yields a placeholder."""
        assert sanitize_label_value("") == "unknown"
        assert sanitize_label_value("///") == "unknown"

    def test_truncates(self):
        """Test long values are capped."""
        assert len(sanitize_label_value("v" * 100)) == MAX_NAME_LENGTH
