"""Tests for citation marker helpers and the style registry."""

import pytest

from citesync.core.models import ReferenceEntry
from citesync.core.styles import StyleRegistry, default_style_normalizer
from citesync.exceptions import ConfigurationError
from citesync.utils.citation_text import (
    citation_format_variants,
    fingerprint,
    normalize_for_matching,
    parse_citation_numbers,
    strip_numbering_label,
)


class TestCitationNumbers:
    """Numeric marker parsing."""

    @pytest.mark.parametrize("text,expected", [
        ("(1)", [1]),
        ("[2, 1]", [1, 2]),
        ("(3-5)", [3, 4, 5]),
        ("[2–4, 7]", [2, 3, 4, 7]),
        ("(Smith, 2020)", []),
    ])
    def test_parse(self, text, expected):
        """Test numeric marker parsing."""
        assert parse_citation_numbers(text) == expected

    def test_wide_range_is_clamped(self):
        """Test wide ranges are clamped."""
        assert len(parse_citation_numbers("[1-999999]", max_range=100)) == 100

    def test_variants(self):
        """Test equivalent spellings of a numeric marker."""
        variants = citation_format_variants("(1, 2)")
        assert "(1, 2)" not in variants
        assert variants[:3] == ["[1, 2]", "[1,2]", "(1,2)"]
        assert "[1–2]" in variants

    def test_non_numeric_has_no_variants(self):
        """Test author-year markers get no variants."""
        assert citation_format_variants("(Smith, 2020)") == []


class TestFingerprint:
    """Normalization of bibliography text."""

    def test_strip_numbering_label(self):
        """Test numbering labels are stripped."""
        assert strip_numbering_label("[12] Smith") == "Smith"
        assert strip_numbering_label("3. Smith") == "Smith"
        assert strip_numbering_label("Smith 3.") == "Smith 3."

    def test_normalize(self):
        """Test matching normalization."""
        assert normalize_for_matching("  Ｓmith, J.\n Title ") == "smith, j. title"

    def test_fingerprint_length(self):
        """Test fingerprints are bounded."""
        assert fingerprint("(1) Smith, J. (2020). A rather long title indeed.", 10) == "smith, j. "


class TestStyleRegistry:
    """Style label to column resolution."""

    def test_normalizer(self):
        """Test the default style normalizer."""
        assert default_style_normalizer("APA 7th edition") == "apa"
        assert default_style_normalizer("Chicago17") == "chicago"
        assert default_style_normalizer("") == ""

    def test_column_for(self):
        """Test style labels resolve to columns."""
        registry = StyleRegistry.default()
        assert registry.column_for("APA7") == "formatted_apa"
        assert registry.column_for("vancouver") == "formatted_vancouver"

    def test_unknown_style(self):
        """Test an unknown style raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            StyleRegistry.default().column_for("Harvard")

    def test_default_style_and_custom_registration(self):
        """Test the default style and custom registration."""
        registry = StyleRegistry({}, normalizer=str.lower, default_style="Harvard")
        registry.register("harvard", "formatted_harvard")

        assert registry.column_for(None) == "formatted_harvard"
        assert registry.styles == ("harvard",)

    def test_coverage(self):
        """Test counting entries with and without text."""
        registry = StyleRegistry.default()
        entries = [
            ReferenceEntry(id="a", document_id="d", formatted={"formatted_apa": "Alpha."}),
            ReferenceEntry(id="b", document_id="d"),
        ]
        assert registry.coverage(entries, "APA") == (1, 1)
