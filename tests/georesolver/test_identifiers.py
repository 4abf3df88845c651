# SPDX-License-Identifier: MIT
"""Tests for natural-key normalization."""

import re

import pytest

from georesolver.normalizers import composite_identifier, normalize_identifier


SAMPLES = [
    "DE-BY",
    "__Paris__FR_",
    "Île-de-France",
    "a b  c",
    "___",
    "",
    "Москва",
    "x__y___z",
    "RU-MOW",
    "São_Paulo_BR",
    "!!!",
    "_lead",
    "trail_",
]


class TestNormalizeIdentifier:
    """Test the identifier normalizer contract."""

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_output_alphabet(self, raw):
        """Output only contains [A-Za-z0-9_]."""
        assert re.fullmatch(r"[A-Za-z0-9_]*", normalize_identifier(raw))

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_no_double_or_edge_underscores(self, raw):
        result = normalize_identifier(raw)
        assert "__" not in result
        assert not result.startswith("_")
        assert not result.endswith("_")

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_idempotent(self, raw):
        once = normalize_identifier(raw)
        assert normalize_identifier(once) == once

    def test_strips_invalid_characters(self):
        assert normalize_identifier("DE-BY") == "DEBY"
        assert normalize_identifier("a b  c") == "abc"

    def test_collapses_and_trims_underscores(self):
        assert normalize_identifier("__Paris__FR_") == "Paris_FR"

    def test_all_invalid_is_empty(self):
        """All-invalid input yields the empty 'no identifier' value."""
        assert normalize_identifier("Москва") == ""
        assert normalize_identifier("!!!") == ""
        assert normalize_identifier(None) == ""


class TestCompositeIdentifier:
    def test_name_and_country(self):
        assert composite_identifier("New York", "US") == "NewYork_US"

    def test_missing_part_gives_empty(self):
        assert composite_identifier(None, "US") == ""
        assert composite_identifier("Paris", None) == ""
