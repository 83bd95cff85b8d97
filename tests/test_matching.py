"""
Tests for product-name matching.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from grocy_mcp.matching import rank_products

CATALOGUE = [
    {"id": 1, "name": "Apple juice"},
    {"id": 2, "name": "Apple"},
    {"id": 3, "name": "Banana"},
    {"id": 4, "name": "Bread"},
    {"id": 5, "name": "Milk"},
]


class TestStrictPass:
    """Test the strict matching pass."""

    def test_exact_match_ranks_first(self):
        """Test an exact (case-insensitive) name beats a substring hit."""
        matches = rank_products("APPLE", CATALOGUE)
        assert [m["product"]["id"] for m in matches][:2] == [2, 1]
        assert matches[0]["score"] == 1.0
        assert matches[0]["pass"] == "strict"

    def test_typo_still_matches(self):
        """Test a near miss is found by similarity."""
        matches = rank_products("banan", CATALOGUE)
        assert matches[0]["product"]["name"] == "Banana"

    def test_limit(self):
        """Test the number of matches is capped."""
        catalogue = [{"id": i, "name": f"Cheese {i}"} for i in range(20)]
        assert len(rank_products("cheese", catalogue, limit=3)) == 3


class TestPermissivePass:
    """Test the fallback pass."""

    def test_token_fallback(self):
        """Test a longer query matches on a shared word when nothing matches strictly."""
        matches = rank_products("whole grain bread", CATALOGUE)
        assert matches[0]["product"]["name"] == "Bread"
        assert matches[0]["pass"] == "permissive"

    def test_no_match(self):
        """Test unrelated queries find nothing."""
        assert rank_products("xyzzy", CATALOGUE) == []


class TestEdgeCases:
    """Test degenerate input."""

    def test_blank_query(self):
        """Test a blank query matches nothing."""
        assert rank_products("   ", CATALOGUE) == []

    def test_empty_catalogue(self):
        """Test an empty catalogue matches nothing."""
        assert rank_products("milk", []) == []

    def test_products_without_names_are_ignored(self):
        """Test catalogue rows without a name never match."""
        assert rank_products("milk", [{"id": 9}, {"id": 5, "name": "Milk"}])[0]["product"]["id"] == 5
