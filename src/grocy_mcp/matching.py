"""Approximate product-name matching for ``lookup_product``."""

from difflib import SequenceMatcher
from typing import Any

STRICT_CUTOFF = 0.6
PERMISSIVE_CUTOFF = 0.3


def _ratio(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


def _strict_score(query: str, name: str) -> float:
    if query == name:
        return 1.0
    if query in name:
        # Substring hits always pass, ranked above pure similarity.
        return max(0.9, _ratio(query, name))
    return _ratio(query, name)


def _token_score(query: str, name: str) -> float:
    """Best similarity between any query token and any name token."""
    q_tokens = query.split()
    n_tokens = name.split()
    if not q_tokens or not n_tokens:
        return 0.0
    return max(_ratio(q, n) for q in q_tokens for n in n_tokens)


def rank_products(query: str, products: list[dict[str, Any]], limit: int = 5) -> list[dict[str, Any]]:
    """Return up to ``limit`` products ranked by name similarity to ``query``.

    A strict pass runs first; only if it finds nothing does a token-level
    pass with a lower cutoff run. Each match is ``{"product", "score", "pass"}``.
    """
    query = (query or "").strip().lower()
    if not query or not products:
        return []

    named = [(p, str(p.get("name") or "").lower()) for p in products]

    matches = [
        (score, p) for p, name in named
        if name and (score := _strict_score(query, name)) >= STRICT_CUTOFF
    ]
    pass_name = "strict"
    if not matches:
        matches = [
            (score, p) for p, name in named
            if name and (score := _token_score(query, name)) >= PERMISSIVE_CUTOFF
        ]
        pass_name = "permissive"

    matches.sort(key=lambda m: m[0], reverse=True)
    return [
        {"product": p, "score": round(score, 3), "pass": pass_name}
        for score, p in matches[:limit]
    ]
