"""
Lexical Matcher
Exclude, must and optional keyword checks plus an informational proximity bonus.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Sequence

from .models import NormalizedText
from .query_context import QueryContext

PROXIMITY_WINDOW = 6


@dataclass
class LexicalResult:
    passed: bool
    reasons: List[str] = field(default_factory=list)


@lru_cache(maxsize=1024)
def build_term_pattern(term: str) -> re.Pattern:
    """
    Case-insensitive pattern for a user term.

    Multi-word terms are literal phrases with flexible whitespace; single words
    must stand alone. Metacharacters are always escaped.
    """
    words = term.split()
    if len(words) > 1:
        return re.compile(r'\s+'.join(re.escape(word) for word in words), re.IGNORECASE)
    return re.compile(rf'(?<!\w){re.escape(term.strip())}(?!\w)', re.IGNORECASE)


def term_matches(term: str, text: str) -> bool:
    return build_term_pattern(term).search(text) is not None


def proximity_score(tokens: Sequence[str], terms: Sequence[str], window: int = PROXIMITY_WINDOW) -> int:
    """Best `window - distance + 1` over distinct terms whose first words occur close together."""
    positions: Dict[str, List[int]] = {}
    first_words = {term: term.split()[0].lower() for term in terms if term.split()}

    for index, token in enumerate(tokens):
        token = token.lower()
        for term, first in first_words.items():
            if token == first:
                positions.setdefault(term, []).append(index)

    found = list(positions)
    best = 0
    for i in range(len(found)):
        for j in range(i + 1, len(found)):
            for a in positions[found[i]]:
                for b in positions[found[j]]:
                    distance = abs(a - b)
                    if distance <= window:
                        best = max(best, window - distance + 1)
    return best


def lexical_match(normalized: NormalizedText, context: QueryContext) -> LexicalResult:
    """Run the exclude, must, optional and proximity passes in order."""
    text = normalized.plain_text

    for term in context.exclude:
        if term_matches(term, text):
            return LexicalResult(False, [f"Excluded: {term}"])

    reasons = []
    for term in context.must:
        if not term_matches(term, text):
            return LexicalResult(False, [f"Missing must: {term}"])
        reasons.append(f"Must hit: {term}")

    optional_hits = [term for term in context.optional if term_matches(term, text)]
    # Optional terms only gate when there are no must terms
    if context.optional and not optional_hits and not context.must:
        return LexicalResult(False, ["No optional keywords matched"])
    if optional_hits:
        reasons.append(f"Optional hits: {', '.join(optional_hits)}")

    bonus = proximity_score(normalized.tokens, list(context.must) + list(context.optional))
    if bonus > 0:
        reasons.append(f"Proximity bonus: {bonus}")

    return LexicalResult(True, reasons)
