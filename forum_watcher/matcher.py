"""
Item Matcher
Single-item relevance decision composed from the normalizer, the lexical
matcher and the semantic gate.
"""

import logging
from dataclasses import replace

from .lexical_matcher import lexical_match
from .models import MatchResult
from .query_context import QueryContext
from .semantic_gate import semantic_gate
from .text_normalizer import normalize

logger = logging.getLogger(__name__)


async def match_item(text: str, context: QueryContext) -> MatchResult:
    """Decide whether `text` matches `context` and explain why."""
    normalized = normalize(text or '')
    lexical = lexical_match(normalized, context)
    why = ' | '.join(lexical.reasons)

    if not lexical.passed:
        return MatchResult(False, why, 0.0)
    if not context.use_semantic:
        return MatchResult(True, why, 1.0)

    semantic = await semantic_gate(text or '', context)
    if semantic.reason:
        detail = semantic.reason
    elif semantic.passed:
        detail = f"Semantic score {semantic.score:.2f}"
    else:
        detail = f"Semantic score {semantic.score:.2f} below threshold"

    explanation = f"{why} | {detail}" if why else detail
    return MatchResult(semantic.passed, explanation, max(0.0, semantic.score))


def relax_context(context: QueryContext) -> QueryContext:
    """Fold must terms into optional: any one of must or optional is then enough."""
    optional = tuple(dict.fromkeys(list(context.optional) + list(context.must)))
    return replace(context, must=(), optional=optional)


async def match_comment(body: str, thread_title: str, context: QueryContext) -> MatchResult:
    """
    Match a comment with progressively relaxed rules.

    1. The body alone against the full context.
    2. If must terms exist, the body alone with must folded into optional.
    3. The thread title plus body against the original context, for comments
       that are only on topic in light of their thread.

    The first passing tier wins.
    """
    result = await match_item(body, context)
    if result.is_match:
        return result

    if context.must:
        result = await match_item(body, relax_context(context))
        if result.is_match:
            return result

    return await match_item(f"{thread_title or ''} {body}", context)
