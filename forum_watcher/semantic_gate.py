"""
Semantic Gate
Embedding similarity check layered on top of the lexical pass.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .embeddings import embed_text
from .query_context import QueryContext

logger = logging.getLogger(__name__)


@dataclass
class SemanticResult:
    passed: bool
    score: float = 0.0
    reason: Optional[str] = None


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine of two vectors over their common length; 0 for missing or zero vectors."""
    if a is None or b is None:
        return 0.0
    size = min(len(a), len(b))
    if size == 0:
        return 0.0

    va = np.asarray(a[:size], dtype=float)
    vb = np.asarray(b[:size], dtype=float)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    # float error can push identical vectors just past 1
    return max(-1.0, min(1.0, similarity))


async def semantic_gate(text: str, context: QueryContext) -> SemanticResult:
    """Pass iff the item embedding is close enough to the query intent."""
    if not context.use_semantic:
        return SemanticResult(True, 0.0)

    if context.embedder is None:
        return SemanticResult(False, 0.0, "Semantic backend unavailable")

    query_vector = context.feature_embedding
    if not query_vector:
        intent = ', '.join(list(context.must) + list(context.optional))
        if not intent:
            return SemanticResult(False, 0.0, "No semantic intent")
        try:
            query_vector = await embed_text(context.embedder, intent)
        except Exception as e:
            logger.warning(f"Intent embedding failed: {e}")
            return SemanticResult(False, 0.0, "Semantic embedding failed")

    try:
        item_vector = await embed_text(context.embedder, text)
    except Exception as e:
        logger.warning(f"Item embedding failed: {e}")
        return SemanticResult(False, 0.0, "Semantic embedding failed")

    score = cosine_similarity(query_vector, item_vector)
    return SemanticResult(score >= context.semantic_threshold, score)
