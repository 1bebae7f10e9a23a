"""
Query Context Builder
Turns a raw must/optional/exclude query into the immutable context every
crawler worker matches against.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import WatcherSettings, load_settings
from .embeddings import create_embedder, embed_text
from .errors import QueryError
from .text_normalizer import normalize_basic

logger = logging.getLogger(__name__)

DOMAIN_SYNONYMS: Dict[str, List[str]] = {
    'brand kit': ['brand assets', 'brand styles', 'brand guidelines', 'brand library', 'branding kit'],
    'branding': ['brand kit', 'brand assets', 'brand styles'],
    'logo': ['logomark', 'brand logo'],
    'font': ['typeface', 'typography', 'text style'],
    'color palette': ['brand colors', 'theme colors', 'palette'],
    'caption': ['subtitles', 'auto captions', 'transcript'],
    'pdf': ['portable document', 'pdf export', 'pdf import'],
    'background removal': ['remove background', 'bg removal', 'background eraser'],
    'export': ['download', 'save as', 'render'],
    'resize': ['resizing', 'scale', 'dimensions'],
    'watermark': ['logo overlay', 'stamp'],
    'compress': ['compression', 'reduce size'],
    'crop': ['trim'],
    'merge': ['combine', 'append'],
    'collaborate': ['share', 'invite', 'comments'],
    'template': ['preset', 'layout template', 'design template'],
}


def _close_synonyms(table: Dict[str, List[str]]) -> Dict[str, Tuple[str, ...]]:
    """
    Fold in the synonyms of synonyms that are themselves table keys.

    Expansion stays one level deep at query time; closing the table up front is
    what makes expanding an already expanded set a no-op.
    """
    closed = {}
    for key in table:
        reachable: List[str] = []
        pending = list(table[key])
        while pending:
            term = pending.pop(0)
            if term == key or term in reachable:
                continue
            reachable.append(term)
            pending.extend(table.get(term, []))
        closed[key] = tuple(reachable)
    return closed


# Only 'branding' changes: it lists 'brand kit' and so gains its synonyms
_SYNONYMS = _close_synonyms(DOMAIN_SYNONYMS)


@dataclass(frozen=True)
class QueryContext:
    """Expanded query shared read-only by all workers of one crawl."""
    must: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    use_synonyms: bool = False
    use_semantic: bool = False
    feature_text: str = ''
    feature_embedding: Optional[Tuple[float, ...]] = None
    semantic_threshold: float = 0.78
    embedder: Any = field(default=None, compare=False, repr=False)


def _uniq(terms: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(terms))


def expand_with_synonyms(terms: Iterable[str], use_synonyms: bool) -> Tuple[str, ...]:
    """Add table synonyms for each whole term (case-insensitive) and deduplicate."""
    if not use_synonyms:
        return _uniq(terms)

    expanded: List[str] = []
    for term in terms:
        expanded.append(term)
        expanded.extend(_SYNONYMS.get(term.lower(), ()))
    return _uniq(expanded)


def _read_terms(raw_query: Mapping[str, Any], key: str) -> List[str]:
    value = raw_query.get(key)
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise QueryError(f"'{key}' must be a list of strings")

    terms = []
    for term in value:
        if not isinstance(term, str):
            raise QueryError(f"'{key}' contains a non-string term: {term!r}")
        term = term.strip()
        if term:
            terms.append(term)
    return terms


def _read_flag(raw_query: Mapping[str, Any], key: str, alias: str) -> bool:
    return bool(raw_query.get(key, raw_query.get(alias, False)))


async def build_query_context(
    raw_query: Mapping[str, Any],
    settings: Optional[WatcherSettings] = None,
    embedder=None,
) -> QueryContext:
    """
    Build the matching context for one crawl.

    Semantic mode resolves an embedding backend (the given `embedder`, or one
    created from settings) and eagerly embeds the feature description. Any
    failure there is logged and leaves the context without an embedding; only
    malformed query structure raises QueryError.
    """
    if not isinstance(raw_query, Mapping):
        raise QueryError("Query must be a mapping")

    settings = settings or load_settings()
    use_synonyms = _read_flag(raw_query, 'use_synonyms', 'useSynonyms')
    use_semantic = _read_flag(raw_query, 'use_semantic', 'useSemantic')

    feature_raw = raw_query.get('feature_text', raw_query.get('featureDef')) or ''
    if not isinstance(feature_raw, str):
        raise QueryError("'feature_text' must be a string")
    feature_text = normalize_basic(feature_raw)

    # legacy {'keywords': [...]} queries are all must terms
    must_terms = _read_terms(raw_query, 'must') + _read_terms(raw_query, 'keywords')
    must = expand_with_synonyms(must_terms, use_synonyms)
    optional = expand_with_synonyms(_read_terms(raw_query, 'optional'), use_synonyms)
    exclude = expand_with_synonyms(_read_terms(raw_query, 'exclude'), use_synonyms)

    feature_embedding = None
    if use_semantic:
        if embedder is None:
            embedder = create_embedder(settings)
        if embedder is not None and feature_text:
            try:
                vector = await embed_text(embedder, feature_text)
                if vector:
                    feature_embedding = tuple(vector)
            except Exception as e:
                logger.warning(f"Feature embedding failed, falling back to term embedding: {e}")
    else:
        embedder = None

    logger.info(
        f"Query context: {len(must)} must, {len(optional)} optional, {len(exclude)} exclude "
        f"(synonyms={use_synonyms}, semantic={use_semantic}, "
        f"feature_embedding={'yes' if feature_embedding else 'no'})"
    )

    return QueryContext(
        must=must,
        optional=optional,
        exclude=exclude,
        use_synonyms=use_synonyms,
        use_semantic=use_semantic,
        feature_text=feature_text,
        feature_embedding=feature_embedding,
        semantic_threshold=settings.semantic_threshold,
        embedder=embedder,
    )


async def context_from_keywords(keywords: Optional[List[str]], settings: Optional[WatcherSettings] = None) -> QueryContext:
    """Context for the plain keyword list shape: every keyword is a must term."""
    return await build_query_context({'must': list(keywords or [])}, settings)
