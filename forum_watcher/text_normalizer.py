"""
Text Normalizer
Canonicalizes forum text, guesses its language and tokenizes/stems English.

Non-English text is only tokenized on whitespace; matching for it relies on
the phrase/word regexes alone.
"""

import logging
import re

from langdetect import DetectorFactory, LangDetectException, detect
from nltk.stem import PorterStemmer

from .models import NormalizedText

logger = logging.getLogger(__name__)

# langdetect is probabilistic unless seeded
DetectorFactory.seed = 0

MIN_DETECT_LENGTH = 10
UNDETERMINED = 'und'

# langdetect returns ISO-639-1; callers expect ISO-639-3
ISO_639_3 = {
    'en': 'eng', 'de': 'deu', 'fr': 'fra', 'es': 'spa', 'it': 'ita',
    'pt': 'por', 'nl': 'nld', 'sv': 'swe', 'da': 'dan', 'no': 'nob',
    'fi': 'fin', 'pl': 'pol', 'cs': 'ces', 'ru': 'rus', 'uk': 'ukr',
    'tr': 'tur', 'ja': 'jpn', 'ko': 'kor', 'zh-cn': 'cmn', 'zh-tw': 'cmn',
    'ar': 'arb', 'hi': 'hin', 'id': 'ind', 'vi': 'vie', 'ro': 'ron',
}

_WHITESPACE = re.compile(r'\s+')
_ZERO_WIDTH = re.compile('[\u200b-\u200d\ufeff]')
_NON_ENGLISH_CHARS = re.compile(r"[^a-z0-9\s']")

_stemmer = PorterStemmer()


def normalize_basic(text: str) -> str:
    """Collapse whitespace, drop zero-width characters and BOMs, trim."""
    if not text:
        return ''
    visible = _ZERO_WIDTH.sub('', text)
    return _WHITESPACE.sub(' ', visible).strip()


def detect_language(text: str) -> str:
    """Best-effort ISO-639-3 code for `text`, 'und' when unknown."""
    if not text or len(text) < MIN_DETECT_LENGTH:
        return UNDETERMINED
    try:
        code = detect(text)
    except LangDetectException:
        return UNDETERMINED
    return ISO_639_3.get(code, code)


def normalize(text: str) -> NormalizedText:
    """Normalize `text` for matching."""
    basic = normalize_basic(text).lower()
    lang = detect_language(basic)

    if lang == 'eng':
        tokens = _NON_ENGLISH_CHARS.sub(' ', basic).split()
        stems = [_stemmer.stem(token) for token in tokens]
        return NormalizedText(language_code=lang, plain_text=basic, tokens=tokens, stems=stems)

    return NormalizedText(language_code=lang, plain_text=basic, tokens=basic.split(), stems=[])
