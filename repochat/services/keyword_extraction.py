"""
Lexical tokenization, keyword normalization and dominant-domain detection.

Everything here is pure and local: no external calls.
"""

from collections import Counter
from typing import Any, Iterable, List

from ..models.core import Entity

GENERIC_QUERY_WORDS = frozenset([
    'explain', 'flow', 'flows', 'system', 'how', 'what', 'works', 'work', 'it', 'app', 'application',
    'overview', 'details', 'about', 'feature', 'features', 'logic', 'process',
])

DOMAIN_STOPWORDS = frozenset([
    'src', 'app', 'apps', 'lib', 'libs', 'api', 'utils', 'helper', 'helpers', 'common', 'shared',
    'index', 'main', 'service', 'services', 'controller', 'controllers', 'component', 'components',
    'module', 'modules', 'hook', 'hooks', 'model', 'models', 'types', 'type', 'route', 'routes',
    'view', 'views', 'page', 'pages', 'client', 'server', 'public', 'private', 'core', 'feature',
    'features', 'impl', 'implementation', 'test', 'tests', 'spec', 'config', 'configs',
    'js', 'jsx', 'ts', 'tsx', 'json', 'py', 'init',
])

# Stripped from anchor phrases: mechanically appended by the fallback anchors
ANCHOR_FILLER_WORDS = frozenset(['flow', 'lifecycle'])

MAX_KEYWORDS = 20
MAX_QUESTION_KEYWORDS = 12
MAX_ANCHOR_TERMS = 20
MAX_RETRIEVAL_KEYWORDS = 28
LIKE_PATTERN_MAX_LENGTH = 40
LIKE_UNSAFE_CHARS = frozenset('%_\'",')


def tokenize(text: str, min_length: int = 1) -> List[str]:
    """Split on any character that is not an ASCII letter, digit or underscore.

    Args:
        text: Free text
        min_length: Tokens shorter than this are dropped

    Returns:
        Lower-cased tokens in order of appearance
    """
    tokens = []
    current = []
    for ch in text or '':
        if ch == '_' or (ch.isascii() and ch.isalnum()):
            current.append(ch.lower())
            continue
        if current and len(current) >= min_length:
            tokens.append(''.join(current))
        current = []
    if current and len(current) >= min_length:
        tokens.append(''.join(current))
    return tokens


def normalize_text(text: str) -> str:
    """Lower-case and collapse every non-word run into a single space."""
    return ' '.join(tokenize(text, 1))


def compact_text(text: str, max_length: int = 220) -> str:
    """Normalized text truncated to max_length characters."""
    return normalize_text(text)[:max_length]


def contains_any_phrase(text: str, phrases: Iterable[str]) -> bool:
    """True if any phrase occurs in text on whole-token boundaries.

    Both sides are normalized first, so ``"sign-in"`` matches the phrase ``"sign in"``
    but ``"oauth"`` does not match ``"auth"``.
    """
    haystack = f' {normalize_text(text)} '
    for phrase in phrases:
        needle = normalize_text(phrase)
        if needle and f' {needle} ' in haystack:
            return True
    return False


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop repeats, keeping first-seen order."""
    return list(dict.fromkeys(values))


def normalize_keywords(value: Any, limit: int = MAX_KEYWORDS) -> List[str]:
    """Coerce an untrusted keyword list: strings only, trimmed, lower-cased, longer than one char."""
    if not isinstance(value, list):
        return []
    keywords = [item.strip().lower() for item in value if isinstance(item, str)]
    return [k for k in keywords if len(k) > 1][:limit]


def extract_question_keywords(question: str) -> List[str]:
    """Meaningful (3+ character) distinct tokens of a question."""
    return dedupe(tokenize(question, 3))[:MAX_QUESTION_KEYWORDS]


def extract_domain_tokens(name: str, file_path: str) -> List[str]:
    """Business-domain candidate tokens of an entity name and path."""
    return [
        token for token in tokenize(f'{name} {file_path}', 3)
        if token not in DOMAIN_STOPWORDS and token not in GENERIC_QUERY_WORDS
    ]


def extract_dominant_domains(entities: Iterable[Entity], limit: int = 10) -> List[str]:
    """Most frequent domain tokens across entities; ties keep first-seen order."""
    frequency: Counter = Counter()
    for entity in entities:
        frequency.update(extract_domain_tokens(entity.name, entity.file_path))
    # Counter preserves insertion order and most_common() sorts stably
    return [token for token, _ in frequency.most_common(limit)]


def extract_anchor_terms(anchors: Iterable[str]) -> List[str]:
    """Reduce flow-anchor phrases to discriminative bare terms."""
    terms = []
    for anchor in anchors:
        for token in tokenize(anchor, 3):
            if token in GENERIC_QUERY_WORDS or token in ANCHOR_FILLER_WORDS:
                continue
            terms.append(token)
    return dedupe(terms)[:MAX_ANCHOR_TERMS]


def build_retrieval_keywords(base: List[str], expanded: List[str], anchor_terms: List[str],
                             dominant_domains: List[str]) -> List[str]:
    """Union of every keyword source, minus generic query words."""
    raw = [k.lower().strip() for k in [*base, *expanded, *anchor_terms, *dominant_domains]]
    return [k for k in dedupe(k for k in raw if k) if k not in GENERIC_QUERY_WORDS][:MAX_RETRIEVAL_KEYWORDS]


def entity_haystack(entity: Entity) -> str:
    """Lower-cased text an entity is matched against: name, kind, path, tags and keywords."""
    metadata = entity.metadata
    return ' '.join([entity.name, entity.kind, entity.file_path, ' '.join(metadata.keywords),
                     ' '.join(metadata.tags)]).lower()


def score_entity_against_keywords(entity: Entity, keywords: Iterable[str]) -> int:
    """Number of distinct keywords occurring as substrings of the entity haystack."""
    haystack = entity_haystack(entity)
    distinct = dedupe(k.lower().strip() for k in keywords)
    return sum(1 for k in distinct if k and k in haystack)


def sanitize_for_like(keyword: str) -> str:
    """Strip wildcard and quoting characters from a keyword used as a match pattern."""
    cleaned = ''.join(ch for ch in keyword if ch not in LIKE_UNSAFE_CHARS)
    return cleaned.strip()[:LIKE_PATTERN_MAX_LENGTH]
