"""Keyword derivation shared by indexing and retrieval."""

import re
from collections import Counter
from urllib.parse import urlparse

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "is", "are", "was", "were", "be",
    "been", "being", "in", "on", "at", "to", "for", "with", "about", "against",
    "between", "into", "through", "during", "before", "after", "above",
    "below", "from", "up", "down", "of", "off", "over", "under", "again",
    "further", "then", "once", "here", "there", "when", "where", "why", "how",
    "all", "any", "both", "each", "few", "more", "most", "other", "some",
    "such", "no", "nor", "not", "only", "own", "same", "so", "than", "too",
    "very", "can", "will", "just", "don", "should", "now", "who", "what",
    "which", "whom", "this", "that", "these", "those", "it", "its", "our",
    "your", "you", "we", "us", "they", "them", "their", "i", "me", "my",
    "do", "does", "did", "has", "have", "had", "if", "by", "as", "also",
    "www", "http", "https", "com", "html", "htm", "php",
})

# Body terms kept per page in addition to title/description terms
MAX_BODY_KEYWORDS = 20
MAX_KEYWORDS = 50


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens with stop-words and single characters removed."""
    words = re.findall(r"\b\w+\b", text.lower())
    return [w for w in words if w not in STOPWORDS and len(w) > 1 and not w.isdigit()]


def _unique(tokens: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for token in tokens:
        if token not in seen:
            seen.add(token)
            result.append(token)
    return result


def derive_keywords(
    title: str | None,
    description: str | None,
    body: str | None = None,
    meta_keywords: list[str] | None = None,
) -> list[str]:
    """
    Derive a page's keyword list.

    Title, description and meta keyword terms come first in reading order,
    followed by the most frequent body terms (ties broken alphabetically).
    The same inputs always produce the same list.
    """
    head = tokenize(" ".join([title or "", description or "", " ".join(meta_keywords or [])]))
    keywords = _unique(head)

    if body:
        counts = Counter(tokenize(body))
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        body_terms = [term for term, _ in ranked if term not in keywords]
        keywords.extend(body_terms[:MAX_BODY_KEYWORDS])

    return keywords[:MAX_KEYWORDS]


def query_keywords(query: str) -> list[str]:
    """Keywords of a user query, deduplicated in order."""
    return _unique(tokenize(query))


def url_keywords(url: str) -> list[str]:
    """Tokens from a URL path (``/about-us/team`` -> about, us, team)."""
    path = urlparse(url).path
    return _unique(tokenize(re.sub(r"[/_\-.]+", " ", path)))
