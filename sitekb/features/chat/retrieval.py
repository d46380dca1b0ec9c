"""Keyword-overlap retrieval over site indexes and documents."""

import logging
from dataclasses import dataclass

from sitekb.config import get_settings
from sitekb.core.errors import FetchError
from sitekb.core.firestore import FirestoreClient, get_firestore_client
from sitekb.features.resources.models import ResourceKind, ResourceStatus
from sitekb.features.scraper.cache import PageCache, get_page_cache
from sitekb.features.scraper.extractor import HTMLExtractor
from sitekb.features.scraper.fetcher import Fetcher, get_fetcher
from sitekb.features.scraper.keywords import query_keywords, tokenize, url_keywords
from sitekb.features.scraper.sitemap import SiteIndexStore

from .models import ContextBlob, ContextSource

logger = logging.getLogger(__name__)

# Characters kept around a keyword cluster
SNIPPET_CONTEXT = 150
# Keyword hits closer than this belong to one cluster
CLUSTER_GAP = 300


def extract_relevant_snippet(content: str, keywords: list[str], max_length: int) -> str:
    """
    Excerpt of ``content`` around its densest cluster of keyword hits.

    Falls back to the start of the content when no keyword occurs.
    """
    if not content:
        return ""

    lowered = content.lower()
    positions: list[tuple[int, str]] = []
    for keyword in keywords:
        pos = lowered.find(keyword)
        while pos != -1:
            positions.append((pos, keyword))
            pos = lowered.find(keyword, pos + 1)

    if not positions:
        return content[:max_length]

    positions.sort()
    clusters = [[positions[0]]]
    for prev, hit in zip(positions, positions[1:]):
        if hit[0] - prev[0] < CLUSTER_GAP:
            clusters[-1].append(hit)
        else:
            clusters.append([hit])

    # First cluster wins ties
    best = max(clusters, key=len)
    start = max(0, best[0][0] - SNIPPET_CONTEXT)
    end = min(len(content), best[-1][0] + len(best[-1][1]) + SNIPPET_CONTEXT)
    snippet = content[start:end]

    # Prefer sentence boundaries
    if start > 0:
        first_period = snippet.find(". ")
        if -1 < first_period < 50:
            snippet = snippet[first_period + 2:]
    last_period = snippet.rfind(". ")
    if last_period != -1 and last_period > len(snippet) - 50:
        snippet = snippet[:last_period + 1]

    if len(snippet) > max_length:
        snippet = snippet[:max_length - 3] + "..."
    return snippet


@dataclass
class _Candidate:
    kind: str
    score: int
    title: str | None
    url: str | None = None
    document_id: str | None = None
    text: str | None = None


class RetrievalEngine:
    """Rank a tenant's indexed pages and documents against a query."""

    def __init__(
        self,
        firestore: FirestoreClient,
        cache: PageCache,
        fetcher: Fetcher,
        site_indexes: SiteIndexStore | None = None,
        extractor: HTMLExtractor | None = None,
        top_n: int | None = None,
        snippet_max_chars: int | None = None,
    ):
        settings = get_settings()
        self.firestore = firestore
        self.cache = cache
        self.fetcher = fetcher
        self.site_indexes = site_indexes or SiteIndexStore(firestore)
        self.extractor = extractor or HTMLExtractor()
        self.top_n = top_n or settings.retrieval_top_n
        self.snippet_max_chars = snippet_max_chars or settings.snippet_max_chars

    async def retrieve_context(
        self,
        tenant_id: str,
        query: str,
        max_chars: int | None = None,
    ) -> ContextBlob:
        """
        Build a context blob for a query.

        Args:
            tenant_id: Tenant whose knowledge base is searched
            query: User message
            max_chars: Ceiling on the returned text length

        Returns:
            Context text with its sources, empty when nothing matches
        """
        max_chars = max_chars or get_settings().context_max_chars
        keywords = query_keywords(query)
        if not keywords:
            return ContextBlob()

        candidates = await self._score_candidates(tenant_id, set(keywords))
        ranked = sorted(
            (c for c in candidates if c.score > 0), key=lambda c: c.score, reverse=True
        )[:self.top_n]
        if not ranked:
            logger.info(f"No knowledge base matches for tenant {tenant_id}")
            return ContextBlob()

        parts: list[str] = []
        sources = []
        used = 0
        for candidate in ranked:
            separator = "\n" if parts else ""
            room = max_chars - used - len(separator)
            if room <= 0:
                break
            text = await self._resolve_text(candidate)
            if not text:
                continue
            snippet = extract_relevant_snippet(text, keywords, self.snippet_max_chars)
            header = candidate.title or candidate.url or "Document"
            section = f"--- {header} ---\n{snippet}\n"
            if candidate.url:
                section += f"Source: {candidate.url}\n"
            # The last section that fits may be cut short
            section = section[:room]
            parts.append(separator + section)
            used += len(separator) + len(section)
            sources.append(ContextSource(
                kind=candidate.kind,
                title=candidate.title,
                url=candidate.url,
                document_id=candidate.document_id,
                score=candidate.score,
            ))

        return ContextBlob(text="".join(parts), sources=sources)

    async def _score_candidates(self, tenant_id: str, keywords: set[str]) -> list[_Candidate]:
        candidates = []

        for index in await self.site_indexes.list_searchable(tenant_id):
            for entry in index.entries:
                terms = set(entry.keywords) | set(url_keywords(entry.url))
                candidates.append(_Candidate(
                    kind="page",
                    score=len(keywords & terms),
                    title=entry.title,
                    url=entry.url,
                ))

        documents = await self.firestore.list_documents(
            tenant_id, status=ResourceStatus.COMPLETED.value
        )
        for doc in documents:
            text = doc.get("extracted_text") or ""
            candidates.append(_Candidate(
                kind="document",
                score=len(keywords & set(tokenize(text))),
                title=doc.get("filename"),
                document_id=doc["id"],
                text=text,
            ))

        for resource in await self.firestore.list_resources(tenant_id):
            if (
                resource.get("kind") != ResourceKind.RAW_HTML.value
                or resource.get("status") != ResourceStatus.COMPLETED.value
                or not resource.get("extracted_text")
            ):
                continue
            text = resource["extracted_text"]
            candidates.append(_Candidate(
                kind="resource",
                score=len(keywords & set(tokenize(text))),
                title=(resource.get("source") or {}).get("filename"),
                document_id=resource["id"],
                text=text,
            ))

        return candidates

    async def _resolve_text(self, candidate: _Candidate) -> str | None:
        """Stored text, or the page body from cache or a live fetch."""
        if candidate.text is not None:
            return candidate.text

        body = await self.cache.get(candidate.url)
        if body is None:
            try:
                result = await self.fetcher.fetch(candidate.url)
            except FetchError as e:
                logger.warning(f"Skipping {candidate.url}: {e}")
                return None
            body = result.body
            await self.cache.put(candidate.url, body)

        return self.extractor.extract(body, candidate.url).content


def get_retrieval_engine() -> RetrievalEngine:
    """Get retrieval engine instance."""
    return RetrievalEngine(
        firestore=get_firestore_client(),
        cache=get_page_cache(),
        fetcher=get_fetcher(),
    )
