"""Site index persistence and XML sitemap parsing."""

import logging
import re
import xml.etree.ElementTree as ET

from sitekb.core.errors import FetchError
from sitekb.core.firestore import FirestoreClient, get_firestore_client, utcnow
from sitekb.features.scraper.fetcher import Fetcher
from sitekb.features.scraper.models import SiteIndex, SiteIndexEntry, SiteIndexStatus

logger = logging.getLogger(__name__)


def merge_entries(
    previous: list[SiteIndexEntry], fresh: list[SiteIndexEntry]
) -> list[SiteIndexEntry]:
    """
    Upsert ``fresh`` entries into ``previous`` by URL.

    Re-crawled URLs replace their old entry in place, new URLs are appended
    in discovery order, so no URL ever appears twice.
    """
    by_url = {entry.url: entry for entry in fresh}
    merged = [by_url.pop(entry.url, entry) for entry in previous]
    merged.extend(entry for entry in fresh if entry.url in by_url)
    return merged


class SiteIndexStore:
    """Persist the per-resource index of crawled pages."""

    def __init__(self, firestore: FirestoreClient | None = None):
        self.firestore = firestore or get_firestore_client()

    async def get_for_resource(self, resource_id: str) -> SiteIndex | None:
        record = await self.firestore.get_site_index_for_resource(resource_id)
        return SiteIndex.model_validate(record) if record else None

    async def list_searchable(self, tenant_id: str) -> list[SiteIndex]:
        """
        Site indexes of a tenant that hold entries, whatever their crawl status.

        Entries are merged into the index as a crawl goes, so an index being
        re-crawled, or whose last re-crawl failed, still serves its pages.
        """
        records = await self.firestore.list_site_indexes(tenant_id)
        return [SiteIndex.model_validate(r) for r in records if r.get("entries")]

    async def start_crawl(
        self,
        resource_id: str,
        tenant_id: str,
        base_url: str,
        respects_robots_txt: bool,
    ) -> SiteIndex:
        """Open a crawl pass, reusing the resource's existing index if any."""
        index = await self.firestore.get_site_index_for_resource(resource_id)
        if index is None:
            index = await self.firestore.create_site_index({
                "resource_id": resource_id,
                "tenant_id": tenant_id,
                "base_url": base_url,
                "status": SiteIndexStatus.PENDING.value,
                "entries": [],
                "pages_crawled": 0,
                "respects_robots_txt": respects_robots_txt,
                "error": None,
                "last_crawled": None,
            })

        changes = {
            "status": SiteIndexStatus.CRAWLING.value,
            "base_url": base_url,
            "respects_robots_txt": respects_robots_txt,
            "error": None,
        }
        await self.firestore.update_site_index(index["id"], changes)
        index.update(changes)
        return SiteIndex.model_validate(index)

    async def save_entries(self, index_id: str, entries: list[SiteIndexEntry]) -> None:
        """Flush entries discovered so far."""
        await self.firestore.update_site_index(index_id, {
            "entries": [e.model_dump() for e in entries],
            "pages_crawled": len(entries),
        })

    async def complete(self, index_id: str, entries: list[SiteIndexEntry]) -> None:
        await self.firestore.update_site_index(index_id, {
            "status": SiteIndexStatus.COMPLETED.value,
            "entries": [e.model_dump() for e in entries],
            "pages_crawled": len(entries),
            "last_crawled": utcnow(),
            "error": None,
        })

    async def fail(self, index_id: str, error: str) -> None:
        await self.firestore.update_site_index(index_id, {
            "status": SiteIndexStatus.FAILED.value,
            "error": error,
            "last_crawled": utcnow(),
        })

    async def delete_for_resource(self, resource_id: str) -> int:
        return await self.firestore.delete_site_indexes_for_resource(resource_id)


class SitemapParser:
    """Parse XML sitemaps to extract URLs."""

    SITEMAP_NAMESPACE = {'sm': 'http://www.sitemaps.org/schemas/sitemap/0.9'}

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher

    async def parse(self, sitemap_url: str, max_urls: int = 500, depth: int = 0) -> list[str]:
        """
        Fetch a sitemap and return the page URLs it lists.

        Sitemap indexes are followed one level deep. Unreachable child
        sitemaps are skipped.

        Args:
            sitemap_url: URL to sitemap.xml
            max_urls: Maximum URLs to return

        Returns:
            List of URLs from sitemap
        """
        result = await self.fetcher.fetch(sitemap_url)
        page_urls, child_sitemaps = self.parse_xml(result.body, max_urls)

        urls = list(page_urls)
        if depth == 0:
            for child in child_sitemaps[:10]:  # Limit sitemap count
                if len(urls) >= max_urls:
                    break
                try:
                    urls.extend(await self.parse(child, max_urls - len(urls), depth + 1))
                except FetchError as e:
                    logger.warning(f"Skipping child sitemap {child}: {e}")

        return urls[:max_urls]

    def parse_xml(self, text: str, max_urls: int = 500) -> tuple[list[str], list[str]]:
        """Split sitemap XML into (page URLs, child sitemap URLs)."""
        try:
            root = ET.fromstring(text.encode('utf-8'))
        except ET.ParseError:
            return self._extract_urls_from_text(text, max_urls), []

        sitemap_refs = root.findall('.//sm:sitemap/sm:loc', self.SITEMAP_NAMESPACE)
        # Some sitemaps don't use the namespace
        if not sitemap_refs:
            sitemap_refs = root.findall('.//sitemap/loc')

        url_elements = root.findall('.//sm:url/sm:loc', self.SITEMAP_NAMESPACE)
        if not url_elements:
            url_elements = root.findall('.//url/loc')

        children = [ref.text.strip() for ref in sitemap_refs if ref.text]
        pages = [elem.text.strip() for elem in url_elements if elem.text]
        return pages[:max_urls], children

    def _extract_urls_from_text(self, text: str, max_urls: int) -> list[str]:
        """Fallback: extract URLs from text content."""
        url_pattern = r'https?://[^\s<>"\']+'
        return list(dict.fromkeys(re.findall(url_pattern, text)))[:max_urls]
