"""Breadth-first crawler that builds a website resource's site index."""

import asyncio
import logging
import time
from collections import deque
from urllib.parse import urldefrag, urlparse

from sitekb.config import get_settings
from sitekb.core.errors import FetchError, PermanentFetchError
from sitekb.core.firestore import utcnow
from sitekb.features.scraper.cache import PageCache, get_page_cache
from sitekb.features.scraper.extractor import HTMLExtractor, is_crawlable, same_origin
from sitekb.features.scraper.fetcher import Fetcher, get_fetcher
from sitekb.features.scraper.keywords import derive_keywords
from sitekb.features.scraper.models import CrawlResult, SiteIndexEntry
from sitekb.features.scraper.robots import RobotsPolicy
from sitekb.features.scraper.sitemap import SiteIndexStore, SitemapParser, merge_entries

logger = logging.getLogger(__name__)

# Entries are flushed to the store every N pages
FLUSH_EVERY = 5
MAX_SITEMAPS = 3


def normalize_start_url(url: str) -> str:
    """Fill in a missing scheme or root path and drop any fragment."""
    url = url.strip()
    if not urlparse(url).scheme:
        url = f"https://{url}"
    parsed = urlparse(urldefrag(url)[0])
    return parsed._replace(path=parsed.path or "/").geturl()


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


class SiteIndexBuilder:
    """Crawl a website within page, depth and time limits."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        cache: PageCache | None = None,
        store: SiteIndexStore | None = None,
        extractor: HTMLExtractor | None = None,
        max_pages: int | None = None,
        max_depth: int | None = None,
        max_seconds: float | None = None,
        politeness_delay: float | None = None,
        sleep=asyncio.sleep,
    ):
        settings = get_settings()
        self.fetcher = fetcher or get_fetcher()
        self.cache = cache or get_page_cache()
        self.store = store or SiteIndexStore()
        self.extractor = extractor or HTMLExtractor()
        self.max_pages = max_pages or settings.crawl_max_pages
        self.max_depth = max_depth if max_depth is not None else settings.crawl_max_depth
        self.max_seconds = max_seconds or settings.crawl_max_seconds
        self.politeness_delay = (
            politeness_delay
            if politeness_delay is not None
            else settings.crawl_politeness_delay_seconds
        )
        self.sleep = sleep

    async def build(self, resource_id: str, tenant_id: str, url: str) -> CrawlResult:
        """
        Crawl a website and record discovered pages in its site index.

        Failures on secondary pages are logged and skipped. A failure on the
        start URL marks the site index failed and is re-raised.

        Args:
            resource_id: Owning website resource
            tenant_id: Owning tenant
            url: Start URL

        Returns:
            Pages crawled, total content size and aggregate keywords

        Raises:
            FetchError: The start URL could not be fetched or is disallowed
        """
        start_url = normalize_start_url(url)
        origin = origin_of(start_url)

        robots = await RobotsPolicy.load(self.fetcher, origin)
        index = await self.store.start_crawl(
            resource_id, tenant_id, origin, respects_robots_txt=robots.honored
        )
        previous = list(index.entries)
        logger.info(f"[{resource_id}] Crawling {start_url} (limit {self.max_pages} pages)")

        if not robots.allows(start_url):
            error = PermanentFetchError(start_url, f"Disallowed by robots.txt: {start_url}")
            await self.store.fail(index.id, str(error))
            raise error

        queue: deque[tuple[str, int]] = deque([(start_url, 0)])
        seen = {start_url}
        fresh: list[SiteIndexEntry] = []
        content_size = 0
        deadline = time.monotonic() + self.max_seconds
        root_done = False

        while queue and len(fresh) < self.max_pages:
            if time.monotonic() > deadline:
                logger.warning(f"[{resource_id}] Crawl time limit reached after {len(fresh)} pages")
                break

            page_url, depth = queue.popleft()
            is_root = not root_done

            if not is_root and not robots.allows(page_url):
                logger.debug(f"[{resource_id}] Skipping {page_url}: disallowed by robots.txt")
                continue

            if root_done and self.politeness_delay:
                await self.sleep(self.politeness_delay)

            try:
                result = await self.fetcher.fetch(page_url)
            except FetchError as e:
                if is_root:
                    logger.error(f"[{resource_id}] Start URL failed: {e}")
                    await self.store.fail(index.id, str(e))
                    raise
                logger.warning(f"[{resource_id}] Skipping {page_url}: {e}")
                continue

            if is_root:
                root_done = True
                # Follow the origin the site redirected us to
                if not same_origin(result.url, origin):
                    origin = origin_of(result.url)
                    seen.add(urldefrag(result.url)[0])
                if robots.sitemaps:
                    await self._seed_from_sitemaps(resource_id, robots, origin, queue, seen)

            if not result.is_html:
                logger.debug(f"[{resource_id}] Skipping non-HTML {page_url}")
                continue

            try:
                page = self.extractor.extract(result.body, result.url)
            except Exception as e:
                if is_root:
                    await self.store.fail(index.id, f"Could not parse {page_url}: {e}")
                    raise
                logger.warning(f"[{resource_id}] Could not parse {page_url}: {e}")
                continue

            fresh.append(SiteIndexEntry(
                url=page_url,
                title=page.title or page_url,
                description=page.description,
                keywords=derive_keywords(
                    page.title, page.description, page.content, page.meta_keywords
                ),
                last_crawled=utcnow(),
                last_modified=result.last_modified,
                depth=depth,
            ))
            content_size += len(page.content)
            await self.cache.put(page_url, result.body)

            if depth < self.max_depth:
                for link in page.links:
                    if link not in seen and same_origin(link, origin) and is_crawlable(link):
                        seen.add(link)
                        queue.append((link, depth + 1))

            if len(fresh) % FLUSH_EVERY == 0:
                await self.store.save_entries(index.id, merge_entries(previous, fresh))

        entries = merge_entries(previous, fresh)
        await self.store.complete(index.id, entries)
        logger.info(f"[{resource_id}] Crawl completed: {len(fresh)} pages, {content_size} chars")

        return CrawlResult(
            site_index_id=index.id,
            pages_crawled=len(fresh),
            content_size=content_size,
            keywords=self._aggregate_keywords(fresh),
        )

    async def _seed_from_sitemaps(
        self,
        resource_id: str,
        robots: RobotsPolicy,
        origin: str,
        queue: deque,
        seen: set[str],
    ) -> None:
        """Queue same-origin pages listed in robots.txt ``Sitemap:`` lines."""
        parser = SitemapParser(self.fetcher)
        for sitemap_url in robots.sitemaps[:MAX_SITEMAPS]:
            try:
                urls = await parser.parse(sitemap_url, max_urls=self.max_pages)
            except FetchError as e:
                logger.warning(f"[{resource_id}] Sitemap {sitemap_url} unavailable: {e}")
                continue
            for url in urls:
                url = urldefrag(url)[0]
                if url not in seen and same_origin(url, origin) and is_crawlable(url):
                    seen.add(url)
                    queue.append((url, 1))

    def _aggregate_keywords(self, entries: list[SiteIndexEntry], limit: int = 50) -> list[str]:
        keywords: list[str] = []
        for entry in entries:
            for keyword in entry.keywords:
                if keyword not in keywords:
                    keywords.append(keyword)
                if len(keywords) >= limit:
                    return keywords
        return keywords


def get_site_index_builder() -> SiteIndexBuilder:
    """Get site index builder instance."""
    return SiteIndexBuilder()
