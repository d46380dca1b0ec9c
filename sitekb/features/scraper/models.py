"""Scraper data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SiteIndexStatus(str, Enum):
    """Lifecycle of a site index."""
    PENDING = "pending"
    CRAWLING = "crawling"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PageContent:
    """Text and metadata extracted from one HTML page."""
    url: str
    title: str | None
    description: str | None
    content: str
    meta_keywords: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)


class SiteIndexEntry(BaseModel):
    """One crawled page inside a site index."""
    url: str
    title: str | None = None
    description: str | None = None
    keywords: list[str] = Field(default_factory=list)
    last_crawled: datetime
    last_modified: datetime | None = None
    depth: int = 0
    embedding: list[float] | None = None


class SiteIndex(BaseModel):
    """Discovered pages of one website resource."""
    id: str
    resource_id: str
    tenant_id: str
    base_url: str
    status: SiteIndexStatus
    entries: list[SiteIndexEntry] = Field(default_factory=list)
    pages_crawled: int = 0
    respects_robots_txt: bool = False
    error: str | None = None
    last_crawled: datetime | None = None


@dataclass
class CrawlResult:
    """Outcome of a completed crawl pass."""
    site_index_id: str
    pages_crawled: int
    content_size: int
    keywords: list[str] = field(default_factory=list)
