"""robots.txt policy for the crawler."""

import logging
from urllib import robotparser
from urllib.parse import urljoin

from sitekb.core.errors import FetchError
from sitekb.features.scraper.fetcher import Fetcher

logger = logging.getLogger(__name__)

ROBOTS_AGENT = "sitekb"


class RobotsPolicy:
    """
    Parsed robots.txt rules for one origin.

    A missing or unreachable robots.txt allows everything (fail-open),
    and ``honored`` stays False so the site index records that no rules
    were applied.
    """

    def __init__(self, parser: robotparser.RobotFileParser | None = None):
        self._parser = parser

    @property
    def honored(self) -> bool:
        return self._parser is not None

    @property
    def sitemaps(self) -> list[str]:
        if self._parser is None:
            return []
        return list(self._parser.site_maps() or [])

    def allows(self, url: str) -> bool:
        if self._parser is None:
            return True
        return self._parser.can_fetch(ROBOTS_AGENT, url)

    @classmethod
    def parse(cls, text: str) -> "RobotsPolicy":
        parser = robotparser.RobotFileParser()
        parser.parse(text.splitlines())
        return cls(parser)

    @classmethod
    async def load(cls, fetcher: Fetcher, origin: str) -> "RobotsPolicy":
        """Fetch and parse ``/robots.txt`` for an origin, allowing all on failure."""
        robots_url = urljoin(origin, "/robots.txt")
        try:
            result = await fetcher.fetch(robots_url)
        except FetchError as e:
            logger.info(f"No usable robots.txt at {robots_url}: {e}")
            return cls()
        return cls.parse(result.body)
