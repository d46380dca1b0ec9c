"""HTML content extraction utilities."""

import re
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from sitekb.features.scraper.models import PageContent

# Links to binaries and assets are never crawled
SKIP_EXTENSIONS = (
    '.pdf', '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.ico',
    '.css', '.js', '.mp4', '.mp3', '.zip', '.doc', '.docx', '.xls', '.xlsx',
)
SKIP_SCHEMES = ('mailto:', 'tel:', 'javascript:', 'data:', '#')


def same_origin(url: str, other: str) -> bool:
    """True when both URLs share scheme-agnostic host and port."""
    return urlparse(url).netloc.lower() == urlparse(other).netloc.lower()


def is_crawlable(url: str) -> bool:
    """True for http(s) URLs that do not point at a binary asset."""
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https'):
        return False
    return not parsed.path.lower().endswith(SKIP_EXTENSIONS)


class HTMLExtractor:
    """Extract clean text and page metadata from HTML."""

    # Tags to remove completely (with content)
    REMOVE_TAGS = [
        'script', 'style', 'nav', 'footer', 'header',
        'aside', 'form', 'noscript', 'iframe', 'svg',
        'button', 'input', 'select', 'textarea',
    ]

    # Tags that typically contain main content
    CONTENT_SELECTORS = ['article', 'main', '[role="main"]', '.content', '#content']

    def extract(self, html: str, url: str) -> PageContent:
        """
        Extract text and metadata from HTML.

        Args:
            html: Raw HTML string
            url: Source URL for resolving relative links

        Returns:
            Title, description, meta keywords, main text and same-origin links
        """
        soup = BeautifulSoup(html, 'lxml')

        title = self._extract_title(soup)
        description = self._extract_meta(soup, 'description')
        meta_keywords = self._extract_meta_keywords(soup)

        # Links come from the full document, before navigation is stripped
        links = self._extract_links(soup, url)

        for tag in self.REMOVE_TAGS:
            for element in soup.find_all(tag):
                element.decompose()

        main_content = self._find_main_content(soup)
        text = self._clean_text(main_content.get_text(separator='\n', strip=True))

        return PageContent(
            url=url,
            title=title,
            description=description,
            meta_keywords=meta_keywords,
            content=text,
            links=links,
        )

    def extract_text(self, html: str) -> str:
        """Main text only, for uploaded HTML files."""
        soup = BeautifulSoup(html, 'lxml')
        for tag in self.REMOVE_TAGS:
            for element in soup.find_all(tag):
                element.decompose()
        return self._clean_text(
            self._find_main_content(soup).get_text(separator='\n', strip=True)
        )

    def _extract_title(self, soup) -> str | None:
        """Extract page title."""
        if soup.title and soup.title.string:
            return soup.title.string.strip()

        h1 = soup.find('h1')
        if h1:
            return h1.get_text(strip=True)

        og_title = soup.find('meta', property='og:title')
        if og_title and og_title.get('content'):
            return og_title['content']

        return None

    def _extract_meta(self, soup, name: str) -> str | None:
        meta = soup.find('meta', attrs={'name': name})
        if meta is None:
            meta = soup.find('meta', property=f'og:{name}')
        if meta is not None and meta.get('content'):
            return meta['content'].strip()
        return None

    def _extract_meta_keywords(self, soup) -> list[str]:
        raw = self._extract_meta(soup, 'keywords')
        if not raw:
            return []
        return [k.strip() for k in raw.split(',') if k.strip()]

    def _find_main_content(self, soup):
        """Find the main content area of the page."""
        for selector in self.CONTENT_SELECTORS:
            if selector.startswith('.'):
                element = soup.find(class_=selector[1:])
            elif selector.startswith('#'):
                element = soup.find(id=selector[1:])
            elif selector.startswith('['):
                # Attribute selector like [role="main"]
                match = re.match(r'\[(\w+)="(\w+)"\]', selector)
                if match:
                    element = soup.find(attrs={match.group(1): match.group(2)})
                else:
                    element = None
            else:
                element = soup.find(selector)

            if element:
                return element

        return soup.body or soup

    def _clean_text(self, text: str) -> str:
        """Clean extracted text."""
        # Remove excessive whitespace
        text = re.sub(r'\n{3,}', '\n\n', text)
        text = re.sub(r' {2,}', ' ', text)
        text = re.sub(r'\t+', ' ', text)

        # Remove common boilerplate patterns
        boilerplate_patterns = [
            r'Cookie.*?consent.*?\n',
            r'Accept\s+all\s+cookies.*?\n',
            r'©\s*\d{4}.*?\n',
            r'All\s+rights\s+reserved.*?\n',
        ]
        for pattern in boilerplate_patterns:
            text = re.sub(pattern, '', text, flags=re.IGNORECASE)

        return text.strip()

    def _extract_links(self, soup, base_url: str) -> list[str]:
        """Same-origin crawlable links, in document order, without fragments."""
        links = []
        seen = set()

        for a in soup.find_all('a', href=True):
            href = a['href'].strip()
            if not href or href.lower().startswith(SKIP_SCHEMES):
                continue

            full_url, _ = urldefrag(urljoin(base_url, href))
            if not same_origin(full_url, base_url) or not is_crawlable(full_url):
                continue

            if full_url not in seen:
                seen.add(full_url)
                links.append(full_url)

        return links
