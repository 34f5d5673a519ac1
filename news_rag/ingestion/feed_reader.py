"""
News Feed Reader

Collects ``(title, link, content)`` article records from RSS feeds, with a
news-sitemap fallback when the feeds yield too few articles, and loads
article records from local JSON / JSON-lines files.
"""

import json
import logging
import os
from typing import Iterable, List, Optional

import requests
from bs4 import BeautifulSoup

from ..models import Article

logger = logging.getLogger(__name__)


class FeedReader:
    """Fetches news articles from RSS feeds and a sitemap index."""

    USER_AGENT = 'Mozilla/5.0 (compatible; news-rag/0.1)'
    MAX_SUB_SITEMAPS = 5

    def __init__(
        self,
        feeds: Iterable[str],
        sitemap_url: Optional[str] = None,
        min_articles: int = 50,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the feed reader.

        Args:
            feeds: RSS feed URLs, polled in order
            sitemap_url: News sitemap index used when feeds come up short
            min_articles: Target article count (also the cap on the result)
            timeout: Request timeout in seconds
            session: Optional ``requests.Session`` to reuse connections
        """
        self.feeds = list(feeds)
        self.sitemap_url = sitemap_url
        self.min_articles = min_articles
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', self.USER_AGENT)

    def close(self) -> None:
        self.session.close()

    def _fetch_xml(self, url: str) -> BeautifulSoup:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return BeautifulSoup(response.content, 'xml')

    @staticmethod
    def _text_of(tag) -> str:
        if tag is None:
            return ''
        text = tag.get_text(' ', strip=True)
        # Descriptions are frequently HTML fragments
        if '<' in text and '>' in text:
            text = BeautifulSoup(text, 'html.parser').get_text(' ', strip=True)
        return text

    def parse_feed(self, soup: BeautifulSoup) -> List[Article]:
        """Extract articles from a parsed RSS 2.0 or Atom document."""
        articles = []

        for item in soup.find_all(['item', 'entry']):
            link_tag = item.find('link')
            if link_tag is None:
                continue
            link = (link_tag.get('href') or link_tag.get_text(strip=True)).strip()
            if not link:
                continue

            content = (
                self._text_of(item.find('description'))
                or self._text_of(item.find('summary'))
                or self._text_of(item.find('encoded'))
                or self._text_of(item.find('content'))
            )

            articles.append(Article(
                title=self._text_of(item.find('title')) or 'Untitled',
                link=link,
                content=content,
            ))

        return articles

    def fetch_feed(self, url: str) -> List[Article]:
        """
        Fetch and parse one RSS feed.

        Returns:
            Articles in the feed (empty on any failure)
        """
        try:
            articles = self.parse_feed(self._fetch_xml(url))
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch RSS {url}: {e}")
            return []

        if not articles:
            logger.warning(f"No items in RSS: {url}")
        else:
            logger.info(f"Fetched {len(articles)} articles from {url}")
        return articles

    def parse_sitemap(self, soup: BeautifulSoup) -> List[Article]:
        """Extract articles from a parsed news sitemap ``urlset``."""
        articles = []

        for url_tag in soup.find_all('url'):
            link = self._text_of(url_tag.find('loc'))
            if not link:
                continue

            news = url_tag.find('news')
            title = ''
            content = ''
            if news is not None:
                title = self._text_of(news.find('title'))
                content = (
                    self._text_of(news.find('keywords'))
                    or self._text_of(news.find('publication'))
                )

            articles.append(Article(title=title or 'Untitled', link=link, content=content))

        return articles

    def fetch_sitemap_articles(self, limit: int) -> List[Article]:
        """
        Collect articles from the first sub-sitemaps of the sitemap index.

        Args:
            limit: Maximum number of articles

        Returns:
            Up to ``limit`` articles (empty if the index cannot be read)
        """
        if not self.sitemap_url:
            return []

        logger.info(f"Fetching sitemap index {self.sitemap_url}")
        try:
            index = self._fetch_xml(self.sitemap_url)
        except requests.exceptions.RequestException as e:
            logger.error(f"Sitemap index error: {e}")
            return []

        sub_sitemaps = [
            self._text_of(sitemap.find('loc'))
            for sitemap in index.find_all('sitemap')
        ]
        sub_sitemaps = [url for url in sub_sitemaps if url][:self.MAX_SUB_SITEMAPS]

        articles: List[Article] = []
        for url in sub_sitemaps:
            try:
                articles.extend(self.parse_sitemap(self._fetch_xml(url)))
            except requests.exceptions.RequestException as e:
                logger.error(f"Failed parsing sub-sitemap {url}: {e}")

        return articles[:limit]

    def fetch_articles(self) -> List[Article]:
        """
        Collect unique articles from the feeds, falling back to the sitemap.

        Returns:
            At most ``min_articles`` articles, deduplicated by link
        """
        articles: List[Article] = []
        for url in self.feeds:
            articles.extend(self.fetch_feed(url))

        if len(articles) < self.min_articles:
            logger.warning(
                f"Only got {len(articles)} articles from RSS. Fetching sitemap fallback..."
            )
            articles.extend(self.fetch_sitemap_articles(self.min_articles))

        unique = []
        seen = set()
        for article in articles:
            if article.link not in seen:
                seen.add(article.link)
                unique.append(article)

        logger.info(f"Total unique articles collected: {len(unique)}")
        return unique[:self.min_articles]


def load_articles_from_file(path: str) -> List[Article]:
    """
    Load articles from a JSON array or JSON-lines file.

    Each record needs a ``link`` (or ``url``); ``title`` and ``content``
    are optional.

    Args:
        path: File path

    Returns:
        List of articles

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid JSON / JSON-lines
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Articles file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        raw = f.read()

    stripped = raw.strip()
    if not stripped:
        return []

    try:
        if stripped.startswith('['):
            records = json.loads(stripped)
        else:
            records = [json.loads(line) for line in stripped.splitlines() if line.strip()]
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid articles file {path}: {e}") from e

    articles = []
    for record in records:
        if not isinstance(record, dict):
            raise ValueError(f"Invalid article record in {path}: {record!r}")
        article = Article.from_dict(record)
        if not article.link:
            logger.warning(f"Skipping article without link: {article.title}")
            continue
        articles.append(article)

    logger.info(f"Loaded {len(articles)} articles from {path}")
    return articles
