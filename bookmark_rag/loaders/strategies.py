from __future__ import annotations

"""Content extraction strategies tried in order by the web fetcher."""

import re
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup

from bookmark_rag.loaders.chunking import normalize_text

MAX_CONTENT_CHARS = 15000

_TWEET_ID_RE = re.compile(r"/[A-Za-z0-9_]+/status(?:es)?/(\d+)")
_TWITTER_HOSTS = ("twitter.com", "x.com")
_STRIPPED_TAGS = ["script", "style", "nav", "header", "footer", "aside", "iframe", "noscript"]
_CONTENT_SELECTORS = ("article", "main", ".post-content", ".article-content", ".content", "body")


class HTTPGetter(Protocol):
    """Retrying GET used by strategies."""

    async def get(self, url: str, headers: dict[str, str] | None = None) -> httpx.Response:
        raise NotImplementedError


class ExtractionStrategy(Protocol):
    """Single-capability extractor for a class of URLs."""
    name: str

    def matches(self, url: str) -> bool:
        raise NotImplementedError

    async def attempt(self, url: str, http: HTTPGetter) -> str | None:
        """Return extracted text, or None when the strategy has nothing."""
        raise NotImplementedError


def _hostname(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def is_twitter_url(url: str) -> bool:
    host = _hostname(url)
    return any(host == domain or host.endswith(f".{domain}") for domain in _TWITTER_HOSTS)


def extract_tweet_id(url: str) -> str | None:
    """Extract the status id from a Twitter/X URL."""
    if not is_twitter_url(url):
        return None
    match = _TWEET_ID_RE.search(urlsplit(url).path)
    return match.group(1) if match else None


@dataclass(frozen=True)
class TweetAPIStrategy:
    """Fetch tweet text through the Twitter API v2 when a bearer token is configured."""
    bearer_token: str | None
    api_base_url: str = "https://api.twitter.com/2"
    name: str = "tweet_api"

    def matches(self, url: str) -> bool:
        return bool(self.bearer_token) and extract_tweet_id(url) is not None

    async def attempt(self, url: str, http: HTTPGetter) -> str | None:
        tweet_id = extract_tweet_id(url)
        if not tweet_id or not self.bearer_token:
            return None
        response = await http.get(
            f"{self.api_base_url}/tweets/{tweet_id}"
            "?tweet.fields=created_at,author_id&expansions=author_id"
            "&user.fields=username,verified",
            headers={"Authorization": f"Bearer {self.bearer_token}"},
        )
        data = response.json().get("data") or {}
        text = data.get("text")
        if not isinstance(text, str):
            return None
        return text.strip() or None


@dataclass(frozen=True)
class TweetMetaStrategy:
    """Read tweet text from static meta tags of a Twitter/X page."""
    name: str = "tweet_meta"

    def matches(self, url: str) -> bool:
        return is_twitter_url(url)

    async def attempt(self, url: str, http: HTTPGetter) -> str | None:
        response = await http.get(url)
        soup = BeautifulSoup(response.text, "html.parser")
        for attrs in ({"property": "og:description"}, {"name": "description"}):
            tag = soup.find("meta", attrs=attrs)
            content = tag.get("content") if tag else None
            if isinstance(content, str) and content.strip():
                return content.strip()
        node = soup.select_one('article [data-testid="tweetText"]')
        if node:
            return normalize_text(node.get_text(" ")) or None
        return None


@dataclass(frozen=True)
class GenericHTMLStrategy:
    """Extract the main readable text from any non Twitter/X HTML page."""
    max_chars: int = MAX_CONTENT_CHARS
    name: str = "generic_html"

    def matches(self, url: str) -> bool:
        # Twitter/X pages without meta tags only carry login chrome.
        return not is_twitter_url(url)

    async def attempt(self, url: str, http: HTTPGetter) -> str | None:
        response = await http.get(url)
        return extract_main_text(response.text, self.max_chars) or None


def extract_main_text(html: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    """Strip page chrome and return the first non-empty content region."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIPPED_TAGS):
        tag.decompose()
    content = ""
    for selector in _CONTENT_SELECTORS:
        content = normalize_text(" ".join(node.get_text(" ") for node in soup.select(selector)))
        if content:
            break
    if not content:
        content = normalize_text(soup.get_text(" "))
    return content[:max_chars]


def default_strategies(
    twitter_bearer_token: str | None = None,
    max_chars: int = MAX_CONTENT_CHARS,
) -> list[ExtractionStrategy]:
    """Site-specific strategies first, generic HTML last."""
    return [
        TweetAPIStrategy(bearer_token=twitter_bearer_token),
        TweetMetaStrategy(),
        GenericHTMLStrategy(max_chars=max_chars),
    ]
