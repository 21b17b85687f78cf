from __future__ import annotations

"""Safe web content fetcher with SSRF guard, rate limiting and retries."""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

from bookmark_rag.loaders.rate_limit import RateLimiter
from bookmark_rag.loaders.strategies import ExtractionStrategy, default_strategies
from bookmark_rag.loaders.url_guard import resolve_host, validate_url_resolved
from bookmark_rag.rag.errors import (
    BlockedURLError,
    FatalIOError,
    RAGError,
    RateLimitError,
    TransientIOError,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/132.0.0.0 Safari/537.36"
)
MIN_CONTENT_CHARS = 50

Sleep = Callable[[float], Awaitable[None]]
Resolver = Callable[[str], Awaitable[list[str]]]


def _default_jitter() -> float:
    return random.uniform(0.0, 0.1)


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str] | None = None,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    jitter: Callable[[], float] = _default_jitter,
) -> httpx.Response:
    """GET ``url`` retrying network errors, 5xx and 429 with exponential backoff.

    Other 4xx responses raise FatalIOError immediately. When every attempt
    fails transiently, FatalIOError is raised from the last TransientIOError.
    """
    last_error: TransientIOError | None = None
    for attempt in range(max_attempts):
        try:
            response = await client.get(url, headers=headers)
        except httpx.TooManyRedirects as exc:
            raise FatalIOError(f"Too many redirects for {url}") from exc
        except httpx.HTTPError as exc:
            last_error = TransientIOError(f"{type(exc).__name__}: {exc}")
        else:
            status = response.status_code
            if status == 429 or status >= 500:
                last_error = TransientIOError(f"HTTP {status} from {url}", status_code=status)
            elif status >= 400:
                raise FatalIOError(f"HTTP {status} from {url}", status_code=status)
            else:
                return response
        if attempt == max_attempts - 1:
            break
        delay = base_delay * (2**attempt) + jitter()
        logger.info(
            "fetch_retry",
            extra={
                "attempt": attempt + 1,
                "max_attempts": max_attempts,
                "delay_seconds": round(delay, 3),
                "status_code": last_error.status_code if last_error else None,
            },
        )
        await sleep(delay)
    status_code = last_error.status_code if last_error else None
    raise FatalIOError(
        f"Retries exhausted after {max_attempts} attempts for {url}", status_code=status_code
    ) from last_error


@dataclass
class RetryingHTTP:
    """HTTPGetter bound to a client and retry policy."""
    client: httpx.AsyncClient
    user_agent: str = DEFAULT_USER_AGENT
    max_attempts: int = 3
    base_delay: float = 1.0
    max_bytes: int = 5 * 1024 * 1024
    sleep: Sleep = asyncio.sleep
    jitter: Callable[[], float] = _default_jitter

    async def get(self, url: str, headers: dict[str, str] | None = None) -> httpx.Response:
        merged = {"User-Agent": self.user_agent}
        merged.update(headers or {})
        response = await fetch_with_retry(
            self.client,
            url,
            headers=merged,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
            jitter=self.jitter,
        )
        if self.max_bytes and len(response.content) > self.max_bytes:
            raise FatalIOError("Response exceeds maximum size limit")
        return response


@dataclass
class SafeContentFetcher:
    """Fetch readable text from user supplied URLs.

    Ordinary failures (HTTP errors, exhausted retries, unparsable pages)
    degrade to an empty string. BlockedURLError and RateLimitError always
    propagate so callers can tell "blocked" apart from "nothing found".
    """
    rate_limiter: RateLimiter | None = None
    strategies: list[ExtractionStrategy] = field(default_factory=default_strategies)
    allowed_domains: tuple[str, ...] = ()
    resolve_dns: bool = True
    timeout: float = 10.0
    max_redirects: int = 5
    max_attempts: int = 3
    base_delay: float = 1.0
    max_bytes: int = 5 * 1024 * 1024
    user_agent: str = DEFAULT_USER_AGENT
    transport: httpx.AsyncBaseTransport | None = None
    resolver: Resolver = resolve_host
    sleep: Sleep = asyncio.sleep
    jitter: Callable[[], float] = _default_jitter

    async def validate(self, url: str) -> str:
        return await validate_url_resolved(
            url,
            self.allowed_domains,
            resolve_dns=self.resolve_dns,
            resolver=self.resolver,
        )

    async def _check_request(self, request: httpx.Request) -> None:
        """Re-validate every request, including redirect hops."""
        await self.validate(str(request.url))

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            event_hooks={"request": [self._check_request]},
            transport=self.transport,
        )

    async def fetch(self, url: str, user_id: str | None = None) -> str:
        """Return extracted text for ``url`` or an empty string."""
        await self.validate(url)
        if user_id and self.rate_limiter is not None:
            try:
                self.rate_limiter.check(user_id)
            except RateLimitError:
                logger.warning("fetch_rate_limited", extra={"user_id": user_id})
                raise

        client = self._build_client()
        http = RetryingHTTP(
            client=client,
            user_agent=self.user_agent,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_bytes=self.max_bytes,
            sleep=self.sleep,
            jitter=self.jitter,
        )
        try:
            for strategy in self.strategies:
                if not strategy.matches(url):
                    continue
                try:
                    text = await strategy.attempt(url, http)
                except (BlockedURLError, RateLimitError):
                    raise
                except (RAGError, httpx.HTTPError, ValueError) as exc:
                    logger.warning(
                        "content_extraction_failed",
                        extra={"strategy": strategy.name, "error": type(exc).__name__},
                    )
                    continue
                if text:
                    logger.info(
                        "content_extracted",
                        extra={"strategy": strategy.name, "chars": len(text)},
                    )
                    return text
            logger.info("content_extraction_empty", extra={"url_length": len(url)})
            return ""
        finally:
            await client.aclose()


def create_rich_content(title: str, link: str, body: str) -> str:
    """Combine title, link and body into the text that gets indexed."""
    if not body or len(body) < MIN_CONTENT_CHARS:
        return f"Title: {title}\nLink: {link}"
    return f"Title: {title}\nLink: {link}\n\nContent:\n{body}"
