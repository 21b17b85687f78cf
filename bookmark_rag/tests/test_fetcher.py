from __future__ import annotations

import httpx
import pytest

from bookmark_rag.loaders.rate_limit import RateLimiter
from bookmark_rag.loaders.strategies import (
    GenericHTMLStrategy,
    default_strategies,
    extract_main_text,
    extract_tweet_id,
)
from bookmark_rag.loaders.web import (
    SafeContentFetcher,
    create_rich_content,
    fetch_with_retry,
)
from bookmark_rag.rag.errors import BlockedURLError, FatalIOError, RateLimitError

ARTICLE_HTML = """
<html>
  <head><title>Post</title><script>var tracking = 1;</script></head>
  <body>
    <nav>Home | About | Login</nav>
    <header>Site banner</header>
    <article><p>Rust ownership rules make memory management predictable.</p>
    <p>Borrowing lets code read data without taking it.</p></article>
    <aside>Related links</aside>
    <footer>Copyright</footer>
  </body>
</html>
"""


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


PRIVATE_HOSTS = {"intranet.example.com": "10.0.0.7"}


async def fake_resolver(hostname: str) -> list[str]:
    return [PRIVATE_HOSTS.get(hostname, "93.184.216.34")]


def build_fetcher(handler, **kwargs) -> tuple[SafeContentFetcher, RecordingSleep]:
    sleep = RecordingSleep()
    fetcher = SafeContentFetcher(
        transport=httpx.MockTransport(handler),
        resolver=fake_resolver,
        sleep=sleep,
        jitter=lambda: 0.0,
        **kwargs,
    )
    return fetcher, sleep


@pytest.mark.anyio
async def test_transient_failure_is_retried_then_succeeds() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.headers.get("user-agent", ""))
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, text=ARTICLE_HTML)

    fetcher, sleep = build_fetcher(handler)
    text = await fetcher.fetch("https://example.com/post")

    assert "Rust ownership rules" in text
    assert len(calls) == 2
    assert "Mozilla/5.0" in calls[0]
    assert sleep.delays == [1.0]


@pytest.mark.anyio
async def test_client_error_is_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    fetcher, sleep = build_fetcher(handler)
    text = await fetcher.fetch("https://example.com/missing")

    assert text == ""
    assert calls == 1
    assert sleep.delays == []


@pytest.mark.anyio
async def test_exhausted_retries_degrade_to_empty_text() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429)

    fetcher, sleep = build_fetcher(handler, max_attempts=3)
    text = await fetcher.fetch("https://example.com/busy")

    assert text == ""
    assert calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.anyio
async def test_fetch_with_retry_raises_fatal_after_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    sleep = RecordingSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(FatalIOError):
            await fetch_with_retry(
                client,
                "https://example.com/down",
                max_attempts=2,
                base_delay=0.5,
                sleep=sleep,
                jitter=lambda: 0.0,
            )
    assert sleep.delays == [0.5]


@pytest.mark.anyio
async def test_blocked_url_raises_without_network_call() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, text=ARTICLE_HTML)

    fetcher, _ = build_fetcher(handler)
    with pytest.raises(BlockedURLError):
        await fetcher.fetch("http://127.0.0.1/admin", user_id="user-1")
    assert calls == 0


@pytest.mark.anyio
async def test_rate_limit_raises_before_network_call() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, text=ARTICLE_HTML)

    fetcher, _ = build_fetcher(
        handler, rate_limiter=RateLimiter(max_requests=1, window_seconds=60)
    )
    await fetcher.fetch("https://example.com/a", user_id="user-1")

    with pytest.raises(RateLimitError):
        await fetcher.fetch("https://example.com/b", user_id="user-1")
    assert calls == 1


@pytest.mark.anyio
async def test_tweet_api_strategy_used_with_bearer_token() -> None:
    requested: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request)
        return httpx.Response(200, json={"data": {"id": "1234", "text": "Shipping Rust 2.0 today"}})

    fetcher, _ = build_fetcher(handler, strategies=default_strategies("token-abc"))
    text = await fetcher.fetch("https://x.com/rustlang/status/1234")

    assert text == "Shipping Rust 2.0 today"
    assert requested[0].url.host == "api.twitter.com"
    assert requested[0].url.path == "/2/tweets/1234"
    assert requested[0].headers["authorization"] == "Bearer token-abc"


@pytest.mark.anyio
async def test_tweet_meta_strategy_used_without_token() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(
            200,
            text='<html><head><meta property="og:description" content="Tweet body text"></head></html>',
        )

    fetcher, _ = build_fetcher(handler, strategies=default_strategies(None))
    text = await fetcher.fetch("https://twitter.com/rustlang/status/99")

    assert text == "Tweet body text"
    assert requested == ["https://twitter.com/rustlang/status/99"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "location",
    [
        "http://127.0.0.1:18765/admin",
        "http://localhost/admin",
        "http://127.1/",
        "http://intranet.example.com/secrets",
    ],
)
async def test_redirect_to_private_host_is_blocked(location: str) -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.host == "example.com":
            return httpx.Response(302, headers={"Location": location})
        return httpx.Response(200, text=ARTICLE_HTML)

    fetcher, _ = build_fetcher(handler)
    with pytest.raises(BlockedURLError):
        await fetcher.fetch("https://example.com/start")
    assert requested == ["https://example.com/start"]


@pytest.mark.anyio
async def test_redirect_to_public_host_is_followed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "example.com":
            return httpx.Response(301, headers={"Location": "https://www.example.org/post"})
        return httpx.Response(200, text=ARTICLE_HTML)

    fetcher, _ = build_fetcher(handler)
    text = await fetcher.fetch("https://example.com/old")

    assert "Rust ownership rules" in text


@pytest.mark.anyio
async def test_tweet_without_meta_does_not_fall_back_to_generic_html() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(
            200, text="<html><body><noscript>Enable JavaScript</noscript>Log in to X</body></html>"
        )

    fetcher, _ = build_fetcher(handler, strategies=default_strategies(None))
    text = await fetcher.fetch("https://x.com/rustlang/status/99")

    assert text == ""
    assert requested == ["https://x.com/rustlang/status/99"]


def test_generic_strategy_skips_twitter_urls() -> None:
    generic = GenericHTMLStrategy()

    assert generic.matches("https://example.com/post")
    assert not generic.matches("https://twitter.com/rustlang/status/99")
    assert not generic.matches("https://mobile.x.com/rustlang")


def test_extract_main_text_prefers_article_and_strips_chrome() -> None:
    text = extract_main_text(ARTICLE_HTML)

    assert text.startswith("Rust ownership rules")
    assert "Borrowing lets code read data" in text
    for chrome in ("Home | About", "Site banner", "Related links", "Copyright", "tracking"):
        assert chrome not in text


def test_extract_main_text_truncates() -> None:
    html = "<html><body><main>" + "word " * 5000 + "</main></body></html>"

    assert len(extract_main_text(html, max_chars=15000)) == 15000


def test_extract_tweet_id() -> None:
    assert extract_tweet_id("https://x.com/user/status/42?s=20") == "42"
    assert extract_tweet_id("https://mobile.twitter.com/user/statuses/7") == "7"
    assert extract_tweet_id("https://example.com/user/status/42") is None


def test_create_rich_content_skips_short_body() -> None:
    assert create_rich_content("Title", "https://a.io", "too short") == (
        "Title: Title\nLink: https://a.io"
    )
    body = "b" * 60
    assert create_rich_content("Title", "https://a.io", body) == (
        f"Title: Title\nLink: https://a.io\n\nContent:\n{body}"
    )
