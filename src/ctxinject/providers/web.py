"""Web page provider.

Fetches pages with httpx and extracts readable text, headings and code
blocks with BeautifulSoup. Responses are cached per URL for a limited time.
"""

import re
import time
from dataclasses import dataclass

import httpx
import structlog
from bs4 import BeautifulSoup

from ctxinject.config import settings
from ctxinject.context.models import Source, SourceMetadata, SourceType
from ctxinject.context.tokens import estimate_tokens
from ctxinject.utils.datetime import utc_now

from .base import FetchResult, SourceNotFoundError, SourceProvider, WebFetchError

logger = structlog.get_logger(__name__)

# Tried in order; the first present element supplies the main text
CONTENT_SELECTORS = (
    "main",
    "article",
    '[role="main"]',
    "#content",
    ".content",
    ".documentation",
    ".markdown-body",
)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class _CacheEntry:
    result: FetchResult
    timestamp: float  # time.monotonic() at fetch


def _stripped_texts(soup: BeautifulSoup, names: list[str]) -> list[str]:
    texts = (element.get_text().strip() for element in soup.find_all(names))
    return [text for text in texts if text]


def extract_content(html: str, url: str) -> str:
    """Turn an HTML page into plain text for context injection.

    The result lists the page's h1-h3 headings under "Structure", the main
    content area's whitespace-collapsed text under "Content", and every
    ``pre``/``code`` block under "Code Examples".
    """
    soup = BeautifulSoup(html, "html.parser")

    for element in soup(["script", "style", "noscript"]):
        element.decompose()

    main_content = ""
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            main_content = element.get_text()
            break

    if not main_content and soup.body is not None:
        main_content = soup.body.get_text()

    code_blocks = _stripped_texts(soup, ["pre", "code"])
    headings = _stripped_texts(soup, ["h1", "h2", "h3"])

    parts = [f"URL: {url}\n\n"]

    if headings:
        parts.append("Structure:\n")
        parts.extend(f"- {heading}\n" for heading in headings)
        parts.append("\n")

    parts.append("Content:\n")
    parts.append(_WHITESPACE.sub(" ", main_content).strip())

    if code_blocks:
        parts.append("\n\nCode Examples:\n")
        parts.extend(f"```\n{code}\n```\n\n" for code in code_blocks)

    return "".join(parts)


class WebProvider(SourceProvider):
    """Fetch and extract web pages."""

    source_type = SourceType.WEB

    def __init__(
        self,
        timeout: float | None = None,
        cache_ttl: float | None = None,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize provider.

        Args:
            timeout: Request timeout in seconds (default: settings.providers)
            cache_ttl: Seconds a fetched page is reused (default: settings.providers)
            user_agent: User-Agent header (default: settings.providers)
            client: Shared client to use instead of one client per request;
                the caller keeps ownership
        """
        self._timeout = (
            timeout if timeout is not None else settings.providers.web_timeout
        )
        self._cache_ttl = (
            cache_ttl if cache_ttl is not None else settings.providers.web_cache_ttl
        )
        self._user_agent = user_agent or settings.providers.user_agent
        self._client = client
        self._cache: dict[str, _CacheEntry] = {}

    async def fetch(self, source: Source) -> FetchResult:
        """Fetch a web source, serving from cache while fresh.

        Raises:
            SourceNotFoundError: If the source has no URL
            WebFetchError: On timeout, transport error or non-success status
        """
        if not source.url:
            raise SourceNotFoundError(f"Web source '{source.name}' has no url")
        url = source.url

        cached = self._cache.get(url)
        if cached is not None and time.monotonic() - cached.timestamp < self._cache_ttl:
            logger.debug("web_cache_hit", url=url)
            return cached.result

        response = await self._get(url)
        if not response.is_success:
            raise WebFetchError(
                f"HTTP error fetching {url}: status {response.status_code}",
                status_code=response.status_code,
            )

        html = response.text
        content = extract_content(html, url)
        metadata = SourceMetadata(
            mime_type=response.headers.get("content-type", "text/html"),
            size=len(response.content),
            web_last_crawled=utc_now(),
            tokens=estimate_tokens(content),
        )
        result = FetchResult(content=content, metadata=metadata)
        self._cache[url] = _CacheEntry(result=result, timestamp=time.monotonic())

        logger.debug(
            "web_page_fetched", url=url, size=metadata.size, tokens=metadata.tokens
        )
        return result

    async def _get(self, url: str) -> httpx.Response:
        headers = {"User-Agent": self._user_agent}
        try:
            if self._client is not None:
                return await self._client.get(
                    url, headers=headers, timeout=self._timeout, follow_redirects=True
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.get(url, headers=headers, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise WebFetchError(
                f"Timed out after {self._timeout}s fetching {url}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise WebFetchError(f"Failed to fetch {url}: {e}") from e

    def clear_cache(self) -> None:
        """Forget all cached pages."""
        self._cache.clear()
