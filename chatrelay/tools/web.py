"""
Web tools: search through the Brave Search API and fetch a single URL.

Both tools draw from the same per-user ``RateLimiter`` budget.  Every
failure mode (missing credential, rate limit, timeout, HTTP error, binary
content) is reported as text rather than raised.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re

import httpx

from chatrelay.store.base import CredentialProvider
from chatrelay.tools.base import Tool, ToolContext, ToolKind
from chatrelay.tools.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
# raw page bytes read before cleaning; pages are truncated to max_chars anyway
MAX_BODY_BYTES = 2_000_000
RATE_LIMIT_MESSAGE = (
    "Rate limit exceeded: too many web requests in the last minute. "
    "Please wait a moment before trying again."
)

_URL_RE = re.compile(r"https?://\S+")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style|noscript)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

TEXT_CONTENT_TYPES = (
    "text/",
    "application/json",
    "application/xml",
    "application/xhtml+xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/javascript",
    "application/ld+json",
)


def extract_url(value: str) -> str:
    """Return the first embedded http(s) URL, or the trimmed input if none."""
    cleaned = (value or "").strip()
    m = _URL_RE.search(cleaned)
    return m.group(0) if m else cleaned


def is_text_content_type(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return any(media_type.startswith(t) for t in TEXT_CONTENT_TYPES)


def clean_text(raw: str) -> str:
    without_scripts = _SCRIPT_STYLE_RE.sub(" ", raw)
    without_comments = _COMMENT_RE.sub(" ", without_scripts)
    no_tags = _TAG_RE.sub(" ", without_comments)
    return _WS_RE.sub(" ", html.unescape(no_tags)).strip()


class WebSearchTool(Tool):
    def __init__(
        self,
        credentials: CredentialProvider,
        rate_limiter: RateLimiter,
        max_results: int = 5,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._limiter = rate_limiter
        self.max_results = max_results
        self.timeout = timeout
        self._transport = transport

    @property
    def kind(self) -> ToolKind:
        return ToolKind.WEB_SEARCH

    @property
    def description(self) -> str:
        return "Search the web for current information"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query"},
            },
            "required": ["query"],
        }

    @property
    def rate_limited(self) -> bool:
        return True

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        query = args["query"].strip()
        if not query:
            return "Please provide a search query."

        api_key = self._credentials.get_search_credential()
        if not api_key:
            return (
                "Web search is not configured. An administrator needs to set "
                "a search API key before this tool can be used."
            )

        if not self._limiter.allow(ctx.user_id or "anonymous"):
            logger.info("web_search rate limited for user %s", ctx.user_id)
            return RATE_LIMIT_MESSAGE

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.get(
                    BRAVE_SEARCH_URL,
                    params={"q": query, "count": self.max_results},
                    headers={
                        "Accept": "application/json",
                        "X-Subscription-Token": api_key,
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException:
            return f'Search timed out for "{query}". Please try again later.'
        except httpx.HTTPStatusError as e:
            return f"Search failed: HTTP {e.response.status_code}"
        except httpx.HTTPError as e:
            return f"Search failed: {e}"

        results = (data.get("web") or {}).get("results") or []
        if not results:
            return f'No results found for "{query}".'

        lines = [f'Search results for "{query}":', ""]
        for i, r in enumerate(results[: self.max_results], 1):
            lines.append(f"{i}. {r.get('title') or '(untitled)'}")
            lines.append(f"   URL: {r.get('url', '')}")
            snippet = clean_text(r.get("description") or "")
            if snippet:
                lines.append(f"   {snippet}")
            lines.append("")
        return "\n".join(lines).rstrip()


class WebFetchTool(Tool):
    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout: float = 10.0,
        max_chars: int = 8000,
        max_bytes: int = MAX_BODY_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = rate_limiter
        self.timeout = timeout
        self.max_chars = max_chars
        self.max_bytes = max_bytes
        self._transport = transport

    @property
    def kind(self) -> ToolKind:
        return ToolKind.WEB_FETCH

    @property
    def description(self) -> str:
        return "Fetch a web page and return its readable text content"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The http(s) URL to fetch"},
            },
            "required": ["url"],
        }

    @property
    def rate_limited(self) -> bool:
        return True

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        url = extract_url(args["url"])
        if not url.startswith(("http://", "https://")):
            return f"Invalid URL: {url!r}. Only http:// and https:// URLs are supported."

        if not self._limiter.allow(ctx.user_id or "anonymous"):
            logger.info("web_fetch rate limited for user %s", ctx.user_id)
            return RATE_LIMIT_MESSAGE

        try:
            status, content_type, body = await asyncio.wait_for(
                self._fetch(url), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return f"Timed out fetching {url} after {self.timeout:g} seconds."
        except httpx.HTTPError as e:
            return f"Failed to fetch URL: {e}"

        if status >= 400:
            return f"Failed to fetch URL: HTTP {status}"

        if not is_text_content_type(content_type):
            return (
                f"Unsupported content type: {content_type or 'unknown'}. "
                "Only text-based pages can be fetched."
            )

        text = clean_text(body)
        if not text:
            return f"Content from {url}:\n\n(no readable content)"
        if len(text) > self.max_chars:
            text = text[: self.max_chars] + "\n\n[Content truncated]"
        return f"Content from {url}:\n\n{text}"

    async def _fetch(self, url: str) -> tuple[int, str, str]:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
            headers={"User-Agent": "chatrelay/0.1 (+web_fetch)"},
        ) as client:
            async with client.stream("GET", url) as resp:
                content_type = resp.headers.get("content-type", "")
                if resp.status_code >= 400 or not is_text_content_type(content_type):
                    return resp.status_code, content_type, ""
                body = bytearray()
                async for piece in resp.aiter_bytes():
                    body.extend(piece)
                    if len(body) >= self.max_bytes:
                        logger.info("web_fetch stopped reading %s at %d bytes", url, len(body))
                        break
                text = bytes(body).decode(resp.encoding or "utf-8", errors="replace")
                return resp.status_code, content_type, text
