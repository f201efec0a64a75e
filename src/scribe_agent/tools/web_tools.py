from __future__ import annotations

import asyncio
import re
from typing import Any, Mapping, Protocol
from urllib.parse import quote_plus, urlparse
from urllib.request import Request, urlopen

from .base import ToolCategory, ToolExecutionContext, ToolResult

USER_AGENT = "Mozilla/5.0"
MAX_FETCH_CHARS = 20000
BLOCK_TAGS = r"p|div|li|h[1-6]|br|tr|pre|blockquote|section|article"
STOPWORDS = frozenset(
    {"the", "and", "for", "with", "what", "this", "that", "from", "about", "are", "how", "does", "page"}
)


class HttpFetcher(Protocol):
    def fetch(self, url: str, timeout: float) -> str: ...


class UrllibFetcher:
    def fetch(self, url: str, timeout: float) -> str:
        request = Request(url, headers={"User-Agent": USER_AGENT})
        with urlopen(request, timeout=timeout) as response:
            charset = response.headers.get_content_charset() or "utf-8"
            return response.read().decode(charset, errors="ignore")


def _strip_html(html: str) -> str:
    html = re.sub(r"<(script|style)[^>]*>.*?</\1>", " ", html, flags=re.S | re.I)
    return re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", html)).strip()


def _passages(html: str) -> list[str]:
    html = re.sub(r"<(script|style)[^>]*>.*?</\1>", " ", html, flags=re.S | re.I)
    html = re.sub(rf"</?(?:{BLOCK_TAGS})\b[^>]*>", "\n", html, flags=re.I)
    return [text for text in (_strip_html(block) for block in html.split("\n")) if text]


def select_passages(html: str, query: str, max_chars: int = MAX_FETCH_CHARS) -> dict[str, Any]:
    """Keep the passages of a page that mention the query terms.

    Falls back to the page from the top when nothing matches.
    """
    passages = _passages(html)
    terms = {term for term in re.findall(r"\w+", query.lower()) if len(term) > 2 and term not in STOPWORDS}
    matching = [passage for passage in passages if any(term in passage.lower() for term in terms)]
    text = "\n\n".join(matching or passages)
    return {
        "content": text[:max_chars],
        "matched_passages": len(matching),
        "truncated": len(text) > max_chars,
    }


def parse_search_results(html: str, limit: int) -> list[dict[str, str]]:
    links = re.findall(r'<a[^>]+class="result__a"[^>]+href="([^"]+)"[^>]*>(.*?)</a>', html, flags=re.S)
    snippets = re.findall(
        r'<(?:a|div)[^>]+class="result__snippet"[^>]*>(.*?)</(?:a|div)>', html, flags=re.S
    )
    results = []
    for index, (link, title) in enumerate(links[:limit]):
        snippet = _strip_html(snippets[index]) if index < len(snippets) else ""
        results.append({"title": _strip_html(title), "link": link.strip(), "snippet": snippet[:280]})
    return results


class WebSearchTool:
    name = "web_search"
    display_name = "Web Search"
    category = ToolCategory.READ_ONLY
    description = "Search the web and return the top results with title, link and snippet."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query"},
            "limit": {"type": "number", "description": "Maximum number of results (default 5)"},
        },
        "required": ["query"],
    }

    def __init__(self, fetcher: HttpFetcher, timeout: float = 8) -> None:
        self.fetcher = fetcher
        self.timeout = timeout

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        query = str(args.get("query") or "").strip()
        if not query:
            return ToolResult.fail("Missing query")
        limit = max(1, int(args.get("limit") or 5))

        url = f"https://html.duckduckgo.com/html/?q={quote_plus(query)}"
        try:
            html = await asyncio.to_thread(self.fetcher.fetch, url, self.timeout)
        except OSError as exc:
            return ToolResult.fail(f"Search failed: {exc}")

        results = parse_search_results(html, limit)
        return ToolResult.ok({"query": query, "results": results, "count": len(results)})


class WebFetchTool:
    name = "web_fetch"
    display_name = "Web Fetch"
    category = ToolCategory.READ_ONLY
    description = (
        "Fetch a web page and return the passages of its text that mention the query terms, "
        "or the start of the page when none do."
    )
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to fetch"},
            "query": {
                "type": "string",
                "description": "What information to extract from the page",
            },
        },
        "required": ["url", "query"],
    }

    def __init__(self, fetcher: HttpFetcher, timeout: float = 8) -> None:
        self.fetcher = fetcher
        self.timeout = timeout

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        url = str(args["url"]).strip()
        if urlparse(url).scheme not in {"http", "https"}:
            return ToolResult.fail(f"Only http and https URLs are supported: {url}")

        try:
            html = await asyncio.to_thread(self.fetcher.fetch, url, self.timeout)
        except OSError as exc:
            return ToolResult.fail(f"Failed to fetch {url}: {exc}")

        query = str(args["query"])
        return ToolResult.ok({"url": url, "query": query, **select_passages(html, query)})


def web_tools(fetcher: HttpFetcher, timeout: float = 8) -> list[WebSearchTool | WebFetchTool]:
    return [WebSearchTool(fetcher, timeout), WebFetchTool(fetcher, timeout)]
