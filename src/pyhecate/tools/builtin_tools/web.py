from __future__ import annotations

import html
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any

from ..base import ToolCategory, ToolContext, ToolError, ToolSpec, int_arg, integer, object_schema, str_arg, string

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0"
SEARCH_URL = "https://html.duckduckgo.com/html/?q="
MAX_BODY = 1024 * 1024
DEFAULT_MAX_LENGTH = 5000
MAX_LENGTH = 50000

_BLOCK_TAGS = {"p", "div", "br", "hr", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr", "article", "section"}
_SKIP_TAGS = {"script", "style", "noscript"}


class _HTMLTextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0
        self._href: str | None = None

    def handle_starttag(self, tag: str, attrs):  # type: ignore[override]
        tag = tag.lower()
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")
        elif tag == "a":
            self._href = dict(attrs).get("href")

    def handle_endtag(self, tag: str):  # type: ignore[override]
        tag = tag.lower()
        if tag in _SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")
        elif tag == "a":
            if self._href and self._href.startswith("http"):
                self._parts.append(f" ({self._href})")
            self._href = None

    def handle_data(self, data: str):  # type: ignore[override]
        if self._skip_depth > 0:
            return
        self._parts.append(data)

    def text(self) -> str:
        joined = "".join(self._parts)
        joined = re.sub(r"[ \t]+", " ", joined)
        joined = re.sub(r"\n\s*\n\s*", "\n\n", joined)
        return joined.strip()


def html_to_text(raw: str) -> str:
    parser = _HTMLTextExtractor()
    parser.feed(raw)
    parser.close()
    return parser.text()


def _fetch(url: str, timeout: float, accept: str = "*/*") -> tuple[bytes, str]:
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT, "Accept": accept})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read(MAX_BODY)
            content_type = (resp.headers.get("Content-Type") or "").lower()
    except urllib.error.HTTPError as e:
        raise ToolError(f"fetch returned status {e.code}")
    except (urllib.error.URLError, OSError) as e:
        raise ToolError(f"fetch failed: {e}")
    return body, content_type


def _decode(raw: bytes) -> str:
    for enc in ("utf-8", "utf-8-sig"):
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("latin-1")


# ---------------------------------------------------------
# web_search
# ---------------------------------------------------------

_RESULT_RE = re.compile(r'<a[^>]*class="result__a"[^>]*href="([^"]*)"[^>]*>(.*?)</a>', re.S)
_SNIPPET_RE = re.compile(r'<a[^>]*class="result__snippet"[^>]*>(.*?)</a>', re.S)
_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str = ""


def _clean(fragment: str) -> str:
    return html.unescape(_TAG_RE.sub("", fragment)).strip()


def extract_ddg_url(href: str) -> str:
    """Unwrap DuckDuckGo's ``/l/?uddg=...`` redirect links."""
    href = html.unescape(href)
    if "uddg=" in href:
        encoded = href.split("uddg=", 1)[1].split("&", 1)[0]
        return urllib.parse.unquote(encoded)
    if href.startswith("http"):
        return href
    return ""


def parse_ddg_results(page: str, max_results: int) -> list[SearchResult]:
    links = _RESULT_RE.findall(page)
    snippets = _SNIPPET_RE.findall(page)
    out: list[SearchResult] = []
    for i, (href, title) in enumerate(links):
        if len(out) >= max_results:
            break
        url = extract_ddg_url(href)
        if not url:
            continue
        snippet = _clean(snippets[i]) if i < len(snippets) else ""
        out.append(SearchResult(title=_clean(title), url=url, snippet=snippet))
    return out


class WebSearchTool:
    spec = ToolSpec(
        name="web_search",
        description="Search the web using DuckDuckGo. Returns titles, URLs, and snippets for matching pages.",
        parameters=object_schema(
            {
                "query": string("Search query"),
                "num_results": integer("Number of results to return (default: 5, max: 10)"),
            },
            ["query"],
        ),
        category=ToolCategory.WEB,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        query = str_arg(args, "query").strip()
        if not query:
            raise ToolError("query is required")
        n = int_arg(args, "num_results", 5)
        if n <= 0:
            n = 5
        n = min(n, 10)

        body, _ = _fetch(SEARCH_URL + urllib.parse.quote_plus(query), timeout=15, accept="text/html")
        results = parse_ddg_results(_decode(body), n)
        if not results:
            return f"No results found for: {query}"

        out = [f"Search results for '{query}':", ""]
        for i, r in enumerate(results, start=1):
            out.append(f"{i}. {r.title}")
            out.append(f"   URL: {r.url}")
            if r.snippet:
                out.append(f"   {r.snippet}")
            out.append("")
        return "\n".join(out)


# ---------------------------------------------------------
# web_fetch
# ---------------------------------------------------------


class WebFetchTool:
    """Fetch a URL and return readable text, without extra dependencies."""

    spec = ToolSpec(
        name="web_fetch",
        description="Fetch a web page and extract its text content. HTML is converted to readable text.",
        parameters=object_schema(
            {
                "url": string("URL to fetch"),
                "max_length": integer(f"Maximum content length in characters (default: {DEFAULT_MAX_LENGTH})"),
            },
            ["url"],
        ),
        category=ToolCategory.WEB,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        url = str_arg(args, "url").strip()
        if not url:
            raise ToolError("url is required")
        scheme = urllib.parse.urlparse(url).scheme.lower()
        if scheme not in {"http", "https"}:
            raise ToolError("only http and https URLs are supported")
        max_length = int_arg(args, "max_length", DEFAULT_MAX_LENGTH)
        if max_length <= 0:
            max_length = DEFAULT_MAX_LENGTH
        max_length = min(max_length, MAX_LENGTH)

        body, content_type = _fetch(url, timeout=30, accept="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8")
        text = _decode(body)
        if "text/plain" not in content_type:
            text = html_to_text(text)
        if len(text) > max_length:
            text = text[:max_length] + "\n\n... (truncated)"
        return f"Content from: {url}\n\n{text}"
