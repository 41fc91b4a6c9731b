"""Extract the main article from documentation HTML and convert it to Markdown."""

import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

import html2text
from bs4 import BeautifulSoup
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

# Page chrome removed before readability sees the DOM
BOILERPLATE_SELECTORS = (
    "nav, .nav, .navigation, .sidebar, .header, .footer, "
    ".menu, .breadcrumb, .pagination, script, style, "
    ".advertisement, .ad, .social-share"
)
# Likely content containers, probed when readability finds no article
FALLBACK_SELECTORS = ".dynamic-markdown-component, main, article, .content, .markdown-body"

_EXTENSION_RE = re.compile(r"\.html?$", re.IGNORECASE)


@dataclass(frozen=True)
class FetchResult:
    """A fully extracted document. Never built partially."""

    title: str
    markdown: str
    source_url: str
    path: str
    strategy: str = ""


def title_from_path(path: str) -> str:
    """Fallback title: last path segment without extension, dashes/underscores as spaces."""
    segments = [s for s in path.split("/") if s]
    last = segments[-1] if segments else "index"
    return _EXTENSION_RE.sub("", last).replace("-", " ").replace("_", " ").strip() or "index"


def to_markdown(html: str, base_url: str = "") -> str:
    """Convert an HTML fragment to Markdown (ATX headings, '-' bullets, no hard wrapping)."""
    h = html2text.HTML2Text(baseurl=base_url)
    h.body_width = 0
    h.ul_item_mark = "-"
    h.ignore_images = False
    h.ignore_links = False
    h.ignore_emphasis = False
    return h.handle(html).strip()


def _normalize_text(s: str) -> str:
    """Normalize whitespace and ensure valid text."""
    lines = (line.strip() for line in s.splitlines())
    return "\n".join(line for line in lines if line)


def strip_boilerplate(html: str) -> BeautifulSoup:
    """Parse html and drop navigation, sidebars, footers, scripts and ads."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.select(BOILERPLATE_SELECTORS):
        tag.decompose()
    return soup


def _readability_article(cleaned_html: str) -> tuple[str, str] | None:
    """Return (title, article_html) from readability, or None if it found nothing."""
    try:
        doc = Document(cleaned_html)
        summary = doc.summary(html_partial=True)
        title = doc.short_title() or ""
    except (Unparseable, ParserError, ValueError):
        return None
    if not summary or not BeautifulSoup(summary, "lxml").get_text(strip=True):
        return None
    # readability falls back to "[no-title]" when the page has no <title>
    if title == "[no-title]":
        title = ""
    return title, summary


def _probe_containers(soup: BeautifulSoup) -> str | None:
    """Inner HTML of the first likely content container, or None."""
    node = soup.select_one(FALLBACK_SELECTORS)
    if node is None:
        return None
    return node.decode_contents()


def extract_content(
    html: str,
    url: str,
    path: str,
    *,
    min_chars: int = 20,
    strategy: str = "",
) -> FetchResult | None:
    """
    Extract the main article. Prefer readability-lxml on the de-chromed page; fall
    back to a selector probe of likely containers. Returns None when nothing with
    at least min_chars of text was found.
    """
    soup = strip_boilerplate(html)
    article = _readability_article(str(soup))
    if article is not None:
        title, content_html = article
    else:
        content_html = _probe_containers(soup)
        if content_html is None:
            return None
        title = ""
    text = _normalize_text(BeautifulSoup(content_html, "lxml").get_text(separator="\n"))
    if len(text) < min_chars:
        return None
    return FetchResult(
        title=title.strip() or title_from_path(path),
        markdown=to_markdown(content_html, url),
        source_url=url,
        path=path,
        strategy=strategy,
    )


def _resolve_urls(base_url: str, seen: set[str], *candidates: str) -> list[str]:
    """Resolve candidate hrefs to absolute URLs and return new ones (deduped)."""
    out: list[str] = []
    for raw in candidates:
        if not raw or not isinstance(raw, str):
            continue
        raw = raw.strip()
        if not raw or raw.startswith(("#", "mailto:", "javascript:", "data:")):
            continue
        u = urljoin(base_url, raw)
        if u and u not in seen:
            seen.add(u)
            out.append(u)
    return out


def find_doc_paths(soup: BeautifulSoup, page_url: str, base_url: str, prefix: str) -> list[str]:
    """
    Site-relative document paths linked from a page. A link qualifies when its
    path, relative to base_url's path, starts with prefix. Order of first
    appearance is kept; query and fragment are dropped.
    """
    seen: set[str] = set()
    paths: list[str] = []
    base = urlparse(base_url)
    base_path = base.path.rstrip("/")
    for a in soup.select("a[href]"):
        for abs_url in _resolve_urls(page_url, seen, a.get("href", "")):
            parsed = urlparse(abs_url)
            if parsed.scheme not in ("http", "https") or parsed.netloc != base.netloc:
                continue
            path = parsed.path
            if base_path and path.startswith(base_path + "/"):
                path = path[len(base_path):]
            if path.startswith(prefix) and path not in paths:
                paths.append(path)
    return paths
