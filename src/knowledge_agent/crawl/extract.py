"""HTML to markdown-like page extraction."""

from __future__ import annotations

import logging
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from knowledge_agent.types import PageDocument

logger = logging.getLogger(__name__)

_HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_BLOCK_TAGS = (*_HEADINGS, "p", "li")


def extract_page(url: str, html: str) -> PageDocument:
    """Extract headings, paragraphs, list items, and links in document order.

    Headings render with one `#` per heading level, paragraphs as plain lines,
    and list items as `- ` prefixed lines.
    """

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(" ", strip=True) if soup.title else ""
    document = PageDocument(url=url, title=title or url)

    root = soup.body or soup
    for element in root.find_all(_BLOCK_TAGS):
        text = element.get_text(" ", strip=True)
        if not text:
            continue
        if element.name in _HEADINGS:
            level = int(element.name[1])
            document.blocks.append(f"{'#' * level} {text}\n\n")
        elif element.name == "p":
            document.blocks.append(f"{text}\n\n")
        else:
            document.blocks.append(f"- {text}\n")

    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.startswith(("mailto:", "javascript:", "tel:")):
            continue
        try:
            link = canonicalize_url(urljoin(url, href))
        except ValueError as exc:
            logger.debug("Ignoring malformed link %r on %s: %s", href, url, exc)
            continue
        document.links.append(link)
    return document


def canonicalize_url(url: str) -> str:
    """Drop the fragment and lower-case scheme and host."""

    without_fragment, _ = urldefrag(url)
    parts = urlsplit(without_fragment)
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, "")
    )


def origin_of(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()
