"""HTML extraction for the three page templates the crawler understands.

All markup assumptions live here. Every function degrades instead of raising:
a missing element yields ``None`` or an empty collection.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from bs4 import BeautifulSoup, NavigableString


logger = logging.getLogger(__name__)

LISTING_REGION = "#wikimiddle"
PAGINATION_BOX = ".pagination-box"
TOTAL_PAGES_ATTR = "data-total-pages"
ARTICLE_LINK = ".twikilink"
ENTRY_TITLE = ".entry-title"
AKA_TITLE = ".aka-title"

_NAMESPACE_TOKEN = re.compile(r"\d+: (\w+)")
_AKA_PREFIX = re.compile(r"^\s*aka:\s*", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class PaginationInfo:
    total_pages: int

    @property
    def extra_pages(self) -> range:
        """Page numbers beyond the first."""
        return range(2, self.total_pages + 1)


def parse_html(html: str | bytes) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _as_soup(document: str | bytes | BeautifulSoup) -> BeautifulSoup:
    if isinstance(document, BeautifulSoup):
        return document
    return parse_html(document)


def extract_namespaces(document: str | bytes | BeautifulSoup) -> list[str]:
    """Namespace names listed as ``<count>: <Namespace>`` tokens in the listing region."""
    soup = _as_soup(document)
    region = soup.select_one(LISTING_REGION)
    if region is None:
        logger.debug("Listing page has no %s region", LISTING_REGION)
        return []

    names: list[str] = []
    seen: set[str] = set()
    for text in region.find_all(string=True):
        for match in _NAMESPACE_TOKEN.finditer(str(text)):
            name = match.group(1)
            if name not in seen:
                seen.add(name)
                names.append(name)
    return names


def extract_pagination_info(document: str | bytes | BeautifulSoup) -> PaginationInfo | None:
    soup = _as_soup(document)
    box = soup.select_one(PAGINATION_BOX)
    if box is None:
        return None
    raw = box.get(TOTAL_PAGES_ATTR)
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    try:
        total = int(str(raw).strip())
    except (TypeError, ValueError):
        logger.debug("Unreadable %s value: %r", TOTAL_PAGES_ATTR, raw)
        return None
    return PaginationInfo(total_pages=max(total, 1))


def extract_outbound_links(document: str | bytes | BeautifulSoup) -> list[str]:
    """Raw ``href`` values of every article-link anchor, in document order."""
    soup = _as_soup(document)
    hrefs: list[str] = []
    for anchor in soup.select(ARTICLE_LINK):
        href = anchor.get("href")
        # BeautifulSoup can return list for attribute values
        if isinstance(href, list):
            href = href[0] if href else None
        if isinstance(href, str) and href.strip():
            hrefs.append(href.strip())
    return hrefs


def _heading_text(soup: BeautifulSoup) -> str | None:
    heading = soup.select_one(ENTRY_TITLE)
    if heading is None:
        return None
    for child in heading.children:
        # Direct text only; comments and nested tags (spans, icons) are skipped
        if type(child) is NavigableString and child.strip():
            return child.strip()
    return None


def _aka_text(soup: BeautifulSoup) -> str | None:
    hint = soup.select_one(AKA_TITLE)
    if hint is None:
        return None
    text = _AKA_PREFIX.sub("", hint.get_text()).strip()
    return text or None


def extract_title(document: str | bytes | BeautifulSoup, *, alias: bool = False) -> str | None:
    """Article title.

    For alias pages the "also known as" hint is preferred, falling back to the
    heading's first non-blank text node.
    """
    soup = _as_soup(document)
    if alias and (aka := _aka_text(soup)):
        return aka
    return _heading_text(soup)
