"""URL canonicalization and article identity helpers.

Every URL that enters a work queue or the visited set goes through
:func:`canonicalize`, so two spellings of the same article collapse to one
identity key. The functions here are pure; none of them raise.
"""

from __future__ import annotations

import re
import string
from urllib.parse import parse_qs, urlsplit

from .models import PageRecord


DEFAULT_HOST = "tvtropes.org"
SCHEME = "https://"

ARTICLE_PATH = "/pmwiki/pmwiki.php"
NAMESPACE_INDEX_PATH = "/pmwiki/namespace_index.php"
LISTING_PATH = "/pmwiki/articlecount.php"

SAFE_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-._~:/?#[]@!$&'()*+,;=")
_PERCENT_TRIPLE = re.compile(r"%[0-9A-Fa-f]{2}")


def absolute(url_or_path: str, *, host: str = DEFAULT_HOST) -> str:
    """Turn a URL, host-relative path or bare fragment into an https URL."""
    lowered = url_or_path.lower()
    if lowered.startswith(("https://", "http://")):
        remainder = url_or_path[lowered.index("://") + 3 :]
    elif lowered.startswith("//"):
        remainder = url_or_path[2:]
    elif lowered.startswith(host):
        remainder = url_or_path
    elif url_or_path.startswith("/"):
        remainder = f"{host}{url_or_path}"
    else:
        remainder = f"{host}/{url_or_path}"

    netloc, slash, rest = remainder.partition("/")
    netloc = netloc.lower() or host
    return f"{SCHEME}{netloc}{slash}{rest}"


def escape(url: str) -> str:
    """Percent-encode every character outside the safe set, byte by byte (lowercase hex)."""
    escaped: list[str] = []
    index = 0
    while index < len(url):
        char = url[index]
        if char == "%":
            if _PERCENT_TRIPLE.match(url, index):
                escaped.append(url[index : index + 3])
                index += 3
                continue
            escaped.append("%25")
        elif char in SAFE_CHARACTERS:
            escaped.append(char)
        else:
            escaped.extend(f"%{byte:02x}" for byte in char.encode("utf-8"))
        index += 1
    return "".join(escaped)


def canonicalize(url_or_path: str, *, host: str = DEFAULT_HOST) -> str:
    """Return the canonical, fully escaped absolute URL for ``url_or_path``.

    Examples:
        >>> canonicalize("/pmwiki/pmwiki.php/Main/Foo")
        'https://tvtropes.org/pmwiki/pmwiki.php/Main/Foo'
        >>> canonicalize("http://TVTropes.org/pmwiki/pmwiki.php/Main/Café")
        'https://tvtropes.org/pmwiki/pmwiki.php/Main/Caf%c3%a9'
    """
    return escape(absolute(url_or_path, host=host))


def page_identity(url: str) -> tuple[str | None, str | None]:
    """Extract ``(namespace, id)`` from an article URL's path segments."""
    segments = urlsplit(url).path.split("/")
    namespace = segments[3] if len(segments) > 3 and segments[3] else None
    article_id = segments[4] if len(segments) > 4 and segments[4] else None
    return namespace, article_id


def strip_query(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def has_page_param(url: str) -> bool:
    return "page" in parse_qs(urlsplit(url).query)


def article_url(namespace: str, article_id: str, *, host: str = DEFAULT_HOST) -> str:
    return canonicalize(f"{ARTICLE_PATH}/{namespace}/{article_id}", host=host)


def namespace_index_url(namespace: str, *, host: str = DEFAULT_HOST) -> str:
    return canonicalize(f"{NAMESPACE_INDEX_PATH}?ns={namespace}", host=host)


def listing_url(page: int, *, host: str = DEFAULT_HOST) -> str:
    return canonicalize(f"{LISTING_PATH}?page={page}", host=host)


def alias_landing_url(record: PageRecord, *, host: str = DEFAULT_HOST) -> str | None:
    """URL a redirecting article lands on, e.g. ``.../Main/NewName?from=Main.OldName``."""
    if not record.is_alias:
        return None
    path = f"{ARTICLE_PATH}/{record.alias_of_namespace}/{record.alias_of_id}?from={record.namespace}.{record.id}"
    return canonicalize(path, host=host)
