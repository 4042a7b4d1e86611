"""Tests for URL canonicalization and article identity helpers."""

import re

import pytest

from tropes_crawler.models import PageRecord
from tropes_crawler.urls import (
    SAFE_CHARACTERS,
    alias_landing_url,
    article_url,
    canonicalize,
    escape,
    has_page_param,
    listing_url,
    namespace_index_url,
    page_identity,
    strip_query,
)


SAMPLES = [
    "/pmwiki/pmwiki.php/Main/Foo",
    "http://TVTropes.org/pmwiki/pmwiki.php/Main/Foo",
    "HTTPS://tvtropes.org/pmwiki/pmwiki.php/Main/Foo",
    "//tvtropes.org/pmwiki/pmwiki.php/Film/Bar",
    "tvtropes.org/pmwiki/pmwiki.php/Film/Bar",
    "pmwiki/pmwiki.php/Main/Relative",
    "/pmwiki/pmwiki.php/Main/Café",
    "/pmwiki/pmwiki.php/Main/A Space",
    "/pmwiki/pmwiki.php/Main/100%",
    "/pmwiki/pmwiki.php/Main/Pre%2Fescaped",
    "/pmwiki/pmwiki.php/Main/Bad%zz",
    '/pmwiki/pmwiki.php/Main/Quote"{|}^`\\',
    "/pmwiki/namespace_index.php?ns=Main&page=2",
    "https:///pmwiki/pmwiki.php/Main/NoHost",
    "/pmwiki/pmwiki.php/Main/日本",
    "",
]

_ESCAPED_OR_SAFE = re.compile(r"(?:%[0-9A-Fa-f]{2}|[" + re.escape("".join(sorted(SAFE_CHARACTERS))) + r"])*")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("/pmwiki/pmwiki.php/Main/Foo", "https://tvtropes.org/pmwiki/pmwiki.php/Main/Foo"),
        ("http://TVTropes.org/pmwiki/pmwiki.php/Main/Foo", "https://tvtropes.org/pmwiki/pmwiki.php/Main/Foo"),
        ("//tvtropes.org/pmwiki/pmwiki.php/Film/Bar", "https://tvtropes.org/pmwiki/pmwiki.php/Film/Bar"),
        ("tvtropes.org/pmwiki/pmwiki.php/Film/Bar", "https://tvtropes.org/pmwiki/pmwiki.php/Film/Bar"),
        ("Main/Foo", "https://tvtropes.org/Main/Foo"),
        ("https:///pmwiki/pmwiki.php/Main/NoHost", "https://tvtropes.org/pmwiki/pmwiki.php/Main/NoHost"),
        ("/pmwiki/pmwiki.php/Main/Café", "https://tvtropes.org/pmwiki/pmwiki.php/Main/Caf%c3%a9"),
        ("/pmwiki/pmwiki.php/Main/A Space", "https://tvtropes.org/pmwiki/pmwiki.php/Main/A%20Space"),
    ],
)
def test_canonicalize_known_forms(raw, expected):
    assert canonicalize(raw) == expected


@pytest.mark.parametrize("raw", SAMPLES)
def test_canonicalize_is_idempotent(raw):
    once = canonicalize(raw)
    assert canonicalize(once) == once


@pytest.mark.parametrize("raw", SAMPLES)
def test_canonical_form_only_contains_safe_characters_or_escapes(raw):
    assert _ESCAPED_OR_SAFE.fullmatch(canonicalize(raw))


def test_escape_keeps_valid_percent_triples_and_escapes_stray_percent():
    assert escape("100%") == "100%25"
    assert escape("%2F") == "%2F"
    assert escape("%zz") == "%25zz"
    assert escape("a%2") == "a%252"


def test_escape_encodes_multibyte_characters_per_byte():
    assert escape("é") == "%c3%a9"
    assert escape("日") == "%e6%97%a5"


def test_canonicalize_uses_configured_host():
    assert canonicalize("/pmwiki/pmwiki.php/Main/Foo", host="mirror.test") == (
        "https://mirror.test/pmwiki/pmwiki.php/Main/Foo"
    )


@pytest.mark.parametrize(
    ("url", "identity"),
    [
        ("https://tvtropes.org/pmwiki/pmwiki.php/Main/Foo", ("Main", "Foo")),
        ("https://tvtropes.org/pmwiki/pmwiki.php/Main/NewName?from=Main.OldName", ("Main", "NewName")),
        ("https://tvtropes.org/pmwiki/pmwiki.php/Main", ("Main", None)),
        ("https://tvtropes.org/pmwiki/pmwiki.php/Main/", ("Main", None)),
        ("https://tvtropes.org/pmwiki/articlecount.php?page=1", (None, None)),
    ],
)
def test_page_identity(url, identity):
    assert page_identity(url) == identity


def test_url_builders():
    assert article_url("Main", "Foo") == "https://tvtropes.org/pmwiki/pmwiki.php/Main/Foo"
    assert namespace_index_url("Film") == "https://tvtropes.org/pmwiki/namespace_index.php?ns=Film"
    assert listing_url(37) == "https://tvtropes.org/pmwiki/articlecount.php?page=37"


def test_alias_landing_url():
    alias = PageRecord("Main", "OldName", 301, "Old Name", "Main", "NewName")
    plain = PageRecord("Main", "Foo", 200, "Foo")

    assert alias_landing_url(alias) == "https://tvtropes.org/pmwiki/pmwiki.php/Main/NewName?from=Main.OldName"
    assert alias_landing_url(plain) is None


def test_strip_query_and_page_param():
    url = "https://tvtropes.org/pmwiki/namespace_index.php?ns=Main&page=2"

    assert strip_query(url) == "https://tvtropes.org/pmwiki/namespace_index.php"
    assert has_page_param(url)
    assert not has_page_param("https://tvtropes.org/pmwiki/namespace_index.php?ns=Main")
