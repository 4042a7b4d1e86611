"""Tests for HTML extraction helpers."""

import pytest

from tests.fixtures.fake_site import listing_html, namespace_html
from tropes_crawler.extraction import (
    extract_namespaces,
    extract_outbound_links,
    extract_pagination_info,
    extract_title,
    parse_html,
)


class TestNamespaces:
    def test_tokens_in_listing_region(self):
        assert extract_namespaces(listing_html("Main", "Film", "Literature")) == ["Main", "Film", "Literature"]

    def test_duplicates_and_text_outside_region_are_ignored(self):
        html = (
            "<html><body><p>99: Outside</p>"
            '<div id="wikimiddle"><p>12: Main</p><span>3: Main</span> 4: Film, not-a-token: Nope</div>'
            "</body></html>"
        )

        assert extract_namespaces(html) == ["Main", "Film"]

    def test_missing_region_yields_nothing(self):
        assert extract_namespaces("<html><body><p>12: Main</p></body></html>") == []


class TestPagination:
    def test_total_pages(self):
        info = extract_pagination_info(namespace_html(total_pages=4))

        assert info is not None
        assert info.total_pages == 4
        assert list(info.extra_pages) == [2, 3, 4]

    def test_single_page_has_no_extra_pages(self):
        info = extract_pagination_info(namespace_html(total_pages=1))

        assert info is not None
        assert list(info.extra_pages) == []

    @pytest.mark.parametrize(
        "html",
        [
            "<html><body></body></html>",
            '<div class="pagination-box"></div>',
            '<div class="pagination-box" data-total-pages="many"></div>',
        ],
    )
    def test_missing_or_unreadable_box(self, html):
        assert extract_pagination_info(html) is None


def test_outbound_links_only_use_article_link_anchors():
    html = (
        '<a class="twikilink" href="/pmwiki/pmwiki.php/Main/Foo">Foo</a>'
        '<a href="/pmwiki/pmwiki.php/Main/Plain">Plain</a>'
        '<a class="twikilink">No href</a>'
        '<a class="twikilink other" href=" /pmwiki/pmwiki.php/Main/Bar ">Bar</a>'
    )

    assert extract_outbound_links(html) == ["/pmwiki/pmwiki.php/Main/Foo", "/pmwiki/pmwiki.php/Main/Bar"]


class TestTitle:
    HEADING = (
        '<h1 class="entry-title">\n  <!-- namespace -->'
        "<strong>Main / </strong>\n   Foo Bar  \n<span>icon</span></h1>"
    )

    def test_heading_uses_first_direct_text(self):
        assert extract_title(self.HEADING) == "Foo Bar"

    def test_alias_prefers_aka_hint(self):
        html = self.HEADING + '<div class="aka-title">aka: Old Name</div>'

        assert extract_title(html, alias=True) == "Old Name"
        assert extract_title(html, alias=False) == "Foo Bar"

    def test_alias_without_hint_falls_back_to_heading(self):
        assert extract_title(self.HEADING, alias=True) == "Foo Bar"

    def test_missing_heading(self):
        assert extract_title("<html><body><h1>Plain</h1></body></html>") is None
        assert extract_title('<h1 class="entry-title"><strong>Only nested</strong></h1>') is None

    def test_accepts_parsed_documents(self):
        assert extract_title(parse_html(self.HEADING.encode("utf-8"))) == "Foo Bar"
