"""Unit tests for URL and path rewriting."""

import pytest

from drupal_snapshot.rewrite import (
    host_key,
    is_same_domain,
    is_special_url,
    local_path_for_url,
    parse_srcset,
    rewrite_drupal_paths,
    rewrite_srcset,
    rewrite_url,
    strip_query_fragment,
    to_relative_url,
)

SITE = "example.com"


class TestIsSpecialUrl:
    @pytest.mark.parametrize(
        "value",
        ["data:image/png;base64,AAA", "javascript:void(0)", "mailto:a@b.c", "tel:123", "sms:1", "#top"],
    )
    def test_special(self, value):
        assert is_special_url(value)

    @pytest.mark.parametrize("value", ["/about", "https://example.com/", "img.png", "", None])
    def test_not_special(self, value):
        assert not is_special_url(value)


class TestSameDomain:
    def test_strips_www_on_both_sides(self):
        assert is_same_domain("https://www.example.com/x", "example.com")
        assert is_same_domain("https://example.com/x", "www.example.com")

    def test_strips_port_from_site_host(self):
        assert is_same_domain("http://example.com:8080/x", "example.com:8080")
        assert host_key("Example.com:8080") == "example.com"

    def test_other_host(self):
        assert not is_same_domain("https://cdn.other.org/x", SITE)

    def test_subdomain_is_other_host(self):
        assert not is_same_domain("https://static.example.com/x", SITE)

    def test_relative_has_no_host(self):
        assert not is_same_domain("/about", SITE)


class TestRewrite:
    def test_drupal_files_remap(self):
        assert rewrite_drupal_paths("/sites/default/files/a/b.png") == "/files/a/b.png"

    def test_absolute_same_domain_becomes_relative(self):
        assert to_relative_url("https://example.com/about?x=1#top", SITE) == "/about?x=1#top"

    def test_bare_host_becomes_root(self):
        assert to_relative_url("https://example.com", SITE) == "/"

    def test_protocol_relative_same_domain(self):
        assert to_relative_url("//www.example.com/a", SITE) == "/a"

    def test_other_domain_unchanged(self):
        url = "https://other.org/sites/default/files/x.png"
        assert to_relative_url(url, SITE) == url
        assert rewrite_url(url, SITE) == "https://other.org/files/x.png"

    def test_relative_unchanged_apart_from_remap(self):
        assert rewrite_url("images/a.png", SITE) == "images/a.png"
        assert rewrite_url("/sites/default/files/a.png?itok=1", SITE) == "/files/a.png?itok=1"

    def test_composition_order(self):
        assert (
            rewrite_url("https://example.com/sites/default/files/logo.png", SITE)
            == "/files/logo.png"
        )

    def test_special_untouched(self):
        assert rewrite_url("mailto:x@example.com", SITE) == "mailto:x@example.com"


class TestSrcset:
    def test_rewrites_each_candidate_and_keeps_descriptors(self):
        value = (
            "https://example.com/sites/default/files/a.png 1x,"
            "/sites/default/files/b.png   2x"
        )
        assert rewrite_srcset(value, SITE) == "/files/a.png 1x, /files/b.png 2x"

    def test_candidate_without_descriptor(self):
        assert rewrite_srcset("/sites/default/files/a.png", SITE) == "/files/a.png"

    def test_parse_srcset(self):
        assert parse_srcset("a.png 1x, b.png 480w") == ["a.png", "b.png"]
        assert parse_srcset("") == []


class TestLocalPath:
    def test_matches_rewritten_reference(self):
        url = "https://example.com/sites/default/files/img.png"
        assert rewrite_url(url, SITE) == "/files/img.png"
        assert local_path_for_url(url, SITE) == "files/img.png"

    def test_drops_query_and_decodes(self):
        url = "https://example.com/sites/default/files/my%20doc.pdf?v=2"
        assert local_path_for_url(url, SITE) == "files/my doc.pdf"

    def test_directory_like(self):
        assert local_path_for_url("https://example.com/", SITE) == ""
        assert local_path_for_url("https://example.com/dir/", SITE).endswith("/")

    def test_strip_query_fragment(self):
        assert strip_query_fragment("/a/b.png?x=1#y") == "/a/b.png"
        assert strip_query_fragment("#only") == ""
