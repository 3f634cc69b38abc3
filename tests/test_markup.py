import pytest
from bs4 import BeautifulSoup

from drupal_snapshot.markup import MarkupTransformer, is_admin_href, is_empty_block

LINK = "https://www.linkedin.com/in/someone"


@pytest.fixture
def transformer():
    return MarkupTransformer(site_host="example.com", contact_link=LINK)


def run(transformer, body: str) -> BeautifulSoup:
    out = transformer.transform(f"<html><head></head><body>{body}</body></html>", "https://example.com/")
    return BeautifulSoup(out, "html.parser")


class TestSanitize:
    def test_external_and_js_scripts_removed(self, transformer):
        soup = run(
            transformer,
            '<script src="/app.js"></script>'
            '<script type="text/javascript">alert(1)</script>'
            '<script type="application/ld+json">{"a": 1}</script>'
            "<p>keep</p>",
        )
        scripts = soup.find_all("script")
        assert len(scripts) == 1
        assert scripts[0]["type"] == "application/ld+json"

    def test_event_handlers_stripped(self, transformer):
        soup = run(transformer, '<p onclick="x()" onload="y()" id="p1">hi</p><img src="a.png" onerror="z()">')
        p = soup.find(id="p1")
        assert "onclick" not in p.attrs
        assert "onload" not in p.attrs
        assert "onerror" not in soup.img.attrs


class TestRewriteUrls:
    def test_href_src_srcset(self, transformer):
        soup = run(
            transformer,
            '<a href="https://example.com/about">About</a>'
            '<img src="https://www.example.com/sites/default/files/logo.png" '
            'srcset="/sites/default/files/a.png 1x, https://example.com/b.png 2x">'
            '<a href="https://other.org/x">Other</a>',
        )
        anchors = soup.find_all("a")
        assert anchors[0]["href"] == "/about"
        assert anchors[1]["href"] == "https://other.org/x"
        assert soup.img["src"] == "/files/logo.png"
        assert soup.img["srcset"] == "/files/a.png 1x, /b.png 2x"

    def test_special_schemes_kept(self, transformer):
        soup = run(transformer, '<a href="mailto:a@example.com">m</a><a href="#top">t</a>')
        hrefs = [a["href"] for a in soup.find_all("a")]
        assert hrefs == ["mailto:a@example.com", "#top"]


class TestReplaceFlagged:
    def test_iframe_form_and_anchor_replaced(self, transformer):
        soup = run(
            transformer,
            '<iframe src="https://jatos.example.com/study"></iframe>'
            '<form action="/jatos/submit"><input name="q"></form>'
            '<a href="/study">Start JATOS study</a>'
            '<iframe src="https://video.example.org/embed"></iframe>',
        )
        notices = soup.select("div.experiment-notice")
        assert len(notices) == 3
        for notice in notices:
            link = notice.find("a")
            assert link["href"] == LINK
            assert link.get_text() == "LinkedIn"
        assert soup.find("form") is None
        assert len(soup.find_all("iframe")) == 1

    def test_marker_in_class(self, transformer):
        soup = run(transformer, '<iframe class="Jatos-frame" src="/x"></iframe>')
        assert soup.find("iframe") is None
        assert soup.select_one("div.experiment-notice") is not None

    def test_custom_tokens(self):
        t = MarkupTransformer("example.com", LINK, marker_tokens=("survey",), element_markers={})
        soup = run(t, '<iframe src="/survey/1"></iframe><iframe src="/jatos/1"></iframe>')
        assert len(soup.select("div.experiment-notice")) == 1
        assert soup.find("iframe")["src"] == "/jatos/1"

    def test_configured_tokens_extend_element_tables(self):
        t = MarkupTransformer("example.com", LINK, marker_tokens=("survey",))
        soup = run(t, '<iframe src="/survey/1"></iframe><iframe src="/jatos/1"></iframe>')
        assert soup.find("iframe") is None
        assert len(soup.select("div.experiment-notice")) == 2

    def test_experiment_and_signup_forms(self, transformer):
        soup = run(
            transformer,
            '<form action="/newsletter/signup"><input name="e"></form>'
            '<form class="Experiment-form" action="/submit"><input name="x"></form>'
            '<form action="/search"><input name="q"></form>',
        )
        forms = soup.find_all("form")
        assert [f["action"] for f in forms] == ["/search"]
        assert len(soup.select("div.experiment-notice")) == 2

    def test_experiment_anchor_but_not_signup_anchor(self, transformer):
        soup = run(
            transformer,
            '<p><a href="/experiments/run">Run</a></p>'
            '<p><a href="/join">Take part in the EXPERIMENT</a></p>'
            '<p><a href="/signup">Sign up</a></p>',
        )
        hrefs = [a["href"] for a in soup.find_all("a")]
        assert "/signup" in hrefs
        assert "/experiments/run" not in hrefs
        assert "/join" not in hrefs
        assert len(soup.select("div.experiment-notice")) == 2

    def test_experiment_iframe_kept(self, transformer):
        soup = run(transformer, '<iframe src="/experiment/embed"></iframe>')
        assert soup.find("iframe")["src"] == "/experiment/embed"
        assert soup.select_one("div.experiment-notice") is None

    def test_contact_link_is_escaped(self):
        t = MarkupTransformer("example.com", 'https://x.org/?a=1&b="2"')
        soup = run(t, '<iframe src="/jatos"></iframe>')
        assert soup.select_one("div.experiment-notice a")["href"] == 'https://x.org/?a=1&b="2"'


class TestRemoveAdmin:
    def test_selectors_removed(self, transformer):
        soup = run(
            transformer,
            '<div id="toolbar-administration"><a href="/x">x</a></div>'
            '<nav class="admin-toolbar">t</nav>'
            '<form id="login-form"><input></form>'
            '<aside role="complementary"><nav><a href="/n">n</a></nav><span>side</span></aside>'
            "<p>content</p>",
        )
        assert soup.find(id="toolbar-administration") is None
        assert soup.select_one(".admin-toolbar") is None
        assert soup.find(id="login-form") is None
        assert soup.find("aside").find("nav") is None
        assert soup.find("aside").span.get_text() == "side"

    def test_admin_link_list_item_removed(self, transformer):
        soup = run(
            transformer,
            '<ul><li><a href="/node/1/edit">n</a></li>'
            '<li><a href="/admin/content">Content</a></li>'
            '<li><a href="/user/logout">Log out</a></li>'
            '<li><a href="/administrators">Team</a></li></ul>',
        )
        items = soup.find_all("li")
        assert [li.a["href"] for li in items] == ["/node/1/edit", "/administrators"]

    def test_admin_link_outside_list(self, transformer):
        soup = run(transformer, '<p>text <a href="/edit">Edit</a></p>')
        assert soup.find("a") is None
        assert soup.find("p").get_text().strip() == "text"

    def test_rel_admin_links(self, transformer):
        soup = run(
            transformer,
            '<p><a rel="admin" href="/node/2/x">Delete this</a>'
            '<a rel="admin" href="/node/2/y">Read</a></p>',
        )
        assert [a.get_text() for a in soup.find_all("a")] == ["Read"]

    def test_is_admin_href(self):
        prefixes = ("/admin", "/edit")
        assert is_admin_href("/admin", prefixes)
        assert is_admin_href("/admin/config", prefixes)
        assert is_admin_href("/edit?x=1", prefixes)
        assert not is_admin_href("/administrators", prefixes)
        assert not is_admin_href("/node/edit", prefixes)


class TestCleanup:
    def test_empty_blocks_and_comments(self, transformer):
        soup = run(
            transformer,
            '<div class="outer"><div><p>  </p></div></div>'
            "<!-- drupal comment -->"
            "<div><!-- only a comment --></div>"
            '<p align="center" bgcolor="red">kept</p>',
        )
        assert soup.select_one("div.outer") is None
        assert soup.find_all("div") == []
        assert "drupal comment" not in str(soup)
        p = soup.find("p")
        assert p.get_text() == "kept"
        assert "align" not in p.attrs
        assert "bgcolor" not in p.attrs

    def test_is_empty_block(self):
        soup = BeautifulSoup("<div> <br> </div><p>\n</p>", "html.parser")
        assert not is_empty_block(soup.div)
        assert is_empty_block(soup.p)


class TestTransform:
    def test_empty_input_returned_unchanged(self, transformer):
        assert transformer.transform("") == ""

    def test_idempotent(self, transformer):
        src = (
            "<html><body><div><a href='https://example.com/a'>a</a>"
            "<iframe src='/jatos/run'></iframe><ul><li><a href='/admin'>x</a></li></ul>"
            "</div></body></html>"
        )
        once = transformer.transform(src)
        assert transformer.transform(once) == once
