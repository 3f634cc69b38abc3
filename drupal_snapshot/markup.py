import html
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .rewrite import is_special_url, rewrite_srcset, rewrite_url

# -------------------- Tables --------------------

ADMIN_SELECTORS: Sequence[str] = (
    "#admin-bar",
    ".admin-toolbar",
    ".navbar-admin",
    ".admin-menu",
    "#toolbar-administration",
    "#user-menu",
    ".user-account-menu",
    "#login-form",
    ".login-form",
    '[role="complementary"] nav',
)

ADMIN_PATH_PREFIXES: Sequence[str] = (
    "/admin",
    "/user/logout",
    "/user/login",
    "/edit",
    "/delete",
    "/revisions",
)

JS_MIME_TYPES = {
    "text/javascript",
    "application/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "text/ecmascript",
}
EVENT_HANDLER_ATTRS = ("onclick", "onerror", "onload")
LAYOUT_ATTRS = ("align", "valign", "bgcolor")
ADMIN_LINK_TEXT_RE = re.compile(r"edit|delete|revise|unpublish", re.IGNORECASE)

# tag -> tokens that flag an experiment element, on top of the configured ones
FLAGGED_MARKERS: Mapping[str, Sequence[str]] = {
    "iframe": ("jatos",),
    "form": ("jatos", "experiment", "signup"),
    "a": ("jatos", "experiment"),
}

REPLACEMENT_TEMPLATE = """<div class="experiment-notice" style="background: #f0f0f0; padding: 20px; border-radius: 4px; margin: 20px 0; text-align: center;">
  <p style="margin: 0; font-size: 16px; color: #333;">
    <strong>Experiments have concluded.</strong><br>
    For more information, please get in touch via
    <a href="{link}" target="_blank" rel="noopener noreferrer" style="color: #0077b5; text-decoration: none;">LinkedIn</a>.
  </p>
</div>"""


# -------------------- HTML utils --------------------


def bs4_parse(markup: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(markup, "lxml")
    except Exception:
        return BeautifulSoup(markup, "html.parser")


def serialize_html(soup: BeautifulSoup) -> str:
    try:
        return soup.decode(formatter="html")
    except Exception:
        return str(soup)


def class_string(tag: Tag) -> str:
    cls = tag.get("class") or []
    if isinstance(cls, str):
        return cls
    return " ".join(cls)


def is_empty_block(tag: Tag) -> bool:
    for child in tag.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, Tag):
            return False
        if isinstance(child, NavigableString) and child.strip():
            return False
    return True


def is_admin_href(href: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        if href == prefix:
            return True
        if href.startswith(prefix) and href[len(prefix)] in "/?#":
            return True
    return False


# -------------------- Transformer --------------------


class MarkupTransformer:
    """Turns one crawled page into markup that works under static hosting."""

    def __init__(
        self,
        site_host: str,
        contact_link: str,
        marker_tokens: Sequence[str] = ("jatos",),
        admin_selectors: Sequence[str] = ADMIN_SELECTORS,
        admin_path_prefixes: Sequence[str] = ADMIN_PATH_PREFIXES,
        verbose: bool = False,
        element_markers: Mapping[str, Sequence[str]] = FLAGGED_MARKERS,
    ):
        self.site_host = site_host
        self.contact_link = contact_link
        self.marker_tokens = tuple(t.lower() for t in marker_tokens if t)
        self.markers: Dict[str, Tuple[str, ...]] = {}
        for tag in ("iframe", "form", "a"):
            tokens = [t.lower() for t in element_markers.get(tag, ()) if t]
            tokens += [t for t in self.marker_tokens if t not in tokens]
            self.markers[tag] = tuple(tokens)
        self.admin_selectors = tuple(admin_selectors)
        self.admin_path_prefixes = tuple(admin_path_prefixes)
        self.verbose = verbose

    def transform(self, markup: str, page_url: str = "") -> str:
        if not markup or not isinstance(markup, str):
            logging.warning("invalid HTML input for %s", page_url or "page")
            return markup
        soup = bs4_parse(markup)
        self.sanitize(soup)
        self.rewrite_urls(soup)
        replaced = self.replace_flagged(soup)
        removed = self.remove_admin(soup)
        self.cleanup(soup)
        if self.verbose:
            logging.debug(
                "transformed %s: %d flagged replaced, %d admin removed",
                page_url,
                replaced,
                removed,
            )
        return serialize_html(soup)

    # 1
    def sanitize(self, soup: BeautifulSoup) -> None:
        for script in soup.find_all("script"):
            stype = (script.get("type") or "").split(";")[0].strip().lower()
            if script.get("src") is not None or stype in JS_MIME_TYPES:
                script.decompose()
        for tag in soup.find_all(True):
            for attr in EVENT_HANDLER_ATTRS:
                if attr in tag.attrs:
                    del tag.attrs[attr]

    # 2
    def rewrite_urls(self, soup: BeautifulSoup) -> None:
        for attr in ("href", "src"):
            for tag in soup.find_all(attrs={attr: True}):
                val = tag.get(attr)
                if not val or is_special_url(val):
                    continue
                tag[attr] = rewrite_url(val, self.site_host)
        for tag in soup.find_all(attrs={"srcset": True}):
            val = tag.get("srcset")
            if val:
                tag["srcset"] = rewrite_srcset(val, self.site_host)

    # 3
    def matches_marker(self, tag: str, *values: Optional[str]) -> bool:
        text = " ".join(v for v in values if v).lower()
        return any(token in text for token in self.markers.get(tag, ()))

    def replacement_block(self) -> Tag:
        block = REPLACEMENT_TEMPLATE.format(link=html.escape(self.contact_link, quote=True))
        return BeautifulSoup(block, "html.parser").div

    def replace_flagged(self, soup: BeautifulSoup) -> int:
        count = 0
        for iframe in soup.find_all("iframe"):
            if self.matches_marker("iframe", iframe.get("src"), class_string(iframe)):
                iframe.replace_with(self.replacement_block())
                count += 1
        for form in soup.find_all("form"):
            if self.matches_marker("form", form.get("action"), class_string(form)):
                form.replace_with(self.replacement_block())
                count += 1
        for a in soup.find_all("a"):
            if a.find_parent(class_="experiment-notice") is not None:
                continue
            if self.matches_marker("a", a.get("href"), a.get_text()):
                a.replace_with(self.replacement_block())
                count += 1
        return count

    # 4
    def remove_admin(self, soup: BeautifulSoup) -> int:
        count = 0
        for selector in self.admin_selectors:
            for el in soup.select(selector):
                if el.decomposed:
                    continue
                el.decompose()
                count += 1
        links: List[Tag] = soup.find_all("a")
        for a in links:
            if a.decomposed:
                continue
            href = a.get("href") or ""
            if is_admin_href(href, self.admin_path_prefixes):
                parent = a.parent
                if parent is not None and parent.name == "li":
                    parent.decompose()
                else:
                    a.decompose()
                count += 1
                continue
            rel = a.get("rel") or []
            rels = rel.split() if isinstance(rel, str) else rel
            if "admin" in rels and ADMIN_LINK_TEXT_RE.search(a.get_text()):
                a.decompose()
                count += 1
        return count

    # 5
    def cleanup(self, soup: BeautifulSoup) -> None:
        # reversed so nested empties collapse in one pass
        for tag in reversed(soup.find_all(["p", "div"])):
            if is_empty_block(tag):
                tag.decompose()
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()
        for tag in soup.find_all(True):
            for attr in LAYOUT_ATTRS:
                if attr in tag.attrs:
                    del tag.attrs[attr]
