"""URL and path rewriting shared by markup rewriting and asset saving.

Every function here is pure. ``local_path_for_url`` is derived from
``rewrite_url`` so that a reference written into a page and the file saved for
it always agree.
"""

import re
from typing import List, Optional
from urllib.parse import unquote, urlsplit, urlunsplit

SPECIAL_PREFIXES = ("data:", "javascript:", "mailto:", "tel:", "sms:", "#")
ABSOLUTE_URL_RE = re.compile(r"^(?:https?:)?//", re.IGNORECASE)
DRUPAL_FILES_RE = re.compile(r"/sites/default/files/")
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")


def is_special_url(value: Optional[str]) -> bool:
    if not value:
        return False
    return value.strip().lower().startswith(SPECIAL_PREFIXES)


def host_key(host: Optional[str]) -> str:
    if not host:
        return ""
    host = host.strip().lower()
    if "//" in host:
        host = urlsplit(host).hostname or ""
    else:
        host = urlsplit("//" + host).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host


def is_same_domain(url: str, site_host: str) -> bool:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return False
    if not host:
        return False
    return host_key(host) == host_key(site_host)


def rewrite_drupal_paths(url: str) -> str:
    return DRUPAL_FILES_RE.sub("/files/", url)


def to_relative_url(url: str, site_host: str) -> str:
    if not ABSOLUTE_URL_RE.match(url):
        return url
    if not is_same_domain(url, site_host):
        return url
    try:
        p = urlsplit(url)
    except ValueError:
        return url
    return urlunsplit(("", "", p.path or "/", p.query, p.fragment))


def rewrite_url(url: str, site_host: str) -> str:
    if not url or is_special_url(url):
        return url
    return to_relative_url(rewrite_drupal_paths(url.strip()), site_host)


def rewrite_srcset(value: str, site_host: str) -> str:
    parts = []
    for candidate in SRCSET_SPLIT_RE.split(value.strip()):
        if not candidate:
            continue
        comp = WS_RE.split(candidate.strip())
        url_part = comp[0]
        desc = " ".join(comp[1:])
        if not is_special_url(url_part):
            url_part = rewrite_url(url_part, site_host)
        parts.append(f"{url_part} {desc}" if desc else url_part)
    return ", ".join(parts)


def parse_srcset(value: str) -> List[str]:
    urls: List[str] = []
    if not value:
        return urls
    for cand in SRCSET_SPLIT_RE.split(value.strip()):
        if not cand:
            continue
        comp = WS_RE.split(cand.strip())
        if comp and comp[0]:
            urls.append(comp[0])
    return urls


def strip_query_fragment(value: str) -> str:
    return value.split("#", 1)[0].split("?", 1)[0]


def local_path_for_url(url: str, site_host: str) -> str:
    """Relative on-disk path for ``url`` inside a snapshot.

    Static hosts ignore the query string and decode percent-escapes, so the
    saved path is the decoded path component of the rewritten reference.
    An empty result or one ending in ``/`` means the URL names no file.
    """
    rewritten = rewrite_url(url, site_host)
    path = urlsplit(rewritten).path
    return unquote(path).lstrip("/")
