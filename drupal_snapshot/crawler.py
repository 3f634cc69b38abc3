import logging
import posixpath
import re
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import unquote, urldefrag, urljoin, urlsplit, urlunsplit

import requests
from bs4.dammit import EncodingDetector
from requests.adapters import HTTPAdapter

from .config import DEFAULT_HEADERS, Settings
from .markup import bs4_parse
from .rewrite import is_same_domain, is_special_url, parse_srcset

# Anchors pointing at these are downloaded as assets instead of crawled.
BINARY_EXTENSIONS = frozenset(
    {
        "zip", "gz", "tar", "7z", "rar", "bz2",
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
        "odt", "ods", "odp", "csv",
        "mp3", "mp4", "wav", "ogg", "webm", "avi", "mov", "mkv", "flac", "aac",
        "woff", "woff2", "ttf", "eot", "otf",
    }
)

HTML_TYPES = {"", "text/html", "application/xhtml+xml"}
ATTACHMENT_RE = re.compile(r"\battachment\b", re.IGNORECASE)
CHARSET_RE = re.compile(r";\s*charset\s*=", re.IGNORECASE)
ASSET_SELECTORS = "img[src], script[src], link[href][rel~=stylesheet]"
SRCSET_SELECTORS = "img[srcset], source[srcset]"


# -------------------- Outcomes --------------------


@dataclass
class Page:
    html: str
    url: str
    status: int = 200


@dataclass
class BinaryAsset:
    content_type: str
    content: bytes = b""


@dataclass
class Failure:
    status: int
    error: str


FetchOutcome = Union[Page, BinaryAsset, Failure]


@dataclass
class AssetBody:
    content: bytes
    content_type: Optional[str]


@dataclass
class CrawlTarget:
    url: str
    depth: int


@dataclass(frozen=True)
class CrawledPage:
    url: str
    html: str
    depth: int
    timestamp: float


@dataclass
class FailedUrl:
    url: str
    status: int
    error: str


@dataclass
class CrawlStats:
    pages_crawled: int
    asset_count: int
    failure_count: int
    duration_seconds: float

    @property
    def duration(self) -> str:
        return f"{self.duration_seconds:.1f}s"


@dataclass
class CrawlResult:
    pages: List[CrawledPage]
    asset_urls: List[str]
    failures: List[FailedUrl]
    stats: CrawlStats
    # bodies of binary responses already fetched while crawling
    asset_bodies: Dict[str, AssetBody] = field(default_factory=dict)


@dataclass
class CrawlContext:
    """Visit state owned by a single crawl() call."""

    pending: Deque[CrawlTarget] = field(default_factory=deque)
    queued: Set[str] = field(default_factory=set)
    visited: Set[str] = field(default_factory=set)
    depth_map: Dict[str, int] = field(default_factory=dict)
    pages: List[CrawledPage] = field(default_factory=list)
    asset_urls: Dict[str, None] = field(default_factory=dict)
    failures: List[FailedUrl] = field(default_factory=list)
    asset_bodies: Dict[str, AssetBody] = field(default_factory=dict)
    processed: int = 0

    def enqueue(self, url: str, depth: int) -> bool:
        if url in self.visited or url in self.queued:
            return False
        # first-seen depth wins
        d = self.depth_map.setdefault(url, depth)
        self.pending.append(CrawlTarget(url, d))
        self.queued.add(url)
        return True

    def dequeue(self) -> CrawlTarget:
        target = self.pending.popleft()
        self.queued.discard(target.url)
        return target

    def add_asset(self, url: str) -> None:
        self.asset_urls.setdefault(url, None)


# -------------------- URL helpers --------------------


def normalize_url(url: str) -> str:
    url, _ = urldefrag(url)
    p = urlsplit(url)
    return urlunsplit((p.scheme.lower(), p.netloc.lower(), p.path or "/", p.query, ""))


def resolve_url(value: Optional[str], base_url: str) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    if not value or is_special_url(value):
        return None
    try:
        absolute = urljoin(base_url, value)
        if urlsplit(absolute).scheme not in ("http", "https"):
            return None
        return normalize_url(absolute)
    except ValueError:
        return None


def has_binary_extension(url: str, extensions: Iterable[str] = BINARY_EXTENSIONS) -> bool:
    path = unquote(urlsplit(url).path)
    ext = posixpath.splitext(path)[1].lower().lstrip(".")
    return bool(ext) and ext in extensions


def extract_urls(
    html: str,
    page_url: str,
    site_host: str,
    binary_extensions: Iterable[str] = BINARY_EXTENSIONS,
) -> Tuple[List[str], List[str]]:
    """Return (page links, asset references), same-domain only."""
    soup = bs4_parse(html)
    exts = frozenset(binary_extensions)
    links: Dict[str, None] = {}
    assets: Dict[str, None] = {}

    def same(u: Optional[str]) -> bool:
        return u is not None and is_same_domain(u, site_host)

    for a in soup.select("a[href]"):
        u = resolve_url(a.get("href"), page_url)
        if not same(u):
            continue
        if has_binary_extension(u, exts):
            assets.setdefault(u, None)
        else:
            links.setdefault(u, None)
    for tag in soup.select(ASSET_SELECTORS):
        u = resolve_url(tag.get("src") or tag.get("href"), page_url)
        if same(u):
            assets.setdefault(u, None)
    for tag in soup.select(SRCSET_SELECTORS):
        for cand in parse_srcset(tag.get("srcset", "")):
            u = resolve_url(cand, page_url)
            if same(u):
                assets.setdefault(u, None)
    for form in soup.select("form[action]"):
        u = resolve_url(form.get("action"), page_url)
        if same(u):
            links.setdefault(u, None)
    return list(links), list(assets)


def page_encoding(resp: requests.Response) -> str:
    # requests assumes ISO-8859-1 for text/* without a charset parameter
    header = resp.headers.get("Content-Type") or ""
    if CHARSET_RE.search(header) and resp.encoding:
        return resp.encoding
    declared = EncodingDetector.find_declared_encoding(resp.content, is_html=True)
    return declared or "utf-8"


def classify_response(resp: requests.Response, url: str) -> FetchOutcome:
    content_type = (resp.headers.get("Content-Type") or "").split(";")[0].strip().lower()
    disposition = resp.headers.get("Content-Disposition") or ""
    if content_type not in HTML_TYPES or ATTACHMENT_RE.search(disposition):
        return BinaryAsset(
            content_type=content_type or "application/octet-stream",
            content=resp.content,
        )
    resp.encoding = page_encoding(resp)
    return Page(html=resp.text, url=resp.url or url)


def is_retryable(status: int) -> bool:
    return status in (408, 429) or status >= 500


# -------------------- HTTP --------------------


class PinnedHostAdapter(HTTPAdapter):
    """Connects to ``ip`` for requests addressed to ``host``.

    The site host is kept in the Host header and used for TLS SNI and
    certificate checks, so a CDN can be bypassed without breaking HTTPS.
    """

    def __init__(self, host: str, ip: str, **kwargs):
        self.host = host
        self.hostname = (urlsplit("//" + host).hostname or "").lower()
        self.ip = ip.strip()
        super().__init__(**kwargs)

    def _ip_netloc(self, port: Optional[int]) -> str:
        netloc = f"[{self.ip}]" if ":" in self.ip else self.ip
        return f"{netloc}:{port}" if port else netloc

    def send(self, request, **kwargs):
        original = request.url
        parts = urlsplit(original)
        if (parts.hostname or "").lower() == self.hostname:
            request.url = urlunsplit(parts._replace(netloc=self._ip_netloc(parts.port)))
            request.headers["Host"] = parts.netloc.rsplit("@", 1)[-1]
        resp = super().send(request, **kwargs)
        resp.url = original
        return resp

    def build_connection_pool_key_attributes(self, request, verify, cert=None):
        host_params, pool_kwargs = super().build_connection_pool_key_attributes(
            request, verify, cert
        )
        if host_params.get("scheme") == "https" and host_params.get("host") in (
            self.ip,
            f"[{self.ip}]",
        ):
            pool_kwargs["server_hostname"] = self.hostname
            pool_kwargs["assert_hostname"] = self.hostname
        return host_params, pool_kwargs


def build_session(settings: Settings) -> requests.Session:
    s = requests.Session()
    if settings.connect_via_ip:
        adapter: HTTPAdapter = PinnedHostAdapter(
            settings.site_host, settings.site_ip, pool_connections=4, pool_maxsize=4
        )
    else:
        adapter = HTTPAdapter(pool_connections=4, pool_maxsize=4)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS)
    return s


class Fetcher:
    """GET with a bounded retry loop; every attempt is counted per URL."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.settings = settings
        self.session = session if session is not None else build_session(settings)
        self.sleep = sleep or time.sleep
        self.attempts: Counter = Counter()

    def request_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.settings.random_user_agent(),
            "Host": self.settings.site_host,
        }

    def get(self, url: str) -> Tuple[Optional[requests.Response], Optional[Failure]]:
        max_retries = self.settings.max_retries
        failure = Failure(status=0, error="not attempted")
        for attempt in range(max_retries + 1):
            if attempt:
                logging.info("  retry attempt %d/%d: %s", attempt, max_retries, url)
                self.sleep(attempt * self.settings.retry_delay_ms / 1000.0)
            self.attempts[url] += 1
            try:
                resp = self.session.get(
                    url, headers=self.request_headers(), timeout=self.settings.timeout
                )
            except requests.RequestException as e:
                failure = Failure(status=0, error=str(e))
                continue
            if resp.status_code == 200:
                return resp, None
            failure = Failure(status=resp.status_code, error=f"HTTP {resp.status_code}")
            if not is_retryable(resp.status_code):
                break
        return None, failure

    def fetch_page(self, url: str) -> FetchOutcome:
        resp, failure = self.get(url)
        if resp is None:
            return failure
        final = resp.url or url
        if not is_same_domain(final, self.settings.site_host):
            return Failure(status=resp.status_code, error=f"redirected off-site to {final}")
        return classify_response(resp, url)

    def fetch_asset(self, url: str) -> Union[AssetBody, Failure]:
        resp, failure = self.get(url)
        if resp is None:
            return failure
        return AssetBody(content=resp.content, content_type=resp.headers.get("Content-Type"))


# -------------------- Frontier --------------------


class Frontier:
    """Breadth-first crawl of one site."""

    def __init__(
        self,
        settings: Settings,
        fetcher: Optional[Fetcher] = None,
        binary_extensions: Iterable[str] = BINARY_EXTENSIONS,
    ):
        self.settings = settings
        self.fetcher = fetcher if fetcher is not None else Fetcher(settings)
        self.binary_extensions = frozenset(binary_extensions)

    def crawl(self) -> CrawlResult:
        s = self.settings
        ctx = CrawlContext()
        started = time.monotonic()
        logging.info("crawling %s (%s)", s.start_url, s.describe())
        ctx.enqueue(normalize_url(s.start_url), 0)

        while ctx.pending and ctx.processed < s.max_pages:
            target = ctx.dequeue()
            if s.max_depth > 0 and target.depth > s.max_depth:
                logging.debug("max depth reached: %s", target.url)
                continue
            if target.url in ctx.visited:
                continue
            ctx.visited.add(target.url)
            ctx.processed += 1
            logging.info(
                "[%d/%d] depth=%d fetching %s",
                ctx.processed,
                s.max_pages,
                target.depth,
                target.url,
            )
            outcome = self.fetcher.fetch_page(target.url)
            self.handle(ctx, target, outcome)
            if s.crawl_delay_ms > 0:
                self.fetcher.sleep(s.crawl_delay_ms / 1000.0)

        stats = CrawlStats(
            pages_crawled=len(ctx.pages),
            asset_count=len(ctx.asset_urls),
            failure_count=len(ctx.failures),
            duration_seconds=time.monotonic() - started,
        )
        logging.info(
            "crawl complete in %s: %d pages, %d assets, %d failed",
            stats.duration,
            stats.pages_crawled,
            stats.asset_count,
            stats.failure_count,
        )
        return CrawlResult(
            pages=ctx.pages,
            asset_urls=list(ctx.asset_urls),
            failures=ctx.failures,
            stats=stats,
            asset_bodies=ctx.asset_bodies,
        )

    def handle(self, ctx: CrawlContext, target: CrawlTarget, outcome: FetchOutcome) -> None:
        if isinstance(outcome, Page):
            ctx.pages.append(
                CrawledPage(
                    url=target.url,
                    html=outcome.html,
                    depth=target.depth,
                    timestamp=time.time(),
                )
            )
            try:
                links, assets = extract_urls(
                    outcome.html,
                    outcome.url,
                    self.settings.site_host,
                    self.binary_extensions,
                )
            except Exception as e:
                logging.warning("error extracting URLs from %s: %s", target.url, e)
                return
            logging.info("  found %d links, %d assets", len(links), len(assets))
            for link in links:
                ctx.enqueue(link, target.depth + 1)
            for asset in assets:
                ctx.add_asset(asset)
        elif isinstance(outcome, BinaryAsset):
            logging.info("  binary asset (%s), queued for download", outcome.content_type)
            ctx.add_asset(target.url)
            ctx.asset_bodies[target.url] = AssetBody(outcome.content, outcome.content_type)
        else:
            logging.warning("  failed %s: %s", target.url, outcome.error)
            ctx.failures.append(FailedUrl(target.url, outcome.status, outcome.error))
