from typing import Dict, List, Optional, Union

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from drupal_snapshot.config import Settings


def make_response(
    url: str,
    status: int = 200,
    body: Union[str, bytes] = b"",
    content_type: Optional[str] = "text/html; charset=utf-8",
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp._content = body.encode("utf-8") if isinstance(body, str) else body
    h = CaseInsensitiveDict()
    if content_type is not None:
        h["Content-Type"] = content_type
    h.update(headers or {})
    resp.headers = h
    resp.encoding = "utf-8"
    return resp


class FakeSession:
    """Serves canned responses per URL and records every GET."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes: Dict[str, object] = dict(routes or {})
        self.calls: List[str] = []
        self.headers_seen: List[Dict[str, str]] = []

    def add(self, url: str, *responses) -> None:
        self.routes[url] = list(responses) if len(responses) > 1 else responses[0]

    def get(self, url, headers=None, timeout=None):
        self.calls.append(url)
        self.headers_seen.append(dict(headers or {}))
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return make_response(url, status=404, body="not found")
        if isinstance(route, Exception):
            raise route
        return route


def html_page(url: str, body: str) -> requests.Response:
    return make_response(url, body=f"<html><head><title>t</title></head><body>{body}</body></html>")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        site_host="example.com",
        site_ip="10.0.0.1",
        scheme="https",
        crawl_delay_ms=0,
        retry_delay_ms=0,
        max_retries=2,
        output_dir=str(tmp_path / "output"),
    )


@pytest.fixture
def session():
    return FakeSession()
