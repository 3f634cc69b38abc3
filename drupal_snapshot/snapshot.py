import hashlib
import json
import logging
import os
import posixpath
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union
from urllib.parse import unquote, urlsplit

from .rewrite import rewrite_drupal_paths
from .store import AssetRecord, AssetStore, resolve_inside

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
SNAPSHOT_NAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}$")
ASSET_BUCKETS = ("files", "css", "js", "images")
METADATA_FILE = ".metadata.json"


@dataclass
class SavedPage:
    url: str
    file_path: str
    full_path: Path


@dataclass
class SnapshotInfo:
    name: str
    path: Path
    created_at: datetime
    size: int


def timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def page_path_for_url(url: str) -> str:
    try:
        path = urlsplit(url).path
    except ValueError:
        logging.warning("invalid URL %s, falling back to hash-based naming", url)
        return f"pages/{hashlib.md5(url.encode('utf-8')).hexdigest()}.html"
    path = rewrite_drupal_paths(unquote(path)).rstrip("/") or "/"
    if path == "/":
        return "index.html"
    path = path.lstrip("/")
    if posixpath.splitext(path)[1]:
        return path
    return f"{path}/index.html"


def has_content(p: Path) -> bool:
    if not p.is_dir():
        return True
    return any(has_content(child) for child in p.iterdir())


def directory_size(p: Path) -> int:
    size = 0
    try:
        for entry in os.scandir(p):
            if entry.is_dir(follow_symlinks=False):
                size += directory_size(Path(entry.path))
            else:
                size += entry.stat(follow_symlinks=False).st_size
    except OSError as e:
        logging.warning("error calculating directory size for %s: %s", p, e)
    return size


def format_size(num_bytes: Union[int, float]) -> str:
    units = ["B", "KB", "MB", "GB"]
    size = float(num_bytes)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.2f} {units[i]}"


def list_snapshots(output_dir: Union[str, Path]) -> List[SnapshotInfo]:
    root = Path(output_dir)
    if not root.is_dir():
        return []
    out: List[SnapshotInfo] = []
    for entry in root.iterdir():
        if not entry.is_dir() or not SNAPSHOT_NAME_RE.match(entry.name):
            continue
        out.append(
            SnapshotInfo(
                name=entry.name,
                path=entry,
                created_at=datetime.strptime(entry.name, TIMESTAMP_FORMAT),
                size=directory_size(entry),
            )
        )
    out.sort(key=lambda s: s.name, reverse=True)
    return out


def read_metadata(snapshot_dir: Path) -> Optional[dict]:
    p = snapshot_dir / METADATA_FILE
    if not p.exists():
        return None
    return json.loads(p.read_text(encoding="utf-8"))


# -------------------- Manager --------------------


class SnapshotManager:
    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)
        self.snapshot_dir: Optional[Path] = None
        self.store: Optional[AssetStore] = None
        self.page_count = 0
        self.saved_pages: Dict[str, str] = {}

    def initialize(self, now: Optional[datetime] = None) -> Path:
        self.snapshot_dir = self.output_dir / timestamp(now)
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        for bucket in ASSET_BUCKETS:
            (self.snapshot_dir / bucket).mkdir(exist_ok=True)
        self.store = AssetStore(self.snapshot_dir)
        logging.info("created snapshot directory: %s", self.snapshot_dir)
        return self.snapshot_dir

    def _require(self) -> Path:
        if self.snapshot_dir is None or self.store is None:
            raise RuntimeError("snapshot not initialized, call initialize() first")
        return self.snapshot_dir

    @property
    def asset_count(self) -> int:
        return self.store.asset_count if self.store is not None else 0

    def save_page(self, url: str, html: str) -> Optional[SavedPage]:
        root = self._require()
        rel = page_path_for_url(url)
        full = resolve_inside(root, rel)
        if full is None:
            raise ValueError(f"unsafe page path for {url}: {rel}")
        if rel in self.saved_pages:
            logging.info(
                "page %s maps to %s, already saved from %s",
                url,
                rel,
                self.saved_pages[rel],
            )
            return None
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(html, encoding="utf-8")
        self.saved_pages[rel] = url
        self.page_count += 1
        return SavedPage(url=url, file_path=rel, full_path=full)

    def save_asset_at_path(self, rel_path: str, data: bytes) -> Optional[AssetRecord]:
        self._require()
        return self.store.save_at_path(rel_path, data)

    def save_asset(
        self, asset_url: str, data: bytes, content_type: Optional[str] = None
    ) -> Optional[AssetRecord]:
        self._require()
        return self.store.save_classified(asset_url, data, content_type)

    def save_metadata(self, fields: Mapping[str, object]) -> Path:
        root = self._require()
        data = {
            "timestamp": timestamp(),
            "pagesCount": self.page_count,
            "assetsCount": self.asset_count,
        }
        data.update(fields)
        p = root / METADATA_FILE
        p.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return p

    def summary(self) -> dict:
        return {
            "snapshotDir": str(self.snapshot_dir) if self.snapshot_dir else None,
            "pagesCount": self.page_count,
            "assetsCount": self.asset_count,
            "totalAssets": len(self.store.by_hash) if self.store is not None else 0,
            "timestamp": timestamp(),
        }

    def cleanup_failed_snapshot(self) -> bool:
        """Delete the snapshot when it holds fewer than two entries of value."""
        if self.snapshot_dir is None or not self.snapshot_dir.exists():
            return False
        try:
            entries = [e for e in self.snapshot_dir.iterdir() if has_content(e)]
            if len(entries) < 2:
                shutil.rmtree(self.snapshot_dir)
                logging.info("cleaned up incomplete snapshot: %s", self.snapshot_dir)
                return True
        except OSError as e:
            logging.warning("failed to cleanup snapshot: %s", e)
        return False
