import hashlib
import logging
import mimetypes
import os
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import unquote, urlsplit

INVALID_FILENAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9._\-]")

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico", ".bmp", ".avif"}
MIME_EXTS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/webp": ".webp",
    "text/css": ".css",
    "text/javascript": ".js",
    "application/javascript": ".js",
    "application/json": ".json",
    "text/html": ".html",
    "text/plain": ".txt",
}


@dataclass
class AssetRecord:
    content_hash: str
    stored_path: str
    aliases: List[str] = field(default_factory=list)


# -------------------- Utils --------------------


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "file"
    if name.startswith("."):
        name = "_" + name[1:]
    return name[:200]


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def short_h(value: str, n: int = 8) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:n]


def base_mime(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def guess_ext_from_type(content_type: Optional[str]) -> str:
    ct = base_mime(content_type)
    if not ct:
        return ""
    if ct in MIME_EXTS:
        return MIME_EXTS[ct]
    return mimetypes.guess_extension(ct) or ""


def category_for(path: str, content_type: Optional[str]) -> str:
    ext = (os.path.splitext(path)[1] or "").lower()
    ct = base_mime(content_type)
    if ct.startswith("image/") or ext in IMAGE_EXTS:
        return "images"
    if ct == "text/css" or ext == ".css":
        return "css"
    if "javascript" in ct or ext in {".js", ".mjs"}:
        return "js"
    return "files"


def resolve_inside(root: Path, rel_path: str) -> Optional[Path]:
    """Resolve ``rel_path`` under ``root``; None when it would leave ``root``."""
    cleaned = rel_path.replace("\\", "/").lstrip("/")
    if not cleaned or "\x00" in cleaned:
        return None
    normalized = posixpath.normpath(cleaned)
    base = root.resolve()
    full = (base / normalized).resolve()
    if full == base or base not in full.parents:
        return None
    return full


# -------------------- Store --------------------


class AssetStore:
    """Content-addressed writer for one snapshot.

    The hash map is the only dedup state and lives as long as the store.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.by_hash: Dict[str, AssetRecord] = {}
        self.by_path: Dict[str, str] = {}
        self.asset_count = 0

    def rel(self, full: Path) -> str:
        return full.relative_to(self.root.resolve()).as_posix()

    def lookup(self, data: bytes) -> Optional[AssetRecord]:
        return self.by_hash.get(content_hash(data))

    def save_at_path(self, rel_path: str, data: bytes) -> Optional[AssetRecord]:
        full = resolve_inside(self.root, rel_path)
        if full is None:
            logging.warning("skipping asset with unsafe path: %s", rel_path)
            return None
        h = content_hash(data)
        rel = self.rel(full)
        record = self.by_hash.get(h)
        if record is not None:
            if rel != record.stored_path and rel not in record.aliases:
                self._alias(record, full, rel)
            return record
        owner = self.by_path.get(rel)
        if owner is not None:
            logging.warning(
                "path %s already holds different content, keeping first", rel
            )
            return None
        return self._write(full, rel, h, data)

    def save_classified(
        self, url: str, data: bytes, content_type: Optional[str] = None
    ) -> Optional[AssetRecord]:
        record = self.lookup(data)
        if record is not None:
            return record
        try:
            path = urlsplit(url).path
        except ValueError:
            path = ""
        bucket = category_for(path, content_type)
        rel = posixpath.join(bucket, self.filename_for(url, path, content_type))
        if rel in self.by_path:
            stem, ext = posixpath.splitext(rel)
            rel = f"{stem}-{short_h(url)}{ext}"
        full = resolve_inside(self.root, rel)
        if full is None:
            logging.warning("skipping asset with unsafe name: %s", url)
            return None
        return self._write(full, rel, content_hash(data), data)

    def filename_for(self, url: str, path: str, content_type: Optional[str]) -> str:
        name = posixpath.basename(unquote(path).rstrip("/")) if path else ""
        if name in ("", ".", ".."):
            return f"asset-{short_h(url)}{guess_ext_from_type(content_type)}"
        return sanitize_filename(name)

    def _write(self, full: Path, rel: str, h: str, data: bytes) -> AssetRecord:
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)
        record = AssetRecord(content_hash=h, stored_path=rel)
        self.by_hash[h] = record
        self.by_path[rel] = h
        self.asset_count += 1
        return record

    def _alias(self, record: AssetRecord, full: Path, rel: str) -> None:
        if rel in self.by_path:
            logging.warning("path %s already holds different content, keeping first", rel)
            return
        target = self.root.resolve() / record.stored_path
        full.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.link(target, full)
        except OSError:
            os.symlink(os.path.relpath(target, full.parent), full)
        record.aliases.append(rel)
        self.by_path[rel] = record.content_hash
        logging.debug("linked duplicate %s -> %s", rel, record.stored_path)
