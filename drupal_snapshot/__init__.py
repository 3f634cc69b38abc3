"""Export a Drupal site into a self-contained, timestamped static snapshot."""

from .config import ConfigError, Settings
from .crawler import CrawlResult, Fetcher, Frontier
from .markup import MarkupTransformer
from .pipeline import run_crawl
from .snapshot import SnapshotManager, list_snapshots
from .store import AssetRecord, AssetStore

__version__ = "0.1.0"

__all__ = [
    "AssetRecord",
    "AssetStore",
    "ConfigError",
    "CrawlResult",
    "Fetcher",
    "Frontier",
    "MarkupTransformer",
    "Settings",
    "SnapshotManager",
    "list_snapshots",
    "run_crawl",
]
