import logging
from typing import Optional

import requests

from .config import ConfigError, Settings
from .crawler import AssetBody, CrawlResult, Fetcher, Frontier
from .markup import MarkupTransformer
from .rewrite import local_path_for_url
from .snapshot import SnapshotManager


def save_pages(
    result: CrawlResult, transformer: MarkupTransformer, snapshot: SnapshotManager
) -> int:
    saved = 0
    total = len(result.pages)
    for page in result.pages:
        try:
            html = transformer.transform(page.html, page.url)
            if snapshot.save_page(page.url, html) is not None:
                saved += 1
        except (OSError, ValueError) as e:
            logging.warning("failed to save page %s: %s", page.url, e)
            continue
        if saved and saved % 10 == 0:
            logging.info("  saved %d/%d pages...", saved, total)
    return saved


def save_assets(
    result: CrawlResult, fetcher: Fetcher, snapshot: SnapshotManager, settings: Settings
) -> int:
    downloaded = 0
    skipped = 0
    pause = settings.crawl_delay_ms / 4000.0
    for asset_url in result.asset_urls:
        body = result.asset_bodies.get(asset_url)
        fetched = body is None
        if fetched:
            body = fetcher.fetch_asset(asset_url)
        if isinstance(body, AssetBody):
            rel = local_path_for_url(asset_url, settings.site_host)
            try:
                if rel and not rel.endswith("/"):
                    record = snapshot.save_asset_at_path(rel, body.content)
                else:
                    record = snapshot.save_asset(asset_url, body.content, body.content_type)
            except OSError as e:
                logging.warning("failed to write asset %s: %s", asset_url, e)
                record = None
            if record is not None:
                downloaded += 1
            else:
                skipped += 1
        else:
            logging.warning("failed to download asset %s: %s", asset_url, body.error)
            skipped += 1
        if fetched and pause > 0:
            fetcher.sleep(pause)
    if skipped:
        logging.info("skipped %d assets", skipped)
    return downloaded


def run_crawl(settings: Settings, session: Optional[requests.Session] = None) -> int:
    try:
        settings.validate()
    except ConfigError as e:
        logging.error("invalid configuration: %s", e)
        return 1
    snapshot = SnapshotManager(settings.output_root)
    try:
        snapshot_dir = snapshot.initialize()
        logging.info("snapshot directory: %s", snapshot_dir)
        transformer = MarkupTransformer(
            site_host=settings.site_host,
            contact_link=settings.contact_link,
            marker_tokens=settings.marker_tokens,
            verbose=settings.verbose,
        )
        fetcher = Fetcher(settings, session=session)
        result = Frontier(settings, fetcher).crawl()

        logging.info("post-processing and saving pages...")
        saved_pages = save_pages(result, transformer, snapshot)
        logging.info("saved %d pages", saved_pages)

        logging.info("downloading and saving assets...")
        downloaded = save_assets(result, fetcher, snapshot, settings)
        logging.info("downloaded %d assets", downloaded)

        snapshot.save_metadata(
            {
                "siteHost": settings.site_host,
                "crawledPages": result.stats.pages_crawled,
                "savedPages": saved_pages,
                "downloadedAssets": downloaded,
                "failedUrls": result.stats.failure_count,
                "crawlDuration": result.stats.duration,
                "failures": [
                    {"url": f.url, "status": f.status, "error": f.error}
                    for f in result.failures
                ],
            }
        )
    except Exception:
        logging.exception("crawl failed")
        snapshot.cleanup_failed_snapshot()
        return 1

    summary = snapshot.summary()
    print("Crawl complete")
    print(f"Snapshot: {summary['snapshotDir']}")
    print(f"Pages: {summary['pagesCount']}")
    print(f"Assets: {summary['assetsCount']}")
    if result.failures:
        print(f"Failed URLs: {len(result.failures)}")
        for f in result.failures:
            print(f"  - {f.url} ({f.error})")
    return 0
