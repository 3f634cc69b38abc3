import logging
import re
import shutil
from pathlib import Path
from typing import List, Union

from .snapshot import format_size, list_snapshots, read_metadata

TEMP_PATTERNS = (
    re.compile(r"^\.tmp-"),
    re.compile(r"^temp-"),
    re.compile(r"^partial-"),
    re.compile(r"^\.crawl-"),
)


def is_temp_name(name: str) -> bool:
    return any(p.match(name) for p in TEMP_PATTERNS)


def remove_temp_files(output_dir: Path) -> List[str]:
    removed: List[str] = []
    for entry in sorted(output_dir.iterdir()):
        if not is_temp_name(entry.name):
            continue
        try:
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except OSError as e:
            logging.warning("error removing %s: %s", entry, e)
            continue
        logging.info("removed temp: %s", entry.name)
        removed.append(entry.name)
    return removed


def run_clean(output_dir: Union[str, Path]) -> int:
    """Remove temp files and list snapshots. Snapshots are never deleted here."""
    root = Path(output_dir)
    if not root.is_dir():
        logging.warning("output directory does not exist: %s", root)
        print("No output directory found. Nothing to clean.")
        return 0

    removed = remove_temp_files(root)
    if removed:
        print(f"Removed {len(removed)} temporary file(s).")
    else:
        print("No temporary files found to remove.")

    snapshots = list_snapshots(root)
    print("\n=== Available Snapshots ===")
    if not snapshots:
        print("No snapshots found.")
        print("Run crawl mode to create a snapshot.")
        return 0

    print(f"Found {len(snapshots)} snapshot(s):\n")
    for i, snap in enumerate(snapshots):
        latest = " [LATEST]" if i == 0 else ""
        print(f"  {i + 1}. {snap.name}{latest}")
        print(f"     Path: {snap.path}")
        print(f"     Size: {format_size(snap.size)}")
        print(f"     Created: {snap.created_at.isoformat()}")
        try:
            meta = read_metadata(snap.path)
        except (OSError, ValueError) as e:
            logging.debug("unreadable metadata in %s: %s", snap.name, e)
            meta = None
        if meta:
            if meta.get("siteHost"):
                print(f"     Site: {meta['siteHost']}")
            if meta.get("crawledPages"):
                print(f"     Pages: {meta['crawledPages']}")
        print("")

    print("NOTE: Snapshots are NOT automatically deleted.")
    print("To delete a snapshot, manually remove the directory.")
    print(f"\nExample: rm -rf {snapshots[-1].path}")
    return 0
