import json
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import unquote

from .markup import bs4_parse
from .rewrite import strip_query_fragment
from .snapshot import METADATA_FILE, SnapshotInfo, format_size, list_snapshots

MAX_ISSUES_PER_TYPE = 10
SKIP_HREF_PREFIXES = ("#", "http:", "https:", "//", "mailto:", "tel:", "sms:", "javascript:", "data:")
SKIP_SRC_PREFIXES = ("http:", "https:", "//", "data:")


@dataclass
class Issue:
    type: str
    file: str = ""
    ref: str = ""
    target: str = ""
    message: str = ""


@dataclass
class VerifyReport:
    snapshot: SnapshotInfo
    files_checked: int
    issues: List[Issue]
    warnings: List[Issue]
    metadata: Optional[dict]

    @property
    def ok(self) -> bool:
        return not self.issues

    def grouped(self) -> Dict[str, List[Issue]]:
        out: Dict[str, List[Issue]] = OrderedDict()
        for issue in self.issues:
            out.setdefault(issue.type, []).append(issue)
        return out


def find_html_files(root: Path) -> List[Path]:
    results: List[Path] = []
    for dirpath, _, filenames in os.walk(root):
        for name in sorted(filenames):
            if name.endswith(".html"):
                results.append(Path(dirpath) / name)
    return sorted(results)


def resolve_local_path(ref: str, snapshot_root: Path, current_file: Path) -> Optional[Path]:
    clean = unquote(strip_query_fragment(ref.strip()))
    if not clean:
        return None
    if clean.startswith("/"):
        return snapshot_root / clean.lstrip("/")
    return current_file.parent / clean


def target_exists(p: Path) -> bool:
    if p.is_file():
        return True
    return p.is_dir() and (p / "index.html").is_file()


def check_file(html_file: Path, root: Path) -> List[Issue]:
    issues: List[Issue] = []
    soup = bs4_parse(html_file.read_text(encoding="utf-8"))
    rel = html_file.relative_to(root).as_posix()

    def check(kind: str, ref: Optional[str], skip: tuple) -> None:
        if not ref or ref.strip().lower().startswith(skip):
            return
        target = resolve_local_path(ref, root, html_file)
        if target is not None and not target_exists(target):
            issues.append(Issue(type=kind, file=rel, ref=ref, target=str(target)))

    for a in soup.select("a[href]"):
        check("broken-link", a.get("href"), SKIP_HREF_PREFIXES)
    for tag in soup.select("[src]"):
        check("missing-asset", tag.get("src"), SKIP_SRC_PREFIXES)
    for link in soup.select("link[rel~=stylesheet][href]"):
        check("missing-stylesheet", link.get("href"), SKIP_SRC_PREFIXES)
    return issues


def verify_snapshot(snapshot: SnapshotInfo) -> VerifyReport:
    root = snapshot.path
    issues: List[Issue] = []
    warnings: List[Issue] = []
    checked = 0
    html_files = find_html_files(root)
    logging.info("found %d HTML files to check", len(html_files))
    for html_file in html_files:
        try:
            issues.extend(check_file(html_file, root))
            checked += 1
        except (OSError, UnicodeDecodeError) as e:
            warnings.append(Issue(type="read-error", file=str(html_file), message=str(e)))

    metadata = None
    meta_path = root / METADATA_FILE
    if meta_path.exists():
        try:
            metadata = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            warnings.append(Issue(type="metadata-parse-error", message=str(e)))
    else:
        warnings.append(Issue(type="no-metadata", message=f"No {METADATA_FILE} found in snapshot"))

    if not (root / "index.html").exists():
        issues.append(Issue(type="missing-index", message="No index.html found in snapshot root"))

    return VerifyReport(
        snapshot=snapshot,
        files_checked=checked,
        issues=issues,
        warnings=warnings,
        metadata=metadata,
    )


def print_report(report: VerifyReport) -> None:
    print("\n=== Snapshot Verification Report ===")
    print(f"Snapshot: {report.snapshot.name}")
    print(f"HTML files checked: {report.files_checked}")

    meta = report.metadata
    if meta:
        print("\nSnapshot metadata:")
        print(f"  Site: {meta.get('siteHost', 'unknown')}")
        print(f"  Pages crawled: {meta.get('crawledPages', 'unknown')}")
        print(f"  Assets downloaded: {meta.get('downloadedAssets', 'unknown')}")
        print(f"  Crawl duration: {meta.get('crawlDuration', 'unknown')}")

    if report.warnings:
        print(f"\nWarnings ({len(report.warnings)}):")
        for w in report.warnings:
            print(f"  [WARN] {w.type}: {w.message or w.file}")

    if report.ok:
        print("\nResult: PASS - No issues found")
        return

    print(f"\nIssues found ({len(report.issues)}):")
    for kind, items in report.grouped().items():
        print(f"\n  {kind} ({len(items)}):")
        for issue in items[:MAX_ISSUES_PER_TYPE]:
            if issue.ref:
                print(f"    - In {issue.file}: {issue.ref} -> NOT FOUND")
            else:
                print(f"    - {issue.message}")
        if len(items) > MAX_ISSUES_PER_TYPE:
            print(f"    ... and {len(items) - MAX_ISSUES_PER_TYPE} more")
    print("\nResult: FAIL - Issues found")


def run_verify(output_dir: Union[str, Path]) -> int:
    snapshots = list_snapshots(output_dir)
    if not snapshots:
        logging.error("no snapshots found in output directory: %s", output_dir)
        logging.error("run crawl mode first to create a snapshot")
        return 1
    latest = snapshots[0]
    logging.info("verifying snapshot %s (%s)", latest.name, format_size(latest.size))
    report = verify_snapshot(latest)
    print_report(report)
    return 0 if report.ok else 1
