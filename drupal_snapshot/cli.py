import argparse
import logging
import os
import sys
from typing import Dict, List, Mapping, Optional

from .config import (
    ConfigError,
    Settings,
    flatten_config,
    load_config_file,
    overrides_from_env,
    settings_from_mapping,
)

MODES = ("crawl", "verify", "clean")

# argparse dest -> Settings field
ARG_FIELDS = {
    "site_host": "site_host",
    "site_ip": "site_ip",
    "scheme": "scheme",
    "contact_link": "contact_link",
    "delay": "crawl_delay_ms",
    "max_depth": "max_depth",
    "max_pages": "max_pages",
    "connect_timeout": "connect_timeout_ms",
    "read_timeout": "read_timeout_ms",
    "max_retries": "max_retries",
    "retry_delay": "retry_delay_ms",
    "output_dir": "output_dir",
    "verbose": "verbose",
    "connect_via_ip": "connect_via_ip",
    "marker": "marker_tokens",
}


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="drupal-snapshot",
        description="Export a Drupal site into a timestamped static HTML snapshot.",
    )
    p.add_argument(
        "mode",
        nargs="?",
        choices=MODES,
        default=None,
        help="crawl | verify | clean (default: $MODE or crawl)",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    # site
    p.add_argument("--site-host", type=str, help="site hostname[:port]")
    p.add_argument("--site-ip", type=str, help="origin IP address")
    p.add_argument("--scheme", type=str, choices=["http", "https"], help="site scheme")
    p.add_argument(
        "--connect-via-ip",
        action="store_true",
        default=None,
        help="connect to --site-ip while keeping the site host for Host/TLS",
    )
    p.add_argument(
        "--contact-link", type=str, help="link shown in place of experiment elements"
    )
    p.add_argument(
        "--marker",
        action="append",
        default=None,
        help="marker token flagging experiment iframes/forms/links (repeatable)",
    )

    # crawl
    p.add_argument("--delay", type=int, help="delay between requests (ms)")
    p.add_argument("--max-depth", type=int, help="max link depth, 0 = unlimited")
    p.add_argument("--max-pages", type=int, help="max URLs to process")

    # http
    p.add_argument("--connect-timeout", type=int, help="connect timeout (ms)")
    p.add_argument("--read-timeout", type=int, help="read timeout (ms)")
    p.add_argument("--max-retries", type=int, help="retries per URL")
    p.add_argument("--retry-delay", type=int, help="base retry backoff (ms)")

    # output
    p.add_argument("--output-dir", type=str, help="snapshot root directory")
    p.add_argument("--verbose", action="store_true", default=None, help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


def resolve_settings(
    args: argparse.Namespace, env: Optional[Mapping[str, str]] = None
) -> Settings:
    """defaults < environment < config file < command line"""
    values: Dict[str, object] = dict(overrides_from_env(env))
    if args.config:
        values.update(flatten_config(load_config_file(args.config)))
    for dest, name in ARG_FIELDS.items():
        v = getattr(args, dest, None)
        if v is not None:
            values[name] = v
    return settings_from_mapping(values)


def main(argv: Optional[List[str]] = None) -> None:
    sys.exit(run(argv))


def run(argv: Optional[List[str]] = None, env: Optional[Mapping[str, str]] = None) -> int:
    env = os.environ if env is None else env
    args = parse_args(argv)
    mode = (args.mode or env.get("MODE") or "crawl").lower()

    verbose = bool(args.verbose) or env.get("VERBOSE", "").lower() in ("1", "true", "yes")
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if mode not in MODES:
        logging.error("invalid MODE %r, must be one of: %s", mode, ", ".join(MODES))
        return 1

    try:
        settings = resolve_settings(args, env)
    except (ConfigError, OSError) as e:
        logging.error("invalid configuration: %s", e)
        return 1
    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logging.info("drupal-snapshot starting in mode: %s", mode)
    if mode == "crawl":
        from .pipeline import run_crawl

        code = run_crawl(settings)
    elif mode == "verify":
        from .verify import run_verify

        code = run_verify(settings.output_dir)
    else:
        from .clean import run_clean

        code = run_clean(settings.output_dir)
    logging.info("exiting with code: %d", code)
    return code


if __name__ == "__main__":
    main()
