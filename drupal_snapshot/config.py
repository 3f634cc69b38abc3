import os
import random
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

# -------------------- Defaults --------------------

USER_AGENTS: Tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

# env var -> Settings field
ENV_FIELDS = {
    "SITE_HOST": "site_host",
    "SITE_IP": "site_ip",
    "SITE_SCHEME": "scheme",
    "CONTACT_LINK": "contact_link",
    "LINKEDIN_PROFILE": "contact_link",
    "CRAWL_DELAY": "crawl_delay_ms",
    "MAX_DEPTH": "max_depth",
    "MAX_PAGES": "max_pages",
    "CONNECT_TIMEOUT": "connect_timeout_ms",
    "READ_TIMEOUT": "read_timeout_ms",
    "MAX_RETRIES": "max_retries",
    "RETRY_DELAY": "retry_delay_ms",
    "OUTPUT_DIR": "output_dir",
    "VERBOSE": "verbose",
    "CONNECT_VIA_IP": "connect_via_ip",
    "MARKER_TOKENS": "marker_tokens",
}

INT_FIELDS = {
    "crawl_delay_ms",
    "max_depth",
    "max_pages",
    "connect_timeout_ms",
    "read_timeout_ms",
    "max_retries",
    "retry_delay_ms",
}
BOOL_FIELDS = {"verbose", "connect_via_ip"}
TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    pass


# -------------------- Settings --------------------


@dataclass
class Settings:
    site_host: str = "localhost"
    site_ip: str = "127.0.0.1"
    contact_link: str = "https://linkedin.com"
    scheme: str = "https"
    connect_via_ip: bool = False

    # Crawl
    crawl_delay_ms: int = 500
    max_depth: int = 0  # 0 = unlimited
    max_pages: int = 10000

    # HTTP
    connect_timeout_ms: int = 10000
    read_timeout_ms: int = 30000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    user_agents: Tuple[str, ...] = USER_AGENTS

    # Markup
    marker_tokens: Tuple[str, ...] = ("jatos",)

    # Output
    output_dir: str = "/output"
    verbose: bool = False

    @property
    def site_hostname(self) -> str:
        return urlsplit("//" + self.site_host.strip()).hostname or ""

    @property
    def site_url(self) -> str:
        return f"{self.scheme}://{self.site_host}"

    @property
    def start_url(self) -> str:
        return self.site_url + "/"

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout_ms / 1000.0, self.read_timeout_ms / 1000.0)

    @property
    def output_root(self) -> Path:
        return Path(self.output_dir)

    def random_user_agent(self) -> str:
        return random.choice(self.user_agents)

    def validate(self) -> "Settings":
        if not self.site_host or not self.site_host.strip():
            raise ConfigError("SITE_HOST must be set")
        if "/" in self.site_host or "://" in self.site_host:
            raise ConfigError(f"SITE_HOST must be a bare host[:port], got {self.site_host!r}")
        if not self.site_ip or not self.site_ip.strip():
            raise ConfigError("SITE_IP must be set")
        if self.scheme not in {"http", "https"}:
            raise ConfigError(f"SITE_SCHEME must be http or https, got {self.scheme!r}")
        if self.crawl_delay_ms < 0:
            raise ConfigError("CRAWL_DELAY must be >= 0")
        if self.max_retries < 0:
            raise ConfigError("MAX_RETRIES must be >= 0")
        if self.retry_delay_ms < 0:
            raise ConfigError("RETRY_DELAY must be >= 0")
        if self.max_depth < 0:
            raise ConfigError("MAX_DEPTH must be >= 0")
        if self.max_pages < 1:
            raise ConfigError("MAX_PAGES must be >= 1")
        if self.connect_timeout_ms <= 0 or self.read_timeout_ms <= 0:
            raise ConfigError("CONNECT_TIMEOUT and READ_TIMEOUT must be > 0")
        if not self.user_agents:
            raise ConfigError("at least one user agent is required")
        if not self.output_dir:
            raise ConfigError("OUTPUT_DIR must be set")
        return self

    def describe(self) -> str:
        depth = "unlimited" if self.max_depth == 0 else str(self.max_depth)
        return (
            f"site={self.site_url} ip={self.site_ip} via_ip={self.connect_via_ip} "
            f"delay={self.crawl_delay_ms}ms max_depth={depth} "
            f"max_pages={self.max_pages} connect_timeout={self.connect_timeout_ms}ms "
            f"read_timeout={self.read_timeout_ms}ms max_retries={self.max_retries}"
        )


# -------------------- Parsing --------------------


def coerce_value(name: str, value: Union[str, int, bool, List[str], Tuple[str, ...]]):
    if name in INT_FIELDS:
        if isinstance(value, bool):
            raise ConfigError(f"{name} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if name in BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in TRUE_VALUES
    if name == "user_agents":
        if isinstance(value, str):
            value = [value]
        return tuple(str(v) for v in value)
    if name == "marker_tokens":
        if isinstance(value, str):
            value = value.split(",")
        tokens = tuple(t.strip().lower() for t in value if t and t.strip())
        if not tokens:
            raise ConfigError("MARKER_TOKENS must name at least one token")
        return tokens
    return str(value)


def overrides_from_env(env: Optional[Mapping[str, str]] = None) -> Dict[str, object]:
    env = os.environ if env is None else env
    out: Dict[str, object] = {}
    for var, name in ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        # CONTACT_LINK wins over the legacy LINKEDIN_PROFILE name
        if var == "LINKEDIN_PROFILE" and env.get("CONTACT_LINK"):
            continue
        out[name] = coerce_value(name, raw)
    return out


def settings_from_env(env: Optional[Mapping[str, str]] = None) -> Settings:
    return Settings(**overrides_from_env(env)).validate()


def settings_from_mapping(data: Mapping[str, object]) -> Settings:
    known = {f.name for f in fields(Settings)}
    kwargs = {}
    for k, v in data.items():
        if k not in known or v is None:
            continue
        kwargs[k] = coerce_value(k, v)
    return Settings(**kwargs).validate()


def load_config_file(path: str) -> Dict[str, object]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        import tomllib

        with open(p, "rb") as f:
            try:
                return tomllib.load(f) or {}
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"invalid TOML in {p}: {e}") from e
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"invalid YAML in {p}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError("Top-level YAML must be a mapping")
            return data
    else:
        raise ConfigError("Unsupported config format. Use .toml or .yaml")


def flatten_config(cfg: Mapping[str, object]) -> Dict[str, object]:
    flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
    for g in ("site", "crawl", "http", "markup", "output", "general"):
        section = cfg.get(g)
        if isinstance(section, dict):
            flat.update(section)
    return flat
