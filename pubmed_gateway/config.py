"""
Configuration for pubmed_gateway.

Configuration is loaded in layers, with later layers overriding earlier ones:
1. Package default config (pubmed_gateway/config.yaml)
2. User global config (~/.config/pubmed_gateway/config.yaml)
3. Explicit config_path (if provided) or local ./config.yaml
4. Environment variables (PUBMED_EMAIL, PUBMED_API_KEY, PUBMED_CACHE_DIR,
   ABSTRACT_MODE, FULLTEXT_MODE, ENDNOTE_EXPORT, UNPAYWALL_EMAIL)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

ABSTRACT_MODES = {
    'quick': 1500,
    'deep': 6000,
}
FULLTEXT_MODES = ('disabled', 'enabled', 'auto')


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _read_yaml(path: Path, label: str) -> Dict:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded {label} config from {path.resolve()}")
        return data
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load {label} config from {path.resolve()}: {e}")
        return {}


def get_default_cache_dir() -> Path:
    """Cache directory following the XDG Base Directory specification."""
    xdg_cache = Path(os.getenv('XDG_CACHE_HOME', '~/.cache')).expanduser()
    return xdg_cache / 'pubmed_gateway'


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict:
    """
    Load the layered YAML configuration (environment not applied).

    Args:
        config_path: Path to config file (optional). If provided, used as final
            override. If not provided, ./config.yaml is used when present.

    Returns:
        Dictionary with merged config values
    """
    config: Dict = {}

    package_config_path = Path(__file__).parent / "config.yaml"
    if package_config_path.exists():
        config = _deep_merge(config, _read_yaml(package_config_path, "package default"))

    user_config_path = Path.home() / ".config" / "pubmed_gateway" / "config.yaml"
    if user_config_path.exists():
        config = _deep_merge(config, _read_yaml(user_config_path, "user"))

    override_config_path = None
    if config_path:
        override_config_path = Path(config_path).expanduser()
    else:
        local_config_path = Path("./config.yaml").resolve()
        if local_config_path.exists():
            override_config_path = local_config_path

    if override_config_path and override_config_path.exists():
        config = _deep_merge(config, _read_yaml(override_config_path, "override"))
        logger.info(f"Loaded override config from {override_config_path.resolve()}")
    elif config_path:
        logger.warning(f"Override config file {config_path} not found, using defaults only")

    return config


def _as_range(value: Any, default: Tuple[float, float]) -> Tuple[float, float]:
    if not value:
        return default
    low, high = float(value[0]), float(value[1])
    if low > high:
        low, high = high, low
    return (low, high)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on', 'enabled')


@dataclass
class GatewayConfig:
    """Settings for one gateway context."""

    # Upstream API
    base_url: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
    tool: str = "pubmed_gateway"
    email: str = "user@example.com"
    api_key: Optional[str] = None
    timeout: int = 30
    max_retries: int = 3
    initial_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    retry_backoff_factor: float = 2.0

    # Caching
    cache_dir: Path = field(default_factory=get_default_cache_dir)
    memory_cache_size: int = 100
    memory_cache_ttl: float = 300.0
    record_ttl_days: int = 30
    fulltext_ttl_days: int = 90

    # Modes
    abstract_mode: str = "quick"
    fulltext_mode: str = "disabled"
    export_enabled: bool = False

    # Full text
    unpaywall_email: Optional[str] = None
    max_file_size_mb: float = 50
    download_timeout: int = 120
    connect_timeout: int = 30
    probe_timeout: int = 10
    resolver_timeout: int = 10
    max_batch_size: int = 10
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # Pacing (seconds, uniform ranges)
    pre_download_delay: Tuple[float, float] = (1.0, 3.0)
    between_items_delay: Tuple[float, float] = (2.0, 5.0)

    max_ids_per_request: int = 20

    def __post_init__(self):
        self.cache_dir = Path(self.cache_dir).expanduser()
        self.abstract_mode = (self.abstract_mode or "quick").lower()
        if self.abstract_mode not in ABSTRACT_MODES:
            logger.warning(f"Unknown abstract mode '{self.abstract_mode}', using 'quick'")
            self.abstract_mode = "quick"
        self.fulltext_mode = (self.fulltext_mode or "disabled").lower()
        if self.fulltext_mode not in FULLTEXT_MODES:
            logger.warning(f"Unknown full-text mode '{self.fulltext_mode}', using 'disabled'")
            self.fulltext_mode = "disabled"
        if not self.unpaywall_email:
            self.unpaywall_email = self.email

    @property
    def abstract_max_chars(self) -> int:
        return ABSTRACT_MODES[self.abstract_mode]

    @property
    def max_file_size(self) -> int:
        """Maximum download size in bytes."""
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def fulltext_enabled(self) -> bool:
        return self.fulltext_mode != "disabled"

    @property
    def auto_download(self) -> bool:
        return self.fulltext_mode == "auto"

    @classmethod
    def from_dict(cls, data: Mapping) -> "GatewayConfig":
        """Build a config from the nested YAML layout."""
        pubmed = data.get('pubmed') or {}
        cache = data.get('cache') or {}
        modes = data.get('modes') or {}
        fulltext = data.get('fulltext') or {}
        pacing = data.get('pacing') or {}
        limits = data.get('limits') or {}

        kwargs: Dict[str, Any] = {}
        mapping = [
            (pubmed, 'base_url', 'base_url'),
            (pubmed, 'tool', 'tool'),
            (pubmed, 'email', 'email'),
            (pubmed, 'api_key', 'api_key'),
            (pubmed, 'timeout', 'timeout'),
            (pubmed, 'max_retries', 'max_retries'),
            (pubmed, 'initial_retry_delay', 'initial_retry_delay'),
            (pubmed, 'max_retry_delay', 'max_retry_delay'),
            (pubmed, 'retry_backoff_factor', 'retry_backoff_factor'),
            (cache, 'dir', 'cache_dir'),
            (cache, 'memory_size', 'memory_cache_size'),
            (cache, 'memory_ttl_seconds', 'memory_cache_ttl'),
            (cache, 'record_ttl_days', 'record_ttl_days'),
            (cache, 'fulltext_ttl_days', 'fulltext_ttl_days'),
            (modes, 'abstract', 'abstract_mode'),
            (modes, 'fulltext', 'fulltext_mode'),
            (fulltext, 'unpaywall_email', 'unpaywall_email'),
            (fulltext, 'max_file_size_mb', 'max_file_size_mb'),
            (fulltext, 'download_timeout', 'download_timeout'),
            (fulltext, 'connect_timeout', 'connect_timeout'),
            (fulltext, 'probe_timeout', 'probe_timeout'),
            (fulltext, 'resolver_timeout', 'resolver_timeout'),
            (fulltext, 'max_batch_size', 'max_batch_size'),
            (fulltext, 'user_agent', 'user_agent'),
            (limits, 'max_ids_per_request', 'max_ids_per_request'),
        ]
        for section, key, name in mapping:
            value = section.get(key)
            if value is not None:
                kwargs[name] = value

        if modes.get('endnote_export') is not None:
            kwargs['export_enabled'] = _as_bool(modes['endnote_export'])
        kwargs['pre_download_delay'] = _as_range(pacing.get('pre_download'), (1.0, 3.0))
        kwargs['between_items_delay'] = _as_range(pacing.get('between_items'), (2.0, 5.0))

        return cls(**kwargs)

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "GatewayConfig":
        """Load YAML layers, then apply environment overrides."""
        data = load_config(config_path)
        data = _deep_merge(data, env_overrides(os.environ if env is None else env))
        return cls.from_dict(data)


def env_overrides(env: Mapping[str, str]) -> Dict:
    """Translate environment variables into the nested config layout."""
    overrides: Dict[str, Dict[str, Any]] = {}

    def put(section: str, key: str, value: Any):
        overrides.setdefault(section, {})[key] = value

    if env.get('PUBMED_EMAIL'):
        put('pubmed', 'email', env['PUBMED_EMAIL'])
    if env.get('PUBMED_API_KEY'):
        put('pubmed', 'api_key', env['PUBMED_API_KEY'])
    if env.get('PUBMED_CACHE_DIR'):
        put('cache', 'dir', env['PUBMED_CACHE_DIR'])
    if env.get('ABSTRACT_MODE'):
        put('modes', 'abstract', env['ABSTRACT_MODE'])
    if env.get('FULLTEXT_MODE'):
        put('modes', 'fulltext', env['FULLTEXT_MODE'])
    if env.get('ENDNOTE_EXPORT'):
        put('modes', 'endnote_export', env['ENDNOTE_EXPORT'])
    if env.get('UNPAYWALL_EMAIL'):
        put('fulltext', 'unpaywall_email', env['UNPAYWALL_EMAIL'])

    return overrides
