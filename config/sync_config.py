"""
Source Sync Configuration for Multi-Source Listing Reconciliation

This module loads configuration from sync_config.yaml and provides
typed access to provider, cache, rate limiting and reconciliation settings.

Providers:
- propertydrive: internal 4PM/WordPress feed, always the canonical source
- myhome: MyHome agent API
- acquaint_crm: Acquaint CRM XML datafeed
- daft: Daft.ie listing API
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


PROPERTYDRIVE = 'propertydrive'
MYHOME = 'myhome'
ACQUAINT_CRM = 'acquaint_crm'
DAFT = 'daft'

CANONICAL_PROVIDER_ORDER = [PROPERTYDRIVE, MYHOME, ACQUAINT_CRM, DAFT]
EXTERNAL_PROVIDERS = [MYHOME, ACQUAINT_CRM, DAFT]


@dataclass
class ProviderSettings:
    """Configuration for a single upstream provider"""
    name: str
    display_name: str
    cache_table: str
    credential_field: str  # attribute on the agency row
    created_date_fields: List[str] = field(default_factory=list)
    modified_date_fields: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)  # primary_source tokens

    def __post_init__(self):
        assert self.name in CANONICAL_PROVIDER_ORDER, f"Unknown provider: {self.name}"
        assert self.cache_table, f"Cache table required for provider: {self.name}"


_PROVIDER_DEFAULTS = {
    PROPERTYDRIVE: {
        "display_name": "FindAHome",
        "cache_table": "wordpress_properties",
        "credential_field": "unique_key",
        "created_date_fields": ["date", "AddedDate"],
        "modified_date_fields": ["Modified"],
        "aliases": ["propertydrive", "wordpress", "4pm", "findahome"],
    },
    MYHOME: {
        "display_name": "MyHome",
        "cache_table": "myhome_properties",
        "credential_field": "myhome_api_key",
        "created_date_fields": ["CreatedOnDate"],
        "modified_date_fields": ["ModifiedOnDate"],
        "aliases": ["myhome"],
    },
    ACQUAINT_CRM: {
        "display_name": "Acquaint",
        "cache_table": "acquaint_properties",
        "credential_field": "acquaint_site_prefix",
        "created_date_fields": [],
        "modified_date_fields": [],
        "aliases": ["acquaint", "acquaint_crm"],
    },
    DAFT: {
        "display_name": "Daft",
        "cache_table": "daft_properties",
        "credential_field": "daft_api_key",
        "created_date_fields": ["startDate"],
        "modified_date_fields": [],
        "aliases": ["daft"],
    },
}


def _load_yaml_config() -> Dict:
    """Load configuration from YAML file"""
    config_path = Path(os.getenv("SOURCE_SYNC_CONFIG", Path(__file__).parent / "sync_config.yaml"))

    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
            logger.info(f"Loaded configuration from {config_path}")
            return config or {}
    except Exception as e:
        logger.error(f"Error loading config from {config_path}: {e}")
        return {}


def _create_provider_settings(name: str, yaml_config: Dict) -> ProviderSettings:
    """Create ProviderSettings from YAML config layered over the defaults"""
    provider_yaml = yaml_config.get('providers', {}).get(name, {}) or {}
    default = _PROVIDER_DEFAULTS[name]

    return ProviderSettings(
        name=name,
        display_name=provider_yaml.get('display_name', default['display_name']),
        cache_table=provider_yaml.get('cache_table', default['cache_table']),
        credential_field=provider_yaml.get('credential_field', default['credential_field']),
        created_date_fields=list(provider_yaml.get('created_date_fields', default['created_date_fields'])),
        modified_date_fields=list(provider_yaml.get('modified_date_fields', default['modified_date_fields'])),
        aliases=[a.lower() for a in provider_yaml.get('aliases', default['aliases'])],
    )


@dataclass
class SourceSyncConfig:
    """Main configuration class for the source sync system"""

    # Upstream proxy API (internal feed, Daft, MyHome)
    api_base_url: str = "https://api.stefanmars.nl/api"
    acquaint_feed_url: str = "https://www.acquaintcrm.co.uk/datafeeds/standardxml/{prefix}-0.xml"
    user_agent: str = "Mozilla/5.0 (compatible; SourceSync/1.0)"
    request_timeout: int = 30  # seconds, per HTTP request

    # Provider settings, keyed by provider short name
    providers: Dict[str, ProviderSettings] = field(default_factory=dict)

    # Cache
    cache_expiry_hours: float = 24.0
    feed_cache_seconds: int = 300  # memoisation of whole-agency feeds

    # Fetching
    fetch_timeout_seconds: float = 20.0  # hard bound per provider fetch

    # Rate limiting for bulk sync
    delay_between_properties: float = 1.0
    pause_every_properties: int = 25
    pause_seconds: float = 10.0
    delay_between_agencies: float = 2.0

    # Reconciliation
    canonical_order: List[str] = field(default_factory=lambda: list(CANONICAL_PROVIDER_ORDER))
    image_fields: List[str] = field(default_factory=lambda: ["Pictures"])
    date_fields: List[str] = field(default_factory=lambda: ["Created", "Last Modified"])
    long_text_markers: List[str] = field(default_factory=lambda: ["description", "content", "details"])

    # Scheduling
    full_sync_frequency_hours: float = 24.0

    # Logging
    log_file: str = "source_sync.log"
    log_level: str = "INFO"

    def get_provider(self, name: str) -> ProviderSettings:
        """Get settings for a specific provider"""
        if name not in self.providers:
            raise ValueError(f"Invalid provider: {name}. Must be one of {CANONICAL_PROVIDER_ORDER}.")
        return self.providers[name]

    def provider_for_token(self, token: str) -> Optional[str]:
        """Map a primary_source token (e.g. 'acquaint') to a provider name"""
        token = (token or '').strip().lower()
        if not token:
            return None
        for settings in self.providers.values():
            if token == settings.name or token in settings.aliases:
                return settings.name
        return None

    def is_image_field(self, field_name: str) -> bool:
        return field_name in self.image_fields

    def is_date_field(self, field_name: str) -> bool:
        return field_name in self.date_fields

    def is_long_text_field(self, field_name: str) -> bool:
        lower = (field_name or '').lower()
        return any(marker in lower for marker in self.long_text_markers)


def _build_config_from_yaml(yaml_config: Dict) -> SourceSyncConfig:
    """Build SourceSyncConfig from YAML configuration"""

    providers = {
        name: _create_provider_settings(name, yaml_config)
        for name in CANONICAL_PROVIDER_ORDER
    }

    # Extract nested config sections
    api = yaml_config.get('api', {})
    cache = yaml_config.get('cache', {})
    fetch = yaml_config.get('fetch', {})
    rate_limiting = yaml_config.get('rate_limiting', {})
    reconciliation = yaml_config.get('reconciliation', {})
    schedule = yaml_config.get('schedule', {})
    logging_config = yaml_config.get('logging', {})

    canonical_order = reconciliation.get('canonical_order', CANONICAL_PROVIDER_ORDER)
    unknown = [p for p in canonical_order if p not in CANONICAL_PROVIDER_ORDER]
    if unknown or len(canonical_order) != len(CANONICAL_PROVIDER_ORDER):
        logger.warning(f"Ignoring invalid canonical_order {canonical_order}")
        canonical_order = CANONICAL_PROVIDER_ORDER

    return SourceSyncConfig(
        api_base_url=os.getenv("PROVIDER_API_BASE_URL", api.get('base_url', "https://api.stefanmars.nl/api")).rstrip('/'),
        acquaint_feed_url=api.get('acquaint_feed_url', "https://www.acquaintcrm.co.uk/datafeeds/standardxml/{prefix}-0.xml"),
        user_agent=api.get('user_agent', "Mozilla/5.0 (compatible; SourceSync/1.0)"),
        request_timeout=int(api.get('request_timeout', 30)),
        providers=providers,

        # Cache
        cache_expiry_hours=float(os.getenv("CACHE_EXPIRY_HOURS", cache.get('expiry_hours', 24))),
        feed_cache_seconds=int(cache.get('feed_cache_seconds', 300)),

        # Fetching
        fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", fetch.get('timeout_seconds', 20))),

        # Rate limiting
        delay_between_properties=float(rate_limiting.get('delay_between_properties', 1.0)),
        pause_every_properties=int(rate_limiting.get('pause_every_properties', 25)),
        pause_seconds=float(rate_limiting.get('pause_seconds', 10.0)),
        delay_between_agencies=float(rate_limiting.get('delay_between_agencies', 2.0)),

        # Reconciliation
        canonical_order=list(canonical_order),
        image_fields=list(reconciliation.get('image_fields', ["Pictures"])),
        date_fields=list(reconciliation.get('date_fields', ["Created", "Last Modified"])),
        long_text_markers=[m.lower() for m in reconciliation.get('long_text_markers', ["description", "content", "details"])],

        # Scheduling
        full_sync_frequency_hours=float(schedule.get('full_sync_frequency_hours', 24)),

        # Logging
        log_file=logging_config.get('log_file', "source_sync.log"),
        log_level=os.getenv("SYNC_LOG_LEVEL", logging_config.get('log_level', "INFO")),
    )


# Global configuration instance
_config: Optional[SourceSyncConfig] = None


def get_config(reload: bool = False) -> SourceSyncConfig:
    """
    Get the global configuration instance.

    Args:
        reload: If True, reload configuration from YAML file

    Returns:
        SourceSyncConfig instance
    """
    global _config
    if _config is None or reload:
        yaml_config = _load_yaml_config()
        _config = _build_config_from_yaml(yaml_config)
    return _config


def reload_config() -> SourceSyncConfig:
    """Force reload configuration from YAML file"""
    return get_config(reload=True)


def set_config(config: SourceSyncConfig) -> None:
    """Set the global configuration instance (useful for testing)"""
    global _config
    _config = config


def build_config(yaml_config: Optional[Dict] = None) -> SourceSyncConfig:
    """Build a standalone configuration from a dict, without touching the global one"""
    return _build_config_from_yaml(yaml_config or {})
