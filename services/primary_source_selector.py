"""
Primary Source Selector

Picks which provider's value is authoritative for a field. Agencies (or a
single property) nominate an ordered, comma-separated list of trusted
providers; the first nominated provider that actually has a value wins.
When none of them has one, the first present value in canonical provider
order is used instead.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple

from config.sync_config import get_config, SourceSyncConfig

logger = logging.getLogger(__name__)


def parse_primary_sources(raw: Optional[str], config: Optional[SourceSyncConfig] = None) -> List[str]:
    """
    Turn a comma-separated primary_source string into provider names.

    Tokens are trimmed and lower-cased; aliases such as "acquaint" map onto
    their provider. Unknown tokens are dropped, duplicates keep the first
    position.
    """
    if not raw:
        return []

    config = config or get_config()
    providers: List[str] = []
    for token in str(raw).split(','):
        token = token.strip().lower()
        if not token:
            continue
        provider = config.provider_for_token(token)
        if provider is None:
            logger.debug(f"Ignoring unknown primary source token: {token!r}")
            continue
        if provider not in providers:
            providers.append(provider)
    return providers


def preference_list(
    agency_primary_source: Optional[str],
    property_primary_override: Optional[str] = None,
    config: Optional[SourceSyncConfig] = None
) -> List[str]:
    """Property-level override wins over the agency's list when given"""
    override = parse_primary_sources(property_primary_override, config)
    if override:
        return override
    return parse_primary_sources(agency_primary_source, config)


def has_value(value: Any) -> bool:
    return value is not None and value != ''


def select_primary(
    field_name: str,
    present_values: Sequence[Tuple[str, Any]],
    agency_primary_list: Optional[str],
    property_primary_override: Optional[str] = None,
    config: Optional[SourceSyncConfig] = None
) -> Optional[str]:
    """
    Select the authoritative provider for one field.

    Args:
        field_name: Canonical field name (used for logging only)
        present_values: (provider, value) pairs for active providers
        agency_primary_list: Agency's comma-separated primary_source
        property_primary_override: Optional per-property primary_source

    Returns:
        Provider name, or None when no provider has a value
    """
    config = config or get_config()
    present = {provider: value for provider, value in present_values if has_value(value)}
    if not present:
        return None

    for provider in preference_list(agency_primary_list, property_primary_override, config):
        if provider in present:
            return provider

    for provider in config.canonical_order:
        if provider in present:
            logger.debug(f"No preferred source has {field_name!r}, defaulting to {provider}")
            return provider

    # Providers outside the canonical order keep their given order
    return next(iter(present))
