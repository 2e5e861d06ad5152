"""
External ID Normalization

The internal feed identifies a property by its ListReff (e.g. "ABC12345").
MyHome, Daft and Acquaint know the same listing under a provider-specific id:
the Acquaint site prefix is stripped when present, otherwise every letter is
removed ("ABC12345" -> "12345").

All aggregation and cache lookups for external providers should go through
normalize_external_id so the same listing is always queried and cached under
the same key.
"""

import re
from typing import Optional

from .sync_config import PROPERTYDRIVE

_LETTERS = re.compile(r'[A-Za-z]')


def strip_site_prefix(list_reff: str, site_prefix: Optional[str]) -> str:
    """
    Remove the agency's site prefix from a ListReff.

    Falls back to removing all letters when the prefix is missing or not
    contained in the reference.
    """
    if not list_reff:
        return ""

    if site_prefix and site_prefix in list_reff:
        return list_reff.replace(site_prefix, '', 1).strip()

    return _LETTERS.sub('', list_reff).strip()


def normalize_external_id(provider: str, list_reff: str, site_prefix: Optional[str] = None) -> str:
    """
    Get the id used to query (and cache) a provider for a listing.

    Args:
        provider: Provider short name
        list_reff: Canonical ListReff from the internal feed
        site_prefix: Agency's acquaint_site_prefix, if any

    Returns:
        Normalized external id string
    """
    if provider == PROPERTYDRIVE:
        return (list_reff or '').strip()
    return strip_site_prefix(list_reff, site_prefix)


__all__ = ['normalize_external_id', 'strip_site_prefix']
