"""
Provider Clients for upstream listing sources

One client per upstream provider. Each client turns a (credential, external id)
pair into the provider's raw JSON-like tree, or raises ProviderUnavailable with
a short reason. Clients are synchronous (requests); the aggregator runs them
off the event loop and bounds each call with a timeout.

Upstreams:
- propertydrive: internal 4PM/WordPress feed, all properties of an agency
- daft: Daft.ie listing via the proxy API
- myhome: MyHome listing via the proxy API
- acquaint_crm: Acquaint CRM standard XML datafeed
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup, Tag

from config.sync_config import (
    get_config,
    SourceSyncConfig,
    PROPERTYDRIVE,
    MYHOME,
    ACQUAINT_CRM,
    DAFT,
)

logger = logging.getLogger(__name__)


class ProviderUnavailable(Exception):
    """A provider could not supply a record for this request"""

    def __init__(self, provider: str, reason: str, not_found: bool = False):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason
        self.not_found = not_found


class FeedCache:
    """Short-lived memo of whole-agency feeds, keyed by credential"""

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 64):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[float, Any]] = {}
        # Clients run in worker threads via asyncio.to_thread
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            expires_at, value = entry
            if expires_at < time.time():
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest_key = min(self._entries.items(), key=lambda item: item[1][0])[0]
                self._entries.pop(oldest_key, None)
            self._entries[key] = (time.time() + self.ttl_seconds, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class ProviderClient:
    """Base class: shared HTTP session and error conversion"""

    provider: str = ""

    def __init__(
        self,
        config: Optional[SourceSyncConfig] = None,
        api_token: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.config = config or get_config()
        self.api_token = api_token

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': self.config.user_agent,
            'Accept': 'application/json, application/xml;q=0.9, */*;q=0.8',
        })

    def fetch(self, credential: str, external_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Fetch one raw record; force_refresh skips any in-process feed memo"""
        raise NotImplementedError

    def _unavailable(self, reason: str, not_found: bool = False) -> ProviderUnavailable:
        return ProviderUnavailable(self.provider, reason, not_found=not_found)

    def _auth_headers(self) -> Dict[str, str]:
        return {'token': self.api_token} if self.api_token else {}

    def _get(self, url: str, **kwargs) -> requests.Response:
        """GET with the configured timeout; transport errors become ProviderUnavailable"""
        kwargs.setdefault('timeout', self.config.request_timeout)
        try:
            return self.session.get(url, **kwargs)
        except requests.Timeout:
            raise self._unavailable("Request timed out")
        except requests.RequestException as e:
            raise self._unavailable(f"Request failed: {e}")


class PropertyDriveClient(ProviderClient):
    """Internal 4PM/WordPress feed: returns every property of an agency"""

    provider = PROPERTYDRIVE

    def __init__(self, *args, feed_cache: Optional[FeedCache] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.feed_cache = feed_cache or FeedCache(self.config.feed_cache_seconds)

    def fetch_all(self, unique_key: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """
        Fetch the agency's full property feed.

        Args:
            unique_key: Agency unique key sent as the `key` header
            force_refresh: Ignore the memoised feed and download it again

        Returns:
            List of raw property dicts
        """
        if force_refresh:
            self.feed_cache.invalidate(unique_key)
        else:
            cached = self.feed_cache.get(unique_key)
            if cached is not None:
                return cached

        headers = {**self._auth_headers(), 'key': unique_key}
        response = self._get(f"{self.config.api_base_url}/properties", headers=headers)

        if not response.ok:
            raise self._unavailable(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise self._unavailable("Malformed response")

        if not isinstance(data, list):
            raise self._unavailable("Invalid response")

        properties = [item for item in data if isinstance(item, dict)]
        self.feed_cache.set(unique_key, properties)
        return properties

    def fetch(self, credential: str, external_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        for item in self.fetch_all(credential, force_refresh=force_refresh):
            if str(item.get('ListReff', '')).strip() == external_id:
                return item
        raise self._unavailable("Property not found in WordPress", not_found=True)


class DaftClient(ProviderClient):
    """Daft.ie listing lookup via the proxy API"""

    provider = DAFT

    def fetch(self, credential: str, external_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        response = self._get(
            f"{self.config.api_base_url}/daft",
            params={'key': credential, 'id': external_id},
            headers=self._auth_headers(),
        )

        if not response.ok:
            raise self._unavailable(f"HTTP {response.status_code}")

        text = (response.text or '').strip()
        if not text or text in ('""', 'null'):
            raise self._unavailable("Empty response", not_found=True)

        try:
            data = json.loads(text)
        except ValueError:
            logger.warning(f"Daft JSON parse error for {external_id}: {text[:100]}")
            raise self._unavailable("Malformed response")

        if not isinstance(data, dict) or not data:
            raise self._unavailable("Empty object", not_found=True)

        return data


class MyHomeClient(ProviderClient):
    """MyHome listing lookup via the proxy API"""

    provider = MYHOME

    def fetch(self, credential: str, external_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        response = self._get(
            f"{self.config.api_base_url}/myhome",
            params={'key': credential, 'id': external_id},
            headers=self._auth_headers(),
        )

        # MyHome answers 404 or 500 for unknown listings
        if response.status_code in (404, 500):
            raise self._unavailable("Property not found on MyHome", not_found=True)
        if not response.ok:
            raise self._unavailable(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise self._unavailable("Malformed response")

        if isinstance(data, dict) and isinstance(data.get('Property'), dict):
            data = data['Property']

        if not isinstance(data, dict) or not data:
            raise self._unavailable("Property not found on MyHome", not_found=True)

        return data


def xml_to_tree(element: Tag) -> Any:
    """
    Convert an XML element into a plain dict tree.

    Leaf elements become their text; attributes become keys, with the text
    under "_". Repeated child tags collapse into a list.
    """
    children = [child for child in element.children if isinstance(child, Tag)]
    attrs = {key: value for key, value in element.attrs.items()}

    if not children:
        text = element.get_text(strip=True)
        if attrs:
            if text:
                attrs['_'] = text
            return attrs
        return text

    tree: Dict[str, Any] = attrs
    repeated = set()
    for child in children:
        value = xml_to_tree(child)
        name = child.name
        if name in repeated:
            tree[name].append(value)
        elif name in tree:
            tree[name] = [tree[name], value]
            repeated.add(name)
        else:
            tree[name] = value
    return tree


class AcquaintClient(ProviderClient):
    """Acquaint CRM standard XML datafeed, searched by property id"""

    provider = ACQUAINT_CRM

    def __init__(self, *args, feed_cache: Optional[FeedCache] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.feed_cache = feed_cache or FeedCache(self.config.feed_cache_seconds)

    def fetch_feed(self, site_prefix: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """Download and parse the agency's Acquaint datafeed"""
        if force_refresh:
            self.feed_cache.invalidate(site_prefix)
        else:
            cached = self.feed_cache.get(site_prefix)
            if cached is not None:
                return cached

        url = self.config.acquaint_feed_url.format(prefix=site_prefix)
        response = self._get(url)

        if not response.ok:
            raise self._unavailable(f"HTTP {response.status_code}")

        properties = parse_acquaint_feed(response.text)
        if properties is None:
            raise self._unavailable("Malformed response")

        self.feed_cache.set(site_prefix, properties)
        return properties

    def fetch(self, credential: str, external_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        # Ids in the feed never carry the site prefix
        if external_id.startswith(credential):
            external_id = external_id[len(credential):]

        for item in self.fetch_feed(credential, force_refresh=force_refresh):
            if str(item.get('id', '')).strip() == external_id:
                return item
        raise self._unavailable("Property not found", not_found=True)


def parse_acquaint_feed(xml_text: str) -> Optional[List[Dict[str, Any]]]:
    """Parse an Acquaint XML feed into a list of property trees (None if not XML)"""
    if not xml_text or not xml_text.strip():
        return None

    soup = BeautifulSoup(xml_text, 'xml')
    container = soup.find('properties')
    if container is not None:
        elements = container.find_all('property', recursive=False)
    else:
        elements = soup.find_all('property')

    if container is None and not elements:
        return None

    properties = []
    for element in elements:
        tree = xml_to_tree(element)
        if isinstance(tree, dict):
            properties.append(tree)
    return properties


CLIENT_CLASSES: Dict[str, Callable[..., ProviderClient]] = {
    PROPERTYDRIVE: PropertyDriveClient,
    MYHOME: MyHomeClient,
    ACQUAINT_CRM: AcquaintClient,
    DAFT: DaftClient,
}


def create_provider_clients(
    config: Optional[SourceSyncConfig] = None,
    api_token: Optional[str] = None
) -> Dict[str, ProviderClient]:
    """Create one client per provider sharing a single HTTP session"""
    config = config or get_config()
    session = requests.Session()
    return {
        name: client_class(config, api_token=api_token, session=session)
        for name, client_class in CLIENT_CLASSES.items()
    }
