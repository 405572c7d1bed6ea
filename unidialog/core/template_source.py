"""
Template Source - Cataloguing templates from a JSON file or HTTP endpoint

Responsibilities:
- Fetch {"templates": [...]} from a local file or a remote definitions API
- Keep only templates with id, name and list controlFields / dataFields
- Cache the result for a TTL
- Never raise to the Turn Engine: failures yield {"templates": []}

Design principles:
- One source per instance (file path or URL)
- Clock injectable for tests
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class TemplateSourceError(Exception):
    """Raised internally when templates cannot be fetched or decoded."""


def filter_templates(data: Any) -> List[dict]:
    """
    Keep only structurally usable templates.

    Args:
        data: Decoded payload, expected {"templates": [...]}

    Returns:
        list[dict]: Templates with id, name, controlFields list, dataFields list
    """
    if not isinstance(data, dict) or not isinstance(data.get('templates'), list):
        return []

    kept = []
    for template in data['templates']:
        if (isinstance(template, dict)
                and template.get('id')
                and template.get('name')
                and isinstance(template.get('controlFields'), list)
                and isinstance(template.get('dataFields'), list)):
            kept.append(template)
        else:
            name = template.get('name') if isinstance(template, dict) else None
            logger.warning(f"Skipping malformed template: {name!r}")
    return kept


class TemplateSource:
    """Cached template provider"""

    def __init__(self, path: Optional[str] = None, url: Optional[str] = None,
                 api_key: Optional[str] = None, ttl_seconds: float = 300,
                 timeout: float = 8, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            path: JSON file with {"templates": [...]}
            url: HTTP endpoint returning the same shape
            api_key: Sent as X-API-Key when fetching from url
            ttl_seconds: Cache lifetime
            timeout: HTTP timeout in seconds
            clock: Monotonic clock (seconds)

        Raises:
            ValueError: If neither or both of path / url are given
        """
        if bool(path) == bool(url):
            raise ValueError("TemplateSource needs exactly one of path or url")

        self.path = Path(path) if path else None
        self.url = url
        self.api_key = api_key
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._clock = clock

        self._cached: Optional[Dict[str, List[dict]]] = None
        self._cached_at = 0.0

        logger.info(f"Template source initialized: {self.path or self.url} (ttl={ttl_seconds}s)")

    def get_templates(self) -> Dict[str, List[dict]]:
        """
        Return {"templates": [...]}, served from cache while fresh.

        Fetch failures are logged and yield {"templates": []} (not cached).
        """
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self.ttl_seconds:
            return self._cached

        try:
            data = self._fetch()
        except TemplateSourceError as e:
            logger.error(f"Failed to load templates: {e}")
            return {'templates': []}

        result = {'templates': filter_templates(data)}
        self._cached = result
        self._cached_at = now

        logger.info(f"Loaded {len(result['templates'])} templates")
        return result

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    def _fetch(self) -> Any:
        if self.path is not None:
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise TemplateSourceError(f"{self.path}: {e}") from e

        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['X-API-Key'] = self.api_key

        try:
            response = requests.get(self.url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise TemplateSourceError(f"{self.url}: {e}") from e
