import hashlib
import logging
import posixpath
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".mp4"
CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"


def url_hash(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:8]


class CdnRewriter:
    """Maps source URLs onto the CDN host, remembering every mapping it makes."""

    def __init__(self, domain: str):
        self.domain = domain
        self._cache: Dict[str, str] = {}

    def rewrite(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return url
        cached = self._cache.get(url)
        if cached is not None:
            return cached
        try:
            parsed = urlparse(url)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError("not an absolute URL")
            extension = posixpath.splitext(parsed.path)[1] or DEFAULT_EXTENSION
        except ValueError as e:
            LOGGER.error(f"Could not convert {url} to a CDN URL: {e}")
            return url
        # Same escaping as JavaScript's encodeURIComponent
        origin = quote(url, safe="!~*'()")
        cdn_url = f"https://{self.domain}/video/{url_hash(url)}{extension}?origin={origin}"
        self._cache[url] = cdn_url
        LOGGER.info(f"CDN URL: {url} -> {cdn_url}")
        return cdn_url

    def clear(self) -> int:
        size = len(self._cache)
        self._cache.clear()
        LOGGER.info(f"CDN URL cache cleared ({size} entries)")
        return size

    @property
    def cached(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        return {
            "cdnDomain": self.domain,
            "cachedUrls": len(self._cache),
            "cacheEntries": [
                {"original": original[:50] + "...", "cdn": cdn[:50] + "..."}
                for original, cdn in self._cache.items()
            ],
        }


async def create_page_rule(zone_id: str, api_token: str, pattern: str,
                           api_url: str = CLOUDFLARE_API_URL) -> bool:
    """Ask Cloudflare to cache everything under ``pattern``. Never raises."""
    if not zone_id or not api_token:
        LOGGER.warning("Cloudflare is not configured, serving direct CDN URLs")
        return False
    payload = {
        "targets": [{"target": "url", "constraint": {"operator": "matches", "value": pattern}}],
        "actions": [
            {"id": "cache_level", "value": "cache_everything"},
            {"id": "edge_cache_ttl", "value": 86400},
            {"id": "browser_cache_ttl", "value": 3600},
        ],
        "priority": 1,
        "status": "active",
    }
    try:
        async with httpx.AsyncClient(timeout=30) as client:
            resp = await client.post(
                f"{api_url}/zones/{zone_id}/pagerules",
                headers={"Authorization": f"Bearer {api_token}"},
                json=payload,
            )
        result = resp.json()
    except (httpx.RequestError, ValueError) as e:
        LOGGER.error(f"Error creating Cloudflare page rule: {e}")
        return False
    if resp.is_success and result.get("success"):
        LOGGER.info(f"Cloudflare page rule created for {pattern}")
        return True
    errors = result.get("errors") or [{}]
    LOGGER.warning(f"Could not create Cloudflare page rule: {errors[0].get('message', 'unknown error')}")
    return False
