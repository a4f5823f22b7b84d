# blocklist_source.py
"""
Getting the blocked domain list: cached snapshot first, published list otherwise.

Only an explicit refresh writes the cache. A cold cache means every lookup
goes to the published list until someone calls refresh.
"""

import os
import json
import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from cache_store import CacheStore

logger = logging.getLogger(__name__)

# -------------------------
# Configurable constants
# -------------------------
SOURCE_URL = os.getenv(
    "CHECKDOMAIN_SOURCE_URL",
    "https://github.com/Skiddle-ID/blocklist/releases/latest/download/domains.txt",
)
CACHE_KEY = SOURCE_URL                  # cache entries are keyed by the source URL
CACHE_TTL = int(os.getenv("CHECKDOMAIN_CACHE_TTL", 3600))
HTTP_TIMEOUT = float(os.getenv("CHECKDOMAIN_HTTP_TIMEOUT", 30))
USER_AGENT = "Checkdomain/1.0"


class BlocklistFetchError(Exception):
    """The published list could not be downloaded."""


class CacheSnapshot(BaseModel):
    domainList: List[str]


def build_http_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=HTTP_TIMEOUT,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )


def parse_domain_list(text: str) -> List[str]:
    """One domain per line; blank lines dropped, duplicates kept."""
    return [ln.strip() for ln in text.split("\n") if ln.strip()]


async def fetch_domain_list(client: httpx.AsyncClient) -> List[str]:
    try:
        r = await client.get(SOURCE_URL)
    except httpx.HTTPError as e:
        raise BlocklistFetchError(f"Failed to fetch domain list: {e}") from e
    if not r.is_success:
        raise BlocklistFetchError(f"Failed to fetch domain list: {r.status_code} {r.reason_phrase}")
    return parse_domain_list(r.text)


def get_cached_domain_list(store: CacheStore) -> Optional[List[str]]:
    body = store.match(CACHE_KEY)
    if body is None:
        return None
    try:
        return CacheSnapshot.model_validate_json(body).domainList
    except ValidationError as e:
        logger.error("Error parsing cached domain list: %s", e)
    return None


def cache_domain_list(store: CacheStore, domains: List[str]) -> None:
    body = json.dumps({"domainList": domains})
    try:
        store.put(CACHE_KEY, body, CACHE_TTL)
    except Exception as e:
        logger.error("Error caching domain list: %s", e)
        return
    logger.info("Cached %d domains for %ds", len(domains), CACHE_TTL)


async def refresh_domain_list(store: CacheStore, client: httpx.AsyncClient) -> List[str]:
    domains = await fetch_domain_list(client)
    cache_domain_list(store, domains)
    return domains


async def load_domain_list(store: CacheStore, client: httpx.AsyncClient) -> List[str]:
    domains = get_cached_domain_list(store)
    if domains is None:
        # no backfill here, see module docstring
        domains = await fetch_domain_list(client)
    return domains
