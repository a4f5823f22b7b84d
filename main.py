"""
Checkdomain - main.py
Answers "is this domain on the blocklist?" over HTTP.

Endpoints (single route):
- GET  /?domain=a.com            -> one domain
- GET  /?domains=a.com,b.com     -> several domains
- GET  /?...&json=true           -> { "a.com": { "blocked": true } }
- GET  /?refresh=true            -> re-download the list into the cache
- OPTIONS /                      -> CORS preflight, empty body

The list comes from the cached snapshot when there is one, otherwise it is
downloaded straight from the published release (see blocklist_source.py).
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from blocklist_source import (
    BlocklistFetchError,
    build_http_client,
    load_domain_list,
    refresh_domain_list,
)
from cache_store import CacheStore, FileCacheStore, MemoryCacheStore

# -------------------------
# Configurable constants
# -------------------------
DEFAULT_PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CACHE_DIR = os.getenv("CHECKDOMAIN_CACHE_DIR")     # unset -> in-memory cache

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}
BOTH_PARAMS_MESSAGE = "Both domains and domain parameters cannot be provided simultaneously."
USAGE_MESSAGE = "Please provide ?domain=example.com or ?domains=a.com,b.com"

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# -------------------------
# App & collaborators
# -------------------------
_http_client: Optional[httpx.AsyncClient] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _http_client
    yield
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


app = FastAPI(title="Checkdomain API", lifespan=lifespan)

CACHE: CacheStore = FileCacheStore(CACHE_DIR) if CACHE_DIR else MemoryCacheStore()

logger.info("Startup: using %s", type(CACHE).__name__)


def get_cache_store() -> CacheStore:
    return CACHE


def get_http_client() -> httpx.AsyncClient:
    """One client for the app lifetime, built on first use."""
    global _http_client
    if _http_client is None:
        _http_client = build_http_client()
    return _http_client


def first_param(request: Request, name: str) -> Optional[str]:
    # first occurrence wins for repeated keys (?domain=a&domain=b -> a)
    values = request.query_params.getlist(name)
    return values[0] if values else None


class DomainStatus(BaseModel):
    blocked: bool


@app.exception_handler(BlocklistFetchError)
async def blocklist_fetch_error_handler(request: Request, exc: BlocklistFetchError):
    logger.error("Blocklist fetch failed: %s", exc)
    return PlainTextResponse(f"Error fetching blocklist: {exc}", status_code=500)


def plain_text_body(results: Dict[str, DomainStatus]) -> str:
    return "".join(
        f"{domain}: {'Blocked' if status.blocked else 'Not Blocked'}!\n"
        for domain, status in results.items()
    )


# -------------------------
# Routes
# -------------------------
@app.options("/")
async def preflight():
    return Response(headers=CORS_HEADERS)


@app.get("/")
async def check_domains(
    request: Request,
    cache: CacheStore = Depends(get_cache_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    if first_param(request, "refresh") == "true":
        await refresh_domain_list(cache, client)
        return PlainTextResponse("Cache Refreshed!")

    domain = first_param(request, "domain")
    domains = first_param(request, "domains")

    # empty values count as missing
    if domains and domain:
        return PlainTextResponse(BOTH_PARAMS_MESSAGE, status_code=400)
    if not domains and not domain:
        return PlainTextResponse(USAGE_MESSAGE, status_code=400)

    queried = [d.strip() for d in domains.split(",")] if domains else [domain.strip()]

    domain_list = await load_domain_list(cache, client)
    blocked = set(domain_list)
    # duplicates collapse to one key
    results = {d: DomainStatus(blocked=d in blocked) for d in queried}

    if first_param(request, "json") == "true":
        return JSONResponse(
            {d: status.model_dump() for d, status in results.items()},
            headers=CORS_HEADERS,
        )
    return PlainTextResponse(plain_text_body(results), headers=CORS_HEADERS)


# -------------------------
# Run dev server
# -------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=DEFAULT_PORT, reload=False)
