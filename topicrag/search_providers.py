"""
search_providers.py: Pluggable web search provider abstraction.

Supported providers:
  - brightdata (default): Google SERP as JSON through the Bright Data proxy

Adding a new provider:
  1. Create a function: def my_provider(query, result_count, **kwargs) -> dict
     returning {"organic": [...], "knowledge": {...}} (see SerpResponse)
  2. Register it: PROVIDERS["my_provider"] = my_provider
  3. Set env: TOPICRAG_SEARCH_PROVIDER=my_provider
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import AliasChoices, BaseModel, Field, field_validator

from .config import (
    log,
    SEARCH_PROVIDER,
    BRIGHT_DATA_CUSTOMER_ID, BRIGHT_DATA_ZONE, BRIGHT_DATA_PASSWORD,
    BRIGHT_DATA_PROXY_HOST, BRIGHT_DATA_PROXY_PORT,
)
from .errors import UpstreamError


# ── Response model ──


def _as_text(v):
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


class OrganicResult(BaseModel):
    """One organic search hit. Accepts both ``display_link`` and ``displayLink``."""

    title: str = ""
    description: str = ""
    display_link: str = Field(default="", validation_alias=AliasChoices("display_link", "displayLink"))
    link: str = ""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("title", "description", "display_link", "link", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _as_text(v)


class Fact(BaseModel):
    key: str = ""
    value: str = ""

    model_config = {"extra": "ignore"}

    @field_validator("key", "value", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _as_text(v)


class KnowledgeGraph(BaseModel):
    description: str = ""
    facts: list[Fact] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("description", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _as_text(v)

    @field_validator("facts", mode="before")
    @classmethod
    def facts_list(cls, v):
        return v or []

    def lines(self) -> list[str]:
        out = [self.description] if self.description else []
        out.extend(f"{f.key}: {f.value}" for f in self.facts if f.key or f.value)
        return out


class SerpResponse(BaseModel):
    """Validated search payload: ``{organic: [...], knowledge?: {...}}``."""

    organic: list[OrganicResult] = Field(default_factory=list)
    knowledge: Optional[KnowledgeGraph] = None

    model_config = {"extra": "ignore"}

    @field_validator("organic", mode="before")
    @classmethod
    def organic_list(cls, v):
        return v or []


def parse_search_response(raw) -> SerpResponse:
    if isinstance(raw, SerpResponse):
        return raw
    return SerpResponse.model_validate(raw or {})


# ── Provider: Bright Data SERP ──

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def _brightdata_proxy_url(customer_id: str, zone: str, password: str) -> str:
    return (
        f"http://brd-customer-{customer_id}-zone-{zone}:{password}"
        f"@{BRIGHT_DATA_PROXY_HOST}:{BRIGHT_DATA_PROXY_PORT}"
    )


def brightdata_search(query: str, result_count: int = 10, **kwargs) -> dict:
    customer_id = kwargs.get("customer_id") or BRIGHT_DATA_CUSTOMER_ID
    zone = kwargs.get("zone") or BRIGHT_DATA_ZONE
    password = kwargs.get("password") or BRIGHT_DATA_PASSWORD
    if not (customer_id and zone and password):
        raise UpstreamError("BRIGHT_DATA credentials are not configured")

    log.info("searching for: %s", query)
    try:
        # the SERP proxy re-signs TLS, certificate verification has to be off
        r = httpx.get(
            "https://www.google.com/search",
            params={"q": query, "num": result_count, "brd_json": 1},
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json, text/html, */*"},
            proxy=_brightdata_proxy_url(customer_id, zone, password),
            verify=False,
            timeout=kwargs.get("timeout", 60),
        )
        r.raise_for_status()
    except httpx.HTTPError as e:
        raise UpstreamError(f"search request failed for {query!r}: {e}") from e

    try:
        data = r.json()
    except ValueError as e:
        head = (r.text or "").lstrip()[:20].lower()
        if head.startswith("<!doctype") or head.startswith("<html"):
            raise UpstreamError("received HTML instead of JSON - proxy may not be working correctly") from e
        raise UpstreamError("search response is not valid JSON") from e

    log.info("found %d organic results", len(data.get("organic") or []))
    return data


# ── Provider registry ──
PROVIDERS = {
    "brightdata": brightdata_search,
}


def get_provider(name: str = None):
    """Get search provider function by name. Default from env or 'brightdata'."""
    name = name or SEARCH_PROVIDER
    if name not in PROVIDERS:
        raise ValueError(f"Unknown search provider: {name}. Available: {list(PROVIDERS.keys())}")
    return PROVIDERS[name]


def search(query: str, result_count: int = 10, provider: str = None, **kwargs) -> dict:
    """Unified search entry point."""
    fn = get_provider(provider)
    return fn(query, result_count, **kwargs)
