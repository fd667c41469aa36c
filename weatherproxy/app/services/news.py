"""Headlines from NewsAPI."""

from typing import Any, Dict, Optional

import httpx

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_logger
from weatherproxy.app.exceptions import UpstreamError, UpstreamNotConfiguredError

logger = get_logger(__name__)

DEFAULT_ENDPOINT = "top-headlines"
DEFAULT_COUNTRY = "us"
DEFAULT_PAGE_SIZE = "5"

# NewsAPI statuses that are surfaced to the caller as-is
PASSTHROUGH_MESSAGES = {
    426: "NewsAPI requires paid plan for this request",
    429: "Rate limit exceeded. Please try again later.",
}


def build_news_params(
    endpoint: str,
    query: Optional[str],
    country: str,
    category: Optional[str],
    page_size: str,
    api_key: str,
) -> Dict[str, str]:
    params = {"apiKey": api_key, "pageSize": page_size}
    if endpoint == "everything":
        if query:
            params["q"] = query
        params["sortBy"] = "publishedAt"
    else:
        params["country"] = country
        if category and category != "all":
            params["category"] = category
        if query:
            params["q"] = query
    return params


def news_cache_key(
    endpoint: str,
    query: Optional[str],
    country: str,
    category: Optional[str],
    page_size: str,
) -> str:
    return f"{endpoint}|{query or ''}|{country}|{category or ''}|{page_size}"


async def fetch_news(
    client: httpx.AsyncClient,
    cfg: Settings,
    endpoint: str = DEFAULT_ENDPOINT,
    query: Optional[str] = None,
    country: str = DEFAULT_COUNTRY,
    category: Optional[str] = None,
    page_size: str = DEFAULT_PAGE_SIZE,
) -> Dict[str, Any]:
    """Forward a headline query to NewsAPI.

    Raises:
        UpstreamNotConfiguredError: when no NewsAPI key is set.
        UpstreamError: carrying 426/429 through, 500 for anything else.
    """
    if not cfg.news_api_key:
        raise UpstreamNotConfiguredError("News")

    params = build_news_params(endpoint, query, country, category, page_size, cfg.news_api_key)
    try:
        response = await client.get(f"{cfg.news_api_url}/{endpoint}", params=params)
    except httpx.HTTPError as e:
        logger.error(f"[News] Request failed: {e}")
        raise UpstreamError("newsapi", "Failed to fetch news", status_code=500) from e

    if response.status_code in PASSTHROUGH_MESSAGES:
        raise UpstreamError(
            "newsapi",
            PASSTHROUGH_MESSAGES[response.status_code],
            status_code=response.status_code,
            upstream_status=response.status_code,
        )
    if response.status_code >= 400:
        logger.error(f"[News] NewsAPI returned {response.status_code}")
        raise UpstreamError(
            "newsapi",
            "Failed to fetch news",
            status_code=500,
            upstream_status=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError("newsapi", "Failed to fetch news", status_code=500) from e
