"""DataForSEO Labs client for competitor ranked-keyword lookups."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .config import Settings

logger = logging.getLogger(__name__)

_TASK_OK = 20000

_MARKETPLACE_LOCATIONS: dict[str, tuple[int, str]] = {
    "US": (2840, "en"),
    "UK": (2826, "en"),
    "GB": (2826, "en"),
    "CA": (2124, "en"),
    "AU": (2036, "en"),
    "DE": (2276, "de"),
    "FR": (2250, "fr"),
    "IT": (2380, "it"),
    "ES": (2248, "es"),
    "IN": (2356, "en"),
    "JP": (2392, "ja"),
    "MX": (2484, "es"),
}


class RankDataError(RuntimeError):
    """Raised when the rank-data provider cannot be reached or rejects the request."""


class RankDataFetcher(Protocol):
    def fetch_ranked_keywords(
        self, asin: str, marketplace: str = "US", limit: int = 100
    ) -> list[dict[str, Any]]: ...


def resolve_location_and_language(marketplace: str | None) -> dict[str, Any]:
    """Map a marketplace code to DataForSEO location and language codes (US by default)."""

    location_code, language_code = _MARKETPLACE_LOCATIONS.get(
        (marketplace or "US").strip().upper(), _MARKETPLACE_LOCATIONS["US"]
    )
    return {"location_code": location_code, "language_code": language_code}


class RankDataClient:
    """Fetch the keywords an Amazon ASIN ranks for."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._base_url = settings.dataforseo_base_url.rstrip("/")
        self._timeout = settings.rank_data_timeout

    def _auth(self) -> tuple[str, str]:
        if not self._settings.has_dataforseo_credentials:
            raise RankDataError("DATAFORSEO_LOGIN/DATAFORSEO_PASSWORD must be set")
        return (self._settings.dataforseo_login or "", self._settings.dataforseo_password or "")

    def fetch_ranked_keywords(
        self, asin: str, marketplace: str = "US", limit: int = 100
    ) -> list[dict[str, Any]]:
        """Return the raw ranked-keyword items for ``asin``.

        A task-level failure reported inside an HTTP 200 response yields an
        empty list; transport and HTTP failures raise :class:`RankDataError`.
        """

        url = f"{self._base_url}/amazon/ranked_keywords/live"
        payload = [
            {
                "asin": asin,
                **resolve_location_and_language(marketplace),
                "ignore_synonyms": False,
                "limit": limit,
            }
        ]
        logger.info("rank_data.fetch asin=%s marketplace=%s limit=%s", asin, marketplace, limit)
        try:
            response = httpx.post(url, json=payload, auth=self._auth(), timeout=self._timeout)
            response.raise_for_status()
        except RankDataError:
            raise
        except Exception as exc:
            logger.error("rank_data.fetch_failed asin=%s error=%s", asin, exc)
            raise RankDataError(f"ranked_keywords request failed for {asin}: {exc}") from exc

        data = response.json() or {}
        tasks = data.get("tasks") or []
        if not tasks:
            logger.warning("rank_data.no_task asin=%s", asin)
            return []
        task = tasks[0] or {}
        if task.get("status_code") != _TASK_OK:
            logger.warning(
                "rank_data.task_failed asin=%s status_code=%s message=%s",
                asin,
                task.get("status_code"),
                task.get("status_message"),
            )
            return []
        results = task.get("result") or []
        items = (results[0] or {}).get("items") if results else None
        if not isinstance(items, list):
            logger.info("rank_data.no_items asin=%s", asin)
            return []
        logger.info("rank_data.fetched asin=%s items=%s", asin, len(items))
        return items


__all__ = ["RankDataClient", "RankDataError", "RankDataFetcher", "resolve_location_and_language"]
