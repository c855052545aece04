from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

import pytest

from sellerdesk.cache import Cache, MemoryCacheBackend
from sellerdesk.config import Settings
from sellerdesk.llm import LLMError


class FakeLLM:
    """Chat completer that replays queued replies and records every call."""

    def __init__(self, replies: Iterable[Any] = ()) -> None:
        self.replies: List[Any] = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, *, temperature, max_tokens, response_format=None, model=None) -> str:
        self.calls.append(
            {
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
                "response_format": response_format,
            }
        )
        if not self.replies:
            raise LLMError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeRankData:
    def __init__(self, items: Dict[str, List[Dict[str, Any]]] | None = None, fail: Iterable[str] = ()) -> None:
        self.items = items or {}
        self.fail = set(fail)
        self.calls: List[tuple[str, str, int]] = []

    def fetch_ranked_keywords(self, asin: str, marketplace: str = "US", limit: int = 100):
        self.calls.append((asin, marketplace, limit))
        if asin in self.fail:
            raise RuntimeError(f"upstream down for {asin}")
        return list(self.items.get(asin, []))


class BrokenBackend:
    """Cache backend whose every operation fails."""

    def get(self, key: str):
        raise ConnectionError("cache unreachable")

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        raise ConnectionError("cache unreachable")

    def delete(self, *keys: str) -> None:
        raise ConnectionError("cache unreachable")

    def keys(self, pattern: str):
        raise ConnectionError("cache unreachable")


class StubResponse:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")

    def json(self) -> Dict[str, Any]:
        return self._payload


def ranked_item(keyword: str, search_volume: int, rank: int) -> Dict[str, Any]:
    return {
        "keyword_data": {
            "keyword": keyword,
            "keyword_info": {"search_volume": search_volume},
        },
        "ranked_serp_element": {"serp_item": {"rank_absolute": rank}},
    }


@pytest.fixture()
def settings() -> Settings:
    return Settings(listing_templates_path=None, observability_metrics_enabled=False)


@pytest.fixture()
def cache() -> Cache:
    return Cache(MemoryCacheBackend())


@pytest.fixture(autouse=True)
def _propagate_package_logs():
    # create_app detaches the package logger from the root handlers that caplog uses.
    package_logger = logging.getLogger("sellerdesk")
    previous = package_logger.propagate
    package_logger.propagate = True
    yield
    package_logger.propagate = previous
