from __future__ import annotations

from typing import Any, Dict, List

import pytest

from conftest import StubResponse, ranked_item
from sellerdesk.config import Settings
from sellerdesk.rank_data import RankDataClient, RankDataError, resolve_location_and_language


def _settings() -> Settings:
    return Settings(
        dataforseo_login="login",
        dataforseo_password="password",
        dataforseo_base_url="https://rank.example/v3/dataforseo_labs/",
        rank_data_timeout=5.0,
    )


def test_resolve_location_and_language_defaults_to_us() -> None:
    assert resolve_location_and_language("de") == {"location_code": 2276, "language_code": "de"}
    assert resolve_location_and_language("UK") == resolve_location_and_language("GB")
    assert resolve_location_and_language("ZZ") == {"location_code": 2840, "language_code": "en"}
    assert resolve_location_and_language(None)["location_code"] == 2840


def test_fetch_ranked_keywords_posts_task_and_returns_items(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: Dict[str, Any] = {}
    items = [ranked_item("yoga mat", 12000, 3)]

    def fake_post(url: str, *, json: List[Dict[str, Any]], auth, timeout: float) -> StubResponse:
        captured.update(url=url, json=json, auth=auth, timeout=timeout)
        return StubResponse({"tasks": [{"status_code": 20000, "result": [{"items": items}]}]})

    monkeypatch.setattr("sellerdesk.rank_data.httpx.post", fake_post)

    result = RankDataClient(_settings()).fetch_ranked_keywords("B0TEST", "DE", limit=50)

    assert result == items
    assert captured["url"] == "https://rank.example/v3/dataforseo_labs/amazon/ranked_keywords/live"
    assert captured["json"] == [
        {
            "asin": "B0TEST",
            "location_code": 2276,
            "language_code": "de",
            "ignore_synonyms": False,
            "limit": 50,
        }
    ]
    assert captured["auth"] == ("login", "password")
    assert captured["timeout"] == 5.0


@pytest.mark.parametrize(
    "payload",
    [
        {"tasks": []},
        {"tasks": [{"status_code": 40501, "status_message": "Invalid Field"}]},
        {"tasks": [{"status_code": 20000, "result": []}]},
        {"tasks": [{"status_code": 20000, "result": [{"items": None}]}]},
    ],
)
def test_fetch_ranked_keywords_returns_empty_for_unusable_tasks(
    monkeypatch: pytest.MonkeyPatch, payload: Dict[str, Any]
) -> None:
    monkeypatch.setattr(
        "sellerdesk.rank_data.httpx.post", lambda url, **kwargs: StubResponse(payload)
    )

    assert RankDataClient(_settings()).fetch_ranked_keywords("B0TEST") == []


def test_fetch_ranked_keywords_raises_on_http_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "sellerdesk.rank_data.httpx.post", lambda url, **kwargs: StubResponse({}, status_code=401)
    )

    with pytest.raises(RankDataError):
        RankDataClient(_settings()).fetch_ranked_keywords("B0TEST")


def test_fetch_ranked_keywords_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_post(*args, **kwargs):  # pragma: no cover - must not be called
        raise AssertionError("request should not be sent")

    monkeypatch.setattr("sellerdesk.rank_data.httpx.post", fail_post)

    with pytest.raises(RankDataError, match="DATAFORSEO_LOGIN"):
        RankDataClient(Settings()).fetch_ranked_keywords("B0TEST")
