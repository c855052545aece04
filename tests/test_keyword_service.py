from __future__ import annotations

import logging

import pytest

from conftest import BrokenBackend, FakeLLM, FakeRankData, ranked_item
from sellerdesk.cache import Cache
from sellerdesk.config import Settings
from sellerdesk.keyword_service import KeywordGenerationRequest, KeywordService
from sellerdesk.llm import LLMError


def _service(settings: Settings, cache: Cache, llm=None, rank_data=None) -> KeywordService:
    return KeywordService(settings, cache=cache, llm=llm, rank_data=rank_data)


def test_analyze_competitor_asin_maps_ranked_items(settings: Settings, cache: Cache) -> None:
    rank_data = FakeRankData({"B0A": [ranked_item("Yoga Mat", 12000, 4), ranked_item("cork mat", 0, 0)]})
    service = _service(settings, cache, rank_data=rank_data)

    raw = service.analyze_competitor_asin("B0A", "UK")

    assert [(item.term, item.frequency, item.position, item.source) for item in raw] == [
        ("Yoga Mat", 12000, 4, "B0A"),
        ("cork mat", 0, 2, "B0A"),
    ]
    assert rank_data.calls == [("B0A", "UK", settings.rank_data_limit)]


def test_analyze_competitor_asin_uses_cache(settings: Settings, cache: Cache) -> None:
    rank_data = FakeRankData({"B0A": [ranked_item("yoga mat", 100, 1)]})
    service = _service(settings, cache, rank_data=rank_data)

    first = service.analyze_competitor_asin("B0A")
    second = service.analyze_competitor_asin("B0A")

    assert first == second
    assert len(rank_data.calls) == 1
    assert cache.get("keywords:asin:US:B0A") == [
        {"term": "yoga mat", "frequency": 100, "position": 1, "source": "B0A"}
    ]


def test_failed_asin_contributes_nothing(settings: Settings, cache: Cache, caplog) -> None:
    service = _service(settings, cache, rank_data=FakeRankData(fail=["B0BAD"]))

    with caplog.at_level(logging.ERROR, logger="sellerdesk.keyword_service"):
        assert service.analyze_competitor_asin("B0BAD") == []

    assert "keyword.asin.fetch_failed" in caplog.text
    assert cache.lookup("keywords:asin:US:B0BAD").status == "miss"


def test_missing_rank_data_client_returns_empty(settings: Settings, cache: Cache) -> None:
    assert _service(settings, cache).analyze_competitor_asin("B0A") == []


def test_expand_seed_keywords_normalises_model_lines(settings: Settings, cache: Cache) -> None:
    llm = FakeLLM(["Thick Yoga Mat\n\nnon-slip yoga mat!\n1.\nab"])
    service = _service(settings, cache, llm=llm)

    result = service.expand_seed_keywords(["yoga mat"], "Sports", "US")

    assert result == ["thick yoga mat", "non-slip yoga mat"]
    call = llm.calls[0]
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 500
    assert "Seed keywords: yoga mat" in call["messages"][1]["content"]
    assert "generate 30 highly relevant" in call["messages"][1]["content"]


def test_expand_seed_keywords_caps_phrase_count(settings: Settings, cache: Cache) -> None:
    reply = "\n".join(f"yoga mat variant {index}" for index in range(45))
    service = _service(settings, cache, llm=FakeLLM([reply]))

    result = service.expand_seed_keywords(["yoga mat"], "Sports", "US")

    assert len(result) == 30


def test_expand_seed_keywords_is_cached_per_seed_set(settings: Settings, cache: Cache) -> None:
    llm = FakeLLM(["cork yoga mat"])
    service = _service(settings, cache, llm=llm)

    service.expand_seed_keywords(["yoga mat"], "Sports", "US")
    again = service.expand_seed_keywords(["yoga mat"], "Sports", "US")

    assert again == ["cork yoga mat"]
    assert len(llm.calls) == 1
    assert cache.get("keywords:expand:yoga mat:Sports") == ["cork yoga mat"]


def test_expand_seed_keywords_falls_back_to_seeds(settings: Settings, cache: Cache) -> None:
    service = _service(settings, cache, llm=FakeLLM([LLMError("timeout")]))

    assert service.expand_seed_keywords(["yoga mat"], "Sports", "US") == ["yoga mat"]


def test_generate_keywords_merges_sources(settings: Settings, cache: Cache) -> None:
    rank_data = FakeRankData(
        {"B0A": [ranked_item("yoga mat", 12000, 1), ranked_item("yoga mats", 500, 40)]},
        fail=["B0BAD"],
    )
    llm = FakeLLM(["cork yoga mat\nyoga block"])
    service = _service(settings, cache, llm=llm, rank_data=rank_data)

    result = service.generate_keywords(
        KeywordGenerationRequest(
            marketplace="US",
            asin_list=["B0A", "B0BAD"],
            seeds=["yoga"],
            category="Sports",
            text="Extra thick",
        )
    )

    terms = {keyword.term: keyword for keyword in result.keywords}
    assert terms["yoga mat"].source == "competitor"
    assert terms["cork yoga mat"].source == "seed"
    assert terms["extra thick"].source == "extracted"
    assert result.stats["competitor"] == 2
    assert result.stats["seed"] == 2
    assert result.stats["extracted"] == 3
    assert result.stats["total"] == len(result.keywords) == 7

    scores = [keyword.score for keyword in result.keywords]
    assert scores == sorted(scores, reverse=True)
    assert result.keywords[0].keyword_class == "primary"

    cluster_ids = {cluster.id for cluster in result.clusters}
    assert all(keyword.cluster_id in cluster_ids for keyword in result.keywords)
    yoga_cluster = next(cluster for cluster in result.clusters if "yoga mat" in cluster.keywords)
    assert "yoga mats" in yoga_cluster.keywords


def test_generate_keywords_survives_cache_outage(settings: Settings) -> None:
    service = _service(
        settings,
        Cache(BrokenBackend()),
        llm=FakeLLM(["cork yoga mat"]),
        rank_data=FakeRankData({"B0A": [ranked_item("yoga mat", 10, 1)]}),
    )

    result = service.generate_keywords(
        KeywordGenerationRequest(asin_list=["B0A"], seeds=["yoga mat"], category="Sports")
    )

    assert {keyword.term for keyword in result.keywords} == {"yoga mat", "cork yoga mat"}


def test_generate_keywords_rejects_too_many_asins(settings: Settings, cache: Cache) -> None:
    service = _service(settings, cache, rank_data=FakeRankData())

    with pytest.raises(ValueError, match="Maximum 10 ASINs allowed"):
        service.generate_keywords(
            KeywordGenerationRequest(asin_list=[f"B0{index}" for index in range(11)])
        )


def test_generation_request_from_mapping_validates_types() -> None:
    request = KeywordGenerationRequest.from_mapping(
        {"marketplace": "uk", "asin_list": [" B0A ", ""], "seeds": ["yoga mat"]}
    )

    assert request.marketplace == "UK"
    assert request.asin_list == ["B0A"]
    assert request.category == "General"

    with pytest.raises(ValueError):
        KeywordGenerationRequest.from_mapping({"seeds": "yoga mat"})
