"""Keyword generation pipeline: competitor ASINs and seed expansion to classified keywords."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Sequence

from .cache import Cache
from .config import Settings
from .keywords import (
    Keyword,
    KeywordCluster,
    RawKeywordData,
    assign_cluster_ids,
    classify_keywords,
    cluster_keywords,
    extract_raw_keywords,
    normalize_keywords,
    score_keywords,
)
from .llm import ChatCompleter
from .observability import MetricsRecorder
from .prompts import SEED_EXPANSION_SYSTEM_PROMPT, build_seed_expansion_prompt
from .rank_data import RankDataFetcher

logger = logging.getLogger(__name__)

_EXPANSION_TEMPERATURE = 0.7
_EXPANSION_MAX_TOKENS = 500


def _string_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{name} must be a list of strings")
    return [str(item).strip() for item in value if str(item).strip()]


@dataclass(slots=True)
class KeywordGenerationRequest:
    marketplace: str = "US"
    asin_list: List[str] = field(default_factory=list)
    seeds: List[str] = field(default_factory=list)
    category: str = "General"
    text: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "KeywordGenerationRequest":
        if not isinstance(data, Mapping):
            raise ValueError("request body must be a JSON object")
        text = data.get("text")
        if text is not None and not isinstance(text, str):
            raise ValueError("text must be a string")
        return cls(
            marketplace=str(data.get("marketplace") or "US").strip().upper(),
            asin_list=_string_list(data.get("asin_list"), "asin_list"),
            seeds=_string_list(data.get("seeds"), "seeds"),
            category=str(data.get("category") or "General"),
            text=text or None,
        )


@dataclass(slots=True)
class KeywordGenerationResult:
    keywords: List[Keyword]
    clusters: List[KeywordCluster]
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "keywords": [keyword.to_dict() for keyword in self.keywords],
            "clusters": [cluster.to_dict() for cluster in self.clusters],
            "stats": dict(self.stats),
        }


class KeywordService:
    """Merge competitor and seed keywords, then score, cluster and classify them."""

    def __init__(
        self,
        settings: Settings,
        *,
        cache: Cache,
        llm: ChatCompleter | None,
        rank_data: RankDataFetcher | None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._llm = llm
        self._rank_data = rank_data
        self._metrics = metrics

    def analyze_competitor_asin(self, asin: str, marketplace: str = "US") -> list[RawKeywordData]:
        """Ranked keywords for one ASIN; any failure contributes nothing."""

        cache_key = f"keywords:asin:{marketplace}:{asin}"
        cached = self._cache.lookup(cache_key)
        if cached.hit and isinstance(cached.value, list):
            self._increment("keyword.cache_hits", kind="asin")
            return [RawKeywordData(**item) for item in cached.value]

        if self._rank_data is None:
            logger.warning("keyword.asin.rank_data_disabled asin=%s", asin)
            return []
        try:
            items = self._rank_data.fetch_ranked_keywords(
                asin, marketplace, self._settings.rank_data_limit
            )
            data = [
                _ranked_item_to_raw(item, index, asin)
                for index, item in enumerate(items)
            ]
        except Exception as exc:
            logger.error("keyword.asin.fetch_failed asin=%s marketplace=%s error=%s", asin, marketplace, exc)
            self._increment("keyword.asin_failures")
            return []

        self._cache.set(
            cache_key, [item.to_dict() for item in data], self._settings.keyword_asin_cache_ttl
        )
        logger.info("keyword.asin.analyzed asin=%s marketplace=%s keywords=%s", asin, marketplace, len(data))
        return data

    def expand_seed_keywords(
        self, seeds: Sequence[str], category: str, marketplace: str
    ) -> list[str]:
        """Ask the model for related phrases; falls back to the seeds on failure."""

        seeds = list(seeds)
        cache_key = f"keywords:expand:{','.join(seeds)}:{category}"
        cached = self._cache.lookup(cache_key)
        if cached.hit and isinstance(cached.value, list):
            self._increment("keyword.cache_hits", kind="expand")
            return [str(item) for item in cached.value]

        if self._llm is None:
            logger.info("keyword.expand.llm_disabled seeds=%s", len(seeds))
            return seeds
        count = self._settings.keyword_seed_expansion_count
        try:
            content = self._llm.complete(
                [
                    {"role": "system", "content": SEED_EXPANSION_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": build_seed_expansion_prompt(seeds, category, marketplace, count),
                    },
                ],
                temperature=_EXPANSION_TEMPERATURE,
                max_tokens=_EXPANSION_MAX_TOKENS,
            )
        except Exception as exc:
            logger.error("keyword.expand.failed category=%s error=%s", category, exc)
            self._increment("keyword.expand_failures")
            return seeds

        lines = [line.strip() for line in (content or "").split("\n") if line.strip()]
        normalized = normalize_keywords(lines)[:count]
        self._cache.set(cache_key, normalized, self._settings.keyword_expand_cache_ttl)
        logger.info("keyword.expand.completed category=%s phrases=%s", category, len(normalized))
        return normalized

    def generate_keywords(self, request: KeywordGenerationRequest) -> KeywordGenerationResult:
        """Run the full pipeline for one request."""

        if len(request.asin_list) > self._settings.keyword_max_asins:
            raise ValueError(f"Maximum {self._settings.keyword_max_asins} ASINs allowed")

        started = time.perf_counter()
        raw: list[RawKeywordData] = []
        for asin in request.asin_list:
            raw.extend(self.analyze_competitor_asin(asin, request.marketplace))
        competitor_count = len(raw)

        expanded: list[str] = []
        if request.seeds:
            expanded = self.expand_seed_keywords(request.seeds, request.category, request.marketplace)
            raw.extend(
                RawKeywordData(term=term, frequency=1, position=index, source="seed")
                for index, term in enumerate(expanded)
            )

        extracted: list[RawKeywordData] = []
        if request.text:
            extracted = extract_raw_keywords(
                request.text, max_chars=self._settings.keyword_extract_max_chars
            )
            raw.extend(extracted)

        scored = score_keywords(raw)
        clusters = cluster_keywords(scored, self._settings.keyword_cluster_threshold)
        keywords = classify_keywords(assign_cluster_ids(scored, clusters))

        duration = time.perf_counter() - started
        if self._metrics:
            self._metrics.record_timing("keyword.generate_duration", duration)
            self._metrics.increment("keyword.generated", value=len(keywords))
        logger.info(
            "keyword.generate.completed marketplace=%s asins=%s competitor=%s seeds=%s extracted=%s clusters=%s",
            request.marketplace,
            len(request.asin_list),
            competitor_count,
            len(expanded),
            len(extracted),
            len(clusters),
        )
        return KeywordGenerationResult(
            keywords=keywords,
            clusters=clusters,
            stats={
                "competitor": competitor_count,
                "seed": len(expanded),
                "extracted": len(extracted),
                "total": len(keywords),
                "clusters": len(clusters),
                "duration_ms": round(duration * 1000.0, 2),
            },
        )

    def _increment(self, metric: str, **tags: Any) -> None:
        if self._metrics:
            self._metrics.increment(metric, **tags)


def _ranked_item_to_raw(item: Mapping[str, Any], index: int, asin: str) -> RawKeywordData:
    keyword_data = item.get("keyword_data") or {}
    keyword_info = keyword_data.get("keyword_info") or {}
    serp_item = (item.get("ranked_serp_element") or {}).get("serp_item") or {}
    return RawKeywordData(
        term=str(keyword_data["keyword"]),
        frequency=int(keyword_info.get("search_volume") or 0),
        position=int(serp_item.get("rank_absolute") or index + 1),
        source=asin,
    )


__all__ = ["KeywordGenerationRequest", "KeywordGenerationResult", "KeywordService"]
