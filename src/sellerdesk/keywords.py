"""Keyword normalisation, scoring, clustering and classification."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Literal, Sequence

logger = logging.getLogger(__name__)

KeywordClass = Literal["primary", "secondary", "tertiary"]
KeywordSource = Literal["competitor", "seed", "extracted"]

_NON_KEYWORD_CHARS_RE = re.compile(r"[^\w\s-]")
_WHITESPACE_RE = re.compile(r"\s+")

# Minimum normalised length; shorter fragments are noise.
_MIN_KEYWORD_LENGTH = 3
_MAX_NGRAM = 3

# The last term is a fixed bias rather than a computed signal.
_FREQUENCY_WEIGHT = 0.35
_POSITION_WEIGHT = 0.25
_LENGTH_WEIGHT = 0.20
_BIAS = 0.20 * 0.8

_PRIMARY_PERCENTILE = 0.2
_SECONDARY_PERCENTILE = 0.5


@dataclass(slots=True)
class RawKeywordData:
    """Unscored keyword observation from a competitor, a seed or free text."""

    term: str
    frequency: int
    position: int
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "frequency": self.frequency,
            "position": self.position,
            "source": self.source,
        }


@dataclass(slots=True)
class Keyword:
    """A scored keyword; ``cluster_id`` and ``keyword_class`` are filled by later passes."""

    term: str
    score: float
    source: str = "competitor"
    cluster_id: str = ""
    keyword_class: KeywordClass = "secondary"

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "score": self.score,
            "cluster_id": self.cluster_id,
            "class": self.keyword_class,
            "source": self.source,
        }


@dataclass(slots=True)
class KeywordCluster:
    id: str
    primary_term: str
    avg_score: float
    keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "keywords": list(self.keywords),
            "primaryTerm": self.primary_term,
            "avgScore": self.avg_score,
        }


def normalize_keyword(keyword: str) -> str:
    """Lowercase, trim, drop punctuation except hyphens and collapse whitespace."""

    cleaned = _NON_KEYWORD_CHARS_RE.sub("", str(keyword).lower().strip())
    return _WHITESPACE_RE.sub(" ", cleaned)


def normalize_keywords(keywords: Iterable[str]) -> list[str]:
    """Normalise and de-duplicate keywords, discarding anything under three characters.

    The result keeps first-seen order but callers should treat it as a set.
    """

    seen: dict[str, None] = {}
    for keyword in keywords:
        cleaned = normalize_keyword(keyword)
        if len(cleaned) >= _MIN_KEYWORD_LENGTH:
            seen.setdefault(cleaned, None)
    return list(seen)


def iter_ngrams(text: str, *, max_chars: int | None = None) -> list[str]:
    """Return every 1-, 2- and 3-token run of ``text`` in extraction order."""

    if max_chars is not None and max_chars >= 0 and len(text) > max_chars:
        logger.debug("keyword.extract.truncated length=%s max_chars=%s", len(text), max_chars)
        text = text[:max_chars]
    words = text.lower().split()
    candidates: list[str] = []
    for size in range(1, _MAX_NGRAM + 1):
        for index in range(len(words) - size + 1):
            candidates.append(" ".join(words[index : index + size]))
    return candidates


def extract_keywords_from_text(text: str, *, max_chars: int | None = None) -> list[str]:
    """Derive normalised candidate phrases from free text."""

    return normalize_keywords(iter_ngrams(text or "", max_chars=max_chars))


def extract_raw_keywords(
    text: str,
    *,
    max_chars: int | None = None,
    source: str = "extracted",
) -> list[RawKeywordData]:
    """Turn free text into raw observations keyed by normalised n-gram.

    Frequency is the number of times the phrase occurs among the n-grams and
    position is the index of its first occurrence.
    """

    counts: dict[str, int] = {}
    first_seen: dict[str, int] = {}
    for index, candidate in enumerate(iter_ngrams(text or "", max_chars=max_chars)):
        term = normalize_keyword(candidate)
        if len(term) < _MIN_KEYWORD_LENGTH:
            continue
        counts[term] = counts.get(term, 0) + 1
        first_seen.setdefault(term, index)
    return [
        RawKeywordData(term=term, frequency=count, position=first_seen[term], source=source)
        for term, count in counts.items()
    ]


def calculate_keyword_score(data: RawKeywordData) -> float:
    """Weighted relevance score in ``[0, 1]`` from frequency, SERP position and phrase length."""

    freq_score = min(data.frequency / 10, 1.0)
    pos_score = 1.0 - min(data.position / 100, 1.0)
    word_count = len(data.term.split(" "))
    length_score = 1.0 if 2 <= word_count <= 3 else 0.7
    score = (
        _FREQUENCY_WEIGHT * freq_score
        + _POSITION_WEIGHT * pos_score
        + _LENGTH_WEIGHT * length_score
        + _BIAS
    )
    return min(max(score, 0.0), 1.0)


def _trigrams(value: str) -> set[str]:
    return {value[index : index + 3] for index in range(len(value) - 2)}


def trigram_similarity(left: str, right: str) -> float:
    """Jaccard similarity of the two strings' character trigram sets."""

    left_set = _trigrams(left)
    right_set = _trigrams(right)
    union = left_set | right_set
    if not union:
        return 0.0
    return len(left_set & right_set) / len(union)


def _by_score_desc(keywords: Sequence[Keyword]) -> list[Keyword]:
    return sorted(keywords, key=lambda keyword: keyword.score, reverse=True)


def cluster_keywords(keywords: Sequence[Keyword], threshold: float = 0.5) -> list[KeywordCluster]:
    """Greedy highest-score-first clustering by trigram similarity.

    Each unassigned keyword seeds a cluster and absorbs every later unassigned
    keyword whose similarity to the seed is at least ``threshold``. The
    cluster average is a running mean updated as members join. Comparisons are
    quadratic in the number of keywords.
    """

    ordered = _by_score_desc(keywords)
    clusters: list[KeywordCluster] = []
    assigned: set[str] = set()

    for seed in ordered:
        if seed.term in assigned:
            continue
        cluster = KeywordCluster(
            id=f"c{len(clusters) + 1}",
            primary_term=seed.term,
            avg_score=seed.score,
            keywords=[seed.term],
        )
        assigned.add(seed.term)
        for other in ordered:
            if other.term in assigned:
                continue
            if trigram_similarity(seed.term, other.term) >= threshold:
                cluster.keywords.append(other.term)
                size = len(cluster.keywords)
                cluster.avg_score = (cluster.avg_score * (size - 1) + other.score) / size
                assigned.add(other.term)
        clusters.append(cluster)

    logger.debug(
        "keyword.cluster.completed keywords=%s clusters=%s threshold=%s",
        len(ordered),
        len(clusters),
        threshold,
    )
    return clusters


def assign_cluster_ids(keywords: Sequence[Keyword], clusters: Sequence[KeywordCluster]) -> list[Keyword]:
    membership = {term: cluster.id for cluster in clusters for term in cluster.keywords}
    return [replace(keyword, cluster_id=membership.get(keyword.term, "")) for keyword in keywords]


def classify_keywords(keywords: Sequence[Keyword]) -> list[Keyword]:
    """Bucket keywords by index percentile over the score-descending order.

    The top 20% become ``primary``, the next 30% ``secondary`` and the rest
    ``tertiary``. Ties keep their input order.
    """

    ordered = _by_score_desc(keywords)
    total = len(ordered)
    classified: list[Keyword] = []
    for index, keyword in enumerate(ordered):
        percentile = index / total
        if percentile < _PRIMARY_PERCENTILE:
            keyword_class: KeywordClass = "primary"
        elif percentile < _SECONDARY_PERCENTILE:
            keyword_class = "secondary"
        else:
            keyword_class = "tertiary"
        classified.append(replace(keyword, keyword_class=keyword_class))
    return classified


def score_keywords(raw: Iterable[RawKeywordData]) -> list[Keyword]:
    """Score raw observations; anything not seeded or extracted came from a competitor."""

    scored: list[Keyword] = []
    for item in raw:
        if item.source in ("seed", "extracted"):
            source = item.source
        else:
            source = "competitor"
        scored.append(Keyword(term=item.term, score=calculate_keyword_score(item), source=source))
    return scored


__all__ = [
    "Keyword",
    "KeywordClass",
    "KeywordCluster",
    "KeywordSource",
    "RawKeywordData",
    "assign_cluster_ids",
    "calculate_keyword_score",
    "classify_keywords",
    "cluster_keywords",
    "extract_keywords_from_text",
    "extract_raw_keywords",
    "iter_ngrams",
    "normalize_keyword",
    "normalize_keywords",
    "score_keywords",
    "trigram_similarity",
]
