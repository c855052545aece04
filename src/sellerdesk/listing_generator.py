"""Template-driven listing generation with section-aware parsing and cleanup."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Sequence

from .config import Settings
from .listing import ListingGenerationError
from .llm import ChatCompleter, LLMError
from .observability import MetricsRecorder
from .prompts import (
    SECTIONS,
    bullet_limits,
    build_system_prompt,
    build_user_prompt,
    description_limits,
    title_limits,
)
from .templates import (
    ListingTemplate,
    TemplateRegistry,
    calculate_keyword_density,
    check_banned_words,
)

logger = logging.getLogger(__name__)

_PRIMARY_COUNT = 3
_SECONDARY_COUNT = 5
_MAX_TOKENS_ALL = 4000
_MAX_TOKENS_SECTION = 1500
_MAX_BULLETS = 5
_BACKEND_TERMS_MAX_BYTES = 250

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_BULLET_SEPARATOR_RE = re.compile(r"\n\n|\|")
_NON_TERM_CHARS_RE = re.compile(r"[^\w\s]")

_SMALL_WORDS = frozenset(
    {"a", "an", "and", "as", "at", "but", "by", "for", "in", "of", "on", "or", "the", "to", "with"}
)

_SPECIAL_CHAR_REPLACEMENTS = (
    ("—", "-"),
    ("–", "-"),
    ("“", '"'),
    ("”", '"'),
    ("„", '"'),
    ("‘", "'"),
    ("’", "'"),
    ("‚", "'"),
    ("…", "..."),
    ("\u00a0", " "),
    ("•", "-"),
    ("©", "(c)"),
    ("®", "(R)"),
    ("™", "(TM)"),
)


@dataclass(slots=True)
class SelectableKeyword:
    phrase: str
    search_volume: int | None = None
    selected: bool = False


@dataclass(slots=True)
class GenerateListingParams:
    """Product facts and the keywords the seller picked for generation."""

    product_name: str
    category: str
    keywords: List[SelectableKeyword] = field(default_factory=list)
    brand: str | None = None
    features: List[str] = field(default_factory=list)
    benefits: List[str] = field(default_factory=list)
    unique_selling_points: List[str] = field(default_factory=list)
    target_audience: str | None = None
    template_id: str | None = None
    marketplace: str | None = None
    section: str = "all"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GenerateListingParams":
        if not isinstance(data, Mapping):
            raise ValueError("request body must be a JSON object")
        product_name = str(data.get("productName") or data.get("product_name") or "").strip()
        category = str(data.get("category") or "").strip()
        if not product_name or not category:
            raise ValueError("productName and category are required")
        raw_keywords = data.get("keywords") or []
        if not isinstance(raw_keywords, list):
            raise ValueError("keywords must be a list")
        keywords: list[SelectableKeyword] = []
        for item in raw_keywords:
            if not isinstance(item, Mapping) or not item.get("phrase"):
                raise ValueError("each keyword needs a phrase")
            volume = item.get("searchVolume", item.get("search_volume"))
            keywords.append(
                SelectableKeyword(
                    phrase=str(item["phrase"]),
                    search_volume=int(volume) if volume is not None else None,
                    selected=bool(item.get("selected", False)),
                )
            )
        section = str(data.get("section") or "all")
        if section not in SECTIONS:
            raise ValueError(f"section must be one of {', '.join(SECTIONS)}")

        def strings(*names: str) -> list[str]:
            for name in names:
                value = data.get(name)
                if value:
                    if not isinstance(value, list):
                        raise ValueError(f"{names[0]} must be a list of strings")
                    return [str(entry) for entry in value if str(entry).strip()]
            return []

        return cls(
            product_name=product_name,
            category=category,
            keywords=keywords,
            brand=data.get("brand") or None,
            features=strings("features"),
            benefits=strings("benefits"),
            unique_selling_points=strings("uniqueSellingPoints", "unique_selling_points"),
            target_audience=data.get("targetAudience") or data.get("target_audience") or None,
            template_id=data.get("templateId") or data.get("template_id") or None,
            marketplace=data.get("marketplace") or None,
            section=section,
        )

    def selected_phrases(self) -> list[str]:
        return [keyword.phrase for keyword in self.keywords if keyword.selected]


@dataclass(slots=True)
class GeneratedListing:
    title: str
    bullets: List[str]
    description: str
    backend_terms: str
    warnings: List[str] = field(default_factory=list)
    keyword_usage: dict[str, int] = field(default_factory=dict)
    keyword_density: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "bullets": list(self.bullets),
            "description": self.description,
            "backendTerms": self.backend_terms,
            "warnings": list(self.warnings),
            "keywordUsage": dict(self.keyword_usage),
            "keywordDensity": dict(self.keyword_density),
        }


def partition_keywords(
    keywords: Sequence[SelectableKeyword],
) -> tuple[list[str], list[str], list[str]]:
    """Split selected keywords by search volume into primary, secondary and tertiary tiers."""

    ranked = sorted(
        (keyword for keyword in keywords if keyword.selected),
        key=lambda keyword: keyword.search_volume or 0,
        reverse=True,
    )
    phrases = [keyword.phrase for keyword in ranked]
    secondary_end = _PRIMARY_COUNT + _SECONDARY_COUNT
    return phrases[:_PRIMARY_COUNT], phrases[_PRIMARY_COUNT:secondary_end], phrases[secondary_end:]


def strip_code_fences(content: str) -> str:
    cleaned = (content or "").strip()
    if cleaned.startswith("```json"):
        cleaned = re.sub(r"```json\n?", "", cleaned)
        cleaned = re.sub(r"```\n?$", "", cleaned)
    elif cleaned.startswith("```"):
        cleaned = re.sub(r"```\n?", "", cleaned)
    return cleaned.strip()


def strip_html(text: str) -> str:
    return _HTML_TAG_RE.sub("", text)


def _parse_bullets(cleaned: str) -> list[Any]:
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        match = _JSON_ARRAY_RE.search(cleaned)
        if match is None:
            parts = (part.strip() for part in _BULLET_SEPARATOR_RE.split(cleaned))
            return [part for part in parts if part][:_MAX_BULLETS]
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            lines = []
            for line in cleaned.split("\n"):
                line = line.strip()
                if not line or line.startswith("[") or line.startswith("]"):
                    continue
                line = re.sub(r"^[\"']|[\"']$", "", line)
                lines.append(re.sub(r"^-\s*", "", line))
            return lines[:_MAX_BULLETS]
    return parsed if isinstance(parsed, list) else []


def parse_listing_response(
    content: str, section: str, template: ListingTemplate | None = None
) -> dict[str, Any]:
    """Parse a model reply for ``section`` into title, bullets, description and backend terms.

    Raises :class:`ListingGenerationError` when the reply cannot be parsed.
    """

    preserve_html = template is None or template.use_html_formatting is not False

    def process(text: Any) -> str:
        value = str(text or "")
        if preserve_html:
            return value.strip()
        return re.sub(r"\s+", " ", strip_html(value)).strip()

    cleaned = strip_code_fences(content)
    result: dict[str, Any] = {"title": "", "bullets": [], "description": "", "backend_terms": ""}
    try:
        if section == "title":
            result["title"] = strip_html(cleaned).strip()
        elif section == "bullets":
            result["bullets"] = [process(bullet) for bullet in _parse_bullets(cleaned)]
        elif section == "description":
            result["description"] = process(cleaned)
        else:
            parsed = json.loads(cleaned)
            if not isinstance(parsed, dict):
                raise ValueError("expected a JSON object")
            bullets = parsed.get("bullets")
            result.update(
                title=process(parsed.get("title")),
                bullets=[process(bullet) for bullet in bullets] if isinstance(bullets, list) else [],
                description=process(parsed.get("description")),
                backend_terms=str(parsed.get("backendTerms") or ""),
            )
    except (TypeError, ValueError) as exc:
        logger.warning("listing.parse_failed section=%s error=%s", section, exc)
        raise ListingGenerationError(f"Invalid response format from AI: {exc}") from exc
    return result


def find_banned_words(text: str, extra: Sequence[str] = ()) -> list[str]:
    """Whole-word, case-insensitive banned-word hits, confirmed from the substring matches."""

    found: list[str] = []
    for word in (*check_banned_words(text), *extra):
        if re.search(rf"\b{re.escape(word.lower())}\b", text, re.IGNORECASE):
            found.append(word)
    return found


def enforce_capitalization(text: str, style: str) -> str:
    if not text:
        return text
    if style == "all-caps":
        return text.upper()
    if style == "sentence":
        return text[:1].upper() + text[1:].lower()
    if style == "title":
        words = []
        for index, word in enumerate(text.split(" ")):
            if index > 0 and word.lower() in _SMALL_WORDS:
                words.append(word.lower())
            else:
                words.append(word[:1].upper() + word[1:].lower())
        return " ".join(words)
    return text


def sanitize_special_chars(text: str) -> str:
    for source, target in _SPECIAL_CHAR_REPLACEMENTS:
        text = text.replace(source, target)
    return text


def clean_backend_terms(terms: str, brand: str | None = None) -> str:
    """Lowercase, drop the brand and punctuation, de-duplicate and cap at 250 bytes."""

    if not terms:
        return ""
    cleaned = terms.lower().strip()
    if brand:
        cleaned = re.sub(re.escape(brand), "", cleaned, flags=re.IGNORECASE)
    unique: dict[str, None] = {}
    for part in cleaned.split(","):
        term = _NON_TERM_CHARS_RE.sub("", part.strip())
        if term:
            unique.setdefault(term, None)
    kept = list(unique)
    joined = ",".join(kept)
    while len(joined.encode("utf-8")) > _BACKEND_TERMS_MAX_BYTES and kept:
        kept.pop()
        joined = ",".join(kept)
    return joined


def count_keyword_usage(text: str, keywords: Sequence[str]) -> int:
    total = 0
    for keyword in keywords:
        if not keyword:
            continue
        pattern = rf"\b{re.escape(keyword.lower())}\b"
        total += len(re.findall(pattern, text, re.IGNORECASE))
    return total


class ListingGenerator:
    """Build prompts from a template, call the model and post-process the reply."""

    def __init__(
        self,
        settings: Settings,
        llm: ChatCompleter,
        templates: TemplateRegistry | None = None,
        *,
        metrics: MetricsRecorder | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._llm = llm
        self._templates = templates or TemplateRegistry(default_id=settings.listing_default_template)
        self._metrics = metrics
        self._sleep = sleep
        self._max_attempts = max(1, settings.listing_max_attempts)

    @property
    def templates(self) -> TemplateRegistry:
        return self._templates

    def generate(
        self, params: GenerateListingParams, template: ListingTemplate | None = None
    ) -> GeneratedListing:
        active = template or self._templates.get(
            params.template_id or self._settings.listing_default_template
        )
        section = params.section or "all"
        primary, secondary, tertiary = partition_keywords(params.keywords)
        system_prompt = build_system_prompt(active, section)
        user_prompt = build_user_prompt(params, active, primary, secondary, tertiary, section)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        max_tokens = _MAX_TOKENS_ALL if section == "all" else _MAX_TOKENS_SECTION

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            started = time.perf_counter()
            try:
                content = self._llm.complete(
                    messages,
                    temperature=self._settings.listing_temperature,
                    max_tokens=max_tokens,
                )
                if not content:
                    raise ListingGenerationError("No content in AI response")
                parsed = parse_listing_response(content, section, active)
            except (LLMError, ListingGenerationError) as exc:
                last_error = exc
                logger.warning(
                    "listing.generate.attempt_failed attempt=%s max_attempts=%s error=%s",
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt < self._max_attempts:
                    self._sleep(float(2 ** (attempt - 1)))
                continue
            listing = self._post_process(parsed, params, active)
            if self._metrics:
                self._metrics.record_timing(
                    "listing.generate_duration", time.perf_counter() - started, section=section
                )
            logger.info(
                "listing.generate.completed template=%s section=%s warnings=%s",
                active.id,
                section,
                len(listing.warnings),
            )
            return listing

        if self._metrics:
            self._metrics.increment("listing.generate_failures", section=section)
        if self._max_attempts == 1:
            if isinstance(last_error, ListingGenerationError):
                raise last_error
            raise ListingGenerationError(f"Failed to generate listing: {last_error}") from last_error
        raise ListingGenerationError(
            f"Failed to generate listing after {self._max_attempts} attempts: {last_error}"
        ) from last_error

    def _post_process(
        self,
        parsed: Mapping[str, Any],
        params: GenerateListingParams,
        template: ListingTemplate,
    ) -> GeneratedListing:
        warnings: list[str] = []
        extra_banned = template.avoid_words
        title: str = parsed["title"]
        bullets: list[str] = list(parsed["bullets"])
        description: str = parsed["description"]
        backend_terms: str = parsed["backend_terms"]

        if title:
            banned = find_banned_words(title, extra_banned)
            if banned:
                warnings.append(f"Title contains banned words: {', '.join(banned)}")
            minimum, maximum = title_limits(template)
            if not minimum <= len(title) <= maximum:
                warnings.append(f"Title length {len(title)} outside range {minimum}-{maximum}")
                title = title[:maximum]
            title = enforce_capitalization(title, template.title_capitalization or "title")

        if bullets:
            minimum, maximum = bullet_limits(template)
            checked: list[str] = []
            for index, bullet in enumerate(bullets, start=1):
                banned = find_banned_words(bullet, extra_banned)
                if banned:
                    warnings.append(f"Bullet {index} contains banned words: {', '.join(banned)}")
                if not minimum <= len(bullet) <= maximum:
                    warnings.append(
                        f"Bullet {index} length {len(bullet)} outside range {minimum}-{maximum}"
                    )
                    bullet = bullet[:maximum]
                checked.append(bullet)
            bullets = checked

        if description:
            description = sanitize_special_chars(description)
            banned = find_banned_words(description, extra_banned)
            if banned:
                warnings.append(f"Description contains banned words: {', '.join(banned)}")
            _, maximum = description_limits(template)
            plain_length = len(strip_html(description))
            if plain_length > maximum:
                warnings.append(f"Description length {plain_length} exceeds max {maximum}")

        if backend_terms:
            backend_terms = clean_backend_terms(backend_terms, params.brand)

        selected = params.selected_phrases()
        return GeneratedListing(
            title=title,
            bullets=bullets,
            description=description,
            backend_terms=backend_terms,
            warnings=warnings,
            keyword_usage={
                "title": count_keyword_usage(title, selected) if title else 0,
                "bullets": sum(count_keyword_usage(bullet, selected) for bullet in bullets),
                "description": count_keyword_usage(description, selected) if description else 0,
            },
            keyword_density={
                "title": round(calculate_keyword_density(title, selected), 1),
                "bullets": round(calculate_keyword_density(" ".join(bullets), selected), 1),
                "description": round(
                    calculate_keyword_density(strip_html(description), selected), 1
                ),
            },
        )


__all__ = [
    "GenerateListingParams",
    "GeneratedListing",
    "ListingGenerator",
    "SelectableKeyword",
    "clean_backend_terms",
    "count_keyword_usage",
    "enforce_capitalization",
    "find_banned_words",
    "parse_listing_response",
    "partition_keywords",
    "sanitize_special_chars",
    "strip_code_fences",
]
