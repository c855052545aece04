"""Listing drafts: validation, auto-fix and the JSON-mode draft generator."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Literal, Mapping, Sequence

from .cache import Cache
from .config import Settings
from .llm import ChatCompleter, LLMError
from .observability import MetricsRecorder
from .prompts import build_draft_prompts

logger = logging.getLogger(__name__)

IssueField = Literal["title", "bullets", "description"]
IssueType = Literal["length", "policy", "stuffing", "readability"]
Severity = Literal["error", "warning", "info"]

_MAX_KEYWORD_REPEATS = 2
_DRAFT_MAX_TOKENS = 2000
_POLICY_SUGGESTION = "Review and modify text to comply with Amazon policies"

_POLICY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(cure|treat|diagnose|prevent)\b", re.IGNORECASE), "Avoid medical claims"),
    (re.compile(r"\b(FDA|clinical|medical)\b", re.IGNORECASE), "Avoid FDA/medical references"),
    (re.compile(r"[A-Z]{3,}"), "Excessive capitalization detected"),
)


class ListingGenerationError(RuntimeError):
    """Raised when a listing cannot be generated or the model reply cannot be parsed."""


@dataclass(slots=True)
class ListingLimits:
    title: int = 180
    bullet: int = 220
    description: int = 1500

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ListingLimits":
        if not data:
            return cls()
        defaults = cls()
        try:
            limits = cls(
                title=int(data.get("title") or defaults.title),
                bullet=int(data.get("bullet") or defaults.bullet),
                description=int(data.get("description") or defaults.description),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError("limits must be integers") from exc
        if min(limits.title, limits.bullet, limits.description) <= 0:
            raise ValueError("limits must be positive integers")
        return limits

    def to_dict(self) -> dict[str, int]:
        return {"title": self.title, "bullet": self.bullet, "description": self.description}


@dataclass(slots=True)
class ListingDraft:
    title: str
    bullets: List[str] = field(default_factory=list)
    description: str = ""
    backend_terms: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ListingDraft":
        """Coerce a decoded JSON object into a draft; raises ``ValueError`` on bad shapes."""

        if not isinstance(data, Mapping):
            raise ValueError("listing draft must be a JSON object")
        bullets = data.get("bullets") or []
        if not isinstance(bullets, list):
            raise ValueError("bullets must be a list of strings")
        backend_terms = data.get("backendTerms", data.get("backend_terms"))
        return cls(
            title=str(data.get("title") or ""),
            bullets=[str(bullet) for bullet in bullets],
            description=str(data.get("description") or ""),
            backend_terms=None if backend_terms is None else str(backend_terms),
        )

    def combined_text(self) -> str:
        return f"{self.title} {' '.join(self.bullets)} {self.description}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "bullets": list(self.bullets),
            "description": self.description,
        }
        if self.backend_terms is not None:
            payload["backendTerms"] = self.backend_terms
        return payload


@dataclass(slots=True)
class ValidationIssue:
    field: IssueField
    type: IssueType
    severity: Severity
    message: str
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "field": self.field,
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
        }
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        return payload


def _string_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{name} must be a list of strings")
    return [str(item) for item in value]


@dataclass(slots=True)
class ListingDraftRequest:
    """Product facts, keyword tiers and limits for one listing draft."""

    marketplace: str = "US"
    brand: str = ""
    product_type: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    tone: str | None = None
    disallowed: List[str] = field(default_factory=list)
    primary_keywords: List[str] = field(default_factory=list)
    secondary_keywords: List[str] = field(default_factory=list)
    limits: ListingLimits = field(default_factory=ListingLimits)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ListingDraftRequest":
        if not isinstance(data, Mapping):
            raise ValueError("request must be a JSON object")
        keywords = data.get("keywords") or {}
        if not isinstance(keywords, Mapping):
            raise ValueError("keywords must be an object with primary and secondary lists")
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, Mapping):
            raise ValueError("attributes must be an object")
        limits = data.get("limits")
        if limits is not None and not isinstance(limits, Mapping):
            raise ValueError("limits must be an object")
        return cls(
            marketplace=str(data.get("marketplace") or "US"),
            brand=str(data.get("brand") or ""),
            product_type=str(data.get("product_type") or data.get("productType") or ""),
            attributes={str(key): str(value) for key, value in attributes.items()},
            tone=str(data["tone"]) if data.get("tone") else None,
            disallowed=_string_list(data.get("disallowed"), "disallowed"),
            primary_keywords=_string_list(keywords.get("primary"), "keywords.primary"),
            secondary_keywords=_string_list(keywords.get("secondary"), "keywords.secondary"),
            limits=ListingLimits.from_mapping(limits),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "marketplace": self.marketplace,
            "brand": self.brand,
            "product_type": self.product_type,
            "attributes": dict(self.attributes),
            "tone": self.tone,
            "disallowed": list(self.disallowed),
            "keywords": {
                "primary": list(self.primary_keywords),
                "secondary": list(self.secondary_keywords),
            },
            "limits": self.limits.to_dict(),
        }


def _field_texts(draft: ListingDraft) -> list[tuple[IssueField, str]]:
    return [
        ("title", draft.title),
        ("bullets", " ".join(draft.bullets)),
        ("description", draft.description),
    ]


def _field_containing(draft: ListingDraft, needle: str) -> IssueField:
    for name, text in _field_texts(draft):
        if needle in text.lower():
            return name
    return "title"


def _field_matching(draft: ListingDraft, pattern: re.Pattern[str]) -> IssueField:
    for name, text in _field_texts(draft):
        if pattern.search(text):
            return name
    return "title"


def validate_listing(draft: ListingDraft, request: ListingDraftRequest) -> list[ValidationIssue]:
    """Report length, stuffing and policy problems without modifying the draft."""

    limits = request.limits
    issues: list[ValidationIssue] = []

    if len(draft.title) > limits.title:
        issues.append(
            ValidationIssue(
                field="title",
                type="length",
                severity="error",
                message=f"Title exceeds {limits.title} characters ({len(draft.title)})",
                suggestion="Shorten the title by removing less important words",
            )
        )
    for index, bullet in enumerate(draft.bullets, start=1):
        if len(bullet) > limits.bullet:
            issues.append(
                ValidationIssue(
                    field="bullets",
                    type="length",
                    severity="error",
                    message=f"Bullet {index} exceeds {limits.bullet} characters ({len(bullet)})",
                    suggestion="Shorten this bullet point",
                )
            )
    if len(draft.description) > limits.description:
        issues.append(
            ValidationIssue(
                field="description",
                type="length",
                severity="error",
                message=(
                    f"Description exceeds {limits.description} characters "
                    f"({len(draft.description)})"
                ),
                suggestion="Reduce description length",
            )
        )

    combined = draft.combined_text()
    lowered = combined.lower()
    for keyword in [*request.primary_keywords, *request.secondary_keywords]:
        needle = keyword.lower()
        if not needle:
            continue
        count = len(re.findall(re.escape(needle), lowered))
        if count > _MAX_KEYWORD_REPEATS:
            issues.append(
                ValidationIssue(
                    field=_field_containing(draft, needle),
                    type="stuffing",
                    severity="warning",
                    message=(
                        f'Keyword "{keyword}" appears {count} times '
                        f"(max {_MAX_KEYWORD_REPEATS} recommended)"
                    ),
                    suggestion="Remove some instances to avoid keyword stuffing",
                )
            )

    for term in request.disallowed:
        needle = term.lower()
        if needle and needle in lowered:
            issues.append(
                ValidationIssue(
                    field=_field_containing(draft, needle),
                    type="policy",
                    severity="error",
                    message=f'Prohibited term found: "{term}"',
                    suggestion=f'Remove or replace "{term}"',
                )
            )

    for pattern, message in _POLICY_PATTERNS:
        if pattern.search(combined):
            issues.append(
                ValidationIssue(
                    field=_field_matching(draft, pattern),
                    type="policy",
                    severity="warning",
                    message=message,
                    suggestion=_POLICY_SUGGESTION,
                )
            )

    return issues


def _truncate_at_space(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    truncated = text[:limit]
    last_space = truncated.rfind(" ")
    return truncated[:last_space] if last_space > 0 else truncated


def _truncate_description(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    truncated = text[:limit]
    last_period = truncated.rfind(".")
    last_space = truncated.rfind(" ")
    if last_period > 0:
        cut = last_period + 1
    elif last_space > 0:
        cut = last_space
    else:
        cut = limit
    return text[:cut]


def auto_fix_listing(draft: ListingDraft, request: ListingDraftRequest) -> ListingDraft:
    """Return a copy truncated to the limits with disallowed terms removed.

    Truncation happens first. Term removal repeats until no disallowed term
    matches, so joined fragments cannot form a new match; it does not re-check
    lengths or tidy the whitespace it leaves behind.
    """

    limits = request.limits
    title = _truncate_at_space(draft.title, limits.title)
    bullets = [_truncate_at_space(bullet, limits.bullet) for bullet in draft.bullets]
    description = _truncate_description(draft.description, limits.description)

    patterns = [re.compile(re.escape(term), re.IGNORECASE) for term in request.disallowed if term]
    while patterns and any(
        pattern.search(text) for pattern in patterns for text in (title, description, *bullets)
    ):
        for pattern in patterns:
            title = pattern.sub("", title)
            bullets = [pattern.sub("", bullet) for bullet in bullets]
            description = pattern.sub("", description)

    return ListingDraft(
        title=title,
        bullets=bullets,
        description=description,
        backend_terms=draft.backend_terms,
    )


def calculate_keyword_usage(draft: ListingDraft, keywords: Iterable[str]) -> dict[str, int]:
    """Count case-insensitive occurrences of each keyword across the whole draft."""

    lowered = draft.combined_text().lower()
    usage: dict[str, int] = {}
    for keyword in keywords:
        needle = keyword.lower()
        usage[keyword] = len(re.findall(re.escape(needle), lowered)) if needle else 0
    return usage


def _fit_to_limits(draft: ListingDraft, limits: ListingLimits) -> ListingDraft:
    def clip(text: str, limit: int) -> str:
        return text[:limit].strip() if len(text) > limit else text

    return ListingDraft(
        title=clip(draft.title, limits.title),
        bullets=[clip(bullet, limits.bullet) for bullet in draft.bullets],
        description=clip(draft.description, limits.description),
        backend_terms=draft.backend_terms,
    )


def draft_cache_key(request: ListingDraftRequest) -> str:
    canonical = json.dumps(request.to_dict(), sort_keys=True, ensure_ascii=False)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"listing:draft:{digest}"


class ListingDraftService:
    """Generate a JSON-mode listing draft, clip it to the limits and cache it."""

    def __init__(
        self,
        settings: Settings,
        llm: ChatCompleter,
        cache: Cache,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._llm = llm
        self._cache = cache
        self._metrics = metrics

    def generate_draft(self, request: ListingDraftRequest) -> ListingDraft:
        cache_key = draft_cache_key(request)
        cached = self._cache.lookup(cache_key)
        if cached.hit:
            try:
                draft = ListingDraft.from_mapping(cached.value)
            except ValueError as exc:
                logger.warning("listing.draft.cache_invalid key=%s error=%s", cache_key, exc)
            else:
                logger.info("listing.draft.cache_hit key=%s", cache_key)
                self._increment("listing.draft_cache_hits")
                return draft

        system_prompt, developer_prompt, user_prompt = build_draft_prompts(request)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "developer", "content": developer_prompt},
            {"role": "user", "content": user_prompt},
        ]
        try:
            content = self._llm.complete(
                messages,
                temperature=self._settings.listing_temperature,
                max_tokens=_DRAFT_MAX_TOKENS,
                response_format={"type": "json_object"},
            )
            parsed = ListingDraft.from_mapping(json.loads(content or "{}"))
        except (LLMError, ValueError) as exc:
            logger.error(
                "listing.draft.failed brand=%s product_type=%s error=%s",
                request.brand,
                request.product_type,
                exc,
            )
            self._increment("listing.draft_failures")
            raise ListingGenerationError(f"Failed to generate listing: {exc}") from exc

        draft = _fit_to_limits(parsed, request.limits)
        self._cache.set(cache_key, draft.to_dict(), self._settings.listing_draft_cache_ttl)
        logger.info(
            "listing.draft.generated brand=%s bullets=%s title_chars=%s",
            request.brand,
            len(draft.bullets),
            len(draft.title),
        )
        return draft

    def _increment(self, metric: str) -> None:
        if self._metrics:
            self._metrics.increment(metric)


__all__ = [
    "ListingDraft",
    "ListingDraftRequest",
    "ListingDraftService",
    "ListingGenerationError",
    "ListingLimits",
    "ValidationIssue",
    "auto_fix_listing",
    "calculate_keyword_usage",
    "draft_cache_key",
    "validate_listing",
]
