"""Listing templates, Amazon banned words and keyword-density helpers."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, List, Literal, Mapping

try:  # pragma: no cover - optional dependency guard
    import yaml
except Exception as exc:  # pragma: no cover
    yaml = None
    YAML_IMPORT_ERROR = exc
else:  # pragma: no cover
    YAML_IMPORT_ERROR = None

logger = logging.getLogger(__name__)

Density = Literal["high", "medium", "low"]
_DENSITIES = ("high", "medium", "low")

DEFAULT_TEMPLATE_ID = "professional-seo"

AMAZON_BANNED_WORDS: tuple[str, ...] = (
    # Superlatives and guarantees
    "best",
    "best-selling",
    "best seller",
    "#1",
    "number 1",
    "number one",
    "top-rated",
    "top rated",
    "highest quality",
    "guaranteed",
    "guarantee",
    # Medical and health claims
    "cure",
    "cures",
    "treat",
    "treatment",
    "heal",
    "heals",
    "diagnose",
    "prevent",
    "prevents",
    "disease",
    "therapy",
    "therapeutic",
    # Time-sensitive claims
    "sale",
    "discount",
    "deal",
    "limited time",
    "limited offer",
    "promotion",
    "special offer",
    "clearance",
    "liquidation",
    "closeout",
    # Competitor references
    "amazon",
    "amazon's choice",
    "prime",
    "ebay",
    "walmart",
    "target",
    # Subjective claims
    "perfect",
    "revolutionary",
    "amazing",
    "incredible",
    "unbelievable",
    "magical",
    "miracle",
    "breakthrough",
    # Promotional giveaways
    "free",
    "free shipping",
    "bonus",
    "gift",
    "prize",
    "warranty",
    # Call-to-action phrases
    "compare to",
    "as seen on tv",
    "buy now",
    "click here",
    "order now",
    "limited quantity",
    "while supplies last",
    "act now",
)


@dataclass(slots=True)
class KeywordDensity:
    """Target keyword density per listing section."""

    title: Density = "medium"
    bullets: Density = "medium"
    description: Density = "medium"

    def to_dict(self) -> dict[str, str]:
        return {
            "titleDensity": self.title,
            "bulletDensity": self.bullets,
            "descriptionDensity": self.description,
        }


@dataclass(slots=True)
class ListingTemplate:
    """Read-only listing style selected by id.

    The optional limits and style flags are ``None`` when the template leaves
    them to the prompt builder's defaults.
    """

    id: str
    name: str
    description: str
    title_format: str
    bullet_format: str
    description_format: str
    keywords: KeywordDensity = field(default_factory=KeywordDensity)
    tone: str | None = None
    title_min_chars: int | None = None
    title_max_chars: int | None = None
    title_capitalization: str | None = None
    bullet_min_chars: int | None = None
    bullet_max_chars: int | None = None
    bullet_capitalize_first: bool | None = None
    description_min_chars: int | None = None
    description_max_chars: int | None = None
    description_style: str | None = None
    use_html_formatting: bool | None = None
    avoid_words: List[str] = field(default_factory=list)
    is_system: bool = True

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "titleFormat": self.title_format,
            "bulletFormat": self.bullet_format,
            "descriptionFormat": self.description_format,
            "keywords": self.keywords.to_dict(),
            "isSystem": self.is_system,
        }
        optional = {
            "tone": self.tone,
            "titleMinChars": self.title_min_chars,
            "titleMaxChars": self.title_max_chars,
            "titleCapitalization": self.title_capitalization,
            "bulletMinChars": self.bullet_min_chars,
            "bulletMaxChars": self.bullet_max_chars,
            "bulletCapitalizeFirst": self.bullet_capitalize_first,
            "descriptionMinChars": self.description_min_chars,
            "descriptionMaxChars": self.description_max_chars,
            "descriptionStyle": self.description_style,
            "useHtmlFormatting": self.use_html_formatting,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        if self.avoid_words:
            payload["avoidWords"] = list(self.avoid_words)
        return payload


LISTING_TEMPLATES: tuple[ListingTemplate, ...] = (
    ListingTemplate(
        id="professional-seo",
        name="Professional SEO Optimized",
        description="Balanced keyword density with professional tone. Best for most products.",
        title_format="[Primary Keyword] - [Key Features] - [Variant/Size/Color]",
        bullet_format=(
            "Start with benefit, support with features, end with result. "
            "Use primary & secondary keywords naturally."
        ),
        description_format=(
            "Opening hook with primary keyword → Feature sections with keywords → Benefits "
            "→ Trust signals → Call to value"
        ),
        keywords=KeywordDensity(title="high", bullets="medium", description="medium"),
    ),
    ListingTemplate(
        id="feature-focused",
        name="Feature-Focused",
        description="Emphasizes technical specifications and features. Good for tech/electronics.",
        title_format="[Brand] [Product Type] | [Key Specs] | [Model/Version]",
        bullet_format=(
            "Lead with specific feature → Technical details → Practical application "
            "→ Keywords in context"
        ),
        description_format=(
            "Tech specs overview → Detailed feature breakdown → Use cases → Compatibility "
            "→ Technical keywords"
        ),
        keywords=KeywordDensity(title="medium", bullets="high", description="high"),
    ),
    ListingTemplate(
        id="benefit-driven",
        name="Benefit-Driven",
        description="Focuses on customer benefits and solutions. Great for lifestyle products.",
        title_format="[Solution] [Product Type] - [Primary Benefit] for [Target Audience]",
        bullet_format=(
            "Problem statement → Solution/Benefit → How it works → Keywords describing benefit"
        ),
        description_format=(
            "Emotional hook → Problem-solution narrative → Lifestyle benefits "
            "→ Social proof elements → Keywords in benefits"
        ),
        keywords=KeywordDensity(title="medium", bullets="low", description="low"),
    ),
    ListingTemplate(
        id="premium-luxury",
        name="Premium/Luxury",
        description="Elegant, sophisticated tone with emphasis on quality and craftsmanship.",
        title_format="[Brand] [Premium Descriptor] [Product] - [Unique Value Proposition]",
        bullet_format=(
            "Sophisticated benefit → Quality/craftsmanship detail → Premium materials "
            "→ Keywords with elegance"
        ),
        description_format=(
            "Brand story → Craftsmanship details → Premium materials → Exclusive benefits "
            "→ Refined keywords"
        ),
        keywords=KeywordDensity(title="low", bullets="low", description="low"),
    ),
    ListingTemplate(
        id="conversion-optimized",
        name="Conversion-Optimized",
        description="Aggressive keyword usage while maintaining readability. Maximum visibility.",
        title_format="[Primary KW] [Secondary KW] - [Feature] [Feature] - [Category KW]",
        bullet_format=(
            "Keyword-rich opening → Feature with keywords → Benefit with keywords "
            "→ Secondary keywords"
        ),
        description_format=(
            "Keyword-dense intro → Feature sections loaded with keywords "
            "→ Benefit-keyword combos → Keyword variations"
        ),
        keywords=KeywordDensity(title="high", bullets="high", description="high"),
    ),
    ListingTemplate(
        id="storytelling",
        name="Storytelling/Brand",
        description="Narrative-driven with brand personality. Keywords woven naturally into story.",
        title_format="[Brand] [Product] - [Brand Promise/Tagline]",
        bullet_format=(
            "Story-based benefit → Real-world scenario → Emotional connection "
            "→ Natural keyword integration"
        ),
        description_format=(
            "Brand narrative → Customer journey → Product role in story → Natural keyword flow"
        ),
        keywords=KeywordDensity(title="low", bullets="low", description="low"),
    ),
)


class TemplateLoadError(RuntimeError):
    """Raised when custom templates cannot be loaded."""


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _pick(data: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return None


def _optional_int(data: Mapping[str, Any], *names: str) -> int | None:
    value = _pick(data, *names)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{names[0]} must be an integer") from exc


def _optional_bool(data: Mapping[str, Any], *names: str) -> bool | None:
    value = _pick(data, *names)
    return None if value is None else bool(value)


def _optional_str(data: Mapping[str, Any], *names: str) -> str | None:
    value = _pick(data, *names)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _density(value: Any) -> Density:
    text = str(value or "medium").strip().lower()
    return text if text in _DENSITIES else "medium"  # type: ignore[return-value]


def template_from_mapping(data: Mapping[str, Any], *, is_system: bool = False) -> ListingTemplate:
    """Build a template from camelCase or snake_case keys; ``name`` is required."""

    name = str(data.get("name") or "").strip()
    if not name:
        raise ValueError("Template name is required")
    template_id = str(data.get("id") or "").strip() or _slugify(name)
    densities = data.get("keywords") or {}
    if not isinstance(densities, Mapping):
        densities = {}
    fallback_density = data.get("keywordDensity") or data.get("keyword_density")
    avoid_words = _pick(data, "avoidWords", "avoid_words") or []
    if isinstance(avoid_words, str):
        avoid_words = [avoid_words]
    default = LISTING_TEMPLATES[0]
    return ListingTemplate(
        id=template_id,
        name=name,
        description=str(data.get("description") or "").strip(),
        title_format=_optional_str(data, "titleFormat", "title_format") or default.title_format,
        bullet_format=_optional_str(data, "bulletFormat", "bullet_format") or default.bullet_format,
        description_format=_optional_str(data, "descriptionFormat", "description_format")
        or default.description_format,
        keywords=KeywordDensity(
            title=_density(_pick(densities, "titleDensity", "title") or fallback_density),
            bullets=_density(_pick(densities, "bulletDensity", "bullets") or fallback_density),
            description=_density(
                _pick(densities, "descriptionDensity", "description") or fallback_density
            ),
        ),
        tone=_optional_str(data, "tone"),
        title_min_chars=_optional_int(data, "titleMinChars", "title_min_chars"),
        title_max_chars=_optional_int(data, "titleMaxChars", "title_max_chars"),
        title_capitalization=_optional_str(data, "titleCapitalization", "title_capitalization"),
        bullet_min_chars=_optional_int(data, "bulletMinChars", "bullet_min_chars"),
        bullet_max_chars=_optional_int(data, "bulletMaxChars", "bullet_max_chars"),
        bullet_capitalize_first=_optional_bool(
            data, "bulletCapitalizeFirst", "bullet_capitalize_first"
        ),
        description_min_chars=_optional_int(data, "descriptionMinChars", "description_min_chars"),
        description_max_chars=_optional_int(data, "descriptionMaxChars", "description_max_chars"),
        description_style=_optional_str(data, "descriptionStyle", "description_style"),
        use_html_formatting=_optional_bool(data, "useHtmlFormatting", "use_html_formatting"),
        avoid_words=[str(word).strip() for word in avoid_words if str(word).strip()],
        is_system=is_system,
    )


def load_templates(path: str | Path) -> list[ListingTemplate]:
    """Load custom templates from a YAML list; return an empty list if the file is missing."""

    templates_path = Path(path)
    if not templates_path.exists():
        return []

    if yaml is None:  # pragma: no cover - requires pyyaml
        raise TemplateLoadError("pyyaml is required to load listing templates") from YAML_IMPORT_ERROR

    data = yaml.safe_load(templates_path.read_text(encoding="utf-8")) or []
    if not isinstance(data, list):
        raise TemplateLoadError(f"{templates_path} must contain a list of templates")
    templates: list[ListingTemplate] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            templates.append(template_from_mapping(item))
        except ValueError as exc:
            logger.warning("listing.templates.skipped path=%s error=%s", templates_path, exc)
    return templates


class TemplateRegistry:
    """Built-in templates plus custom ones registered at runtime."""

    def __init__(
        self,
        templates: Iterable[ListingTemplate] | None = None,
        *,
        default_id: str = DEFAULT_TEMPLATE_ID,
    ) -> None:
        self._templates: dict[str, ListingTemplate] = {
            template.id: template for template in LISTING_TEMPLATES
        }
        self._lock = threading.Lock()
        self._default_id = default_id if default_id in self._templates else DEFAULT_TEMPLATE_ID
        for template in templates or []:
            self.register(template)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def get(self, template_id: str | None) -> ListingTemplate:
        """Return the template with ``template_id`` or the default one."""

        template = self._templates.get(template_id or "")
        if template is None:
            if template_id:
                logger.info(
                    "listing.template.fallback requested=%s default=%s",
                    template_id,
                    self._default_id,
                )
            template = self._templates.get(self._default_id, LISTING_TEMPLATES[0])
        return template

    def all(self) -> list[ListingTemplate]:
        return list(self._templates.values())

    def register(self, template: ListingTemplate) -> ListingTemplate:
        """Add a custom template; built-in ids cannot be replaced."""

        existing = self._templates.get(template.id)
        if existing is not None and existing.is_system:
            raise ValueError(f"Template id '{template.id}' is reserved")
        custom = replace(template, is_system=False)
        with self._lock:
            self._templates[custom.id] = custom
        logger.info("listing.template.registered id=%s", custom.id)
        return custom


def check_banned_words(text: str) -> list[str]:
    """Return every banned word or phrase contained in ``text`` (substring match)."""

    lowered = (text or "").lower()
    return [word for word in AMAZON_BANNED_WORDS if word.lower() in lowered]


def calculate_keyword_density(text: str, keywords: Iterable[str]) -> float:
    """Percentage of words in ``text`` covered by exact keyword-phrase matches."""

    words = (text or "").lower().split()
    if not words:
        return 0.0
    matches = 0
    for keyword in keywords:
        phrase = keyword.lower().split()
        if not phrase:
            continue
        size = len(phrase)
        for index in range(len(words) - size + 1):
            if words[index : index + size] == phrase:
                matches += 1
    return matches / len(words) * 100


__all__ = [
    "AMAZON_BANNED_WORDS",
    "DEFAULT_TEMPLATE_ID",
    "KeywordDensity",
    "LISTING_TEMPLATES",
    "ListingTemplate",
    "TemplateLoadError",
    "TemplateRegistry",
    "calculate_keyword_density",
    "check_banned_words",
    "load_templates",
    "template_from_mapping",
]
