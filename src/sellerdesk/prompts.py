"""Prompt builders for keyword expansion and listing generation.

Every function here is pure: it only formats text from its arguments. The
listing parsers downstream rely on two contracts spelled out in each prompt:
the numeric character limits, and JSON or plain-text output without markdown.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Literal, Sequence

from .templates import AMAZON_BANNED_WORDS, ListingTemplate

if TYPE_CHECKING:
    from .listing import ListingDraftRequest
    from .listing_generator import GenerateListingParams

Section = Literal["title", "bullets", "description", "all"]
SECTIONS: tuple[str, ...] = ("title", "bullets", "description", "all")

DEFAULT_TITLE_FORMAT = "[Brand] [Product Name] - [Key Benefits] - [Size/Color]"
DEFAULT_BULLET_FORMAT = "Benefit → Feature → Meaning"
DEFAULT_DESCRIPTION_FORMAT = "Hook → Features → Benefits → Conclusion"

TITLE_MIN_CHARS = 150
TITLE_MAX_CHARS = 200
BULLET_MIN_CHARS = 180
BULLET_MAX_CHARS = 220
DESCRIPTION_MIN_CHARS = 1500
DESCRIPTION_MAX_CHARS = 2000

_BANNED_WORDS_IN_PROMPT = 15

SEED_EXPANSION_SYSTEM_PROMPT = (
    "You are an Amazon SEO keyword expert. Generate highly relevant search keywords."
)

DRAFT_SYSTEM_PROMPT = """You are an expert Amazon product listing copywriter. Your task is to create compelling, compliant, and keyword-optimized product listings that follow Amazon's policies.

Key principles:
- Write naturally and avoid keyword stuffing
- Follow character limits strictly
- Use keywords organically within natural sentences
- Maintain readability and persuasive tone
- Never repeat keywords excessively (max 2 times total across all fields)
- Avoid prohibited claims (medical, therapeutic, FDA-related)
- Focus on features, benefits, and use cases"""

_ROLE = (
    "You are a world-class Amazon Copywriting Expert. Your goal is to write a high-converting "
    "listing that sounds 100% human-written, persuasive, and completely compliant with "
    "Amazon policies."
)

_WRITING_PHILOSOPHY = """WRITING_PHILOSOPHY:
- Write for Humans: Use natural, engaging language. Avoid robotic repetition.
- Sell the Benefit: Don't just list specs. Explain WHY it matters.
- Be Concise: Cut fluff. Every word must earn its place.
- Integrate Keywords Naturally: They should be invisible to the reader. NEVER force a keyword if it breaks the flow."""

_EXAMPLE_BULLET = (
    '"SCARE YOUR FRIENDS SILLY - This ultra-realistic eight-legged creepy crawler pops out of '
    "the box with lifelike movement, delivering instant shrieks and unforgettable Halloween "
    'memories for all ages."'
)


def title_limits(template: ListingTemplate) -> tuple[int, int]:
    return (
        template.title_min_chars or TITLE_MIN_CHARS,
        template.title_max_chars or TITLE_MAX_CHARS,
    )


def bullet_limits(template: ListingTemplate) -> tuple[int, int]:
    return (
        template.bullet_min_chars or BULLET_MIN_CHARS,
        template.bullet_max_chars or BULLET_MAX_CHARS,
    )


def description_limits(template: ListingTemplate) -> tuple[int, int]:
    return (
        template.description_min_chars or DESCRIPTION_MIN_CHARS,
        template.description_max_chars or DESCRIPTION_MAX_CHARS,
    )


def _bullet_format(template: ListingTemplate) -> str:
    if template.bullet_format and "→" in template.bullet_format:
        return template.bullet_format
    return DEFAULT_BULLET_FORMAT


def _title_block(template: ListingTemplate, tone: str) -> str:
    _, maximum = title_limits(template)
    return f"""TASK: Write a Product Title.

STYLE GUIDELINES:
- Tone: {tone}
- Capitalization: {template.title_capitalization or 'Title Case'}
- TARGET LENGTH: Aim for {maximum} characters. Be detailed and comprehensive.
- MAXIMUM LENGTH: Do not exceed {maximum} characters.

FORMATTING RULE:
You MUST follow this structure exactly: "{template.title_format or DEFAULT_TITLE_FORMAT}"

CRITICAL INSTRUCTIONS:
1. Start with brand/product identifiers.
2. Include 3-4 key benefits/features separated by hyphens.
3. Be descriptive and use the full character allowance.
4. NO PROMOTIONAL TERMS (e.g. "Best", "Sale").
5. Output ONLY the raw title string, no quotes, no markdown."""


def _bullets_block(template: ListingTemplate, tone: str) -> str:
    minimum, maximum = bullet_limits(template)
    casing = (
        "Capitalize the first phrase in ALL CAPS"
        if template.bullet_capitalize_first
        else "Standard sentence case"
    )
    return f"""TASK: Write 5 Bullet Points.

STYLE GUIDELINES:
- Tone: {tone}
- MINIMUM LENGTH: Each bullet MUST be AT LEAST {minimum} characters. Bullets under {minimum} chars = FAILURE.
- MAXIMUM LENGTH: Do not exceed {maximum} characters.
- Formatting: {casing}.

FORMATTING RULE:
Follow this pattern for EVERY bullet:
"{_bullet_format(template)}"

Here is an example of a bullet that is {minimum}+ characters:
{_EXAMPLE_BULLET}

CRITICAL INSTRUCTIONS:
1. Write EXACTLY 5 bullets.
2. Each bullet MUST be {minimum}-{maximum} characters. If your first draft is short, EXPAND IT with more detail.
3. Do NOT include literal text like "(Benefit)" or "(Meaning)". Just follow the flow.
4. Output ONLY a valid JSON array of 5 strings."""


def _description_block(template: ListingTemplate, tone: str) -> str:
    _, maximum = description_limits(template)
    use_html = template.use_html_formatting is not False
    is_paragraph = template.description_style == "paragraph"
    lines = [
        "TASK: Write a Product Description.",
        "",
        "STYLE GUIDELINES:",
        f"- Tone: {tone}",
        f"- TARGET LENGTH: Write a comprehensive description, aim for {maximum} characters.",
        f"- MAXIMUM LENGTH: Do not exceed {maximum} characters.",
        "- Format: "
        + ("Use HTML (<b>, <br>) for readability." if use_html else "Plain text only."),
    ]
    if is_paragraph:
        lines.append(
            "- Structure: Write as a SINGLE, cohesive essay-style paragraph. "
            "Do NOT use bullet points or lists."
        )
    lines.extend(
        [
            "",
            "FORMATTING RULE:",
            f'Structure the text as follows: "{template.description_format or DEFAULT_DESCRIPTION_FORMAT}"',
            "",
            "CRITICAL INSTRUCTIONS:",
            "1. Start with a compelling hook.",
            "2. Weave features and benefits into a narrative story."
            if is_paragraph
            else "2. Use short paragraphs and headers.",
            "3. Persuade the reader to buy.",
            "4. NO SPECIAL CHARACTERS: Do NOT use em dashes, en dashes, fancy quotes, or other "
            "special Unicode. Use only standard ASCII hyphens, quotes and apostrophes.",
            "5. NO emojis.",
        ]
    )
    return "\n".join(lines)


def _all_block(template: ListingTemplate, tone: str) -> str:
    title_min, title_max = title_limits(template)
    bullet_min, bullet_max = bullet_limits(template)
    _, description_max = description_limits(template)
    return f"""TASK: Write a complete listing: title, 5 bullet points, description and backend search terms.

STYLE GUIDELINES:
- Tone: {tone}
- TITLE: {title_min}-{title_max} characters following "{template.title_format or DEFAULT_TITLE_FORMAT}".
- BULLETS: Exactly 5 bullets, each {bullet_min}-{bullet_max} characters, following "{_bullet_format(template)}".
- DESCRIPTION: At most {description_max} characters following "{template.description_format or DEFAULT_DESCRIPTION_FORMAT}".
- BACKEND TERMS: Comma-separated search terms, no brand names, under 250 bytes.

CRITICAL INSTRUCTIONS:
1. NO PROMOTIONAL TERMS (e.g. "Best", "Sale").
2. Use only standard ASCII punctuation. NO emojis."""


def _output_instruction(section: str) -> str:
    if section == "bullets":
        return "OUTPUT FORMAT: Provide ONLY a raw JSON array of 5 strings. No markdown formatting."
    if section == "all":
        return (
            "OUTPUT FORMAT: Provide ONLY a raw JSON object with the keys "
            '"title" (string), "bullets" (array of 5 strings), "description" (string) and '
            '"backendTerms" (string). No markdown formatting.'
        )
    return "OUTPUT FORMAT: Provide ONLY the raw text string. No markdown, no quotes."


def banned_words_for(template: ListingTemplate) -> list[str]:
    return [*AMAZON_BANNED_WORDS, *template.avoid_words]


def build_system_prompt(template: ListingTemplate, section: str) -> str:
    """Return the system prompt for one listing section (or ``all``)."""

    if section not in SECTIONS:
        raise ValueError(f"Unknown listing section: {section}")
    tone = template.tone or "professional"
    blocks = {
        "title": _title_block,
        "bullets": _bullets_block,
        "description": _description_block,
        "all": _all_block,
    }
    instructions = blocks[section](template, tone)
    avoid = ", ".join(banned_words_for(template)[:_BANNED_WORDS_IN_PROMPT])
    return (
        f"{_ROLE}\n\n{_WRITING_PHILOSOPHY}\n\n{instructions}\n\n"
        f"AVOID THESE WORDS: {avoid}.\n\n{_output_instruction(section)}"
    )


def _bullet_list(values: Sequence[str]) -> str:
    return "\n".join(f"- {value}" for value in values)


def _constraints(template: ListingTemplate, section: str) -> str:
    if section == "title":
        minimum, maximum = title_limits(template)
        return (
            f"- Length: STRICTLY between {minimum} and {maximum} characters.\n"
            f'- Format: You MUST use: "{template.title_format or DEFAULT_TITLE_FORMAT}"'
        )
    if section == "bullets":
        minimum, maximum = bullet_limits(template)
        return (
            f"- Length: STRICTLY between {minimum} and {maximum} characters PER bullet.\n"
            f'- Structure: "{template.bullet_format or DEFAULT_BULLET_FORMAT}"\n'
            "- Crucial: Do NOT just write sentences. Use the defined structure."
        )
    if section == "description":
        minimum, maximum = description_limits(template)
        style = (
            "Single cohesive paragraph (Essay style)."
            if template.description_style == "paragraph"
            else "Standard HTML format with headers."
        )
        return f"- Length: {minimum}-{maximum} characters.\n- Style: {style}"
    title_min, title_max = title_limits(template)
    bullet_min, bullet_max = bullet_limits(template)
    description_min, description_max = description_limits(template)
    return (
        f"- Title length: {title_min}-{title_max} characters.\n"
        f"- Bullet length: {bullet_min}-{bullet_max} characters each, exactly 5 bullets.\n"
        f"- Description length: {description_min}-{description_max} characters.\n"
        "- Respond with a single JSON object."
    )


def build_user_prompt(
    params: "GenerateListingParams",
    template: ListingTemplate,
    primary: Sequence[str],
    secondary: Sequence[str],
    tertiary: Sequence[str],
    section: str,
) -> str:
    """Product context, keyword tiers and the section's constraints restated."""

    context_lines = [
        "PRODUCT CONTEXT:",
        f"- Name: {params.product_name}",
        f"- Category: {params.category}",
    ]
    if params.brand:
        context_lines.append(f"- Brand: {params.brand}")
    if params.target_audience:
        context_lines.append(f"- Target Audience: {params.target_audience}")
    if params.marketplace:
        context_lines.append(f"- Marketplace: {params.marketplace}")
    context = "\n".join(context_lines)
    details = (
        f"KEY FEATURES:\n{_bullet_list(params.features)}\n\n"
        f"KEY BENEFITS:\n{_bullet_list(params.benefits)}\n\n"
        f"UNIQUE SELLING POINTS:\n{_bullet_list(params.unique_selling_points)}"
    )
    strategy = (
        "KEYWORD STRATEGY:\n"
        f"- Must Include (Primary): {', '.join(primary)}\n"
        f"- Nice to Have (Secondary): {', '.join(secondary)}\n"
        f"- Contextual (Tertiary): {', '.join(tertiary)}\n\n"
        'Instruction: Integrate "Must Include" keywords naturally. Use others only if they fit '
        "the sentence flow. DO NOT STUFF KEYWORDS."
    )
    directive = (
        "ACTION:\n"
        f"Write the {section.upper()} for this product now.\n\n"
        "CRITICAL CONSTRAINTS (MUST FOLLOW):\n"
        f"{_constraints(template, section)}\n\n"
        "Follow the System Prompt rules for Format and Tone rigorously."
    )
    return f"{context}\n\n{details}\n\n{strategy}\n\n{directive}"


def build_seed_expansion_prompt(
    seeds: Sequence[str], category: str, marketplace: str, count: int = 30
) -> str:
    return (
        f"You are an Amazon SEO expert. Given these seed keywords for {category} products in "
        f"{marketplace} marketplace, generate {count} highly relevant, specific keyword "
        "variations that real customers would search for. Focus on:\n"
        "- Long-tail keywords (2-4 words)\n"
        "- Natural search phrases\n"
        "- Product features and benefits\n"
        "- Use cases and applications\n\n"
        f"Seed keywords: {', '.join(seeds)}\n\n"
        "Return ONLY the keywords, one per line, no numbering or formatting."
    )


def build_draft_developer_prompt(request: "ListingDraftRequest") -> str:
    limits = request.limits
    prohibited = (
        f"- Never use: {', '.join(request.disallowed)}"
        if request.disallowed
        else "- No specific prohibited terms"
    )
    return f"""FORMAT REQUIREMENTS:
- TITLE: Maximum {limits.title} characters (including spaces)
- BULLETS: Exactly 5 bullet points, each maximum {limits.bullet} characters
- DESCRIPTION: Maximum {limits.description} characters

KEYWORD STRATEGY:
- Primary keywords (use exactly once): {', '.join(request.primary_keywords)}
- Secondary keywords (use at most once): {', '.join(request.secondary_keywords)}

PROHIBITED TERMS:
{prohibited}

COMPLIANCE RULES:
- No medical or health claims
- No competitor brand names
- No excessive capitalization
- No special characters in title
- Natural keyword placement only
- Maintain professional tone"""


def build_draft_user_prompt(request: "ListingDraftRequest") -> str:
    attributes = "\n".join(f"{key}: {value}" for key, value in request.attributes.items())
    response_shape = json.dumps(
        {"title": "...", "bullets": ["...", "...", "...", "...", "..."], "description": "..."},
        indent=2,
    )
    return f"""Create an Amazon product listing for:

BRAND: {request.brand}
PRODUCT TYPE: {request.product_type}
MARKETPLACE: {request.marketplace}
TONE: {request.tone or 'standard'}

PRODUCT ATTRIBUTES:
{attributes}

Generate a complete listing with:
1. A compelling title that includes primary keywords naturally
2. Five benefit-focused bullet points that highlight features and use cases
3. A detailed description that tells the product story

Format your response as JSON:
{response_shape}"""


def build_draft_prompts(request: "ListingDraftRequest") -> tuple[str, str, str]:
    """Return the ``(system, developer, user)`` prompts for a listing draft."""

    return (
        DRAFT_SYSTEM_PROMPT,
        build_draft_developer_prompt(request),
        build_draft_user_prompt(request),
    )


__all__ = [
    "DRAFT_SYSTEM_PROMPT",
    "SECTIONS",
    "SEED_EXPANSION_SYSTEM_PROMPT",
    "Section",
    "banned_words_for",
    "bullet_limits",
    "build_draft_developer_prompt",
    "build_draft_prompts",
    "build_draft_user_prompt",
    "build_seed_expansion_prompt",
    "build_system_prompt",
    "build_user_prompt",
    "description_limits",
    "title_limits",
]
