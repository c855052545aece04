from __future__ import annotations

import json

import pytest

from conftest import FakeLLM
from sellerdesk.config import Settings
from sellerdesk.listing import ListingGenerationError
from sellerdesk.listing_generator import (
    GenerateListingParams,
    ListingGenerator,
    SelectableKeyword,
    clean_backend_terms,
    count_keyword_usage,
    enforce_capitalization,
    find_banned_words,
    parse_listing_response,
    partition_keywords,
    sanitize_special_chars,
    strip_code_fences,
)
from sellerdesk.llm import LLMError
from sellerdesk.templates import TemplateRegistry, template_from_mapping


def _params(**overrides) -> GenerateListingParams:
    values = dict(
        product_name="Cork Yoga Mat",
        category="Sports",
        brand="Acme",
        keywords=[
            SelectableKeyword("cork yoga mat", 9000, True),
            SelectableKeyword("travel", 300, True),
            SelectableKeyword("ignored phrase", 99999, False),
        ],
    )
    values.update(overrides)
    return GenerateListingParams(**values)


def test_partition_keywords_by_search_volume() -> None:
    keywords = [SelectableKeyword(f"kw{index}", index * 10, True) for index in range(10)]
    keywords.append(SelectableKeyword("unselected", 10_000, False))
    keywords.append(SelectableKeyword("no volume", None, True))

    primary, secondary, tertiary = partition_keywords(keywords)

    assert primary == ["kw9", "kw8", "kw7"]
    assert secondary == ["kw6", "kw5", "kw4", "kw3", "kw2"]
    assert tertiary == ["kw1", "kw0", "no volume"]


def test_partition_keywords_with_few_selected() -> None:
    keywords = [SelectableKeyword("a", 5, True), SelectableKeyword("b", 1, True)]

    assert partition_keywords(keywords) == (["a", "b"], [], [])


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"title": "x"}\n```') == '{"title": "x"}'
    assert strip_code_fences("```\nplain\n```") == "plain"
    assert strip_code_fences("  plain  ") == "plain"


def test_parse_all_section_from_fenced_json() -> None:
    content = '```json\n{"title": " Mat ", "bullets": ["<b>One</b>"], "description": "D", "backendTerms": "a,b"}\n```'

    parsed = parse_listing_response(content, "all")

    assert parsed == {
        "title": "Mat",
        "bullets": ["<b>One</b>"],
        "description": "D",
        "backend_terms": "a,b",
    }


def test_parse_all_section_rejects_invalid_json() -> None:
    with pytest.raises(ListingGenerationError, match="Invalid response format from AI"):
        parse_listing_response("Here is your listing: title...", "all")


def test_parse_title_strips_html() -> None:
    assert parse_listing_response("<b>Acme Cork Mat</b>", "title")["title"] == "Acme Cork Mat"


def test_parse_description_removes_html_when_template_disables_it() -> None:
    template = template_from_mapping({"name": "Plain", "useHtmlFormatting": False})

    parsed = parse_listing_response("<p>Soft   cork.</p><br>Travel ready.", "description", template)

    assert parsed["description"] == "Soft cork.Travel ready."


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ('["One", "Two"]', ["One", "Two"]),
        ('Sure! ["One", "Two"] Enjoy.', ["One", "Two"]),
        ('[\n"One"\n"Two"\n]', ["One", "Two"]),
        ("One|Two||Three", ["One", "Two", "Three"]),
        ("1\n\n2\n\n3\n\n4\n\n5\n\n6", ["1", "2", "3", "4", "5"]),
    ],
)
def test_parse_bullets_fallbacks(content: str, expected: list[str]) -> None:
    assert parse_listing_response(content, "bullets")["bullets"] == expected


def test_find_banned_words_matches_whole_words_only() -> None:
    assert find_banned_words("Bestow calm on your practice") == []
    assert find_banned_words("The BEST mat with free shipping") == ["best", "free", "free shipping"]
    assert find_banned_words("cheap knockoff", extra=["knockoff"]) == ["knockoff"]


def test_enforce_capitalization_styles() -> None:
    assert enforce_capitalization("the yoga mat for home", "title") == "The Yoga Mat for Home"
    assert enforce_capitalization("YOGA Mat", "sentence") == "Yoga mat"
    assert enforce_capitalization("yoga mat", "all-caps") == "YOGA MAT"
    assert enforce_capitalization("yoga Mat", "none") == "yoga Mat"


def test_sanitize_special_chars() -> None:
    text = "It’s — “great”… © Acme™ mat"

    assert sanitize_special_chars(text) == "It's - \"great\"... (c) Acme(TM) mat"


def test_clean_backend_terms_drops_brand_and_duplicates() -> None:
    assert clean_backend_terms("Acme cork mat, Cork Mat, travel-mat!, ", "Acme") == "cork mat,travelmat"
    assert clean_backend_terms("") == ""


def test_clean_backend_terms_caps_bytes() -> None:
    terms = ", ".join(f"yoga term number {index}" for index in range(40))

    cleaned = clean_backend_terms(terms)

    assert len(cleaned.encode("utf-8")) <= 250
    assert cleaned.startswith("yoga term number 0,yoga term number 1")


def test_count_keyword_usage_whole_words() -> None:
    assert count_keyword_usage("Cork yoga mat, corkscrew, cork", ["cork"]) == 2


def test_params_from_mapping_validates() -> None:
    params = GenerateListingParams.from_mapping(
        {
            "productName": "Cork Yoga Mat",
            "category": "Sports",
            "keywords": [{"phrase": "cork yoga mat", "searchVolume": 900, "selected": True}],
            "uniqueSellingPoints": ["natural cork"],
            "templateId": "storytelling",
            "section": "bullets",
        }
    )

    assert params.keywords[0].search_volume == 900
    assert params.unique_selling_points == ["natural cork"]
    assert params.template_id == "storytelling"
    assert params.selected_phrases() == ["cork yoga mat"]

    with pytest.raises(ValueError, match="productName and category are required"):
        GenerateListingParams.from_mapping({"productName": "Mat"})
    with pytest.raises(ValueError, match="section must be one of"):
        GenerateListingParams.from_mapping({"productName": "Mat", "category": "Sports", "section": "faq"})


def test_generate_full_listing_post_processes_reply() -> None:
    reply = json.dumps(
        {
            "title": "acme cork yoga mat for home and travel",
            "bullets": ["Grippy natural cork surface", "Rolls up small"],
            "description": "<p>The best “cork” mat…</p>",
            "backendTerms": "Acme travel mat, cork, cork",
        }
    )
    llm = FakeLLM([reply])
    generator = ListingGenerator(Settings(listing_templates_path=None), llm)

    listing = generator.generate(_params())

    assert listing.title == "Acme Cork Yoga Mat for Home and Travel"
    assert listing.description == '<p>The best "cork" mat...</p>'
    assert listing.backend_terms == "travel mat,cork"
    assert "Title length 38 outside range 150-200" in listing.warnings
    assert "Bullet 1 length 27 outside range 180-220" in listing.warnings
    assert "Description contains banned words: best" in listing.warnings
    assert listing.keyword_usage == {"title": 2, "bullets": 0, "description": 0}
    assert listing.keyword_density == {"title": 25.0, "bullets": 0.0, "description": 0.0}

    call = llm.calls[0]
    assert call["max_tokens"] == 4000
    assert [message["role"] for message in call["messages"]] == ["system", "user"]
    assert "Must Include (Primary): cork yoga mat, travel" in call["messages"][1]["content"]


def test_generate_single_section_uses_requested_template() -> None:
    llm = FakeLLM(["Acme Cork Mat"])
    registry = TemplateRegistry()
    registry.register(
        template_from_mapping(
            {"name": "Loud", "titleMinChars": 5, "titleMaxChars": 60, "titleCapitalization": "all-caps"}
        )
    )
    generator = ListingGenerator(Settings(listing_templates_path=None), llm, registry)

    listing = generator.generate(_params(template_id="loud", section="title"))

    assert listing.title == "ACME CORK MAT"
    assert listing.warnings == []
    assert listing.bullets == []
    assert llm.calls[0]["max_tokens"] == 1500


def test_generate_long_title_is_truncated_with_warning() -> None:
    llm = FakeLLM(["word " * 60])
    generator = ListingGenerator(Settings(listing_templates_path=None), llm)

    listing = generator.generate(_params(section="title"))

    assert len(listing.title) == 200
    assert listing.warnings == ["Title length 299 outside range 150-200"]


def test_generate_retries_with_backoff() -> None:
    sleeps: list[float] = []
    llm = FakeLLM([LLMError("timeout"), LLMError("timeout"), "Acme Cork Mat"])
    settings = Settings(listing_templates_path=None, listing_max_attempts=3)
    generator = ListingGenerator(settings, llm, sleep=sleeps.append)

    listing = generator.generate(_params(section="description"))

    assert listing.description == "Acme Cork Mat"
    assert sleeps == [1.0, 2.0]


def test_generate_reports_attempt_count_after_exhausting_retries() -> None:
    llm = FakeLLM([LLMError("timeout"), LLMError("timeout")])
    settings = Settings(listing_templates_path=None, listing_max_attempts=2)
    generator = ListingGenerator(settings, llm, sleep=lambda _: None)

    with pytest.raises(ListingGenerationError, match="after 2 attempts"):
        generator.generate(_params(section="title"))


def test_generate_single_attempt_surfaces_parse_error() -> None:
    generator = ListingGenerator(Settings(listing_templates_path=None), FakeLLM(["not json"]))

    with pytest.raises(ListingGenerationError, match="Invalid response format from AI"):
        generator.generate(_params())


def test_generate_single_attempt_wraps_llm_error() -> None:
    generator = ListingGenerator(Settings(listing_templates_path=None), FakeLLM([LLMError("boom")]))

    with pytest.raises(ListingGenerationError, match="Failed to generate listing: boom"):
        generator.generate(_params(section="title"))
