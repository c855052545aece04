"""FastAPI application exposing the keyword and listing pipelines."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from .cache import Cache, build_cache
from .config import Settings
from .keyword_service import KeywordGenerationRequest, KeywordService
from .keywords import extract_keywords_from_text
from .listing import (
    ListingDraft,
    ListingDraftRequest,
    ListingDraftService,
    ListingGenerationError,
    auto_fix_listing,
    validate_listing,
)
from .listing_generator import GenerateListingParams, ListingGenerator
from .llm import ChatCompleter, ChatCompletionClient, LLMError
from .observability import MetricsRecorder
from .rank_data import RankDataClient, RankDataFetcher
from .templates import TemplateLoadError, TemplateRegistry, load_templates, template_from_mapping

logger = logging.getLogger(__name__)


_LOGGING_CONFIGURED = False
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _ensure_logging() -> None:
    """Route ``sellerdesk`` logs through uvicorn's handlers, or stderr when run standalone."""

    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    package_logger = logging.getLogger("sellerdesk")
    shared = logging.getLogger("uvicorn.error").handlers
    if shared:
        package_logger.handlers = list(shared)
    else:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(_LOG_FORMAT))
        package_logger.addHandler(stream)

    if not package_logger.level or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)
    package_logger.propagate = False
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        cache: Cache,
        llm: ChatCompleter | None,
        templates: TemplateRegistry,
        keyword_service: KeywordService,
        listing_generator: ListingGenerator | None,
        draft_service: ListingDraftService | None,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.llm = llm
        self.templates = templates
        self.keyword_service = keyword_service
        self.listing_generator = listing_generator
        self.draft_service = draft_service
        self.metrics = metrics


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _json_object(request: Request) -> dict[str, Any] | None:
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _build_llm(settings: Settings, metrics: MetricsRecorder | None) -> ChatCompleter | None:
    try:
        return ChatCompletionClient(settings, metrics=metrics)
    except LLMError as exc:
        logger.warning("app.llm.disabled reason=%s", exc)
        return None


def _build_templates(settings: Settings) -> TemplateRegistry:
    custom = []
    if settings.listing_templates_path:
        try:
            custom = load_templates(settings.listing_templates_path)
        except TemplateLoadError as exc:
            logger.warning(
                "app.templates.load_failed path=%s error=%s", settings.listing_templates_path, exc
            )
    registry = TemplateRegistry(custom, default_id=settings.listing_default_template)
    logger.info("app.templates.loaded total=%s custom=%s", len(registry), len(custom))
    return registry


def create_app(
    *,
    settings: Settings | None = None,
    cache: Cache | None = None,
    llm: ChatCompleter | None = None,
    rank_data: RankDataFetcher | None = None,
    templates: TemplateRegistry | None = None,
    metrics: MetricsRecorder | None = None,
    keyword_service: KeywordService | None = None,
    listing_generator: ListingGenerator | None = None,
    draft_service: ListingDraftService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    cache = cache or build_cache(settings, metrics=metrics)
    llm = llm or _build_llm(settings, metrics)
    if rank_data is None:
        if settings.has_dataforseo_credentials:
            rank_data = RankDataClient(settings)
        else:
            logger.info("app.rank_data.disabled reason=missing-dataforseo-credentials")
    templates = templates or _build_templates(settings)
    logger.info(
        "app.start chat_backend=%s cache_backend=%s",
        settings.chat_backend,
        settings.cache_backend,
    )

    keyword_service = keyword_service or KeywordService(
        settings, cache=cache, llm=llm, rank_data=rank_data, metrics=metrics
    )
    if listing_generator is None and llm is not None:
        listing_generator = ListingGenerator(settings, llm, templates, metrics=metrics)
    if draft_service is None and llm is not None:
        draft_service = ListingDraftService(settings, llm, cache, metrics=metrics)

    app = FastAPI(title="sellerdesk")
    app.state.services = ApplicationState(
        settings=settings,
        cache=cache,
        llm=llm,
        templates=templates,
        keyword_service=keyword_service,
        listing_generator=listing_generator,
        draft_service=draft_service,
        metrics=metrics,
    )

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_settings_dependency(request: Request) -> Settings:
        return get_state(request).settings

    def get_keyword_service(request: Request) -> KeywordService:
        return get_state(request).keyword_service

    def get_listing_generator(request: Request) -> ListingGenerator | None:
        return get_state(request).listing_generator

    def get_draft_service(request: Request) -> ListingDraftService | None:
        return get_state(request).draft_service

    def get_templates(request: Request) -> TemplateRegistry:
        return get_state(request).templates

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    @app.get("/health", response_class=JSONResponse)
    async def health(settings: Settings = Depends(get_settings_dependency)) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "chatBackend": settings.chat_backend,
                "cacheBackend": settings.cache_backend,
            }
        )

    @app.post("/api/keywords/generate", response_class=JSONResponse)
    async def generate_keywords(
        request: Request,
        service: KeywordService = Depends(get_keyword_service),
    ) -> JSONResponse:
        payload = await _json_object(request)
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        try:
            keyword_request = KeywordGenerationRequest.from_mapping(payload)
        except ValueError as exc:
            return _error(str(exc), 400)
        if not (keyword_request.asin_list or keyword_request.seeds or keyword_request.text):
            return _error("Provide asin_list, seeds or text", 400)
        logger.info(
            "keyword.endpoint.generate marketplace=%s asins=%s seeds=%s",
            keyword_request.marketplace,
            len(keyword_request.asin_list),
            len(keyword_request.seeds),
        )
        try:
            result = await asyncio.to_thread(service.generate_keywords, keyword_request)
        except ValueError as exc:
            return _error(str(exc), 400)
        return JSONResponse(result.to_dict())

    @app.post("/api/keywords/expand", response_class=JSONResponse)
    async def expand_keywords(
        request: Request,
        service: KeywordService = Depends(get_keyword_service),
    ) -> JSONResponse:
        payload = await _json_object(request)
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        try:
            keyword_request = KeywordGenerationRequest.from_mapping(payload)
        except ValueError as exc:
            return _error(str(exc), 400)
        if not keyword_request.seeds:
            return _error("seeds are required", 400)
        keywords = await asyncio.to_thread(
            service.expand_seed_keywords,
            keyword_request.seeds,
            keyword_request.category,
            keyword_request.marketplace,
        )
        return JSONResponse({"keywords": keywords})

    @app.post("/api/keywords/extract", response_class=JSONResponse)
    async def extract_keywords(
        request: Request,
        settings: Settings = Depends(get_settings_dependency),
    ) -> JSONResponse:
        payload = await _json_object(request)
        text = payload.get("text") if payload else None
        if not isinstance(text, str) or not text.strip():
            return _error("text is required", 400)
        keywords = extract_keywords_from_text(text, max_chars=settings.keyword_extract_max_chars)
        return JSONResponse({"keywords": keywords})

    @app.post("/api/listing/generate", response_class=JSONResponse)
    async def generate_listing(
        request: Request,
        generator: ListingGenerator | None = Depends(get_listing_generator),
    ) -> JSONResponse:
        if generator is None:
            return _error("LLM backend is not configured", 503)
        payload = await _json_object(request)
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        try:
            params = GenerateListingParams.from_mapping(payload)
        except (TypeError, ValueError) as exc:
            return _error(str(exc), 400)
        try:
            listing = await asyncio.to_thread(generator.generate, params)
        except ListingGenerationError as exc:
            logger.error("listing.endpoint.generate_failed error=%s", exc)
            return _error(str(exc), 502)
        return JSONResponse(listing.to_dict())

    @app.post("/api/listing/draft", response_class=JSONResponse)
    async def generate_listing_draft(
        request: Request,
        draft_service: ListingDraftService | None = Depends(get_draft_service),
    ) -> JSONResponse:
        if draft_service is None:
            return _error("LLM backend is not configured", 503)
        payload = await _json_object(request)
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        try:
            draft_request = ListingDraftRequest.from_mapping(payload.get("request") or payload)
        except ValueError as exc:
            return _error(str(exc), 400)
        try:
            draft = await asyncio.to_thread(draft_service.generate_draft, draft_request)
        except ListingGenerationError as exc:
            logger.error("listing.endpoint.draft_failed error=%s", exc)
            return _error(str(exc), 502)
        issues = validate_listing(draft, draft_request)
        return JSONResponse(
            {"draft": draft.to_dict(), "issues": [issue.to_dict() for issue in issues]}
        )

    @app.post("/api/listing/validate", response_class=JSONResponse)
    async def validate_listing_endpoint(request: Request) -> JSONResponse:
        payload = await _json_object(request)
        if not payload or not payload.get("draft") or not payload.get("request"):
            return _error("Draft and request parameters are required", 400)
        try:
            draft = ListingDraft.from_mapping(payload["draft"])
            draft_request = ListingDraftRequest.from_mapping(payload["request"])
        except ValueError as exc:
            return _error(str(exc), 400)
        issues = validate_listing(draft, draft_request)
        body: dict[str, Any] = {
            "valid": not any(issue.severity == "error" for issue in issues),
            "issues": [issue.to_dict() for issue in issues],
        }
        if payload.get("autoFix"):
            body["fixed"] = auto_fix_listing(draft, draft_request).to_dict()
        return JSONResponse(body)

    @app.get("/api/listing/templates", response_class=JSONResponse)
    async def list_templates(templates: TemplateRegistry = Depends(get_templates)) -> JSONResponse:
        return JSONResponse({"templates": [template.to_dict() for template in templates.all()]})

    @app.post("/api/listing/templates", response_class=JSONResponse)
    async def create_template(
        request: Request,
        templates: TemplateRegistry = Depends(get_templates),
    ) -> JSONResponse:
        payload = await _json_object(request)
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        try:
            template = templates.register(template_from_mapping(payload))
        except ValueError as exc:
            return _error(str(exc), 400)
        return JSONResponse({"template": template.to_dict()})

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        try:
            payload = metrics.render_prometheus()
        except RuntimeError as exc:  # pragma: no cover
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return Response(content=payload, media_type=metrics.prometheus_content_type)

    return app


__all__ = ["ApplicationState", "create_app"]
