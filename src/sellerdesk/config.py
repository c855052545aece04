"""Configuration helpers for the sellerdesk service."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import TYPE_CHECKING, Final

try:  # pragma: no cover - optional dependency loaded at runtime
    from dotenv import load_dotenv
except Exception:  # pragma: no cover
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()

if TYPE_CHECKING:
    from .observability import MetricsRecorder

_DEFAULT_CHAT_BACKEND: Final[str] = "openai"
_DEFAULT_OPENAI_CHAT_MODEL: Final[str] = "gpt-4o"
_DEFAULT_MISTRAL_URL: Final[str] = "https://api.mistral.ai/v1"
_DEFAULT_MISTRAL_MODEL: Final[str] = "mistral-large-latest"
_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434"
_DEFAULT_OLLAMA_MODEL: Final[str] = "llama3.1:8b"
_DEFAULT_VLLM_URL: Final[str] = "http://localhost:8000"
_DEFAULT_VLLM_MODEL: Final[str] = "meta-llama/Meta-Llama-3-8B-Instruct"
_DEFAULT_LLM_TIMEOUT: Final[float] = 60.0
_DEFAULT_DATAFORSEO_URL: Final[str] = "https://api.dataforseo.com/v3/dataforseo_labs"
_DEFAULT_RANK_DATA_TIMEOUT: Final[float] = 30.0
_DEFAULT_RANK_DATA_LIMIT: Final[int] = 500
_DEFAULT_CACHE_BACKEND: Final[str] = "memory"
_DEFAULT_CACHE_TIMEOUT: Final[float] = 2.0
_DEFAULT_KEYWORD_ASIN_CACHE_TTL: Final[int] = 3_600
_DEFAULT_KEYWORD_EXPAND_CACHE_TTL: Final[int] = 86_400
_DEFAULT_LISTING_DRAFT_CACHE_TTL: Final[int] = 3_600
_DEFAULT_KEYWORD_CLUSTER_THRESHOLD: Final[float] = 0.5
_DEFAULT_KEYWORD_SEED_EXPANSION_COUNT: Final[int] = 30
_DEFAULT_KEYWORD_MAX_ASINS: Final[int] = 10
_DEFAULT_KEYWORD_EXTRACT_MAX_CHARS: Final[int] = 20_000
_DEFAULT_LISTING_TEMPLATE: Final[str] = "professional-seo"
_DEFAULT_LISTING_TEMPLATES_PATH: Final[str] = "templates/listing_templates.yaml"
_DEFAULT_LISTING_TEMPERATURE: Final[float] = 0.7
_DEFAULT_LISTING_MAX_ATTEMPTS: Final[int] = 1


_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


def _env_text(name: str) -> str | None:
    """Return the stripped value of ``name``; unset and blank both read as ``None``."""

    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip() or None


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    text = _env_text(name)
    if text is None:
        value = default
    else:
        try:
            value = int(text)
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be an integer") from exc
    return value if minimum is None else max(minimum, value)


def _env_float(name: str, default: float) -> float:
    """Float variable with a fallback; an explicit zero is kept."""

    text = _env_text(name)
    if text is None:
        return default
    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_bool(name: str, default: bool) -> bool:
    text = _env_text(name)
    if text is None:
        return default
    lowered = text.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean value (true/false).")


def normalize_openai_compatible_base_url(url: str) -> str:
    """
    Strip trailing chat-completion path segments from an OpenAI-compatible URL.

    ``http://host:8000/v1/chat/completions`` and ``http://host:8000/v1`` both
    resolve to ``http://host:8000`` so callers can append ``/v1/chat/completions``.
    """

    base_url = (url or "").strip().rstrip("/")
    for suffix in ("/chat/completions", "/v1"):
        if base_url.endswith(suffix):
            base_url = base_url[: -len(suffix)]
    return base_url.rstrip("/")


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    chat_backend: str = _DEFAULT_CHAT_BACKEND
    openai_api_key: str | None = None
    openai_chat_model: str = _DEFAULT_OPENAI_CHAT_MODEL
    mistral_api_key: str | None = None
    mistral_base_url: str = _DEFAULT_MISTRAL_URL
    mistral_model: str = _DEFAULT_MISTRAL_MODEL
    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_model: str = _DEFAULT_OLLAMA_MODEL
    vllm_base_url: str = _DEFAULT_VLLM_URL
    vllm_model: str = _DEFAULT_VLLM_MODEL
    vllm_api_key: str | None = None
    llm_request_timeout: float = _DEFAULT_LLM_TIMEOUT
    dataforseo_login: str | None = None
    dataforseo_password: str | None = None
    dataforseo_base_url: str = _DEFAULT_DATAFORSEO_URL
    rank_data_timeout: float = _DEFAULT_RANK_DATA_TIMEOUT
    rank_data_limit: int = _DEFAULT_RANK_DATA_LIMIT
    cache_backend: str = _DEFAULT_CACHE_BACKEND
    upstash_redis_rest_url: str | None = None
    upstash_redis_rest_token: str | None = None
    cache_timeout: float = _DEFAULT_CACHE_TIMEOUT
    keyword_asin_cache_ttl: int = _DEFAULT_KEYWORD_ASIN_CACHE_TTL
    keyword_expand_cache_ttl: int = _DEFAULT_KEYWORD_EXPAND_CACHE_TTL
    listing_draft_cache_ttl: int = _DEFAULT_LISTING_DRAFT_CACHE_TTL
    keyword_cluster_threshold: float = _DEFAULT_KEYWORD_CLUSTER_THRESHOLD
    keyword_seed_expansion_count: int = _DEFAULT_KEYWORD_SEED_EXPANSION_COUNT
    keyword_max_asins: int = _DEFAULT_KEYWORD_MAX_ASINS
    keyword_extract_max_chars: int = _DEFAULT_KEYWORD_EXTRACT_MAX_CHARS
    listing_default_template: str = _DEFAULT_LISTING_TEMPLATE
    listing_templates_path: str | None = _DEFAULT_LISTING_TEMPLATES_PATH
    listing_temperature: float = _DEFAULT_LISTING_TEMPERATURE
    listing_max_attempts: int = _DEFAULT_LISTING_MAX_ATTEMPTS
    observability_metrics_enabled: bool = True
    observability_namespace: str = "sellerdesk"
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        env = os.getenv
        return cls(
            chat_backend=env("CHAT_BACKEND", _DEFAULT_CHAT_BACKEND),
            openai_api_key=env("OPENAI_API_KEY"),
            openai_chat_model=env("OPENAI_CHAT_MODEL", _DEFAULT_OPENAI_CHAT_MODEL),
            mistral_api_key=env("MISTRAL_API_KEY"),
            mistral_base_url=env("MISTRAL_BASE_URL", _DEFAULT_MISTRAL_URL),
            mistral_model=env("MISTRAL_MODEL", _DEFAULT_MISTRAL_MODEL),
            ollama_base_url=env("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_model=env("OLLAMA_MODEL", _DEFAULT_OLLAMA_MODEL),
            vllm_base_url=env("VLLM_BASE_URL", _DEFAULT_VLLM_URL),
            vllm_model=env("VLLM_MODEL", _DEFAULT_VLLM_MODEL),
            vllm_api_key=env("VLLM_API_KEY"),
            llm_request_timeout=_env_float("LLM_TIMEOUT", _DEFAULT_LLM_TIMEOUT),
            dataforseo_login=env("DATAFORSEO_LOGIN"),
            dataforseo_password=env("DATAFORSEO_PASSWORD"),
            dataforseo_base_url=env("DATAFORSEO_BASE_URL", _DEFAULT_DATAFORSEO_URL),
            rank_data_timeout=_env_float("RANK_DATA_TIMEOUT", _DEFAULT_RANK_DATA_TIMEOUT),
            rank_data_limit=_env_int("RANK_DATA_LIMIT", _DEFAULT_RANK_DATA_LIMIT, minimum=1),
            cache_backend=env("CACHE_BACKEND", _DEFAULT_CACHE_BACKEND),
            upstash_redis_rest_url=env("UPSTASH_REDIS_REST_URL"),
            upstash_redis_rest_token=env("UPSTASH_REDIS_REST_TOKEN"),
            cache_timeout=_env_float("CACHE_TIMEOUT", _DEFAULT_CACHE_TIMEOUT),
            keyword_asin_cache_ttl=_env_int(
                "KEYWORD_ASIN_CACHE_TTL", _DEFAULT_KEYWORD_ASIN_CACHE_TTL, minimum=0
            ),
            keyword_expand_cache_ttl=_env_int(
                "KEYWORD_EXPAND_CACHE_TTL", _DEFAULT_KEYWORD_EXPAND_CACHE_TTL, minimum=0
            ),
            listing_draft_cache_ttl=_env_int(
                "LISTING_DRAFT_CACHE_TTL", _DEFAULT_LISTING_DRAFT_CACHE_TTL, minimum=0
            ),
            keyword_cluster_threshold=_env_float(
                "KEYWORD_CLUSTER_THRESHOLD", _DEFAULT_KEYWORD_CLUSTER_THRESHOLD
            ),
            keyword_seed_expansion_count=_env_int(
                "KEYWORD_SEED_EXPANSION_COUNT", _DEFAULT_KEYWORD_SEED_EXPANSION_COUNT, minimum=1
            ),
            keyword_max_asins=_env_int("KEYWORD_MAX_ASINS", _DEFAULT_KEYWORD_MAX_ASINS, minimum=1),
            keyword_extract_max_chars=_env_int(
                "KEYWORD_EXTRACT_MAX_CHARS", _DEFAULT_KEYWORD_EXTRACT_MAX_CHARS, minimum=0
            ),
            listing_default_template=env("LISTING_DEFAULT_TEMPLATE", _DEFAULT_LISTING_TEMPLATE),
            listing_templates_path=env("LISTING_TEMPLATES_PATH", _DEFAULT_LISTING_TEMPLATES_PATH),
            listing_temperature=_env_float("LISTING_TEMPERATURE", _DEFAULT_LISTING_TEMPERATURE),
            listing_max_attempts=_env_int(
                "LISTING_MAX_ATTEMPTS", _DEFAULT_LISTING_MAX_ATTEMPTS, minimum=1
            ),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=env("OBSERVABILITY_NAMESPACE", "sellerdesk"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    def _uses_chat_backend(self, name: str) -> bool:
        return self.chat_backend.strip().lower() == name

    @property
    def is_openai_chat_backend(self) -> bool:
        return self._uses_chat_backend("openai")

    @property
    def is_mistral_chat_backend(self) -> bool:
        return self._uses_chat_backend("mistral")

    @property
    def is_ollama_chat_backend(self) -> bool:
        return self._uses_chat_backend("ollama")

    @property
    def is_vllm_chat_backend(self) -> bool:
        return self._uses_chat_backend("vllm")

    @property
    def is_upstash_cache_backend(self) -> bool:
        """Return True when the cache should talk to Upstash Redis over REST."""

        return self.cache_backend.strip().lower() == "upstash"

    @property
    def has_dataforseo_credentials(self) -> bool:
        return bool(self.dataforseo_login and self.dataforseo_password)

    def chat_model_name(self) -> str:
        """Return the model identifier for the configured chat backend."""

        if self.is_mistral_chat_backend:
            return self.mistral_model
        if self.is_ollama_chat_backend:
            return self.ollama_model
        if self.is_vllm_chat_backend:
            return self.vllm_model
        return self.openai_chat_model

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )
