"""Metrics helpers that log structured events and optionally feed Prometheus."""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

try:  # pragma: no cover - optional dependency
    from prometheus_client import (
        CONTENT_TYPE_LATEST,
        CollectorRegistry,
        Counter as PromCounter,
        Histogram as PromHistogram,
        generate_latest,
    )

    _PROMETHEUS_AVAILABLE = True
except Exception:  # pragma: no cover - dependency missing
    CollectorRegistry = None  # type: ignore[assignment]
    PromCounter = None  # type: ignore[assignment]
    PromHistogram = None  # type: ignore[assignment]
    CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"
    generate_latest = None  # type: ignore[assignment]
    _PROMETHEUS_AVAILABLE = False


_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")


class MetricsRecorder:
    """Emit pipeline metrics as log lines and, when enabled, Prometheus series."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "sellerdesk",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "sellerdesk"
        self._logger = logger or logging.getLogger("sellerdesk.metrics")
        self._registry = (
            CollectorRegistry() if prometheus_enabled and _PROMETHEUS_AVAILABLE else None
        )
        self._series: dict[tuple[str, str, tuple[str, ...]], Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._registry is not None

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if self._registry is None or generate_latest is None:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        clean_tags = _clean(tags)
        self._emit(metric, {"value": int(value)}, clean_tags)
        series = self._prom_series("counter", metric, clean_tags)
        if series is not None:
            series.inc(float(max(int(value), 0)))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Emit a timing metric, logging milliseconds and observing seconds."""

        if not self._enabled:
            return
        clean_tags = _clean(tags)
        duration_ms = max(duration_seconds * 1000.0, 0.0)
        self._emit(metric, {"duration_ms": round(duration_ms, 4)}, clean_tags)
        series = self._prom_series("histogram", metric, clean_tags)
        if series is not None:
            series.observe(max(duration_seconds, 0.0))

    @contextmanager
    def track_timing(self, metric: str, **tags: Any) -> Iterator[None]:
        """Record the wall-clock duration of the wrapped block."""

        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={_stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={_stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _prom_series(self, kind: str, metric: str, tags: dict[str, Any]):
        if self._registry is None:
            return None
        label_keys = tuple(sorted(tags))
        label_names = tuple(_PROM_NAME_RE.sub("_", key) or "label" for key in label_keys)
        key = (kind, metric, label_names)
        collector = self._series.get(key)
        if collector is None:
            factory = PromCounter if kind == "counter" else PromHistogram
            name = f"{_PROM_NAME_RE.sub('_', self._namespace)}_{_PROM_NAME_RE.sub('_', metric)}"
            collector = factory(  # type: ignore[misc]
                name.strip("_"),
                f"{metric} {kind}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._series[key] = collector
        if not label_names:
            return collector
        values = {name: _stringify(tags[raw]) for name, raw in zip(label_names, label_keys)}
        return collector.labels(**values)


def _clean(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in tags.items() if value is not None}


def _stringify(value: Any) -> str:
    if isinstance(value, float):
        return f"{int(value)}" if value.is_integer() else f"{value:.4f}"
    return str(value)


__all__ = ["MetricsRecorder"]
