#!/usr/bin/env python3
"""CLI utility to run the keyword pipeline and print the classified keywords."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import yaml

from sellerdesk.cache import build_cache
from sellerdesk.config import Settings
from sellerdesk.keyword_service import KeywordGenerationRequest, KeywordService
from sellerdesk.llm import ChatCompletionClient, LLMError
from sellerdesk.rank_data import RankDataClient


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate scored and clustered Amazon keywords.")
    parser.add_argument("--asin", action="append", default=[], help="Competitor ASIN (repeatable)")
    parser.add_argument("--seed", action="append", default=[], help="Seed keyword (repeatable)")
    parser.add_argument("--category", default="General", help="Product category for seed expansion")
    parser.add_argument("--marketplace", default="US", help="Marketplace code, e.g. US, UK, DE")
    parser.add_argument(
        "--text-file",
        type=Path,
        default=None,
        help="Text file whose n-grams are added as extracted keywords",
    )
    parser.add_argument(
        "--format",
        choices=("json", "yaml"),
        default="json",
        help="Output format written to stdout",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = Settings.from_env()
    metrics = settings.build_metrics_recorder()
    try:
        llm = ChatCompletionClient(settings, metrics=metrics)
    except LLMError as exc:
        print(f"LLM disabled: {exc}", file=sys.stderr)
        llm = None
    rank_data = RankDataClient(settings) if settings.has_dataforseo_credentials else None
    service = KeywordService(
        settings,
        cache=build_cache(settings, metrics=metrics),
        llm=llm,
        rank_data=rank_data,
        metrics=metrics,
    )

    text = args.text_file.read_text(encoding="utf-8") if args.text_file else None
    request = KeywordGenerationRequest(
        marketplace=args.marketplace.upper(),
        asin_list=args.asin,
        seeds=args.seed,
        category=args.category,
        text=text,
    )
    if not (request.asin_list or request.seeds or request.text):
        print("Provide at least one --asin, --seed or --text-file", file=sys.stderr)
        return 2

    result = service.generate_keywords(request).to_dict()
    if args.format == "yaml":
        yaml.safe_dump(result, stream=sys.stdout, allow_unicode=True, sort_keys=False)
    else:
        json.dump(result, sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
