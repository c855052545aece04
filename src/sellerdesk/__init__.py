"""Keyword research and AI listing builder for Amazon sellers."""

from __future__ import annotations

from .config import Settings
from .keywords import Keyword, KeywordCluster, RawKeywordData
from .listing import ListingDraft, ListingDraftRequest, ValidationIssue

__all__ = [
    "Keyword",
    "KeywordCluster",
    "KeywordService",
    "ListingDraft",
    "ListingDraftRequest",
    "ListingGenerator",
    "RawKeywordData",
    "Settings",
    "ValidationIssue",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "KeywordService":
        from .keyword_service import KeywordService

        return KeywordService
    if name == "ListingGenerator":
        from .listing_generator import ListingGenerator

        return ListingGenerator
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'sellerdesk' has no attribute {name}")
