"""
Composes registry content with view counters for one request.

Counter store failures never fail a page: the affected counts read as zero
and the failure is logged.
"""
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .exceptions import ContentNotFound, StoreUnavailable
from .registry import ContentItem, ContentRegistry
from .resolver import list_published
from .store import ViewStore, build_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetailPage:
    category: str
    item: ContentItem
    view_count: int = 0


@dataclass(frozen=True)
class ListingPage:
    category: str
    lang: str
    items: tuple = ()
    view_counts: dict = field(default_factory=dict)


class PageAssembler:
    def __init__(self, registries: Mapping[str, ContentRegistry], store: ViewStore):
        self.registries = registries
        self.store = store

    def registry(self, category) -> ContentRegistry:
        try:
            return self.registries[str(category)]
        except KeyError:
            raise ContentNotFound(category, "") from None

    async def detail(self, category, slug: str, lang: Optional[str] = None) -> DetailPage:
        registry = self.registry(category)
        if lang is None:
            item = registry.find_by_slug(slug)
        else:
            item = registry.find_one(slug, lang)
        if item is None:
            raise ContentNotFound(category, slug, lang)

        key = build_key(category, item.slug)
        try:
            views = await self.store.get(key)
        except StoreUnavailable as exc:
            logger.warning("Serving %s with 0 views: %s", key, exc)
            views = 0
        return DetailPage(category=str(category), item=item, view_count=views)

    async def listing(self, category, lang) -> ListingPage:
        items = list_published(self.registry(category), lang)
        keys = [build_key(category, item.slug) for item in items]
        try:
            counts = await self.store.batch_get(keys)
        except StoreUnavailable as exc:
            logger.warning("Serving %s/%s listing with 0 views for %d items: %s",
                           category, lang, len(keys), exc)
            counts = [0] * len(keys)
        # MGET answers in request order, so counts line up with items by position
        view_counts = {item.slug: count for item, count in zip(items, counts)}
        return ListingPage(category=str(category), lang=str(lang), items=tuple(items), view_counts=view_counts)
