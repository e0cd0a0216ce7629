import logging

from asgiref.sync import async_to_sync
from celery import shared_task
from django.apps import apps
from django.conf import settings
from django.core.cache import cache

from .assembler import PageAssembler
from .cache_keys import list_cache_key, detail_cache_key
from .constants import Locale
from .resolver import static_params
from .serializers import DetailPageSerializer, ListingPageSerializer
from .store import ViewStore

logger = logging.getLogger(__name__)


async def revalidate(assembler: PageAssembler) -> int:
    """Rebuild and cache every listing and every static detail page."""
    timeout = settings.CONTENT_REVALIDATE_SECONDS
    pages = 0
    for category, registry in assembler.registries.items():
        for lang in Locale.values:
            page = await assembler.listing(category, lang)
            await cache.aset(list_cache_key(category, lang), ListingPageSerializer(page).data, timeout=timeout)
            pages += 1
        for lang, slug in static_params(registry):
            page = await assembler.detail(category, slug, lang)
            await cache.aset(detail_cache_key(category, slug, lang), DetailPageSerializer(page).data, timeout=timeout)
            pages += 1
        # locale-less routes resolve by slug alone, to the first item carrying it
        for slug in dict.fromkeys(slug for _, slug in static_params(registry)):
            page = await assembler.detail(category, slug)
            await cache.aset(detail_cache_key(category, slug), DetailPageSerializer(page).data, timeout=timeout)
            pages += 1
    return pages


async def _revalidate_with_own_store(registries) -> int:
    # a store of its own, closed before the run's event loop goes away
    store = ViewStore.from_url(settings.VIEW_STORE_URL, timeout=settings.CONTENT_VIEW_STORE_TIMEOUT)
    try:
        return await revalidate(PageAssembler(registries, store))
    finally:
        await store.aclose()


@shared_task(ignore_result=True)
def revalidate_pages():
    registries = apps.get_app_config("content").registries
    pages = async_to_sync(_revalidate_with_own_store)(registries)
    logger.info("Revalidated %d content pages", pages)
    return pages
