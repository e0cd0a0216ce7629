import logging

from django.apps import apps
from django.conf import settings
from django.core.cache import cache
from django.http import JsonResponse

from .cache_keys import list_cache_key, detail_cache_key
from .constants import DEFAULT_LOCALE
from .exceptions import ContentNotFound
from .serializers import DetailPageSerializer, ListingPageSerializer, not_found_metadata

logger = logging.getLogger(__name__)


def get_assembler():
    return apps.get_app_config("content").assembler()


async def content_listing(request, category, lang=DEFAULT_LOCALE):
    key = list_cache_key(category, lang)
    data = await cache.aget(key)
    if data is None:
        page = await get_assembler().listing(category, lang)
        data = ListingPageSerializer(page).data
        await cache.aset(key, data, timeout=settings.CONTENT_REVALIDATE_SECONDS)
    return JsonResponse(data)


async def content_detail(request, category, slug, lang=None):
    key = detail_cache_key(category, slug, lang)
    data = await cache.aget(key)
    if data is None:
        try:
            page = await get_assembler().detail(category, slug, lang)
        except ContentNotFound as exc:
            logger.info("%s", exc)
            return JsonResponse(
                {"detail": "Not found.", "metadata": not_found_metadata(category)}, status=404
            )
        data = DetailPageSerializer(page).data
        await cache.aset(key, data, timeout=settings.CONTENT_REVALIDATE_SECONDS)
    return JsonResponse(data)
