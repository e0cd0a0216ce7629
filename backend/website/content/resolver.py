"""
Locale-aware selection and ordering of registry items.

Everything here is pure and synchronous.
"""
import math

from django.urls import reverse

from .constants import Locale


def effective_timestamp(item) -> float:
    # undated items count as infinitely recent, so they lead every listing
    if item.date is None:
        return math.inf
    return item.date.timestamp()


def list_published(registry, lang) -> list:
    """
    Published items in ``lang``, most recent first.

    The sort is stable: items with the same effective date keep registry order.
    """
    selected = [item for item in registry.list_all() if item.published and item.lang == lang]
    return sorted(selected, key=effective_timestamp, reverse=True)


def static_params(registry) -> list:
    """``(lang, slug)`` of every page that is pre-rendered."""
    return [(str(item.lang), item.slug) for item in registry.list_all() if item.published]


def locale_links(category, active=None) -> list:
    return [
        {
            "lang": value,
            "label": value.upper(),
            "path": reverse("content:listing", kwargs={"category": str(category), "lang": value}),
            "active": value == active,
        }
        for value in Locale.values
    ]
