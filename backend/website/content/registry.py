"""
Build-time content registry.

Each category's generated index is read once at startup, validated record by
record, and kept as an immutable, ordered collection of ``ContentItem``.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Optional

from .constants import Locale
from .exceptions import InvalidContent
from .serializers import ContentRecordSerializer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentItem:
    slug: str
    lang: Locale
    title: str
    description: str = ""
    date: Optional[datetime] = None
    published: bool = False
    # precompiled renderable content, passed through untouched
    body: Any = field(default=None, compare=False, repr=False)


class ContentRegistry:
    """
    Immutable set of content items for one category, in ingestion order.
    ``(slug, lang)`` is unique within a registry.
    """

    def __init__(self, items: Iterable[ContentItem] = ()):
        self._items = tuple(items)
        index = {}
        for item in self._items:
            key = (item.slug, str(item.lang))
            if key in index:
                raise InvalidContent(f"Duplicate content item {item.lang}/{item.slug}")
            index[key] = item
        self._index = MappingProxyType(index)

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "ContentRegistry":
        items = []
        for position, record in enumerate(records):
            ser = ContentRecordSerializer(data=record)
            if not ser.is_valid():
                raise InvalidContent(f"Content record #{position} is invalid: {dict(ser.errors)}")
            items.append(ContentItem(**ser.validated_data))
        return cls(items)

    def find_one(self, slug: str, lang: str) -> Optional[ContentItem]:
        return self._index.get((slug, str(lang)))

    def find_by_slug(self, slug: str) -> Optional[ContentItem]:
        """First item with this slug in registry order, whatever its locale."""
        return next((item for item in self._items if item.slug == slug), None)

    def list_all(self) -> tuple:
        return self._items

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def __repr__(self):
        return f"<ContentRegistry items={len(self._items)}>"


def load_registry(path) -> ContentRegistry:
    path = Path(path)
    if not path.exists():
        logger.warning("Content index %s does not exist; serving no content from it", path)
        return ContentRegistry()
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidContent(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(records, list):
        raise InvalidContent(f"{path} must hold a JSON array of content records")
    registry = ContentRegistry.from_records(records)
    logger.info("Loaded %d content items from %s", len(registry), path)
    return registry
