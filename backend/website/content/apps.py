from pathlib import Path

from django.apps import AppConfig
from django.conf import settings


class ContentConfig(AppConfig):
    name = "content"
    verbose_name = "Content (registry & view counts)"

    registries = None
    view_store = None

    def ready(self):
        from .constants import CATEGORY_SOURCES
        from .registry import load_registry
        from .store import ViewStore

        content_dir = Path(settings.CONTENT_DIR)
        self.registries = {
            str(category): load_registry(content_dir / source)
            for category, source in CATEGORY_SOURCES.items()
        }
        # connects lazily, on the first read
        self.view_store = ViewStore.from_url(
            settings.VIEW_STORE_URL, timeout=settings.CONTENT_VIEW_STORE_TIMEOUT
        )

    def assembler(self):
        from .assembler import PageAssembler
        return PageAssembler(self.registries, self.view_store)
