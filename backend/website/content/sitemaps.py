from django.apps import apps
from django.contrib.sitemaps import Sitemap
from django.urls import reverse

class ContentSitemap(Sitemap):
    changefreq = "daily"
    priority = 0.6

    def items(self):
        registries = apps.get_app_config("content").registries
        return [
            (category, item)
            for category, registry in registries.items()
            for item in registry
            if item.published
        ]

    def location(self, entry):
        category, item = entry
        return reverse("content:detail", kwargs={"category": category, "lang": item.lang, "slug": item.slug})

    def lastmod(self, entry):
        return entry[1].date
