from django.contrib.sitemaps.views import sitemap
from django.urls import include, path

from content.sitemaps import ContentSitemap

urlpatterns = [
    path("sitemap.xml", sitemap, {"sitemaps": {"content": ContentSitemap}}, name="sitemap"),
    path("", include("content.urls")),
]
