"""Closed vocabularies shared by the registry, the store keys and the routes."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class Locale(models.TextChoices):
    """Locales content is published in.

    Adding a member here is enough to route, list and validate a new locale;
    records tagged with anything else are rejected at ingestion.
    """

    EN = "en", _("English")
    ID = "id", _("Indonesian")


DEFAULT_LOCALE = Locale.EN


class Category(models.TextChoices):
    BLOGS = "blogs", _("Blogs")
    PROJECTS = "projects", _("Projects")


# generated index file per category, relative to CONTENT_DIR
CATEGORY_SOURCES = {
    Category.BLOGS: "Blog/_index.json",
    Category.PROJECTS: "Project/_index.json",
}

VIEW_KEY_PREFIX = "pageviews"
