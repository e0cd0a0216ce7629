import html

import bleach
from django.conf import settings
from rest_framework import serializers

from .constants import Locale
from .resolver import locale_links


def plain_text(value: str) -> str:
    # markup is stripped; bleach escapes entities, which JSON display strings must not carry
    return html.unescape(bleach.clean(value, tags=set(), attributes={}, strip=True)).strip()


class ContentRecordSerializer(serializers.Serializer):
    """
    Validates one record of the content compiler's generated index.
    """
    slug = serializers.SlugField(max_length=255, allow_unicode=True)
    lang = serializers.ChoiceField(choices=Locale.choices)
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(allow_blank=True)
    date = serializers.DateTimeField(required=False, allow_null=True, default=None)
    published = serializers.BooleanField(required=False, default=False)
    body = serializers.JSONField()

    def validate_slug(self, value):
        # /<category>/<lang>/ is a listing, so such a slug has no legacy route
        if value in Locale.values:
            raise serializers.ValidationError(f"\"{value}\" is reserved for the {value} listing.")
        return value

    def validate_title(self, value):
        cleaned = plain_text(value)
        if not cleaned:
            raise serializers.ValidationError("Title is empty once markup is stripped.")
        return cleaned

    def validate_description(self, value):
        return plain_text(value)

    def validate_lang(self, value):
        return Locale(value)


class ContentListSerializer(serializers.Serializer):
    slug = serializers.CharField()
    lang = serializers.CharField()
    title = serializers.CharField()
    description = serializers.CharField()
    date = serializers.DateTimeField(allow_null=True)
    published = serializers.BooleanField()


class ContentDetailSerializer(ContentListSerializer):
    body = serializers.JSONField()


class PageMetadataSerializer(serializers.Serializer):
    title = serializers.CharField()
    description = serializers.CharField()


class DetailPageSerializer(serializers.Serializer):
    category = serializers.CharField()
    item = ContentDetailSerializer()
    views = serializers.IntegerField(source="view_count")
    metadata = serializers.SerializerMethodField()

    def get_metadata(self, page):
        return PageMetadataSerializer(
            {"title": page.item.title, "description": page.item.description}
        ).data


class ListingPageSerializer(serializers.Serializer):
    category = serializers.CharField()
    lang = serializers.CharField()
    items = ContentListSerializer(many=True)
    views = serializers.DictField(child=serializers.IntegerField(), source="view_counts")
    locales = serializers.SerializerMethodField()

    def get_locales(self, page):
        return locale_links(page.category, active=page.lang)


NOT_FOUND_DESCRIPTIONS = {
    "blogs": "The blog post you are looking for was not found.",
    "projects": "The project you are looking for was not found.",
}


def not_found_metadata(category: str) -> dict:
    return PageMetadataSerializer({
        "title": f"Not Found | {settings.CONTENT_SITE_NAME}",
        "description": NOT_FOUND_DESCRIPTIONS.get(str(category), "The page you are looking for was not found."),
    }).data
