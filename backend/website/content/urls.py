from django.urls import path, register_converter

from .constants import Category, Locale
from .views import content_detail, content_listing


class LocaleConverter:
    regex = "|".join(Locale.values)

    def to_python(self, value):
        return Locale(value)

    def to_url(self, value):
        return str(value)


class CategoryConverter:
    regex = "|".join(Category.values)

    def to_python(self, value):
        return Category(value)

    def to_url(self, value):
        return str(value)


register_converter(LocaleConverter, "locale")
register_converter(CategoryConverter, "category")

app_name = "content"

# locale routes come first: /blogs/en/ is a listing, /blogs/hello-world/ a legacy detail
urlpatterns = [
    path("<category:category>/", content_listing, name="index"),
    path("<category:category>/<locale:lang>/", content_listing, name="listing"),
    path("<category:category>/<locale:lang>/<str:slug>/", content_detail, name="detail"),
    path("<category:category>/<str:slug>/", content_detail, name="legacy-detail"),
]
