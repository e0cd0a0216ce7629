class ContentError(Exception):
    """Base class for content resolution errors."""


class ContentNotFound(ContentError):
    def __init__(self, category, slug, lang=None):
        self.category = category
        self.slug = slug
        self.lang = lang
        where = f"{category}/{lang}/{slug}" if lang else f"{category}/{slug}"
        super().__init__(f"No content at {where}")


class StoreUnavailable(ContentError):
    """The view counter store could not answer a read."""


class MalformedKey(ContentError, ValueError):
    pass


class InvalidContent(ContentError):
    """A generated content record failed validation at ingestion."""
