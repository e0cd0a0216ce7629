"""
ASGI entrypoint. Content views are async and share one view store
connection pool, so the site is served from a single event loop per process.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "website.settings")

application = get_asgi_application()
