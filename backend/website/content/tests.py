import asyncio
import json
import socketserver
import tempfile
import threading
from datetime import datetime, timezone as dt_timezone
from pathlib import Path
from unittest import mock

from django.apps import apps
from django.core.cache import cache
from django.test import SimpleTestCase, override_settings
from redis.exceptions import ConnectionError as RedisConnectionError

from content.assembler import PageAssembler
from content.cache_keys import detail_cache_key, list_cache_key
from content.constants import Category, Locale
from content.exceptions import ContentNotFound, InvalidContent, MalformedKey, StoreUnavailable
from content.registry import ContentItem, ContentRegistry, load_registry
from content.resolver import list_published, locale_links, static_params
from content.store import ViewStore, build_key
from content.tasks import revalidate, revalidate_pages


def at(day):
    return datetime.fromisoformat(day).replace(tzinfo=dt_timezone.utc)


def make_item(slug, lang="en", date=None, published=True, title=None):
    return ContentItem(
        slug=slug,
        lang=Locale(lang),
        title=title or slug.replace("-", " ").title(),
        description=f"About {slug}",
        date=at(date) if date else None,
        published=published,
        body={"code": f"compiled({slug})"},
    )


def fake_redis(counters=None):
    counters = counters or {}
    client = mock.AsyncMock()
    client.get.side_effect = lambda key: counters.get(key)
    client.mget.side_effect = lambda keys: [counters.get(k) for k in keys]
    return client


def blog_registry():
    return ContentRegistry([
        make_item("hello-world", "en", "2024-01-01"),
        make_item("draft-notes", "en", "2024-02-01", published=False),
        make_item("halo-dunia", "id", "2024-02-15"),
        make_item("rust-async", "en", "2024-03-01"),
        make_item("catatan", "id", "2024-04-01", published=False),
    ])


def project_registry():
    return ContentRegistry([make_item("unkey", "en", "2023-06-01")])


RECORD = {
    "slug": "hello-world",
    "lang": "en",
    "title": "Hello World",
    "description": "First post",
    "date": "2024-01-01",
    "published": True,
    "body": {"raw": "# Hello", "code": "var Component=..."},
}


class ContentRegistryTests(SimpleTestCase):
    def test_find_one_matches_slug_and_lang(self):
        registry = blog_registry()
        item = registry.find_one("halo-dunia", "id")
        self.assertEqual(item.slug, "halo-dunia")
        self.assertEqual(item.lang, Locale.ID)
        self.assertIs(registry.find_one("halo-dunia", Locale.ID), item)

    def test_find_one_has_no_locale_fallback(self):
        registry = blog_registry()
        self.assertIsNone(registry.find_one("halo-dunia", "en"))
        self.assertIsNone(registry.find_one("ghost", "en"))

    def test_every_pair_is_found(self):
        registry = blog_registry()
        for item in registry.list_all():
            self.assertIs(registry.find_one(item.slug, item.lang), item)

    def test_find_by_slug_returns_first_in_registry_order(self):
        registry = ContentRegistry([
            make_item("intro", "id", "2024-01-01"),
            make_item("intro", "en", "2024-01-02"),
        ])
        self.assertEqual(registry.find_by_slug("intro").lang, Locale.ID)
        self.assertIsNone(registry.find_by_slug("outro"))

    def test_duplicate_pair_rejected(self):
        with self.assertRaises(InvalidContent):
            ContentRegistry([make_item("a"), make_item("a")])

    def test_list_all_is_immutable(self):
        registry = blog_registry()
        self.assertIsInstance(registry.list_all(), tuple)
        self.assertEqual(len(registry), 5)

    def test_from_records_validates_and_types(self):
        registry = ContentRegistry.from_records([RECORD])
        item = registry.find_one("hello-world", "en")
        self.assertEqual(item.lang, Locale.EN)
        self.assertEqual(item.date, at("2024-01-01"))
        self.assertTrue(item.published)
        self.assertEqual(item.body, RECORD["body"])

    def test_from_records_defaults(self):
        record = {k: v for k, v in RECORD.items() if k not in ("date", "published")}
        item = ContentRegistry.from_records([record]).find_one("hello-world", "en")
        self.assertIsNone(item.date)
        self.assertFalse(item.published)

    def test_from_records_strips_markup_from_display_strings(self):
        record = dict(RECORD, title="Hello <em>World</em>", description="<p>First</p> post")
        item = ContentRegistry.from_records([record]).find_one("hello-world", "en")
        self.assertEqual(item.title, "Hello World")
        self.assertEqual(item.description, "First post")

    def test_from_records_keeps_special_characters_in_display_strings(self):
        record = dict(RECORD, title="Rust & Go", description="a < b, <b>bold</b> &amp; done")
        item = ContentRegistry.from_records([record]).find_one("hello-world", "en")
        self.assertEqual(item.title, "Rust & Go")
        self.assertEqual(item.description, "a < b, bold & done")

    def test_from_records_rejects_slug_shadowed_by_locale_listing(self):
        for code in Locale.values:
            with self.assertRaises(InvalidContent):
                ContentRegistry.from_records([dict(RECORD, slug=code)])

    def test_from_records_rejects_missing_title(self):
        record = {k: v for k, v in RECORD.items() if k != "title"}
        with self.assertRaisesMessage(InvalidContent, "#0"):
            ContentRegistry.from_records([record])

    def test_from_records_rejects_unknown_locale(self):
        with self.assertRaises(InvalidContent):
            ContentRegistry.from_records([dict(RECORD, lang="fr")])

    def test_from_records_rejects_bad_date(self):
        with self.assertRaises(InvalidContent):
            ContentRegistry.from_records([dict(RECORD, date="someday")])

    def test_load_registry_reads_generated_index(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "_index.json"
            path.write_text(json.dumps([RECORD]), encoding="utf-8")
            registry = load_registry(path)
        self.assertEqual(len(registry), 1)

    def test_load_registry_missing_file_is_empty(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertLogs("content.registry", "WARNING"):
                registry = load_registry(Path(tmp) / "missing.json")
        self.assertEqual(len(registry), 0)

    def test_load_registry_rejects_non_array(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "_index.json"
            path.write_text(json.dumps(RECORD), encoding="utf-8")
            with self.assertRaises(InvalidContent):
                load_registry(path)


class LocaleResolverTests(SimpleTestCase):
    def test_published_in_locale_most_recent_first(self):
        slugs = [item.slug for item in list_published(blog_registry(), "en")]
        self.assertEqual(slugs, ["rust-async", "hello-world"])

    def test_never_returns_unpublished_or_other_locale(self):
        for lang in Locale.values:
            for item in list_published(blog_registry(), lang):
                self.assertTrue(item.published)
                self.assertEqual(item.lang, lang)

    def test_undated_items_come_first(self):
        registry = ContentRegistry([
            make_item("old", "en", "2024-01-01"),
            make_item("new", "en", "2024-03-01"),
            make_item("undated", "en"),
        ])
        slugs = [item.slug for item in list_published(registry, "en")]
        self.assertEqual(slugs, ["undated", "new", "old"])

    def test_equal_dates_keep_registry_order(self):
        registry = ContentRegistry([
            make_item("first", "en", "2024-01-01"),
            make_item("second", "en", "2024-01-01"),
            make_item("undated-a", "en"),
            make_item("undated-b", "en"),
            make_item("third", "en", "2024-01-01"),
        ])
        slugs = [item.slug for item in list_published(registry, "en")]
        self.assertEqual(slugs, ["undated-a", "undated-b", "first", "second", "third"])

    def test_unknown_locale_lists_nothing(self):
        self.assertEqual(list_published(blog_registry(), "fr"), [])

    def test_static_params_cover_published_items(self):
        self.assertEqual(
            static_params(blog_registry()),
            [("en", "hello-world"), ("id", "halo-dunia"), ("en", "rust-async")],
        )

    def test_locale_links(self):
        links = locale_links(Category.BLOGS, active="id")
        self.assertEqual([link["path"] for link in links], ["/blogs/en/", "/blogs/id/"])
        self.assertEqual([link["active"] for link in links], [False, True])


class ViewStoreTests(SimpleTestCase):
    def test_build_key(self):
        self.assertEqual(build_key("blogs", "hello-world"), "pageviews:blogs:hello-world")
        self.assertEqual(build_key(Category.PROJECTS, "unkey"), "pageviews:projects:unkey")

    def test_build_key_rejects_malformed_parts(self):
        for category, slug in [("blogs", ""), ("", "x"), ("notes", "x"), ("blogs", "a:b"), ("blogs", "a b")]:
            with self.assertRaises(MalformedKey):
                build_key(category, slug)

    async def test_get_missing_key_is_zero(self):
        store = ViewStore(fake_redis())
        self.assertEqual(await store.get("pageviews:blogs:never"), 0)

    async def test_get_parses_stored_value(self):
        store = ViewStore(fake_redis({"pageviews:blogs:hello-world": "42"}))
        self.assertEqual(await store.get("pageviews:blogs:hello-world"), 42)

    async def test_batch_get_single_round_trip_in_order(self):
        client = fake_redis({"pageviews:blogs:hello-world": "42"})
        store = ViewStore(client)
        keys = ["pageviews:blogs:hello-world", "pageviews:blogs:missing"]
        self.assertEqual(await store.batch_get(keys), [42, 0])
        client.mget.assert_awaited_once_with(keys)
        client.get.assert_not_awaited()

    async def test_batch_get_empty_skips_store(self):
        client = fake_redis()
        self.assertEqual(await ViewStore(client).batch_get([]), [])
        client.mget.assert_not_awaited()

    async def test_non_integer_value_reads_as_zero(self):
        store = ViewStore(fake_redis({"pageviews:blogs:a": "7", "pageviews:blogs:b": "lots"}))
        with self.assertLogs("content.store", "WARNING"):
            counts = await store.batch_get(["pageviews:blogs:a", "pageviews:blogs:b"])
        self.assertEqual(counts, [7, 0])

    async def test_transport_failure_is_store_unavailable(self):
        client = fake_redis()
        client.get.side_effect = RedisConnectionError("connection refused")
        with self.assertRaises(StoreUnavailable):
            await ViewStore(client).get("pageviews:blogs:a")

    async def test_timeout_is_store_unavailable(self):
        async def slow(keys):
            await asyncio.sleep(1)

        client = fake_redis()
        client.mget.side_effect = slow
        with self.assertRaises(StoreUnavailable):
            await ViewStore(client, timeout=0.01).batch_get(["pageviews:blogs:a"])

    async def test_unexpected_client_failure_is_store_unavailable(self):
        client = fake_redis()
        client.get.side_effect = RuntimeError("Event loop is closed")
        with self.assertRaises(StoreUnavailable):
            await ViewStore(client).get("pageviews:blogs:a")

    async def test_short_mget_answer_is_store_unavailable(self):
        client = fake_redis()
        client.mget.side_effect = lambda keys: ["1"]
        with self.assertRaises(StoreUnavailable):
            await ViewStore(client).batch_get(["pageviews:blogs:a", "pageviews:blogs:b"])

    async def test_from_url_applies_timeout(self):
        store = ViewStore.from_url("redis://localhost:6379/0", timeout=0.5)
        kwargs = store.client.connection_pool.connection_kwargs
        self.assertEqual(kwargs["socket_timeout"], 0.5)
        self.assertTrue(kwargs["decode_responses"])


class PageAssemblerTests(SimpleTestCase):
    def assembler(self, counters=None, client=None):
        registries = {"blogs": blog_registry(), "projects": project_registry()}
        return PageAssembler(registries, ViewStore(client or fake_redis(counters)))

    async def test_detail_with_locale(self):
        page = await self.assembler({"pageviews:blogs:halo-dunia": "5"}).detail("blogs", "halo-dunia", "id")
        self.assertEqual(page.item.slug, "halo-dunia")
        self.assertEqual(page.view_count, 5)

    async def test_detail_without_locale(self):
        page = await self.assembler({"pageviews:projects:unkey": "9"}).detail("projects", "unkey")
        self.assertEqual(page.item.title, "Unkey")
        self.assertEqual(page.view_count, 9)

    async def test_detail_ignores_published_flag(self):
        page = await self.assembler().detail("blogs", "draft-notes", "en")
        self.assertFalse(page.item.published)
        self.assertEqual(page.view_count, 0)

    async def test_detail_not_found(self):
        client = fake_redis()
        with self.assertRaises(ContentNotFound):
            await self.assembler(client=client).detail("blogs", "ghost", "en")
        client.get.assert_not_awaited()

    async def test_unknown_category_not_found(self):
        with self.assertRaises(ContentNotFound):
            await self.assembler().listing("notes", "en")

    async def test_detail_degrades_when_store_is_down(self):
        client = fake_redis()
        client.get.side_effect = RedisConnectionError("down")
        with self.assertLogs("content.assembler", "WARNING"):
            page = await self.assembler(client=client).detail("blogs", "hello-world", "en")
        self.assertEqual(page.view_count, 0)

    async def test_listing_zips_counts_by_position(self):
        client = fake_redis({"pageviews:blogs:hello-world": "42", "pageviews:blogs:rust-async": "3"})
        page = await self.assembler(client=client).listing("blogs", "en")
        self.assertEqual([item.slug for item in page.items], ["rust-async", "hello-world"])
        self.assertEqual(page.view_counts, {"rust-async": 3, "hello-world": 42})
        client.mget.assert_awaited_once_with(["pageviews:blogs:rust-async", "pageviews:blogs:hello-world"])

    async def test_listing_survives_store_timeout(self):
        registry = ContentRegistry([make_item(f"post-{n}", "en", f"2024-0{n}-01") for n in range(1, 6)])

        async def slow(keys):
            await asyncio.sleep(1)

        client = fake_redis()
        client.mget.side_effect = slow
        assembler = PageAssembler({"blogs": registry}, ViewStore(client, timeout=0.01))
        with self.assertLogs("content.assembler", "WARNING"):
            page = await assembler.listing("blogs", "en")
        self.assertEqual(len(page.items), 5)
        self.assertEqual(set(page.view_counts.values()), {0})

    async def test_reads_are_idempotent(self):
        assembler = self.assembler({"pageviews:blogs:hello-world": "42"})
        self.assertEqual(await assembler.listing("blogs", "en"), await assembler.listing("blogs", "en"))
        self.assertEqual(
            await assembler.detail("blogs", "hello-world", "en"),
            await assembler.detail("blogs", "hello-world", "en"),
        )


class ContentViewTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.client_mock = fake_redis({"pageviews:blogs:hello-world": "42", "pageviews:projects:unkey": "7"})
        self.assembler = PageAssembler(
            {"blogs": blog_registry(), "projects": project_registry()}, ViewStore(self.client_mock)
        )
        patcher = mock.patch("content.views.get_assembler", return_value=self.assembler)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_listing(self):
        res = await self.async_client.get("/blogs/en/")
        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertEqual(data["lang"], "en")
        self.assertEqual([item["slug"] for item in data["items"]], ["rust-async", "hello-world"])
        self.assertEqual(data["views"], {"rust-async": 0, "hello-world": 42})
        self.assertNotIn("body", data["items"][0])
        self.assertEqual([link["active"] for link in data["locales"]], [True, False])

    async def test_category_index_uses_default_locale(self):
        res = await self.async_client.get("/projects/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["views"], {"unkey": 7})

    async def test_detail(self):
        res = await self.async_client.get("/blogs/en/hello-world/")
        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertEqual(data["views"], 42)
        self.assertEqual(data["item"]["body"], {"code": "compiled(hello-world)"})
        self.assertEqual(data["metadata"], {"title": "Hello World", "description": "About hello-world"})

    async def test_legacy_detail(self):
        res = await self.async_client.get("/blogs/halo-dunia/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["item"]["lang"], "id")

    async def test_not_found(self):
        res = await self.async_client.get("/blogs/en/ghost/")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["metadata"]["title"], "Not Found | Nabil")

    async def test_unknown_locale_is_a_legacy_slug(self):
        res = await self.async_client.get("/blogs/fr/")
        self.assertEqual(res.status_code, 404)

    async def test_pages_are_cached_for_the_revalidation_window(self):
        await self.async_client.get("/blogs/en/")
        await self.async_client.get("/blogs/en/")
        self.client_mock.mget.assert_awaited_once()
        self.assertIsNotNone(await cache.aget(list_cache_key("blogs", "en")))

    @override_settings(CONTENT_SITE_NAME="Example")
    async def test_not_found_title_uses_site_name(self):
        res = await self.async_client.get("/projects/ghost/")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["metadata"]["title"], "Not Found | Example")

    async def test_not_found_is_not_cached(self):
        await self.async_client.get("/blogs/en/ghost/")
        self.assertIsNone(await cache.aget(detail_cache_key("blogs", "ghost", "en")))


class RevalidationTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.registries = {"blogs": blog_registry(), "projects": project_registry()}

    async def test_revalidate_caches_every_static_page(self):
        assembler = PageAssembler(self.registries, ViewStore(fake_redis({"pageviews:blogs:hello-world": "42"})))
        pages = await revalidate(assembler)
        # 2 categories x 2 locales of listings, 4 published details, 4 slug-only details
        self.assertEqual(pages, 12)
        detail = await cache.aget(detail_cache_key("blogs", "hello-world", "en"))
        self.assertEqual(detail["views"], 42)
        legacy = await cache.aget(detail_cache_key("blogs", "halo-dunia"))
        self.assertEqual(legacy["item"]["lang"], "id")
        self.assertIsNotNone(await cache.aget(list_cache_key("projects", "id")))
        self.assertIsNone(await cache.aget(detail_cache_key("blogs", "draft-notes", "en")))

    def test_task_uses_its_own_store(self):
        client = fake_redis()
        config = apps.get_app_config("content")
        with mock.patch.object(config, "registries", self.registries), \
                mock.patch("content.tasks.ViewStore.from_url", return_value=ViewStore(client)):
            self.assertEqual(revalidate_pages(), 12)
        client.aclose.assert_awaited_once()


class SitemapTests(SimpleTestCase):
    def test_sitemap_lists_published_pages(self):
        config = apps.get_app_config("content")
        registries = {"blogs": blog_registry(), "projects": project_registry()}
        with mock.patch.object(config, "registries", registries):
            res = self.client.get("/sitemap.xml")
        self.assertEqual(res.status_code, 200)
        body = res.content.decode()
        self.assertIn("/blogs/en/hello-world/", body)
        self.assertIn("/blogs/id/halo-dunia/", body)
        self.assertIn("/projects/en/unkey/", body)
        self.assertNotIn("draft-notes", body)


class CounterServerHandler(socketserver.StreamRequestHandler):
    """Answers GET and MGET in RESP2 from ``server.counters``; OK to anything else."""

    def bulk(self, value):
        if value is None:
            return b"$-1\r\n"
        data = str(value).encode()
        return b"$%d\r\n%s\r\n" % (len(data), data)

    def handle(self):
        while True:
            header = self.rfile.readline()
            if not header:
                return
            args = []
            for _ in range(int(header[1:])):
                self.rfile.readline()
                args.append(self.rfile.readline()[:-2].decode())
            command = args[0].upper()
            counters = self.server.counters
            if command == "GET":
                self.wfile.write(self.bulk(counters.get(args[1])))
            elif command == "MGET":
                keys = args[1:]
                self.wfile.write(b"*%d\r\n" % len(keys) + b"".join(self.bulk(counters.get(k)) for k in keys))
            else:
                self.wfile.write(b"+OK\r\n")


class ViewStoreEventLoopTests(SimpleTestCase):
    """A real redis.asyncio store behind the sync client, where every request gets a new loop."""

    def setUp(self):
        cache.clear()
        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), CounterServerHandler)
        server.daemon_threads = True
        server.counters = {"pageviews:blogs:hello-world": "42", "pageviews:blogs:rust-async": "3"}
        threading.Thread(target=server.serve_forever, daemon=True).start()
        self.addCleanup(server.server_close)
        self.addCleanup(server.shutdown)

        host, port = server.server_address
        store = ViewStore.from_url(f"redis://{host}:{port}/0", timeout=2.0)
        assembler = PageAssembler({"blogs": blog_registry(), "projects": project_registry()}, store)
        patcher = mock.patch("content.views.get_assembler", return_value=assembler)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_sequential_requests_each_read_counters(self):
        for path, views in [
            ("/blogs/en/hello-world/", 42),
            ("/blogs/en/rust-async/", 3),
            ("/blogs/id/halo-dunia/", 0),
        ]:
            res = self.client.get(path)
            self.assertEqual(res.status_code, 200, path)
            self.assertEqual(res.json()["views"], views, path)

    def test_sequential_listings_each_read_counters(self):
        for lang in ("en", "id", "en"):
            cache.clear()
            res = self.client.get(f"/blogs/{lang}/")
            self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["views"], {"rust-async": 3, "hello-world": 42})
