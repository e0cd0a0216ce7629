"""
Read-only client for the external page view counter store.

Counters live in a Redis-protocol key-value service under
``pageviews:<category>:<slug>``. This process never writes them; it reads
single keys with GET and listings with one MGET round trip.
"""
import asyncio
import functools
import logging
import re
import weakref
from typing import Optional, Sequence

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .constants import VIEW_KEY_PREFIX, Category
from .exceptions import MalformedKey, StoreUnavailable

logger = logging.getLogger(__name__)

SLUG_FORBIDDEN = re.compile(r"[\s:]")


def build_key(category, slug: str) -> str:
    if category not in Category.values:
        raise MalformedKey(f"Unknown view counter category {category!r}")
    if not slug or SLUG_FORBIDDEN.search(slug):
        raise MalformedKey(f"Cannot build a view counter key from slug {slug!r}")
    return ":".join([VIEW_KEY_PREFIX, str(category), slug])


def parse_count(key: str, raw) -> int:
    if raw is None:
        return 0
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", "replace")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("View counter %s holds a non-integer value %r; reading it as 0", key, raw)
        return 0
    if value < 0:
        logger.warning("View counter %s is negative (%d); reading it as 0", key, value)
        return 0
    return value


class ViewStore:
    """
    Holds one ``redis.asyncio.Redis`` handle per running event loop. Under
    ASGI that is a single handle shared by every request; under WSGI each
    request runs on its own short-lived loop and gets a fresh pool, since
    asyncio connections cannot outlive the loop that opened them.
    """

    def __init__(self, client=None, timeout: Optional[float] = None, client_factory=None):
        if client is None and client_factory is None:
            raise ValueError("ViewStore needs a client or a client_factory")
        self._client = client
        self._client_factory = client_factory
        self._loop_clients = weakref.WeakKeyDictionary()
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, timeout: Optional[float] = None, **kwargs) -> "ViewStore":
        kwargs.setdefault("decode_responses", True)
        if timeout is not None:
            kwargs.setdefault("socket_timeout", timeout)
            kwargs.setdefault("socket_connect_timeout", timeout)
        return cls(client_factory=functools.partial(aioredis.from_url, url, **kwargs), timeout=timeout)

    @property
    def client(self):
        """Client bound to the running event loop; must be read inside a coroutine."""
        if self._client is not None:
            return self._client
        loop = asyncio.get_running_loop()
        client = self._loop_clients.get(loop)
        if client is None:
            for stale in [lp for lp in self._loop_clients if lp.is_closed()]:
                del self._loop_clients[stale]
            client = self._loop_clients[loop] = self._client_factory()
        return client

    async def _call(self, command: str, *args):
        try:
            operation = getattr(self.client, command)
            return await asyncio.wait_for(operation(*args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailable(f"View store did not answer within {self.timeout}s") from exc
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(f"View store read failed: {exc}") from exc
        except Exception as exc:
            # closed loops, protocol surprises: a counter read never fails a page
            raise StoreUnavailable(f"View store client failed: {exc!r}") from exc

    async def get(self, key: str) -> int:
        raw = await self._call("get", key)
        return parse_count(key, raw)

    async def batch_get(self, keys: Sequence[str]) -> list:
        """Counts for ``keys`` in the same order, fetched in a single MGET."""
        keys = list(keys)
        if not keys:
            return []
        raw_values = await self._call("mget", keys)
        if raw_values is None or len(raw_values) != len(keys):
            raise StoreUnavailable(
                f"View store answered MGET of {len(keys)} keys with "
                f"{0 if raw_values is None else len(raw_values)} values"
            )
        return [parse_count(key, raw) for key, raw in zip(keys, raw_values)]

    async def aclose(self):
        """Close the client of the running loop."""
        if self._client is not None:
            await self._client.aclose()
            return
        client = self._loop_clients.pop(asyncio.get_running_loop(), None)
        if client is not None:
            await client.aclose()

    def __repr__(self):
        return f"<ViewStore timeout={self.timeout} loops={len(self._loop_clients)}>"
