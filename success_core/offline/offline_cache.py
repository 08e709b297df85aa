# =============================================================================
# success_core/offline/offline_cache.py
# Versioned network-first response cache with offline fallback
# =============================================================================
"""
OfflineCache - network interception for the dashboard shell.

Works like a browser service worker: a versioned bucket of precached assets
is installed, the newest version activates and deletes the old ones, and
every intercepted GET goes to the network first. Successful responses are
copied into the active bucket; when the network fails the cached copy (or,
for page navigations, the cached root document) is served instead.

API and Supabase traffic is never cached here; those requests pass straight
through to the network.

Usage:
    cache = OfflineCache(SQLiteResponseStore(db), AiohttpFetcher(), base_url)
    await cache.install("client-success-app-v1", DEFAULT_PRECACHE_MANIFEST)
    response = await cache.handle_fetch(Request(url, mode="navigate"))
"""

from __future__ import annotations
import asyncio
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence
from urllib.parse import urldefrag, urljoin
import logging

import aiohttp

from success_core.errors import CacheInstallError, NetworkError, SyncTimeoutError

from .local_database import LocalDatabase

logger = logging.getLogger(__name__)

CACHEABLE_STATUS = 200
SKIP_WAITING = "SKIP_WAITING"
DEFAULT_EXCLUDE_PATTERNS = ("/api/", "supabase")


class WorkerState(Enum):
    """Lifecycle of the most recent cache version."""
    IDLE = "idle"
    INSTALLING = "installing"
    WAITING = "waiting"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


@dataclass(frozen=True)
class Request:
    """An intercepted request. `mode="navigate"` marks a page load."""
    url: str
    method: str = "GET"
    mode: str = "cors"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate"


@dataclass(frozen=True)
class Response:
    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding)

    def json(self) -> Any:
        return json.loads(self.body)


def _cache_key(url: str) -> str:
    return urldefrag(url)[0]


# =============================================================================
# RESPONSE STORES
# =============================================================================

class ResponseStore(Protocol):
    """Buckets of responses, one bucket per cache version."""

    def put(self, version: str, method: str, response: Response) -> None:
        ...

    def put_many(self, version: str, method: str, responses: Sequence[Response]) -> None:
        ...

    def get(self, version: str, url: str, method: str) -> Optional[Response]:
        ...

    def versions(self) -> List[str]:
        ...

    def delete_version(self, version: str) -> None:
        ...

    def count(self, version: str) -> int:
        ...


class MemoryResponseStore:
    """In-process buckets. Lost on restart."""

    def __init__(self):
        self._buckets: Dict[str, Dict[tuple, Response]] = {}

    def put(self, version: str, method: str, response: Response) -> None:
        self._buckets.setdefault(version, {})[(_cache_key(response.url), method)] = response

    def put_many(self, version: str, method: str, responses: Sequence[Response]) -> None:
        bucket = dict(self._buckets.get(version, {}))
        for response in responses:
            bucket[(_cache_key(response.url), method)] = response
        self._buckets[version] = bucket

    def get(self, version: str, url: str, method: str) -> Optional[Response]:
        return self._buckets.get(version, {}).get((_cache_key(url), method))

    def versions(self) -> List[str]:
        return sorted(self._buckets)

    def delete_version(self, version: str) -> None:
        self._buckets.pop(version, None)

    def count(self, version: str) -> int:
        return len(self._buckets.get(version, {}))


class SQLiteResponseStore:
    """Durable buckets in LocalDatabase.cached_responses."""

    def __init__(self, db: LocalDatabase):
        self.db = db.initialize()

    def put(self, version: str, method: str, response: Response) -> None:
        self.db.put_response(
            version, _cache_key(response.url), method, response.status, response.headers, response.body
        )

    def put_many(self, version: str, method: str, responses: Sequence[Response]) -> None:
        self.db.put_responses(version, (
            {
                "url": _cache_key(r.url),
                "method": method,
                "status": r.status,
                "headers": r.headers,
                "body": r.body,
            }
            for r in responses
        ))

    def get(self, version: str, url: str, method: str) -> Optional[Response]:
        row = self.db.get_response(version, _cache_key(url), method)
        if row is None:
            return None
        return Response(url=row["url"], status=row["status"], headers=row["headers"], body=row["body"])

    def versions(self) -> List[str]:
        return self.db.response_versions()

    def delete_version(self, version: str) -> None:
        self.db.delete_response_version(version)

    def count(self, version: str) -> int:
        return self.db.count_responses(version)


# =============================================================================
# FETCHER
# =============================================================================

class Fetcher(Protocol):
    async def fetch(self, request: Request) -> Response:
        """Perform the request. Raises NetworkError when the network fails."""
        ...


class AiohttpFetcher:
    """Network fetcher on a lazily created aiohttp.ClientSession."""

    def __init__(self, timeout: float = 15.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    async def get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                )
                self._owns_session = True
                logger.debug("aiohttp.ClientSession created")
            return self._session

    async def fetch(self, request: Request) -> Response:
        session = await self.get_session()
        try:
            async with session.request(request.method, request.url, headers=request.headers) as resp:
                body = await resp.read()
                return Response(
                    url=request.url,
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=body,
                )
        except asyncio.TimeoutError as e:
            raise SyncTimeoutError(f"Request timed out: {request.url}", timeout=self.timeout) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed: {e}", url=request.url) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed and self._owns_session:
            await self._session.close()
            logger.debug("aiohttp.ClientSession closed")
        self._session = None


# =============================================================================
# OFFLINE CACHE
# =============================================================================

class OfflineCache:
    """
    Versioned network-first cache.

    `state` tracks the most recent version handed to install(); requests are
    served from `active_version`, which only changes on activate().
    """

    def __init__(
        self,
        store: ResponseStore,
        fetcher: Fetcher,
        base_url: str,
        exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
    ):
        self.store = store
        self.fetcher = fetcher
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.exclude_patterns = list(exclude_patterns)
        self.state = WorkerState.IDLE
        self.active_version: Optional[str] = None
        self.waiting_version: Optional[str] = None
        self._restore()

    def _restore(self) -> None:
        # After activate() exactly one bucket is left, so a lone bucket in a
        # durable store is the version that was active before the restart.
        versions = self.store.versions()
        if len(versions) == 1:
            self.active_version = versions[0]
            self.state = WorkerState.ACTIVE
            logger.info(f"Restored active cache {self.active_version}")
        elif versions:
            logger.warning(f"Found {len(versions)} cache versions, waiting for a fresh install")

    def resolve(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def is_excluded(self, url: str) -> bool:
        return any(pattern in url for pattern in self.exclude_patterns)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def install(self, version: str, manifest: Sequence[str]) -> None:
        """
        Precache every manifest entry under `version`.

        All or nothing: if any entry fails, nothing is stored and
        CacheInstallError is raised.
        """
        self.state = WorkerState.INSTALLING
        urls = [self.resolve(path) for path in manifest]
        logger.info(f"Caching {len(urls)} core assets for {version}")

        results = await asyncio.gather(
            *(self.fetcher.fetch(Request(url)) for url in urls),
            return_exceptions=True,
        )

        failed: List[str] = []
        responses: List[Response] = []
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.warning(f"Precache failed for {url}: {result}")
                failed.append(url)
            elif result.status != CACHEABLE_STATUS:
                logger.warning(f"Precache got status {result.status} for {url}")
                failed.append(url)
            else:
                responses.append(result)

        if failed:
            self.state = WorkerState.REDUNDANT
            raise CacheInstallError(
                f"Install of {version} failed for {len(failed)} asset(s)",
                version=version,
                failed_urls=failed,
            )

        self.store.put_many(version, "GET", responses)

        if self.active_version is None or self.active_version == version:
            self.waiting_version = version
            self.activate()
        else:
            self.waiting_version = version
            self.state = WorkerState.WAITING
            logger.info(f"Cache {version} installed, waiting to activate")

    def activate(self) -> bool:
        """Make the waiting version current and delete every other version."""
        version = self.waiting_version
        if version is None:
            return False

        self.state = WorkerState.ACTIVATING
        for name in self.store.versions():
            if name != version:
                logger.info(f"Removing old cache: {name}")
                self.store.delete_version(name)

        self.active_version = version
        self.waiting_version = None
        self.state = WorkerState.ACTIVE
        logger.info(f"Cache {version} active")
        return True

    def handle_message(self, message: Any) -> bool:
        """Control channel. {"type": "SKIP_WAITING"} activates a waiting version now."""
        if isinstance(message, dict) and message.get("type") == SKIP_WAITING:
            return self.activate()
        return False

    # -------------------------------------------------------------------------
    # Interception
    # -------------------------------------------------------------------------

    async def handle_fetch(self, request: Request) -> Response:
        if (
            request.method.upper() != "GET"
            or self.is_excluded(request.url)
            or self.active_version is None
        ):
            return await self.fetcher.fetch(request)

        version = self.active_version
        try:
            response = await self.fetcher.fetch(request)
        except NetworkError:
            cached = self.store.get(version, request.url, "GET")
            if cached is not None:
                logger.debug(f"Offline, serving cached {request.url}")
                return replace(cached, from_cache=True)
            if request.is_navigation:
                root = self.store.get(version, self.resolve("/"), "GET")
                if root is not None:
                    logger.debug(f"Offline, serving cached root for {request.url}")
                    return replace(root, from_cache=True)
            raise

        if response.status == CACHEABLE_STATUS:
            try:
                self.store.put(version, "GET", replace(response, url=request.url))
            except Exception as e:
                logger.warning(f"Could not cache {request.url}: {e}")
        return response
