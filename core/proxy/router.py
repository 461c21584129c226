"""Маршрутизация перехваченных запросов по пути"""

import logging
from enum import Enum
from typing import Optional

from aiohttp import web

from core.proxy.adapters import BareAdapter, EpoxyAdapter, RewritingAdapter, text_response
from core.proxy.cache_manager import CacheStorage, StoredResponse, is_cacheable, request_key
from core.proxy.errors import CacheUnavailable, UpstreamFailure
from core.proxy.headers import request_headers
from core.proxy.origin import OriginClient
from core.proxy.paths import (
    BARE_API_PREFIX,
    BARE_PREFIX,
    BARE_WORKER_PATH,
    ENTRY_PATHS,
    EPOXY_PREFIX,
    OWN_PAGE_PATH,
    PROXY_PREFIX,
    UV_PREFIX,
    UV_WORKER_PATH,
)

logger = logging.getLogger(__name__)


class RouteKind(str, Enum):
    ENTRY = "entry"
    OWN_PAGE = "own_page"
    BARE_API = "bare_api"
    BARE_STATIC = "bare_static"
    UV = "uv"
    EPOXY = "epoxy"
    PROXY = "proxy"
    DEFAULT = "default"


def match_route(path: str) -> RouteKind:
    """
    Сопоставляет путь с правилом маршрутизации

    Правила проверяются по приоритету, выигрывает первое совпадение.
    Префиксы не пересекаются.

    Args:
        path: Путь запроса (без строки запроса)

    Returns:
        RouteKind: Вид маршрута
    """
    if path in ENTRY_PATHS:
        return RouteKind.ENTRY
    if path == OWN_PAGE_PATH:
        return RouteKind.OWN_PAGE
    if path.startswith(BARE_PREFIX):
        if path.startswith(BARE_API_PREFIX):
            return RouteKind.BARE_API
        return RouteKind.BARE_STATIC
    if path.startswith(UV_PREFIX):
        return RouteKind.UV
    if path.startswith(EPOXY_PREFIX):
        return RouteKind.EPOXY
    if path.startswith(PROXY_PREFIX):
        return RouteKind.PROXY
    return RouteKind.DEFAULT


class RequestRouter:
    """Направляет запрос в кэш, к origin или в один из адаптеров"""

    def __init__(self, storage: CacheStorage, origin: OriginClient, app_cache_name: str,
                 bare: BareAdapter, epoxy: EpoxyAdapter, rewriting: RewritingAdapter):
        self.storage = storage
        self.origin = origin
        self.app_cache_name = app_cache_name
        self.bare = bare
        self.epoxy = epoxy
        self.rewriting = rewriting

        self._handlers = {
            RouteKind.ENTRY: self.serve_main_page,
            RouteKind.OWN_PAGE: self.serve_own_page,
            RouteKind.BARE_API: self.bare.handle,
            RouteKind.BARE_STATIC: self.serve_bare_static,
            RouteKind.UV: self.serve_uv,
            RouteKind.EPOXY: self.epoxy.handle,
            RouteKind.PROXY: self.rewriting.handle,
            RouteKind.DEFAULT: self.serve_default,
        }

    async def dispatch(self, request: web.Request) -> web.StreamResponse:
        kind = match_route(request.path)
        logger.debug(f"{request.method} {request.path_qs} → {kind.value}")
        return await self._handlers[kind](request)

    async def _cache_match(self, key: str) -> Optional[StoredResponse]:
        """Поиск в кэше; недоступный кэш считается промахом"""
        try:
            return await self.storage.match(key)
        except CacheUnavailable as e:
            logger.warning(f"⚠️ Cache unavailable, falling back to network: {e}")
            return None

    async def _cache_put(self, cache_name: str, key: str, stored: StoredResponse):
        if not is_cacheable('GET', stored.status):
            return
        try:
            cache = await self.storage.open(cache_name)
            await cache.put(key, stored)
        except CacheUnavailable as e:
            logger.warning(f"⚠️ Cache unavailable, response not stored: {e}")

    async def _serve_cached_page(self, error_text: str) -> web.StreamResponse:
        key = request_key('GET', OWN_PAGE_PATH)

        cached = await self._cache_match(key)
        if cached:
            return cached.to_web_response()

        try:
            stored = await self.origin.fetch(OWN_PAGE_PATH)
        except UpstreamFailure as e:
            logger.error(f"❌ {error_text}: {e}")
            return text_response(error_text, 500)

        await self._cache_put(self.app_cache_name, key, stored)
        return stored.to_web_response()

    async def serve_main_page(self, request: web.Request) -> web.StreamResponse:
        """Точка входа приложения отдает собственную страницу"""
        return await self._serve_cached_page(error_text='App not available')

    async def serve_own_page(self, request: web.Request) -> web.StreamResponse:
        return await self._serve_cached_page(error_text='Page not available')

    async def _fetch_from_origin(self, request: web.Request) -> StoredResponse:
        """Передает запрос origin без изменений: метод, заголовки и тело"""
        body = await request.read() if request.body_exists else None
        return await self.origin.fetch(
            request.path_qs,
            method=request.method,
            headers=request_headers(request.headers.items()),
            body=body,
        )

    async def _serve_static(self, request: web.Request, worker_marker: str,
                            worker_path: str) -> web.StreamResponse:
        """
        Статический файл прокси-библиотеки: кэш, иначе origin

        Запросы воркера всегда получают worker_path, остальные
        уходят в сеть как есть.
        """
        cached = await self._cache_match(request_key(request.method, request.path_qs))
        if cached:
            return cached.to_web_response()

        try:
            if worker_marker in request.path:
                stored = await self.origin.fetch(worker_path)
            else:
                stored = await self._fetch_from_origin(request)
        except UpstreamFailure as e:
            logger.error(f"❌ Static fetch failed: {e}")
            return text_response('Network error', 408)
        return stored.to_web_response()

    async def serve_bare_static(self, request: web.Request) -> web.StreamResponse:
        return await self._serve_static(request, 'worker', BARE_WORKER_PATH)

    async def serve_uv(self, request: web.Request) -> web.StreamResponse:
        return await self._serve_static(request, 'sw.js', UV_WORKER_PATH)

    async def serve_default(self, request: web.Request) -> web.StreamResponse:
        """Сначала кэш, затем origin; если не удалось ни то, ни другое - 408"""
        cached = await self._cache_match(request_key(request.method, request.path_qs))
        if cached:
            return cached.to_web_response()

        try:
            stored = await self._fetch_from_origin(request)
        except UpstreamFailure as e:
            logger.error(f"❌ Network error: {e}")
            return text_response('Network error', 408)
        return stored.to_web_response()
