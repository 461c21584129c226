"""Стратегии выполнения проксируемых запросов: bare, epoxy и перезаписывающий прокси"""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
from aiohttp import web

from core.proxy.backend_registry import BackendRegistry
from core.proxy.content_rewriter import ContentRewriter
from core.proxy.content_types import ContentKind, classify
from core.proxy.errors import MissingTargetError
from core.proxy.headers import (
    BROWSER_USER_AGENT,
    apply_allow_origin,
    apply_bare_cors,
    response_headers,
    spoofed_browser_headers,
)
from core.proxy.paths import PROXY_PREFIX
from core.proxy.target_extractor import build_descriptor, resolve_bare_target

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_SCHEME_PATTERN = re.compile(r'^(https?):/*', re.IGNORECASE)


def text_response(text: str, status: int) -> web.Response:
    return web.Response(text=text, status=status, content_type='text/plain')


class BaseAdapter:
    """
    Общая часть адаптеров: лимит одновременных upstream запросов,
    потоковая передача ответа и превращение ошибок в HTTP ответы
    """

    name = 'Proxy'

    def __init__(self, session: aiohttp.ClientSession,
                 semaphore: Optional[asyncio.Semaphore] = None,
                 timeout: Optional[aiohttp.ClientTimeout] = None):
        self.session = session
        self.semaphore = semaphore
        self.timeout = timeout

    async def handle(self, request: web.Request) -> web.StreamResponse:
        try:
            return await self._handle(request)

        except MissingTargetError as e:
            logger.debug(f"{self.name}: {e} ({request.path_qs})")
            return text_response(str(e), 400)

        except Exception as e:
            logger.error(f"❌ {self.name} error for {request.path_qs}: {e!r}")
            return text_response(f"{self.name} error: {e}", 500)

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        raise NotImplementedError

    @asynccontextmanager
    async def _limit(self):
        if self.semaphore is None:
            yield
            return
        async with self.semaphore:
            yield

    async def _stream(self, request: web.Request, upstream: aiohttp.ClientResponse,
                      headers) -> web.StreamResponse:
        """Передает тело upstream ответа клиенту без изменений"""
        response = web.StreamResponse(status=upstream.status, reason=upstream.reason, headers=headers)
        await response.prepare(request)

        try:
            async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
                await response.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # Заголовки уже отправлены, остается только оборвать соединение
            logger.error(f"❌ {self.name}: upstream stream broken for {request.path_qs}: {e!r}")
            response.force_close()
            return response

        await response.write_eof()
        return response


class BareAdapter(BaseAdapter):
    """Пересылает запрос на один из bare-серверов реестра"""

    name = 'Bare server'

    def __init__(self, session: aiohttp.ClientSession, registry: BackendRegistry, **kwargs):
        super().__init__(session, **kwargs)
        self.registry = registry

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        target_url = await resolve_bare_target(request)
        if not target_url:
            raise MissingTargetError('Missing target URL')

        descriptor = await build_descriptor(request, target_url)
        bare_server = self.registry.choose()
        upstream_url = f"{bare_server}{descriptor.target_url}"

        logger.debug(f"🔀 Bare: {descriptor.method} {descriptor.target_url} via {bare_server}")

        async with self._limit():
            async with self.session.request(
                    method=descriptor.method,
                    url=upstream_url,
                    headers=descriptor.headers,
                    data=descriptor.body,
                    allow_redirects=False,
                    timeout=self.timeout
            ) as upstream:
                headers = apply_bare_cors(response_headers(upstream.headers.items()), bare_server)
                return await self._stream(request, upstream, headers)


class EpoxyAdapter(BaseAdapter):
    """Прямой запрос по ?url= с браузерными заголовками, без перезаписи"""

    name = 'Epoxy'

    def __init__(self, session: aiohttp.ClientSession, user_agent: str = BROWSER_USER_AGENT, **kwargs):
        super().__init__(session, **kwargs)
        self.user_agent = user_agent

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        target_url = request.query.get('url')
        if not target_url:
            raise MissingTargetError('Missing URL parameter for Epoxy')

        async with self._limit():
            async with self.session.get(
                    target_url,
                    headers=spoofed_browser_headers(self.user_agent),
                    allow_redirects=True,
                    timeout=self.timeout
            ) as upstream:
                headers = apply_allow_origin(response_headers(upstream.headers.items()))
                return await self._stream(request, upstream, headers)


class RewritingAdapter(BaseAdapter):
    """
    Прокси общего назначения: /proxy/<url>

    HTML ответы перезаписываются через ContentRewriter, чтобы ресурсы
    страницы тоже загружались через прокси. Остальное передается потоком.

    Базой для относительных ссылок служит итоговый URL после редиректов,
    а не запрошенный целевой URL: после редиректа относительные ссылки
    документа указывают на новый адрес.
    """

    name = 'Proxy'

    def __init__(self, session: aiohttp.ClientSession, rewriter: Optional[ContentRewriter] = None,
                 absolute_links: bool = False, user_agent: str = BROWSER_USER_AGENT, **kwargs):
        super().__init__(session, **kwargs)
        self.rewriter = rewriter or ContentRewriter()
        self.absolute_links = absolute_links
        self.user_agent = user_agent

    @staticmethod
    def resolve_target(request: web.Request) -> Optional[str]:
        """
        Целевой URL из пути запроса

        Строка запроса сохраняется. Хост без схемы получает https://,
        схлопнутые слэши (https:/host) восстанавливаются.
        """
        target = request.rel_url.raw_path[len(PROXY_PREFIX):]
        if not target:
            return None

        query = request.rel_url.raw_query_string
        if query:
            target = f"{target}?{query}"

        if _SCHEME_PATTERN.match(target):
            return _SCHEME_PATTERN.sub(lambda m: f"{m.group(1).lower()}://", target, count=1)
        return f"https://{target}"

    def _prefix_for(self, request: web.Request) -> str:
        if self.absolute_links:
            return f"{request.scheme}://{request.host}{PROXY_PREFIX}"
        return PROXY_PREFIX

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        full_url = self.resolve_target(request)
        if not full_url:
            raise MissingTargetError('Please provide a URL')

        async with self._limit():
            async with self.session.get(
                    full_url,
                    headers=spoofed_browser_headers(self.user_agent, language=True),
                    allow_redirects=True,
                    timeout=self.timeout
            ) as upstream:

                if classify(upstream.headers.get('Content-Type')) is ContentKind.HTML:
                    text = await upstream.text(errors='replace')
                    # Базой служит итоговый URL после редиректов
                    base_url = str(upstream.url)
                    rewritten = self.rewriter.rewrite(text, base_url, self._prefix_for(request))

                    logger.debug(f"✏️ Rewrote HTML from {base_url} ({len(text)} → {len(rewritten)} chars)")

                    return web.Response(
                        text=rewritten,
                        status=upstream.status,
                        content_type='text/html',
                        headers={'Access-Control-Allow-Origin': '*'}
                    )

                headers = apply_allow_origin(response_headers(upstream.headers.items()))
                return await self._stream(request, upstream, headers)
