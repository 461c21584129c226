# core/proxy/origin.py
"""Загрузка собственных ресурсов приложения с origin сервера"""

import asyncio
import logging
from typing import Optional

import aiohttp

from core.proxy.cache_manager import Cache, StoredResponse, is_cacheable, request_key
from core.proxy.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class OriginClient:
    """Сеть для собственных ресурсов: origin, который хостит статику приложения"""

    def __init__(self, session: aiohttp.ClientSession, origin_url: str,
                 timeout: Optional[aiohttp.ClientTimeout] = None):
        """
        Args:
            session: Общая клиентская сессия
            origin_url: URL origin сервера (например, http://127.0.0.1:8000)
            timeout: Таймаут одного запроса
        """
        self.session = session
        self.origin_url = origin_url.rstrip('/')
        self.timeout = timeout

    def url_for(self, path_qs: str) -> str:
        if not path_qs.startswith('/'):
            path_qs = f"/{path_qs}"
        return f"{self.origin_url}{path_qs}"

    async def fetch(self, path_qs: str, method: str = 'GET', headers=None,
                    body: Optional[bytes] = None) -> StoredResponse:
        """
        Запрашивает путь у origin и читает ответ целиком

        Raises:
            UpstreamFailure: Ошибка сети или таймаут
        """
        url = self.url_for(path_qs)
        logger.debug(f"Origin fetch: {method} {url}")

        try:
            async with self.session.request(
                    method,
                    url,
                    headers=headers,
                    data=body,
                    allow_redirects=True,
                    timeout=self.timeout
            ) as response:
                return await StoredResponse.from_client_response(response)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamFailure(f"Origin fetch failed for {path_qs}: {e!r}") from e

    async def add(self, cache: Cache, path: str) -> StoredResponse:
        """
        Загружает путь и кладет ответ в пространство кэша

        Raises:
            UpstreamFailure: Ошибка сети или ответ не кэшируемый (не 200)
        """
        stored = await self.fetch(path)
        if not is_cacheable('GET', stored.status):
            raise UpstreamFailure(f"Origin returned HTTP {stored.status} for {path}")

        await cache.put(request_key('GET', path), stored)
        return stored
