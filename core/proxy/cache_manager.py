"""Версионированное хранилище кэша для прокси-сервера"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from aiohttp import web
from multidict import CIMultiDict

from core.proxy.headers import response_headers

logger = logging.getLogger(__name__)


def namespace_name(role: str, version: str) -> str:
    """
    Имя пространства кэша с тегом версии

    Args:
        role: Роль пространства ('app' или 'baremux')
        version: Тег версии (например, 'v1')

    Returns:
        str: Имя вида tinkle-app-v1
    """
    return f"tinkle-{role}-{version}"


def request_key(method: str, url: str) -> str:
    """Ключ кэша по идентичности запроса (метод + URL)"""
    return f"{method.upper()} {url}"


def is_cacheable(method: str, status: int) -> bool:
    """Кэшируются только успешные полные ответы на GET"""
    return method.upper() == 'GET' and status == 200


@dataclass(frozen=True)
class StoredResponse:
    """Неизменяемая копия ответа в кэше"""

    body: bytes
    status: int
    headers: Tuple[Tuple[str, str], ...]
    content_type: str

    @classmethod
    async def from_client_response(cls, response) -> 'StoredResponse':
        """Читает тело aiohttp.ClientResponse целиком и фиксирует ответ"""
        body = await response.read()
        headers = response_headers(response.headers.items())
        return cls(
            body=body,
            status=response.status,
            headers=tuple(headers.items()),
            content_type=response.headers.get('Content-Type', 'application/octet-stream'),
        )

    def to_web_response(self) -> web.Response:
        headers = CIMultiDict(self.headers)
        # Ответ без Content-Type получает тип, зафиксированный при сохранении
        headers.setdefault('Content-Type', self.content_type)
        return web.Response(body=self.body, status=self.status, headers=headers)


class Cache(ABC):
    """Одно пространство кэша: ключ запроса → StoredResponse"""

    name: str

    @abstractmethod
    async def match(self, key: str) -> Optional[StoredResponse]:
        ...

    @abstractmethod
    async def put(self, key: str, value: StoredResponse) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def keys(self) -> List[str]:
        ...


class CacheStorage(ABC):
    """Набор именованных пространств кэша"""

    @abstractmethod
    async def open(self, name: str) -> Cache:
        ...

    @abstractmethod
    async def has(self, name: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, name: str) -> bool:
        ...

    @abstractmethod
    async def keys(self) -> List[str]:
        ...

    @abstractmethod
    async def match(self, key: str) -> Optional[StoredResponse]:
        ...


class MemoryCache(Cache):
    """Пространство кэша в памяти с LRU политикой вытеснения"""

    def __init__(self, name: str, maxsize: int = 500):
        """
        Инициализация пространства кэша

        Args:
            name: Имя пространства
            maxsize: Максимальное количество элементов в пространстве
        """
        self.name = name
        self.cache: 'OrderedDict[str, StoredResponse]' = OrderedDict()
        self.maxsize = maxsize
        self.hits = 0
        self.misses = 0
        logger.debug(f"MemoryCache {name} инициализирован: maxsize={maxsize}")

    async def match(self, key: str) -> Optional[StoredResponse]:
        """
        Получить ответ из кэша

        Args:
            key: Ключ кэша (см. request_key)

        Returns:
            StoredResponse или None если не найдено
        """
        if key in self.cache:
            self.hits += 1
            # Перемещаем в конец (most recently used)
            self.cache.move_to_end(key)
            logger.debug(f"Cache HIT [{self.name}]: {key}")
            return self.cache[key]

        self.misses += 1
        logger.debug(f"Cache MISS [{self.name}]: {key}")
        return None

    async def put(self, key: str, value: StoredResponse) -> None:
        """
        Добавить ответ в кэш (последняя запись побеждает)

        Args:
            key: Ключ кэша
            value: Сохраняемый ответ
        """
        if key in self.cache:
            self.cache.move_to_end(key)
        self.cache[key] = value

        # Проверяем лимит и вытесняем старый элемент
        if len(self.cache) > self.maxsize:
            evicted_key = self.cache.popitem(last=False)[0]
            logger.debug(f"Cache EVICT [{self.name}]: {evicted_key}")

    async def delete(self, key: str) -> bool:
        return self.cache.pop(key, None) is not None

    async def keys(self) -> List[str]:
        return list(self.cache.keys())

    def clear(self):
        """Очистить пространство"""
        size_before = len(self.cache)
        self.cache.clear()
        self.hits = 0
        self.misses = 0
        logger.info(f"Cache {self.name} cleared: {size_before} items removed")

    def get_stats(self) -> dict:
        """
        Получить статистику пространства

        Returns:
            dict: Словарь со статистикой
        """
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0

        return {
            'name': self.name,
            'size': len(self.cache),
            'maxsize': self.maxsize,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': f"{hit_rate:.1f}%",
            'total_requests': total
        }

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, key: str) -> bool:
        return key in self.cache


class MemoryCacheStorage(CacheStorage):
    """Хранилище пространств кэша в памяти процесса"""

    def __init__(self, maxsize: int = 500):
        self.maxsize = maxsize
        self._caches: 'OrderedDict[str, MemoryCache]' = OrderedDict()

    async def open(self, name: str) -> MemoryCache:
        """Открывает пространство, создавая его при отсутствии"""
        cache = self._caches.get(name)
        if cache is None:
            cache = MemoryCache(name, maxsize=self.maxsize)
            self._caches[name] = cache
            logger.debug(f"Cache namespace created: {name}")
        return cache

    async def has(self, name: str) -> bool:
        return name in self._caches

    async def delete(self, name: str) -> bool:
        cache = self._caches.pop(name, None)
        if cache is None:
            return False
        logger.debug(f"Cache namespace deleted: {name} ({len(cache)} items)")
        return True

    async def keys(self) -> List[str]:
        return list(self._caches.keys())

    async def match(self, key: str) -> Optional[StoredResponse]:
        """Ищет ответ во всех пространствах в порядке их создания"""
        for cache in list(self._caches.values()):
            if key in cache:
                return await cache.match(key)
        return None

    def get_stats(self) -> Dict[str, dict]:
        return {name: cache.get_stats() for name, cache in self._caches.items()}
