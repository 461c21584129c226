"""Жизненный цикл прокси: установка кэшей, активация и управляющие сообщения"""

import asyncio
import logging
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from core.proxy.backend_registry import BackendRegistry
from core.proxy.cache_manager import Cache, CacheStorage
from core.proxy.errors import ProxyError
from core.proxy.origin import OriginClient

logger = logging.getLogger(__name__)

DEFAULT_APP_PRECACHE = ('/codes.html', '/')
DEFAULT_PROXY_PRECACHE = (
    '/baremux/index.js',
    '/baremux/worker.js',
    '/uv/uv.bundle.js',
    '/uv/uv.config.js',
    '/uv/uv.sw.js',
    '/uv/uv.handler.js',
    '/epoxy/index.mjs',
)

MESSAGE_SKIP_WAIT = 'skip-wait'
MESSAGE_GET_BACKEND_LIST = 'get-backend-list'
MESSAGE_BACKEND_LIST = 'backend-list'

# Старые имена сообщений клиента
_MESSAGE_ALIASES = {
    'SKIP_WAITING': MESSAGE_SKIP_WAIT,
    'GET_BARE_SERVERS': MESSAGE_GET_BACKEND_LIST,
}


class LifecycleState(str, Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"


class UnknownMessageError(ValueError):
    """Управляющее сообщение неизвестного типа"""


class LifecycleManager:
    """
    Управляет пространствами кэша текущего поколения прокси

    install() создает оба пространства и прогревает их (ошибки отдельных
    файлов не мешают установке), activate() удаляет все устаревшие
    пространства и начинает обслуживать клиентов.
    """

    def __init__(self, storage: CacheStorage, origin: OriginClient, registry: BackendRegistry,
                 app_cache_name: str, proxy_cache_name: str,
                 app_precache: Iterable[str] = DEFAULT_APP_PRECACHE,
                 proxy_precache: Iterable[str] = DEFAULT_PROXY_PRECACHE,
                 skip_waiting: bool = True):
        self.storage = storage
        self.origin = origin
        self.registry = registry
        self.app_cache_name = app_cache_name
        self.proxy_cache_name = proxy_cache_name
        self.app_precache = tuple(app_precache)
        self.proxy_precache = tuple(proxy_precache)
        self.skip_waiting = skip_waiting

        self.state = LifecycleState.PARSED
        self._activation_lock = asyncio.Lock()

    @property
    def current_cache_names(self) -> Tuple[str, str]:
        return self.app_cache_name, self.proxy_cache_name

    @property
    def is_active(self) -> bool:
        return self.state is LifecycleState.ACTIVATED

    @property
    def is_waiting(self) -> bool:
        return self.state is LifecycleState.INSTALLED

    async def start(self):
        """Установка и, если ожидание не требуется, сразу активация"""
        await self.install()
        if self.skip_waiting:
            await self.activate()
        else:
            logger.info("⏸️ Installed, waiting for skip-wait message before activation")

    async def install(self):
        """Открывает пространства кэша и прогревает их"""
        logger.info("📦 Installing: opening cache namespaces...")
        self.state = LifecycleState.INSTALLING

        app_cache = await self.storage.open(self.app_cache_name)
        proxy_cache = await self.storage.open(self.proxy_cache_name)

        app_failed, proxy_failed = await asyncio.gather(
            self._precache(app_cache, self.app_precache),
            self._precache(proxy_cache, self.proxy_precache),
        )

        for path, error in app_failed:
            logger.warning(f"⚠️ Failed to cache {path}: {error}")
        for path, error in proxy_failed:
            logger.info(f"Optional file not cached: {path}")

        self.state = LifecycleState.INSTALLED
        logger.info(
            f"✅ Installed: {self.app_cache_name} "
            f"({len(self.app_precache) - len(app_failed)}/{len(self.app_precache)}), "
            f"{self.proxy_cache_name} "
            f"({len(self.proxy_precache) - len(proxy_failed)}/{len(self.proxy_precache)})"
        )

    async def _precache(self, cache: Cache, paths: Tuple[str, ...]) -> List[Tuple[str, ProxyError]]:
        """Прогревает пространство; возвращает список (путь, ошибка) для неудачных"""
        results = await asyncio.gather(
            *(self.origin.add(cache, path) for path in paths),
            return_exceptions=True
        )

        failed = []
        for path, result in zip(paths, results):
            if isinstance(result, ProxyError):
                failed.append((path, result))
            elif isinstance(result, BaseException):
                raise result
        return failed

    async def activate(self):
        """Начинает обслуживать клиентов и удаляет устаревшие пространства кэша"""
        async with self._activation_lock:
            if self.state is LifecycleState.ACTIVATED:
                return

            logger.info("🔄 Activating...")
            self.state = LifecycleState.ACTIVATING

            for name in await self.storage.keys():
                if name not in self.current_cache_names:
                    logger.info(f"🧹 Deleting old cache: {name}")
                    await self.storage.delete(name)

            self.state = LifecycleState.ACTIVATED
            logger.info("✅ Activated, clients claimed")

    async def handle_message(self, message) -> Optional[dict]:
        """
        Обрабатывает управляющее сообщение

        Args:
            message: dict с полем type

        Returns:
            dict или None: Ответ на сообщение (если он предусмотрен)

        Raises:
            UnknownMessageError: Неизвестный тип или неверный формат сообщения
        """
        if not isinstance(message, dict):
            raise UnknownMessageError("Message must be an object")

        message_type = message.get('type')
        if not isinstance(message_type, str):
            raise UnknownMessageError(f"Message type must be a string: {message_type!r}")
        message_type = _MESSAGE_ALIASES.get(message_type, message_type)

        if message_type == MESSAGE_SKIP_WAIT:
            self.skip_waiting = True
            if self.is_waiting:
                await self.activate()
            return None

        if message_type == MESSAGE_GET_BACKEND_LIST:
            return {
                'type': MESSAGE_BACKEND_LIST,
                'servers': list(self.registry.servers),
            }

        raise UnknownMessageError(f"Unknown message type: {message_type!r}")
