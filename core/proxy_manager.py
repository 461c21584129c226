# proxy_manager.py
import asyncio
import logging
import time
import threading
from typing import Optional

import requests
from aiohttp import web, ClientSession, TCPConnector, ClientTimeout

from core.code_lookup import CodeLookup, LookupUnavailable
from core.config_manager import ProxySettings, get_config
from core.proxy.adapters import BareAdapter, EpoxyAdapter, RewritingAdapter, text_response
from core.proxy.backend_registry import BackendRegistry
from core.proxy.cache_manager import CacheStorage, MemoryCacheStorage
from core.proxy.content_rewriter import ContentRewriter
from core.proxy.lifecycle import LifecycleManager
from core.proxy.origin import OriginClient
from core.proxy.paths import CONTROL_PREFIX
from core.proxy.router import RequestRouter, match_route
from utils.port_utils import ListenStatus, check_listen_address

logger = logging.getLogger(__name__)


class TinkleProxy:
    def __init__(self, settings: ProxySettings, storage: Optional[CacheStorage] = None,
                 registry: Optional[BackendRegistry] = None, code_lookup: Optional[CodeLookup] = None):
        """
        Args:
            settings: Настройки прокси
            storage: Хранилище кэша (по умолчанию в памяти)
            registry: Реестр bare-серверов (по умолчанию из настроек)
            code_lookup: Клиент таблицы кодов (по умолчанию из настроек)
        """
        self.settings = settings
        self.storage = storage or MemoryCacheStorage(maxsize=settings.cache_max_entries)
        self.registry = registry or BackendRegistry(settings.bare_servers)
        self.code_lookup = code_lookup or CodeLookup(settings.codes_url, timeout=settings.lookup_timeout)

        # Connection pool для переиспользования соединений
        self.connector = None
        self.session = None

        self.origin = None
        self.router = None
        self.lifecycle = None

        # Статистика
        self.stats = {
            'total_requests': 0,
            'total_responses': 0,
            'errors': 0,
            'routes': {}
        }

    async def initialize(self):
        """Создает connection pool и собирает конвейер обработки запросов"""
        if self.session is not None:
            return

        settings = self.settings

        self.connector = TCPConnector(
            limit=settings.max_concurrency * 2,
            ttl_dns_cache=300,  # DNS кэш на 5 минут
            keepalive_timeout=60,
            enable_cleanup_closed=True
        )
        timeout = ClientTimeout(total=settings.timeout_total, connect=settings.timeout_connect)
        self.session = ClientSession(connector=self.connector, timeout=timeout, auto_decompress=True)

        # Семафор для ограничения одновременных upstream запросов
        semaphore = asyncio.Semaphore(settings.max_concurrency)

        self.origin = OriginClient(self.session, settings.origin_url, timeout=timeout)

        self.router = RequestRouter(
            storage=self.storage,
            origin=self.origin,
            app_cache_name=settings.app_cache_name,
            bare=BareAdapter(self.session, self.registry, semaphore=semaphore, timeout=timeout),
            epoxy=EpoxyAdapter(self.session, user_agent=settings.user_agent,
                               semaphore=semaphore, timeout=timeout),
            rewriting=RewritingAdapter(self.session, ContentRewriter(),
                                       absolute_links=settings.absolute_links,
                                       user_agent=settings.user_agent,
                                       semaphore=semaphore, timeout=timeout),
        )

        self.lifecycle = LifecycleManager(
            storage=self.storage,
            origin=self.origin,
            registry=self.registry,
            app_cache_name=settings.app_cache_name,
            proxy_cache_name=settings.proxy_cache_name,
            app_precache=settings.app_precache,
            proxy_precache=settings.proxy_precache,
            skip_waiting=settings.skip_waiting,
        )

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    async def handle_http(self, request):
        """Обработка перехваченного запроса"""
        self.stats['total_requests'] += 1
        route = match_route(request.path).value
        self.stats['routes'][route] = self.stats['routes'].get(route, 0) + 1

        if self.lifecycle is None or not self.lifecycle.is_active:
            return text_response('Service is starting', 503)

        try:
            response = await self.router.dispatch(request)
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"❌ Unhandled error for {request.method} {request.path_qs}: {e}", exc_info=True)
            return text_response(f"Proxy error: {e}", 500)

        if response.status >= 500:
            self.stats['errors'] += 1
        self.stats['total_responses'] += 1
        return response

    async def handle_message(self, request):
        """Управляющий канал: {type: skip-wait} и {type: get-backend-list}"""
        try:
            message = await request.json()
            reply = await self.lifecycle.handle_message(message)
        except ValueError as e:
            # JSONDecodeError, UnicodeDecodeError и UnknownMessageError
            logger.warning(f"⚠️ Bad control message: {e}")
            return web.json_response({'error': str(e)}, status=400)

        if reply is None:
            return web.Response(status=204)
        return web.json_response(reply)

    async def handle_code_lookup(self, request):
        """Проверка кода доступа: ?code=..."""
        code = request.query.get('code', '').strip()
        if not code:
            return web.json_response({'error': 'Missing code parameter'}, status=400)

        try:
            result = await self.code_lookup.lookup(code)
        except LookupUnavailable:
            return web.json_response({'error': 'Error fetching codes'}, status=502)

        return web.json_response(result.to_dict())

    def create_app(self) -> web.Application:
        """Создает aiohttp приложение с маршрутами прокси"""
        app = web.Application()
        app.router.add_post(f'{CONTROL_PREFIX}message', self.handle_message)
        app.router.add_get(f'{CONTROL_PREFIX}code', self.handle_code_lookup)
        app.router.add_route('*', '/{path:.*}', self.handle_http)
        return app

    def get_full_stats(self):
        """Получить полную статистику прокси"""
        stats = {
            'requests': self.stats['total_requests'],
            'responses': self.stats['total_responses'],
            'errors': self.stats['errors'],
            'routes': dict(self.stats['routes']),
            'lifecycle': self.lifecycle.state.value if self.lifecycle else None,
        }
        if isinstance(self.storage, MemoryCacheStorage):
            stats['cache'] = self.storage.get_stats()
        return stats


class ProxyManager:
    def __init__(self, settings: Optional[ProxySettings] = None):
        self.settings = settings
        self.is_running = False
        self.proxy = None
        self.runner = None
        self.site = None
        self.loop = None
        self.thread = None
        self.app_name = "Tinkle Proxy"

        # Error tracking
        self.last_error_type = None  # Тип последней ошибки: 'port', 'host', 'origin', 'ssl', 'unknown'
        self.last_error_details = None

    @property
    def local_url(self) -> str:
        scheme = 'https' if self.settings.ssl_enabled else 'http'
        return f"{scheme}://{self.settings.host}:{self.settings.local_port}"

    def start(self) -> bool:
        """
        Запуск прокси сервера в отдельном потоке

        Returns:
            bool: True если успешно запущен
        """
        if self.is_running:
            logger.warning("⚠️ Прокси уже запущен")
            return False

        if self.settings is None:
            self.settings = ProxySettings.from_config(get_config())

        listen_check = check_listen_address(self.settings.host, self.settings.local_port)
        if not listen_check.ok:
            logger.error(f"❌ {listen_check.describe()}")
            if listen_check.owner:
                logger.info(f"📌 Остановите процесс {listen_check.owner['name']} или смените server.local_port")

            self.last_error_type = 'port' if listen_check.status is ListenStatus.IN_USE else 'host'
            self.last_error_details = listen_check.describe()
            return False

        self.last_error_type = None
        self.last_error_details = None

        # Запускаем сервер в отдельном потоке
        self.thread = threading.Thread(
            target=self._run_server,
            daemon=True
        )
        self.thread.start()

        # Ждём запуска (установка кэшей тоже входит сюда)
        deadline = time.monotonic() + self.settings.timeout_total + 5
        while time.monotonic() < deadline:
            if self.is_running or self.last_error_type:
                break
            time.sleep(0.1)

        if not self.is_running:
            logger.error("❌ Прокси не запустился за отведенное время")
            self.stop()
            return False

        logger.info(f"✅ Proxy server started on {self.local_url}")

        # Проверяем доступность origin
        self._check_origin_status()
        return True

    def _run_server(self):
        """Запускает сервер в отдельном event loop"""
        try:
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)

            self.loop.run_until_complete(self._start_server())

            if self.is_running:
                self.loop.run_forever()

        except Exception as e:
            logger.error(f"❌ Ошибка в event loop: {e}")
            self.last_error_type = self.last_error_type or 'unknown'
            self.last_error_details = str(e)
            self.is_running = False
        finally:
            if self.loop:
                self.loop.close()

    async def _start_server(self):
        """Асинхронный запуск сервера"""
        try:
            ssl_context = None
            if self.settings.ssl_enabled:
                from core.certificate_manager import CertificateManager
                certificate_manager = CertificateManager()
                if not certificate_manager.ensure_certificates_exist():
                    self.last_error_type = 'ssl'
                    self.last_error_details = "Не удалось создать SSL сертификаты"
                    return
                ssl_context = certificate_manager.create_ssl_context()

            self.proxy = TinkleProxy(self.settings)
            await self.proxy.initialize()

            # Установка и активация: прогрев кэшей, удаление старых пространств
            await self.proxy.lifecycle.start()

            app = self.proxy.create_app()

            # handler_cancellation: upstream запрос отменяется, если клиент ушел
            self.runner = web.AppRunner(app, access_log=None, handler_cancellation=True)
            await self.runner.setup()

            self.site = web.TCPSite(
                self.runner,
                host=self.settings.host,
                port=self.settings.local_port,
                ssl_context=ssl_context,
            )

            await self.site.start()
            self.is_running = True
            logger.info(f"✅ Сервер успешно запущен на порту {self.settings.local_port}")
            logger.info(f"📊 Bare servers: {len(self.proxy.registry)}, origin: {self.settings.origin_url}")

        except Exception as e:
            logger.error(f"❌ Ошибка запуска сервера: {e}")
            self.last_error_type = self.last_error_type or 'unknown'
            self.last_error_details = str(e)
            self.is_running = False
            if self.proxy:
                await self.proxy.cleanup()

    def _check_origin_status(self) -> bool:
        """
        Проверяет, отвечает ли origin со статикой приложения

        Returns:
            bool: True если origin доступен
        """
        origin_url = self.settings.origin_url.rstrip('/')

        try:
            response = requests.get(
                f"{origin_url}/",
                timeout=10,
                proxies={"http": None, "https": None}  # Отключаем системный прокси для localhost
            )
        except requests.ConnectionError as e:
            logger.warning(
                f"⚠️ Cannot connect to origin!\n"
                f"   URL: {origin_url}\n"
                f"   Error: {e}\n"
                f"   → Own pages will only be served from cache"
            )
            self.last_error_type = 'origin'
            self.last_error_details = "Cannot connect to origin server"
            return False
        except requests.RequestException as e:
            logger.warning(f"⚠️ Origin status check error: {e}")
            self.last_error_type = 'origin'
            self.last_error_details = str(e)
            return False

        if response.status_code >= 400:
            logger.warning(f"⚠️ Origin responded with HTTP {response.status_code}")
            self.last_error_type = 'origin'
            self.last_error_details = f"Origin returned HTTP {response.status_code}"
            return False

        logger.info(f"✅ Origin is reachable: {origin_url}")
        return True

    def stop(self):
        """Остановка прокси сервера"""
        if not self.thread:
            logger.warning("⚠️ Прокси не запущен")
            return

        logger.info("🛑 Stopping proxy...")
        self.is_running = False

        if self.loop and self.loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._stop_server(), self.loop)
            try:
                future.result(timeout=5)
            except Exception as e:
                logger.error(f"❌ Ошибка при остановке сервера: {e}")

            self.loop.call_soon_threadsafe(self.loop.stop)

        if self.thread.is_alive():
            self.thread.join(timeout=5)
        self.thread = None

        if self.proxy:
            stats = self.proxy.get_full_stats()
            logger.info(
                f"📊 Session statistics:\n"
                f"   Total requests: {stats.get('requests', 0)}\n"
                f"   Total responses: {stats.get('responses', 0)}\n"
                f"   Errors: {stats.get('errors', 0)}"
            )

        logger.info("✅ Proxy stopped")

    async def _stop_server(self):
        """Асинхронная остановка сервера"""
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        if self.proxy:
            await self.proxy.cleanup()
        logger.debug("✅ Сервер успешно остановлен")

    def get_status(self):
        """Возвращает статус прокси"""
        status = {
            'running': self.is_running,
            'url': self.local_url if self.settings else None,
            'last_error_type': self.last_error_type,
            'last_error_details': self.last_error_details,
        }

        if self.proxy and self.is_running:
            status['proxy_stats'] = self.proxy.get_full_stats()

        return status


# Синглтон для глобального доступа
_proxy_manager = None


def get_proxy_manager() -> ProxyManager:
    """Возвращает глобальный экземпляр ProxyManager"""
    global _proxy_manager
    if _proxy_manager is None:
        _proxy_manager = ProxyManager()
    return _proxy_manager
