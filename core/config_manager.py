import json
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
import os

from core.code_lookup import DEFAULT_CODES_URL
from core.proxy.backend_registry import DEFAULT_BARE_SERVERS
from core.proxy.cache_manager import namespace_name
from core.proxy.headers import BROWSER_USER_AGENT
from core.proxy.lifecycle import DEFAULT_APP_PRECACHE, DEFAULT_PROXY_PRECACHE

logger = logging.getLogger(__name__)


def get_app_data_dir():
    """Возвращает путь для хранения данных приложения"""
    if getattr(sys, 'frozen', False):
        if os.name == 'nt':  # Windows
            appdata_dir = Path(os.getenv('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
            app_data_dir = appdata_dir / 'Tinkle'
        else:  # Linux/Mac
            app_data_dir = Path.home() / '.config' / 'tinkle'
    else:
        # Dev режим
        app_data_dir = Path(__file__).parent.parent / 'app_data'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._load_config()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        config_dir = get_app_data_dir()

        config_dir.mkdir(parents=True, exist_ok=True)
        return config_dir / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'server': {
                'host': '127.0.0.1',
                'local_port': 8080,
                'origin_url': 'http://127.0.0.1:8000',  # Где лежит статика приложения
                'ssl_enabled': False,
            },

            'cache': {
                'app_version': 'v1',
                'proxy_version': 'v1',
                'max_entries': 500,
                'app_precache': list(DEFAULT_APP_PRECACHE),
                'proxy_precache': list(DEFAULT_PROXY_PRECACHE),
            },

            'backends': {
                'bare_servers': list(DEFAULT_BARE_SERVERS),
            },

            'upstream': {
                'timeout_total': 60,
                'timeout_connect': 10,
                'max_concurrency': 50,
                'user_agent': BROWSER_USER_AGENT,
            },

            'lifecycle': {
                'skip_waiting': True,
            },

            'rewrite': {
                'absolute_links': False,
            },

            'lookup': {
                'codes_url': DEFAULT_CODES_URL,
                'timeout': 10,
            },

            'logging': {
                'level': 'INFO',
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    # Объединяем с дефолтными значениями
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, ValueError) as e:
            logger.error(f"Ошибка загрузки конфига: {e}")

        return default_config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Конфигурация сохранена")
            return True
        except OSError as e:
            logger.error(f"Ошибка сохранения конфига: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Устанавливает значение по ключу (dot notation)"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True

    def get_server_config(self) -> Dict[str, Any]:
        """Возвращает настройки сервера"""
        return self.get('server', {})

    def reset_to_defaults(self) -> bool:
        """Сбрасывает настройки к значениям по умолчанию"""
        self.config = self._get_default_config()
        return self.save()


@dataclass(frozen=True)
class ProxySettings:
    """Неизменяемые настройки, с которыми создается TinkleProxy"""

    host: str = '127.0.0.1'
    local_port: int = 8080
    origin_url: str = 'http://127.0.0.1:8000'
    ssl_enabled: bool = False

    app_cache_version: str = 'v1'
    proxy_cache_version: str = 'v1'
    cache_max_entries: int = 500
    app_precache: Tuple[str, ...] = DEFAULT_APP_PRECACHE
    proxy_precache: Tuple[str, ...] = DEFAULT_PROXY_PRECACHE

    bare_servers: Tuple[str, ...] = DEFAULT_BARE_SERVERS

    timeout_total: float = 60.0
    timeout_connect: float = 10.0
    max_concurrency: int = 50
    user_agent: str = BROWSER_USER_AGENT

    skip_waiting: bool = True
    absolute_links: bool = False

    codes_url: str = DEFAULT_CODES_URL
    lookup_timeout: float = 10.0

    @property
    def app_cache_name(self) -> str:
        return namespace_name('app', self.app_cache_version)

    @property
    def proxy_cache_name(self) -> str:
        return namespace_name('baremux', self.proxy_cache_version)

    @classmethod
    def from_config(cls, config: ConfigManager) -> 'ProxySettings':
        """Собирает настройки из ConfigManager"""
        return cls(
            host=config.get('server.host', cls.host),
            local_port=int(config.get('server.local_port', cls.local_port)),
            origin_url=config.get('server.origin_url', cls.origin_url),
            ssl_enabled=bool(config.get('server.ssl_enabled', cls.ssl_enabled)),
            app_cache_version=config.get('cache.app_version', cls.app_cache_version),
            proxy_cache_version=config.get('cache.proxy_version', cls.proxy_cache_version),
            cache_max_entries=int(config.get('cache.max_entries', cls.cache_max_entries)),
            app_precache=tuple(config.get('cache.app_precache', cls.app_precache)),
            proxy_precache=tuple(config.get('cache.proxy_precache', cls.proxy_precache)),
            bare_servers=tuple(config.get('backends.bare_servers', cls.bare_servers)),
            timeout_total=float(config.get('upstream.timeout_total', cls.timeout_total)),
            timeout_connect=float(config.get('upstream.timeout_connect', cls.timeout_connect)),
            max_concurrency=int(config.get('upstream.max_concurrency', cls.max_concurrency)),
            user_agent=config.get('upstream.user_agent', cls.user_agent),
            skip_waiting=bool(config.get('lifecycle.skip_waiting', cls.skip_waiting)),
            absolute_links=bool(config.get('rewrite.absolute_links', cls.absolute_links)),
            codes_url=config.get('lookup.codes_url', cls.codes_url),
            lookup_timeout=float(config.get('lookup.timeout', cls.lookup_timeout)),
        )


# Синглтон для глобального доступа
_config_instance = None


def get_config() -> ConfigManager:
    """Возвращает глобальный экземпляр ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance
