# core/proxy/backend_registry.py
"""Реестр upstream bare-серверов"""

import logging
import random
from typing import Iterable, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_BARE_SERVERS = (
    'https://bare.uv.devgoldy.xyz/',
    'https://bare.alekeagle.me/',
    'https://bare.mathlearning.xyz/',
    'https://bare.flaze.org/',
)


class BackendRegistry:
    """
    Неизменяемый упорядоченный список bare-серверов

    Заполняется один раз при старте. Выбор сервера - равномерно случайный,
    состояние ротации между вызовами не хранится.
    """

    def __init__(self, servers: Iterable[str], rng: Optional[random.Random] = None):
        """
        Args:
            servers: URL-префиксы bare-серверов
            rng: Источник случайности (для тестов)
        """
        normalized = tuple(self._normalize(server) for server in servers if server)
        if not normalized:
            raise ValueError("BackendRegistry requires at least one bare server")

        self._servers: Tuple[str, ...] = normalized
        self._rng = rng or random.Random()
        logger.debug(f"BackendRegistry: {len(self._servers)} servers")

    @staticmethod
    def _normalize(server: str) -> str:
        server = server.strip()
        return server if server.endswith('/') else f"{server}/"

    @property
    def servers(self) -> Tuple[str, ...]:
        return self._servers

    def choose(self) -> str:
        """Выбирает один сервер случайным образом"""
        return self._rng.choice(self._servers)

    def __len__(self) -> int:
        return len(self._servers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._servers)

    def __contains__(self, server: str) -> bool:
        return server in self._servers
