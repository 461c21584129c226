# utils/port_utils.py
"""Проверка адреса, на котором прокси будет слушать"""

import errno
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import psutil

logger = logging.getLogger(__name__)


class ListenStatus(str, Enum):
    FREE = "free"
    IN_USE = "in_use"
    UNAVAILABLE = "unavailable"  # Адрес не разрешается или не принадлежит машине


@dataclass(frozen=True)
class ListenCheck:
    """Результат проверки host:port перед запуском сервера"""

    host: str
    port: int
    status: ListenStatus
    owner: Optional[Dict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ListenStatus.FREE

    def describe(self) -> str:
        address = f"{self.host}:{self.port}"
        if self.status is ListenStatus.FREE:
            return f"Адрес {address} свободен"
        if self.status is ListenStatus.UNAVAILABLE:
            return f"Нельзя слушать {address}: {self.error}"

        message = f"Порт {self.port} занят"
        if self.owner:
            message += f" процессом {self.owner['name']} (PID: {self.owner['pid']})"
        return message


def find_port_owner(port: int) -> Optional[Dict]:
    """
    Ищет процесс, который слушает порт

    Returns:
        dict с name/pid или None (нет прав или процесс не найден)
    """
    try:
        connections = psutil.net_connections(kind='inet')
    except (psutil.AccessDenied, OSError) as e:
        logger.debug(f"Нет доступа к списку соединений: {e}")
        return None

    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
            continue
        if not conn.pid:
            continue
        try:
            return {'name': psutil.Process(conn.pid).name(), 'pid': conn.pid}
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return None


def check_listen_address(host: str, port: int) -> ListenCheck:
    """
    Пробует занять host:port так же, как это сделает TCPSite

    Хост разрешается через getaddrinfo, поэтому проверяются и имена
    (localhost), и IPv6 адреса.

    Args:
        host: Адрес из настроек server.host
        port: Порт из настроек server.local_port

    Returns:
        ListenCheck: Статус и, если порт занят, процесс-владелец
    """
    try:
        family, sock_type, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM
        )[0]
    except socket.gaierror as e:
        return ListenCheck(host, port, ListenStatus.UNAVAILABLE, error=str(e))

    with socket.socket(family, sock_type, proto) as sock:
        try:
            sock.bind(sockaddr)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                return ListenCheck(host, port, ListenStatus.IN_USE, owner=find_port_owner(port))
            return ListenCheck(host, port, ListenStatus.UNAVAILABLE, error=e.strerror or str(e))

    return ListenCheck(host, port, ListenStatus.FREE)
