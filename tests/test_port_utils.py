"""
Tests for the listen address check run before the server starts.
"""

import os
import socket

import pytest

from utils.port_utils import ListenCheck, ListenStatus, check_listen_address, find_port_owner


@pytest.fixture
def listening_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        sock.listen(1)
        yield sock.getsockname()[1]


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


class TestCheckListenAddress:
    def test_free_port(self):
        port = free_port()

        check = check_listen_address('127.0.0.1', port)

        assert check.ok
        assert check.status is ListenStatus.FREE
        assert check.describe() == f"Адрес 127.0.0.1:{port} свободен"

    def test_busy_port(self, listening_port):
        check = check_listen_address('127.0.0.1', listening_port)

        assert not check.ok
        assert check.status is ListenStatus.IN_USE
        assert f"Порт {listening_port} занят" in check.describe()

    def test_owner_of_busy_port(self, listening_port):
        owner = find_port_owner(listening_port)

        # Без прав на список соединений владелец не определяется
        assert owner is None or owner['pid'] == os.getpid()

    def test_address_not_on_this_machine(self):
        check = check_listen_address('203.0.113.7', free_port())

        assert check.status is ListenStatus.UNAVAILABLE
        assert check.error

    def test_unresolvable_host(self):
        check = check_listen_address('no-such-host.invalid', 8080)

        assert check.status is ListenStatus.UNAVAILABLE
        assert 'no-such-host.invalid:8080' in check.describe()


class TestListenCheck:
    def test_describe_with_owner(self):
        check = ListenCheck('127.0.0.1', 8080, ListenStatus.IN_USE, owner={'name': 'nginx', 'pid': 42})

        assert check.describe() == "Порт 8080 занят процессом nginx (PID: 42)"
