# core/proxy/errors.py
"""Исключения прокси-конвейера"""


class ProxyError(Exception):
    """Базовая ошибка обработки проксируемого запроса"""

    status = 500


class MissingTargetError(ProxyError):
    """Не удалось определить целевой URL запроса"""

    status = 400


class UpstreamFailure(ProxyError):
    """Ошибка сети или разбора ответа при обращении к upstream"""

    status = 500


class CacheUnavailable(ProxyError):
    """Хранилище кэша недоступно"""

    status = 408
