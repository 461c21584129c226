# core/proxy/headers.py
"""Фильтрация заголовков и CORS для проксируемых ответов"""

from typing import Iterable, Tuple

from multidict import CIMultiDict

# Заголовки, которые не переносятся между соединениями
HOP_BY_HOP_HEADERS = frozenset({
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailer', 'trailers', 'transfer-encoding', 'upgrade',
})

# Клиент aiohttp сам распаковывает тело, поэтому длина и кодировка меняются
BODY_FRAMING_HEADERS = frozenset({'content-encoding', 'content-length'})

# Заголовки входящего запроса, которые не пересылаются upstream
REQUEST_SKIP_HEADERS = HOP_BY_HOP_HEADERS | {'host', 'content-length', 'accept-encoding'}

CORS_ALLOW_METHODS = 'GET, POST, PUT, DELETE, OPTIONS, PATCH, HEAD'

BROWSER_USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
BROWSER_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8'


def response_headers(headers: Iterable[Tuple[str, str]]) -> CIMultiDict:
    """Копирует заголовки upstream-ответа без hop-by-hop и framing заголовков"""
    result = CIMultiDict()
    for key, value in headers:
        key_lower = key.lower()
        if key_lower in HOP_BY_HOP_HEADERS or key_lower in BODY_FRAMING_HEADERS:
            continue
        result.add(key, value)
    return result


def request_headers(headers: Iterable[Tuple[str, str]]) -> CIMultiDict:
    """Копирует заголовки входящего запроса для пересылки upstream"""
    result = CIMultiDict()
    for key, value in headers:
        if key.lower() in REQUEST_SKIP_HEADERS:
            continue
        result.add(key, value)
    return result


def spoofed_browser_headers(user_agent: str = BROWSER_USER_AGENT, language: bool = False) -> dict:
    """Заголовки десктопного браузера для прямых запросов"""
    headers = {
        'User-Agent': user_agent,
        'Accept': BROWSER_ACCEPT,
    }
    if language:
        headers['Accept-Language'] = 'en-US,en;q=0.5'
    return headers


def apply_allow_origin(headers: CIMultiDict) -> CIMultiDict:
    headers['Access-Control-Allow-Origin'] = '*'
    return headers


def apply_bare_cors(headers: CIMultiDict, bare_server: str) -> CIMultiDict:
    """Полный набор CORS заголовков и имя выбранного bare-сервера"""
    headers['Access-Control-Allow-Origin'] = '*'
    headers['Access-Control-Allow-Methods'] = CORS_ALLOW_METHODS
    headers['Access-Control-Allow-Headers'] = '*'
    headers['Access-Control-Expose-Headers'] = '*'
    headers['X-Bare-Server'] = bare_server
    return headers
