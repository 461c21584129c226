"""Определение целевого URL проксируемого запроса"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from multidict import CIMultiDict

from core.proxy.content_types import mimetype_of
from core.proxy.errors import MissingTargetError
from core.proxy.headers import request_headers

logger = logging.getLogger(__name__)

# Методы, для которых тело запроса может содержать целевой URL
BODY_TARGET_METHODS = ('POST', 'PUT')

# Методы, тело которых не пересылается upstream
BODYLESS_METHODS = ('GET', 'HEAD')


@dataclass
class ProxyRequestDescriptor:
    """Описание запроса, который нужно выполнить upstream"""

    method: str
    target_url: str
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: Optional[bytes] = None

    def __post_init__(self):
        parts = urlsplit(self.target_url)
        if not parts.scheme or not parts.netloc:
            raise MissingTargetError(f"Target URL must be absolute: {self.target_url!r}")


def extract_target_from_body(method: str, content_type: Optional[str], body: bytes) -> Optional[str]:
    """
    Извлекает целевой URL из тела POST/PUT запроса

    JSON: поля url, target, destination (в этом порядке).
    Form-urlencoded: поля url, target.
    Ошибки разбора не пробрасываются - результатом будет None.

    Args:
        method: HTTP метод запроса
        content_type: Заголовок Content-Type
        body: Тело запроса

    Returns:
        str или None: Целевой URL
    """
    if method.upper() not in BODY_TARGET_METHODS or not body:
        return None

    mimetype = mimetype_of(content_type)

    try:
        if mimetype == 'application/json':
            data = json.loads(body.decode('utf-8'))
            if not isinstance(data, dict):
                return None
            return data.get('url') or data.get('target') or data.get('destination') or None

        if mimetype == 'application/x-www-form-urlencoded':
            params = parse_qs(body.decode('utf-8'), keep_blank_values=True)
            for name in ('url', 'target'):
                values = params.get(name)
                if values and values[0]:
                    return values[0]

    except (UnicodeDecodeError, ValueError) as e:
        logger.warning(f"⚠️ Failed to extract URL from body: {e}")

    return None


async def resolve_bare_target(request) -> Optional[str]:
    """Целевой URL bare-запроса: ?url=, затем ?target=, затем тело"""
    target = request.query.get('url') or request.query.get('target')
    if target:
        return target

    if request.method.upper() not in BODY_TARGET_METHODS or not request.body_exists:
        return None

    body = await request.read()
    return extract_target_from_body(request.method, request.headers.get('Content-Type'), body)


async def build_descriptor(request, target_url: str) -> ProxyRequestDescriptor:
    """
    Собирает ProxyRequestDescriptor из входящего запроса

    Метод и заголовки переиспользуются, тело пересылается только
    для методов кроме GET/HEAD.
    """
    body = None
    # can_read_body ложно, если тело уже прочитано при поиске цели;
    # request.read() отдает закэшированные байты
    if request.method.upper() not in BODYLESS_METHODS and request.body_exists:
        body = await request.read()

    return ProxyRequestDescriptor(
        method=request.method,
        target_url=target_url,
        headers=request_headers(request.headers.items()),
        body=body,
    )
