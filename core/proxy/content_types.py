# core/proxy/content_types.py
"""Классификация типов контента upstream-ответов"""

from enum import Enum
from typing import Optional


class ContentKind(str, Enum):
    HTML = "html"
    CSS = "css"
    JAVASCRIPT = "javascript"
    JSON = "json"
    TEXT = "text"
    BINARY = "binary"


_HTML_TYPES = {'text/html', 'application/xhtml+xml'}
_JS_TYPES = {
    'application/javascript', 'text/javascript',
    'application/x-javascript', 'application/ecmascript',
}


def mimetype_of(content_type: Optional[str]) -> str:
    """Возвращает MIME type без параметров (charset и т.п.) в нижнем регистре"""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def classify(content_type: Optional[str]) -> ContentKind:
    """
    Определяет вид контента по заголовку Content-Type

    Перезаписывается только ContentKind.HTML, остальные виды
    передаются клиенту без декодирования.

    Args:
        content_type: Значение заголовка Content-Type (может быть None)

    Returns:
        ContentKind: Вид контента
    """
    mimetype = mimetype_of(content_type)

    if mimetype in _HTML_TYPES:
        return ContentKind.HTML
    if mimetype == 'text/css':
        return ContentKind.CSS
    if mimetype in _JS_TYPES:
        return ContentKind.JAVASCRIPT
    if mimetype == 'application/json' or mimetype.endswith('+json'):
        return ContentKind.JSON
    if mimetype.startswith('text/'):
        return ContentKind.TEXT
    return ContentKind.BINARY
