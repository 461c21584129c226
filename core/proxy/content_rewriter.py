"""Модуль для перезаписи URL в HTML контенте"""

import html
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

from core.proxy.paths import PROXY_PREFIX

logger = logging.getLogger(__name__)


class ContentRewriter:
    """
    Перезаписывает ссылки на ресурсы в HTML так, чтобы последующие
    загрузки снова шли через PROXY_PREFIX.

    Это текстовая замена на регулярных выражениях, а не HTML парсер:
    похожий на атрибут текст внутри <script> или комментариев тоже
    может быть перезаписан.
    """

    URL_ATTRIBUTES = (
        'href', 'src', 'action', 'data', 'poster', 'srcset',
        'cite', 'formaction', 'icon', 'manifest', 'archive',
    )

    # Предкомпилированные регулярные выражения
    _ATTR_PATTERN = re.compile(
        r'(?<![\w-])(?P<name>' + '|'.join(URL_ATTRIBUTES) + r')(?P<eq>\s*=\s*)'
        r'(?P<quote>["\'])(?P<value>[^"\']*)(?P=quote)',
        re.IGNORECASE
    )
    _CSS_URL_PATTERN = re.compile(
        r'url\(\s*(?P<quote>["\']?)(?P<value>[^"\')]*?)\s*(?P=quote)\s*\)',
        re.IGNORECASE
    )
    _BASE_TAG_PATTERN = re.compile(r'<base\b', re.IGNORECASE)
    _HEAD_OPEN_PATTERN = re.compile(r'<head\b[^>]*>', re.IGNORECASE)
    _HTML_OPEN_PATTERN = re.compile(r'<html\b[^>]*>', re.IGNORECASE)

    _SKIP_SCHEMES = ('data:', 'blob:')

    def __init__(self, proxy_prefix: str = PROXY_PREFIX):
        """
        Args:
            proxy_prefix: Префикс прокси, который ставится перед абсолютным URL
        """
        self.proxy_prefix = proxy_prefix

    def rewrite(self, content: str, base_url: str, proxy_prefix: Optional[str] = None) -> str:
        """
        Перезаписывает URL в HTML документе

        Args:
            content: HTML документ
            base_url: URL, с которого получен документ
            proxy_prefix: Префикс для этого вызова (по умолчанию self.proxy_prefix)

        Returns:
            str: Документ с перезаписанными атрибутами, url() и тегом <base>
        """
        prefix = self.proxy_prefix if proxy_prefix is None else proxy_prefix

        content = self._rewrite_attributes(content, base_url, prefix)
        content = self._rewrite_css(content, base_url, prefix)
        content = self._inject_base(content, base_url)
        return content

    def resolve(self, value: str, base_url: str) -> Optional[str]:
        """
        Разрешает значение относительно base_url

        Returns:
            str или None: Абсолютный http(s) URL, либо None если значение
            нужно оставить как есть
        """
        if not value or value.lower().startswith(self._SKIP_SCHEMES):
            return None

        try:
            absolute = urljoin(base_url, value.strip())
            parts = urlsplit(absolute)
        except ValueError:
            return None

        if parts.scheme not in ('http', 'https') or not parts.netloc:
            return None
        return absolute

    def _proxied(self, value: str, base_url: str, prefix: str) -> Optional[str]:
        absolute = self.resolve(value, base_url)
        if absolute is None:
            return None
        return f"{prefix}{absolute}"

    def _rewrite_attributes(self, content: str, base_url: str, prefix: str) -> str:
        def replace(match):
            name = match.group('name')
            value = match.group('value')

            if name.lower() == 'srcset':
                new_value = self._rewrite_srcset(value, base_url, prefix)
            else:
                new_value = self._proxied(value, base_url, prefix)

            if new_value is None or new_value == value:
                return match.group(0)

            quote = match.group('quote')
            return f"{name}{match.group('eq')}{quote}{new_value}{quote}"

        return self._ATTR_PATTERN.sub(replace, content)

    def _rewrite_srcset(self, value: str, base_url: str, prefix: str) -> Optional[str]:
        """Перезаписывает каждый кандидат srcset ("url дескриптор, ...")"""
        if not value:
            return None

        out = []
        pos = 0
        length = len(value)

        while pos < length:
            # Разделители между кандидатами
            end = pos
            while end < length and (value[end].isspace() or value[end] == ','):
                end += 1
            out.append(value[pos:end])
            pos = end
            if pos >= length:
                break

            # URL кандидата - непрерывная последовательность без пробелов
            end = pos
            while end < length and not value[end].isspace():
                end += 1
            url = value[pos:end]
            pos = end

            if url.endswith(','):
                # Кандидат без дескрипторов
                core_url = url.rstrip(',')
                out.append((self._proxied(core_url, base_url, prefix) or core_url) + url[len(core_url):])
                continue

            out.append(self._proxied(url, base_url, prefix) or url)

            # Дескрипторы до следующей запятой
            end = pos
            while end < length and value[end] != ',':
                end += 1
            out.append(value[pos:end])
            pos = end

        return ''.join(out)

    def _rewrite_css(self, content: str, base_url: str, prefix: str) -> str:
        """
        Перезаписывает url() в CSS (в <style>, style="" и где угодно в документе)

        Кавычки сохраняются исходные, чтобы не сломать атрибут style.
        """
        def replace(match):
            new_value = self._proxied(match.group('value'), base_url, prefix)
            if new_value is None:
                return match.group(0)
            quote = match.group('quote')
            return f"url({quote}{new_value}{quote})"

        return self._CSS_URL_PATTERN.sub(replace, content)

    def _inject_base(self, content: str, base_url: str) -> str:
        """Добавляет <base href> если в документе его еще нет"""
        if self._BASE_TAG_PATTERN.search(content):
            return content

        base_tag = f'<base href="{html.escape(base_url, quote=True)}">'

        for pattern in (self._HEAD_OPEN_PATTERN, self._HTML_OPEN_PATTERN):
            match = pattern.search(content)
            if match:
                return f"{content[:match.end()]}{base_tag}{content[match.end():]}"

        logger.debug("ContentRewriter: no <head> or <html>, prepending <base>")
        return base_tag + content


_default_rewriter = ContentRewriter()


def rewrite_html(content: str, base_url: str, proxy_prefix: str = PROXY_PREFIX) -> str:
    """Перезаписывает HTML документ рерайтером по умолчанию"""
    return _default_rewriter.rewrite(content, base_url, proxy_prefix)
