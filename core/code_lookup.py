"""
Проверка кодов доступа по удаленной таблице

Таблица - JSON объект {код: "<url>|<true|false>"}, второе поле говорит,
можно ли открывать сайт во фрейме.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_CODES_URL = 'https://raw.githubusercontent.com/tinklegames/redirect/main/codes.json'


class LookupUnavailable(Exception):
    """Таблицу кодов не удалось получить или разобрать"""


@dataclass(frozen=True)
class CodeResult:
    valid: bool
    url: Optional[str] = None
    embeddable: bool = False

    def to_dict(self) -> dict:
        return {'valid': self.valid, 'url': self.url, 'embeddable': self.embeddable}


INVALID_CODE = CodeResult(valid=False)


def parse_entry(value: str) -> CodeResult:
    """Разбирает значение таблицы '<url>|<true|false>'"""
    parts = str(value).split('|')
    return CodeResult(
        valid=True,
        url=parts[0],
        embeddable=len(parts) > 1 and parts[1] == 'true',
    )


class CodeLookup:
    """Клиент таблицы кодов доступа"""

    def __init__(self, codes_url: str = DEFAULT_CODES_URL, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            codes_url: URL JSON таблицы кодов
            timeout: Таймаут запроса в секундах
            transport: Транспорт httpx (для тестов)
        """
        self.codes_url = codes_url
        self.timeout = timeout
        self.transport = transport

    async def fetch_table(self) -> dict:
        """
        Загружает таблицу кодов

        Raises:
            LookupUnavailable: Ошибка сети, HTTP статус или не-JSON ответ
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.codes_url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Error fetching codes from {self.codes_url}: {e}")
            raise LookupUnavailable(str(e)) from e

        if not isinstance(data, dict):
            raise LookupUnavailable("Codes table must be a JSON object")
        return data

    async def lookup(self, code: str) -> CodeResult:
        """
        Проверяет код доступа

        Args:
            code: Код (пробелы по краям игнорируются)

        Returns:
            CodeResult: valid=False если кода нет в таблице
        """
        code = code.strip()
        table = await self.fetch_table()

        value = table.get(code) if code else None
        if not value:
            logger.info(f"❌ Invalid code: {code!r}")
            return INVALID_CODE

        result = parse_entry(value)
        logger.info(f"✅ Valid code: {code!r} → {result.url} (embeddable={result.embeddable})")
        return result
