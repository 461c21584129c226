"""
Unit tests for the versioned cache store.

Tests:
- namespace naming and request identity keys
- get/put on a single namespace, LRU eviction, statistics
- namespace enumeration, deletion and cross-namespace match
"""

import pytest

from core.proxy.cache_manager import (
    MemoryCache,
    MemoryCacheStorage,
    StoredResponse,
    is_cacheable,
    namespace_name,
    request_key,
)


def stored(body: bytes = b'hello', status: int = 200) -> StoredResponse:
    return StoredResponse(
        body=body,
        status=status,
        headers=(('Content-Type', 'text/plain'), ('X-Test', '1')),
        content_type='text/plain',
    )


class TestKeys:
    def test_namespace_name(self):
        assert namespace_name('app', 'v1') == 'tinkle-app-v1'
        assert namespace_name('baremux', 'v2') == 'tinkle-baremux-v2'

    def test_request_key_includes_method(self):
        assert request_key('get', '/codes.html') == 'GET /codes.html'
        assert request_key('GET', '/a') != request_key('POST', '/a')

    @pytest.mark.parametrize('method, status, expected', [
        ('GET', 200, True),
        ('get', 200, True),
        ('GET', 206, False),
        ('GET', 404, False),
        ('POST', 200, False),
    ])
    def test_is_cacheable(self, method, status, expected):
        assert is_cacheable(method, status) is expected


class TestStoredResponse:
    def test_is_immutable(self):
        response = stored()
        with pytest.raises(AttributeError):
            response.body = b'changed'

    def test_to_web_response(self):
        response = stored(b'payload', status=200).to_web_response()
        assert response.status == 200
        assert response.body == b'payload'
        assert response.headers['X-Test'] == '1'
        assert response.headers['Content-Type'] == 'text/plain'

    def test_content_type_fills_missing_header(self):
        response = StoredResponse(
            body=b'<p>x</p>',
            status=200,
            headers=(('X-Test', '1'),),
            content_type='text/html',
        ).to_web_response()

        assert response.headers['Content-Type'] == 'text/html'


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_put_and_match(self):
        cache = MemoryCache('tinkle-app-v1')
        await cache.put('GET /a', stored(b'a'))

        result = await cache.match('GET /a')
        assert result is not None
        assert result.body == b'a'

    @pytest.mark.asyncio
    async def test_miss_returns_none(self):
        cache = MemoryCache('tinkle-app-v1')
        assert await cache.match('GET /missing') is None

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        cache = MemoryCache('tinkle-app-v1')
        await cache.put('GET /a', stored(b'first'))
        await cache.put('GET /a', stored(b'second'))

        assert (await cache.match('GET /a')).body == b'second'
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        cache = MemoryCache('tinkle-app-v1', maxsize=2)
        await cache.put('GET /a', stored(b'a'))
        await cache.put('GET /b', stored(b'b'))

        # /a becomes most recently used, so /b is evicted next
        await cache.match('GET /a')
        await cache.put('GET /c', stored(b'c'))

        assert 'GET /a' in cache
        assert 'GET /b' not in cache
        assert 'GET /c' in cache

    @pytest.mark.asyncio
    async def test_delete_and_keys(self):
        cache = MemoryCache('tinkle-app-v1')
        await cache.put('GET /a', stored())
        await cache.put('GET /b', stored())

        assert await cache.delete('GET /a') is True
        assert await cache.delete('GET /a') is False
        assert await cache.keys() == ['GET /b']

    @pytest.mark.asyncio
    async def test_stats(self):
        cache = MemoryCache('tinkle-app-v1')
        await cache.put('GET /a', stored())
        await cache.match('GET /a')
        await cache.match('GET /missing')

        stats = cache.get_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['size'] == 1
        assert stats['hit_rate'] == '50.0%'

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = MemoryCache('tinkle-app-v1')
        await cache.put('GET /a', stored())
        cache.clear()
        assert len(cache) == 0
        assert cache.get_stats()['hits'] == 0


class TestMemoryCacheStorage:
    @pytest.mark.asyncio
    async def test_open_creates_once(self):
        storage = MemoryCacheStorage()
        first = await storage.open('tinkle-app-v1')
        second = await storage.open('tinkle-app-v1')

        assert first is second
        assert await storage.keys() == ['tinkle-app-v1']
        assert await storage.has('tinkle-app-v1')

    @pytest.mark.asyncio
    async def test_delete_namespace(self):
        storage = MemoryCacheStorage()
        cache = await storage.open('tinkle-app-v0')
        await cache.put('GET /a', stored())

        assert await storage.delete('tinkle-app-v0') is True
        assert await storage.delete('tinkle-app-v0') is False
        assert await storage.keys() == []
        assert await storage.match('GET /a') is None

    @pytest.mark.asyncio
    async def test_match_searches_namespaces_in_creation_order(self):
        storage = MemoryCacheStorage()
        app = await storage.open('tinkle-app-v1')
        proxy = await storage.open('tinkle-baremux-v1')

        await proxy.put('GET /uv/uv.sw.js', stored(b'from-proxy'))
        await proxy.put('GET /shared', stored(b'proxy-copy'))
        await app.put('GET /shared', stored(b'app-copy'))

        assert (await storage.match('GET /uv/uv.sw.js')).body == b'from-proxy'
        assert (await storage.match('GET /shared')).body == b'app-copy'
        assert await storage.match('GET /none') is None

    @pytest.mark.asyncio
    async def test_stats_per_namespace(self):
        storage = MemoryCacheStorage(maxsize=10)
        await storage.open('tinkle-app-v1')
        stats = storage.get_stats()
        assert stats['tinkle-app-v1']['maxsize'] == 10
