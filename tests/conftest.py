"""
Shared fixtures: a fake origin/upstream site, a fake bare relay server
and a factory that starts a TinkleProxy in front of them.
"""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from core.config_manager import ProxySettings
from core.proxy.backend_registry import BackendRegistry
from core.proxy_manager import TinkleProxy

UPSTREAM_HTML = (
    '<html><head><title>Upstream</title></head>'
    '<body><a href="/x">x</a>'
    '<img src="data:image/png;base64,AAAA">'
    '<div style="background: url(\'/bg.png\')"></div>'
    '</body></html>'
)
OWN_PAGE_HTML = '<html><body>codes page</body></html>'
STYLE_CSS = 'body { background: url(/img/bg.png); }'
PNG_BYTES = b'\x89PNG\r\n\x1a\n' + bytes(range(256))
UV_SW_JS = 'self.__uv_sw = true;'
BARE_WORKER_JS = 'self.__bare_worker = true;'

UNREACHABLE_URL = 'http://127.0.0.1:1'


def _counted(handler):
    async def wrapper(request):
        hits = request.app['hits']
        hits[request.path] = hits.get(request.path, 0) + 1
        return await handler(request)
    return wrapper


def make_origin_app() -> web.Application:
    """Origin of the app's own assets, also used as a third-party site"""

    async def index(request):
        return web.Response(text=UPSTREAM_HTML, content_type='text/html')

    async def own_page(request):
        return web.Response(text=OWN_PAGE_HTML, content_type='text/html')

    async def style(request):
        return web.Response(text=STYLE_CSS, content_type='text/css')

    async def image(request):
        return web.Response(body=PNG_BYTES, content_type='image/png')

    async def redirect(request):
        raise web.HTTPFound('/landing/page.html')

    async def landing(request):
        return web.Response(text='<html><head></head><body><img src="logo.png"></body></html>',
                            content_type='text/html')

    async def uv_sw(request):
        return web.Response(text=UV_SW_JS, content_type='application/javascript')

    async def bare_worker(request):
        return web.Response(text=BARE_WORKER_JS, content_type='application/javascript')

    async def echo(request):
        return web.json_response({
            'method': request.method,
            'path_qs': request.path_qs,
            'body': (await request.read()).decode('utf-8'),
            'user_agent': request.headers.get('User-Agent'),
            'x_client': request.headers.get('X-Client'),
        })

    app = web.Application()
    app['hits'] = {}
    app.router.add_get('/', _counted(index))
    app.router.add_get('/codes.html', _counted(own_page))
    app.router.add_get('/style.css', _counted(style))
    app.router.add_get('/image.png', _counted(image))
    app.router.add_get('/redirect', _counted(redirect))
    app.router.add_get('/landing/page.html', _counted(landing))
    app.router.add_get('/uv/uv.sw.js', _counted(uv_sw))
    app.router.add_get('/baremux/worker.js', _counted(bare_worker))
    app.router.add_route('*', '/echo', _counted(echo))
    app.router.add_route('*', '/uv/echo.js', _counted(echo))
    app.router.add_route('*', '/baremux/echo.js', _counted(echo))
    return app


def make_bare_app() -> web.Application:
    """Fake bare relay: records every request and echoes it back"""

    async def relay(request):
        body = await request.read()
        request.app['requests'].append({
            'method': request.method,
            'path_qs': request.path_qs,
            'body': body,
            'headers': dict(request.headers),
        })

        if request.path.endswith('/moved'):
            return web.Response(status=302, headers={'Location': 'https://example.com/elsewhere'})

        return web.json_response(
            {'method': request.method, 'path_qs': request.path_qs},
            headers={'X-Upstream': 'bare'}
        )

    app = web.Application()
    app['requests'] = []
    app.router.add_route('*', '/{tail:.*}', relay)
    return app


class RecordingRegistry(BackendRegistry):
    """Registry double that counts how often a server was chosen"""

    def __init__(self, servers):
        super().__init__(servers)
        self.choices = []

    def choose(self) -> str:
        server = super().choose()
        self.choices.append(server)
        return server


@pytest_asyncio.fixture
async def origin_server():
    server = TestServer(make_origin_app())
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def bare_server():
    server = TestServer(make_bare_app())
    await server.start_server()
    yield server
    await server.close()


def base_url(server: TestServer) -> str:
    return str(server.make_url('/'))


@pytest_asyncio.fixture
async def make_proxy_client():
    """Factory: start a TinkleProxy and return (client, proxy)"""
    started = []

    async def factory(settings: ProxySettings, start_lifecycle: bool = True, **kwargs):
        proxy = TinkleProxy(settings, **kwargs)
        await proxy.initialize()
        if start_lifecycle:
            await proxy.lifecycle.start()

        client = TestClient(TestServer(proxy.create_app()))
        await client.start_server()
        started.append((client, proxy))
        return client, proxy

    yield factory

    for client, proxy in started:
        await client.close()
        await proxy.cleanup()


@pytest.fixture
def settings_for():
    """Build ProxySettings pointed at the fake servers"""

    def build(origin=None, bare=None, **overrides):
        values = {
            'origin_url': base_url(origin) if origin is not None else UNREACHABLE_URL,
            'bare_servers': (base_url(bare),) if bare is not None else (f'{UNREACHABLE_URL}/',),
            'timeout_total': 10.0,
            'timeout_connect': 5.0,
        }
        values.update(overrides)
        return ProxySettings(**values)

    return build
