# core/proxy/paths.py
"""Префиксы путей, которые перехватывает прокси"""

ENTRY_PATHS = ('/', '/index.html')
OWN_PAGE_PATH = '/codes.html'

BARE_PREFIX = '/baremux/'
BARE_API_PREFIX = '/baremux/api/'
BARE_WORKER_PATH = '/baremux/worker.js'

UV_PREFIX = '/uv/'
UV_WORKER_PATH = '/uv/uv.sw.js'

EPOXY_PREFIX = '/epoxy/'
PROXY_PREFIX = '/proxy/'

# Служебный канал (управляющие сообщения, проверка кодов)
CONTROL_PREFIX = '/__tinkle__/'
