# main.py
import argparse
import asyncio
import json
import sys
import time
import logging


def setup_logging(level: str = 'INFO'):
    """Настраивает логирование ДО всех операций с ротацией"""
    from core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    app_data_dir = get_app_data_dir()
    logs_dir = app_data_dir / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "tinkle.log"

    # Ротирующий обработчик: макс 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        handlers=[console_handler, file_handler]
    )


logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='tinkle-proxy', description='Tinkle interception proxy')
    parser.add_argument('--host', help='Адрес для прослушивания')
    parser.add_argument('--port', type=int, help='Локальный порт')
    parser.add_argument('--origin', help='URL origin сервера со статикой приложения')
    parser.add_argument('--code', help='Проверить код доступа и выйти')
    return parser.parse_args(argv)


def lookup_code(settings, code: str) -> int:
    """Проверяет код доступа и печатает результат в JSON"""
    from core.code_lookup import CodeLookup, LookupUnavailable

    code_lookup = CodeLookup(settings.codes_url, timeout=settings.lookup_timeout)
    try:
        result = asyncio.run(code_lookup.lookup(code))
    except LookupUnavailable as e:
        print(json.dumps({'error': f'Error fetching codes: {e}'}))
        return 1

    print(json.dumps(result.to_dict()))
    return 0 if result.valid else 2


def main(argv=None):
    """Основная функция приложения"""
    args = parse_args(argv)

    from core.config_manager import ProxySettings, get_config

    config = get_config()
    setup_logging(config.get('logging.level', 'INFO'))

    if args.host:
        config.set('server.host', args.host)
    if args.port:
        config.set('server.local_port', args.port)
    if args.origin:
        config.set('server.origin_url', args.origin)

    settings = ProxySettings.from_config(config)

    if args.code is not None:
        return lookup_code(settings, args.code)

    from core.proxy_manager import get_proxy_manager

    proxy_manager = get_proxy_manager()
    proxy_manager.settings = settings

    logger.info("🚀 Запуск Tinkle Proxy")

    if not proxy_manager.start():
        logger.error(f"❌ Не удалось запустить прокси: {proxy_manager.last_error_details}")
        return 1

    try:
        while proxy_manager.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("🛑 Завершение работы приложения")
    finally:
        proxy_manager.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
