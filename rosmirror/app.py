"""
RouterOS Mirror - local update server for MikroTik devices
Application Factory and startup
"""
import atexit
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import flask.cli
import structlog
from flask import Flask, request

from rosmirror.constants import BUILD_VERSION, CONFIG_DIR, DATA_DIR, STORE_DIRNAME
from rosmirror.exceptions import register_exception_handlers
from rosmirror.jobs import JobScheduler
from rosmirror.resolver import FileResolver
from rosmirror.routes import EXTENSION_KEY, register_blueprints
from rosmirror.schedule import ScheduleService
from rosmirror.settings import ArchitectureConfig, load_settings
from rosmirror.sync import SyncOrchestrator
from rosmirror.upstream import UpstreamClient
from rosmirror.utils import ColoredFormatter, FilterRemoveDateFromWerkzeugLogs, now_utc
from rosmirror.versions import ActiveVersions, VersionStore

flask.cli.show_server_banner = lambda *args: None

logger = structlog.get_logger('main')

IMMUTABLE_SUFFIXES = ('.npk', '.zip')

_logging_configured = False


def configure_logging(level=logging.INFO):
    """Colored stdlib root handler with structlog on top"""
    global _logging_configured
    if _logging_configured:
        return

    formatter = ColoredFormatter(
        '[%(asctime)s.%(msecs)03d] %(levelname)s (%(module)s) %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler]
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.environ.get('LOG_FORMAT') == 'json' else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Hide date from http access logs
    logging.getLogger('werkzeug').addFilter(FilterRemoveDateFromWerkzeugLogs())
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    _logging_configured = True


@dataclass
class MirrorServices:
    settings: dict
    config_dir: str
    store: VersionStore
    state: ActiveVersions
    arches: ArchitectureConfig
    upstream: UpstreamClient
    orchestrator: SyncOrchestrator
    resolver: FileResolver
    schedule: ScheduleService
    started_at: datetime
    scheduler: Optional[JobScheduler] = None

    def diagnostics_client(self) -> UpstreamClient:
        return UpstreamClient.for_diagnostics(self.settings['upstream'])


def build_services(config_dir: str, data_dir: str, upstream: Optional[UpstreamClient] = None) -> MirrorServices:
    settings = load_settings(config_dir)
    sync_settings = settings['sync']

    arches = ArchitectureConfig(config_dir)
    state = ActiveVersions()
    store = VersionStore(
        os.path.join(data_dir, STORE_DIRNAME),
        arches,
        state,
        fixed_version=sync_settings['v7_fixed_version'],
        prune_unparseable=sync_settings.get('prune_unparseable', True),
    )
    store.restore_active_versions()

    upstream = upstream or UpstreamClient(settings['upstream'])
    orchestrator = SyncOrchestrator(store, upstream, config_dir, sync_settings)

    return MirrorServices(
        settings=settings,
        config_dir=config_dir,
        store=store,
        state=state,
        arches=arches,
        upstream=upstream,
        orchestrator=orchestrator,
        resolver=FileResolver(store),
        schedule=ScheduleService(config_dir),
        started_at=now_utc(),
    )


def create_app(config_dir: Optional[str] = None, data_dir: Optional[str] = None,
               start_scheduler: bool = True, upstream: Optional[UpstreamClient] = None):
    """Application factory"""
    configure_logging()

    config_dir = config_dir or CONFIG_DIR
    data_dir = data_dir or DATA_DIR
    os.makedirs(config_dir, exist_ok=True)
    os.makedirs(data_dir, exist_ok=True)

    app = Flask(__name__)
    app.json.sort_keys = False

    services = build_services(config_dir, data_dir, upstream)
    app.extensions[EXTENSION_KEY] = services

    register_exception_handlers(app)
    register_blueprints(app)

    @app.after_request
    def set_cache_headers(response):
        path = request.path
        if path.startswith('/api/'):
            response.headers['Cache-Control'] = 'no-cache'
        elif path.lower().endswith(IMMUTABLE_SUFFIXES) and response.status_code in (200, 304):
            response.headers['Cache-Control'] = 'public, max-age=31536000, immutable'
        return response

    if start_scheduler:
        services.scheduler = JobScheduler(services.orchestrator, services.schedule)
        services.scheduler.start()
        atexit.register(services.scheduler.shutdown)

    logger.info("application initialized", build=BUILD_VERSION, store=services.store.root,
                arches=services.arches.get())
    return app


def main():
    app = create_app()
    server = app.extensions[EXTENSION_KEY].settings['server']
    logger.info(f'Build Version: {BUILD_VERSION}')
    logger.info(f"Starting server on port {server['port']}...")
    app.run(host=server['host'], port=int(server['port']), threaded=True, debug=False, use_reloader=False)


if __name__ == '__main__':
    main()
