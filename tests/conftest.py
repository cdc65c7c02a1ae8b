"""
Pytest fixtures and configuration for RouterOS Mirror tests
"""
import copy
import io
import os
import zipfile
from unittest.mock import MagicMock

import pytest
import requests

from rosmirror.constants import DEFAULT_SETTINGS
from rosmirror.settings import ArchitectureConfig
from rosmirror.sync import SyncOrchestrator
from rosmirror.upstream import UpstreamClient
from rosmirror.versions import ActiveVersions, VersionStore

TEST_ARCHES = ['arm', 'arm64']


def make_bundle(names):
    """In-memory zip holding one small entry per name"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name in names:
            archive.writestr(name, f"payload of {name}".encode())
    return buffer.getvalue()


class FakeUpstream(UpstreamClient):
    """Upstream client answering from in-memory tables instead of the network"""

    def __init__(self, pointers=None, texts=None):
        super().__init__(DEFAULT_SETTINGS['upstream'], session=MagicMock())
        self.online = True
        self.pointers = pointers if pointers is not None else {
            'LATEST.6': '6.49.7 123',
            'NEWESTa7.stable': '7.20.4 456',
        }
        self.texts = texts or {}
        self.missing = set()
        self.failing = set()
        self.downloads = []
        self.on_download = None
        self.connectivity_hook = None

    def check_connectivity(self):
        if self.connectivity_hook:
            self.connectivity_hook()
        return self.online

    def file_exists(self, url):
        return url.rsplit('/', 1)[-1] not in self.missing

    def resolve_version(self, url):
        text = self.pointers.get(url.rsplit('/', 1)[-1])
        if not text:
            return None, 0
        parts = text.split()
        return parts[0], int(parts[1]) if len(parts) > 1 else 0

    def download_bytes(self, url, checkpoint=None):
        filename = url.rsplit('/', 1)[-1]
        if self.on_download:
            self.on_download(filename)
        if checkpoint:
            checkpoint()
        if filename in self.failing:
            raise requests.exceptions.ConnectionError(f"connection reset while fetching {filename}")
        self.downloads.append(filename)
        if filename.endswith('.zip'):
            # all_packages-{arch}-{version}.zip
            _, arch, version = filename[:-len('.zip')].split('-', 2)
            return make_bundle([
                f"routeros-{arch}-{version}.npk",
                f"wireless-{version}-{arch}.npk",
                f"dude-{version}-{arch}.npk",
            ])
        return f"firmware {filename}".encode()

    def download_text(self, url):
        return self.texts.get(url)


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / 'config'
    path.mkdir()
    return str(path)


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'data'
    path.mkdir()
    return str(path)


@pytest.fixture
def arches(config_dir):
    config = ArchitectureConfig(config_dir)
    config.update(TEST_ARCHES)
    return config


@pytest.fixture
def state():
    return ActiveVersions()


@pytest.fixture
def store(data_dir, arches, state):
    return VersionStore(os.path.join(data_dir, 'routeros'), arches, state, fixed_version='7.12.1')


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def sync_settings():
    return copy.deepcopy(DEFAULT_SETTINGS['sync'])


@pytest.fixture
def orchestrator(store, fake_upstream, config_dir, sync_settings):
    return SyncOrchestrator(store, fake_upstream, config_dir, sync_settings)


@pytest.fixture
def populate_version(store):
    """Create a complete (or partial) version directory on disk"""

    def _populate(version, is_v6, arches=None, size=16):
        version_dir = store.version_dir(version, is_v6)
        os.makedirs(version_dir, exist_ok=True)
        for arch in arches if arches is not None else store.arches.get():
            with open(os.path.join(version_dir, store.artifact_name(arch, version, is_v6)), 'wb') as f:
                f.write(b'x' * size)
        return version_dir

    return _populate


@pytest.fixture
def app(config_dir, data_dir, fake_upstream):
    from rosmirror.app import create_app

    with open(os.path.join(config_dir, 'allowed_arches.json'), 'w') as f:
        f.write('["arm", "arm64"]')
    _app = create_app(config_dir=config_dir, data_dir=data_dir, start_scheduler=False, upstream=fake_upstream)
    _app.config.update({'TESTING': True})
    return _app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def services(app):
    return app.extensions['rosmirror']
