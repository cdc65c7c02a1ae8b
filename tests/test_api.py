"""
Tests for API endpoints and device-facing file routes
"""
import json
from unittest.mock import patch

import pytest

from rosmirror.sync import SyncResult, SyncStatus


@pytest.fixture
def synced(client):
    response = client.post('/api/update-check')
    assert response.status_code == 200
    return json.loads(response.data)


class TestUpdateCheckEndpoint:

    def test_success(self, client):
        response = client.post('/api/update-check')
        data = json.loads(response.data)

        assert response.status_code == 200
        assert data['success'] is True
        assert data['data']['downloaded'] == 6
        assert data['data']['checkedVersions'] == ['v6:6.49.7', 'v7-fixed:7.12.1', 'v7-latest:7.20.4']
        assert 'timestamp' in data['data']
        assert data['message'] == 'Downloaded 6 files'

    @pytest.mark.parametrize('status, http_status, code', [
        (SyncStatus.ALREADY_IN_PROGRESS, 409, 'UPDATE_IN_PROGRESS'),
        (SyncStatus.NETWORK_UNAVAILABLE, 503, 'NETWORK_UNAVAILABLE'),
        (SyncStatus.NETWORK_ERROR, 503, 'NETWORK_ERROR'),
        (SyncStatus.FETCH_FAILED, 503, 'FETCH_FAILED'),
        (SyncStatus.TIMEOUT, 504, 'TIMEOUT'),
        (SyncStatus.ERROR, 500, 'INTERNAL_ERROR'),
    ])
    def test_status_mapping(self, client, services, status, http_status, code):
        with patch.object(services.orchestrator, 'run', return_value=SyncResult(status)):
            response = client.post('/api/update-check')

        assert response.status_code == http_status
        assert json.loads(response.data)['code'] == code

    def test_unhandled_error_uses_envelope(self, client, services):
        with patch.object(services.orchestrator, 'run', side_effect=RuntimeError('boom')):
            response = client.post('/api/update-check')

        data = json.loads(response.data)
        assert response.status_code == 500
        assert data == {'code': 'INTERNAL_ERROR', 'success': False, 'message': 'An unexpected error occurred'}

    def test_offline_upstream(self, client, fake_upstream):
        fake_upstream.online = False
        response = client.post('/api/update-check')
        assert response.status_code == 503


class TestVersionEndpoints:

    def test_versions(self, client, synced):
        data = json.loads(client.get('/api/versions').data)['data']

        assert data['v6'] == {'active': '6.49.7', 'versions': ['6.49.7']}
        assert data['v7']['activeFixed'] == '7.12.1'
        assert data['v7']['activeLatest'] == '7.20.4'
        assert data['v7']['versions'] == ['7.20.4', '7.12.1']
        assert data['lastCheck'] is not None

    def test_history(self, client, synced):
        client.post('/api/update-check')
        data = json.loads(client.get('/api/versions/history?take=1').data)['data']
        assert len(data) == 1
        assert data[0]['v7Stable'] == '7.20.4'

    def test_remove_active_is_conflict(self, client, synced, services):
        response = client.delete('/api/remove-version/7.20.4')
        assert response.status_code == 409
        assert services.store.is_complete('7.20.4', False)

    def test_remove_unknown(self, client):
        assert client.delete('/api/remove-version/7.0.1').status_code == 404

    def test_set_active_unknown(self, client):
        assert client.post('/api/set-active-version/9.9.9').status_code == 404

    def test_set_active_then_remove_old(self, client, synced, services, populate_version):
        populate_version('7.19.1', False)

        response = client.post('/api/set-active-version/7.19.1')
        assert response.status_code == 200
        assert services.state.v7_latest == '7.19.1'

        assert client.delete('/api/remove-version/7.20.4').status_code == 200

    def test_download_with_etag(self, client, synced):
        url = '/api/download/7.20.4/routeros-7.20.4-arm.npk'
        response = client.get(url)

        assert response.status_code == 200
        assert response.headers['Cache-Control'] == 'no-cache'
        assert 'attachment' in response.headers['Content-Disposition']
        etag = response.headers['ETag']

        cached = client.get(url, headers={'If-None-Match': etag})
        assert cached.status_code == 304

    def test_download_missing(self, client):
        assert client.get('/api/download/7.20.4/routeros-7.20.4-arm.npk').status_code == 404

    def test_changelog(self, client, synced):
        response = client.get('/api/changelog')
        assert response.status_code == 200
        assert response.data.decode().startswith('Current versions at')

        assert client.get('/api/changelog/7.20.4').status_code == 404


class TestFileRoutes:

    def test_pointer_file(self, client, synced):
        response = client.get('/routeros/LATEST.6')
        assert response.status_code == 200
        assert response.data == b'6.49.7 123\n'
        assert response.content_type == 'text/plain; charset=utf-8'

    def test_pointer_with_version_segment(self, client, synced):
        response = client.get('/routeros/7.20.4/NEWESTa7.stable')
        assert response.data == b'7.20.4 456\n'

    def test_unknown_pointer(self, client, synced):
        assert client.get('/routeros/NEWESTa7.nightly').status_code == 404

    def test_artifact_is_immutable(self, client, synced):
        response = client.get('/routeros/7.20.4/routeros-7.20.4-arm64.npk')

        assert response.status_code == 200
        assert response.data == b'firmware routeros-7.20.4-arm64.npk'
        assert response.headers['Cache-Control'] == 'public, max-age=31536000, immutable'
        assert response.headers['Content-Type'] == 'application/octet-stream'

    def test_head(self, client, synced):
        response = client.head('/routeros/6.49.7/all_packages-arm-6.49.7.zip')
        assert response.status_code == 200
        assert response.headers['Content-Type'] == 'application/zip'

    def test_traversal_is_forbidden(self, client, synced):
        assert client.get('/routeros/6.49.7/..%5Cboot.ini').status_code == 403
        assert client.get('/routeros/6.49.7/a/b').status_code == 403

    def test_missing_file(self, client, synced):
        response = client.get('/routeros/7.20.4/routeros-7.20.4-mipsbe.npk')
        assert response.status_code == 404
        assert json.loads(response.data)['requested'] == 'routeros/7.20.4/routeros-7.20.4-mipsbe.npk'


class TestSettingsEndpoints:

    def test_arches_roundtrip(self, client, services):
        response = client.post('/api/settings/arches', json={'arches': [' ARM64 ', 'mipsbe', 'arm64', '']})
        assert response.status_code == 200
        assert json.loads(response.data)['data']['arches'] == ['arm64', 'mipsbe']
        assert json.loads(client.get('/api/settings/arches').data)['data']['arches'] == ['arm64', 'mipsbe']
        assert services.store.expected_artifacts('7.20.4', False) == [
            'routeros-7.20.4-arm64.npk', 'routeros-7.20.4-mipsbe.npk',
        ]

    def test_empty_arches_fall_back_to_defaults(self, client):
        data = json.loads(client.post('/api/settings/arches', json=[]).data)['data']
        assert 'arm64' in data['arches'] and len(data['arches']) == 7

    def test_arches_rejects_garbage(self, client):
        assert client.post('/api/settings/arches', json={'arches': 'arm'}).status_code == 400

    def test_schedule(self, client):
        response = client.post('/api/schedule', json={'checkTime': '03:30', 'intervalMinutes': 30})
        assert response.status_code == 200
        data = json.loads(client.get('/api/schedule').data)['data']
        assert data['checkTime'] == '03:30:00'
        assert data['intervalMinutes'] == 30

    def test_schedule_validation(self, client):
        assert client.post('/api/schedule', json={'checkTime': 'later'}).status_code == 400

    def test_pause_and_resume(self, client):
        assert client.post('/api/schedule/pause?hours=2').status_code == 200
        assert json.loads(client.get('/api/schedule/status').data)['data']['status'] == 'Paused'

        assert client.post('/api/schedule/resume').status_code == 200
        assert json.loads(client.get('/api/schedule/status').data)['data']['status'] == 'Running'


class TestSystemEndpoints:

    def test_status(self, client, synced):
        data = json.loads(client.get('/api/status').data)['data']
        assert data['activeVersions']['v7Latest'] == '7.20.4'
        assert data['downloadedFiles'] == 6
        assert data['updateInProgress'] is False
        assert 'totalMB' in data['diskUsage']

    def test_diagnostics_uses_short_timeout(self, client):
        with patch('rosmirror.upstream.UpstreamClient.diagnose',
                   return_value={'upstreamServer': 'Connected', 'details': 'HTTP 200'}):
            response = client.get('/api/diagnostics')
        data = json.loads(response.data)['data']
        assert data['network']['upstreamServer'] == 'Connected'

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert json.loads(response.data)['data']['status'] == 'healthy'

    def test_metrics(self, client, synced):
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'rosmirror_sync_runs_total' in response.data
