"""Tests for the HTTP API."""

import json
import os

import pytest

from application import ProjectService, GitActionService, CalendarService
from config import Config, ScannerConfig, StorageConfig
from domain import encode_project_id
from infrastructure.caldav import CalDAVEventBridge
from infrastructure.git import GitInspector
from infrastructure.repositories import JsonProjectMetadataRepository, JsonCredentialsRepository
from infrastructure.scanner import ProjectScanner
from monitoring import HealthChecker
from presentation import create_app

from conftest import FakeRunner, git_responses, SERVER_URL, WORK_URL, vevent


@pytest.fixture
def root(tmp_path):
    root = tmp_path / 'code'
    root.mkdir()
    (root / 'web').mkdir()
    (root / 'web' / 'package.json').write_text(json.dumps({'scripts': {'dev': 'vite'}}))
    (root / 'web' / '.git').mkdir()
    return root


@pytest.fixture
def runner():
    return FakeRunner(git_responses(branch='main', status=' M index.js\n'))


@pytest.fixture
def app_parts(tmp_path, root, runner, caldav_server):
    missing = str(tmp_path / 'missing')
    config = Config(
        scanner=ScannerConfig(roots=[str(root), missing]),
        storage=StorageConfig(data_dir=str(tmp_path / 'data'))
    )
    credentials_repo = JsonCredentialsRepository(config.storage.icloud_credentials_file)
    project_service = ProjectService(
        ProjectScanner(GitInspector(runner)),
        JsonProjectMetadataRepository(config.storage.projects_file),
        config.scanner.roots
    )
    services = {
        'project_service': project_service,
        'git_service': GitActionService(runner, project_service),
        'calendar_service': CalendarService(
            CalDAVEventBridge(SERVER_URL, session_factory=caldav_server.session),
            credentials_repo
        ),
        'health_checker': HealthChecker(config.scanner.roots, credentials_repo),
    }
    return config, services, credentials_repo


@pytest.fixture
def client(app_parts):
    config, services, _ = app_parts
    app = create_app(config, **services)
    return app.test_client()


@pytest.fixture
def web_id(root):
    return encode_project_id(os.path.realpath(root / 'web'))


class TestProjectRoutes:

    def test_list_projects(self, client, web_id, tmp_path):
        response = client.get('/api/projects')

        assert response.status_code == 200
        [project] = response.get_json()
        assert project['id'] == web_id
        assert project['name'] == 'web'
        assert project['type'] == 'node'
        assert project['scripts'] == ['dev']
        assert project['hasNodeModules'] is False
        assert project['git']['branch'] == 'main'
        assert project['git']['isClean'] is False
        assert project['modified'].endswith('Z')
        assert str(tmp_path / 'missing') in json.loads(response.headers['X-Scan-Root-Errors'])

    def test_patch_project(self, client, web_id):
        response = client.patch(f'/api/projects/{web_id}', json={'pinned': True, 'notes': 'demo'})
        assert response.get_json() == {'success': True}

        project = client.get(f'/api/projects/{web_id}').get_json()
        assert project['pinned'] is True
        assert project['notes'] == 'demo'

    def test_invalid_project_id(self, client):
        response = client.patch('/api/projects/***', json={'notes': 'x'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_PROJECT_ID'

    def test_project_outside_roots(self, client, tmp_path):
        response = client.get(f'/api/projects/{encode_project_id(str(tmp_path))}')
        assert response.status_code == 404
        assert response.get_json()['code'] == 'PROJECT_NOT_FOUND'

    def test_search(self, client):
        assert client.get('/api/search?q=we').get_json()['results'][0]['title'] == 'web'
        assert client.get('/api/search?q=').get_json() == {'results': []}


class TestGitRoutes:

    def test_commit_requires_project(self, client):
        response = client.post('/api/git/commit', json={'message': 'x'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_commit_requires_message(self, client, web_id, runner):
        response = client.post('/api/git/commit', json={'project': web_id, 'message': ''})
        assert response.status_code == 400
        assert not any(args[0] == 'commit' for _, args in runner.calls)

    @pytest.mark.parametrize('path,body', [
        ('/api/git/stage', {'files': 'index.js'}),
        ('/api/git/unstage', {'files': [1, 2]}),
        ('/api/git/commit', {'message': 123}),
        ('/api/git/discard', {'file': ['index.js']}),
    ])
    def test_wrong_body_types_rejected(self, client, web_id, runner, path, body):
        response = client.post(path, json=dict(body, project=web_id))

        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'
        assert runner.calls == []

    def test_diff_single_file(self, client, web_id, runner):
        runner.responses[('diff', '--', 'index.js')] = 'diff --git a/index.js b/index.js\n'
        ok = client.get(f'/api/git/diff?project={web_id}&file=index.js')
        assert ok.get_json()['diff'].startswith('diff --git')

    def test_stage_files(self, client, web_id, runner):
        runner.responses[('add', '--', 'index.js')] = ''
        response = client.post('/api/git/stage', json={'project': web_id, 'files': ['index.js']})
        assert response.get_json() == {'success': True}
        assert runner.calls[-1][1] == ('add', '--', 'index.js')

    def test_pull(self, client, web_id, runner):
        runner.responses[('pull',)] = 'Already up to date.\n'
        response = client.post('/api/git/pull', json={'project': web_id})
        assert response.get_json() == {'success': True, 'output': 'Already up to date.\n'}

    def test_git_failure_is_server_error(self, client, web_id):
        response = client.post('/api/git/push', json={'project': web_id})
        assert response.status_code == 500
        assert response.get_json()['code'] == 'GIT_COMMAND_ERROR'


class TestICloudRoutes:

    def test_status_not_connected(self, client):
        assert client.get('/api/icloud/status').get_json() == {'connected': False, 'hasCredentials': False}

    def test_events_require_connection(self, client):
        response = client.get('/api/icloud/events')
        assert response.status_code == 401
        assert response.get_json()['code'] == 'NOT_CONNECTED'

    def test_rejected_credentials(self, client, app_parts):
        response = client.post('/api/icloud/credentials',
                               json={'email': 'user@example.com', 'appPassword': 'wrong'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_CREDENTIALS'
        assert app_parts[2].load() is None

    def test_event_lifecycle(self, client, caldav_server, credentials):
        response = client.post('/api/icloud/credentials',
                               json={'email': credentials.email, 'appPassword': credentials.app_password})
        assert response.get_json() == {'success': True}
        assert client.get('/api/icloud/status').get_json()['connected'] is True

        calendars = client.get('/api/icloud/calendars').get_json()
        assert [c['displayName'] for c in calendars] == ['Work', 'Personal']

        created = client.post('/api/icloud/events', json={
            'title': 'Demo', 'start': '2024-03-15T09:00:00Z', 'end': '2024-03-15T10:00:00Z'
        }).get_json()
        assert created['success'] is True

        events = client.get('/api/icloud/events?start=2024-03-01T00:00:00Z&end=2024-04-01T00:00:00Z')
        [event] = events.get_json()['events']
        assert event['id'] == created['id']
        assert event['start'] == '2024-03-15T09:00:00.000Z'
        assert event['description'] == ''

        stale = client.delete(f"/api/icloud/events/{event['id']}", json={'url': event['url'], 'etag': '"old"'})
        assert stale.status_code == 409
        assert stale.get_json()['code'] == 'EVENT_CONFLICT'

        deleted = client.delete(f"/api/icloud/events/{event['id']}",
                                json={'url': event['url'], 'etag': event['etag']})
        assert deleted.get_json()['success'] is True

        gone = client.delete(f"/api/icloud/events/{event['id']}",
                             json={'url': event['url'], 'etag': event['etag']})
        assert gone.status_code == 404
        assert gone.get_json()['code'] == 'EVENT_NOT_FOUND'

    def test_create_event_validation(self, client, credentials_saved):
        response = client.post('/api/icloud/events', json={'start': '2024-03-15T09:00:00Z'})
        assert response.status_code == 400

    def test_non_text_fields_rejected(self, client, credentials_saved, caldav_server):
        response = client.post('/api/icloud/events', json={'title': 7, 'start': '2024-03-15T09:00:00Z'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

        response = client.post('/api/icloud/credentials', json={'email': ['a'], 'appPassword': 'x'})
        assert response.status_code == 400
        assert caldav_server.requests == []

    def test_inverted_event_window(self, client, credentials_saved):
        response = client.get('/api/icloud/events?start=2024-04-01T00:00:00Z&end=2024-03-01T00:00:00Z')
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_disconnect(self, client, credentials_saved, app_parts):
        assert client.post('/api/icloud/disconnect').get_json() == {'success': True}
        assert app_parts[2].load() is None

    @pytest.fixture
    def credentials_saved(self, app_parts, credentials):
        app_parts[2].save(credentials)


class TestHealthRoute:

    def test_degraded_with_missing_root(self, client, tmp_path):
        body = client.get('/health').get_json()
        assert body['status'] == 'degraded'
        assert str(tmp_path / 'missing') in body['unreadableRoots']
        assert body['services']['icloud_configured'] is False

    def test_unknown_route(self, client):
        response = client.get('/api/nope')
        assert response.status_code == 404
        assert response.get_json() == {'error': 'Not found'}
