"""REST route handlers for the Command Center backend."""

import json

from flask import request, jsonify

from monitoring.exceptions import InvalidCredentialsError, ValidationError


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _required(data: dict, key: str) -> str:
    value = data.get(key)
    if not value:
        raise ValidationError(f"{key} is required")
    return value


def register_project_routes(app, project_service, async_executor):
    """Register project listing and metadata routes."""

    @app.route('/api/projects', methods=['GET'])
    def list_projects():
        projects, root_errors = async_executor.run_async(project_service.list_projects())
        response = jsonify([project.to_dict() for project in projects])
        if root_errors:
            response.headers['X-Scan-Root-Errors'] = json.dumps(sorted(root_errors))
        return response

    @app.route('/api/projects/<project_id>', methods=['GET'])
    def get_project(project_id):
        project = async_executor.run_async(project_service.get_project(project_id))
        return jsonify(project.to_dict())

    @app.route('/api/projects/<project_id>', methods=['PATCH'])
    def update_project(project_id):
        project_service.update_project(project_id, _json_body())
        return jsonify({'success': True})

    @app.route('/api/search', methods=['GET'])
    def search():
        results = async_executor.run_async(project_service.search(request.args.get('q', '')))
        return jsonify({'results': results})


def register_git_routes(app, git_service, async_executor):
    """Register git action routes; every body carries a ``project`` id."""

    @app.route('/api/git/diff', methods=['GET'])
    def git_diff():
        project_id = request.args.get('project')
        if not project_id:
            raise ValidationError("project is required")
        diff = async_executor.run_async(git_service.diff(project_id, request.args.get('file')))
        return jsonify({'diff': diff})

    @app.route('/api/git/stage', methods=['POST'])
    def git_stage():
        data = _json_body()
        async_executor.run_async(git_service.stage(_required(data, 'project'), data.get('files')))
        return jsonify({'success': True})

    @app.route('/api/git/unstage', methods=['POST'])
    def git_unstage():
        data = _json_body()
        async_executor.run_async(git_service.unstage(_required(data, 'project'), data.get('files')))
        return jsonify({'success': True})

    @app.route('/api/git/commit', methods=['POST'])
    def git_commit():
        data = _json_body()
        async_executor.run_async(git_service.commit(_required(data, 'project'), data.get('message')))
        return jsonify({'success': True})

    @app.route('/api/git/push', methods=['POST'])
    def git_push():
        data = _json_body()
        async_executor.run_async(git_service.push(_required(data, 'project')))
        return jsonify({'success': True})

    @app.route('/api/git/pull', methods=['POST'])
    def git_pull():
        data = _json_body()
        output = async_executor.run_async(git_service.pull(_required(data, 'project')))
        return jsonify({'success': True, 'output': output})

    @app.route('/api/git/discard', methods=['POST'])
    def git_discard():
        data = _json_body()
        async_executor.run_async(git_service.discard(_required(data, 'project'), data.get('file')))
        return jsonify({'success': True})


def register_icloud_routes(app, calendar_service):
    """Register iCloud CalDAV routes."""

    @app.route('/api/icloud/status', methods=['GET'])
    def icloud_status():
        return jsonify(calendar_service.status())

    @app.route('/api/icloud/credentials', methods=['POST'])
    def icloud_credentials():
        data = _json_body()
        try:
            calendar_service.save_credentials(data.get('email'), data.get('appPassword'))
        except InvalidCredentialsError as e:
            return jsonify({'error': e.message, 'code': e.error_code.value}), 400
        return jsonify({'success': True})

    @app.route('/api/icloud/disconnect', methods=['POST'])
    def icloud_disconnect():
        calendar_service.disconnect()
        return jsonify({'success': True})

    @app.route('/api/icloud/calendars', methods=['GET'])
    def icloud_calendars():
        return jsonify([calendar.to_dict() for calendar in calendar_service.list_calendars()])

    @app.route('/api/icloud/events', methods=['GET'])
    def icloud_events():
        events = calendar_service.list_events(request.args.get('start'), request.args.get('end'))
        return jsonify({'events': [event.to_dict() for event in events]})

    @app.route('/api/icloud/events', methods=['POST'])
    def icloud_create_event():
        data = _json_body()
        uid = calendar_service.create_event(
            data.get('title'),
            data.get('start'),
            data.get('end'),
            data.get('description'),
            data.get('calendarUrl')
        )
        return jsonify({'success': True, 'id': uid})

    @app.route('/api/icloud/events/<path:event_id>', methods=['DELETE'])
    def icloud_delete_event(event_id):
        data = _json_body()
        calendar_service.delete_event(data.get('url'), data.get('etag'))
        return jsonify({'success': True, 'id': event_id})
