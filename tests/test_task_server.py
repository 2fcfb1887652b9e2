import base64
import http.client
import json
import threading
from pathlib import Path

import pytest

import parser_host
import task_server
from parser_host import activity_log, app_state
from parser_host.app_state import AppState, Store
from parser_host.keywords import Keyword
from parser_host.task_markdown import GeneratedTask, generate_markdown

DOC = generate_markdown([
    GeneratedTask(uuid='abc-123', title='Login', feature='Auth', order=1, created='2024-05-01'),
    GeneratedTask(uuid='def-456', title='Invoices', feature='Billing', order=2, status='done',
                  created='2024-05-01'),
])


class StubClient:
    def __init__(self):
        self.calls = []
        self.release = None

    def parse_tasks(self, raw_input, keywords, thinking_mode=False):
        self.calls.append(('parse', raw_input, thinking_mode))
        if self.release is not None:
            self.release.wait(5)
        return DOC

    def refine_output(self, current_output, instruction, keywords):
        self.calls.append(('refine', instruction))
        return current_output + '\n<!-- refined -->\n'

    def discover_keywords(self, context_text):
        self.calls.append(('discover', context_text))
        return ['Caching']


@pytest.fixture
def client(monkeypatch):
    stub = StubClient()
    monkeypatch.setattr(app_state, 'gemini_client', stub)
    return stub


@pytest.fixture
def server():
    srv = task_server.create_server(0, Store(AppState(keywords=[Keyword('k1', 'API', 1)])), host='127.0.0.1')
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def call(server, method, path, body=None, raw=None):
    conn = http.client.HTTPConnection('127.0.0.1', server.server_address[1], timeout=10)
    headers = {}
    payload = raw
    if body is not None:
        payload = json.dumps(body).encode('utf-8')
    if payload is not None:
        headers['Content-Type'] = 'application/json'
    conn.request(method, path, body=payload, headers=headers)
    response = conn.getresponse()
    data = response.read()
    conn.close()
    if response.getheader('Content-Type', '').startswith('application/json') and \
            'attachment' not in response.getheader('Content-Disposition', ''):
        data = json.loads(data)
    return response, data


def test_get_state(server):
    response, data = call(server, 'GET', '/api/state')
    assert response.status == 200
    assert data['rawInput'] == ''
    assert data['keywords'] == [{'id': 'k1', 'text': 'API', 'intensity': 1}]
    assert data['tasks'] == []
    assert data['summary']['total'] == 0
    assert 'Security' in data['suggestedKeywords']
    assert response.getheader('Access-Control-Allow-Origin') == '*'


def test_static_files(server):
    response, body = call(server, 'GET', '/')
    assert response.status == 200
    assert b'GoEpic Task Parser' in body
    response, _ = call(server, 'GET', '/task-viewer.js')
    assert response.status == 200


def test_unknown_path(server):
    response, _ = call(server, 'GET', '/nope')
    assert response.status == 404


def test_keyword_lifecycle(server):
    response, data = call(server, 'POST', '/api/keywords', {'text': 'api'})
    assert response.status == 200
    assert data['success']
    assert data['state']['keywords'][0]['intensity'] == 2

    _, data = call(server, 'POST', '/api/keywords', {'text': 'Security'})
    security = data['state']['keywords'][1]
    assert security['text'] == 'Security'
    assert 'Security' not in data['state']['suggestedKeywords']

    _, data = call(server, 'PATCH', '/api/keywords', {'id': security['id']})
    assert data['state']['keywords'][1]['intensity'] == 2

    _, data = call(server, 'DELETE', '/api/keywords', {'id': security['id']})
    assert [k['text'] for k in data['state']['keywords']] == ['API']


def test_blank_keyword_rejected(server):
    response, data = call(server, 'POST', '/api/keywords', {'text': '  '})
    assert response.status == 400
    assert data == {'success': False, 'error': 'Keyword text required'}


def test_invalid_json_body(server):
    response, data = call(server, 'POST', '/api/keywords', raw=b'{nope')
    assert response.status == 400
    assert data['error'].startswith('Invalid JSON')


def test_generate_and_interactive_view(server, client):
    call(server, 'PUT', '/api/input', {'rawInput': 'console.log("task")'})
    call(server, 'PUT', '/api/thinking-mode', {'enabled': True})

    response, data = call(server, 'POST', '/api/generate')
    assert response.status == 200
    state = data['state']
    assert client.calls == [('parse', 'console.log("task")', True)]
    assert state['parsedOutput'] == DOC
    assert not state['isProcessing']
    assert [t['uuid'] for t in state['tasks']] == ['abc-123', 'def-456']
    assert state['summary']['done'] == 1
    assert [f['feature'] for f in state['features']] == ['Auth', 'Billing']

    _, tasks = call(server, 'GET', '/api/tasks')
    assert tasks[0]['title'] == 'Login'


def test_generate_without_input(server, client):
    response, data = call(server, 'POST', '/api/generate')
    assert response.status == 400
    assert not data['success']
    assert client.calls == []


def test_generate_while_processing_conflicts(server, client):
    client.release = threading.Event()
    call(server, 'PUT', '/api/input', {'rawInput': 'x'})
    call(server, 'PUT', '/api/output', {'output': 'previous'})

    first = threading.Thread(target=call, args=(server, 'POST', '/api/generate'))
    first.start()
    for _ in range(100):
        if server.store.state.is_processing:
            break
        threading.Event().wait(0.05)
    assert server.store.state.is_processing

    response, data = call(server, 'POST', '/api/refine', {'instruction': 'x'})
    assert response.status == 409
    response, data = call(server, 'POST', '/api/generate')
    assert response.status == 409
    assert not data['success']

    client.release.set()
    first.join(timeout=10)
    assert not server.store.state.is_processing
    assert len([c for c in client.calls if c[0] == 'parse']) == 1


def test_refine(server, client):
    call(server, 'PUT', '/api/output', {'output': DOC})
    response, data = call(server, 'POST', '/api/refine', {'instruction': 'shorter'})
    assert response.status == 200
    assert data['state']['parsedOutput'].endswith('<!-- refined -->\n')
    assert client.calls == [('refine', 'shorter')]


def test_toggle_task(server):
    call(server, 'PUT', '/api/output', {'output': DOC})
    response, data = call(server, 'PATCH', '/api/tasks', {'uuid': 'abc-123'})
    assert response.status == 200
    assert [t['status'] for t in data['state']['tasks']] == ['done', 'done']

    response, data = call(server, 'PATCH', '/api/tasks', {'uuid': 'missing'})
    assert response.status == 404
    assert not data['success']


def test_reinforce_selection(server):
    _, data = call(server, 'POST', '/api/reinforce', {'text': ' rate limit '})
    assert data['state']['keywords'][-1]['text'] == 'rate limit'
    response, _ = call(server, 'POST', '/api/reinforce', {'text': ''})
    assert response.status == 400


def test_export_downloads(server):
    call(server, 'PUT', '/api/input', {'rawInput': 'raw'})
    call(server, 'PUT', '/api/output', {'output': DOC})

    response, body = call(server, 'GET', '/api/export/context')
    assert response.status == 200
    assert 'attachment; filename="goepic-context-' in response.getheader('Content-Disposition')
    saved = json.loads(body)
    assert saved['rawInputSnapshot'] == 'raw'
    assert saved['outputSnapshot'] == DOC
    assert saved['keywords'] == [{'id': 'k1', 'text': 'API', 'intensity': 1}]

    response, body = call(server, 'GET', '/api/export/markdown')
    assert response.getheader('Content-Type').startswith('text/markdown')
    assert body.decode('utf-8') == DOC


def test_import_context(server, client):
    content = json.dumps({
        'timestamp': 1,
        'keywords': [{'id': 'z', 'text': 'API', 'intensity': 4}],
        'rawInputSnapshot': 'imported raw logs with enough text',
    })
    response, data = call(server, 'POST', '/api/import', {'content': content})
    assert response.status == 200
    assert data['discovering'] is True
    assert data['state']['keywords'] == [{'id': 'k1', 'text': 'API', 'intensity': 4}]
    assert data['state']['rawInput'] == 'imported raw logs with enough text'

    for _ in range(100):
        if server.store.state.discovered_keywords:
            break
        threading.Event().wait(0.05)
    assert server.store.state.discovered_keywords == ['Caching']


def test_import_malformed(server, client):
    before = server.store.state
    response, data = call(server, 'POST', '/api/import', {'content': 'not json'})
    assert response.status == 400
    assert data['error'] == 'Failed to parse JSON context file.'
    assert server.store.state is before

    response, _ = call(server, 'POST', '/api/import', {'content': 42})
    assert response.status == 400


def test_import_with_overflowing_intensity(server, client):
    content = '{"keywords": [{"text": "Schema", "intensity": 1e999}]}'
    response, data = call(server, 'POST', '/api/import', {'content': content})
    assert response.status == 200
    assert data['state']['keywords'][-1]['text'] == 'Schema'
    assert data['state']['keywords'][-1]['intensity'] == 1

    for _ in range(100):
        if server.store.state.discovered_keywords:
            break
        threading.Event().wait(0.05)
    assert server.store.state.discovered_keywords == ['Caching']


def test_upload_input(server):
    data_url = 'data:text/plain;base64,' + base64.b64encode(b'line one\nline two').decode('ascii')
    response, data = call(server, 'POST', '/api/input/upload', {'filename': 'session.log', 'data': data_url})
    assert response.status == 200
    assert data['chars'] == len('line one\nline two')
    assert data['state']['rawInput'] == 'line one\nline two'


def test_upload_empty_file(server):
    response, data = call(server, 'POST', '/api/input/upload', {'filename': 'a.txt', 'data': ''})
    assert response.status == 400
    assert not data['success']


def test_settings_round_trip(server):
    response, data = call(server, 'PUT', '/api/settings', {'gemini_api_key': 'secret-abcd', 'port': 9090})
    assert data == {'success': True}
    _, masked = call(server, 'GET', '/api/settings')
    assert masked['gemini_api_key'] == '•••••••abcd'
    assert masked['port'] == 9090

    call(server, 'PUT', '/api/settings', {'gemini_api_key': masked['gemini_api_key']})
    _, again = call(server, 'GET', '/api/settings')
    assert again['gemini_api_key'] == '•••••••abcd'


def test_logs_endpoint(server):
    activity_log.add_log('gemini', 'parse', 'success')
    _, logs = call(server, 'GET', '/api/logs?limit=5')
    assert logs[0]['action'] == 'parse'
    response, data = call(server, 'DELETE', '/api/logs')
    assert data == {'success': True}
    _, logs = call(server, 'GET', '/api/logs')
    assert logs == []


def test_options_preflight(server):
    response, _ = call(server, 'OPTIONS', '/api/state')
    assert response.status == 200
    assert 'PATCH' in response.getheader('Access-Control-Allow-Methods')


def test_viewer_ships_inside_package():
    package_dir = Path(parser_host.__file__).parent
    assert task_server.STATIC_DIR.parent == package_dir
    for name in set(task_server.STATIC_FILES.values()):
        assert (task_server.STATIC_DIR / name).is_file()
    pyproject = (Path(task_server.__file__).parent / 'pyproject.toml').read_text(encoding='utf-8')
    assert '"static/*.html", "static/*.js"' in pyproject
