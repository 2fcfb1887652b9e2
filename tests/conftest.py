import io
import json
import urllib.error

import pytest

from parser_host import activity_log, gemini_client
from parser_host.settings import API_KEY_ENV_VARS


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point settings and logs at tmp_path and drop any real API key."""
    monkeypatch.setenv('GOEPIC_SETTINGS_FILE', str(tmp_path / 'settings.json'))
    for var in API_KEY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(activity_log, 'LOG_FILE', tmp_path / 'parser.log')
    activity_log.clear_logs()
    yield
    activity_log.clear_logs()


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv('GEMINI_API_KEY', 'test-key')
    return 'test-key'


class FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode('utf-8')

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def gemini_payload(*texts, thought=None):
    parts = []
    if thought:
        parts.append({'text': thought, 'thought': True})
    parts.extend({'text': t} for t in texts)
    return {'candidates': [{'content': {'role': 'model', 'parts': parts}}]}


def http_error(code, reason, message=None):
    body = json.dumps({'error': {'message': message}}).encode('utf-8') if message else b''
    return urllib.error.HTTPError('https://example.invalid', code, reason, {}, io.BytesIO(body))


class FakeGemini:
    """Queue of canned urlopen results; records every request."""

    def __init__(self):
        self.responses = []
        self.calls = []

    def queue(self, *results):
        self.responses.extend(results)

    def urlopen(self, req, timeout=None):
        self.calls.append({
            'url': req.full_url,
            'api_key': req.get_header('X-goog-api-key'),
            'body': json.loads(req.data.decode('utf-8')),
            'timeout': timeout,
        })
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return FakeResponse(result)

    @property
    def last_body(self):
        return self.calls[-1]['body']

    @property
    def last_prompt(self):
        return self.last_body['contents'][0]['parts'][0]['text']


@pytest.fixture
def fake_gemini(monkeypatch):
    fake = FakeGemini()
    monkeypatch.setattr(gemini_client.urllib.request, 'urlopen', fake.urlopen)
    return fake
