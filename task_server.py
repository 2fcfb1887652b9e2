#!/usr/bin/env python3
# Run with: python3 task_server.py
"""
HTTP server for the GoEpic Task Parser.
Run: python3 task_server.py
Opens browser to http://localhost:8080

The server owns the application state (parser_host.app_state.Store) and
serves the browser UI (parser_host/static/task-viewer.html and .js). Every UI
action is a JSON call that dispatches a command against the store.
"""

import http.server
import json
import mimetypes
import webbrowser
from pathlib import Path
from urllib.parse import urlparse, unquote, parse_qs

import parser_host
from parser_host import activity_log
from parser_host import app_state
from parser_host import settings as settings_module
from parser_host.documents import DocumentError, decode_data_url, extract_text
from parser_host.prompts import SUGGESTED_KEYWORDS
from parser_host.task_markdown import group_by_feature, parse_markdown_tasks, task_summary

# Installed with the package (see package-data in pyproject.toml)
STATIC_DIR = Path(parser_host.__file__).parent / 'static'
STATIC_FILES = {
    '/': 'task-viewer.html',
    '/task-viewer.html': 'task-viewer.html',
    '/task-viewer.js': 'task-viewer.js',
}


def state_payload(state):
    """Full UI model: state plus the parsed checklist of the current document."""
    tasks = parse_markdown_tasks(state.parsed_output)
    keyword_texts = {k.text for k in state.keywords}
    payload = state.to_dict()
    payload['tasks'] = [t.to_dict() for t in tasks]
    payload['features'] = [
        {'feature': feature, 'tasks': [t.uuid for t in feature_tasks]}
        for feature, feature_tasks in group_by_feature(tasks).items()
    ]
    payload['summary'] = task_summary(tasks)
    payload['suggestedKeywords'] = [k for k in SUGGESTED_KEYWORDS if k not in keyword_texts]
    return payload


class TaskHandler(http.server.BaseHTTPRequestHandler):
    """HTTP handler for the task parser API and static file serving."""

    @property
    def store(self):
        return self.server.store

    def send_json(self, data, status=200):
        """Send JSON response with CORS headers."""
        content = json.dumps(data).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', len(content))
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, PUT, PATCH, DELETE, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.end_headers()
        self.wfile.write(content)

    def send_state(self, status=200, **extra):
        data = {'success': True, 'state': state_payload(self.store.state)}
        data.update(extra)
        self.send_json(data, status)

    def send_error_json(self, message, status=400):
        self.send_json({'success': False, 'error': message}, status)

    def send_file(self, file_path):
        """Serve a static file."""
        if not file_path.exists():
            self.send_error(404, 'File not found')
            return

        mime_type, _ = mimetypes.guess_type(str(file_path))
        if mime_type is None:
            mime_type = 'application/octet-stream'

        with open(file_path, 'rb') as f:
            content = f.read()

        self.send_response(200)
        self.send_header('Content-Type', mime_type)
        self.send_header('Content-Length', len(content))
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()
        self.wfile.write(content)

    def send_download(self, text, filename, mime_type):
        """Send text as a file attachment."""
        content = text.encode('utf-8')
        self.send_response(200)
        self.send_header('Content-Type', f'{mime_type}; charset=utf-8')
        self.send_header('Content-Length', len(content))
        self.send_header('Content-Disposition', f'attachment; filename="{filename}"')
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()
        self.wfile.write(content)

    def read_body(self):
        """Parse the JSON request body ({} when empty). Raises ValueError."""
        content_length = int(self.headers.get('Content-Length', 0))
        if content_length <= 0:
            return {}
        body = json.loads(self.rfile.read(content_length))
        if not isinstance(body, dict):
            raise ValueError('Body must be a JSON object')
        return body

    def _dispatch(self, handler):
        """Read the body, run the route handler and map errors to JSON."""
        try:
            body = self.read_body()
        except ValueError as e:
            self.send_error_json(f'Invalid JSON: {str(e)}', 400)
            return

        try:
            handler(urlparse(self.path), body)
        except app_state.BusyError as e:
            self.send_error_json(str(e), 409)
        except app_state.TaskNotFoundError as e:
            self.send_error_json(str(e), 404)
        except (app_state.CommandError, DocumentError) as e:
            self.send_error_json(str(e), 400)
        except Exception as e:
            print(f'{self.command} {self.path} error: {e}')
            activity_log.log(f"{self.command} {self.path} error: {e}")
            self.send_error_json(str(e), 500)

    def do_OPTIONS(self):
        """Handle CORS preflight requests."""
        self.send_response(200)
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, PUT, PATCH, DELETE, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.end_headers()

    def do_GET(self):
        """Handle GET requests."""
        parsed = urlparse(self.path)
        path = unquote(parsed.path)

        if path == '/api/state':
            self.send_json(state_payload(self.store.state))

        elif path == '/api/tasks':
            tasks = parse_markdown_tasks(self.store.state.parsed_output)
            self.send_json([t.to_dict() for t in tasks])

        elif path == '/api/logs':
            # Return API logs for real-time monitoring
            query_params = parse_qs(parsed.query)
            since = query_params.get('since', [None])[0]
            try:
                limit = int(query_params.get('limit', [100])[0])
            except ValueError:
                limit = 100
            self.send_json(activity_log.get_logs(since, limit))

        elif path == '/api/settings':
            # Mask sensitive values for display
            self.send_json(settings_module.mask_settings(settings_module.load_settings()))

        elif path == '/api/export/context':
            state = self.store.state
            self.send_download(app_state.export_context_json(state), app_state.context_filename(),
                               'application/json')

        elif path == '/api/export/markdown':
            self.send_download(self.store.state.parsed_output, app_state.markdown_filename(),
                               'text/markdown')

        elif path in STATIC_FILES:
            self.send_file(STATIC_DIR / STATIC_FILES[path])

        else:
            self.send_error(404, 'Not found')

    def do_POST(self):
        """Handle POST requests (create / run)."""
        self._dispatch(self._post)

    def _post(self, parsed, body):
        if parsed.path == '/api/keywords':
            text = str(body.get('text', '')).strip()
            if not text:
                self.send_error_json('Keyword text required')
                return
            self.store.dispatch(app_state.ADD_KEYWORD, text=text)
            self.send_state()

        elif parsed.path == '/api/reinforce':
            # Text selected in the document view becomes a keyword
            app_state.reinforce_selection(self.store, str(body.get('text', '')))
            self.send_state()

        elif parsed.path == '/api/generate':
            app_state.run_generate(self.store)
            self.send_state()

        elif parsed.path == '/api/refine':
            app_state.run_refine(self.store, str(body.get('instruction', '')))
            self.send_state()

        elif parsed.path == '/api/import':
            content = body.get('content')
            if not isinstance(content, str):
                raise app_state.ContextImportError(app_state.IMPORT_ERROR_MESSAGE)
            thread = app_state.run_import(self.store, content)
            self.send_state(discovering=thread is not None)

        elif parsed.path == '/api/input/upload':
            filename = str(body.get('filename', ''))
            data = decode_data_url(body.get('data', ''))
            text = extract_text(data, filename)
            self.store.dispatch(app_state.SET_RAW_INPUT, text=text)
            self.send_state(chars=len(text))

        else:
            self.send_error(404, 'Not found')

    def do_PUT(self):
        """Handle PUT requests (replace)."""
        self._dispatch(self._put)

    def _put(self, parsed, body):
        if parsed.path == '/api/input':
            self.store.dispatch(app_state.SET_RAW_INPUT, text=str(body.get('rawInput', '')))
            self.send_state()

        elif parsed.path == '/api/output':
            self.store.dispatch(app_state.SET_OUTPUT, text=str(body.get('output', '')))
            self.send_state()

        elif parsed.path == '/api/thinking-mode':
            self.store.dispatch(app_state.SET_THINKING_MODE, enabled=bool(body.get('enabled')))
            self.send_state()

        elif parsed.path == '/api/settings':
            # Only update fields that are provided and not masked
            settings = settings_module.apply_settings_update(settings_module.load_settings(), body)
            if settings_module.save_settings(settings):
                self.send_json({'success': True})
            else:
                self.send_error_json('Failed to save settings', 500)

        else:
            self.send_error(404, 'Not found')

    def do_PATCH(self):
        """Handle PATCH requests (partial update)."""
        self._dispatch(self._patch)

    def _patch(self, parsed, body):
        if parsed.path == '/api/keywords':
            keyword_id = body.get('id')
            if not keyword_id:
                self.send_error_json('Missing id')
                return
            self.store.dispatch(app_state.CYCLE_INTENSITY, id=keyword_id)
            self.send_state()

        elif parsed.path == '/api/tasks':
            # Toggle task status
            task_uuid = body.get('uuid')
            if task_uuid is None:
                self.send_error_json('Missing uuid')
                return
            app_state.toggle_task(self.store, str(task_uuid))
            self.send_state()

        else:
            self.send_error(404, 'Not found')

    def do_DELETE(self):
        """Handle DELETE requests."""
        self._dispatch(self._delete)

    def _delete(self, parsed, body):
        if parsed.path == '/api/keywords':
            keyword_id = body.get('id')
            if not keyword_id:
                self.send_error_json('Missing id')
                return
            self.store.dispatch(app_state.REMOVE_KEYWORD, id=keyword_id)
            self.send_state()

        elif parsed.path == '/api/logs':
            # Clear all API logs
            activity_log.clear_logs()
            self.send_json({'success': True})

        else:
            self.send_error(404, 'Not found')

    def log_message(self, format, *args):
        """Suppress default logging for cleaner output."""
        pass


def create_server(port, store=None, host=''):
    """Threaded HTTP server bound to `port` with its own state store."""
    server = http.server.ThreadingHTTPServer((host, port), TaskHandler)
    server.daemon_threads = True
    server.store = store if store is not None else app_state.Store()
    return server


def main():
    """Start the HTTP server and open browser."""
    settings = settings_module.load_settings()
    port = settings_module.get_int_setting(settings, 'port')

    # Check if task-viewer.html exists
    viewer_file = STATIC_DIR / 'task-viewer.html'
    if not viewer_file.exists():
        print(f"Error: task-viewer.html not found in {STATIC_DIR}")
        return

    if not settings_module.get_api_key(settings):
        print('Warning: no Gemini API key configured (set GEMINI_API_KEY or gemini_api_key in settings.json)')

    with create_server(port) as server:
        url = f'http://localhost:{port}'
        print(f'GoEpic Task Parser running at {url}')
        print('Press Ctrl+C to stop')

        if settings_module.get_setting(settings, 'open_browser'):
            webbrowser.open(url)

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            print('\nServer stopped')


if __name__ == '__main__':
    main()
