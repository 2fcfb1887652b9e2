"""
Application state for the task parser.

All UI-visible state lives in one AppState owned by a Store. Changes go
through Store.dispatch(action, **payload), which applies the pure
reducer under a lock, so every command is atomic and the HTTP layer
never mutates state directly.

Commands at the bottom of the module (run_generate, run_refine,
run_import, ...) combine a state change with a Gemini call. AI results
are applied last-write-wins; generate and refine are mutually exclusive
through the is_processing flag.
"""

import json
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import date

from parser_host import gemini_client
from parser_host.activity_log import add_log, log
from parser_host.keywords import (
    Keyword,
    add_keyword,
    cycle_intensity,
    default_keywords,
    merge_keywords,
    remove_keyword,
)
from parser_host.task_markdown import parse_markdown_tasks, toggle_task_status

# Reducer actions
ADD_KEYWORD = 'add_keyword'
REMOVE_KEYWORD = 'remove_keyword'
CYCLE_INTENSITY = 'cycle_intensity'
MERGE_KEYWORDS = 'merge_keywords'
SET_RAW_INPUT = 'set_raw_input'
SET_OUTPUT = 'set_output'
SET_THINKING_MODE = 'set_thinking_mode'
SET_PROCESSING = 'set_processing'
SET_DISCOVERING = 'set_discovering'
SET_DISCOVERED = 'set_discovered'
TOGGLE_TASK = 'toggle_task'

# Discovery context (labels included) must be longer than this after stripping
MIN_DISCOVERY_CONTEXT = 20

IMPORT_ERROR_MESSAGE = 'Failed to parse JSON context file.'


class CommandError(Exception):
    """A command was rejected (e.g. nothing to generate from)."""


class BusyError(CommandError):
    """Generate/refine requested while another one is outstanding."""


class ContextImportError(CommandError):
    """Import file is not a JSON object."""


class TaskNotFoundError(CommandError):
    """No task with the requested uuid in the current document."""


@dataclass
class AppState:
    raw_input: str = ''
    parsed_output: str = ''
    keywords: list = field(default_factory=default_keywords)
    discovered_keywords: list = field(default_factory=list)
    is_thinking_mode: bool = False
    is_processing: bool = False
    is_discovering: bool = False

    def to_dict(self):
        return {
            'rawInput': self.raw_input,
            'parsedOutput': self.parsed_output,
            'keywords': [k.to_dict() for k in self.keywords],
            'discoveredKeywords': list(self.discovered_keywords),
            'isThinkingMode': self.is_thinking_mode,
            'isProcessing': self.is_processing,
            'isDiscovering': self.is_discovering,
        }


def reduce(state, action, payload):
    """Return the next state for an action. Never mutates `state`."""
    if action == ADD_KEYWORD:
        text = payload['text']
        return replace(
            state,
            keywords=add_keyword(state.keywords, text),
            # Remove from discovered if added
            discovered_keywords=[k for k in state.discovered_keywords if k != text],
        )
    elif action == REMOVE_KEYWORD:
        return replace(state, keywords=remove_keyword(state.keywords, payload['id']))
    elif action == CYCLE_INTENSITY:
        return replace(state, keywords=cycle_intensity(state.keywords, payload['id']))
    elif action == MERGE_KEYWORDS:
        return replace(state, keywords=merge_keywords(state.keywords, payload['keywords']))
    elif action == SET_RAW_INPUT:
        return replace(state, raw_input=payload['text'])
    elif action == SET_OUTPUT:
        return replace(state, parsed_output=payload['text'])
    elif action == SET_THINKING_MODE:
        return replace(state, is_thinking_mode=bool(payload['enabled']))
    elif action == SET_PROCESSING:
        return replace(state, is_processing=bool(payload['value']))
    elif action == SET_DISCOVERING:
        return replace(state, is_discovering=bool(payload['value']))
    elif action == SET_DISCOVERED:
        return replace(state, discovered_keywords=list(payload['keywords']))
    elif action == TOGGLE_TASK:
        new_output, found = toggle_task_status(state.parsed_output, payload['uuid'])
        if not found:
            return state
        return replace(state, parsed_output=new_output)
    raise ValueError(f'Unknown action: {action}')


class Store:
    """Single owner of AppState."""

    def __init__(self, state=None):
        self._state = state if state is not None else AppState()
        self._lock = threading.Lock()

    @property
    def state(self):
        return self._state

    def dispatch(self, action, **payload):
        with self._lock:
            self._state = reduce(self._state, action, payload)
            return self._state

    def try_begin(self, flag_action, flag_name):
        """Set a busy flag unless it is already set. Returns False when busy."""
        with self._lock:
            if getattr(self._state, flag_name):
                return False
            self._state = reduce(self._state, flag_action, {'value': True})
            return True


# -------------------- context import/export --------------------

@dataclass
class SavedContext:
    timestamp: int
    keywords: list
    raw_input_snapshot: str = None
    output_snapshot: str = None

    def to_dict(self):
        data = {
            'timestamp': self.timestamp,
            'keywords': [k.to_dict() for k in self.keywords],
        }
        if self.raw_input_snapshot is not None:
            data['rawInputSnapshot'] = self.raw_input_snapshot
        if self.output_snapshot is not None:
            data['outputSnapshot'] = self.output_snapshot
        return data


def _optional_text(value):
    return value if isinstance(value, str) else None


def parse_context(content):
    """
    Parse an import file.

    Unknown fields are ignored; missing or mistyped fields are treated as
    absent. Raises ContextImportError when the text is not a JSON object.
    """
    try:
        data = json.loads(content)
    except (TypeError, ValueError) as e:
        raise ContextImportError(IMPORT_ERROR_MESSAGE) from e
    if not isinstance(data, dict):
        raise ContextImportError(IMPORT_ERROR_MESSAGE)

    raw_keywords = data.get('keywords')
    keywords = []
    if isinstance(raw_keywords, list):
        for raw in raw_keywords:
            keyword = Keyword.from_dict(raw)
            if keyword:
                keywords.append(keyword)

    timestamp = data.get('timestamp')
    return SavedContext(
        timestamp=timestamp if isinstance(timestamp, int) and not isinstance(timestamp, bool) else 0,
        keywords=keywords,
        raw_input_snapshot=_optional_text(data.get('rawInputSnapshot')),
        output_snapshot=_optional_text(data.get('outputSnapshot')),
    )


def build_context(state, now_ms=None):
    return SavedContext(
        timestamp=now_ms if now_ms is not None else int(time.time() * 1000),
        keywords=list(state.keywords),
        raw_input_snapshot=state.raw_input,
        output_snapshot=state.parsed_output,
    )


def export_context_json(state, now_ms=None):
    """Pretty-printed SavedContext for download."""
    return json.dumps(build_context(state, now_ms).to_dict(), indent=2, ensure_ascii=False)


def context_filename(day=None):
    return f"goepic-context-{(day or date.today()).isoformat()}.json"


def markdown_filename(day=None):
    return f"goepic-tasks-{(day or date.today()).isoformat()}.md"


def discovery_context(saved):
    """Combined text sent to keyword discovery after an import."""
    keyword_text = ', '.join(k.text for k in saved.keywords)
    return (
        f"RAW: {saved.raw_input_snapshot or ''}\n"
        f"OUTPUT: {saved.output_snapshot or ''}\n"
        f"KEYWORDS: {keyword_text}\n"
    )


# -------------------- commands --------------------

def run_generate(store):
    """Parse the current raw input with Gemini and replace the document."""
    state = store.state
    if not state.raw_input.strip():
        raise CommandError('Raw input is empty')
    if not store.try_begin(SET_PROCESSING, 'is_processing'):
        raise BusyError('Already processing')
    try:
        result = gemini_client.parse_tasks(state.raw_input, state.keywords, state.is_thinking_mode)
        store.dispatch(SET_OUTPUT, text=result)
    finally:
        store.dispatch(SET_PROCESSING, value=False)
    return store.state


def run_refine(store, instruction):
    """Apply a refinement instruction to the current document."""
    state = store.state
    if not state.parsed_output:
        raise CommandError('Nothing to refine')
    if not instruction or not instruction.strip():
        raise CommandError('Instruction required')
    if not store.try_begin(SET_PROCESSING, 'is_processing'):
        raise BusyError('Already processing')
    try:
        result = gemini_client.refine_output(state.parsed_output, instruction, state.keywords)
        store.dispatch(SET_OUTPUT, text=result)
    finally:
        store.dispatch(SET_PROCESSING, value=False)
    return store.state


def run_discovery(store, context_text):
    """Replace the discovered keyword list with fresh suggestions."""
    store.dispatch(SET_DISCOVERING, value=True)
    try:
        discovered = gemini_client.discover_keywords(context_text)
        store.dispatch(SET_DISCOVERED, keywords=discovered)
    finally:
        store.dispatch(SET_DISCOVERING, value=False)
    return store.state


def run_import(store, content, background=True):
    """
    Import a SavedContext file.

    Keywords are merged, non-empty snapshots replace raw input and
    output, then keyword discovery runs (in a background thread unless
    background=False). Returns the discovery thread, or None when
    discovery was not started. On a malformed file the state is left
    unchanged and ContextImportError is raised.
    """
    saved = parse_context(content)

    if saved.keywords:
        store.dispatch(MERGE_KEYWORDS, keywords=saved.keywords)
    if saved.raw_input_snapshot:
        store.dispatch(SET_RAW_INPUT, text=saved.raw_input_snapshot)
    if saved.output_snapshot:
        store.dispatch(SET_OUTPUT, text=saved.output_snapshot)

    add_log(
        service='context',
        action='import',
        status='success',
        details=f"{len(saved.keywords)} keywords",
        request_data={'bytes': len(content)},
        response_data={'keywords': len(store.state.keywords)}
    )

    combined = discovery_context(saved)
    if len(combined.strip()) <= MIN_DISCOVERY_CONTEXT:
        return None

    if not background:
        run_discovery(store, combined)
        return None

    thread = threading.Thread(target=_discovery_worker, args=(store, combined), daemon=True)
    thread.start()
    return thread


def _discovery_worker(store, combined):
    try:
        run_discovery(store, combined)
    except Exception as e:
        log(f"Background discovery error: {e}")


def toggle_task(store, task_uuid):
    """Flip done/todo on one task of the current document."""
    if not any(t.uuid == task_uuid for t in parse_markdown_tasks(store.state.parsed_output)):
        raise TaskNotFoundError(f'Task {task_uuid} not found')
    return store.dispatch(TOGGLE_TASK, uuid=task_uuid)


def reinforce_selection(store, selected_text):
    """Add text selected in the document view as a keyword."""
    text = (selected_text or '').strip()
    if not text:
        raise CommandError('Selection is empty')
    return store.dispatch(ADD_KEYWORD, text=text)
