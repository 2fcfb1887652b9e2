"""
Activity logging for the task parser.

Two sinks, both process-local:
- parser.log: append-only text file next to this module, one
  "<datetime>: <message>" line per event (AI client diagnostics).
- API_LOGS: in-memory list of API call records, newest first, served by
  the HTTP server at /api/logs for real-time monitoring.
"""

import threading
from datetime import datetime
from pathlib import Path

LOG_FILE = Path(__file__).parent / 'parser.log'

# In-memory log store for API calls (max 500 entries, FIFO)
API_LOGS = []
MAX_LOGS = 500
_logs_lock = threading.Lock()


def log(message):
    """Append a timestamped line to parser.log."""
    try:
        with open(LOG_FILE, 'a', encoding='utf-8') as f:
            f.write(f"{datetime.now()}: {message}\n")
    except OSError as e:
        print(f"Could not write to {LOG_FILE}: {e}")


def add_log(service, action, status, details=None, duration_ms=None, request_data=None, response_data=None):
    """Add entry to in-memory log store for real-time monitoring."""
    log_entry = {
        'timestamp': datetime.now().isoformat(),
        'service': service,       # 'gemini', 'import', etc.
        'action': action,         # 'parse', 'discover', 'refine'
        'status': status,         # 'success', 'error', 'empty'
        'details': details,       # Brief message
        'duration_ms': duration_ms,
        'request': request_data,  # Request info
        'response': response_data  # Response info
    }
    with _logs_lock:
        API_LOGS.insert(0, log_entry)  # Newest first
        del API_LOGS[MAX_LOGS:]
    return log_entry


def get_logs(since=None, limit=100):
    """Return logs newer than `since` (ISO timestamp), or the latest `limit`."""
    with _logs_lock:
        if since:
            return [entry for entry in API_LOGS if entry['timestamp'] > since]
        return API_LOGS[:limit]


def clear_logs():
    with _logs_lock:
        API_LOGS.clear()
