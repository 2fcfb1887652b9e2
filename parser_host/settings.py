"""
Settings for the task parser.

settings.json (next to this module, or the path in GOEPIC_SETTINGS_FILE)
is the single source of truth and is re-read on every call, so edits made
through the settings endpoint apply to the next AI request.

Settings include:
    - gemini_api_key: Gemini API key (GEMINI_API_KEY / API_KEY env vars win)
    - fast_model, thinking_model: model names for the two parse profiles
    - thinking_budget: reasoning token budget for thinking mode
    - request_timeout: seconds before an AI request is abandoned
    - port, open_browser: HTTP server options
    - parse_prompt, discovery_prompt, refine_prompt: prompt overrides
"""

import json
import os
from pathlib import Path

DEFAULT_SETTINGS_FILE = Path(__file__).parent / 'settings.json'

DEFAULTS = {
    'fast_model': 'gemini-2.5-flash',
    'thinking_model': 'gemini-2.5-pro',
    'thinking_budget': 2048,
    'request_timeout': 120,
    'port': 8080,
    'open_browser': True,
}

API_KEY_ENV_VARS = ('GEMINI_API_KEY', 'API_KEY')


def get_settings_file():
    """Resolve the settings path (environment override first)."""
    override = os.environ.get('GOEPIC_SETTINGS_FILE')
    if override:
        return Path(override)
    return DEFAULT_SETTINGS_FILE


def load_settings():
    """
    Load settings from settings.json file.

    Returns:
        dict: Settings dictionary, or empty dict if file not found/invalid.
    """
    settings_file = get_settings_file()
    try:
        if settings_file.exists():
            with open(settings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
    except (OSError, ValueError) as e:
        print(f"Could not read settings from {settings_file}: {e}")
    return {}


def save_settings(settings):
    """
    Save settings to settings.json file.

    Returns:
        bool: True if saved successfully, False otherwise.
    """
    try:
        with open(get_settings_file(), 'w', encoding='utf-8') as f:
            json.dump(settings, f, indent=2)
        return True
    except OSError:
        return False


def update_settings(updates):
    """Update specific settings without overwriting others."""
    settings = load_settings()
    settings.update(updates)
    return save_settings(settings)


def get_setting(settings, key):
    """Value from settings, falling back to DEFAULTS."""
    value = settings.get(key)
    if value is None or value == '':
        return DEFAULTS.get(key)
    return value


def get_int_setting(settings, key):
    value = get_setting(settings, key)
    try:
        return int(value)
    except (TypeError, ValueError):
        return DEFAULTS[key]


def get_prompt(settings, key):
    """
    Get a prompt override from settings.json.

    Returns:
        str: The prompt from settings, or '' when not customised.
    """
    value = settings.get(key) or ''
    return value.strip() if isinstance(value, str) else ''


def get_api_key(settings=None):
    """
    Read the Gemini API key at call time.

    Environment variables take priority over settings.json. Returns an
    empty string when no key is configured.
    """
    for var in API_KEY_ENV_VARS:
        value = os.environ.get(var, '').strip()
        if value:
            return value
    if settings is None:
        settings = load_settings()
    value = settings.get('gemini_api_key') or ''
    return value.strip() if isinstance(value, str) else ''


def mask_settings(settings):
    """Mask tokens for display (same length as original, show last 4 chars)."""
    masked = {}
    for key, value in settings.items():
        if ('token' in key.lower() or 'key' in key.lower()) and isinstance(value, str):
            if value and len(value) > 4:
                masked[key] = '•' * (len(value) - 4) + value[-4:]
            else:
                masked[key] = value
        else:
            masked[key] = value
    return masked


def apply_settings_update(settings, body):
    """
    Merge an update body into settings.

    Masked values (starting with '•') are left untouched so a round trip
    through the settings UI never overwrites a secret with its mask. An
    empty string clears the field.
    """
    updated = dict(settings)
    for key, value in body.items():
        if isinstance(value, str):
            if value and not value.startswith('•'):
                updated[key] = value
            elif value == '':
                updated[key] = ''
        elif value is not None:
            updated[key] = value
    return updated
