"""
Gemini requests for the task parser.

Three single-attempt calls, none of which raise to the caller:
- parse_tasks: raw console logs -> task Markdown (error string on failure)
- discover_keywords: context -> list of new keyword strings ([] on failure)
- refine_output: Markdown + instruction -> updated Markdown

The API key is read at call time (see settings.get_api_key), so a key
added while the server is running applies to the next request.
"""

import json
import re
import time
import urllib.error
import urllib.request

from parser_host import settings as settings_module
from parser_host.activity_log import add_log, log
from parser_host.keywords import build_keyword_context
from parser_host.prompts import DISCOVERY_PROMPT, PARSE_PROMPT, REFINE_PROMPT, SYSTEM_INSTRUCTION_BASE

GEMINI_API_URL = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'

MISSING_KEY_MESSAGE = 'Error: API Key missing.'
NO_OUTPUT_MESSAGE = 'No output generated.'

FAST_TEMPERATURE = 0.2
THINKING_TEMPERATURE = 0.7

# Truncate discovery context if too huge
MAX_DISCOVERY_CHARS = 20000

DISCOVERY_SCHEMA = {
    'type': 'ARRAY',
    'items': {'type': 'STRING'}
}

# Placeholders filled into the refine template
REFINE_PLACEHOLDER = re.compile(r'\{(keyword_context|current_output|instruction)\}')


class GeminiError(Exception):
    """Service-level failure (HTTP error body, blocked prompt, bad payload)."""


def _describe_http_error(e):
    """Best message for an HTTPError: the API's error.message when present."""
    try:
        error_body = e.read().decode('utf-8') if e.fp else ''
        message = json.loads(error_body).get('error', {}).get('message', '')
    except (ValueError, AttributeError, OSError):
        message = ''
    if message:
        return f'{e.code} {e.reason} - {message}'
    return f'{e.code} {e.reason}'


def extract_text(result):
    """
    Join the answer text of the first candidate.

    Thought parts (thinking mode) are skipped. Returns '' when the
    response carries no text; raises GeminiError when the prompt was
    blocked.
    """
    feedback = result.get('promptFeedback') or {}
    if feedback.get('blockReason'):
        raise GeminiError(f"Prompt blocked: {feedback['blockReason']}")

    candidates = result.get('candidates') or []
    if not candidates:
        return ''
    parts = (candidates[0].get('content') or {}).get('parts') or []
    return ''.join(part.get('text', '') for part in parts if not part.get('thought'))


def generate_content(api_key, model, prompt, generation_config=None, timeout=120):
    """
    POST a single generateContent request.

    Args:
        api_key (str): Gemini API key.
        model (str): Model name, e.g. 'gemini-2.5-flash'.
        prompt (str): Full prompt text (single user turn).
        generation_config (dict): Optional generationConfig block.
        timeout (int): Seconds before the request is abandoned.

    Returns:
        str: Response text ('' when the model returned nothing).

    Raises:
        GeminiError: On HTTP errors or a blocked prompt.
        urllib.error.URLError, OSError: On network failure.
    """
    body = {'contents': [{'role': 'user', 'parts': [{'text': prompt}]}]}
    if generation_config:
        body['generationConfig'] = generation_config

    req = urllib.request.Request(
        GEMINI_API_URL.format(model=model),
        data=json.dumps(body).encode('utf-8'),
        headers={
            'Content-Type': 'application/json',
            'x-goog-api-key': api_key
        },
        method='POST'
    )

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            result = json.loads(response.read().decode('utf-8'))
    except urllib.error.HTTPError as e:
        raise GeminiError(f'Gemini API error: {_describe_http_error(e)}') from e

    return extract_text(result)


def _record(action, status, started, details, request_data=None, response_data=None):
    duration = int((time.time() - started) * 1000)
    add_log(
        service='gemini',
        action=action,
        status=status,
        details=details,
        duration_ms=duration,
        request_data=request_data,
        response_data=response_data
    )


def build_parse_prompt(raw_input, keywords, settings=None):
    settings = settings if settings is not None else {}
    system_instruction = settings_module.get_prompt(settings, 'parse_prompt') or SYSTEM_INSTRUCTION_BASE
    return PARSE_PROMPT.format(
        system_instruction=system_instruction,
        keyword_context=build_keyword_context(keywords),
        raw_input=raw_input
    )


def build_refine_prompt(current_output, instruction, keywords, settings=None):
    """Fill the refine template; an override missing the document or
    instruction placeholder gets that section appended."""
    settings = settings if settings is not None else {}
    template = settings_module.get_prompt(settings, 'refine_prompt') or REFINE_PROMPT
    if '{current_output}' not in template:
        template += '\n\nCURRENT MARKDOWN:\n{current_output}'
    if '{instruction}' not in template:
        template += '\n\nUSER REFINEMENT INSTRUCTION:\n{instruction}'
    values = {
        'keyword_context': build_keyword_context(keywords),
        'current_output': current_output,
        'instruction': instruction,
    }
    # Single pass so braces in the template or in the values are left alone
    return REFINE_PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


def build_discovery_prompt(context_text, settings=None):
    settings = settings if settings is not None else {}
    prompt = settings_module.get_prompt(settings, 'discovery_prompt') or DISCOVERY_PROMPT
    return f"{prompt}\n\nCONTEXT TO ANALYZE:\n{context_text[:MAX_DISCOVERY_CHARS]}"


def parse_profile(settings, thinking_mode):
    """Model name and generationConfig for the fast or thinking profile."""
    if thinking_mode:
        model = settings_module.get_setting(settings, 'thinking_model')
        config = {
            'temperature': THINKING_TEMPERATURE,
            'thinkingConfig': {'thinkingBudget': settings_module.get_int_setting(settings, 'thinking_budget')}
        }
    else:
        model = settings_module.get_setting(settings, 'fast_model')
        config = {'temperature': FAST_TEMPERATURE}
    return model, config


def parse_tasks(raw_input, keywords, thinking_mode=False):
    """Extract task Markdown from raw console logs.

    Returns the generated Markdown, or a descriptive error string.
    """
    settings = settings_module.load_settings()
    api_key = settings_module.get_api_key(settings)
    if not api_key:
        log("Parse skipped - no API key")
        return MISSING_KEY_MESSAGE

    model, config = parse_profile(settings, thinking_mode)
    started = time.time()
    request_info = {'model': model, 'thinking_mode': thinking_mode, 'input_chars': len(raw_input),
                    'keywords': len(keywords)}
    try:
        prompt = build_parse_prompt(raw_input, keywords, settings)
        text = generate_content(api_key, model, prompt, config,
                                timeout=settings_module.get_int_setting(settings, 'request_timeout'))
    except Exception as e:
        log(f"Gemini parse error: {e}")
        _record('parse', 'error', started, f"Exception: {e}", request_info)
        return f"Error parsing tasks: {e}"

    if not text:
        _record('parse', 'empty', started, 'No output generated', request_info)
        return NO_OUTPUT_MESSAGE

    log(f"Tasks parsed with {model}: {len(text)} chars")
    _record('parse', 'success', started, f"Model: {model}", request_info, {'output_chars': len(text)})
    return text


def _as_keyword_list(text):
    """Parse a discovery response; [] unless it is a JSON array."""
    data = json.loads(text)
    if not isinstance(data, list):
        return []
    return [item.strip() for item in data if isinstance(item, str) and item.strip()]


def discover_keywords(context_text):
    """Ask the model for new keywords relevant to the context.

    Failure is silent: any missing key, network or service error, or a
    malformed response yields [].
    """
    settings = settings_module.load_settings()
    api_key = settings_module.get_api_key(settings)
    if not api_key:
        log("Discovery skipped - no API key")
        return []

    model = settings_module.get_setting(settings, 'fast_model')
    config = {
        'responseMimeType': 'application/json',
        'responseSchema': DISCOVERY_SCHEMA
    }
    started = time.time()
    request_info = {'model': model, 'context_chars': min(len(context_text), MAX_DISCOVERY_CHARS)}
    try:
        text = generate_content(api_key, model, build_discovery_prompt(context_text, settings), config,
                                timeout=settings_module.get_int_setting(settings, 'request_timeout'))
        if not text:
            _record('discover', 'empty', started, 'No keywords returned', request_info)
            return []
        discovered = _as_keyword_list(text)
    except Exception as e:
        log(f"Discovery error: {e}")
        _record('discover', 'error', started, f"Exception: {e}", request_info)
        return []

    log(f"Keywords discovered: {discovered}")
    _record('discover', 'success', started, f"{len(discovered)} keywords", request_info,
            {'keywords': discovered})
    return discovered


def refine_output(current_output, instruction, keywords):
    """Apply a free-text instruction to the current Markdown.

    Returns the replacement document, the unchanged document when the
    model returns nothing, or a descriptive error string.
    """
    settings = settings_module.load_settings()
    api_key = settings_module.get_api_key(settings)
    if not api_key:
        log("Refine skipped - no API key")
        return MISSING_KEY_MESSAGE

    model = settings_module.get_setting(settings, 'fast_model')
    started = time.time()
    request_info = {'model': model, 'instruction': instruction, 'document_chars': len(current_output)}
    try:
        prompt = build_refine_prompt(current_output, instruction, keywords, settings)
        text = generate_content(api_key, model, prompt,
                                timeout=settings_module.get_int_setting(settings, 'request_timeout'))
    except Exception as e:
        log(f"Refine error: {e}")
        _record('refine', 'error', started, f"Exception: {e}", request_info)
        return f"Error refining: {e}"

    if not text:
        _record('refine', 'empty', started, 'Kept current document', request_info)
        return current_output

    _record('refine', 'success', started, f"Instruction: {instruction[:80]}", request_info,
            {'output_chars': len(text)})
    return text
