"""
Keyword store ("reinforced intentions") and prompt weighting.

A keyword is identified by its text compared case-insensitively; there is
never more than one keyword per text. All operations are pure: they take
a keyword list and return a new list, leaving the input untouched.

Intensity rules:
    add    -> +1 with no upper bound
    cycle  -> 1, 2, 3, 4, 5, then back to 1
    merge  -> max(existing, incoming); never removes keywords
"""

import math
import uuid
from dataclasses import dataclass, replace
from collections.abc import Mapping

from parser_host.prompts import (
    DEFAULT_KEYWORDS,
    KEYWORD_CONTEXT_FOOTER,
    KEYWORD_CONTEXT_HEADER,
    KEYWORD_CONTEXT_INTRO,
)

MAX_CYCLE_INTENSITY = 5


def new_keyword_id():
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Keyword:
    """A weighted hint steering extraction.

    Fields:
        id: Opaque unique token.
        text: Display text; identity key (case-insensitive).
        intensity: Priority weight, 1 or more.
    """
    id: str
    text: str
    intensity: int = 1

    @property
    def key(self):
        return self.text.lower()

    def to_dict(self):
        return {'id': self.id, 'text': self.text, 'intensity': self.intensity}

    @classmethod
    def from_dict(cls, raw):
        """Build from imported JSON; None when there is no usable text."""
        if not isinstance(raw, Mapping):
            return None
        text = raw.get('text')
        if not isinstance(text, str) or not text.strip():
            return None
        intensity = raw.get('intensity', 1)
        if isinstance(intensity, bool) or not isinstance(intensity, (int, float)):
            intensity = 1
        elif isinstance(intensity, float) and not math.isfinite(intensity):
            intensity = 1
        raw_id = raw.get('id')
        return cls(
            id=str(raw_id) if raw_id else new_keyword_id(),
            text=text,
            intensity=max(1, int(intensity)),
        )


def default_keywords():
    return [Keyword(id=f'def-{n}', text=text, intensity=intensity)
            for n, (text, intensity) in enumerate(DEFAULT_KEYWORDS, start=1)]


def find_keyword(keywords, text):
    key = text.lower()
    for keyword in keywords:
        if keyword.key == key:
            return keyword
    return None


def add_keyword(keywords, text):
    """Add text, or bump the intensity of the existing match by one."""
    if not text or not text.strip():
        return list(keywords)
    existing = find_keyword(keywords, text)
    if existing:
        return [replace(k, intensity=k.intensity + 1) if k.id == existing.id else k
                for k in keywords]
    return list(keywords) + [Keyword(id=new_keyword_id(), text=text, intensity=1)]


def remove_keyword(keywords, keyword_id):
    return [k for k in keywords if k.id != keyword_id]


def cycle_intensity(keywords, keyword_id):
    """Step intensity 1..5 and wrap back to 1."""
    return [replace(k, intensity=k.intensity % MAX_CYCLE_INTENSITY + 1) if k.id == keyword_id else k
            for k in keywords]


def merge_keywords(keywords, incoming):
    """Merge imported keywords into the current list.

    Matches keep the higher intensity; new texts are appended with a fresh
    id so imported ids can never collide with local ones.
    """
    merged = list(keywords)
    for new_k in incoming:
        idx = next((i for i, k in enumerate(merged) if k.key == new_k.key), -1)
        if idx >= 0:
            current = merged[idx]
            merged[idx] = replace(current, intensity=max(current.intensity, new_k.intensity))
        else:
            merged.append(replace(new_k, id=new_keyword_id()))
    return merged


# -------------------- prompt weighting --------------------

def intensity_tier(intensity):
    if intensity >= 4:
        return 'CRITICAL / MUST HAVE'
    if intensity == 3:
        return 'Very High Importance'
    if intensity == 2:
        return 'High Importance'
    return 'Normal Importance'


def build_keyword_context(keywords):
    """Weighted keyword block appended to prompts; '' for no keywords."""
    if not keywords:
        return ''
    intensity_map = '\n'.join(f'- "{k.text}" ({intensity_tier(k.intensity)})' for k in keywords)
    return (
        f'\n\n{KEYWORD_CONTEXT_HEADER}\n'
        f'{KEYWORD_CONTEXT_INTRO}\n'
        f'{intensity_map}\n'
        f'{KEYWORD_CONTEXT_FOOTER}\n'
    )
