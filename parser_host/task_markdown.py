"""
Markdown <-> task conversion.

Document format (as produced by the model and by generate_markdown):

    ## 📋 Tasks Extraídas (Total: N)

    ### Feature: Name
    **Task ID:** `uuid`
    **Título:** Title
    **Status:** todo|done
    **Ordem:** 1
    **Criado:** YYYY-MM-DD
    **Descrição:**
    Free text, any number of lines

parse_markdown_tasks never raises: unknown lines are skipped and broken
documents simply yield fewer tasks. generate_markdown writes the same
markers back so the two functions round-trip.
"""

import re
from collections import OrderedDict
from dataclasses import asdict, dataclass, replace
from datetime import date

DEFAULT_FEATURE = 'General'
DEFAULT_TITLE = 'Untitled Task'
DEFAULT_STATUS = 'todo'

HEADER_MARKER = '## 📋 Tasks Extraídas'
FEATURE_MARKER = '### Feature:'
TASK_ID_MARKER = '**Task ID:**'
TITLE_MARKER = '**Título:**'
STATUS_MARKER = '**Status:**'
ORDER_MARKER = '**Ordem:**'
CREATED_MARKER = '**Criado:**'
DESCRIPTION_MARKER = '**Descrição:**'
HEADING_PREFIX = '##'

# First back-quoted run on the Task ID line
TASK_ID_PATTERN = re.compile(r'`([^`]+)`')

# Leading integer, read the way JavaScript's parseInt reads it ("12abc" -> 12)
ORDER_PATTERN = re.compile(r'^[+-]?\d+')


@dataclass
class GeneratedTask:
    uuid: str
    title: str = DEFAULT_TITLE
    status: str = DEFAULT_STATUS
    order: int = 0
    feature: str = DEFAULT_FEATURE
    description: str = ''
    created: str = ''

    def to_dict(self):
        return asdict(self)


def parse_order(value):
    """Parse an order field; 0 when there is no leading integer."""
    match = ORDER_PATTERN.match(value.strip())
    return int(match.group(0)) if match else 0


def _field(trimmed, marker):
    return trimmed[len(marker):].strip()


def _close(task, description_lines, tasks):
    task.description = '\n'.join(description_lines).strip()
    tasks.append(task)


def parse_markdown_tasks(content):
    """Parse a task document into a list of GeneratedTask.

    Single forward scan. A task opens at a Task ID line and closes at the
    next Task ID line, the next feature heading, or end of input. Once the
    description marker is seen every following line belongs to the
    description until a Task ID line or a '##' heading.
    """
    tasks = []
    if not content:
        return tasks

    current_feature = DEFAULT_FEATURE
    current_task = None
    description_lines = []
    collecting_description = False
    today = date.today().isoformat()

    for line in content.split('\n'):
        trimmed = line.strip()

        if trimmed.startswith(FEATURE_MARKER):
            if current_task:
                _close(current_task, description_lines, tasks)
                current_task = None
            current_feature = _field(trimmed, FEATURE_MARKER) or DEFAULT_FEATURE
            collecting_description = False
            continue

        if trimmed.startswith(TASK_ID_MARKER):
            if current_task:
                _close(current_task, description_lines, tasks)
            id_match = TASK_ID_PATTERN.search(trimmed)
            current_task = GeneratedTask(
                uuid=id_match.group(1) if id_match else '',
                feature=current_feature,
                created=today,
            )
            description_lines = []
            collecting_description = False
            continue

        if not current_task:
            continue

        if collecting_description:
            if trimmed.startswith(HEADING_PREFIX):
                collecting_description = False
            else:
                # Keep the original line to preserve formatting
                description_lines.append(line.rstrip('\r'))
        elif trimmed.startswith(TITLE_MARKER):
            current_task.title = _field(trimmed, TITLE_MARKER)
        elif trimmed.startswith(STATUS_MARKER):
            current_task.status = _field(trimmed, STATUS_MARKER).lower()
        elif trimmed.startswith(ORDER_MARKER):
            current_task.order = parse_order(_field(trimmed, ORDER_MARKER))
        elif trimmed.startswith(CREATED_MARKER):
            current_task.created = _field(trimmed, CREATED_MARKER)
        elif trimmed.startswith(DESCRIPTION_MARKER):
            collecting_description = True
            # Text on the marker line itself starts the description
            inline = _field(trimmed, DESCRIPTION_MARKER)
            if inline:
                description_lines.append(inline)

    if current_task:
        _close(current_task, description_lines, tasks)

    return tasks


def group_by_feature(tasks):
    """Group tasks by feature, preserving first-seen feature order."""
    grouped = OrderedDict()
    for task in tasks:
        grouped.setdefault(task.feature or DEFAULT_FEATURE, []).append(task)
    return grouped


def generate_markdown(tasks):
    """Serialize tasks back into the document format parse_markdown_tasks reads."""
    lines = [f'{HEADER_MARKER} (Total: {len(tasks)})', '']

    for feature, feature_tasks in group_by_feature(tasks).items():
        lines.append(f'{FEATURE_MARKER} {feature}')
        for task in feature_tasks:
            lines.append(f'{TASK_ID_MARKER} `{task.uuid}`')
            lines.append(f'{TITLE_MARKER} {task.title}')
            lines.append(f'{STATUS_MARKER} {task.status}')
            lines.append(f'{ORDER_MARKER} {task.order}')
            lines.append(f'{CREATED_MARKER} {task.created}')
            lines.append(DESCRIPTION_MARKER)
            lines.append(task.description.strip() if task.description else '')
            lines.append('')

    return '\n'.join(lines) + '\n'


def toggle_status(status):
    return 'todo' if status == 'done' else 'done'


def toggle_task_status(content, task_uuid):
    """Flip done/todo on the task with task_uuid and re-serialize the document.

    Returns (new_content, found). Only the status of the matching task
    changes; grouping, ordering and every other field are rewritten as
    parsed.
    """
    tasks = parse_markdown_tasks(content)
    found = False
    updated = []
    for task in tasks:
        if task.uuid == task_uuid:
            found = True
            task = replace(task, status=toggle_status(task.status))
        updated.append(task)
    return generate_markdown(updated), found


def task_summary(tasks):
    """Counts for the interactive checklist header."""
    features = []
    for feature, feature_tasks in group_by_feature(tasks).items():
        done = sum(1 for t in feature_tasks if t.status == 'done')
        features.append({
            'feature': feature,
            'total': len(feature_tasks),
            'done': done,
            'todo': len(feature_tasks) - done,
        })
    done_total = sum(f['done'] for f in features)
    return {
        'total': len(tasks),
        'done': done_total,
        'todo': len(tasks) - done_total,
        'features': features,
    }
