"""Built-in prompt templates and keyword presets.

Any template can be replaced through settings.json (parse_prompt,
discovery_prompt, refine_prompt).
"""

# (text, intensity) presets loaded into a fresh session
DEFAULT_KEYWORDS = [
    ('Preserve UUIDs', 3),
    ('Group by Feature', 2),
    ('Clean Titles', 1),
    ('Detailed Descriptions', 1),
]

SUGGESTED_KEYWORDS = [
    'Validation', 'Security', 'Performance', 'Authentication', 'Schema', 'API', 'Frontend', 'Backend'
]

SYSTEM_INSTRUCTION_BASE = """
You are the "GoEpic Task Parser", a specialized AI tool for processing console logs from the GoEpic Web API tasks.
Your goal is to extract structured tasks and output them in a strict Markdown format.

ROLE:
- Parser specialized in structured data from Console Browser.
- Focus on Task Engineering.

INPUT:
- Raw text from console.log containing patterns like "data id [UUID], title [Title]" or JSON-like dumps.
- Blocks labeled "Feature Authentication Tasks Title...".

OUTPUT FORMAT (STRICT):
## 📋 Tasks Extraídas (Total: X)

### Feature: [Name]
**Task ID:** `[UUID]`
**Título:** [Clean Title]
**Status:** [todo/done]
**Ordem:** [Number]
**Criado:** [YYYY-MM-DD]
**Descrição:**
[Content]

GUARDRAILS:
1. Do NOT add preamble or conclusion text.
2. Extract ALL visible tasks.
3. Group by Feature.
4. Preserve UUIDs exactly.
5. Do not invent data not present in the input (hallucination check).
"""

DISCOVERY_PROMPT = """
Analyze the provided text (Raw Input, Current Output, and User Keywords).
Identify 5-8 new, high-value technical keywords or concepts that appear relevant to the context but are missing from the current "Reinforced Intentions".
Return ONLY a JSON array of strings. Example: ["Authorization", "Rate Limiting", "SQL Optimization"].
"""

# Placeholders: {keyword_context}, {current_output}, {instruction}
REFINE_PROMPT = """
You are refining a structured Markdown document.

{keyword_context}

CURRENT MARKDOWN:
{current_output}

USER REFINEMENT INSTRUCTION:
{instruction}

Please output the UPDATED Markdown document only. Maintain the same structure unless explicitly told to change it.
"""

# Placeholders: {system_instruction}, {keyword_context}, {raw_input}
PARSE_PROMPT = """
{system_instruction}
{keyword_context}

---
RAW INPUT DATA:
{raw_input}
---
"""

KEYWORD_CONTEXT_HEADER = '*** USER REINFORCED INTENTIONS (SEMANTIC WEIGHTS) ***'
KEYWORD_CONTEXT_INTRO = (
    'The following concepts have been explicitly reinforced by the user. '
    'Adjust your parsing and description generation to prioritize these aspects:'
)
KEYWORD_CONTEXT_FOOTER = '*** END REINFORCED INTENTIONS ***'
