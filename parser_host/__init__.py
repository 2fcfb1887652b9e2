"""
Processing host for the GoEpic task parser.

This package handles:
- Settings (settings.json + environment) and activity logging
- Keyword store and weighted prompt building
- Gemini requests (parse, discover, refine)
- Markdown <-> task conversion
- Application state store and context import/export
- Text extraction from uploaded log documents
"""
