"""Raw-input extraction from uploaded files (log dumps, PDFs, Office files)."""

import base64
import binascii
import io
from pathlib import Path

from parser_host.activity_log import log

# Limit rows read per worksheet
MAX_SHEET_ROWS = 100


class DocumentError(Exception):
    """Upload could not be decoded or yielded no text."""


def decode_data_url(file_data_url):
    """Decode a data URL (data:mime/type;base64,...) or bare base64 string."""
    if not file_data_url:
        raise DocumentError('No file data')
    if ',' in file_data_url:
        base64_data = file_data_url.split(',', 1)[1]
    else:
        base64_data = file_data_url
    try:
        return base64.b64decode(base64_data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise DocumentError(f'Invalid base64 file data: {e}') from e


def _pdf_text(source):
    import PyPDF2
    reader = PyPDF2.PdfReader(source)
    text_parts = []
    for page in reader.pages:
        page_text = page.extract_text()
        if page_text:
            text_parts.append(page_text)
    return '\n'.join(text_parts)


def _docx_text(source):
    from docx import Document
    doc = Document(source)
    return '\n'.join([p.text for p in doc.paragraphs if p.text.strip()])


def _xlsx_text(source):
    from openpyxl import load_workbook
    wb = load_workbook(source, data_only=True, read_only=True)
    text_parts = []
    for sheet in wb.worksheets:
        text_parts.append(f"Sheet: {sheet.title}")
        for row in sheet.iter_rows(max_row=MAX_SHEET_ROWS, values_only=True):
            row_text = ' | '.join([str(cell) for cell in row if cell is not None])
            if row_text.strip():
                text_parts.append(row_text)
    return '\n'.join(text_parts)


def _pptx_text(source):
    from pptx import Presentation
    prs = Presentation(source)
    text_parts = []
    for slide_num, slide in enumerate(prs.slides, 1):
        slide_text = []
        for shape in slide.shapes:
            if hasattr(shape, 'text') and shape.text.strip():
                slide_text.append(shape.text)
        if slide_text:
            text_parts.append(f"Slide {slide_num}: " + ' | '.join(slide_text))
    return '\n'.join(text_parts)


EXTRACTORS = {
    '.pdf': ('PyPDF2', _pdf_text),
    '.docx': ('python-docx', _docx_text),
    '.xlsx': ('openpyxl', _xlsx_text),
    '.pptx': ('python-pptx', _pptx_text),
}


def extract_text(data, filename):
    """
    Extract plain text from an uploaded file.

    Args:
        data (bytes): File contents.
        filename (str): Original name; its extension picks the extractor.

    Returns:
        str: Extracted text.

    Raises:
        DocumentError: Extraction failed or produced no text.
    """
    ext = Path(filename or '').suffix.lower()
    extractor = EXTRACTORS.get(ext)

    if extractor:
        library, func = extractor
        try:
            content = func(io.BytesIO(data))
        except Exception as e:
            log(f"{library} extraction failed for {filename}: {e}")
            raise DocumentError(f'Could not read {ext} file: {e}') from e
        log(f"{ext} text extracted with {library}: {len(content)} chars")
    else:
        # Fallback: read as plain text
        content = data.decode('utf-8', errors='ignore')
        log(f"{filename} read as plain text: {len(content)} chars")

    if not content.strip():
        raise DocumentError('No text found in file')
    return content
