import base64
import binascii
import io

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

PDF_MIME_TYPE = 'application/pdf'
MAX_PDF_BYTES = 50 * 1024 * 1024


class PdfInputError(ValueError):
    pass


def decode_base64_payload(payload):
    """Decode base64 with or without a ``data:...;base64,`` prefix."""
    text = str(payload or '').strip()
    if text.startswith('data:') and ',' in text:
        text = text.split(',', 1)[1]
    if not text:
        raise PdfInputError('Missing file data')
    try:
        return base64.b64decode(text, validate=False)
    except (binascii.Error, ValueError) as e:
        raise PdfInputError(f"Invalid base64 data: {e}") from e


def open_pdf(pdf_bytes):
    if len(pdf_bytes) > MAX_PDF_BYTES:
        raise PdfInputError('PDF is too large')
    try:
        return PdfReader(io.BytesIO(pdf_bytes))
    except (PdfReadError, ValueError) as e:
        raise PdfInputError(f"Could not read PDF: {e}") from e


def split_pages(pdf_bytes):
    reader = open_pdf(pdf_bytes)
    pages = []
    for index, page in enumerate(reader.pages):
        writer = PdfWriter()
        writer.add_page(page)
        buffer = io.BytesIO()
        writer.write(buffer)
        pages.append({
            'pageNumber': index + 1,
            'base64': base64.b64encode(buffer.getvalue()).decode('ascii'),
            'mimeType': PDF_MIME_TYPE,
        })
    return pages


def extract_text(pdf_bytes):
    reader = open_pdf(pdf_bytes)
    chunks = []
    for index, page in enumerate(reader.pages):
        page_text = ' '.join((page.extract_text() or '').split())
        chunks.append(f"--- Page {index + 1} ---\n{page_text}\n\n")
    return ''.join(chunks), len(reader.pages)
