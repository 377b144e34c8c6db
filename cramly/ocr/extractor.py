"""Turn an uploaded study file into plain text for card generation.

File kinds:
- pdf: page text via PyMuPDF, pages joined by a blank line
- image: OpenCV cleanup then TrOCR
- text: UTF-8 decode (.txt, .md)

Every failure raises a TextExtractionError subclass tagged with the file kind,
and a result with only whitespace raises NoTextExtractedError, so generation
never runs on an empty source.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Optional

import pymupdf
from PIL import Image, UnidentifiedImageError

from cramly.ocr.preprocess import preprocess_image, ImagePreprocessingError
from cramly.ocr.trocr_handler import TrOCRHandler, TrOCRModelError, TrOCRInferenceError
from cramly.utils import get_logger, log_text_extraction

LOG = get_logger()

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.webp')
PDF_EXTENSIONS = ('.pdf',)
TEXT_EXTENSIONS = ('.txt', '.md')


class TextExtractionError(Exception):
    file_kind = 'unknown'


class PDFExtractionError(TextExtractionError):
    file_kind = 'pdf'


class ImageExtractionError(TextExtractionError):
    file_kind = 'image'


class PlainTextExtractionError(TextExtractionError):
    file_kind = 'text'


class UnsupportedFileTypeError(TextExtractionError):
    pass


class NoTextExtractedError(TextExtractionError):
    def __init__(self, file_kind: str):
        super().__init__(f'No text could be extracted from the {file_kind} file')
        self.file_kind = file_kind


@dataclass
class ExtractionResult:
    text: str
    file_kind: str
    method: str
    page_count: Optional[int] = None

    def to_dict(self):
        return {'text': self.text, 'file_kind': self.file_kind, 'method': self.method, 'page_count': self.page_count}


def file_kind_for(filename: str) -> str:
    ext = os.path.splitext(filename or '')[1].lower()
    if ext in PDF_EXTENSIONS:
        return 'pdf'
    if ext in IMAGE_EXTENSIONS:
        return 'image'
    if ext in TEXT_EXTENSIONS:
        return 'text'
    raise UnsupportedFileTypeError(f'Unsupported file type: {ext or "(none)"}')


def extract_pdf_text(path: str) -> ExtractionResult:
    try:
        with pymupdf.open(path) as doc:
            pages = [page.get_text() for page in doc]
    except (RuntimeError, ValueError) as e:
        LOG.exception('pdf_extraction_failed')
        raise PDFExtractionError(f'Could not read PDF: {e}')
    text = '\n\n'.join(p.strip() for p in pages if p and p.strip())
    return ExtractionResult(text=text, file_kind='pdf', method='pymupdf', page_count=len(pages))


def extract_image_text(path: str, ocr_handler=None) -> ExtractionResult:
    try:
        with Image.open(path) as img:
            img.load()
            processed, steps = preprocess_image(img)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageExtractionError(f'Could not read image: {e}')
    except ImagePreprocessingError as e:
        raise ImageExtractionError(str(e))
    try:
        handler = ocr_handler or TrOCRHandler.get_instance()
        text = handler.extract_text(processed)
    except (TrOCRModelError, TrOCRInferenceError) as e:
        raise ImageExtractionError(f'OCR failed: {e}')
    method = 'trocr+' + '+'.join(steps) if steps else 'trocr'
    return ExtractionResult(text=text.strip(), file_kind='image', method=method)


def extract_plain_text(path: str) -> ExtractionResult:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except UnicodeDecodeError:
        raise PlainTextExtractionError('Text file is not valid UTF-8')
    except OSError as e:
        raise PlainTextExtractionError(f'Could not read text file: {e}')
    return ExtractionResult(text=text.strip(), file_kind='text', method='utf8')


def extract_text(path: str, filename: Optional[str] = None, request_id: Optional[str] = None, ocr_handler=None) -> ExtractionResult:
    """Extract text from the file at `path`; the kind is taken from `filename` (or the path)."""
    kind = file_kind_for(filename or path)
    start = time.time()
    if kind == 'pdf':
        result = extract_pdf_text(path)
    elif kind == 'image':
        result = extract_image_text(path, ocr_handler=ocr_handler)
    else:
        result = extract_plain_text(path)
    if not result.text.strip():
        raise NoTextExtractedError(kind)
    log_text_extraction(request_id or '', kind, result.method, len(result.text), int((time.time() - start) * 1000))
    return result
