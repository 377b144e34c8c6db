"""
Text extraction from uploaded study material: PDFs (PyMuPDF), photographed
notes (OpenCV + TrOCR) and plain text files.
"""
from .trocr_handler import TrOCRHandler, TrOCRModelError, TrOCRInferenceError
from .preprocess import preprocess_image, ImagePreprocessingError
from .extractor import (
	extract_text,
	file_kind_for,
	ExtractionResult,
	TextExtractionError,
	PDFExtractionError,
	ImageExtractionError,
	PlainTextExtractionError,
	UnsupportedFileTypeError,
	NoTextExtractedError,
)

__all__ = [
	'TrOCRHandler',
	'TrOCRModelError',
	'TrOCRInferenceError',
	'preprocess_image',
	'ImagePreprocessingError',
	'extract_text',
	'file_kind_for',
	'ExtractionResult',
	'TextExtractionError',
	'PDFExtractionError',
	'ImageExtractionError',
	'PlainTextExtractionError',
	'UnsupportedFileTypeError',
	'NoTextExtractedError',
]
