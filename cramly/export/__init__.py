"""Deck export: Anki packages (genanki) and CSV."""

from .anki import export_to_anki, export_filename, ExportError, DEFAULT_DECK_NAME
from .csv_export import export_to_csv

__all__ = [
	'export_to_anki',
	'export_filename',
	'export_to_csv',
	'ExportError',
	'DEFAULT_DECK_NAME',
]
