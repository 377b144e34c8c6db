"""Utility subpackage: logging, upload handling, request identity."""

from .logger import (
	get_logger,
	log_request,
	log_model_load,
	log_llm_call,
	log_card_generation,
	log_text_extraction,
	log_deck_sync,
	log_study_event,
	set_request_context,
	get_request_context,
)
from .file_handler import FileHandler, FileValidationError
from .session_context import SessionContext

__all__ = [
	'get_logger',
	'log_request',
	'log_model_load',
	'log_llm_call',
	'log_card_generation',
	'log_text_extraction',
	'log_deck_sync',
	'log_study_event',
	'set_request_context',
	'get_request_context',
	'FileHandler',
	'FileValidationError',
	'SessionContext',
]
