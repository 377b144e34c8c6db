"""
Language-model collaborators: flashcard generation from text and single-card refinement.
"""

from .llm_client import LLMClient, LLMError, LLMAPIError, LLMTimeoutError, LLMValidationError, parse_json_object
from .cache_manager import CacheManager
from .card_generator import (
	CardGenerator,
	GenerationResult,
	CardGenerationError,
	EmptySourceTextError,
	CardGenerationAPIError,
	CardGenerationTimeoutError,
	CardGenerationValidationError,
	clamp_count,
	drafts_from_payload,
)
from .card_refiner import CardRefiner, CardRefineError

__all__ = [
	'LLMClient',
	'LLMError',
	'LLMAPIError',
	'LLMTimeoutError',
	'LLMValidationError',
	'parse_json_object',
	'CacheManager',
	'CardGenerator',
	'GenerationResult',
	'CardGenerationError',
	'EmptySourceTextError',
	'CardGenerationAPIError',
	'CardGenerationTimeoutError',
	'CardGenerationValidationError',
	'clamp_count',
	'drafts_from_payload',
	'CardRefiner',
	'CardRefineError',
]
