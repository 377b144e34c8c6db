from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from pydantic import ValidationError

from cramly.deck import CardDraft
from cramly.generation.cache_manager import CacheManager
from cramly.generation.llm_client import LLMClient, LLMError, LLMAPIError, LLMTimeoutError, LLMValidationError
from cramly.utils import get_logger, log_card_generation

LOG = get_logger()


class CardGenerationError(Exception):
    pass


class EmptySourceTextError(CardGenerationError):
    pass


class CardGenerationAPIError(CardGenerationError):
    pass


class CardGenerationTimeoutError(CardGenerationError):
    pass


class CardGenerationValidationError(CardGenerationError):
    pass


FLASHCARD_DEFAULT_COUNT = int(os.getenv('FLASHCARD_DEFAULT_COUNT', '10'))
FLASHCARD_MIN_COUNT = int(os.getenv('FLASHCARD_MIN_COUNT', '1'))
FLASHCARD_MAX_COUNT = int(os.getenv('FLASHCARD_MAX_COUNT', '50'))
FLASHCARD_MAX_TOKENS = int(os.getenv('FLASHCARD_MAX_TOKENS', '2000'))
GENERATION_MAX_TEXT_LENGTH = int(os.getenv('GENERATION_MAX_TEXT_LENGTH', '24000'))

SYSTEM_PROMPT = (
    'You are an expert educator creating flashcards from study material. '
    'Respond only with a JSON object of the form '
    '{"title": "<short deck title>", "flashcards": [{"front": "<question or term>", "back": "<answer or definition>"}]}.'
)


@dataclass
class GenerationResult:
    drafts: List[CardDraft] = field(default_factory=list)
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'title': self.title, 'flashcards': [d.model_dump() for d in self.drafts]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GenerationResult':
        return cls(drafts=[CardDraft.model_validate(d) for d in data.get('flashcards', [])], title=data.get('title'))


def clamp_count(count: Optional[int]) -> int:
    if count is None:
        count = FLASHCARD_DEFAULT_COUNT
    return max(FLASHCARD_MIN_COUNT, min(FLASHCARD_MAX_COUNT, int(count)))


def build_generation_prompt(text: str, count: int) -> str:
    return (
        f'Generate {count} effective flashcards from the text below. '
        'Each card should test one key concept, fact or definition. '
        'Keep the front concise and the back accurate and self-contained. '
        'Also suggest a short title for the deck.\n\n'
        f'Text:\n{text}'
    )


def drafts_from_payload(payload: Dict[str, Any]) -> List[CardDraft]:
    """Turn the model's `flashcards` list into drafts, dropping pairs with an empty side."""
    raw_cards = payload.get('flashcards')
    if not isinstance(raw_cards, list):
        raise CardGenerationValidationError('Model response has no "flashcards" list')
    drafts: List[CardDraft] = []
    for item in raw_cards:
        if not isinstance(item, dict):
            continue
        try:
            draft = CardDraft.model_validate({'front': item.get('front'), 'back': item.get('back')})
        except ValidationError:
            continue
        if not draft.front.strip() or not draft.back.strip():
            continue
        drafts.append(CardDraft(front=draft.front.strip(), back=draft.back.strip()))
    return drafts


class CardGenerator:
    _instance = None

    def __init__(self, llm: Optional[LLMClient] = None, cache: Optional[CacheManager] = None):
        self._llm = llm
        self._cache = cache

    @classmethod
    def get_instance(cls) -> 'CardGenerator':
        if cls._instance is None:
            cls._instance = CardGenerator()
        return cls._instance

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            try:
                self._llm = LLMClient.get_instance()
            except LLMError as e:
                raise CardGenerationError(str(e))
        return self._llm

    @property
    def cache(self) -> CacheManager:
        if self._cache is None:
            self._cache = CacheManager.get_instance()
        return self._cache

    def generate_cards(self, text: str, count: Optional[int] = None, request_id: Optional[str] = None) -> GenerationResult:
        if text is None or not text.strip():
            raise EmptySourceTextError('No text to generate flashcards from')
        text = text.strip()
        if len(text) > GENERATION_MAX_TEXT_LENGTH:
            LOG.info('generation_text_truncated', extra={'text_length': len(text), 'limit': GENERATION_MAX_TEXT_LENGTH})
            text = text[:GENERATION_MAX_TEXT_LENGTH]
        target = clamp_count(count)
        start = time.time()

        cached = self.cache.get_generation(text, target)
        if cached:
            result = GenerationResult.from_dict(cached)
            log_card_generation(request_id or '', target, len(result.drafts), int((time.time() - start) * 1000), cache_hit=True)
            return result

        try:
            payload = self.llm.complete_json(
                SYSTEM_PROMPT,
                build_generation_prompt(text, target),
                purpose='generate',
                max_tokens=FLASHCARD_MAX_TOKENS,
                request_id=request_id,
            )
        except LLMTimeoutError as e:
            raise CardGenerationTimeoutError(str(e))
        except LLMAPIError as e:
            raise CardGenerationAPIError(str(e))
        except LLMValidationError as e:
            raise CardGenerationValidationError(str(e))

        drafts = drafts_from_payload(payload)
        if not drafts:
            raise CardGenerationValidationError('Model returned no usable flashcards')
        title = payload.get('title')
        if not isinstance(title, str) or not title.strip():
            title = None
        result = GenerationResult(drafts=drafts, title=title.strip() if title else None)

        self.cache.set_generation(text, target, result.to_dict())
        log_card_generation(request_id or '', target, len(drafts), int((time.time() - start) * 1000))
        return result
