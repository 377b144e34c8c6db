"""Rewrite a single card according to a free-text instruction.

The refiner only produces a new front/back pair. Applying it to the card
(same id) is the caller's job, so a failed refine never touches the deck.
"""
from __future__ import annotations

import json
import os
from typing import Optional

from pydantic import ValidationError

from cramly.deck import Card, CardDraft
from cramly.generation.llm_client import LLMClient, LLMError
from cramly.utils import get_logger

LOG = get_logger()

REFINE_MAX_TOKENS = int(os.getenv('REFINE_MAX_TOKENS', '600'))
REFINE_MAX_INSTRUCTION_LENGTH = int(os.getenv('REFINE_MAX_INSTRUCTION_LENGTH', '1000'))

SYSTEM_PROMPT = (
    'You improve individual study flashcards. Follow the instruction while keeping the card '
    'about the same concept. Respond only with a JSON object {"front": "...", "back": "..."}.'
)


class CardRefineError(Exception):
    pass


class CardRefiner:
    _instance = None

    def __init__(self, llm: Optional[LLMClient] = None):
        self._llm = llm

    @classmethod
    def get_instance(cls) -> 'CardRefiner':
        if cls._instance is None:
            cls._instance = CardRefiner()
        return cls._instance

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            try:
                self._llm = LLMClient.get_instance()
            except LLMError as e:
                raise CardRefineError(str(e))
        return self._llm

    def refine_card(self, card: Card, instruction: str, request_id: Optional[str] = None) -> CardDraft:
        if not instruction or not instruction.strip():
            raise CardRefineError('Refine instruction is required')
        if not card.front.strip() and not card.back.strip():
            raise CardRefineError('Card has no content to refine')
        instruction = instruction.strip()[:REFINE_MAX_INSTRUCTION_LENGTH]
        user_prompt = (
            f'Instruction: {instruction}\n\n'
            f'Current card:\n{json.dumps({"front": card.front, "back": card.back})}'
        )
        try:
            payload = self.llm.complete_json(SYSTEM_PROMPT, user_prompt, purpose='refine', max_tokens=REFINE_MAX_TOKENS, request_id=request_id)
        except LLMError as e:
            LOG.warning('card_refine_failed', extra={'card_id': card.id, 'error': str(e)})
            raise CardRefineError(str(e))
        try:
            draft = CardDraft.model_validate({'front': payload.get('front'), 'back': payload.get('back')})
        except ValidationError:
            raise CardRefineError('Model response must contain "front" and "back" strings')
        if not draft.front.strip() or not draft.back.strip():
            raise CardRefineError('Refined card has an empty side')
        LOG.info('card_refined', extra={'card_id': card.id})
        return CardDraft(front=draft.front.strip(), back=draft.back.strip())
